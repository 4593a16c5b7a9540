"""
Semantic Retrieval Index

Ranks knowledge entries against a query by cosine similarity of
embeddings. When the embedding provider is unavailable it falls back to a
lexical keyword-overlap score, so retrieval always returns something
usable.

Ranking is deterministic: score descending, ties broken by corpus
insertion order.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Sequence

from socratic_theorem_tutor.embedding_cache import EmbeddingCache
from socratic_theorem_tutor.errors import EmbeddingUnavailable
from socratic_theorem_tutor.knowledge_entry import Category, KnowledgeEntry
from socratic_theorem_tutor.knowledge_store import KnowledgeStore

logger = logging.getLogger(__name__)

SEMANTIC = "semantic"
LEXICAL = "lexical"

_WORD_RE = re.compile(r"\w+")
_CJK_RUN_RE = re.compile(r"([\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]+)")


def tokenize(text: str) -> List[str]:
    """
    Unicode-aware tokenization.

    Latin/digit words are lower-cased whole tokens. Runs of CJK ideographs
    have no word boundaries, so they are split into character bigrams (a
    single ideograph stays a token on its own).
    """
    tokens: List[str] = []
    for word in _WORD_RE.findall(text.lower()):
        for piece in _CJK_RUN_RE.split(word):
            if not piece or piece == "_":
                continue
            if _CJK_RUN_RE.fullmatch(piece):
                if len(piece) == 1:
                    tokens.append(piece)
                else:
                    tokens.extend(piece[i:i + 2] for i in range(len(piece) - 1))
            else:
                tokens.append(piece.strip("_"))
    return [token for token in tokens if token]


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """Calculate cosine similarity between two vectors."""
    if not vec1 or not vec2 or len(vec1) != len(vec2):
        return 0.0

    dot_product = sum(a * b for a, b in zip(vec1, vec2))
    magnitude1 = math.sqrt(sum(a * a for a in vec1))
    magnitude2 = math.sqrt(sum(b * b for b in vec2))

    if magnitude1 == 0 or magnitude2 == 0:
        return 0.0

    return max(-1.0, min(1.0, dot_product / (magnitude1 * magnitude2)))


@dataclass(frozen=True)
class RetrievalResult:
    """One ranked match for a query."""
    entry: KnowledgeEntry
    relevance_score: float
    rank: int
    method: str = SEMANTIC

    def summary(self) -> Dict[str, Any]:
        data = self.entry.summary()
        data["relevance_score"] = round(self.relevance_score, 4)
        data["rank"] = self.rank
        return data


class SemanticRetrievalIndex:
    """Ranks entries of a KnowledgeStore against free-text queries."""

    def __init__(self, store: KnowledgeStore, cache: EmbeddingCache, default_k: int = 3):
        self.store = store
        self.cache = cache
        self.default_k = default_k
        self._entry_tokens: Dict[str, FrozenSet[str]] = {}

    def _candidates(self, category: Optional[Category]) -> List[KnowledgeEntry]:
        if category is None:
            return self.store.entries()
        return self.store.list_by_category(category)

    async def retrieve(
        self,
        query: str,
        k: Optional[int] = None,
        category: Optional[Category] = None,
        api_key: Optional[str] = None
    ) -> List[RetrievalResult]:
        """
        Rank entries for a query.

        Args:
            query: User question
            k: Number of results (defaults to default_k)
            category: Restrict candidates to one category
            api_key: Per-call credential for the embedding provider

        Returns:
            At most k results, best first. Fewer candidates than k returns
            all of them.
        """
        k = self.default_k if k is None else k
        if k <= 0:
            return []

        candidates = self._candidates(category)
        if not candidates:
            return []

        method = SEMANTIC
        if not query or not query.strip():
            scores = self.lexical_scores(query or "", candidates)
            method = LEXICAL
        else:
            try:
                scores = await self._semantic_scores(query, candidates, api_key)
            except EmbeddingUnavailable as e:
                logger.warning(f"⚠️ [Retrieval] Embeddings unavailable, using lexical fallback: {e}")
                scores = self.lexical_scores(query, candidates)
                method = LEXICAL

        order = sorted(range(len(candidates)), key=lambda i: (-scores[i], i))
        results = [
            RetrievalResult(entry=candidates[i], relevance_score=scores[i], rank=rank, method=method)
            for rank, i in enumerate(order[:k])
        ]
        logger.debug(
            f"📚 [Retrieval] {method} top-{k} for '{query[:50]}': "
            f"{[(r.entry.id, round(r.relevance_score, 3)) for r in results]}"
        )
        return results

    async def _semantic_scores(
        self,
        query: str,
        candidates: List[KnowledgeEntry],
        api_key: Optional[str]
    ) -> List[float]:
        query_vector = await self.cache.query_vector(query, api_key=api_key)
        entry_vectors = await self.cache.entry_vectors(candidates, api_key=api_key)
        return [cosine_similarity(query_vector, vector) for vector in entry_vectors]

    # ==================== Lexical fallback ====================

    def _tokens_for(self, entry: KnowledgeEntry) -> FrozenSet[str]:
        tokens = self._entry_tokens.get(entry.id)
        if tokens is None:
            collected = set()
            for keyword in entry.keywords:
                collected.add(keyword.lower())
                collected.update(tokenize(keyword))
            collected.update(tokenize(entry.title))
            collected.update(tokenize(entry.description))
            tokens = frozenset(collected)
            self._entry_tokens[entry.id] = tokens
        return tokens

    def lexical_scores(self, query: str, candidates: Sequence[KnowledgeEntry]) -> List[float]:
        """
        Keyword-overlap score in [0, 1] for each candidate.

        The overlap is shared tokens plus whole keywords found in the query.
        Every candidate is divided by the same normalizer (the candidate-set
        size, widened to the best overlap), so ranking follows the raw
        overlap count.
        """
        query_lower = query.lower()
        query_tokens = set(tokenize(query))

        overlaps = []
        for entry in candidates:
            shared = len(query_tokens & self._tokens_for(entry))
            keyword_hits = sum(1 for keyword in entry.keywords if keyword.lower() in query_lower)
            overlaps.append(shared + keyword_hits)

        normalizer = max([len(candidates)] + overlaps) if candidates else 0
        if normalizer == 0:
            return [0.0] * len(candidates)
        return [min(1.0, overlap / normalizer) for overlap in overlaps]
