"""
Embedding Providers and Entry Embedding Cache

Entry vectors are computed lazily (first time an entry is a retrieval
candidate) and kept for the rest of the process. Query vectors are not
cached.

Every provider failure surfaces as EmbeddingUnavailable so callers can
degrade to lexical retrieval.
"""

import asyncio
import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from socratic_theorem_tutor.config import TutorSettings, get_settings
from socratic_theorem_tutor.errors import EmbeddingDimensionMismatch, EmbeddingUnavailable
from socratic_theorem_tutor.knowledge_entry import KnowledgeEntry

logger = logging.getLogger(__name__)


class EmbeddingProvider:
    """Interface for an external embedding service."""

    async def embed(self, text: str, api_key: Optional[str] = None) -> List[float]:
        raise NotImplementedError


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings from an OpenAI-compatible /embeddings endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "text-embedding-3-small",
        base_url: Optional[str] = None,
        timeout: float = 10.0
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._client: Optional[AsyncOpenAI] = None
        self._key_clients: Dict[str, AsyncOpenAI] = {}

    def _get_client(self, api_key: Optional[str] = None) -> AsyncOpenAI:
        if api_key:
            if self._client is not None:
                return self._client.with_options(api_key=api_key)
            # Cached per caller key
            client = self._key_clients.get(api_key)
            if client is None:
                client = self._key_clients[api_key] = AsyncOpenAI(
                    api_key=api_key, base_url=self.base_url, timeout=self.timeout
                )
            return client

        if self._client is None:
            if not self.api_key:
                raise EmbeddingUnavailable("OPENAI_API_KEY not configured for embeddings")
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def embed(self, text: str, api_key: Optional[str] = None) -> List[float]:
        client = self._get_client(api_key)
        response = await client.embeddings.create(model=self.model, input=text)
        return list(response.data[0].embedding)


class HuggingFaceEmbeddingProvider(EmbeddingProvider):
    """Local sentence-transformers model through langchain_huggingface."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._embeddings: Optional[Any] = None

    def _get_embeddings(self):
        """Lazy load embeddings."""
        if self._embeddings is None:
            from langchain_huggingface import HuggingFaceEmbeddings
            self._embeddings = HuggingFaceEmbeddings(
                model_name=self.model_name,
                model_kwargs={'device': 'cpu'},
                encode_kwargs={'normalize_embeddings': True}
            )
        return self._embeddings

    async def embed(self, text: str, api_key: Optional[str] = None) -> List[float]:
        # Local model, no credential involved
        embeddings = self._get_embeddings()
        return await asyncio.to_thread(embeddings.embed_query, text)


def build_embedding_provider(settings: TutorSettings) -> EmbeddingProvider:
    """Pick the embedding provider named by EMBEDDING_PROVIDER."""
    if settings.embedding_provider == "huggingface":
        return HuggingFaceEmbeddingProvider(model_name=settings.embedding_model)
    return OpenAIEmbeddingProvider(
        api_key=settings.openai_api_key,
        model=settings.embedding_model,
        base_url=settings.openai_base_url,
        timeout=settings.embedding_timeout,
    )


def normalize(vector: Sequence[float]) -> List[float]:
    """L2-normalize a vector (zero vectors are returned unchanged)."""
    magnitude = math.sqrt(sum(value * value for value in vector))
    if magnitude == 0:
        return [float(value) for value in vector]
    return [value / magnitude for value in vector]


class EmbeddingCache:
    """
    Process-wide memo of entry embeddings, keyed by entry id.

    No invalidation: the corpus is static for the process lifetime. Two
    concurrent first-time lookups of the same entry may both hit the
    provider; the first stored vector wins.
    """

    def __init__(self, provider: EmbeddingProvider, timeout: float = 10.0):
        self.provider = provider
        self.timeout = timeout
        self.dimension: Optional[int] = None
        self.provider_calls = 0
        self._entry_vectors: Dict[str, List[float]] = {}

    def _check_dimension(self, vector: List[float]):
        if self.dimension is None:
            self.dimension = len(vector)
        elif len(vector) != self.dimension:
            raise EmbeddingDimensionMismatch(self.dimension, len(vector))

    async def _embed(self, text: str, api_key: Optional[str] = None) -> List[float]:
        self.provider_calls += 1
        try:
            vector = await asyncio.wait_for(
                self.provider.embed(text, api_key=api_key),
                timeout=self.timeout
            )
        except EmbeddingUnavailable:
            raise
        except asyncio.TimeoutError as e:
            raise EmbeddingUnavailable(f"Embedding call timed out after {self.timeout}s") from e
        except Exception as e:
            raise EmbeddingUnavailable(f"Embedding provider error: {type(e).__name__}: {e}") from e

        if not vector:
            raise EmbeddingUnavailable("Embedding provider returned an empty vector")

        vector = normalize(vector)
        self._check_dimension(vector)
        return vector

    def cached(self, entry_id: str) -> Optional[List[float]]:
        return self._entry_vectors.get(entry_id)

    async def entry_vector(self, entry: KnowledgeEntry, api_key: Optional[str] = None) -> List[float]:
        """Get the entry's vector, computing it on first use."""
        vector = self._entry_vectors.get(entry.id)
        if vector is not None:
            return vector
        vector = await self._embed(entry.embedding_text(), api_key=api_key)
        return self._entry_vectors.setdefault(entry.id, vector)

    async def entry_vectors(
        self,
        entries: Sequence[KnowledgeEntry],
        api_key: Optional[str] = None
    ) -> List[List[float]]:
        """Vectors for several entries; missing ones are computed concurrently."""
        missing = [entry for entry in entries if entry.id not in self._entry_vectors]
        if missing:
            logger.debug(f"🔍 [EmbeddingCache] Embedding {len(missing)} new entries")
            await asyncio.gather(*(self.entry_vector(entry, api_key=api_key) for entry in missing))
        return [self._entry_vectors[entry.id] for entry in entries]

    async def query_vector(self, text: str, api_key: Optional[str] = None) -> List[float]:
        """Embed a query string (not cached)."""
        return await self._embed(text, api_key=api_key)

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "size": len(self._entry_vectors),
            "dimension": self.dimension,
            "provider_calls": self.provider_calls,
        }

    def __len__(self) -> int:
        return len(self._entry_vectors)


_cache: Optional[EmbeddingCache] = None


def get_embedding_cache() -> EmbeddingCache:
    """Get or create the process-wide embedding cache."""
    global _cache
    if _cache is None:
        settings = get_settings()
        _cache = EmbeddingCache(build_embedding_provider(settings), timeout=settings.embedding_timeout)
    return _cache
