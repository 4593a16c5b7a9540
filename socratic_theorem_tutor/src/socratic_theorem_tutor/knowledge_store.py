"""
Knowledge Store

Loads the curated corpus (one JSON collection per category) once per
process and indexes it by id, category and keyword.

Malformed top-level structure is fatal (CorpusLoadError); a malformed
individual record is logged and skipped.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from socratic_theorem_tutor.errors import CorpusLoadError, EntryLoadWarning
from socratic_theorem_tutor.knowledge_entry import (
    Category,
    Difficulty,
    KnowledgeEntry,
    entry_from_record,
)

logger = logging.getLogger(__name__)

# Wrapper keys accepted when a collection is an object instead of an array
COLLECTION_KEYS = ("items", "theorems", "entries")


class KnowledgeStore:
    """
    In-memory index over the knowledge corpus.

    Entries keep corpus insertion order, which is also the retrieval
    tie-break order.
    """

    def __init__(self):
        self._entries: Dict[str, KnowledgeEntry] = {}
        self._by_category: Dict[Category, Dict[str, None]] = {}
        self._keyword_postings: Dict[str, List[str]] = {}
        self.skipped: List[EntryLoadWarning] = []

    # ==================== Loading ====================

    @classmethod
    def from_directory(cls, directory: Union[str, Path]) -> "KnowledgeStore":
        """
        Load every *.json collection in a directory.

        The file stem is used as the default category for records that do
        not name one (e.g. math.json -> math).
        """
        path = Path(directory)
        if not path.is_dir():
            raise CorpusLoadError("Knowledge directory not found", source=str(path))

        store = cls()
        files = sorted(path.glob("*.json"))
        for file_path in files:
            try:
                raw = file_path.read_bytes()
            except OSError as e:
                raise CorpusLoadError(f"Cannot read collection: {e}", source=str(file_path)) from e
            store.load_bytes(raw, category=Category.parse(file_path.stem), source=file_path.name)

        logger.info(
            f"✅ [KnowledgeStore] Loaded {len(store)} entries from {len(files)} collections "
            f"({len(store.skipped)} skipped)"
        )
        return store

    @classmethod
    def from_records(
        cls,
        records: Iterable[Any],
        category: Optional[Category] = None
    ) -> "KnowledgeStore":
        """Build a store from already-decoded records."""
        store = cls()
        store.load_records(list(records), category=category, source="<memory>")
        return store

    def load_bytes(
        self,
        raw: bytes,
        category: Optional[Category] = None,
        source: str = "<bytes>"
    ) -> int:
        """
        Load one collection from raw JSON bytes.

        Returns:
            Number of entries added
        """
        try:
            data = json.loads(raw.decode("utf-8-sig"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorpusLoadError(f"Invalid JSON: {e}", source=source) from e

        if isinstance(data, dict):
            wrapped = next((data[key] for key in COLLECTION_KEYS if isinstance(data.get(key), list)), None)
            if wrapped is None:
                raise CorpusLoadError(
                    f"Collection object must hold a list under one of {COLLECTION_KEYS}",
                    source=source,
                )
            data = wrapped

        if not isinstance(data, list):
            raise CorpusLoadError(
                f"Collection must be a JSON array, got {type(data).__name__}", source=source
            )

        return self.load_records(data, category=category, source=source)

    def load_records(
        self,
        records: List[Any],
        category: Optional[Category] = None,
        source: str = "<memory>"
    ) -> int:
        added = 0
        for index, record in enumerate(records):
            try:
                entry = entry_from_record(record, default_category=category, source=source)
                if entry.id in self._entries:
                    raise EntryLoadWarning("Duplicate id, keeping the first", entry_id=entry.id, source=source)
            except EntryLoadWarning as warning:
                self.skipped.append(warning)
                logger.warning(
                    f"⚠️ [KnowledgeStore] Skipping record #{index} in {source} "
                    f"(id={warning.entry_id}): {warning}"
                )
                continue
            self._add(entry)
            added += 1
        return added

    def _add(self, entry: KnowledgeEntry):
        self._entries[entry.id] = entry
        self._by_category.setdefault(entry.category, {})[entry.id] = None
        for keyword in entry.keywords:
            postings = self._keyword_postings.setdefault(keyword.lower(), [])
            if entry.id not in postings:
                postings.append(entry.id)

    # ==================== Lookups ====================

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries

    def get(self, entry_id: str) -> Optional[KnowledgeEntry]:
        return self._entries.get(entry_id)

    def entries(self) -> List[KnowledgeEntry]:
        """All entries in corpus insertion order."""
        return list(self._entries.values())

    def list_by_category(self, category: Category) -> List[KnowledgeEntry]:
        return [self._entries[entry_id] for entry_id in self._by_category.get(category, {})]

    def list_categories(self) -> List[Category]:
        """Categories that have at least one entry, in first-seen order."""
        return [category for category, ids in self._by_category.items() if ids]

    def list_topics(self, category: Category) -> List[str]:
        topics: List[str] = []
        for entry in self.list_by_category(category):
            if entry.topic and entry.topic not in topics:
                topics.append(entry.topic)
        return topics

    def keyword_postings(self, keyword: str) -> List[str]:
        """Ids of entries carrying the keyword (case-insensitive)."""
        return list(self._keyword_postings.get(keyword.lower(), []))

    def query(
        self,
        category: Optional[Category] = None,
        topic: Optional[str] = None,
        difficulty: Optional[Difficulty] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[KnowledgeEntry]:
        """
        Filter entries for browsing.

        Args:
            category: Exact category
            topic: Exact topic
            difficulty: Exact difficulty
            search: Case-insensitive substring over title, description and keywords
            limit: Maximum number of entries

        Returns:
            Matching entries in insertion order
        """
        candidates = self.list_by_category(category) if category else self.entries()
        needle = search.strip().lower() if search else ""

        results = []
        for entry in candidates:
            if topic and entry.topic != topic:
                continue
            if difficulty and entry.difficulty != difficulty:
                continue
            if needle:
                haystack = " ".join((entry.title, entry.description, " ".join(entry.keywords))).lower()
                if needle not in haystack:
                    continue
            results.append(entry)

        if limit is not None:
            results = results[:max(limit, 0)]
        return results


_store: Optional[KnowledgeStore] = None


def get_knowledge_store(directory: Optional[Union[str, Path]] = None) -> KnowledgeStore:
    """Get or create the process-wide knowledge store."""
    global _store
    if _store is None:
        if directory is None:
            from socratic_theorem_tutor.config import get_settings
            directory = get_settings().knowledge_dir
        _store = KnowledgeStore.from_directory(directory)
    return _store
