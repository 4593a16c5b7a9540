"""
Error Taxonomy for the Tutoring Engine

Corpus errors are fatal at startup, embedding errors degrade retrieval,
generation errors fail the current call.
"""

from typing import Optional


class TutorError(Exception):
    """Base class for all engine errors."""


class CorpusLoadError(TutorError):
    """The knowledge corpus has a malformed top-level structure or cannot be read."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{message} (source: {source})"
        super().__init__(message)


class EntryLoadWarning(TutorError):
    """A single knowledge record is malformed and was skipped."""

    def __init__(self, message: str, entry_id: Optional[str] = None, source: Optional[str] = None):
        self.entry_id = entry_id
        self.source = source
        super().__init__(message)


class EmbeddingUnavailable(TutorError):
    """The embedding provider failed (network, auth, quota, timeout)."""


class EmbeddingDimensionMismatch(TutorError):
    """Two vectors in the same run have different dimensions."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}. "
            "Check EMBEDDING_PROVIDER / EMBEDDING_MODEL."
        )


class RetrievalDegraded(TutorError):
    """Retrieval or guidance produced no value for this turn."""


class GenerationFailure(TutorError):
    """The language-model provider failed; terminal for the current call."""

    def __init__(self, message: str, retryable: bool = False, status_code: Optional[int] = None):
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)
