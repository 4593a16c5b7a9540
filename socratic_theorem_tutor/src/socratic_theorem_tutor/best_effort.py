"""
Best-effort side calls.

Retrieval and guidance must never fail a turn. Their outcome is carried as
a BestEffort value that is either ok or degraded (with the reason), and the
caller applies its default on degraded.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar, Union

from socratic_theorem_tutor.errors import EmbeddingDimensionMismatch, RetrievalDegraded

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BestEffort(Generic[T]):
    value: Optional[T] = None
    degraded: Optional[RetrievalDegraded] = None

    @property
    def ok(self) -> bool:
        return self.degraded is None

    def value_or(self, default: T) -> T:
        if self.degraded is not None or self.value is None:
            return default
        return self.value

    @classmethod
    def success(cls, value: T) -> "BestEffort[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, reason: str) -> "BestEffort[T]":
        return cls(degraded=RetrievalDegraded(reason))


async def attempt(label: str, call: Callable[[], Union[T, Awaitable[T]]]) -> BestEffort[T]:
    """
    Run a side call (sync or async), turning any failure into a degraded result.

    An EmbeddingDimensionMismatch is a configuration error: it is logged as
    an error but still only degrades the turn.
    """
    try:
        result = call()
        if inspect.isawaitable(result):
            result = await result
        return BestEffort.success(result)
    except EmbeddingDimensionMismatch as e:
        logger.error(f"❌ [BestEffort] {label}: embedding configuration error: {e}")
        return BestEffort.failure(f"{label} failed: {e}")
    except Exception as e:
        reason = f"{label} failed: {type(e).__name__}: {e}"
        logger.warning(f"⚠️ [BestEffort] {reason}, continuing without it")
        return BestEffort.failure(reason)
