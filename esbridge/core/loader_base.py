# esbridge/core/loader_base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, List, Optional

from .base_stage import Stage

if TYPE_CHECKING:
    from .models import BulkItemFailure, IndexTarget, Record


@dataclass(frozen=True)
class LoadResult:
    """
    Outcome of a write run.
    - success_count: items the engine acknowledged
    - error_count: items the engine rejected or never received
    - errors: one BulkItemFailure per rejected item
    """

    success_count: int
    error_count: int = 0
    errors: List["BulkItemFailure"] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error_count == 0


class LoaderClient(Stage, ABC):
    """
    Abstract base for sinks that write records to the engine.
    open() acquires clients/threads, add() enqueues one record,
    finalize() drains everything and reports, close() releases resources.
    """

    @abstractmethod
    def add(self, record: "Record", target: Optional["IndexTarget"] = None) -> None:
        """Enqueue one record (MUST be implemented by subclasses)."""
        ...

    def add_batch(self, records: Iterable["Record"], target: Optional["IndexTarget"] = None) -> int:
        """Default vectorized add using add(). Returns the number of records enqueued."""
        n = 0
        for rec in records:
            self.add(rec, target)
            n += 1
        return n

    @abstractmethod
    def finalize(self) -> LoadResult:
        """Flush buffers, wait for outstanding requests and return the LoadResult."""
        ...


__all__ = ["LoaderClient", "LoadResult"]
