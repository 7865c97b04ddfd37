# esbridge/core/client_base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Optional

from .base_stage import Stage
from .models import Batch, BulkResponse, Query, ScrollPage, SearchPage, SliceSpec

DEFAULT_KEEP_ALIVE = "1m"


class EngineClient(Stage, ABC):
    """
    Contract every search-engine client implements.
    Read calls are synchronous; bulk() is asynchronous and completes a Future
    on the client's own I/O threads. close() releases connections and threads.
    """

    @abstractmethod
    def search(
        self,
        query: Query,
        index: str,
        page_size: int,
        *,
        shard: Optional[int] = None,
        slice: Optional[SliceSpec] = None,
        keep_alive: str = DEFAULT_KEEP_ALIVE,
    ) -> SearchPage:
        """Open a scroll cursor and return the first page."""
        ...

    @abstractmethod
    def scroll_next(self, cursor: str, *, keep_alive: str = DEFAULT_KEEP_ALIVE) -> ScrollPage:
        """Advance a cursor. has_more is False once the engine reports no remaining hits."""
        ...

    @abstractmethod
    def release_cursor(self, cursor: str) -> None:
        """Release a cursor lease. Releasing an unknown or released cursor is a no-op."""
        ...

    @abstractmethod
    def bulk(self, batch: Batch) -> "Future[BulkResponse]":
        """Submit a bulk request; the future resolves to a BulkResponse or an error."""
        ...

    @abstractmethod
    def shard_count(self, index: str) -> int:
        ...

    @abstractmethod
    def count(self, query: Query, index: str, *, shard: Optional[int] = None) -> int:
        ...


__all__ = ["EngineClient", "DEFAULT_KEEP_ALIVE"]
