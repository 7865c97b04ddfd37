# esbridge/read/scroll.py
from __future__ import annotations

import logging
from typing import Iterator, Optional

from ..core.client_base import DEFAULT_KEEP_ALIVE, EngineClient
from ..core.errors import StateError
from ..core.extractor_base import Extractor
from ..core.models import Partition, Record, ScrollPage, SearchPage

logger = logging.getLogger(__name__)


class ScrollIterator(Extractor):
    """
    Reads one partition through a server-side scroll cursor.

    The cursor is advanced sequentially by whoever iterates, and released
    exactly once: on exhaustion, on close(), or when the record generator is
    abandoned (GeneratorExit) or fails. A consumed iterator cannot restart;
    build a new one to re-run the query (results may differ if the index
    changed since the first scroll was opened).
    """

    def __init__(
        self,
        client: EngineClient,
        partition: Partition,
        page_size: int = 100,
        keep_alive: str = DEFAULT_KEEP_ALIVE,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self._client = client
        self.partition = partition
        self.page_size = page_size
        self.keep_alive = keep_alive

        self._opened = False
        self._cursor: Optional[str] = None
        self._first_page: Optional[SearchPage] = None
        self._exhausted = False
        self._released = False
        self._consumed = False

    def open(self) -> SearchPage:  # type: ignore[override]
        """Run the query and return the first page. Errors propagate untouched."""
        if self._opened:
            raise StateError(f"scroll for {self.partition.describe()} is already open")
        self._opened = True
        page = self._client.search(
            self.partition.query,
            self.partition.index,
            self.page_size,
            shard=self.partition.shard,
            slice=self.partition.slice,
            keep_alive=self.keep_alive,
        )
        self._cursor = page.cursor
        self._first_page = page
        if len(page.documents) < self.page_size:
            self._exhausted = True
        logger.debug(
            "opened scroll for %s: %d hit(s), first page %d",
            self.partition.describe(),
            page.total,
            len(page.documents),
        )
        return page

    def advance(self) -> Optional[ScrollPage]:
        """Next page, or None once the engine has no hits left."""
        if not self._opened:
            raise StateError("scroll is not open")
        if self._released:
            raise StateError(f"cursor for {self.partition.describe()} was already released")
        if self._exhausted or self._cursor is None:
            return None
        page = self._client.scroll_next(self._cursor, keep_alive=self.keep_alive)
        if page.cursor:
            self._cursor = page.cursor
        if not page.documents:
            self._exhausted = True
            return None
        if not page.has_more:
            self._exhausted = True
        return page

    def iter_records(self) -> Iterator[Record]:
        if self._consumed:
            raise StateError(f"scroll for {self.partition.describe()} was already consumed")
        self._consumed = True
        try:
            first = self._first_page if self._first_page is not None else self.open()
            self._first_page = None
            yield from first.documents
            while True:
                page = self.advance()
                if page is None:
                    break
                yield from page.documents
        finally:
            self.close()

    def close(self) -> None:
        if self._released or self._cursor is None:
            return
        self._released = True
        self._first_page = None
        logger.debug("releasing scroll cursor for %s", self.partition.describe())
        self._client.release_cursor(self._cursor)

    @property
    def released(self) -> bool:
        return self._released


__all__ = ["ScrollIterator"]
