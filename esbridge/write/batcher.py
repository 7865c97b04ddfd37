# esbridge/write/batcher.py
from __future__ import annotations

import itertools
import logging
import threading
from typing import Callable, List, Optional

from ..core.errors import StateError
from ..core.models import Batch, BulkItem, IndexTarget, Record, record_size

logger = logging.getLogger(__name__)

Handoff = Callable[[Batch], None]


class BulkBatcher:
    """
    Accumulates records into batches and hands each sealed batch to `handoff`
    (usually BulkDispatcher.submit).

    A batch never exceeds `batch_size` actions or `max_bytes` bytes; the only
    exception is a single record larger than `max_bytes`, sent on its own.
    A batch is sealed when it reaches either limit,
    when flush() is called, or every `flush_interval` seconds once start() ran.
    Sealing is done under a lock; the handoff runs outside it so a blocking
    dispatcher only stalls the thread that sealed the batch.
    """

    def __init__(
        self,
        handoff: Handoff,
        batch_size: int = 1000,
        max_bytes: int = 5 * 1024 * 1024,
        flush_interval: Optional[float] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_bytes < 1:
            raise ValueError("max_bytes must be >= 1")
        self._handoff = handoff
        self.batch_size = batch_size
        self.max_bytes = max_bytes
        self.flush_interval = flush_interval

        self._lock = threading.Lock()
        self._items: List[BulkItem] = []
        self._bytes = 0
        self._ids = itertools.count(1)
        self._closed = False

        self._stop = threading.Event()
        self._flusher: Optional[threading.Thread] = None
        self._background_error: Optional[BaseException] = None

    # ---------------------- public API ----------------------

    def start(self) -> None:
        """Start the timed flusher (no-op without a flush_interval)."""
        if self.flush_interval is None or self._flusher is not None:
            return
        self._flusher = threading.Thread(
            target=self._flush_periodically, name="esbridge-bulk-flusher", daemon=True
        )
        self._flusher.start()

    def add(self, record: Record, target: IndexTarget) -> None:
        if not record:
            raise ValueError("record must not be empty")
        self._raise_background_error()
        size = record_size(record)
        sealed: List[Batch] = []
        with self._lock:
            if self._closed:
                raise StateError("batcher is closed")
            # a record that would overflow the byte cap starts a new batch
            if self._items and self._bytes + size > self.max_bytes:
                sealed.append(self._seal())
            self._items.append(BulkItem(record=record, target=target))
            self._bytes += size
            if len(self._items) >= self.batch_size or self._bytes >= self.max_bytes:
                sealed.append(self._seal())
        for batch in sealed:
            self._handoff(batch)

    def flush(self) -> None:
        """Seal and hand off the current batch regardless of its size."""
        self._raise_background_error()
        self._flush()

    def close(self) -> None:
        """Stop the flusher, hand off what is left and refuse further records."""
        self._stop.set()
        if self._flusher is not None:
            self._flusher.join()
            self._flusher = None
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._flush()
        self._raise_background_error()

    @property
    def buffered(self) -> int:
        with self._lock:
            return len(self._items)

    # ---------------------- internals ----------------------

    def _seal(self) -> Batch:
        batch = Batch(execution_id=next(self._ids), items=tuple(self._items))
        self._items = []
        self._bytes = 0
        logger.debug("sealed bulk batch %d with %d action(s)", batch.execution_id, len(batch))
        return batch

    def _flush(self) -> None:
        with self._lock:
            if not self._items:
                return
            batch = self._seal()
        self._handoff(batch)

    def _flush_periodically(self) -> None:
        assert self.flush_interval is not None
        while not self._stop.wait(self.flush_interval):
            try:
                self._flush()
            except Exception as exc:  # surfaced on the caller's next add/flush/close
                logger.exception("timed bulk flush failed")
                self._background_error = exc
                return

    def _raise_background_error(self) -> None:
        exc = self._background_error
        if exc is not None:
            self._background_error = None
            raise exc


__all__ = ["BulkBatcher"]
