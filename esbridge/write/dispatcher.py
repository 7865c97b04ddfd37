# esbridge/write/dispatcher.py
from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import Future
from typing import Callable, Dict, List, Optional

from ..core.client_base import EngineClient
from ..core.errors import StateError
from ..core.loader_base import LoadResult
from ..core.models import Batch, BulkItemFailure, BulkResponse

logger = logging.getLogger(__name__)

FailureCallback = Callable[[BulkItemFailure], None]


class DispatcherState(enum.Enum):
    OPEN = "open"
    DRAINING = "draining"
    CLOSED = "closed"


class BulkDispatcher:
    """
    Backpressure controller for bulk writes.

    - submit() waits while `concurrent_requests` batches are in flight, then
      hands the batch to the engine client and returns without waiting for it.
    - Completions arrive on the client's I/O threads. Every item is counted
      once on submit and once on completion, acknowledged or not; failed items
      are kept (and passed to `on_failure`) instead of being dropped.
    - close() stops admissions, waits for quiescence and returns a LoadResult.

    `concurrent_requests=0` makes every submit() wait for its own batch.
    """

    def __init__(
        self,
        client: EngineClient,
        concurrent_requests: int = 1,
        *,
        on_failure: Optional[FailureCallback] = None,
        release_client: bool = False,
    ) -> None:
        if concurrent_requests < 0:
            raise ValueError("concurrent_requests must be >= 0")
        self._client = client
        self.concurrent_requests = concurrent_requests
        self._on_failure = on_failure
        self._release_client = release_client

        self._cond = threading.Condition()
        self._state = DispatcherState.OPEN
        self._pending = 0
        # keyed by id(batch); execution ids are only unique per batcher
        self._in_flight: Dict[int, Batch] = {}
        self._acked = 0
        self._failures: List[BulkItemFailure] = []

    # ---------------------- introspection ----------------------

    @property
    def state(self) -> DispatcherState:
        with self._cond:
            return self._state

    @property
    def pending(self) -> int:
        """Items submitted but not yet completed."""
        with self._cond:
            return self._pending

    @property
    def in_flight(self) -> int:
        with self._cond:
            return len(self._in_flight)

    # ---------------------- public API ----------------------

    def submit(self, batch: Batch) -> None:
        if not len(batch):
            return
        limit = max(1, self.concurrent_requests)
        with self._cond:
            self._cond.wait_for(
                lambda: self._state is not DispatcherState.OPEN or len(self._in_flight) < limit
            )
            if self._state is not DispatcherState.OPEN:
                raise StateError(f"cannot submit bulk batch: dispatcher is {self._state.value}")
            if id(batch) in self._in_flight:
                raise StateError(f"bulk batch {batch.execution_id} is already in flight")
            self._in_flight[id(batch)] = batch
            self._pending += len(batch)

        logger.debug("submitting bulk batch %d (%d action(s))", batch.execution_id, len(batch))
        try:
            future = self._client.bulk(batch)
        except Exception as exc:
            self._complete(batch, None, exc)
            raise
        future.add_done_callback(lambda f: self._on_done(batch, f))

        if self.concurrent_requests == 0:
            self._wait(lambda: id(batch) not in self._in_flight, None)

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until every submitted item has completed."""
        self._wait(lambda: self._pending == 0 and not self._in_flight, timeout)

    def close(self, timeout: Optional[float] = None) -> LoadResult:
        with self._cond:
            if self._state is not DispatcherState.OPEN:
                raise StateError(f"dispatcher is already {self._state.value}")
            self._state = DispatcherState.DRAINING
            # wake submitters blocked on the concurrency limit
            self._cond.notify_all()
        logger.info("draining bulk dispatcher (%d pending item(s))", self.pending)
        try:
            self.drain(timeout)
        finally:
            with self._cond:
                quiescent = self._pending == 0 and not self._in_flight
                if quiescent:
                    self._state = DispatcherState.CLOSED
            if quiescent and self._release_client:
                self._client.close()
        result = self.result()
        logger.info(
            "bulk dispatcher closed: %d acknowledged, %d failed",
            result.success_count,
            result.error_count,
        )
        return result

    def result(self) -> LoadResult:
        with self._cond:
            return LoadResult(
                success_count=self._acked,
                error_count=len(self._failures),
                errors=list(self._failures),
            )

    # ---------------------- completion ----------------------

    def _on_done(self, batch: Batch, future: "Future[BulkResponse]") -> None:
        try:
            response = future.result()
        except Exception as exc:
            self._complete(batch, None, exc)
        else:
            self._complete(batch, response, None)

    def _complete(
        self,
        batch: Batch,
        response: Optional[BulkResponse],
        error: Optional[BaseException],
    ) -> None:
        if response is not None:
            failures = list(response.failures)
            acked = len(batch) - len(failures)
        else:
            reason = f"{type(error).__name__}: {error}"
            failures = [
                BulkItemFailure(position=i, target=item.target, record=item.record, status=0, reason=reason)
                for i, item in enumerate(batch.items)
            ]
            acked = 0

        with self._cond:
            if self._in_flight.pop(id(batch), None) is None:
                logger.error("bulk batch %d completed twice; ignoring", batch.execution_id)
                return
            self._pending -= len(batch)
            assert self._pending >= 0, "pending bulk item count went negative"
            self._acked += acked
            self._failures.extend(failures)
            self._cond.notify_all()

        if failures:
            logger.warning(
                "bulk batch %d: %d of %d item(s) failed (first: %s)",
                batch.execution_id,
                len(failures),
                len(batch),
                failures[0].reason,
            )
            if self._on_failure is not None:
                for failure in failures:
                    self._on_failure(failure)

    def _wait(self, predicate: Callable[[], bool], timeout: Optional[float]) -> None:
        with self._cond:
            if not self._cond.wait_for(predicate, timeout):
                raise TimeoutError(
                    f"bulk dispatcher not drained after {timeout}s "
                    f"({self._pending} pending item(s), {len(self._in_flight)} batch(es) in flight)"
                )


__all__ = ["BulkDispatcher", "DispatcherState"]
