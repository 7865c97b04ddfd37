from __future__ import annotations

import json
import threading
import time
from concurrent.futures import Future
from typing import List, Optional, Tuple

import pytest

from esbridge.core.client_base import EngineClient
from esbridge.core.errors import EngineConnectionError, StateError
from esbridge.core.models import Batch, BulkItem, BulkItemFailure, BulkResponse, IndexTarget
from esbridge.write.dispatcher import BulkDispatcher, DispatcherState

TARGET = IndexTarget("beam", "test")


def _batch(execution_id: int, n: int = 3) -> Batch:
    items = tuple(BulkItem(record=json.dumps({"n": i}), target=TARGET) for i in range(n))
    return Batch(execution_id=execution_id, items=items)


class _ManualClient(EngineClient):
    """Bulk futures stay pending until the test completes them."""

    def __init__(self, fail_on_submit: Optional[Exception] = None) -> None:
        self.requests: List[Tuple[Batch, "Future[BulkResponse]"]] = []
        self.closed = False
        self._fail_on_submit = fail_on_submit

    def bulk(self, batch):
        if self._fail_on_submit is not None:
            raise self._fail_on_submit
        future: "Future[BulkResponse]" = Future()
        self.requests.append((batch, future))
        return future

    def succeed(self, i: int, failed_positions=()) -> None:
        batch, future = self.requests[i]
        failures = tuple(
            BulkItemFailure(
                position=p,
                target=batch.items[p].target,
                record=batch.items[p].record,
                status=400,
                reason="mapper_parsing_exception: failed to parse",
            )
            for p in failed_positions
        )
        future.set_result(BulkResponse(acked=len(batch) - len(failures), failures=failures))

    def fail(self, i: int, exc: Exception) -> None:
        self.requests[i][1].set_exception(exc)

    def close(self):
        self.closed = True

    def search(self, *args, **kwargs):
        raise NotImplementedError

    def scroll_next(self, *args, **kwargs):
        raise NotImplementedError

    def release_cursor(self, cursor):
        raise NotImplementedError

    def shard_count(self, index):
        raise NotImplementedError

    def count(self, *args, **kwargs):
        raise NotImplementedError


def _wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.005)
    return True


def test_submit_returns_before_completion_and_tracks_pending():
    client = _ManualClient()
    dispatcher = BulkDispatcher(client, concurrent_requests=2)

    dispatcher.submit(_batch(1, 3))
    assert dispatcher.pending == 3
    assert dispatcher.in_flight == 1

    client.succeed(0)
    assert dispatcher.pending == 0
    assert dispatcher.in_flight == 0
    assert dispatcher.result().success_count == 3


def test_submit_blocks_at_concurrency_limit():
    client = _ManualClient()
    dispatcher = BulkDispatcher(client, concurrent_requests=1)
    dispatcher.submit(_batch(1))

    second = threading.Thread(target=dispatcher.submit, args=(_batch(2),))
    second.start()
    time.sleep(0.1)
    assert second.is_alive()
    assert len(client.requests) == 1

    client.succeed(0)
    second.join(2.0)
    assert not second.is_alive()
    assert len(client.requests) == 2
    client.succeed(1)
    assert dispatcher.pending == 0


def test_partial_failure_is_reported_per_item():
    client = _ManualClient()
    seen: List[BulkItemFailure] = []
    dispatcher = BulkDispatcher(client, concurrent_requests=1, on_failure=seen.append)

    dispatcher.submit(_batch(1, 3))
    client.succeed(0, failed_positions=(1,))

    result = dispatcher.close()
    assert result.success_count == 2
    assert result.error_count == 1
    assert result.errors[0].position == 1
    assert result.errors[0].record == json.dumps({"n": 1})
    assert seen == result.errors
    assert dispatcher.pending == 0


def test_transport_failure_marks_every_item_failed():
    client = _ManualClient()
    dispatcher = BulkDispatcher(client, concurrent_requests=1)

    dispatcher.submit(_batch(1, 4))
    client.fail(0, EngineConnectionError("connection refused"))

    result = dispatcher.close()
    assert result.success_count == 0
    assert result.error_count == 4
    assert all("EngineConnectionError" in f.reason for f in result.errors)
    assert dispatcher.pending == 0


def test_bulk_raising_on_submit_propagates_and_releases_pending():
    client = _ManualClient(fail_on_submit=EngineConnectionError("unreachable"))
    dispatcher = BulkDispatcher(client, concurrent_requests=2)

    with pytest.raises(EngineConnectionError):
        dispatcher.submit(_batch(1, 2))

    assert dispatcher.pending == 0
    assert dispatcher.in_flight == 0
    assert dispatcher.result().error_count == 2


def test_close_waits_for_outstanding_batches():
    client = _ManualClient()
    dispatcher = BulkDispatcher(client, concurrent_requests=5, release_client=True)
    dispatcher.submit(_batch(1))
    dispatcher.submit(_batch(2))

    results = []
    closer = threading.Thread(target=lambda: results.append(dispatcher.close()))
    closer.start()
    assert _wait_until(lambda: dispatcher.state is DispatcherState.DRAINING)
    time.sleep(0.05)
    assert closer.is_alive()
    assert not client.closed

    client.succeed(1)
    client.succeed(0)
    closer.join(2.0)

    assert not closer.is_alive()
    assert results[0].success_count == 6
    assert dispatcher.state is DispatcherState.CLOSED
    assert dispatcher.pending == 0
    assert dispatcher.in_flight == 0
    assert client.closed


def test_submit_after_close_always_fails():
    client = _ManualClient()
    dispatcher = BulkDispatcher(client)
    dispatcher.close()

    for i in range(3):
        with pytest.raises(StateError):
            dispatcher.submit(_batch(i))
    assert client.requests == []


def test_close_twice_fails():
    dispatcher = BulkDispatcher(_ManualClient())
    dispatcher.close()
    with pytest.raises(StateError):
        dispatcher.close()


def test_client_is_kept_open_unless_owned():
    client = _ManualClient()
    BulkDispatcher(client).close()
    assert not client.closed


def test_drain_timeout():
    client = _ManualClient()
    dispatcher = BulkDispatcher(client)
    dispatcher.submit(_batch(1))

    with pytest.raises(TimeoutError):
        dispatcher.drain(timeout=0.05)

    client.succeed(0)
    dispatcher.drain(timeout=1.0)


def test_synchronous_mode_waits_for_each_batch(engine):
    dispatcher = BulkDispatcher(engine, concurrent_requests=0)

    dispatcher.submit(_batch(1, 5))

    assert dispatcher.pending == 0
    assert dispatcher.in_flight == 0
    assert dispatcher.result().success_count == 5


def test_concurrent_submitters_drain_completely(engine):
    dispatcher = BulkDispatcher(engine, concurrent_requests=3)
    ids = iter(range(1, 1000))
    lock = threading.Lock()

    def produce() -> None:
        for _ in range(10):
            with lock:
                execution_id = next(ids)
            dispatcher.submit(_batch(execution_id, 7))

    workers = [threading.Thread(target=produce) for _ in range(4)]
    for w in workers:
        w.start()
    for w in workers:
        w.join()

    result = dispatcher.close()
    assert result.success_count == 4 * 10 * 7
    assert result.error_count == 0
    assert dispatcher.pending == 0


def test_batches_from_separate_batchers_share_execution_ids():
    client = _ManualClient()
    dispatcher = BulkDispatcher(client, concurrent_requests=2)

    dispatcher.submit(_batch(1, 2))
    dispatcher.submit(_batch(1, 3))
    assert dispatcher.in_flight == 2
    assert dispatcher.pending == 5

    client.succeed(1)
    assert dispatcher.in_flight == 1
    assert dispatcher.pending == 2
    client.succeed(0)

    assert dispatcher.close().success_count == 5


def test_same_batch_cannot_be_in_flight_twice():
    client = _ManualClient()
    dispatcher = BulkDispatcher(client, concurrent_requests=2)
    batch = _batch(1)

    dispatcher.submit(batch)
    with pytest.raises(StateError):
        dispatcher.submit(batch)
    assert dispatcher.pending == 3
