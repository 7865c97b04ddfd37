from __future__ import annotations

import json

import pytest

from esbridge.clients.memory import InMemoryEngineClient
from esbridge.core.errors import EngineConnectionError, QueryError, StateError
from esbridge.core.models import Batch, BulkItem, IndexTarget, Partition, Query
from esbridge.read.scroll import ScrollIterator


def _index(engine: InMemoryEngineClient, n: int, index: str = "docs") -> Partition:
    items = tuple(
        BulkItem(record=json.dumps({"id": i}), target=IndexTarget(index, doc_id=f"doc-{i:04d}"))
        for i in range(n)
    )
    engine.bulk(Batch(execution_id=0, items=items)).result()
    return Partition(query=Query(), index=index)


class _UnreachableClient(InMemoryEngineClient):
    def search(self, *args, **kwargs):
        raise EngineConnectionError("connection refused")


def test_reads_partition_in_scroll_order_and_releases_once(engine):
    partition = _index(engine, 100)

    records = list(ScrollIterator(engine, partition, page_size=7).iter_records())

    assert [json.loads(r)["id"] for r in records] == list(range(100))
    assert len(engine.released_cursors) == 1
    assert engine.open_cursors == 0


def test_advance_signals_end_of_data(engine):
    partition = _index(engine, 25)
    scroll = ScrollIterator(engine, partition, page_size=10)

    first = scroll.open()
    assert (len(first.documents), first.total) == (10, 25)
    assert len(scroll.advance().documents) == 10
    last = scroll.advance()
    assert len(last.documents) == 5
    assert last.has_more is False
    assert scroll.advance() is None

    scroll.close()
    scroll.close()
    assert len(engine.released_cursors) == 1


def test_abandoned_iteration_releases_cursor_exactly_once(engine):
    partition = _index(engine, 50)
    scroll = ScrollIterator(engine, partition, page_size=10)

    records = scroll.iter_records()
    for _ in range(3):
        next(records)
    records.close()
    scroll.close()

    assert scroll.released
    assert len(engine.released_cursors) == 1
    assert engine.open_cursors == 0


def test_context_manager_releases_on_early_exit(engine):
    partition = _index(engine, 50)

    with ScrollIterator(engine, partition, page_size=10) as scroll:
        for _ in scroll.iter_records():
            break

    assert len(engine.released_cursors) == 1


def test_error_in_consumer_still_releases(engine):
    partition = _index(engine, 50)

    with pytest.raises(RuntimeError):
        with ScrollIterator(engine, partition, page_size=10) as scroll:
            for i, _ in enumerate(scroll.iter_records()):
                if i == 15:
                    raise RuntimeError("consumer failed")

    assert scroll.released
    assert len(engine.released_cursors) == 1


def test_zero_matches_yield_empty_sequence(engine):
    _index(engine, 20)
    query = Query.from_dict({"term": {"id": -1}})

    records = list(ScrollIterator(engine, Partition(query=query, index="docs")).iter_records())

    assert records == []
    assert len(engine.released_cursors) == 1


def test_malformed_query_fails_on_open(engine):
    _index(engine, 20)
    scroll = ScrollIterator(engine, Partition(query=Query('{"match": '), index="docs"))

    with pytest.raises(QueryError):
        scroll.open()

    assert engine.open_cursors == 0
    assert engine.released_cursors == []


def test_unknown_clause_fails_on_empty_shards(engine):
    _index(engine, 1)
    unknown = Query('{"no_such_query": {"field": "x"}}')

    for shard in range(engine.number_of_shards):
        with pytest.raises(QueryError):
            engine.count(unknown, "docs", shard=shard)
        with pytest.raises(QueryError):
            ScrollIterator(engine, Partition(query=unknown, index="docs", shard=shard)).open()
    assert engine.open_cursors == 0


def test_unknown_clause_in_unevaluated_branch_is_rejected(engine):
    _index(engine, 20)
    query = Query('{"bool": {"must_not": {"match_all": {}}, "should": [{"no_such_query": {}}]}}')

    with pytest.raises(QueryError):
        engine.count(query, "docs")


def test_unreachable_engine_fails_on_open():
    client = _UnreachableClient()
    try:
        scroll = ScrollIterator(client, Partition(query=Query(), index="docs"))
        with pytest.raises(EngineConnectionError):
            list(scroll.iter_records())
    finally:
        client.close()


def test_iterator_is_not_restartable(engine):
    partition = _index(engine, 5)
    scroll = ScrollIterator(engine, partition)
    assert len(list(scroll.iter_records())) == 5

    with pytest.raises(StateError):
        list(scroll.iter_records())


def test_cursor_cannot_be_used_after_release(engine):
    partition = _index(engine, 30)
    scroll = ScrollIterator(engine, partition, page_size=10)
    scroll.open()
    scroll.close()

    with pytest.raises(StateError):
        scroll.advance()


def test_open_twice_fails(engine):
    partition = _index(engine, 3)
    scroll = ScrollIterator(engine, partition)
    scroll.open()

    with pytest.raises(StateError):
        scroll.open()
    scroll.close()


def test_field_filter_projects_documents(engine):
    items = tuple(
        BulkItem(record=json.dumps({"id": i, "name": f"n{i}", "extra": True}), target=IndexTarget("docs"))
        for i in range(3)
    )
    engine.bulk(Batch(execution_id=0, items=items)).result()
    partition = Partition(query=Query(fields=("id",)), index="docs")

    records = [json.loads(r) for r in ScrollIterator(engine, partition).iter_records()]

    assert sorted(records, key=lambda r: r["id"]) == [{"id": 0}, {"id": 1}, {"id": 2}]
