# esbridge/clients/memory.py
from __future__ import annotations

import json
import threading
import uuid
import zlib
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from ..core.client_base import DEFAULT_KEEP_ALIVE, EngineClient
from ..core.errors import QueryError, StateError
from ..core.models import (
    Batch,
    BulkItemFailure,
    BulkResponse,
    Query,
    Record,
    ScrollPage,
    SearchPage,
    SliceSpec,
)
from ..core.registry import register_client

# (original text, parsed source)
_Doc = Tuple[str, Dict[str, Any]]


@register_client("memory")
class InMemoryEngineClient(EngineClient):
    """
    Process-local engine with the same contract as the Elasticsearch client.

    Documents are routed to shards by a CRC32 of their id, scroll cursors are
    real server-side state that must be released, and bulk() completes on a
    worker pool. Supports match_all, match, term, terms, range, query_string
    and bool queries; anything else is rejected with QueryError.
    """

    def __init__(
        self,
        hosts: Optional[List[str]] = None,
        *,
        number_of_shards: int = 5,
        bulk_workers: int = 4,
        refresh: bool = False,  # writes are always visible immediately
    ) -> None:
        if number_of_shards < 1:
            raise ValueError("number_of_shards must be >= 1")
        self.number_of_shards = number_of_shards
        self._lock = threading.RLock()
        self._indices: Dict[str, Dict[str, _Doc]] = {}
        self._cursors: Dict[str, List[Record]] = {}
        self._page_sizes: Dict[str, int] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, bulk_workers), thread_name_prefix="esbridge-memory-bulk"
        )
        self._closed = False
        self.released_cursors: List[str] = []
        self.bulk_requests = 0

    # ---------------------- read side ----------------------

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
        hits = self._matching(query, index, shard, slice)
        cursor = uuid.uuid4().hex
        with self._lock:
            self._cursors[cursor] = hits[page_size:]
            self._page_sizes[cursor] = page_size
        return SearchPage(documents=tuple(hits[:page_size]), cursor=cursor, total=len(hits))

    def scroll_next(self, cursor: str, *, keep_alive: str = DEFAULT_KEEP_ALIVE) -> ScrollPage:
        with self._lock:
            self._check_open()
            if cursor not in self._cursors:
                raise StateError(f"No search context found for cursor [{cursor}]")
            remaining = self._cursors[cursor]
            size = self._page_sizes[cursor]
            page, self._cursors[cursor] = remaining[:size], remaining[size:]
            has_more = bool(self._cursors[cursor])
        return ScrollPage(documents=tuple(page), has_more=has_more, cursor=cursor)

    def release_cursor(self, cursor: str) -> None:
        with self._lock:
            self.released_cursors.append(cursor)
            self._cursors.pop(cursor, None)
            self._page_sizes.pop(cursor, None)

    def shard_count(self, index: str) -> int:
        with self._lock:
            self._check_open()
            self._docs(index)
            return self.number_of_shards

    def count(self, query: Query, index: str, *, shard: Optional[int] = None) -> int:
        return len(self._matching(query, index, shard, None))

    @property
    def open_cursors(self) -> int:
        with self._lock:
            return len(self._cursors)

    # ---------------------- write side ----------------------

    def bulk(self, batch: Batch) -> "Future[BulkResponse]":
        with self._lock:
            self._check_open()
            self.bulk_requests += 1
            return self._executor.submit(self._apply_bulk, batch)

    def _apply_bulk(self, batch: Batch) -> BulkResponse:
        failures: List[BulkItemFailure] = []
        with self._lock:
            for position, item in enumerate(batch.items):
                text = item.record.decode("utf-8") if isinstance(item.record, bytes) else item.record
                reason = _parse_failure(text)
                if reason is not None:
                    failures.append(
                        BulkItemFailure(
                            position=position,
                            target=item.target,
                            record=item.record,
                            status=400,
                            reason=reason,
                        )
                    )
                    continue
                doc_id = item.target.doc_id or uuid.uuid4().hex
                self._indices.setdefault(item.target.index, {})[doc_id] = (text, json.loads(text))
        return BulkResponse(acked=len(batch) - len(failures), failures=tuple(failures))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True)

    # ---------------------- matching ----------------------

    def _docs(self, index: str) -> Dict[str, _Doc]:
        docs = self._indices.get(index)
        if docs is None:
            raise QueryError(f"no such index [{index}]")
        return docs

    def _matching(
        self,
        query: Query,
        index: str,
        shard: Optional[int],
        slice: Optional[SliceSpec],
    ) -> List[Record]:
        body = query.to_body()
        _validate(body["query"])
        if shard is not None and not 0 <= shard < self.number_of_shards:
            raise QueryError(f"shard [{shard}] does not exist in index [{index}]")
        with self._lock:
            self._check_open()
            docs = list(self._docs(index).items())
        hits: List[Record] = []
        for doc_id, (text, source) in docs:
            bucket = zlib.crc32(doc_id.encode("utf-8"))
            if shard is not None and bucket % self.number_of_shards != shard:
                continue
            if slice is not None and bucket % slice.max != slice.id:
                continue
            if not _matches(body["query"], source):
                continue
            if query.fields:
                hits.append(json.dumps({f: source[f] for f in query.fields if f in source}))
            else:
                hits.append(text)
        return hits

    def _check_open(self) -> None:
        if self._closed:
            raise StateError("engine client is closed")


def _parse_failure(text: str) -> Optional[str]:
    try:
        source = json.loads(text)
    except ValueError as exc:
        return f"mapper_parsing_exception: {exc}"
    if not isinstance(source, dict):
        return "mapper_parsing_exception: document must be a JSON object"
    return None


def _field(source: Dict[str, Any], path: str) -> Any:
    value: Any = source
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _tokens(value: Any) -> List[str]:
    return str(value).lower().split() if value is not None else []


def _single(clause: Dict[str, Any], kind: str) -> Tuple[str, Any]:
    if not isinstance(clause, dict) or len(clause) != 1:
        raise QueryError(f"[{kind}] query expects exactly one field")
    return next(iter(clause.items()))


def _validate(clause: Any) -> None:
    """Reject malformed or unsupported clauses whether or not any document is checked."""
    if not isinstance(clause, dict) or len(clause) != 1:
        raise QueryError(f"query clause must have exactly one type, got {clause!r}")
    kind, spec = next(iter(clause.items()))
    if kind in ("match_all", "match_none"):
        return
    if kind in ("match", "term", "terms", "range"):
        _single(spec, kind)
        return
    if kind == "query_string":
        if not isinstance(spec, dict) or "query" not in spec:
            raise QueryError("[query_string] requires a 'query'")
        return
    if kind == "bool":
        if not isinstance(spec, dict):
            raise QueryError("[bool] query expects an object")
        for occur in ("must", "filter", "should", "must_not"):
            for sub in _as_list(spec.get(occur)):
                _validate(sub)
        return
    raise QueryError(f"unknown query [{kind}]")


def _matches(clause: Any, source: Dict[str, Any]) -> bool:
    if not isinstance(clause, dict) or len(clause) != 1:
        raise QueryError(f"query clause must have exactly one type, got {clause!r}")
    kind, spec = next(iter(clause.items()))

    if kind == "match_all":
        return True
    if kind == "match_none":
        return False
    if kind == "match":
        field, value = _single(spec, kind)
        if isinstance(value, dict):
            value = value.get("query")
        wanted = set(_tokens(value))
        return bool(wanted & set(_tokens(_field(source, field))))
    if kind == "term":
        field, value = _single(spec, kind)
        if isinstance(value, dict):
            value = value.get("value")
        return _field(source, field) == value
    if kind == "terms":
        field, values = _single(spec, kind)
        return _field(source, field) in values
    if kind == "range":
        field, bounds = _single(spec, kind)
        value = _field(source, field)
        if value is None:
            return False
        checks = {
            "gt": lambda b: value > b,
            "gte": lambda b: value >= b,
            "lt": lambda b: value < b,
            "lte": lambda b: value <= b,
        }
        return all(checks[op](bound) for op, bound in bounds.items() if op in checks)
    if kind == "query_string":
        if not isinstance(spec, dict) or "query" not in spec:
            raise QueryError("[query_string] requires a 'query'")
        fields = spec.get("fields") or ([spec["default_field"]] if "default_field" in spec else None)
        values = [_field(source, f) for f in fields] if fields else list(source.values())
        wanted = set(_tokens(spec["query"]))
        return any(wanted & set(_tokens(v)) for v in values)
    if kind == "bool":
        must = _as_list(spec.get("must")) + _as_list(spec.get("filter"))
        should = _as_list(spec.get("should"))
        must_not = _as_list(spec.get("must_not"))
        if not all(_matches(c, source) for c in must):
            return False
        if any(_matches(c, source) for c in must_not):
            return False
        if should and not must:
            return any(_matches(c, source) for c in should)
        return True
    raise QueryError(f"unknown query [{kind}]")


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


__all__ = ["InMemoryEngineClient"]
