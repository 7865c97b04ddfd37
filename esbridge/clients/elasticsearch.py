# esbridge/clients/elasticsearch.py
from __future__ import annotations

import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Iterator, List, Optional

from elasticsearch import ApiError, Elasticsearch, NotFoundError, TransportError
from elasticsearch import ConnectionError as ESConnectionError

from ..core.client_base import DEFAULT_KEEP_ALIVE, EngineClient
from ..core.errors import EngineConnectionError, EngineError, QueryError, StateError
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

logger = logging.getLogger(__name__)


@register_client("elasticsearch")
class ElasticsearchEngineClient(EngineClient):
    """
    EngineClient backed by the official `elasticsearch` client.

    Reads use the scroll API; shard partitions are routed with
    preference=_shards:N and slice partitions with a sliced scroll.
    Bulk requests run on a small thread pool so completions arrive off the
    submitting thread. Documents come back as their `_source` serialized to JSON.
    """

    def __init__(
        self,
        hosts: Optional[List[str]] = None,
        *,
        client: Optional[Elasticsearch] = None,
        bulk_workers: int = 4,
        refresh: bool = False,
        request_timeout: float = 60.0,
    ) -> None:
        if client is None:
            client = Elasticsearch(hosts or ["http://localhost:9200"], request_timeout=request_timeout)
        self._client = client
        self._refresh = refresh
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, bulk_workers), thread_name_prefix="esbridge-bulk"
        )
        self._warned_types = False

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
        body = query.to_body()
        request: Dict[str, Any] = {
            "index": index,
            "query": body["query"],
            "size": page_size,
            "scroll": keep_alive,
        }
        if "sort" in body:
            request["sort"] = body["sort"]
        if query.fields:
            request["source_includes"] = list(query.fields)
        if shard is not None:
            request["preference"] = f"_shards:{shard}"
        if slice is not None:
            request["slice"] = {"id": slice.id, "max": slice.max}

        try:
            response = _body(self._client.search(**request))
        except ESConnectionError as exc:
            raise EngineConnectionError(f"cannot reach engine to search '{index}': {exc}") from exc
        except ApiError as exc:
            raise _query_or_engine_error(exc, f"search on '{index}' rejected") from exc

        hits = response["hits"]
        total = hits.get("total", 0)
        if isinstance(total, dict):
            total = total.get("value", 0)
        return SearchPage(
            documents=tuple(_sources(hits["hits"])),
            cursor=response.get("_scroll_id"),
            total=int(total),
        )

    def scroll_next(self, cursor: str, *, keep_alive: str = DEFAULT_KEEP_ALIVE) -> ScrollPage:
        try:
            response = _body(self._client.scroll(scroll_id=cursor, scroll=keep_alive))
        except ESConnectionError as exc:
            raise EngineConnectionError(f"cannot reach engine to advance scroll: {exc}") from exc
        except NotFoundError as exc:
            raise StateError(f"scroll cursor expired or released: {exc}") from exc
        except ApiError as exc:
            raise EngineError(f"scroll rejected: {exc}") from exc

        documents = tuple(_sources(response["hits"]["hits"]))
        return ScrollPage(
            documents=documents,
            has_more=bool(documents),
            cursor=response.get("_scroll_id", cursor),
        )

    def release_cursor(self, cursor: str) -> None:
        try:
            self._client.clear_scroll(scroll_id=cursor)
        except NotFoundError:
            logger.debug("scroll cursor already gone on release")
        except ESConnectionError as exc:
            raise EngineConnectionError(f"cannot reach engine to release scroll: {exc}") from exc
        except ApiError as exc:
            raise EngineError(f"scroll release rejected: {exc}") from exc

    def shard_count(self, index: str) -> int:
        try:
            response = _body(self._client.search_shards(index=index))
        except ESConnectionError as exc:
            raise EngineConnectionError(f"cannot reach engine for shards of '{index}': {exc}") from exc
        except ApiError as exc:
            raise _query_or_engine_error(exc, f"shard lookup on '{index}' rejected") from exc
        # one entry per shard, each listing its copies
        return len(response["shards"])

    def count(self, query: Query, index: str, *, shard: Optional[int] = None) -> int:
        request: Dict[str, Any] = {"index": index, "query": query.to_body()["query"]}
        if shard is not None:
            request["preference"] = f"_shards:{shard}"
        try:
            response = _body(self._client.count(**request))
        except ESConnectionError as exc:
            raise EngineConnectionError(f"cannot reach engine to count '{index}': {exc}") from exc
        except ApiError as exc:
            raise _query_or_engine_error(exc, f"count on '{index}' rejected") from exc
        return int(response["count"])

    # ---------------------- write side ----------------------

    def bulk(self, batch: Batch) -> "Future[BulkResponse]":
        return self._executor.submit(self._send_bulk, batch)

    def _send_bulk(self, batch: Batch) -> BulkResponse:
        operations: List[Any] = []
        failures: List[BulkItemFailure] = []
        # positions in the batch of the actions actually sent, in request order
        sent: List[int] = []
        for position, item in enumerate(batch.items):
            try:
                source = _ndjson_line(item.record)
            except ValueError as exc:
                failures.append(
                    BulkItemFailure(
                        position=position,
                        target=item.target,
                        record=item.record,
                        status=400,
                        reason=f"mapper_parsing_exception: multi-line record is not valid JSON: {exc}",
                    )
                )
                continue
            action: Dict[str, Any] = {"_index": item.target.index}
            if item.target.doc_id is not None:
                action["_id"] = item.target.doc_id
            if item.target.doc_type and not self._warned_types:
                self._warned_types = True
                logger.warning(
                    "document types are not supported by this engine; ignoring '%s'",
                    item.target.doc_type,
                )
            operations.append({"index": action})
            operations.append(source)
            sent.append(position)

        if not sent:
            return BulkResponse(acked=0, failures=tuple(failures))

        try:
            response = _body(self._client.bulk(operations=operations, refresh=self._refresh))
        except ESConnectionError as exc:
            raise EngineConnectionError(f"cannot reach engine for bulk {batch.execution_id}: {exc}") from exc
        except (ApiError, TransportError) as exc:
            raise EngineError(f"bulk {batch.execution_id} rejected: {exc}") from exc

        if response.get("errors"):
            for position, entry in zip(sent, response["items"]):
                result = next(iter(entry.values()))
                error = result.get("error")
                if not error:
                    continue
                item = batch.items[position]
                failures.append(
                    BulkItemFailure(
                        position=position,
                        target=item.target,
                        record=item.record,
                        status=int(result.get("status", 0)),
                        reason=_reason(error),
                    )
                )
        failures.sort(key=lambda f: f.position)
        return BulkResponse(acked=len(batch) - len(failures), failures=tuple(failures))

    def close(self) -> None:
        """Wait for outstanding bulk requests, then close the transport."""
        self._executor.shutdown(wait=True)
        self._client.close()


def _body(response: Any) -> Dict[str, Any]:
    # ObjectApiResponse keeps the decoded JSON in .body
    return getattr(response, "body", response)


def _ndjson_line(record: Record) -> Record:
    """Return the record as one bulk body line, re-serializing multi-line JSON compactly."""
    breaks = (b"\n", b"\r") if isinstance(record, bytes) else ("\n", "\r")
    if not any(b in record for b in breaks):  # type: ignore[operator]
        return record
    return json.dumps(json.loads(record), ensure_ascii=False, separators=(",", ":"))


def _sources(hits: List[Dict[str, Any]]) -> Iterator[Record]:
    for hit in hits:
        # Each hit is a dict like {"_id": "...", "_source": {...}}
        yield json.dumps(hit.get("_source", {}), ensure_ascii=False)


def _reason(error: Any) -> str:
    if isinstance(error, dict):
        return f"{error.get('type', 'error')}: {error.get('reason', '')}".strip()
    return str(error)


def _query_or_engine_error(exc: ApiError, message: str) -> Exception:
    if exc.meta.status in (400, 404):
        return QueryError(f"{message}: {exc}")
    return EngineError(f"{message}: {exc}")


__all__ = ["ElasticsearchEngineClient"]
