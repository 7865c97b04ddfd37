# esbridge/core/models.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from .errors import QueryError

Record = Union[str, bytes]

MATCH_ALL: Dict[str, Any] = {"query": {"match_all": {}}}


def record_size(record: Record) -> int:
    """Size in bytes of a record as it goes over the wire."""
    if isinstance(record, bytes):
        return len(record)
    return len(record.encode("utf-8"))


@dataclass(frozen=True)
class IndexTarget:
    """Where a record is written."""

    index: str
    doc_type: Optional[str] = None
    doc_id: Optional[str] = None


@dataclass(frozen=True)
class Query:
    """
    Serialized query expression plus an optional field filter.
    `expression` is JSON text; None means match_all. A bare clause such as
    {"match": {...}} is treated as the "query" part of a search body.
    """

    expression: Optional[str] = None
    fields: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, body: Dict[str, Any], fields: Sequence[str] = ()) -> "Query":
        return cls(expression=json.dumps(body), fields=tuple(fields))

    def to_body(self) -> Dict[str, Any]:
        """Parse the expression into a search body. Raises QueryError when malformed."""
        if not self.expression or not self.expression.strip():
            return {"query": dict(MATCH_ALL["query"])}
        try:
            parsed = json.loads(self.expression)
        except ValueError as exc:
            raise QueryError(f"query is not valid JSON: {exc}") from exc
        if not isinstance(parsed, dict) or not parsed:
            raise QueryError("query must be a non-empty JSON object")
        if "query" not in parsed:
            parsed = {"query": parsed}
        if not isinstance(parsed["query"], dict):
            raise QueryError("'query' must be a JSON object")
        return parsed


@dataclass(frozen=True)
class SliceSpec:
    """One server-side slice out of `max` of a sliced scroll."""

    id: int
    max: int


@dataclass(frozen=True)
class Partition:
    """Unit of parallel read work. Owned by exactly one ScrollIterator."""

    query: Query
    index: str
    shard: Optional[int] = None
    slice: Optional[SliceSpec] = None
    estimated_count: int = 0

    def describe(self) -> str:
        if self.shard is not None:
            return f"{self.index}[shard={self.shard}]"
        if self.slice is not None:
            return f"{self.index}[slice={self.slice.id}/{self.slice.max}]"
        return f"{self.index}[all]"


@dataclass(frozen=True)
class BulkItem:
    record: Record
    target: IndexTarget


@dataclass(frozen=True)
class Batch:
    """Sealed, immutable group of bulk items."""

    execution_id: int
    items: Tuple[BulkItem, ...]

    def __len__(self) -> int:
        return len(self.items)

    @property
    def size_bytes(self) -> int:
        return sum(record_size(item.record) for item in self.items)


@dataclass(frozen=True)
class SearchPage:
    documents: Tuple[Record, ...]
    cursor: Optional[str]
    total: int


@dataclass(frozen=True)
class ScrollPage:
    documents: Tuple[Record, ...]
    has_more: bool
    # engines may rotate the scroll id between pages
    cursor: Optional[str] = None


@dataclass(frozen=True)
class BulkItemFailure:
    """One item the engine did not acknowledge."""

    position: int
    target: IndexTarget
    record: Record
    status: int
    reason: str


@dataclass(frozen=True)
class BulkResponse:
    acked: int
    failures: Tuple[BulkItemFailure, ...] = field(default_factory=tuple)


__all__ = [
    "Record",
    "record_size",
    "IndexTarget",
    "Query",
    "SliceSpec",
    "Partition",
    "BulkItem",
    "Batch",
    "SearchPage",
    "ScrollPage",
    "BulkItemFailure",
    "BulkResponse",
]
