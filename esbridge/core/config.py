# esbridge/core/config.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

SPLIT_STRATEGIES = ("single", "slices")


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _to_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]


def _to_seconds(value: Any) -> Optional[float]:
    return None if value is None else float(value)


@dataclass
class ConnectionConfig:
    """Where the engine lives and which index/type records go to."""

    address: str = "http://localhost:9200"
    index: str = "default"
    doc_type: Optional[str] = None
    engine: str = "elasticsearch"  # registry name of the EngineClient class
    refresh: bool = False  # refresh the index after every bulk request

    @property
    def hosts(self) -> List[str]:
        return [h.strip() for h in self.address.split(",") if h.strip()]


@dataclass
class ReadConfig:
    """Bounded-read knobs."""

    query: Optional[str] = None  # serialized JSON query, None = match_all
    fields: List[str] = field(default_factory=list)
    page_size: int = 100  # hits per scroll page
    scroll_keep_alive: str = "1m"
    parallelism: int = 1  # desired number of partitions
    # what to do when the index has fewer shards than `parallelism`
    split_strategy: str = "single"


@dataclass
class WriteConfig:
    """Bulk-write knobs."""

    batch_size: int = 1000  # max actions per bulk request
    max_bulk_request_bytes: int = 5 * 1024 * 1024
    flush_interval: Optional[float] = None  # seconds, None disables timed flushes
    concurrent_requests: int = 1  # 0 = synchronous bulk requests
    raise_on_failure: bool = True


@dataclass
class ThreadingConfig:
    """Parallelism knobs for the runner."""

    workers: int = 8  # threads reading partitions


# option name -> (section, attribute, converter)
_OPTIONS = {
    "address": ("connection", "address", str),
    "index": ("connection", "index", str),
    "type": ("connection", "doc_type", str),
    "engine": ("connection", "engine", str),
    "refresh": ("connection", "refresh", _to_bool),
    "query": ("read", "query", str),
    "fields": ("read", "fields", _to_list),
    "pageSize": ("read", "page_size", int),
    "scrollKeepAlive": ("read", "scroll_keep_alive", str),
    "parallelism": ("read", "parallelism", int),
    "splitStrategy": ("read", "split_strategy", str),
    "batchSize": ("write", "batch_size", int),
    "maxBulkRequestBytes": ("write", "max_bulk_request_bytes", int),
    "flushInterval": ("write", "flush_interval", _to_seconds),
    "concurrentRequests": ("write", "concurrent_requests", int),
    "raiseOnFailure": ("write", "raise_on_failure", _to_bool),
    "workers": ("threading", "workers", int),
}


@dataclass
class JobConfig:
    """
    Everything the connector stages and the runner understand.
    Build it directly or from pipeline options with JobConfig.from_options().
    """

    name: str = "job"
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    read: ReadConfig = field(default_factory=ReadConfig)
    write: WriteConfig = field(default_factory=WriteConfig)
    threading: ThreadingConfig = field(default_factory=ThreadingConfig)
    # Free-form: options not recognized above are kept here untouched
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_options(cls, options: Dict[str, Any], name: str = "job") -> "JobConfig":
        cfg = cls(name=name)
        for key, value in options.items():
            if key not in _OPTIONS:
                cfg.options[key] = value
                continue
            section, attr, convert = _OPTIONS[key]
            try:
                setattr(getattr(cfg, section), attr, convert(value))
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Invalid value for option '{key}': {value!r}") from exc
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if not self.connection.hosts:
            raise ValueError("address must name at least one host")
        if not self.connection.index:
            raise ValueError("index must not be empty")
        for name, value in (
            ("pageSize", self.read.page_size),
            ("parallelism", self.read.parallelism),
            ("batchSize", self.write.batch_size),
            ("maxBulkRequestBytes", self.write.max_bulk_request_bytes),
            ("workers", self.threading.workers),
        ):
            if value < 1:
                raise ValueError(f"{name} must be >= 1, got {value}")
        if self.write.concurrent_requests < 0:
            raise ValueError("concurrentRequests must be >= 0")
        if self.write.flush_interval is not None and self.write.flush_interval <= 0:
            raise ValueError("flushInterval must be positive")
        if self.read.split_strategy not in SPLIT_STRATEGIES:
            raise ValueError(
                f"splitStrategy must be one of {SPLIT_STRATEGIES}, got '{self.read.split_strategy}'"
            )

