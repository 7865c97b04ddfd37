# esbridge/__init__.py
from __future__ import annotations

from .clients import ElasticsearchEngineClient, InMemoryEngineClient, create_client
from .core.config import JobConfig
from .core.errors import (
    EngineConnectionError,
    EngineError,
    EsbridgeError,
    PartialBulkFailure,
    QueryError,
    StateError,
)
from .core.job_runner import JobRunner
from .core.loader_base import LoadResult
from .core.models import IndexTarget, Partition, Query
from .extractors.elasticsearch import ElasticsearchExtractor
from .loaders.elasticsearch import ElasticsearchLoader

__version__ = "0.1.0"

__all__ = [
    "ElasticsearchEngineClient",
    "InMemoryEngineClient",
    "create_client",
    "JobConfig",
    "JobRunner",
    "LoadResult",
    "IndexTarget",
    "Partition",
    "Query",
    "ElasticsearchExtractor",
    "ElasticsearchLoader",
    "EsbridgeError",
    "EngineConnectionError",
    "EngineError",
    "PartialBulkFailure",
    "QueryError",
    "StateError",
]
