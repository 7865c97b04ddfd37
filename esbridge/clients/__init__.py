# esbridge/clients/__init__.py
from __future__ import annotations

from ..core.client_base import EngineClient
from ..core.config import ConnectionConfig
from ..core.registry import get_registry
from .elasticsearch import ElasticsearchEngineClient
from .memory import InMemoryEngineClient


def create_client(connection: ConnectionConfig) -> EngineClient:
    """Build the engine client named by `connection.engine`."""
    return get_registry().create(
        connection.engine, hosts=connection.hosts, refresh=connection.refresh
    )


__all__ = ["create_client", "ElasticsearchEngineClient", "InMemoryEngineClient"]
