from __future__ import annotations

import pytest

from esbridge.clients import create_client
from esbridge.clients.elasticsearch import ElasticsearchEngineClient
from esbridge.clients.memory import InMemoryEngineClient
from esbridge.core.config import ConnectionConfig
from esbridge.core.registry import ClientRegistry, get_registry


def test_builtin_clients_are_registered():
    registry = get_registry()
    assert registry.get("elasticsearch") is ElasticsearchEngineClient
    assert registry.get("MEMORY") is InMemoryEngineClient
    assert {"elasticsearch", "memory"} <= set(registry.names())


def test_register_conflict_and_unknown_name():
    registry = ClientRegistry()
    registry.register("engine", InMemoryEngineClient)
    registry.register("engine", InMemoryEngineClient)

    with pytest.raises(ValueError):
        registry.register("Engine", ElasticsearchEngineClient)
    with pytest.raises(KeyError):
        registry.create("solr")


def test_create_client_from_connection_config():
    client = create_client(ConnectionConfig(engine="memory", index="beam"))
    try:
        assert isinstance(client, InMemoryEngineClient)
    finally:
        client.close()
