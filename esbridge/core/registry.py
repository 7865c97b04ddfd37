# esbridge/core/registry.py
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from .client_base import EngineClient

C = TypeVar("C", bound=Type[EngineClient])


class ClientRegistry:
    """
    Name -> EngineClient class registry, so configuration can pick an engine.
    Example:
        @register_client("elasticsearch")
        class ElasticsearchEngineClient(EngineClient): ...
    """

    def __init__(self) -> None:
        self._items: Dict[str, Type[EngineClient]] = {}

    def register(self, name: str, cls: Type[EngineClient]) -> None:
        key = name.lower()
        if key in self._items and self._items[key] is not cls:
            raise ValueError(f"Registry already has a different client for '{name}'")
        self._items[key] = cls

    def get(self, name: str) -> Optional[Type[EngineClient]]:
        return self._items.get(name.lower())

    def names(self) -> List[str]:
        return sorted(self._items)

    def create(self, name: str, *args: Any, **kwargs: Any) -> EngineClient:
        cls = self.get(name)
        if not cls:
            raise KeyError(f"Unknown engine '{name}' (known: {', '.join(self.names()) or 'none'})")
        return cls(*args, **kwargs)


# Global registry instance and decorator shortcut
_global_registry = ClientRegistry()


def register_client(name: str) -> Callable[[C], C]:
    def deco(cls: C) -> C:
        _global_registry.register(name, cls)
        return cls

    return deco


def get_registry() -> ClientRegistry:
    return _global_registry
