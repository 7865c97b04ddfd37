# esbridge/core/base_stage.py
from __future__ import annotations

from abc import ABC
from types import TracebackType
from typing import Optional, Type, TypeVar

S = TypeVar("S", bound="Stage")


class Stage(ABC):  # noqa: B024
    """
    Minimal lifecycle base for connector stages and engine clients.
    Subclasses override open()/close() if they hold resources (clients, cursors, threads).
    A stage is also a context manager so the resource is released on every exit path.
    """

    def open(self) -> None:  # noqa: B027
        """Per-run init. Called once before work starts."""
        pass

    def close(self) -> None:  # noqa: B027
        """Per-run teardown. Called once after work finishes (success or failure)."""
        pass

    def __enter__(self: S) -> S:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()


__all__ = ["Stage"]
