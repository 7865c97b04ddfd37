# esbridge/core/errors.py
from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .models import BulkItemFailure


class EsbridgeError(Exception):
    """Base class for every error raised by the connector."""


class EngineConnectionError(EsbridgeError, ConnectionError):
    """The engine could not be reached. Fatal to the current operation, never retried."""


class QueryError(EsbridgeError):
    """The engine rejected the query (malformed expression, unknown index, ...)."""


class EngineError(EsbridgeError):
    """Any other rejection reported by the engine."""


class StateError(EsbridgeError):
    """Operation invoked in the wrong lifecycle state (after close, after release, ...)."""


class PartialBulkFailure(EsbridgeError):
    """
    Some bulk items were rejected by the engine.
    `failures` holds one BulkItemFailure per rejected item.
    """

    def __init__(self, failures: Sequence["BulkItemFailure"]) -> None:
        self.failures = list(failures)
        reasons = sorted({f.reason for f in self.failures})
        super().__init__(
            f"{len(self.failures)} bulk item(s) failed: {'; '.join(reasons[:3])}"
            + (" ..." if len(reasons) > 3 else "")
        )


__all__ = [
    "EsbridgeError",
    "EngineConnectionError",
    "QueryError",
    "EngineError",
    "StateError",
    "PartialBulkFailure",
]
