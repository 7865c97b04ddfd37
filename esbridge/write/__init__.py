from .batcher import BulkBatcher
from .dispatcher import BulkDispatcher, DispatcherState

__all__ = ["BulkBatcher", "BulkDispatcher", "DispatcherState"]
