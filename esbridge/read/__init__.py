from .planner import ReadPlanner
from .scroll import ScrollIterator

__all__ = ["ReadPlanner", "ScrollIterator"]
