"""statetracker: path-level dependency tracking over plain Python data trees."""

from importlib.metadata import version as _version

__version__ = _version("statetracker")

from statetracker._tracking import (
    KEYS,
    MISSING,
    HydrationError,
    StateTrackerError,
    configure,
    has_tracker,
    raw,
)
from statetracker.graph import PathGraph
from statetracker.tracker import Tracker
from statetracker.observable import TrackedDict, TrackedList, produce, peek
from statetracker.equality import EqualityToken
from statetracker.node import TrackerNode
from statetracker.context import TrackerContext
from statetracker.container import Container
from statetracker.action import tracking, tracked, perform, set_value
from statetracker.reaction import Reaction, observer
# textual NOT auto-imported — opt-in only

__all__ = [
    "KEYS",
    "MISSING",
    "HydrationError",
    "StateTrackerError",
    "configure",
    "has_tracker",
    "raw",
    "PathGraph",
    "Tracker",
    "TrackedDict",
    "TrackedList",
    "produce",
    "peek",
    "EqualityToken",
    "TrackerNode",
    "TrackerContext",
    "Container",
    "tracking",
    "tracked",
    "perform",
    "set_value",
    "Reaction",
    "observer",
]
