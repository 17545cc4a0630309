"""Tracking session manager.

A TrackerContext is shared by every proxy produced from one root state. It
owns the session stack (the record on top receives track() calls), the
generation clock, and the proxy arena.

enter()/leave() must always be paired, even when the computation raises;
use action.tracking() or @tracked to get that for free.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from statetracker import _arena
from statetracker._arena import ProxyArena
from statetracker._tracking import StateTrackerError
from statetracker.node import TrackerNode

if TYPE_CHECKING:
    from statetracker.container import Container

logger = logging.getLogger("statetracker.context")


class TrackerContext:
    """Session stack, generation clock and proxy caches for one state tree."""

    def __init__(self, container: Container | None = None, **node_options: Any) -> None:
        self.container = container
        self.arena = ProxyArena()
        self.time = 0
        self._stack: list[TrackerNode] = []
        # Defaults for records created by enter().
        self._node_options = node_options

    @property
    def current(self) -> TrackerNode | None:
        return self._stack[-1] if self._stack else None

    def get_current(self) -> TrackerNode | None:
        return self.current

    @property
    def depth(self) -> int:
        return len(self._stack)

    def enter(self, name: str | None = None, props: dict | None = None, **options: Any) -> TrackerNode:
        """Push a new dependency record and return it."""
        node_options = {**self._node_options, **options}
        node = TrackerNode(name or f"ctx-{_arena.new_id()}", props=props, **node_options)
        self.enter_node(node)
        return node

    def enter_node(self, node: TrackerNode) -> None:
        """Push an existing record, e.g. when a reaction re-runs."""
        self._stack.append(node)
        logger.debug("enter %s (depth %d)", node.name, len(self._stack))

    def leave(self) -> TrackerNode:
        if not self._stack:
            raise StateTrackerError("leave() called without a matching enter()")
        node = self._stack.pop()
        logger.debug("leave %s (depth %d)", node.name, len(self._stack))
        return node

    # --- Generation clock ---

    def get_time(self) -> int:
        return self.time

    def update_time(self) -> int:
        self.time += 1
        if self.container is not None and self.container.proxy is not None:
            self.arena.maybe_sweep(self.container.state)
        return self.time

    def __repr__(self) -> str:
        names = [node.name for node in self._stack]
        return f"TrackerContext(time={self.time}, stack={names!r})"
