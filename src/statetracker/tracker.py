"""Tracker — the identity record attached to every proxy.

A tracker owns the raw base value and the caches of child proxies produced
from it. The parent is referenced by id only.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Hashable

from statetracker import _arena

if TYPE_CHECKING:
    from statetracker.context import TrackerContext


class Tracker:
    __slots__ = (
        "id",
        "base",
        "access_path",
        "root_path",
        "parent_id",
        "focus_key",
        "child_proxies",
        "next_child_proxies",
        "timestamp",
        "is_peeking",
        "context",
        "tracker_context",
    )

    def __init__(
        self,
        base: Any,
        *,
        tracker_context: TrackerContext,
        access_path: tuple = (),
        root_path: tuple = (),
        parent_id: int | None = None,
        focus_key: Hashable = None,
        context: str = "",
    ) -> None:
        self.id = _arena.new_id()
        self.base = base
        self.access_path = tuple(access_path)
        self.root_path = tuple(root_path)
        self.parent_id = parent_id
        self.focus_key = focus_key
        # property key -> proxy
        self.child_proxies: dict[Hashable, Any] = {}
        # id(raw child) -> (raw child, proxy)
        self.next_child_proxies: dict[int, tuple[Any, Any]] = {}
        self.timestamp = tracker_context.time
        self.is_peeking = False
        self.context = context
        self.tracker_context = tracker_context

    def get_id(self) -> int:
        return self.id

    def get_next_child_proxy(self, raw_value: Any) -> Any:
        entry = self.next_child_proxies.get(id(raw_value))
        return entry[1] if entry is not None and entry[0] is raw_value else None

    def set_next_child_proxy(self, raw_value: Any, proxy: Any) -> None:
        self.next_child_proxies[id(raw_value)] = (raw_value, proxy)

    def invalidate_child(self, key: Hashable, raw_value: Any) -> None:
        """Forget the proxies produced for ``key`` and its old raw value."""
        self.child_proxies.pop(key, None)
        entry = self.next_child_proxies.get(id(raw_value))
        if entry is not None and entry[0] is raw_value:
            del self.next_child_proxies[id(raw_value)]

    def reset_children(self) -> None:
        self.child_proxies = {}
        self.next_child_proxies = {}

    def rebind(self, access_path: tuple, parent_id: int | None) -> None:
        """Move this tracker to the slot it was just read from.

        Its own children keep their old paths until they are read again.
        """
        self.access_path = tuple(access_path)
        self.focus_key = self.access_path[-1]
        self.parent_id = parent_id

    def is_stale(self) -> bool:
        return self.timestamp < self.tracker_context.time

    def touch(self) -> None:
        """Mark this tracker as validated for the current generation."""
        self.timestamp = self.tracker_context.time

    def __repr__(self) -> str:
        return f"Tracker(id={self.id}, path={self.access_path!r}, t={self.timestamp})"
