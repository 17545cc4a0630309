"""Value resolver — decides the identity of a child proxy on every read.

Order of preference:
1. the proxy already produced for this raw value by the same parent, as
   long as it belongs to the same root segment;
2. the cross-generation proxy for this raw value, if it was produced under
   the same root segment;
3. the reparented proxy for (root segment, raw value) in this generation,
   flagged as derived;
4. a new proxy.

A proxy reused in steps 1 or 2 is moved to the slot it was read from, so a
later refresh of its base follows its current index rather than its old one.

Reusing a proxy across unrelated roots would record reads under the wrong
path, so a raw value that moved to another root gets a derived proxy over a
shallow copy instead. The equality resolver's derived-value memo maps the
raw value back to that proxy.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from statetracker._tracking import has_tracker, is_trackable, raw, shallow_copy

if TYPE_CHECKING:
    from statetracker.context import TrackerContext
    from statetracker.tracker import Tracker

logger = logging.getLogger("statetracker.resolver")


class ResolvedValue:
    """Result of resolve_next_value(). ``raw`` is the raw form of the read."""

    __slots__ = ("value", "raw", "is_derived")

    def __init__(self, value: Any, raw_value: Any, is_derived: bool = False) -> None:
        self.value = value
        self.raw = raw_value
        self.is_derived = is_derived

    def __repr__(self) -> str:
        return f"ResolvedValue({self.value!r}, is_derived={self.is_derived})"


def resolve_next_value(
    value: Any,
    *,
    tracker: Tracker,
    context: TrackerContext,
    next_access_path: tuple,
    proxy: Any,
    root_path: tuple,
    create_proxy: Callable[..., Any],
) -> ResolvedValue:
    if not is_trackable(value):
        return ResolvedValue(value, value)

    raw_next = raw(value)
    token = ResolvedValue(value, raw_next)
    root_point = next_access_path[0]
    arena = context.arena

    def _create(source: Any) -> Any:
        return create_proxy(
            source,
            access_path=next_access_path,
            root_path=root_path,
            parent=proxy,
            tracker_context=context,
            focus_key=next_access_path[-1],
        )

    def _reuse(found: Any) -> ResolvedValue:
        found_tracker = found._tracker
        if found_tracker.access_path != next_access_path or found_tracker.parent_id != tracker.id:
            # Reindexed or reparented within the same root.
            found_tracker.rebind(next_access_path, tracker.id)
        found_tracker.touch()
        token.value = found
        return token

    reused = tracker.get_next_child_proxy(raw_next)
    if reused is not None and reused._tracker.access_path[:1] == next_access_path[:1]:
        return _reuse(reused)

    cached = arena.get_cached_proxy(raw_next)
    if cached is not None:
        if cached._tracker.access_path[:1] == next_access_path[:1]:
            tracker.set_next_child_proxy(raw_next, cached)
            return _reuse(cached)

        token.is_derived = True
        cached_next = arena.get_cached_next_proxy(root_point, raw_next)
        if cached_next is not None and cached_next._tracker.access_path[:1] == (root_point,):
            cached_next._tracker.touch()
            token.value = cached_next
            return token

        token.value = _create(shallow_copy(raw_next))
        logger.debug("Reparented %r under root %r", next_access_path, root_point)
        arena.set_cached_next_proxy(root_point, raw_next, token.value)
        tracker.set_next_child_proxy(raw_next, token.value)
        return token

    if has_tracker(value):
        # A proxy assigned somewhere else keeps its identity only at its own path.
        if value._tracker.access_path != next_access_path:
            token.value = _create(shallow_copy(raw_next))
    else:
        token.value = _create(value)

    arena.set_cached_proxy(raw_next, token.value)
    tracker.set_next_child_proxy(raw_next, token.value)
    return token
