"""Equality resolver — replays recorded paths against a next value.

Only paths present in the graph are compared, in the order they were first
recorded; the first divergence wins.

Deep mode compares raw leaf values and recurses through branches. Shallow
mode compares every recorded child of the starting node directly, and
accepts a mismatch if the derived-value memo maps the next raw value to a
proxy whose raw form is the current one.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Hashable, Sequence

from statetracker._tracking import MISSING, lookup, raw, same_value

if TYPE_CHECKING:
    from statetracker.graph import PathGraph
    from statetracker.node import TrackerNode

logger = logging.getLogger("statetracker.equality")


class EqualityToken:
    """Outcome of a comparison. ``key`` is the diverging segment, ``path`` its full slug."""

    __slots__ = ("is_equal", "key", "path", "next_value", "current_value")

    def __init__(self) -> None:
        self.is_equal = True
        self.key: Hashable = None
        self.path: tuple = ()
        self.next_value: Any = None
        self.current_value: Any = None

    def diverge(self, graph: PathGraph, next_value: Any, current_value: Any) -> EqualityToken:
        self.is_equal = False
        self.key = graph.point
        self.path = graph.slug
        self.next_value = next_value
        self.current_value = current_value
        return self

    def as_dict(self) -> dict:
        return {
            "is_equal": self.is_equal,
            "key": self.key,
            "path": self.path,
            "next_value": self.next_value,
            "current_value": self.current_value,
        }

    def __bool__(self) -> bool:
        return self.is_equal

    def __repr__(self) -> str:
        if self.is_equal:
            return "EqualityToken(equal)"
        return (
            f"EqualityToken(path={self.path!r}, current={self.current_value!r}, "
            f"next={self.next_value!r})"
        )


def resolve_equality(
    node: TrackerNode,
    graph: PathGraph,
    root: Sequence[Hashable],
    next_value: Any,
    kind: str = "state",
) -> EqualityToken:
    """Compare ``next_value`` against the children of ``graph`` at ``root``.

    A root that was never recorded is equal. Errors while walking the graph
    are logged and reported as a divergence.
    """
    token = EqualityToken()
    start = graph.find(root) if root else graph
    if start is None:
        return token
    try:
        return _compare(node, start, next_value, token, kind)
    except Exception:
        logger.exception("Comparison failed in %s, treating as changed", node.name)
        token.is_equal = False
        token.path = tuple(root)
        return token


def _compare(node: TrackerNode, graph: PathGraph, next_value: Any, token: EqualityToken, kind: str) -> EqualityToken:
    for point, child in graph.children.items():
        new_value = lookup(next_value, point)
        current_value = node.affected_path_value.get(child.slug, MISSING)
        raw_new = raw(new_value)
        raw_current = raw(current_value)

        if not node.shallow_equal:
            if not child.children:
                if not same_value(raw_new, raw_current):
                    return token.diverge(child, raw_new, raw_current)
            else:
                _compare(node, child, new_value, token, kind)
                if not token.is_equal:
                    return token
        elif not same_value(raw_new, raw_current) and not _bridged(node, raw_new, raw_current):
            node.log_activity(
                "makeComparisonFailed",
                {
                    "type": kind,
                    "affected_path": child.slug,
                    "current_value": current_value,
                    "next_value": new_value,
                },
            )
            return token.diverge(child, raw_new, raw_current)
    return token


def _bridged(node: TrackerNode, raw_new: Any, raw_current: Any) -> bool:
    derived = node.get_derived_value(raw_new)
    if derived is MISSING:
        return False
    return same_value(raw(derived), raw_current)
