"""Dependency record for one tracked computation.

A TrackerNode receives track() calls while it sits on top of the context's
session stack. Reads through a registered props value land in the props
graph, relative to the props key; everything else lands in the state graph
under its root segment. The value seen at each path is kept in
affected_path_value and becomes the "current" side of later comparisons.

Caches are only trustworthy for the generation that produced them: a
negative comparison clears the matching graph, an equal one leaves it alone.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Hashable, Sequence

from statetracker._tracking import (
    MISSING,
    get_default,
    is_trackable,
    lookup,
    lookup_path,
    raw,
    same_value,
)
from statetracker.equality import EqualityToken, resolve_equality
from statetracker.graph import PathGraph

if TYPE_CHECKING:
    from statetracker.reaction import Reaction

logger = logging.getLogger("statetracker.node")


class TrackerNode:
    """Dependency record: state graph, props graph and the values seen."""

    def __init__(
        self,
        name: str,
        *,
        shallow_equal: bool | None = None,
        props: dict | None = None,
        reaction: Reaction | None = None,
        activity_listener: Callable[[dict], None] | None = None,
        changed_value_listener: Callable[[dict], None] | None = None,
        diagnostics: bool = False,
    ) -> None:
        self.name = name
        self.shallow_equal = get_default("shallow_equal") if shallow_equal is None else shallow_equal
        self.reaction = reaction
        self.activity_listener = activity_listener or get_default("activity_listener")
        self.changed_value_listener = changed_value_listener or get_default("changed_value_listener")
        self.diagnostics = diagnostics

        self.state_graph = PathGraph()
        self.props_graph = PathGraph()
        self.affected_path_value: dict[tuple, Any] = {}

        # id(raw) -> (raw, derived value). Dropped with either graph.
        self._derived_value_map: dict[int, tuple[Any, Any]] = {}
        # props key -> {"target": raw props value, "path": access path of its parent}
        self._props_root_meta: dict[Hashable, dict] = {}
        # id(raw) -> (raw, props key), for the props value and everything read through it
        self._props_proxy_to_key: dict[int, tuple[Any, Hashable]] = {}
        self._observer_props: dict = {}
        # Set when a read could not be recorded; forces the next state comparison to fail.
        self._tainted = False

        self.set_observer_props(props)

    def __repr__(self) -> str:
        return f"TrackerNode({self.name!r}, state={list(self.state_graph.children)!r})"

    # --- Activity ---

    def log_activity(self, activity: str, payload: dict | None = None) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("[%s] %s %r", self.name, activity, payload or {})
        if self.activity_listener is None:
            return
        token = {"activity": activity, "name": self.name}
        if payload:
            token.update(payload)
        try:
            self.activity_listener(token)
        except Exception:
            logger.exception("Activity listener failed on %s", activity)

    # --- Props ---

    def get_props(self) -> dict:
        return self._observer_props

    def set_observer_props(self, props: dict | None = None) -> None:
        self._observer_props = dict(props or {})
        self.register_observer_props()

    def register_observer_props(self) -> None:
        self.log_activity("registerProps")
        for key, value in self._observer_props.items():
            raw_value = raw(value)
            if is_trackable(raw_value):
                if self._props_key_for(raw_value) is None:
                    self._set_props_key(raw_value, key)
                    self._props_root_meta[key] = {"target": raw_value, "path": ()}
            elif self.props_graph.find((key,)) is None:
                # Scalars can't report their reads; count them as read.
                self.props_graph.access((key,))
            self.affected_path_value[(key,)] = value

    def _props_key_for(self, raw_value: Any) -> Hashable | None:
        entry = self._props_proxy_to_key.get(id(raw_value))
        if entry is not None and entry[0] is raw_value:
            return entry[1]
        return None

    def _set_props_key(self, value: Any, key: Hashable) -> None:
        if is_trackable(value):
            raw_value = raw(value)
            self._props_proxy_to_key[id(raw_value)] = (raw_value, key)

    def _update_props_root_meta(self, target: Any, path: tuple) -> None:
        raw_target = raw(target)
        for meta in self._props_root_meta.values():
            if meta["target"] is raw_target:
                meta["path"] = path[:-1]

    # --- Recording ---

    def track(
        self,
        target: Any,
        key: Hashable,
        value: Any,
        path: Sequence[Hashable],
        is_derived: bool = False,
        raw_value: Any = MISSING,
    ) -> None:
        """Record a read of ``target[key]`` at ``path``.

        Never raises: a read that can't be recorded marks the node so the next
        state comparison reports a change.
        """
        try:
            self._track(target, key, value, tuple(path), is_derived, raw_value)
        except Exception:
            logger.exception("Failed to track %r in %s", tuple(path), self.name)
            self._tainted = True

    def _track(self, target, key, value, path, is_derived, raw_value) -> None:
        props_key = self._props_key_for(raw(target))
        self.log_activity("track", {"path": path, "props_key": props_key, "value": value})

        next_path = path
        if props_key is not None:
            self._set_props_key(value, props_key)
            self._update_props_root_meta(target, path)
            root_path = self._props_root_meta[props_key]["path"]
            # Props may be handed down from deep inside the state tree; strip that prefix.
            next_path = (props_key,) + path[len(root_path):]
            graph = self.props_graph
        else:
            graph = self.state_graph
            if self.reaction is not None:
                self.reaction.register_fine_grain_listener(next_path[0])

        if is_derived:
            if raw_value is MISSING:
                raw_value = raw(lookup(target, key))
            self._derived_value_map[id(raw_value)] = (raw_value, value)

        self.affected_path_value[next_path] = value
        graph.access(next_path)

    def get_derived_value(self, raw_value: Any) -> Any:
        entry = self._derived_value_map.get(id(raw_value))
        if entry is not None and entry[0] is raw_value:
            return entry[1]
        return MISSING

    # --- Cleanup ---

    def _forget(self, graph: PathGraph) -> None:
        for node in graph.walk():
            if not node.is_root:
                self.affected_path_value.pop(node.slug, None)

    def state_changed_cleanup(self) -> None:
        self.log_activity("cleanupStateDeps")
        self._forget(self.state_graph)
        self.state_graph = PathGraph()
        self._tainted = False
        self._derived_value_map = {}
        if self.reaction is not None:
            self.reaction.dispose_fine_grain_listener()
            self.reaction.invalidate()

    def props_changed_cleanup(self) -> None:
        # State recordings survive: props are compared on every re-run, and an
        # empty graph would make the next comparison trivially equal.
        self.log_activity("cleanupPropsDeps")
        self._forget(self.props_graph)
        for key in self._props_root_meta:
            self.affected_path_value.pop((key,), None)
        self.props_graph = PathGraph()
        self._props_proxy_to_key = {}
        self._props_root_meta = {}
        self._derived_value_map = {}
        if self.reaction is not None:
            self.reaction.invalidate()

    # --- Comparison ---

    def is_equal(self, kind: str, graph: PathGraph, root: Sequence[Hashable], next_value: Any) -> EqualityToken:
        return resolve_equality(self, graph, tuple(root), next_value, kind)

    def is_props_shallow_equal(self, next_props: dict, changed_value: dict | None = None) -> EqualityToken:
        # Unused props keys are compared too.
        token = EqualityToken()
        current_props = self._observer_props
        if len(current_props) != len(next_props):
            token.is_equal = False
        else:
            for key, new_value in next_props.items():
                current_value = current_props.get(key, MISSING)
                if not same_value(raw(new_value), raw(current_value)):
                    token.is_equal = False
                    token.key = key
                    token.path = (key,)
                    token.next_value = raw(new_value)
                    token.current_value = raw(current_value)
                    break
        if not token.is_equal:
            self._report_change(changed_value, token, "props")
            self.props_changed_cleanup()
        return token

    def is_props_equal(self, next_props: dict | None, changed_value: dict | None = None) -> bool:
        next_props = next_props or {}
        self.log_activity("comparisonStart", {"type": "props"})
        if self.shallow_equal:
            token = self.is_props_shallow_equal(next_props, changed_value)
        else:
            token = self.is_equal("props", self.props_graph, (), next_props)
            self._report_change(changed_value, token, "props")
            if not token.is_equal:
                self.props_changed_cleanup()
        self.log_activity("comparisonResult", {"type": "props", "equality_token": token})
        self.log_activity("comparisonEnd", {"type": "props"})
        return token.is_equal

    def is_state_equal(
        self,
        next_state: Any,
        root_path: Sequence[Hashable] = (),
        changed_value: dict | None = None,
    ) -> bool:
        """Whether any recorded state path diverges in ``next_state``.

        With ``root_path``, only recordings under that path are compared,
        against the value found at ``root_path`` in ``next_state``.
        """
        root_path = tuple(root_path)
        self.log_activity("comparisonStart", {"type": "state"})
        if self._tainted:
            token = EqualityToken()
            token.is_equal = False
            token.path = root_path
        else:
            next_root = lookup_path(next_state, root_path)
            token = self.is_equal("state", self.state_graph, root_path, next_root)
        self.log_activity("comparisonResult", {"type": "state", "equality_token": token})
        self.log_activity("comparisonEnd", {"type": "state"})
        self._report_change(changed_value, token, "state")
        if not token.is_equal:
            self.state_changed_cleanup()
        return token.is_equal

    def _report_change(self, changed_value: dict | None, token: EqualityToken, kind: str) -> None:
        listener = self.changed_value_listener
        if token.is_equal and not (self.diagnostics and listener is not None):
            return
        if changed_value is None and listener is None:
            return
        payload = changed_value if changed_value is not None else {}
        payload.update(
            action="isPropsEqual" if kind == "props" else "isStateEqual",
            is_equal=token.is_equal,
            diff_key=token.key,
            path=token.path,
            next_value=token.next_value,
            current_value=token.current_value,
            graph=self.props_graph if kind == "props" else self.state_graph,
            reaction=self.reaction,
        )
        if listener is not None:
            try:
                listener(payload)
            except Exception:
                logger.exception("Changed-value listener failed for %s", self.name)

    # --- Introspection ---

    def get_state_remarkable(self) -> dict[Hashable, list[tuple]]:
        return {key: graph.get_paths() for key, graph in self.state_graph.children.items()}

    def collect_remarkable(self) -> list[tuple]:
        """Paths read since the last collection. Retires them."""
        return self.state_graph.collect_remarkable()
