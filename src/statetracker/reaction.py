"""Reactions — render functions that only re-run when what they read changed.

A Reaction owns one TrackerNode. Each call compares the incoming props and
the current state against the node's recordings; if both are equal the
previous result is returned, otherwise the function runs again inside the
node's session.

While recording, the node registers the reaction as a fine-grained listener
for every root key it reads; Container.affected_reactions() uses that to
narrow down which reactions a perform() may concern.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Hashable, TypeVar

from statetracker.node import TrackerNode

T = TypeVar("T")

logger = logging.getLogger("statetracker.reaction")


class Reaction:
    """A tracked render function with memoised output."""

    def __init__(
        self,
        state,
        fn: Callable[[dict], T],
        *,
        name: str | None = None,
        shallow_equal: bool | None = None,
        activity_listener: Callable[[dict], None] | None = None,
        changed_value_listener: Callable[[dict], None] | None = None,
        guard: Callable[[], bool] | None = None,
    ) -> None:
        self._context = state.get_context()
        self._fn = fn
        self._guard = guard
        self.name = name or getattr(fn, "__name__", "reaction")
        self.node = TrackerNode(
            self.name,
            shallow_equal=shallow_equal,
            reaction=self,
            activity_listener=activity_listener,
            changed_value_listener=changed_value_listener,
        )
        self._listened_keys: set[Hashable] = set()
        self._last_value: Any = None
        self._initialized = False
        self._dirty = False
        self._disposed = False
        self.run_count = 0

    # --- Fine-grained listeners ---

    def register_fine_grain_listener(self, key: Hashable) -> None:
        if key in self._listened_keys:
            return
        self._listened_keys.add(key)
        self._context.container.add_listener(key, self)

    def dispose_fine_grain_listener(self) -> None:
        container = self._context.container
        for key in self._listened_keys:
            container.remove_listener(key, self)
        self._listened_keys.clear()

    def invalidate(self) -> None:
        """Force the next call to run. The node calls this when it drops recordings."""
        self._dirty = True

    @property
    def listened_keys(self) -> frozenset:
        return frozenset(self._listened_keys)

    # --- Running ---

    def should_run(self, props: dict) -> bool:
        if not self._initialized or self._dirty:
            return True
        node = self.node
        # Short-circuit: once props differ there is no point comparing state.
        if not node.is_props_equal(props):
            return True
        return not node.is_state_equal(self._context.container.state)

    def __call__(self, props: dict | None = None) -> Any:
        if self._disposed:
            return self._last_value
        if self._guard is not None and not self._guard():
            return self._last_value

        props = props or {}
        if not self.should_run(props):
            return self._last_value

        self.node.set_observer_props(props)
        self._context.enter_node(self.node)
        try:
            self._last_value = self._fn(props)
        finally:
            self._context.leave()
        self._initialized = True
        self._dirty = False
        self.run_count += 1
        return self._last_value

    def dispose(self) -> None:
        """Stop reacting. Later calls return the last result without running."""
        self._disposed = True
        self.dispose_fine_grain_listener()

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        return f"Reaction({self.name}, {state}, runs={self.run_count})"


def observer(state, fn: Callable[[dict], T], **options: Any) -> Reaction:
    """Wrap a render function so it only re-runs when its inputs changed.

    ``fn`` receives the props dict passed to each call.

    Usage:
        state = produce({"app": {"title": "hello"}})
        render = observer(state, lambda props: state["app"]["title"].upper())

        render()  # "HELLO", runs
        render()  # "HELLO", cached
        state.relink(["app"], {"title": "bye"})
        render()  # "BYE", runs again

    Shallow comparison (the default) only sees replaced subtrees; pass
    ``shallow_equal=False`` to compare leaf values through in-place edits.
    """
    return Reaction(state, fn, **options)
