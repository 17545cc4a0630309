"""Container — owner of the root state and entry point for new generations.

perform() starts a generation: the clock advances, generation-scoped caches
are dropped, and the next tree is applied (by the caller's after_callback,
or by writing the changed top-level keys). Reactions register fine-grained
listeners on the root keys they read, so callers can ask which of them a
set of changed keys may affect.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Hashable, Iterable

from statetracker._tracking import KEYS, MISSING, lookup, raw, same_value

if TYPE_CHECKING:
    from statetracker.observable import TrackedDict
    from statetracker.reaction import Reaction

logger = logging.getLogger("statetracker.container")


class Container:
    """Root state holder with fine-grained listener registry."""

    def __init__(self) -> None:
        self.proxy: TrackedDict | None = None
        self._listeners: dict[Hashable, set[Reaction]] = {}

    def attach(self, proxy: TrackedDict) -> None:
        self.proxy = proxy

    @property
    def context(self):
        return self.proxy.get_context()

    @property
    def state(self) -> dict:
        """The current raw root state."""
        return self.proxy.unlink()

    def perform(
        self,
        next_state: Any = None,
        *,
        after_callback: Callable[[], None] | None = None,
        state_compare_level: int | None = None,
    ) -> list[Hashable]:
        """Apply a new generation and return the top-level keys that changed.

        ``state_compare_level`` 0 replaces the root base wholesale; 1 (the
        default) writes only the top-level keys whose value changed and
        removes keys absent from ``next_state``.
        """
        level = 1 if state_compare_level is None else state_compare_level
        context = self.context
        context.update_time()
        context.arena.reset_generation()

        root = self.proxy
        tracker = root.get_tracker()
        changed: list[Hashable] = []
        next_raw = raw(next_state)
        if next_state is not None:
            changed = _changed_keys(tracker.base, next_raw)

        if after_callback is not None:
            after_callback()
        elif next_state is not None:
            if level <= 0:
                tracker.base = next_raw
                tracker.reset_children()
            else:
                for key in changed:
                    if lookup(next_raw, key) is MISSING:
                        root._delete(key, bump=False)
                    else:
                        root._write(key, next_raw[key], bump=False)
        tracker.touch()

        logger.debug("perform t=%d changed=%r", context.time, changed)
        return changed

    # --- Fine-grained listeners ---

    def add_listener(self, key: Hashable, reaction: Reaction) -> None:
        self._listeners.setdefault(key, set()).add(reaction)

    def remove_listener(self, key: Hashable, reaction: Reaction) -> None:
        listeners = self._listeners.get(key)
        if listeners is None:
            return
        listeners.discard(reaction)
        if not listeners:
            del self._listeners[key]

    def get_listeners(self, key: Hashable) -> set[Reaction]:
        return set(self._listeners.get(key, ()))

    def affected_reactions(self, keys: Iterable[Hashable]) -> set[Reaction]:
        """Reactions that read at least one of ``keys`` at the root.

        Reactions that read the root key set are included whenever any key
        changed, since the change may be an addition or a removal.
        """
        keys = list(keys)
        result: set[Reaction] = set()
        for key in keys:
            result.update(self._listeners.get(key, ()))
        if keys:
            result.update(self._listeners.get(KEYS, ()))
        return result


def _changed_keys(current: Any, next_value: Any) -> list[Hashable]:
    if isinstance(current, dict) and isinstance(next_value, dict):
        keys = list(current) + [key for key in next_value if key not in current]
    else:
        return []
    return [
        key
        for key in keys
        if not same_value(raw(lookup(current, key)), raw(lookup(next_value, key)))
    ]
