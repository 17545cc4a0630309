"""Proxy arena — id-keyed tables that hold proxy identity across generations.

Proxies receive a stable integer id at creation. Parents are looked up by id
rather than held by reference, so the ownership graph stays root -> leaf.

Caches are keyed by the identity of the raw value. Plain dicts and lists
cannot be weakly referenced, so each entry pins its raw value next to the
proxy; an id() is only unique while the object it came from is alive.
The cross-generation cache is swept against the current root whenever it
has doubled since the previous sweep, so it holds about as many entries as
the live tree has containers.
"""

from __future__ import annotations

import itertools
import logging
import weakref

from statetracker._tracking import raw

logger = logging.getLogger("statetracker.arena")

# ID generation — itertools.count is thread-safe (C-level GIL atomic)
_id_counter = itertools.count(1)


def new_id() -> int:
    return next(_id_counter)


class ProxyArena:
    """Proxy table plus the cross-generation and reparented caches."""

    # No sweep below this many cached proxies.
    sweep_floor = 64

    def __init__(self) -> None:
        # proxy id -> proxy. Non-owning: only used to find a parent.
        self._proxies: weakref.WeakValueDictionary[int, object] = weakref.WeakValueDictionary()
        # id(raw) -> (raw, proxy). Swept by maybe_sweep().
        self._proxy_cache: dict[int, tuple[object, object]] = {}
        # (root segment, id(raw)) -> (raw, proxy). Cleared on every perform().
        self._next_proxy_cache: dict[tuple[object, int], tuple[object, object]] = {}
        self._live_after_sweep = 0

    def register(self, proxy_id: int, proxy: object) -> None:
        self._proxies[proxy_id] = proxy

    def lookup(self, proxy_id: int | None) -> object | None:
        if proxy_id is None:
            return None
        return self._proxies.get(proxy_id)

    def get_cached_proxy(self, raw_value: object) -> object | None:
        entry = self._proxy_cache.get(id(raw_value))
        return entry[1] if entry is not None and entry[0] is raw_value else None

    def set_cached_proxy(self, raw_value: object, proxy: object) -> None:
        self._proxy_cache[id(raw_value)] = (raw_value, proxy)

    def get_cached_next_proxy(self, root_point: object, raw_value: object) -> object | None:
        entry = self._next_proxy_cache.get((root_point, id(raw_value)))
        return entry[1] if entry is not None and entry[0] is raw_value else None

    def set_cached_next_proxy(self, root_point: object, raw_value: object, proxy: object) -> None:
        self._next_proxy_cache[(root_point, id(raw_value))] = (raw_value, proxy)

    def reset_generation(self) -> None:
        """Drop generation-scoped entries. Called when a new perform() starts."""
        self._next_proxy_cache.clear()

    def maybe_sweep(self, root: object) -> int:
        """sweep() once the cache has doubled since the last one."""
        if len(self._proxy_cache) <= max(self.sweep_floor, 2 * self._live_after_sweep):
            return 0
        return self.sweep(root)

    def sweep(self, root: object) -> int:
        """Evict cached proxies whose raw value is no longer reachable from ``root``.

        Returns the number of evicted entries.
        """
        reachable = _reachable_ids(root)
        before = len(self._proxy_cache)
        self._proxy_cache = {
            key: entry for key, entry in self._proxy_cache.items() if key in reachable
        }
        self._live_after_sweep = len(self._proxy_cache)
        evicted = before - self._live_after_sweep
        logger.debug("Swept %d cached proxies, %d live", evicted, self._live_after_sweep)
        return evicted

    def clear(self) -> None:
        self._proxy_cache.clear()
        self._next_proxy_cache.clear()
        self._live_after_sweep = 0

    def __len__(self) -> int:
        return len(self._proxy_cache)


def _reachable_ids(root: object) -> set[int]:
    """ids of every dict and list reachable from ``root``, proxies unwrapped."""
    seen: set[int] = set()
    stack = [root]
    while stack:
        value = stack.pop()
        value = raw(value)
        if not isinstance(value, (dict, list)) or id(value) in seen:
            continue
        seen.add(id(value))
        stack.extend(value.values() if isinstance(value, dict) else value)
    return seen
