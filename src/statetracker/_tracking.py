"""Shared helpers for the tracking engine.

Everything that needs to tell a proxy from a raw value goes through here:
raw() unwraps, is_trackable() decides what gets wrapped, lookup() navigates a
raw tree without recording anything.

Package-wide defaults for new dependency records also live here. Call
configure() once at startup:
    statetracker.configure(shallow_equal=False)
"""

from __future__ import annotations

import copy
from typing import Any, Callable, Hashable, Sequence

Path = tuple[Hashable, ...]


class _Missing:
    """Sentinel for a key that is absent from a container."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class _Keys:
    """Path segment standing for the key set of a dict."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "KEYS"


# len(), iteration and keys() on a dict record this segment; its value is the
# tuple of keys, so adding or removing a key is a change.
KEYS: Any = _Keys()


class Proxied:
    """Marker base for every observable wrapper. Holds a ``_tracker`` slot."""

    __slots__ = ()


class StateTrackerError(Exception):
    """Base class for statetracker errors."""


class HydrationError(StateTrackerError, ValueError):
    """hydrate() was called on a path that already holds a value."""


# ─── Defaults ────────────────────────────────────────────────────────────────
_defaults: dict[str, Any] = {
    "shallow_equal": True,
    "activity_listener": None,
    "changed_value_listener": None,
}


def configure(
    *,
    shallow_equal: bool | None = None,
    activity_listener: Callable[[dict], None] | None = None,
    changed_value_listener: Callable[[dict], None] | None = None,
) -> None:
    """Set defaults for dependency records created after this call.

    Arguments left as None keep their current value.
    """
    if shallow_equal is not None:
        _defaults["shallow_equal"] = shallow_equal
    if activity_listener is not None:
        _defaults["activity_listener"] = activity_listener
    if changed_value_listener is not None:
        _defaults["changed_value_listener"] = changed_value_listener


def get_default(name: str) -> Any:
    return _defaults[name]


def reset_defaults() -> None:
    """Restore the built-in defaults. Mostly useful for tests."""
    _defaults.update(shallow_equal=True, activity_listener=None, changed_value_listener=None)


# ─── Raw values ──────────────────────────────────────────────────────────────


def has_tracker(value: object) -> bool:
    return isinstance(value, Proxied)


def raw(value: Any) -> Any:
    """The underlying value of a proxy, or the value itself."""
    if isinstance(value, Proxied):
        return value._tracker.base
    return value


def is_trackable(value: object) -> bool:
    return isinstance(value, (dict, list, Proxied))


def shallow_copy(value: Any) -> Any:
    return copy.copy(raw(value))


def same_value(a: Any, b: Any) -> bool:
    """Identity for containers, equality for scalars."""
    if a is b:
        return True
    if is_trackable(a) or is_trackable(b) or a is MISSING or b is MISSING:
        return False
    try:
        return bool(a == b)
    except Exception:
        return False


def lookup(container: Any, key: Hashable) -> Any:
    """Read ``container[key]`` on the raw tree. Returns MISSING if absent.

    Lists answer the ``"length"`` segment with their length, dicts answer
    KEYS with the tuple of their keys.
    """
    base = raw(container)
    if isinstance(base, dict):
        if key is KEYS:
            return tuple(base)
        return base.get(key, MISSING)
    if isinstance(base, list):
        if key == "length":
            return len(base)
        if isinstance(key, int) and -len(base) <= key < len(base):
            return base[key]
    return MISSING


def lookup_path(container: Any, path: Sequence[Hashable]) -> Any:
    value = container
    for key in path:
        value = lookup(value, key)
        if value is MISSING:
            break
    return value
