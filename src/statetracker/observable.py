"""Observable wrappers — dicts and lists that record the paths read from them.

Every read goes through _read(): the value is resolved to a child proxy
(see resolver.py) and, unless the tracker is peeking, reported to the
dependency record on top of the context's session stack. Writes invalidate
the cached child proxy for the key and advance the generation clock.

All identity state lives on the Tracker — instances are thin handles.

Usage:
    state = produce({"app": {"list": [{"id": 1}]}})
    with tracking(state, "row") as record:
        state["app"]["list"][0]["id"]
    record.get_state_remarkable()  # {"app": [("app", "list", 0, "id")]}
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Hashable, Iterable, Iterator

from statetracker._tracking import (
    KEYS,
    MISSING,
    HydrationError,
    Proxied,
    StateTrackerError,
    has_tracker,
    is_trackable,
    lookup,
    raw,
    same_value,
)
from statetracker.resolver import resolve_next_value
from statetracker.tracker import Tracker

if TYPE_CHECKING:
    from statetracker.context import TrackerContext
    from statetracker.node import TrackerNode

logger = logging.getLogger("statetracker.observable")


class TrackedBase(Proxied):
    """Behaviour shared by TrackedDict and TrackedList."""

    __slots__ = ("_tracker", "__weakref__")

    def __init__(self, tracker: Tracker) -> None:
        self._tracker = tracker

    # --- Reads ---

    def _fresh_base(self) -> Any:
        """The base this proxy should read from in the current generation.

        A proxy created before the latest write may hold an outdated base.
        Walk up the parents while they are stale, then re-peek the path from
        the freshest ancestor.
        """
        tracker = self._tracker
        if tracker.parent_id is None or not tracker.is_stale():
            return tracker.base

        arena = tracker.tracker_context.arena
        retry_path: list[Hashable] = []
        proxy: TrackedBase = self
        while proxy._tracker.parent_id is not None and proxy._tracker.is_stale():
            parent = arena.lookup(proxy._tracker.parent_id)
            if parent is None:
                break
            retry_path.insert(0, proxy._tracker.focus_key)
            proxy = parent

        if not retry_path:
            return tracker.base
        try:
            fresh = peek(proxy, retry_path)
        except (LookupError, TypeError):
            logger.debug("Could not refresh %r, keeping its base", tracker.access_path)
            return tracker.base
        if has_tracker(fresh):
            return fresh._tracker.base
        return tracker.base

    def _track_value(self, key: Hashable, value: Any) -> None:
        """Record a read of ``key`` that produced no child proxy."""
        tracker = self._tracker
        node = tracker.tracker_context.current
        if node is not None and not tracker.is_peeking:
            node.track(self, key, value, tracker.access_path + (key,))

    def _read(self, key: Hashable) -> Any:
        tracker = self._tracker
        context = tracker.tracker_context
        base = self._fresh_base()
        try:
            value = base[key]
        except (KeyError, IndexError):
            # An absent key is a dependency too: it may appear later.
            self._track_value(key, MISSING)
            raise
        next_access_path = tracker.access_path + (key,)

        resolved = resolve_next_value(
            value,
            tracker=tracker,
            context=context,
            next_access_path=next_access_path,
            proxy=self,
            root_path=tracker.root_path,
            create_proxy=create_proxy,
        )
        if is_trackable(resolved.value):
            tracker.child_proxies[key] = resolved.value
        else:
            tracker.child_proxies.pop(key, None)

        if not tracker.is_peeking:
            node = context.current
            if node is not None:
                node.track(
                    self,
                    key,
                    resolved.value,
                    next_access_path,
                    is_derived=resolved.is_derived,
                    raw_value=resolved.raw,
                )
        return resolved.value

    # --- Writes ---

    def _write(self, key: Hashable, value: Any, *, bump: bool = True) -> None:
        tracker = self._tracker
        base = self._fresh_base()
        current = lookup(base, key)
        if current is not MISSING and same_value(raw(current), raw(value)):
            return
        was_fresh = not tracker.is_stale()
        base[key] = value
        tracker.invalidate_child(key, raw(current))
        if bump:
            tracker.tracker_context.update_time()
            if was_fresh:
                tracker.touch()

    def _delete(self, key: Hashable, *, bump: bool = True) -> None:
        tracker = self._tracker
        base = self._fresh_base()
        current = lookup(base, key)
        del base[key]
        tracker.invalidate_child(key, raw(current))
        if bump:
            tracker.tracker_context.update_time()

    # --- Session API ---

    def enter(self, name: str | None = None, props: dict | None = None, **options) -> TrackerNode:
        return self._tracker.tracker_context.enter(name, props, **options)

    def leave(self) -> TrackerNode:
        return self._tracker.tracker_context.leave()

    def peek(self, path: Iterable[Hashable]) -> Any:
        return peek(self, path)

    def relink(self, path: Sequence[Hashable], value: Any) -> None:
        """Write ``value`` at ``path`` and start a new generation."""
        parent, last = self._parent_of(path)
        parent._write(last, value)

    def batch_relink(self, values: Iterable[tuple[Sequence[Hashable], Any]]) -> list:
        """Apply several relinks inside a single perform() generation."""
        values = list(values)

        def _apply() -> None:
            for path, value in values:
                parent, last = self._parent_of(path)
                parent._write(last, value, bump=False)

        container = self._tracker.tracker_context.container
        container.perform(after_callback=_apply)
        return [tuple(path) for path, _ in values]

    def hydrate(self, path: Sequence[Hashable], value: Any) -> None:
        """Initialise ``path``. Fails if it already holds a value."""
        parent, last = self._parent_of(path)
        current = lookup(parent, last)
        if current is not MISSING and current is not None:
            raise HydrationError(
                f"'hydrate' should only be used on initial stage, please ensure "
                f"{list(path)!r} is not defined already."
            )
        parent._tracker.is_peeking = True
        try:
            parent._write(last, value, bump=False)
        finally:
            parent._tracker.is_peeking = False

    def unlink(self) -> Any:
        return self._tracker.base

    def get_tracker(self) -> Tracker:
        return self._tracker

    def get_context(self) -> TrackerContext:
        return self._tracker.tracker_context

    def _parent_of(self, path: Sequence[Hashable]) -> tuple[TrackedBase, Hashable]:
        path = list(path)
        if not path:
            raise StateTrackerError("path must not be empty")
        last = path.pop()
        parent = peek(self, path)
        if not has_tracker(parent):
            raise StateTrackerError(f"{path!r} does not lead to a container")
        return parent, last


class TrackedDict(TrackedBase, Mapping):
    """Observable wrapper over a dict. Reads record their path.

    len(), iteration and keys() record the KEYS segment. A read of an absent
    key (``[]``, get() or ``in``) records the key with the value MISSING.
    """

    __slots__ = ()

    def _track_keys(self) -> list[Hashable]:
        keys = list(self._fresh_base())
        self._track_value(KEYS, tuple(keys))
        return keys

    def __getitem__(self, key: Hashable) -> Any:
        return self._read(key)

    def get(self, key: Hashable, default: Any = None) -> Any:
        if key not in self._fresh_base():
            self._track_value(key, MISSING)
            return default
        return self._read(key)

    def __contains__(self, key: object) -> bool:
        found = lookup(self._fresh_base(), key)
        self._track_value(key, found)
        return found is not MISSING

    def __len__(self) -> int:
        return len(self._track_keys())

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._track_keys())

    def keys(self) -> list[Hashable]:
        return self._track_keys()

    def values(self) -> list:
        return [self._read(key) for key in self._track_keys()]

    def items(self) -> list[tuple[Hashable, Any]]:
        return [(key, self._read(key)) for key in self._track_keys()]

    def __bool__(self) -> bool:
        return bool(self._track_keys())

    def __setitem__(self, key: Hashable, value: Any) -> None:
        self._write(key, value)

    def __delitem__(self, key: Hashable) -> None:
        self._delete(key)

    def update(self, other: Any = (), **kwargs: Any) -> None:
        pairs = other.items() if hasattr(other, "items") else other
        for key, value in list(pairs) + list(kwargs.items()):
            self._write(key, value)

    def pop(self, key: Hashable, *default: Any) -> Any:
        base = self._fresh_base()
        if key not in base:
            if default:
                return default[0]
            raise KeyError(key)
        value = base[key]
        self._delete(key)
        return value

    def setdefault(self, key: Hashable, default: Any = None) -> Any:
        if key not in self._fresh_base():
            self._write(key, default)
        return self._read(key)

    def clear(self) -> None:
        base = self._fresh_base()
        if not base:
            return
        for key in list(base):
            self._delete(key, bump=False)
        self._tracker.tracker_context.update_time()

    def __repr__(self) -> str:
        return f"TrackedDict({self._tracker.base!r})"


class TrackedList(TrackedBase, Sequence):
    """Observable wrapper over a list.

    len() and iteration record the ``"length"`` segment; item reads record
    their index.
    """

    __slots__ = ()

    def _track_length(self) -> int:
        length = len(self._fresh_base())
        self._track_value("length", length)
        return length

    def _index(self, index: int) -> int:
        if index < 0:
            index += len(self._fresh_base())
        return index

    def __getitem__(self, index: int | slice) -> Any:
        if isinstance(index, slice):
            return [self._read(i) for i in range(*index.indices(self._track_length()))]
        return self._read(self._index(index))

    def __len__(self) -> int:
        return self._track_length()

    def __iter__(self) -> Iterator[Any]:
        for index in range(self._track_length()):
            yield self._read(index)

    def __contains__(self, item: object) -> bool:
        target = raw(item)
        self._track_length()
        for index, value in enumerate(self._fresh_base()):
            self._track_value(index, value)
            value = raw(value)
            if value is target or value == target:
                return True
        return False

    def __bool__(self) -> bool:
        return self._track_length() > 0

    def __eq__(self, other: object) -> bool:
        if isinstance(other, (list, TrackedList)):
            return list(self) == list(other)
        return NotImplemented

    __hash__ = None

    def __setitem__(self, index: int, value: Any) -> None:
        self._write(self._index(index), value)

    def __delitem__(self, index: int) -> None:
        self._restructure(lambda items: items.__delitem__(index))

    def append(self, item: Any) -> None:
        self._restructure(lambda items: items.append(item))

    def extend(self, items: Iterable[Any]) -> None:
        items = list(items)
        self._restructure(lambda base: base.extend(items))

    def insert(self, index: int, item: Any) -> None:
        self._restructure(lambda items: items.insert(index, item))

    def pop(self, index: int = -1) -> Any:
        result: list = []
        self._restructure(lambda items: result.append(items.pop(index)))
        return result[0]

    def remove(self, item: Any) -> None:
        target = raw(item)
        for index, value in enumerate(self._fresh_base()):
            value = raw(value)
            if value is target or value == target:
                self._restructure(lambda items: items.pop(index))
                return
        raise ValueError(f"{item!r} is not in list")

    def clear(self) -> None:
        self._restructure(lambda items: items.clear())

    def _restructure(self, fn) -> None:
        """Apply a length-changing mutation.

        Index-keyed child proxies shift, so they are dropped; identity-keyed
        ones are kept only for items still in the list.
        """
        base = self._fresh_base()
        fn(base)
        tracker = self._tracker
        tracker.child_proxies = {}
        present = {id(raw(item)) for item in base}
        tracker.next_child_proxies = {
            key: entry for key, entry in tracker.next_child_proxies.items() if key in present
        }
        tracker.tracker_context.update_time()

    def __repr__(self) -> str:
        return f"TrackedList({self._tracker.base!r})"


def create_proxy(
    value: Any,
    *,
    tracker_context: TrackerContext,
    access_path: tuple = (),
    root_path: tuple = (),
    parent: TrackedBase | None = None,
    focus_key: Hashable = None,
) -> TrackedBase:
    """Wrap a raw dict or list. A proxy passed in is unwrapped first."""
    base = raw(value)
    current = tracker_context.current
    tracker = Tracker(
        base,
        tracker_context=tracker_context,
        access_path=access_path,
        root_path=root_path,
        parent_id=parent._tracker.id if parent is not None else None,
        focus_key=focus_key,
        context=current.name if current is not None else "",
    )
    cls = TrackedList if isinstance(base, list) else TrackedDict
    proxy = cls(tracker)
    tracker_context.arena.register(tracker.id, proxy)
    return proxy


def produce(state: dict, **options: Any) -> TrackedDict:
    """Wrap a state tree and return its root proxy.

    Keyword options become the defaults for records entered through this
    context (shallow_equal, activity_listener, changed_value_listener).
    """
    from statetracker.container import Container
    from statetracker.context import TrackerContext

    if not isinstance(raw(state), dict):
        raise TypeError(f"state must be a dict, got {type(state).__name__}")
    container = Container()
    context = TrackerContext(container=container, **options)
    proxy = create_proxy(state, tracker_context=context)
    container.attach(proxy)
    return proxy


def peek(state: Any, path: Iterable[Hashable]) -> Any:
    """Follow ``path`` from ``state`` without recording any read.

    Works on proxies and raw trees alike; returns None once a segment is
    missing.
    """
    value = state
    for key in path:
        if has_tracker(value):
            found = lookup(value._fresh_base(), key)
            if found is MISSING or isinstance(key, str) and isinstance(value, TrackedList):
                # absent, or the synthetic "length" segment
                return None if found is MISSING else found
            tracker = value._tracker
            was_peeking = tracker.is_peeking
            tracker.is_peeking = True
            try:
                value = value[key]
            finally:
                tracker.is_peeking = was_peeking
        elif is_trackable(value):
            found = lookup(value, key)
            value = None if found is MISSING else found
        else:
            return None
    return value
