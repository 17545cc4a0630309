"""Tracking scopes and mutations.

tracking() / @tracked pair enter() with leave() so that an exception inside
the computation can never leave its record on the session stack.
perform() / set_value() start a new generation of the state tree.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import Any, Callable, Hashable, Iterator, ParamSpec, TypeVar

from statetracker._tracking import lookup, raw, same_value
from statetracker.node import TrackerNode

P = ParamSpec("P")
R = TypeVar("R")


@contextmanager
def tracking(state, name: str | None = None, props: dict | None = None, **options: Any) -> Iterator[TrackerNode]:
    """Context manager recording every read made on ``state`` inside the block.

    Usage:
        with tracking(state, "title") as record:
            render(state["app"]["title"])
        record.is_state_equal(next_state)
    """
    context = state.get_context()
    node = context.enter(name, props, **options)
    try:
        yield node
    finally:
        context.leave()


def tracked(state, name: str | None = None, **options: Any) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator: run fn inside a fresh tracking session on every call.

    The record of the latest call is kept on ``wrapper.last_record``.

    Usage:
        @tracked(state)
        def title():
            return state["app"]["title"]

        title()
        title.last_record.is_state_equal(next_state)
    """

    def decorate(fn: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with tracking(state, name or fn.__name__, **options) as node:
                wrapper.last_record = node
                return fn(*args, **kwargs)

        wrapper.last_record = None
        return wrapper

    return decorate


def perform(
    state,
    next_state: Any = None,
    *,
    after_callback: Callable[[], None] | None = None,
    state_compare_level: int | None = None,
) -> list[Hashable]:
    """Apply ``next_state`` as a new generation of ``state``'s tree."""
    container = state.get_context().container
    return container.perform(
        next_state,
        after_callback=after_callback,
        state_compare_level=state_compare_level,
    )


def set_value(state, next_state: dict, *, state_compare_level: int | None = None) -> list[Hashable]:
    """perform() that copies the changed top-level keys of ``next_state`` onto ``state``.

    Keys missing from ``next_state`` are left alone. Returns the copied keys.
    """
    next_raw = raw(next_state)
    copied: list[Hashable] = []

    def _copy_keys() -> None:
        base = state.unlink()
        for key, value in next_raw.items():
            if not same_value(raw(lookup(base, key)), raw(value)):
                state._write(key, value, bump=False)
                copied.append(key)

    perform(state, after_callback=_copy_keys, state_compare_level=state_compare_level)
    return copied
