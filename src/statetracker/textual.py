"""Textual integration for statetracker. Opt-in — requires textual.

observer() wraps a widget render function in a Reaction that is safe to call
from Textual callbacks: it does nothing while the app is paused or not
running, swallows NoMatches raised by widget queries, and marshals calls
from other threads through call_from_thread.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

from statetracker.reaction import Reaction

# Module-owned pause state — keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend guarded observers during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


class AppReaction(Reaction):
    """Reaction bound to a Textual app."""

    def __init__(self, app, state, fn, **options):
        self._app = app
        self._main = threading.get_ident()

        def _safe(props):
            try:
                return fn(props)
            except NoMatches:
                return None

        options.setdefault("name", getattr(fn, "__name__", "reaction"))
        super().__init__(state, _safe, guard=lambda: is_safe(app), **options)

    def __call__(self, props=None):
        if threading.get_ident() != self._main:
            return self._app.call_from_thread(super().__call__, props)
        return super().__call__(props)


def observer(app, state, fn, **options):
    """observer() that safely bridges to Textual widgets.

    Usage:
        render_title = stx.observer(app, state, lambda props: title.update(state["app"]["title"]))
        render_title()
    """
    return AppReaction(app, state, fn, **options)
