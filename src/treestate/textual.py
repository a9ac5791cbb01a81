"""Textual integration for treestate. Opt-in, requires textual.

Store listeners that touch widgets go through here: they are skipped while
the app is not running or inside ``pause(app)``, ``NoMatches`` from widget
queries is swallowed, and calls arriving on another thread (debounce timers,
async thunks run elsewhere) are marshaled with ``app.call_from_thread``.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

# Module-owned pause state, keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend guarded listeners during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def _guard(app, fn):
    _main = threading.get_ident()

    def _safe(new, old):
        try:
            fn(new, old)
        except NoMatches:
            pass

    def _guarded(new, old):
        if not is_safe(app):
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe, new, old)
        else:
            _safe(new, old)

    return _guarded


def subscribe(app, store, listener):
    """store.subscribe() that safely bridges to Textual widgets."""
    return store.subscribe(_guard(app, listener))


def subscribe_to(app, store, selector, effect, **options):
    """store.subscribe_to() that safely bridges to Textual widgets.

    ``effect(new, old)`` runs on the app thread; options are passed through
    (``equality_fn``, ``debounce_ms``, ``immediate``).
    """
    return store.subscribe_to(selector, _guard(app, effect), **options)


def subscribe_to_path(app, store, path, effect, **options):
    """store.subscribe_to_path() that safely bridges to Textual widgets."""
    return store.subscribe_to_path(path, _guard(app, effect), **options)
