"""Per-instance publish/subscribe registry.

Owned by a ProcessSupervisor. Subscribing returns a Subscription whose
``cancel()`` removes exactly that callback.
"""
from __future__ import annotations

import logging
from typing import Any

from .config import Listener, fire_event

logger = logging.getLogger(__name__)


class Subscription:
    """Cancellation handle returned by :meth:`ListenerRegistry.on`."""

    def __init__(self, registry: ListenerRegistry, name: str, callback: Listener) -> None:
        self._registry = registry
        self.name = name
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if self._active:
            self._registry._remove(self)
            self._active = False

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()


class ListenerRegistry:
    """Named channels of listeners, notified in subscription order."""

    def __init__(self) -> None:
        self._subs: dict[str, list[Subscription]] = {}

    def on(self, name: str, callback: Listener) -> Subscription:
        sub = Subscription(self, name, callback)
        self._subs.setdefault(name, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.name)
        if not subs:
            return
        try:
            subs.remove(sub)
        except ValueError:
            return
        if not subs:
            del self._subs[sub.name]

    def count(self, name: str) -> int:
        return len(self._subs.get(name, ()))

    def clear(self) -> None:
        for subs in self._subs.values():
            for sub in subs:
                sub._active = False
        self._subs.clear()

    async def emit(self, name: str, payload: Any) -> None:
        # Snapshot so a listener may cancel itself mid-dispatch
        for sub in list(self._subs.get(name, ())):
            await fire_event(sub.callback, payload)
