"""Connectivity signal: an observable online/offline flag."""

import inspect
import logging
from typing import Awaitable, Callable, Union

logger = logging.getLogger(__name__)

Listener = Callable[[bool], Union[None, Awaitable[None]]]


class ConnectivityMonitor:
    """Tracks whether the remote store is reachable and notifies on transitions."""

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[Listener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Listener):
        """Register a listener called with the new state on every transition."""
        self._listeners.append(listener)

    async def set_online(self, online: bool):
        """
        Update connectivity state.

        Listeners only fire when the state actually changes. Async listeners are
        awaited in registration order.
        """
        if online == self._online:
            return

        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")

        for listener in self._listeners:
            result = listener(online)
            if inspect.isawaitable(result):
                await result
