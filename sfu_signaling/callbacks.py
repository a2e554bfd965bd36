"""
Registry of application event handlers.
"""

from __future__ import annotations

import inspect
import logging
import threading
from typing import Any, Callable, Dict, Tuple

LOG = logging.getLogger(__name__)

EVENT_OPEN = "open"
EVENT_CONNECT = "connect"
EVENT_DISCONNECT = "disconnect"
EVENT_TRACK = "track"
EVENT_TRACK_PACKET = "track_packet"
EVENT_NOTIFY = "notify"
EVENT_PUSH = "push"

EVENTS: Tuple[str, ...] = (
    EVENT_OPEN,
    EVENT_CONNECT,
    EVENT_DISCONNECT,
    EVENT_TRACK,
    EVENT_TRACK_PACKET,
    EVENT_NOTIFY,
    EVENT_PUSH,
)


def _noop(*_args: Any) -> None:
    return None


class CallbackRegistry:
    """
    One current handler per event name.

    Replacing a handler and looking one up are both serialised by a lock; the
    handler itself always runs outside the lock so it may replace handlers or
    tear the connection down.  Handlers may be plain functions or coroutine
    functions.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: Dict[str, Callable[..., Any]] = {name: _noop for name in EVENTS}

    def set(self, event: str, handler: Callable[..., Any]) -> None:
        if event not in EVENTS:
            raise KeyError(f"unknown event '{event}'")
        if not callable(handler):
            raise TypeError("handler must be callable")
        with self._lock:
            self._handlers[event] = handler

    def get(self, event: str) -> Callable[..., Any]:
        with self._lock:
            return self._handlers[event]

    def reset(self) -> None:
        with self._lock:
            self._handlers = {name: _noop for name in EVENTS}

    async def fire(self, event: str, *args: Any) -> None:
        await self.invoke(self.get(event), event, *args)

    @staticmethod
    async def invoke(handler: Callable[..., Any], event: str, *args: Any) -> None:
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOG.exception("Handler for %s event failed.", event)


__all__ = [
    "CallbackRegistry",
    "EVENTS",
    "EVENT_CONNECT",
    "EVENT_DISCONNECT",
    "EVENT_NOTIFY",
    "EVENT_OPEN",
    "EVENT_PUSH",
    "EVENT_TRACK",
    "EVENT_TRACK_PACKET",
]
