"""
Signaling socket adapters.

The connection engine only talks to :class:`BaseTransport`; the default
implementation speaks WebSocket through the ``websockets`` client.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from ..errors import TransportError

LOG = logging.getLogger(__name__)

READ_TIMEOUT = 90.0
WRITE_TIMEOUT = 10.0
READ_LIMIT = 1048576


class BaseTransport(ABC):
    """
    Persistent, message-framed duplex socket to the signaling endpoint.

    Implementations raise :class:`TransportError` for every open, read or
    write failure, including timeouts and a normal close by the peer.
    """

    @abstractmethod
    async def open(self, url: str) -> None:
        """Connect to ``url``."""

    @abstractmethod
    async def send(self, data: str) -> None:
        """Send one text frame under the write deadline."""

    @abstractmethod
    async def receive(self) -> Union[str, bytes]:
        """Block for the next frame (text, or bytes for binary frames) under the read deadline."""

    @abstractmethod
    async def close(self) -> None:
        """Close the socket.  Must be a no-op when already closed."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while the socket can be used."""


class WebSocketTransport(BaseTransport):
    """WebSocket client transport with bounded read and write deadlines."""

    def __init__(
        self,
        *,
        read_timeout: float = READ_TIMEOUT,
        write_timeout: float = WRITE_TIMEOUT,
        max_size: int = READ_LIMIT,
    ) -> None:
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.max_size = max_size
        self._ws: Optional[Any] = None
        self._url: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def open(self, url: str) -> None:
        if self._ws is not None:
            raise TransportError("websocket already open")
        LOG.debug("Connecting to %s", url)
        try:
            self._ws = await websockets.connect(
                url,
                max_size=self.max_size,
                open_timeout=self.write_timeout,
                # The SFU pings in-protocol; the read deadline covers liveness.
                ping_interval=None,
            )
        except asyncio.CancelledError:
            raise
        except (InvalidURI, InvalidHandshake, OSError, asyncio.TimeoutError) as exc:
            raise TransportError(f"failed to open {url}: {exc}") from exc
        self._url = url
        LOG.debug("Connected to %s", url)

    async def send(self, data: str) -> None:
        ws = self._ws
        if ws is None:
            raise TransportError("websocket is not open")
        try:
            await asyncio.wait_for(ws.send(data), timeout=self.write_timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError("write timeout") from exc
        except ConnectionClosed as exc:
            raise TransportError(f"websocket closed: {exc}") from exc

    async def receive(self) -> Union[str, bytes]:
        ws = self._ws
        if ws is None:
            raise TransportError("websocket is not open")
        try:
            frame = await asyncio.wait_for(ws.recv(), timeout=self.read_timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError("read timeout") from exc
        except ConnectionClosed as exc:
            raise TransportError(f"websocket closed: {exc}") from exc
        # binary frames are passed through; the codec rejects invalid UTF-8
        return frame

    async def close(self) -> None:
        ws = self._ws
        if ws is None:
            return
        self._ws = None
        try:
            await asyncio.wait_for(ws.close(code=1000), timeout=self.write_timeout)
        except (ConnectionClosed, OSError, asyncio.TimeoutError) as exc:
            LOG.debug("Failed to send close frame to %s: %s", self._url, exc)
        else:
            LOG.debug("Sent close frame to %s", self._url)


__all__ = [
    "BaseTransport",
    "READ_LIMIT",
    "READ_TIMEOUT",
    "WRITE_TIMEOUT",
    "WebSocketTransport",
]
