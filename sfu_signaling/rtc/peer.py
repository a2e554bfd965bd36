"""
Interface to the peer-connection (media) engine.

The signaling client never implements ICE, DTLS or RTP itself.  It drives an
engine through :class:`PeerEngine` and consumes media through
:class:`InboundTrack`; :mod:`sfu_signaling.rtc.aiortc_engine` provides the
default implementation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .ice import IceConfig

LOG = logging.getLogger(__name__)

SIGNALING_STATE_CLOSED = "closed"
CONNECTED_ICE_STATES = frozenset({"connected", "completed"})
FAILED_ICE_STATES = frozenset({"disconnected", "failed"})

EVENT_TRACK = "track"
EVENT_ICE_CANDIDATE = "icecandidate"
EVENT_ICE_CONNECTION_STATE = "iceconnectionstatechange"
EVENT_SIGNALING_STATE = "signalingstatechange"


class EndOfStream(Exception):
    """Raised by :meth:`InboundTrack.read_next` once the track has ended."""


@dataclass
class ICECandidate:
    """Serialisable ICE candidate container."""

    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None
    username_fragment: Optional[str] = None


class InboundTrack(ABC):
    """A remote media track delivering packets until it ends."""

    @property
    @abstractmethod
    def kind(self) -> str:
        """``"audio"`` or ``"video"``."""

    @property
    @abstractmethod
    def id(self) -> str:
        """Track identifier."""

    @abstractmethod
    async def read_next(self) -> Any:
        """
        Return the next packet.

        Raises:
            EndOfStream: the track ended normally.
        """


class PeerEngine(ABC):
    """
    Capability set the negotiation layer needs from a media engine.

    Event handlers are registered with the ``on_*`` methods and dispatched by
    implementations through :meth:`_emit`.  Handlers are plain callables; an
    exception raised by a handler is logged and does not reach the engine.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, Callable[..., Any]] = {}

    # ------------------------------------------------------------------ events

    def on_track(self, handler: Callable[[InboundTrack], Any]) -> None:
        self._handlers[EVENT_TRACK] = handler

    def on_ice_candidate(self, handler: Callable[[Optional[ICECandidate]], Any]) -> None:
        self._handlers[EVENT_ICE_CANDIDATE] = handler

    def on_ice_connection_state_change(self, handler: Callable[[str], Any]) -> None:
        self._handlers[EVENT_ICE_CONNECTION_STATE] = handler

    def on_signaling_state_change(self, handler: Callable[[str], Any]) -> None:
        self._handlers[EVENT_SIGNALING_STATE] = handler

    def remove_handler(self, event: str) -> None:
        self._handlers.pop(event, None)

    def _emit(self, event: str, *args: Any) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            return
        try:
            handler(*args)
        except Exception:  # pragma: no cover - handler failures must not kill the engine
            LOG.exception("Peer engine handler for %s failed.", event)

    # ------------------------------------------------------------------ state

    @property
    @abstractmethod
    def signaling_state(self) -> str:
        """Current signaling state (``stable``, ``have-remote-offer``, ``closed`` ...)."""

    @property
    @abstractmethod
    def ice_connection_state(self) -> str:
        """Current ICE connection state."""

    @property
    @abstractmethod
    def local_description(self) -> Optional[str]:
        """SDP of the committed local description, if any."""

    # ------------------------------------------------------------------ negotiation

    @abstractmethod
    def add_transceiver(self, kind: str, direction: str, codec: Optional[str] = None) -> None:
        """Add a transceiver; ``codec`` is a preferred codec name (``VP8``, ``opus`` ...)."""

    @abstractmethod
    async def set_remote_description(self, sdp: str, type: str = "offer") -> None:
        """Apply a remote description."""

    @abstractmethod
    async def create_answer(self) -> str:
        """Create an answer for the current remote offer and return its SDP."""

    @abstractmethod
    async def set_local_description(self, sdp: str, type: str = "answer") -> None:
        """Commit a local description."""

    @abstractmethod
    async def add_ice_candidate(self, candidate: ICECandidate) -> None:
        """Add a remote ICE candidate."""

    # ------------------------------------------------------------------ media

    @abstractmethod
    async def write_control_feedback(self, track: InboundTrack) -> None:
        """Ask the sender of ``track`` for a keyframe (RTCP PLI)."""

    async def get_stats(self) -> List[Dict[str, Any]]:
        return []

    @abstractmethod
    async def close(self) -> None:
        """Start closing the engine; the signaling state becomes ``closed``."""


PeerEngineFactory = Callable[[IceConfig], PeerEngine]


__all__ = [
    "CONNECTED_ICE_STATES",
    "EVENT_ICE_CANDIDATE",
    "EVENT_ICE_CONNECTION_STATE",
    "EVENT_SIGNALING_STATE",
    "EVENT_TRACK",
    "EndOfStream",
    "FAILED_ICE_STATES",
    "ICECandidate",
    "InboundTrack",
    "PeerEngine",
    "PeerEngineFactory",
    "SIGNALING_STATE_CLOSED",
]
