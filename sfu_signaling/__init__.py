"""
Signaling client for WebRTC selective forwarding units.

The package drives one session per :class:`Connection`: it opens the
signaling WebSocket, answers the SFU's offers through a pluggable peer engine
(aiortc by default) and reports media and lifecycle events to application
callbacks.
"""

from __future__ import annotations

import logging

from .connection import CLIENT_VERSION, Connection, ConnectionState
from .errors import (
    ICEFailure,
    NegotiationError,
    ProtocolError,
    SignalingError,
    TransportError,
)
from .options import (
    ConnectionOptions,
    Role,
    SimulcastOptions,
    SimulcastQuality,
    VideoCodec,
    VideoOptions,
    default_options,
    load_profile,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "CLIENT_VERSION",
    "Connection",
    "ConnectionOptions",
    "ConnectionState",
    "ICEFailure",
    "NegotiationError",
    "ProtocolError",
    "Role",
    "SignalingError",
    "SimulcastOptions",
    "SimulcastQuality",
    "TransportError",
    "VideoCodec",
    "VideoOptions",
    "default_options",
    "load_profile",
]
