"""
WebRTC helpers.

:mod:`sfu_signaling.rtc.aiortc_engine` is not imported here so the
negotiation layer can be used without loading aiortc.
"""

from __future__ import annotations

from .ice import IceConfig, IceServer
from .negotiation import NegotiationCoordinator
from .peer import EndOfStream, ICECandidate, InboundTrack, PeerEngine
from .sdp import cleanup_sdp

__all__ = [
    "EndOfStream",
    "ICECandidate",
    "IceConfig",
    "IceServer",
    "InboundTrack",
    "NegotiationCoordinator",
    "PeerEngine",
    "cleanup_sdp",
]
