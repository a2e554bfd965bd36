"""
Control-plane wire format and socket transport.
"""

from __future__ import annotations

from .codec import decode_message, encode_message
from .schemas import (
    AnswerMessage,
    CandidateMessage,
    ConnectMessage,
    DisconnectMessage,
    NotifyMessage,
    OfferMessage,
    PingMessage,
    PongMessage,
    PushMessage,
    UpdateMessage,
)
from .transport import BaseTransport, WebSocketTransport

__all__ = [
    "AnswerMessage",
    "BaseTransport",
    "CandidateMessage",
    "ConnectMessage",
    "DisconnectMessage",
    "NotifyMessage",
    "OfferMessage",
    "PingMessage",
    "PongMessage",
    "PushMessage",
    "UpdateMessage",
    "WebSocketTransport",
    "decode_message",
    "encode_message",
]
