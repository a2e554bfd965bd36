"""
Error types and disconnect reason tags.

Every failure that ends a session is reported through the ``disconnect``
callback as a ``(reason, error)`` pair.  The reason strings below are part of
the public contract; the exception classes carry a default reason so the
connection engine can map an error to its tag without a lookup table.
"""

from __future__ import annotations

from typing import Optional

REASON_DISCONNECT = "DISCONNECT"
REASON_WEBSOCKET_CLOSED = "WEBSOCKET-CLOSED"
REASON_INVALID_MESSAGE = "INVALID-MESSAGE"
REASON_SEND_MESSAGE_ERROR = "SEND-MESSAGE-ERROR"
REASON_PEER_CONNECTION_ERROR = "PEER-CONNECTION-ERROR"
REASON_SET_REMOTE_DESCRIPTION_ERROR = "SET-REMOTE-DESCRIPTION-ERROR"
REASON_CREATE_ANSWER_ERROR = "CREATE-ANSWER-ERROR"
REASON_ICE_FAILED = "ICE-CONNECTION-STATE-FAILED"
REASON_READ_RTP_ERROR = "READ-RTP-ERROR"


class SignalingError(RuntimeError):
    """Base class for signaling related errors."""

    reason = REASON_DISCONNECT

    def __init__(self, message: str = "", *, reason: Optional[str] = None) -> None:
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class TransportError(SignalingError):
    """Raised when the signaling socket cannot be opened, read or written."""

    reason = REASON_WEBSOCKET_CLOSED


class ProtocolError(SignalingError):
    """Raised for malformed JSON or an unrecognised message type."""

    reason = REASON_INVALID_MESSAGE


class NegotiationError(SignalingError):
    """Raised when the media engine rejects a remote or local description."""

    reason = REASON_SET_REMOTE_DESCRIPTION_ERROR


class ICEFailure(SignalingError):
    """Raised when ICE connectivity is lost or never established."""

    reason = REASON_ICE_FAILED


__all__ = [
    "ICEFailure",
    "NegotiationError",
    "ProtocolError",
    "REASON_CREATE_ANSWER_ERROR",
    "REASON_DISCONNECT",
    "REASON_ICE_FAILED",
    "REASON_INVALID_MESSAGE",
    "REASON_PEER_CONNECTION_ERROR",
    "REASON_READ_RTP_ERROR",
    "REASON_SEND_MESSAGE_ERROR",
    "REASON_SET_REMOTE_DESCRIPTION_ERROR",
    "REASON_WEBSOCKET_CLOSED",
    "SignalingError",
    "TransportError",
]
