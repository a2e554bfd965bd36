"""
Encode outbound control messages and classify inbound ones.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Union

from pydantic import BaseModel, ValidationError

from ..errors import ProtocolError
from .schemas import INBOUND_MODELS, InboundMessage


def encode_message(message: BaseModel) -> str:
    """Serialise ``message`` to a single newline-free JSON text frame."""

    return message.model_dump_json(exclude_none=True)


def parse_object(raw: Union[str, bytes, bytearray]) -> Dict[str, Any]:
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError(f"expected a JSON object, got {type(payload).__name__}")
    return payload


def message_type(payload: Dict[str, Any]) -> str:
    kind = payload.get("type")
    if not isinstance(kind, str) or not kind:
        raise ProtocolError("message has no 'type'")
    return kind


def decode_message(raw: Union[str, bytes, bytearray]) -> InboundMessage:
    """
    Decode one inbound frame into its typed model.

    Raises :class:`ProtocolError` for anything that is not a JSON object with
    a known ``type`` and valid fields.
    """

    payload = parse_object(raw)
    kind = message_type(payload)
    model = INBOUND_MODELS.get(kind)
    if model is None:
        raise ProtocolError(f"invalid message type '{kind}'")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ProtocolError(f"invalid '{kind}' message: {exc}") from exc


__all__ = ["decode_message", "encode_message", "message_type", "parse_object"]
