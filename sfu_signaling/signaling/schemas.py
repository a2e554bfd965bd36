"""
Pydantic schemas mirroring the signaling wire contract.

One model per message ``type``.  Outbound models are serialised with
``exclude_none`` so optional fields never reach the wire as ``null``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VideoModel(BaseModel):
    codec_type: str
    bitrate: Optional[int] = None


class SimulcastModel(BaseModel):
    quality: str = "high"


class ConnectMessage(BaseModel):
    type: Literal["connect"] = "connect"
    sora_client: str
    environment: str
    role: str
    channel_id: str
    client_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    multistream: Optional[bool] = None
    simulcast: Optional[SimulcastModel] = None
    audio: bool = True
    video: VideoModel
    sdp: str = ""


class AnswerMessage(BaseModel):
    type: Literal["answer", "update"] = "answer"
    sdp: str


class CandidateMessage(BaseModel):
    type: Literal["candidate"] = "candidate"
    candidate: str
    sdpMid: Optional[str] = None
    sdpMLineIndex: Optional[int] = None
    usernameFragment: Optional[str] = None


class PongMessage(BaseModel):
    type: Literal["pong"] = "pong"
    stats: Optional[List[Dict[str, Any]]] = None


class DisconnectMessage(BaseModel):
    type: Literal["disconnect"] = "disconnect"


class IceServerModel(BaseModel):
    urls: List[str] = Field(default_factory=list)
    username: Optional[str] = None
    credential: Optional[str] = None

    @field_validator("urls", mode="before")
    @classmethod
    def _coerce_urls(cls, value: object) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(item) for item in value]


class SignalingConfigModel(BaseModel):
    iceServers: List[IceServerModel] = Field(default_factory=list)
    iceTransportPolicy: str = "all"

    @field_validator("iceServers", mode="before")
    @classmethod
    def _none_as_empty(cls, value: object) -> object:
        return [] if value is None else value


class OfferMessage(BaseModel):
    type: Literal["offer"] = "offer"
    sdp: str
    version: str = ""
    client_id: str = ""
    connection_id: str = ""
    config: SignalingConfigModel = Field(default_factory=SignalingConfigModel)
    model_config = ConfigDict(extra="allow")


class UpdateMessage(BaseModel):
    type: Literal["update"] = "update"
    sdp: str


class PingMessage(BaseModel):
    type: Literal["ping"] = "ping"
    stats: bool = False


class NotifyMessage(BaseModel):
    type: Literal["notify"] = "notify"
    event_type: str
    role: Optional[str] = None
    connection_id: Optional[str] = None
    client_id: Optional[str] = None
    metadata: Optional[Any] = None
    minutes: Optional[int] = None
    channel_connections: Optional[int] = None
    channel_upstream_connections: Optional[int] = None
    channel_downstream_connections: Optional[int] = None
    model_config = ConfigDict(extra="allow")


class PushMessage(BaseModel):
    type: Literal["push"] = "push"
    data: Optional[Any] = None
    model_config = ConfigDict(extra="allow")


OutboundMessage = Union[
    ConnectMessage,
    AnswerMessage,
    CandidateMessage,
    PongMessage,
    DisconnectMessage,
]

InboundMessage = Union[
    OfferMessage,
    UpdateMessage,
    CandidateMessage,
    PingMessage,
    NotifyMessage,
    PushMessage,
]

INBOUND_MODELS: Dict[str, type] = {
    "offer": OfferMessage,
    "update": UpdateMessage,
    "candidate": CandidateMessage,
    "ping": PingMessage,
    "notify": NotifyMessage,
    "push": PushMessage,
}
