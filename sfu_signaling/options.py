"""
Per-session connection options and YAML profile loading.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"


class Role(str, Enum):
    """Direction requested from the SFU."""

    SENDONLY = "sendonly"
    RECVONLY = "recvonly"
    SENDRECV = "sendrecv"


class VideoCodec(str, Enum):
    """Video codecs the client can ask the SFU for."""

    VP8 = "VP8"
    VP9 = "VP9"
    H264 = "H264"
    AV1 = "AV1"


class SimulcastQuality(str, Enum):
    LOW = "low"
    MIDDLE = "middle"
    HIGH = "high"


@dataclass(frozen=True)
class VideoOptions:
    codec_type: VideoCodec = VideoCodec.VP8
    bitrate: Optional[int] = None

    def to_dict(self) -> dict:
        payload: Dict[str, Any] = {"codec_type": self.codec_type.value}
        if self.bitrate is not None:
            payload["bitrate"] = int(self.bitrate)
        return payload


@dataclass(frozen=True)
class SimulcastOptions:
    quality: SimulcastQuality = SimulcastQuality.HIGH

    def to_dict(self) -> dict:
        return {"quality": self.quality.value}


@dataclass(frozen=True)
class ConnectionOptions:
    """
    Immutable configuration for one signaling session.

    ``metadata`` is forwarded to the SFU untouched; the conventional keys are
    ``signaling_key``, ``turn_tcp_only`` and ``turn_tls_only``.
    """

    signaling_url: str = ""
    channel_id: str = ""
    client_id: Optional[str] = None
    role: Role = Role.RECVONLY
    audio: bool = True
    video: VideoOptions = field(default_factory=VideoOptions)
    simulcast: Optional[SimulcastOptions] = None
    multistream: Optional[bool] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    trickle_ice: bool = False
    debug: bool = False

    @property
    def transceiver_direction(self) -> str:
        return self.role.value

    def with_endpoint(self, signaling_url: str, channel_id: str) -> "ConnectionOptions":
        return replace(self, signaling_url=signaling_url, channel_id=channel_id)


def default_options() -> ConnectionOptions:
    """Return options for a receive-only session with audio and VP8 video."""

    return ConnectionOptions(
        role=Role.RECVONLY,
        audio=True,
        video=VideoOptions(codec_type=VideoCodec.VP8),
        debug=False,
        metadata={},
    )


def video_codec_by_name(name: str) -> VideoCodec:
    candidate = str(name or "").strip().upper()
    try:
        return VideoCodec(candidate)
    except ValueError:
        raise ValueError(f"unsupported video codec '{name}'") from None


def parse_role(value: object) -> Role:
    candidate = str(value or "").strip().lower()
    try:
        return Role(candidate)
    except ValueError:
        raise ValueError(f"unsupported role '{value}'") from None


def options_from_dict(payload: Mapping[str, Any]) -> ConnectionOptions:
    """
    Build :class:`ConnectionOptions` from a plain mapping (YAML profile, CLI).

    Unknown keys raise ``ValueError`` so typos in profile files do not go
    unnoticed.
    """

    data = dict(payload)
    known = set(ConnectionOptions.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"unknown option(s): {', '.join(unknown)}")

    if "role" in data:
        data["role"] = parse_role(data["role"])

    video = data.get("video")
    if isinstance(video, str):
        data["video"] = VideoOptions(codec_type=video_codec_by_name(video))
    elif isinstance(video, Mapping):
        bitrate = video.get("bitrate")
        data["video"] = VideoOptions(
            codec_type=video_codec_by_name(video.get("codec_type", VideoCodec.VP8.value)),
            bitrate=int(bitrate) if bitrate is not None else None,
        )

    simulcast = data.get("simulcast")
    if simulcast is True:
        data["simulcast"] = SimulcastOptions()
    elif simulcast is False:
        data["simulcast"] = None
    elif isinstance(simulcast, Mapping):
        quality = str(simulcast.get("quality") or SimulcastQuality.HIGH.value).lower()
        data["simulcast"] = SimulcastOptions(quality=SimulcastQuality(quality))

    if "metadata" in data:
        data["metadata"] = dict(data["metadata"] or {})

    for flag in ("audio", "trickle_ice", "debug"):
        if flag in data:
            data[flag] = bool(data[flag])

    return ConnectionOptions(**data)


@lru_cache(maxsize=8)
def _read_profiles(path: str) -> Dict[str, Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"profile file {path} must contain a mapping")
    return loaded


def load_profile(name: str = "default", path: Optional[Path] = None, **overrides: Any) -> ConnectionOptions:
    """
    Load the named profile and apply keyword ``overrides`` on top of it.
    """

    profiles = _read_profiles(str(path or PROFILES_PATH))
    if name not in profiles:
        raise ValueError(f"unknown profile '{name}'")
    merged: Dict[str, Any] = dict(profiles[name] or {})
    merged.update({key: value for key, value in overrides.items() if value is not None})
    return options_from_dict(merged)


__all__ = [
    "ConnectionOptions",
    "Role",
    "SimulcastOptions",
    "SimulcastQuality",
    "VideoCodec",
    "VideoOptions",
    "default_options",
    "load_profile",
    "options_from_dict",
    "parse_role",
    "video_codec_by_name",
]
