"""
aiortc-backed peer engine.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, is_dataclass
from typing import Any, Dict, List, Optional

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCRtpReceiver,
    RTCSessionDescription,
)
from aiortc.mediastreams import MediaStreamError
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from .ice import IceConfig
from .peer import (
    EVENT_ICE_CANDIDATE,
    EVENT_ICE_CONNECTION_STATE,
    EVENT_SIGNALING_STATE,
    EVENT_TRACK,
    EndOfStream,
    ICECandidate,
    InboundTrack,
    PeerEngine,
)

LOG = logging.getLogger(__name__)


class AiortcTrack(InboundTrack):
    """Wrap a remote aiortc track; packets are the decoded frames it yields."""

    def __init__(self, track: MediaStreamTrack, receiver: Optional[RTCRtpReceiver] = None) -> None:
        self._track = track
        self.receiver = receiver

    @property
    def kind(self) -> str:
        return self._track.kind

    @property
    def id(self) -> str:
        return self._track.id

    async def read_next(self) -> Any:
        try:
            return await self._track.recv()
        except MediaStreamError as exc:
            raise EndOfStream(str(exc) or "track ended") from exc


def _codec_preferences(kind: str, codec: str) -> list:
    capabilities = RTCRtpReceiver.getCapabilities(kind)
    wanted = f"{kind}/{codec}".lower()
    preferred = [item for item in capabilities.codecs if item.mimeType.lower() == wanted]
    if not preferred:
        return []
    retransmission = [item for item in capabilities.codecs if item.mimeType.lower() == f"{kind}/rtx"]
    return preferred + retransmission


def _stat_to_dict(stat: Any) -> Dict[str, Any]:
    payload = asdict(stat) if is_dataclass(stat) else dict(vars(stat))
    for key, value in list(payload.items()):
        if hasattr(value, "isoformat"):
            payload[key] = value.isoformat()
    return payload


class AiortcPeerEngine(PeerEngine):
    """
    :class:`PeerEngine` on top of :class:`aiortc.RTCPeerConnection`.

    aiortc has no ``iceTransportPolicy``; a relay-only policy is honoured by
    handing only TURN servers to the connection.
    """

    def __init__(self, ice_config: IceConfig) -> None:
        super().__init__()
        ice_servers = [
            RTCIceServer(urls=server.urls, username=server.username, credential=server.credential)
            for server in ice_config.iter_servers()
        ]
        self._pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=ice_servers))
        self._pc.on("track", self._handle_track)
        self._pc.on("icecandidate", self._handle_ice_candidate)
        self._pc.on("iceconnectionstatechange", self._handle_ice_connection_state)
        self._pc.on("signalingstatechange", self._handle_signaling_state)
        LOG.debug("RTCPeerConnection created with %d ICE server(s)", len(ice_servers))

    @property
    def peer_connection(self) -> RTCPeerConnection:
        return self._pc

    # ------------------------------------------------------------------ aiortc events

    def _handle_track(self, track: MediaStreamTrack) -> None:
        receiver = None
        for transceiver in self._pc.getTransceivers():
            if transceiver.receiver is not None and transceiver.receiver.track is track:
                receiver = transceiver.receiver
                break
        self._emit(EVENT_TRACK, AiortcTrack(track, receiver))

    def _handle_ice_candidate(self, candidate: Any) -> None:
        if candidate is None:
            self._emit(EVENT_ICE_CANDIDATE, None)
            return
        self._emit(
            EVENT_ICE_CANDIDATE,
            ICECandidate(
                candidate="candidate:" + candidate_to_sdp(candidate),
                sdp_mid=candidate.sdpMid,
                sdp_mline_index=candidate.sdpMLineIndex,
            ),
        )

    def _handle_ice_connection_state(self) -> None:
        self._emit(EVENT_ICE_CONNECTION_STATE, self._pc.iceConnectionState)

    def _handle_signaling_state(self) -> None:
        self._emit(EVENT_SIGNALING_STATE, self._pc.signalingState)

    # ------------------------------------------------------------------ state

    @property
    def signaling_state(self) -> str:
        return self._pc.signalingState

    @property
    def ice_connection_state(self) -> str:
        return self._pc.iceConnectionState

    @property
    def local_description(self) -> Optional[str]:
        description = self._pc.localDescription
        return description.sdp if description is not None else None

    # ------------------------------------------------------------------ negotiation

    def add_transceiver(self, kind: str, direction: str, codec: Optional[str] = None) -> None:
        transceiver = self._pc.addTransceiver(kind, direction=direction)
        if not codec:
            return
        preferences = _codec_preferences(kind, codec)
        if not preferences:
            LOG.warning("aiortc has no %s codec named %s; keeping defaults", kind, codec)
            return
        transceiver.setCodecPreferences(preferences)

    async def set_remote_description(self, sdp: str, type: str = "offer") -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type=type))

    async def create_answer(self) -> str:
        answer = await self._pc.createAnswer()
        return answer.sdp

    async def set_local_description(self, sdp: str, type: str = "answer") -> None:
        await self._pc.setLocalDescription(RTCSessionDescription(sdp=sdp, type=type))

    async def add_ice_candidate(self, candidate: ICECandidate) -> None:
        value = candidate.candidate.strip()
        if not value:
            return
        if value.startswith("candidate:"):
            value = value[len("candidate:"):]
        parsed = candidate_from_sdp(value)
        parsed.sdpMid = candidate.sdp_mid
        parsed.sdpMLineIndex = candidate.sdp_mline_index
        await self._pc.addIceCandidate(parsed)

    # ------------------------------------------------------------------ media

    async def write_control_feedback(self, track: InboundTrack) -> None:
        receiver = getattr(track, "receiver", None)
        if receiver is None:
            return
        # aiortc exposes no public keyframe request; PLI goes through the receiver.
        for source in receiver.getSynchronizationSources():
            await receiver._send_rtcp_pli(source.source)

    async def get_stats(self) -> List[Dict[str, Any]]:
        report = await self._pc.getStats()
        return [_stat_to_dict(stat) for stat in report.values()]

    async def close(self) -> None:
        await self._pc.close()


def create_aiortc_engine(ice_config: IceConfig) -> AiortcPeerEngine:
    return AiortcPeerEngine(ice_config)


__all__ = ["AiortcPeerEngine", "AiortcTrack", "create_aiortc_engine"]
