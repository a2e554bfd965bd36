"""Tests for the peer negotiation coordinator."""

import asyncio
from dataclasses import replace
from typing import Any, List, Optional, Tuple

import pytest

from fakes import FakeTrack, PeerFactory, eventually
from sfu_signaling.callbacks import EVENT_TRACK_PACKET, CallbackRegistry
from sfu_signaling.errors import NegotiationError, TransportError
from sfu_signaling.options import ConnectionOptions, Role, VideoCodec, VideoOptions
from sfu_signaling.rtc.ice import IceConfig
from sfu_signaling.rtc.negotiation import NegotiationCoordinator
from sfu_signaling.rtc.peer import EndOfStream, ICECandidate
from sfu_signaling.signaling.schemas import CandidateMessage


class Harness:
    def __init__(self, factory: Optional[PeerFactory] = None, **option_overrides: Any) -> None:
        self.options = replace(ConnectionOptions(channel_id="room"), **option_overrides)
        self.factory = factory or PeerFactory()
        self.callbacks = CallbackRegistry()
        self.sent: List[Any] = []
        self.ice_states: List[str] = []
        self.fatal: List[Tuple[str, Optional[BaseException]]] = []
        self.send_error: Optional[BaseException] = None
        self.coordinator = NegotiationCoordinator(
            self.options,
            self.callbacks,
            peer_factory=self.factory,
            send=self._send,
            on_ice_state=self.ice_states.append,
            on_fatal=self._on_fatal,
            keyframe_interval=0.02,
            close_poll_interval=0.01,
            close_attempts=3,
        )

    async def _send(self, message: Any) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(message)

    async def _on_fatal(self, reason: str, error: Optional[BaseException]) -> None:
        self.fatal.append((reason, error))


def test_create_peer_adds_audio_and_video_transceivers() -> None:
    harness = Harness()
    engine = harness.coordinator.create_peer(IceConfig())
    assert engine.transceivers == [("audio", "recvonly", "opus"), ("video", "recvonly", "VP8")]
    assert harness.coordinator.engine is engine


def test_create_peer_without_audio_uses_role_and_codec() -> None:
    harness = Harness(audio=False, role=Role.SENDRECV, video=VideoOptions(codec_type=VideoCodec.H264))
    engine = harness.coordinator.create_peer(IceConfig())
    assert engine.transceivers == [("video", "sendrecv", "H264")]


def test_create_peer_wraps_factory_errors() -> None:
    def broken_factory(ice_config: IceConfig) -> Any:
        raise RuntimeError("no media engine")

    harness = Harness()
    harness.coordinator._peer_factory = broken_factory
    with pytest.raises(NegotiationError) as excinfo:
        harness.coordinator.create_peer(IceConfig())
    assert excinfo.value.reason == "PEER-CONNECTION-ERROR"
    assert harness.coordinator.engine is None


def test_apply_offer_returns_committed_answer() -> None:
    async def scenario() -> None:
        harness = Harness()
        engine = harness.coordinator.create_peer(IceConfig())
        local = await harness.coordinator.apply_offer("v=0\r\n")
        assert local == "answer-1"
        assert [event[0] for event in engine.events] == ["remote", "local"]

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "engine_kwargs, reason",
    [
        ({"fail_remote": True}, "SET-REMOTE-DESCRIPTION-ERROR"),
        ({"fail_answer": True}, "CREATE-ANSWER-ERROR"),
    ],
)
def test_apply_offer_failures_carry_reason(engine_kwargs: dict, reason: str) -> None:
    async def scenario() -> None:
        harness = Harness(factory=PeerFactory(**engine_kwargs))
        harness.coordinator.create_peer(IceConfig())
        with pytest.raises(NegotiationError) as excinfo:
            await harness.coordinator.apply_offer("v=0\r\n")
        assert excinfo.value.reason == reason

    asyncio.run(scenario())


def test_apply_offer_without_engine_fails() -> None:
    async def scenario() -> None:
        with pytest.raises(NegotiationError):
            await Harness().coordinator.apply_offer("v=0\r\n")

    asyncio.run(scenario())


def test_remote_candidate_is_forwarded_and_rejections_swallowed() -> None:
    async def scenario() -> None:
        harness = Harness(trickle_ice=True)
        engine = harness.coordinator.create_peer(IceConfig())
        await harness.coordinator.add_remote_candidate(CandidateMessage(candidate="bad"))
        await harness.coordinator.add_remote_candidate(
            CandidateMessage(candidate="candidate:1 1 udp 1 10.0.0.1 5000 typ host", sdpMid="0")
        )
        assert engine.events == [("candidate", "0", "candidate:1 1 udp 1 10.0.0.1 5000 typ host")]

    asyncio.run(scenario())


def test_local_candidates_only_sent_with_trickle_ice() -> None:
    async def scenario() -> None:
        disabled = Harness()
        engine = disabled.coordinator.create_peer(IceConfig())
        engine.discover_candidate(ICECandidate("candidate:1 1 udp 1 10.0.0.1 5000 typ host", "0", 0))
        await asyncio.sleep(0.01)
        assert disabled.sent == []

        enabled = Harness(trickle_ice=True)
        engine = enabled.coordinator.create_peer(IceConfig())
        engine.discover_candidate(ICECandidate("candidate:1 1 udp 1 10.0.0.1 5000 typ host", "0", 0))
        await eventually(lambda: bool(enabled.sent))
        assert enabled.sent[0].candidate.startswith("candidate:1")
        assert enabled.sent[0].sdpMLineIndex == 0

    asyncio.run(scenario())


def test_candidate_send_failure_is_swallowed() -> None:
    async def scenario() -> None:
        harness = Harness(trickle_ice=True)
        harness.send_error = TransportError("websocket is not open")
        engine = harness.coordinator.create_peer(IceConfig())
        engine.discover_candidate(ICECandidate("candidate:1 1 udp 1 10.0.0.1 5000 typ host", "0", 0))
        await asyncio.sleep(0.02)
        assert harness.sent == []
        assert harness.fatal == []

    asyncio.run(scenario())


def test_ice_state_changes_are_forwarded() -> None:
    harness = Harness()
    engine = harness.coordinator.create_peer(IceConfig())
    engine.set_ice_state("checking")
    engine.set_ice_state("connected")
    assert harness.ice_states == ["checking", "connected"]


def test_keyframe_requests_stop_once_engine_closes() -> None:
    async def scenario() -> None:
        harness = Harness()
        engine = harness.coordinator.create_peer(IceConfig())
        engine.add_track(FakeTrack())
        await eventually(lambda: len(engine.feedback) >= 2)

        engine._signaling_state = "closed"
        await asyncio.sleep(0.05)
        count = len(engine.feedback)
        await asyncio.sleep(0.05)
        assert len(engine.feedback) == count
        harness.coordinator.stop()

    asyncio.run(scenario())


def test_read_errors_after_close_are_silent() -> None:
    async def scenario() -> None:
        harness = Harness()
        packets: List[Any] = []
        harness.callbacks.set(EVENT_TRACK_PACKET, lambda track, packet: packets.append(packet))
        engine = harness.coordinator.create_peer(IceConfig())
        track = FakeTrack()
        engine.add_track(track)
        track.packets.put_nowait(b"rtp")
        await eventually(lambda: packets == [b"rtp"])

        engine._signaling_state = "closed"
        track.packets.put_nowait(RuntimeError("closed pipe"))
        await asyncio.sleep(0.02)
        assert harness.fatal == []
        harness.coordinator.stop()

    asyncio.run(scenario())


def test_read_error_is_fatal_and_end_of_stream_is_not() -> None:
    async def scenario() -> None:
        harness = Harness()
        engine = harness.coordinator.create_peer(IceConfig())
        audio = FakeTrack(kind="audio", id="audio-1")
        video = FakeTrack(kind="video", id="video-1")
        engine.add_track(audio)
        engine.add_track(video)

        audio.packets.put_nowait(EndOfStream())
        await asyncio.sleep(0.02)
        assert harness.fatal == []

        error = OSError("socket reset")
        video.packets.put_nowait(error)
        await eventually(lambda: bool(harness.fatal))
        assert harness.fatal == [("READ-RTP-ERROR", error)]
        harness.coordinator.stop()

    asyncio.run(scenario())


def test_close_peer_gives_up_after_bounded_polls() -> None:
    async def scenario() -> None:
        harness = Harness(factory=PeerFactory(close_sets_state=False))
        engine = harness.coordinator.create_peer(IceConfig())
        await asyncio.wait_for(harness.coordinator.close_peer(), timeout=1.0)
        assert engine.close_calls == 1
        assert harness.coordinator.engine is None

        # handlers are detached from the retired engine
        engine.set_ice_state("failed")
        assert harness.ice_states == []

    asyncio.run(scenario())


def test_stop_cancels_track_tasks() -> None:
    async def scenario() -> None:
        harness = Harness()
        engine = harness.coordinator.create_peer(IceConfig())
        engine.add_track(FakeTrack())
        await asyncio.sleep(0)
        tasks = set(harness.coordinator._tasks)
        assert len(tasks) == 2

        harness.coordinator.stop()
        await asyncio.gather(*tasks, return_exceptions=True)
        assert all(task.cancelled() for task in tasks)

    asyncio.run(scenario())


def test_collect_stats() -> None:
    async def scenario() -> None:
        harness = Harness()
        assert await harness.coordinator.collect_stats() is None
        harness.coordinator.create_peer(IceConfig())
        stats = await harness.coordinator.collect_stats()
        assert stats == [{"type": "transport", "id": "T01", "bytesReceived": 1200}]

    asyncio.run(scenario())
