"""
Peer negotiation layered on top of a :class:`PeerEngine`.

The coordinator owns the peer engine for its lifetime: it instantiates it
with the ICE snapshot from the offer, registers the transceivers implied by
the connection options, answers offers and updates, and supervises one
packet-read task plus one keyframe-request task per inbound track.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ..callbacks import EVENT_TRACK, EVENT_TRACK_PACKET, CallbackRegistry
from ..errors import (
    REASON_CREATE_ANSWER_ERROR,
    REASON_PEER_CONNECTION_ERROR,
    REASON_READ_RTP_ERROR,
    REASON_SET_REMOTE_DESCRIPTION_ERROR,
    NegotiationError,
    TransportError,
)
from ..options import ConnectionOptions
from ..signaling.schemas import CandidateMessage
from .ice import IceConfig
from .peer import (
    EVENT_ICE_CANDIDATE,
    EVENT_ICE_CONNECTION_STATE,
    EVENT_SIGNALING_STATE,
    EVENT_TRACK as PEER_EVENT_TRACK,
    SIGNALING_STATE_CLOSED,
    EndOfStream,
    ICECandidate,
    InboundTrack,
    PeerEngine,
    PeerEngineFactory,
)

LOG = logging.getLogger(__name__)

KEYFRAME_INTERVAL = 3.0
PEER_CLOSE_POLL_INTERVAL = 0.4
PEER_CLOSE_MAX_ATTEMPTS = 10

SendCallable = Callable[[CandidateMessage], Awaitable[None]]
FatalCallable = Callable[[str, Optional[BaseException]], Awaitable[None]]


class NegotiationCoordinator:
    def __init__(
        self,
        options: ConnectionOptions,
        callbacks: CallbackRegistry,
        *,
        peer_factory: PeerEngineFactory,
        send: SendCallable,
        on_ice_state: Callable[[str], None],
        on_fatal: FatalCallable,
        logger: Optional[logging.Logger] = None,
        keyframe_interval: float = KEYFRAME_INTERVAL,
        close_poll_interval: float = PEER_CLOSE_POLL_INTERVAL,
        close_attempts: int = PEER_CLOSE_MAX_ATTEMPTS,
    ) -> None:
        self.options = options
        self.callbacks = callbacks
        self.engine: Optional[PeerEngine] = None
        self.keyframe_interval = max(0.01, float(keyframe_interval))
        self.close_poll_interval = max(0.0, float(close_poll_interval))
        self.close_attempts = max(1, int(close_attempts))
        self.logger = logger or LOG
        self._peer_factory = peer_factory
        self._send = send
        self._on_ice_state = on_ice_state
        self._on_fatal = on_fatal
        self._tasks: Set[asyncio.Task] = set()

    def _trace(self, msg: str, *args: Any) -> None:
        if self.options.debug:
            self.logger.debug(msg, *args)

    # ------------------------------------------------------------------ lifecycle

    def create_peer(self, ice_config: IceConfig) -> PeerEngine:
        """
        Instantiate a peer engine and register transceivers and handlers.

        Raises:
            NegotiationError: the engine could not be created or configured.
        """

        direction = self.options.transceiver_direction
        try:
            engine = self._peer_factory(ice_config)
            if self.options.audio:
                engine.add_transceiver("audio", direction, "opus")
            engine.add_transceiver("video", direction, self.options.video.codec_type.value)
        except Exception as exc:
            raise NegotiationError(
                f"failed to create peer engine: {exc}", reason=REASON_PEER_CONNECTION_ERROR
            ) from exc

        engine.on_track(lambda track: self._handle_track(engine, track))
        engine.on_ice_connection_state_change(self._on_ice_state)
        engine.on_signaling_state_change(
            lambda state: self._trace("signaling state changed to %s", state)
        )
        if self.options.trickle_ice:
            engine.on_ice_candidate(self._handle_local_candidate)

        self.engine = engine
        self._trace("peer engine created (%s, direction=%s)", ice_config.describe(), direction)
        return engine

    async def close_peer(self) -> None:
        """
        Close the current peer engine, if any.

        The engine's close is asynchronous, so its signaling state is polled a
        bounded number of times instead of waiting indefinitely.
        """

        engine = self.engine
        if engine is None:
            return
        self.engine = None
        self.stop()
        for event in (PEER_EVENT_TRACK, EVENT_ICE_CANDIDATE, EVENT_ICE_CONNECTION_STATE, EVENT_SIGNALING_STATE):
            engine.remove_handler(event)

        if engine.signaling_state == SIGNALING_STATE_CLOSED:
            return

        close_task = asyncio.ensure_future(engine.close())
        close_task.add_done_callback(self._log_close_failure)
        for _ in range(self.close_attempts):
            await asyncio.wait({close_task}, timeout=self.close_poll_interval)
            if engine.signaling_state == SIGNALING_STATE_CLOSED:
                self._trace("peer engine closed")
                return
        self.logger.warning(
            "Peer engine did not report closed after %d attempts", self.close_attempts
        )

    def _log_close_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.warning("Peer engine close failed: %s", exc)

    def stop(self) -> None:
        """Cancel every supervised task except the one calling ``stop``."""

        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _is_retired(self, engine: PeerEngine) -> bool:
        return engine is not self.engine or engine.signaling_state == SIGNALING_STATE_CLOSED

    # ------------------------------------------------------------------ negotiation

    async def apply_offer(self, sdp: str, type: str = "offer") -> Optional[str]:
        """
        Apply a remote offer, commit a local answer and return the committed SDP.
        """

        engine = self.engine
        if engine is None:
            raise NegotiationError("no peer engine", reason=REASON_SET_REMOTE_DESCRIPTION_ERROR)

        try:
            await engine.set_remote_description(sdp, type)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise NegotiationError(
                f"remote description rejected: {exc}", reason=REASON_SET_REMOTE_DESCRIPTION_ERROR
            ) from exc
        self._trace("set remote description sdp=%s", sdp)

        try:
            answer = await engine.create_answer()
            await engine.set_local_description(answer, "answer")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise NegotiationError(
                f"failed to create answer: {exc}", reason=REASON_CREATE_ANSWER_ERROR
            ) from exc

        local_sdp = engine.local_description
        self._trace("committed local description sdp=%s", local_sdp)
        return local_sdp

    async def add_remote_candidate(self, message: CandidateMessage) -> None:
        engine = self.engine
        if engine is None:
            self._trace("candidate ignored: no peer engine")
            return
        candidate = ICECandidate(
            candidate=message.candidate,
            sdp_mid=message.sdpMid,
            sdp_mline_index=message.sdpMLineIndex,
            username_fragment=message.usernameFragment,
        )
        try:
            await engine.add_ice_candidate(candidate)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.warning("Remote ICE candidate rejected: %s", exc)

    async def collect_stats(self) -> Optional[List[Dict[str, Any]]]:
        engine = self.engine
        if engine is None:
            return None
        try:
            return await engine.get_stats()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.warning("Failed to collect peer stats: %s", exc)
            return None

    def _handle_local_candidate(self, candidate: Optional[ICECandidate]) -> None:
        if candidate is None:
            self._trace("local ICE gathering complete")
            return
        message = CandidateMessage(
            candidate=candidate.candidate,
            sdpMid=candidate.sdp_mid,
            sdpMLineIndex=candidate.sdp_mline_index,
            usernameFragment=candidate.username_fragment,
        )
        self._spawn(self._send_candidate(message))

    async def _send_candidate(self, message: CandidateMessage) -> None:
        try:
            await self._send(message)
        except TransportError as exc:
            self.logger.warning("Failed to send ICE candidate: %s", exc)

    # ------------------------------------------------------------------ tracks

    def _handle_track(self, engine: PeerEngine, track: InboundTrack) -> None:
        if engine is not self.engine:
            return
        self._trace("track received: id=%s kind=%s", track.id, track.kind)
        self._spawn(self._read_loop(engine, track))
        self._spawn(self._keyframe_loop(engine, track))

    async def _keyframe_loop(self, engine: PeerEngine, track: InboundTrack) -> None:
        while True:
            await asyncio.sleep(self.keyframe_interval)
            if self._is_retired(engine):
                return
            try:
                await engine.write_control_feedback(track)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._trace("failed to write RTCP packet: %s", exc)

    async def _read_loop(self, engine: PeerEngine, track: InboundTrack) -> None:
        await self.callbacks.fire(EVENT_TRACK, track)
        while True:
            try:
                packet = await track.read_next()
            except EndOfStream:
                self._trace("track %s ended", track.id)
                return
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if self._is_retired(engine):
                    return
                self.logger.warning("Read error on track %s: %s", track.id, exc)
                await self._on_fatal(REASON_READ_RTP_ERROR, exc)
                return

            await self.callbacks.fire(EVENT_TRACK_PACKET, track, packet)
            if self._is_retired(engine):
                return


__all__ = [
    "KEYFRAME_INTERVAL",
    "NegotiationCoordinator",
    "PEER_CLOSE_MAX_ATTEMPTS",
    "PEER_CLOSE_POLL_INTERVAL",
]
