"""
Connection engine for one signaling session with the SFU.

A :class:`Connection` opens the signaling socket, announces itself with a
``connect`` message, answers the SFU's offers and renegotiation updates, and
converges every failure path onto a single teardown that reports the
disconnect reason exactly once.

Inbound frames are read by one task into a bounded queue and processed by a
single dispatch task, so messages are handled strictly in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
import platform
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set, Union

from .callbacks import (
    EVENT_CONNECT,
    EVENT_DISCONNECT,
    EVENT_NOTIFY,
    EVENT_OPEN,
    EVENT_PUSH,
    EVENT_TRACK,
    EVENT_TRACK_PACKET,
    CallbackRegistry,
)
from .errors import (
    REASON_DISCONNECT,
    REASON_ICE_FAILED,
    REASON_INVALID_MESSAGE,
    REASON_PEER_CONNECTION_ERROR,
    REASON_SEND_MESSAGE_ERROR,
    REASON_WEBSOCKET_CLOSED,
    ICEFailure,
    NegotiationError,
    SignalingError,
    TransportError,
)
from .options import ConnectionOptions
from .rtc.ice import IceConfig
from .rtc.negotiation import (
    KEYFRAME_INTERVAL,
    PEER_CLOSE_MAX_ATTEMPTS,
    PEER_CLOSE_POLL_INTERVAL,
    NegotiationCoordinator,
)
from .rtc.peer import CONNECTED_ICE_STATES, FAILED_ICE_STATES, PeerEngine, PeerEngineFactory
from .rtc.sdp import cleanup_sdp, codec_names, missing_codecs
from .signaling.codec import decode_message, encode_message
from .signaling.schemas import (
    AnswerMessage,
    CandidateMessage,
    ConnectMessage,
    DisconnectMessage,
    NotifyMessage,
    OfferMessage,
    PingMessage,
    PongMessage,
    PushMessage,
    SimulcastModel,
    UpdateMessage,
    VideoModel,
)
from .signaling.transport import BaseTransport, WebSocketTransport

LOG = logging.getLogger(__name__)

CLIENT_VERSION = "sfu-signaling 0.1.0"
MESSAGE_QUEUE_SIZE = 100

_QUEUE_CLOSED = object()


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SOCKET_OPEN = "socket_open"
    NEGOTIATING = "negotiating"
    ACTIVE = "active"
    CLOSING = "closing"


def _environment() -> str:
    return f"Python {platform.python_version()} ({platform.system()} {platform.machine()})"


def _default_peer_factory(ice_config: IceConfig) -> PeerEngine:
    from .rtc.aiortc_engine import create_aiortc_engine

    return create_aiortc_engine(ice_config)


class Connection:
    """
    Signaling client for a single SFU channel.

    ``transport_factory`` and ``peer_factory`` default to the WebSocket and
    aiortc implementations; tests inject fakes.  Event handlers are registered
    with the ``on_*`` methods and are reset to no-ops by every teardown.
    """

    def __init__(
        self,
        options: ConnectionOptions,
        *,
        transport_factory: Optional[Callable[[], BaseTransport]] = None,
        peer_factory: Optional[PeerEngineFactory] = None,
        logger: Optional[logging.Logger] = None,
        queue_size: int = MESSAGE_QUEUE_SIZE,
        keyframe_interval: float = KEYFRAME_INTERVAL,
        peer_close_poll_interval: float = PEER_CLOSE_POLL_INTERVAL,
        peer_close_attempts: int = PEER_CLOSE_MAX_ATTEMPTS,
    ) -> None:
        self._options = options
        self._transport_factory = transport_factory or WebSocketTransport
        self.queue_size = max(1, int(queue_size))
        self.logger = logger or LOG.getChild(options.channel_id or "connection")
        self.callbacks = CallbackRegistry()
        self._coordinator = NegotiationCoordinator(
            options,
            self.callbacks,
            peer_factory=peer_factory or _default_peer_factory,
            send=self._send_message,
            on_ice_state=self._handle_ice_state,
            on_fatal=self._teardown,
            logger=self.logger,
            keyframe_interval=keyframe_interval,
            close_poll_interval=peer_close_poll_interval,
            close_attempts=peer_close_attempts,
        )
        self._transport: Optional[BaseTransport] = None
        self._send_lock = asyncio.Lock()
        self._idle = asyncio.Event()
        self._idle.set()
        self._state = ConnectionState.IDLE
        self._reset_session()

    def _reset_session(self) -> None:
        self._connection_id = ""
        self._client_id = ""
        self._server_version = ""
        self._answer_sent = False
        self._opened = False
        self._ice_state = "new"
        self._ice_config: Optional[IceConfig] = None
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: Set[asyncio.Task] = set()

    def _trace(self, msg: str, *args: Any) -> None:
        if self._options.debug:
            self.logger.debug(msg, *args)

    # ------------------------------------------------------------------ accessors

    @property
    def options(self) -> ConnectionOptions:
        return self._options

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def server_version(self) -> str:
        return self._server_version

    @property
    def peer(self) -> Optional[PeerEngine]:
        return self._coordinator.engine

    @property
    def ice_config(self) -> Optional[IceConfig]:
        return self._ice_config

    # ------------------------------------------------------------------ callbacks

    def on_open(self, handler: Callable[[PeerEngine], Any]) -> None:
        self.callbacks.set(EVENT_OPEN, handler)

    def on_connect(self, handler: Callable[[], Any]) -> None:
        self.callbacks.set(EVENT_CONNECT, handler)

    def on_disconnect(self, handler: Callable[[str, Optional[BaseException]], Any]) -> None:
        self.callbacks.set(EVENT_DISCONNECT, handler)

    def on_track(self, handler: Callable[[Any], Any]) -> None:
        self.callbacks.set(EVENT_TRACK, handler)

    def on_track_packet(self, handler: Callable[[Any, Any], Any]) -> None:
        self.callbacks.set(EVENT_TRACK_PACKET, handler)

    def on_notify(self, handler: Callable[[str, NotifyMessage], Any]) -> None:
        self.callbacks.set(EVENT_NOTIFY, handler)

    def on_push(self, handler: Callable[[dict], Any]) -> None:
        self.callbacks.set(EVENT_PUSH, handler)

    # ------------------------------------------------------------------ public API

    async def connect(self) -> None:
        """
        Open the signaling socket and send the ``connect`` message.

        Raises:
            SignalingError: a session is already in progress, or
                :meth:`disconnect` was called while the socket was opening.
            TransportError: the socket could not be opened or written.
        """

        if self._transport is not None or self._coordinator.engine is not None:
            self._trace("connection already exists")
            raise SignalingError("connection already exists")
        if self._state is not ConnectionState.IDLE:
            raise SignalingError(f"connection is {self._state.value}")

        transport = self._transport_factory()
        self._transport = transport
        self._state = ConnectionState.CONNECTING
        self._idle.clear()
        try:
            await transport.open(self._options.signaling_url)
        except BaseException:
            if self._transport is transport:
                self._transport = None
                self._state = ConnectionState.IDLE
                self._idle.set()
            raise

        if self._transport is not transport or self._state is not ConnectionState.CONNECTING:
            # torn down while opening
            await transport.close()
            raise SignalingError("connection closed while opening")

        self._state = ConnectionState.SOCKET_OPEN
        self.logger.info("Signaling socket open: %s", self._options.signaling_url)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._queue = queue
        self._spawn(self._recv_loop(transport, queue))
        self._spawn(self._dispatch_loop(queue))

        try:
            await self._send_message(self._build_connect_message())
        except TransportError as exc:
            await self._teardown(exc.reason, exc)
            raise

    async def disconnect(self) -> None:
        """End the session; waits for an in-flight teardown to finish."""

        await self._teardown(REASON_DISCONNECT, None)
        if self._state is ConnectionState.CLOSING:
            await self._idle.wait()

    async def wait_closed(self) -> None:
        await self._idle.wait()

    # ------------------------------------------------------------------ internals

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(self._log_task_failure)
        return task

    def _log_task_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:  # pragma: no cover - defensive
            self.logger.error("Connection task failed: %r", exc)

    def _build_connect_message(self) -> ConnectMessage:
        options = self._options
        return ConnectMessage(
            sora_client=CLIENT_VERSION,
            environment=_environment(),
            role=options.role.value,
            channel_id=options.channel_id,
            client_id=options.client_id,
            metadata=dict(options.metadata) if options.metadata else None,
            multistream=options.multistream,
            simulcast=SimulcastModel(**options.simulcast.to_dict()) if options.simulcast else None,
            audio=options.audio,
            video=VideoModel(**options.video.to_dict()),
        )

    async def _send_message(self, message: Any) -> None:
        transport = self._transport
        if transport is None:
            self._trace("send skipped, no transport: %s", message.type)
            return
        payload = encode_message(message)
        self._trace("send %s", payload)
        try:
            async with self._send_lock:
                await transport.send(payload)
        except TransportError as exc:
            self._trace("failed to send %s: %s", message.type, exc)
            raise TransportError(str(exc), reason=REASON_SEND_MESSAGE_ERROR) from exc

    async def _recv_loop(self, transport: BaseTransport, queue: asyncio.Queue) -> None:
        while True:
            try:
                raw = await transport.receive()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._trace("failed to read message: %s", exc)
                break
            await queue.put(raw)
        await queue.put(_QUEUE_CLOSED)
        self._trace("message queue closed")

    async def _dispatch_loop(self, queue: asyncio.Queue) -> None:
        while True:
            raw = await queue.get()
            if raw is _QUEUE_CLOSED:
                await self._teardown(REASON_WEBSOCKET_CLOSED, TransportError("websocket closed"))
                return
            try:
                await self._handle_raw(raw)
            except asyncio.CancelledError:
                raise
            except SignalingError as exc:
                self.logger.warning("Signaling failed (%s): %s", exc.reason, exc)
                await self._teardown(exc.reason, exc)
                return
            except Exception as exc:
                self.logger.exception("Unhandled error while processing message")
                await self._teardown(REASON_INVALID_MESSAGE, exc)
                return
            # A handler may have torn the session down from this task.
            if self._queue is not queue or self._state is ConnectionState.CLOSING:
                self._trace("session ended, dispatch loop exiting")
                return

    async def _handle_raw(self, raw: Union[str, bytes]) -> None:
        message = decode_message(raw)
        self._trace("recv type: %s, raw: %s", message.type, raw)
        if isinstance(message, PingMessage):
            await self._handle_ping(message)
        elif isinstance(message, OfferMessage):
            await self._handle_offer(message)
        elif isinstance(message, UpdateMessage):
            await self._handle_update(message)
        elif isinstance(message, CandidateMessage):
            await self._handle_candidate(message)
        elif isinstance(message, NotifyMessage):
            await self.callbacks.fire(EVENT_NOTIFY, message.event_type, message)
        elif isinstance(message, PushMessage):
            await self.callbacks.fire(EVENT_PUSH, message.model_dump(exclude_unset=True))

    async def _handle_ping(self, message: PingMessage) -> None:
        stats = await self._coordinator.collect_stats() if message.stats else None
        await self._send_message(PongMessage(stats=stats))

    def _check_codecs(self, sdp: str) -> None:
        if not codec_names(sdp):
            return
        required = [self._options.video.codec_type.value]
        if self._options.audio:
            required.append("opus")
        missing = missing_codecs(sdp, required)
        if missing:
            raise NegotiationError(
                f"offer does not support {', '.join(missing)}", reason=REASON_PEER_CONNECTION_ERROR
            )

    async def _handle_offer(self, message: OfferMessage) -> None:
        sdp = cleanup_sdp(message.sdp)
        self._check_codecs(sdp)
        self._ice_config = IceConfig.from_signaling(message.config)
        self._trace("ICE configuration: %s", self._ice_config.describe())

        if self._coordinator.engine is not None:
            self.logger.info("Offer received while a peer engine exists; replacing it")
            await self._coordinator.close_peer()
        self._ice_state = "new"
        engine = self._coordinator.create_peer(self._ice_config)
        if not self._opened:
            self._opened = True
            await self.callbacks.fire(EVENT_OPEN, engine)

        self._client_id = message.client_id
        self._connection_id = message.connection_id
        self._server_version = message.version
        if self._state is not ConnectionState.CLOSING:
            self._state = ConnectionState.NEGOTIATING
        self.logger.info(
            "Offer received (connection_id=%s, client_id=%s)", self._connection_id, self._client_id
        )
        await self._answer(sdp, "offer")

    async def _handle_update(self, message: UpdateMessage) -> None:
        if self._coordinator.engine is None:
            self.logger.warning("Update received without a peer engine; ignored")
            return
        await self._answer(message.sdp, "offer")

    async def _answer(self, sdp: str, type: str) -> None:
        local_sdp = await self._coordinator.apply_offer(sdp, type)
        if local_sdp is None:
            return
        kind = "update" if self._answer_sent else "answer"
        self._answer_sent = True
        await self._send_message(AnswerMessage(type=kind, sdp=local_sdp))

    async def _handle_candidate(self, message: CandidateMessage) -> None:
        if not self._options.trickle_ice:
            self._trace("candidate ignored: trickle ICE disabled")
            return
        await self._coordinator.add_remote_candidate(message)

    def _handle_ice_state(self, state: str) -> None:
        self._trace("ICE connection state changed to %s", state)
        previous = self._ice_state
        if state == previous:
            return
        self._ice_state = state
        if state in CONNECTED_ICE_STATES:
            if previous in CONNECTED_ICE_STATES:
                return
            if self._state in (ConnectionState.SOCKET_OPEN, ConnectionState.NEGOTIATING):
                self._state = ConnectionState.ACTIVE
            self.logger.info("ICE connected")
            self._spawn(self.callbacks.fire(EVENT_CONNECT))
        elif state in FAILED_ICE_STATES:
            self.logger.warning("ICE connection state %s", state)
            self._spawn(self._teardown(REASON_ICE_FAILED, ICEFailure(f"ICE connection state {state}")))

    async def _teardown(self, reason: str, error: Optional[BaseException] = None) -> None:
        if self._state in (ConnectionState.IDLE, ConnectionState.CLOSING):
            self._trace("teardown (%s) skipped in state %s", reason, self._state.value)
            return
        opening = self._state is ConnectionState.CONNECTING
        self._state = ConnectionState.CLOSING
        self.logger.info("Disconnecting (%s)", reason)

        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

        if not opening:
            try:
                await self._send_message(DisconnectMessage())
            except TransportError as exc:
                self.logger.debug("Failed to send disconnect message: %s", exc)
        await self._coordinator.close_peer()
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()

        self._reset_session()
        handler = self.callbacks.get(EVENT_DISCONNECT)
        self.callbacks.reset()
        self._state = ConnectionState.IDLE
        self._idle.set()
        await CallbackRegistry.invoke(handler, EVENT_DISCONNECT, reason, error)


__all__ = ["CLIENT_VERSION", "Connection", "ConnectionState", "MESSAGE_QUEUE_SIZE"]
