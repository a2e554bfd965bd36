"""WebSocket transport tests against a loopback ``websockets`` server."""

import asyncio
from typing import Any, Awaitable, Callable

import pytest
import websockets

from sfu_signaling.errors import ProtocolError, TransportError
from sfu_signaling.signaling.codec import decode_message
from sfu_signaling.signaling.transport import WebSocketTransport


async def with_server(handler: Callable[[Any], Awaitable[None]], body: Callable[[str], Awaitable[None]]) -> None:
    async with websockets.serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        await body(f"ws://127.0.0.1:{port}/signaling")


def test_send_and_receive_round_trip() -> None:
    async def echo(ws: Any) -> None:
        async for message in ws:
            await ws.send(message)

    async def body(url: str) -> None:
        transport = WebSocketTransport()
        await transport.open(url)
        assert transport.is_open is True
        await transport.send('{"type": "ping"}')
        assert await transport.receive() == '{"type": "ping"}'
        await transport.close()
        assert transport.is_open is False

    asyncio.run(with_server(echo, body))


def test_binary_frames_are_returned_undecoded() -> None:
    async def send_binary(ws: Any) -> None:
        await ws.send(b'{"type": "push", "data": "\xff\xfe"}')
        await asyncio.sleep(0.5)

    async def body(url: str) -> None:
        transport = WebSocketTransport()
        await transport.open(url)
        frame = await transport.receive()
        assert frame == b'{"type": "push", "data": "\xff\xfe"}'
        with pytest.raises(ProtocolError):
            decode_message(frame)
        await transport.close()

    asyncio.run(with_server(send_binary, body))


def test_receive_fails_after_remote_close() -> None:
    async def close_immediately(ws: Any) -> None:
        await ws.close()

    async def body(url: str) -> None:
        transport = WebSocketTransport()
        await transport.open(url)
        with pytest.raises(TransportError) as excinfo:
            await transport.receive()
        assert excinfo.value.reason == "WEBSOCKET-CLOSED"
        await transport.close()

    asyncio.run(with_server(close_immediately, body))


def test_receive_times_out() -> None:
    async def silent(ws: Any) -> None:
        await asyncio.sleep(1.0)

    async def body(url: str) -> None:
        transport = WebSocketTransport(read_timeout=0.05)
        await transport.open(url)
        with pytest.raises(TransportError, match="read timeout"):
            await transport.receive()
        await transport.close()

    asyncio.run(with_server(silent, body))


def test_oversize_frame_is_rejected() -> None:
    async def flood(ws: Any) -> None:
        await ws.send("x" * 4096)
        await asyncio.sleep(0.5)

    async def body(url: str) -> None:
        transport = WebSocketTransport(max_size=1024)
        await transport.open(url)
        with pytest.raises(TransportError):
            await transport.receive()
        await transport.close()

    asyncio.run(with_server(flood, body))


def test_open_failures_raise_transport_error() -> None:
    async def scenario() -> None:
        with pytest.raises(TransportError):
            await WebSocketTransport().open("not a url")
        with pytest.raises(TransportError):
            await WebSocketTransport(write_timeout=1.0).open("ws://127.0.0.1:1/signaling")

    asyncio.run(scenario())


def test_close_and_send_on_closed_transport() -> None:
    async def scenario() -> None:
        transport = WebSocketTransport()
        await transport.close()
        await transport.close()
        with pytest.raises(TransportError):
            await transport.send("{}")
        with pytest.raises(TransportError):
            await transport.receive()

    asyncio.run(scenario())
