"""
Tests for the WebSocket transports.
"""

import pytest
from aiohttp import WSMsgType, web
from websockets.asyncio.server import serve

from wampclient.errors import ConnectionFailed, SerializerNotSupported
from wampclient.message import Hello, Welcome
from wampclient.rpc import ClientConfig
from wampclient.serialize import JsonSerializer, MsgPackSerializer
from wampclient.websocket import (
    connect_aiohttp_websocket, connect_websocket, negotiated_serializer, offered_subprotocols,
)


class TestNegotiation:
    """Test subprotocol negotiation helpers."""

    def test_offered_in_preference_order(self):
        config = ClientConfig(serializers=["cbor", "json"])
        assert offered_subprotocols(config) == ["wamp.2.cbor", "wamp.2.json"]

    def test_negotiated(self):
        serializer = negotiated_serializer("wamp.2.msgpack", ["wamp.2.json", "wamp.2.msgpack"])
        assert isinstance(serializer, MsgPackSerializer)

    def test_no_subprotocol(self):
        with pytest.raises(SerializerNotSupported):
            negotiated_serializer(None, ["wamp.2.json"])

    def test_subprotocol_not_offered(self):
        with pytest.raises(SerializerNotSupported):
            negotiated_serializer("wamp.2.cbor", ["wamp.2.json"])


async def echo(websocket):
    async for message in websocket:
        await websocket.send(message)


@pytest.mark.asyncio
class TestWebsocketsBackend:
    """Test the transport built on the websockets library."""

    async def test_binary_roundtrip(self):
        """The router's subprotocol picks the serializer and frames are binary."""
        async with serve(echo, "127.0.0.1", 0, subprotocols=["wamp.2.msgpack"]) as server:
            port = server.sockets[0].getsockname()[1]
            config = ClientConfig(serializers=["json", "msgpack"])
            transport, serializer = await connect_websocket(f"ws://127.0.0.1:{port}", config)
            try:
                assert isinstance(serializer, MsgPackSerializer)
                assert transport.binary

                await transport.send(serializer.serialize(Welcome(1, {})))
                assert serializer.unserialize(await transport.receive()) == Welcome(1, {})
            finally:
                await transport.close()

    async def test_router_without_subprotocol(self):
        async with serve(echo, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            with pytest.raises(SerializerNotSupported):
                await connect_websocket(f"ws://127.0.0.1:{port}", ClientConfig())

    async def test_connection_refused(self):
        async with serve(echo, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
        with pytest.raises(ConnectionFailed):
            await connect_websocket(f"ws://127.0.0.1:{port}", ClientConfig())


@pytest.mark.asyncio
class TestAiohttpBackend:
    """Test the transport built on aiohttp."""

    async def test_text_roundtrip(self):
        """JSON travels in text frames."""
        frame_types = []

        async def handler(request):
            websocket = web.WebSocketResponse(protocols=["wamp.2.json"])
            await websocket.prepare(request)
            async for message in websocket:
                frame_types.append(message.type)
                await websocket.send_str(message.data)
            return websocket

        app = web.Application()
        app.router.add_get("/ws", handler)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, "127.0.0.1", 0)
        await site.start()
        port = runner.addresses[0][1]
        try:
            config = ClientConfig(websocket_backend="aiohttp")
            transport, serializer = await connect_aiohttp_websocket(f"ws://127.0.0.1:{port}/ws", config)
            try:
                assert isinstance(serializer, JsonSerializer)
                assert not transport.binary

                hello = Hello("realm1", {"roles": {}})
                await transport.send(serializer.serialize(hello))
                assert serializer.unserialize(await transport.receive()) == hello
                assert frame_types == [WSMsgType.TEXT]
            finally:
                await transport.close()
        finally:
            await runner.cleanup()


if __name__ == "__main__":
    pytest.main([__file__])
