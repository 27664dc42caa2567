"""
Tests for the RawSocket transport.
"""

import asyncio
from unittest.mock import Mock

import pytest

from wampclient.errors import ConnectionFailed, ReceiveFailed, SendFailed, SerializerNotSupported
from wampclient.message import Goodbye, Welcome
from wampclient.rawsocket import (
    FRAME_PING, FRAME_PONG, FRAME_REGULAR, RawSocketTransport, connect_rawsocket, frame_header,
    advertised_length, handshake_request, length_exponent, parse_frame_header, parse_handshake_reply,
)
from wampclient.rpc import ClientConfig
from wampclient.serialize import MsgPackSerializer


class TestHandshake:
    """Test the opening handshake."""

    @pytest.mark.parametrize("max_size,exponent", [
        (1, 0),
        (512, 0),
        (513, 1),
        (2 ** 24, 15),
        (2 ** 30, 15),
    ])
    def test_length_exponent(self, max_size, exponent):
        assert length_exponent(max_size) == exponent

    @pytest.mark.parametrize("max_size,length", [
        (512, 512),
        (1000, 1024),
        (4096, 4096),
        (2 ** 24 - 1, 2 ** 24 - 1),
    ])
    def test_advertised_length(self, max_size, length):
        """The announced size is a power of two, capped at the frame length limit."""
        assert advertised_length(max_size) == length

    def test_request(self):
        """The request carries the magic byte, length exponent and serializer."""
        assert handshake_request(1, 16 * 1024 * 1024) == bytes([0x7F, 0xF1, 0, 0])
        assert handshake_request(2, 4096) == bytes([0x7F, 0x32, 0, 0])

    def test_accepted_reply(self):
        """An accepted reply yields the router's maximum message length."""
        assert parse_handshake_reply(bytes([0x7F, 0x32, 0, 0]), 2) == 4096

    def test_serializer_rejected(self):
        with pytest.raises(SerializerNotSupported):
            parse_handshake_reply(bytes([0x7F, 0x10, 0, 0]), 1)

    def test_connection_refused(self):
        """Other error codes fail the connection with the code as reason."""
        with pytest.raises(ConnectionFailed) as excinfo:
            parse_handshake_reply(bytes([0x7F, 0x40, 0, 0]), 1)
        assert excinfo.value.reason == "rawsocket.error.4"

    @pytest.mark.parametrize("reply", [
        bytes([0x7E, 0xF1, 0, 0]),
        bytes([0x7F, 0xF2, 0, 0]),
        bytes([0x7F, 0xF1, 1, 0]),
        bytes([0x7F, 0xF1, 0]),
    ])
    def test_malformed_reply(self, reply):
        with pytest.raises(ConnectionFailed):
            parse_handshake_reply(reply, 1)


class TestFraming:
    """Test frame headers."""

    def test_header(self):
        assert frame_header(FRAME_PING, 5) == b"\x01\x00\x00\x05"
        assert parse_frame_header(b"\x02\x00\x01\x00") == (FRAME_PONG, 256)

    def test_reserved_bits(self):
        with pytest.raises(ValueError):
            parse_frame_header(b"\x08\x00\x00\x00")


def stream_transport(data: bytes, max_receive: int = 1024, max_send: int = 1024, eof: bool = True):
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    writer = Mock()
    writer.drain = Mock(side_effect=lambda: asyncio.sleep(0))
    return RawSocketTransport(reader, writer, max_receive, max_send), writer


@pytest.mark.asyncio
class TestRawSocketTransport:
    """Test the transport over in-memory streams."""

    async def test_receive_regular_frame(self):
        transport, _ = stream_transport(frame_header(FRAME_REGULAR, 5) + b"hello")
        assert await transport.receive() == b"hello"

    async def test_ping_answered_with_pong(self):
        """A ping is answered with a pong carrying the same payload."""
        data = frame_header(FRAME_PING, 4) + b"abcd" + frame_header(FRAME_REGULAR, 2) + b"ok"
        transport, writer = stream_transport(data)

        assert await transport.receive() == b"ok"
        writer.write.assert_called_once_with(frame_header(FRAME_PONG, 4) + b"abcd")

    async def test_oversize_frame(self):
        transport, _ = stream_transport(frame_header(FRAME_REGULAR, 100) + b"x" * 100, max_receive=10)
        with pytest.raises(ReceiveFailed):
            await transport.receive()

    async def test_connection_closed(self):
        transport, _ = stream_transport(b"\x00\x00")
        with pytest.raises(ReceiveFailed):
            await transport.receive()

    async def test_unknown_frame_type(self):
        transport, _ = stream_transport(b"\x03\x00\x00\x00")
        with pytest.raises(ReceiveFailed):
            await transport.receive()

    async def test_send_over_router_limit(self):
        """Messages larger than the router accepts are refused locally."""
        transport, writer = stream_transport(b"", max_send=4)
        with pytest.raises(SendFailed):
            await transport.send(b"12345")
        writer.write.assert_not_called()

    async def test_send_frame(self):
        transport, writer = stream_transport(b"")
        await transport.send(b"abc")
        writer.write.assert_called_once_with(b"\x00\x00\x00\x03abc")


@pytest.mark.asyncio
class TestConnect:
    """Test connecting to a RawSocket router."""

    async def test_serializer_fallback_and_ping(self):
        """A rejected serializer is retried with the next one on a new connection."""
        offered = []
        loop = asyncio.get_running_loop()
        pong = loop.create_future()
        received = loop.create_future()
        serializer = MsgPackSerializer()

        async def router(reader, writer):
            request = await reader.readexactly(4)
            offered.append(request[1] & 0x0F)
            if request[1] & 0x0F != 2:
                writer.write(bytes([0x7F, 0x10, 0, 0]))
                await writer.drain()
                writer.close()
                return

            writer.write(bytes([0x7F, 0xF2, 0, 0]))
            writer.write(frame_header(FRAME_PING, 4) + b"ping")
            welcome = serializer.serialize(Welcome(1, {}))
            writer.write(frame_header(FRAME_REGULAR, len(welcome)) + welcome)
            await writer.drain()

            header = parse_frame_header(await reader.readexactly(4))
            pong.set_result((header[0], await reader.readexactly(header[1])))
            header = parse_frame_header(await reader.readexactly(4))
            received.set_result(await reader.readexactly(header[1]))
            writer.close()

        server = await asyncio.start_server(router, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            config = ClientConfig(serializers=["json", "msgpack"])
            transport, negotiated = await connect_rawsocket(f"tcp://127.0.0.1:{port}", config)
            assert isinstance(negotiated, MsgPackSerializer)
            assert offered == [1, 2]

            assert negotiated.unserialize(await transport.receive()) == Welcome(1, {})
            assert await asyncio.wait_for(pong, 1.0) == (FRAME_PONG, b"ping")

            await transport.send(negotiated.serialize(Goodbye({}, "wamp.close.close_realm")))
            assert negotiated.unserialize(await asyncio.wait_for(received, 1.0)) == \
                Goodbye({}, "wamp.close.close_realm")
            await transport.close()
        finally:
            server.close()
            await server.wait_closed()

    async def test_accepts_frames_up_to_advertised_length(self):
        """Frames up to the announced power of two are accepted even above max_msg_size."""
        exponents = []

        async def router(reader, writer):
            request = await reader.readexactly(4)
            exponents.append(request[1] >> 4)
            writer.write(bytes([0x7F, 0xF1, 0, 0]))
            writer.write(frame_header(FRAME_REGULAR, 1024) + b"x" * 1024)
            await writer.drain()
            await reader.read()
            writer.close()

        server = await asyncio.start_server(router, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            config = ClientConfig(serializers=["json"], max_msg_size=1000)
            transport, _ = await connect_rawsocket(f"tcp://127.0.0.1:{port}", config)
            assert exponents == [1]
            assert transport.max_receive == 1024
            assert await transport.receive() == b"x" * 1024
            await transport.close()
        finally:
            server.close()
            await server.wait_closed()

    async def test_all_serializers_rejected(self):
        async def router(reader, writer):
            await reader.readexactly(4)
            writer.write(bytes([0x7F, 0x10, 0, 0]))
            await writer.drain()
            writer.close()

        server = await asyncio.start_server(router, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            with pytest.raises(SerializerNotSupported):
                await connect_rawsocket(f"tcp://127.0.0.1:{port}", ClientConfig(serializers=["cbor"]))
        finally:
            server.close()
            await server.wait_closed()

    async def test_url_without_port(self):
        with pytest.raises(ConnectionFailed):
            await connect_rawsocket("tcp://localhost", ClientConfig())


if __name__ == "__main__":
    pytest.main([__file__])
