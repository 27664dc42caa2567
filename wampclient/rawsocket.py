"""
RawSocket transport for the WAMP client.

RawSocket carries WAMP over a plain TCP (or TLS) stream. The client opens
with a four byte handshake naming its serializer and the largest message it
accepts; after that every message is a frame with a four byte header: three
bits of frame type and a 24 bit big-endian payload length.
"""

import asyncio
import logging
import struct
from typing import Optional, Tuple
from urllib.parse import urlparse

from .errors import ConnectionFailed, ReceiveFailed, SendFailed, SerializerNotSupported
from .rpc import ClientConfig, WampTransport
from .serialize import Serializer, get_serializer

logger = logging.getLogger(__name__)

MAGIC = 0x7F

FRAME_REGULAR = 0
FRAME_PING = 1
FRAME_PONG = 2

MAX_FRAME_LENGTH = 2 ** 24 - 1

HANDSHAKE_ERRORS = {
    0: "illegal error code",
    1: "serializer unsupported",
    2: "maximum message length unacceptable",
    3: "use of reserved bits",
    4: "maximum connection count reached",
}


def length_exponent(max_size: int) -> int:
    """Smallest exponent ``e`` in 0..15 such that ``2 ** (9 + e)`` covers ``max_size``."""
    for exponent in range(16):
        if 2 ** (9 + exponent) >= max_size:
            return exponent
    return 15


def advertised_length(max_size: int) -> int:
    """Largest frame the handshake for ``max_size`` tells the router it may send."""
    return min(2 ** (9 + length_exponent(max_size)), MAX_FRAME_LENGTH)


def handshake_request(serializer_id: int, max_size: int) -> bytes:
    """Build the client half of the opening handshake."""
    return bytes([MAGIC, (length_exponent(max_size) << 4) | serializer_id, 0, 0])


def parse_handshake_reply(reply: bytes, serializer_id: int) -> int:
    """
    Check the router's handshake reply.

    Returns:
        The largest message the router accepts, in bytes

    Raises:
        SerializerNotSupported: the router rejected the serializer
        ConnectionFailed: the router refused the connection for another
            reason, or the reply is malformed
    """
    if len(reply) != 4 or reply[0] != MAGIC:
        raise ConnectionFailed(f"Invalid RawSocket handshake reply: {reply!r}")

    if reply[1] & 0x0F == 0:
        code = reply[1] >> 4
        description = HANDSHAKE_ERRORS.get(code, f"unknown error {code}")
        if code == 1:
            raise SerializerNotSupported(f"Router rejected serializer {serializer_id}: {description}")
        raise ConnectionFailed(f"Router refused RawSocket connection: {description}",
                               reason=f"rawsocket.error.{code}")

    if reply[1] & 0x0F != serializer_id:
        raise ConnectionFailed(f"Router echoed serializer {reply[1] & 0x0F}, expected {serializer_id}")
    if reply[2] or reply[3]:
        raise ConnectionFailed("Router set reserved bytes in the RawSocket handshake")

    return 2 ** (9 + (reply[1] >> 4))


def frame_header(frame_type: int, length: int) -> bytes:
    return struct.pack("!I", (frame_type << 24) | length)


def parse_frame_header(header: bytes) -> Tuple[int, int]:
    """Split a frame header into ``(frame_type, length)``."""
    (value,) = struct.unpack("!I", header)
    control = value >> 24
    if control & 0xF8:
        raise ValueError(f"Reserved bits set in RawSocket frame header: {control:#x}")
    return control & 0x07, value & 0xFFFFFF


class RawSocketTransport(WampTransport):
    """RawSocket transport over an asyncio stream."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 max_receive: int, max_send: int):
        self._reader = reader
        self._writer = writer
        self.max_receive = max_receive
        self.max_send = min(max_send, MAX_FRAME_LENGTH)
        self._write_lock = asyncio.Lock()
        self._closed = False

    async def _write_frame(self, frame_type: int, payload: bytes) -> None:
        async with self._write_lock:
            self._writer.write(frame_header(frame_type, len(payload)) + payload)
            await self._writer.drain()

    async def send(self, payload: bytes) -> None:
        """Send a message in one regular frame."""
        if self._closed:
            raise SendFailed("Cannot send on closed transport")
        if len(payload) > self.max_send:
            raise SendFailed(f"Message of {len(payload)} bytes exceeds the router's limit of {self.max_send}")

        try:
            await self._write_frame(FRAME_REGULAR, payload)
        except OSError as e:
            self._closed = True
            raise SendFailed(f"RawSocket send failed: {e}") from e

    async def receive(self) -> bytes:
        """Receive the next regular frame, answering pings on the way."""
        while True:
            if self._closed:
                raise ReceiveFailed("Cannot receive on closed transport")

            try:
                frame_type, length = parse_frame_header(await self._reader.readexactly(4))
                if length > self.max_receive:
                    raise ReceiveFailed(f"Frame of {length} bytes exceeds the limit of {self.max_receive}")
                payload = await self._reader.readexactly(length)
            except asyncio.IncompleteReadError as e:
                self._closed = True
                raise ReceiveFailed("Connection closed by router") from e
            except (OSError, ValueError) as e:
                self._closed = True
                raise ReceiveFailed(f"RawSocket receive failed: {e}") from e

            if frame_type == FRAME_REGULAR:
                return payload
            if frame_type == FRAME_PING:
                try:
                    await self._write_frame(FRAME_PONG, payload)
                except OSError as e:
                    self._closed = True
                    raise ReceiveFailed(f"Could not answer RawSocket ping: {e}") from e
            elif frame_type != FRAME_PONG:
                self._closed = True
                raise ReceiveFailed(f"Unknown RawSocket frame type {frame_type}")

    async def close(self) -> None:
        """Close the connection."""
        if not self._closed:
            self._closed = True
            await _close_writer(self._writer)


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        logger.warning(f"Error closing RawSocket connection: {e}")


async def _handshake(host: str, port: int, ssl, serializer: Serializer,
                     max_size: int) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter, int]:
    try:
        reader, writer = await asyncio.open_connection(host, port, ssl=ssl)
    except OSError as e:
        raise ConnectionFailed(f"Could not connect to {host}:{port}: {e}") from e

    try:
        writer.write(handshake_request(serializer.RAWSOCKET_ID, max_size))
        await writer.drain()
        reply = await reader.readexactly(4)
        max_send = parse_handshake_reply(reply, serializer.RAWSOCKET_ID)
    except (asyncio.IncompleteReadError, OSError) as e:
        await _close_writer(writer)
        raise ConnectionFailed(f"RawSocket handshake with {host}:{port} failed: {e}") from e
    except (SerializerNotSupported, ConnectionFailed):
        await _close_writer(writer)
        raise

    return reader, writer, max_send


async def connect_rawsocket(url: str, config: ClientConfig) -> Tuple[RawSocketTransport, Serializer]:
    """
    Open a RawSocket connection to the router.

    Serializers are tried in the configured order; when the router rejects
    one, the next is tried on a fresh connection.

    Args:
        url: tcp://host:port or tcps://host:port
        config: Client configuration

    Returns:
        The open transport and the accepted serializer
    """
    parsed = urlparse(url)
    if not parsed.hostname or not parsed.port:
        raise ConnectionFailed(f"RawSocket URL needs a host and a port: {url}")
    ssl = config.ssl_context() if parsed.scheme == "tcps" else None
    limit = min(config.max_msg_size or MAX_FRAME_LENGTH, MAX_FRAME_LENGTH)
    # the router may send anything up to the power of two the handshake announces
    max_receive = advertised_length(limit)

    last_error: Optional[SerializerNotSupported] = None
    for kind in config.serializers:
        serializer = get_serializer(kind)
        try:
            reader, writer, max_send = await _handshake(
                parsed.hostname, parsed.port, ssl, serializer, limit)
        except SerializerNotSupported as e:
            logger.info(f"Router rejected {serializer.subprotocol}, trying the next serializer")
            last_error = e
            continue

        logger.debug(f"RawSocket handshake done: {serializer.subprotocol}, router accepts {max_send} bytes")
        return RawSocketTransport(reader, writer, max_receive, max_send), serializer

    raise last_error or SerializerNotSupported("No serializers configured")
