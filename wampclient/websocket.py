"""
WebSocket transport for the WAMP client.

Each WAMP message travels in its own WebSocket frame: text frames for JSON,
binary frames for MessagePack and CBOR. The serializers from the client
configuration are offered as WebSocket subprotocols and the router's choice
selects the serializer for the session.

Two backends are available: ``websockets`` (the default) and ``aiohttp``.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import aiohttp
from websockets.asyncio.client import ClientConnection, connect as websockets_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import ConnectionFailed, ReceiveFailed, SendFailed, SerializerNotSupported
from .rpc import ClientConfig, WampTransport
from .serialize import Serializer, SerializerType, get_serializer

logger = logging.getLogger(__name__)


def offered_subprotocols(config: ClientConfig) -> List[str]:
    """WebSocket subprotocols offered to the router, most preferred first."""
    return [SerializerType(kind).subprotocol for kind in config.serializers]


def negotiated_serializer(subprotocol: Optional[str], offered: List[str]) -> Serializer:
    """Pick the serializer for the subprotocol the router accepted."""
    if subprotocol is None:
        raise SerializerNotSupported(f"Router accepted none of the offered subprotocols {offered}")
    if subprotocol not in offered:
        raise SerializerNotSupported(f"Router chose subprotocol {subprotocol!r}, which was not offered")
    return get_serializer(SerializerType.from_subprotocol(subprotocol))


def _is_secure(url: str) -> bool:
    return urlparse(url).scheme == "wss"


class WebSocketTransport(WampTransport):
    """WebSocket transport built on the ``websockets`` library."""

    def __init__(self, websocket: ClientConnection, binary: bool):
        self._websocket = websocket
        self.binary = binary
        self._closed = False

    async def send(self, payload: bytes) -> None:
        """Send a message over the WebSocket."""
        if self._closed:
            raise SendFailed("Cannot send on closed transport")

        try:
            if self.binary:
                await self._websocket.send(payload)
            else:
                await self._websocket.send(payload.decode("utf-8"))
        except (ConnectionClosed, WebSocketException, OSError) as e:
            self._closed = True
            raise SendFailed(f"WebSocket send failed: {e}") from e

    async def receive(self) -> bytes:
        """Receive a message from the WebSocket."""
        if self._closed:
            raise ReceiveFailed("Cannot receive on closed transport")

        try:
            message = await self._websocket.recv()
        except (ConnectionClosed, WebSocketException, OSError) as e:
            self._closed = True
            raise ReceiveFailed(f"WebSocket receive failed: {e}") from e

        if isinstance(message, str):
            if self.binary:
                raise ReceiveFailed("Received a text frame on a binary serializer")
            return message.encode("utf-8")
        if not self.binary:
            raise ReceiveFailed("Received a binary frame on a text serializer")
        return message

    async def close(self) -> None:
        """Close the WebSocket connection."""
        if not self._closed:
            self._closed = True
            try:
                await self._websocket.close()
            except Exception as e:
                logger.warning(f"Error closing WebSocket: {e}")


class AiohttpWebSocketTransport(WampTransport):
    """WebSocket transport built on ``aiohttp``."""

    def __init__(self, session: aiohttp.ClientSession, websocket: aiohttp.ClientWebSocketResponse,
                 binary: bool):
        self._session = session
        self._websocket = websocket
        self.binary = binary
        self._closed = False

    async def send(self, payload: bytes) -> None:
        """Send a message over the WebSocket."""
        if self._closed:
            raise SendFailed("Cannot send on closed transport")

        try:
            if self.binary:
                await self._websocket.send_bytes(payload)
            else:
                await self._websocket.send_str(payload.decode("utf-8"))
        except (aiohttp.ClientError, OSError) as e:
            self._closed = True
            raise SendFailed(f"WebSocket send failed: {e}") from e

    async def receive(self) -> bytes:
        """Receive a message from the WebSocket."""
        if self._closed:
            raise ReceiveFailed("Cannot receive on closed transport")

        try:
            message = await self._websocket.receive()
        except (aiohttp.ClientError, OSError) as e:
            self._closed = True
            raise ReceiveFailed(f"WebSocket receive failed: {e}") from e

        if message.type == aiohttp.WSMsgType.TEXT:
            if self.binary:
                raise ReceiveFailed("Received a text frame on a binary serializer")
            return message.data.encode("utf-8")
        if message.type == aiohttp.WSMsgType.BINARY:
            if not self.binary:
                raise ReceiveFailed("Received a binary frame on a text serializer")
            return message.data

        self._closed = True
        if message.type == aiohttp.WSMsgType.ERROR:
            raise ReceiveFailed(f"WebSocket error: {self._websocket.exception()}")
        raise ReceiveFailed(f"WebSocket closed by router (code {self._websocket.close_code})")

    async def close(self) -> None:
        """Close the WebSocket connection and its HTTP session."""
        if not self._closed:
            self._closed = True
            try:
                await self._websocket.close()
            except Exception as e:
                logger.warning(f"Error closing WebSocket: {e}")
        if not self._session.closed:
            await self._session.close()


async def connect_websocket(url: str, config: ClientConfig) -> Tuple[WebSocketTransport, Serializer]:
    """
    Open a WebSocket to the router with the ``websockets`` library.

    Args:
        url: ws:// or wss:// URL of the router
        config: Client configuration (serializers, headers, TLS, size limit)

    Returns:
        The open transport and the negotiated serializer
    """
    offered = offered_subprotocols(config)
    kwargs = {}
    if _is_secure(url):
        kwargs["ssl"] = config.ssl_context()

    try:
        websocket = await websockets_connect(
            url,
            subprotocols=offered,
            additional_headers=config.websocket_headers or None,
            user_agent_header=config.agent,
            max_size=config.max_msg_size or None,
            open_timeout=config.connect_timeout,
            **kwargs
        )
    except (WebSocketException, OSError, asyncio.TimeoutError) as e:
        raise ConnectionFailed(f"WebSocket connection to {url} failed: {e}") from e

    try:
        serializer = negotiated_serializer(websocket.subprotocol, offered)
    except SerializerNotSupported:
        await websocket.close()
        raise

    return WebSocketTransport(websocket, serializer.BINARY), serializer


async def connect_aiohttp_websocket(url: str, config: ClientConfig) -> Tuple[AiohttpWebSocketTransport, Serializer]:
    """Open a WebSocket to the router with ``aiohttp``."""
    offered = offered_subprotocols(config)
    headers: Dict[str, str] = {"User-Agent": config.agent}
    headers.update(config.websocket_headers)
    kwargs = {}
    if _is_secure(url):
        kwargs["ssl"] = config.ssl_context()

    session = aiohttp.ClientSession(headers=headers)
    try:
        websocket = await session.ws_connect(
            url,
            protocols=offered,
            max_msg_size=config.max_msg_size or 0,
            **kwargs
        )
    except (aiohttp.ClientError, OSError) as e:
        await session.close()
        raise ConnectionFailed(f"WebSocket connection to {url} failed: {e}") from e

    try:
        serializer = negotiated_serializer(websocket.protocol, offered)
    except SerializerNotSupported:
        await websocket.close()
        await session.close()
        raise

    return AiohttpWebSocketTransport(session, websocket, serializer.BINARY), serializer
