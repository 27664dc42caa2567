"""
Transport selection for the WAMP client.

The router URL's scheme decides the transport: ws:// and wss:// open a
WebSocket with the configured backend, tcp:// and tcps:// open a RawSocket.
"""

import logging
from typing import Tuple
from urllib.parse import urlparse

from .errors import ConnectionFailed
from .rawsocket import connect_rawsocket
from .rpc import ClientConfig, WampTransport
from .serialize import Serializer
from .websocket import connect_aiohttp_websocket, connect_websocket

logger = logging.getLogger(__name__)

WEBSOCKET_SCHEMES = ("ws", "wss")
RAWSOCKET_SCHEMES = ("tcp", "tcps")


async def connect_transport(url: str, config: ClientConfig) -> Tuple[WampTransport, Serializer]:
    """
    Open a transport to the router and negotiate a serializer.

    Raises:
        ConnectionFailed: unsupported scheme or the connection failed
        SerializerNotSupported: the router accepted none of the serializers
    """
    scheme = urlparse(url).scheme
    logger.debug(f"Connecting to {url}")

    if scheme in WEBSOCKET_SCHEMES:
        if config.websocket_backend == "aiohttp":
            return await connect_aiohttp_websocket(url, config)
        return await connect_websocket(url, config)
    if scheme in RAWSOCKET_SCHEMES:
        return await connect_rawsocket(url, config)

    raise ConnectionFailed(f"Unsupported URL scheme {scheme!r} in {url}")
