"""
wampclient - An asyncio WAMP v2 client

This module provides a client for the Web Application Messaging Protocol:
remote procedure calls and publish/subscribe through a WAMP router, over
WebSocket or RawSocket, with JSON, MessagePack or CBOR serialization.
"""

from .core import CallResult, Registration, Subscription
from .errors import (
    ApplicationError, ConnectionFailed, DuplicateRequestId, NotConnected, ProtocolViolation,
    ReceiveFailed, RemoteError, SendFailed, SerializerNotSupported, SessionLost, Timeout, WampError,
)
from .options import (
    CallOptions, InvokePolicy, MatchPolicy, PublishOptions, RegisterOptions, SubscribeOptions,
)
from .rpc import Client, ClientConfig, ClientRole, ClientState, WampTransport
from .serialize import SerializerType, get_serializer

__version__ = "0.1.0"
__all__ = [
    "Client",
    "ClientConfig",
    "ClientRole",
    "ClientState",
    "WampTransport",
    "CallResult",
    "Registration",
    "Subscription",
    "CallOptions",
    "RegisterOptions",
    "PublishOptions",
    "SubscribeOptions",
    "InvokePolicy",
    "MatchPolicy",
    "SerializerType",
    "get_serializer",
    "WampError",
    "ApplicationError",
    "RemoteError",
    "ConnectionFailed",
    "SendFailed",
    "ReceiveFailed",
    "SerializerNotSupported",
    "ProtocolViolation",
    "Timeout",
    "NotConnected",
    "SessionLost",
    "DuplicateRequestId",
]
