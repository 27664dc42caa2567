"""
Serializers for the WAMP client.

A serializer turns a Message into the bytes of one transport frame and back.
JSON, MessagePack and CBOR are supported; the transport negotiates which one
is used through the WebSocket subprotocol or the RawSocket handshake.
"""

import base64
import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Type, Union

import cbor2
import msgpack

from .errors import ProtocolViolation, SerializerNotSupported
from .message import Message, decode


class SerializerType(Enum):
    """Wire encodings a client can offer to the router."""
    JSON = "json"
    MSGPACK = "msgpack"
    CBOR = "cbor"

    @property
    def subprotocol(self) -> str:
        return f"wamp.2.{self.value}"

    @classmethod
    def from_subprotocol(cls, subprotocol: str) -> "SerializerType":
        """Map a negotiated WebSocket subprotocol back to a serializer type."""
        prefix = "wamp.2."
        if subprotocol and subprotocol.startswith(prefix):
            try:
                return cls(subprotocol[len(prefix):])
            except ValueError:
                pass
        raise SerializerNotSupported(f"Unsupported WAMP subprotocol: {subprotocol!r}")


class Serializer(ABC):
    """
    Base class for WAMP serializers.

    Subclasses only convert between the generic list form and bytes; message
    validation is shared and lives in ``wampclient.message.decode``.
    """

    TYPE: SerializerType
    RAWSOCKET_ID: int
    BINARY: bool

    @property
    def subprotocol(self) -> str:
        return self.TYPE.subprotocol

    @abstractmethod
    def dumps(self, obj: Any) -> bytes:
        """Encode a generic value."""
        pass

    @abstractmethod
    def loads(self, payload: bytes) -> Any:
        """Decode a generic value."""
        pass

    def serialize(self, message: Message) -> bytes:
        """Serialize a message into frame bytes."""
        return self.dumps(message.marshal())

    def unserialize(self, payload: bytes) -> Message:
        """
        Unserialize frame bytes into a message.

        Raises:
            ProtocolViolation: the bytes are not valid for this encoding or do
                not form a valid WAMP message.
        """
        try:
            obj = self.loads(payload)
        except Exception as e:
            raise ProtocolViolation(f"Invalid {self.TYPE.value} payload: {e}") from e
        return decode(obj)


class JsonSerializer(Serializer):
    """
    JSON serializer.

    JSON has no binary type, so WAMP sends bytes as a string made of a NUL
    character followed by the base64 encoding of the bytes.
    """

    TYPE = SerializerType.JSON
    RAWSOCKET_ID = 1
    BINARY = False

    @staticmethod
    def _encode_binary(value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            return "\x00" + base64.b64encode(bytes(value)).decode("ascii")
        raise TypeError(f"Cannot serialize value of type {type(value)}")

    @classmethod
    def _decode_binary(cls, value: Any) -> Any:
        if isinstance(value, str):
            if value.startswith("\x00"):
                return base64.b64decode(value[1:])
            return value
        if isinstance(value, list):
            return [cls._decode_binary(item) for item in value]
        if isinstance(value, dict):
            return {key: cls._decode_binary(item) for key, item in value.items()}
        return value

    def dumps(self, obj: Any) -> bytes:
        text = json.dumps(obj, separators=(",", ":"), ensure_ascii=False,
                          default=self._encode_binary)
        return text.encode("utf-8")

    def loads(self, payload: bytes) -> Any:
        if isinstance(payload, (bytes, bytearray)):
            payload = bytes(payload).decode("utf-8")
        return self._decode_binary(json.loads(payload))


class MsgPackSerializer(Serializer):
    """MessagePack serializer."""

    TYPE = SerializerType.MSGPACK
    RAWSOCKET_ID = 2
    BINARY = True

    def dumps(self, obj: Any) -> bytes:
        return msgpack.packb(obj, use_bin_type=True)

    def loads(self, payload: bytes) -> Any:
        return msgpack.unpackb(payload, raw=False)


class CborSerializer(Serializer):
    """CBOR serializer."""

    TYPE = SerializerType.CBOR
    RAWSOCKET_ID = 3
    BINARY = True

    def dumps(self, obj: Any) -> bytes:
        return cbor2.dumps(obj)

    def loads(self, payload: bytes) -> Any:
        return cbor2.loads(payload)


SERIALIZERS: Dict[SerializerType, Type[Serializer]] = {
    SerializerType.JSON: JsonSerializer,
    SerializerType.MSGPACK: MsgPackSerializer,
    SerializerType.CBOR: CborSerializer,
}


def get_serializer(kind: Union[SerializerType, str]) -> Serializer:
    """
    Create a serializer from a SerializerType, a name ("json") or a
    subprotocol ("wamp.2.json").
    """
    if isinstance(kind, str):
        if kind.startswith("wamp.2."):
            kind = SerializerType.from_subprotocol(kind)
        else:
            try:
                kind = SerializerType(kind)
            except ValueError:
                raise SerializerNotSupported(f"Unknown serializer: {kind!r}") from None
    return SERIALIZERS[kind]()
