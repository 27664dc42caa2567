"""
Tests for the WAMP serializers.
"""

import pytest

from wampclient.errors import ProtocolViolation, SerializerNotSupported
from wampclient.message import Call, Event, Result
from wampclient.serialize import (
    CborSerializer, JsonSerializer, MsgPackSerializer, SerializerType, get_serializer,
)


class TestJsonSerializer:
    """Test the JSON serializer."""

    def test_compact_output(self):
        """JSON output has no whitespace."""
        payload = JsonSerializer().serialize(Call(7, {}, "add", [2, 3]))
        assert payload == b'[48,7,{},"add",[2,3]]'

    def test_unicode_passthrough(self):
        payload = JsonSerializer().serialize(Result(1, {}, ["grüße"]))
        assert "grüße".encode("utf-8") in payload

    def test_binary_values(self):
        """Bytes travel as a NUL-prefixed base64 string."""
        serializer = JsonSerializer()
        payload = serializer.serialize(Event(1, 2, {}, [b"\x01\x02"], {"blob": b"abc"}))
        assert b'"\\u0000AQI="' in payload

        message = serializer.unserialize(payload)
        assert message.args == [b"\x01\x02"]
        assert message.kwargs == {"blob": b"abc"}

    def test_invalid_json(self):
        with pytest.raises(ProtocolViolation):
            JsonSerializer().unserialize(b"{not json")

    def test_valid_json_invalid_message(self):
        """Decodable bytes that are not a WAMP message are a violation too."""
        with pytest.raises(ProtocolViolation):
            JsonSerializer().unserialize(b'{"type": 2}')


class TestBinarySerializers:
    """Test the MessagePack and CBOR serializers."""

    @pytest.mark.parametrize("serializer_class", [MsgPackSerializer, CborSerializer])
    def test_message_with_bytes(self, serializer_class):
        serializer = serializer_class()
        message = Event(1, 2, {}, [b"\x00\xff", 1.5, None], {"k": "v"})
        assert serializer.unserialize(serializer.serialize(message)) == message

    @pytest.mark.parametrize("serializer_class", [MsgPackSerializer, CborSerializer])
    def test_garbage(self, serializer_class):
        with pytest.raises(ProtocolViolation):
            serializer_class().unserialize(b"\xc1\xc1\xc1")

    def test_properties(self):
        assert MsgPackSerializer.RAWSOCKET_ID == 2
        assert CborSerializer.RAWSOCKET_ID == 3
        assert MsgPackSerializer().subprotocol == "wamp.2.msgpack"
        assert CborSerializer.BINARY


class TestSerializerLookup:
    """Test serializer selection."""

    @pytest.mark.parametrize("kind,expected", [
        (SerializerType.JSON, JsonSerializer),
        ("msgpack", MsgPackSerializer),
        ("wamp.2.cbor", CborSerializer),
    ])
    def test_get_serializer(self, kind, expected):
        assert isinstance(get_serializer(kind), expected)

    @pytest.mark.parametrize("kind", ["xml", "wamp.2.xml"])
    def test_unknown_serializer(self, kind):
        with pytest.raises(SerializerNotSupported):
            get_serializer(kind)

    def test_from_subprotocol(self):
        assert SerializerType.from_subprotocol("wamp.2.json") is SerializerType.JSON
        with pytest.raises(SerializerNotSupported):
            SerializerType.from_subprotocol("mqtt")


if __name__ == "__main__":
    pytest.main([__file__])
