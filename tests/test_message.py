"""
Tests for the WAMP message model.
"""

import pytest

from wampclient.errors import ProtocolViolation
from wampclient.message import (
    MAX_ID, MESSAGE_CLASSES, Abort, Authenticate, Call, Challenge, Error, Event, Goodbye, Hello,
    Invocation, Publish, Published, Register, Registered, Result, Subscribe, Subscribed,
    Unregister, Unregistered, Unsubscribe, Unsubscribed, Welcome, Yield, decode, encode,
)

SAMPLES = [
    Hello("realm1", {"roles": {"caller": {}}, "agent": "test"}),
    Welcome(42, {"authid": "alice"}),
    Abort({"message": "no such realm"}, "wamp.error.no_such_realm"),
    Challenge("ticket", {"challenge": "abc"}),
    Authenticate("secret", {}),
    Goodbye({}, "wamp.close.close_realm"),
    Error(Call.MESSAGE_TYPE, 7, {}, "com.example.error", ["bad"], {"field": "x"}),
    Publish(1, {"acknowledge": True}, "com.example.topic", ["hello"]),
    Published(1, 5000),
    Subscribe(2, {"match": "prefix"}, "com.example"),
    Subscribed(2, 17),
    Unsubscribe(3, 17),
    Unsubscribed(3),
    Event(17, 5000, {}, [1, 2], {"unit": "ms"}),
    Call(4, {"timeout": 1000}, "com.example.add", [2, 3]),
    Result(4, {}, [5]),
    Register(5, {"invoke": "roundrobin"}, "com.example.add"),
    Registered(5, 23),
    Unregister(6, 23),
    Unregistered(6),
    Invocation(9, 23, {}, [2, 3], {"verbose": True}),
    Yield(9, {}, [5]),
]


class TestEncode:
    """Test encoding messages to wire lists."""

    def test_call_layout(self):
        """CALL follows the positional wire layout."""
        assert encode(Call(7, {}, "add", [2, 3])) == [48, 7, {}, "add", [2, 3]]

    def test_payload_omitted_when_empty(self):
        """Messages without a payload end after their fixed fields."""
        assert encode(Yield(11, {})) == [70, 11, {}]
        assert encode(Publish(1, {}, "com.example.topic")) == [16, 1, {}, "com.example.topic"]

    def test_kwargs_without_args(self):
        """Keyword payload without positional payload sends an empty args list."""
        assert encode(Result(3, {}, kwargs={"a": 1})) == [50, 3, {}, [], {"a": 1}]

    def test_error_layout(self):
        """ERROR carries the request type before the request ID."""
        message = Error(Invocation.MESSAGE_TYPE, 9, {}, "com.example.error", ["bad"])
        assert encode(message) == [8, 68, 9, {}, "com.example.error", ["bad"]]

    def test_name(self):
        assert Subscribed.name() == "SUBSCRIBED"


class TestDecode:
    """Test decoding and validation."""

    def test_welcome(self):
        """A valid WELCOME decodes to its message type."""
        message = decode([2, 42, {"roles": {}}])
        assert message == Welcome(42, {"roles": {}})

    def test_event_with_payload(self):
        message = decode([36, 3, 100, {}, ["hi"], {"k": 1}])
        assert isinstance(message, Event)
        assert message.args == ["hi"]
        assert message.kwargs == {"k": 1}

    def test_tuple_accepted(self):
        """Serializers may hand back tuples instead of lists."""
        assert decode((2, 1, {})) == Welcome(1, {})

    def test_largest_id(self):
        assert decode([2, MAX_ID, {}]).session == MAX_ID

    @pytest.mark.parametrize("wmsg", [
        [],
        "not a list",
        {"type": 2},
        [True, 1, {}],
        ["2", 1, {}],
    ])
    def test_malformed_envelope(self, wmsg):
        """Empty input or a non-integer type code is rejected."""
        with pytest.raises(ProtocolViolation):
            decode(wmsg)

    def test_unknown_type_code(self):
        with pytest.raises(ProtocolViolation, match="unknown message type"):
            decode([999, 1])

    @pytest.mark.parametrize("code", [49, 69])
    def test_unsupported_type_code(self, code):
        """CANCEL and INTERRUPT are rejected as unsupported."""
        with pytest.raises(ProtocolViolation, match="unsupported"):
            decode([code, 1, {}])

    @pytest.mark.parametrize("wmsg", [
        [2, 42],
        [2, 42, {}, "extra"],
        [50, 1, {}, [], {}, "extra"],
    ])
    def test_wrong_length(self, wmsg):
        with pytest.raises(ProtocolViolation, match="invalid message length"):
            decode(wmsg)

    @pytest.mark.parametrize("wmsg", [
        [2, -1, {}],
        [2, MAX_ID + 1, {}],
        [2, 1.5, {}],
        [2, True, {}],
        [2, 1, []],
        [2, 1, {1: "non-string key"}],
        [1, "", {}],
        [1, 7, {}],
        [50, 1, {}, "not a list"],
        [50, 1, {}, [], ["not a dict"]],
    ])
    def test_invalid_fields(self, wmsg):
        """Field types and ID ranges are checked."""
        with pytest.raises(ProtocolViolation):
            decode(wmsg)

    def test_hello_roundtrip_fields(self):
        hello = decode([1, "realm1", {"roles": {"caller": {}}}])
        assert isinstance(hello, Hello)
        assert hello.realm == "realm1"


class TestRoundTrip:
    """Test that decoding an encoded message gives the message back."""

    def test_samples_cover_every_message(self):
        assert {type(message) for message in SAMPLES} == set(MESSAGE_CLASSES.values())

    @pytest.mark.parametrize("message", SAMPLES, ids=lambda message: message.name())
    def test_roundtrip(self, message):
        assert decode(encode(message)) == message


if __name__ == "__main__":
    pytest.main([__file__])
