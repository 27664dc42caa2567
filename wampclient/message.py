"""
WAMP v2 message model.

Every message is a dataclass whose fields follow the positional layout of the
message on the wire. ``encode`` turns a message into the generic list form
handed to a serializer and ``decode`` validates such a list and builds the
matching message, raising ProtocolViolation for anything malformed.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Callable, ClassVar, Dict, List, Optional, Sequence, Type

from .errors import ProtocolViolation

# IDs are drawn from [0, 2^53] so they survive a round-trip through JSON doubles.
MAX_ID = 2 ** 53


def check_id(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolViolation(f"{what}: invalid type {type(value).__name__} for ID")
    if value < 0 or value > MAX_ID:
        raise ProtocolViolation(f"{what}: invalid value {value} for ID")
    return value


def check_int(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolViolation(f"{what}: invalid type {type(value).__name__} for integer")
    return value


def check_string(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise ProtocolViolation(f"{what}: invalid type {type(value).__name__} for string")
    return value


def check_uri(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise ProtocolViolation(f"{what}: invalid type {type(value).__name__} for URI")
    if not value:
        raise ProtocolViolation(f"{what}: empty URI")
    return value


def check_dict(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ProtocolViolation(f"{what}: invalid type {type(value).__name__} for dict")
    for key in value:
        if not isinstance(key, str):
            raise ProtocolViolation(f"{what}: invalid type {type(key).__name__} for key {key!r}")
    return value


def check_list(value: Any, what: str) -> List[Any]:
    if not isinstance(value, list):
        raise ProtocolViolation(f"{what}: invalid type {type(value).__name__} for list")
    return value


def _wire(check: Callable[[Any, str], Any]):
    """Declare a fixed wire field validated with ``check``."""
    return field(metadata={"check": check})


class Message:
    """
    Base class for WAMP messages.

    Subclasses are dataclasses. Fixed wire fields are declared with ``_wire``;
    messages that may carry an application payload end with optional ``args``
    and ``kwargs`` fields.
    """

    MESSAGE_TYPE: ClassVar[int] = 0

    def __post_init__(self) -> None:
        # kwargs on the wire always follow an args list
        if getattr(self, "kwargs", None) is not None and getattr(self, "args", None) is None:
            self.args = []

    @classmethod
    def _fixed_fields(cls):
        return [f for f in fields(cls) if "check" in f.metadata]

    @classmethod
    def _has_payload(cls) -> bool:
        return any(f.name == "kwargs" for f in fields(cls))

    @classmethod
    def name(cls) -> str:
        return cls.__name__.upper()

    def marshal(self) -> List[Any]:
        """Return the positional wire representation of this message."""
        wmsg: List[Any] = [self.MESSAGE_TYPE]
        wmsg.extend(getattr(self, f.name) for f in self._fixed_fields())
        if self._has_payload():
            if self.kwargs is not None:
                wmsg.append(self.args if self.args is not None else [])
                wmsg.append(self.kwargs)
            elif self.args is not None:
                wmsg.append(self.args)
        return wmsg

    @classmethod
    def parse(cls, wmsg: Sequence[Any]) -> "Message":
        """Validate a wire list whose type code is already known to match."""
        fixed = cls._fixed_fields()
        min_len = len(fixed) + 1
        max_len = min_len + 2 if cls._has_payload() else min_len
        if not min_len <= len(wmsg) <= max_len:
            raise ProtocolViolation(f"invalid message length {len(wmsg)} for {cls.name()}")

        values = {
            f.name: f.metadata["check"](wmsg[index], f"'{f.name}' in {cls.name()}")
            for index, f in enumerate(fixed, start=1)
        }
        if cls._has_payload():
            if len(wmsg) > min_len:
                values["args"] = check_list(wmsg[min_len], f"'args' in {cls.name()}")
            if len(wmsg) > min_len + 1:
                values["kwargs"] = check_dict(wmsg[min_len + 1], f"'kwargs' in {cls.name()}")
        return cls(**values)


@dataclass
class Hello(Message):
    """``[HELLO, Realm|uri, Details|dict]``"""
    MESSAGE_TYPE = 1
    realm: str = _wire(check_uri)
    details: Dict[str, Any] = _wire(check_dict)


@dataclass
class Welcome(Message):
    """``[WELCOME, Session|id, Details|dict]``"""
    MESSAGE_TYPE = 2
    session: int = _wire(check_id)
    details: Dict[str, Any] = _wire(check_dict)


@dataclass
class Abort(Message):
    """``[ABORT, Details|dict, Reason|uri]``"""
    MESSAGE_TYPE = 3
    details: Dict[str, Any] = _wire(check_dict)
    reason: str = _wire(check_uri)


@dataclass
class Challenge(Message):
    """``[CHALLENGE, AuthMethod|string, Extra|dict]``"""
    MESSAGE_TYPE = 4
    authmethod: str = _wire(check_string)
    extra: Dict[str, Any] = _wire(check_dict)


@dataclass
class Authenticate(Message):
    """``[AUTHENTICATE, Signature|string, Extra|dict]``"""
    MESSAGE_TYPE = 5
    signature: str = _wire(check_string)
    extra: Dict[str, Any] = _wire(check_dict)


@dataclass
class Goodbye(Message):
    """``[GOODBYE, Details|dict, Reason|uri]``"""
    MESSAGE_TYPE = 6
    details: Dict[str, Any] = _wire(check_dict)
    reason: str = _wire(check_uri)


@dataclass
class Error(Message):
    """``[ERROR, REQUEST.Type|int, REQUEST.Request|id, Details|dict, Error|uri, Arguments|list, ArgumentsKw|dict]``"""
    MESSAGE_TYPE = 8
    request_type: int = _wire(check_int)
    request: int = _wire(check_id)
    details: Dict[str, Any] = _wire(check_dict)
    error: str = _wire(check_uri)
    args: Optional[List[Any]] = None
    kwargs: Optional[Dict[str, Any]] = None


@dataclass
class Publish(Message):
    """``[PUBLISH, Request|id, Options|dict, Topic|uri, Arguments|list, ArgumentsKw|dict]``"""
    MESSAGE_TYPE = 16
    request: int = _wire(check_id)
    options: Dict[str, Any] = _wire(check_dict)
    topic: str = _wire(check_uri)
    args: Optional[List[Any]] = None
    kwargs: Optional[Dict[str, Any]] = None


@dataclass
class Published(Message):
    """``[PUBLISHED, PUBLISH.Request|id, Publication|id]``"""
    MESSAGE_TYPE = 17
    request: int = _wire(check_id)
    publication: int = _wire(check_id)


@dataclass
class Subscribe(Message):
    """``[SUBSCRIBE, Request|id, Options|dict, Topic|uri]``"""
    MESSAGE_TYPE = 32
    request: int = _wire(check_id)
    options: Dict[str, Any] = _wire(check_dict)
    topic: str = _wire(check_uri)


@dataclass
class Subscribed(Message):
    """``[SUBSCRIBED, SUBSCRIBE.Request|id, Subscription|id]``"""
    MESSAGE_TYPE = 33
    request: int = _wire(check_id)
    subscription: int = _wire(check_id)


@dataclass
class Unsubscribe(Message):
    """``[UNSUBSCRIBE, Request|id, SUBSCRIBED.Subscription|id]``"""
    MESSAGE_TYPE = 34
    request: int = _wire(check_id)
    subscription: int = _wire(check_id)


@dataclass
class Unsubscribed(Message):
    """``[UNSUBSCRIBED, UNSUBSCRIBE.Request|id]``"""
    MESSAGE_TYPE = 35
    request: int = _wire(check_id)


@dataclass
class Event(Message):
    """``[EVENT, SUBSCRIBED.Subscription|id, PUBLISHED.Publication|id, Details|dict, Arguments|list, ArgumentsKw|dict]``"""
    MESSAGE_TYPE = 36
    subscription: int = _wire(check_id)
    publication: int = _wire(check_id)
    details: Dict[str, Any] = _wire(check_dict)
    args: Optional[List[Any]] = None
    kwargs: Optional[Dict[str, Any]] = None


@dataclass
class Call(Message):
    """``[CALL, Request|id, Options|dict, Procedure|uri, Arguments|list, ArgumentsKw|dict]``"""
    MESSAGE_TYPE = 48
    request: int = _wire(check_id)
    options: Dict[str, Any] = _wire(check_dict)
    procedure: str = _wire(check_uri)
    args: Optional[List[Any]] = None
    kwargs: Optional[Dict[str, Any]] = None


@dataclass
class Result(Message):
    """``[RESULT, CALL.Request|id, Details|dict, YIELD.Arguments|list, YIELD.ArgumentsKw|dict]``"""
    MESSAGE_TYPE = 50
    request: int = _wire(check_id)
    details: Dict[str, Any] = _wire(check_dict)
    args: Optional[List[Any]] = None
    kwargs: Optional[Dict[str, Any]] = None


@dataclass
class Register(Message):
    """``[REGISTER, Request|id, Options|dict, Procedure|uri]``"""
    MESSAGE_TYPE = 64
    request: int = _wire(check_id)
    options: Dict[str, Any] = _wire(check_dict)
    procedure: str = _wire(check_uri)


@dataclass
class Registered(Message):
    """``[REGISTERED, REGISTER.Request|id, Registration|id]``"""
    MESSAGE_TYPE = 65
    request: int = _wire(check_id)
    registration: int = _wire(check_id)


@dataclass
class Unregister(Message):
    """``[UNREGISTER, Request|id, REGISTERED.Registration|id]``"""
    MESSAGE_TYPE = 66
    request: int = _wire(check_id)
    registration: int = _wire(check_id)


@dataclass
class Unregistered(Message):
    """``[UNREGISTERED, UNREGISTER.Request|id]``"""
    MESSAGE_TYPE = 67
    request: int = _wire(check_id)


@dataclass
class Invocation(Message):
    """``[INVOCATION, Request|id, REGISTERED.Registration|id, Details|dict, CALL.Arguments|list, CALL.ArgumentsKw|dict]``"""
    MESSAGE_TYPE = 68
    request: int = _wire(check_id)
    registration: int = _wire(check_id)
    details: Dict[str, Any] = _wire(check_dict)
    args: Optional[List[Any]] = None
    kwargs: Optional[Dict[str, Any]] = None


@dataclass
class Yield(Message):
    """``[YIELD, INVOCATION.Request|id, Options|dict, Arguments|list, ArgumentsKw|dict]``"""
    MESSAGE_TYPE = 70
    request: int = _wire(check_id)
    options: Dict[str, Any] = _wire(check_dict)
    args: Optional[List[Any]] = None
    kwargs: Optional[Dict[str, Any]] = None


MESSAGE_CLASSES: Dict[int, Type[Message]] = {
    cls.MESSAGE_TYPE: cls
    for cls in (
        Hello, Welcome, Abort, Challenge, Authenticate, Goodbye, Error,
        Publish, Published, Subscribe, Subscribed, Unsubscribe, Unsubscribed, Event,
        Call, Result, Register, Registered, Unregister, Unregistered, Invocation, Yield,
    )
}

# Advanced-profile messages this client does not implement (call canceling).
UNSUPPORTED_MESSAGES: Dict[int, str] = {
    49: "CANCEL",
    69: "INTERRUPT",
}


def encode(message: Message) -> List[Any]:
    """Encode a message into its generic wire list."""
    return message.marshal()


def decode(wmsg: Any) -> Message:
    """
    Decode a generic wire list into a message.

    Raises:
        ProtocolViolation: the list is empty, carries an unknown or
            unsupported type code, or its fields do not match the schema.
    """
    if not isinstance(wmsg, (list, tuple)) or len(wmsg) == 0:
        raise ProtocolViolation(f"invalid WAMP message: {wmsg!r}")

    message_type = wmsg[0]
    if isinstance(message_type, bool) or not isinstance(message_type, int):
        raise ProtocolViolation(f"invalid type {type(message_type).__name__} for message type code")

    if message_type in UNSUPPORTED_MESSAGES:
        raise ProtocolViolation(f"unsupported message type {UNSUPPORTED_MESSAGES[message_type]}")

    cls = MESSAGE_CLASSES.get(message_type)
    if cls is None:
        raise ProtocolViolation(f"unknown message type code {message_type}")

    return cls.parse(list(wmsg))
