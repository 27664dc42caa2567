"""
Option dictionary builders for the four client roles.

Each builder is immutable: ``with_option`` returns a new builder holding one
more key. Keys are checked against the role's allow-list and values against
the type the router expects, so a typo fails locally instead of being ignored
by the router.
"""

from enum import Enum
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union


class InvokePolicy(Enum):
    """How the router picks a callee when a procedure has several registrations."""
    SINGLE = "single"
    FIRST = "first"
    LAST = "last"
    ROUNDROBIN = "roundrobin"
    RANDOM = "random"


class MatchPolicy(Enum):
    """How the router matches a URI against a registration or subscription."""
    EXACT = "exact"
    PREFIX = "prefix"
    WILDCARD = "wildcard"


def _is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def _is_non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _is_id_list(value: Any) -> bool:
    return isinstance(value, list) and all(_is_non_negative_int(item) for item in value)


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _one_of(policy: type) -> Callable[[Any], bool]:
    allowed = {member.value for member in policy}
    return lambda value: value in allowed


class OptionBuilder:
    """
    Base class for role option builders.

    Subclasses set ``ROLE`` and ``ALLOWED``, a mapping from option key to a
    predicate that accepts valid values.
    """

    ROLE: str = ""
    ALLOWED: Mapping[str, Callable[[Any], bool]] = {}

    def __init__(self, options: Optional[Mapping[str, Any]] = None):
        self._options: Dict[str, Any] = {}
        for key, value in (options or {}).items():
            self._options[key] = self.validate_option(key, value)

    @classmethod
    def validate_option(cls, key: str, value: Any) -> Any:
        """Return the wire value for ``key``, or raise ValueError."""
        if isinstance(value, Enum):
            value = value.value
        check = cls.ALLOWED.get(key)
        if check is None:
            raise ValueError(f"Option '{key}' is not valid for the {cls.ROLE} role")
        if not check(value):
            raise ValueError(f"Invalid value {value!r} for {cls.ROLE} option '{key}'")
        return value

    def with_option(self, key: str, value: Any):
        """Return a new builder with ``key`` set to ``value``."""
        options = dict(self._options)
        options[key] = self.validate_option(key, value)
        return type(self)(options)

    def to_dict(self) -> Dict[str, Any]:
        """Return a copy of the options dictionary."""
        return dict(self._options)

    def __eq__(self, other: Any) -> bool:
        return type(other) is type(self) and other._options == self._options

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._options!r})"


class CallOptions(OptionBuilder):
    """Options for CALL."""

    ROLE = "caller"
    ALLOWED = {
        "timeout": _is_non_negative_int,
        "disclose_me": _is_bool,
    }

    def with_timeout(self, milliseconds: int) -> "CallOptions":
        """Ask the router to cancel the call after ``milliseconds``."""
        return self.with_option("timeout", milliseconds)

    def with_disclose_me(self, disclose: bool = True) -> "CallOptions":
        return self.with_option("disclose_me", disclose)


class RegisterOptions(OptionBuilder):
    """Options for REGISTER."""

    ROLE = "callee"
    ALLOWED = {
        "match": _one_of(MatchPolicy),
        "invoke": _one_of(InvokePolicy),
        "disclose_caller": _is_bool,
    }

    def with_invoke(self, policy: Union[InvokePolicy, str]) -> "RegisterOptions":
        return self.with_option("invoke", policy)

    def with_match(self, policy: Union[MatchPolicy, str]) -> "RegisterOptions":
        return self.with_option("match", policy)

    def with_disclose_caller(self, disclose: bool = True) -> "RegisterOptions":
        return self.with_option("disclose_caller", disclose)


class PublishOptions(OptionBuilder):
    """Options for PUBLISH."""

    ROLE = "publisher"
    ALLOWED = {
        "acknowledge": _is_bool,
        "exclude_me": _is_bool,
        "disclose_me": _is_bool,
        "retain": _is_bool,
        "exclude": _is_id_list,
        "exclude_authid": _is_string_list,
        "exclude_authrole": _is_string_list,
        "eligible": _is_id_list,
        "eligible_authid": _is_string_list,
        "eligible_authrole": _is_string_list,
    }

    def with_acknowledge(self, acknowledge: bool = True) -> "PublishOptions":
        return self.with_option("acknowledge", acknowledge)

    def with_exclude_me(self, exclude_me: bool = True) -> "PublishOptions":
        return self.with_option("exclude_me", exclude_me)

    def with_exclude(self, session_ids: Iterable[int]) -> "PublishOptions":
        return self.with_option("exclude", list(session_ids))

    def with_eligible(self, session_ids: Iterable[int]) -> "PublishOptions":
        return self.with_option("eligible", list(session_ids))


class SubscribeOptions(OptionBuilder):
    """Options for SUBSCRIBE."""

    ROLE = "subscriber"
    ALLOWED = {
        "match": _one_of(MatchPolicy),
        "get_retained": _is_bool,
    }

    def with_match(self, policy: Union[MatchPolicy, str]) -> "SubscribeOptions":
        return self.with_option("match", policy)

    def with_get_retained(self, get_retained: bool = True) -> "SubscribeOptions":
        return self.with_option("get_retained", get_retained)


OptionsLike = Union[OptionBuilder, Mapping[str, Any], None]


def options_dict(options: OptionsLike, builder: type) -> Dict[str, Any]:
    """
    Normalise options given as a builder, a plain mapping or None.

    Plain mappings are validated through ``builder``.
    """
    if options is None:
        return {}
    if isinstance(options, OptionBuilder):
        if not isinstance(options, builder):
            raise TypeError(f"Expected {builder.__name__}, got {type(options).__name__}")
        return options.to_dict()
    return builder(options).to_dict()
