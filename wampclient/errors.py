"""
Exception types for the WAMP client.

Errors local to a single request (Timeout, RemoteError) leave the session
alive. Transport failures and protocol violations end the session, and every
request still pending at that moment fails with SessionLost.
"""

from typing import Any, Dict, List, Optional


class WampError(Exception):
    """Base class for all errors raised by this package."""


class ConnectionFailed(WampError):
    """Opening the transport or establishing the session failed."""

    def __init__(self, message: str, reason: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.reason = reason
        self.details = details or {}


class SendFailed(WampError):
    """The transport could not send a frame."""


class ReceiveFailed(WampError):
    """The transport could not receive a frame."""


class SerializerNotSupported(WampError):
    """No serializer could be agreed with the router."""


class ProtocolViolation(WampError):
    """A malformed message, or a message not allowed in the current state."""


class Timeout(WampError):
    """No response arrived within the deadline."""


class NotConnected(WampError):
    """The operation needs an established session."""


class SessionLost(WampError):
    """The session ended while the request was outstanding."""


class DuplicateRequestId(WampError):
    """A request ID was inserted twice into the same table."""


class ApplicationError(WampError):
    """
    An application-level error identified by a URI.

    Raise this from a registered procedure to send a WAMP ERROR with the given
    URI and payload back to the caller.
    """

    def __init__(self, uri: str, *args: Any, **kwargs: Any):
        super().__init__(uri, *args)
        self.uri = uri
        self.args_list: List[Any] = list(args)
        self.kwargs: Dict[str, Any] = kwargs

    def __str__(self) -> str:
        if self.args_list:
            return f"{self.uri}: {', '.join(str(arg) for arg in self.args_list)}"
        return self.uri


class RemoteError(ApplicationError):
    """An ERROR message received from the router in reply to a request."""

    def __init__(self, uri: str, args: Optional[List[Any]] = None,
                 kwargs: Optional[Dict[str, Any]] = None,
                 details: Optional[Dict[str, Any]] = None):
        # Router kwargs may use any key, including "uri".
        WampError.__init__(self, uri, *(args or []))
        self.uri = uri
        self.args_list = list(args or [])
        self.kwargs = dict(kwargs or {})
        self.details = details or {}
