"""
WAMP session management.

This module implements the client side of a WAMP session: the session state
machine, the dispatch loop that routes every inbound message to a pending
request or a local handler, and the Client facade used by applications.
"""

import asyncio
import inspect
import logging
import ssl
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from .core import CallResult, HandlerTable, IdGenerator, PendingRequest, PendingTable, Registration, Subscription
from .errors import (
    ApplicationError, ConnectionFailed, NotConnected, ProtocolViolation, ReceiveFailed,
    RemoteError, SendFailed, SessionLost, Timeout, WampError,
)
from .message import (
    Abort, Authenticate, Call, Challenge, Error, Event, Goodbye, Hello, Invocation, Message,
    Publish, Published, Register, Registered, Result, Subscribe, Subscribed, Unregister,
    Unregistered, Unsubscribe, Unsubscribed, Welcome, Yield,
)
from .options import CallOptions, OptionsLike, PublishOptions, RegisterOptions, SubscribeOptions, options_dict
from .serialize import Serializer, SerializerType

logger = logging.getLogger(__name__)

DEFAULT_AGENT = "wampclient-python"

CLOSE_REALM = "wamp.close.close_realm"
GOODBYE_AND_OUT = "wamp.close.goodbye_and_out"
NO_SUCH_REGISTRATION = "wamp.error.no_such_registration"
RUNTIME_ERROR = "wamp.error.runtime_error"
CANCELED = "wamp.error.canceled"
PROTOCOL_VIOLATION = "wamp.error.protocol_violation"
CANNOT_AUTHENTICATE = "wamp.error.cannot_authenticate"


class WampTransport(ABC):
    """
    Abstract base class for WAMP transports.

    A transport carries whole WAMP messages: every ``receive`` returns the
    bytes of exactly one message. ``binary`` tells whether frames are binary
    or text on transports that distinguish the two.
    """

    binary: bool = False

    @abstractmethod
    async def send(self, payload: bytes) -> None:
        """Send one message. Raises SendFailed."""
        pass

    @abstractmethod
    async def receive(self) -> bytes:
        """Receive one message. Raises ReceiveFailed."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the transport. Safe to call more than once."""
        pass


class ClientRole(Enum):
    """Roles announced to the router in HELLO."""
    CALLER = "caller"
    CALLEE = "callee"
    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"


class ClientState(Enum):
    """States of a client session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ESTABLISHING = "establishing"
    ESTABLISHED = "established"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


TERMINAL_STATES = (ClientState.CLOSED, ClientState.FAILED)

_RESPONSES = (Error, Result, Registered, Unregistered, Subscribed, Unsubscribed, Published)

# Inbound message kinds the dispatch loop accepts in each state.
ALLOWED_MESSAGES: Dict[ClientState, Tuple[type, ...]] = {
    ClientState.ESTABLISHING: (Welcome, Abort, Challenge),
    ClientState.ESTABLISHED: _RESPONSES + (Event, Invocation, Goodbye),
    ClientState.CLOSING: _RESPONSES + (Event, Invocation, Goodbye),
}


class ClientConfig:
    """Configuration options for WAMP clients."""

    def __init__(self,
                 agent: str = DEFAULT_AGENT,
                 roles: Optional[Iterable[Union[ClientRole, str]]] = None,
                 serializers: Optional[Iterable[Union[SerializerType, str]]] = None,
                 max_msg_size: int = 16 * 1024 * 1024,  # 16MB
                 ssl_verify: bool = True,
                 websocket_headers: Optional[Mapping[str, str]] = None,
                 websocket_backend: str = "websockets",
                 call_timeout: Optional[float] = 30.0,
                 connect_timeout: Optional[float] = 10.0,
                 close_timeout: float = 5.0,
                 on_send_error: Optional[Callable[[Exception], Optional[Exception]]] = None):
        """
        Initialize client configuration.

        Args:
            agent: Agent string sent in HELLO and as the WebSocket User-Agent
            roles: Roles announced to the router (default: all four)
            serializers: Serializers offered to the router, most preferred first
            max_msg_size: Largest message accepted from the router, in bytes
                (RawSocket rounds it up to the power of two it announces)
            ssl_verify: Verify the router's TLS certificate
            websocket_headers: Extra headers sent with the WebSocket upgrade
            websocket_backend: "websockets" or "aiohttp"
            call_timeout: Default deadline for requests, in seconds (None waits forever)
            connect_timeout: Deadline for opening the transport and joining a realm
            close_timeout: How long to wait for the router's GOODBYE reply
            on_send_error: Callback that may replace (redact) an exception raised
                by a registered procedure before it is sent to the caller
        """
        if websocket_backend not in ("websockets", "aiohttp"):
            raise ValueError(f"Unknown websocket backend: {websocket_backend!r}")

        self.agent = agent
        self.roles = [ClientRole(role) for role in (roles or list(ClientRole))]
        self.serializers = [SerializerType(s) for s in (serializers or [SerializerType.JSON, SerializerType.MSGPACK])]
        self.max_msg_size = max_msg_size
        self.ssl_verify = ssl_verify
        self.websocket_headers = dict(websocket_headers or {})
        self.websocket_backend = websocket_backend
        self.call_timeout = call_timeout
        self.connect_timeout = connect_timeout
        self.close_timeout = close_timeout
        self.on_send_error = on_send_error

    def ssl_context(self) -> ssl.SSLContext:
        """Build the TLS context used for wss:// and tcps:// URLs."""
        context = ssl.create_default_context()
        if not self.ssl_verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context


def _session_lost(error: BaseException) -> SessionLost:
    if isinstance(error, SessionLost):
        return error
    lost = SessionLost(str(error) or type(error).__name__)
    lost.__cause__ = error
    return lost


class WampSessionImpl:
    """Internal implementation of a WAMP session over one transport."""

    def __init__(self, transport: WampTransport, serializer: Serializer,
                 config: Optional[ClientConfig] = None):
        self.transport = transport
        self.serializer = serializer
        self.config = config or ClientConfig()

        # Session state
        self.state = ClientState.CONNECTING
        self.session_id: Optional[int] = None
        self.realm: Optional[str] = None
        self.welcome_details: Dict[str, Any] = {}
        self.close_reason: Optional[str] = None
        self.failure_reason: Optional[BaseException] = None

        self.ids = IdGenerator()

        # Correlation tables
        self.calls = PendingTable("call")
        self.registers = PendingTable("register")
        self.unregisters = PendingTable("unregister")
        self.subscribes = PendingTable("subscribe")
        self.unsubscribes = PendingTable("unsubscribe")
        self.publishes = PendingTable("publish")
        self.registrations: HandlerTable[Registration] = HandlerTable("registration")
        self.subscriptions: HandlerTable[Subscription] = HandlerTable("subscription")

        self._error_tables: Dict[int, PendingTable] = {
            Call.MESSAGE_TYPE: self.calls,
            Register.MESSAGE_TYPE: self.registers,
            Unregister.MESSAGE_TYPE: self.unregisters,
            Subscribe.MESSAGE_TYPE: self.subscribes,
            Unsubscribe.MESSAGE_TYPE: self.unsubscribes,
            Publish.MESSAGE_TYPE: self.publishes,
        }
        self._handlers: Dict[type, Callable[[Any], Awaitable[None]]] = {
            Welcome: self._handle_welcome,
            Abort: self._handle_abort,
            Challenge: self._handle_challenge,
            Goodbye: self._handle_goodbye,
            Error: self._handle_error,
            Result: self._handle_result,
            Registered: self._handle_registered,
            Unregistered: self._handle_unregistered,
            Subscribed: self._handle_subscribed,
            Unsubscribed: self._handle_unsubscribed,
            Published: self._handle_published,
            Event: self._handle_event,
            Invocation: self._handle_invocation,
        }

        loop = asyncio.get_running_loop()
        self._join_future: Optional[asyncio.Future] = None
        self._goodbye_future: Optional[asyncio.Future] = None
        self._closed_future: asyncio.Future = loop.create_future()
        self._on_challenge: Optional[Callable[[str, Dict[str, Any]], Any]] = None
        self._send_lock = asyncio.Lock()
        self._handler_tasks: Set[asyncio.Task] = set()

        # Start message reading loop
        self.read_task: asyncio.Task = asyncio.create_task(self._read_loop())

    @property
    def pending_tables(self) -> List[PendingTable]:
        return [self.calls, self.registers, self.unregisters,
                self.subscribes, self.unsubscribes, self.publishes]

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def _set_state(self, state: ClientState) -> None:
        if state is not self.state:
            logger.debug(f"Session state {self.state.value} -> {state.value}")
            self.state = state

    def _ensure_established(self) -> None:
        if self.state is not ClientState.ESTABLISHED:
            raise NotConnected(f"Session is {self.state.value}, not established")

    # Sending

    async def send(self, message: Message) -> None:
        """Serialize and send a message. A transport failure ends the session."""
        if self.is_terminal:
            raise NotConnected(f"Session is {self.state.value}")

        payload = self.serializer.serialize(message)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Sending {message}")

        try:
            async with self._send_lock:
                await self.transport.send(payload)
        except Exception as e:
            error = e if isinstance(e, SendFailed) else SendFailed(f"Failed to send {message.name()}: {e}")
            logger.error(f"Transport send failed: {error}")
            await self._fail(error)
            if error is e:
                raise
            raise error from e

    async def _send_best_effort(self, message: Message) -> None:
        """Send a message on the way out of a session, ignoring failures."""
        try:
            payload = self.serializer.serialize(message)
            async with self._send_lock:
                await self.transport.send(payload)
        except Exception as e:
            logger.debug(f"Could not send {message.name()}: {e}")

    # Terminal transitions

    async def _finish(self, state: ClientState, error: BaseException) -> None:
        """Enter a terminal state and release everything tied to the session."""
        if self.is_terminal:
            return

        if state is ClientState.FAILED:
            self.failure_reason = error
        self._set_state(state)
        self.session_id = None

        lost = _session_lost(error)
        flushed = sum(table.flush(lost) for table in self.pending_tables)
        if flushed:
            logger.info(f"Failed {flushed} pending request(s): {lost}")
        self.registrations.clear()
        self.subscriptions.clear()

        if self._join_future is not None and not self._join_future.done():
            if isinstance(error, (ConnectionFailed, Timeout)):
                join_error = error
            else:
                join_error = ConnectionFailed(f"Session ended before it was established: {error}")
                join_error.__cause__ = error
            self._join_future.set_exception(join_error)
        if self._goodbye_future is not None and not self._goodbye_future.done():
            self._goodbye_future.set_result(None)

        if self.read_task is not asyncio.current_task() and not self.read_task.done():
            self.read_task.cancel()

        try:
            await self.transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport: {e}")

        if not self._closed_future.done():
            self._closed_future.set_result(state)

    async def _fail(self, error: BaseException) -> None:
        await self._finish(ClientState.FAILED, error)

    async def _abort(self, reason: str, error: BaseException) -> None:
        """Tell the router why the session is being dropped, then fail it."""
        if not self.is_terminal:
            await self._send_best_effort(Abort({"message": str(error)}, reason))
        await self._fail(error)

    # Dispatch loop

    async def _read_loop(self) -> None:
        """Main message reading loop."""
        while not self.is_terminal:
            try:
                payload = await self.transport.receive()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self.is_terminal:
                    error = e if isinstance(e, ReceiveFailed) else ReceiveFailed(str(e))
                    logger.error(f"Transport receive failed: {error}")
                    await self._fail(error)
                return

            try:
                message = self.serializer.unserialize(payload)
                await self._dispatch(message)
            except ProtocolViolation as e:
                logger.error(f"Protocol violation: {e}")
                await self._abort(PROTOCOL_VIOLATION, e)
                return
            except SendFailed:
                # send() has already failed the session
                return
            except Exception as e:
                logger.exception(f"Unexpected error while dispatching: {e}")
                await self._fail(e)
                return

    async def _dispatch(self, message: Message) -> None:
        """Route one inbound message according to the current state."""
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Received {message}")

        allowed = ALLOWED_MESSAGES.get(self.state, ())
        if not isinstance(message, allowed):
            raise ProtocolViolation(f"Unexpected {message.name()} while {self.state.value}")

        await self._handlers[type(message)](message)

    async def _handle_welcome(self, message: Welcome) -> None:
        self.session_id = message.session
        self.welcome_details = message.details
        self._set_state(ClientState.ESTABLISHED)
        logger.info(f"Joined realm '{self.realm}' as session {message.session}")
        if self._join_future is not None and not self._join_future.done():
            self._join_future.set_result(message.session)

    async def _handle_abort(self, message: Abort) -> None:
        logger.warning(f"Router aborted the session: {message.reason}")
        error = ConnectionFailed(f"Router aborted the session: {message.reason}",
                                 reason=message.reason, details=message.details)
        await self._fail(error)

    async def _handle_challenge(self, message: Challenge) -> None:
        if self._on_challenge is None:
            error = ConnectionFailed(
                f"Router sent a '{message.authmethod}' challenge but no challenge handler is set",
                reason=CANNOT_AUTHENTICATE)
            await self._abort(CANNOT_AUTHENTICATE, error)
            return

        try:
            signature = self._on_challenge(message.authmethod, message.extra)
            if inspect.isawaitable(signature):
                signature = await signature
        except Exception as e:
            logger.error(f"Challenge handler failed: {e}")
            error = ConnectionFailed(f"Challenge handler failed: {e}", reason=CANNOT_AUTHENTICATE)
            await self._abort(CANNOT_AUTHENTICATE, error)
            return

        extra: Dict[str, Any] = {}
        if isinstance(signature, tuple):
            signature, extra = signature
        await self.send(Authenticate(signature, extra))

    async def _handle_goodbye(self, message: Goodbye) -> None:
        self.close_reason = message.reason
        if self.state is ClientState.ESTABLISHED:
            logger.info(f"Router closed the session: {message.reason}")
            await self._send_best_effort(Goodbye({}, GOODBYE_AND_OUT))
            await self._finish(ClientState.CLOSED, SessionLost(f"Session closed by router: {message.reason}"))
        else:
            if self._goodbye_future is not None and not self._goodbye_future.done():
                self._goodbye_future.set_result(message.reason)
            await self._finish(ClientState.CLOSED, SessionLost("Session closed"))

    async def _handle_error(self, message: Error) -> None:
        table = self._error_tables.get(message.request_type)
        if table is None:
            raise ProtocolViolation(f"ERROR for unexpected request type {message.request_type}")

        error = RemoteError(message.error, message.args, message.kwargs, message.details)
        if not table.reject(message.request, error):
            logger.warning(f"Dropping ERROR for unknown {table.kind} request {message.request}: {message.error}")

    async def _handle_result(self, message: Result) -> None:
        result = CallResult(message.args or [], message.kwargs or {}, message.details)
        if not self.calls.resolve(message.request, result):
            logger.warning(f"Dropping orphaned RESULT for request {message.request}")

    async def _handle_registered(self, message: Registered) -> None:
        pending = self.registers.pop(message.request)
        if pending is None:
            logger.warning(f"Dropping orphaned REGISTERED for request {message.request} "
                           f"(registration {message.registration} has no local handler)")
            return
        procedure, handler = pending.context
        self.registrations.add(message.registration, Registration(message.registration, procedure, handler))
        pending.future.set_result(message.registration)

    async def _handle_unregistered(self, message: Unregistered) -> None:
        pending = self.unregisters.pop(message.request)
        if pending is None:
            logger.warning(f"Dropping orphaned UNREGISTERED for request {message.request}")
            return
        self.registrations.remove(pending.context)
        pending.future.set_result(None)

    async def _handle_subscribed(self, message: Subscribed) -> None:
        pending = self.subscribes.pop(message.request)
        if pending is None:
            logger.warning(f"Dropping orphaned SUBSCRIBED for request {message.request} "
                           f"(subscription {message.subscription} has no local handler)")
            return
        topic, handler = pending.context
        self.subscriptions.add(message.subscription, Subscription(message.subscription, topic, handler))
        pending.future.set_result(message.subscription)

    async def _handle_unsubscribed(self, message: Unsubscribed) -> None:
        pending = self.unsubscribes.pop(message.request)
        if pending is None:
            logger.warning(f"Dropping orphaned UNSUBSCRIBED for request {message.request}")
            return
        self.subscriptions.remove(pending.context)
        pending.future.set_result(None)

    async def _handle_published(self, message: Published) -> None:
        if not self.publishes.resolve(message.request, message.publication):
            logger.warning(f"Dropping orphaned PUBLISHED for request {message.request}")

    async def _handle_event(self, message: Event) -> None:
        subscription = self.subscriptions.get(message.subscription)
        if subscription is None or self.state is ClientState.CLOSING:
            logger.debug(f"Dropping EVENT for subscription {message.subscription}")
            return
        self._spawn(self._run_event_handler(subscription, message))

    async def _handle_invocation(self, message: Invocation) -> None:
        registration = self.registrations.get(message.registration)
        if registration is None:
            logger.warning(f"INVOCATION for unknown registration {message.registration}")
            await self.send(Error(Invocation.MESSAGE_TYPE, message.request, {}, NO_SUCH_REGISTRATION))
            return
        if self.state is ClientState.CLOSING:
            logger.info(f"Refusing INVOCATION of '{registration.procedure}' while the session is closing")
            await self.send(Error(Invocation.MESSAGE_TYPE, message.request, {}, CANCELED))
            return
        self._spawn(self._run_invocation_handler(registration, message))

    # Handler execution

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(coro)
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    @staticmethod
    async def _call_handler(handler: Callable[..., Any], args: List[Any], kwargs: Dict[str, Any]) -> Any:
        """Run a handler off the dispatch loop; plain functions go to a worker thread."""
        if inspect.iscoroutinefunction(handler):
            return await handler(*args, **kwargs)
        result = await asyncio.to_thread(handler, *args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _run_event_handler(self, subscription: Subscription, message: Event) -> None:
        try:
            await self._call_handler(subscription.handler, message.args or [], message.kwargs or {})
        except Exception:
            logger.exception(f"Event handler for '{subscription.topic}' failed")

    def _invocation_error(self, request: int, error: Exception) -> Error:
        if not isinstance(error, ApplicationError) and self.config.on_send_error:
            try:
                error = self.config.on_send_error(error) or error
            except Exception:
                logger.exception(f"on_send_error hook failed for INVOCATION {request}")
        if isinstance(error, ApplicationError):
            return Error(Invocation.MESSAGE_TYPE, request, {}, error.uri,
                         error.args_list or None, error.kwargs or None)
        return Error(Invocation.MESSAGE_TYPE, request, {}, RUNTIME_ERROR, [str(error)])

    async def _run_invocation_handler(self, registration: Registration, message: Invocation) -> None:
        try:
            result = await self._call_handler(registration.handler, message.args or [], message.kwargs or {})
        except ApplicationError as e:
            reply: Message = self._invocation_error(message.request, e)
        except Exception as e:
            logger.warning(f"Procedure '{registration.procedure}' raised {type(e).__name__}: {e}")
            reply = self._invocation_error(message.request, e)
        else:
            if result is None:
                reply = Yield(message.request, {})
            elif isinstance(result, CallResult):
                reply = Yield(message.request, {}, result.args or None, result.kwargs or None)
            else:
                reply = Yield(message.request, {}, [result])

        try:
            await self.send(reply)
        except (TypeError, ValueError) as e:
            logger.error(f"Cannot serialize result of '{registration.procedure}': {e}")
            await self._reply_quietly(Error(Invocation.MESSAGE_TYPE, message.request, {}, RUNTIME_ERROR,
                                            [f"Result could not be serialized: {e}"]))
        except WampError as e:
            logger.warning(f"Could not reply to INVOCATION {message.request}: {e}")

    async def _reply_quietly(self, message: Message) -> None:
        try:
            await self.send(message)
        except WampError as e:
            logger.warning(f"Could not send {message.name()}: {e}")

    # Session lifecycle

    def _hello_details(self, roles: Optional[Iterable[Union[ClientRole, str]]],
                       authmethods: Optional[Iterable[str]], authid: Optional[str],
                       authextra: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        roles = [ClientRole(role) for role in (roles or self.config.roles)]
        details: Dict[str, Any] = {
            "agent": self.config.agent,
            "roles": {role.value: {"features": {}} for role in roles},
        }
        if authmethods:
            details["authmethods"] = list(authmethods)
        if authid is not None:
            details["authid"] = authid
        if authextra:
            details["authextra"] = dict(authextra)
        return details

    async def join(self, realm: str,
                   roles: Optional[Iterable[Union[ClientRole, str]]] = None,
                   authmethods: Optional[Iterable[str]] = None,
                   authid: Optional[str] = None,
                   authextra: Optional[Mapping[str, Any]] = None,
                   on_challenge: Optional[Callable[[str, Dict[str, Any]], Any]] = None,
                   timeout: Optional[float] = None) -> int:
        """Send HELLO and wait for WELCOME. Returns the session ID."""
        if self._join_future is not None:
            # A join is in progress or done; share its outcome.
            return await asyncio.shield(self._join_future)
        if self.state is not ClientState.CONNECTING:
            raise NotConnected(f"Cannot join a realm while {self.state.value}")

        self._join_future = asyncio.get_running_loop().create_future()
        self.realm = realm
        self._on_challenge = on_challenge
        details = self._hello_details(roles, authmethods, authid, authextra)

        self._set_state(ClientState.ESTABLISHING)
        await self.send(Hello(realm, details))

        deadline = self.config.connect_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(asyncio.shield(self._join_future), deadline)
        except asyncio.TimeoutError:
            error = Timeout(f"No WELCOME from the router within {deadline}s")
            await self._fail(error)
            raise error from None

    async def leave(self, reason: str = CLOSE_REALM, timeout: Optional[float] = None) -> ClientState:
        """Close the session with a GOODBYE handshake. Returns the final state."""
        if self.state is ClientState.ESTABLISHED:
            self._goodbye_future = asyncio.get_running_loop().create_future()
            self._set_state(ClientState.CLOSING)
            logger.info(f"Leaving realm '{self.realm}': {reason}")
            try:
                await self.send(Goodbye({}, reason))
            except WampError as e:
                logger.warning(f"Could not send GOODBYE: {e}")
            else:
                deadline = self.config.close_timeout if timeout is None else timeout
                try:
                    await asyncio.wait_for(asyncio.shield(self._goodbye_future), deadline)
                except asyncio.TimeoutError:
                    logger.warning(f"No GOODBYE reply within {deadline}s, closing anyway")
            await self._finish(ClientState.CLOSED, SessionLost("Session closed"))
        elif self.state in (ClientState.CONNECTING, ClientState.ESTABLISHING):
            await self._finish(ClientState.CLOSED, SessionLost("Session closed before it was established"))

        # Concurrent callers end up here and wait for the first one.
        return await asyncio.shield(self._closed_future)

    async def wait_closed(self) -> ClientState:
        """Wait until the session reaches CLOSED or FAILED."""
        return await asyncio.shield(self._closed_future)

    # Requests

    async def _request(self, table: PendingTable, message: Message,
                       timeout: Optional[float], context: Any = None) -> Any:
        """Register a pending request, send it and wait for its response."""
        pending = PendingRequest(message.request, asyncio.get_running_loop().create_future(), context)
        table.insert(pending)
        deadline = self.config.call_timeout if timeout is None else timeout
        try:
            await self.send(message)
            return await asyncio.wait_for(pending.future, deadline)
        except asyncio.TimeoutError:
            raise Timeout(f"No response to {message.name()} {message.request} within {deadline}s") from None
        finally:
            table.discard(message.request)

    async def call(self, procedure: str, args: Optional[Iterable[Any]] = None,
                   kwargs: Optional[Mapping[str, Any]] = None,
                   options: OptionsLike = None, timeout: Optional[float] = None) -> CallResult:
        self._ensure_established()
        message = Call(self.ids.next(), options_dict(options, CallOptions), procedure,
                       _as_list(args), _as_dict(kwargs))
        return await self._request(self.calls, message, timeout)

    async def register(self, procedure: str, handler: Callable[..., Any],
                       options: OptionsLike = None, timeout: Optional[float] = None) -> int:
        self._ensure_established()
        if not callable(handler):
            raise TypeError(f"Handler for '{procedure}' is not callable")
        message = Register(self.ids.next(), options_dict(options, RegisterOptions), procedure)
        return await self._request(self.registers, message, timeout, context=(procedure, handler))

    async def unregister(self, registration_id: int, timeout: Optional[float] = None) -> None:
        self._ensure_established()
        message = Unregister(self.ids.next(), registration_id)
        await self._request(self.unregisters, message, timeout, context=registration_id)

    async def subscribe(self, topic: str, handler: Callable[..., Any],
                        options: OptionsLike = None, timeout: Optional[float] = None) -> int:
        self._ensure_established()
        if not callable(handler):
            raise TypeError(f"Handler for '{topic}' is not callable")
        message = Subscribe(self.ids.next(), options_dict(options, SubscribeOptions), topic)
        return await self._request(self.subscribes, message, timeout, context=(topic, handler))

    async def unsubscribe(self, subscription_id: int, timeout: Optional[float] = None) -> None:
        self._ensure_established()
        message = Unsubscribe(self.ids.next(), subscription_id)
        await self._request(self.unsubscribes, message, timeout, context=subscription_id)

    async def publish(self, topic: str, args: Optional[Iterable[Any]] = None,
                      kwargs: Optional[Mapping[str, Any]] = None,
                      options: OptionsLike = None, acknowledge: bool = False,
                      timeout: Optional[float] = None) -> Optional[int]:
        self._ensure_established()
        publish_options = options_dict(options, PublishOptions)
        if acknowledge:
            publish_options["acknowledge"] = True
        message = Publish(self.ids.next(), publish_options, topic, _as_list(args), _as_dict(kwargs))
        if publish_options.get("acknowledge"):
            return await self._request(self.publishes, message, timeout)
        await self.send(message)
        return None

    def get_stats(self) -> Dict[str, int]:
        """Get session statistics."""
        stats = {f"pending_{table.kind}s": len(table) for table in self.pending_tables}
        stats["registrations"] = len(self.registrations)
        stats["subscriptions"] = len(self.subscriptions)
        return stats


def _as_list(args: Optional[Iterable[Any]]) -> Optional[List[Any]]:
    return None if args is None else list(args)


def _as_dict(kwargs: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    return None if kwargs is None else dict(kwargs)


class Client:
    """
    Public WAMP client interface.

    Usage:
        async with Client() as client:
            await client.connect("ws://localhost:8080/ws")
            await client.join_realm("realm1")
            result = await client.call("com.example.add", [2, 3])
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        self.config = config or ClientConfig()
        self._impl: Optional[WampSessionImpl] = None
        self._connect_lock = asyncio.Lock()

    @property
    def state(self) -> ClientState:
        if self._impl is None:
            return ClientState.DISCONNECTED
        return self._impl.state

    @property
    def session_id(self) -> Optional[int]:
        return self._impl.session_id if self._impl else None

    @property
    def failure_reason(self) -> Optional[BaseException]:
        return self._impl.failure_reason if self._impl else None

    def is_connected(self) -> bool:
        """True while the session is established."""
        return self.state is ClientState.ESTABLISHED

    def _session(self) -> WampSessionImpl:
        if self._impl is None:
            raise NotConnected("Client is not connected")
        return self._impl

    async def connect(self, url: str) -> None:
        """
        Open a transport to the router and negotiate a serializer.

        Supports ws://, wss:// (WebSocket) and tcp://, tcps:// (RawSocket)
        URLs. A concurrent connect waits for this one and reuses its session.
        """
        async with self._connect_lock:
            if self._impl is not None and not self._impl.is_terminal:
                return

            from .connection import connect_transport

            try:
                transport, serializer = await asyncio.wait_for(
                    connect_transport(url, self.config), self.config.connect_timeout)
            except asyncio.TimeoutError:
                raise ConnectionFailed(f"Timed out connecting to {url}") from None
            logger.info(f"Connected to {url} using {serializer.subprotocol}")
            self.attach(transport, serializer)

    def attach(self, transport: WampTransport, serializer: Serializer) -> None:
        """Start a session on an already open transport."""
        if self._impl is not None and not self._impl.is_terminal:
            raise WampError("Client already has an active session")
        self._impl = WampSessionImpl(transport, serializer, self.config)

    async def join_realm(self, realm: str,
                         roles: Optional[Iterable[Union[ClientRole, str]]] = None,
                         authmethods: Optional[Iterable[str]] = None,
                         authid: Optional[str] = None,
                         authextra: Optional[Mapping[str, Any]] = None,
                         on_challenge: Optional[Callable[[str, Dict[str, Any]], Any]] = None,
                         timeout: Optional[float] = None) -> int:
        """
        Join a realm and wait until the session is established.

        Args:
            realm: Realm to join
            roles: Roles to announce (default: ``config.roles``)
            authmethods: Authentication methods offered to the router
            authid: Authentication ID
            authextra: Extra authentication data
            on_challenge: ``(authmethod, extra) -> signature`` (may be async);
                return a ``(signature, extra)`` tuple to send extra data
            timeout: Deadline in seconds (default: ``config.connect_timeout``)

        Returns:
            The session ID assigned by the router
        """
        return await self._session().join(realm, roles, authmethods, authid, authextra, on_challenge, timeout)

    async def disconnect(self, reason: str = CLOSE_REALM) -> ClientState:
        """Leave the realm, close the transport and return the final state."""
        if self._impl is None:
            return ClientState.DISCONNECTED
        return await self._impl.leave(reason)

    async def wait_closed(self) -> ClientState:
        """Block until the session ends, whoever ends it."""
        return await self._session().wait_closed()

    async def call(self, procedure: str, args: Optional[Iterable[Any]] = None,
                   kwargs: Optional[Mapping[str, Any]] = None,
                   options: OptionsLike = None, timeout: Optional[float] = None) -> CallResult:
        """Call a remote procedure and return its result."""
        return await self._session().call(procedure, args, kwargs, options, timeout)

    async def register(self, procedure: str, handler: Callable[..., Any],
                       options: OptionsLike = None, timeout: Optional[float] = None) -> int:
        """
        Register ``handler`` as ``procedure``. Returns the registration ID.

        The handler is called as ``handler(*args, **kwargs)`` for each
        invocation; raise ApplicationError to return a WAMP error.
        """
        return await self._session().register(procedure, handler, options, timeout)

    async def unregister(self, registration_id: int, timeout: Optional[float] = None) -> None:
        """Remove a registration."""
        await self._session().unregister(registration_id, timeout)

    async def subscribe(self, topic: str, handler: Callable[..., Any],
                        options: OptionsLike = None, timeout: Optional[float] = None) -> int:
        """Subscribe ``handler`` to ``topic``. Returns the subscription ID."""
        return await self._session().subscribe(topic, handler, options, timeout)

    async def unsubscribe(self, subscription_id: int, timeout: Optional[float] = None) -> None:
        """Remove a subscription."""
        await self._session().unsubscribe(subscription_id, timeout)

    async def publish(self, topic: str, args: Optional[Iterable[Any]] = None,
                      kwargs: Optional[Mapping[str, Any]] = None,
                      options: OptionsLike = None, acknowledge: bool = False,
                      timeout: Optional[float] = None) -> Optional[int]:
        """
        Publish an event.

        Returns the publication ID when ``acknowledge`` is set (or the
        options ask for it), otherwise None as soon as the event is sent.
        """
        return await self._session().publish(topic, args, kwargs, options, acknowledge, timeout)

    def get_stats(self) -> Dict[str, int]:
        """Get session statistics."""
        if self._impl is None:
            return {}
        return self._impl.get_stats()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
