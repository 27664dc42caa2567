"""
Core bookkeeping types for the WAMP client.

This module contains the request ID allocator, the tables that correlate
outstanding requests with their responses, and the tables that map router
assigned subscription and registration IDs to local handlers.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, TypeVar

from .errors import DuplicateRequestId
from .message import MAX_ID

logger = logging.getLogger(__name__)

T = TypeVar('T')


class IdGenerator:
    """
    Sequential request ID allocator.

    IDs start above 0, increase by one and wrap back to 1 after 2^53, the
    largest ID WAMP allows. Safe to call from several threads.
    """

    def __init__(self, start: int = 0):
        self._last = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._last += 1
            if self._last > MAX_ID:
                self._last = 1
            return self._last

    def __next__(self) -> int:
        return self.next()


@dataclass
class CallResult:
    """
    Positional and keyword results of a call.

    Returned by ``Client.call``. A registered procedure may also return one
    to yield several positional values or keyword values.
    """
    args: List[Any] = field(default_factory=list)
    kwargs: Dict[str, Any] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def value(self) -> Any:
        """The single positional result, or None when there is none."""
        return self.args[0] if self.args else None


@dataclass
class Subscription:
    """A topic subscription confirmed by the router."""
    subscription_id: int
    topic: str
    handler: Callable[..., Any]


@dataclass
class Registration:
    """A procedure registration confirmed by the router."""
    registration_id: int
    procedure: str
    handler: Callable[..., Any]


class PendingRequest:
    """
    An outstanding request waiting for its response.

    ``future`` is completed exactly once. ``context`` keeps whatever the
    dispatch loop needs when the response arrives, such as the handler of a
    REGISTER or the subscription ID of an UNSUBSCRIBE.
    """

    def __init__(self, request_id: int, future: asyncio.Future, context: Any = None):
        self.request_id = request_id
        self.future = future
        self.context = context

    @property
    def done(self) -> bool:
        return self.future.done()


class PendingTable:
    """
    Requests of one kind (call, register, ...) keyed by request ID.

    An entry leaves the table the moment it is resolved, rejected or
    discarded, so a request ID in the table always has a live completion.
    """

    def __init__(self, kind: str):
        self.kind = kind
        self._entries: Dict[int, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: int) -> bool:
        return request_id in self._entries

    def insert(self, pending: PendingRequest) -> None:
        """Add a request; its ID must not already be pending."""
        if pending.request_id in self._entries:
            raise DuplicateRequestId(
                f"Request ID {pending.request_id} is already pending in the {self.kind} table")
        self._entries[pending.request_id] = pending

    def pop(self, request_id: int) -> Optional[PendingRequest]:
        """
        Remove and return a request whose caller is still waiting.

        Returns None when the ID is unknown, or when the caller gave up
        (timeout or cancellation) before its entry was discarded.
        """
        pending = self._entries.pop(request_id, None)
        if pending is None or pending.done:
            return None
        return pending

    def resolve(self, request_id: int, value: Any) -> bool:
        """Complete a request successfully. Returns False if it is not pending."""
        pending = self.pop(request_id)
        if pending is None:
            return False
        pending.future.set_result(value)
        return True

    def reject(self, request_id: int, error: BaseException) -> bool:
        """Complete a request with an error. Returns False if it is not pending."""
        pending = self.pop(request_id)
        if pending is None:
            return False
        pending.future.set_exception(error)
        return True

    def discard(self, request_id: int) -> None:
        """Forget a request without completing it. No-op if already gone."""
        self._entries.pop(request_id, None)

    def flush(self, error: BaseException) -> int:
        """Reject every pending request with ``error``. Returns the count."""
        entries = list(self._entries.values())
        self._entries.clear()
        count = 0
        for pending in entries:
            if not pending.done:
                pending.future.set_exception(error)
                count += 1
        return count


class HandlerTable(Generic[T]):
    """Subscriptions or registrations keyed by their router-assigned ID."""

    def __init__(self, kind: str):
        self.kind = kind
        self._entries: Dict[int, T] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, item_id: int) -> bool:
        return item_id in self._entries

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._entries.values()))

    def add(self, item_id: int, item: T) -> None:
        if item_id in self._entries:
            logger.warning(f"Replacing handler for {self.kind} {item_id}")
        self._entries[item_id] = item

    def get(self, item_id: int) -> Optional[T]:
        return self._entries.get(item_id)

    def remove(self, item_id: int) -> Optional[T]:
        return self._entries.pop(item_id, None)

    def clear(self) -> None:
        self._entries.clear()
