"""Atom: a thread-safe value cell that broadcasts every update to its subscribers."""
from __future__ import annotations

import logging
import threading
from collections import deque
from enum import Enum
from typing import Any, Callable, Generic, Iterator, TypeVar

from riptide.errors import RegistrationError, RiptideError
from riptide.registry import Context, Handler, MethodKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_QUEUE_SIZE = 16


class Overflow(str, Enum):
    """What happens when a subscriber's queue is full."""
    DROP_OLDEST = "drop_oldest"
    DISCONNECT = "disconnect"


class SubscriptionClosed(RiptideError):
    """Raised by Subscription.get() once the subscription has ended."""


class Subscription(Generic[T]):
    """Bounded per-subscriber queue fed by Atom broadcasts."""

    def __init__(self, atom: "Atom[T]", maxsize: int, overflow: Overflow) -> None:
        self._atom = atom
        self._id = -1
        self.maxsize = maxsize
        self.overflow = overflow
        self.dropped = 0
        self._queue: deque[T] = deque()
        self._cond = threading.Condition()
        self._closed = False

    def _deliver(self, value: T) -> bool:
        """Enqueue without blocking; False means the subscriber must be detached."""
        with self._cond:
            if self._closed:
                return False
            if len(self._queue) >= self.maxsize:
                if self.overflow is Overflow.DISCONNECT:
                    self._closed = True
                    self._cond.notify_all()
                    logger.info("atom subscriber %d disconnected (queue full)", self._id)
                    return False
                self._queue.popleft()
                self.dropped += 1
            self._queue.append(value)
            self._cond.notify()
            return True

    def get(self, timeout: float | None = None) -> T:
        """Next value, oldest first; TimeoutError if none arrives in time."""
        with self._cond:
            if not self._cond.wait_for(lambda: self._queue or self._closed, timeout):
                raise TimeoutError("no value within timeout")
            if self._queue:
                return self._queue.popleft()
            raise SubscriptionClosed("subscription closed")

    def __iter__(self) -> Iterator[T]:
        return self

    def __next__(self) -> T:
        try:
            return self.get()
        except SubscriptionClosed:
            raise StopIteration from None

    def close(self) -> None:
        """Detach; no value is delivered after this returns."""
        self._atom._remove(self)
        with self._cond:
            self._closed = True
            self._queue.clear()
            self._cond.notify_all()

    unsubscribe = close

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "Subscription[T]":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class Atom(Generic[T]):
    """Holds one value; update() is serialized and broadcast in update order."""

    def __init__(self, initial: T, value_type: Any = None) -> None:
        self._value = initial
        self.value_type = value_type if value_type is not None else type(initial)
        self._lock = threading.Lock()
        self._subscribers: dict[int, Subscription[T]] = {}
        self._next_id = 0
        self._sequence = 0
        self._turnstile = threading.Condition()
        self._next_delivery = 1
        self._abandoned: set[int] = set()

    def get(self) -> T:
        return self._value

    read = get

    def set(self, value: T) -> T:
        return self.update(lambda _previous: value)

    def update(self, fn: Callable[[T], T]) -> T:
        """Apply fn to the current value, install the result and broadcast it."""
        with self._lock:
            value = fn(self._value)
            self._value = value
            self._sequence += 1
            sequence = self._sequence
            targets = list(self._subscribers.values())
        self._broadcast(sequence, value, targets)
        return value

    def _broadcast(self, sequence: int, value: T, targets: list[Subscription[T]]) -> None:
        # deliveries leave in sequence order, outside the value lock
        try:
            with self._turnstile:
                self._turnstile.wait_for(lambda: self._next_delivery == sequence)
        except BaseException:
            # an interrupted waiter gives up its turn so later updates still run
            with self._turnstile:
                if self._next_delivery == sequence:
                    self._pass_turn()
                else:
                    self._abandoned.add(sequence)
            raise
        try:
            for subscription in targets:
                if not subscription._deliver(value):
                    self._remove(subscription)
        finally:
            with self._turnstile:
                self._pass_turn()

    def _pass_turn(self) -> None:
        """Advance to the next live sequence; call with the turnstile held."""
        self._next_delivery += 1
        while self._next_delivery in self._abandoned:
            self._abandoned.discard(self._next_delivery)
            self._next_delivery += 1
        self._turnstile.notify_all()

    def subscribe(
        self,
        maxsize: int = DEFAULT_QUEUE_SIZE,
        overflow: Overflow | str = Overflow.DROP_OLDEST,
    ) -> Subscription[T]:
        """Attach a subscriber; its queue starts with the current value."""
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        subscription: Subscription[T] = Subscription(self, maxsize, Overflow(overflow))
        with self._lock:
            subscription._id = self._next_id
            self._next_id += 1
            self._subscribers[subscription._id] = subscription
            subscription._deliver(self._value)
        return subscription

    def _remove(self, subscription: Subscription[T]) -> None:
        with self._lock:
            self._subscribers.pop(subscription._id, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def handler(self, *, maxsize: int = DEFAULT_QUEUE_SIZE, heartbeat: float | None = None) -> "AtomHandler[T]":
        """Handler for Service.register(): streams the current value, then every update."""
        return AtomHandler(self, maxsize=maxsize, heartbeat=heartbeat)


class AtomHandler(Handler, Generic[T]):
    """Registers an Atom as a live-value method (GET + SSE)."""
    kind = MethodKind.ATOM

    def __init__(self, atom: Atom[T], *, maxsize: int = DEFAULT_QUEUE_SIZE, heartbeat: float | None = None) -> None:
        if heartbeat is not None and heartbeat < 0:
            raise RegistrationError(f"heartbeat must not be negative, got {heartbeat!r}")
        self.atom = atom
        self.fn = atom.get
        self.maxsize = maxsize
        self.heartbeat = heartbeat
        self._roles = []
        self.request_type = None
        self.response_type = atom.value_type

    def __call__(self, ctx: Context, request: Any) -> Subscription[T]:
        return self.atom.subscribe(maxsize=self.maxsize)
