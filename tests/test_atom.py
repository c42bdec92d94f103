"""
Unit tests for Atom live values.

Tests cover:
- Concurrent updates are serialized
- Subscribers receive the current value, then every update in order
- Unsubscribe stops delivery
- Overflow policies (drop oldest, disconnect)
- The registered handler hands out subscriptions
- Interrupted updates never stall the delivery order
"""

import threading

import pytest

from riptide import Atom, Context, MethodKind, Overflow
from riptide.atom import SubscriptionClosed
from shop.api import Counter


def _bump(counter: Counter) -> Counter:
    return Counter(count=counter.count + 1)


def test_concurrent_updates_are_not_lost() -> None:
    """Test that N concurrent updates leave the value at N."""
    atom = Atom(Counter(count=0))
    workers = [threading.Thread(target=lambda: [atom.update(_bump) for _ in range(50)]) for _ in range(8)]

    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert atom.get().count == 400


def test_subscriber_sees_current_value_first() -> None:
    """Test that a new subscription starts with the value at subscribe time."""
    atom = Atom(Counter(count=7))

    with atom.subscribe() as subscription:
        assert subscription.get(timeout=1).count == 7


def test_updates_arrive_in_order() -> None:
    """Test that every update is delivered once, in update order."""
    atom = Atom(Counter(count=0))
    subscription = atom.subscribe(maxsize=64)

    for _ in range(10):
        atom.update(_bump)

    received = [subscription.get(timeout=1).count for _ in range(11)]
    assert received == list(range(11))
    subscription.close()


def test_concurrent_updates_reach_subscriber_in_sequence() -> None:
    """Test that concurrent writers never reorder deliveries."""
    atom = Atom(Counter(count=0))
    subscription = atom.subscribe(maxsize=1000)
    workers = [threading.Thread(target=lambda: [atom.update(_bump) for _ in range(25)]) for _ in range(4)]

    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    received = [subscription.get(timeout=1).count for _ in range(101)]
    assert received == list(range(101))


def test_unsubscribe_stops_delivery() -> None:
    """Test that no values are delivered after unsubscribe returns."""
    atom = Atom(Counter(count=0))
    subscription = atom.subscribe()
    assert atom.subscriber_count == 1

    subscription.unsubscribe()
    atom.update(_bump)

    assert atom.subscriber_count == 0
    assert subscription.closed
    with pytest.raises(SubscriptionClosed):
        subscription.get(timeout=0.1)


def test_get_times_out_without_updates() -> None:
    """Test that get() raises TimeoutError when nothing arrives."""
    atom = Atom(Counter(count=0))
    subscription = atom.subscribe()
    subscription.get(timeout=1)

    with pytest.raises(TimeoutError):
        subscription.get(timeout=0.05)


def test_drop_oldest_keeps_latest_values() -> None:
    """Test that a full queue drops its oldest entries by default."""
    atom = Atom(Counter(count=0))
    subscription = atom.subscribe(maxsize=2)

    for _ in range(5):
        atom.update(_bump)

    assert subscription.dropped == 4
    assert [subscription.get(timeout=1).count for _ in range(2)] == [4, 5]


def test_disconnect_policy_detaches_slow_subscriber() -> None:
    """Test that the disconnect policy ends a subscription whose queue is full."""
    atom = Atom(Counter(count=0))
    subscription = atom.subscribe(maxsize=1, overflow=Overflow.DISCONNECT)

    atom.update(_bump)

    assert atom.subscriber_count == 0
    assert subscription.closed
    assert subscription.get(timeout=1).count == 0
    with pytest.raises(SubscriptionClosed):
        subscription.get(timeout=0.1)


def test_iteration_ends_when_closed() -> None:
    """Test that iterating a closed subscription stops cleanly."""
    atom = Atom(Counter(count=0))
    subscription = atom.subscribe()
    subscription.close()

    assert list(subscription) == []


def test_invalid_queue_size_is_rejected() -> None:
    """Test that subscribe() requires room for at least one value."""
    with pytest.raises(ValueError):
        Atom(Counter()).subscribe(maxsize=0)


def test_handler_subscribes_on_call() -> None:
    """Test that the atom handler registers as ATOM and returns a subscription."""
    atom = Atom(Counter(count=3))
    handler = atom.handler()

    assert handler.kind is MethodKind.ATOM
    assert handler.request_type is None
    assert handler.response_type is Counter

    subscription = handler(Context(service="Widgets", method="Live"), None)
    assert subscription.get(timeout=1).count == 3
    subscription.close()
    assert atom.subscriber_count == 0


class _InterruptingTurnstile(threading.Condition):
    """Raises KeyboardInterrupt from the first wait, like a signal landing mid-update."""

    def __init__(self) -> None:
        super().__init__()
        self.interrupt = True

    def wait_for(self, predicate, timeout=None):  # type: ignore[no-untyped-def]
        if self.interrupt:
            self.interrupt = False
            raise KeyboardInterrupt
        return super().wait_for(predicate, timeout)


def test_interrupted_update_does_not_block_later_updates() -> None:
    """Test that an update interrupted while waiting its turn hands the turn on."""
    atom = Atom(Counter(count=0))
    atom._turnstile = _InterruptingTurnstile()

    with pytest.raises(KeyboardInterrupt):
        atom.update(_bump)

    worker = threading.Thread(target=atom.update, args=(_bump,), daemon=True)
    worker.start()
    worker.join(timeout=2)

    assert not worker.is_alive()
    assert atom.get().count == 2


def test_interrupted_waiter_behind_earlier_update_is_skipped() -> None:
    """Test that a turn abandoned out of order is passed over once earlier turns finish."""
    atom = Atom(Counter(count=0))
    atom._turnstile = _InterruptingTurnstile()
    subscription = atom.subscribe(maxsize=8)

    with pytest.raises(KeyboardInterrupt):
        atom._broadcast(2, Counter(count=2), [subscription])
    atom._broadcast(1, Counter(count=1), [subscription])

    worker = threading.Thread(target=atom._broadcast, args=(3, Counter(count=3), [subscription]), daemon=True)
    worker.start()
    worker.join(timeout=2)

    assert not worker.is_alive()
    assert [subscription.get(timeout=1).count for _ in range(3)] == [0, 1, 3]
