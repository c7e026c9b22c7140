import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, List, Optional, Tuple, Type

from vbt.domain.events import Event

Subscription = Tuple[Type[Event], Callable[[Any], None]]


class EventBus:
    """A synchronous, ordered event bus for decoupled communication.

    Delivery rules:
    - events are delivered one at a time, in the order they were published,
      even when publishers run on different threads;
    - for one event, matching subscribers run in subscription order;
    - a subscriber registered for a base class receives subclasses too
      (subscribe to ``Event`` to observe everything);
    - an event published from inside a subscriber is queued and delivered
      after the current event has reached every subscriber;
    - a subscriber that raises is logged and skipped.
    """

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._subscribe_lock = threading.Lock()
        self._pending: Deque[Event] = deque()
        self._pending_lock = threading.Lock()
        self._delivery_lock = threading.Lock()
        self._local = threading.local()
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: Type[Event], callback: Optional[Callable[[Any], None]] = None):
        """Subscribes a callback to a specific event type. Can be used as a decorator."""
        if callback is None:
            def decorator(func: Callable[[Any], None]):
                self.subscribe(event_type, func)
                return func
            return decorator

        with self._subscribe_lock:
            self._subscriptions.append((event_type, callback))
        return callback

    def unsubscribe(self, event_type: Type[Event], callback: Callable[[Any], None]) -> None:
        with self._subscribe_lock:
            if (event_type, callback) in self._subscriptions:
                self._subscriptions.remove((event_type, callback))

    def publish(self, event: Event):
        """Publishes an event to all interested subscribers."""
        with self._pending_lock:
            self._pending.append(event)
        if getattr(self._local, "delivering", False):
            # Nested publish: the outer delivery loop picks it up.
            return
        self._drain()

    def _drain(self) -> None:
        with self._delivery_lock:
            self._local.delivering = True
            try:
                while True:
                    with self._pending_lock:
                        if not self._pending:
                            return
                        event = self._pending.popleft()
                    self._deliver(event)
            finally:
                self._local.delivering = False

    def _deliver(self, event: Event) -> None:
        with self._subscribe_lock:
            callbacks = [cb for event_type, cb in self._subscriptions if isinstance(event, event_type)]
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                self.logger.error(f"Subscriber {callback!r} failed on {type(event).__name__}: {e}")
