"""Readiness states and a fan-out status channel.

Publishers never wait on consumers: every subscription owns a bounded
buffer and the oldest pending event is dropped when a slow consumer falls
behind. Listeners registered with :meth:`StatusChannel.connect` are called
inline and must not block; the orchestrator uses them to re-publish backend
events onto its own channel.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from enum import Enum
from typing import Callable, Deque, Iterator, List, Optional

logger = logging.getLogger(__name__)


class ReadinessState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    THINKING = "thinking"
    ERROR = "error"


Listener = Callable[[ReadinessState], None]


class StatusSubscription:
    """Iterable view over the events published after subscribing."""

    def __init__(self, channel: "StatusChannel", maxlen: int) -> None:
        self._channel = channel
        self._events: Deque[ReadinessState] = deque(maxlen=maxlen)
        self._cond = threading.Condition()
        self._closed = False

    def _push(self, state: ReadinessState) -> None:
        with self._cond:
            if self._closed:
                return
            self._events.append(state)
            self._cond.notify_all()

    def _close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, timeout: Optional[float] = None) -> Optional[ReadinessState]:
        """Return the next event, or None on timeout or once closed and drained."""
        with self._cond:
            if not self._events and not self._closed:
                self._cond.wait(timeout)
            if self._events:
                return self._events.popleft()
            return None

    def drain(self) -> List[ReadinessState]:
        with self._cond:
            events = list(self._events)
            self._events.clear()
            return events

    def cancel(self) -> None:
        self._channel.unsubscribe(self)

    def __iter__(self) -> Iterator[ReadinessState]:
        while True:
            state = self.get()
            if state is None:
                if self._closed:
                    return
                continue
            yield state


class StatusChannel:
    """Multi-consumer broadcast of readiness transitions."""

    def __init__(self, buffer_size: int = 64) -> None:
        self.buffer_size = buffer_size
        self._lock = threading.Lock()
        self._subscriptions: List[StatusSubscription] = []
        self._listeners: List[Listener] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> StatusSubscription:
        subscription = StatusSubscription(self, self.buffer_size)
        with self._lock:
            if self._closed:
                subscription._close()
            else:
                self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: StatusSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
        subscription._close()

    def connect(self, listener: Listener) -> None:
        with self._lock:
            if not self._closed:
                self._listeners.append(listener)

    def disconnect(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, state: ReadinessState) -> None:
        with self._lock:
            if self._closed:
                logger.debug("Dropping status %s published on a closed channel", state.value)
                return
            subscriptions = list(self._subscriptions)
            listeners = list(self._listeners)

        for subscription in subscriptions:
            subscription._push(state)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Status listener failed for %s", state.value)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscriptions = list(self._subscriptions)
            self._subscriptions.clear()
            self._listeners.clear()
        for subscription in subscriptions:
            subscription._close()
