"""
Realtime change notifications.

Events are published on one channel per subscription ("subscription:<id>").
Delivery is FIFO within a channel; channels are independent. A failing
subscriber is logged and skipped, it never blocks the others.
"""

import logging
import threading
import time
from collections import defaultdict, deque
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from models import Stakeholder

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SESSIONS_RESCHEDULED = "sessions_rescheduled"
    MODIFICATION_IMPLEMENTED = "modification_implemented"
    MODIFICATION_ROLLED_BACK = "modification_rolled_back"
    CACHE_INVALIDATED = "cache_invalidated"


# Cached views a client must refresh after a commit.
CACHE_KEYS = ["scheduled-sessions", "student-enrollments", "therapist-availability", "modification-history"]


class RealtimeEvent(BaseModel):
    channel: str
    event_type: EventType
    sequence: int = Field(ge=1, description="Monotonic per channel")
    subscription_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    emitted_at: datetime


class NotificationPayload(BaseModel):
    """Structured bilingual message for an external delivery channel."""
    recipient_type: Stakeholder
    subscription_id: str
    modification_id: str
    template: str
    title_en: str
    title_ar: str
    body_en: str
    body_ar: str
    data: Dict[str, Any] = Field(default_factory=dict)


class NotificationDispatcher(Protocol):
    def dispatch(self, payload: NotificationPayload) -> None: ...


class InMemoryDispatcher:
    """Collects payloads instead of delivering them."""

    def __init__(self):
        self.sent: List[NotificationPayload] = []

    def dispatch(self, payload: NotificationPayload) -> None:
        self.sent.append(payload)


class EventTransport(Protocol):
    """External push channel (websocket, broker...)."""

    def connect(self) -> None: ...

    def send(self, event: RealtimeEvent) -> None: ...


class ReconnectPolicy:
    """Capped exponential backoff."""

    def __init__(self, base_delay: float = 1.0, max_delay: float = 30.0, max_attempts: int = 5):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)


Callback = Callable[[RealtimeEvent], None]


class RealtimeNotifier:
    """
    Per-subscription pub/sub with an optional transport bridge.
    """

    HISTORY_PER_CHANNEL = 200

    def __init__(
        self,
        transport: Optional[EventTransport] = None,
        policy: Optional[ReconnectPolicy] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.transport = transport
        self.policy = policy or ReconnectPolicy()
        self._sleep = sleep

        self._registry_lock = threading.Lock()
        self._channel_locks: Dict[str, threading.RLock] = {}
        self._subscribers: Dict[str, Dict[int, Callback]] = defaultdict(dict)
        self._sequences: Dict[str, int] = defaultdict(int)
        self._history: Dict[str, Deque[RealtimeEvent]] = {}
        self._next_token = 0

        self._transport_lock = threading.Lock()
        self._connected = False
        self._outbox: Deque[RealtimeEvent] = deque()

    @staticmethod
    def channel_name(subscription_id: str) -> str:
        return f"subscription:{subscription_id}"

    def _channel_lock(self, channel: str) -> threading.RLock:
        with self._registry_lock:
            if channel not in self._channel_locks:
                self._channel_locks[channel] = threading.RLock()
                self._history[channel] = deque(maxlen=self.HISTORY_PER_CHANNEL)
            return self._channel_locks[channel]

    # --- Subscribers ---

    def subscribe(self, subscription_id: str, callback: Callback) -> Callable[[], None]:
        """Register a callback; returns a function that removes it again."""
        channel = self.channel_name(subscription_id)
        with self._channel_lock(channel):
            self._next_token += 1
            token = self._next_token
            self._subscribers[channel][token] = callback

        def unsubscribe() -> None:
            with self._channel_lock(channel):
                self._subscribers[channel].pop(token, None)

        return unsubscribe

    def subscriber_count(self, subscription_id: str) -> int:
        channel = self.channel_name(subscription_id)
        with self._channel_lock(channel):
            return len(self._subscribers[channel])

    def history(self, subscription_id: str) -> List[RealtimeEvent]:
        channel = self.channel_name(subscription_id)
        with self._channel_lock(channel):
            return list(self._history[channel])

    # --- Publishing ---

    def publish(self, subscription_id: str, event_type: EventType,
                payload: Optional[Dict[str, Any]] = None) -> RealtimeEvent:
        channel = self.channel_name(subscription_id)
        with self._channel_lock(channel):
            self._sequences[channel] += 1
            event = RealtimeEvent(
                channel=channel,
                event_type=event_type,
                sequence=self._sequences[channel],
                subscription_id=subscription_id,
                payload=payload or {},
                emitted_at=datetime.now()
            )
            self._history[channel].append(event)

            for callback in list(self._subscribers[channel].values()):
                try:
                    callback(event)
                except Exception:
                    logger.exception(f"Subscriber failed on {channel} #{event.sequence}")

            self._forward(event)
        return event

    # --- Transport bridge ---

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> bool:
        """Try to (re)connect, backing off between attempts. Flushes the outbox on success."""
        if self.transport is None:
            return False
        with self._transport_lock:
            return self._reconnect_locked()

    def pending_events(self) -> int:
        with self._transport_lock:
            return len(self._outbox)

    def _forward(self, event: RealtimeEvent) -> None:
        if self.transport is None:
            return
        with self._transport_lock:
            self._outbox.append(event)
            if not self._connected:
                # One quick attempt; the full backoff loop lives in connect().
                try:
                    self.transport.connect()
                    self._connected = True
                except OSError as exc:
                    logger.debug(f"Realtime transport still down ({exc}); {len(self._outbox)} buffered")
                    return
            self._flush_locked()

    def _reconnect_locked(self) -> bool:
        for attempt in range(self.policy.max_attempts):
            try:
                self.transport.connect()
                self._connected = True
                logger.info(f"Realtime transport connected (attempt {attempt + 1})")
                self._flush_locked()
                return True
            except OSError as exc:
                delay = self.policy.delay(attempt)
                logger.warning(f"Realtime connect failed ({exc}); retrying in {delay:.1f}s")
                self._sleep(delay)
        logger.error(f"Realtime transport unreachable; {len(self._outbox)} event(s) buffered")
        return False

    def _flush_locked(self) -> None:
        while self._outbox and self._connected:
            event = self._outbox[0]
            try:
                self.transport.send(event)
            except OSError as exc:
                logger.warning(f"Realtime send failed ({exc}); buffering")
                self._connected = False
                return
            self._outbox.popleft()
