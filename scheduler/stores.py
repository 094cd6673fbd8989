"""
Session and subscription persistence.

The scheduler only talks to the `SessionStore` / `SubscriptionStore`
protocols. The in-memory implementations below back the demo runner and
the tests; they bound every lock wait by a timeout and stage session writes
inside a transaction so a batch is applied all at once or not at all.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import date as date_type
from typing import Dict, Iterable, Iterator, List, Optional, Protocol, Set

from models import AuditRecord, ScheduledSession, Subscription

logger = logging.getLogger(__name__)


class SessionTransaction:
    """Staged session writes; visible to the owner, invisible to readers."""

    def __init__(self, store: "InMemorySessionStore"):
        self._store = store
        self.staged: Dict[str, ScheduledSession] = {}

    def put(self, session: ScheduledSession) -> None:
        self.staged[session.id] = session

    def get(self, session_id: str) -> Optional[ScheduledSession]:
        if session_id in self.staged:
            return self.staged[session_id]
        return self._store.get_session(session_id)


class SessionStore(Protocol):
    def get_session(self, session_id: str) -> Optional[ScheduledSession]: ...

    def list_sessions(self, subscription_id: str) -> List[ScheduledSession]: ...

    def list_sessions_between(self, start: date_type, end: date_type) -> List[ScheduledSession]: ...

    def therapist_exists(self, therapist_id: str) -> bool: ...

    def transaction(self): ...


class SubscriptionStore(Protocol):
    def get(self, subscription_id: str) -> Optional[Subscription]: ...

    def save(self, subscription: Subscription) -> None: ...

    def list_ids(self) -> List[str]: ...

    def append_audit(self, record: AuditRecord) -> None: ...

    def list_audit(self, subscription_id: str) -> List[AuditRecord]: ...

    def mark_rolled_back(self, modification_id: str) -> None: ...


class _GuardedStore:
    """Lock with bounded waits plus failure injection for tests."""

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._lock = threading.RLock()
        self.available = True
        self.fail_next: Optional[Exception] = None
        self.fail_on_write: Optional[Exception] = None

    def _check_reachable(self) -> None:
        if not self.available:
            raise ConnectionError(f"{type(self).__name__} is unreachable")
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc

    def _check_writable(self) -> None:
        if self.fail_on_write is not None:
            exc, self.fail_on_write = self.fail_on_write, None
            raise exc

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.timeout_seconds):
            raise TimeoutError(f"{type(self).__name__} lock not acquired within {self.timeout_seconds}s")
        try:
            self._check_reachable()
            yield
        finally:
            self._lock.release()


class InMemorySessionStore(_GuardedStore):
    """
    Dict-backed SessionStore.
    Holds the store lock for the whole transaction so concurrent batches
    never book the same therapist or room slot.
    """

    def __init__(self, sessions: Optional[Iterable[ScheduledSession]] = None,
                 therapists: Optional[Iterable[str]] = None, timeout_seconds: float = 5.0):
        super().__init__(timeout_seconds)
        self._sessions: Dict[str, ScheduledSession] = {}
        self._therapists: Set[str] = set(therapists or [])
        for session in sessions or []:
            self._sessions[session.id] = session.model_copy()
            self._therapists.add(session.therapist_id)

    # --- Reads ---

    def get_session(self, session_id: str) -> Optional[ScheduledSession]:
        with self._locked():
            session = self._sessions.get(session_id)
            return session.model_copy() if session else None

    def list_sessions(self, subscription_id: str) -> List[ScheduledSession]:
        with self._locked():
            found = [s.model_copy() for s in self._sessions.values() if s.subscription_id == subscription_id]
        found.sort(key=lambda s: (s.date, s.start_time))
        return found

    def list_sessions_between(self, start: date_type, end: date_type) -> List[ScheduledSession]:
        """Every subscription's sessions dated within [start, end]."""
        with self._locked():
            return [s.model_copy() for s in self._sessions.values() if start <= s.date <= end]

    def therapist_exists(self, therapist_id: str) -> bool:
        with self._locked():
            return therapist_id in self._therapists

    # --- Writes ---

    def add_session(self, session: ScheduledSession) -> None:
        with self._locked():
            self._sessions[session.id] = session.model_copy()
            self._therapists.add(session.therapist_id)

    @contextmanager
    def transaction(self) -> Iterator[SessionTransaction]:
        """
        Stage writes and apply them together on clean exit.
        Any exception inside the block discards the staged writes.
        """
        with self._locked():
            txn = SessionTransaction(self)
            yield txn
            # Commit point: a failure here leaves the store untouched.
            self._check_writable()
            for session_id, session in txn.staged.items():
                self._sessions[session_id] = session.model_copy()
            if txn.staged:
                logger.debug(f"Committed {len(txn.staged)} session write(s)")


class InMemorySubscriptionStore(_GuardedStore):
    """Dict-backed SubscriptionStore with an append-only audit log."""

    def __init__(self, subscriptions: Optional[Iterable[Subscription]] = None, timeout_seconds: float = 5.0):
        super().__init__(timeout_seconds)
        self._subscriptions: Dict[str, Subscription] = {
            s.id: s.model_copy(deep=True) for s in subscriptions or []
        }
        self._audit: List[AuditRecord] = []

    def get(self, subscription_id: str) -> Optional[Subscription]:
        with self._locked():
            sub = self._subscriptions.get(subscription_id)
            return sub.model_copy(deep=True) if sub else None

    def save(self, subscription: Subscription) -> None:
        with self._locked():
            self._check_writable()
            self._subscriptions[subscription.id] = subscription.model_copy(deep=True)

    def list_ids(self) -> List[str]:
        with self._locked():
            return sorted(self._subscriptions)

    def append_audit(self, record: AuditRecord) -> None:
        with self._locked():
            self._audit.append(record.model_copy(deep=True))

    def list_audit(self, subscription_id: str) -> List[AuditRecord]:
        with self._locked():
            return [r.model_copy(deep=True) for r in self._audit if r.subscription_id == subscription_id]

    def mark_rolled_back(self, modification_id: str) -> None:
        with self._locked():
            for record in self._audit:
                if record.modification_id == modification_id:
                    record.rolled_back = True
