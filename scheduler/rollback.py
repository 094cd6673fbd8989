"""
Rollback ledger.

Every committed batch leaves a token pointing at the exact session and
subscription state it replaced, so the change can be undone later.
Tokens of one subscription are undone last-in, first-out.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from models import ModificationType, ScheduledSession, Subscription
from .errors import ConflictError

logger = logging.getLogger(__name__)


@dataclass
class RollbackEntry:
    """Snapshot captured before a commit."""
    token: str
    modification_id: str
    subscription_id: str
    sessions_before: List[ScheduledSession] = field(default_factory=list)
    subscription_before: Optional[Subscription] = None
    modification_type: Optional[ModificationType] = None
    created_at: datetime = field(default_factory=datetime.now)
    consumed: bool = False


class RollbackLedger:
    """Thread-safe token -> snapshot map."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, RollbackEntry] = {}  # insertion order is commit order
        self._by_modification: Dict[str, str] = {}

    def ensure_unused(self, modification_id: str) -> None:
        """Raise ConflictError if `modification_id` already has a live token."""
        with self._lock:
            self._ensure_unused(modification_id)

    def _ensure_unused(self, modification_id: str) -> None:
        token = self._by_modification.get(modification_id)
        if token is not None and not self._entries[token].consumed:
            raise ConflictError("ALREADY_IMPLEMENTED", details={"rollback_token": token},
                                modification_id=modification_id)

    def record(self, modification_id: str, subscription_id: str,
               sessions_before: List[ScheduledSession],
               modification_type: Optional[ModificationType] = None) -> str:
        token = f"rb_{uuid.uuid4().hex}"
        entry = RollbackEntry(
            token=token,
            modification_id=modification_id,
            subscription_id=subscription_id,
            sessions_before=[s.model_copy() for s in sessions_before],
            modification_type=modification_type
        )
        with self._lock:
            self._ensure_unused(modification_id)
            self._entries[token] = entry
            self._by_modification[modification_id] = token
        logger.debug(f"Rollback token {token} recorded for {modification_id} ({len(sessions_before)} sessions)")
        return token

    def attach_subscription(self, token: str, subscription: Subscription,
                            modification_type: Optional[ModificationType] = None) -> None:
        """Add the pre-commit subscription terms to an existing entry."""
        with self._lock:
            entry = self._entries[token]
            entry.subscription_before = subscription.model_copy(deep=True)
            if modification_type is not None:
                entry.modification_type = modification_type

    def get(self, token: str) -> Optional[RollbackEntry]:
        with self._lock:
            return self._entries.get(token)

    def token_for(self, modification_id: str) -> Optional[str]:
        with self._lock:
            return self._by_modification.get(modification_id)

    def later_entries(self, token: str) -> List[RollbackEntry]:
        """Live entries of the same subscription recorded after `token`."""
        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                return []
            later, seen = [], False
            for other in self._entries.values():
                if other.token == token:
                    seen = True
                elif seen and not other.consumed and other.subscription_id == entry.subscription_id:
                    later.append(other)
            return later

    def mark_consumed(self, token: str) -> None:
        with self._lock:
            entry = self._entries.get(token)
            if entry:
                entry.consumed = True
