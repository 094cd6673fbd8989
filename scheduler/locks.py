"""
Per-subscription commit locks.

At most one modification may be committing against a subscription at a
time. Acquisition never waits: a busy subscription is reported as a conflict.
"""

import threading
from contextlib import contextmanager
from datetime import date
from typing import Dict, Iterator, Optional, Tuple

from models import ModificationType
from .errors import ConflictError

Window = Tuple[date, date]


class CommitLocks:
    """Registry of in-flight commits keyed by subscription id."""

    def __init__(self):
        self._guard = threading.Lock()
        # subscription_id -> (modification type, freeze window or None)
        self._held: Dict[str, Tuple[str, Optional[Window]]] = {}

    def is_locked(self, subscription_id: str) -> bool:
        with self._guard:
            return subscription_id in self._held

    @contextmanager
    def hold(self, subscription_id: str, modification_type: ModificationType,
             window: Optional[Window] = None) -> Iterator[None]:
        """
        Claim the subscription for the duration of the block.
        Raises ConflictError immediately if another commit holds it: a freeze
        colliding with a freeze over the same days gets ACTIVE_FREEZE_EXISTS,
        anything else MODIFICATION_IN_PROGRESS. A freeze held without a window
        (resume) counts as covering every day.
        """
        requested = ModificationType(modification_type).value
        with self._guard:
            current = self._held.get(subscription_id)
            if current is not None:
                held_type, held_window = current
                code = "MODIFICATION_IN_PROGRESS"
                if held_type == requested == ModificationType.FREEZE.value and _windows_overlap(held_window, window):
                    code = "ACTIVE_FREEZE_EXISTS"
                raise ConflictError(code, details={"subscription_id": subscription_id, "held_by": held_type})
            self._held[subscription_id] = (requested, window)
        try:
            yield
        finally:
            with self._guard:
                self._held.pop(subscription_id, None)


def _windows_overlap(a: Optional[Window], b: Optional[Window]) -> bool:
    if a is None or b is None:
        return True
    return a[0] <= b[1] and b[0] <= a[1]
