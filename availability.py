from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from threading import Lock
from typing import Dict, Iterator, Optional

from store import ReservationStore


class SlotLocks:
    """
    One lock per slot id, created on first use.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, Lock] = {}
        self._guard = Lock()

    def get(self, slot_id: str) -> Lock:
        with self._guard:
            lock = self._locks.get(slot_id)
            if lock is None:
                lock = Lock()
                self._locks[slot_id] = lock
            return lock


class AvailabilityChecker:
    """
    Answers "is this slot free over [start, end)?" against the reservation store.

    is_available() on its own is only a snapshot. Callers that insert on the
    strength of the answer must re-check inside exclusive(slot_id) and insert
    before leaving it.
    """

    def __init__(self, store: ReservationStore, locks: Optional[SlotLocks] = None) -> None:
        self.store = store
        self.locks = locks or SlotLocks()

    def is_available(
        self,
        slot_id: str,
        start: datetime,
        end: datetime,
        exclude_reservation_id: Optional[str] = None,
    ) -> bool:
        conflicts = self.store.find_conflicts(slot_id, start, end, exclude_reservation_id)
        return not conflicts

    @contextmanager
    def exclusive(self, slot_id: str) -> Iterator[None]:
        lock = self.locks.get(slot_id)
        with lock:
            yield
