from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from threading import RLock
from typing import Any, Dict, List, Optional

from errors import DuplicateConfirmationCodeError, StaleStatusError
from models import Location, Payment, Reservation, ReservationStatus, Slot


# -------------------------
# Interfaces
# -------------------------
class ReservationStore(ABC):
    @abstractmethod
    def add(self, reservation: Reservation) -> Reservation:
        """Insert a new reservation. Raises DuplicateConfirmationCodeError."""

    @abstractmethod
    def get(self, reservation_id: str) -> Optional[Reservation]:
        ...

    @abstractmethod
    def get_by_code(self, confirmation_code: str) -> Optional[Reservation]:
        ...

    @abstractmethod
    def list_for_user(self, user_id: str) -> List[Reservation]:
        ...

    @abstractmethod
    def find_conflicts(
        self,
        slot_id: str,
        start: datetime,
        end: datetime,
        exclude_reservation_id: Optional[str] = None,
    ) -> List[Reservation]:
        """confirmed / active reservations on slot_id overlapping [start, end)"""

    @abstractmethod
    def update(self, reservation_id: str, expected_status: ReservationStatus, **changes: Any) -> Reservation:
        """
        Apply changes only if the stored status still equals expected_status.
        Raises StaleStatusError otherwise, KeyError if the id is unknown.
        """


class PaymentStore(ABC):
    @abstractmethod
    def add(self, payment: Payment) -> Payment:
        ...

    @abstractmethod
    def list_for_reservation(self, reservation_id: str) -> List[Payment]:
        ...


class SlotDirectory(ABC):
    @abstractmethod
    def get_slot(self, slot_id: str) -> Optional[Slot]:
        ...

    @abstractmethod
    def get_location(self, location_id: str) -> Optional[Location]:
        ...

    @abstractmethod
    def list_locations(self) -> List[Location]:
        ...

    @abstractmethod
    def list_slots(self, location_id: Optional[str] = None) -> List[Slot]:
        ...


# -------------------------
# In-memory implementations
# -------------------------
class InMemoryReservationStore(ReservationStore):
    """
    Dict-backed store. Records are copied in and out so callers never hold
    a reference to the stored row.
    """

    def __init__(self) -> None:
        self._rows: Dict[str, Reservation] = {}
        self._by_code: Dict[str, str] = {}
        self._lock = RLock()

    def add(self, reservation: Reservation) -> Reservation:
        with self._lock:
            if reservation.confirmation_code in self._by_code:
                raise DuplicateConfirmationCodeError(reservation.confirmation_code)
            if reservation.reservation_id in self._rows:
                raise ValueError(f"duplicate reservation id {reservation.reservation_id}")
            self._rows[reservation.reservation_id] = replace(reservation)
            self._by_code[reservation.confirmation_code] = reservation.reservation_id
        return replace(reservation)

    def get(self, reservation_id: str) -> Optional[Reservation]:
        with self._lock:
            row = self._rows.get(reservation_id)
            return replace(row) if row is not None else None

    def get_by_code(self, confirmation_code: str) -> Optional[Reservation]:
        with self._lock:
            rid = self._by_code.get(confirmation_code)
            return self.get(rid) if rid is not None else None

    def list_for_user(self, user_id: str) -> List[Reservation]:
        with self._lock:
            rows = [replace(r) for r in self._rows.values() if r.user_id == user_id]
        rows.sort(key=lambda r: r.start_time, reverse=True)
        return rows

    def find_conflicts(
        self,
        slot_id: str,
        start: datetime,
        end: datetime,
        exclude_reservation_id: Optional[str] = None,
    ) -> List[Reservation]:
        with self._lock:
            return [
                replace(r) for r in self._rows.values()
                if r.slot_id == slot_id
                and r.status.holds_slot
                and r.reservation_id != exclude_reservation_id
                and r.overlaps(start, end)
            ]

    def update(self, reservation_id: str, expected_status: ReservationStatus, **changes: Any) -> Reservation:
        with self._lock:
            row = self._rows.get(reservation_id)
            if row is None:
                raise KeyError(reservation_id)
            if row.status is not expected_status:
                raise StaleStatusError(reservation_id, expected_status, row.status)
            updated = replace(row, **changes)
            self._rows[reservation_id] = updated
            return replace(updated)


class InMemoryPaymentStore(PaymentStore):
    def __init__(self) -> None:
        self._rows: List[Payment] = []
        self._lock = RLock()

    def add(self, payment: Payment) -> Payment:
        with self._lock:
            self._rows.append(replace(payment))
        return payment

    def list_for_reservation(self, reservation_id: str) -> List[Payment]:
        with self._lock:
            return [replace(p) for p in self._rows if p.reservation_id == reservation_id]


class InMemorySlotDirectory(SlotDirectory):
    def __init__(self) -> None:
        self._slots: Dict[str, Slot] = {}
        self._locations: Dict[str, Location] = {}

    def add_location(self, location: Location) -> None:
        self._locations[location.location_id] = location

    def add_slot(self, slot: Slot) -> None:
        self._slots[slot.slot_id] = slot

    def get_slot(self, slot_id: str) -> Optional[Slot]:
        return self._slots.get(slot_id)

    def get_location(self, location_id: str) -> Optional[Location]:
        return self._locations.get(location_id)

    def list_locations(self) -> List[Location]:
        return sorted(self._locations.values(), key=lambda loc: loc.location_id)

    def list_slots(self, location_id: Optional[str] = None) -> List[Slot]:
        items = [s for s in self._slots.values() if location_id is None or s.location_id == location_id]
        return sorted(items, key=lambda s: s.slot_id)


def seed_slots(
    directory: InMemorySlotDirectory,
    location_id: str,
    floors: int,
    slots_per_floor: int,
    hourly_rate: Decimal,
) -> None:
    """
    Fill a directory with one location laid out as floors of numbered slots,
    e.g. MAIN-F1-001.
    """
    for floor in range(1, floors + 1):
        for i in range(1, slots_per_floor + 1):
            directory.add_slot(Slot(
                slot_id=f"{location_id}-F{floor}-{i:03d}",
                location_id=location_id,
                base_hourly_rate=hourly_rate,
            ))
    total = floors * slots_per_floor
    directory.add_location(Location(location_id, total_slots=total, available_slots=total))
