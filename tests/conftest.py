from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from models import Location, Slot
from reservation_engine import ReservationEngine
from store import InMemoryPaymentStore, InMemoryReservationStore, InMemorySlotDirectory
from subscriptions import SubscriptionService

# Monday
NOW = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


def at(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 1, day, hour, minute, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def set(self, moment: datetime) -> None:
        self.now = moment


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def slots():
    directory = InMemorySlotDirectory()
    # 8 of 10 free -> 80% availability
    directory.add_location(Location("L1", total_slots=10, available_slots=8))
    directory.add_slot(Slot("A1", "L1", base_hourly_rate=Decimal("100")))
    directory.add_slot(Slot("A2", "L1", base_hourly_rate=Decimal("50"), price_multiplier=Decimal("2")))
    directory.add_slot(Slot("A9", "L1", base_hourly_rate=Decimal("100"), is_active=False))
    return directory


@pytest.fixture
def reservations():
    return InMemoryReservationStore()


@pytest.fixture
def payments():
    return InMemoryPaymentStore()


@pytest.fixture
def subscriptions(clock):
    return SubscriptionService(clock=clock)


@pytest.fixture
def engine(reservations, payments, slots, subscriptions, clock):
    return ReservationEngine(
        reservations=reservations,
        payments=payments,
        slots=slots,
        subscriptions=subscriptions,
        clock=clock,
    )
