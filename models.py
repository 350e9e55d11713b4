from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class ReservationStatus(Enum):
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ReservationStatus.COMPLETED, ReservationStatus.CANCELLED)

    @property
    def holds_slot(self) -> bool:
        """confirmed / active reservations block the slot for their interval"""
        return self in (ReservationStatus.CONFIRMED, ReservationStatus.ACTIVE)


class VehicleClass(Enum):
    MINI = "mini"
    HATCHBACK = "hatchback"
    SEDAN = "sedan"
    COMPACT_SUV = "compact_suv"
    LUXURY_SEDAN = "luxury_sedan"
    LUXURY_SUV = "luxury_suv"
    SUV = "suv"
    EV = "ev"
    HYBRID = "hybrid"
    ELECTRIC = "electric"
    UTILITY = "utility"
    VAN = "van"
    SPORTS = "sports"
    HYPER_SPORTS = "hyper_sports"
    HYPERCAR = "hypercar"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["VehicleClass"]:
        """
        Case-insensitive lookup. Empty -> None, unknown -> ValueError.
        """
        if value is None:
            return None
        text = value.strip().lower()
        if not text:
            return None
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Unknown vehicle type: {value}") from None

    @property
    def is_hyper(self) -> bool:
        return self in (VehicleClass.HYPER_SPORTS, VehicleClass.HYPERCAR)

    @property
    def is_sports_or_hyper(self) -> bool:
        return self is VehicleClass.SPORTS or self.is_hyper

    @property
    def is_electric(self) -> bool:
        return self in (VehicleClass.EV, VehicleClass.HYBRID, VehicleClass.ELECTRIC)


class SubscriptionTier(Enum):
    FREE = "free"
    BASIC = "basic"
    PRO = "pro"
    PREMIUM_PLUS = "premium_plus"


# -------------------------
# External records
# -------------------------
@dataclass(frozen=True)
class Slot:
    slot_id: str
    location_id: str
    base_hourly_rate: Decimal
    price_multiplier: Decimal = Decimal("1.0")
    is_active: bool = True

    @property
    def hourly_rate(self) -> Decimal:
        return self.base_hourly_rate * self.price_multiplier


@dataclass(frozen=True)
class Location:
    location_id: str
    total_slots: int
    available_slots: int

    @property
    def availability_percentage(self) -> Decimal:
        if self.total_slots <= 0:
            return Decimal(100)
        return Decimal(self.available_slots) / Decimal(self.total_slots) * 100


@dataclass(frozen=True)
class SubscriptionInfo:
    tier: SubscriptionTier
    is_active: bool
    expires_at: Optional[datetime] = None


# -------------------------
# Reservation / Payment
# -------------------------
@dataclass
class Reservation:
    reservation_id: str
    user_id: str
    slot_id: str
    start_time: datetime
    end_time: datetime
    status: ReservationStatus
    confirmation_code: str
    base_amount: Decimal
    discount_amount: Decimal
    surcharge_amount: Decimal
    total_amount: Decimal
    created_at: datetime
    updated_at: datetime
    vehicle_plate: Optional[str] = None
    vehicle_class: Optional[VehicleClass] = None
    actual_entry_time: Optional[datetime] = None
    actual_exit_time: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refund_amount: Optional[Decimal] = None
    refund_method: Optional[str] = None
    refund_upi_id: Optional[str] = None

    @property
    def planned_hours(self) -> Decimal:
        return hours_between(self.start_time, self.end_time)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        # touching boundaries do not conflict
        return self.start_time < end and self.end_time > start

    def to_dict(self) -> dict:
        return {
            "id": self.reservation_id,
            "userId": self.user_id,
            "slotId": self.slot_id,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "status": self.status.value,
            "confirmationCode": self.confirmation_code,
            "vehiclePlate": self.vehicle_plate,
            "vehicleType": self.vehicle_class.value if self.vehicle_class else None,
            "baseAmount": self.base_amount,
            "discountAmount": self.discount_amount,
            "surchargeAmount": self.surcharge_amount,
            "totalAmount": self.total_amount,
            "actualEntryTime": _iso(self.actual_entry_time),
            "actualExitTime": _iso(self.actual_exit_time),
            "cancelledAt": _iso(self.cancelled_at),
            "refundAmount": self.refund_amount,
            "refundMethod": self.refund_method,
            "refundUpiId": self.refund_upi_id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class Payment:
    payment_id: str
    user_id: str
    amount: Decimal
    currency: str
    method: str
    status: str
    created_at: datetime
    reservation_id: Optional[str] = None


@dataclass(frozen=True)
class ClientPrice:
    """
    Price computed by a client-side calculator; stored verbatim when total > 0.
    """
    total: Decimal
    base: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    surcharge: Optional[Decimal] = None


@dataclass(frozen=True)
class UserStats:
    active_count: int
    upcoming_count: int
    total_hours_parked: Decimal
    total_saved: Decimal


def hours_between(start: datetime, end: datetime) -> Decimal:
    seconds = Decimal(str((end - start).total_seconds()))
    return seconds / Decimal(3600)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
