from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from threading import Lock
from typing import Callable, Dict, List, Optional, Tuple

from models import SubscriptionInfo, SubscriptionTier, VehicleClass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierInfo:
    tier: SubscriptionTier
    name: str
    price_per_month: Decimal
    discount: Decimal
    can_access_premium_slots: bool
    can_use_sports: bool
    can_use_hyper_sports: bool
    features: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.tier.value,
            "name": self.name,
            "pricePerMonth": self.price_per_month,
            "discount": self.discount,
            "canAccessPremiumSlots": self.can_access_premium_slots,
            "canUseSportsVehicles": self.can_use_sports,
            "canUseHyperSports": self.can_use_hyper_sports,
            "features": list(self.features),
        }


TIERS: Dict[SubscriptionTier, TierInfo] = {
    SubscriptionTier.FREE: TierInfo(
        SubscriptionTier.FREE, "Free", Decimal(0), Decimal(0),
        False, False, False,
        ("Standard parking slots", "Basic booking", "Email support"),
    ),
    SubscriptionTier.BASIC: TierInfo(
        SubscriptionTier.BASIC, "Basic", Decimal(199), Decimal("0.05"),
        False, False, False,
        ("5% discount on all bookings", "Priority booking", "SMS notifications"),
    ),
    SubscriptionTier.PRO: TierInfo(
        SubscriptionTier.PRO, "Pro", Decimal(499), Decimal("0.15"),
        True, True, False,
        ("15% discount on all bookings", "Premium parking slots",
         "Sports vehicle parking", "Priority support"),
    ),
    SubscriptionTier.PREMIUM_PLUS: TierInfo(
        SubscriptionTier.PREMIUM_PLUS, "Premium+", Decimal(999), Decimal("0.25"),
        True, True, True,
        ("25% discount on all bookings", "All premium slots",
         "Hyper-Sports parking", "VIP support", "Free cancellation"),
    ),
}


def tier_info(tier: SubscriptionTier) -> TierInfo:
    return TIERS.get(tier, TIERS[SubscriptionTier.FREE])


class SubscriptionLookup(ABC):
    """
    What the reservation core needs to know about a user's subscription.
    """

    @abstractmethod
    def get_subscription(self, user_id: str) -> SubscriptionInfo:
        ...

    def discount_percentage(self, tier: SubscriptionTier) -> Decimal:
        return tier_info(tier).discount

    def vehicle_class_allowed(self, tier: SubscriptionTier, vehicle_class: Optional[VehicleClass]) -> bool:
        if vehicle_class is None:
            return True
        info = tier_info(tier)
        if vehicle_class.is_hyper:
            return info.can_use_hyper_sports
        if vehicle_class is VehicleClass.SPORTS:
            return info.can_use_sports
        return True


@dataclass
class SubscriptionRecord:
    user_id: str
    tier: SubscriptionTier
    is_active: bool
    starts_at: datetime
    expires_at: Optional[datetime] = None


FREE_SUBSCRIPTION = SubscriptionInfo(tier=SubscriptionTier.FREE, is_active=True, expires_at=None)


class SubscriptionService(SubscriptionLookup):
    """
    In-memory subscription records.
    Absent, inactive or expired subscriptions read as the free tier.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._records: Dict[str, SubscriptionRecord] = {}
        self._lock = Lock()

    def get_subscription(self, user_id: str) -> SubscriptionInfo:
        with self._lock:
            record = self._records.get(user_id)
        if record is None or not record.is_active:
            return FREE_SUBSCRIPTION
        if record.expires_at is not None and record.expires_at < self._clock():
            return FREE_SUBSCRIPTION
        return SubscriptionInfo(tier=record.tier, is_active=True, expires_at=record.expires_at)

    def activate(self, user_id: str, tier: SubscriptionTier) -> SubscriptionInfo:
        now = self._clock()
        record = SubscriptionRecord(
            user_id=user_id,
            tier=tier,
            is_active=True,
            starts_at=now,
            expires_at=now + timedelta(days=30),
        )
        with self._lock:
            self._records[user_id] = record
        logger.info("Subscription %s activated for user %s", tier.value, user_id)
        return self.get_subscription(user_id)

    def cancel(self, user_id: str) -> bool:
        with self._lock:
            record = self._records.get(user_id)
            if record is None or record.tier is SubscriptionTier.FREE:
                return False
            record.is_active = False
        logger.info("Subscription cancelled for user %s", user_id)
        return True

    def all_tiers(self) -> List[TierInfo]:
        return list(TIERS.values())
