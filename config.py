from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    DEFAULT_REFUND_METHOD = os.environ.get("DEFAULT_REFUND_METHOD", "UPI")
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "INR")
    PAYMENT_METHOD = os.environ.get("PAYMENT_METHOD", "UPI")

    CANCELLATION_FEE_RATE = os.environ.get("CANCELLATION_FEE_RATE", "0.10")
    MIN_CANCELLATION_NOTICE_HOURS = os.environ.get("MIN_CANCELLATION_NOTICE_HOURS", "1")
    PAST_START_TOLERANCE_HOURS = os.environ.get("PAST_START_TOLERANCE_HOURS", "24")
    OVERSTAY_RATE_MULTIPLIER = os.environ.get("OVERSTAY_RATE_MULTIPLIER", "1.5")

    # slots the standalone app starts with
    SEED_LOCATION_ID = os.environ.get("SEED_LOCATION_ID", "MAIN")
    SEED_FLOORS = int(os.environ.get("SEED_FLOORS", "3"))
    SEED_SLOTS_PER_FLOOR = int(os.environ.get("SEED_SLOTS_PER_FLOOR", "20"))
    SEED_HOURLY_RATE = os.environ.get("SEED_HOURLY_RATE", "50")


@dataclass(frozen=True)
class EngineSettings:
    default_refund_method: str = "UPI"
    payment_currency: str = "INR"
    payment_method: str = "UPI"
    cancellation_fee_rate: Decimal = Decimal("0.10")
    min_cancellation_notice_hours: Decimal = Decimal("1")
    past_start_tolerance_hours: Decimal = Decimal("24")
    overstay_rate_multiplier: Decimal = Decimal("1.5")

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "EngineSettings":
        defaults = cls()

        def dec(key: str, fallback: Decimal) -> Decimal:
            value = config.get(key)
            return fallback if value is None else Decimal(str(value))

        return cls(
            default_refund_method=config.get("DEFAULT_REFUND_METHOD") or defaults.default_refund_method,
            payment_currency=config.get("PAYMENT_CURRENCY") or defaults.payment_currency,
            payment_method=config.get("PAYMENT_METHOD") or defaults.payment_method,
            cancellation_fee_rate=dec("CANCELLATION_FEE_RATE", defaults.cancellation_fee_rate),
            min_cancellation_notice_hours=dec(
                "MIN_CANCELLATION_NOTICE_HOURS", defaults.min_cancellation_notice_hours
            ),
            past_start_tolerance_hours=dec(
                "PAST_START_TOLERANCE_HOURS", defaults.past_start_tolerance_hours
            ),
            overstay_rate_multiplier=dec(
                "OVERSTAY_RATE_MULTIPLIER", defaults.overstay_rate_multiplier
            ),
        )
