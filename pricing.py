from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from models import VehicleClass

CENT = Decimal("0.01")

OFF_PEAK = "Off-Peak"
PEAK = "Peak"
SPECIAL_PEAK = "Special Peak"
NORMAL = "Normal"


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


def _frozen(table: dict) -> Mapping:
    return MappingProxyType(dict(table))


@dataclass(frozen=True)
class PricingTables:
    """
    Process-wide pricing constants. Hour windows are half-open [from, to).
    """
    off_peak_multiplier: Decimal = Decimal("0.8")
    peak_multiplier: Decimal = Decimal("1.25")
    normal_multiplier: Decimal = Decimal("1.0")
    peak_windows: Tuple[Tuple[int, int], ...] = ((8, 11), (17, 21))
    off_peak_from: int = 22
    off_peak_until: int = 6
    special_peak_window: Tuple[int, int] = (10, 22)

    vehicle_multipliers: Mapping[VehicleClass, Decimal] = field(
        default_factory=lambda: _frozen({
            VehicleClass.MINI: Decimal("1.0"),
            VehicleClass.HATCHBACK: Decimal("1.0"),
            VehicleClass.SEDAN: Decimal("1.1"),
            VehicleClass.COMPACT_SUV: Decimal("1.1"),
            VehicleClass.LUXURY_SEDAN: Decimal("1.25"),
            VehicleClass.LUXURY_SUV: Decimal("1.25"),
            VehicleClass.SUV: Decimal("1.25"),
            VehicleClass.EV: Decimal("1.2"),
            VehicleClass.HYBRID: Decimal("1.2"),
            VehicleClass.ELECTRIC: Decimal("1.2"),
            VehicleClass.UTILITY: Decimal("1.15"),
            VehicleClass.VAN: Decimal("1.15"),
            VehicleClass.SPORTS: Decimal("1.5"),
            VehicleClass.HYPER_SPORTS: Decimal("2.0"),
            VehicleClass.HYPERCAR: Decimal("2.0"),
        })
    )
    default_vehicle_multiplier: Decimal = Decimal("1.0")

    # (min hours, discount), checked from the longest band down
    duration_discounts: Tuple[Tuple[Decimal, Decimal], ...] = (
        (Decimal(24), Decimal("0.30")),
        (Decimal(6), Decimal("0.20")),
        (Decimal(3), Decimal("0.10")),
    )
    sports_max_duration_discount: Decimal = Decimal("0.10")

    # (availability strictly above, multiplier); falls through to scarce_demand_multiplier
    demand_bands: Tuple[Tuple[Decimal, Decimal], ...] = (
        (Decimal(50), Decimal("1.0")),
        (Decimal(30), Decimal("1.10")),
        (Decimal(10), Decimal("1.20")),
    )
    scarce_demand_multiplier: Decimal = Decimal("1.35")
    sports_demand_threshold: Decimal = Decimal(20)
    sports_demand_multiplier: Decimal = Decimal("1.50")

    weekend_surcharge: Decimal = Decimal("0.15")
    ev_off_peak_bonus: Decimal = Decimal("0.05")


DEFAULT_TABLES = PricingTables()


@dataclass(frozen=True)
class PriceBreakdown:
    base_hourly_rate: Decimal
    duration_hours: Decimal
    base_amount: Decimal
    time_multiplier: Decimal
    time_label: str
    vehicle_multiplier: Decimal
    vehicle_label: str
    duration_discount: Decimal
    demand_multiplier: Decimal
    weekend_surcharge: Decimal
    ev_bonus: Decimal
    total_discount: Decimal
    total_surcharge: Decimal
    final_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "baseHourlyRate": self.base_hourly_rate,
            "durationHours": self.duration_hours,
            "baseAmount": self.base_amount,
            "timeMultiplier": self.time_multiplier,
            "timeMultiplierName": self.time_label,
            "vehicleMultiplier": self.vehicle_multiplier,
            "vehicleMultiplierName": self.vehicle_label,
            "durationDiscount": self.duration_discount,
            "demandMultiplier": self.demand_multiplier,
            "weekendSurcharge": self.weekend_surcharge,
            "evBonus": self.ev_bonus,
            "totalDiscount": self.total_discount,
            "totalSurcharge": self.total_surcharge,
            "finalAmount": self.final_amount,
        }


class PricingEngine:
    """
    Stateless multi-factor pricing.

    final = base x time x vehicle x demand x (1 - duration discount) x (1 + weekend)

    The EV bonus and the hyper-sports peak protection branch on the time
    *label*, which is derived separately from the time *multiplier* and can
    disagree with it on weekends (e.g. Saturday 10:00 is labelled
    "Special Peak" while the rate is the weekday peak 1.25x).
    """

    def __init__(self, tables: PricingTables = DEFAULT_TABLES) -> None:
        self.tables = tables

    def calculate_price(
        self,
        base_hourly_rate: Decimal,
        duration_hours: Decimal,
        start_time: datetime,
        vehicle_class: Optional[VehicleClass],
        availability_percentage: Decimal,
    ) -> PriceBreakdown:
        t = self.tables
        vehicle = vehicle_class or VehicleClass.HATCHBACK

        # 1. base
        base_amount = base_hourly_rate * duration_hours

        # 2. time of day
        time_multiplier = self.time_multiplier(start_time)
        time_label = self.time_label(start_time)

        # 3. vehicle class
        vehicle_multiplier = t.vehicle_multipliers.get(vehicle, t.default_vehicle_multiplier)

        # 4. duration
        duration_discount = self.duration_discount(duration_hours, vehicle)

        # 5. demand
        demand_multiplier = self.demand_multiplier(availability_percentage, vehicle)

        # 6. weekend
        weekend_surcharge = t.weekend_surcharge if is_weekend(start_time) else Decimal(0)

        # 7. compose
        after_demand = base_amount * time_multiplier * vehicle_multiplier * demand_multiplier
        final_amount = after_demand * (1 - duration_discount) * (1 + weekend_surcharge)

        # 8. EV / hybrid off-peak bonus
        ev_bonus = Decimal(0)
        if vehicle.is_electric and time_label == OFF_PEAK:
            final_amount *= 1 - t.ev_off_peak_bonus
            ev_bonus = t.ev_off_peak_bonus

        # 9. hyper-sports peak protection: no discount of any kind
        if vehicle.is_hyper and time_label in (PEAK, SPECIAL_PEAK):
            duration_discount = Decimal(0)
            final_amount = after_demand * (1 + weekend_surcharge)

        # 10. round, informational aggregates
        return PriceBreakdown(
            base_hourly_rate=base_hourly_rate,
            duration_hours=duration_hours,
            base_amount=base_amount,
            time_multiplier=time_multiplier,
            time_label=time_label,
            vehicle_multiplier=vehicle_multiplier,
            vehicle_label=vehicle.value,
            duration_discount=duration_discount,
            demand_multiplier=demand_multiplier,
            weekend_surcharge=weekend_surcharge,
            ev_bonus=ev_bonus,
            total_discount=duration_discount + ev_bonus,
            total_surcharge=weekend_surcharge + (demand_multiplier - 1),
            final_amount=round_money(final_amount),
        )

    # -------------------------
    # factors
    # -------------------------
    def time_multiplier(self, start_time: datetime) -> Decimal:
        hour = start_time.hour
        if self._is_off_peak_hour(hour):
            return self.tables.off_peak_multiplier
        if self._is_peak_hour(hour):
            return self.tables.peak_multiplier
        return self.tables.normal_multiplier

    def time_label(self, start_time: datetime) -> str:
        hour = start_time.hour
        lo, hi = self.tables.special_peak_window
        # weekend window is checked first and wins over off-peak / peak
        if is_weekend(start_time) and lo <= hour < hi:
            return SPECIAL_PEAK
        if self._is_off_peak_hour(hour):
            return OFF_PEAK
        if self._is_peak_hour(hour):
            return PEAK
        return NORMAL

    def duration_discount(self, duration_hours: Decimal, vehicle: VehicleClass) -> Decimal:
        for min_hours, discount in self.tables.duration_discounts:
            if duration_hours >= min_hours:
                if vehicle.is_sports_or_hyper:
                    return min(discount, self.tables.sports_max_duration_discount)
                return discount
        return Decimal(0)

    def demand_multiplier(self, availability_percentage: Decimal, vehicle: VehicleClass) -> Decimal:
        t = self.tables
        if vehicle.is_sports_or_hyper and availability_percentage < t.sports_demand_threshold:
            return t.sports_demand_multiplier
        for above, multiplier in t.demand_bands:
            if availability_percentage > above:
                return multiplier
        return t.scarce_demand_multiplier

    def _is_off_peak_hour(self, hour: int) -> bool:
        return hour >= self.tables.off_peak_from or hour < self.tables.off_peak_until

    def _is_peak_hour(self, hour: int) -> bool:
        return any(lo <= hour < hi for lo, hi in self.tables.peak_windows)


def is_weekend(moment: datetime) -> bool:
    return moment.weekday() >= 5
