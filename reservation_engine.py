from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple

from availability import AvailabilityChecker
from config import EngineSettings
from errors import (
    CancellationWindowError,
    ConfirmationCodeError,
    DuplicateConfirmationCodeError,
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
    SlotUnavailableError,
    StaleStatusError,
    ValidationError,
)
from models import (
    ClientPrice,
    Payment,
    Reservation,
    ReservationStatus,
    Slot,
    SubscriptionInfo,
    SubscriptionTier,
    UserStats,
    VehicleClass,
    hours_between,
)
from pricing import PriceBreakdown, PricingEngine, round_money
from store import PaymentStore, ReservationStore, SlotDirectory
from subscriptions import FREE_SUBSCRIPTION, SubscriptionLookup, tier_info

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CODE_ATTEMPTS = 5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Naive timestamps are taken to be UTC already."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# -------------------------
# Results
# -------------------------
@dataclass(frozen=True)
class PriceQuote:
    breakdown: PriceBreakdown
    base_amount: Decimal
    discount_amount: Decimal
    surcharge_amount: Decimal
    total_amount: Decimal
    discount_source: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "baseAmount": self.base_amount,
            "discountAmount": self.discount_amount,
            "surchargeAmount": self.surcharge_amount,
            "totalAmount": self.total_amount,
            "discountSource": self.discount_source,
            "breakdown": self.breakdown.to_dict(),
        }


@dataclass(frozen=True)
class BookingConfirmation:
    reservation: Reservation
    message: str = "Reservation created successfully"

    @property
    def confirmation_code(self) -> str:
        return self.reservation.confirmation_code

    @property
    def total_amount(self) -> Decimal:
        return self.reservation.total_amount


@dataclass(frozen=True)
class CancellationResult:
    reservation: Reservation
    refund_amount: Decimal
    cancellation_fee: Decimal
    refund_method: str
    refund_upi_id: Optional[str]

    @property
    def message(self) -> str:
        return (
            f"Reservation cancelled. Refund of {self.refund_amount} will be processed via "
            f"{self.refund_method} ({self.cancellation_fee} cancellation fee deducted)"
        )


@dataclass(frozen=True)
class CheckOutResult:
    reservation: Reservation
    overstay_charge: Decimal = ZERO


@dataclass(frozen=True)
class Verification:
    reservation: Reservation
    valid: bool
    validity_status: str
    time_message: str
    is_expired: bool
    is_active: bool


class ReservationEngine:
    """
    Reservation lifecycle:

        confirmed -> active -> completed
        confirmed -> cancelled

    Creation is serialised per slot: availability is re-checked inside the
    slot's critical section immediately before the insert. All other
    transitions are compare-and-set on the status field.
    """

    def __init__(
        self,
        reservations: ReservationStore,
        payments: PaymentStore,
        slots: SlotDirectory,
        subscriptions: Optional[SubscriptionLookup] = None,
        pricing: Optional[PricingEngine] = None,
        settings: Optional[EngineSettings] = None,
        availability: Optional[AvailabilityChecker] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.reservations = reservations
        self.payments = payments
        self.slots = slots
        self.subscriptions = subscriptions
        self.pricing = pricing or PricingEngine()
        self.settings = settings or EngineSettings()
        self.availability = availability or AvailabilityChecker(reservations)
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return as_utc(self._clock())

    # -------------------------
    # Create
    # -------------------------
    def create_reservation(
        self,
        user_id: str,
        slot_id: str,
        start_time: datetime,
        end_time: datetime,
        vehicle_plate: Optional[str] = None,
        vehicle_type: Optional[str] = None,
        client_price: Optional[ClientPrice] = None,
    ) -> BookingConfirmation:
        vehicle = self._parse_vehicle(vehicle_type)
        self._check_vehicle_eligibility(user_id, vehicle)

        start, end = self._validate_interval(start_time, end_time)
        now = self.now()
        tolerance = timedelta(hours=float(self.settings.past_start_tolerance_hours))
        if start < now - tolerance:
            raise ValidationError(
                f"Start time cannot be more than {self.settings.past_start_tolerance_hours} hours in the past"
            )

        slot = self._require_slot(slot_id)
        if not self.availability.is_available(slot_id, start, end):
            raise self._unavailable()

        client_total = round_money(client_price.total) if client_price is not None else ZERO
        if client_total > 0:
            total = client_total
            base = round_money(client_price.base) if client_price.base is not None else total
            discount = round_money(client_price.discount) if client_price.discount is not None else ZERO
            surcharge = round_money(client_price.surcharge) if client_price.surcharge is not None else ZERO
            logger.info(
                "Using client pricing for slot %s: total=%s base=%s discount=%s surcharge=%s",
                slot_id, total, base, discount, surcharge,
            )
        else:
            quote = self._quote(slot, start, end, user_id, vehicle)
            base, discount = quote.base_amount, quote.discount_amount
            surcharge, total = quote.surcharge_amount, quote.total_amount
            logger.info("Computed pricing for slot %s: total=%s base=%s", slot_id, total, base)

        with self.availability.exclusive(slot_id):
            if not self.availability.is_available(slot_id, start, end):
                raise self._unavailable()
            reservation = self._insert(
                user_id=user_id,
                slot_id=slot_id,
                start_time=start,
                end_time=end,
                vehicle_plate=(vehicle_plate or "").strip().upper() or None,
                vehicle_class=vehicle,
                base_amount=base,
                discount_amount=discount,
                surcharge_amount=surcharge,
                total_amount=total,
            )

        logger.info(
            "Reservation %s created on slot %s (%s -> %s), total %s",
            reservation.confirmation_code, slot_id, start.isoformat(), end.isoformat(), total,
        )
        self._record_payment(reservation)
        return BookingConfirmation(reservation=reservation)

    # -------------------------
    # Pricing
    # -------------------------
    def calculate_price(
        self,
        slot_id: str,
        start_time: datetime,
        end_time: datetime,
        user_id: Optional[str] = None,
        vehicle_type: Optional[str] = None,
    ) -> PriceQuote:
        vehicle = self._parse_vehicle(vehicle_type)
        start, end = self._validate_interval(start_time, end_time)
        slot = self._require_slot(slot_id)
        return self._quote(slot, start, end, user_id, vehicle)

    def _quote(
        self,
        slot: Slot,
        start: datetime,
        end: datetime,
        user_id: Optional[str],
        vehicle: Optional[VehicleClass],
    ) -> PriceQuote:
        location = self.slots.get_location(slot.location_id)
        if location is None:
            raise NotFoundError(f"Location {slot.location_id} not found")

        breakdown = self.pricing.calculate_price(
            slot.hourly_rate,
            hours_between(start, end),
            start,
            vehicle,
            location.availability_percentage,
        )

        base = breakdown.base_amount
        discount = base * breakdown.total_discount
        total = breakdown.final_amount
        source = None

        if user_id is not None and self.subscriptions is not None:
            info = self.subscriptions.get_subscription(user_id)
            if info.is_active and info.tier is not SubscriptionTier.FREE:
                percent = self.subscriptions.discount_percentage(info.tier)
                if percent > 0:
                    subscription_discount = total * percent
                    discount += subscription_discount
                    total = max(Decimal(0), total - subscription_discount)
                    source = f"{tier_info(info.tier).name} subscription ({percent * 100:.0f}% off final price)"
                    logger.info(
                        "Subscription discount for user %s: -%s, new total %s",
                        user_id, round_money(subscription_discount), round_money(total),
                    )

        base = round_money(base)
        discount = round_money(discount)
        total = round_money(total)
        # surcharge absorbs whatever the multipliers added so that
        # total = base - discount + surcharge holds on the stored row
        surcharge = total - base + discount
        if surcharge < 0:
            discount -= surcharge
            surcharge = ZERO

        return PriceQuote(
            breakdown=breakdown,
            base_amount=base,
            discount_amount=discount,
            surcharge_amount=surcharge,
            total_amount=total,
            discount_source=source,
        )

    # -------------------------
    # Cancel
    # -------------------------
    def cancel_reservation(
        self,
        reservation_id: str,
        user_id: str,
        refund_method: Optional[str] = None,
        refund_upi_id: Optional[str] = None,
    ) -> CancellationResult:
        r = self.reservations.get(reservation_id)
        if r is None:
            raise NotFoundError("Reservation not found")
        if r.user_id != user_id:
            raise NotAuthorizedError("Not authorized to cancel this reservation")

        if r.status is ReservationStatus.CANCELLED:
            raise InvalidStateError(r.status, "Reservation is already cancelled")
        if r.status is ReservationStatus.COMPLETED:
            raise InvalidStateError(r.status, "Cannot cancel a completed reservation")
        if r.status is ReservationStatus.ACTIVE:
            raise InvalidStateError(r.status, "Cannot cancel an active reservation (already checked in)")

        now = self.now()
        notice = self.settings.min_cancellation_notice_hours
        if hours_between(now, r.start_time) < notice:
            raise CancellationWindowError(
                f"Cancellation is only allowed at least {notice} hour(s) before the parking start time"
            )

        refund = round_money(r.total_amount * (1 - self.settings.cancellation_fee_rate))
        fee = round_money(r.total_amount - refund)
        method = refund_method or self.settings.default_refund_method
        upi_id = refund_upi_id if method == "UPI" else None

        updated = self._transition(
            r,
            ReservationStatus.CONFIRMED,
            status=ReservationStatus.CANCELLED,
            cancelled_at=now,
            updated_at=now,
            refund_amount=refund,
            refund_method=method,
            refund_upi_id=upi_id,
        )
        logger.info(
            "Refund of %s via %s%s for reservation %s",
            refund, method, f" to {upi_id}" if upi_id else "", reservation_id,
        )
        return CancellationResult(
            reservation=updated,
            refund_amount=refund,
            cancellation_fee=fee,
            refund_method=method,
            refund_upi_id=upi_id,
        )

    # -------------------------
    # Check-in / Check-out
    # -------------------------
    def check_in(self, confirmation_code: str) -> Reservation:
        r = self._require_code(confirmation_code)
        if r.status is not ReservationStatus.CONFIRMED:
            logger.info("Check-in rejected for %s: status %s", confirmation_code, r.status.value)
            raise InvalidStateError(r.status)

        now = self.now()
        updated = self._transition(
            r,
            ReservationStatus.CONFIRMED,
            status=ReservationStatus.ACTIVE,
            actual_entry_time=now,
            updated_at=now,
        )
        logger.info("Checked in %s", confirmation_code)
        return updated

    def check_out(self, confirmation_code: str) -> CheckOutResult:
        r = self._require_code(confirmation_code)
        if r.status is not ReservationStatus.ACTIVE:
            logger.info("Check-out rejected for %s: status %s", confirmation_code, r.status.value)
            raise InvalidStateError(r.status)

        now = self.now()
        changes: dict = {
            "status": ReservationStatus.COMPLETED,
            "actual_exit_time": now,
            "updated_at": now,
        }

        overstay = ZERO
        if now > r.end_time:
            hourly = r.base_amount / r.planned_hours
            overstay = round_money(
                hours_between(r.end_time, now) * hourly * self.settings.overstay_rate_multiplier
            )
            changes["surcharge_amount"] = r.surcharge_amount + overstay
            changes["total_amount"] = r.total_amount + overstay
            logger.info("Overstay charge %s on %s", overstay, confirmation_code)

        updated = self._transition(r, ReservationStatus.ACTIVE, **changes)
        logger.info("Checked out %s", confirmation_code)
        return CheckOutResult(reservation=updated, overstay_charge=overstay)

    # -------------------------
    # Views
    # -------------------------
    def verify_reservation(self, confirmation_code: str) -> Verification:
        r = self._require_code(confirmation_code)
        now = self.now()
        is_expired = now > r.end_time
        is_not_started = now < r.start_time
        is_active = not is_expired and not is_not_started

        if r.status is ReservationStatus.CANCELLED:
            status, valid = "CANCELLED", False
        elif r.actual_exit_time is not None:
            status, valid = "COMPLETED", False
        elif r.actual_entry_time is not None:
            # still valid so the gate can show details and offer check-out
            status, valid = "ALREADY_SCANNED", True
        elif is_expired:
            status, valid = "EXPIRED", False
        elif is_not_started:
            status, valid = "NOT_STARTED", True
        else:
            status, valid = "ACTIVE", True

        if is_expired:
            message = f"Expired {format_timespan(now - r.end_time)} ago"
        elif is_not_started:
            message = f"Starts in {format_timespan(r.start_time - now)}"
        else:
            message = f"Valid for {format_timespan(r.end_time - now)} more"

        return Verification(
            reservation=r,
            valid=valid,
            validity_status=status,
            time_message=message,
            is_expired=is_expired,
            is_active=is_active,
        )

    def reservations_for_user(self, user_id: str) -> List[Reservation]:
        return self.reservations.list_for_user(user_id)

    def upcoming_for_user(self, user_id: str) -> List[Reservation]:
        now = self.now()
        items = [
            r for r in self.reservations.list_for_user(user_id)
            if r.status.holds_slot and r.end_time >= now
        ]
        items.sort(key=lambda r: r.start_time)
        return items

    def user_stats(self, user_id: str) -> UserStats:
        now = self.now()
        active = upcoming = 0
        hours = Decimal(0)
        saved = Decimal(0)

        for r in self.reservations.list_for_user(user_id):
            if r.status is ReservationStatus.CONFIRMED and r.start_time <= now <= r.end_time:
                active += 1
            elif r.status is ReservationStatus.CONFIRMED and r.start_time > now:
                upcoming += 1

            if r.status is not ReservationStatus.CANCELLED:
                until = min(r.end_time, now)
                if r.start_time <= until:
                    hours += hours_between(r.start_time, until)

            if r.discount_amount > 0:
                saved += r.discount_amount

        return UserStats(
            active_count=active,
            upcoming_count=upcoming,
            total_hours_parked=hours.quantize(Decimal("0.1")),
            total_saved=round_money(saved),
        )

    # -------------------------
    # Internal
    # -------------------------
    def _parse_vehicle(self, vehicle_type: Optional[str]) -> Optional[VehicleClass]:
        try:
            return VehicleClass.parse(vehicle_type)
        except ValueError as e:
            raise ValidationError(str(e)) from None

    def _subscription(self, user_id: str) -> SubscriptionInfo:
        if self.subscriptions is None:
            return FREE_SUBSCRIPTION
        return self.subscriptions.get_subscription(user_id)

    def _check_vehicle_eligibility(self, user_id: str, vehicle: Optional[VehicleClass]) -> None:
        if vehicle is None or not vehicle.is_sports_or_hyper:
            return
        info = self._subscription(user_id)
        lookup = self.subscriptions or _FREE_LOOKUP
        if lookup.vehicle_class_allowed(info.tier, vehicle):
            return
        if vehicle.is_hyper:
            raise ValidationError(
                "Hyper-Sports vehicles require a Premium subscription. "
                "Please upgrade to book this vehicle type."
            )
        raise ValidationError(
            "Sports vehicles require a Pro or Premium subscription. "
            "Please upgrade to book this vehicle type."
        )

    def _validate_interval(self, start_time: datetime, end_time: datetime) -> Tuple[datetime, datetime]:
        start, end = as_utc(start_time), as_utc(end_time)
        if start >= end:
            raise ValidationError("End time must be after start time")
        return start, end

    def _require_slot(self, slot_id: str) -> Slot:
        slot = self.slots.get_slot(slot_id)
        if slot is None:
            raise NotFoundError(f"Slot {slot_id} not found")
        if not slot.is_active:
            raise ValidationError(f"Slot {slot_id} is not available for booking")
        return slot

    def _require_code(self, confirmation_code: str) -> Reservation:
        r = self.reservations.get_by_code(confirmation_code)
        if r is None:
            raise NotFoundError("Invalid confirmation code")
        return r

    def _unavailable(self) -> SlotUnavailableError:
        return SlotUnavailableError(
            "This slot has already been booked for the selected time. "
            "Please choose a different slot or time."
        )

    def _insert(self, **fields: Any) -> Reservation:
        now = self.now()
        for _ in range(CODE_ATTEMPTS):
            candidate = Reservation(
                reservation_id=str(uuid.uuid4()),
                status=ReservationStatus.CONFIRMED,
                confirmation_code=_new_confirmation_code(),
                created_at=now,
                updated_at=now,
                **fields,
            )
            try:
                return self.reservations.add(candidate)
            except DuplicateConfirmationCodeError:
                logger.info("Confirmation code collision, regenerating")
        raise ConfirmationCodeError("Could not allocate a unique confirmation code, please retry")

    def _record_payment(self, reservation: Reservation) -> None:
        payment = Payment(
            payment_id=str(uuid.uuid4()),
            user_id=reservation.user_id,
            reservation_id=reservation.reservation_id,
            amount=reservation.total_amount,
            currency=self.settings.payment_currency,
            method=self.settings.payment_method,
            status="completed",
            created_at=self.now(),
        )
        try:
            self.payments.add(payment)
        except Exception:
            # the reservation stands; reconciliation has to tolerate the gap
            logger.warning(
                "Failed to record payment for reservation %s",
                reservation.reservation_id,
                exc_info=True,
            )

    def _transition(
        self,
        r: Reservation,
        expected: ReservationStatus,
        **changes: Any,
    ) -> Reservation:
        try:
            return self.reservations.update(r.reservation_id, expected, **changes)
        except StaleStatusError as e:
            raise InvalidStateError(e.actual) from None
        except KeyError:
            raise NotFoundError("Reservation not found") from None


class _FreeLookup(SubscriptionLookup):
    def get_subscription(self, user_id: str) -> SubscriptionInfo:
        return FREE_SUBSCRIPTION


_FREE_LOOKUP = _FreeLookup()


def _new_confirmation_code() -> str:
    return f"STN-{uuid.uuid4().hex[:8].upper()}"


def format_timespan(span: timedelta) -> str:
    total_minutes = int(span.total_seconds() // 60)
    days, rem = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rem, 60)
    if days >= 1:
        return f"{days}d {hours}h"
    if hours >= 1:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
