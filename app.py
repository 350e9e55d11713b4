from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from flask import Flask, current_app, jsonify, request
from werkzeug.exceptions import BadRequest, HTTPException, Unauthorized

from config import Config, EngineSettings
from errors import ParkingError
from models import ClientPrice
from pricing import round_money
from reservation_engine import ReservationEngine
from store import InMemoryPaymentStore, InMemoryReservationStore, InMemorySlotDirectory, seed_slots
from subscriptions import TIERS, SubscriptionService

logger = logging.getLogger(__name__)


def create_app(engine: Optional[ReservationEngine] = None, config: Optional[dict] = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    logging.basicConfig(level=app.config["LOG_LEVEL"])

    if engine is None:
        directory = InMemorySlotDirectory()
        seed_slots(
            directory,
            app.config["SEED_LOCATION_ID"],
            int(app.config["SEED_FLOORS"]),
            int(app.config["SEED_SLOTS_PER_FLOOR"]),
            Decimal(str(app.config["SEED_HOURLY_RATE"])),
        )
        engine = ReservationEngine(
            reservations=InMemoryReservationStore(),
            payments=InMemoryPaymentStore(),
            slots=directory,
            subscriptions=SubscriptionService(),
            settings=EngineSettings.from_mapping(app.config),
        )
    app.extensions["reservation_engine"] = engine

    register_routes(app)
    return app


def get_engine() -> ReservationEngine:
    return current_app.extensions["reservation_engine"]


# -------------------------
# Request helpers
# -------------------------
def current_user_id() -> str:
    user_id = (request.headers.get("X-User-Id") or "").strip()
    if not user_id:
        raise Unauthorized("X-User-Id header is required")
    return user_id


def optional_user_id() -> Optional[str]:
    return (request.headers.get("X-User-Id") or "").strip() or None


def parse_timestamp(value: Optional[str], field: str) -> datetime:
    if not value:
        raise BadRequest(f"{field} is required")
    if not isinstance(value, str):
        raise BadRequest(f"{field} must be a string")
    try:
        # accept a trailing Z as UTC
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise BadRequest(f"{field} is not an ISO-8601 timestamp") from None


def parse_amount(value, field: str) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise BadRequest(f"{field} is not a number")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise BadRequest(f"{field} is not a number") from None
    # NaN and Infinity parse as Decimals but are not amounts
    if not amount.is_finite():
        raise BadRequest(f"{field} is not a number")
    return amount


def optional_str(body: dict, key: str) -> Optional[str]:
    value = body.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise BadRequest(f"{key} must be a string")
    return value


def json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise BadRequest("request body must be a JSON object")
    return body


# -------------------------
# Routes
# -------------------------
def register_routes(app: Flask) -> None:
    @app.errorhandler(ParkingError)
    def handle_parking_error(e: ParkingError):
        logger.info("%s %s rejected: %s", request.method, request.path, e.message)
        payload = {"success": False, "message": e.message}
        current_status = getattr(e, "current_status", None)
        if current_status is not None:
            payload["currentStatus"] = current_status.value
        return jsonify(payload), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"success": False, "message": e.description}), e.code

    @app.route("/api/reservations", methods=["POST"])
    def create_reservation():
        user_id = current_user_id()
        body = json_body()

        client_price = None
        total = parse_amount(body.get("totalAmount"), "totalAmount")
        if total is not None:
            client_price = ClientPrice(
                total=total,
                base=parse_amount(body.get("baseAmount"), "baseAmount"),
                discount=parse_amount(body.get("discountAmount"), "discountAmount"),
                surcharge=parse_amount(body.get("surchargeAmount"), "surchargeAmount"),
            )

        slot_id = body.get("slotId")
        if not slot_id:
            raise BadRequest("slotId is required")

        booking = get_engine().create_reservation(
            user_id=user_id,
            slot_id=str(slot_id),
            start_time=parse_timestamp(body.get("startTime"), "startTime"),
            end_time=parse_timestamp(body.get("endTime"), "endTime"),
            vehicle_plate=optional_str(body, "vehiclePlate"),
            vehicle_type=optional_str(body, "vehicleType"),
            client_price=client_price,
        )
        r = booking.reservation
        return jsonify({
            "success": True,
            "message": booking.message,
            "data": {
                "id": r.reservation_id,
                "confirmationCode": booking.confirmation_code,
                "totalAmount": booking.total_amount,
            },
        }), 201

    @app.route("/api/reservations", methods=["GET"])
    def my_reservations():
        items = get_engine().reservations_for_user(current_user_id())
        return jsonify({"success": True, "data": [r.to_dict() for r in items]})

    @app.route("/api/reservations/upcoming", methods=["GET"])
    def upcoming_reservations():
        items = get_engine().upcoming_for_user(current_user_id())
        return jsonify({"success": True, "data": [r.to_dict() for r in items]})

    @app.route("/api/reservations/stats", methods=["GET"])
    def reservation_stats():
        stats = get_engine().user_stats(current_user_id())
        return jsonify({
            "success": True,
            "data": {
                "activeCount": stats.active_count,
                "upcomingCount": stats.upcoming_count,
                "totalHoursParked": stats.total_hours_parked,
                "totalSaved": stats.total_saved,
            },
        })

    @app.route("/api/reservations/<reservation_id>/cancel", methods=["POST"])
    def cancel_reservation(reservation_id):
        user_id = current_user_id()
        body = json_body()
        result = get_engine().cancel_reservation(
            reservation_id,
            user_id,
            refund_method=optional_str(body, "refundMethod"),
            refund_upi_id=optional_str(body, "refundUpiId"),
        )
        return jsonify({
            "success": True,
            "message": result.message,
            "data": {
                "refundAmount": result.refund_amount,
                "refundMethod": result.refund_method,
                "refundUpiId": result.refund_upi_id,
            },
        })

    @app.route("/api/pricing/quote", methods=["GET"])
    def price_quote():
        slot_id = request.args.get("slotId")
        if not slot_id:
            raise BadRequest("slotId is required")
        quote = get_engine().calculate_price(
            slot_id,
            parse_timestamp(request.args.get("startTime"), "startTime"),
            parse_timestamp(request.args.get("endTime"), "endTime"),
            user_id=optional_user_id(),
            vehicle_type=request.args.get("vehicleType"),
        )
        return jsonify({"success": True, "data": quote.to_dict()})

    @app.route("/api/reservations/checkin", methods=["POST"])
    def check_in():
        code = request.args.get("code", "").strip()
        if not code:
            raise BadRequest("code is required")
        r = get_engine().check_in(code)
        return jsonify({"success": True, "message": "Check-in successful", "data": r.to_dict()})

    @app.route("/api/reservations/checkout", methods=["POST"])
    def check_out():
        code = request.args.get("code", "").strip()
        if not code:
            raise BadRequest("code is required")
        result = get_engine().check_out(code)
        return jsonify({
            "success": True,
            "message": "Check-out successful",
            "data": {
                "overstayCharge": result.overstay_charge,
                "reservation": result.reservation.to_dict(),
            },
        })

    @app.route("/api/reservations/verify/<code>", methods=["GET"])
    def verify_reservation(code):
        v = get_engine().verify_reservation(code)
        return jsonify({
            "success": True,
            "valid": v.valid,
            "validityStatus": v.validity_status,
            "timeMessage": v.time_message,
            "isExpired": v.is_expired,
            "isActive": v.is_active,
            "data": v.reservation.to_dict(),
        })

    @app.route("/api/locations", methods=["GET"])
    def list_locations():
        data = [
            {
                "id": loc.location_id,
                "totalSlots": loc.total_slots,
                "availableSlots": loc.available_slots,
                "availabilityPercentage": round_money(loc.availability_percentage),
            }
            for loc in get_engine().slots.list_locations()
        ]
        return jsonify({"success": True, "data": data})

    @app.route("/api/slots", methods=["GET"])
    def list_slots():
        slots = get_engine().slots.list_slots(request.args.get("locationId") or None)
        data = [
            {
                "id": s.slot_id,
                "locationId": s.location_id,
                "hourlyRate": round_money(s.hourly_rate),
                "isActive": s.is_active,
            }
            for s in slots
        ]
        return jsonify({"success": True, "data": data})

    @app.route("/api/subscriptions/tiers", methods=["GET"])
    def subscription_tiers():
        return jsonify({"success": True, "data": [t.to_dict() for t in TIERS.values()]})


if __name__ == "__main__":
    create_app().run(debug=True)
