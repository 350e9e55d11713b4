import pytest

from app import create_app
from config import EngineSettings


@pytest.fixture
def client(engine):
    app = create_app(engine=engine, config={"TESTING": True})
    return app.test_client()


def post_booking(client, user="u1", **overrides):
    body = {
        "slotId": "A1",
        "startTime": "2025-01-06T12:00:00Z",
        "endTime": "2025-01-06T14:00:00Z",
        "vehiclePlate": "KA01AB1234",
        "vehicleType": "hatchback",
    }
    body.update(overrides)
    return client.post("/api/reservations", json=body, headers={"X-User-Id": user})


def test_create_and_list(client):
    resp = post_booking(client)
    assert resp.status_code == 201
    data = resp.get_json()["data"]
    assert data["totalAmount"] == "200.00"
    assert data["confirmationCode"].startswith("STN-")

    listed = client.get("/api/reservations", headers={"X-User-Id": "u1"}).get_json()["data"]
    assert [r["id"] for r in listed] == [data["id"]]
    assert listed[0]["status"] == "confirmed"


def test_missing_user_header(client):
    resp = client.post("/api/reservations", json={"slotId": "A1"})
    assert resp.status_code == 401
    assert resp.get_json()["success"] is False


def test_bad_timestamp(client):
    resp = post_booking(client, startTime="tomorrow")
    assert resp.status_code == 400
    assert "startTime" in resp.get_json()["message"]


def test_conflict(client):
    post_booking(client)
    resp = post_booking(client, user="u2", startTime="2025-01-06T13:00:00Z", endTime="2025-01-06T15:00:00Z")
    assert resp.status_code == 409
    assert "already been booked" in resp.get_json()["message"]


def test_validation_error(client):
    resp = post_booking(client, vehicleType="sports")
    assert resp.status_code == 400
    assert "subscription" in resp.get_json()["message"]


def test_client_price(client):
    resp = post_booking(client, totalAmount=150.5)
    assert resp.get_json()["data"]["totalAmount"] == "150.50"


def test_client_price_is_quantized(client):
    resp = post_booking(client, totalAmount="150.12345")
    assert resp.status_code == 201
    assert resp.get_json()["data"]["totalAmount"] == "150.12"


@pytest.mark.parametrize("amount", ["NaN", "Infinity", "-Infinity", "sNaN", True])
def test_non_finite_amount_rejected(client, amount):
    resp = post_booking(client, totalAmount=amount)
    assert resp.status_code == 400
    assert "totalAmount" in resp.get_json()["message"]
    assert client.get("/api/reservations", headers={"X-User-Id": "u1"}).get_json()["data"] == []


@pytest.mark.parametrize("field,value", [
    ("startTime", 1736164800),
    ("endTime", ["2025-01-06T14:00:00Z"]),
    ("vehicleType", 5),
    ("vehiclePlate", 1234),
    ("vehiclePlate", {"plate": "KA01"}),
])
def test_non_string_fields_rejected(client, field, value):
    resp = post_booking(client, **{field: value})
    assert resp.status_code == 400
    assert field in resp.get_json()["message"]


def test_non_string_refund_method_rejected(client):
    rid = post_booking(client).get_json()["data"]["id"]
    resp = client.post(
        f"/api/reservations/{rid}/cancel", json={"refundMethod": 7}, headers={"X-User-Id": "u1"},
    )
    assert resp.status_code == 400


def test_cancel(client):
    rid = post_booking(client).get_json()["data"]["id"]
    resp = client.post(
        f"/api/reservations/{rid}/cancel",
        json={"refundMethod": "UPI", "refundUpiId": "me@upi"},
        headers={"X-User-Id": "u1"},
    )
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data == {"refundAmount": "180.00", "refundMethod": "UPI", "refundUpiId": "me@upi"}

    resp = client.post(f"/api/reservations/{rid}/cancel", headers={"X-User-Id": "u1"})
    assert resp.status_code == 409
    assert resp.get_json()["currentStatus"] == "cancelled"


def test_cancel_someone_elses(client):
    rid = post_booking(client).get_json()["data"]["id"]
    resp = client.post(f"/api/reservations/{rid}/cancel", headers={"X-User-Id": "u2"})
    assert resp.status_code == 403


def test_check_in_out_and_verify(client):
    code = post_booking(client).get_json()["data"]["confirmationCode"]

    assert client.post(f"/api/reservations/checkin?code={code}").status_code == 200
    again = client.post(f"/api/reservations/checkin?code={code}")
    assert again.status_code == 409
    assert again.get_json()["currentStatus"] == "active"

    verified = client.get(f"/api/reservations/verify/{code}").get_json()
    assert verified["validityStatus"] == "ALREADY_SCANNED"

    out = client.post(f"/api/reservations/checkout?code={code}")
    assert out.status_code == 200
    assert out.get_json()["data"]["reservation"]["status"] == "completed"


def test_unknown_code(client):
    resp = client.post("/api/reservations/checkin?code=STN-NOPE")
    assert resp.status_code == 404


def test_quote(client):
    resp = client.get(
        "/api/pricing/quote",
        query_string={
            "slotId": "A1",
            "startTime": "2025-01-06T12:00:00+00:00",
            "endTime": "2025-01-06T14:00:00+00:00",
        },
    )
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["totalAmount"] == "200.00"
    assert data["breakdown"]["timeMultiplierName"] == "Normal"


def test_upcoming_and_stats(client):
    post_booking(client)
    upcoming = client.get("/api/reservations/upcoming", headers={"X-User-Id": "u1"}).get_json()
    assert len(upcoming["data"]) == 1
    stats = client.get("/api/reservations/stats", headers={"X-User-Id": "u1"}).get_json()["data"]
    assert stats["upcomingCount"] == 1


def test_tiers(client):
    tiers = client.get("/api/subscriptions/tiers").get_json()["data"]
    assert [t["id"] for t in tiers] == ["free", "basic", "pro", "premium_plus"]


def test_default_app_reads_settings_from_config():
    app = create_app(config={"TESTING": True, "DEFAULT_REFUND_METHOD": "CARD", "CANCELLATION_FEE_RATE": "0.2"})
    settings = app.extensions["reservation_engine"].settings
    assert settings == EngineSettings.from_mapping(app.config)
    assert settings.default_refund_method == "CARD"
    assert str(settings.cancellation_fee_rate) == "0.2"


def test_default_app_serves_seeded_slots():
    app = create_app(config={"TESTING": True, "SEED_FLOORS": 2, "SEED_SLOTS_PER_FLOOR": 3, "SEED_HOURLY_RATE": "40"})
    client = app.test_client()

    locations = client.get("/api/locations").get_json()["data"]
    assert locations == [{
        "id": "MAIN", "totalSlots": 6, "availableSlots": 6, "availabilityPercentage": "100.00",
    }]

    slots = client.get("/api/slots", query_string={"locationId": "MAIN"}).get_json()["data"]
    assert [s["id"] for s in slots] == [
        "MAIN-F1-001", "MAIN-F1-002", "MAIN-F1-003", "MAIN-F2-001", "MAIN-F2-002", "MAIN-F2-003",
    ]
    assert slots[0] == {"id": "MAIN-F1-001", "locationId": "MAIN", "hourlyRate": "40.00", "isActive": True}
    assert client.get("/api/slots", query_string={"locationId": "ELSEWHERE"}).get_json()["data"] == []

    # far enough ahead that the real clock never makes it a past start
    resp = post_booking(
        client, slotId="MAIN-F2-003", startTime="2099-03-02T12:00:00Z", endTime="2099-03-02T14:00:00Z",
    )
    assert resp.status_code == 201
    assert resp.get_json()["data"]["confirmationCode"].startswith("STN-")


def test_slots_listing_for_injected_engine(client):
    slots = client.get("/api/slots").get_json()["data"]
    assert [s["id"] for s in slots] == ["A1", "A2", "A9"]
    assert [s["isActive"] for s in slots] == [True, True, False]
    assert slots[1]["hourlyRate"] == "100.00"
