from datetime import datetime, time, timedelta

import pytest
import stripe

from conftest import ADMIN, CRON, future_day, token_from
from models import db
from models.booking import Booking
from models.transaction import Transaction
from services import auto_charge
from utils.errors import AlreadyPaid, ConflictError

DAY = future_day(5)
LESSON_START = datetime.combine(DAY, time(10))
AFTER_CUTOFF = LESSON_START - timedelta(hours=2)
BEFORE_CUTOFF = LESSON_START - timedelta(hours=30)


@pytest.fixture
def deferred_booking(client, outbox, make_member):
    """Confirmed Deferred booking "B1" for a member with a card on file."""
    make_member(code="CS-M100")
    res = client.post("/booking-request", json={"booking": {
        "id": "B1", "memberCode": "CS-M100", "resource": "court-1", "date": DAY.isoformat(), "hour": 10,
    }})
    assert res.status_code == 200
    assert client.post("/confirm-booking", json={"token": token_from(outbox)}).status_code == 200
    return db.session.get(Booking, "B1")


def test_cancel_before_cutoff_stops_the_charge(client, deferred_booking, fake_stripe):
    res = client.post("/cancel-auto-charge", json={"bookingId": "B1"})
    assert res.status_code == 200
    assert res.get_json()["auto_charge_cancelled"] is True

    assert auto_charge.run_due(AFTER_CUTOFF) == []
    assert fake_stripe.charge_keys == []
    assert db.session.get(Booking, "B1").payment_status == "AUTHORIZED_PENDING"


def test_cancel_is_idempotent(client, deferred_booking):
    client.post("/cancel-auto-charge", json={"bookingId": "B1"})
    res = client.post("/cancel-auto-charge", json={"bookingId": "B1"})
    assert res.status_code == 200
    body = res.get_json()
    assert body["alreadyCancelled"] is True
    assert body["auto_charge_cancelled"] is True


def test_cancel_input_errors(client):
    assert client.post("/cancel-auto-charge", json={}).status_code == 400
    res = client.post("/cancel-auto-charge", json={"bookingId": "nope"})
    assert res.status_code == 404
    assert res.get_json()["error"] == "NotFound"


def test_paid_booking_cannot_be_cancelled(client, deferred_booking):
    auto_charge.run_due(AFTER_CUTOFF)

    res = client.post("/cancel-auto-charge", json={"bookingId": "B1"})
    assert res.status_code == 400
    assert res.get_json()["alreadyPaid"] is True
    assert db.session.get(Booking, "B1").auto_charge_cancelled is False


def test_charge_waits_for_the_cutoff(deferred_booking, fake_stripe):
    assert deferred_booking.auto_charge_at == LESSON_START - timedelta(hours=24)
    assert auto_charge.run_due(BEFORE_CUTOFF) == []
    assert fake_stripe.charge_keys == []


def test_run_due_charges_once(deferred_booking, fake_stripe, outbox):
    first = auto_charge.run_due(AFTER_CUTOFF)
    second = auto_charge.run_due(AFTER_CUTOFF)

    assert [r["success"] for r in first] == [True]
    assert second == []
    assert fake_stripe.charge_keys == ["auto-charge-B1-1"]

    booking = db.session.get(Booking, "B1")
    assert booking.payment_status == "PAID"
    assert booking.paid_at is not None
    assert Transaction.query.filter_by(booking_id="B1", posted=True).count() == 1

    intent = fake_stripe.intents["auto-charge-B1-1"]
    assert intent["amount"] == 6000
    assert intent["off_session"] is True
    assert intent["payment_method"] == "pm_card_visa"
    assert outbox[-1]["to"] == "maria@example.com"
    assert outbox[-1]["subject"].startswith("Payment Receipt")


def test_overlapping_runs_charge_once(deferred_booking, fake_stripe, monkeypatch):
    overlapping = []

    def create_intent(**params):
        # another run and an admin charge arrive while Stripe is still answering
        overlapping.append(auto_charge.run_due(AFTER_CUTOFF))
        with pytest.raises(ConflictError):
            auto_charge.charge_booking(db.session.get(Booking, "B1"), actor="admin", respect_cancel=False)
        return fake_stripe.create_intent(**params)

    monkeypatch.setattr(stripe.PaymentIntent, "create", create_intent)
    results = auto_charge.run_due(AFTER_CUTOFF)

    assert [r["success"] for r in results] == [True]
    assert overlapping == [[]]
    assert fake_stripe.charge_keys == ["auto-charge-B1-1"]
    assert Transaction.query.filter_by(booking_id="B1", posted=True).count() == 1
    booking = db.session.get(Booking, "B1")
    assert (booking.charge_attempts, booking.charge_started_at) == (1, None)


def test_abandoned_charge_lease_expires(app, deferred_booking, fake_stripe):
    deferred_booking.charge_attempts = 1
    deferred_booking.charge_started_at = datetime.utcnow()
    db.session.commit()
    assert auto_charge.run_due(AFTER_CUTOFF) == []

    lease = app.config["AUTO_CHARGE_LEASE_SECONDS"]
    deferred_booking.charge_started_at = datetime.utcnow() - timedelta(seconds=lease + 1)
    db.session.commit()
    results = auto_charge.run_due(AFTER_CUTOFF)
    assert [r["success"] for r in results] == [True]
    assert fake_stripe.charge_keys == ["auto-charge-B1-2"]


def test_declines_are_retried_then_escalated(app, deferred_booking, fake_stripe, outbox):
    fake_stripe.decline = True
    max_attempts = app.config["AUTO_CHARGE_MAX_ATTEMPTS"]

    for attempt in range(1, max_attempts + 1):
        results = auto_charge.run_due(AFTER_CUTOFF)
        assert len(results) == 1
        assert results[0]["success"] is False
        assert results[0]["escalated"] is (attempt == max_attempts)

    booking = db.session.get(Booking, "B1")
    assert booking.charge_attempts == max_attempts
    assert booking.charge_escalated_at is not None
    assert booking.last_charge_error == "Your card was declined."
    assert booking.payment_status == "AUTHORIZED_PENDING"

    # escalated bookings are left to the admin
    assert auto_charge.run_due(AFTER_CUTOFF) == []
    assert fake_stripe.charge_keys == [f"auto-charge-B1-{n}" for n in range(1, max_attempts + 1)]
    alerts = [m for m in outbox if m["to"] == "admin@courtslot.test" and m["subject"].startswith("Auto-charge failed")]
    assert len(alerts) == max_attempts
    assert "needs manual follow-up" in alerts[-1]["body"]


def test_retry_after_a_decline_succeeds(deferred_booking, fake_stripe):
    fake_stripe.decline = True
    auto_charge.run_due(AFTER_CUTOFF)
    fake_stripe.decline = False

    results = auto_charge.run_due(AFTER_CUTOFF)
    assert results[0]["success"] is True
    booking = db.session.get(Booking, "B1")
    assert booking.payment_status == "PAID"
    assert booking.last_charge_error is None


def test_missing_card_is_a_failed_attempt(deferred_booking, fake_stripe):
    member = deferred_booking.member
    member.payment_method_id = None
    fake_stripe.payment_methods[member.stripe_customer_id] = []
    db.session.commit()

    results = auto_charge.run_due(AFTER_CUTOFF)
    assert results[0]["error"] == "No card on file"
    assert fake_stripe.charge_keys == []


def test_cutoff_is_clamped_to_now(app):
    booking = Booking(date=DAY, hour=10, payment_status="UNPAID")
    now = LESSON_START - timedelta(hours=3)
    auto_charge.register(booking, now=now)
    assert booking.auto_charge_at == now
    assert booking.payment_status == "AUTHORIZED_PENDING"


def test_billing_run_requires_the_cron_secret(client, deferred_booking):
    assert client.post("/billing/run").status_code == 401
    assert client.post("/billing/run", headers={"X-Cron-Secret": "wrong"}).status_code == 401

    res = client.post("/billing/run", json={"asOf": AFTER_CUTOFF.isoformat()}, headers=CRON)
    assert res.status_code == 200
    body = res.get_json()
    assert body["processed"] == 1
    assert body["results"][0]["bookingId"] == "B1"

    res = client.get("/billing/run", headers={"Authorization": "Bearer cron-secret"})
    assert res.status_code == 200
    assert res.get_json()["processed"] == 0


def test_billing_run_rejects_future_dates(client):
    tomorrow = future_day(3).isoformat()
    res = client.get(f"/billing/run?date={tomorrow}", headers=CRON)
    assert res.status_code == 400

    res = client.get("/billing/run?asOf=yesterday", headers=CRON)
    assert res.status_code == 400


def test_billing_run_open_without_configured_secret(app, client):
    app.config["CRON_SECRET"] = None
    res = client.get("/billing/run")
    assert res.status_code == 200
    assert res.get_json()["message"] == "No charges due"


def test_admin_charge_now(client, deferred_booking, fake_stripe):
    assert client.post("/charge-member", json={"bookingId": "B1"}).status_code == 401

    res = client.post("/charge-member", json={"bookingId": "B1"}, headers=ADMIN)
    assert res.status_code == 200
    assert res.get_json()["success"] is True

    res = client.post("/charge-member", json={"bookingId": "B1"}, headers=ADMIN)
    assert res.status_code == 400
    assert res.get_json()["error"] == "AlreadyPaid"
    assert len(fake_stripe.intents) == 1


def test_admin_charge_decline_returns_402(client, deferred_booking, fake_stripe):
    fake_stripe.decline = True
    res = client.post("/charge-member", json={"bookingId": "B1"}, headers=ADMIN)
    assert res.status_code == 402
    assert res.get_json()["error"] == "Your card was declined."


def test_scheduler_skips_paid_bookings(deferred_booking):
    auto_charge.run_due(AFTER_CUTOFF)
    result = auto_charge.charge_booking(db.session.get(Booking, "B1"), actor="scheduler")
    assert result["skipped"] == "already paid"

    with pytest.raises(AlreadyPaid):
        auto_charge.charge_booking(db.session.get(Booking, "B1"), actor="admin")
