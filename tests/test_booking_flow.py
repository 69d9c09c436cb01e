import threading
from datetime import date, datetime, time, timedelta

from conftest import future_day, token_from
from models import db
from models.booking import Booking
from models.slot import SlotState
from models.transaction import Transaction
from services import booking_processor, slot_store
from utils.errors import ConflictError, SlotConflict


def _request(client, **fields):
    booking = {"resource": "court-1", "date": "2025-01-10", "hour": 10, "clientEmail": "a@b.com"}
    booking.update(fields)
    return client.post("/booking-request", json={"booking": booking})


def test_request_then_confirm(client, outbox):
    res = _request(client)
    assert res.status_code == 200
    body = res.get_json()
    assert body["success"] is True
    assert body["emailSent"] is True

    admin_mail = outbox[-1]
    assert admin_mail["to"] == "admin@courtslot.test"
    token = token_from(outbox)

    res = client.post("/confirm-booking", json={"token": token})
    assert res.status_code == 200
    body = res.get_json()
    assert body["booking"]["resource"] == "court-1"
    assert body["booking"]["status"] == "CONFIRMED"
    assert body["emailsSent"]["client"] is True
    assert body["emailsSent"]["admin"] is True

    client_mail = next(m for m in outbox if m["to"] == "a@b.com")
    assert "https://checkout.stripe.test/" in client_mail["body"]
    slot = slot_store.get_slot("court-1", date(2025, 1, 10), 10)
    assert slot.state == SlotState.BOOKED


def test_second_submission_for_the_same_slot_conflicts(client):
    first = _request(client)
    second = _request(client, clientEmail="c@d.com")

    assert first.get_json()["success"] is True
    assert second.status_code == 409
    assert second.get_json()["error"] == "SlotConflict"
    assert Booking.query.count() == 1


def test_submission_validation(client):
    res = client.post("/booking-request", json={})
    assert res.status_code == 400

    res = _request(client, clientEmail="")
    assert res.status_code == 400
    assert "clientEmail" in res.get_json()["message"]

    res = _request(client, hour=25)
    assert res.status_code == 400

    res = _request(client, billingMode="deferred")
    assert res.status_code == 400
    assert res.get_json()["message"] == "Deferred billing requires a member code"


def test_client_supplied_id_is_kept_and_must_be_unique(client):
    assert _request(client, id="B42").get_json()["bookingId"] == "B42"
    res = _request(client, id="B42", hour=11)
    assert res.status_code == 409
    assert res.get_json()["error"] == "Conflict"


def test_member_booking_defaults_to_deferred_billing(client, outbox, make_member):
    make_member(code="CS-M200")
    day = future_day(10)
    res = _request(client, memberCode=" cs-m200 ", date=day.isoformat(), clientEmail="")
    assert res.status_code == 200

    booking = db.session.get(Booking, res.get_json()["bookingId"])
    assert booking.billing_mode == "DEFERRED"
    assert booking.client_email == "maria@example.com"

    res = client.post("/confirm-booking", json={"token": token_from(outbox)})
    body = res.get_json()["booking"]
    assert body["paymentStatus"] == "AUTHORIZED_PENDING"
    expected = datetime.combine(day, time(10)) - timedelta(hours=24)
    assert body["autoChargeAt"] == expected.isoformat()

    client_mail = next(m for m in outbox if m["to"] == "maria@example.com")
    assert "/cancel-auto-charge?bookingId=" in client_mail["body"]


def test_inactive_member_cannot_book(client, make_member):
    make_member(code="CS-OLD", active=False)
    res = _request(client, memberCode="CS-OLD")
    assert res.status_code == 403
    assert res.get_json()["error"] == "Inactive"


def test_confirm_twice_reports_already_confirmed(client, outbox):
    _request(client)
    token = token_from(outbox)
    assert client.post("/confirm-booking", json={"token": token}).status_code == 200

    res = client.post("/confirm-booking", json={"token": token})
    assert res.status_code == 409
    assert res.get_json()["error"] == "AlreadyConfirmed"


def test_confirm_with_bad_token(client):
    res = client.post("/confirm-booking", json={"token": "not-a-token"})
    assert res.status_code == 400
    assert res.get_json()["error"] == "InvalidToken"


def test_decline_frees_the_slot(client, outbox):
    booking_id = _request(client).get_json()["bookingId"]
    token = token_from(outbox)

    res = client.post("/decline-booking", json={"token": token, "reason": "Coach unavailable"})
    assert res.status_code == 200
    assert res.get_json()["booking"]["status"] == "DECLINED"
    assert "Coach unavailable" in outbox[-1]["body"]

    again = client.post("/decline-booking", json={"token": token})
    assert again.get_json()["alreadyDeclined"] is True

    res = client.post("/confirm-booking", json={"token": token})
    assert res.status_code == 409
    assert res.get_json()["error"] == "BookingClosed"

    # the slot can be requested again
    assert _request(client, clientEmail="next@example.com").status_code == 200
    assert db.session.get(Booking, booking_id).payment_status == "CANCELLED"


def test_decline_after_confirm_fails(client, outbox):
    _request(client)
    token = token_from(outbox)
    client.post("/confirm-booking", json={"token": token})

    res = client.post("/decline-booking", json={"token": token})
    assert res.status_code == 409
    assert res.get_json()["error"] == "AlreadyConfirmed"


def test_email_failure_is_reported_not_fatal(app, client):
    app.config["MAIL_SUPPRESS_SEND"] = False
    app.config["SMTP_HOST"] = None

    res = _request(client)
    assert res.status_code == 200
    body = res.get_json()
    assert body["success"] is True
    assert body["emailSent"] is False
    assert body["emailError"] == "Email not configured"

    booking = db.session.get(Booking, body["bookingId"])
    assert booking.notification_error.startswith("admin:")


def test_confirmation_still_succeeds_when_payment_link_fails(client, outbox, fake_stripe):
    _request(client)
    fake_stripe.fail_checkout = True

    res = client.post("/confirm-booking", json={"token": token_from(outbox)})
    assert res.status_code == 200
    assert res.get_json()["booking"]["status"] == "CONFIRMED"
    assert Transaction.query.count() == 0


def test_slots_endpoint_lists_taken_hours(client):
    _request(client, hour=9)
    _request(client, hour=15)

    res = client.get("/slots?resource=court-1&date=2025-01-10")
    assert res.status_code == 200
    assert [s["hour"] for s in res.get_json()["taken"]] == [9, 15]

    assert client.get("/slots?resource=court-1").status_code == 400


def test_concurrent_submissions_with_one_id(app):
    workers = 4
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()
    day = future_day(12)

    def attempt(hour):
        with app.app_context():
            barrier.wait()
            try:
                booking_processor.submit({
                    "id": "B-dup", "resource": "court-3", "date": day.isoformat(), "hour": hour,
                    "clientEmail": f"c{hour}@example.com",
                })
                outcome = "won"
            except SlotConflict:
                outcome = "slot"
            except ConflictError as exc:
                outcome = exc.message
            finally:
                db.session.remove()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=attempt, args=(8 + n,)) for n in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sorted(outcomes) == ["Booking id already exists"] * (workers - 1) + ["won"]
    winner = db.session.get(Booking, "B-dup")
    assert slot_store.occupied_hours("court-3", day) == [{"hour": winner.hour, "state": SlotState.RESERVED}]
