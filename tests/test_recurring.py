from datetime import datetime, time, timedelta

import pytest

from conftest import ADMIN, future_day
from models import db
from models.booking import Booking
from models.slot import SlotState
from services import auto_charge, ledger, recurring, slot_store
from utils.clock import club_now
from utils.errors import ConflictError


def _next_monday(days_ahead):
    day = future_day(days_ahead)
    return day + timedelta(days=(7 - day.weekday()) % 7)


START = _next_monday(14)


def _weeks(*offsets):
    return [(START + timedelta(weeks=n)).isoformat() for n in offsets]


def _series(client, **fields):
    data = {
        "clientName": "Kid Jones",
        "clientEmail": "kid@example.com",
        "resource": "court-2",
        "dayOfWeek": 0,
        "hour": 9,
        "startDate": START.isoformat(),
        "occurrences": 4,
        "amount": 50,
    }
    data.update(fields)
    data = {k: v for k, v in data.items() if v is not None}
    return client.post("/recurring-lessons", json=data, headers=ADMIN)


def _occurrence(lesson_id, day_iso, hour=None):
    q = Booking.query.filter_by(recurring_lesson_id=lesson_id, date=datetime.fromisoformat(day_iso).date())
    if hour is not None:
        q = q.filter_by(hour=hour)
    return q.order_by(Booking.created_at.desc()).first()


def test_series_books_each_week(client):
    res = _series(client)
    assert res.status_code == 201
    body = res.get_json()
    assert [c["date"] for c in body["created"]] == _weeks(0, 1, 2, 3)
    assert body["skipped"] == []
    assert body["lesson"]["billingMode"] == "MANUAL"

    lesson_id = body["lesson"]["id"]
    for day_iso in _weeks(0, 1, 2, 3):
        booking = _occurrence(lesson_id, day_iso)
        assert booking.status == "CONFIRMED"
        assert booking.series_state == "PLANNED"
        assert booking.amount == 5000
        assert slot_store.slot_for_booking(booking).state == SlotState.BOOKED


def test_series_endpoints_require_admin(client):
    assert client.post("/recurring-lessons", json={}).status_code == 401
    assert client.get("/recurring-lessons").status_code == 401


def test_rule_starts_on_the_next_matching_weekday(client):
    body = _series(client, dayOfWeek=2, occurrences=2).get_json()
    wednesday = START + timedelta(days=2)
    assert [c["date"] for c in body["created"]] == [wednesday.isoformat(), (wednesday + timedelta(weeks=1)).isoformat()]


def test_end_date_bounds_the_series(client):
    end = START + timedelta(days=20)
    body = _series(client, occurrences=None, endDate=end.isoformat()).get_json()
    assert [c["date"] for c in body["created"]] == _weeks(0, 1, 2)


def test_taken_date_is_skipped_not_fatal(client):
    slot_store.reserve("court-2", START + timedelta(weeks=1), 9)
    db.session.commit()

    body = _series(client).get_json()
    assert [c["date"] for c in body["created"]] == _weeks(0, 2, 3)
    assert body["skipped"] == [{
        "date": _weeks(1)[0],
        "error": "SlotConflict",
        "message": f"court-2 is already taken on {_weeks(1)[0]} at 9:00",
    }]


@pytest.mark.parametrize("fields", [
    {"endDate": (START + timedelta(weeks=3)).isoformat()},
    {"dayOfWeek": 7},
    {"hour": 24},
    {"startDate": "next week"},
    {"occurrences": 0},
    {"billingMode": "deferred"},
    {"clientEmail": None},
])
def test_invalid_rules_are_rejected(client, fields):
    res = _series(client, **fields)
    assert res.status_code == 400


def test_cancel_series_keeps_history(client):
    lesson_id = _series(client).get_json()["lesson"]["id"]
    first = _occurrence(lesson_id, _weeks(0)[0])
    second = _occurrence(lesson_id, _weeks(1)[0])
    ledger.post_charge(second, "STRIPE", "pi_paid_early")
    db.session.commit()

    # the first lesson has happened by now
    as_of = datetime.combine(START + timedelta(days=1), time(12))
    result = recurring.cancel_series(lesson_id, as_of=as_of)

    assert result["cancelled"] == _weeks(2, 3)
    assert result["lesson"].status == "CANCELLED"

    first = db.session.get(Booking, first.id)
    assert (first.status, first.series_state, first.payment_status) == ("CONFIRMED", "REALIZED", "UNPAID")
    second = db.session.get(Booking, second.id)
    assert (second.status, second.series_state, second.payment_status) == ("CONFIRMED", "REALIZED", "PAID")
    for day_iso in _weeks(2, 3):
        booking = _occurrence(lesson_id, day_iso)
        assert booking.status == "CANCELLED"
        assert booking.cancel_reason == recurring.SERIES_CANCELLED
    assert slot_store.occupied_hours("court-2", START + timedelta(weeks=2)) == []


def test_cancel_series_endpoint(client):
    lesson_id = _series(client).get_json()["lesson"]["id"]
    res = client.post(f"/recurring-lessons/{lesson_id}/cancel", headers=ADMIN)
    assert res.status_code == 200
    assert res.get_json()["cancelled"] == _weeks(0, 1, 2, 3)

    res = client.post(f"/recurring-lessons/{lesson_id}/reschedule", json={"hour": 10}, headers=ADMIN)
    assert res.status_code == 409


def test_reschedule_moves_future_unpaid_occurrences(client):
    lesson_id = _series(client).get_json()["lesson"]["id"]

    res = client.post(f"/recurring-lessons/{lesson_id}/reschedule", json={"hour": 11}, headers=ADMIN)
    assert res.status_code == 200
    body = res.get_json()
    assert body["released"] == _weeks(0, 1, 2, 3)
    assert [c["date"] for c in body["created"]] == _weeks(0, 1, 2, 3)
    assert body["lesson"]["hour"] == 11

    for day_iso in _weeks(0, 1, 2, 3):
        day = datetime.fromisoformat(day_iso).date()
        assert slot_store.occupied_hours("court-2", day) == [{"hour": 11, "state": SlotState.BOOKED}]
        old = _occurrence(lesson_id, day_iso, hour=9)
        assert old.status == "CANCELLED"
        assert old.cancel_reason == recurring.RESCHEDULED


def test_reschedule_leaves_past_occurrences(client):
    lesson_id = _series(client).get_json()["lesson"]["id"]
    as_of = datetime.combine(START + timedelta(days=1), time(12))

    result = recurring.reschedule_series(lesson_id, {"hour": 11}, as_of=as_of)
    assert result["released"] == _weeks(1, 2, 3)
    assert [c["date"] for c in result["created"]] == _weeks(1, 2, 3)
    first = _occurrence(lesson_id, _weeks(0)[0])
    assert (first.hour, first.status, first.series_state) == (9, "CONFIRMED", "REALIZED")


def test_reschedule_price_only_updates_planned_amounts(client):
    lesson_id = _series(client).get_json()["lesson"]["id"]
    second = _occurrence(lesson_id, _weeks(1)[0])
    ledger.post_charge(second, "PAYPAL", "ORDER-9")
    db.session.commit()

    res = client.post(f"/recurring-lessons/{lesson_id}/reschedule", json={"amount": 70}, headers=ADMIN)
    body = res.get_json()
    assert body["released"] == []
    assert body["created"] == []
    amounts = {d: _occurrence(lesson_id, d).amount for d in _weeks(0, 1, 2, 3)}
    assert amounts == {_weeks(0)[0]: 7000, _weeks(1)[0]: 5000, _weeks(2)[0]: 7000, _weeks(3)[0]: 7000}


def test_single_date_cancel_and_restore(client):
    lesson_id = _series(client).get_json()["lesson"]["id"]
    day_iso = _weeks(1)[0]
    day = datetime.fromisoformat(day_iso).date()

    res = client.post(f"/recurring-lessons/{lesson_id}/occurrences/{day_iso}/cancel", headers=ADMIN)
    assert res.status_code == 200
    assert res.get_json()["status"] == "CANCELLED"
    assert slot_store.occupied_hours("court-2", day) == []

    # re-expanding the series does not bring the skipped week back
    assert recurring.expand(recurring.get_lesson(lesson_id))["created"] == []

    res = client.post(f"/recurring-lessons/{lesson_id}/occurrences/{day_iso}/restore", headers=ADMIN)
    assert res.status_code == 200
    assert res.get_json()["status"] == "CONFIRMED"
    assert slot_store.occupied_hours("court-2", day) == [{"hour": 9, "state": SlotState.BOOKED}]


def test_restore_fails_when_the_slot_was_taken(client):
    lesson_id = _series(client).get_json()["lesson"]["id"]
    day_iso = _weeks(2)[0]
    client.post(f"/recurring-lessons/{lesson_id}/occurrences/{day_iso}/cancel", headers=ADMIN)
    client.post("/booking-request", json={"booking": {
        "resource": "court-2", "date": day_iso, "hour": 9, "clientEmail": "other@example.com",
    }})

    res = client.post(f"/recurring-lessons/{lesson_id}/occurrences/{day_iso}/restore", headers=ADMIN)
    assert res.status_code == 409
    assert res.get_json()["error"] == "SlotConflict"


def test_past_occurrence_cannot_be_cancelled(client):
    lesson_id = _series(client).get_json()["lesson"]["id"]
    as_of = datetime.combine(START, time(10))
    with pytest.raises(ConflictError):
        recurring.cancel_occurrence(lesson_id, _weeks(0)[0], as_of=as_of)

    res = client.post(f"/recurring-lessons/{lesson_id}/occurrences/2000-01-03/cancel", headers=ADMIN)
    assert res.status_code == 404


def test_open_ended_series_rolls_forward(app, client):
    horizon = club_now().date() + timedelta(weeks=app.config["RECURRING_WEEKS_AHEAD"])
    expected = []
    day = START
    while day <= horizon:
        expected.append(day.isoformat())
        day += timedelta(weeks=1)

    body = _series(client, occurrences=None).get_json()
    assert [c["date"] for c in body["created"]] == expected

    report = recurring.extend_open_series(as_of=club_now() + timedelta(weeks=2))
    created = report[body["lesson"]["id"]]["created"]
    assert len(created) == 2
    assert created[0]["date"] == (datetime.fromisoformat(expected[-1]).date() + timedelta(weeks=1)).isoformat()


def test_member_series_is_billed_per_occurrence(client, make_member, fake_stripe):
    make_member(code="CS-KID1")
    body = _series(client, memberCode="cs-kid1", clientEmail=None, occurrences=2).get_json()
    assert body["lesson"]["billingMode"] == "DEFERRED"

    lesson_id = body["lesson"]["id"]
    first = _occurrence(lesson_id, _weeks(0)[0])
    assert first.payment_status == "AUTHORIZED_PENDING"
    assert first.auto_charge_at == datetime.combine(START, time(9)) - timedelta(hours=24)

    results = auto_charge.run_due(datetime.combine(START, time(8)))
    assert [r["bookingId"] for r in results] == [first.id]
    first = db.session.get(Booking, first.id)
    assert (first.payment_status, first.series_state) == ("PAID", "REALIZED")


def test_series_detail_lists_occurrences(client):
    lesson_id = _series(client, occurrences=2).get_json()["lesson"]["id"]

    res = client.get(f"/recurring-lessons/{lesson_id}", headers=ADMIN)
    assert res.status_code == 200
    assert [o["date"] for o in res.get_json()["occurrences"]] == _weeks(0, 1)
    assert [lesson["id"] for lesson in client.get("/recurring-lessons", headers=ADMIN).get_json()] == [lesson_id]
    assert client.get("/recurring-lessons/999", headers=ADMIN).status_code == 404
