"""Recurring lessons: expand a weekly rule into booked occurrences and edit the series.

Occurrences are Booking rows tagged PLANNED or REALIZED. realize() moves
paid or started occurrences to REALIZED; series edits only touch PLANNED rows.
"""
import logging
from datetime import date as date_type, datetime, time, timedelta

from flask import current_app

from models import db
from models.booking import Booking, BookingStatus, BillingMode, PaymentStatus, SeriesState, new_booking_id
from models.recurring_lesson import RecurringLesson
from services import auto_charge, members, slot_store
from services.booking_processor import to_cents
from utils.audit import log_event
from utils.clock import club_now
from utils.errors import ConflictError, NotFoundError, SlotConflict, ValidationError

logger = logging.getLogger(__name__)

# cancel_reason of a single skipped week; expansion leaves these dates alone
OCCURRENCE_CANCELLED = "Occurrence cancelled"
SERIES_CANCELLED = "Series cancelled"
RESCHEDULED = "Series rescheduled"


def _parse_date(value, field: str, required: bool = True):
    if value in (None, ""):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, date_type):
        return value
    try:
        return date_type.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {field}. Use YYYY-MM-DD")


def _parse_day_of_week(value) -> int:
    try:
        day = int(value)
    except (TypeError, ValueError):
        raise ValidationError("dayOfWeek is required (0 = Monday)")
    if not 0 <= day <= 6:
        raise ValidationError("dayOfWeek must be between 0 (Monday) and 6 (Sunday)")
    return day


def get_lesson(lesson_id) -> RecurringLesson:
    lesson = db.session.get(RecurringLesson, lesson_id)
    if lesson is None:
        raise NotFoundError("Recurring lesson not found")
    return lesson


def occurrence_dates(lesson, until: date_type = None):
    """Calendar dates of the rule, in order, bounded by end date, count or `until`."""
    first = lesson.start_date + timedelta(days=(lesson.day_of_week - lesson.start_date.weekday()) % 7)
    current = first
    produced = 0
    while True:
        if lesson.end_date is not None and current > lesson.end_date:
            return
        if lesson.occurrences is not None and produced >= lesson.occurrences:
            return
        if until is not None and current > until:
            return
        yield current
        produced += 1
        current += timedelta(weeks=1)


def _horizon(lesson, as_of: datetime):
    if lesson.open_ended:
        return as_of.date() + timedelta(weeks=current_app.config.get("RECURRING_WEEKS_AHEAD", 8))
    return None


def _occurrences(lesson):
    return lesson.bookings.order_by(Booking.date.asc()).all()


def realize(lesson, as_of: datetime = None):
    """Tag billed or started occurrences as REALIZED. The caller commits."""
    as_of = as_of or club_now()
    for booking in lesson.bookings.filter(Booking.series_state == SeriesState.PLANNED):
        if booking.payment_status == PaymentStatus.PAID or booking.starts_at <= as_of:
            booking.series_state = SeriesState.REALIZED


def _book_occurrence(lesson, day: date_type, as_of: datetime) -> Booking:
    member = lesson.member if lesson.member_id else None
    booking = Booking(
        id=new_booking_id(),
        client_name=lesson.client_name,
        client_email=lesson.client_email,
        client_phone=lesson.client_phone,
        resource=lesson.resource,
        date=day,
        hour=lesson.hour,
        amount=lesson.amount,
        currency=current_app.config.get("CURRENCY", "usd"),
        billing_mode=lesson.billing_mode,
        status=BookingStatus.CONFIRMED,
        payment_status=PaymentStatus.UNPAID,
        member_id=member.id if member else None,
        recurring_lesson_id=lesson.id,
        series_state=SeriesState.PLANNED,
        confirmed_at=datetime.utcnow(),
    )
    db.session.add(booking)
    slot = slot_store.reserve(lesson.resource, day, lesson.hour, booking_id=booking.id)
    slot_store.finalize(slot, booking_id=booking.id)
    if booking.billing_mode == BillingMode.DEFERRED:
        auto_charge.register(booking, now=as_of)
    db.session.commit()
    return booking


def expand(lesson, as_of: datetime = None) -> dict:
    """Book every future date of the rule not booked yet.

    A date whose slot is taken is skipped and reported; the rest of the
    series is still booked.
    """
    as_of = as_of or club_now()
    lesson_id = lesson.id
    taken = {
        b.date for b in _occurrences(lesson)
        if b.status != BookingStatus.CANCELLED or b.cancel_reason == OCCURRENCE_CANCELLED
    }

    created, skipped = [], []
    for day in occurrence_dates(lesson, until=_horizon(lesson, as_of)):
        if day in taken:
            continue
        if datetime.combine(day, time(hour=lesson.hour)) <= as_of:
            continue
        try:
            booking = _book_occurrence(lesson, day, as_of)
        except SlotConflict as exc:
            # reserve() rolled back; reload the lesson for the next date
            lesson = get_lesson(lesson_id)
            skipped.append({"date": day.isoformat(), "error": exc.code, "message": exc.message})
            continue
        created.append({"date": day.isoformat(), "bookingId": booking.id})
    return {"created": created, "skipped": skipped}


def create_series(data: dict):
    data = data or {}
    member = None
    member_code = (data.get("memberCode") or "").strip()
    if member_code:
        member = members.validate(member_code)

    client_email = (data.get("clientEmail") or (member.email if member else "") or "").strip().lower()
    if not client_email:
        raise ValidationError("clientEmail is required")
    resource = (data.get("resource") or "").strip()
    if not resource:
        raise ValidationError("resource is required")
    try:
        hour = int(data.get("hour"))
    except (TypeError, ValueError):
        raise ValidationError("hour is required")
    if not 0 <= hour <= 23:
        raise ValidationError("hour must be between 0 and 23")

    start_date = _parse_date(data.get("startDate"), "startDate")
    end_date = _parse_date(data.get("endDate"), "endDate", required=False)
    occurrences = data.get("occurrences")
    if end_date is not None and occurrences not in (None, ""):
        raise ValidationError("Give either endDate or occurrences, not both")
    if end_date is not None and end_date < start_date:
        raise ValidationError("endDate must not be before startDate")
    if occurrences not in (None, ""):
        try:
            occurrences = int(occurrences)
        except (TypeError, ValueError):
            raise ValidationError("occurrences must be a positive integer")
        if occurrences < 1:
            raise ValidationError("occurrences must be a positive integer")
    else:
        occurrences = None

    billing_mode = (data.get("billingMode") or "").strip().upper()
    if not billing_mode:
        billing_mode = BillingMode.DEFERRED if member else BillingMode.MANUAL
    if billing_mode not in BillingMode.ALL:
        raise ValidationError(f"billingMode must be one of {', '.join(BillingMode.ALL).lower()}")
    if billing_mode == BillingMode.DEFERRED and member is None:
        raise ValidationError("Deferred billing requires a member code")

    lesson = RecurringLesson(
        client_name=(data.get("clientName") or (member.name if member else "") or "").strip() or None,
        client_email=client_email,
        client_phone=(data.get("clientPhone") or (member.phone if member else "") or "").strip() or None,
        member_id=member.id if member else None,
        resource=resource,
        day_of_week=_parse_day_of_week(data.get("dayOfWeek")),
        hour=hour,
        start_date=start_date,
        end_date=end_date,
        occurrences=occurrences,
        amount=to_cents(data.get("amount"), current_app.config.get("DEFAULT_LESSON_PRICE", 0)),
        billing_mode=billing_mode,
        status="ACTIVE",
    )
    db.session.add(lesson)
    db.session.commit()
    log_event("RECURRING_CREATE", actor="admin", entity="recurring_lesson", entity_id=lesson.id)

    report = expand(lesson)
    return get_lesson(lesson.id), report


def _cancel_occurrence(booking, reason: str):
    booking.status = BookingStatus.CANCELLED
    booking.payment_status = PaymentStatus.CANCELLED
    booking.auto_charge_cancelled = True
    booking.cancelled_at = datetime.utcnow()
    booking.cancel_reason = reason
    slot = slot_store.slot_for_booking(booking)
    if slot is not None:
        slot_store.release(slot)


def _planned_open(lesson):
    return [
        b for b in lesson.bookings.filter(Booking.series_state == SeriesState.PLANNED)
        if b.status == BookingStatus.CONFIRMED and b.payment_status != PaymentStatus.PAID
    ]


def cancel_series(lesson_id, as_of: datetime = None) -> dict:
    """Cancel every future, unpaid occurrence. Past and billed ones stay as they are."""
    as_of = as_of or club_now()
    lesson = get_lesson(lesson_id)
    realize(lesson, as_of)

    cancelled = []
    for booking in _planned_open(lesson):
        _cancel_occurrence(booking, SERIES_CANCELLED)
        cancelled.append(booking.date.isoformat())

    lesson.status = "CANCELLED"
    lesson.cancelled_at = datetime.utcnow()
    db.session.commit()
    log_event("RECURRING_CANCEL", actor="admin", entity="recurring_lesson", entity_id=lesson.id,
              metadata={"cancelled": cancelled})
    return {"lesson": lesson, "cancelled": sorted(cancelled)}


def reschedule_series(lesson_id, changes: dict, as_of: datetime = None) -> dict:
    """Move the future, unpaid part of the series to a new day/hour/resource."""
    as_of = as_of or club_now()
    changes = changes or {}
    lesson = get_lesson(lesson_id)
    if lesson.status != "ACTIVE":
        raise ConflictError("Recurring lesson is cancelled")

    new_day = _parse_day_of_week(changes["dayOfWeek"]) if "dayOfWeek" in changes else lesson.day_of_week
    new_hour = lesson.hour
    if "hour" in changes:
        try:
            new_hour = int(changes["hour"])
        except (TypeError, ValueError):
            raise ValidationError("hour must be an integer")
        if not 0 <= new_hour <= 23:
            raise ValidationError("hour must be between 0 and 23")
    new_resource = (changes.get("resource") or lesson.resource).strip()
    new_amount = to_cents(changes["amount"]) if "amount" in changes else lesson.amount

    realize(lesson, as_of)
    moved = (new_day, new_hour, new_resource) != (lesson.day_of_week, lesson.hour, lesson.resource)

    released = []
    if moved:
        for booking in _planned_open(lesson):
            _cancel_occurrence(booking, RESCHEDULED)
            released.append(booking.date.isoformat())
    else:
        for booking in _planned_open(lesson):
            booking.amount = new_amount

    for field, attr in (("clientName", "client_name"), ("clientPhone", "client_phone")):
        if field in changes:
            setattr(lesson, attr, (changes[field] or "").strip() or None)
    lesson.day_of_week = new_day
    lesson.hour = new_hour
    lesson.resource = new_resource
    lesson.amount = new_amount
    db.session.commit()

    report = expand(lesson, as_of) if moved else {"created": [], "skipped": []}
    log_event("RECURRING_RESCHEDULE", actor="admin", entity="recurring_lesson", entity_id=lesson_id,
              metadata={"released": released, "created": len(report["created"])})
    return {"lesson": get_lesson(lesson_id), "released": sorted(released), **report}


def _occurrence_on(lesson, day: date_type):
    return (
        lesson.bookings
        .filter(Booking.date == day)
        .order_by(Booking.created_at.desc())
        .first()
    )


def cancel_occurrence(lesson_id, day, as_of: datetime = None) -> Booking:
    """Skip a single future week of the series."""
    as_of = as_of or club_now()
    day = _parse_date(day, "date")
    lesson = get_lesson(lesson_id)
    realize(lesson, as_of)

    booking = _occurrence_on(lesson, day)
    if booking is None:
        raise NotFoundError("No occurrence on that date")
    if booking.status == BookingStatus.CANCELLED:
        return booking
    if booking.series_state != SeriesState.PLANNED or booking.payment_status == PaymentStatus.PAID:
        raise ConflictError("Occurrence is already billed or in the past")

    _cancel_occurrence(booking, OCCURRENCE_CANCELLED)
    db.session.commit()
    return booking


def restore_occurrence(lesson_id, day, as_of: datetime = None) -> Booking:
    """Undo cancel_occurrence() for a date that is still in the future."""
    as_of = as_of or club_now()
    day = _parse_date(day, "date")
    lesson = get_lesson(lesson_id)

    booking = _occurrence_on(lesson, day)
    if booking is None or booking.cancel_reason != OCCURRENCE_CANCELLED:
        raise NotFoundError("No cancelled occurrence on that date")
    if booking.starts_at <= as_of:
        raise ConflictError("Occurrence is in the past")

    booking_id = booking.id
    slot = slot_store.reserve(booking.resource, booking.date, booking.hour, booking_id=booking_id)
    slot_store.finalize(slot, booking_id=booking_id)
    booking = db.session.get(Booking, booking_id)
    booking.status = BookingStatus.CONFIRMED
    booking.payment_status = PaymentStatus.UNPAID
    booking.series_state = SeriesState.PLANNED
    booking.cancelled_at = None
    booking.cancel_reason = None
    if booking.billing_mode == BillingMode.DEFERRED:
        auto_charge.register(booking, now=as_of)
    db.session.commit()
    return booking


def extend_open_series(as_of: datetime = None) -> dict:
    """Roll every active open-ended series forward to the booking horizon."""
    as_of = as_of or club_now()
    report = {}
    for lesson in RecurringLesson.query.filter_by(status="ACTIVE").all():
        if lesson.open_ended:
            report[lesson.id] = expand(lesson, as_of)
    return report
