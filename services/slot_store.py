"""Exclusive ownership of (resource, date, hour) tuples.

A tuple is acquired either by re-taking a FREE row with a compare-and-set
UPDATE or by inserting a new row under the uq_time_slot_tuple constraint.
Whichever writer commits first wins; the other gets SlotConflict.
"""
from datetime import date as date_type, datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from models import db
from models.slot import TimeSlot, SlotState
from utils.errors import SlotConflict, ValidationError


def validate_tuple(resource, day, hour):
    resource = (resource or "").strip() if isinstance(resource, str) else resource
    if not resource:
        raise ValidationError("resource is required")
    if isinstance(day, str):
        try:
            day = date_type.fromisoformat(day)
        except ValueError:
            raise ValidationError("Invalid date. Use YYYY-MM-DD")
    if not isinstance(day, date_type):
        raise ValidationError("date is required")
    try:
        hour = int(hour)
    except (TypeError, ValueError):
        raise ValidationError("hour is required")
    if not 0 <= hour <= 23:
        raise ValidationError("hour must be between 0 and 23")
    return resource, day, hour


def get_slot(resource: str, day: date_type, hour: int):
    return TimeSlot.query.filter_by(resource=resource, date=day, hour=hour).first()


def reserve(resource: str, day: date_type, hour: int, booking_id=None) -> TimeSlot:
    """Reserve the tuple inside the caller's transaction.

    The caller commits. On conflict the session is rolled back (discarding the
    caller's pending rows too) and SlotConflict is raised.
    """
    resource, day, hour = validate_tuple(resource, day, hour)

    result = db.session.execute(
        update(TimeSlot)
        .where(
            TimeSlot.resource == resource,
            TimeSlot.date == day,
            TimeSlot.hour == hour,
            TimeSlot.state == SlotState.FREE,
        )
        .values(state=SlotState.RESERVED, booking_id=booking_id, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        slot = get_slot(resource, day, hour)
        db.session.refresh(slot)
        return slot

    slot = TimeSlot(resource=resource, date=day, hour=hour, state=SlotState.RESERVED, booking_id=booking_id)
    db.session.add(slot)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise SlotConflict(f"{resource} is already taken on {day.isoformat()} at {hour}:00")
    return slot


def finalize(slot: TimeSlot, booking_id=None) -> TimeSlot:
    """RESERVED -> BOOKED for the booking that holds the reservation."""
    if booking_id is not None and slot.booking_id != booking_id:
        raise SlotConflict("Slot is held by another booking")
    if slot.state == SlotState.BOOKED:
        return slot
    if slot.state != SlotState.RESERVED:
        raise SlotConflict("Slot reservation has been released")
    slot.state = SlotState.BOOKED
    return slot


def release(slot: TimeSlot) -> TimeSlot:
    """RESERVED/BOOKED -> FREE. Releasing a free slot is a no-op."""
    slot.state = SlotState.FREE
    slot.booking_id = None
    return slot


def slot_for_booking(booking):
    return TimeSlot.query.filter_by(
        resource=booking.resource, date=booking.date, hour=booking.hour, booking_id=booking.id
    ).first()


def occupied_hours(resource: str, day: date_type):
    rows = (
        TimeSlot.query
        .filter(TimeSlot.resource == resource, TimeSlot.date == day, TimeSlot.state != SlotState.FREE)
        .order_by(TimeSlot.hour.asc())
        .all()
    )
    return [{"hour": r.hour, "state": r.state} for r in rows]
