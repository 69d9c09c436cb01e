"""Deferred billing: charge the member's saved card a fixed lead time before the lesson.

run_due() is safe to call repeatedly or concurrently for the same period.
Each attempt is claimed with a compare-and-set on charge_attempts that also
takes a lease (charge_started_at) and re-checks the Paid flag, so no second
attempt starts while a charge is in flight. The Stripe PaymentIntent carries
an idempotency key derived from the booking and attempt number.
"""
import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_, update

from models import db
from models.booking import Booking, BookingStatus, BillingMode, PaymentStatus
from payments import get_rail
from services import ledger
from utils.audit import log_event
from utils.clock import club_now
from utils.email_templates import charge_failed_email, receipt_email
from utils.emailer import send_email
from utils.errors import AlreadyPaid, AppError, ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def cutoff_for(booking, now=None) -> datetime:
    lead = timedelta(hours=current_app.config.get("AUTO_CHARGE_LEAD_HOURS", 24))
    now = now or club_now()
    return max(booking.starts_at - lead, now)


def register(booking, now=None):
    """Schedule the charge for a confirmed Deferred booking. The caller commits."""
    booking.auto_charge_at = cutoff_for(booking, now)
    booking.auto_charge_cancelled = False
    if booking.payment_status == PaymentStatus.UNPAID:
        booking.payment_status = PaymentStatus.AUTHORIZED_PENDING
    return booking


def cancel(booking_id) -> dict:
    """Stop the auto-charge. Idempotent; a Paid booking cannot be retracted."""
    if not booking_id:
        raise ValidationError("Missing booking ID")
    booking = db.session.get(Booking, str(booking_id))
    if booking is None:
        raise NotFoundError("Booking not found")

    if booking.payment_status == PaymentStatus.PAID:
        raise AlreadyPaid("This booking has already been charged")
    if booking.auto_charge_cancelled:
        return {"success": True, "alreadyCancelled": True, "booking": booking}

    result = db.session.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.auto_charge_cancelled.is_(False),
            Booking.payment_status != PaymentStatus.PAID,
        )
        .values(auto_charge_cancelled=True)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    db.session.refresh(booking)
    if result.rowcount != 1:
        # lost a race with a charge or another cancel
        if booking.payment_status == PaymentStatus.PAID:
            raise AlreadyPaid("This booking has already been charged")
        return {"success": True, "alreadyCancelled": True, "booking": booking}

    log_event("AUTO_CHARGE_CANCEL", actor=booking.client_email, entity="booking", entity_id=booking.id)
    return {"success": True, "alreadyCancelled": False, "booking": booking}


def _lease_free():
    lease = timedelta(seconds=current_app.config.get("AUTO_CHARGE_LEASE_SECONDS", 600))
    return or_(Booking.charge_started_at.is_(None), Booking.charge_started_at < datetime.utcnow() - lease)


def due_bookings(as_of: datetime):
    max_attempts = current_app.config.get("AUTO_CHARGE_MAX_ATTEMPTS", 3)
    return (
        Booking.query
        .filter(
            Booking.billing_mode == BillingMode.DEFERRED,
            Booking.status == BookingStatus.CONFIRMED,
            Booking.auto_charge_at.isnot(None),
            Booking.auto_charge_at <= as_of,
            Booking.auto_charge_cancelled.is_(False),
            Booking.payment_status.notin_([PaymentStatus.PAID, PaymentStatus.CANCELLED]),
            Booking.charge_escalated_at.is_(None),
            Booking.charge_attempts < max_attempts,
            _lease_free(),
        )
        .order_by(Booking.auto_charge_at.asc())
        .all()
    )


def run_due(as_of: datetime = None):
    """Charge every due Deferred booking. Returns one result dict per booking looked at."""
    as_of = as_of or club_now()
    results = []
    for booking in due_bookings(as_of):
        results.append(charge_booking(booking, actor="scheduler"))
    logger.info("Auto-charge run as of %s: %d processed", as_of.isoformat(), len(results))
    return results


def _claim_attempt(booking, respect_cancel: bool):
    seen = booking.charge_attempts
    conditions = [
        Booking.id == booking.id,
        Booking.charge_attempts == seen,
        Booking.payment_status != PaymentStatus.PAID,
        _lease_free(),
    ]
    if respect_cancel:
        conditions.append(Booking.auto_charge_cancelled.is_(False))
    result = db.session.execute(
        update(Booking)
        .where(*conditions)
        .values(charge_attempts=seen + 1, charge_started_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    db.session.refresh(booking)
    return seen + 1 if result.rowcount == 1 else None


def _record_failure(booking, reason: str, actor: str) -> dict:
    max_attempts = current_app.config.get("AUTO_CHARGE_MAX_ATTEMPTS", 3)
    booking.last_charge_error = (reason or "Unknown error")[:255]
    booking.charge_started_at = None
    escalated = booking.charge_attempts >= max_attempts
    if escalated:
        booking.charge_escalated_at = datetime.utcnow()
    db.session.commit()

    log_event("AUTO_CHARGE_ESCALATED" if escalated else "AUTO_CHARGE_FAILED", actor=actor,
              entity="booking", entity_id=booking.id,
              metadata={"reason": reason, "attempts": booking.charge_attempts})

    subject, body = charge_failed_email(booking, reason, escalated)
    ok, error = send_email(current_app.config.get("ADMIN_EMAIL"), subject, body)
    if not ok:
        logger.warning("Auto-charge alert for booking %s not sent: %s", booking.id, error)
    return {"bookingId": booking.id, "success": False, "error": reason, "escalated": escalated}


def charge_booking(booking, actor: str = "scheduler", respect_cancel: bool = True) -> dict:
    """One charge attempt against the member's saved card."""
    if booking.payment_status == PaymentStatus.PAID:
        if actor == "scheduler":
            return {"bookingId": booking.id, "success": True, "skipped": "already paid"}
        raise AlreadyPaid("This booking has already been charged")

    attempt = _claim_attempt(booking, respect_cancel)
    if attempt is None:
        if actor != "scheduler":
            if booking.payment_status == PaymentStatus.PAID:
                raise AlreadyPaid("This booking has already been charged")
            raise ConflictError("A charge for this booking is already in progress")
        return {"bookingId": booking.id, "success": booking.payment_status == PaymentStatus.PAID,
                "skipped": "claimed elsewhere"}

    member = booking.member
    if member is None:
        return _record_failure(booking, "Member not found", actor)
    if not member.stripe_customer_id:
        return _record_failure(booking, "No payment customer on file", actor)

    try:
        rail = get_rail("setup")
        payment_method_id = member.payment_method_id or rail.default_payment_method(member.stripe_customer_id)
        if not payment_method_id:
            return _record_failure(booking, "No card on file", actor)
        result = rail.charge(
            customer_id=member.stripe_customer_id,
            payment_method_id=payment_method_id,
            amount_cents=booking.amount,
            description=f"Tennis lesson - {member.name} - {booking.date.isoformat()}",
            idempotency_key=f"auto-charge-{booking.id}-{attempt}",
            metadata={
                "bookingId": booking.id,
                "memberId": member.id,
                "memberCode": member.member_code,
                "autoCharged": "true",
            },
        )
    except AppError as exc:
        return _record_failure(booking, exc.message, actor)

    if not result.ok:
        return _record_failure(booking, result.reason, actor)

    ledger.post_charge(booking, result.provider, result.external_id)
    booking.charge_started_at = None
    db.session.commit()
    log_event("AUTO_CHARGE_PAID", actor=actor, entity="booking", entity_id=booking.id,
              metadata={"payment_intent": result.external_id, "attempt": attempt})

    # the charge stands even if the receipt cannot be delivered
    subject, body = receipt_email(booking, member.name)
    ok, error = send_email(member.email, subject, body)
    if not ok:
        booking.notification_error = f"receipt: {error}"[:255]
        db.session.commit()
    return {"bookingId": booking.id, "success": True, "paymentId": result.external_id}
