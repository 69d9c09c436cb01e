"""Booking lifecycle: request -> admin confirmation (or decline) -> payment."""
import logging
from datetime import date as date_type, datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import Booking, BookingStatus, BillingMode, PaymentStatus, new_booking_id
from payments import get_rail
from services import auto_charge, ledger, members
from services import slot_store
from services.tokens import ConfirmationTokenCodec
from utils.audit import log_event
from utils.email_templates import (
    admin_confirmation_email,
    booking_request_email,
    client_confirmation_email,
    decline_email,
)
from utils.emailer import send_email
from utils.errors import (
    AlreadyConfirmed,
    AlreadyPaid,
    AppError,
    BookingClosed,
    ConflictError,
    ExternalServiceError,
    InvalidToken,
    NotFoundError,
    PaymentNotCompleted,
    SlotConflict,
    ValidationError,
)

logger = logging.getLogger(__name__)


def to_cents(value, default=None) -> int:
    if value in (None, ""):
        if default is None:
            raise ValidationError("amount is required")
        value = default
    try:
        cents = int(round(float(value) * 100))
    except (TypeError, ValueError):
        raise ValidationError("amount must be a number")
    if cents < 0:
        raise ValidationError("amount cannot be negative")
    return cents


def get_booking(booking_id) -> Booking:
    booking = db.session.get(Booking, str(booking_id)) if booking_id else None
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def _insert_booking(booking):
    """Flush the new row on its own so a duplicate id is not mistaken for a taken slot."""
    db.session.add(booking)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Booking id already exists")


def _record_notification_failure(booking, errors: dict):
    booking.notification_error = "; ".join(f"{k}: {v}" for k, v in errors.items())[:255]
    log_event("EMAIL_FAILED", actor="system", entity="booking", entity_id=booking.id,
              metadata=errors, commit=False)
    db.session.commit()


def submit(data: dict):
    """Validate, reserve the slot, mint a confirmation token and email the admin.

    Returns (booking, token, email_ok, email_error).
    """
    data = data or {}
    member = None
    member_code = (data.get("memberCode") or "").strip()
    if member_code:
        member = members.validate(member_code)

    billing_mode = (data.get("billingMode") or "").strip().upper()
    if not billing_mode:
        billing_mode = BillingMode.DEFERRED if member else BillingMode.IMMEDIATE
    if billing_mode not in BillingMode.ALL:
        raise ValidationError(f"billingMode must be one of {', '.join(BillingMode.ALL).lower()}")
    if billing_mode == BillingMode.DEFERRED and member is None:
        raise ValidationError("Deferred billing requires a member code")

    client_email = (data.get("clientEmail") or (member.email if member else "") or "").strip().lower()
    if not client_email:
        raise ValidationError("Missing required fields: clientEmail")
    resource, day, hour = slot_store.validate_tuple(data.get("resource"), data.get("date"), data.get("hour"))

    booking_id = str(data.get("id") or "").strip() or new_booking_id()
    if db.session.get(Booking, booking_id) is not None:
        raise ConflictError("Booking id already exists")

    booking = Booking(
        id=booking_id,
        client_name=(data.get("clientName") or (member.name if member else "") or "").strip() or None,
        client_email=client_email,
        client_phone=(data.get("clientPhone") or (member.phone if member else "") or "").strip() or None,
        resource=resource,
        date=day,
        hour=hour,
        amount=to_cents(data.get("amount"), current_app.config.get("DEFAULT_LESSON_PRICE", 0)),
        currency=current_app.config.get("CURRENCY", "usd"),
        billing_mode=billing_mode,
        status=BookingStatus.REQUESTED,
        payment_status=PaymentStatus.UNPAID,
        member_id=member.id if member else None,
    )
    _insert_booking(booking)
    # SlotConflict propagates unchanged; the pending booking is rolled back with it
    slot_store.reserve(resource, day, hour, booking_id=booking.id)
    db.session.commit()

    token = ConfirmationTokenCodec.from_app().encode(booking)
    log_event("BOOKING_REQUEST", actor=client_email, entity="booking", entity_id=booking.id,
              metadata={"resource": resource, "date": day.isoformat(), "hour": hour, "billing_mode": billing_mode})

    subject, body = booking_request_email(booking, token)
    ok, error = send_email(current_app.config.get("ADMIN_EMAIL"), subject, body)
    if not ok:
        _record_notification_failure(booking, {"admin": error})
    return booking, token, ok, error


def _booking_from_token(token: str):
    snapshot = ConfirmationTokenCodec.from_app().decode(token)
    booking = get_booking(snapshot["bookingId"])
    if (
        booking.resource != snapshot["resource"]
        or booking.date != date_type.fromisoformat(snapshot["date"])
        or booking.hour != snapshot["hour"]
        or booking.client_email != snapshot["clientEmail"]
    ):
        raise InvalidToken("Confirmation token does not match the booking")
    return booking


def _transition(booking, to_status: str, *guards, **values) -> bool:
    """Compare-and-set REQUESTED -> to_status. False when another request got there first."""
    result = db.session.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == BookingStatus.REQUESTED, *guards)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        return False
    db.session.refresh(booking)
    return True


def _raise_for_closed(booking):
    if booking.status == BookingStatus.CONFIRMED:
        raise AlreadyConfirmed("This booking has already been confirmed")
    raise BookingClosed(f"This booking is {booking.status.lower()}")


def _payment_link(booking):
    """Best-effort Stripe link for clients paying by card; None when unavailable."""
    if booking.billing_mode != BillingMode.IMMEDIATE or booking.payment_status == PaymentStatus.PAID:
        return None
    try:
        rail = get_rail("immediate")
        base_url = rail.settings.base_url
        session = rail.create_session(
            amount_cents=booking.amount,
            description=f"Private lesson on {booking.date.isoformat()} at {booking.hour}:00",
            success_url=f"{base_url}/booking-success?id={booking.id}&payment=success",
            cancel_url=f"{base_url}/book?payment=cancelled",
            customer_email=booking.client_email,
            metadata={"bookingId": booking.id, "date": booking.date.isoformat(), "hour": booking.hour},
        )
    except AppError as exc:
        logger.warning("Payment link for booking %s unavailable: %s", booking.id, exc.message)
        return None
    ledger.record_pending(booking, "STRIPE", session.id)
    db.session.commit()
    return session.url


def confirm(token: str):
    """Finalize the slot and confirm. Returns (booking, emails_sent)."""
    booking = _booking_from_token(token)
    if booking.status != BookingStatus.REQUESTED:
        _raise_for_closed(booking)

    slot = slot_store.slot_for_booking(booking)
    if slot is None:
        raise SlotConflict("The reservation for this booking was released")

    if not _transition(booking, BookingStatus.CONFIRMED, confirmed_at=datetime.utcnow()):
        booking = get_booking(booking.id)
        _raise_for_closed(booking)

    slot_store.finalize(slot, booking_id=booking.id)
    if booking.billing_mode == BillingMode.DEFERRED:
        auto_charge.register(booking)
    db.session.commit()
    log_event("BOOKING_CONFIRM", actor="admin", entity="booking", entity_id=booking.id)

    payment_url = _payment_link(booking)

    subject, body = client_confirmation_email(booking, payment_url)
    client_ok, client_error = send_email(booking.client_email, subject, body)
    subject, body = admin_confirmation_email(booking)
    admin_ok, admin_error = send_email(current_app.config.get("ADMIN_EMAIL"), subject, body)

    errors = {k: v for k, v in (("client", client_error), ("admin", admin_error)) if v}
    if errors:
        _record_notification_failure(booking, errors)
    return booking, {"client": client_ok, "admin": admin_ok}


def decline(token: str, reason: str = None):
    """Decline a requested booking and free its slot. Returns (booking, already_declined)."""
    booking = _booking_from_token(token)
    if booking.status == BookingStatus.DECLINED:
        return booking, True
    if booking.status != BookingStatus.REQUESTED:
        _raise_for_closed(booking)
    # a paid booking has to be refunded before it can be turned down
    if booking.payment_status == PaymentStatus.PAID:
        raise AlreadyPaid("This booking has already been paid and cannot be declined")

    if not _transition(booking, BookingStatus.DECLINED, Booking.payment_status != PaymentStatus.PAID,
                       cancelled_at=datetime.utcnow(), cancel_reason=(reason or "Declined")[:120]):
        booking = get_booking(booking.id)
        if booking.status == BookingStatus.DECLINED:
            return booking, True
        if booking.payment_status == PaymentStatus.PAID:
            raise AlreadyPaid("This booking has already been paid and cannot be declined")
        _raise_for_closed(booking)

    slot = slot_store.slot_for_booking(booking)
    if slot is not None:
        slot_store.release(slot)
    booking.payment_status = PaymentStatus.CANCELLED
    db.session.commit()
    log_event("BOOKING_DECLINE", actor="admin", entity="booking", entity_id=booking.id,
              metadata={"reason": reason})

    subject, body = decline_email(booking, reason)
    ok, error = send_email(booking.client_email, subject, body)
    if not ok:
        _record_notification_failure(booking, {"client": error})
    return booking, False


def start_immediate_checkout(data: dict):
    """Stripe Checkout for an Immediate booking.

    An unknown bookingId books the slot first; if the checkout cannot be
    created the slot is released again so nothing stays half-reserved.
    """
    data = data or {}
    booking_id = str(data.get("bookingId") or "").strip()
    booking = db.session.get(Booking, booking_id) if booking_id else None
    created_here = False

    if booking is not None:
        if booking.payment_status == PaymentStatus.PAID:
            raise AlreadyPaid("This booking has already been paid")
        if booking.status in CLOSED_STATUSES:
            raise BookingClosed(f"This booking is {booking.status.lower()}")
    else:
        client_email = (data.get("clientEmail") or "").strip().lower()
        if not client_email:
            raise ValidationError("Missing required fields: clientEmail")
        resource, day, hour = slot_store.validate_tuple(
            data.get("resource") or current_app.config["DEFAULT_RESOURCE"],
            data.get("date"),
            data.get("hour"),
        )
        booking = Booking(
            id=booking_id or new_booking_id(),
            client_name=(data.get("clientName") or "").strip() or None,
            client_email=client_email,
            resource=resource,
            date=day,
            hour=hour,
            amount=to_cents(data.get("amount"), current_app.config.get("DEFAULT_LESSON_PRICE", 0)),
            currency=current_app.config.get("CURRENCY", "usd"),
            billing_mode=BillingMode.IMMEDIATE,
            status=BookingStatus.REQUESTED,
            payment_status=PaymentStatus.UNPAID,
            checkout_hold=True,
        )
        _insert_booking(booking)
        slot_store.reserve(resource, day, hour, booking_id=booking.id)
        db.session.commit()
        created_here = True

    try:
        rail = get_rail("immediate")
        base_url = rail.settings.base_url
        session = rail.create_session(
            amount_cents=booking.amount,
            description=f"Private lesson on {booking.date.isoformat()} at {booking.hour}:00",
            success_url=f"{base_url}/booking-success?id={booking.id}&payment=success",
            cancel_url=f"{base_url}/book?payment=cancelled",
            customer_email=booking.client_email,
            metadata={
                "bookingId": booking.id,
                "date": booking.date.isoformat(),
                "hour": booking.hour,
                "clientName": booking.client_name or "",
            },
        )
    except ExternalServiceError:
        if created_here:
            slot = slot_store.slot_for_booking(booking)
            if slot is not None:
                slot_store.release(slot)
            booking.status = BookingStatus.CANCELLED
            booking.payment_status = PaymentStatus.CANCELLED
            booking.cancelled_at = datetime.utcnow()
            booking.cancel_reason = "Checkout could not be created"
            db.session.commit()
        raise

    ledger.record_pending(booking, "STRIPE", session.id)
    db.session.commit()
    log_event("PAYMENT_CHECKOUT_CREATED", actor=booking.client_email, entity="booking", entity_id=booking.id,
              metadata={"stripe_session_id": session.id})
    return booking, session


CLOSED_STATUSES = (BookingStatus.DECLINED, BookingStatus.CANCELLED)


def _post_refund_due(booking, provider: str, external_id: str):
    """Keep money that arrived for a closed booking on the ledger without reopening it."""
    if not ledger.post_refund_due(booking, provider, external_id):
        return
    db.session.commit()
    logger.warning("Payment %s received for %s booking %s; refund due", external_id, booking.status, booking.id)
    log_event("PAYMENT_REFUND_DUE", actor=provider.lower(), entity="booking", entity_id=booking.id,
              metadata={"provider": provider, "payment_id": external_id})


def _raise_refund_due(booking):
    raise BookingClosed(f"This booking is {booking.status.lower()}; the payment will be refunded", refundDue=True)


def verify_manual_payment(payment_id: str, booking_id: str) -> Booking:
    """Mark a booking Paid after PayPal reports the order COMPLETED."""
    payment_id = (payment_id or "").strip()
    if not payment_id or not booking_id:
        raise ValidationError("paymentId and bookingId are required")
    booking = get_booking(booking_id)

    existing = ledger.find_transaction(payment_id)
    if existing is not None and existing.posted:
        if existing.booking_id != booking.id:
            raise ConflictError("Payment already applied to another booking")
        if existing.refund_due:
            _raise_refund_due(booking)
        return booking
    if booking.payment_status == PaymentStatus.PAID:
        raise AlreadyPaid("This booking has already been paid")

    status = get_rail("manual").verify(payment_id)
    if booking.status in CLOSED_STATUSES:
        if status == "PAID":
            _post_refund_due(booking, "PAYPAL", payment_id)
            _raise_refund_due(booking)
        raise BookingClosed(f"This booking is {booking.status.lower()}")
    if status != "PAID":
        raise PaymentNotCompleted("Payment not completed", paymentStatus=status)

    ledger.post_charge(booking, "PAYPAL", payment_id)
    db.session.commit()
    log_event("PAYMENT_PAID", actor=booking.client_email, entity="booking", entity_id=booking.id,
              metadata={"provider": "PAYPAL", "payment_id": payment_id})
    return booking


def _booking_for_session(session: dict):
    meta = session.get("metadata") or {}
    booking = db.session.get(Booking, meta.get("bookingId") or "")
    if booking is None:
        txn = ledger.find_transaction(session.get("id"))
        booking = db.session.get(Booking, txn.booking_id) if txn else None
    if booking is None:
        logger.warning("Checkout session %s has no known booking", session.get("id"))
    return booking


def expire_checkout(session: dict):
    """Stripe checkout.session.expired: free the slot a checkout booked and never paid for."""
    booking = _booking_for_session(session)
    if booking is None or not booking.checkout_hold:
        return booking
    if booking.status != BookingStatus.REQUESTED or booking.payment_status != PaymentStatus.UNPAID:
        return booking
    if ledger.has_later_checkout(booking, session.get("id")):
        return booking

    if not _transition(booking, BookingStatus.CANCELLED, Booking.payment_status == PaymentStatus.UNPAID,
                       payment_status=PaymentStatus.CANCELLED, cancelled_at=datetime.utcnow(),
                       cancel_reason="Checkout expired"):
        return get_booking(booking.id)
    slot = slot_store.slot_for_booking(booking)
    if slot is not None:
        slot_store.release(slot)
    db.session.commit()
    log_event("PAYMENT_CHECKOUT_EXPIRED", actor="stripe", entity="booking", entity_id=booking.id,
              metadata={"stripe_session_id": session.get("id")})
    return booking


def complete_checkout(session: dict):
    """Stripe checkout.session.completed for a payment-mode session."""
    booking = _booking_for_session(session)
    if booking is None:
        return None
    if session.get("payment_status") not in ("paid", "no_payment_required"):
        return booking
    if booking.status in CLOSED_STATUSES:
        _post_refund_due(booking, "STRIPE", session["id"])
        return booking
    if ledger.post_charge(booking, "STRIPE", session["id"]):
        db.session.commit()
        log_event("PAYMENT_PAID", actor="stripe", entity="booking", entity_id=booking.id,
                  metadata={"stripe_session_id": session["id"]})
    return booking
