from urllib.parse import urlencode

from flask import current_app

SIGNATURE = "Thank you,\nCourtSlot"


def format_when(booking) -> str:
    hour12 = booking.hour - 12 if booking.hour > 12 else (12 if booking.hour == 0 else booking.hour)
    ampm = "PM" if booking.hour >= 12 else "AM"
    return f"{booking.date.strftime('%A, %B %d, %Y')} at {hour12}:00 {ampm}"


def _money(cents: int, currency: str) -> str:
    return f"{cents / 100:.2f} {currency.upper()}"


def _link(path: str, **params) -> str:
    base_url = (current_app.config.get("BASE_URL") or "").rstrip("/")
    return f"{base_url}{path}?{urlencode(params)}" if params else f"{base_url}{path}"


def booking_request_email(booking, token: str):
    subject = f"New Lesson Request: {booking.client_name or 'Client'} - {format_when(booking)}"
    body = (
        f"A new lesson has been requested.\n\n"
        f"Client: {booking.client_name or '-'}\n"
        f"Email: {booking.client_email}\n"
        f"Phone: {booking.client_phone or '-'}\n"
        f"Court: {booking.resource}\n"
        f"When: {format_when(booking)}\n"
        f"Amount: {_money(booking.amount, booking.currency)}\n"
        f"Billing: {booking.billing_mode}\n\n"
        f"Confirm: {_link('/confirm-booking', token=token)}\n"
        f"Decline: {_link('/decline-booking', token=token)}\n"
    )
    return subject, body


def client_confirmation_email(booking, payment_url: str = None):
    subject = f"Lesson Confirmed - {format_when(booking)}"
    lines = [
        f"Hi {booking.client_name or 'there'},\n",
        f"Your lesson on {format_when(booking)} ({booking.resource}) is confirmed.",
    ]
    if booking.billing_mode == "DEFERRED" and booking.auto_charge_at:
        cancel_link = _link("/cancel-auto-charge", bookingId=booking.id)
        lines.append(
            f"Your card on file will be charged {_money(booking.amount, booking.currency)} "
            f"on {booking.auto_charge_at.strftime('%B %d at %H:%M')}."
        )
        lines.append(f"To stop the automatic charge, visit: {cancel_link}")
    elif payment_url:
        lines.append(f"You can pay {_money(booking.amount, booking.currency)} here: {payment_url}")
    lines.append(f"\n{SIGNATURE}")
    return subject, "\n".join(lines)


def admin_confirmation_email(booking):
    subject = f"Booking Confirmed: {booking.client_name or booking.client_email} - {format_when(booking)}"
    body = (
        f"You confirmed the lesson for {booking.client_name or booking.client_email}.\n\n"
        f"Court: {booking.resource}\n"
        f"When: {format_when(booking)}\n"
        f"Billing: {booking.billing_mode}\n"
        f"Booking ID: {booking.id}\n"
    )
    return subject, body


def decline_email(booking, reason: str = None):
    subject = f"Lesson Request Update - {format_when(booking)}"
    reason_line = f"\nNote: {reason}\n" if reason else ""
    body = (
        f"Hi {booking.client_name or 'there'},\n\n"
        f"Unfortunately the requested time ({format_when(booking)}) is not available.\n"
        f"{reason_line}\n"
        f"Please pick another time: {_link('/book')}\n\n"
        f"{SIGNATURE}"
    )
    return subject, body


def receipt_email(booking, name: str):
    subject = f"Payment Receipt - {_money(booking.amount, booking.currency)} - CourtSlot"
    body = (
        f"Hi {name},\n\n"
        f"Your card on file has been charged {_money(booking.amount, booking.currency)} "
        f"for your lesson on {format_when(booking)}.\n\n"
        f"{SIGNATURE}"
    )
    return subject, body


def charge_failed_email(booking, error: str, escalated: bool):
    status = "needs manual follow-up" if escalated else "will be retried"
    subject = f"Auto-charge failed for booking {booking.id}"
    body = (
        f"Auto-charge for {booking.client_name or booking.client_email} "
        f"({_money(booking.amount, booking.currency)}, {format_when(booking)}) failed.\n\n"
        f"Reason: {error}\n"
        f"Attempts: {booking.charge_attempts}\n"
        f"Status: {status}\n"
    )
    return subject, body


def member_welcome_email(member):
    subject = f"Welcome to CourtSlot - Your Member Code: {member.member_code}"
    body = (
        f"Welcome, {member.name}!\n\n"
        f"You're now a member. Your card has been saved securely.\n\n"
        f"Your Member Code: {member.member_code}\n\n"
        "When booking a lesson, just enter this code and your card on file "
        "will be charged automatically before your lesson.\n\n"
        f"{SIGNATURE}"
    )
    return subject, body


def admin_new_member_email(member):
    subject = f"New Member: {member.name} ({member.member_code})"
    body = f"{member.name} ({member.email}) just signed up as a member.\nMember code: {member.member_code}\n"
    return subject, body
