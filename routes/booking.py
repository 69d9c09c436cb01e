from datetime import date as date_type

from flask import Blueprint, request, jsonify

from security.rate_limit import rate_limited
from services import auto_charge, booking_processor, slot_store
from utils.errors import ValidationError

booking_bp = Blueprint("booking", __name__)


# ---------- CLIENTS: request a lesson ----------
@booking_bp.post("/booking-request")
@rate_limited("booking-request")
def booking_request():
    data = request.get_json(silent=True) or {}
    booking = data.get("booking")
    if not isinstance(booking, dict):
        raise ValidationError("Missing required fields")

    row, _token, email_sent, email_error = booking_processor.submit(booking)
    body = {"success": True, "bookingId": row.id, "emailSent": email_sent}
    if email_error:
        body["emailError"] = email_error
    return jsonify(body), 200


# ---------- ADMIN (via emailed link): confirm / decline ----------
@booking_bp.post("/confirm-booking")
def confirm_booking():
    data = request.get_json(silent=True) or {}
    booking, emails_sent = booking_processor.confirm(data.get("token"))
    return jsonify(success=True, booking=booking.to_dict(), emailsSent=emails_sent), 200


@booking_bp.post("/decline-booking")
def decline_booking():
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or None
    booking, already = booking_processor.decline(data.get("token"), reason)
    body = {"success": True, "booking": booking.to_dict()}
    if already:
        body["alreadyDeclined"] = True
    return jsonify(body), 200


# ---------- CLIENTS: stop a deferred charge ----------
@booking_bp.post("/cancel-auto-charge")
def cancel_auto_charge():
    data = request.get_json(silent=True) or {}
    result = auto_charge.cancel(data.get("bookingId"))
    booking = result["booking"]
    body = {
        "success": True,
        "auto_charge_cancelled": booking.auto_charge_cancelled,
        "message": f"Auto-charge cancelled for {booking.client_name or 'client'}",
    }
    if result["alreadyCancelled"]:
        body["alreadyCancelled"] = True
        body["message"] = "Auto-charge was already cancelled"
    return jsonify(body), 200


# ---------- PUBLIC: availability ----------
@booking_bp.get("/slots")
def list_slots():
    resource = (request.args.get("resource") or "").strip()
    date_str = request.args.get("date")
    if not resource or not date_str:
        raise ValidationError("resource and date are required")
    try:
        day = date_type.fromisoformat(date_str)
    except ValueError:
        raise ValidationError("Invalid date. Use YYYY-MM-DD")

    return jsonify(resource=resource, date=day.isoformat(), taken=slot_store.occupied_hours(resource, day)), 200
