from datetime import date as date_type, datetime, time

from flask import Blueprint, request, jsonify

from security.rbac import require_admin, require_cron_secret
from services import auto_charge
from services.booking_processor import get_booking
from utils.clock import club_now, to_club_local
from utils.errors import ValidationError

billing_bp = Blueprint("billing", __name__)


def resolve_as_of(as_of_str=None, date_str=None, now=None) -> datetime:
    """Logical billing time: explicit asOf wins, a past date means its end of day."""
    now = now or club_now()
    if as_of_str:
        try:
            return to_club_local(datetime.fromisoformat(as_of_str))
        except ValueError:
            raise ValidationError("Invalid asOf. Use ISO e.g. 2026-01-20T18:00:00")
    if date_str:
        try:
            day = date_type.fromisoformat(date_str)
        except ValueError:
            raise ValidationError("Invalid date. Use YYYY-MM-DD")
        if day > now.date():
            raise ValidationError("Cannot run billing for a future date")
        if day < now.date():
            return datetime.combine(day, time.max)
    return now


@billing_bp.route("/billing/run", methods=["GET", "POST"])
@require_cron_secret
def run_billing():
    data = (request.get_json(silent=True) or {}) if request.method == "POST" else {}
    as_of = resolve_as_of(
        data.get("asOf") or request.args.get("asOf"),
        data.get("date") or request.args.get("date"),
    )
    results = auto_charge.run_due(as_of)
    if not results:
        return jsonify(processed=0, asOf=as_of.isoformat(), message="No charges due"), 200
    return jsonify(processed=len(results), asOf=as_of.isoformat(), results=results), 200


# ---------- ADMIN: charge a member's card now ----------
@billing_bp.post("/charge-member")
@require_admin
def charge_member():
    data = request.get_json(silent=True) or {}
    booking = get_booking(data.get("bookingId"))
    result = auto_charge.charge_booking(booking, actor="admin", respect_cancel=False)
    status = 200 if result["success"] else 402
    return jsonify(result), status
