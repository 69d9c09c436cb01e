from flask import Blueprint, request, jsonify

from models.booking import Booking
from security.rbac import require_admin
from services import recurring
from utils.errors import ValidationError

recurring_bp = Blueprint("recurring", __name__, url_prefix="/recurring-lessons")


def _occurrences(lesson):
    return [b.to_dict() for b in lesson.bookings.order_by(Booking.date.asc(), Booking.created_at.asc())]


@recurring_bp.post("")
@require_admin
def create_recurring_lesson():
    data = request.get_json(silent=True) or {}
    lesson, report = recurring.create_series(data)
    return jsonify(lesson=lesson.to_dict(), created=report["created"], skipped=report["skipped"]), 201


@recurring_bp.get("")
@require_admin
def list_recurring_lessons():
    status = (request.args.get("status") or "").strip().upper()
    q = recurring.RecurringLesson.query
    if status:
        q = q.filter_by(status=status)
    rows = q.order_by(recurring.RecurringLesson.created_at.desc()).limit(200).all()
    return jsonify([r.to_dict() for r in rows]), 200


@recurring_bp.get("/<int:lesson_id>")
@require_admin
def get_recurring_lesson(lesson_id: int):
    lesson = recurring.get_lesson(lesson_id)
    return jsonify(lesson=lesson.to_dict(), occurrences=_occurrences(lesson)), 200


@recurring_bp.post("/<int:lesson_id>/cancel")
@require_admin
def cancel_recurring_lesson(lesson_id: int):
    result = recurring.cancel_series(lesson_id)
    return jsonify(lesson=result["lesson"].to_dict(), cancelled=result["cancelled"]), 200


@recurring_bp.post("/<int:lesson_id>/reschedule")
@require_admin
def reschedule_recurring_lesson(lesson_id: int):
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        raise ValidationError("Nothing to change")
    result = recurring.reschedule_series(lesson_id, data)
    return jsonify(
        lesson=result["lesson"].to_dict(),
        released=result["released"],
        created=result["created"],
        skipped=result["skipped"],
    ), 200


@recurring_bp.post("/<int:lesson_id>/occurrences/<date_str>/cancel")
@require_admin
def cancel_occurrence(lesson_id: int, date_str: str):
    booking = recurring.cancel_occurrence(lesson_id, date_str)
    return jsonify(booking.to_dict()), 200


@recurring_bp.post("/<int:lesson_id>/occurrences/<date_str>/restore")
@require_admin
def restore_occurrence(lesson_id: int, date_str: str):
    booking = recurring.restore_occurrence(lesson_id, date_str)
    return jsonify(booking.to_dict()), 200
