from urllib.parse import quote

from flask import Blueprint, current_app, jsonify, redirect, request

from security.rate_limit import rate_limited
from security.rbac import require_admin
from services import members
from utils.errors import AppError, InactiveMemberError, NotFoundError, ValidationError

members_bp = Blueprint("members", __name__)


@members_bp.post("/validate-member")
@rate_limited("validate-member")
def validate_member():
    data = request.get_json(silent=True) or {}
    try:
        member = members.validate(data.get("memberCode"))
    except (NotFoundError, InactiveMemberError, ValidationError) as exc:
        return jsonify(valid=False, error=exc.message), exc.status_code

    return jsonify(valid=True, member={
        "id": member.id,
        "name": member.name,
        "email": member.email,
        "phone": member.phone or "",
    }), 200


@members_bp.post("/update-member-card")
def update_member_card():
    data = request.get_json(silent=True) or {}
    checkout_url = members.bind_payment_method(data.get("memberCode"))
    return jsonify(success=True, checkoutUrl=checkout_url), 200


@members_bp.post("/create-member")
@rate_limited("create-member")
def create_member():
    data = request.get_json(silent=True) or {}
    checkout_url = members.start_signup(data.get("name"), data.get("email"), data.get("phone"))
    return jsonify(success=True, checkoutUrl=checkout_url), 200


# Stripe redirects here after a Setup-mode checkout
@members_bp.get("/member-callback")
def member_callback():
    base_url = (current_app.config.get("BASE_URL") or "").rstrip("/")
    session_id = request.args.get("session_id")
    if not session_id:
        return redirect(f"{base_url}/become-a-member?error=missing_session")

    try:
        member, _created = members.complete_setup_session(session_id)
    except AppError as exc:
        current_app.logger.warning("Member callback failed: %s", exc.message)
        return redirect(f"{base_url}/become-a-member?error={quote(exc.code)}")

    return redirect(
        f"{base_url}/become-a-member?success=true&code={quote(member.member_code)}&name={quote(member.name)}"
    )


# ---------- ADMIN: registry ----------
@members_bp.get("/members")
@require_admin
def list_members():
    include_inactive = request.args.get("active") != "true"
    return jsonify([m.to_dict() for m in members.list_members(include_inactive=include_inactive)]), 200


@members_bp.patch("/members/<int:member_id>")
@require_admin
def update_member(member_id: int):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    fields = dict(data)
    if "memberCode" in fields:
        fields["member_code"] = fields.pop("memberCode")
    member = members.update(member_id, fields)
    return jsonify(member.to_dict()), 200


@members_bp.delete("/members/<int:member_id>")
@require_admin
def delete_member(member_id: int):
    members.delete(member_id)
    return jsonify(message="Member removed"), 200
