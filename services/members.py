import logging
import secrets
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import db
from models.member import Member, normalize_member_code
from payments import get_rail
from utils.audit import log_event
from utils.email_templates import admin_new_member_email, member_welcome_email
from utils.emailer import send_email
from utils.errors import InactiveMemberError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# No I, O, 0, 1 to avoid confusion when codes are read aloud
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 4
MAX_CODE_ATTEMPTS = 10

UPDATABLE_FIELDS = ("name", "email", "phone", "active", "member_code")


def _visible():
    return Member.query.filter(Member.deleted_at.is_(None))


def find_by_code(member_code: str):
    code = normalize_member_code(member_code)
    if not code:
        return None
    return _visible().filter_by(member_code=code).first()


def get_member(member_id: int) -> Member:
    member = _visible().filter_by(id=member_id).first()
    if not member:
        raise NotFoundError("Member not found")
    return member


def list_members(include_inactive: bool = True):
    q = _visible()
    if not include_inactive:
        q = q.filter_by(active=True)
    return q.order_by(Member.created_at.desc()).all()


def validate(member_code: str) -> Member:
    """Case-insensitive, trimmed lookup of an active member."""
    if not normalize_member_code(member_code):
        raise ValidationError("Member code is required")
    member = find_by_code(member_code)
    if not member:
        raise NotFoundError("Member code not found")
    if not member.active:
        raise InactiveMemberError("This membership is no longer active")
    return member


def generate_member_code() -> str:
    prefix = current_app.config.get("MEMBER_CODE_PREFIX", "")
    return prefix + "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def update(member_id: int, fields: dict) -> Member:
    """Partial update: keys missing from `fields` are left untouched."""
    member = get_member(member_id)
    unknown = set(fields) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(sorted(unknown))}")

    if "name" in fields:
        name = (fields["name"] or "").strip()
        if not name:
            raise ValidationError("name cannot be empty")
        member.name = name
    if "email" in fields:
        email = (fields["email"] or "").strip().lower()
        if not email:
            raise ValidationError("email cannot be empty")
        member.email = email
    if "phone" in fields:
        member.phone = (fields["phone"] or "").strip() or None
    if "active" in fields:
        if not isinstance(fields["active"], bool):
            raise ValidationError("active must be true or false")
        member.active = fields["active"]
    if "member_code" in fields:
        code = normalize_member_code(fields["member_code"])
        if not code:
            raise ValidationError("member_code cannot be empty")
        member.member_code = code

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("Member code already in use")

    log_event("MEMBER_UPDATE", actor="admin", entity="member", entity_id=member.id,
              metadata={"fields": sorted(fields)})
    return member


def delete(member_id: int) -> Member:
    """Hide the member from the registry. Historical bookings keep their member_id."""
    member = get_member(member_id)
    member.deleted_at = datetime.utcnow()
    member.active = False
    db.session.commit()
    log_event("MEMBER_DELETE", actor="admin", entity="member", entity_id=member.id)
    return member


def start_signup(name: str, email: str, phone=None) -> str:
    """New Stripe customer + Setup-mode checkout. The member row is created on callback."""
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name or not email:
        raise ValidationError("Name and email are required")

    rail = get_rail("setup")
    customer_id = rail.create_customer(name, email, phone)
    base_url = rail.settings.base_url
    session = rail.create_session(
        customer_id,
        success_url=f"{base_url}/member-callback?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base_url}/become-a-member?cancelled=true",
        metadata={"type": "signup", "customerName": name, "customerEmail": email, "customerPhone": phone or ""},
    )
    return session.url


def bind_payment_method(member_code: str) -> str:
    """Setup-mode checkout for an existing member's customer; no membership details re-entered."""
    if not normalize_member_code(member_code):
        raise ValidationError("Member code required")
    member = find_by_code(member_code)
    if not member:
        raise NotFoundError("Member not found")

    rail = get_rail("setup")
    if not member.stripe_customer_id:
        member.stripe_customer_id = rail.create_customer(member.name, member.email, member.phone)
        db.session.commit()

    base_url = rail.settings.base_url
    session = rail.create_session(
        member.stripe_customer_id,
        success_url=f"{base_url}/member-callback?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base_url}/member?card_cancelled=true",
        metadata={"type": "card-update", "memberId": member.id, "memberCode": member.member_code},
    )
    return session.url


def attach_payment_method(customer_id: str, payment_method_id: str):
    member = Member.query.filter_by(stripe_customer_id=customer_id).first()
    if not member or not payment_method_id:
        return None
    member.payment_method_id = payment_method_id
    db.session.commit()
    log_event("MEMBER_CARD_BOUND", actor="stripe", entity="member", entity_id=member.id)
    return member


def complete_setup_session(session_id: str):
    """Finish a Setup-mode checkout. Returns (member, created)."""
    if not session_id:
        raise ValidationError("Missing session_id")

    rail = get_rail("setup")
    session = rail.retrieve_session(session_id)
    customer = session.get("customer")
    if not customer:
        raise ValidationError("Checkout session has no customer")
    customer_id = customer if isinstance(customer, str) else customer["id"]
    payment_method_id = rail.session_payment_method(session)

    existing = Member.query.filter_by(stripe_customer_id=customer_id).first()
    if existing:
        if payment_method_id and existing.payment_method_id != payment_method_id:
            attach_payment_method(customer_id, payment_method_id)
        return existing, False

    meta = session.get("metadata") or {}
    name = meta.get("customerName") or ""
    email = meta.get("customerEmail") or session.get("customer_email") or ""
    phone = meta.get("customerPhone") or None

    member = None
    for _ in range(MAX_CODE_ATTEMPTS):
        member = Member(
            member_code=generate_member_code(),
            name=name,
            email=email.lower(),
            phone=phone,
            active=True,
            stripe_customer_id=customer_id,
            payment_method_id=payment_method_id,
        )
        db.session.add(member)
        try:
            db.session.commit()
            break
        except IntegrityError:
            db.session.rollback()
            # a concurrent callback for the same customer may have won
            winner = Member.query.filter_by(stripe_customer_id=customer_id).first()
            if winner:
                return winner, False
            member = None
    if member is None:
        raise ValidationError("Could not allocate a member code")

    log_event("MEMBER_CREATE", actor=member.email, entity="member", entity_id=member.id,
              metadata={"member_code": member.member_code})

    subject, body = member_welcome_email(member)
    ok, error = send_email(member.email, subject, body)
    if not ok:
        logger.warning("Welcome email for member %s failed: %s", member.id, error)
    subject, body = admin_new_member_email(member)
    send_email(current_app.config.get("ADMIN_EMAIL"), subject, body)
    return member, True
