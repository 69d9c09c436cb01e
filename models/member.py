from datetime import datetime
from models.db import db


def normalize_member_code(value: str) -> str:
    return (value or "").strip().upper()


class Member(db.Model):
    __tablename__ = "members"

    id = db.Column(db.Integer, primary_key=True)

    member_code = db.Column(db.String(32), unique=True, nullable=False, index=True)  # stored normalized
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False, index=True)
    phone = db.Column(db.String(30), nullable=True)

    active = db.Column(db.Boolean, default=True, nullable=False)

    # Payment provider identity (Stripe customer + saved card)
    stripe_customer_id = db.Column(db.String(255), unique=True, nullable=True, index=True)
    payment_method_id = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    # deleting only hides the member; bookings keep pointing at the row
    deleted_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "memberCode": self.member_code,
            "name": self.name,
            "email": self.email,
            "phone": self.phone or "",
            "active": self.active,
            "hasCardOnFile": bool(self.payment_method_id),
        }
