import uuid
from datetime import datetime, time
from models.db import db


def new_booking_id() -> str:
    return uuid.uuid4().hex


class BookingStatus:
    REQUESTED = "REQUESTED"
    CONFIRMED = "CONFIRMED"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"


class PaymentStatus:
    UNPAID = "UNPAID"
    AUTHORIZED_PENDING = "AUTHORIZED_PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class BillingMode:
    IMMEDIATE = "IMMEDIATE"
    DEFERRED = "DEFERRED"
    MANUAL = "MANUAL"

    ALL = (IMMEDIATE, DEFERRED, MANUAL)


class SeriesState:
    PLANNED = "PLANNED"    # future occurrence, may still be moved or cancelled
    REALIZED = "REALIZED"  # held or billed, kept as history


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.String(36), primary_key=True, default=new_booking_id)

    client_name = db.Column(db.String(120), nullable=True)
    client_email = db.Column(db.String(255), nullable=False, index=True)
    client_phone = db.Column(db.String(30), nullable=True)

    resource = db.Column(db.String(80), nullable=False)
    date = db.Column(db.Date, nullable=False, index=True)
    hour = db.Column(db.Integer, nullable=False)

    amount = db.Column(db.Integer, nullable=False, default=0)  # smallest unit (cents)
    currency = db.Column(db.String(10), nullable=False, default="usd")

    billing_mode = db.Column(db.String(20), nullable=False, default=BillingMode.IMMEDIATE)
    status = db.Column(db.String(20), nullable=False, default=BookingStatus.REQUESTED)
    payment_status = db.Column(db.String(20), nullable=False, default=PaymentStatus.UNPAID)

    member_id = db.Column(db.Integer, db.ForeignKey("members.id"), nullable=True, index=True)

    # Deferred billing
    auto_charge_at = db.Column(db.DateTime, nullable=True, index=True)
    auto_charge_cancelled = db.Column(db.Boolean, default=False, nullable=False)
    charge_attempts = db.Column(db.Integer, default=0, nullable=False)
    last_charge_error = db.Column(db.String(255), nullable=True)
    charge_escalated_at = db.Column(db.DateTime, nullable=True)
    charge_started_at = db.Column(db.DateTime, nullable=True)  # set while a charge is in flight

    # slot booked by a pay-now checkout; released again if that checkout expires
    checkout_hold = db.Column(db.Boolean, default=False, nullable=False)

    # Recurring series membership
    recurring_lesson_id = db.Column(db.Integer, db.ForeignKey("recurring_lessons.id"), nullable=True, index=True)
    series_state = db.Column(db.String(20), nullable=True)

    # Best-effort notification outcome (never rolls back the booking)
    notification_error = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(120), nullable=True)

    member = db.relationship("Member", backref=db.backref("bookings", lazy=True))

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, time(hour=self.hour))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "clientName": self.client_name,
            "clientEmail": self.client_email,
            "clientPhone": self.client_phone,
            "resource": self.resource,
            "date": self.date.isoformat(),
            "hour": self.hour,
            "amount": self.amount / 100,
            "amountCents": self.amount,
            "currency": self.currency,
            "billingMode": self.billing_mode,
            "status": self.status,
            "paymentStatus": self.payment_status,
            "memberId": self.member_id,
            "autoChargeAt": self.auto_charge_at.isoformat() if self.auto_charge_at else None,
            "auto_charge_cancelled": self.auto_charge_cancelled,
            "recurringLessonId": self.recurring_lesson_id,
            "seriesState": self.series_state,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
