from datetime import datetime
from models.db import db


class RecurringLesson(db.Model):
    __tablename__ = "recurring_lessons"

    id = db.Column(db.Integer, primary_key=True)

    client_name = db.Column(db.String(120), nullable=True)
    client_email = db.Column(db.String(255), nullable=False)
    client_phone = db.Column(db.String(30), nullable=True)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id"), nullable=True, index=True)

    resource = db.Column(db.String(80), nullable=False)
    day_of_week = db.Column(db.Integer, nullable=False)  # 0 = Monday
    hour = db.Column(db.Integer, nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    occurrences = db.Column(db.Integer, nullable=True)  # alternative to end_date

    amount = db.Column(db.Integer, nullable=False, default=0)  # smallest unit
    billing_mode = db.Column(db.String(20), nullable=False, default="DEFERRED")

    status = db.Column(db.String(20), nullable=False, default="ACTIVE")
    # status values: ACTIVE, CANCELLED

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    member = db.relationship("Member")
    bookings = db.relationship("Booking", backref="recurring_lesson", lazy="dynamic")

    @property
    def open_ended(self) -> bool:
        return self.end_date is None and self.occurrences is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "clientName": self.client_name,
            "clientEmail": self.client_email,
            "clientPhone": self.client_phone,
            "memberId": self.member_id,
            "resource": self.resource,
            "dayOfWeek": self.day_of_week,
            "hour": self.hour,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "occurrences": self.occurrences,
            "amount": self.amount / 100,
            "billingMode": self.billing_mode,
            "status": self.status,
        }
