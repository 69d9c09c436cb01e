from datetime import datetime
from models.db import db


class SlotState:
    FREE = "FREE"
    RESERVED = "RESERVED"
    BOOKED = "BOOKED"


class TimeSlot(db.Model):
    __tablename__ = "time_slots"

    id = db.Column(db.Integer, primary_key=True)

    resource = db.Column(db.String(80), nullable=False, index=True)  # e.g. court-1
    date = db.Column(db.Date, nullable=False, index=True)
    hour = db.Column(db.Integer, nullable=False)  # 0-23, lessons are one hour

    state = db.Column(db.String(20), nullable=False, default=SlotState.RESERVED)
    # state values: FREE, RESERVED, BOOKED
    booking_id = db.Column(db.String(36), db.ForeignKey("bookings.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        # One row per bookable tuple; acquiring it is what makes a reservation exclusive
        db.UniqueConstraint("resource", "date", "hour", name="uq_time_slot_tuple"),
    )
