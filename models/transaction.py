from datetime import datetime
from models.db import db

class Transaction(db.Model):
    __tablename__ = "transactions"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.String(36), db.ForeignKey("bookings.id"), nullable=False, index=True)

    provider = db.Column(db.String(20), nullable=False, default="STRIPE")  # STRIPE, PAYPAL
    kind = db.Column(db.String(20), nullable=False, default="CHARGE")  # CHARGE, REFUND
    amount = db.Column(db.Integer, nullable=False)   # smallest unit, negative for refunds
    currency = db.Column(db.String(10), nullable=False, default="usd")

    # provider charge reference (PaymentIntent, Checkout Session, PayPal order)
    external_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    posted = db.Column(db.Boolean, default=False, nullable=False)
    # money received for a booking that was already closed
    refund_due = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    posted_at = db.Column(db.DateTime, nullable=True)
