from flask import Blueprint, request, jsonify

from services import booking_processor

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


@payments_bp.post("/stripe/create-checkout")
def create_stripe_checkout():
    data = request.get_json(silent=True) or {}
    booking, session = booking_processor.start_immediate_checkout(data)
    return jsonify(sessionId=session.id, url=session.url, bookingId=booking.id), 200


@payments_bp.post("/paypal")
def verify_paypal_payment():
    data = request.get_json(silent=True) or {}
    payment_id = data.get("paymentId")
    booking = booking_processor.verify_manual_payment(payment_id, data.get("bookingId"))
    return jsonify(success=True, paymentId=payment_id, bookingId=booking.id), 200
