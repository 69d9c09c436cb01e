import stripe
from flask import Blueprint, current_app, request, jsonify

from payments import current_settings, get_rail
from payments.stripe_rails import construct_webhook_event
from services import booking_processor, members

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


@webhook_bp.post("/stripe")
def stripe_webhook():
    sig_header = request.headers.get("Stripe-Signature")
    payload = request.data

    try:
        event = construct_webhook_event(current_settings(), payload, sig_header)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        current_app.logger.warning("Rejected Stripe webhook: %s", exc)
        return jsonify(error="Invalid webhook signature"), 400

    if event["type"] == "checkout.session.completed":
        session = event["data"]["object"]
        if session.get("mode") == "setup":
            setup_intent = session.get("setup_intent")
            customer = session.get("customer")
            if customer and isinstance(setup_intent, str):
                payment_method_id = get_rail("setup").setup_intent_payment_method(setup_intent)
                members.attach_payment_method(customer, payment_method_id)
        else:
            booking_processor.complete_checkout(session)
    elif event["type"] == "checkout.session.expired":
        session = event["data"]["object"]
        if session.get("mode") != "setup":
            booking_processor.expire_checkout(session)

    return jsonify(received=True), 200
