import logging

import stripe

from payments.base import ChargeResult, CheckoutSession, PaymentRail, VerifyStatus
from payments.settings import PaymentSettings
from utils.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class _StripeRail(PaymentRail):
    provider = "STRIPE"

    def __init__(self, settings: PaymentSettings):
        if not settings.stripe_secret_key:
            raise ExternalServiceError("Stripe secret key missing (STRIPE_SECRET_KEY)")
        self.settings = settings
        self.api_key = settings.stripe_secret_key

    def _session(self, **params) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        except stripe.StripeError as exc:
            logger.exception("Stripe checkout session creation failed")
            raise ExternalServiceError(f"Failed to create checkout session: {exc}")
        return CheckoutSession(id=session["id"], url=session["url"], raw=dict(session))


class ImmediateCheckoutRail(_StripeRail):
    """Hosted Stripe Checkout that charges at checkout time."""

    name = "immediate"

    def create_session(self, amount_cents: int, description: str, success_url: str, cancel_url: str,
                       customer_email=None, metadata=None) -> CheckoutSession:
        return self._session(
            mode="payment",
            payment_method_types=["card"],
            line_items=[{
                "price_data": {
                    "currency": self.settings.currency,
                    "product_data": {"name": "Tennis Lesson", "description": description},
                    "unit_amount": int(amount_cents),
                },
                "quantity": 1,
            }],
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=customer_email or None,
            metadata={k: str(v) for k, v in (metadata or {}).items()},
        )

    def verify(self, payment_id: str) -> str:
        try:
            session = stripe.checkout.Session.retrieve(payment_id, api_key=self.api_key)
        except stripe.InvalidRequestError:
            return VerifyStatus.FAILED
        except stripe.StripeError as exc:
            raise ExternalServiceError(f"Stripe lookup failed: {exc}")
        if session["payment_status"] in ("paid", "no_payment_required"):
            return VerifyStatus.PAID
        if session["status"] == "expired":
            return VerifyStatus.FAILED
        return VerifyStatus.PENDING


class SetupCheckoutRail(_StripeRail):
    """Card-on-file: Setup-mode Checkout stores a card, charges happen later off-session."""

    name = "setup"

    def create_customer(self, name: str, email: str, phone=None) -> str:
        try:
            customer = stripe.Customer.create(
                api_key=self.api_key,
                name=name,
                email=email,
                phone=phone or None,
                metadata={"source": "courtslot-member-signup"},
            )
        except stripe.StripeError as exc:
            logger.exception("Stripe customer creation failed")
            raise ExternalServiceError(f"Failed to create customer: {exc}")
        return customer["id"]

    def create_session(self, customer_id: str, success_url: str, cancel_url: str, metadata=None) -> CheckoutSession:
        return self._session(
            mode="setup",
            customer=customer_id,
            payment_method_types=["card"],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={k: str(v) for k, v in (metadata or {}).items()},
        )

    def retrieve_session(self, session_id: str) -> dict:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key, expand=["setup_intent"])
        except stripe.StripeError as exc:
            raise ExternalServiceError(f"Stripe lookup failed: {exc}")
        return session

    @staticmethod
    def session_payment_method(session):
        """Saved card of a completed setup session, when Stripe expanded it."""
        intent = session.get("setup_intent")
        if not intent or isinstance(intent, str):
            return None
        pm = intent.get("payment_method")
        if pm is None or isinstance(pm, str):
            return pm
        return pm.get("id")

    def setup_intent_payment_method(self, setup_intent_id: str):
        try:
            intent = stripe.SetupIntent.retrieve(setup_intent_id, api_key=self.api_key)
        except stripe.StripeError as exc:
            raise ExternalServiceError(f"Stripe lookup failed: {exc}")
        pm = intent.get("payment_method")
        return pm if pm is None or isinstance(pm, str) else pm.get("id")

    def default_payment_method(self, customer_id: str):
        try:
            methods = stripe.PaymentMethod.list(api_key=self.api_key, customer=customer_id, type="card", limit=1)
        except stripe.StripeError as exc:
            raise ExternalServiceError(f"Stripe lookup failed: {exc}")
        data = methods["data"]
        return data[0]["id"] if data else None

    def charge(self, customer_id: str, payment_method_id: str, amount_cents: int, description: str,
               idempotency_key: str, metadata=None) -> ChargeResult:
        """Off-session charge of a saved card. Card declines come back as ok=False."""
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                idempotency_key=idempotency_key,
                amount=int(amount_cents),
                currency=self.settings.currency,
                customer=customer_id,
                payment_method=payment_method_id,
                off_session=True,
                confirm=True,
                description=description,
                metadata={k: str(v) for k, v in (metadata or {}).items()},
            )
        except stripe.CardError as exc:
            return ChargeResult(ok=False, provider=self.provider, reason=exc.user_message or str(exc))
        except stripe.StripeError as exc:
            logger.exception("Stripe charge failed")
            raise ExternalServiceError(f"Stripe charge failed: {exc}")

        if intent["status"] != "succeeded":
            return ChargeResult(ok=False, provider=self.provider, external_id=intent["id"],
                                reason=f"Payment {intent['status']}")
        return ChargeResult(ok=True, provider=self.provider, external_id=intent["id"])

    def verify(self, payment_id: str) -> str:
        try:
            intent = stripe.PaymentIntent.retrieve(payment_id, api_key=self.api_key)
        except stripe.InvalidRequestError:
            return VerifyStatus.FAILED
        except stripe.StripeError as exc:
            raise ExternalServiceError(f"Stripe lookup failed: {exc}")
        if intent["status"] == "succeeded":
            return VerifyStatus.PAID
        if intent["status"] in ("canceled", "requires_payment_method"):
            return VerifyStatus.FAILED
        return VerifyStatus.PENDING


def construct_webhook_event(settings: PaymentSettings, payload: bytes, sig_header: str):
    if not settings.stripe_webhook_secret:
        raise ExternalServiceError("Webhook secret not configured")
    return stripe.Webhook.construct_event(payload, sig_header, settings.stripe_webhook_secret)
