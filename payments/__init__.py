from flask import current_app

from payments.base import ChargeResult, CheckoutSession, PaymentRail, VerifyStatus
from payments.paypal import ManualVerifyRail
from payments.settings import PaymentSettings
from payments.stripe_rails import ImmediateCheckoutRail, SetupCheckoutRail
from utils.errors import ValidationError

RAILS = {
    "immediate": ImmediateCheckoutRail,
    "setup": SetupCheckoutRail,
    "manual": ManualVerifyRail,
}


def current_settings() -> PaymentSettings:
    # rebuilt per call so config changes reach the next request
    return PaymentSettings.from_config(current_app.config)


def get_rail(kind: str, settings: PaymentSettings = None) -> PaymentRail:
    """Build the rail for 'immediate', 'setup' or 'manual'.

    Tests (or other deployments) can override a rail class through
    app.config["PAYMENT_RAILS"].
    """
    overrides = current_app.config.get("PAYMENT_RAILS") or {}
    rail_cls = overrides.get(kind) or RAILS.get(kind)
    if rail_cls is None:
        raise ValidationError(f"Unknown payment rail: {kind}")
    return rail_cls(settings or current_settings())
