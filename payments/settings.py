from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PaymentSettings:
    """Provider keys handed explicitly to the rails that need them."""

    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    paypal_client_id: Optional[str] = None
    paypal_client_secret: Optional[str] = None
    paypal_environment: str = "sandbox"
    currency: str = "usd"
    base_url: str = "http://localhost:5002"

    @classmethod
    def from_config(cls, config) -> "PaymentSettings":
        return cls(
            stripe_secret_key=config.get("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            paypal_client_id=config.get("PAYPAL_CLIENT_ID"),
            paypal_client_secret=config.get("PAYPAL_CLIENT_SECRET"),
            paypal_environment=config.get("PAYPAL_ENVIRONMENT") or "sandbox",
            currency=(config.get("CURRENCY") or "usd").lower(),
            base_url=(config.get("BASE_URL") or "").rstrip("/"),
        )

    @property
    def paypal_api_url(self) -> str:
        if self.paypal_environment == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"
