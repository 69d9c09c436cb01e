import logging

import httpx

from payments.base import CheckoutSession, PaymentRail, VerifyStatus
from payments.settings import PaymentSettings
from utils.errors import ExternalServiceError

logger = logging.getLogger(__name__)

PENDING_ORDER_STATUSES = {"CREATED", "SAVED", "APPROVED", "PAYER_ACTION_REQUIRED"}


class ManualVerifyRail(PaymentRail):
    """PayPal: the client pays out-of-band, the server only verifies the order."""

    name = "manual"
    provider = "PAYPAL"

    def __init__(self, settings: PaymentSettings, transport: httpx.BaseTransport = None):
        if not settings.paypal_client_id or not settings.paypal_client_secret:
            raise ExternalServiceError("PayPal is not configured")
        self.settings = settings
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.settings.paypal_api_url, timeout=10.0, transport=self._transport)

    def _access_token(self, client: httpx.Client) -> str:
        resp = client.post(
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.settings.paypal_client_id, self.settings.paypal_client_secret),
        )
        resp.raise_for_status()
        return resp.json()["access_token"]

    def create_session(self, amount_cents: int, description: str, success_url: str, cancel_url: str,
                       reference=None) -> CheckoutSession:
        body = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": str(reference or "lesson"),
                "description": description,
                "amount": {"currency_code": self.settings.currency.upper(), "value": f"{amount_cents / 100:.2f}"},
            }],
            "application_context": {"return_url": success_url, "cancel_url": cancel_url},
        }
        try:
            with self._client() as client:
                token = self._access_token(client)
                resp = client.post("/v2/checkout/orders", json=body, headers={"Authorization": f"Bearer {token}"})
                resp.raise_for_status()
                order = resp.json()
                order_id = order["id"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.exception("PayPal order creation failed")
            raise ExternalServiceError(f"Failed to create PayPal order: {exc}")

        approve = next(
            (link["href"] for link in order.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        return CheckoutSession(id=order_id, url=approve, raw=order)

    def order_status(self, order_id: str):
        try:
            with self._client() as client:
                token = self._access_token(client)
                resp = client.get(f"/v2/checkout/orders/{order_id}", headers={"Authorization": f"Bearer {token}"})
                if resp.status_code == 404:
                    return None
                resp.raise_for_status()
                return resp.json()["status"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.exception("PayPal order lookup failed")
            raise ExternalServiceError(f"PayPal verification failed: {exc}")

    def verify(self, payment_id: str) -> str:
        status = self.order_status(payment_id)
        # COMPLETED is the only success status
        if status == "COMPLETED":
            return VerifyStatus.PAID
        if status in PENDING_ORDER_STATUSES:
            return VerifyStatus.PENDING
        return VerifyStatus.FAILED
