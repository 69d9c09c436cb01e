import json
import re
from datetime import date, timedelta

import httpx
import pytest
import stripe

from app import create_app
from config import TestConfig
from models import db
from models.member import Member
from payments.paypal import ManualVerifyRail

ADMIN = {"X-Admin-Secret": "admin-secret"}
CRON = {"X-Cron-Secret": "cron-secret"}
VALID_SIGNATURE = "t=1,v1=valid"


def future_day(days: int = 30) -> date:
    return date.today() + timedelta(days=days)


def token_from(outbox) -> str:
    for message in reversed(outbox):
        match = re.search(r"/confirm-booking\?token=(\S+)", message["body"])
        if match:
            return match.group(1)
    raise AssertionError("no confirmation link was emailed")


class FakeStripe:
    """In-memory stand-in for the Stripe resources the rails call."""

    def __init__(self):
        self.sessions = {}
        self.customers = {}
        self.intents = {}
        self.charge_keys = []
        self.payment_methods = {}
        self.decline = False
        self.fail_checkout = False

    def install(self, monkeypatch):
        monkeypatch.setattr(stripe.checkout.Session, "create", self.create_session)
        monkeypatch.setattr(stripe.checkout.Session, "retrieve", self.retrieve_session)
        monkeypatch.setattr(stripe.Customer, "create", self.create_customer)
        monkeypatch.setattr(stripe.PaymentIntent, "create", self.create_intent)
        monkeypatch.setattr(stripe.PaymentIntent, "retrieve", self.retrieve_intent)
        monkeypatch.setattr(stripe.PaymentMethod, "list", self.list_payment_methods)
        monkeypatch.setattr(stripe.SetupIntent, "retrieve", self.retrieve_setup_intent)
        monkeypatch.setattr(stripe.Webhook, "construct_event", self.construct_event)

    def create_session(self, api_key=None, **params):
        if self.fail_checkout:
            raise stripe.APIConnectionError("Stripe is unreachable")
        session_id = f"cs_test_{len(self.sessions) + 1}"
        session = {
            "id": session_id,
            "url": f"https://checkout.stripe.test/{session_id}",
            "status": "open",
            "payment_status": "unpaid",
            **params,
        }
        self.sessions[session_id] = session
        return session

    def retrieve_session(self, session_id, api_key=None, expand=None):
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError(f"No such checkout.session: {session_id}", "id")
        return self.sessions[session_id]

    def complete_setup(self, session_id, payment_method_id="pm_card_visa"):
        session = self.sessions[session_id]
        session["status"] = "complete"
        session["setup_intent"] = {"id": f"seti_{session_id}", "payment_method": payment_method_id}
        return session

    def create_customer(self, api_key=None, **params):
        customer_id = f"cus_test_{len(self.customers) + 1}"
        self.customers[customer_id] = params
        return {"id": customer_id, **params}

    def create_intent(self, api_key=None, idempotency_key=None, **params):
        self.charge_keys.append(idempotency_key)
        if idempotency_key in self.intents:
            return self.intents[idempotency_key]
        if self.decline:
            raise stripe.CardError("Your card was declined.", None, "card_declined")
        intent = {"id": f"pi_test_{len(self.intents) + 1}", "status": "succeeded", **params}
        self.intents[idempotency_key] = intent
        return intent

    def retrieve_intent(self, payment_id, api_key=None):
        for intent in self.intents.values():
            if intent["id"] == payment_id:
                return intent
        raise stripe.InvalidRequestError(f"No such payment_intent: {payment_id}", "id")

    def list_payment_methods(self, api_key=None, customer=None, **params):
        return {"data": [{"id": pm} for pm in self.payment_methods.get(customer, [])]}

    def retrieve_setup_intent(self, setup_intent_id, api_key=None):
        return {"id": setup_intent_id, "payment_method": f"pm_from_{setup_intent_id}"}

    def construct_event(self, payload, sig_header, secret):
        if sig_header != VALID_SIGNATURE:
            raise stripe.SignatureVerificationError("No signatures found matching the expected signature", sig_header)
        return json.loads(payload)


class FakePayPal:
    """Order statuses served through httpx.MockTransport."""

    def __init__(self):
        self.orders = {}
        self.requests = []
        self.garbled = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "A21-test", "token_type": "Bearer"})
        match = re.fullmatch(r"/v2/checkout/orders/([^/]+)", request.url.path)
        if match and request.method == "GET":
            if self.garbled:
                return httpx.Response(200, text="<html>upstream error</html>", headers={"Content-Type": "text/html"})
            status = self.orders.get(match.group(1))
            if status is None:
                return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})
            return httpx.Response(200, json={"id": match.group(1), "status": status})
        return httpx.Response(400, json={"name": "INVALID_REQUEST"})

    def rail(self, settings):
        return ManualVerifyRail(settings, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    fake.install(monkeypatch)
    return fake


@pytest.fixture
def fake_paypal():
    return FakePayPal()


@pytest.fixture
def app(tmp_path, fake_stripe, fake_paypal):
    class _Config(TestConfig):
        # file database so worker threads share it
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'courtslot-test.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}
        PAYMENT_RAILS = {"manual": fake_paypal.rail}

    app = create_app(_Config)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def outbox(app):
    return app.extensions.setdefault("mail_outbox", [])


@pytest.fixture
def make_member(app, fake_stripe):
    def _make(code="CS-M100", active=True, customer_id="cus_member_1", payment_method_id="pm_card_visa",
              name="Maria Lopez", email="maria@example.com"):
        member = Member(
            member_code=code,
            name=name,
            email=email,
            phone="555-0100",
            active=active,
            stripe_customer_id=customer_id,
            payment_method_id=payment_method_id,
        )
        db.session.add(member)
        db.session.commit()
        if customer_id and payment_method_id:
            fake_stripe.payment_methods[customer_id] = [payment_method_id]
        return member
    return _make
