from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from flask import current_app

from utils.errors import InvalidToken

TOKEN_SALT = "booking-confirm"
SNAPSHOT_FIELDS = ("bookingId", "clientName", "clientEmail", "resource", "date", "hour", "amount", "billingMode")


class ConfirmationTokenCodec:
    """Signed, expiring, URL-safe encoding of a booking snapshot."""

    def __init__(self, secret_key: str, max_age_seconds: int):
        self.max_age_seconds = max_age_seconds
        self._serializer = URLSafeTimedSerializer(secret_key, salt=TOKEN_SALT)

    @classmethod
    def from_app(cls):
        return cls(
            current_app.config["SECRET_KEY"],
            current_app.config.get("CONFIRM_TOKEN_MAX_AGE_SECONDS", 7 * 24 * 60 * 60),
        )

    @staticmethod
    def snapshot(booking) -> dict:
        return {
            "bookingId": booking.id,
            "clientName": booking.client_name,
            "clientEmail": booking.client_email,
            "resource": booking.resource,
            "date": booking.date.isoformat(),
            "hour": booking.hour,
            "amount": booking.amount,
            "billingMode": booking.billing_mode,
        }

    def encode(self, booking) -> str:
        return self._serializer.dumps(self.snapshot(booking))

    def decode(self, token: str) -> dict:
        if not token or not isinstance(token, str):
            raise InvalidToken("Missing confirmation token")
        try:
            data = self._serializer.loads(token, max_age=self.max_age_seconds)
        except SignatureExpired:
            raise InvalidToken("Confirmation link has expired")
        except BadSignature:
            raise InvalidToken("Invalid confirmation token")
        if not isinstance(data, dict) or any(k not in data for k in SNAPSHOT_FIELDS):
            raise InvalidToken("Invalid confirmation token")
        return data
