import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to app.py as courtslot.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "courtslot.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # concurrent writers wait on the SQLite lock instead of failing fast
    SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}} if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {}

    # Public URL used in emailed links and Stripe redirects
    BASE_URL = os.getenv("BASE_URL", "http://localhost:5002")

    # Where booking requests and billing alerts are sent
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")

    # Shared secrets for admin endpoints and the billing trigger
    ADMIN_API_SECRET = os.getenv("ADMIN_API_SECRET")
    CRON_SECRET = os.getenv("CRON_SECRET")

    # Lesson times are stored in club-local time
    CLUB_TIMEZONE = os.getenv("CLUB_TIMEZONE", "America/New_York")

    # Pricing (major units, converted to cents on input)
    CURRENCY = os.getenv("CURRENCY", "usd")
    DEFAULT_LESSON_PRICE = int(os.getenv("DEFAULT_LESSON_PRICE", "60"))
    DEFAULT_RESOURCE = os.getenv("DEFAULT_RESOURCE", "court-1")

    # Fixed-window throttling of public endpoints, per client IP
    PUBLIC_RATE_WINDOW_SECONDS = int(os.getenv("PUBLIC_RATE_WINDOW_SECONDS", "60"))
    PUBLIC_RATE_MAX_REQUESTS = int(os.getenv("PUBLIC_RATE_MAX_REQUESTS", "20"))

    # Confirmation links expire after 7 days
    CONFIRM_TOKEN_MAX_AGE_SECONDS = int(os.getenv("CONFIRM_TOKEN_MAX_AGE_SECONDS", str(7 * 24 * 60 * 60)))

    # Auto-charge policy
    AUTO_CHARGE_LEAD_HOURS = int(os.getenv("AUTO_CHARGE_LEAD_HOURS", "24"))
    AUTO_CHARGE_MAX_ATTEMPTS = int(os.getenv("AUTO_CHARGE_MAX_ATTEMPTS", "3"))
    # a claimed charge older than this is treated as abandoned
    AUTO_CHARGE_LEASE_SECONDS = int(os.getenv("AUTO_CHARGE_LEASE_SECONDS", "600"))

    # Open-ended recurring lessons are kept booked this far ahead
    RECURRING_WEEKS_AHEAD = int(os.getenv("RECURRING_WEEKS_AHEAD", "8"))

    # Member codes look like CS-7KQ2
    MEMBER_CODE_PREFIX = os.getenv("MEMBER_CODE_PREFIX", "CS-")

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

    # PayPal (manual payments are verified against the orders API)
    PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID")
    PAYPAL_CLIENT_SECRET = os.getenv("PAYPAL_CLIENT_SECRET")
    PAYPAL_ENVIRONMENT = os.getenv("PAYPAL_ENVIRONMENT", "sandbox")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
    # Record outgoing mail in app.extensions["mail_outbox"] instead of sending
    MAIL_SUPPRESS_SEND = os.getenv("MAIL_SUPPRESS_SEND", "false").lower() == "true"

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    BASE_URL = "http://testserver"
    ADMIN_EMAIL = "admin@courtslot.test"
    ADMIN_API_SECRET = "admin-secret"
    CRON_SECRET = "cron-secret"
    STRIPE_SECRET_KEY = "sk_test_123"
    STRIPE_WEBHOOK_SECRET = "whsec_test"
    PAYPAL_CLIENT_ID = "paypal-client"
    PAYPAL_CLIENT_SECRET = "paypal-secret"
    MAIL_SUPPRESS_SEND = True
    PUBLIC_RATE_MAX_REQUESTS = 1000
