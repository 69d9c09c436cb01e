from .health import health_bp
from .booking import booking_bp
from .members import members_bp
from .payments import payments_bp
from .stripe_webhook import webhook_bp
from .billing import billing_bp
from .recurring import recurring_bp
