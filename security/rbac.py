import hmac
from functools import wraps
from flask import current_app, request

from utils.errors import AuthorizationError


def _presented_secret(header_name: str):
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[len("Bearer "):].strip()
    return request.headers.get(header_name)


def secret_matches(config_key: str, header_name: str) -> bool:
    expected = current_app.config.get(config_key)
    presented = _presented_secret(header_name)
    if not expected or not presented:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))


def require_admin(fn):
    """
    Usage: @require_admin
    Closed when ADMIN_API_SECRET is not configured.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not secret_matches("ADMIN_API_SECRET", "X-Admin-Secret"):
            raise AuthorizationError("Invalid or missing admin secret")
        return fn(*args, **kwargs)
    return wrapper


def require_cron_secret(fn):
    """
    Usage: @require_cron_secret
    Only enforced when CRON_SECRET is configured, so local timers work without one.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if current_app.config.get("CRON_SECRET") and not secret_matches("CRON_SECRET", "X-Cron-Secret"):
            raise AuthorizationError("Invalid or missing cron secret")
        return fn(*args, **kwargs)
    return wrapper
