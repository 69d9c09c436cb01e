from datetime import datetime, timedelta
from functools import wraps

from flask import request, current_app
from sqlalchemy.exc import IntegrityError

from models import db
from models.ip_rate_limit import IpRateLimit
from utils.errors import RateLimited

def _client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    return forwarded.split(",")[0].strip() or request.remote_addr or "unknown"

def check_and_increment(scope: str) -> tuple[bool, int]:
    """
    Returns (allowed, retry_after_seconds).
    Simple fixed window per IP and scope.
    """
    ip = _client_ip()
    now = datetime.utcnow()

    window_seconds = current_app.config.get("PUBLIC_RATE_WINDOW_SECONDS", 60)
    max_requests = current_app.config.get("PUBLIC_RATE_MAX_REQUESTS", 20)

    row = IpRateLimit.query.filter_by(ip=ip, scope=scope).first()
    if not row:
        row = IpRateLimit(ip=ip, scope=scope, window_start=now, count=0)
        db.session.add(row)
        try:
            db.session.flush()
        except IntegrityError:
            # another request created the counter first
            db.session.rollback()
            row = IpRateLimit.query.filter_by(ip=ip, scope=scope).first()

    window_end = row.window_start + timedelta(seconds=window_seconds)

    # Reset window if expired
    if now >= window_end:
        row.window_start = now
        row.count = 0
        window_end = row.window_start + timedelta(seconds=window_seconds)

    row.count += 1
    db.session.commit()

    if row.count > max_requests:
        retry_after = int((window_end - now).total_seconds())
        return False, max(retry_after, 1)

    return True, 0

def rate_limited(scope: str):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            allowed, retry_after = check_and_increment(scope)
            if not allowed:
                raise RateLimited("Too many requests. Try again later.", retryAfter=retry_after)
            return fn(*args, **kwargs)
        return wrapper
    return decorator
