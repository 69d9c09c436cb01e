import logging

from flask import Flask, jsonify
from flask_migrate import Migrate

from config import Config
from routes import health_bp, booking_bp, members_bp, payments_bp, webhook_bp, billing_bp, recurring_bp

from models import db
from utils.errors import AppError

logger = logging.getLogger(__name__)


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(members_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(recurring_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    @app.errorhandler(AppError)
    def _app_error(exc):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.code, exc.message)
        resp = jsonify(exc.to_dict())
        if "retryAfter" in exc.extra:
            resp.headers["Retry-After"] = str(exc.extra["retryAfter"])
        return resp, exc.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------
import click
from routes.billing import resolve_as_of
from services import auto_charge, recurring


def register_cli(app):
    @app.cli.command("run-billing")
    @click.option("--as-of", "as_of", default=None, help="Logical billing time, ISO e.g. 2026-01-20T18:00:00")
    def run_billing(as_of):
        """Charge every Deferred booking whose auto-charge time has passed."""
        try:
            when = resolve_as_of(as_of)
        except AppError as exc:
            raise click.BadParameter(exc.message, param_hint="--as-of")

        results = auto_charge.run_due(when)
        paid = sum(1 for r in results if r["success"])
        click.echo(f"{len(results)} processed as of {when.isoformat()}, {paid} paid")
        for r in results:
            if not r["success"]:
                click.echo(f"  {r['bookingId']}: {r.get('error') or r.get('skipped')}")

    @app.cli.command("extend-recurring")
    def extend_recurring():
        """Book open-ended recurring lessons out to the rolling horizon."""
        report = recurring.extend_open_series()
        for lesson_id, result in report.items():
            click.echo(f"series {lesson_id}: {len(result['created'])} created, {len(result['skipped'])} skipped")
        if not report:
            click.echo("No open-ended series")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
