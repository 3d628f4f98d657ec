import os
import logging

import click
from flask import Flask, jsonify

from paywall.config import config_by_name
from paywall.errors import PaywallError
from paywall.extensions import db, cors, limiter

logger = logging.getLogger(__name__)


def create_app(config_name=None, overrides=None):
    """Application factory.

    `overrides` is applied on top of the config class (tests use it to
    point the store at a temp file).
    """

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    if overrides:
        app.config.update(overrides)

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    limiter.init_app(app)
    cors.init_app(
        app,
        resources={r"/api/*": {"origins": app.config["CLIENT_URL"]}},
        methods=["GET", "POST", "OPTIONS"],
        supports_credentials=True,
    )

    # --- Import models so create_all() can discover them ---
    with app.app_context():
        from paywall import models  # noqa: F401
        db.create_all()

    # --- Payment store (loaded once, shared by every request) ---
    from paywall.services.payment_store import build_payment_store
    app.extensions["payment_store"] = build_payment_store(app)

    # --- Register blueprints ---
    from paywall.blueprints.api import api_bp
    from paywall.blueprints.webhooks import webhooks_bp

    app.register_blueprint(api_bp)
    app.register_blueprint(webhooks_bp)

    # --- Error handlers ---
    @app.errorhandler(PaywallError)
    def paywall_error(e):
        if e.status_code >= 500:
            logger.error(f"{type(e).__name__}: {e}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # JSON only: nothing to frame, nothing to load
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'"
        )
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Payment state must never be served from a cache
        response.headers["Cache-Control"] = "no-store"
        return response

    logger.info(f"CORS origin: {app.config['CLIENT_URL']}")
    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("show-payments")
    @click.option("--uid", default=None, help="Only show this uid")
    def show_payments(uid):
        """Print stored payment records with their paid/used/canRecord status.

        Usage:
            flask show-payments
            flask show-payments --uid user-123
        """
        from paywall.services.status_service import project_record

        records = app.extensions["payment_store"].snapshot()
        if uid is not None:
            records = {uid: records[uid]} if uid in records else {}

        if not records:
            click.echo("No payment records.")
            return

        click.echo("=" * 60)
        for record_uid, record in sorted(records.items()):
            status = project_record(record)
            click.echo(f"  {record_uid}")
            click.echo(
                f"    paid={status['paid']} used={status['used']} "
                f"canRecord={status['canRecord']}"
            )
            click.echo(f"    session:  {record.get('sessionId')}")
            click.echo(f"    payment:  {record.get('paymentId')}")
            click.echo(f"    paid at:  {record.get('paidAt') or record.get('when')}")
            click.echo(f"    used at:  {record.get('usedAt')}")
        click.echo("=" * 60)
        click.echo(f"{len(records)} record(s)")
