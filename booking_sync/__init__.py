import os
import logging

import click
from flask import Flask, jsonify

from booking_sync.config import config_by_name
from booking_sync.extensions import db, migrate, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from booking_sync import models  # noqa: F401

    # --- Register blueprints ---
    from booking_sync.blueprints.webhooks import webhooks_bp
    from booking_sync.blueprints.bookings import bookings_bp

    app.register_blueprint(webhooks_bp)
    app.register_blueprint(bookings_bp)

    # Exempt webhooks from CSRF: raw body needed for signature verification
    csrf.exempt(webhooks_bp)

    # --- Health check ---
    @app.route("/healthz")
    def healthz():
        return jsonify({"status": "ok"}), 200

    # --- Error handlers ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

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
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-session-types")
    @click.option("--builder-id", default="builder_demo", help="Builder the session types belong to")
    @click.option("--scheduling-url", default="https://calendly.com/demo-builder",
                  help="Base Calendly scheduling URL for the builder")
    def seed_session_types(builder_id, scheduling_url):
        """Create a free and a paid demo session type.

        Usage:
            flask seed-session-types
            flask seed-session-types --builder-id b_123 --scheduling-url https://calendly.com/jane
        """
        from booking_sync.models.session_type import SessionType

        currency = app.config.get("BOOKING_CURRENCY", "usd")
        demo = [
            ("Free intro call", 0, 30, "intro"),
            ("AI app build session", 9900, 60, "build-session"),
        ]
        created = []
        for title, price, minutes, slug in demo:
            existing = SessionType.query.filter_by(builder_id=builder_id, title=title).first()
            if existing:
                click.echo(f"Session type already exists: {title} ({existing.id})")
                continue
            session_type = SessionType(
                builder_id=builder_id,
                title=title,
                price=price,
                currency=currency,
                duration_minutes=minutes,
                calendly_scheduling_url=f"{scheduling_url.rstrip('/')}/{slug}",
            )
            db.session.add(session_type)
            created.append(session_type)
        db.session.commit()

        for session_type in created:
            click.echo(
                f"  Created: {session_type.title} (id: {session_type.id}, "
                f"price: {session_type.price / 100:.2f} {session_type.currency.upper()})"
            )

    @app.cli.command("dispatch-notifications")
    @click.option("--limit", default=100, show_default=True, help="Max commands to send.")
    def dispatch_notifications(limit):
        """Send notification commands that committed but were never dispatched.

        Usage:
            flask dispatch-notifications
            flask dispatch-notifications --limit 500
        """
        from booking_sync.services.notification_service import dispatch_pending

        sent = dispatch_pending(limit=limit)
        click.echo(f"Dispatched {sent} notification(s).")

    @app.cli.command("prune-ledger")
    @click.option("--days", default=30, show_default=True,
                  help="Delete processed-event rows older than this many days.")
    def prune_ledger(days):
        """Prune the processed-event ledger.

        Keep well beyond the providers' retry windows (Stripe: 3 days).
        """
        from booking_sync.services.reconciliation_store import prune_processed

        if days < 7:
            raise click.BadParameter("must be at least 7", param_hint="--days")
        deleted = prune_processed(days)
        click.echo(f"Pruned {deleted} ledger entries.")
