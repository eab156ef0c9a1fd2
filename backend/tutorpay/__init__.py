import logging
import os

import click
from flask import Flask, jsonify
from sqlalchemy import text

from tutorpay.config import Config
from tutorpay.extensions import db, migrate, cors
from tutorpay.segments.segment_disputes import disputes_bp
from tutorpay.segments.segment_escrow import escrow_bp
from tutorpay.segments.segment_payments import payments_bp
from tutorpay.segments.segment_reconciliation_admin import recon_bp
from tutorpay.segments.segment_settings import settings_bp
from tutorpay.segments.segment_wallets import admin_withdrawals_bp, wallets_bp
from tutorpay.utils.http_errors import register_error_handlers


def create_app(overrides: dict | None = None):
    app = Flask(__name__)

    env = (os.getenv("TUTORPAY_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")

    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # Ensure instance dir exists for SQLite paths
    os.makedirs(Config.INSTANCE_DIR, exist_ok=True)

    app.logger.setLevel(logging.DEBUG if env == "dev" else logging.INFO)

    # CORS configuration
    cors_origins = (app.config.get("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db)

    register_error_handlers(app)

    app.register_blueprint(escrow_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(disputes_bp)
    app.register_blueprint(wallets_bp)
    app.register_blueprint(admin_withdrawals_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(recon_bp)

    # Health check
    @app.get("/api/health")
    def health():
        db_state = "ok"
        try:
            db.session.execute(text("SELECT 1"))
        except Exception:
            db_state = "fail"
        return jsonify({
            "ok": True,
            "service": "tutorpay-backend",
            "env": env,
            "db": db_state,
        })

    @app.cli.command("reconcile-wallets")
    @click.option("--limit", default=500, show_default=True)
    def reconcile_wallets_command(limit):
        """Compare stored wallet buckets against the ledger."""
        from tutorpay.jobs.wallet_reconciler import reconcile_wallets

        res = reconcile_wallets(limit=limit)
        click.echo(f"checked={res['checked']} anomalies={res['anomalies']}")

    @app.cli.command("expire-payments")
    def expire_payments_command():
        """Mark abandoned pending checkouts as expired."""
        from tutorpay.jobs.payment_expiry import expire_stale_intents

        res = expire_stale_intents()
        click.echo(f"expired={res['expired']}")

    return app
