from __future__ import annotations

import os
import subprocess
from pathlib import Path

from flask import Flask, g, jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from agriloop.cli import register_cli
from agriloop.config import cors_origins, deployment_env, load_settings
from agriloop.errors import MarketplaceError
from agriloop.extensions import cors, db, migrate
from agriloop.integrations.common import IntegrationMisconfiguredError
from agriloop.integrations.messaging.factory import messaging_health
from agriloop.integrations.payments.factory import payment_health
from agriloop.segments.segment_admin import admin_bp
from agriloop.segments.segment_bids import bids_bp
from agriloop.segments.segment_notifications import notifications_bp
from agriloop.segments.segment_orders import orders_bp
from agriloop.segments.segment_payments import payments_bp
from agriloop.utils.notify import EXTENSION_KEY, build_notifier
from agriloop.utils.observability import init_sentry, install_request_observers

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"


def _alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        cfg = Config(str(MIGRATIONS_DIR / "alembic.ini"))
        cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
        heads = ScriptDirectory.from_config(cfg).get_heads()
    except Exception:
        return "unknown"
    return heads[0] if heads else "unknown"


def _git_sha() -> str:
    pinned = (os.getenv("GIT_SHA") or os.getenv("SOURCE_VERSION") or "").strip()
    if pinned:
        return pinned
    try:
        out = subprocess.check_output(
            ["git", "rev-parse", "HEAD"],
            cwd=str(MIGRATIONS_DIR.parents[1]),
            stderr=subprocess.DEVNULL,
        )
    except (OSError, subprocess.CalledProcessError):
        return "unknown"
    return out.decode().strip()


def _error_response(status: int, code: str, message: str, details: dict | None = None):
    body = {"ok": False, "error": code, "message": message, "status": int(status)}
    if details is not None:
        body["details"] = details
    trace_id = (getattr(g, "request_id", "") or "").strip()
    if trace_id:
        body["trace_id"] = trace_id
    return jsonify(body), int(status)


def _register_error_handlers(app) -> None:
    @app.errorhandler(MarketplaceError)
    def _business_rule_refused(error: MarketplaceError):
        app.logger.info("business_rule_refused path=%s code=%s message=%s", request.path, error.code, error.message)
        return _error_response(error.status, error.code, error.message, dict(error.details))

    @app.errorhandler(IntegrationMisconfiguredError)
    def _integration_misconfigured(error: IntegrationMisconfiguredError):
        app.logger.warning("integration_misconfigured path=%s detail=%s", request.path, error)
        return _error_response(400, "INTEGRATION_MISCONFIGURED", "Payment provider not configured")

    @app.errorhandler(HTTPException)
    def _http_error(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        return _error_response(error.code or 500, error.name, error.description or error.name)

    @app.errorhandler(Exception)
    def _unhandled(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        return _error_response(500, "InternalServerError", "Internal server error")


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = deployment_env()
    load_settings(app, env)

    cors.init_app(app, resources={r"/api/*": {"origins": cors_origins(env)}})
    db.init_app(app)
    migrate.init_app(app, db, directory=str(MIGRATIONS_DIR))
    install_request_observers(app)

    app.extensions[EXTENSION_KEY] = build_notifier(app.config)
    if app.config["NOTIFY_DISPATCH"] == "celery":
        from agriloop.celery_app import create_celery_app

        app.extensions["celery"] = create_celery_app(app)

    _register_error_handlers(app)
    for blueprint in (bids_bp, orders_bp, payments_bp, admin_bp, notifications_bp):
        app.register_blueprint(blueprint)

    @app.get("/api/health")
    def health():
        payload = {
            "ok": True,
            "service": "agriloop-backend",
            "env": env,
            "db": "ok",
            "notifications": messaging_health(),
            "payments": payment_health(),
        }
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            app.logger.warning("health_db_probe_failed err=%s", e)
            payload["db"] = "fail"
            payload["db_error"] = str(e)[:300]
        return jsonify(payload)

    @app.get("/api/version")
    def version():
        return jsonify({"ok": True, "alembic_head": _alembic_head(), "git_sha": _git_sha()})

    @app.teardown_request
    def _release_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    register_cli(app)
    return app
