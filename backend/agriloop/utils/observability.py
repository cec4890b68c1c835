from __future__ import annotations

import json
import os
import time
import uuid
from datetime import datetime

from flask import g, request

REQUEST_ID_HEADER = "X-Request-Id"
SCRUBBED_HEADERS = frozenset({"authorization", "cookie", "set-cookie", "stripe-signature"})


def get_request_id() -> str:
    """Trace id of the current request, or "" outside one."""
    return getattr(g, "request_id", "")


def _sample_rate() -> float:
    try:
        rate = float((os.getenv("SENTRY_TRACES_SAMPLE_RATE") or "0").strip())
    except ValueError:
        return 0.0
    return max(0.0, min(rate, 1.0))


def init_sentry(app) -> None:
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        app.logger.info("sentry_disabled_no_dsn")
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration()],
            environment=os.getenv("SENTRY_ENVIRONMENT") or os.getenv("AGRILOOP_ENV") or "dev",
            release=os.getenv("GIT_SHA") or "unknown",
            traces_sample_rate=_sample_rate(),
            send_default_pii=False,
            before_send=_before_send_scrub,
        )
    except Exception as e:
        # Error reporting must never keep the API from booting.
        app.logger.warning("sentry_init_failed err=%s", e)
        return
    app.logger.info("sentry_enabled")


def _before_send_scrub(event, hint):
    headers = (event.get("request") or {}).get("headers")
    if headers:
        for name in list(headers):
            if name.lower() in SCRUBBED_HEADERS:
                headers[name] = "[REDACTED]"
    return event


def install_request_observers(app) -> None:
    """Tag every request with a trace id and log one JSON line when it ends."""

    @app.before_request
    def _start_trace():
        g.request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip() or str(uuid.uuid4())
        g.request_started_at = time.perf_counter()

    @app.after_request
    def _finish_trace(response):
        trace_id = get_request_id() or str(uuid.uuid4())
        response.headers[REQUEST_ID_HEADER] = trace_id
        started = getattr(g, "request_started_at", None)
        app.logger.info(json.dumps({
            "ts": datetime.utcnow().isoformat(),
            "request_id": trace_id,
            "method": request.method,
            "path": request.path,
            "status": int(response.status_code),
            "latency_ms": round((time.perf_counter() - started) * 1000.0, 2) if started is not None else None,
            "user_id": getattr(g, "auth_user_id", None),
            "role": getattr(g, "auth_role", None),
        }))
        return response
