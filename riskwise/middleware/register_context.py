"""
Register context middleware.

Reads the caller's register context from request headers into ``flask.g``:

    X-User-Id   → g.user_id
    X-Period    → g.period   (falls back to app.config["DEFAULT_PERIOD"])
    X-Request-ID → g.request_id (generated when absent)

Register endpoints call ``require_register_context()``; requests without a
user or period are answered with 400 before any service runs. Identity is
taken at face value: authentication happens in front of this service.
"""

import logging
import time
import uuid

from flask import current_app, g, request

from riskwise.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Endpoints excluded from request logs (high frequency, low value)
_SKIP_LOG = frozenset({"/api/v1/health/live", "/api/v1/health/ready"})

SLOW_THRESHOLD_MS = 1000


def init_register_context(app):
    """Register before/after hooks for context extraction and request timing."""

    @app.before_request
    def _load_context():
        g.request_start = time.perf_counter()
        # the per-request register store is rebuilt from this request's headers
        g.pop("register_store", None)
        g.request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:12])
        g.user_id = (request.headers.get("X-User-Id") or "").strip() or None
        g.period = (
            (request.headers.get("X-Period") or "").strip()
            or current_app.config.get("DEFAULT_PERIOD")
            or None
        )

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = getattr(g, "request_id", "")

        if request.path in _SKIP_LOG:
            return response
        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "remote_addr": request.remote_addr,
            "request_id": getattr(g, "request_id", ""),
            "user_id": getattr(g, "user_id", None),
            "period": getattr(g, "period", None),
        }
        if duration_ms > SLOW_THRESHOLD_MS:
            logger.warning("Slow request: %s %s %d (%.0fms)",
                           request.method, request.path, response.status_code, duration_ms,
                           extra=extra)
        elif response.status_code >= 500:
            logger.error("Server error: %s %s %d (%.0fms)",
                         request.method, request.path, response.status_code, duration_ms,
                         extra=extra)
        else:
            logger.debug("Request: %s %s %d (%.0fms)",
                         request.method, request.path, response.status_code, duration_ms,
                         extra=extra)
        return response


def require_register_context():
    """Return (user_id, period, None) or (None, None, error_response)."""
    user_id = getattr(g, "user_id", None)
    period = getattr(g, "period", None)
    missing = {}
    if not user_id:
        missing["X-User-Id"] = "required"
    if not period:
        missing["X-Period"] = "required"
    if missing:
        return None, None, api_error(
            E.VALIDATION_REQUIRED, "X-User-Id and X-Period headers are required", details=missing,
        )
    return user_id, period, None
