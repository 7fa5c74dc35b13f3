"""JSON error bodies shared by the register blueprints.

    return api_error(E.NOT_FOUND, "Goal not found")
    return api_error(E.PARTIAL_FAILURE, "2 of 5 failed", details=result.to_dict())

Every body carries ``error`` (text) and ``code`` (one of ``E``), plus
``details`` when there is something structured to report.
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes returned in the ``code`` field."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"   # missing register context
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"     # rejected field values
    NOT_FOUND = "ERR_NOT_FOUND"                       # absent, or another user's register
    PARTIAL_FAILURE = "ERR_PARTIAL_FAILURE"           # batch with failed items
    DATABASE = "ERR_DATABASE"


_STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.PARTIAL_FAILURE: 207,
    E.DATABASE: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for a register error; ``status`` overrides the code's default."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)
