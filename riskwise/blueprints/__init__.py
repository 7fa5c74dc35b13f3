"""
RiskWise
Blueprint helpers shared by the register and monitoring APIs.
"""

import logging

from flask import g, jsonify, request

from riskwise.core.exceptions import (
    ContextMismatchError,
    NotFoundError,
    PartialBatchFailure,
    StoreIOError,
    ValidationError,
)
from riskwise.middleware.register_context import require_register_context
from riskwise.services.app_store import RiskRegisterStore
from riskwise.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_items(items, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to an already-sorted list.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_page, total_count)
    """
    total = len(items)
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return items[offset:offset + limit], total


def request_store(load=False):
    """Return the per-request RiskRegisterStore bound to the header context.

    Returns (store, None) or (None, error_response). With ``load=True`` the
    register tree is fetched once per request.
    """
    user_id, period, err = require_register_context()
    if err:
        return None, err
    store = getattr(g, "register_store", None)
    if store is None:
        store = RiskRegisterStore().init(user_id, period)
        g.register_store = store
    if load and store.data_fetched_for_period != store.context:
        store.fetch_goals()
    return store, None


def json_body():
    return request.get_json(silent=True) or {}


def register_error_handlers(bp):
    """Map service exceptions to standard API errors on ``bp``."""

    @bp.errorhandler(ContextMismatchError)
    def _handle_context_mismatch(error):
        logger.info("Context mismatch on %s: %s", request.endpoint, error,
                    extra={"user_id": error.user_id, "period": error.period})
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error):
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ValidationError)
    def _handle_validation(error):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(PartialBatchFailure)
    def _handle_partial(error):
        return jsonify({
            "error": str(error),
            "code": E.PARTIAL_FAILURE,
            "items": [r.to_dict() for r in error.results],
        }), 207

    @bp.errorhandler(StoreIOError)
    def _handle_store_io(error):
        logger.error("Store failure on %s: %s", request.endpoint, error)
        return api_error(E.DATABASE, str(error))

    return bp
