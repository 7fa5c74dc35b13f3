"""
Context-scoped query helpers.

Every get-by-id in the risk register MUST go through these helpers instead
of ``db.session.get(Model, pk)``. A bare ``.get()`` ignores the
(user_id, period) context and would let one register read another's rows.

Usage:
    # Required lookup: raises NotFoundError / ContextMismatchError
    goal = get_in_context(Goal, goal_id, user_id=uid, period="2025")

    # Optional lookup: None when absent or owned by another context
    goal = get_in_context_or_none(Goal, goal_id, user_id=uid, period="2025")

    # Filtered list: context filters are always applied
    q = query_in_context(PotentialRisk, uid, "2025", goal_id=goal_id)

A mismatch is logged at WARNING level with both contexts so that support
can tell "deleted" from "wrong period selected" without exposing the
difference to callers.
"""

import logging

from sqlalchemy import select

from riskwise.core.exceptions import ContextMismatchError, NotFoundError, ValidationError
from riskwise.models import db
from riskwise.utils.helpers import store_io

logger = logging.getLogger(__name__)


def require_context(user_id, period):
    """Reject a missing user id or period before any I/O."""
    details = {}
    if not user_id or not str(user_id).strip():
        details["user_id"] = "required"
    if not period or not str(period).strip():
        details["period"] = "required"
    if details:
        raise ValidationError("user_id and period are required for every register operation",
                              details=details)


def get_in_context(model, pk, *, user_id, period):
    """Fetch one row by primary key and verify it belongs to (user_id, period).

    Raises:
        ValidationError: user_id/period missing, or pk empty.
        NotFoundError: no row with this pk.
        ContextMismatchError: the row exists but in another context.
        StoreIOError: the database call failed.
    """
    require_context(user_id, period)
    if not pk:
        raise ValidationError(f"{model.__name__} id is required", details={"id": "required"})

    with store_io(f"load {model.__name__} {pk}"):
        obj = db.session.get(model, pk)

    if obj is None:
        logger.debug("get_in_context: %s id=%s not found", model.__name__, pk)
        raise NotFoundError(resource=model.__name__, resource_id=pk)

    if obj.user_id != user_id or obj.period != period:
        logger.warning(
            "%s %s exists but does not match context user=%s period=%s (found user=%s period=%s)",
            model.__name__, pk, user_id, period, obj.user_id, obj.period,
            extra={"user_id": user_id, "period": period},
        )
        raise ContextMismatchError(
            resource=model.__name__, resource_id=pk, user_id=user_id, period=period,
        )
    return obj


def get_in_context_or_none(model, pk, *, user_id, period):
    """Same as get_in_context but returns None for absent or foreign rows.

    Still raises ValidationError for a missing context and StoreIOError on
    database failure: only "not there for you" becomes None.
    """
    try:
        return get_in_context(model, pk, user_id=user_id, period=period)
    except NotFoundError:
        return None


def get_owned_or_none(model, pk, *, user_id, period):
    """Lookup for mutations: None when absent, ContextMismatchError when foreign.

    Deletes use this so that removing an already-missing row is a no-op
    while touching another register's row is still refused.
    """
    try:
        return get_in_context(model, pk, user_id=user_id, period=period)
    except ContextMismatchError:
        raise
    except NotFoundError:
        return None


def query_in_context(model, user_id, period, **filters):
    """Return a SELECT for ``model`` filtered by context plus equality filters."""
    require_context(user_id, period)
    stmt = select(model).where(model.user_id == user_id, model.period == period)
    for field, value in filters.items():
        stmt = stmt.where(getattr(model, field) == value)
    return stmt
