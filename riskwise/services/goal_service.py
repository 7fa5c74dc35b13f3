"""Goal service layer.

Transaction policy: functions flush(), never commit().
Caller (store or route handler) commits via commit_or_raise().

Operations:
- add / get / list / update goals within (user_id, period)
- delete a goal together with its whole subtree
"""
import logging

from riskwise.core.exceptions import ValidationError
from riskwise.models import db
from riskwise.models.risk_register import Goal, _utcnow
from riskwise.services.code_generator import validate_sequence_number
from riskwise.services.helpers.cascade import purge_goal_subtree
from riskwise.services.helpers.scoped_queries import (
    get_in_context,
    get_in_context_or_none,
    get_owned_or_none,
    query_in_context,
    require_context,
)
from riskwise.utils.helpers import store_io

logger = logging.getLogger(__name__)

_UPDATABLE = ("name", "description")


def _clean_name(value):
    name = (value or "").strip() if isinstance(value, str) else ""
    if not name:
        raise ValidationError("Goal name is required", details={"name": "required"})
    if len(name) > 300:
        raise ValidationError("Goal name is too long (max 300)", details={"name": "max_length"})
    return name


def add_goal(data, user_id, period, sequence_number):
    """Create a goal coded S{sequence_number}. Returns the flushed Goal."""
    require_context(user_id, period)
    validate_sequence_number(sequence_number)
    name = _clean_name(data.get("name"))

    goal = Goal(
        user_id=user_id,
        period=period,
        name=name,
        description=data.get("description") or "",
    )
    goal.assign_sequence(sequence_number)
    with store_io("add goal"):
        db.session.add(goal)
        db.session.flush()
    logger.info("Goal %s created", goal.code, extra={"user_id": user_id, "period": period})
    return goal


def get_goal_by_id(goal_id, user_id, period):
    """Goal or None (absent, or owned by another context)."""
    return get_in_context_or_none(Goal, goal_id, user_id=user_id, period=period)


def list_goals(user_id, period):
    """Goals of the context ordered by sequence number."""
    stmt = query_in_context(Goal, user_id, period).order_by(Goal.sequence_number, Goal.created_at)
    with store_io(f"list goals for {user_id}/{period}"):
        return list(db.session.execute(stmt).scalars())


def update_goal(goal_id, user_id, period, data):
    """Update name/description. Code and sequence are immutable."""
    goal = get_in_context(Goal, goal_id, user_id=user_id, period=period)
    for field in ("code", "sequence_number"):
        if field in data and data[field] != getattr(goal, field):
            raise ValidationError(f"Goal {field} cannot be changed", details={field: "immutable"})

    if "name" in data:
        goal.name = _clean_name(data["name"])
    if "description" in data:
        goal.description = data["description"] or ""
    goal.updated_at = _utcnow()
    with store_io(f"update goal {goal_id}"):
        db.session.flush()
    return goal


def delete_goal(goal_id, user_id, period):
    """Delete the goal and every descendant. Missing goal ⇒ no-op.

    Returns a dict of per-table delete counts (empty when nothing existed).
    """
    goal = get_owned_or_none(Goal, goal_id, user_id=user_id, period=period)
    if goal is None:
        logger.info("delete_goal: goal %s already absent", goal_id)
        return {}

    with store_io(f"delete goal {goal_id} and its subtree"):
        counts = purge_goal_subtree(goal_id, user_id, period)
        db.session.delete(goal)
        db.session.flush()
    counts["goals"] = 1
    logger.info("Goal %s deleted with subtree %s", goal.code, counts,
                extra={"user_id": user_id, "period": period})
    return counts

