"""Potential risk service layer.

Transaction policy: functions flush(), never commit().

A potential risk belongs to one goal; its sequence number is scoped per
goal and its display code is "{goal code}.PR{n}".
"""
import logging

from riskwise.core.exceptions import ValidationError
from riskwise.models import db
from riskwise.models.risk_register import RISK_CATEGORIES, Goal, PotentialRisk, _utcnow
from riskwise.services.code_generator import validate_sequence_number
from riskwise.services.helpers.cascade import purge_potential_risk_subtree
from riskwise.services.helpers.scoped_queries import (
    get_in_context,
    get_in_context_or_none,
    get_owned_or_none,
    query_in_context,
    require_context,
)
from riskwise.utils.helpers import store_io

logger = logging.getLogger(__name__)


def _clean_description(value):
    text = value.strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError("Potential risk description is required",
                              details={"description": "required"})
    return text


def _clean_category(value):
    if value in (None, ""):
        return None
    if value not in RISK_CATEGORIES:
        raise ValidationError(
            f"Invalid category: {value}. Must be one of {', '.join(RISK_CATEGORIES)}",
            details={"category": value},
        )
    return value


def add_potential_risk(data, goal_id, user_id, period, sequence_number):
    """Create a potential risk under ``goal_id``. Returns the flushed row."""
    require_context(user_id, period)
    validate_sequence_number(sequence_number)
    description = _clean_description(data.get("description"))
    category = _clean_category(data.get("category"))
    get_in_context(Goal, goal_id, user_id=user_id, period=period)

    risk = PotentialRisk(
        goal_id=goal_id,
        user_id=user_id,
        period=period,
        sequence_number=sequence_number,
        description=description,
        category=category,
        owner=(data.get("owner") or None),
    )
    with store_io(f"add potential risk to goal {goal_id}"):
        db.session.add(risk)
        db.session.flush()
    logger.info("Potential risk PR%d added to goal %s", sequence_number, goal_id,
                extra={"user_id": user_id, "period": period})
    return risk


def get_potential_risk_by_id(potential_risk_id, user_id, period):
    return get_in_context_or_none(PotentialRisk, potential_risk_id, user_id=user_id, period=period)


def list_potential_risks_by_goal(goal_id, user_id, period):
    """Potential risks of one goal ordered by sequence number."""
    stmt = query_in_context(PotentialRisk, user_id, period, goal_id=goal_id).order_by(
        PotentialRisk.sequence_number, PotentialRisk.identified_at,
    )
    with store_io(f"list potential risks for goal {goal_id}"):
        return list(db.session.execute(stmt).scalars())


def list_potential_risks(user_id, period):
    """Every potential risk in the context (goal, then sequence)."""
    stmt = query_in_context(PotentialRisk, user_id, period).order_by(
        PotentialRisk.goal_id, PotentialRisk.sequence_number,
    )
    with store_io(f"list potential risks for {user_id}/{period}"):
        return list(db.session.execute(stmt).scalars())


def update_potential_risk(potential_risk_id, user_id, period, data):
    """Update description/category/owner. Parent and sequence are fixed."""
    risk = get_in_context(PotentialRisk, potential_risk_id, user_id=user_id, period=period)
    for field in ("goal_id", "sequence_number"):
        if field in data and data[field] != getattr(risk, field):
            raise ValidationError(f"Potential risk {field} cannot be changed",
                                  details={field: "immutable"})

    if "description" in data:
        risk.description = _clean_description(data["description"])
    if "category" in data:
        risk.category = _clean_category(data["category"])
    if "owner" in data:
        risk.owner = data["owner"] or None
    risk.updated_at = _utcnow()
    with store_io(f"update potential risk {potential_risk_id}"):
        db.session.flush()
    return risk


def delete_potential_risk(potential_risk_id, user_id, period):
    """Delete the potential risk with its causes, controls and exposures.

    Missing id ⇒ no-op (returns {}).
    """
    risk = get_owned_or_none(PotentialRisk, potential_risk_id, user_id=user_id, period=period)
    if risk is None:
        logger.info("delete_potential_risk: %s already absent", potential_risk_id)
        return {}

    with store_io(f"delete potential risk {potential_risk_id} and its subtree"):
        counts = purge_potential_risk_subtree([potential_risk_id], user_id, period)
        db.session.delete(risk)
        db.session.flush()
    counts["potential_risks"] = 1
    logger.info("Potential risk %s deleted with subtree %s", potential_risk_id, counts,
                extra={"user_id": user_id, "period": period})
    return counts
