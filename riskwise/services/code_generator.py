"""
Sequence number generator for the risk register.

    Goal            max(sequence_number) per (user, period) + 1
    PotentialRisk   max per goal + 1
    RiskCause       max per potential risk + 1
    ControlMeasure  max per (risk cause, control type) + 1

Numbers are computed by callers *before* calling the entity services so
batch imports can keep incrementing locally across several inserts. Deleted
numbers are never reused because the next value always follows the highest
surviving one (a goal code is also never reused while a higher code exists).
"""

from sqlalchemy import func, select

from riskwise.core.exceptions import ValidationError
from riskwise.models import db
from riskwise.models.risk_register import ControlMeasure, Goal, PotentialRisk, RiskCause
from riskwise.services.helpers.scoped_queries import require_context
from riskwise.utils.helpers import store_io


def next_sequence_number(model, user_id, period, **scope) -> int:
    """Return 1 + the highest sequence_number among rows matching context + scope."""
    require_context(user_id, period)
    stmt = select(func.max(model.sequence_number)).where(
        model.user_id == user_id, model.period == period,
    )
    for field, value in scope.items():
        stmt = stmt.where(getattr(model, field) == value)

    with store_io(f"compute next {model.__name__} sequence number"):
        current = db.session.execute(stmt).scalar()
    return (current or 0) + 1


def next_goal_sequence(user_id, period) -> int:
    return next_sequence_number(Goal, user_id, period)


def next_potential_risk_sequence(goal_id, user_id, period) -> int:
    return next_sequence_number(PotentialRisk, user_id, period, goal_id=goal_id)


def next_risk_cause_sequence(potential_risk_id, user_id, period) -> int:
    return next_sequence_number(RiskCause, user_id, period, potential_risk_id=potential_risk_id)


def next_control_measure_sequence(risk_cause_id, control_type, user_id, period) -> int:
    return next_sequence_number(
        ControlMeasure, user_id, period, risk_cause_id=risk_cause_id, control_type=control_type,
    )


def validate_sequence_number(sequence_number):
    """Sequence numbers are positive integers; anything else is rejected before I/O."""
    if isinstance(sequence_number, bool) or not isinstance(sequence_number, int) or sequence_number < 1:
        raise ValidationError(
            "sequence_number must be a positive integer",
            details={"sequence_number": sequence_number},
        )
    return sequence_number
