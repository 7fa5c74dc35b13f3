"""Risk cause service layer.

Transaction policy: functions flush(), never commit().

Covers identification (description, source) and analysis (KRI, tolerance,
likelihood, impact). Score and level are derived in ``RiskCause.to_dict``;
nothing derived is persisted.
"""
import logging

from riskwise.core.exceptions import ValidationError
from riskwise.models import db
from riskwise.models.risk_register import (
    IMPACT_LEVELS,
    LIKELIHOOD_LEVELS,
    RISK_SOURCES,
    PotentialRisk,
    RiskCause,
    _utcnow,
)
from riskwise.services.code_generator import validate_sequence_number
from riskwise.services.helpers.cascade import purge_risk_cause_subtree
from riskwise.services.helpers.scoped_queries import (
    get_in_context,
    get_in_context_or_none,
    get_owned_or_none,
    query_in_context,
    require_context,
)
from riskwise.utils.helpers import store_io

logger = logging.getLogger(__name__)

ANALYSIS_FIELDS = ("key_risk_indicator", "risk_tolerance", "likelihood", "impact")


def _clean_description(value):
    text = value.strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError("Risk cause description is required",
                              details={"description": "required"})
    return text


def _clean_source(value):
    if value in (None, ""):
        return "Internal"
    if value not in RISK_SOURCES:
        raise ValidationError(f"Invalid source: {value}. Must be Internal or External",
                              details={"source": value})
    return value


def _clean_level(field, value, allowed):
    if value in (None, ""):
        return None
    if value not in allowed:
        raise ValidationError(
            f"Invalid {field}: {value}. Must be one of {', '.join(allowed)}",
            details={field: value},
        )
    return value


def _parent_risk(potential_risk_id, goal_id, user_id, period):
    parent = get_in_context(PotentialRisk, potential_risk_id, user_id=user_id, period=period)
    if goal_id is not None and parent.goal_id != goal_id:
        raise ValidationError(
            "goal_id does not match the potential risk's goal",
            details={"goal_id": goal_id, "expected": parent.goal_id},
        )
    return parent


def add_risk_cause(data, potential_risk_id, goal_id, user_id, period, sequence_number):
    """Create a risk cause under a potential risk. Returns the flushed row.

    Analysis fields may be supplied up front; when any is set the
    ``analysis_updated_at`` stamp is recorded.
    """
    require_context(user_id, period)
    validate_sequence_number(sequence_number)
    description = _clean_description(data.get("description"))
    source = _clean_source(data.get("source"))
    likelihood = _clean_level("likelihood", data.get("likelihood"), LIKELIHOOD_LEVELS)
    impact = _clean_level("impact", data.get("impact"), IMPACT_LEVELS)
    parent = _parent_risk(potential_risk_id, goal_id, user_id, period)

    cause = RiskCause(
        potential_risk_id=potential_risk_id,
        goal_id=parent.goal_id,
        user_id=user_id,
        period=period,
        sequence_number=sequence_number,
        description=description,
        source=source,
        key_risk_indicator=data.get("key_risk_indicator") or None,
        risk_tolerance=data.get("risk_tolerance") or None,
        likelihood=likelihood,
        impact=impact,
    )
    if any(getattr(cause, f) for f in ANALYSIS_FIELDS):
        cause.analysis_updated_at = _utcnow()
    with store_io(f"add risk cause to potential risk {potential_risk_id}"):
        db.session.add(cause)
        db.session.flush()
    logger.info("Risk cause PC%d added to potential risk %s", sequence_number, potential_risk_id,
                extra={"user_id": user_id, "period": period})
    return cause


def get_risk_cause_by_id(risk_cause_id, user_id, period):
    return get_in_context_or_none(RiskCause, risk_cause_id, user_id=user_id, period=period)


def list_risk_causes_by_potential_risk(potential_risk_id, user_id, period):
    """Causes of one potential risk ordered by sequence number."""
    stmt = query_in_context(RiskCause, user_id, period, potential_risk_id=potential_risk_id) \
        .order_by(RiskCause.sequence_number, RiskCause.created_at)
    with store_io(f"list risk causes for potential risk {potential_risk_id}"):
        return list(db.session.execute(stmt).scalars())


def list_risk_causes(user_id, period, goal_id=None):
    filters = {"goal_id": goal_id} if goal_id else {}
    stmt = query_in_context(RiskCause, user_id, period, **filters).order_by(
        RiskCause.potential_risk_id, RiskCause.sequence_number,
    )
    with store_io(f"list risk causes for {user_id}/{period}"):
        return list(db.session.execute(stmt).scalars())


def update_risk_cause(risk_cause_id, user_id, period, data):
    """Update identification and/or analysis fields.

    Touching any analysis field refreshes ``analysis_updated_at``.
    """
    cause = get_in_context(RiskCause, risk_cause_id, user_id=user_id, period=period)
    for field in ("potential_risk_id", "goal_id", "sequence_number"):
        if field in data and data[field] != getattr(cause, field):
            raise ValidationError(f"Risk cause {field} cannot be changed",
                                  details={field: "immutable"})

    if "description" in data:
        cause.description = _clean_description(data["description"])
    if "source" in data:
        cause.source = _clean_source(data["source"])

    analysis_touched = False
    if "likelihood" in data:
        cause.likelihood = _clean_level("likelihood", data["likelihood"], LIKELIHOOD_LEVELS)
        analysis_touched = True
    if "impact" in data:
        cause.impact = _clean_level("impact", data["impact"], IMPACT_LEVELS)
        analysis_touched = True
    for field in ("key_risk_indicator", "risk_tolerance"):
        if field in data:
            setattr(cause, field, data[field] or None)
            analysis_touched = True
    if analysis_touched:
        cause.analysis_updated_at = _utcnow()

    with store_io(f"update risk cause {risk_cause_id}"):
        db.session.flush()
    return cause


def delete_risk_cause(risk_cause_id, user_id, period):
    """Delete the cause, its control measures and its exposures. Missing ⇒ no-op."""
    cause = get_owned_or_none(RiskCause, risk_cause_id, user_id=user_id, period=period)
    if cause is None:
        logger.info("delete_risk_cause: %s already absent", risk_cause_id)
        return {}

    with store_io(f"delete risk cause {risk_cause_id} and its subtree"):
        counts = purge_risk_cause_subtree([risk_cause_id], user_id, period)
        db.session.delete(cause)
        db.session.flush()
    counts["risk_causes"] = 1
    logger.info("Risk cause %s deleted with subtree %s", risk_cause_id, counts,
                extra={"user_id": user_id, "period": period})
    return counts
