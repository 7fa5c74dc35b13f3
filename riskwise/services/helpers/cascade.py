"""
Subtree purges for the risk register hierarchy.

All purges are query-level DELETE statements filtered by context, issued
inside the caller's transaction (nothing here commits). Deleting rows that
are already gone matches zero rows, so a repeated cascade is harmless.

Order matters when foreign keys are enforced: leaves first.

    purge_risk_cause_subtree([rc ids])        exposures → controls
    purge_potential_risk_subtree([pr ids])    ↑ + causes
    purge_goal_subtree(goal id)               ↑ + potential risks
"""

import logging

from sqlalchemy import delete, select

from riskwise.models import db
from riskwise.models.monitoring import RiskExposure
from riskwise.models.risk_register import ControlMeasure, PotentialRisk, RiskCause

logger = logging.getLogger(__name__)


def _delete_in(model, column, ids, user_id, period):
    if not ids:
        return 0
    stmt = (
        delete(model)
        .where(column.in_(list(ids)), model.user_id == user_id, model.period == period)
        .execution_options(synchronize_session="fetch")
    )
    return db.session.execute(stmt).rowcount or 0


def purge_exposures_for_causes(cause_ids, user_id):
    """Exposures are keyed by the session's period, so only user_id is checked."""
    if not cause_ids:
        return 0
    stmt = (
        delete(RiskExposure)
        .where(RiskExposure.risk_cause_id.in_(list(cause_ids)), RiskExposure.user_id == user_id)
        .execution_options(synchronize_session="fetch")
    )
    return db.session.execute(stmt).rowcount or 0


def purge_risk_cause_subtree(cause_ids, user_id, period):
    """Delete exposures and control measures under the given causes."""
    exposures = purge_exposures_for_causes(cause_ids, user_id)
    controls = _delete_in(ControlMeasure, ControlMeasure.risk_cause_id, cause_ids, user_id, period)
    logger.debug("Purged %d exposures, %d controls under %d causes",
                 exposures, controls, len(cause_ids))
    return {"risk_exposures": exposures, "control_measures": controls}


def purge_potential_risk_subtree(potential_risk_ids, user_id, period):
    """Delete causes (and everything under them) of the given potential risks."""
    if not potential_risk_ids:
        return {"risk_exposures": 0, "control_measures": 0, "risk_causes": 0}
    cause_ids = list(db.session.execute(
        select(RiskCause.id).where(
            RiskCause.potential_risk_id.in_(list(potential_risk_ids)),
            RiskCause.user_id == user_id,
            RiskCause.period == period,
        )
    ).scalars())
    counts = purge_risk_cause_subtree(cause_ids, user_id, period)
    counts["risk_causes"] = _delete_in(
        RiskCause, RiskCause.potential_risk_id, potential_risk_ids, user_id, period,
    )
    return counts


def purge_goal_subtree(goal_id, user_id, period):
    """Delete every potential risk of the goal and everything under them."""
    pr_ids = list(db.session.execute(
        select(PotentialRisk.id).where(
            PotentialRisk.goal_id == goal_id,
            PotentialRisk.user_id == user_id,
            PotentialRisk.period == period,
        )
    ).scalars())
    counts = purge_potential_risk_subtree(pr_ids, user_id, period)
    counts["potential_risks"] = _delete_in(
        PotentialRisk, PotentialRisk.goal_id, [goal_id], user_id, period,
    )
    return counts
