"""Risk exposure service layer.

Transaction policy: functions flush(), never commit().

One exposure row per (monitoring session, risk cause). The row id is
derived from the pair, so an upsert is a primary-key lookup followed by
either a merge-update or an insert; the unique constraint on the pair
guards against a concurrent double insert.
"""
import logging

from riskwise.core.exceptions import ContextMismatchError, ValidationError
from riskwise.models import db
from riskwise.models.monitoring import (
    MONITORED_CONTROL_FIELDS,
    MonitoringSession,
    RiskExposure,
    exposure_id,
)
from riskwise.models.risk_register import RiskCause, _utcnow
from riskwise.services.helpers.scoped_queries import (
    get_in_context,
    get_in_context_or_none,
    query_in_context,
    require_context,
)
from riskwise.utils.helpers import store_io

logger = logging.getLogger(__name__)

_MERGEABLE = ("exposure_value", "exposure_unit", "exposure_notes", "monitored_controls")
_TEXT_DEFAULTS = {"monitoring_result_notes": "", "follow_up_plan": ""}


def _clean_exposure_value(value):
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise ValidationError("exposure_value must be numeric", details={"exposure_value": value})
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError("exposure_value must be numeric", details={"exposure_value": value})


def normalize_monitored_controls(items):
    """Keep known keys only; absent optional values become None (notes: "")."""
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("monitored_controls must be a list",
                              details={"monitored_controls": type(items).__name__})
    cleaned = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict) or not item.get("control_measure_id"):
            raise ValidationError(
                "Each monitored control needs a control_measure_id",
                details={"monitored_controls": idx},
            )
        row = {}
        for field in MONITORED_CONTROL_FIELDS:
            value = item.get(field)
            if value is None:
                value = _TEXT_DEFAULTS.get(field)
            row[field] = value
        cleaned.append(row)
    return cleaned


def get_risk_exposures_by_session(session_id, user_id, session_period):
    """Exposures recorded in one session, filtered by the session's own period."""
    require_context(user_id, session_period)
    if not session_id:
        logger.warning("get_risk_exposures_by_session called without a session id")
        return []
    stmt = query_in_context(
        RiskExposure, user_id, session_period, monitoring_session_id=session_id,
    ).order_by(RiskExposure.risk_cause_id)
    with store_io(f"list risk exposures for session {session_id}"):
        return list(db.session.execute(stmt).scalars())


def get_risk_exposure(session_id, risk_cause_id, user_id, session_period):
    return get_in_context_or_none(
        RiskExposure, exposure_id(session_id, risk_cause_id),
        user_id=user_id, period=session_period,
    )


def upsert_risk_exposure(data):
    """Create or merge-update the exposure for (session, cause).

    ``data`` must carry monitoring_session_id, risk_cause_id, user_id and
    period (the session's period). On update ``recorded_at`` is kept and
    ``updated_at`` refreshed; only keys present in ``data`` are overwritten.

    Returns:
        (RiskExposure, created: bool)
    """
    session_id = data.get("monitoring_session_id")
    cause_id = data.get("risk_cause_id")
    user_id = data.get("user_id")
    period = data.get("period")
    missing = {f: "required" for f in ("monitoring_session_id", "risk_cause_id", "user_id", "period")
               if not data.get(f)}
    if missing:
        raise ValidationError("Incomplete risk exposure data", details=missing)

    values = {}
    if "exposure_value" in data:
        values["exposure_value"] = _clean_exposure_value(data["exposure_value"])
    for field in ("exposure_unit", "exposure_notes"):
        if field in data:
            values[field] = data[field] if data[field] != "" else None
    if "monitored_controls" in data:
        values["monitored_controls"] = normalize_monitored_controls(data["monitored_controls"])

    get_in_context(MonitoringSession, session_id, user_id=user_id, period=period)
    cause = get_in_context(RiskCause, cause_id, user_id=user_id, period=period)

    row_id = exposure_id(session_id, cause_id)
    now = _utcnow()
    with store_io(f"save risk exposure {row_id}"):
        exposure = db.session.get(RiskExposure, row_id)
        created = exposure is None
        if created:
            exposure = RiskExposure(
                id=row_id,
                monitoring_session_id=session_id,
                risk_cause_id=cause_id,
                potential_risk_id=cause.potential_risk_id,
                goal_id=cause.goal_id,
                user_id=user_id,
                period=period,
                monitored_controls=[],
                recorded_at=now,
            )
            db.session.add(exposure)
        elif exposure.user_id != user_id or exposure.period != period:
            raise ContextMismatchError("RiskExposure", row_id, user_id=user_id, period=period)

        for field in _MERGEABLE:
            if field in values:
                setattr(exposure, field, values[field])
        exposure.potential_risk_id = data.get("potential_risk_id") or cause.potential_risk_id
        exposure.goal_id = data.get("goal_id") or cause.goal_id
        exposure.updated_at = now
        db.session.flush()

    logger.info("Risk exposure %s %s", row_id, "created" if created else "updated",
                extra={"user_id": user_id, "period": period})
    return exposure, created
