"""Monitoring session service layer.

Transaction policy: functions flush(), never commit().

A session is created in the caller's active period and keeps that period
for life; its exposures are keyed by it.
"""
import logging

from sqlalchemy import delete

from riskwise.core.exceptions import ValidationError
from riskwise.models import db
from riskwise.models.monitoring import MONITORING_STATUSES, MonitoringSession, RiskExposure
from riskwise.models.risk_register import _utcnow
from riskwise.services.helpers.scoped_queries import (
    get_in_context,
    get_in_context_or_none,
    get_owned_or_none,
    query_in_context,
    require_context,
)
from riskwise.utils.helpers import parse_date_input, store_io

logger = logging.getLogger(__name__)


def _clean_name(value):
    name = value.strip() if isinstance(value, str) else ""
    if not name:
        raise ValidationError("Monitoring session name is required", details={"name": "required"})
    return name


def _clean_status(value):
    if value in (None, ""):
        return "Active"
    if value not in MONITORING_STATUSES:
        raise ValidationError(
            f"Invalid status: {value}. Must be one of {', '.join(MONITORING_STATUSES)}",
            details={"status": value},
        )
    return value


def _check_dates(start_date, end_date):
    if start_date is None or end_date is None:
        missing = {f: "required" for f, v in (("start_date", start_date), ("end_date", end_date))
                   if v is None}
        raise ValidationError("start_date and end_date are required", details=missing)
    if end_date < start_date:
        raise ValidationError(
            "end_date must not be before start_date",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


def add_monitoring_session(data, user_id, period):
    """Create a session (status defaults to Active)."""
    require_context(user_id, period)
    name = _clean_name(data.get("name"))
    start_date = parse_date_input(data.get("start_date"), "start_date")
    end_date = parse_date_input(data.get("end_date"), "end_date")
    _check_dates(start_date, end_date)

    session = MonitoringSession(
        user_id=user_id,
        period=period,
        name=name,
        start_date=start_date,
        end_date=end_date,
        status=_clean_status(data.get("status")),
    )
    with store_io("add monitoring session"):
        db.session.add(session)
        db.session.flush()
    logger.info("Monitoring session '%s' created", name, extra={"user_id": user_id, "period": period})
    return session


def get_monitoring_session_by_id(session_id, user_id, period):
    return get_in_context_or_none(MonitoringSession, session_id, user_id=user_id, period=period)


def list_monitoring_sessions(user_id, period):
    """Sessions of the context, most recent end date first."""
    stmt = query_in_context(MonitoringSession, user_id, period).order_by(
        MonitoringSession.end_date.desc(), MonitoringSession.created_at.desc(),
    )
    with store_io(f"list monitoring sessions for {user_id}/{period}"):
        return list(db.session.execute(stmt).scalars())


def update_monitoring_session(session_id, user_id, period, data):
    """Update name, dates or status; the end ≥ start rule is re-checked."""
    session = get_in_context(MonitoringSession, session_id, user_id=user_id, period=period)
    if "name" in data:
        session.name = _clean_name(data["name"])
    if "status" in data:
        session.status = _clean_status(data["status"])
    start_date = session.start_date
    end_date = session.end_date
    if "start_date" in data:
        start_date = parse_date_input(data["start_date"], "start_date")
    if "end_date" in data:
        end_date = parse_date_input(data["end_date"], "end_date")
    _check_dates(start_date, end_date)
    session.start_date = start_date
    session.end_date = end_date
    session.updated_at = _utcnow()
    with store_io(f"update monitoring session {session_id}"):
        db.session.flush()
    return session


def delete_monitoring_session(session_id, user_id, period):
    """Delete the session and all of its exposures. Missing ⇒ no-op."""
    session = get_owned_or_none(MonitoringSession, session_id, user_id=user_id, period=period)
    if session is None:
        logger.info("delete_monitoring_session: %s already absent", session_id)
        return 0
    with store_io(f"delete monitoring session {session_id}"):
        purged = db.session.execute(
            delete(RiskExposure)
            .where(RiskExposure.monitoring_session_id == session_id)
            .execution_options(synchronize_session="fetch")
        ).rowcount or 0
        db.session.delete(session)
        db.session.flush()
    logger.info("Monitoring session %s deleted with %d exposures", session_id, purged,
                extra={"user_id": user_id, "period": period})
    return purged
