"""
RiskWise
Monitoring domain models.

Models:
    - MonitoringSession: a monitoring window (month, quarter, ...) for a period
    - RiskExposure: observed exposure of one risk cause within one session,
      with the realisation of each of the cause's control measures

A session's own ``period`` is the period its exposures are keyed against,
which need not be the caller's currently active period.
"""

from riskwise.models import db
from riskwise.models.risk_register import _iso, _utcnow, _uuid

MONITORING_STATUSES = ("Active", "Completed", "Cancelled")

MONITORED_CONTROL_FIELDS = (
    "control_measure_id",
    "realization_kci",
    "performance_percentage",
    "supporting_evidence_url",
    "monitoring_result_notes",
    "follow_up_plan",
)


def exposure_id(monitoring_session_id, risk_cause_id):
    """Deterministic id: one exposure row per (session, cause)."""
    return f"{monitoring_session_id}_{risk_cause_id}"


class MonitoringSession(db.Model):
    """A monitoring window whose exposures are recorded per risk cause."""

    __tablename__ = "monitoring_sessions"
    __table_args__ = (
        db.Index("ix_monitoring_sessions_user_period", "user_id", "period"),
        db.CheckConstraint("end_date >= start_date", name="ck_monitoring_sessions_dates"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(128), nullable=False)
    period = db.Column(db.String(20), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="Active")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "entity_type": "monitoring_session",
            "user_id": self.user_id,
            "period": self.period,
            "name": self.name,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<MonitoringSession {self.name} [{self.status}]>"


class RiskExposure(db.Model):
    """Exposure observation for one risk cause in one monitoring session."""

    __tablename__ = "risk_exposures"
    __table_args__ = (
        db.UniqueConstraint(
            "monitoring_session_id", "risk_cause_id", name="uq_risk_exposures_session_cause",
        ),
        db.Index("ix_risk_exposures_user_period", "user_id", "period"),
    )

    id = db.Column(db.String(80), primary_key=True, comment="{session_id}_{risk_cause_id}")
    monitoring_session_id = db.Column(
        db.String(36), db.ForeignKey("monitoring_sessions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    risk_cause_id = db.Column(
        db.String(36), db.ForeignKey("risk_causes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    potential_risk_id = db.Column(db.String(36), nullable=True, index=True)
    goal_id = db.Column(db.String(36), nullable=True, index=True)
    user_id = db.Column(db.String(128), nullable=False)
    period = db.Column(db.String(20), nullable=False, comment="Period of the monitoring session")
    exposure_value = db.Column(db.Float, nullable=True)
    exposure_unit = db.Column(db.String(50), nullable=True)
    exposure_notes = db.Column(db.Text, nullable=True)
    monitored_controls = db.Column(db.JSON, default=list)
    recorded_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "entity_type": "risk_exposure",
            "monitoring_session_id": self.monitoring_session_id,
            "risk_cause_id": self.risk_cause_id,
            "potential_risk_id": self.potential_risk_id,
            "goal_id": self.goal_id,
            "user_id": self.user_id,
            "period": self.period,
            "exposure_value": self.exposure_value,
            "exposure_unit": self.exposure_unit,
            "exposure_notes": self.exposure_notes,
            "monitored_controls": [dict(mc) for mc in (self.monitored_controls or [])],
            "recorded_at": _iso(self.recorded_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<RiskExposure {self.id}>"
