"""
RiskWise
Risk register domain models.

Models:
    - Goal: organisational objective, code S{n}
    - PotentialRisk: risk brainstormed against a goal
    - RiskCause: cause of a potential risk, carries likelihood × impact analysis
    - ControlMeasure: preventive / mitigating / corrective control for a cause

Hierarchy: Goal → PotentialRisk → RiskCause → ControlMeasure
Every row carries (user_id, period); children also carry every ancestor id
so a whole subtree can be selected with one equality filter.
"""

import uuid
from datetime import datetime, timezone

from riskwise.models import db
from riskwise.models.codes import goal_code
from riskwise.services.risk_scoring import (
    CONTROL_TYPES,
    IMPACT_LEVELS,
    LIKELIHOOD_LEVELS,
    risk_level,
)


# ── Constants ────────────────────────────────────────────────────────────────

RISK_CATEGORIES = (
    "Policy",
    "Legal",
    "Reputation",
    "Compliance",
    "Financial",
    "Fraud",
    "Operational",
)
RISK_SOURCES = ("Internal", "External")
CONTROL_TYPE_KEYS = tuple(CONTROL_TYPES)

__all__ = [
    "Goal", "PotentialRisk", "RiskCause", "ControlMeasure",
    "RISK_CATEGORIES", "RISK_SOURCES", "CONTROL_TYPE_KEYS",
    "LIKELIHOOD_LEVELS", "IMPACT_LEVELS",
]


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════════════════
#  GOAL
# ═══════════════════════════════════════════════════════════════════════════

class Goal(db.Model):
    """Organisational objective that risks are identified against."""

    __tablename__ = "goals"
    __table_args__ = (
        db.Index("ix_goals_user_period", "user_id", "period"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(128), nullable=False)
    period = db.Column(db.String(20), nullable=False)
    sequence_number = db.Column(db.Integer, nullable=False)
    code = db.Column(db.String(20), nullable=False, comment="Derived: S{sequence_number}")
    name = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def assign_sequence(self, sequence_number):
        self.sequence_number = sequence_number
        self.code = goal_code(sequence_number)

    def to_dict(self):
        return {
            "id": self.id,
            "entity_type": "goal",
            "user_id": self.user_id,
            "period": self.period,
            "sequence_number": self.sequence_number,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Goal {self.code}: {self.name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  POTENTIAL RISK
# ═══════════════════════════════════════════════════════════════════════════

class PotentialRisk(db.Model):
    """A risk that could prevent a goal from being achieved."""

    __tablename__ = "potential_risks"
    __table_args__ = (
        db.Index("ix_potential_risks_user_period", "user_id", "period"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    goal_id = db.Column(
        db.String(36), db.ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.String(128), nullable=False)
    period = db.Column(db.String(20), nullable=False)
    sequence_number = db.Column(db.Integer, nullable=False, comment="1..N within the goal")
    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(30), nullable=True)
    owner = db.Column(db.String(150), nullable=True)
    identified_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "entity_type": "potential_risk",
            "goal_id": self.goal_id,
            "user_id": self.user_id,
            "period": self.period,
            "sequence_number": self.sequence_number,
            "description": self.description,
            "category": self.category,
            "owner": self.owner,
            "identified_at": _iso(self.identified_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<PotentialRisk PR{self.sequence_number}: {self.description[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  RISK CAUSE
# ═══════════════════════════════════════════════════════════════════════════

class RiskCause(db.Model):
    """
    A cause of a potential risk.

    Risk score = ordinal(likelihood) × ordinal(impact) (1-25), available once
    both are set.
    """

    __tablename__ = "risk_causes"
    __table_args__ = (
        db.Index("ix_risk_causes_user_period", "user_id", "period"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    potential_risk_id = db.Column(
        db.String(36), db.ForeignKey("potential_risks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    goal_id = db.Column(db.String(36), nullable=False, index=True)
    user_id = db.Column(db.String(128), nullable=False)
    period = db.Column(db.String(20), nullable=False)
    sequence_number = db.Column(db.Integer, nullable=False, comment="1..N within the potential risk")
    description = db.Column(db.Text, nullable=False)
    source = db.Column(db.String(20), nullable=False, default="Internal")
    key_risk_indicator = db.Column(db.Text, nullable=True)
    risk_tolerance = db.Column(db.String(200), nullable=True)
    likelihood = db.Column(db.String(20), nullable=True)
    impact = db.Column(db.String(20), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    analysis_updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_analysed(self):
        return self.likelihood is not None and self.impact is not None

    def to_dict(self):
        score, level = risk_level(self.likelihood, self.impact)
        return {
            "id": self.id,
            "entity_type": "risk_cause",
            "potential_risk_id": self.potential_risk_id,
            "goal_id": self.goal_id,
            "user_id": self.user_id,
            "period": self.period,
            "sequence_number": self.sequence_number,
            "description": self.description,
            "source": self.source,
            "key_risk_indicator": self.key_risk_indicator,
            "risk_tolerance": self.risk_tolerance,
            "likelihood": self.likelihood,
            "impact": self.impact,
            "risk_score": score,
            "risk_level": level,
            "created_at": _iso(self.created_at),
            "analysis_updated_at": _iso(self.analysis_updated_at),
        }

    def __repr__(self):
        return f"<RiskCause PC{self.sequence_number}: {self.description[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  CONTROL MEASURE
# ═══════════════════════════════════════════════════════════════════════════

class ControlMeasure(db.Model):
    """A control attached to a risk cause; numbered per (cause, control type)."""

    __tablename__ = "control_measures"
    __table_args__ = (
        db.Index("ix_control_measures_user_period", "user_id", "period"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    risk_cause_id = db.Column(
        db.String(36), db.ForeignKey("risk_causes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    potential_risk_id = db.Column(db.String(36), nullable=False, index=True)
    goal_id = db.Column(db.String(36), nullable=False, index=True)
    user_id = db.Column(db.String(128), nullable=False)
    period = db.Column(db.String(20), nullable=False)
    sequence_number = db.Column(db.Integer, nullable=False, comment="1..N within (cause, type)")
    control_type = db.Column(db.String(5), nullable=False, comment="Prv / RM / Crr")
    description = db.Column(db.Text, nullable=False)
    key_control_indicator = db.Column(db.Text, nullable=True)
    target = db.Column(db.String(200), nullable=True)
    responsible_person = db.Column(db.String(150), nullable=True)
    deadline = db.Column(db.Date, nullable=True)
    budget = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "entity_type": "control_measure",
            "risk_cause_id": self.risk_cause_id,
            "potential_risk_id": self.potential_risk_id,
            "goal_id": self.goal_id,
            "user_id": self.user_id,
            "period": self.period,
            "sequence_number": self.sequence_number,
            "control_type": self.control_type,
            "control_type_name": CONTROL_TYPES.get(self.control_type),
            "description": self.description,
            "key_control_indicator": self.key_control_indicator,
            "target": self.target,
            "responsible_person": self.responsible_person,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "budget": self.budget,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ControlMeasure {self.control_type}.{self.sequence_number}: {self.description[:40]}>"
