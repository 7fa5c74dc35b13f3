"""Control measure service layer.

Transaction policy: functions flush(), never commit().

Controls are numbered per (risk cause, control type) and listed grouped by
type in the order Prv, RM, Crr, then by sequence number.
"""
import logging

from sqlalchemy import case

from riskwise.core.exceptions import ValidationError
from riskwise.models import db
from riskwise.models.risk_register import CONTROL_TYPE_KEYS, ControlMeasure, RiskCause, _utcnow
from riskwise.services.code_generator import (
    next_control_measure_sequence,
    validate_sequence_number,
)
from riskwise.services.helpers.scoped_queries import (
    get_in_context,
    get_in_context_or_none,
    get_owned_or_none,
    query_in_context,
    require_context,
)
from riskwise.utils.helpers import parse_date_input, store_io

logger = logging.getLogger(__name__)

_TYPE_ORDER = case(
    {key: idx for idx, key in enumerate(CONTROL_TYPE_KEYS)},
    value=ControlMeasure.control_type,
    else_=len(CONTROL_TYPE_KEYS),
)


def control_sort_key(control):
    """Python-side equivalent of the SQL ordering, for cached dicts or rows."""
    get = control.get if isinstance(control, dict) else lambda f: getattr(control, f)
    ctype = get("control_type")
    type_rank = CONTROL_TYPE_KEYS.index(ctype) if ctype in CONTROL_TYPE_KEYS else len(CONTROL_TYPE_KEYS)
    return (type_rank, get("sequence_number") or 0)


def _clean_control_type(value):
    if value not in CONTROL_TYPE_KEYS:
        raise ValidationError(
            f"Invalid control_type: {value}. Must be one of {', '.join(CONTROL_TYPE_KEYS)}",
            details={"control_type": value},
        )
    return value


def _clean_description(value):
    text = value.strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError("Control measure description is required",
                              details={"description": "required"})
    return text


def _clean_budget(value):
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise ValidationError("budget must be a positive number", details={"budget": value})
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError("budget must be a positive number", details={"budget": value})
    if amount <= 0:
        raise ValidationError("budget must be a positive number", details={"budget": value})
    return amount


def _parent_cause(risk_cause_id, potential_risk_id, goal_id, user_id, period):
    cause = get_in_context(RiskCause, risk_cause_id, user_id=user_id, period=period)
    mismatched = {}
    if potential_risk_id is not None and cause.potential_risk_id != potential_risk_id:
        mismatched["potential_risk_id"] = potential_risk_id
    if goal_id is not None and cause.goal_id != goal_id:
        mismatched["goal_id"] = goal_id
    if mismatched:
        raise ValidationError("Ancestor ids do not match the risk cause", details=mismatched)
    return cause


def add_control_measure(data, risk_cause_id, potential_risk_id, goal_id, user_id, period,
                        sequence_number):
    """Create a control measure under a risk cause. Returns the flushed row."""
    require_context(user_id, period)
    validate_sequence_number(sequence_number)
    control_type = _clean_control_type(data.get("control_type"))
    description = _clean_description(data.get("description"))
    budget = _clean_budget(data.get("budget"))
    deadline = parse_date_input(data.get("deadline"), "deadline")
    cause = _parent_cause(risk_cause_id, potential_risk_id, goal_id, user_id, period)

    control = ControlMeasure(
        risk_cause_id=risk_cause_id,
        potential_risk_id=cause.potential_risk_id,
        goal_id=cause.goal_id,
        user_id=user_id,
        period=period,
        sequence_number=sequence_number,
        control_type=control_type,
        description=description,
        key_control_indicator=data.get("key_control_indicator") or None,
        target=data.get("target") or None,
        responsible_person=data.get("responsible_person") or None,
        deadline=deadline,
        budget=budget,
    )
    with store_io(f"add control measure to risk cause {risk_cause_id}"):
        db.session.add(control)
        db.session.flush()
    logger.info("Control measure %s.%d added to risk cause %s",
                control_type, sequence_number, risk_cause_id,
                extra={"user_id": user_id, "period": period})
    return control


def get_control_measure_by_id(control_measure_id, user_id, period):
    return get_in_context_or_none(ControlMeasure, control_measure_id, user_id=user_id, period=period)


def list_control_measures_by_risk_cause(risk_cause_id, user_id, period):
    """Controls of one cause grouped by type (Prv, RM, Crr) then sequence."""
    stmt = query_in_context(ControlMeasure, user_id, period, risk_cause_id=risk_cause_id) \
        .order_by(_TYPE_ORDER, ControlMeasure.sequence_number)
    with store_io(f"list control measures for risk cause {risk_cause_id}"):
        return list(db.session.execute(stmt).scalars())


def list_control_measures(user_id, period):
    """Every control in the context, grouped per cause."""
    stmt = query_in_context(ControlMeasure, user_id, period).order_by(
        ControlMeasure.risk_cause_id, _TYPE_ORDER, ControlMeasure.sequence_number,
    )
    with store_io(f"list control measures for {user_id}/{period}"):
        return list(db.session.execute(stmt).scalars())


def update_control_measure(control_measure_id, user_id, period, data):
    """Update a control measure.

    Changing ``control_type`` moves the control to the end of the new
    type's numbering (next free sequence number for that type).
    """
    control = get_in_context(ControlMeasure, control_measure_id, user_id=user_id, period=period)
    for field in ("risk_cause_id", "potential_risk_id", "goal_id", "sequence_number"):
        if field in data and data[field] != getattr(control, field):
            raise ValidationError(f"Control measure {field} cannot be changed",
                                  details={field: "immutable"})

    if "control_type" in data:
        new_type = _clean_control_type(data["control_type"])
        if new_type != control.control_type:
            control.sequence_number = next_control_measure_sequence(
                control.risk_cause_id, new_type, user_id, period,
            )
            control.control_type = new_type
    if "description" in data:
        control.description = _clean_description(data["description"])
    if "budget" in data:
        control.budget = _clean_budget(data["budget"])
    if "deadline" in data:
        control.deadline = parse_date_input(data["deadline"], "deadline")
    for field in ("key_control_indicator", "target", "responsible_person"):
        if field in data:
            setattr(control, field, data[field] or None)
    control.updated_at = _utcnow()

    with store_io(f"update control measure {control_measure_id}"):
        db.session.flush()
    return control


def delete_control_measure(control_measure_id, user_id, period):
    """Delete one control measure. Missing ⇒ no-op (returns False)."""
    control = get_owned_or_none(ControlMeasure, control_measure_id, user_id=user_id, period=period)
    if control is None:
        logger.info("delete_control_measure: %s already absent", control_measure_id)
        return False
    with store_io(f"delete control measure {control_measure_id}"):
        db.session.delete(control)
        db.session.flush()
    return True
