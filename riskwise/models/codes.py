"""
Display codes for the risk register hierarchy.

    Goal            S{n}                          S1
    PotentialRisk   {goal code}.PR{n}             S1.PR2
    RiskCause       {potential risk code}.PC{n}   S1.PR2.PC1
    ControlMeasure  {risk cause code}.{type}.{n}  S1.PR2.PC1.Prv.1

Codes are derived from sequence numbers and the ancestor chain; only the
goal code is persisted. ``code_of`` is the single composition rule, and
``natural_key`` gives the ordering used for every code-sorted list.
"""

import re

GOAL_PREFIX = "S"
POTENTIAL_RISK_TAG = "PR"
RISK_CAUSE_TAG = "PC"

_ENTITY_ORDER = ("goal", "potential_risk", "risk_cause", "control_measure")


def _field(entity, name):
    if isinstance(entity, dict):
        return entity.get(name)
    return getattr(entity, name, None)


def entity_type_of(entity):
    entity_type = _field(entity, "entity_type")
    if entity_type not in _ENTITY_ORDER:
        raise ValueError(f"Cannot derive a code for entity type {entity_type!r}")
    return entity_type


def goal_code(sequence_number):
    """S1, S2, ..."""
    return f"{GOAL_PREFIX}{sequence_number}"


def code_of(entity, ancestors=()):
    """
    Compose the display code of ``entity`` from its ancestor chain.

    Args:
        entity: Model instance or ``to_dict()`` payload with ``entity_type``
                and ``sequence_number`` (and ``control_type`` for controls).
        ancestors: Ancestors ordered root-first, e.g. ``(goal, potential_risk)``
                   for a risk cause. Only as many as the entity needs are used.

    Raises:
        ValueError: if the ancestor chain is too short for the entity type.
    """
    entity_type = entity_type_of(entity)
    depth = _ENTITY_ORDER.index(entity_type)
    seq = _field(entity, "sequence_number")

    if depth == 0:
        return _field(entity, "code") or goal_code(seq)

    ancestors = tuple(ancestors)
    if len(ancestors) < depth:
        raise ValueError(
            f"{entity_type} code needs {depth} ancestor(s), got {len(ancestors)}"
        )
    chain = ancestors[:depth]
    parent_code = code_of(chain[-1], chain[:-1])

    if entity_type == "potential_risk":
        return f"{parent_code}.{POTENTIAL_RISK_TAG}{seq}"
    if entity_type == "risk_cause":
        return f"{parent_code}.{RISK_CAUSE_TAG}{seq}"
    return f"{parent_code}.{_field(entity, 'control_type')}.{seq}"


def natural_key(code):
    """Sort key comparing digit runs numerically: S2 < S10, PR9 < PR10."""
    parts = re.split(r"(\d+)", (code or "").lower())
    return [int(p) if p.isdigit() else p for p in parts]
