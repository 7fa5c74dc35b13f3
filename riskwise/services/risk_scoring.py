"""
Risk scoring engine — likelihood × impact, risk level buckets, control guidance
and control performance.

Pure functions, no database access. Every place that turns a score into a
level goes through ``level_from_score`` so there is exactly one threshold
table in the codebase:

    score 20-25 → Very High
    score 16-19 → High
    score 12-15 → Medium
    score  6-11 → Low
    score  1-5  → Very Low
    no score    → N/A
"""

import math
import re

# ── Scales ───────────────────────────────────────────────────────────────────

LEVEL_ORDINALS = {
    "Very Low": 1,
    "Low": 2,
    "Medium": 3,
    "High": 4,
    "Very High": 5,
}
LIKELIHOOD_LEVELS = tuple(LEVEL_ORDINALS)
IMPACT_LEVELS = tuple(LEVEL_ORDINALS)

NOT_AVAILABLE = "N/A"
RISK_LEVELS = ("Very Low", "Low", "Medium", "High", "Very High")

# (minimum score, level), checked top-down
LEVEL_THRESHOLDS = (
    (20, "Very High"),
    (16, "High"),
    (12, "Medium"),
    (6, "Low"),
    (1, "Very Low"),
)

# Control type keys used in codes ("S1.PR1.PC1.Prv.1")
CONTROL_TYPES = {
    "Prv": "Preventive",
    "RM": "Mitigating",
    "Crr": "Corrective",
}

_GUIDANCE_BY_LEVEL = {
    "Very Low": ("Prv",),
    "Low": ("Prv",),
    "Medium": ("Prv", "RM"),
    "High": ("Prv", "RM", "Crr"),
    "Very High": ("Prv", "RM", "Crr"),
}

# Indicator wording that marks a target as an upper bound (lower is better)
NEGATIVE_TARGET_KEYWORDS = (
    "maksimal",
    "maks",
    "tidak lebih",
    "maximum",
    "no more than",
    "at most",
    "decrease",
)

_NUMBER_PREFIX = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)")


def ordinal_of(level):
    """Return the 1-5 ordinal of a likelihood/impact level, or None."""
    if level is None:
        return None
    try:
        return LEVEL_ORDINALS[level]
    except KeyError:
        raise ValueError(f"Unknown likelihood/impact level: {level!r}") from None


def score(likelihood, impact):
    """
    Calculate risk score: ordinal(likelihood) × ordinal(impact).
    Range: 1–25. Returns None when either side is not set yet.
    """
    if likelihood is None or impact is None:
        return None
    return ordinal_of(likelihood) * ordinal_of(impact)


def level_from_score(value):
    """Bucket a 1-25 score into a risk level; N/A for None or < 1."""
    if value is None:
        return NOT_AVAILABLE
    for minimum, level in LEVEL_THRESHOLDS:
        if value >= minimum:
            return level
    return NOT_AVAILABLE


def risk_level(likelihood, impact):
    """Return ``(score, level)`` for a likelihood/impact pair."""
    value = score(likelihood, impact)
    return value, level_from_score(value)


def control_guidance(level):
    """
    Recommended control types for a risk level.

    Returns a dict with ``level``, ``control_types`` (keys of CONTROL_TYPES),
    ``labels`` and a human-readable ``message``.
    """
    types = _GUIDANCE_BY_LEVEL.get(level)
    if types is None:
        return {
            "level": NOT_AVAILABLE,
            "control_types": [],
            "labels": [],
            "message": "Determine the risk level first (set likelihood and impact).",
        }
    labels = [CONTROL_TYPES[t] for t in types]
    return {
        "level": level,
        "control_types": list(types),
        "labels": labels,
        "message": f"Risk level {level}: plan {', '.join(labels)} controls.",
    }


def parse_indicator_number(value):
    """Parse a free-text KCI value ("Rp 1.500", "85%", "3,5 days") into a float.

    Non-numeric characters are stripped, the first comma is read as a decimal
    separator and the leading numeric part is used. Returns None if nothing
    numeric remains.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    cleaned = re.sub(r"[^0-9.,-]+", "", str(value)).replace(",", ".", 1)
    match = _NUMBER_PREFIX.match(cleaned)
    if not match:
        return None
    return float(match.group(0))


def is_negative_target(indicator_text):
    """True when the indicator wording says the target is a maximum."""
    if not indicator_text:
        return False
    text = indicator_text.lower()
    return any(keyword in text for keyword in NEGATIVE_TARGET_KEYWORDS)


def performance_percentage(target, realization, indicator_text=None):
    """
    Control performance in percent, from a KCI target and its realization.

    Upper-bound targets (see NEGATIVE_TARGET_KEYWORDS):
        ((2 × target − realization) / target) × 100
    Otherwise:
        (realization / target) × 100

    Clamped at 0 and rounded to the nearest integer. Returns None if either
    value is non-numeric or the target is 0.
    """
    numeric_target = parse_indicator_number(target)
    numeric_realization = parse_indicator_number(realization)
    if numeric_target is None or numeric_realization is None or numeric_target == 0:
        return None

    if is_negative_target(indicator_text):
        value = ((2 * numeric_target - numeric_realization) / numeric_target) * 100
    else:
        value = (numeric_realization / numeric_target) * 100
    return max(0, int(math.floor(value + 0.5)))


def exposure_guidance(exposure_value, risk_tolerance):
    """
    Follow-up advice comparing an observed exposure to the cause's tolerance.

    Returns None when either value is missing or the tolerance is not numeric.
    """
    if exposure_value is None:
        return None
    tolerance = parse_indicator_number(risk_tolerance)
    if tolerance is None:
        return None
    if float(exposure_value) >= tolerance:
        return {
            "severity": "attention",
            "message": (
                "Risk exposure is at or above the risk tolerance. Consider "
                "Mitigating (RM) controls and review or add Corrective (Crr) controls."
            ),
        }
    return {
        "severity": "info",
        "message": "Risk exposure is below the risk tolerance. Continue the planned controls.",
    }
