"""
Monitoring exposure flow.

Recording an exposure for (session, cause):
    1. resolve the session; its period (not the store's) keys the exposure
    2. collect the cause's controls within (user_id, session period)
    3. recompute performance_percentage of every monitored control from the
       control's own target and KCI wording crossed with the entered
       realization; whatever the caller sent for it is ignored
    4. upsert through the store (merge-update or create)

The worksheet view assembles everything a monitoring form needs per
eligible cause: level, guidance, existing exposure and related controls.
"""
import logging

from riskwise.core.exceptions import NotFoundError, StoreIOError, ValidationError
from riskwise.models.codes import code_of, natural_key
from riskwise.services import (
    control_measure_service,
    goal_service,
    potential_risk_service,
    risk_cause_service,
)
from riskwise.services.bulk_results import BulkResult
from riskwise.services.control_measure_service import control_sort_key
from riskwise.services.risk_scoring import (
    control_guidance,
    exposure_guidance,
    performance_percentage,
    risk_level,
)

logger = logging.getLogger(__name__)


def _resolve_session(store, session_id):
    current = store.current_monitoring_session
    if current is not None and current["id"] == session_id:
        return current
    session = store.get_monitoring_session_by_id(session_id)
    if session is None:
        raise NotFoundError("MonitoringSession", session_id)
    return session


def register_snapshot(store, period):
    """Causes and controls (as dicts with codes) for the store's user in ``period``.

    Uses the store cache when ``period`` is the store's own loaded period,
    otherwise reads the register of that period directly.
    """
    user_id = store.user_id
    if period == store.period and store.data_fetched_for_period == store.context:
        return list(store.risk_causes), list(store.control_measures)

    goals = {g.id: g.to_dict() for g in goal_service.list_goals(user_id, period)}
    risks = {}
    for goal in goals.values():
        for row in potential_risk_service.list_potential_risks_by_goal(goal["id"], user_id, period):
            item = row.to_dict()
            item["code"] = code_of(item, (goal,))
            risks[item["id"]] = item
    causes = []
    controls = []
    for row in risk_cause_service.list_risk_causes(user_id, period):
        cause = row.to_dict()
        pr = risks.get(cause["potential_risk_id"])
        goal = goals.get(cause["goal_id"])
        cause["code"] = code_of(cause, (goal, pr)) if pr and goal else None
        causes.append(cause)
        for cm_row in control_measure_service.list_control_measures_by_risk_cause(
                cause["id"], user_id, period):
            control = cm_row.to_dict()
            control["code"] = code_of(control, (goal, pr, cause)) if cause["code"] else None
            controls.append(control)
    causes.sort(key=lambda c: natural_key(c["code"] or ""))
    return causes, controls


def recompute_performance(monitored_controls, controls_by_id):
    """Return a copy of ``monitored_controls`` with performance re-derived.

    Entries whose control is not among ``controls_by_id`` get None.
    """
    recomputed = []
    for entry in monitored_controls or []:
        entry = dict(entry)
        control = controls_by_id.get(entry.get("control_measure_id"))
        if control is None:
            entry["performance_percentage"] = None
        else:
            entry["performance_percentage"] = performance_percentage(
                control.get("target"),
                entry.get("realization_kci"),
                control.get("key_control_indicator"),
            )
        recomputed.append(entry)
    return recomputed


def upsert_risk_exposure(store, data):
    """Record an exposure for ``data["risk_cause_id"]`` in ``data["monitoring_session_id"]``.

    Returns (exposure dict, created).
    """
    user_id, _ = store.ensure_context()
    session_id = data.get("monitoring_session_id")
    cause_id = data.get("risk_cause_id")
    if not session_id or not cause_id:
        raise ValidationError(
            "monitoring_session_id and risk_cause_id are required",
            details={k: "required" for k in ("monitoring_session_id", "risk_cause_id")
                     if not data.get(k)},
        )
    session = _resolve_session(store, session_id)
    _, controls = register_snapshot(store, session["period"])
    controls_by_id = {c["id"]: c for c in controls if c["risk_cause_id"] == cause_id}

    payload = dict(data)
    payload["user_id"] = user_id
    payload["period"] = session["period"]
    if "monitored_controls" in payload:
        payload["monitored_controls"] = recompute_performance(
            payload["monitored_controls"], controls_by_id,
        )
    return store.save_risk_exposure(payload)


def build_monitoring_worksheet(store, session_id):
    """Per-cause monitoring rows for one session.

    Each row: the cause with code, score, level and control guidance; the
    existing exposure (or None) with exposure guidance; and the cause's
    controls, each paired with its monitored entry if one was recorded.
    """
    store.ensure_context()
    session = _resolve_session(store, session_id)
    if store.current_monitoring_session is None or store.current_monitoring_session["id"] != session_id:
        store.fetch_current_monitoring_session(session_id)

    causes, controls = register_snapshot(store, session["period"])
    exposures = {e["risk_cause_id"]: e for e in store.risk_exposures
                 if e["monitoring_session_id"] == session_id}

    rows = []
    for cause in causes:
        value, level = risk_level(cause.get("likelihood"), cause.get("impact"))
        exposure = exposures.get(cause["id"])
        monitored = {m["control_measure_id"]: m for m in (exposure or {}).get("monitored_controls", [])}
        cause_controls = sorted(
            (c for c in controls if c["risk_cause_id"] == cause["id"]), key=control_sort_key,
        )
        rows.append({
            "risk_cause": cause,
            "code": cause.get("code"),
            "risk_score": value,
            "risk_level": level,
            "control_guidance": control_guidance(level),
            "exposure": exposure,
            "exposure_guidance": exposure_guidance(
                exposure.get("exposure_value") if exposure else None,
                cause.get("risk_tolerance"),
            ),
            "controls": [
                {"control_measure": c, "monitored": monitored.get(c["id"])}
                for c in cause_controls
            ],
        })

    return {
        "session": session,
        "rows": rows,
        "recorded": sum(1 for r in rows if r["exposure"] is not None),
        "total": len(rows),
    }


def _is_filled(entry):
    if entry.get("exposure_value") not in (None, ""):
        return True
    if (entry.get("exposure_notes") or "").strip():
        return True
    return any(
        mc.get("realization_kci") not in (None, "")
        or (mc.get("monitoring_result_notes") or "").strip()
        for mc in entry.get("monitored_controls") or []
    )


def save_monitoring_progress(store, session_id, entries):
    """Upsert every filled-in worksheet entry; one failure never stops the rest.

    ``entries`` is a list of dicts with risk_cause_id plus exposure fields.
    Unfilled entries are skipped (not reported).
    """
    result = BulkResult(f"save monitoring progress for session {session_id}")
    _resolve_session(store, session_id)
    for entry in entries:
        if not _is_filled(entry):
            continue
        cause_id = entry.get("risk_cause_id") or "?"
        data = dict(entry, monitoring_session_id=session_id)
        try:
            exposure, created = upsert_risk_exposure(store, data)
        except (ValidationError, NotFoundError, StoreIOError) as exc:
            logger.warning("Exposure for cause %s not saved: %s", cause_id, exc)
            result.failed(cause_id, exc)
        else:
            result.succeeded(cause_id, dict(exposure, created=created))
    logger.info("Monitoring progress saved: %d ok, %d failed",
                len(result.successes), len(result.failures),
                extra={"user_id": store.user_id, "period": store.period})
    return result
