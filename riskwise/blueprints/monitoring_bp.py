"""
RiskWise
Monitoring blueprint — monitoring sessions, exposure recording and the
monitoring worksheet.

Endpoints summary:
    SESSION   /api/v1/monitoring-sessions                          GET, POST
              /api/v1/monitoring-sessions/<id>                     GET, PUT, DELETE

    EXPOSURE  /api/v1/monitoring-sessions/<id>/exposures           GET
              /api/v1/monitoring-sessions/<id>/exposures/<rcid>    PUT   (upsert)

    WORKSHEET /api/v1/monitoring-sessions/<id>/worksheet           GET
              /api/v1/monitoring-sessions/<id>/progress            POST  (best-effort save)
"""

import logging

from flask import Blueprint, jsonify

from riskwise.blueprints import json_body, paginate_items, register_error_handlers, request_store
from riskwise.core.exceptions import NotFoundError, ValidationError
from riskwise.services import monitoring_flow
from riskwise.utils.errors import E, api_error

logger = logging.getLogger(__name__)

monitoring_bp = Blueprint("monitoring", __name__, url_prefix="/api/v1")
register_error_handlers(monitoring_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  MONITORING SESSION CRUD
# ═══════════════════════════════════════════════════════════════════════════

@monitoring_bp.route("/monitoring-sessions", methods=["GET"])
def list_sessions():
    store, err = request_store()
    if err:
        return err
    items, total = paginate_items(store.fetch_monitoring_sessions())
    return jsonify({"items": items, "total": total})


@monitoring_bp.route("/monitoring-sessions", methods=["POST"])
def create_session():
    store, err = request_store()
    if err:
        return err
    data = json_body()
    for field in ("name", "start_date", "end_date"):
        if not data.get(field):
            return api_error(E.VALIDATION_REQUIRED, f"{field} is required")
    return jsonify(store.add_monitoring_session(data)), 201


@monitoring_bp.route("/monitoring-sessions/<session_id>", methods=["GET"])
def get_session(session_id):
    store, err = request_store()
    if err:
        return err
    session = store.fetch_current_monitoring_session(session_id)
    return jsonify(dict(session, exposures=store.risk_exposures))


@monitoring_bp.route("/monitoring-sessions/<session_id>", methods=["PUT"])
def update_session(session_id):
    store, err = request_store()
    if err:
        return err
    return jsonify(store.update_monitoring_session(session_id, json_body()))


@monitoring_bp.route("/monitoring-sessions/<session_id>", methods=["DELETE"])
def delete_session(session_id):
    store, err = request_store()
    if err:
        return err
    purged = store.delete_monitoring_session(session_id)
    return jsonify({"message": "Monitoring session deleted", "exposures_deleted": purged}), 200


# ═══════════════════════════════════════════════════════════════════════════
#  EXPOSURES
# ═══════════════════════════════════════════════════════════════════════════

@monitoring_bp.route("/monitoring-sessions/<session_id>/exposures", methods=["GET"])
def list_exposures(session_id):
    store, err = request_store()
    if err:
        return err
    store.fetch_current_monitoring_session(session_id)
    items, total = paginate_items(store.risk_exposures)
    return jsonify({"items": items, "total": total})


@monitoring_bp.route("/monitoring-sessions/<session_id>/exposures/<risk_cause_id>",
                     methods=["PUT"])
def upsert_exposure(session_id, risk_cause_id):
    store, err = request_store()
    if err:
        return err
    data = json_body()
    data["monitoring_session_id"] = session_id
    data["risk_cause_id"] = risk_cause_id
    exposure, created = monitoring_flow.upsert_risk_exposure(store, data)
    return jsonify(exposure), 201 if created else 200


# ═══════════════════════════════════════════════════════════════════════════
#  WORKSHEET
# ═══════════════════════════════════════════════════════════════════════════

@monitoring_bp.route("/monitoring-sessions/<session_id>/worksheet", methods=["GET"])
def get_worksheet(session_id):
    store, err = request_store()
    if err:
        return err
    if store.get_monitoring_session_by_id(session_id) is None:
        raise NotFoundError("MonitoringSession", session_id)
    return jsonify(monitoring_flow.build_monitoring_worksheet(store, session_id))


@monitoring_bp.route("/monitoring-sessions/<session_id>/progress", methods=["POST"])
def save_progress(session_id):
    store, err = request_store()
    if err:
        return err
    entries = json_body().get("entries")
    if not isinstance(entries, list):
        raise ValidationError("entries must be a list", details={"entries": "required"})
    result = monitoring_flow.save_monitoring_progress(store, session_id, entries)
    result.raise_for_failures()
    return jsonify(result.to_dict()), 200
