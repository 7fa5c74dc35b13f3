"""
RiskWise
Risk register blueprint — goals, potential risks, risk causes and control
measures, plus the priority list and risk matrix views.

Every endpoint requires the X-User-Id and X-Period headers.

Endpoints summary:
    REGISTER  /api/v1/register                                   GET   (whole tree)

    GOAL      /api/v1/goals                                      GET, POST
              /api/v1/goals/<id>                                 GET, PUT, DELETE

    RISK      /api/v1/goals/<gid>/potential-risks                GET, POST
              /api/v1/goals/<gid>/potential-risks/suggestions    POST  (import AI suggestions)
              /api/v1/potential-risks/<id>                       GET, PUT, DELETE
              /api/v1/potential-risks/bulk-delete                POST

    CAUSE     /api/v1/potential-risks/<pid>/risk-causes          GET, POST
              /api/v1/potential-risks/<pid>/risk-causes/suggestions POST
              /api/v1/risk-causes/<id>                           GET, PUT, DELETE
              /api/v1/risk-causes/bulk-delete                    POST

    CONTROL   /api/v1/risk-causes/<rid>/control-measures         GET, POST
              /api/v1/control-measures                           GET
              /api/v1/control-measures/<id>                      GET, PUT, DELETE

    ANALYSIS  /api/v1/risk-priority                              GET
              /api/v1/risk-matrix                                GET
              /api/v1/risk-level                                 GET   (?likelihood=&impact=)
"""

import logging

from flask import Blueprint, jsonify, request

from riskwise.blueprints import json_body, paginate_items, register_error_handlers, request_store
from riskwise.core.exceptions import NotFoundError, ValidationError
from riskwise.services.risk_scoring import control_guidance, ordinal_of, risk_level
from riskwise.utils.errors import E, api_error

logger = logging.getLogger(__name__)

risk_register_bp = Blueprint("risk_register", __name__, url_prefix="/api/v1")
register_error_handlers(risk_register_bp)


def _sequence_from(data):
    value = data.pop("sequence_number", None)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("sequence_number must be a positive integer",
                              details={"sequence_number": value})
    return value


def _ids_from(data):
    ids = data.get("ids")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("ids must be a non-empty list", details={"ids": "required"})
    return [str(i) for i in ids]


def _bulk_response(result):
    result.raise_for_failures()
    return jsonify(result.to_dict()), 200


# ═══════════════════════════════════════════════════════════════════════════
#  REGISTER
# ═══════════════════════════════════════════════════════════════════════════

@risk_register_bp.route("/register", methods=["GET"])
def get_register():
    store, err = request_store(load=True)
    if err:
        return err
    return jsonify({
        "user_id": store.user_id,
        "period": store.period,
        "goals": store.goals,
        "potential_risks": store.potential_risks,
        "risk_causes": store.risk_causes,
        "control_measures": store.control_measures,
    })


# ═══════════════════════════════════════════════════════════════════════════
#  GOAL CRUD
# ═══════════════════════════════════════════════════════════════════════════

@risk_register_bp.route("/goals", methods=["GET"])
def list_goals():
    store, err = request_store(load=True)
    if err:
        return err
    items, total = paginate_items(store.goals)
    return jsonify({"items": items, "total": total})


@risk_register_bp.route("/goals", methods=["POST"])
def create_goal():
    store, err = request_store()
    if err:
        return err
    data = json_body()
    if not data.get("name"):
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    goal = store.add_goal(data, sequence_number=_sequence_from(data))
    return jsonify(goal), 201


@risk_register_bp.route("/goals/<goal_id>", methods=["GET"])
def get_goal(goal_id):
    store, err = request_store()
    if err:
        return err
    goal = store.get_goal_by_id(goal_id)
    if goal is None:
        raise NotFoundError("Goal", goal_id)
    return jsonify(goal)


@risk_register_bp.route("/goals/<goal_id>", methods=["PUT"])
def update_goal(goal_id):
    store, err = request_store()
    if err:
        return err
    return jsonify(store.update_goal(goal_id, json_body()))


@risk_register_bp.route("/goals/<goal_id>", methods=["DELETE"])
def delete_goal(goal_id):
    store, err = request_store()
    if err:
        return err
    counts = store.delete_goal(goal_id)
    return jsonify({"message": "Goal deleted", "deleted": counts}), 200


# ═══════════════════════════════════════════════════════════════════════════
#  POTENTIAL RISK CRUD
# ═══════════════════════════════════════════════════════════════════════════

@risk_register_bp.route("/goals/<goal_id>/potential-risks", methods=["GET"])
def list_potential_risks(goal_id):
    store, err = request_store(load=True)
    if err:
        return err
    if store.get_goal_by_id(goal_id) is None:
        raise NotFoundError("Goal", goal_id)
    items, total = paginate_items([p for p in store.potential_risks if p["goal_id"] == goal_id])
    return jsonify({"items": items, "total": total})


@risk_register_bp.route("/goals/<goal_id>/potential-risks", methods=["POST"])
def create_potential_risk(goal_id):
    store, err = request_store()
    if err:
        return err
    data = json_body()
    if not data.get("description"):
        return api_error(E.VALIDATION_REQUIRED, "description is required")
    risk = store.add_potential_risk(data, goal_id, sequence_number=_sequence_from(data))
    return jsonify(risk), 201


@risk_register_bp.route("/goals/<goal_id>/potential-risks/suggestions", methods=["POST"])
def import_potential_risk_suggestions(goal_id):
    store, err = request_store()
    if err:
        return err
    suggestions = json_body().get("suggestions")
    if not isinstance(suggestions, list):
        return api_error(E.VALIDATION_REQUIRED, "suggestions must be a list")
    if store.get_goal_by_id(goal_id) is None:
        raise NotFoundError("Goal", goal_id)
    result = store.import_potential_risk_suggestions(goal_id, suggestions=suggestions)
    result.raise_for_failures()
    return jsonify(result.to_dict()), 201


@risk_register_bp.route("/potential-risks/<potential_risk_id>", methods=["GET"])
def get_potential_risk(potential_risk_id):
    store, err = request_store()
    if err:
        return err
    risk = store.get_potential_risk_by_id(potential_risk_id)
    if risk is None:
        raise NotFoundError("PotentialRisk", potential_risk_id)
    return jsonify(risk)


@risk_register_bp.route("/potential-risks/<potential_risk_id>", methods=["PUT"])
def update_potential_risk(potential_risk_id):
    store, err = request_store()
    if err:
        return err
    return jsonify(store.update_potential_risk(potential_risk_id, json_body()))


@risk_register_bp.route("/potential-risks/<potential_risk_id>", methods=["DELETE"])
def delete_potential_risk(potential_risk_id):
    store, err = request_store()
    if err:
        return err
    counts = store.delete_potential_risk(potential_risk_id)
    return jsonify({"message": "Potential risk deleted", "deleted": counts}), 200


@risk_register_bp.route("/potential-risks/bulk-delete", methods=["POST"])
def bulk_delete_potential_risks():
    store, err = request_store()
    if err:
        return err
    return _bulk_response(store.bulk_delete_potential_risks(_ids_from(json_body())))


# ═══════════════════════════════════════════════════════════════════════════
#  RISK CAUSE CRUD
# ═══════════════════════════════════════════════════════════════════════════

@risk_register_bp.route("/potential-risks/<potential_risk_id>/risk-causes", methods=["GET"])
def list_risk_causes(potential_risk_id):
    store, err = request_store(load=True)
    if err:
        return err
    if store.get_potential_risk_by_id(potential_risk_id) is None:
        raise NotFoundError("PotentialRisk", potential_risk_id)
    causes = [c for c in store.risk_causes if c["potential_risk_id"] == potential_risk_id]
    items, total = paginate_items(causes)
    return jsonify({"items": items, "total": total})


@risk_register_bp.route("/potential-risks/<potential_risk_id>/risk-causes", methods=["POST"])
def create_risk_cause(potential_risk_id):
    store, err = request_store()
    if err:
        return err
    data = json_body()
    if not data.get("description"):
        return api_error(E.VALIDATION_REQUIRED, "description is required")
    cause = store.add_risk_cause(data, potential_risk_id, sequence_number=_sequence_from(data))
    return jsonify(cause), 201


@risk_register_bp.route("/potential-risks/<potential_risk_id>/risk-causes/suggestions",
                        methods=["POST"])
def import_risk_cause_suggestions(potential_risk_id):
    store, err = request_store()
    if err:
        return err
    suggestions = json_body().get("suggestions")
    if not isinstance(suggestions, list):
        return api_error(E.VALIDATION_REQUIRED, "suggestions must be a list")
    if store.get_potential_risk_by_id(potential_risk_id) is None:
        raise NotFoundError("PotentialRisk", potential_risk_id)
    result = store.import_risk_cause_suggestions(potential_risk_id, suggestions=suggestions)
    result.raise_for_failures()
    return jsonify(result.to_dict()), 201


@risk_register_bp.route("/risk-causes/<risk_cause_id>", methods=["GET"])
def get_risk_cause(risk_cause_id):
    store, err = request_store()
    if err:
        return err
    cause = store.get_risk_cause_by_id(risk_cause_id)
    if cause is None:
        raise NotFoundError("RiskCause", risk_cause_id)
    return jsonify(dict(cause, control_guidance=control_guidance(cause["risk_level"])))


@risk_register_bp.route("/risk-causes/<risk_cause_id>", methods=["PUT"])
def update_risk_cause(risk_cause_id):
    store, err = request_store()
    if err:
        return err
    return jsonify(store.update_risk_cause(risk_cause_id, json_body()))


@risk_register_bp.route("/risk-causes/<risk_cause_id>", methods=["DELETE"])
def delete_risk_cause(risk_cause_id):
    store, err = request_store()
    if err:
        return err
    counts = store.delete_risk_cause(risk_cause_id)
    return jsonify({"message": "Risk cause deleted", "deleted": counts}), 200


@risk_register_bp.route("/risk-causes/bulk-delete", methods=["POST"])
def bulk_delete_risk_causes():
    store, err = request_store()
    if err:
        return err
    return _bulk_response(store.bulk_delete_risk_causes(_ids_from(json_body())))


# ═══════════════════════════════════════════════════════════════════════════
#  CONTROL MEASURE CRUD
# ═══════════════════════════════════════════════════════════════════════════

@risk_register_bp.route("/risk-causes/<risk_cause_id>/control-measures", methods=["GET"])
def list_control_measures_for_cause(risk_cause_id):
    store, err = request_store()
    if err:
        return err
    controls = store.fetch_control_measures(risk_cause_id)
    return jsonify({"items": controls, "total": len(controls)})


@risk_register_bp.route("/risk-causes/<risk_cause_id>/control-measures", methods=["POST"])
def create_control_measure(risk_cause_id):
    store, err = request_store()
    if err:
        return err
    data = json_body()
    if not data.get("control_type"):
        return api_error(E.VALIDATION_REQUIRED, "control_type is required")
    if not data.get("description"):
        return api_error(E.VALIDATION_REQUIRED, "description is required")
    control = store.add_control_measure(data, risk_cause_id, sequence_number=_sequence_from(data))
    return jsonify(control), 201


@risk_register_bp.route("/control-measures", methods=["GET"])
def list_control_measures():
    store, err = request_store(load=True)
    if err:
        return err
    items, total = paginate_items(store.control_measures)
    return jsonify({"items": items, "total": total})


@risk_register_bp.route("/control-measures/<control_measure_id>", methods=["GET"])
def get_control_measure(control_measure_id):
    store, err = request_store()
    if err:
        return err
    control = store.get_control_measure_by_id(control_measure_id)
    if control is None:
        raise NotFoundError("ControlMeasure", control_measure_id)
    return jsonify(control)


@risk_register_bp.route("/control-measures/<control_measure_id>", methods=["PUT"])
def update_control_measure(control_measure_id):
    store, err = request_store()
    if err:
        return err
    return jsonify(store.update_control_measure(control_measure_id, json_body()))


@risk_register_bp.route("/control-measures/<control_measure_id>", methods=["DELETE"])
def delete_control_measure(control_measure_id):
    store, err = request_store()
    if err:
        return err
    deleted = store.delete_control_measure(control_measure_id)
    return jsonify({"message": "Control measure deleted", "deleted": deleted}), 200


# ═══════════════════════════════════════════════════════════════════════════
#  ANALYSIS VIEWS
# ═══════════════════════════════════════════════════════════════════════════

@risk_register_bp.route("/risk-priority", methods=["GET"])
def risk_priority():
    store, err = request_store(load=True)
    if err:
        return err
    items, total = paginate_items(store.risk_priority_list())
    return jsonify({"items": items, "total": total})


@risk_register_bp.route("/risk-matrix", methods=["GET"])
def risk_matrix():
    store, err = request_store(load=True)
    if err:
        return err
    return jsonify(store.risk_matrix())


@risk_register_bp.route("/risk-level", methods=["GET"])
def get_risk_level():
    likelihood = request.args.get("likelihood") or None
    impact = request.args.get("impact") or None
    for name, value in (("likelihood", likelihood), ("impact", impact)):
        if value is not None:
            try:
                ordinal_of(value)
            except ValueError:
                raise ValidationError(f"Invalid {name}: {value}", details={name: value})
    value, level = risk_level(likelihood, impact)
    return jsonify({
        "likelihood": likelihood,
        "impact": impact,
        "risk_score": value,
        "risk_level": level,
        "control_guidance": control_guidance(level),
    })
