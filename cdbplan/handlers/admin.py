"""Admin HTTP handlers for plan application and inspection.

Endpoints:
  GET  /health                          — Liveness and backend name
  GET  /api/plans                       — List plans {plan, status, comments}
  GET  /api/plans/active                — Current RESOURCE_MANAGER_PLAN
  PUT  /api/plans/active                — Set the active plan
  POST /api/plans/apply                 — Apply the policy (file or inline body)
  GET  /api/plans/drift                 — Drift between the policy and the catalog

  GET  /api/runs                        — List apply runs
  GET  /api/runs/<id>                   — Get run detail with its audit entries
  GET  /api/audit-log                   — List audit log entries

  GET  /api/admin/config                — List runtime settings
  PUT  /api/admin/config/<key>          — Set a setting
  DELETE /api/admin/config/<key>        — Delete a setting
"""

import logging

from flask import Blueprint, jsonify, request

from cdbplan.controlplane.factory import get_control_plane
from cdbplan.db.database import (
    delete_config, get_all_config, get_run, list_audit_log, list_runs, set_config,
)
from cdbplan.models.errors import (
    DuplicateRuleError, ExternalUnavailable, PlanValidationError,
    ResourcePlanError, SubmitError, ValidationError,
)
from cdbplan.orchestration.drift import report_drift
from cdbplan.orchestration.runner import apply_policy
from cdbplan.policy.data import policy_store
from cdbplan.policy.loader import load_policy_text, parse_policy

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__)

ERROR_STATUS = [
    (ValidationError, 400),
    (DuplicateRuleError, 409),
    (PlanValidationError, 422),
    (SubmitError, 502),
    (ExternalUnavailable, 503),
]


def _error_response(exc: ResourcePlanError):
    for cls, status in ERROR_STATUS:
        if isinstance(exc, cls):
            return jsonify(exc.to_dict()), status
    return jsonify(exc.to_dict()), 500


def _definition(body: dict):
    """Inline policies arrive as a parsed mapping or as YAML text."""
    policy = body.get("policy")
    if isinstance(policy, str):
        return load_policy_text(policy)
    if policy is not None:
        return parse_policy(policy)
    return policy_store.load()


@admin_bp.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "service": "cdbplan", "backend": get_control_plane().name}), 200


# ── Plans ────────────────────────────────────────────────────────────────────

@admin_bp.route("/api/plans", methods=["GET"])
def list_plans():
    try:
        plans = get_control_plane().list_plans()
    except ResourcePlanError as e:
        return _error_response(e)
    return jsonify({"plans": [p.to_dict() for p in plans]}), 200


@admin_bp.route("/api/plans/active", methods=["GET"])
def get_active_plan():
    try:
        return jsonify({"active_plan": get_control_plane().get_active_plan()}), 200
    except ResourcePlanError as e:
        return _error_response(e)


@admin_bp.route("/api/plans/active", methods=["PUT"])
def set_active_plan():
    body = request.get_json(silent=True)
    if body is None or not isinstance(body.get("plan"), str):
        return jsonify({"error": "Request body must include 'plan'"}), 400
    try:
        get_control_plane().set_active_plan(body["plan"])
    except ResourcePlanError as e:
        return _error_response(e)
    return jsonify({"active_plan": body["plan"]}), 200


@admin_bp.route("/api/plans/apply", methods=["POST"])
def apply_plan():
    body = request.get_json(silent=True) or {}
    try:
        definition = _definition(body)
        result = apply_policy(
            definition, get_control_plane(),
            activate=bool(body.get("activate", False)),
            replace_lockdown=body.get("replace_lockdown"),
            assign=bool(body.get("assign_pdbs", False)),
            restart=bool(body.get("restart_pdbs", False)),
        )
    except ResourcePlanError as e:
        logger.error("Apply request failed: %s", e)
        return _error_response(e)
    return jsonify(result), 200


@admin_bp.route("/api/plans/drift", methods=["GET"])
def plan_drift():
    activate = request.args.get("activate", "false").lower() == "true"
    try:
        definition = policy_store.load()
        items = report_drift(definition, get_control_plane(), activate=activate)
    except ResourcePlanError as e:
        return _error_response(e)
    return jsonify({
        "plan": definition.name,
        "in_sync": not items,
        "drift": [i.to_dict() for i in items],
    }), 200


# ── Runs & Audit ─────────────────────────────────────────────────────────────

@admin_bp.route("/api/runs", methods=["GET"])
def runs():
    limit = request.args.get("limit", 50, type=int)
    return jsonify({"runs": list_runs(
        limit=limit, plan=request.args.get("plan"), outcome=request.args.get("outcome"),
    )}), 200


@admin_bp.route("/api/runs/<int:run_id>", methods=["GET"])
def run_detail(run_id: int):
    run = get_run(run_id)
    if run is None:
        return jsonify({"error": f"Run {run_id} not found"}), 404
    run["audit"] = list_audit_log(run_id=run_id)
    return jsonify(run), 200


@admin_bp.route("/api/audit-log", methods=["GET"])
def audit_log():
    limit = request.args.get("limit", 100, type=int)
    return jsonify({"entries": list_audit_log(limit=limit, action=request.args.get("action"))}), 200


# ── Runtime Config ───────────────────────────────────────────────────────────

@admin_bp.route("/api/admin/config", methods=["GET"])
def list_config():
    return jsonify({"config": get_all_config()}), 200


@admin_bp.route("/api/admin/config/<key>", methods=["PUT"])
def update_config(key: str):
    body = request.get_json(silent=True)
    if body is None or "value" not in body:
        return jsonify({"error": "Request body must include 'value'"}), 400
    set_config(key, str(body["value"]))
    return jsonify({"key": key, "value": str(body["value"])}), 200


@admin_bp.route("/api/admin/config/<key>", methods=["DELETE"])
def remove_config(key: str):
    if delete_config(key):
        return jsonify({"status": "deleted", "key": key}), 200
    return jsonify({"error": f"Config key '{key}' not found"}), 404
