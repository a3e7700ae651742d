"""
Objection Blueprint — date change / hold / terminate requests and decisions.

Endpoints:
    POST   /api/v1/projects/<pid>/tasks/<idx>/objections
           Body: { "type": "date_change|hold|terminate", "remarks",
                   "requested_by", "requested_date"?, "version"? }
           Returns: 201 with the objection and the updated project.

    POST   /api/v1/projects/<pid>/tasks/<idx>/objections/<oid>/respond
           Body: { "decision": "approved|rejected", "approved_by",
                   "approval_remarks"?, "impact_score"?, "version"? }

    GET    /api/v1/projects/<pid>/objections/pending
    GET    /api/v1/objections/pending/<approver_id>

Objections are addressed by id, never by list position.
"""

import logging

from flask import Blueprint, jsonify, request

from fms.models.objection import OBJECTION_DECISIONS, OBJECTION_TYPES
from fms.services import objection_service, project_service
from fms.utils.errors import E, api_error, register_error_handlers
from fms.utils.helpers import expected_version, parse_bool, parse_datetime

logger = logging.getLogger(__name__)

objection_bp = Blueprint("objections", __name__, url_prefix="/api/v1")
register_error_handlers(objection_bp)


def _body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@objection_bp.route(
    "/projects/<int:project_id>/tasks/<int:task_index>/objections", methods=["POST"],
)
def raise_objection(project_id, task_index):
    data = _body()
    objection_type = (data.get("type") or "").strip()
    if objection_type not in OBJECTION_TYPES:
        return api_error(
            E.VALIDATION_INVALID,
            f"Field 'type' must be one of {sorted(OBJECTION_TYPES)}",
        )
    if data.get("requested_by") is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'requested_by' is required")
    try:
        requested_date = parse_datetime(data.get("requested_date"))
        version = expected_version(data, request.headers)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    objection = objection_service.raise_objection(
        project_id,
        task_index,
        objection_type,
        data.get("remarks"),
        data["requested_by"],
        requested_date=requested_date,
        expected_version=version,
    )
    project = project_service.get_project(project_id)
    return jsonify({"objection": objection.to_dict(), "project": project.to_dict()}), 201


@objection_bp.route(
    "/projects/<int:project_id>/tasks/<int:task_index>/objections/<int:objection_id>/respond",
    methods=["POST"],
)
def respond_to_objection(project_id, task_index, objection_id):
    data = _body()
    decision = (data.get("decision") or data.get("status") or "").strip()
    if decision not in OBJECTION_DECISIONS:
        return api_error(
            E.VALIDATION_INVALID,
            f"Field 'decision' must be one of {sorted(OBJECTION_DECISIONS)}",
        )
    if data.get("approved_by") is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'approved_by' is required")
    try:
        version = expected_version(data, request.headers)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    project = objection_service.respond_to_objection(
        project_id,
        task_index,
        objection_id,
        decision,
        data["approved_by"],
        remarks=data.get("approval_remarks"),
        impact_score=parse_bool(data.get("impact_score"), True),
        expected_version=version,
    )
    return jsonify(project.to_dict())


@objection_bp.route("/projects/<int:project_id>/objections/pending", methods=["GET"])
def pending_for_project(project_id):
    items = objection_service.list_pending_objections(project_id)
    return jsonify({"items": items, "total": len(items)})


@objection_bp.route("/objections/pending/<int:approver_id>", methods=["GET"])
def pending_for_approver(approver_id):
    items = objection_service.list_pending_objections_for_approver(approver_id)
    return jsonify({"items": items, "total": len(items)})
