"""
Project Blueprint — instantiation and the per-task state machine.

Endpoints:
    POST   /api/v1/projects
           Body: { "template_id", "start_at", "created_by", "name"? }
    GET    /api/v1/projects                     ?user_id=&role=
    GET    /api/v1/projects/<pid>
    DELETE /api/v1/projects/<pid>               ?user_id=  (administrators only)
    GET    /api/v1/projects/pending-tasks/<uid>

    POST   /api/v1/projects/<pid>/tasks/<idx>/complete
           Body: { "completed_by", "notes"?, "attachments"?, "checklist"?,
                   "planned_date"?, "version"? }
    POST   /api/v1/projects/<pid>/tasks/<idx>/start        { "user_id", "version"? }
    POST   /api/v1/projects/<pid>/tasks/<idx>/resume       { "user_id", "version"? }
    PUT    /api/v1/projects/<pid>/tasks/<idx>/planned-date { "planned_date", "version"? }

Mutating routes accept the project version either as body ``version`` or
as an ``If-Match`` header; a stale token answers 409 ERR_CONFLICT_VERSION.
"""

import logging

from flask import Blueprint, jsonify, request

from fms.services import project_service, task_lifecycle
from fms.utils.errors import E, api_error, register_error_handlers
from fms.utils.helpers import expected_version, parse_datetime

logger = logging.getLogger(__name__)

project_bp = Blueprint("projects", __name__, url_prefix="/api/v1")
register_error_handlers(project_bp)


# ── Helpers ────────────────────────────────────────────────────────────────────


def _body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _version_or_error(data):
    """Return (version, err_response)."""
    try:
        return expected_version(data, request.headers), None
    except ValueError as exc:
        return None, api_error(E.VALIDATION_INVALID, str(exc))


def _project_response(project, status=200):
    response = jsonify(project.to_dict())
    response.headers["ETag"] = f'"{project.version}"'
    return response, status


# ── Projects ───────────────────────────────────────────────────────────────────


@project_bp.route("/projects", methods=["POST"])
def create_project():
    data = _body()
    template_id = data.get("template_id")
    if template_id is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'template_id' is required")
    if data.get("created_by") is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'created_by' is required")
    try:
        start_at = parse_datetime(data.get("start_at"))
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "Field 'start_at' must be an ISO-8601 date")
    if start_at is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'start_at' is required")

    project = project_service.instantiate_project(
        template_id, start_at, data["created_by"], name=data.get("name"),
    )
    return _project_response(project, 201)


@project_bp.route("/projects", methods=["GET"])
def list_projects():
    user_id = request.args.get("user_id", type=int)
    role = request.args.get("role")
    projects = project_service.list_projects(user_id=user_id, role=role)
    return jsonify({
        "items": [p.to_dict(include_tasks=False) for p in projects],
        "total": len(projects),
    })


@project_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    return _project_response(project_service.get_project(project_id))


@project_bp.route("/projects/<int:project_id>", methods=["DELETE"])
def delete_project(project_id):
    user_id = request.args.get("user_id", type=int)
    if user_id is None:
        user_id = _body().get("user_id")
    if user_id is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'user_id' is required")
    project_service.delete_project(project_id, user_id)
    return jsonify({"message": "Project deleted", "id": project_id})


@project_bp.route("/projects/pending-tasks/<int:user_id>", methods=["GET"])
def pending_tasks(user_id):
    items = project_service.pending_tasks_for_user(user_id)
    return jsonify({"items": items, "total": len(items)})


# ── Task transitions ───────────────────────────────────────────────────────────


@project_bp.route("/projects/<int:project_id>/tasks/<int:task_index>/complete", methods=["POST"])
def complete_task(project_id, task_index):
    data = _body()
    version, err = _version_or_error(data)
    if err:
        return err
    if data.get("completed_by") is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'completed_by' is required")
    try:
        planned_date = parse_datetime(data.get("planned_date"))
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "Field 'planned_date' must be an ISO-8601 date")

    attachments = data.get("attachments") or []
    if not isinstance(attachments, list) or not all(isinstance(a, dict) for a in attachments):
        return api_error(E.VALIDATION_INVALID, "Field 'attachments' must be a list of objects")
    checklist = data.get("checklist") or []
    if not isinstance(checklist, list):
        return api_error(E.VALIDATION_INVALID, "Field 'checklist' must be a list of item ids")

    project = task_lifecycle.complete_task(
        project_id,
        task_index,
        data["completed_by"],
        attachments=attachments,
        notes=data.get("notes"),
        checklist=checklist,
        planned_date=planned_date,
        expected_version=version,
    )
    return _project_response(project_service.get_project(project_id))


@project_bp.route("/projects/<int:project_id>/tasks/<int:task_index>/start", methods=["POST"])
def start_task(project_id, task_index):
    data = _body()
    version, err = _version_or_error(data)
    if err:
        return err
    if data.get("user_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'user_id' is required")
    project = task_lifecycle.start_task(
        project_id, task_index, data["user_id"], expected_version=version,
    )
    return _project_response(project)


@project_bp.route("/projects/<int:project_id>/tasks/<int:task_index>/resume", methods=["POST"])
def resume_task(project_id, task_index):
    data = _body()
    version, err = _version_or_error(data)
    if err:
        return err
    if data.get("user_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'user_id' is required")
    project = task_lifecycle.resume_task(
        project_id, task_index, data["user_id"], expected_version=version,
    )
    return _project_response(project)


@project_bp.route(
    "/projects/<int:project_id>/tasks/<int:task_index>/planned-date", methods=["PUT"],
)
def set_planned_date(project_id, task_index):
    data = _body()
    version, err = _version_or_error(data)
    if err:
        return err
    try:
        planned_date = parse_datetime(data.get("planned_date"))
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "Field 'planned_date' must be an ISO-8601 date")
    if planned_date is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'planned_date' is required")
    project = task_lifecycle.set_planned_date(
        project_id, task_index, planned_date, expected_version=version,
    )
    return _project_response(project)
