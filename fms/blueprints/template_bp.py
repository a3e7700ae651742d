"""
Template Store Blueprint.

Endpoints:
    POST   /api/v1/templates                  create a template with its steps
    GET    /api/v1/templates                  active templates (?include_inactive=true)
    GET    /api/v1/templates/<id>             one template with duration summary
    PUT    /api/v1/templates/<id>             status change; structural edits only
                                              while no project uses the template

Layer contract:
    - Blueprint: parse input, call template_service, return JSON.
    - NO db.session calls here — all writes owned by the service.
"""

import logging

from flask import Blueprint, jsonify, request

from fms.services import template_service
from fms.utils.errors import E, api_error, register_error_handlers
from fms.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

template_bp = Blueprint("templates", __name__, url_prefix="/api/v1")
register_error_handlers(template_bp)


@template_bp.route("/templates", methods=["POST"])
def create_template():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    if not (data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "Field 'name' is required")
    if not isinstance(data.get("steps"), list):
        return api_error(E.VALIDATION_REQUIRED, "Field 'steps' must be a list")

    template = template_service.create_template(data, created_by_id=data.get("created_by"))
    return jsonify(template_service.template_summary(template)), 201


@template_bp.route("/templates", methods=["GET"])
def list_templates():
    include_inactive = parse_bool(request.args.get("include_inactive"), False)
    templates = template_service.list_templates(include_inactive=include_inactive)
    return jsonify({
        "items": [template_service.template_summary(t, include_steps=False) for t in templates],
        "total": len(templates),
    })


@template_bp.route("/templates/<int:template_id>", methods=["GET"])
def get_template(template_id):
    template = template_service.get_template(template_id)
    return jsonify(template_service.template_summary(template))


@template_bp.route("/templates/<int:template_id>", methods=["PUT"])
def update_template(template_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return api_error(E.VALIDATION_INVALID, "Request body must be a non-empty JSON object")
    template = template_service.update_template(template_id, data)
    return jsonify(template_service.template_summary(template))
