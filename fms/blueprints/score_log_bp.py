"""
Score Log Blueprint — read-only reporting over the append-only score logs.

Endpoints:
    GET /api/v1/score-logs
        ?user_id=&project_id=&date_from=&date_to=&page=1&per_page=50
    GET /api/v1/score-logs/users/<user_id>/summary
        ?date_from=&date_to=
"""

import logging

from flask import Blueprint, jsonify, request

from fms.services import score_log_service
from fms.utils.errors import E, api_error, register_error_handlers
from fms.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

score_log_bp = Blueprint("score_logs", __name__, url_prefix="/api/v1")
register_error_handlers(score_log_bp)

MAX_PER_PAGE = 200


def _date_range():
    """Return (date_from, date_to, err_response)."""
    try:
        return (
            parse_datetime(request.args.get("date_from")),
            parse_datetime(request.args.get("date_to")),
            None,
        )
    except ValueError:
        return None, None, api_error(
            E.VALIDATION_INVALID, "date_from / date_to must be ISO-8601 dates",
        )


@score_log_bp.route("/score-logs", methods=["GET"])
def list_score_logs():
    date_from, date_to, err = _date_range()
    if err:
        return err
    page = max(request.args.get("page", 1, type=int), 1)
    per_page = min(max(request.args.get("per_page", 50, type=int), 1), MAX_PER_PAGE)

    items, total = score_log_service.list_score_logs(
        user_id=request.args.get("user_id", type=int),
        project_id=request.args.get("project_id", type=int),
        date_from=date_from,
        date_to=date_to,
        page=page,
        per_page=per_page,
    )
    return jsonify({
        "items": [log.to_dict() for log in items],
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page,
    })


@score_log_bp.route("/score-logs/users/<int:user_id>/summary", methods=["GET"])
def user_summary(user_id):
    date_from, date_to, err = _date_range()
    if err:
        return err
    return jsonify(score_log_service.user_summary(user_id, date_from, date_to))
