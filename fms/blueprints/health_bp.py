"""
Health check blueprint.

Endpoints:
    GET /api/v1/health  — app status plus database round-trip and outbox backlog
"""

import logging
import time

from flask import Blueprint, jsonify

from fms.models import db
from fms.models.outbox import OutboxEvent

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1")


@health_bp.route("/health", methods=["GET"])
def health():
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
        backlog = OutboxEvent.query.filter(OutboxEvent.status != "delivered").count()
        checks["outbox"] = {"status": "ok", "undelivered": backlog}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    body = {"status": "ok" if overall else "degraded", "app": "FMS Execution Engine", "checks": checks}
    return jsonify(body), 200 if overall else 503
