"""
Score logs — append-only consumer plus reporting queries.

The ``score_log`` consumer turns a task_completed event into one ScoreLog
row.  Rows are never updated; a redelivered event for a task that already
has a log is a no-op.
"""

import logging

from sqlalchemy import case, func

from fms.models import db
from fms.models.score_log import ScoreLog
from fms.services.outbox import register_consumer
from fms.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)


@register_consumer("task_completed", "score_log")
def append_score_log(payload: dict) -> ScoreLog | None:
    """Write the ScoreLog record of a scored completion."""
    if payload.get("score") is None:
        logger.debug("task_completed for project %s task %s carries no score",
                     payload.get("project_id"), payload.get("task_index"))
        return None

    existing = ScoreLog.query.filter_by(
        project_id=payload["project_id"], task_index=payload["task_index"],
    ).first()
    if existing is not None:
        return existing

    entry = ScoreLog(
        project_id=payload["project_id"],
        task_index=payload["task_index"],
        user_id=payload.get("completed_by_id") or payload.get("assignee_id"),
        entity_title=(
            f"{payload.get('project_name')} - Step {payload.get('step_no')}: {payload.get('what')}"
        )[:600],
        anchor_date=parse_datetime(payload.get("anchor_date")),
        planned_date=parse_datetime(payload["planned_date"]),
        completed_date=parse_datetime(payload["completed_at"]),
        planned_days=payload["planned_days"],
        actual_days=payload["actual_days"],
        score=payload["score"],
        score_percentage=payload["score_percentage"],
        was_on_time=payload["was_on_time"],
        score_impacted=bool(payload.get("score_impacted")),
        impact_reason=payload.get("impact_reason"),
    )
    db.session.add(entry)
    logger.info(
        "Score logged for project %s task %s: %.2f",
        entry.project_id, entry.task_index, entry.score,
        extra={"project_id": entry.project_id, "task_index": entry.task_index},
    )
    return entry


# ── Queries ──────────────────────────────────────────────────────────────────


def _filtered(user_id=None, project_id=None, date_from=None, date_to=None):
    q = ScoreLog.query
    if user_id is not None:
        q = q.filter(ScoreLog.user_id == user_id)
    if project_id is not None:
        q = q.filter(ScoreLog.project_id == project_id)
    if date_from is not None:
        q = q.filter(ScoreLog.completed_date >= date_from)
    if date_to is not None:
        q = q.filter(ScoreLog.completed_date <= date_to)
    return q


def list_score_logs(user_id=None, project_id=None, date_from=None, date_to=None,
                    page=1, per_page=50):
    """Return ``(items, total)`` ordered by completion date, newest first."""
    q = _filtered(user_id, project_id, date_from, date_to)
    total = q.count()
    items = (
        q.order_by(ScoreLog.completed_date.desc(), ScoreLog.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return items, total


def user_summary(user_id, date_from=None, date_to=None) -> dict:
    """Aggregate score statistics of one user."""
    q = _filtered(user_id=user_id, date_from=date_from, date_to=date_to)
    row = q.with_entities(
        func.count(ScoreLog.id),
        func.avg(ScoreLog.score),
        func.sum(case((ScoreLog.was_on_time.is_(True), 1), else_=0)),
        func.sum(case((ScoreLog.score_impacted.is_(True), 1), else_=0)),
    ).one()
    total, avg_score, on_time, impacted = row
    total = total or 0
    on_time = int(on_time or 0)
    return {
        "user_id": user_id,
        "total_tasks": total,
        "on_time_tasks": on_time,
        "late_tasks": total - on_time,
        "impacted_tasks": int(impacted or 0),
        "average_score": round(float(avg_score), 4) if avg_score is not None else None,
        "average_score_percentage": round(float(avg_score) * 100, 1) if avg_score is not None else None,
        "on_time_percentage": round(100 * on_time / total, 1) if total else None,
    }
