"""
FMS Execution Engine
Scoring Engine.

Per task:
    planned_days = calendar days anchor → planned   (floor 1)
    actual_days  = calendar days anchor → completed (floor 1)
    completion day ≤ planned day  → score 1.0, on time
    otherwise                     → planned_days / actual_days, clamped [0, 1]

Per project:
    total_score = 100 × tasks_on_time / (tasks_on_time + tasks_late), halves rounded up

Baseline: original_planned_date, unless an approved date_change objection
with impact_score=True exists; then the revised planned_due_date is used and
the score log records "objection with score impact".
"""

import logging
from dataclasses import dataclass

from fms.utils.helpers import as_utc

logger = logging.getLogger(__name__)

IMPACT_REASON = "objection with score impact"

TERMINATED_POLICIES = {"exclude", "on_time", "late"}


@dataclass
class ScoreResult:
    """Outcome of scoring one completed task."""
    score: float
    planned_days: int
    actual_days: int
    on_time: bool

    @property
    def score_percentage(self) -> float:
        return round(self.score * 100, 1)

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "score_percentage": self.score_percentage,
            "planned_days": self.planned_days,
            "actual_days": self.actual_days,
            "on_time": self.on_time,
        }


def calendar_days(start, end) -> int:
    """Calendar-day difference with time of day stripped (UTC)."""
    return (as_utc(end).date() - as_utc(start).date()).days


def score(anchor, planned, completed) -> ScoreResult:
    """Score a completion against its planned date.

    ``anchor`` is the instant the task's clock started.
    """
    planned_days = max(1, calendar_days(anchor, planned))
    actual_days = max(1, calendar_days(anchor, completed))

    if as_utc(completed).date() <= as_utc(planned).date():
        return ScoreResult(1.0, planned_days, actual_days, True)

    value = max(0.0, min(1.0, planned_days / actual_days))
    return ScoreResult(value, planned_days, actual_days, False)


def has_score_impacting_change(task) -> bool:
    return any(
        o.type == "date_change" and o.status == "approved" and o.impact_score
        for o in task.objections
    )


def scoring_baseline(task):
    """Return ``(planned_instant, score_impacted, impact_reason)`` for a task."""
    if has_score_impacting_change(task) and task.planned_due_date is not None:
        return task.planned_due_date, True, IMPACT_REASON
    planned = task.original_planned_date or task.planned_due_date
    return planned, False, None


def aggregate_score(tasks_on_time: int, tasks_late: int) -> int:
    scored = tasks_on_time + tasks_late
    if scored == 0:
        return 0
    # integer half-up: 12.5 -> 13, not banker's rounding
    return (200 * tasks_on_time + scored) // (2 * scored)


def apply_completion(project, task, completed_at):
    """Score ``task`` at completion and update the project aggregate.

    Returns the ScoreResult, or None when the task has no planned date to
    score against (it is then counted neither on time nor late).
    """
    planned, impacted, _reason = scoring_baseline(task)
    if planned is None:
        logger.warning(
            "Task %s of project %s completed without a planned date; not scored",
            task.sequence, project.id,
            extra={"project_id": project.id, "task_index": task.sequence},
        )
        return None

    anchor = task.anchor_at or project.start_at
    result = score(anchor, planned, completed_at)

    task.planned_days = result.planned_days
    task.actual_days = result.actual_days
    task.completion_score = result.score
    task.was_on_time = result.on_time
    task.score_impacted = impacted or task.score_impacted

    if result.on_time:
        project.tasks_on_time += 1
    else:
        project.tasks_late += 1
    project.total_score = aggregate_score(project.tasks_on_time, project.tasks_late)
    return result


def apply_termination(project, task, policy="exclude"):
    """Count a terminated task according to the configured policy.

    exclude  → neither counter moves
    on_time  → counted as on time
    late     → counted as late
    """
    if policy not in TERMINATED_POLICIES:
        raise ValueError(f"Unknown terminated scoring policy: {policy!r}")
    if policy == "exclude":
        return
    if policy == "on_time":
        project.tasks_on_time += 1
    else:
        project.tasks_late += 1
    project.total_score = aggregate_score(project.tasks_on_time, project.tasks_late)
