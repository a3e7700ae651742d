"""
FMS Execution Engine
Objection Subsystem — request / approval protocol for schedule changes.

    raise_objection        append a pending objection (no schedule change)
    respond_to_objection   approve or reject exactly once
    list_pending_objections                 per project
    list_pending_objections_for_approver    across projects

Approval effects:
    date_change  planned_due_date = requested_date, original frozen if unset,
                 planned_days recomputed, score_impacted = impact_score
    hold         open task → on_hold (prior state kept in held_from_state)
    terminate    any state but terminated → terminated; no scoring path, no
                 trigger; the successor is activated if the sequence allows

Rejection records only the objection's own decision fields.
"""

import logging
import math

from flask import current_app

from fms.core.exceptions import (
    AuthorizationError,
    IllegalStateError,
    NotFoundError,
    ValidationError,
)
from fms.models import db
from fms.models.objection import OBJECTION_DECISIONS, OBJECTION_TYPES, Objection
from fms.models.project import OPEN_STATES, Project, ProjectTask
from fms.services import scoring
from fms.services.project_service import commit_project, get_project, get_task, project_write
from fms.services.task_lifecycle import activate_successor, can_approve, predecessor_closed
from fms.services.user_service import require_user
from fms.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

# Effective states in which a date change may be approved
_RESCHEDULABLE = {"pending", "in_progress"}


# ── Raise ────────────────────────────────────────────────────────────────────


def raise_objection(
    project_id,
    task_index,
    type,
    remarks,
    requested_by_id,
    requested_date=None,
    *,
    expected_version=None,
    now=None,
):
    """Append a pending objection to a task.

    Returns the new Objection (the caller needs its id to respond); the
    project it hangs off is committed with a bumped version.

    Raises:
        NotFoundError: unknown project or task.
        ValidationError: unknown type, missing remarks, missing or
            too-early requested date for a date change.
        IllegalStateError: the task is done or terminated, or a date change
            is asked for a task that has no schedule yet.
    """
    now = as_utc(now) if now else utcnow()
    with project_write(project_id, expected_version) as project:
        task = get_task(project, task_index)

        if type not in OBJECTION_TYPES:
            raise ValidationError(
                f"Invalid objection type '{type}'",
                details={"type": f"must be one of {sorted(OBJECTION_TYPES)}"},
            )
        remarks = (remarks or "").strip()
        if not remarks:
            raise ValidationError("remarks are required", details={"remarks": "required"})
        requester = require_user(requested_by_id, "requested_by")

        if task.is_closed:
            raise IllegalStateError(
                f"Task {task_index} is {task.state}; objections can no longer be raised",
                details={"task_index": task_index, "state": task.state},
            )

        extra_days = None
        if type == "date_change":
            if task.effective_state not in _RESCHEDULABLE:
                raise IllegalStateError(
                    f"Task {task_index} has no schedule to change in state '{task.state}'",
                    details={"task_index": task_index, "state": task.state},
                )
            if requested_date is None:
                raise ValidationError(
                    "requested_date is required for a date change",
                    details={"requested_date": "required"},
                )
            requested_date = as_utc(requested_date)
            anchor = task.anchor_at or project.start_at
            if requested_date <= as_utc(anchor):
                raise ValidationError(
                    f"requested_date must be after {as_utc(anchor).isoformat()} for task {task_index}",
                    details={"requested_date": "must be after the task anchor"},
                )
            if task.planned_due_date is not None:
                delta = requested_date - as_utc(task.planned_due_date)
                extra_days = math.ceil(delta.total_seconds() / 86400)
        else:
            requested_date = None

        objection = Objection(
            type=type,
            requested_date=requested_date,
            extra_days_requested=extra_days,
            remarks=remarks,
            requested_by_id=requester.id,
            requested_at=now,
            status="pending",
        )
        task.objections.append(objection)
    commit_project(project, expected_version=expected_version)

    logger.info(
        "Objection %s (%s) raised on task %s of project %s by user %s",
        objection.id, type, task_index, project_id, requester.id,
        extra={"project_id": project_id, "task_index": task_index, "objection_id": objection.id},
    )
    return objection


# ── Respond ──────────────────────────────────────────────────────────────────


def _approve_date_change(project, task, objection, impact_score):
    if task.effective_state not in _RESCHEDULABLE:
        raise IllegalStateError(
            f"Task {task.sequence} cannot be rescheduled in state '{task.state}'",
            details={"task_index": task.sequence, "state": task.state},
        )
    new_date = objection.requested_date
    task.planned_due_date = new_date
    if task.original_planned_date is None:
        task.original_planned_date = new_date
    anchor = task.anchor_at or project.start_at
    task.planned_days = max(1, scoring.calendar_days(anchor, new_date))
    task.score_impacted = bool(impact_score)


def _approve_hold(task):
    if task.state not in OPEN_STATES:
        raise IllegalStateError(
            f"Task {task.sequence} cannot be put on hold in state '{task.state}'",
            details={"task_index": task.sequence, "state": task.state},
        )
    task.held_from_state = task.state
    task.state = "on_hold"


def _approve_terminate(project, task, now):
    if task.state == "terminated":
        raise IllegalStateError(
            f"Task {task.sequence} is already terminated",
            details={"task_index": task.sequence, "state": task.state},
        )
    previous = task.effective_state
    task.state = "terminated"
    task.held_from_state = None
    if previous == "done":
        # Already scored and its successor already activated.
        return
    policy = current_app.config.get("FMS_TERMINATED_SCORING_POLICY", "exclude")
    scoring.apply_termination(project, task, policy)
    if predecessor_closed(project, task):
        activate_successor(project, task.sequence, now)


def respond_to_objection(
    project_id,
    task_index,
    objection_id,
    decision,
    approver_id,
    remarks=None,
    impact_score=True,
    *,
    expected_version=None,
    now=None,
):
    """Approve or reject a pending objection.

    Returns the updated Project.

    Raises:
        NotFoundError: unknown project, task, or objection on that task.
        ValidationError: decision not approved / rejected.
        AuthorizationError: approver is not the project creator, the first
            task's assignee, or an administrator.
        IllegalStateError: objection already decided, or the approval is not
            legal for the task's current state (nothing is mutated).
    """
    now = as_utc(now) if now else utcnow()
    if decision not in OBJECTION_DECISIONS:
        raise ValidationError(
            f"Invalid decision '{decision}'",
            details={"decision": f"must be one of {sorted(OBJECTION_DECISIONS)}"},
        )
    with project_write(project_id, expected_version) as project:
        task = get_task(project, task_index)

        objection = db.session.get(Objection, objection_id)
        if objection is None or objection.task_id != task.id:
            raise NotFoundError(resource=f"Objection on task {task_index}", resource_id=objection_id)
        if objection.status != "pending":
            raise IllegalStateError(
                f"Objection {objection_id} is already {objection.status}",
                details={"objection_id": objection_id, "status": objection.status},
            )

        approver = require_user(approver_id, "approved_by")
        if not can_approve(project, approver):
            raise AuthorizationError(
                f"User {approver.id} may not respond to objections of project {project.code}",
            )

        impact_score = True if impact_score is None else bool(impact_score)
        if decision == "approved":
            if objection.type == "date_change":
                _approve_date_change(project, task, objection, impact_score)
            elif objection.type == "hold":
                _approve_hold(task)
            else:
                _approve_terminate(project, task, now)

        objection.status = decision
        objection.approved_by_id = approver.id
        objection.approval_remarks = remarks
        objection.approved_at = now
        objection.impact_score = impact_score

    commit_project(project, expected_version=expected_version)
    logger.info(
        "Objection %s (%s) on task %s of project %s %s by user %s",
        objection_id, objection.type, task_index, project_id, decision, approver.id,
        extra={"project_id": project_id, "task_index": task_index, "objection_id": objection_id},
    )
    return project


# ── Pending queries ──────────────────────────────────────────────────────────


def _pending_entry(project, task):
    pending = task.pending_objections()
    return {
        "project_id": project.id,
        "project_code": project.code,
        "project_name": project.name,
        "task_index": task.sequence,
        "task": task.to_dict(objections=pending),
        "objections": [o.to_dict() for o in pending],
    }


def _tasks_with_pending_objections(project_ids=None):
    q = (
        ProjectTask.query
        .join(Objection, Objection.task_id == ProjectTask.id)
        .filter(Objection.status == "pending")
    )
    if project_ids is not None:
        q = q.filter(ProjectTask.project_id.in_(project_ids))
    return q.distinct().order_by(ProjectTask.project_id, ProjectTask.sequence).all()


def list_pending_objections(project_id) -> list[dict]:
    """Tasks of one project with at least one pending objection."""
    project = get_project(project_id)
    return [_pending_entry(project, t) for t in _tasks_with_pending_objections([project.id])]


def list_pending_objections_for_approver(approver_id) -> list[dict]:
    """Pending objections the given user is entitled to decide."""
    approver = require_user(approver_id, "approver_id")
    entries = []
    for task in _tasks_with_pending_objections():
        project = db.session.get(Project, task.project_id)
        if can_approve(project, approver):
            entries.append(_pending_entry(project, task))
    return entries
