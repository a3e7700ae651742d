"""
FMS Execution Engine
Step State Machine.

Operations:
    - complete_task:          pending / in_progress (or awaiting_date with a
                              date in the same call) → done
    - start_task:             pending → in_progress
    - set_planned_date:       awaiting_date → pending (human-supplied date)
    - resume_task:            on_hold → the state it was held from
    - activate_successor:     successor activation after done / terminated

Completion side effects, all in the same transaction:
    1. actual_completed_on / completed_by / notes / attachments recorded
    2. task scored, project counters and total_score updated
    3. task_completed outbox events written (score log, trigger propagation)
    4. successor activated (cascading over already-terminated successors)
"""

import logging

from flask import current_app

from fms.core.exceptions import AuthorizationError, IllegalStateError, ValidationError
from fms.models.project import TaskAttachment, validate_task_transition
from fms.services import outbox, scoring
from fms.services.due_dates import due_date_for_step
from fms.services.project_service import commit_project, get_task, project_write
from fms.services.user_service import require_user
from fms.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _log_extra(project, task, **kw):
    extra = {"project_id": project.id, "task_index": task.sequence}
    extra.update(kw)
    return extra


def _set_effective_state(task, new_state):
    """Move a task to ``new_state``; a held task keeps its hold on top."""
    if task.state == "on_hold":
        task.held_from_state = new_state
    else:
        task.state = new_state


def predecessor_closed(project, task) -> bool:
    if task.sequence == 0:
        return True
    return project.tasks[task.sequence - 1].is_closed


def can_approve(project, user) -> bool:
    """Project creator, assignee of the first task, or an administrator."""
    if user is None:
        return False
    if user.is_admin or user.id == project.created_by_id:
        return True
    first = project.task_at(0)
    return first is not None and first.assignee_id == user.id


def _weekend_settings(project):
    skip = project.template.skip_weekend if project.template else False
    return skip, current_app.config.get("FMS_WEEKEND_DAY", 6)


# ── Successor activation ─────────────────────────────────────────────────────


def activate_successor(project, index, anchor):
    """Open the task after ``index`` now that it is closed.

    ask_on_completion  → stays awaiting_date, clock anchored at ``anchor``
    dependent_offset   → due = anchor + own offset (weekend rule), pending
    anything else      → pending (due from project start if still missing)

    A terminated successor passes activation on to the task after it.
    An on-hold successor is activated underneath its hold.
    """
    nxt = project.task_at(index + 1)
    if nxt is None:
        return None

    if nxt.is_closed:
        return activate_successor(project, nxt.sequence, anchor)

    current = nxt.effective_state
    if current not in ("not_started", "awaiting_date"):
        return nxt

    skip_weekend, weekend_day = _weekend_settings(project)

    if nxt.timing_mode == "ask_on_completion":
        nxt.anchor_at = anchor
        _set_effective_state(nxt, "awaiting_date")
    elif nxt.timing_mode == "dependent_offset":
        step = nxt.step_definition
        if step is None:
            raise ValidationError(
                f"Task {nxt.sequence} has lost its step definition; cannot compute a due date",
            )
        due = due_date_for_step(anchor, step, skip_weekend, weekend_day)
        nxt.anchor_at = anchor
        nxt.planned_due_date = due
        if nxt.original_planned_date is None:
            nxt.original_planned_date = due
        _set_effective_state(nxt, "pending")
    else:
        if nxt.planned_due_date is None and nxt.step_definition is not None:
            due = due_date_for_step(project.start_at, nxt.step_definition, skip_weekend, weekend_day)
            nxt.planned_due_date = due
            if nxt.original_planned_date is None:
                nxt.original_planned_date = due
        if nxt.anchor_at is None:
            nxt.anchor_at = project.start_at
        _set_effective_state(nxt, "pending")

    logger.info(
        "Task %s of project %s activated: %s → %s",
        nxt.sequence, project.id, current, nxt.effective_state,
        extra=_log_extra(project, nxt),
    )
    return nxt


# ── Completion ───────────────────────────────────────────────────────────────


def _check_completable(project, task, planned_date):
    idx = task.sequence
    if task.state == "on_hold":
        raise IllegalStateError(f"Task {idx} is on hold and cannot be completed",
                                details={"task_index": idx, "state": task.state})
    if task.state == "terminated":
        raise IllegalStateError(f"Task {idx} is terminated and cannot be completed",
                                details={"task_index": idx, "state": task.state})
    if task.state == "done":
        raise IllegalStateError(f"Task {idx} is already done",
                                details={"task_index": idx, "state": task.state})
    if task.state == "not_started":
        raise IllegalStateError(f"Task {idx} has not been activated yet",
                                details={"task_index": idx, "state": task.state})
    if task.state == "awaiting_date" and planned_date is None:
        raise IllegalStateError(
            f"Task {idx} is awaiting a planned date; supply planned_date to complete it",
            details={"task_index": idx, "state": task.state},
        )
    if not predecessor_closed(project, task):
        raise IllegalStateError(
            f"Task {idx} cannot be completed before task {idx - 1}",
            details={"task_index": idx, "predecessor_state": project.tasks[idx - 1].state},
        )


def _check_checklist(task, completed_ids):
    if not task.requires_checklist:
        return
    open_items = [
        item for item in task.checklist_items
        if not item.completed and item.id not in completed_ids
    ]
    if open_items:
        raise ValidationError(
            f"Task {task.sequence} has {len(open_items)} incomplete checklist item(s)",
            details={"checklist_items": [item.text for item in open_items]},
        )


def _check_attachments(task, attachments):
    if task.requires_attachments and task.mandatory_attachments:
        if not task.attachments and not attachments:
            raise ValidationError(
                f"Task {task.sequence} requires at least one attachment",
                details={"attachments": "required"},
            )


def _validate_planned_date(project, task, planned_date):
    anchor = task.anchor_at or project.start_at
    if as_utc(planned_date) <= as_utc(anchor):
        raise ValidationError(
            f"Planned date for task {task.sequence} must be after {as_utc(anchor).isoformat()}",
            details={"planned_date": "must be after the task anchor"},
        )


def _apply_planned_date(project, task, planned_date):
    task.planned_due_date = planned_date
    if task.original_planned_date is None:
        task.original_planned_date = planned_date
    anchor = task.anchor_at or project.start_at
    task.planned_days = max(1, scoring.calendar_days(anchor, planned_date))


def _completion_payload(project, task, result, now):
    step = task.step_definition
    payload = {
        "project_id": project.id,
        "project_name": project.name,
        "task_id": task.id,
        "task_index": task.sequence,
        "step_no": task.step_no,
        "what": task.what,
        "assignee_id": task.assignee_id,
        "completed_by_id": task.completed_by_id,
        "completed_at": now.isoformat(),
        "triggers_template_id": step.triggers_template_id if step is not None else None,
    }
    if result is not None:
        planned, impacted, reason = scoring.scoring_baseline(task)
        anchor = task.anchor_at or project.start_at
        payload.update({
            "anchor_date": as_utc(anchor).isoformat(),
            "planned_date": as_utc(planned).isoformat(),
            "score": result.score,
            "score_percentage": result.score_percentage,
            "planned_days": result.planned_days,
            "actual_days": result.actual_days,
            "was_on_time": result.on_time,
            "score_impacted": impacted,
            "impact_reason": reason,
        })
    return payload


def complete_task(
    project_id,
    task_index,
    completed_by_id,
    *,
    attachments=None,
    notes=None,
    checklist=None,
    planned_date=None,
    expected_version=None,
    now=None,
):
    """Complete a task and run every completion side effect.

    Args:
        attachments: list of ``{"filename", "original_name", "path", "size"}``
            metadata dicts recorded on the task.
        checklist: ids of checklist items ticked off in this call.
        planned_date: required for an awaiting_date task; the date is set
            and the task goes straight to done.

    Raises:
        NotFoundError, IllegalStateError, ValidationError, ConcurrencyConflict.
    """
    now = as_utc(now) if now else utcnow()
    with project_write(project_id, expected_version) as project:
        task = get_task(project, task_index)
        user = require_user(completed_by_id, "completed_by")
        attachments = attachments or []
        completed_ids = set(checklist or [])

        _check_completable(project, task, planned_date)
        if task.state == "awaiting_date":
            _validate_planned_date(project, task, planned_date)
        _check_checklist(task, completed_ids)
        _check_attachments(task, attachments)

        previous = task.state
        if not validate_task_transition(previous, "done"):
            raise IllegalStateError(f"Invalid transition: {previous} → done")

        if previous == "awaiting_date":
            _apply_planned_date(project, task, as_utc(planned_date))

        for item in task.checklist_items:
            if item.id in completed_ids and not item.completed:
                item.completed = True
                item.completed_by_id = user.id
        for meta in attachments:
            task.attachments.append(TaskAttachment(
                filename=meta.get("filename") or meta.get("original_name") or "attachment",
                original_name=meta.get("original_name") or meta.get("filename") or "attachment",
                path=meta.get("path") or "",
                size=int(meta.get("size") or 0),
                uploaded_by_id=user.id,
                uploaded_at=now,
            ))

        task.state = "done"
        task.actual_completed_on = now
        task.completed_by_id = user.id
        if notes is not None:
            task.notes = notes

        result = scoring.apply_completion(project, task, now)
        events = outbox.emit(
            "task_completed", _completion_payload(project, task, result, now),
            project_id=project.id,
        )
        activate_successor(project, task.sequence, now)

    commit_project(project, events, expected_version)
    logger.info(
        "Task %s of project %s completed by user %s (%s → done, score=%s)",
        task_index, project_id, user.id, previous,
        result.score if result else None,
        extra={"project_id": project_id, "task_index": task_index},
    )
    return project


# ── Other transitions ────────────────────────────────────────────────────────


def start_task(project_id, task_index, acting_user_id, *, expected_version=None):
    """Mark a pending task as in progress."""
    with project_write(project_id, expected_version) as project:
        task = get_task(project, task_index)
        require_user(acting_user_id, "user_id")

        if not validate_task_transition(task.state, "in_progress"):
            raise IllegalStateError(
                f"Task {task_index} cannot be started from state '{task.state}'",
                details={"task_index": task_index, "state": task.state},
            )
        if not predecessor_closed(project, task):
            raise IllegalStateError(
                f"Task {task_index} cannot be started before task {task_index - 1} is closed",
                details={"task_index": task_index},
            )
        task.state = "in_progress"
    commit_project(project, expected_version=expected_version)
    logger.info("Task %s of project %s started", task_index, project_id,
                extra={"project_id": project_id, "task_index": task_index})
    return project


def set_planned_date(project_id, task_index, planned_date, *, expected_version=None):
    """Supply the due date of an ask-on-completion task (awaiting_date → pending)."""
    with project_write(project_id, expected_version) as project:
        task = get_task(project, task_index)

        if task.state != "awaiting_date":
            raise IllegalStateError(
                f"Task {task_index} is not awaiting a date (state '{task.state}')",
                details={"task_index": task_index, "state": task.state},
            )
        if not predecessor_closed(project, task):
            raise IllegalStateError(
                f"Task {task_index} gets its date once task {task_index - 1} is closed",
                details={"task_index": task_index},
            )
        if planned_date is None:
            raise ValidationError("planned_date is required", details={"planned_date": "required"})
        _validate_planned_date(project, task, planned_date)

        _apply_planned_date(project, task, as_utc(planned_date))
        task.state = "pending"
    commit_project(project, expected_version=expected_version)
    logger.info("Task %s of project %s scheduled for %s", task_index, project_id,
                as_utc(planned_date).isoformat(),
                extra={"project_id": project_id, "task_index": task_index})
    return project


def resume_task(project_id, task_index, acting_user_id, *, expected_version=None):
    """Lift a hold; the task returns to the state it was held from."""
    with project_write(project_id, expected_version) as project:
        task = get_task(project, task_index)
        user = require_user(acting_user_id, "user_id")

        if not can_approve(project, user):
            raise AuthorizationError(
                f"User {user.id} may not resume tasks of project {project.code}",
            )
        if task.state != "on_hold":
            raise IllegalStateError(
                f"Task {task_index} is not on hold (state '{task.state}')",
                details={"task_index": task_index, "state": task.state},
            )
        task.state = task.held_from_state
        task.held_from_state = None
    commit_project(project, expected_version=expected_version)
    logger.info("Task %s of project %s resumed into %s", task_index, project_id, task.state,
                extra={"project_id": project_id, "task_index": task_index})
    return project
