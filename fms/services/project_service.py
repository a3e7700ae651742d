"""
FMS Execution Engine — Project Instantiator & persistence.

Business logic for:
    - Code generation:     PRJ-0001 with bounded retry on uniqueness conflicts
    - Instantiation:       template + start instant → persisted Project
    - Optimistic writes:   load with expected version, commit with version check
    - Queries:             list by user / role, pending tasks of a user
    - Hard delete:         admin only

Every service that mutates a project goes through ``project_write`` and
``commit_project`` so the version token is checked on the way in and bumped
(and re-checked by SQLAlchemy) on the way out.
"""

import logging
from contextlib import contextmanager
from datetime import datetime

from flask import current_app
from sqlalchemy import Integer, cast, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from fms.core.exceptions import (
    AuthorizationError,
    ConcurrencyConflict,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from fms.models import db
from fms.models.project import Project, ProjectTask, TaskChecklistItem
from fms.models.template import FlowTemplate
from fms.services import outbox
from fms.services.due_dates import due_date_for_step
from fms.services.user_service import require_user, resolve_assignee, resolve_user
from fms.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


# ── Code Generation ──────────────────────────────────────────────────────────


def generate_project_code(attempt: int = 0) -> str:
    """Generate a project code: PRJ-0001, PRJ-0002, ...

    Numbering continues from the highest code in use, so hard-deleted
    projects never make the sequence hand out a live code again.
    ``attempt`` skips ahead after a collision.
    """
    highest = (
        db.session.query(func.max(cast(func.substr(Project.code, 5), Integer)))
        .filter(Project.code.like("PRJ-%"))
        .scalar()
    ) or 0
    return f"PRJ-{highest + 1 + attempt:04d}"


def _code_taken(code: str) -> bool:
    return db.session.query(Project.id).filter(Project.code == code).first() is not None


# ── Instantiation ────────────────────────────────────────────────────────────


def _build_tasks(template: FlowTemplate, start_at: datetime) -> list[ProjectTask]:
    """Build the ordered task list; raise if any step lacks an assignee."""
    weekend_day = current_app.config.get("FMS_WEEKEND_DAY", 6)
    missing = []
    tasks = []

    for index, step in enumerate(template.steps):
        assignee = resolve_assignee(step)
        if assignee is None:
            missing.append(step)
            continue

        task = ProjectTask(
            sequence=index,
            step_definition_id=step.id,
            step_no=step.step_no,
            what=step.what,
            how=step.how or "",
            timing_mode=step.timing_mode,
            assignee_id=assignee.id,
            requires_checklist=step.requires_checklist,
            requires_attachments=step.requires_attachments,
            mandatory_attachments=step.mandatory_attachments,
        )
        task.checklist_items = [
            TaskChecklistItem(position=item.position, text=item.text)
            for item in step.checklist_items
        ]

        # Task 0 always starts from the project start, whatever its mode.
        if index == 0 or step.timing_mode == "fixed_offset":
            due = due_date_for_step(start_at, step, template.skip_weekend, weekend_day)
            task.state = "pending"
            task.anchor_at = start_at
            task.planned_due_date = due
            task.original_planned_date = due
        elif step.timing_mode == "dependent_offset":
            task.state = "not_started"
        else:
            task.state = "awaiting_date"
        tasks.append(task)

    if missing:
        labels = [f"step {s.step_no} ({s.what})" for s in missing]
        raise ValidationError(
            "No active assignee for " + ", ".join(labels),
            details={"steps": [s.step_no for s in missing]},
        )
    return tasks


def instantiate_project(
    template_id,
    start_at,
    created_by_id,
    name=None,
    *,
    spawned_from_project_id=None,
    spawned_from_task_index=None,
):
    """Create and persist a Project from a template.

    Raises:
        NotFoundError: unknown template.
        ValidationError: inactive template, unknown creator, or a step
            without an active assignee (nothing is persisted).
        ConflictError: no free project code after FMS_PROJECT_CODE_RETRIES.
    """
    template = db.session.get(FlowTemplate, template_id)
    if template is None:
        raise NotFoundError(resource="Template", resource_id=template_id)
    if template.status != "active":
        raise ValidationError(
            f"Template {template.code} is inactive", details={"template_id": template_id},
        )
    if not template.steps:
        raise ValidationError(f"Template {template.code} has no steps")
    if start_at is None:
        raise ValidationError("start_at is required", details={"start_at": "required"})
    creator = require_user(created_by_id, "created_by")

    start_at = as_utc(start_at)
    project_name = (name or "").strip() or template.name
    retries = current_app.config.get("FMS_PROJECT_CODE_RETRIES", 5)

    # Validate assignees once before touching the code sequence.
    _build_tasks(template, start_at)

    code = None
    for attempt in range(retries):
        code = generate_project_code(attempt)
        if _code_taken(code):
            logger.debug("Project code %s taken, retrying", code)
            continue

        project = Project(
            code=code,
            template_id=template.id,
            name=project_name,
            start_at=start_at,
            created_by_id=creator.id,
            spawned_from_project_id=spawned_from_project_id,
            spawned_from_task_index=spawned_from_task_index,
            tasks_on_time=0,
            tasks_late=0,
            total_score=0,
        )
        project.tasks = _build_tasks(template, start_at)
        db.session.add(project)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.warning("Project code %s collided on insert (attempt %d/%d)",
                           code, attempt + 1, retries)
            continue

        logger.info(
            "Project created id=%s code=%s template=%s tasks=%d",
            project.id, project.code, template.code, len(project.tasks),
            extra={"project_id": project.id},
        )
        return project

    raise ConflictError("Project", "code", code)


# ── Load / commit with optimistic concurrency ────────────────────────────────


def get_project(project_id) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def load_project(project_id, expected_version=None) -> Project:
    """Load a project for mutation, checking the caller's version token."""
    project = get_project(project_id)
    if expected_version is not None and project.version != expected_version:
        raise ConcurrencyConflict("Project", project_id, expected_version, project.version)
    return project


def get_task(project: Project, task_index) -> ProjectTask:
    task = project.task_at(task_index)
    if task is None:
        raise NotFoundError(resource=f"Task in project {project.id}", resource_id=task_index)
    return task


def _stale_conflict(project_id, based_on) -> ConcurrencyConflict:
    db.session.rollback()
    current = db.session.query(Project.version).filter(Project.id == project_id).scalar()
    logger.info("Stale write on project %s (based on version %s, now %s)",
                project_id, based_on, current, extra={"project_id": project_id})
    return ConcurrencyConflict("Project", project_id, based_on, current)


@contextmanager
def project_write(project_id, expected_version=None):
    """Load a project and mutate it as one unit of work.

    Autoflush is off inside the block so the project row is written exactly
    once, by ``commit_project``.  A stale row hit by an explicit flush in the
    block is still reported as ConcurrencyConflict.

        with project_write(project_id, expected_version) as project:
            ...
        commit_project(project, events, expected_version)
    """
    project = load_project(project_id, expected_version)
    based_on = expected_version if expected_version is not None else project.version
    try:
        with db.session.no_autoflush:
            yield project
    except StaleDataError:
        raise _stale_conflict(project_id, based_on)


def commit_project(project: Project, events=None, expected_version=None):
    """Persist a mutated project and dispatch its outbox events.

    The project row is always touched so its version moves even when only
    child rows changed.  A concurrent writer surfaces as StaleDataError on
    flush and is reported as ConcurrencyConflict with nothing persisted.
    """
    project_id = project.id
    based_on = expected_version if expected_version is not None else project.version
    project.updated_at = utcnow()
    try:
        db.session.commit()
    except StaleDataError:
        raise _stale_conflict(project_id, based_on)

    if events and current_app.config.get("FMS_DISPATCH_INLINE", True):
        outbox.dispatch_events(events)
    return project


# ── Queries ──────────────────────────────────────────────────────────────────


def list_projects(user_id=None, role=None) -> list[Project]:
    """Return projects, newest first.

    Non-admin callers passing ``user_id`` see projects they created or
    have at least one task assigned in.
    """
    q = Project.query
    if user_id is not None and role != "admin":
        assigned = (
            db.session.query(ProjectTask.project_id)
            .filter(ProjectTask.assignee_id == user_id)
        )
        q = q.filter(or_(Project.created_by_id == user_id, Project.id.in_(assigned)))
    return q.order_by(Project.created_at.desc(), Project.id.desc()).all()


def can_complete(project: Project, task: ProjectTask) -> bool:
    if task.state not in ("pending", "in_progress"):
        return False
    if task.sequence == 0:
        return True
    return project.tasks[task.sequence - 1].is_closed


def pending_tasks_for_user(user_id) -> list[dict]:
    """Pending / in-progress tasks assigned to ``user_id`` across projects."""
    tasks = (
        ProjectTask.query
        .filter(
            ProjectTask.assignee_id == user_id,
            ProjectTask.state.in_(("pending", "in_progress")),
        )
        .order_by(ProjectTask.project_id, ProjectTask.sequence)
        .all()
    )
    result = []
    for task in tasks:
        project = task.project
        result.append({
            "project_id": project.id,
            "project_code": project.code,
            "project_name": project.name,
            "template_name": project.template.name if project.template else None,
            "task_index": task.sequence,
            "task": task.to_dict(),
            "can_complete": can_complete(project, task),
        })
    return result


# ── Delete ───────────────────────────────────────────────────────────────────


def delete_project(project_id, acting_user_id) -> None:
    """Hard-delete a project with its tasks and objections (admin only)."""
    user = resolve_user(acting_user_id)
    if user is None or not user.is_admin:
        raise AuthorizationError("Only administrators may delete projects")
    project = get_project(project_id)
    code = project.code
    db.session.delete(project)
    db.session.commit()
    logger.info("Project deleted id=%s code=%s by user=%s", project_id, code, user.id,
                extra={"project_id": project_id})
