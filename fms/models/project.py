"""
FMS Execution Engine
Project instance models.

Models:
    - Project:            running instance of a FlowTemplate (code PRJ-0001)
    - ProjectTask:        runtime record of one step, single tagged state
    - TaskChecklistItem:  checklist line with completion flag
    - TaskAttachment:     attachment metadata recorded at completion

Architecture:
    FlowTemplate ──1:N──▶ Project ──1:N──▶ ProjectTask ──1:N──▶ Objection
    ProjectTask ──1:N──▶ TaskChecklistItem
    ProjectTask ──1:N──▶ TaskAttachment
    Project ──N:1──▶ Project  (spawned_from, set by trigger propagation)

Task lifecycle (one column, no flag combinations):
    not_started → pending → in_progress → done
    awaiting_date → pending | done
    <open state> → on_hold → <held_from_state>
    <any but terminated> → terminated

Concurrency:
    Project.version is the SQLAlchemy version_id_col.  Every service-level
    mutation touches the Project row, so a stale writer fails on flush
    instead of silently overwriting (see project_service.commit_project).
"""

from datetime import datetime, timezone

from fms.models import db
from fms.utils.helpers import as_utc

# ── Constants ────────────────────────────────────────────────────────────────

TASK_STATES = {
    "not_started", "awaiting_date", "pending", "in_progress",
    "on_hold", "terminated", "done",
}

OPEN_STATES = {"not_started", "awaiting_date", "pending", "in_progress"}

CLOSED_STATES = {"done", "terminated"}

TASK_TRANSITIONS = {
    "not_started":   ["pending", "on_hold", "terminated"],
    "awaiting_date": ["pending", "done", "on_hold", "terminated"],
    "pending":       ["in_progress", "done", "on_hold", "terminated"],
    "in_progress":   ["done", "on_hold", "terminated"],
    "on_hold":       ["not_started", "awaiting_date", "pending", "in_progress", "terminated"],
    "done":          ["terminated"],
    "terminated":    [],
}

# Serialized status vocabulary of the original task records.
LEGACY_STATUS = {
    "not_started": "NotStarted",
    "awaiting_date": "AwaitingDate",
    "pending": "Pending",
    "in_progress": "InProgress",
    "done": "Done",
    "terminated": "Done",
}


def validate_task_transition(old_state, new_state):
    """Return True if ProjectTask state transition is valid."""
    return new_state in TASK_TRANSITIONS.get(old_state, [])


def _iso(value):
    return as_utc(value).isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. Project
# ═════════════════════════════════════════════════════════════════════════════


class Project(db.Model):
    """
    Running instance of a template.
    Status is derived from task states, never stored.
    """

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(
        db.String(30), unique=True, nullable=False,
        comment="Auto-generated: PRJ-0001",
    )
    template_id = db.Column(
        db.Integer, db.ForeignKey("flow_templates.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(300), nullable=False)
    start_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    spawned_from_project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    spawned_from_task_index = db.Column(db.Integer, nullable=True)

    # Aggregate scoring
    tasks_on_time = db.Column(db.Integer, nullable=False, default=0)
    tasks_late = db.Column(db.Integer, nullable=False, default=0)
    total_score = db.Column(db.Integer, nullable=False, default=0, comment="0..100")

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    tasks = db.relationship(
        "ProjectTask", back_populates="project",
        order_by="ProjectTask.sequence",
        cascade="all, delete-orphan",
    )
    template = db.relationship("FlowTemplate")
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    @property
    def status(self) -> str:
        if self.tasks and all(t.state in CLOSED_STATES for t in self.tasks):
            return "completed"
        return "active"

    def task_at(self, index):
        """Return the task at a 0-based position, or None."""
        if index is None or index < 0 or index >= len(self.tasks):
            return None
        return self.tasks[index]

    def to_dict(self, include_tasks=True):
        result = {
            "id": self.id,
            "code": self.code,
            "template_id": self.template_id,
            "template_name": self.template.name if self.template else None,
            "name": self.name,
            "start_at": _iso(self.start_at),
            "status": self.status,
            "created_by_id": self.created_by_id,
            "spawned_from_project_id": self.spawned_from_project_id,
            "spawned_from_task_index": self.spawned_from_task_index,
            "tasks_on_time": self.tasks_on_time,
            "tasks_late": self.tasks_late,
            "total_score": self.total_score,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_tasks:
            result["tasks"] = [t.to_dict() for t in self.tasks]
        return result

    def __repr__(self):
        return f"<Project {self.id}: {self.code} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. ProjectTask
# ═════════════════════════════════════════════════════════════════════════════


class ProjectTask(db.Model):
    """
    Runtime record of one template step inside a project.

    planned_due_date is the live target; original_planned_date is frozen at
    the first computation and is the default scoring baseline.  anchor_at is
    the instant the task's clock started (project start for fixed steps,
    predecessor completion for dependent / ask-on-completion steps).
    """

    __tablename__ = "project_tasks"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_definition_id = db.Column(
        db.Integer, db.ForeignKey("step_definitions.id", ondelete="SET NULL"),
        nullable=True,
    )
    sequence = db.Column(db.Integer, nullable=False, comment="0-based task index")
    step_no = db.Column(db.Integer, nullable=False)
    what = db.Column(db.String(300), nullable=False)
    how = db.Column(db.Text, default="")
    timing_mode = db.Column(db.String(30), nullable=False)

    assignee_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    state = db.Column(db.String(20), nullable=False, default="not_started")
    held_from_state = db.Column(
        db.String(20), nullable=True,
        comment="State to return to when an on_hold task is resumed",
    )

    planned_due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    original_planned_date = db.Column(db.DateTime(timezone=True), nullable=True)
    anchor_at = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_completed_on = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    notes = db.Column(db.Text, nullable=True)

    requires_checklist = db.Column(db.Boolean, nullable=False, default=False)
    requires_attachments = db.Column(db.Boolean, nullable=False, default=False)
    mandatory_attachments = db.Column(db.Boolean, nullable=False, default=False)

    # Scoring
    score_impacted = db.Column(db.Boolean, nullable=False, default=False)
    planned_days = db.Column(db.Integer, nullable=True)
    actual_days = db.Column(db.Integer, nullable=True)
    completion_score = db.Column(db.Float, nullable=True)
    was_on_time = db.Column(db.Boolean, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("project_id", "sequence", name="uq_project_task_sequence"),
        db.CheckConstraint(
            "state IN ('not_started','awaiting_date','pending','in_progress',"
            "'on_hold','terminated','done')",
            name="ck_project_task_state",
        ),
        db.CheckConstraint(
            "(state = 'on_hold') = (held_from_state IS NOT NULL)",
            name="ck_project_task_hold",
        ),
    )

    project = db.relationship("Project", back_populates="tasks")
    step_definition = db.relationship("StepDefinition")
    assignee = db.relationship("User", foreign_keys=[assignee_id])
    completed_by = db.relationship("User", foreign_keys=[completed_by_id])
    checklist_items = db.relationship(
        "TaskChecklistItem", back_populates="task",
        order_by="TaskChecklistItem.position",
        cascade="all, delete-orphan",
    )
    attachments = db.relationship(
        "TaskAttachment", back_populates="task",
        order_by="TaskAttachment.id",
        cascade="all, delete-orphan",
    )
    objections = db.relationship(
        "Objection", back_populates="task",
        order_by="Objection.id",
        cascade="all, delete-orphan",
    )

    @property
    def is_on_hold(self) -> bool:
        return self.state == "on_hold"

    @property
    def is_terminated(self) -> bool:
        return self.state == "terminated"

    @property
    def is_closed(self) -> bool:
        return self.state in CLOSED_STATES

    @property
    def effective_state(self) -> str:
        """State ignoring a hold (the state the task will resume into)."""
        return self.held_from_state if self.state == "on_hold" else self.state

    @property
    def status(self) -> str:
        return LEGACY_STATUS[self.effective_state]

    def pending_objections(self):
        return [o for o in self.objections if o.status == "pending"]

    def to_dict(self, objections=None):
        if objections is None:
            objections = self.objections
        return {
            "id": self.id,
            "task_index": self.sequence,
            "step_no": self.step_no,
            "what": self.what,
            "how": self.how,
            "timing_mode": self.timing_mode,
            "assignee_id": self.assignee_id,
            "state": self.state,
            "status": self.status,
            "is_on_hold": self.is_on_hold,
            "is_terminated": self.is_terminated,
            "planned_due_date": _iso(self.planned_due_date),
            "original_planned_date": _iso(self.original_planned_date),
            "anchor_at": _iso(self.anchor_at),
            "actual_completed_on": _iso(self.actual_completed_on),
            "completed_by_id": self.completed_by_id,
            "notes": self.notes,
            "requires_checklist": self.requires_checklist,
            "checklist_items": [c.to_dict() for c in self.checklist_items],
            "requires_attachments": self.requires_attachments,
            "mandatory_attachments": self.mandatory_attachments,
            "attachments": [a.to_dict() for a in self.attachments],
            "score_impacted": self.score_impacted,
            "planned_days": self.planned_days,
            "actual_days": self.actual_days,
            "completion_score": self.completion_score,
            "was_on_time": self.was_on_time,
            "objections": [o.to_dict() for o in objections],
        }

    def __repr__(self):
        return f"<ProjectTask {self.id}: #{self.sequence} {self.what[:40]} [{self.state}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. Checklist items & attachments
# ═════════════════════════════════════════════════════════════════════════════


class TaskChecklistItem(db.Model):
    __tablename__ = "task_checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("project_tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    text = db.Column(db.String(500), nullable=False)
    completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    task = db.relationship("ProjectTask", back_populates="checklist_items")

    def to_dict(self):
        return {
            "id": self.id,
            "text": self.text,
            "completed": self.completed,
            "completed_by_id": self.completed_by_id,
        }


class TaskAttachment(db.Model):
    """Metadata only — file storage is handled outside the engine."""

    __tablename__ = "task_attachments"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("project_tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    filename = db.Column(db.String(300), nullable=False)
    original_name = db.Column(db.String(300), nullable=False)
    path = db.Column(db.String(500), nullable=False)
    size = db.Column(db.Integer, nullable=False, default=0)
    uploaded_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    uploaded_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    task = db.relationship("ProjectTask", back_populates="attachments")

    def to_dict(self):
        return {
            "id": self.id,
            "filename": self.filename,
            "original_name": self.original_name,
            "path": self.path,
            "size": self.size,
            "uploaded_by_id": self.uploaded_by_id,
            "uploaded_at": _iso(self.uploaded_at),
        }
