"""
FMS Execution Engine
Template Store models.

Models:
    - FlowTemplate:       ordered workflow definition (code FMS-0001)
    - StepDefinition:     one step of a template: what / who / how / when
    - StepChecklistItem:  checklist line copied into each project task

Architecture:
    FlowTemplate ──1:N──▶ StepDefinition ──N:M──▶ User  (eligible assignees)
    StepDefinition ──1:N──▶ StepChecklistItem
    StepDefinition ──N:1──▶ FlowTemplate  (optional downstream trigger)

Templates are read-only to the engine.  Once a Project references a
template, template_service refuses further edits so running instances keep
the definition they were created from.
"""

from datetime import datetime, timezone

from fms.models import db

# ── Constants ────────────────────────────────────────────────────────────────

TEMPLATE_STATUSES = {"active", "inactive"}

TIMING_MODES = {"fixed_offset", "dependent_offset", "ask_on_completion"}

OFFSET_UNITS = {"hours", "days", "days+hours"}


step_assignees = db.Table(
    "step_assignees",
    db.Column(
        "step_id", db.Integer,
        db.ForeignKey("step_definitions.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column(
        "user_id", db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


# ═════════════════════════════════════════════════════════════════════════════
# 1. FlowTemplate
# ═════════════════════════════════════════════════════════════════════════════


class FlowTemplate(db.Model):
    """Ordered list of step definitions a Project is instantiated from."""

    __tablename__ = "flow_templates"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(
        db.String(30), unique=True, nullable=False,
        comment="Auto-generated: FMS-0001",
    )
    name = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="active")
    skip_weekend = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="Due dates landing on the weekend day move forward one day",
    )
    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("status IN ('active','inactive')", name="ck_template_status"),
    )

    steps = db.relationship(
        "StepDefinition",
        back_populates="template",
        foreign_keys="StepDefinition.template_id",
        order_by="StepDefinition.step_no",
        cascade="all, delete-orphan",
    )
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    def to_dict(self, include_steps=True):
        result = {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "status": self.status,
            "skip_weekend": self.skip_weekend,
            "created_by_id": self.created_by_id,
            "step_count": len(self.steps),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_steps:
            result["steps"] = [s.to_dict() for s in self.steps]
        return result

    def __repr__(self):
        return f"<FlowTemplate {self.id}: {self.code} {self.name}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. StepDefinition
# ═════════════════════════════════════════════════════════════════════════════


class StepDefinition(db.Model):
    """
    One step of a template.

    Timing:
        fixed_offset       due = project start + offset
        dependent_offset   due = predecessor completion + offset
        ask_on_completion  due supplied by a human once the predecessor is done
    """

    __tablename__ = "step_definitions"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("flow_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_no = db.Column(db.Integer, nullable=False, comment="1-based execution order")
    what = db.Column(db.String(300), nullable=False)
    how = db.Column(db.Text, default="")

    timing_mode = db.Column(db.String(30), nullable=False, default="fixed_offset")
    offset_value = db.Column(db.Integer, nullable=False, default=0)
    offset_unit = db.Column(db.String(20), nullable=False, default="days")
    offset_days = db.Column(db.Integer, nullable=True, comment="days+hours only")
    offset_hours = db.Column(db.Integer, nullable=True, comment="days+hours only")

    requires_checklist = db.Column(db.Boolean, nullable=False, default=False)
    requires_attachments = db.Column(db.Boolean, nullable=False, default=False)
    mandatory_attachments = db.Column(db.Boolean, nullable=False, default=False)

    triggers_template_id = db.Column(
        db.Integer, db.ForeignKey("flow_templates.id", ondelete="SET NULL"),
        nullable=True, comment="Downstream template spawned when this step completes",
    )

    __table_args__ = (
        db.UniqueConstraint("template_id", "step_no", name="uq_step_template_no"),
        db.CheckConstraint(
            "timing_mode IN ('fixed_offset','dependent_offset','ask_on_completion')",
            name="ck_step_timing_mode",
        ),
        db.CheckConstraint(
            "offset_unit IN ('hours','days','days+hours')",
            name="ck_step_offset_unit",
        ),
    )

    template = db.relationship(
        "FlowTemplate", back_populates="steps", foreign_keys=[template_id],
    )
    triggers_template = db.relationship("FlowTemplate", foreign_keys=[triggers_template_id])
    assignees = db.relationship("User", secondary=step_assignees, order_by="User.id")
    checklist_items = db.relationship(
        "StepChecklistItem", back_populates="step",
        order_by="StepChecklistItem.position",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "step_no": self.step_no,
            "what": self.what,
            "how": self.how,
            "assignee_ids": [u.id for u in self.assignees],
            "timing_mode": self.timing_mode,
            "offset_value": self.offset_value,
            "offset_unit": self.offset_unit,
            "offset_days": self.offset_days,
            "offset_hours": self.offset_hours,
            "requires_checklist": self.requires_checklist,
            "checklist_items": [c.text for c in self.checklist_items],
            "requires_attachments": self.requires_attachments,
            "mandatory_attachments": self.mandatory_attachments,
            "triggers_template_id": self.triggers_template_id,
        }

    def __repr__(self):
        return f"<StepDefinition {self.id}: #{self.step_no} {self.what[:40]}>"


class StepChecklistItem(db.Model):
    __tablename__ = "step_checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    step_id = db.Column(
        db.Integer, db.ForeignKey("step_definitions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    text = db.Column(db.String(500), nullable=False)

    step = db.relationship("StepDefinition", back_populates="checklist_items")
