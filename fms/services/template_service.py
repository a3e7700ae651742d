"""
FMS Execution Engine — Template Store service.

Business logic for:
    - Code generation:     FMS-0001, FMS-0002 (global)
    - Create / read:       templates with ordered step definitions
    - Immutability:        step edits rejected once a Project references the template
    - Duration summary:    total offset of all steps, "N days H hours"
"""

import logging

from sqlalchemy import func

from fms.core.exceptions import IllegalStateError, NotFoundError, ValidationError
from fms.models import db
from fms.models.project import Project
from fms.models.template import (
    OFFSET_UNITS,
    TEMPLATE_STATUSES,
    TIMING_MODES,
    FlowTemplate,
    StepChecklistItem,
    StepDefinition,
)
from fms.models.user import User

logger = logging.getLogger(__name__)


# ── Code Generation ──────────────────────────────────────────────────────────


def generate_template_code() -> str:
    """Generate next template code: FMS-0001, FMS-0002, ..."""
    count = db.session.query(func.count(FlowTemplate.id)).scalar() or 0
    return f"FMS-{count + 1:04d}"


# ── Validation ───────────────────────────────────────────────────────────────


def _int_field(raw, field, errors, default=0):
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        errors[field] = "must be an integer"
        return default
    if value < 0:
        errors[field] = "must not be negative"
    return value


def _build_step(position: int, data: dict) -> StepDefinition:
    """Validate one step payload and return an unsaved StepDefinition."""
    step_no = position + 1
    errors = {}
    prefix = f"steps[{position}]"

    what = (data.get("what") or "").strip()
    if not what:
        errors[f"{prefix}.what"] = "required"

    timing_mode = data.get("timing_mode") or "fixed_offset"
    if timing_mode not in TIMING_MODES:
        errors[f"{prefix}.timing_mode"] = f"must be one of {sorted(TIMING_MODES)}"

    offset_unit = data.get("offset_unit") or "days"
    if offset_unit not in OFFSET_UNITS:
        errors[f"{prefix}.offset_unit"] = f"must be one of {sorted(OFFSET_UNITS)}"

    offset_value = _int_field(data.get("offset_value"), f"{prefix}.offset_value", errors)
    offset_days = _int_field(data.get("offset_days"), f"{prefix}.offset_days", errors, None)
    offset_hours = _int_field(data.get("offset_hours"), f"{prefix}.offset_hours", errors, None)

    assignee_ids = data.get("assignee_ids") or []
    if not isinstance(assignee_ids, list):
        errors[f"{prefix}.assignee_ids"] = "must be a list of user ids"
        assignee_ids = []
    assignees = []
    for uid in assignee_ids:
        user = db.session.get(User, uid) if isinstance(uid, int) else None
        if user is None:
            errors[f"{prefix}.assignee_ids"] = f"unknown user id {uid!r}"
            break
        assignees.append(user)

    triggers_template_id = data.get("triggers_template_id")
    if triggers_template_id is not None and db.session.get(FlowTemplate, triggers_template_id) is None:
        errors[f"{prefix}.triggers_template_id"] = f"unknown template id {triggers_template_id!r}"

    checklist = data.get("checklist_items") or []
    requires_checklist = bool(data.get("requires_checklist", bool(checklist)))
    if requires_checklist and not checklist:
        errors[f"{prefix}.checklist_items"] = "required when requires_checklist is set"

    mandatory = bool(data.get("mandatory_attachments", False))
    requires_attachments = bool(data.get("requires_attachments", mandatory))

    if errors:
        raise ValidationError(f"Step {step_no} is invalid", details=errors)

    step = StepDefinition(
        step_no=step_no,
        what=what,
        how=data.get("how") or "",
        timing_mode=timing_mode,
        offset_value=offset_value,
        offset_unit=offset_unit,
        offset_days=offset_days,
        offset_hours=offset_hours,
        requires_checklist=requires_checklist,
        requires_attachments=requires_attachments,
        mandatory_attachments=mandatory,
        triggers_template_id=triggers_template_id,
    )
    step.assignees = assignees
    step.checklist_items = [
        StepChecklistItem(position=i, text=str(text).strip())
        for i, text in enumerate(checklist)
    ]
    return step


# ── CRUD ─────────────────────────────────────────────────────────────────────


def create_template(data: dict, created_by_id=None) -> FlowTemplate:
    """Create a template with its ordered steps.

    Args:
        data: ``{"name", "skip_weekend"?, "steps": [{what, how, assignee_ids,
              timing_mode, offset_value, offset_unit, ...}]}``
        created_by_id: Author user id (optional).

    Raises:
        ValidationError: missing name, no steps, or an invalid step.
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Template name is required", details={"name": "required"})

    steps_data = data.get("steps")
    if not isinstance(steps_data, list) or not steps_data:
        raise ValidationError("A template needs at least one step", details={"steps": "required"})

    steps = [_build_step(i, s or {}) for i, s in enumerate(steps_data)]

    template = FlowTemplate(
        code=generate_template_code(),
        name=name,
        status="active",
        skip_weekend=bool(data.get("skip_weekend", False)),
        created_by_id=created_by_id,
    )
    template.steps = steps
    db.session.add(template)
    db.session.commit()
    logger.info("FlowTemplate created id=%s code=%s steps=%d", template.id, template.code, len(steps))
    return template


def get_template(template_id: int) -> FlowTemplate:
    template = db.session.get(FlowTemplate, template_id)
    if template is None:
        raise NotFoundError(resource="Template", resource_id=template_id)
    return template


def list_templates(include_inactive: bool = False) -> list[FlowTemplate]:
    q = FlowTemplate.query
    if not include_inactive:
        q = q.filter_by(status="active")
    return q.order_by(FlowTemplate.created_at.desc(), FlowTemplate.id.desc()).all()


def is_referenced(template_id: int) -> bool:
    count = (
        db.session.query(func.count(Project.id))
        .filter(Project.template_id == template_id)
        .scalar()
    ) or 0
    return count > 0


def update_template(template_id: int, data: dict) -> FlowTemplate:
    """Update a template.

    ``status`` may always change.  Name, weekend rule and steps are frozen
    as soon as a Project has been instantiated from the template.
    """
    template = get_template(template_id)

    structural = {"name", "skip_weekend", "steps"} & set(data)
    if structural and is_referenced(template_id):
        raise IllegalStateError(
            f"Template {template.code} is used by existing projects and cannot be edited",
            details={"fields": sorted(structural)},
        )

    if "status" in data:
        if data["status"] not in TEMPLATE_STATUSES:
            raise ValidationError(
                f"Invalid status '{data['status']}'",
                details={"status": f"must be one of {sorted(TEMPLATE_STATUSES)}"},
            )
        template.status = data["status"]
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Template name is required", details={"name": "required"})
        template.name = name
    if "skip_weekend" in data:
        template.skip_weekend = bool(data["skip_weekend"])
    if "steps" in data:
        steps_data = data["steps"]
        if not isinstance(steps_data, list) or not steps_data:
            raise ValidationError("A template needs at least one step", details={"steps": "required"})
        new_steps = [_build_step(i, s or {}) for i, s in enumerate(steps_data)]
        template.steps.clear()
        db.session.flush()
        template.steps = new_steps

    db.session.commit()
    logger.info("FlowTemplate updated id=%s", template.id)
    return template


# ── Summaries ────────────────────────────────────────────────────────────────


def step_offset_hours(step) -> int:
    if step.offset_unit == "hours":
        return step.offset_value or 0
    if step.offset_unit == "days":
        return (step.offset_value or 0) * 24
    return (step.offset_days or 0) * 24 + (step.offset_hours or 0)


def total_duration(template: FlowTemplate) -> dict:
    """Sum of all step offsets, e.g. ``{"hours": 54, "formatted": "2 days 6 hours"}``."""
    total_hours = sum(step_offset_hours(s) for s in template.steps)
    days, hours = divmod(total_hours, 24)
    formatted = f"{days} days {hours} hours" if days > 0 else f"{hours} hours"
    return {"hours": total_hours, "formatted": formatted}


def template_summary(template: FlowTemplate, include_steps: bool = True) -> dict:
    result = template.to_dict(include_steps=include_steps)
    result["total_duration"] = total_duration(template)
    return result
