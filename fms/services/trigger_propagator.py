"""
Trigger Propagator — spawns the downstream project of a completed step.

Runs as the ``trigger_propagation`` outbox consumer, after the completion
has been committed, so a failure here can never undo the completion:

    template missing / inactive  → warning, event delivered, no project
    any other failure            → exception, event marked failed and
                                   retried by dispatch_pending_events
"""

import logging

from fms.models import db
from fms.models.project import Project
from fms.models.template import FlowTemplate
from fms.services.outbox import register_consumer
from fms.services.project_service import instantiate_project
from fms.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def spawned_name(template_name: str, source_name: str) -> str:
    return f"Auto-triggered: {template_name} (from {source_name})"


@register_consumer("task_completed", "trigger_propagation")
def propagate_trigger(payload: dict) -> Project | None:
    template_id = payload.get("triggers_template_id")
    if not template_id:
        return None

    project_id = payload["project_id"]
    task_index = payload["task_index"]
    extra = {"project_id": project_id, "task_index": task_index, "event_type": "task_completed"}

    template = db.session.get(FlowTemplate, template_id)
    if template is None or template.status != "active":
        logger.warning(
            "Downstream template %s of project %s task %s not found; nothing spawned",
            template_id, project_id, task_index, extra=extra,
        )
        return None

    existing = Project.query.filter_by(
        spawned_from_project_id=project_id, spawned_from_task_index=task_index,
    ).first()
    if existing is not None:
        logger.info("Project %s already spawned from project %s task %s",
                    existing.code, project_id, task_index, extra=extra)
        return existing

    spawned = instantiate_project(
        template.id,
        utcnow(),
        payload.get("completed_by_id"),
        name=spawned_name(template.name, payload.get("project_name") or str(project_id)),
        spawned_from_project_id=project_id,
        spawned_from_task_index=task_index,
    )
    logger.info(
        "Project %s spawned from project %s task %s via template %s",
        spawned.code, project_id, task_index, template.code, extra=extra,
    )
    return spawned
