"""
FMS Execution Engine
Outbox — side effects of task completion, isolated and retryable.

State transitions write OutboxEvent rows in the same transaction as the
transition itself (one row per registered consumer).  After the commit the
events are dispatched: each consumer runs in its own transaction, and a
failing consumer marks only its own row 'failed' for a later retry.  The
core transition is never rolled back by a consumer.

Consumers:
    - score_log:            appends the immutable ScoreLog record
    - trigger_propagation:  spawns the downstream project

Usage:
    @register_consumer("task_completed", "score_log")
    def append_score_log(payload):
        ...

    events = emit("task_completed", payload, project_id=project.id)
    db.session.commit()
    dispatch_events(events)
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from flask import current_app

from fms.models import db
from fms.models.outbox import OutboxEvent

logger = logging.getLogger(__name__)

# event_type → {consumer_name: handler}
_consumer_registry: dict[str, dict[str, Callable]] = {}

# Modules whose import registers the built-in consumers
CONSUMER_MODULES = (
    "fms.services.score_log_service",
    "fms.services.trigger_propagator",
)


def register_consumer(event_type: str, name: str):
    """Decorator to register an outbox consumer for ``event_type``.

    The handler receives the event payload dict.  It may raise; the
    dispatcher records the failure on the event row.
    """
    def decorator(fn: Callable) -> Callable:
        _consumer_registry.setdefault(event_type, {})[name] = fn
        return fn
    return decorator


def load_consumers() -> None:
    for module in CONSUMER_MODULES:
        importlib.import_module(module)


def get_consumers(event_type: str) -> dict[str, Callable]:
    """Return the consumers registered for ``event_type``."""
    return dict(_consumer_registry.get(event_type, {}))


def emit(event_type: str, payload: dict, project_id: int | None = None) -> list[OutboxEvent]:
    """Add one pending OutboxEvent per consumer to the current session.

    Nothing is committed here; the caller commits together with the state
    change that produced the event.
    """
    events = []
    for name in sorted(get_consumers(event_type)):
        event = OutboxEvent(
            event_type=event_type,
            consumer=name,
            project_id=project_id,
            payload=payload,
            status="pending",
            attempts=0,
        )
        db.session.add(event)
        events.append(event)
    if not events:
        logger.warning("No consumers registered for event_type=%s", event_type,
                       extra={"event_type": event_type})
    return events


def dispatch_event(event_id: int) -> bool:
    """Deliver one event to its consumer in its own transaction.

    Returns True when delivered.  Failures are recorded on the row and
    never propagate to the caller.
    """
    event = db.session.get(OutboxEvent, event_id)
    if event is None or event.status == "delivered":
        return False

    extra = {
        "event_type": event.event_type,
        "consumer": event.consumer,
        "project_id": event.project_id,
    }
    handler = get_consumers(event.event_type).get(event.consumer)
    if handler is None:
        event.attempts += 1
        event.status = "failed"
        event.last_error = f"No consumer registered: {event.consumer}"
        db.session.commit()
        logger.error("Outbox event %s has no consumer %s", event_id, event.consumer, extra=extra)
        return False

    payload = dict(event.payload or {})
    try:
        handler(payload)
        event = db.session.get(OutboxEvent, event_id)
        event.attempts += 1
        event.status = "delivered"
        event.last_error = None
        event.delivered_at = datetime.now(timezone.utc)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        event = db.session.get(OutboxEvent, event_id)
        event.attempts += 1
        event.status = "failed"
        event.last_error = f"{type(exc).__name__}: {exc}"[:2000]
        db.session.commit()
        logger.warning(
            "Outbox event %s (%s → %s) failed on attempt %d: %s",
            event_id, event.event_type, event.consumer, event.attempts, exc,
            extra=extra,
        )
        return False

    logger.info("Outbox event %s delivered to %s", event_id, event.consumer, extra=extra)
    return True


def dispatch_events(events) -> dict:
    """Dispatch freshly committed events (inline mode)."""
    ids = [e.id for e in events]
    delivered = sum(1 for event_id in ids if dispatch_event(event_id))
    return {"delivered": delivered, "failed": len(ids) - delivered}


def dispatch_pending_events(max_attempts: int | None = None, limit: int = 100) -> dict:
    """Deliver pending events and retry failed ones below ``max_attempts``.

    Returns counts: ``{"delivered", "failed", "exhausted"}``.
    """
    if max_attempts is None:
        max_attempts = current_app.config.get("FMS_OUTBOX_MAX_ATTEMPTS", 5)

    candidates = (
        OutboxEvent.query
        .filter(OutboxEvent.status.in_(("pending", "failed")))
        .order_by(OutboxEvent.id)
        .limit(limit)
        .all()
    )
    summary = {"delivered": 0, "failed": 0, "exhausted": 0}
    due_ids = []
    for event in candidates:
        if event.attempts >= max_attempts:
            summary["exhausted"] += 1
        else:
            due_ids.append(event.id)

    for event_id in due_ids:
        if dispatch_event(event_id):
            summary["delivered"] += 1
        else:
            summary["failed"] += 1

    logger.info("Outbox dispatch: %s", summary)
    return summary
