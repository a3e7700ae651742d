"""
OutboxEvent model — side effects recorded in the same transaction as the
state change that caused them.

One row is written per (event, consumer) pair, so a consumer that fails can
be retried on its own without re-running the others or the core transition.

Lifecycle:
    pending → delivered
    pending → failed (attempts < max: picked up again by dispatch)
"""

from datetime import datetime, timezone

from fms.models import db

OUTBOX_STATUSES = {"pending", "delivered", "failed"}


class OutboxEvent(db.Model):
    __tablename__ = "outbox_events"

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(50), nullable=False, comment="e.g. task_completed")
    consumer = db.Column(db.String(50), nullable=False)
    project_id = db.Column(db.Integer, nullable=True, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)

    status = db.Column(db.String(20), nullable=False, default="pending")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending','delivered','failed')", name="ck_outbox_status",
        ),
        db.Index("ix_outbox_status", "status"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "consumer": self.consumer,
            "project_id": self.project_id,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
        }

    def __repr__(self) -> str:
        return f"<OutboxEvent {self.id}: {self.event_type}->{self.consumer} [{self.status}]>"
