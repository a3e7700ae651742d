"""
Objection model — proposed date change / hold / termination of a task.

Objections are appended to a task and addressed by their own primary key,
never by position.  status moves exactly once from 'pending' to 'approved'
or 'rejected'; approving is the only path that mutates the owning task's
schedule, hold or termination (see objection_service).
"""

from datetime import datetime, timezone

from fms.models import db
from fms.utils.helpers import as_utc

OBJECTION_TYPES = frozenset({"date_change", "hold", "terminate"})

OBJECTION_STATUSES = frozenset({"pending", "approved", "rejected"})

OBJECTION_DECISIONS = frozenset({"approved", "rejected"})


class Objection(db.Model):
    __tablename__ = "objections"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("project_tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    type = db.Column(db.String(20), nullable=False, comment="date_change | hold | terminate")
    requested_date = db.Column(db.DateTime(timezone=True), nullable=True)
    extra_days_requested = db.Column(
        db.Integer, nullable=True,
        comment="ceil(requested_date - planned_due_date) in days; audit only",
    )
    remarks = db.Column(db.Text, nullable=False)
    requested_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    requested_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    status = db.Column(db.String(20), nullable=False, default="pending")
    approved_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    approval_remarks = db.Column(db.Text, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    impact_score = db.Column(db.Boolean, nullable=True)

    __table_args__ = (
        db.CheckConstraint(
            "type IN ('date_change','hold','terminate')", name="ck_objection_type",
        ),
        db.CheckConstraint(
            "status IN ('pending','approved','rejected')", name="ck_objection_status",
        ),
        db.Index("ix_objections_status", "status"),
    )

    task = db.relationship("ProjectTask", back_populates="objections")
    requested_by = db.relationship("User", foreign_keys=[requested_by_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_id])

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "type": self.type,
            "requested_date": as_utc(self.requested_date).isoformat() if self.requested_date else None,
            "extra_days_requested": self.extra_days_requested,
            "remarks": self.remarks,
            "requested_by_id": self.requested_by_id,
            "requested_at": as_utc(self.requested_at).isoformat() if self.requested_at else None,
            "status": self.status,
            "approved_by_id": self.approved_by_id,
            "approval_remarks": self.approval_remarks,
            "approved_at": as_utc(self.approved_at).isoformat() if self.approved_at else None,
            "impact_score": self.impact_score,
        }

    def __repr__(self):
        return f"<Objection {self.id}: {self.type} [{self.status}]>"
