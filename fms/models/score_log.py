"""
ScoreLog model — immutable record of one scoring event.

Records are written once by the score-log outbox consumer and never
updated or deleted; user summaries are computed from them on demand.
"""

from datetime import datetime, timezone

from fms.models import db
from fms.utils.helpers import as_utc


class ScoreLog(db.Model):
    __tablename__ = "score_logs"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    task_index = db.Column(db.Integer, nullable=False)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    entity_title = db.Column(db.String(600), nullable=False)

    anchor_date = db.Column(db.DateTime(timezone=True), nullable=True)
    planned_date = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_date = db.Column(db.DateTime(timezone=True), nullable=False)
    planned_days = db.Column(db.Integer, nullable=False)
    actual_days = db.Column(db.Integer, nullable=False)

    score = db.Column(db.Float, nullable=False)
    score_percentage = db.Column(db.Float, nullable=False)
    was_on_time = db.Column(db.Boolean, nullable=False)
    score_impacted = db.Column(db.Boolean, nullable=False, default=False)
    impact_reason = db.Column(db.String(200), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("score >= 0 AND score <= 1", name="ck_score_log_range"),
        db.Index("ix_score_logs_user_completed", "user_id", "completed_date"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "task_index": self.task_index,
            "user_id": self.user_id,
            "entity_title": self.entity_title,
            "anchor_date": as_utc(self.anchor_date).isoformat() if self.anchor_date else None,
            "planned_date": as_utc(self.planned_date).isoformat() if self.planned_date else None,
            "completed_date": as_utc(self.completed_date).isoformat() if self.completed_date else None,
            "planned_days": self.planned_days,
            "actual_days": self.actual_days,
            "score": self.score,
            "score_percentage": self.score_percentage,
            "was_on_time": self.was_on_time,
            "score_impacted": self.score_impacted,
            "impact_reason": self.impact_reason,
            "created_at": as_utc(self.created_at).isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<ScoreLog {self.id}: project={self.project_id} task={self.task_index} score={self.score}>"
