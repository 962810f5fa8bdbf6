"""
Pending Session Model - Scraped records held back for manual review.

Holds the raw payload, whatever fields could be parsed, the validation
errors and the completeness score. An admin either fixes the data
(manually_fixed -> imported) or discards it.
"""
from datetime import datetime

from constants import PENDING_SESSION_STATUSES
from models.database import db, enum_check


class PendingSession(db.Model):
    """Scraped session that failed validation."""

    __tablename__ = "pending_sessions"

    id = db.Column(db.Integer, primary_key=True)
    source_id = db.Column(db.Integer, db.ForeignKey("scrape_sources.id", ondelete="CASCADE"), nullable=False, index=True)
    job_id = db.Column(db.Integer, db.ForeignKey("scrape_jobs.id", ondelete="SET NULL"), nullable=True)
    city_id = db.Column(db.Integer, db.ForeignKey("cities.id"), nullable=True, index=True)

    raw_data = db.Column(db.JSON, nullable=False)
    partial_data = db.Column(db.JSON, nullable=False, default=dict)
    validation_errors = db.Column(db.JSON, nullable=False, default=list)  # [{"field", "error"}]
    missing_fields = db.Column(db.JSON, nullable=False, default=list)
    completeness_score = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(20), nullable=False, default="pending_review", index=True)
    reviewed_by = db.Column(db.String(255))
    reviewed_at = db.Column(db.DateTime)
    imported_session_id = db.Column(db.Integer, db.ForeignKey("sessions.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        enum_check("status", PENDING_SESSION_STATUSES, "pending_sessions_status_check"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "job_id": self.job_id,
            "raw_data": self.raw_data,
            "partial_data": self.partial_data or {},
            "validation_errors": self.validation_errors or [],
            "missing_fields": self.missing_fields or [],
            "completeness_score": self.completeness_score,
            "status": self.status,
            "reviewed_by": self.reviewed_by,
            "imported_session_id": self.imported_session_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<PendingSession {self.id} source={self.source_id} {self.status}>"
