"""
Scrape Change Model - Detected difference between two scrapes.

Append-only: rows are never edited after insert except for the
notified/notified_at pair, which the notification fan-out sets once the
change has been delivered (or deliberately skipped).
"""
from datetime import datetime

from constants import CHANGE_TYPES
from models.database import db, enum_check


class ScrapeChange(db.Model):
    """Change detected while importing a source's sessions."""

    __tablename__ = "scrape_changes"

    id = db.Column(db.Integer, primary_key=True)
    source_id = db.Column(db.Integer, db.ForeignKey("scrape_sources.id", ondelete="CASCADE"), nullable=False, index=True)
    job_id = db.Column(db.Integer, db.ForeignKey("scrape_jobs.id", ondelete="SET NULL"), nullable=True)
    session_id = db.Column(db.Integer, db.ForeignKey("sessions.id", ondelete="SET NULL"), nullable=True, index=True)

    change_type = db.Column(db.String(30), nullable=False)
    previous_value = db.Column(db.Text)
    new_value = db.Column(db.Text)
    detected_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    notified = db.Column(db.Boolean, nullable=False, default=False)
    notified_at = db.Column(db.DateTime)

    __table_args__ = (
        db.Index("ix_scrape_changes_unnotified", "notified", "detected_at"),
        db.Index("ix_scrape_changes_type_detected", "change_type", "detected_at"),
        enum_check("change_type", CHANGE_TYPES, "scrape_changes_type_check"),
    )

    def mark_notified(self):
        self.notified = True
        self.notified_at = datetime.utcnow()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "job_id": self.job_id,
            "session_id": self.session_id,
            "change_type": self.change_type,
            "previous_value": self.previous_value,
            "new_value": self.new_value,
            "detected_at": self.detected_at.isoformat() if self.detected_at else None,
            "notified": self.notified,
        }

    def __repr__(self):
        return f"<ScrapeChange {self.id} {self.change_type} session={self.session_id}>"
