"""
Scrape Job Model - One execution attempt of a source.

Tracks:
- Run lifecycle (pending -> running -> completed/failed)
- Session counts (found, created, updated)
- Error message on failure (also copied into the source health)

At most one pending and one running job may exist per source; this is
checked by services.scrape_jobs.create_scrape_job.
"""
from datetime import datetime

from constants import JOB_STATUSES
from models.database import db, enum_check


class ScrapeJob(db.Model):
    """Tracks individual scrape executions."""

    __tablename__ = "scrape_jobs"

    id = db.Column(db.Integer, primary_key=True)
    source_id = db.Column(
        db.Integer,
        db.ForeignKey("scrape_sources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    triggered_by = db.Column(db.String(50), default="manual")  # manual, scheduler, dev-approval
    retry_count = db.Column(db.Integer, nullable=False, default=0)

    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)

    sessions_found = db.Column(db.Integer, default=0)
    sessions_created = db.Column(db.Integer, default=0)
    sessions_updated = db.Column(db.Integer, default=0)
    sessions_pending = db.Column(db.Integer, default=0)

    error_message = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    source = db.relationship("ScrapeSource", backref=db.backref("jobs", lazy="dynamic"))

    __table_args__ = (
        db.Index("ix_scrape_jobs_source_status", "source_id", "status"),
        enum_check("status", JOB_STATUSES, "scrape_jobs_status_check"),
    )

    def start(self):
        """Mark job as started."""
        self.status = "running"
        self.started_at = datetime.utcnow()

    def complete(self, stats: dict = None):
        """Mark job as completed with session counts."""
        self.status = "completed"
        self.completed_at = datetime.utcnow()
        if stats:
            self.sessions_found = stats.get("found", self.sessions_found)
            self.sessions_created = stats.get("created", self.sessions_created)
            self.sessions_updated = stats.get("updated", self.sessions_updated)
            self.sessions_pending = stats.get("pending", self.sessions_pending)

    def fail(self, error):
        """Mark job as failed with error."""
        self.status = "failed"
        self.completed_at = datetime.utcnow()
        self.error_message = str(error)

    @property
    def duration_seconds(self) -> float:
        if not self.started_at:
            return 0
        end = self.completed_at or datetime.utcnow()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "status": self.status,
            "triggered_by": self.triggered_by,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "sessions_found": self.sessions_found,
            "sessions_created": self.sessions_created,
            "sessions_updated": self.sessions_updated,
            "sessions_pending": self.sessions_pending,
            "error_message": self.error_message,
        }

    def __repr__(self):
        return f"<ScrapeJob {self.id} source={self.source_id} {self.status}>"


class ScrapeRawData(db.Model):
    """Raw extraction payload stored per job for debugging and re-import."""

    __tablename__ = "scrape_raw_data"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, db.ForeignKey("scrape_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    source_id = db.Column(db.Integer, db.ForeignKey("scrape_sources.id", ondelete="CASCADE"), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=False)
    payload_hash = db.Column(db.String(64), nullable=False)
    processed = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<ScrapeRawData job={self.job_id} {self.payload_hash[:8]}>"
