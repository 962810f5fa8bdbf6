"""
Scraper Development Request Model - Queue of sites needing a scraper.

Lifecycle (constants.DEV_REQUEST_TRANSITIONS):
    pending -> in_progress -> testing -> needs_feedback -> in_progress ...
                                      -> completed | failed

Failed automated tests send the request back to pending with an
auto-generated feedback entry until max_test_retries is reached.
"""
from datetime import datetime

from constants import DEV_REQUEST_STATUSES, DEV_REQUEST_TYPES, DEFAULT_MAX_TEST_RETRIES
from models.database import db, enum_check


class ScraperDevRequest(db.Model):
    """Request for a new or regenerated scraper."""

    __tablename__ = "scraper_dev_requests"

    id = db.Column(db.Integer, primary_key=True)
    source_id = db.Column(db.Integer, db.ForeignKey("scrape_sources.id", ondelete="SET NULL"), nullable=True, index=True)
    city_id = db.Column(db.Integer, db.ForeignKey("cities.id"), nullable=False)
    source_name = db.Column(db.String(255), nullable=False)
    source_url = db.Column(db.String(1024), nullable=False, index=True)

    request_type = db.Column(db.String(20), nullable=False, default="new")
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    notes = db.Column(db.Text)
    requested_by = db.Column(db.String(255))
    requested_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    claimed_by = db.Column(db.String(255))
    claimed_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)

    # Generated extraction method under test
    generated_module = db.Column(db.String(100))
    generated_config = db.Column(db.JSON(none_as_null=True))
    scraper_version = db.Column(db.Integer, nullable=False, default=0)

    # Test loop
    test_retry_count = db.Column(db.Integer, nullable=False, default=0)
    max_test_retries = db.Column(db.Integer, nullable=False, default=DEFAULT_MAX_TEST_RETRIES)
    last_test_run = db.Column(db.DateTime)
    last_test_sessions_found = db.Column(db.Integer)
    last_test_sample_data = db.Column(db.JSON)
    last_test_error = db.Column(db.Text)

    # [{"feedback_at", "feedback_by", "feedback", "scraper_version_before"}]
    feedback_history = db.Column(db.JSON, nullable=False, default=list)
    failure_reason = db.Column(db.Text)

    __table_args__ = (
        enum_check("status", DEV_REQUEST_STATUSES, "dev_requests_status_check"),
        enum_check("request_type", DEV_REQUEST_TYPES, "dev_requests_type_check"),
    )

    @property
    def has_generated_method(self) -> bool:
        return bool(self.generated_module or self.generated_config)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "city_id": self.city_id,
            "source_name": self.source_name,
            "source_url": self.source_url,
            "request_type": self.request_type,
            "status": self.status,
            "notes": self.notes,
            "requested_by": self.requested_by,
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
            "claimed_by": self.claimed_by,
            "scraper_version": self.scraper_version,
            "test_retry_count": self.test_retry_count,
            "max_test_retries": self.max_test_retries,
            "last_test_sessions_found": self.last_test_sessions_found,
            "last_test_error": self.last_test_error,
            "feedback_history": self.feedback_history or [],
            "failure_reason": self.failure_reason,
        }

    def __repr__(self):
        return f"<ScraperDevRequest {self.id} {self.source_url} {self.status}>"


class ScraperVersion(db.Model):
    """Audit trail of extraction methods deployed to a source."""

    __tablename__ = "scraper_versions"

    id = db.Column(db.Integer, primary_key=True)
    source_id = db.Column(db.Integer, db.ForeignKey("scrape_sources.id", ondelete="CASCADE"), nullable=False, index=True)
    version = db.Column(db.Integer, nullable=False)
    scraper_module = db.Column(db.String(100))
    scraper_config = db.Column(db.JSON(none_as_null=True))
    change_reason = db.Column(db.Text)
    created_by = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("source_id", "version", name="uq_scraper_versions_source_version"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "version": self.version,
            "scraper_module": self.scraper_module,
            "scraper_config": self.scraper_config,
            "change_reason": self.change_reason,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ScraperVersion source={self.source_id} v{self.version}>"
