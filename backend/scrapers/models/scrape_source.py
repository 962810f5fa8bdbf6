"""
Scrape Source Model - One external website being monitored.

Tracks:
- Where to scrape (url + additional_urls) and for which city/organization
- How to extract (scraper_module for a registered routine, or
  scraper_config for a declarative selector config)
- Health counters fed by job outcomes (services.source_health)
- Scheduling cadence and next due time
- Denormalized session counts and data-quality tier

A source can only be active while it has an extraction method.
"""
from datetime import datetime

from constants import QUALITY_TIERS
from models.database import db, enum_check


class ScrapeSource(db.Model):
    """External website scraped for camp sessions."""

    __tablename__ = "scrape_sources"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    url = db.Column(db.String(1024), nullable=False, index=True)
    additional_urls = db.Column(db.JSON, nullable=False, default=list)

    # Orphan sources (from discovery) have no organization yet
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    city_id = db.Column(db.Integer, db.ForeignKey("cities.id"), nullable=False, index=True)

    # Extraction method: a registered routine name or a declarative selector config
    scraper_module = db.Column(db.String(100))
    scraper_config = db.Column(db.JSON(none_as_null=True))
    scraper_version = db.Column(db.Integer, nullable=False, default=0)

    # Health
    consecutive_failures = db.Column(db.Integer, nullable=False, default=0)
    total_runs = db.Column(db.Integer, nullable=False, default=0)
    success_rate = db.Column(db.Float, nullable=False, default=0.0)
    last_error = db.Column(db.Text)
    last_success_at = db.Column(db.DateTime)
    last_failure_at = db.Column(db.DateTime)
    needs_regeneration = db.Column(db.Boolean, nullable=False, default=False, index=True)
    consecutive_zero_results = db.Column(db.Integer, nullable=False, default=0)

    # URL health: [{"url", "status", "checked_at"}] newest last
    url_history = db.Column(db.JSON, nullable=False, default=list)
    suggested_url = db.Column(db.String(1024))

    # Scheduling
    scrape_frequency_hours = db.Column(db.Integer, nullable=False, default=24)
    next_scheduled_scrape = db.Column(db.DateTime, index=True)
    needs_rescan = db.Column(db.Boolean, nullable=False, default=False)
    rescan_reason = db.Column(db.Text)

    # Lifecycle
    is_active = db.Column(db.Boolean, nullable=False, default=False, index=True)
    closed_by = db.Column(db.String(50))  # 'system' or admin email
    closure_reason = db.Column(db.Text)

    # Denormalized from sessions
    session_count = db.Column(db.Integer, nullable=False, default=0)
    active_session_count = db.Column(db.Integer, nullable=False, default=0)
    data_quality_score = db.Column(db.Integer)
    quality_tier = db.Column(db.String(10))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    organization = db.relationship("Organization")
    city = db.relationship("City")

    __table_args__ = (
        db.Index("ix_scrape_sources_active_next", "is_active", "next_scheduled_scrape"),
        db.CheckConstraint("scrape_frequency_hours >= 1", name="scrape_sources_frequency_check"),
        db.CheckConstraint("consecutive_failures >= 0", name="scrape_sources_failures_nonneg"),
        enum_check("quality_tier", QUALITY_TIERS, "scrape_sources_quality_tier_check"),
    )

    @property
    def has_extraction_method(self) -> bool:
        return bool(self.scraper_module or self.scraper_config)

    @property
    def all_urls(self):
        return [self.url] + list(self.additional_urls or [])

    def health_dict(self) -> dict:
        return {
            "consecutive_failures": self.consecutive_failures,
            "total_runs": self.total_runs,
            "success_rate": self.success_rate,
            "last_error": self.last_error,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
            "needs_regeneration": self.needs_regeneration,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "additional_urls": self.additional_urls or [],
            "organization_id": self.organization_id,
            "city_id": self.city_id,
            "scraper_module": self.scraper_module,
            "has_scraper_config": self.scraper_config is not None,
            "scraper_version": self.scraper_version,
            "scraper_health": self.health_dict(),
            "scrape_frequency_hours": self.scrape_frequency_hours,
            "next_scheduled_scrape": (
                self.next_scheduled_scrape.isoformat() if self.next_scheduled_scrape else None
            ),
            "needs_rescan": self.needs_rescan,
            "is_active": self.is_active,
            "closure_reason": self.closure_reason,
            "session_count": self.session_count,
            "active_session_count": self.active_session_count,
            "data_quality_score": self.data_quality_score,
            "quality_tier": self.quality_tier,
        }

    def __repr__(self):
        return f"<ScrapeSource {self.id} {self.name} active={self.is_active}>"
