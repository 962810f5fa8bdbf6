"""
Discovered Source Model - Candidate camp websites found by discovery.

Stores URLs surfaced by search/directory crawls for a city. Deduplicated
by URL. Approved candidates are promoted to an (inactive, orphan)
ScrapeSource plus a scraper development request.
"""
from datetime import datetime

from constants import DISCOVERED_SOURCE_STATUSES
from models.database import db, enum_check


class DiscoveredSource(db.Model):
    """Discovered URL pending review."""

    __tablename__ = "discovered_sources"

    id = db.Column(db.Integer, primary_key=True)
    city_id = db.Column(db.Integer, db.ForeignKey("cities.id"), nullable=False, index=True)
    url = db.Column(db.String(1024), nullable=False, unique=True)
    domain = db.Column(db.String(255), nullable=False, index=True)
    title = db.Column(db.String(512))
    snippet = db.Column(db.Text)
    discovery_query = db.Column(db.String(512))
    score = db.Column(db.Float, nullable=False, default=0)

    status = db.Column(db.String(30), nullable=False, default="pending_analysis", index=True)
    reviewed_by = db.Column(db.String(255))
    reviewed_at = db.Column(db.DateTime)
    scrape_source_id = db.Column(db.Integer, db.ForeignKey("scrape_sources.id", ondelete="SET NULL"), nullable=True)

    discovered_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        enum_check("status", DISCOVERED_SOURCE_STATUSES, "discovered_sources_status_check"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "city_id": self.city_id,
            "url": self.url,
            "domain": self.domain,
            "title": self.title,
            "snippet": self.snippet,
            "discovery_query": self.discovery_query,
            "score": self.score,
            "status": self.status,
            "scrape_source_id": self.scrape_source_id,
            "discovered_at": self.discovered_at.isoformat() if self.discovered_at else None,
        }

    def __repr__(self):
        return f"<DiscoveredSource {self.id} {self.domain} {self.status}>"
