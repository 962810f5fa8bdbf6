"""
Scraper Alert Model - Admin-facing automation events.

Raised by the health/automation loop (degraded, needs regeneration,
disabled, rate limited, zero results, zero price, ...). Each alert can be
acknowledged exactly once.
"""
from datetime import datetime

from constants import ALERT_TYPES, ALERT_SEVERITIES
from models.database import db, enum_check


class ScraperAlert(db.Model):
    """Alert raised by scrape automation."""

    __tablename__ = "scraper_alerts"

    id = db.Column(db.Integer, primary_key=True)
    source_id = db.Column(db.Integer, db.ForeignKey("scrape_sources.id", ondelete="CASCADE"), nullable=True, index=True)
    alert_type = db.Column(db.String(40), nullable=False, index=True)
    severity = db.Column(db.String(10), nullable=False)
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    acknowledged_at = db.Column(db.DateTime)
    acknowledged_by = db.Column(db.String(255))

    __table_args__ = (
        db.Index("ix_scraper_alerts_unack", "acknowledged_at", "created_at"),
        db.Index("ix_scraper_alerts_source_type", "source_id", "alert_type"),
        enum_check("alert_type", ALERT_TYPES, "scraper_alerts_type_check"),
        enum_check("severity", ALERT_SEVERITIES, "scraper_alerts_severity_check"),
    )

    @property
    def is_acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    def acknowledge(self, by: str = None):
        """Mark alert as acknowledged."""
        self.acknowledged_at = datetime.utcnow()
        self.acknowledged_by = by

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "message": self.message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "acknowledged_by": self.acknowledged_by,
        }

    def __repr__(self):
        return f"<ScraperAlert {self.id} {self.alert_type} {self.severity}>"
