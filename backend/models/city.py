"""
City Model - A market the marketplace operates in.

Each city carries its own email branding; notification digests are sent
as "{brand_name} <{from_email}>" for the family's city.
"""
from datetime import datetime

from constants import DEFAULT_BRAND
from models.database import db


class City(db.Model):
    __tablename__ = 'cities'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(120), unique=True, nullable=False, index=True)
    state = db.Column(db.String(50))
    timezone = db.Column(db.String(64), default='America/Los_Angeles')

    # Branding (falls back to DEFAULT_BRAND when unset)
    brand_name = db.Column(db.String(120))
    domain = db.Column(db.String(255))
    from_email = db.Column(db.String(255))

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def branding(self) -> dict:
        """Brand name, domain and sender address with defaults filled in."""
        return {
            'brand_name': self.brand_name or DEFAULT_BRAND['brand_name'],
            'domain': self.domain or DEFAULT_BRAND['domain'],
            'from_email': self.from_email or DEFAULT_BRAND['from_email'],
        }

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'state': self.state,
            'is_active': self.is_active,
            **self.branding(),
        }

    def __repr__(self):
        return f"<City {self.slug}>"
