"""
Organization and Location Models

Organizations run camps; locations are the physical venues sessions meet at.
Scraped imports resolve both by name so repeated runs reuse existing rows.
"""
from datetime import datetime

from models.database import db


class Organization(db.Model):
    __tablename__ = 'organizations'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    website = db.Column(db.String(512))
    description = db.Column(db.Text)
    city_id = db.Column(db.Integer, db.ForeignKey('cities.id'), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'website': self.website,
            'city_id': self.city_id,
            'is_active': self.is_active,
        }

    def __repr__(self):
        return f"<Organization {self.id} {self.name}>"


class Location(db.Model):
    __tablename__ = 'locations'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.String(512))
    city_id = db.Column(db.Integer, db.ForeignKey('cities.id'), nullable=True, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_locations_city_name', 'city_id', 'name'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'address': self.address,
            'city_id': self.city_id,
            'organization_id': self.organization_id,
        }

    def __repr__(self):
        return f"<Location {self.id} {self.name}>"
