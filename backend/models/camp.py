"""
Camp Model - A program offered by an organization.

A camp groups any number of dated sessions. Scraped records are grouped
into camps by their camp name within an organization.
"""
from datetime import datetime

from models.database import db


class Camp(db.Model):
    __tablename__ = 'camps'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    description = db.Column(db.Text)
    categories = db.Column(db.JSON, nullable=False, default=list)
    website_url = db.Column(db.String(512))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    organization = db.relationship('Organization', backref=db.backref('camps', lazy='dynamic'))

    __table_args__ = (
        db.Index('ix_camps_org_name', 'organization_id', 'name'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'organization_id': self.organization_id,
            'description': self.description,
            'categories': self.categories or [],
            'website_url': self.website_url,
        }

    def __repr__(self):
        return f"<Camp {self.id} {self.name}>"
