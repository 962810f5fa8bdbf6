"""
Weekly Availability Model - Precomputed planner grid per city and year.

counts maps week start date (YYYY-MM-DD) to a list of compact session
buckets. Rebuilt by services.planner_aggregates.
"""
from datetime import datetime

from models.database import db


class WeeklyAvailability(db.Model):
    __tablename__ = 'weekly_availability'

    id = db.Column(db.Integer, primary_key=True)
    city_id = db.Column(db.Integer, db.ForeignKey('cities.id', ondelete='CASCADE'), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    counts = db.Column(db.JSON, nullable=False, default=dict)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('city_id', 'year', name='uq_weekly_availability_city_year'),
    )

    def to_dict(self):
        return {
            'city_id': self.city_id,
            'year': self.year,
            'weeks': self.counts or {},
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
