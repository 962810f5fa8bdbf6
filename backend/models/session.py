"""
Session Model - The canonical camp-offering record.

A session is one dated run of a camp at a location. Status follows the
graph in constants.SESSION_TRANSITIONS; while a session is active or
sold_out its status tracks enrolled_count vs capacity (see
services.counters). Counts never go negative.

Provenance:
- source_id / source_session_key link a scraped session back to the
  ScrapeSource that produced it (natural key for re-scrapes)
- completeness_score / missing_fields come from services.validation
"""
from datetime import datetime

from constants import SESSION_STATUSES, SESSION_DATA_SOURCES
from models.database import db, enum_check


class Session(db.Model):
    __tablename__ = 'sessions'

    id = db.Column(db.Integer, primary_key=True)

    camp_id = db.Column(db.Integer, db.ForeignKey('camps.id'), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=False, index=True)
    city_id = db.Column(db.Integer, db.ForeignKey('cities.id'), nullable=False, index=True)

    # Scrape provenance
    source_id = db.Column(db.Integer, db.ForeignKey('scrape_sources.id', ondelete='SET NULL'), nullable=True)
    source_session_key = db.Column(db.String(255))

    # Denormalized for change detection and notifications
    camp_name = db.Column(db.String(255), nullable=False)
    organization_name = db.Column(db.String(255))

    # Schedule
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    drop_off_hour = db.Column(db.Integer, nullable=False, default=9)
    drop_off_minute = db.Column(db.Integer, nullable=False, default=0)
    pick_up_hour = db.Column(db.Integer, nullable=False, default=15)
    pick_up_minute = db.Column(db.Integer, nullable=False, default=0)

    # Pricing (integer cents)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default='USD')

    # Capacity
    capacity = db.Column(db.Integer, nullable=False, default=20)
    enrolled_count = db.Column(db.Integer, nullable=False, default=0)
    waitlist_count = db.Column(db.Integer, nullable=False, default=0)
    waitlist_enabled = db.Column(db.Boolean, nullable=False, default=False)
    waitlist_capacity = db.Column(db.Integer)

    # Age / grade requirements (grade: K=0, Pre-K=-1)
    min_age = db.Column(db.Integer)
    max_age = db.Column(db.Integer)
    min_grade = db.Column(db.Integer)
    max_grade = db.Column(db.Integer)

    status = db.Column(db.String(20), nullable=False, default='draft', index=True)
    registration_url = db.Column(db.String(1024))

    # Completeness metadata
    completeness_score = db.Column(db.Integer)
    missing_fields = db.Column(db.JSON, default=list)
    data_source = db.Column(db.String(20), nullable=False, default='manual')

    last_scraped_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    camp = db.relationship('Camp', backref=db.backref('sessions', lazy='dynamic'))
    location = db.relationship('Location')
    city = db.relationship('City')

    __table_args__ = (
        db.Index('ix_sessions_source_start', 'source_id', 'start_date'),
        db.Index('ix_sessions_source_key', 'source_id', 'source_session_key'),
        db.Index('ix_sessions_city_status_start', 'city_id', 'status', 'start_date'),
        enum_check('status', SESSION_STATUSES, 'sessions_status_check'),
        enum_check('data_source', SESSION_DATA_SOURCES, 'sessions_data_source_check'),
        db.CheckConstraint('enrolled_count >= 0', name='sessions_enrolled_nonneg'),
        db.CheckConstraint('waitlist_count >= 0', name='sessions_waitlist_nonneg'),
        db.CheckConstraint('capacity >= 0', name='sessions_capacity_nonneg'),
        db.CheckConstraint('start_date <= end_date', name='sessions_date_order'),
    )

    @property
    def spots_remaining(self) -> int:
        return max(0, (self.capacity or 0) - (self.enrolled_count or 0))

    @property
    def is_full(self) -> bool:
        return (self.enrolled_count or 0) >= (self.capacity or 0)

    @property
    def waitlist_has_room(self) -> bool:
        if not self.waitlist_enabled:
            return False
        if self.waitlist_capacity is None:
            return True
        return (self.waitlist_count or 0) < self.waitlist_capacity

    def to_dict(self):
        return {
            'id': self.id,
            'camp_id': self.camp_id,
            'camp_name': self.camp_name,
            'organization_id': self.organization_id,
            'organization_name': self.organization_name,
            'location_id': self.location_id,
            'city_id': self.city_id,
            'source_id': self.source_id,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'drop_off_time': {'hour': self.drop_off_hour, 'minute': self.drop_off_minute},
            'pick_up_time': {'hour': self.pick_up_hour, 'minute': self.pick_up_minute},
            'price_cents': self.price_cents,
            'currency': self.currency,
            'capacity': self.capacity,
            'enrolled_count': self.enrolled_count,
            'waitlist_count': self.waitlist_count,
            'spots_remaining': self.spots_remaining,
            'age_requirements': {
                'min_age': self.min_age,
                'max_age': self.max_age,
                'min_grade': self.min_grade,
                'max_grade': self.max_grade,
            },
            'status': self.status,
            'registration_url': self.registration_url,
            'completeness_score': self.completeness_score,
            'missing_fields': self.missing_fields or [],
            'data_source': self.data_source,
        }

    def __repr__(self):
        return f"<Session {self.id} {self.camp_name} {self.start_date} {self.status}>"
