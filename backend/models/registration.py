"""
Registration Model - Links a child to a session.

Status: interested | waitlisted | registered | cancelled.
waitlist_position is set only while waitlisted and is kept contiguous
(1..n) by services.registrations when entries leave the waitlist.
"""
from datetime import datetime

from constants import REGISTRATION_STATUSES
from models.database import db, enum_check


class Registration(db.Model):
    __tablename__ = 'registrations'

    id = db.Column(db.Integer, primary_key=True)
    family_id = db.Column(db.Integer, db.ForeignKey('families.id', ondelete='CASCADE'), nullable=False, index=True)
    child_id = db.Column(db.Integer, db.ForeignKey('children.id', ondelete='CASCADE'), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default='interested', index=True)
    waitlist_position = db.Column(db.Integer)
    notes = db.Column(db.Text)

    registered_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    session = db.relationship('Session')
    child = db.relationship('Child')

    __table_args__ = (
        db.Index('ix_registrations_child_session', 'child_id', 'session_id'),
        db.Index('ix_registrations_session_status', 'session_id', 'status'),
        enum_check('status', REGISTRATION_STATUSES, 'registrations_status_check'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'family_id': self.family_id,
            'child_id': self.child_id,
            'session_id': self.session_id,
            'status': self.status,
            'waitlist_position': self.waitlist_position,
            'notes': self.notes,
            'registered_at': self.registered_at.isoformat() if self.registered_at else None,
            'cancelled_at': self.cancelled_at.isoformat() if self.cancelled_at else None,
        }

    def __repr__(self):
        return f"<Registration {self.id} child={self.child_id} session={self.session_id} {self.status}>"
