"""
Notification bookkeeping models.

NotificationSent - dedup record for availability notifications. One row
per (family, session, change_type); a second send of the same triple is
a no-op.

AvailabilitySnapshot - spots remaining for an active session at each
notification scan, so "newly low" can be told apart from "still low".
"""
from datetime import datetime

from constants import NOTIFICATION_TYPES
from models.database import db, enum_check


class NotificationSent(db.Model):
    __tablename__ = 'notifications_sent'

    id = db.Column(db.Integer, primary_key=True)
    family_id = db.Column(db.Integer, db.ForeignKey('families.id', ondelete='CASCADE'), nullable=False)
    session_id = db.Column(db.Integer, db.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False)
    change_type = db.Column(db.String(30), nullable=False)
    sent_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        db.UniqueConstraint('family_id', 'session_id', 'change_type', name='uq_notifications_sent_triple'),
        enum_check('change_type', NOTIFICATION_TYPES, 'notifications_sent_type_check'),
    )

    @classmethod
    def is_sent(cls, family_id, session_id, change_type):
        """Check if this notification has already been delivered."""
        return db.session.query(cls).filter_by(
            family_id=family_id, session_id=session_id, change_type=change_type
        ).first() is not None

    @classmethod
    def mark_sent(cls, family_id, session_id, change_type):
        """
        Record delivery. Returns False when the triple was already recorded.

        Does not commit; the caller commits once per family digest.
        """
        if cls.is_sent(family_id, session_id, change_type):
            return False
        db.session.add(cls(family_id=family_id, session_id=session_id, change_type=change_type))
        return True

    def __repr__(self):
        return f"<NotificationSent family={self.family_id} session={self.session_id} {self.change_type}>"


class AvailabilitySnapshot(db.Model):
    __tablename__ = 'session_availability_snapshots'

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False)
    spots_remaining = db.Column(db.Integer, nullable=False)
    capacity = db.Column(db.Integer, nullable=False)
    enrolled_count = db.Column(db.Integer, nullable=False)
    recorded_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_availability_snapshots_session_recorded', 'session_id', 'recorded_at'),
    )

    @classmethod
    def latest_for(cls, session_id):
        return (
            db.session.query(cls)
            .filter_by(session_id=session_id)
            .order_by(cls.recorded_at.desc(), cls.id.desc())
            .first()
        )

    def __repr__(self):
        return f"<AvailabilitySnapshot session={self.session_id} spots={self.spots_remaining}>"
