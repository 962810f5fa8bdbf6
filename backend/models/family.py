"""
Family Model - Account holder, subscription state and children.

Subscription Status Flow (from Stripe):
- 'trialing' → Family is in trial period (still has access)
- 'active' → Payment successful, subscription active
- 'past_due' → Payment failed, but grace period active
- 'canceled' → Subscription cancelled (access until period end)
- anything else → no premium access

Premium gates how many camps a family can save (see
services.registrations); the decision is made locally from these columns
by services.billing.check_premium.
"""
from datetime import datetime

from werkzeug.security import generate_password_hash, check_password_hash

from models.database import db


# Subscription statuses that grant premium access
ACTIVE_STATUSES = {'active', 'trialing', 'past_due'}

# Grace period: canceled/past_due can access until subscription_ends_at
GRACE_PERIOD_STATUSES = {'canceled', 'past_due'}

DEFAULT_EMAIL_PREFERENCES = {
    'availability_alerts': True,
    'weekly_digest': True,
}


class Family(db.Model):
    __tablename__ = 'families'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255))
    display_name = db.Column(db.String(255))
    city_id = db.Column(db.Integer, db.ForeignKey('cities.id'), nullable=True, index=True)
    email_preferences = db.Column(db.JSON, default=lambda: dict(DEFAULT_EMAIL_PREFERENCES))

    tier = db.Column(db.String(20), default='free')  # 'free', 'premium'
    stripe_customer_id = db.Column(db.String(255))
    subscription_status = db.Column(db.String(50))
    subscription_ends_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    city = db.relationship('City')
    children = db.relationship('Child', backref='family', lazy='dynamic', cascade='all, delete-orphan')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def wants_availability_alerts(self) -> bool:
        """Families opt out explicitly; a missing preference means opted in."""
        prefs = self.email_preferences or {}
        return prefs.get('availability_alerts', True) is not False

    def is_subscribed(self, now=None):
        """
        Check if the family has premium access from local subscription state.

        - free tier never has access
        - trialing always has access
        - active statuses have access until subscription_ends_at (or indefinitely)
        - grace statuses have access only until subscription_ends_at
        """
        now = now or datetime.utcnow()

        if self.tier != 'premium':
            return False

        if not self.subscription_status:
            return self.subscription_ends_at is None or self.subscription_ends_at > now

        if self.subscription_status == 'trialing':
            return True

        if self.subscription_status in ACTIVE_STATUSES:
            return self.subscription_ends_at is None or self.subscription_ends_at > now

        if self.subscription_status in GRACE_PERIOD_STATUSES:
            return self.subscription_ends_at is not None and self.subscription_ends_at > now

        return False

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'display_name': self.display_name,
            'city_id': self.city_id,
            'email_preferences': self.email_preferences or {},
            'tier': self.tier,
            'subscribed': self.is_subscribed(),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Family {self.id} {self.email}>"


class Child(db.Model):
    __tablename__ = 'children'

    id = db.Column(db.Integer, primary_key=True)
    family_id = db.Column(db.Integer, db.ForeignKey('families.id', ondelete='CASCADE'), nullable=False, index=True)
    first_name = db.Column(db.String(120), nullable=False)
    birthdate = db.Column(db.Date)
    current_grade = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'family_id': self.family_id,
            'first_name': self.first_name,
            'birthdate': self.birthdate.isoformat() if self.birthdate else None,
            'current_grade': self.current_grade,
        }

    def __repr__(self):
        return f"<Child {self.id} {self.first_name}>"
