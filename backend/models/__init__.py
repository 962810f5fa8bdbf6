"""
Models package - SQLAlchemy models
"""
from models.database import db
from models.city import City
from models.organization import Organization, Location
from models.camp import Camp
from models.session import Session
from models.family import Family, Child
from models.registration import Registration
from models.notification import NotificationSent, AvailabilitySnapshot
from models.scheduled_task import ScheduledTask
from models.weekly_availability import WeeklyAvailability

__all__ = [
    'db',
    'City',
    'Organization',
    'Location',
    'Camp',
    'Session',
    'Family',
    'Child',
    'Registration',
    'NotificationSent',
    'AvailabilitySnapshot',
    'ScheduledTask',
    'WeeklyAvailability',
]
