"""
Root pytest configuration for backend tests.

Provides:
- Test environment (APP_ENV=test, in-memory SQLite) set before config import
- Shared fixtures (app, client, db_session, make)
- Auth header helpers for family / admin principals
"""

import os
import sys
from datetime import date, datetime, timedelta
from pathlib import Path

# Add backend directory to Python path so imports like
# `from services.sessions import ...` and `from models import ...` work
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# config.py reads these at import time
os.environ['APP_ENV'] = 'test'
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ.pop('RESEND_API_KEY', None)
os.environ.pop('STRIPE_SECRET_KEY', None)

import pytest

ADMIN_EMAIL = 'admin@example.com'


@pytest.fixture
def app():
    """Create test Flask application with a fresh in-memory database."""
    from app import create_app
    from models.database import db

    app = create_app({
        'TESTING': True,
        'JWT_SECRET': 'test-jwt-secret',
        'ADMIN_EMAILS': {ADMIN_EMAIL},
        'STRIPE_SECRET_KEY': None,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    from models.database import db
    return db.session


class Factory:
    """Small builders for rows the pipeline needs. Each call commits."""

    def __init__(self, db_session):
        self.db = db_session
        self._seq = 0

    def _next(self):
        self._seq += 1
        return self._seq

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        return obj

    def city(self, **kwargs):
        from models import City
        n = self._next()
        defaults = dict(name=f'City {n}', slug=f'city-{n}', is_active=True)
        defaults.update(kwargs)
        return self._save(City(**defaults))

    def organization(self, city=None, **kwargs):
        from models import Organization
        city = city or self.city()
        defaults = dict(name=f'Org {self._next()}', city_id=city.id)
        defaults.update(kwargs)
        return self._save(Organization(**defaults))

    def camp(self, organization=None, **kwargs):
        from models import Camp
        organization = organization or self.organization()
        defaults = dict(name=f'Camp {self._next()}', organization_id=organization.id, categories=[])
        defaults.update(kwargs)
        return self._save(Camp(**defaults))

    def source(self, city=None, **kwargs):
        from scrapers.models import ScrapeSource
        city = city or self.city()
        n = self._next()
        defaults = dict(
            name=f'Source {n}',
            url=f'https://camps{n}.example.org/summer',
            city_id=city.id,
            scraper_module='jsonld_events',
            scrape_frequency_hours=24,
            is_active=True,
            next_scheduled_scrape=datetime.utcnow() - timedelta(minutes=5),
        )
        defaults.update(kwargs)
        return self._save(ScrapeSource(**defaults))

    def session(self, camp=None, **kwargs):
        from models import Session
        camp = camp or self.camp()
        start = kwargs.pop('start_date', date(2026, 7, 6))
        defaults = dict(
            camp_id=camp.id,
            organization_id=camp.organization_id,
            city_id=kwargs.pop('city_id', None) or self._city_for(camp),
            camp_name=camp.name,
            start_date=start,
            end_date=kwargs.pop('end_date', start + timedelta(days=4)),
            price_cents=25000,
            capacity=20,
            enrolled_count=0,
            status='active',
        )
        defaults.update(kwargs)
        return self._save(Session(**defaults))

    def _city_for(self, camp):
        from models import Organization
        org = self.db.get(Organization, camp.organization_id)
        return org.city_id

    def family(self, email=None, city=None, **kwargs):
        from models import Family
        n = self._next()
        defaults = dict(email=email or f'family{n}@example.com', city_id=city.id if city else None, tier='free')
        defaults.update(kwargs)
        family = Family(**defaults)
        family.set_password('password123')
        return self._save(family)

    def child(self, family=None, **kwargs):
        from models import Child
        family = family or self.family()
        defaults = dict(family_id=family.id, first_name=f'Kid{self._next()}')
        defaults.update(kwargs)
        return self._save(Child(**defaults))

    def job(self, source=None, **kwargs):
        from scrapers.models import ScrapeJob
        source = source or self.source()
        defaults = dict(source_id=source.id, status='pending', triggered_by='test')
        defaults.update(kwargs)
        return self._save(ScrapeJob(**defaults))


@pytest.fixture
def make(db_session):
    return Factory(db_session)


@pytest.fixture
def principal_for():
    """Principal acting as the given family."""
    from utils.principal import Principal

    def _principal(family, is_admin=False):
        return Principal(family_id=family.id, email=family.email, is_admin=is_admin)
    return _principal


@pytest.fixture
def auth_headers(app):
    """Build Authorization headers for a family (or an admin email)."""
    from utils.principal import generate_token

    def _headers(family_id, email):
        return {'Authorization': f'Bearer {generate_token(family_id, email)}'}
    return _headers
