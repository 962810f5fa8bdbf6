"""
Planner Aggregates - precomputed weekly availability per city and year.

The planner grid shows, for each summer week, which camps still have
spots. Computing that per request is too slow, so recompute_for_city()
stores compact buckets in weekly_availability:

    {"2025-06-09": [{"org_id": 3, "org_name": "...", "min_age": 6, ...,
                     "cats": ["art"], "n": 2}, ...], ...}

Identical buckets are merged and counted in "n" (omitted when 1).
Run after imports and every 30 minutes from cron.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from models import City, Session, WeeklyAvailability
from models.database import db

logger = logging.getLogger(__name__)

SUMMER_START_EARLIEST = (6, 8)
SUMMER_END_BEFORE = (9, 1)


def generate_summer_weeks(year: int) -> List[Dict]:
    """Monday-Friday weeks from the first Monday on/after June 8 up to September."""
    start = date(year, *SUMMER_START_EARLIEST)
    start += timedelta(days=(7 - start.weekday()) % 7)
    cutoff = date(year, *SUMMER_END_BEFORE)

    weeks = []
    monday = start
    while monday + timedelta(days=4) < cutoff:
        friday = monday + timedelta(days=4)
        weeks.append({
            'week_number': len(weeks) + 1,
            'start_date': monday,
            'end_date': friday,
            'month_name': monday.strftime('%B'),
            'label': f"{monday.strftime('%b')} {monday.day}-{friday.day}",
        })
        monday += timedelta(days=7)
    return weeks


def _bucket_key(session: Session, categories: List[str]) -> tuple:
    return (
        session.organization_id,
        session.min_age,
        session.max_age,
        session.min_grade,
        session.max_grade,
        tuple(categories),
    )


def build_weekly_counts(sessions: List[Session], weeks: List[Dict]) -> Dict[str, List[Dict]]:
    counts = {}
    for week in weeks:
        overlapping = [
            s for s in sessions
            if s.start_date <= week['end_date'] and s.end_date >= week['start_date']
        ]
        if not overlapping:
            continue

        buckets = {}
        for session in overlapping:
            categories = sorted(session.camp.categories or []) if session.camp else []
            key = _bucket_key(session, categories)
            if key in buckets:
                buckets[key]['n'] += 1
                continue
            buckets[key] = {
                'org_id': session.organization_id,
                'org_name': session.organization_name or 'Unknown',
                'min_age': session.min_age,
                'max_age': session.max_age,
                'min_grade': session.min_grade,
                'max_grade': session.max_grade,
                'cats': categories,
                'n': 1,
            }

        entries = []
        for bucket in buckets.values():
            if bucket['n'] == 1:
                bucket = {k: v for k, v in bucket.items() if k != 'n'}
            entries.append(bucket)
        counts[week['start_date'].isoformat()] = entries
    return counts


def recompute_for_city(city_id: int, year: int, commit: bool = True) -> Optional[WeeklyAvailability]:
    """Rebuild one city's weekly grid for a summer."""
    weeks = generate_summer_weeks(year)
    if not weeks:
        return None
    summer_start = weeks[0]['start_date']
    summer_end = weeks[-1]['end_date']

    sessions = Session.query.filter(
        Session.city_id == city_id,
        Session.status == 'active',
        Session.start_date <= summer_end,
        Session.end_date >= summer_start,
    ).all()
    available = [s for s in sessions if (s.capacity or 0) > (s.enrolled_count or 0)]

    counts = build_weekly_counts(available, weeks)

    row = WeeklyAvailability.query.filter_by(city_id=city_id, year=year).first()
    if row is None:
        row = WeeklyAvailability(city_id=city_id, year=year)
        db.session.add(row)
    row.counts = counts
    row.updated_at = datetime.utcnow()

    if commit:
        db.session.commit()
    logger.info(f"Planner aggregates for city {city_id}/{year}: {len(available)} sessions, {len(counts)} weeks")
    return row


def recompute_all(year: int = None, today: date = None) -> Dict[str, int]:
    """
    Rebuild every active city. Without an explicit year, the current year
    is computed, plus next year from September on.
    """
    today = today or date.today()
    years = [year] if year else [today.year] + ([today.year + 1] if today.month >= 9 else [])

    cities = City.query.filter(City.is_active.is_(True)).all()
    for y in years:
        for city in cities:
            recompute_for_city(city.id, y, commit=False)
    db.session.commit()
    return {'cities': len(cities), 'years': len(years)}


def get_weekly_availability(city_id: int, year: int) -> Optional[dict]:
    row = WeeklyAvailability.query.filter_by(city_id=city_id, year=year).first()
    return row.to_dict() if row else None
