"""
Notification Service - hourly availability digest.

Families that saved a session (registration status "interested") hear
about two kinds of change:

1. registration_opened - a status_changed ScrapeChange to "active" from
   sold_out or draft, not yet notified, within the lookback window
2. low_availability - an active session with fewer than
   LOW_AVAILABILITY_THRESHOLD spots left that was not already low at the
   previous scan

Each (family, session, change_type) is delivered at most once
(notifications_sent). All of a family's notifications go out as one
digest email branded for the family's city.

Writes are committed before and after the provider call, never across it.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from html import escape
from typing import Callable, Dict, List, Optional

from constants import DEFAULT_BRAND, REGISTRATION_OPENED_FROM
from models import AvailabilitySnapshot, City, Family, NotificationSent, Registration, Session
from models.database import db
from scrapers.models import ScrapeChange
from services.email_service import send_email

logger = logging.getLogger(__name__)

LOW_AVAILABILITY_THRESHOLD = 5
DEFAULT_LOOKBACK_HOURS = 2


@dataclass
class SessionNotification:
    session: Session
    change_type: str
    child_names: List[str]
    change: Optional[ScrapeChange] = None
    spots_remaining: Optional[int] = None


@dataclass
class FamilyDigest:
    family: Family
    branding: Dict[str, str]
    notifications: List[SessionNotification] = field(default_factory=list)

    def of_type(self, change_type: str) -> List[SessionNotification]:
        return [n for n in self.notifications if n.change_type == change_type]

    @property
    def sender(self) -> str:
        return f"{self.branding['brand_name']} <{self.branding['from_email']}>"

    @property
    def display_name(self) -> str:
        return self.family.display_name or "there"


# =============================================================================
# Detection
# =============================================================================

def detect_registration_opened(since: datetime) -> List[ScrapeChange]:
    """Unnotified status changes into active from sold_out/draft since `since`."""
    changes = ScrapeChange.query.filter(
        ScrapeChange.notified.is_(False),
        ScrapeChange.change_type == 'status_changed',
        ScrapeChange.new_value == 'active',
        ScrapeChange.previous_value.in_(REGISTRATION_OPENED_FROM),
        ScrapeChange.detected_at >= since,
        ScrapeChange.session_id.isnot(None),
    ).order_by(ScrapeChange.detected_at.asc()).all()
    return [c for c in changes if db.session.get(Session, c.session_id) is not None]


def detect_low_availability(threshold: int = LOW_AVAILABILITY_THRESHOLD,
                            now: datetime = None) -> List[Session]:
    """
    Active sessions that just became low on spots (0 < spots < threshold).

    "Just became" means the previous snapshot is missing or had at least
    `threshold` spots. A new snapshot is recorded for every scanned active
    session so the next scan compares against current state. Does not commit.
    """
    now = now or datetime.utcnow()
    newly_low = []
    for session in Session.query.filter(Session.status == 'active').all():
        spots = session.spots_remaining
        previous = AvailabilitySnapshot.latest_for(session.id)

        if 0 < spots < threshold and (previous is None or previous.spots_remaining >= threshold):
            newly_low.append(session)

        db.session.add(AvailabilitySnapshot(
            session_id=session.id,
            spots_remaining=spots,
            capacity=session.capacity,
            enrolled_count=session.enrolled_count,
            recorded_at=now,
        ))
    return newly_low


def resolve_interested_families(session: Session) -> List[dict]:
    """
    Families with an "interested" registration for the session.

    Returns one entry per (family, child); families that turned off
    availability alerts are skipped.
    """
    registrations = Registration.query.filter(
        Registration.session_id == session.id,
        Registration.status == 'interested',
    ).order_by(Registration.id.asc()).all()

    results = []
    for registration in registrations:
        family = db.session.get(Family, registration.family_id)
        child = registration.child
        if family is None or child is None:
            continue
        if not family.wants_availability_alerts():
            continue
        results.append({'family': family, 'child_name': child.first_name})
    return results


# =============================================================================
# Rendering
# =============================================================================

def format_time(hour: int, minute: int) -> str:
    hour12 = hour % 12 or 12
    suffix = "AM" if hour < 12 else "PM"
    return f"{hour12}:{minute:02d} {suffix}"


def format_date(value: date) -> str:
    return f"{value.strftime('%a, %b')} {value.day}"


def format_date_range(session: Session) -> str:
    if session.start_date == session.end_date:
        return format_date(session.start_date)
    return f"{format_date(session.start_date)} - {format_date(session.end_date)}"


def format_price(cents: int) -> str:
    return f"${(cents or 0) / 100:.0f}"


def _spots_phrase(spots: int) -> str:
    return f"Only {spots} spot{'' if spots == 1 else 's'} left!"


def build_subject(digest: FamilyDigest) -> str:
    opened = digest.of_type('registration_opened')
    low = digest.of_type('low_availability')

    if opened and not low:
        if len(opened) == 1:
            return f"{opened[0].session.camp_name} is now open for registration"
        return f"{len(opened)} camps you saved are now open for registration"

    if low and not opened:
        if len(low) == 1:
            return f"Only {low[0].spots_remaining} spots left for {low[0].session.camp_name}"
        return f"{len(low)} camps you saved are filling up fast"

    return f"Camp updates: {len(digest.notifications)} camps you're watching"


def _session_lines(notification: SessionNotification) -> List[str]:
    session = notification.session
    lines = [session.camp_name]
    if notification.change_type == 'low_availability':
        lines.append(f"⚠️ {_spots_phrase(notification.spots_remaining)}")
    if session.organization_name:
        lines.append(session.organization_name)
    lines.append(f"📅 {format_date_range(session)}")
    lines.append(
        f"⏰ {format_time(session.drop_off_hour, session.drop_off_minute)} - "
        f"{format_time(session.pick_up_hour, session.pick_up_minute)}"
    )
    if notification.change_type == 'registration_opened' and session.location is not None:
        lines.append(f"📍 {session.location.name}")
    lines.append(f"💰 {format_price(session.price_cents)}")
    lines.append(f"👦 Saved for {' and '.join(notification.child_names)}")
    if session.registration_url:
        lines.append(f"Register: {session.registration_url}")
    return lines


def build_digest_text(digest: FamilyDigest) -> str:
    parts = [
        "Camp Updates for You",
        "",
        f"Hi {digest.display_name}, here's what's happening with camps you're watching.",
        "",
    ]
    sections = (
        ('registration_opened', "🎉 NOW OPEN FOR REGISTRATION"),
        ('low_availability', "⚡ FILLING UP FAST"),
    )
    for change_type, heading in sections:
        notifications = digest.of_type(change_type)
        if not notifications:
            continue
        parts.extend([heading, "=" * 30, ""])
        for notification in notifications:
            parts.extend(_session_lines(notification))
            parts.append("")

    parts.extend([
        "---",
        f"You're receiving this because you saved these camps on {digest.branding['brand_name']}.",
        f"View your summer planner: https://{digest.branding['domain']}",
    ])
    return "\n".join(parts) + "\n"


_SECTION_STYLES = {
    'registration_opened': ("🎉 Now Open for Registration", "#f0fdf4", "#16a34a", "#dcfce7"),
    'low_availability': ("⚡ Filling Up Fast", "#fef3c7", "#d97706", "#fde68a"),
}


def _session_card_html(notification: SessionNotification, accent: str, border: str) -> str:
    session = notification.session
    muted = 'margin: 4px 0; color: #666; font-size: 14px;'
    rows = [f'<h3 style="margin: 0 0 8px 0; color: #1a1a1a;">{escape(session.camp_name)}</h3>']
    if notification.change_type == 'low_availability':
        rows.append(
            f'<p style="margin: 4px 0; font-size: 14px;"><strong style="color: #dc2626;">'
            f'{_spots_phrase(notification.spots_remaining)}</strong></p>'
        )
    if session.organization_name:
        rows.append(f'<p style="{muted}">{escape(session.organization_name)}</p>')
    rows.append(f'<p style="{muted}">📅 {format_date_range(session)}</p>')
    rows.append(
        f'<p style="{muted}">⏰ {format_time(session.drop_off_hour, session.drop_off_minute)} - '
        f'{format_time(session.pick_up_hour, session.pick_up_minute)}</p>'
    )
    if notification.change_type == 'registration_opened' and session.location is not None:
        rows.append(f'<p style="{muted}">📍 {escape(session.location.name)}</p>')
    rows.append(f'<p style="{muted}">💰 {format_price(session.price_cents)}</p>')
    children = escape(' and '.join(notification.child_names))
    rows.append(f'<p style="margin: 8px 0 0 0; color: #666; font-size: 14px;">👦 Saved for <strong>{children}</strong></p>')
    if session.registration_url:
        rows.append(
            f'<p style="margin: 12px 0 0 0;"><a href="{escape(session.registration_url)}" '
            f'style="display: inline-block; padding: 10px 20px; background-color: {accent}; color: white; '
            f'text-decoration: none; border-radius: 6px; font-weight: 600;">Register Now</a></p>'
        )
    return (
        f'<div style="background: white; border-radius: 6px; padding: 12px; margin: 12px 0; '
        f'border: 1px solid {border};">{"".join(rows)}</div>'
    )


def build_digest_html(digest: FamilyDigest) -> str:
    html = [
        '<div style="font-family: -apple-system, BlinkMacSystemFont, \'Segoe UI\', Roboto, sans-serif; '
        'max-width: 600px; margin: 0 auto; padding: 20px;">',
        '<h1 style="color: #1a1a1a; font-size: 24px; margin-bottom: 8px;">Camp Updates for You</h1>',
        f'<p style="color: #666; margin-top: 0;">Hi {escape(digest.display_name)}, '
        f'here\'s what\'s happening with camps you\'re watching.</p>',
    ]
    for change_type, (heading, background, accent, border) in _SECTION_STYLES.items():
        notifications = digest.of_type(change_type)
        if not notifications:
            continue
        html.append(f'<div style="background: {background}; border-radius: 8px; padding: 16px; margin: 20px 0;">')
        html.append(f'<h2 style="color: {accent}; font-size: 18px; margin-top: 0;">{heading}</h2>')
        html.extend(_session_card_html(n, accent, border) for n in notifications)
        html.append('</div>')

    brand = digest.branding
    html.append(
        '<p style="color: #666; font-size: 14px; margin-top: 32px; border-top: 1px solid #eee; padding-top: 16px;">'
        f"You're receiving this because you saved these camps on {escape(brand['brand_name'])}.<br/>"
        f'<a href="https://{brand["domain"]}" style="color: #E5A33B;">View your summer planner</a></p>'
    )
    html.append('</div>')
    return "\n".join(html)


# =============================================================================
# Digest
# =============================================================================

def _family_branding(family: Family) -> Dict[str, str]:
    city = db.session.get(City, family.city_id) if family.city_id else None
    if city is None:
        return dict(DEFAULT_BRAND)
    return city.branding()


def _collect(digests: Dict[int, FamilyDigest], session: Session, change_type: str,
             change: Optional[ScrapeChange] = None) -> None:
    for entry in resolve_interested_families(session):
        family = entry['family']
        if NotificationSent.is_sent(family.id, session.id, change_type):
            continue

        digest = digests.get(family.id)
        if digest is None:
            digest = FamilyDigest(family=family, branding=_family_branding(family))
            digests[family.id] = digest

        existing = next(
            (n for n in digest.notifications if n.session.id == session.id and n.change_type == change_type),
            None,
        )
        if existing is not None:
            existing.child_names.append(entry['child_name'])
            continue

        digest.notifications.append(SessionNotification(
            session=session,
            change_type=change_type,
            child_names=[entry['child_name']],
            change=change,
            spots_remaining=session.spots_remaining,
        ))


def build_family_digests(since: datetime, threshold: int = LOW_AVAILABILITY_THRESHOLD,
                         now: datetime = None) -> Dict[int, FamilyDigest]:
    """Group pending notifications by family. Records availability snapshots."""
    digests: Dict[int, FamilyDigest] = {}

    for change in detect_registration_opened(since):
        session = db.session.get(Session, change.session_id)
        _collect(digests, session, 'registration_opened', change=change)

    for session in detect_low_availability(threshold=threshold, now=now):
        _collect(digests, session, 'low_availability')

    return digests


def _record_delivery(digest: FamilyDigest) -> int:
    recorded = 0
    for notification in digest.notifications:
        if NotificationSent.mark_sent(digest.family.id, notification.session.id, notification.change_type):
            recorded += 1
        if notification.change is not None and not notification.change.notified:
            notification.change.mark_notified()
    return recorded


def send_availability_digest(now: datetime = None, lookback_hours: int = DEFAULT_LOOKBACK_HOURS,
                             threshold: int = LOW_AVAILABILITY_THRESHOLD,
                             sender: Callable = send_email) -> dict:
    """
    Hourly cron entry point.

    Returns:
        {success, emails_sent, notifications_sent, errors}
    """
    now = now or datetime.utcnow()
    errors = []
    emails_sent = 0
    notifications_sent = 0

    try:
        digests = build_family_digests(now - timedelta(hours=lookback_hours), threshold=threshold, now=now)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("Notification digest failed while collecting changes")
        return {
            'success': False,
            'emails_sent': 0,
            'notifications_sent': 0,
            'errors': [f"Fatal error: {e}"],
        }

    for digest in digests.values():
        if not digest.notifications:
            continue
        try:
            sender(
                to=digest.family.email,
                subject=build_subject(digest),
                html=build_digest_html(digest),
                text=build_digest_text(digest),
                sender=digest.sender,
            )
        except Exception as e:
            logger.warning(f"Digest email to family {digest.family.id} failed: {e}")
            errors.append(f"Failed to send email to {digest.family.email}: {e}")
            continue

        emails_sent += 1
        notifications_sent += _record_delivery(digest)
        db.session.commit()

    logger.info(f"Notification digest complete: {emails_sent} emails sent, {notifications_sent} notifications")
    return {
        'success': True,
        'emails_sent': emails_sent,
        'notifications_sent': notifications_sent,
        'errors': errors,
    }
