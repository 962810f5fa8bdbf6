"""
Session Counters - the single write path for enrolled/waitlist counts.

Every change to Session.enrolled_count or Session.waitlist_count goes
through adjust_session_counts(), which clamps at zero and re-derives the
active/sold_out status from the new counts. Nothing else writes these
columns.
"""
import logging

from constants import CAPACITY_MANAGED_STATUSES
from models import Session

logger = logging.getLogger(__name__)


def sync_capacity_status(session: Session) -> str:
    """
    Re-derive status from counts for capacity-managed sessions.

    active <-> sold_out only; draft/cancelled/completed are never touched.
    Returns the (possibly unchanged) status.
    """
    if session.status not in CAPACITY_MANAGED_STATUSES:
        return session.status

    target = "sold_out" if (session.enrolled_count or 0) >= (session.capacity or 0) else "active"
    if target != session.status:
        logger.info(f"Session {session.id} {session.status} -> {target} "
                    f"({session.enrolled_count}/{session.capacity})")
        session.status = target
    return session.status


def adjust_session_counts(session: Session, enrolled_delta: int = 0, waitlist_delta: int = 0) -> Session:
    """
    Apply count deltas to a session. Does not commit.

    Counts are clamped at 0; the capacity auto-flip runs afterwards.
    """
    session.enrolled_count = max(0, (session.enrolled_count or 0) + enrolled_delta)
    session.waitlist_count = max(0, (session.waitlist_count or 0) + waitlist_delta)
    sync_capacity_status(session)
    return session


def set_session_counts(session: Session, enrolled_count: int = None, capacity: int = None) -> Session:
    """Absolute update (admin edits, scraped availability). Does not commit."""
    if capacity is not None:
        session.capacity = max(0, capacity)
    if enrolled_count is not None:
        session.enrolled_count = max(0, enrolled_count)
    sync_capacity_status(session)
    return session
