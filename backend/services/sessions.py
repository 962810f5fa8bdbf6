"""
Session Service - status state machine and capacity edits.

    draft -> active | cancelled
    active -> sold_out | cancelled | completed
    sold_out -> active | cancelled | completed
    cancelled, completed: terminal
"""
import logging
from datetime import date
from typing import List, Optional

from constants import SESSION_TRANSITIONS
from models import Session
from models.database import db
from services.counters import set_session_counts, sync_capacity_status
from services.errors import InvalidTransitionError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

TRANSITIONS = SESSION_TRANSITIONS


def can_transition(current: str, new_status: str) -> bool:
    return new_status in TRANSITIONS.get(current, set())


def get_session(session_id: int) -> Session:
    session = db.session.get(Session, session_id)
    if session is None:
        raise NotFoundError(f"Session {session_id} not found")
    return session


def update_session_status(session: Session, new_status: str, commit: bool = True) -> Session:
    """
    Move a session along the status graph.

    Activating a full session lands it in sold_out instead of active, so
    the capacity rule holds right after the transition.

    Raises:
        InvalidTransitionError: edge not in the graph
    """
    if not can_transition(session.status, new_status):
        raise InvalidTransitionError("session", session.status, new_status)

    previous = session.status
    session.status = new_status
    sync_capacity_status(session)
    if commit:
        db.session.commit()
    logger.info(f"Session {session.id} status {previous} -> {session.status}")
    return session


def update_capacity(session: Session, capacity: Optional[int] = None,
                    enrolled_count: Optional[int] = None, commit: bool = True) -> Session:
    if capacity is not None and capacity < 0:
        raise ValidationError("Capacity cannot be negative", field="capacity")
    if enrolled_count is not None and enrolled_count < 0:
        raise ValidationError("Enrolled count cannot be negative", field="enrolled_count")

    set_session_counts(session, enrolled_count=enrolled_count, capacity=capacity)
    if commit:
        db.session.commit()
    return session


def list_sessions(city_id: Optional[int] = None, status: Optional[str] = None,
                  starts_after: Optional[date] = None, source_id: Optional[int] = None,
                  limit: int = 100, offset: int = 0) -> List[Session]:
    query = Session.query
    if city_id is not None:
        query = query.filter(Session.city_id == city_id)
    if status:
        query = query.filter(Session.status == status)
    if starts_after:
        query = query.filter(Session.start_date >= starts_after)
    if source_id is not None:
        query = query.filter(Session.source_id == source_id)
    return query.order_by(Session.start_date.asc(), Session.id.asc()).offset(offset).limit(limit).all()


def complete_past_sessions(today: date = None) -> int:
    """Move active/sold_out sessions whose end date has passed to completed."""
    today = today or date.today()
    sessions = Session.query.filter(
        Session.status.in_(("active", "sold_out")),
        Session.end_date < today,
    ).all()
    for session in sessions:
        session.status = "completed"
    db.session.commit()
    if sessions:
        logger.info(f"Completed {len(sessions)} past sessions")
    return len(sessions)
