"""
Registration Service - families saving, registering and waitlisting children.

Every operation takes the acting Principal and checks that its family owns
the child / registration. Capacity changes go through
services.counters.adjust_session_counts in the same commit as the
registration status change.
"""
import logging
from datetime import datetime
from typing import List, Optional

from constants import REGISTRABLE_STATUSES
from models import Child, Registration, Session
from models.database import db
from services.counters import adjust_session_counts
from services.errors import (
    AuthorizationError,
    CapacityError,
    ConflictError,
    NotFoundError,
    PremiumRequiredError,
    ValidationError,
)

logger = logging.getLogger(__name__)

FREE_SAVED_CAMPS_LIMIT = 5

ACTIVE_REGISTRATION_STATUSES = ('interested', 'waitlisted', 'registered')


def _owned_child(principal, child_id: int) -> Child:
    child = db.session.get(Child, child_id)
    if child is None:
        raise NotFoundError(f"Child {child_id} not found")
    if not principal.owns(child.family_id):
        raise AuthorizationError("You do not have access to this child")
    return child


def _owned_registration(principal, registration_id: int) -> Registration:
    registration = db.session.get(Registration, registration_id)
    if registration is None:
        raise NotFoundError(f"Registration {registration_id} not found")
    if not principal.owns(registration.family_id):
        raise AuthorizationError("You do not have access to this registration")
    return registration


def _get_session(session_id: int) -> Session:
    session = db.session.get(Session, session_id)
    if session is None:
        raise NotFoundError(f"Session {session_id} not found")
    return session


def _existing(child_id: int, session_id: int) -> Optional[Registration]:
    return Registration.query.filter(
        Registration.child_id == child_id,
        Registration.session_id == session_id,
        Registration.status.in_(ACTIVE_REGISTRATION_STATUSES),
    ).first()


def mark_interested(principal, child_id: int, session_id: int, is_premium: bool,
                    free_limit: int = FREE_SAVED_CAMPS_LIMIT) -> Registration:
    """
    Save a session for a child.

    is_premium comes from services.billing.check_premium, evaluated before
    this call.

    Raises:
        ConflictError: child already has a registration for this session
        PremiumRequiredError: free family at the saved-camps limit
    """
    child = _owned_child(principal, child_id)
    session = _get_session(session_id)

    if _existing(child.id, session.id) is not None:
        raise ConflictError("Child already has a registration for this session", code="ALREADY_REGISTERED")

    if not is_premium:
        saved = Registration.query.filter(
            Registration.family_id == child.family_id,
            Registration.status == 'interested',
        ).count()
        if saved >= free_limit:
            raise PremiumRequiredError(
                f"Free accounts can save up to {free_limit} camps. Upgrade to save more."
            )

    registration = Registration(
        family_id=child.family_id,
        child_id=child.id,
        session_id=session.id,
        status='interested',
    )
    db.session.add(registration)
    db.session.commit()
    return registration


def register(principal, child_id: int, session_id: int, notes: str = None) -> Registration:
    """
    Register a child, or waitlist them when the session is full.

    Exactly one outcome: registered (+1 enrolled), waitlisted (+1 waitlist,
    position at the end), or CapacityError. Capacity is never overwritten.
    """
    child = _owned_child(principal, child_id)
    session = _get_session(session_id)

    if session.status not in REGISTRABLE_STATUSES:
        raise ValidationError(f"Session is {session.status} and not open for registration",
                              code="SESSION_NOT_OPEN")

    registration = _existing(child.id, session.id)
    if registration is not None and registration.status != 'interested':
        raise ConflictError(f"Child is already {registration.status} for this session",
                            code="ALREADY_REGISTERED")

    if session.is_full and not session.waitlist_has_room:
        raise CapacityError("Session is full and waitlist is not available")

    if registration is None:
        registration = Registration(family_id=child.family_id, child_id=child.id, session_id=session.id)
        db.session.add(registration)
    if notes:
        registration.notes = notes

    if not session.is_full:
        registration.status = 'registered'
        registration.registered_at = datetime.utcnow()
        registration.waitlist_position = None
        adjust_session_counts(session, enrolled_delta=1)
    else:
        registration.status = 'waitlisted'
        registration.waitlist_position = (session.waitlist_count or 0) + 1
        adjust_session_counts(session, waitlist_delta=1)

    db.session.commit()
    logger.info(f"Child {child.id} {registration.status} for session {session.id}")
    return registration


def join_waitlist(principal, child_id: int, session_id: int) -> Registration:
    """Explicitly join a full session's waitlist."""
    session = _get_session(session_id)
    if not session.is_full:
        raise ValidationError("Session has open spots; register instead", code="SESSION_NOT_FULL")
    if not session.waitlist_has_room:
        raise CapacityError("Session is full and waitlist is not available")
    return register(principal, child_id, session_id)


def _close_waitlist_gap(session_id: int, position: int):
    behind = Registration.query.filter(
        Registration.session_id == session_id,
        Registration.status == 'waitlisted',
        Registration.waitlist_position > position,
    ).all()
    for entry in behind:
        entry.waitlist_position -= 1


def cancel_registration(principal, registration_id: int) -> Registration:
    """
    Cancel a registration.

    registered: enrolled -1 (a sold_out session flips back to active)
    waitlisted: waitlist -1 and later positions move up
    """
    registration = _owned_registration(principal, registration_id)
    if registration.status == 'cancelled':
        raise ConflictError("Registration is already cancelled", code="ALREADY_CANCELLED")

    session = registration.session
    if registration.status == 'registered':
        adjust_session_counts(session, enrolled_delta=-1)
    elif registration.status == 'waitlisted':
        position = registration.waitlist_position
        adjust_session_counts(session, waitlist_delta=-1)
        if position is not None:
            _close_waitlist_gap(session.id, position)

    registration.status = 'cancelled'
    registration.waitlist_position = None
    registration.cancelled_at = datetime.utcnow()
    db.session.commit()
    logger.info(f"Registration {registration.id} cancelled")
    return registration


def list_family_registrations(principal, status: Optional[str] = None) -> List[Registration]:
    if not principal.is_authenticated:
        raise AuthorizationError("Authentication required")
    query = Registration.query.filter(Registration.family_id == principal.family_id)
    if status:
        query = query.filter(Registration.status == status)
    return query.order_by(Registration.created_at.desc()).all()
