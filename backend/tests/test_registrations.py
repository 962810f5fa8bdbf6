"""
Tests for the session state machine, registration flows and premium checks.
"""

from datetime import date, datetime, timedelta
from unittest.mock import patch

import pytest

from models import Registration
from services.billing import check_premium
from services.errors import (
    AuthorizationError,
    CapacityError,
    ConflictError,
    InvalidTransitionError,
    PremiumRequiredError,
    ValidationError,
)
from services.registrations import (
    cancel_registration,
    join_waitlist,
    list_family_registrations,
    mark_interested,
    register,
)
from services.sessions import complete_past_sessions, update_capacity, update_session_status
from utils.principal import ANONYMOUS


class TestSessionStatus:
    def test_draft_to_active(self, make):
        session = make.session(status="draft")
        update_session_status(session, "active")
        assert session.status == "active"

    def test_activating_full_session_lands_sold_out(self, make):
        session = make.session(status="draft", capacity=2, enrolled_count=2)
        update_session_status(session, "active")
        assert session.status == "sold_out"

    def test_terminal_states(self, make):
        session = make.session(status="cancelled")
        with pytest.raises(InvalidTransitionError) as exc_info:
            update_session_status(session, "active")
        assert exc_info.value.status_code == 409

    def test_draft_cannot_sell_out(self, make):
        with pytest.raises(InvalidTransitionError):
            update_session_status(make.session(status="draft"), "sold_out")

    def test_capacity_edit_flips_status(self, make):
        session = make.session(capacity=10, enrolled_count=9)
        update_capacity(session, capacity=9)
        assert session.status == "sold_out"
        update_capacity(session, capacity=15)
        assert session.status == "active"

    def test_capacity_cannot_be_negative(self, make):
        with pytest.raises(ValidationError):
            update_capacity(make.session(), capacity=-1)

    def test_draft_ignores_capacity(self, make):
        session = make.session(status="draft", capacity=5)
        update_capacity(session, enrolled_count=5)
        assert session.status == "draft"

    def test_complete_past_sessions(self, make):
        past = make.session(start_date=date(2026, 6, 1))
        future = make.session(start_date=date(2027, 6, 1))
        draft = make.session(start_date=date(2026, 6, 1), status="draft")

        assert complete_past_sessions(today=date(2026, 9, 1)) == 1
        assert (past.status, future.status, draft.status) == ("completed", "active", "draft")


class TestRegistrations:
    @pytest.fixture
    def family(self, make):
        return make.family()

    @pytest.fixture
    def principal(self, family, principal_for):
        return principal_for(family)

    def test_register_increments_enrolled(self, make, family, principal):
        child = make.child(family)
        session = make.session(capacity=2)

        registration = register(principal, child.id, session.id)

        assert registration.status == "registered"
        assert registration.registered_at is not None
        assert session.enrolled_count == 1
        assert session.status == "active"

    def test_last_spot_sells_out(self, make, family, principal):
        session = make.session(capacity=1)
        register(principal, make.child(family).id, session.id)
        assert session.status == "sold_out"

    def test_full_session_without_waitlist(self, make, family, principal):
        session = make.session(capacity=1, enrolled_count=1, status="sold_out")
        with pytest.raises(CapacityError):
            register(principal, make.child(family).id, session.id)

    def test_full_session_waitlists_in_order(self, make, family, principal):
        session = make.session(capacity=1, enrolled_count=1, status="sold_out", waitlist_enabled=True)
        first = register(principal, make.child(family).id, session.id)
        second = join_waitlist(principal, make.child(family).id, session.id)

        assert (first.status, first.waitlist_position) == ("waitlisted", 1)
        assert second.waitlist_position == 2
        assert session.waitlist_count == 2
        assert session.enrolled_count == 1

    def test_waitlist_requires_full_session(self, make, family, principal):
        session = make.session(capacity=5, waitlist_enabled=True)
        with pytest.raises(ValidationError):
            join_waitlist(principal, make.child(family).id, session.id)

    def test_draft_session_not_open(self, make, family, principal):
        with pytest.raises(ValidationError):
            register(principal, make.child(family).id, make.session(status="draft").id)

    def test_cannot_register_twice(self, make, family, principal):
        child = make.child(family)
        session = make.session()
        register(principal, child.id, session.id)
        with pytest.raises(ConflictError):
            register(principal, child.id, session.id)

    def test_interested_upgrades_to_registered(self, make, family, principal):
        child = make.child(family)
        session = make.session()
        saved = mark_interested(principal, child.id, session.id, is_premium=False)
        registration = register(principal, child.id, session.id)
        assert registration.id == saved.id
        assert registration.status == "registered"

    def test_other_familys_child(self, make, principal):
        stranger = make.child(make.family())
        with pytest.raises(AuthorizationError):
            register(principal, stranger.id, make.session().id)

    def test_cancel_registered_reopens_session(self, make, family, principal):
        session = make.session(capacity=1)
        registration = register(principal, make.child(family).id, session.id)
        assert session.status == "sold_out"

        cancel_registration(principal, registration.id)

        assert registration.status == "cancelled"
        assert session.enrolled_count == 0
        assert session.status == "active"
        with pytest.raises(ConflictError):
            cancel_registration(principal, registration.id)

    def test_cancel_waitlisted_moves_queue_up(self, make, family, principal):
        session = make.session(capacity=1, enrolled_count=1, status="sold_out", waitlist_enabled=True)
        first = register(principal, make.child(family).id, session.id)
        second = register(principal, make.child(family).id, session.id)

        cancel_registration(principal, first.id)

        assert second.waitlist_position == 1
        assert session.waitlist_count == 1

    def test_free_saved_camps_limit(self, make, family, principal):
        child = make.child(family)
        for _ in range(2):
            mark_interested(principal, child.id, make.session().id, is_premium=False, free_limit=2)

        with pytest.raises(PremiumRequiredError) as exc_info:
            mark_interested(principal, child.id, make.session().id, is_premium=False, free_limit=2)
        assert exc_info.value.status_code == 403

        mark_interested(principal, child.id, make.session().id, is_premium=True, free_limit=2)
        assert len(list_family_registrations(principal, status="interested")) == 3

    def test_list_requires_authentication(self, app):
        with pytest.raises(AuthorizationError):
            list_family_registrations(ANONYMOUS)

    def test_list_only_own_family(self, make, family, principal, principal_for):
        other = make.family()
        register(principal_for(other), make.child(other).id, make.session().id)
        assert list_family_registrations(principal) == []
        assert Registration.query.count() == 1


class TestCheckPremium:
    def test_anonymous_and_free(self, make):
        assert check_premium(None) is False
        assert check_premium(make.family(), use_provider=False) is False

    def test_local_subscription(self, make):
        family = make.family(tier="premium", subscription_status="active",
                             subscription_ends_at=datetime.utcnow() + timedelta(days=30))
        assert check_premium(family) is True

    def test_expired_grace_period(self, make):
        family = make.family(tier="premium", subscription_status="past_due",
                             subscription_ends_at=datetime.utcnow() - timedelta(days=1))
        assert check_premium(family, use_provider=False) is False

    @patch("services.billing.stripe.Subscription.list")
    def test_provider_lookup(self, mock_list, make):
        mock_list.return_value = {"data": [{"status": "canceled"}, {"status": "trialing"}]}
        family = make.family(stripe_customer_id="cus_123")
        assert check_premium(family, api_key="sk_test") is True
        mock_list.assert_called_once()

    @patch("services.billing.stripe.Subscription.list")
    def test_provider_error_means_free(self, mock_list, make):
        mock_list.side_effect = RuntimeError("stripe down")
        family = make.family(stripe_customer_id="cus_123")
        assert check_premium(family, api_key="sk_test") is False

    @patch("services.billing.stripe.Subscription.list")
    def test_no_key_skips_provider(self, mock_list, make):
        assert check_premium(make.family(stripe_customer_id="cus_123")) is False
        mock_list.assert_not_called()
