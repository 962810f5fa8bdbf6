"""
Tests for the availability digest and the email provider client.
"""

from datetime import date, datetime, timedelta
from unittest.mock import Mock

import pytest
import requests

from models import AvailabilitySnapshot, NotificationSent, Registration
from scrapers.models import ScrapeChange
from services.email_service import EmailSendError, send_email
from services.notifications import (
    build_digest_text,
    build_family_digests,
    detect_low_availability,
    format_time,
    send_availability_digest,
)

NOW = datetime(2026, 6, 1, 10, 0)


@pytest.fixture
def watched(make, db_session):
    """An active session saved by one family for two children."""
    city = make.city(brand_name="Seattle Camps", domain="seattlecamps.com", from_email="hi@seattlecamps.com")
    family = make.family(city=city, display_name="Rivera")
    session = make.session(make.camp(make.organization(city), name="Forest School"),
                           start_date=date(2026, 7, 6), registration_url="https://forest.example.org")
    for name in ("Ana", "Leo"):
        child = make.child(family, first_name=name)
        db_session.add(Registration(family_id=family.id, child_id=child.id, session_id=session.id,
                                    status="interested"))
    db_session.commit()
    return family, session


def opened_change(make, db_session, session, previous="sold_out", detected_at=NOW):
    change = ScrapeChange(source_id=make.source().id, session_id=session.id, change_type="status_changed",
                          previous_value=previous, new_value="active", detected_at=detected_at, notified=False)
    db_session.add(change)
    db_session.commit()
    return change


class TestDetection:
    def test_low_availability_only_on_crossing(self, make, db_session):
        session = make.session(capacity=20, enrolled_count=17)

        assert detect_low_availability(now=NOW) == [session]
        db_session.commit()
        assert detect_low_availability(now=NOW + timedelta(hours=1)) == []
        assert AvailabilitySnapshot.query.filter_by(session_id=session.id).count() == 2

    def test_low_availability_flagged_once_per_crossing(self, make, db_session):
        session = make.session(capacity=20, enrolled_count=15)
        assert detect_low_availability(now=NOW) == []
        db_session.commit()

        session.enrolled_count = 17
        db_session.commit()
        assert detect_low_availability(now=NOW + timedelta(hours=1)) == [session]
        db_session.commit()

        session.enrolled_count = 18
        db_session.commit()
        assert detect_low_availability(now=NOW + timedelta(hours=2)) == []
        db_session.commit()

        snapshots = AvailabilitySnapshot.query.filter_by(session_id=session.id) \
            .order_by(AvailabilitySnapshot.recorded_at).all()
        assert [s.spots_remaining for s in snapshots] == [5, 3, 2]

    def test_full_session_is_not_low(self, make):
        make.session(capacity=20, enrolled_count=20, status="sold_out")
        make.session(capacity=20, enrolled_count=20)
        assert detect_low_availability(now=NOW) == []

    def test_digest_groups_children(self, make, db_session, watched):
        family, session = watched
        opened_change(make, db_session, session)

        digests = build_family_digests(NOW - timedelta(hours=2), now=NOW)

        notification = digests[family.id].notifications[0]
        assert notification.change_type == "registration_opened"
        assert notification.child_names == ["Ana", "Leo"]
        assert digests[family.id].sender == "Seattle Camps <hi@seattlecamps.com>"

    def test_old_and_irrelevant_changes_ignored(self, make, db_session, watched):
        _, session = watched
        opened_change(make, db_session, session, detected_at=NOW - timedelta(hours=5))
        opened_change(make, db_session, session, previous="cancelled")
        assert build_family_digests(NOW - timedelta(hours=2), now=NOW) == {}

    def test_opted_out_family_skipped(self, make, db_session, watched):
        family, session = watched
        family.email_preferences = {"availability_alerts": False}
        opened_change(make, db_session, session)
        assert build_family_digests(NOW - timedelta(hours=2), now=NOW) == {}


class TestSendDigest:
    def test_sends_once_per_family_and_records(self, make, db_session, watched):
        family, session = watched
        change = opened_change(make, db_session, session)
        sender = Mock()

        result = send_availability_digest(now=NOW, sender=sender)

        assert result == {"success": True, "emails_sent": 1, "notifications_sent": 1, "errors": []}
        kwargs = sender.call_args.kwargs
        assert kwargs["to"] == family.email
        assert kwargs["subject"] == "Forest School is now open for registration"
        assert "Saved for Ana and Leo" in kwargs["text"]
        assert change.notified is True
        assert NotificationSent.is_sent(family.id, session.id, "registration_opened")

        # Second run finds nothing new
        assert send_availability_digest(now=NOW, sender=sender)["emails_sent"] == 0
        assert sender.call_count == 1

    def test_low_availability_subject(self, make, db_session, watched):
        _, session = watched
        session.enrolled_count = 18
        db_session.commit()
        sender = Mock()

        send_availability_digest(now=NOW, sender=sender)

        assert sender.call_args.kwargs["subject"] == "Only 2 spots left for Forest School"

    def test_send_failure_is_reported_not_recorded(self, make, db_session, watched):
        family, session = watched
        change = opened_change(make, db_session, session)
        sender = Mock(side_effect=EmailSendError("provider down"))

        result = send_availability_digest(now=NOW, sender=sender)

        assert result["success"] is True
        assert result["emails_sent"] == 0
        assert "provider down" in result["errors"][0]
        assert change.notified is False
        assert not NotificationSent.is_sent(family.id, session.id, "registration_opened")


class TestRendering:
    def test_format_time(self):
        assert format_time(9, 0) == "9:00 AM"
        assert format_time(12, 30) == "12:30 PM"
        assert format_time(0, 5) == "12:05 AM"

    def test_text_digest_sections(self, make, db_session, watched):
        family, session = watched
        opened_change(make, db_session, session)
        digest = build_family_digests(NOW - timedelta(hours=2), now=NOW)[family.id]

        text = build_digest_text(digest)
        assert "NOW OPEN FOR REGISTRATION" in text
        assert "Mon, Jul 6 - Fri, Jul 10" in text
        assert "https://seattlecamps.com" in text


class TestSendEmail:
    def _response(self, status_code=200, body=None):
        response = Mock(status_code=status_code, text="err")
        response.json.return_value = body or {"id": "msg_1"}
        return response

    def test_success(self):
        http = Mock()
        http.post.return_value = self._response()

        message_id = send_email("a@example.com", "Hi", "<p>hi</p>", text="hi", api_key="key", http=http)

        assert message_id == "msg_1"
        payload = http.post.call_args.kwargs["json"]
        assert payload["to"] == ["a@example.com"]
        assert payload["text"] == "hi"
        assert http.post.call_args.kwargs["headers"]["Authorization"] == "Bearer key"

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("RESEND_API_KEY", raising=False)
        with pytest.raises(EmailSendError):
            send_email("a@example.com", "Hi", "<p>hi</p>")

    def test_provider_error(self):
        http = Mock()
        http.post.return_value = self._response(status_code=422)
        with pytest.raises(EmailSendError) as exc_info:
            send_email("a@example.com", "Hi", "<p>hi</p>", api_key="key", http=http)
        assert exc_info.value.status_code == 422

    def test_network_error(self):
        http = Mock()
        http.post.side_effect = requests.ConnectionError("down")
        with pytest.raises(EmailSendError):
            send_email("a@example.com", "Hi", "<p>hi</p>", api_key="key", http=http)
