"""
Tests for importing scraped records, pending review and the scrape runner.
"""

import json
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from models import Registration, Session
from scrapers.fetcher import FetchedPage, FetchError
from scrapers.models import PendingSession, ScrapeChange, ScrapeRawData
from services.errors import ConflictError, ValidationError
from services.import_service import import_scraped_sessions, review_pending_session
from services.notifications import send_availability_digest
from services.scrape_runner import run_scrape_job


def record(**overrides):
    data = {
        "name": "Robotics Adventure",
        "start_date": "2027-07-05",
        "end_date": "2027-07-09",
        "drop_off_hour": 9,
        "drop_off_minute": 0,
        "pick_up_hour": 15,
        "pick_up_minute": 0,
        "location": "123 Main St, Portland",
        "min_age": 6,
        "max_age": 10,
        "price_cents": 35000,
        "registration_url": "https://camps.example.org/register/robotics",
        "organization_name": "Makers Guild",
    }
    data.update(overrides)
    return data


def change_types(source):
    return sorted(c.change_type for c in ScrapeChange.query.filter_by(source_id=source.id))


class TestImport:
    def test_complete_record_creates_active_session(self, make):
        source = make.source()
        result = import_scraped_sessions(source, None, [record()])

        assert (result.found, result.created, result.pending) == (1, 1, 0)
        session = Session.query.filter_by(source_id=source.id).one()
        assert session.status == "active"
        assert session.data_source == "scraped"
        assert session.organization_name == "Makers Guild"
        assert source.organization_id == session.organization_id
        assert change_types(source) == ["session_added"]

    def test_reimport_matches_natural_key(self, make):
        source = make.source()
        import_scraped_sessions(source, None, [record()])
        result = import_scraped_sessions(source, None, [record(price_cents=37500)])

        assert (result.created, result.updated) == (0, 1)
        assert Session.query.filter_by(source_id=source.id).count() == 1
        price_change = ScrapeChange.query.filter_by(change_type="price_changed").one()
        assert (price_change.previous_value, price_change.new_value) == ("35000", "37500")
        assert price_change.notified is False

    def test_identical_reimport_is_unchanged(self, make):
        source = make.source()
        import_scraped_sessions(source, None, [record()])
        result = import_scraped_sessions(source, None, [record()])
        assert (result.updated, result.unchanged, result.changes) == (0, 1, 0)

    def test_fuzzy_name_match_on_same_start(self, make):
        source = make.source()
        import_scraped_sessions(source, None, [record()])
        result = import_scraped_sessions(source, None, [record(name="Robotics Adventures", end_date="2027-07-08")])

        assert result.created == 0
        assert "dates_changed" in change_types(source)

    def test_source_session_id_wins(self, make):
        source = make.source()
        import_scraped_sessions(source, None, [record(source_session_id="A-1")])
        result = import_scraped_sessions(source, None, [record(source_session_id="A-1", name="Totally Renamed")])
        assert result.created == 0

    def test_incomplete_record_goes_to_pending(self, make):
        source = make.source()
        result = import_scraped_sessions(source, None, [{"name": "Mystery Camp", "date_raw": "sometime"}])

        assert (result.created, result.pending) == (0, 1)
        pending = PendingSession.query.one()
        assert pending.status == "pending_review"
        assert pending.raw_data["name"] == "Mystery Camp"
        assert pending.completeness_score < 50

    def test_missing_session_reported_once(self, make):
        source = make.source()
        import_scraped_sessions(source, None, [record(), record(name="Pottery Studio")])

        import_scraped_sessions(source, None, [record()])
        import_scraped_sessions(source, None, [record()])

        removed = ScrapeChange.query.filter_by(change_type="session_removed").all()
        assert len(removed) == 1
        gone = Session.query.filter_by(camp_name="Pottery Studio").one()
        assert removed[0].session_id == gone.id
        assert gone.status == "active"

    def test_empty_scrape_reports_nothing_missing(self, make):
        source = make.source()
        import_scraped_sessions(source, None, [record()])
        result = import_scraped_sessions(source, None, [])
        assert result.removed == 0

    def test_spots_left_drives_counts(self, make):
        source = make.source()
        import_scraped_sessions(source, None, [record(capacity=12, spots_left=0)])
        session = Session.query.filter_by(source_id=source.id).one()
        assert (session.capacity, session.enrolled_count, session.status) == (12, 12, "sold_out")

    def test_reopened_session_reaches_digest(self, make, db_session):
        source = make.source()
        import_scraped_sessions(source, None, [record(capacity=12, spots_left=0)])
        session = Session.query.filter_by(source_id=source.id).one()
        assert session.status == "sold_out"

        family = make.family(city=make.city())
        child = make.child(family, first_name="Ana")
        db_session.add(Registration(family_id=family.id, child_id=child.id, session_id=session.id,
                                    status="interested"))
        db_session.commit()

        import_scraped_sessions(source, None, [record(capacity=12, spots_left=8)])

        assert (session.status, session.enrolled_count) == ("active", 4)
        change = ScrapeChange.query.filter_by(change_type="status_changed").one()
        assert (change.previous_value, change.new_value) == ("sold_out", "active")

        sender = Mock()
        result = send_availability_digest(now=datetime.utcnow(), sender=sender)

        assert result["emails_sent"] == 1
        assert sender.call_args.kwargs["to"] == family.email
        assert sender.call_args.kwargs["subject"] == "Robotics Adventure is now open for registration"
        assert change.notified is True

    def test_zero_price_alert(self, make):
        source = make.source()
        result = import_scraped_sessions(source, None, [record(price_cents=0), record(name="Art", price_cents=0)])
        assert "zero_price" in result.alerts
        assert Session.query.filter_by(source_id=source.id, status="draft").count() == 2


class TestPendingReview:
    def _pending(self, make):
        source = make.source()
        import_scraped_sessions(source, None, [{"name": "Nature Explorers", "start_date": "2027-06-14"}])
        return source, PendingSession.query.one()

    def test_fix_imports_as_enhanced(self, make):
        source, pending = self._pending(make)
        fixed = record(name="Nature Explorers", start_date="2027-06-14", end_date="2027-06-18")

        review_pending_session(pending, "manually_fixed", "admin@example.com", fixed)

        assert pending.status == "imported"
        session = Session.query.filter_by(id=pending.imported_session_id).one()
        assert session.data_source == "enhanced"
        assert session.source_id == source.id

    def test_fix_still_incomplete(self, make):
        _, pending = self._pending(make)
        with pytest.raises(ValidationError):
            review_pending_session(pending, "manually_fixed", "admin@example.com", {"location": "1 Elm St"})

    def test_discard_is_final(self, make):
        _, pending = self._pending(make)
        review_pending_session(pending, "discarded", "admin@example.com")
        with pytest.raises(ConflictError):
            review_pending_session(pending, "discarded", "admin@example.com")


def jsonld_page(url, events):
    blocks = "".join(
        f'<script type="application/ld+json">{json.dumps(e)}</script>' for e in events
    )
    return FetchedPage(url=url, final_url=url, status_code=200, html=f"<html><head>{blocks}</head></html>")


EVENT = {
    "@type": "Event",
    "name": "Junior Chefs",
    "startDate": "2027-07-12T09:00:00",
    "endDate": "2027-07-16T15:00:00",
    "typicalAgeRange": "Ages 7-11",
    "location": "55 Pine St, Portland",
    "offers": {"price": "300"},
    "url": "https://chefs.example.org/register",
}


class TestScrapeRunner:
    def test_successful_run(self, make):
        source = make.source()
        job = make.job(source)
        fetcher = Mock()
        fetcher.fetch.side_effect = lambda url: jsonld_page(url, [EVENT])

        run_scrape_job(job.id, fetcher=fetcher)

        assert job.status == "completed"
        assert (job.sessions_found, job.sessions_created) == (1, 1)
        assert source.total_runs == 1
        assert source.consecutive_failures == 0
        assert ScrapeRawData.query.filter_by(job_id=job.id).count() == 1
        session = Session.query.filter_by(source_id=source.id).one()
        assert (session.price_cents, session.min_age, session.max_age) == (30000, 7, 11)

    def test_fetches_additional_urls(self, make):
        source = make.source(additional_urls=["https://camps.example.org/page2"])
        job = make.job(source)
        fetcher = Mock()
        fetcher.fetch.side_effect = lambda url: jsonld_page(url, [])

        run_scrape_job(job.id, fetcher=fetcher)

        assert fetcher.fetch.call_count == 2
        assert job.status == "completed"
        assert source.consecutive_zero_results == 1

    def test_rate_limited_run_fails_with_backoff(self, make):
        source = make.source()
        job = make.job(source)
        fetcher = Mock()
        fetcher.fetch.side_effect = FetchError("HTTP 429", source.url, 429)

        before = datetime.utcnow()
        run_scrape_job(job.id, fetcher=fetcher)

        assert job.status == "failed"
        assert source.consecutive_failures == 1
        assert source.next_scheduled_scrape >= before + timedelta(hours=6)
        assert source.next_scheduled_scrape < before + timedelta(hours=7)

    def test_404_recorded_in_url_history(self, make):
        source = make.source()
        job = make.job(source)
        fetcher = Mock()
        fetcher.fetch.side_effect = FetchError("HTTP 404", source.url, 404)

        run_scrape_job(job.id, fetcher=fetcher)

        assert source.url_history[-1]["status"] == "404"

    def test_finished_job_is_skipped(self, make):
        job = make.job(status="completed")
        fetcher = Mock()
        assert run_scrape_job(job.id, fetcher=fetcher) is None
        fetcher.fetch.assert_not_called()

    def test_inactive_source_fails_job(self, make):
        job = make.job(make.source(is_active=False))
        run_scrape_job(job.id, fetcher=Mock())
        assert job.status == "failed"
        assert job.error_message == "Source is inactive"

    def test_unknown_routine_counts_against_source(self, make):
        source = make.source(scraper_module="renamed_routine")
        job = make.job(source)
        fetcher = Mock()

        before = datetime.utcnow()
        run_scrape_job(job.id, fetcher=fetcher)

        fetcher.fetch.assert_not_called()
        assert job.status == "failed"
        assert job.error_message.startswith("No usable extraction method")
        assert (source.consecutive_failures, source.total_runs) == (1, 1)
        assert source.last_error.startswith("No usable extraction method")
        assert source.next_scheduled_scrape > before
