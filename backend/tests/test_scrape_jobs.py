"""
Tests for scrape job lifecycle, source health counters and alerts.
"""

from datetime import datetime, timedelta

import pytest

from scrapers.models import ScraperAlert
from services.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from services.scrape_jobs import (
    cleanup_stuck_jobs,
    complete_job,
    create_scrape_job,
    fail_job,
    list_jobs,
    start_job,
)
from services.source_health import (
    acknowledge_alert,
    create_alert_if_not_exists,
    list_alerts,
    record_failure,
    record_success,
)


def alert_types(source):
    return sorted(a.alert_type for a in ScraperAlert.query.filter_by(source_id=source.id))


class TestJobLifecycle:
    def test_create_job(self, make):
        source = make.source()
        job = create_scrape_job(source.id, triggered_by="manual")
        assert job.status == "pending"
        assert list_jobs(source_id=source.id) == [job]

    def test_one_open_job_per_source(self, make):
        source = make.source()
        create_scrape_job(source.id)
        with pytest.raises(ConflictError) as exc_info:
            create_scrape_job(source.id)
        assert exc_info.value.code == "JOB_ALREADY_QUEUED"

    def test_running_job_also_blocks(self, make):
        source = make.source()
        make.job(source, status="running")
        with pytest.raises(ConflictError):
            create_scrape_job(source.id)

    def test_unknown_source(self, app):
        with pytest.raises(NotFoundError):
            create_scrape_job(999)

    def test_source_without_extraction_method(self, make):
        source = make.source(scraper_module=None, is_active=False)
        with pytest.raises(ValidationError):
            create_scrape_job(source.id)

    def test_transitions(self, make):
        job = make.job()
        start_job(job)
        assert job.status == "running" and job.started_at is not None
        complete_job(job, found=3, created=2, updated=1)
        assert (job.sessions_found, job.sessions_created, job.sessions_updated) == (3, 2, 1)

    def test_completed_job_cannot_fail(self, make):
        job = make.job(status="completed")
        with pytest.raises(InvalidTransitionError):
            fail_job(job, "late")

    def test_pending_job_cannot_complete(self, make):
        job = make.job()
        with pytest.raises(InvalidTransitionError):
            complete_job(job, 0, 0, 0)

    def test_cleanup_stuck_jobs(self, make, db_session):
        source = make.source()
        running = make.job(source, status="running", started_at=datetime.utcnow())
        fresh_source = make.source()
        fresh = make.job(fresh_source)

        later = datetime.utcnow() + timedelta(hours=3)
        assert cleanup_stuck_jobs(max_age_hours=2, now=later) == 2

        assert running.status == "failed"
        assert fresh.status == "failed"
        # Only a stuck running job counts against the source
        assert source.consecutive_failures == 1
        assert fresh_source.consecutive_failures == 0

    def test_cleanup_ignores_recent_jobs(self, make):
        make.job(status="running", started_at=datetime.utcnow())
        assert cleanup_stuck_jobs(max_age_hours=2) == 0


class TestSourceHealth:
    def test_success_resets_failures(self, make):
        source = make.source(consecutive_failures=2, total_runs=4, success_rate=0.5)
        now = datetime(2026, 7, 1, 12, 0)
        record_success(source, sessions_found=5, now=now)

        assert source.consecutive_failures == 0
        assert source.total_runs == 5
        assert source.success_rate == pytest.approx(3 / 5)
        assert source.next_scheduled_scrape == now + timedelta(hours=24)

    def test_failure_backs_off_exponentially(self, make):
        source = make.source()
        now = datetime(2026, 7, 1, 12, 0)
        record_failure(source, "HTTP 500", status_code=500, now=now)
        assert source.consecutive_failures == 1
        assert source.next_scheduled_scrape == now + timedelta(hours=48)

    def test_backoff_is_capped(self, make):
        source = make.source(consecutive_failures=6)
        now = datetime(2026, 7, 1, 12, 0)
        record_failure(source, "HTTP 500", now=now)
        assert source.next_scheduled_scrape == now + timedelta(hours=168)

    def test_rate_limit_counts_as_failure(self, make):
        source = make.source()
        now = datetime(2026, 7, 1, 12, 0)
        alerts = record_failure(source, "HTTP 429", status_code=429, now=now)

        assert source.consecutive_failures == 1
        assert source.next_scheduled_scrape == now + timedelta(hours=6)
        assert [a.alert_type for a in alerts] == ["rate_limited"]

    def test_failure_thresholds(self, make, db_session):
        source = make.source()
        for _ in range(10):
            record_failure(source, "boom")
        db_session.commit()

        assert source.needs_regeneration is True
        assert source.is_active is False
        assert source.closed_by == "system"
        assert alert_types(source) == ["scraper_degraded", "scraper_disabled", "scraper_needs_regeneration"]

    def test_zero_results_flag_regeneration(self, make, db_session):
        source = make.source()
        for _ in range(3):
            record_success(source, sessions_found=0)
        db_session.commit()

        assert source.consecutive_zero_results == 3
        assert source.needs_regeneration is True
        # zero_results alert is deduplicated within its window
        assert alert_types(source) == ["scraper_needs_regeneration", "zero_results"]

    def test_sessions_found_clears_regeneration(self, make):
        source = make.source(needs_regeneration=True, consecutive_zero_results=4)
        record_success(source, sessions_found=2)
        assert source.needs_regeneration is False
        assert source.consecutive_zero_results == 0


class TestAlerts:
    def test_dedupe_and_acknowledge(self, make, db_session):
        source = make.source()
        first = create_alert_if_not_exists(source.id, "zero_price", "warning", "free?")
        assert create_alert_if_not_exists(source.id, "zero_price", "warning", "free?") is None
        db_session.commit()

        acknowledge_alert(first.id, "admin@example.com")
        assert list_alerts(source_id=source.id) == []
        assert create_alert_if_not_exists(source.id, "zero_price", "warning", "again") is not None

    def test_acknowledge_once(self, make, db_session):
        source = make.source()
        alert = create_alert_if_not_exists(source.id, "zero_price", "warning", "x")
        db_session.commit()
        acknowledge_alert(alert.id, "a@example.com")
        with pytest.raises(ConflictError):
            acknowledge_alert(alert.id, "a@example.com")

    def test_unknown_alert_type(self, make):
        with pytest.raises(ValidationError):
            create_alert_if_not_exists(make.source().id, "nonsense", "info", "x")
