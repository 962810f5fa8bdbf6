"""
Tests for the scraper development loop and the automation sweeps.
"""

from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from scrapers.fetcher import FetchedPage, FetchError
from scrapers.models import ScrapeJob, ScraperAlert, ScraperDevRequest, ScrapeSource
from services.automation import (
    auto_queue_scraper_development,
    check_zero_price_ratio,
    cleanup_stale_dev_requests,
    get_automation_metrics,
)
from services.dev_requests import (
    approve_request,
    claim_request,
    fail_request,
    record_test_results,
    request_scraper_development,
    run_request_test,
    submit_feedback,
    submit_for_testing,
)
from services.errors import ConflictError, InvalidTransitionError, ValidationError

CONFIG = {"container": "div.camp", "fields": {"name": "h2"}}
LISTING = "<html><body><div class='camp'><h2>Soccer Stars</h2></div><div class='camp'><h2>Ballet</h2></div></body></html>"


@pytest.fixture
def testing_request(make):
    city = make.city()
    request = request_scraper_development("Dance Co", "https://dance.example.org/camps", city.id)
    claim_request(request, "dev@example.com")
    return submit_for_testing(request, scraper_config=CONFIG)


class TestRequestFlow:
    def test_duplicate_open_request(self, make):
        city = make.city()
        request_scraper_development("A", "https://a.example.org", city.id)
        with pytest.raises(ConflictError):
            request_scraper_development("A again", "https://a.example.org", city.id)

    def test_claim_and_submit(self, testing_request):
        assert testing_request.status == "testing"
        assert testing_request.claimed_by == "dev@example.com"
        assert testing_request.scraper_version == 1
        assert testing_request.generated_config["fields"]["name"]["selector"] == "h2"

    def test_submit_requires_method(self, make):
        request = request_scraper_development("A", "https://a.example.org", make.city().id)
        claim_request(request, "dev")
        with pytest.raises(ValidationError):
            submit_for_testing(request)

    def test_cannot_submit_unclaimed(self, make):
        request = request_scraper_development("A", "https://a.example.org", make.city().id)
        with pytest.raises(InvalidTransitionError):
            submit_for_testing(request, scraper_config=CONFIG)

    def test_failed_test_goes_back_with_feedback(self, testing_request):
        record_test_results(testing_request, 0, error="selector matched nothing")

        assert testing_request.status == "pending"
        assert testing_request.test_retry_count == 1
        entry = testing_request.feedback_history[-1]
        assert entry["feedback_by"] == "auto-test"
        assert "selector matched nothing" in entry["feedback"]

    def test_retries_exhausted(self, testing_request):
        testing_request.test_retry_count = testing_request.max_test_retries
        record_test_results(testing_request, 0)
        assert testing_request.status == "failed"
        assert "no sessions found" in testing_request.failure_reason

    def test_expected_empty_counts_as_success(self, testing_request):
        record_test_results(testing_request, 0, expected_empty=True)
        assert testing_request.status == "needs_feedback"

    def test_feedback_loop(self, testing_request):
        record_test_results(testing_request, 2, sample=[{"name": "x"}])
        submit_feedback(testing_request, "Also capture prices", "admin@example.com")
        assert testing_request.status == "in_progress"
        assert testing_request.feedback_history[-1]["scraper_version_before"] == 1

    def test_approve_creates_and_activates_source(self, testing_request, db_session):
        record_test_results(testing_request, 2)
        approve_request(testing_request, "admin@example.com")

        source = db_session.get(ScrapeSource, testing_request.source_id)
        assert testing_request.status == "completed"
        assert source.is_active is True
        assert source.scraper_version == 1
        job = ScrapeJob.query.filter_by(source_id=source.id).one()
        assert job.triggered_by == "dev-approval"

    def test_fail_request(self, testing_request):
        fail_request(testing_request, "site blocks scraping")
        with pytest.raises(InvalidTransitionError):
            claim_request(testing_request, "dev")


class TestRunRequestTest:
    def test_successful_fetch_and_extract(self, testing_request):
        fetcher = Mock()
        fetcher.fetch.return_value = FetchedPage(
            url=testing_request.source_url, final_url=testing_request.source_url,
            status_code=200, html=LISTING,
        )

        run_request_test(testing_request.id, fetcher=fetcher)

        assert testing_request.status == "needs_feedback"
        assert testing_request.last_test_sessions_found == 2
        assert testing_request.last_test_sample_data[0]["name"] == "Soccer Stars"

    def test_auto_approve(self, testing_request):
        fetcher = Mock()
        fetcher.fetch.return_value = FetchedPage(
            url=testing_request.source_url, final_url=testing_request.source_url,
            status_code=200, html=LISTING,
        )
        run_request_test(testing_request.id, fetcher=fetcher, auto_approve=True)
        assert testing_request.status == "completed"

    def test_fetch_error_recorded(self, testing_request):
        fetcher = Mock()
        fetcher.fetch.side_effect = FetchError("HTTP 503", testing_request.source_url, 503)

        run_request_test(testing_request.id, fetcher=fetcher)

        assert testing_request.status == "pending"
        assert testing_request.last_test_error == "HTTP 503"


class TestAutomation:
    def test_auto_queue_prioritizes_regeneration(self, make, db_session):
        new = make.source(scraper_module=None)
        broken = make.source(needs_regeneration=True, consecutive_failures=6, last_error="HTTP 500")

        result = auto_queue_scraper_development(max_to_queue=1)

        assert (result["queued"], result["regeneration"]) == (1, 1)
        request = db_session.get(ScraperDevRequest, result["request_ids"][0])
        assert request.source_id == broken.id
        assert request.request_type == "regeneration"
        assert broken.needs_regeneration is False

        again = auto_queue_scraper_development()
        assert again["new"] == 1
        assert ScraperDevRequest.query.filter_by(source_id=new.id).count() == 1

    def test_auto_queue_skips_open_requests(self, make):
        source = make.source(scraper_module=None)
        request_scraper_development(source.name, source.url, source.city_id, source_id=source.id)
        assert auto_queue_scraper_development()["queued"] == 0

    def test_cleanup_stale(self, make):
        request = request_scraper_development("Old", "https://old.example.org", make.city().id)
        assert cleanup_stale_dev_requests(now=datetime.utcnow() + timedelta(days=8)) == 1
        assert request.status == "failed"

    def test_metrics(self, make):
        make.source()
        make.source(consecutive_failures=2)
        make.source(consecutive_failures=7)
        make.source(scraper_module=None)

        metrics = get_automation_metrics()

        assert metrics["active_sources"] == 4
        assert (metrics["healthy"], metrics["degraded"], metrics["failing"]) == (1, 1, 1)
        assert metrics["no_scraper"] == 1

    def test_zero_price_ratio_alert(self, make, db_session):
        make.session(price_cents=0)
        make.session(price_cents=0)
        make.session(price_cents=20000)

        result = check_zero_price_ratio()
        db_session.commit()

        assert result["alerted"] is True
        assert ScraperAlert.query.filter_by(alert_type="zero_price", source_id=None).count() == 1
