"""
Scraper Development Service - the request/test/feedback loop for new scrapers.

    pending -> in_progress -> testing -> needs_feedback -> in_progress ...
                                      -> completed | failed
    testing -> pending  (automated test failed; retried with auto feedback)

A request produces an extraction method (routine name or declarative
config). Approval deploys it to the source, activates the source and
queues its first scrape job.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from constants import DEV_REQUEST_TRANSITIONS, OPEN_DEV_REQUEST_STATUSES
from models.database import db
from scrapers.extraction import ExtractionConfigError, NamedRoutine, extract, parse_declarative_config
from scrapers.fetcher import FetchError, PageFetcher
from scrapers.models import ScrapeSource, ScraperDevRequest
from services.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from services.sources import validate_extraction_method, activate_source, create_source, update_scraper_config
from services.validation import is_valid_url

logger = logging.getLogger(__name__)

AUTO_TEST_AUTHOR = "auto-test"
SAMPLE_SIZE = 5


def get_request(request_id: int) -> ScraperDevRequest:
    request = db.session.get(ScraperDevRequest, request_id)
    if request is None:
        raise NotFoundError(f"Development request {request_id} not found")
    return request


def _transition(request: ScraperDevRequest, new_status: str):
    if new_status not in DEV_REQUEST_TRANSITIONS.get(request.status, set()):
        raise InvalidTransitionError("development request", request.status, new_status)
    request.status = new_status


def find_open_request(source_url: str = None, source_id: int = None) -> Optional[ScraperDevRequest]:
    query = ScraperDevRequest.query.filter(ScraperDevRequest.status.in_(OPEN_DEV_REQUEST_STATUSES))
    if source_id is not None:
        query = query.filter(ScraperDevRequest.source_id == source_id)
    else:
        query = query.filter(ScraperDevRequest.source_url == source_url)
    return query.first()


def request_scraper_development(source_name: str, source_url: str, city_id: int,
                                source_id: Optional[int] = None, request_type: str = "new",
                                notes: str = None, requested_by: str = None,
                                commit: bool = True) -> ScraperDevRequest:
    """
    File a development request.

    Raises:
        ConflictError: an open request already exists for this URL
    """
    if not is_valid_url(source_url):
        raise ValidationError("Source URL must be http(s)", field="source_url")
    if find_open_request(source_url=source_url) is not None:
        raise ConflictError(
            f"A development request for {source_url} is already open",
            code="DUPLICATE_REQUEST",
        )

    request = ScraperDevRequest(
        source_id=source_id,
        city_id=city_id,
        source_name=source_name,
        source_url=source_url,
        request_type=request_type,
        status="pending",
        notes=notes,
        requested_by=requested_by,
        requested_at=datetime.utcnow(),
        feedback_history=[],
    )
    db.session.add(request)
    if commit:
        db.session.commit()
    logger.info(f"Filed {request_type} scraper request for {source_url}")
    return request


def claim_request(request: ScraperDevRequest, claimed_by: str) -> ScraperDevRequest:
    _transition(request, "in_progress")
    request.claimed_by = claimed_by
    request.claimed_at = datetime.utcnow()
    db.session.commit()
    return request


def submit_for_testing(request: ScraperDevRequest, scraper_module: Optional[str] = None,
                       scraper_config: Optional[Dict[str, Any]] = None) -> ScraperDevRequest:
    """Attach a generated extraction method and move to testing."""
    if not scraper_module and scraper_config is None:
        raise ValidationError("Provide a scraper module or a scraper config", code="NO_EXTRACTION_METHOD")
    config = validate_extraction_method(scraper_module, scraper_config)

    _transition(request, "testing")
    request.generated_module = scraper_module
    request.generated_config = config
    request.scraper_version = (request.scraper_version or 0) + 1
    db.session.commit()
    return request


def _append_feedback(request: ScraperDevRequest, feedback: str, feedback_by: str):
    history = list(request.feedback_history or [])
    history.append({
        "feedback_at": datetime.utcnow().isoformat(),
        "feedback_by": feedback_by,
        "feedback": feedback,
        "scraper_version_before": request.scraper_version or 0,
    })
    request.feedback_history = history


def record_test_results(request: ScraperDevRequest, sessions_found: int, error: str = None,
                        sample: List[Dict[str, Any]] = None, expected_empty: bool = False,
                        auto_approve: bool = False, approved_by: str = AUTO_TEST_AUTHOR) -> ScraperDevRequest:
    """
    Record an automated test run of the generated scraper.

    An error, or zero sessions when sessions were expected, sends the
    request back to pending with auto feedback until max_test_retries is
    used up, then fails it. A successful run waits for human feedback, or
    is approved and deployed straight away when auto_approve is set.
    """
    if request.status != "testing":
        raise InvalidTransitionError("development request", request.status, "tested")

    request.last_test_run = datetime.utcnow()
    request.last_test_sessions_found = sessions_found
    request.last_test_sample_data = (sample or [])[:SAMPLE_SIZE]
    request.last_test_error = error

    if error or (sessions_found == 0 and not expected_empty):
        if error:
            feedback = f"Test failed with error: {error}\n\nPlease fix the scraper to handle this error."
        else:
            feedback = ("Test ran successfully but found 0 sessions. The page likely has camp data - "
                        "please improve the extraction logic to find the sessions.")

        if (request.test_retry_count or 0) < request.max_test_retries:
            _append_feedback(request, feedback, AUTO_TEST_AUTHOR)
            request.test_retry_count = (request.test_retry_count or 0) + 1
            _transition(request, "pending")
            logger.info(f"Dev request {request.id} test failed, retry {request.test_retry_count}")
        else:
            _transition(request, "failed")
            request.failure_reason = f"Failed automated testing after {request.test_retry_count} retries: " \
                                     f"{error or 'no sessions found'}"
            request.completed_at = datetime.utcnow()
            logger.warning(f"Dev request {request.id} failed after max retries")
        db.session.commit()
        return request

    if auto_approve:
        return approve_request(request, approved_by)

    _transition(request, "needs_feedback")
    db.session.commit()
    return request


def submit_feedback(request: ScraperDevRequest, feedback: str, feedback_by: str) -> ScraperDevRequest:
    """Human feedback on a tested scraper; back to in_progress for another iteration."""
    if not feedback or not feedback.strip():
        raise ValidationError("Feedback is required", field="feedback")
    _transition(request, "in_progress")
    _append_feedback(request, feedback.strip(), feedback_by)
    db.session.commit()
    return request


def approve_request(request: ScraperDevRequest, approved_by: str) -> ScraperDevRequest:
    """
    Deploy the generated extraction method.

    Creates the source when the request has none, records a new scraper
    version, activates the source and queues a scrape job.
    """
    from services.scrape_jobs import create_scrape_job

    if not request.has_generated_method:
        raise ValidationError("Request has no generated scraper to approve", code="NO_EXTRACTION_METHOD")
    _transition(request, "completed")

    source = db.session.get(ScrapeSource, request.source_id) if request.source_id else None
    if source is None:
        source = create_source(
            name=request.source_name,
            url=request.source_url,
            city_id=request.city_id,
            commit=False,
        )
        db.session.flush()
        request.source_id = source.id

    update_scraper_config(
        source,
        scraper_module=request.generated_module,
        scraper_config=request.generated_config,
        change_reason=f"Approved development request {request.id}",
        created_by=approved_by,
        commit=False,
    )
    request.completed_at = datetime.utcnow()
    activate_source(source)

    try:
        create_scrape_job(source.id, triggered_by="dev-approval")
    except ConflictError:
        logger.info(f"Source {source.id} already has a queued job after approval")

    logger.info(f"Dev request {request.id} approved by {approved_by}; source {source.id} active")
    return request


def fail_request(request: ScraperDevRequest, reason: str) -> ScraperDevRequest:
    _transition(request, "failed")
    request.failure_reason = reason
    request.completed_at = datetime.utcnow()
    db.session.commit()
    return request


def list_requests(status: Optional[str] = None, limit: int = 100) -> List[ScraperDevRequest]:
    query = ScraperDevRequest.query
    if status:
        query = query.filter(ScraperDevRequest.status == status)
    return query.order_by(ScraperDevRequest.requested_at.asc()).limit(limit).all()


def run_request_test(request_id: int, fetcher: PageFetcher = None,
                     auto_approve: bool = False) -> ScraperDevRequest:
    """
    Fetch the request's URL and run its generated method, then record results.

    The fetch and extraction happen before any write.
    """
    request = get_request(request_id)
    if request.status != "testing":
        raise InvalidTransitionError("development request", request.status, "tested")

    if request.generated_module:
        method = NamedRoutine(name=request.generated_module)
    else:
        try:
            method = parse_declarative_config(request.generated_config or {})
        except ExtractionConfigError as e:
            return record_test_results(request, 0, error=str(e))

    url = request.source_url
    fetcher = fetcher or PageFetcher()
    try:
        page = fetcher.fetch(url)
    except FetchError as e:
        return record_test_results(request, 0, error=str(e))

    result = extract(method, page.final_url, page.html)
    error = "; ".join(result.errors) if result.errors and not result.sessions else None
    return record_test_results(
        request, len(result.sessions), error=error, sample=result.sessions, auto_approve=auto_approve,
    )
