"""
Scrape Runner - execute one queued scrape job end to end.

    1. start the job (commit)
    2. fetch every URL and extract, with no write open
    3. store raw output, import, complete the job, record source health
       (one commit)

Any fetch or extraction failure fails the job and counts against the
source. A 429 takes the rate-limit backoff path; a 404 on the primary
URL is appended to the source's URL history.
"""
import logging
from typing import Dict, Optional

from models.database import db
from scrapers.base import ExtractionResult
from scrapers.extraction import ExtractionConfigError, describe_method, resolve_extraction_method, run_extraction
from scrapers.fetcher import FetchError, PageFetcher
from scrapers.models import ScrapeJob
from services.import_service import import_scraped_sessions
from services.scrape_jobs import complete_job, fail_job, get_job, start_job, store_raw_data
from services.source_health import record_failure, record_success
from services.sources import record_url_check

logger = logging.getLogger(__name__)


class ScrapeRunError(Exception):
    """Job could not produce sessions."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


def _fetch_pages(fetcher: PageFetcher, urls) -> Dict[str, str]:
    pages = {}
    for url in urls:
        try:
            page = fetcher.fetch(url)
        except FetchError as e:
            raise ScrapeRunError(f"Failed to fetch {url}: {e}", status_code=e.status_code, url=url) from e
        pages[page.final_url or url] = page.html
    return pages


def _fail(job: ScrapeJob, error: ScrapeRunError) -> ScrapeJob:
    source = job.source
    fail_job(job, str(error))
    record_failure(source, str(error), status_code=error.status_code)
    if error.status_code in (404, 410) and error.url == source.url:
        record_url_check(source, source.url, "404")
    db.session.commit()
    logger.warning(f"Scrape job {job.id} for source {source.id} failed: {error}")
    return job


def run_scrape_job(job_id: int, fetcher: PageFetcher = None) -> Optional[ScrapeJob]:
    """
    Run a pending scrape job.

    Returns None when the job is no longer runnable (already started or
    finished), so a retried scheduler task is harmless.
    """
    job = get_job(job_id)
    if job.status != "pending":
        logger.info(f"Scrape job {job.id} is {job.status}; skipping")
        return None

    source = job.source
    if not source.is_active:
        fail_job(job, "Source is inactive")
        db.session.commit()
        return job

    try:
        method = resolve_extraction_method(source)
    except (ExtractionConfigError, KeyError) as e:
        return _fail(job, ScrapeRunError(f"No usable extraction method: {e}"))

    start_job(job)
    db.session.commit()

    urls = [source.url] + [u for u in (source.additional_urls or []) if u != source.url]
    fetcher = fetcher or PageFetcher()
    try:
        pages = _fetch_pages(fetcher, urls)
        extraction = run_extraction(method, pages, ExtractionResult())
        if extraction.errors and not extraction.sessions:
            raise ScrapeRunError("Extraction failed: " + "; ".join(extraction.errors))
    except ScrapeRunError as e:
        return _fail(job, e)

    logger.info(
        f"Scrape job {job.id}: {len(extraction.sessions)} records from {len(pages)} page(s) "
        f"via {describe_method(method)}"
    )

    try:
        store_raw_data(job, extraction.to_dict())
        result = import_scraped_sessions(source, job, extraction.sessions, commit=False)
        complete_job(job, **result.job_stats())
        record_success(source, result.found)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception(f"Import failed for scrape job {job.id}")
        return _fail(job, ScrapeRunError(f"Import failed: {e}"))

    return job
