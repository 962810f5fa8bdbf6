"""
Scrape Job Service - job creation and lifecycle.

    pending -> running -> completed | failed
    pending -> failed   (timed out before a worker picked it up)

At most one pending and at most one running job exist per source; this is
checked at creation time.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from constants import JOB_TRANSITIONS
from models.database import db
from scrapers.models import ScrapeJob, ScrapeRawData, ScrapeSource
from scrapers.utils.hashing import compute_json_hash
from services.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

STUCK_JOB_MAX_AGE_HOURS = 2
RAW_DATA_RETENTION_DAYS = 30


def get_job(job_id: int) -> ScrapeJob:
    job = db.session.get(ScrapeJob, job_id)
    if job is None:
        raise NotFoundError(f"Scrape job {job_id} not found")
    return job


def open_job_for_source(source_id: int) -> Optional[ScrapeJob]:
    return ScrapeJob.query.filter(
        ScrapeJob.source_id == source_id,
        ScrapeJob.status.in_(("pending", "running")),
    ).order_by(ScrapeJob.created_at.desc()).first()


def create_scrape_job(source_id: int, triggered_by: str = "manual", commit: bool = True) -> ScrapeJob:
    """
    Queue a scrape for a source.

    Raises:
        NotFoundError: unknown source
        ValidationError: source has no extraction method
        ConflictError: source already has a pending or running job
    """
    source = db.session.get(ScrapeSource, source_id)
    if source is None:
        raise NotFoundError(f"Scrape source {source_id} not found")
    if not source.has_extraction_method:
        raise ValidationError("Source has no scraper configured", code="NO_EXTRACTION_METHOD")

    existing = open_job_for_source(source_id)
    if existing is not None:
        raise ConflictError(
            f"Source {source_id} already has a {existing.status} job ({existing.id})",
            code="JOB_ALREADY_QUEUED",
        )

    job = ScrapeJob(source_id=source_id, status="pending", triggered_by=triggered_by)
    db.session.add(job)
    if commit:
        db.session.commit()
    logger.info(f"Created scrape job {job.id} for source {source_id} ({triggered_by})")
    return job


def _transition(job: ScrapeJob, new_status: str):
    if new_status not in JOB_TRANSITIONS.get(job.status, set()):
        raise InvalidTransitionError("job", job.status, new_status)


def start_job(job: ScrapeJob) -> ScrapeJob:
    _transition(job, "running")
    job.start()
    return job


def complete_job(job: ScrapeJob, found: int, created: int, updated: int, pending: int = 0) -> ScrapeJob:
    _transition(job, "completed")
    job.complete({"found": found, "created": created, "updated": updated, "pending": pending})
    return job


def fail_job(job: ScrapeJob, error) -> ScrapeJob:
    _transition(job, "failed")
    job.fail(error)
    return job


def list_jobs(source_id: Optional[int] = None, status: Optional[str] = None, limit: int = 50) -> List[ScrapeJob]:
    query = ScrapeJob.query
    if source_id is not None:
        query = query.filter(ScrapeJob.source_id == source_id)
    if status:
        query = query.filter(ScrapeJob.status == status)
    return query.order_by(ScrapeJob.created_at.desc()).limit(limit).all()


def store_raw_data(job: ScrapeJob, payload: Dict[str, Any]) -> ScrapeRawData:
    """Keep the raw extraction output for debugging. Does not commit."""
    raw = ScrapeRawData(
        job_id=job.id,
        source_id=job.source_id,
        payload=payload,
        payload_hash=compute_json_hash(payload),
    )
    db.session.add(raw)
    return raw


def cleanup_stuck_jobs(max_age_hours: int = STUCK_JOB_MAX_AGE_HOURS, now: datetime = None) -> int:
    """
    Fail jobs stuck in pending/running past the cutoff.

    Stuck running jobs count against the source like any other failure.
    """
    from services.source_health import record_failure

    now = now or datetime.utcnow()
    cutoff = now - timedelta(hours=max_age_hours)

    stuck = ScrapeJob.query.filter(
        ScrapeJob.status.in_(("pending", "running")),
        db.func.coalesce(ScrapeJob.started_at, ScrapeJob.created_at) < cutoff,
    ).all()

    for job in stuck:
        was_running = job.status == "running"
        fail_job(job, "Job timed out")
        if was_running and job.source is not None:
            record_failure(job.source, "Job timed out", now=now)

    if stuck:
        db.session.commit()
        logger.warning(f"Failed {len(stuck)} stuck scrape jobs older than {max_age_hours}h")
    return len(stuck)


def cleanup_old_scrape_data(retention_days: int = RAW_DATA_RETENTION_DAYS, now: datetime = None) -> Dict[str, int]:
    """Delete raw payloads and finished jobs older than the retention window."""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=retention_days)

    raw_deleted = ScrapeRawData.query.filter(ScrapeRawData.created_at < cutoff).delete(
        synchronize_session=False
    )
    old_job_ids = [
        job_id for (job_id,) in db.session.query(ScrapeJob.id).filter(
            ScrapeJob.status.in_(("completed", "failed")),
            ScrapeJob.created_at < cutoff,
        )
    ]
    jobs_deleted = 0
    if old_job_ids:
        # Raw rows of these jobs may be newer than the cutoff
        ScrapeRawData.query.filter(ScrapeRawData.job_id.in_(old_job_ids)).delete(synchronize_session=False)
        jobs_deleted = ScrapeJob.query.filter(ScrapeJob.id.in_(old_job_ids)).delete(synchronize_session=False)

    db.session.commit()
    logger.info(f"Scrape data cleanup: {raw_deleted} raw payloads, {jobs_deleted} jobs removed")
    return {"raw_deleted": raw_deleted, "jobs_deleted": jobs_deleted}
