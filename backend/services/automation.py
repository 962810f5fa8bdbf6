"""
Scraper Automation - periodic sweeps over source health.

- auto_queue_scraper_development: file dev requests for active sources that
  need a (re)generated scraper, regeneration first
- cleanup_stale_dev_requests: fail requests nobody picked up
- get_automation_metrics: health buckets for the admin dashboard
- run_data_quality_checks: daily zero-price and missing-scraper checks
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List

from constants import (
    HEALTH_DEGRADED_MIN,
    HEALTH_FAILING_MIN,
    OPEN_DEV_REQUEST_STATUSES,
    ZERO_PRICE_RATIO_THRESHOLD,
)
from models import Session
from models.database import db
from scrapers.models import ScrapeSource, ScraperAlert, ScraperDevRequest
from services.source_health import create_alert_if_not_exists

logger = logging.getLogger(__name__)

STALE_REQUEST_MAX_AGE_DAYS = 7
AUTO_QUEUE_MAX = 10


def _sources_with_open_requests() -> set:
    rows = db.session.query(ScraperDevRequest.source_id).filter(
        ScraperDevRequest.status.in_(OPEN_DEV_REQUEST_STATUSES),
        ScraperDevRequest.source_id.isnot(None),
    ).all()
    return {source_id for (source_id,) in rows}


def _urls_with_open_requests() -> set:
    rows = db.session.query(ScraperDevRequest.source_url).filter(
        ScraperDevRequest.status.in_(OPEN_DEV_REQUEST_STATUSES),
    ).all()
    return {url for (url,) in rows}


def auto_queue_scraper_development(max_to_queue: int = AUTO_QUEUE_MAX) -> Dict[str, Any]:
    """
    File development requests for sources that need a scraper.

    Candidates are active sources flagged needs_regeneration (queued first)
    or without any extraction method, skipping sources that already have
    an open request.

    Returns:
        {"queued": n, "regeneration": n, "new": n, "request_ids": [...]}
    """
    busy_sources = _sources_with_open_requests()
    busy_urls = _urls_with_open_requests()

    regeneration = ScrapeSource.query.filter(
        ScrapeSource.is_active.is_(True),
        ScrapeSource.needs_regeneration.is_(True),
    ).order_by(ScrapeSource.consecutive_failures.desc()).all()

    missing_method = ScrapeSource.query.filter(
        ScrapeSource.is_active.is_(True),
        ScrapeSource.scraper_module.is_(None),
        ScrapeSource.scraper_config.is_(None),
    ).order_by(ScrapeSource.created_at.asc()).all()

    candidates = [(s, "regeneration") for s in regeneration]
    candidates += [(s, "new") for s in missing_method if not s.needs_regeneration]

    created: List[ScraperDevRequest] = []
    counts = {"regeneration": 0, "new": 0}
    for source, request_type in candidates:
        if len(created) >= max_to_queue:
            break
        if source.id in busy_sources or source.url in busy_urls:
            continue

        if request_type == "regeneration":
            notes = (f"Auto-queued: {source.consecutive_failures} consecutive failures, "
                     f"{source.consecutive_zero_results} zero-result runs. Last error: {source.last_error}")
            source.needs_regeneration = False
        else:
            notes = "Auto-queued: active source has no scraper"

        request = ScraperDevRequest(
            source_id=source.id,
            city_id=source.city_id,
            source_name=source.name,
            source_url=source.url,
            request_type=request_type,
            status="pending",
            notes=notes,
            requested_by="automation",
            requested_at=datetime.utcnow(),
            feedback_history=[],
        )
        db.session.add(request)
        busy_sources.add(source.id)
        busy_urls.add(source.url)
        created.append(request)
        counts[request_type] += 1

    db.session.commit()
    if created:
        logger.info(f"Auto-queued {len(created)} scraper requests ({counts})")
    return {"queued": len(created), **counts, "request_ids": [r.id for r in created]}


def cleanup_stale_dev_requests(max_age_days: int = STALE_REQUEST_MAX_AGE_DAYS, now: datetime = None) -> int:
    """Fail pending/in_progress requests older than max_age_days."""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=max_age_days)

    stale = ScraperDevRequest.query.filter(
        ScraperDevRequest.status.in_(("pending", "in_progress")),
        ScraperDevRequest.requested_at < cutoff,
    ).all()
    for request in stale:
        request.status = "failed"
        request.failure_reason = f"Stale: no progress in {max_age_days} days"
        request.completed_at = now

    db.session.commit()
    if stale:
        logger.info(f"Failed {len(stale)} stale dev requests")
    return len(stale)


def get_automation_metrics() -> Dict[str, Any]:
    """Health buckets of active sources plus queue and alert counts."""
    active = ScrapeSource.query.filter(ScrapeSource.is_active.is_(True)).all()

    healthy = degraded = failing = no_scraper = 0
    for source in active:
        failures = source.consecutive_failures or 0
        if not source.has_extraction_method:
            no_scraper += 1
        if failures >= HEALTH_FAILING_MIN:
            failing += 1
        elif failures >= HEALTH_DEGRADED_MIN:
            degraded += 1
        elif source.has_extraction_method:
            healthy += 1

    open_requests = ScraperDevRequest.query.filter(
        ScraperDevRequest.status.in_(OPEN_DEV_REQUEST_STATUSES)
    ).count()
    open_alerts = ScraperAlert.query.filter(ScraperAlert.acknowledged_at.is_(None)).count()

    return {
        "active_sources": len(active),
        "healthy": healthy,
        "degraded": degraded,
        "failing": failing,
        "no_scraper": no_scraper,
        "needs_regeneration": sum(1 for s in active if s.needs_regeneration),
        "open_dev_requests": open_requests,
        "open_alerts": open_alerts,
    }


def check_zero_price_ratio(city_id: int = None) -> Dict[str, Any]:
    """Alert when more than half of active sessions have a $0 price."""
    query = Session.query.filter(Session.status == "active")
    if city_id is not None:
        query = query.filter(Session.city_id == city_id)

    total = query.count()
    zero = query.filter(Session.price_cents == 0).count()
    ratio = zero / total if total else 0.0

    alert = None
    if total and ratio > ZERO_PRICE_RATIO_THRESHOLD:
        alert = create_alert_if_not_exists(
            None, "zero_price", "warning",
            f"{zero} of {total} active sessions ({ratio:.0%}) have a $0 price; "
            f"price extraction is likely broken",
        )
    return {"total": total, "zero_price": zero, "ratio": ratio, "alerted": alert is not None}


def run_data_quality_checks() -> Dict[str, Any]:
    """Daily checks: zero-price ratio, then queue scrapers for active sources missing one."""
    price = check_zero_price_ratio()
    db.session.commit()
    queued = auto_queue_scraper_development()
    logger.info(f"Data quality checks: zero_price={price}, queued={queued['queued']}")
    return {"zero_price": price, "auto_queue": queued}
