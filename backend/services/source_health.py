"""
Source Health Service - scraper health counters and admin alerts.

Every finished job feeds exactly one of record_success() / record_failure():

    consecutive_failures   reset to 0 on success, +1 on failure (429 included)
    success_rate           successful_runs / total_runs
    3 failures             scraper_degraded (warning), raised once
    5+ failures            needs_regeneration + scraper_needs_regeneration (error)
    10+ failures           source disabled + scraper_disabled (critical)
    3 zero-result runs     needs_regeneration

These functions mutate the session but never commit: the job runner commits
the job outcome and the health update together.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from constants import (
    ALERT_DEDUPE_WINDOW_HOURS,
    ALERT_SEVERITIES,
    ALERT_TYPES,
    DEGRADED_FAILURE_THRESHOLD,
    DISABLE_FAILURE_THRESHOLD,
    MAX_BACKOFF_HOURS,
    RATE_LIMIT_BACKOFF_HOURS,
    REGENERATION_FAILURE_THRESHOLD,
    ZERO_RESULTS_REGENERATION_THRESHOLD,
)
from models.database import db
from scrapers.models import ScrapeSource, ScraperAlert
from services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# ALERTS
# =============================================================================

def create_alert(source_id: Optional[int], alert_type: str, severity: str, message: str) -> ScraperAlert:
    if alert_type not in ALERT_TYPES:
        raise ValidationError(f"Unknown alert type: {alert_type}", field="alert_type")
    if severity not in ALERT_SEVERITIES:
        raise ValidationError(f"Unknown severity: {severity}", field="severity")

    alert = ScraperAlert(
        source_id=source_id,
        alert_type=alert_type,
        severity=severity,
        message=message,
        created_at=datetime.utcnow(),
    )
    db.session.add(alert)
    logger.info(f"Alert [{severity}] {alert_type} source={source_id}: {message}")
    return alert


def find_open_alert(source_id: Optional[int], alert_type: str,
                    window_hours: Optional[int] = ALERT_DEDUPE_WINDOW_HOURS) -> Optional[ScraperAlert]:
    """Most recent unacknowledged alert of a type (optionally within a window)."""
    query = ScraperAlert.query.filter(
        ScraperAlert.alert_type == alert_type,
        ScraperAlert.source_id == source_id if source_id is not None else ScraperAlert.source_id.is_(None),
        ScraperAlert.acknowledged_at.is_(None),
    )
    if window_hours is not None:
        query = query.filter(ScraperAlert.created_at >= datetime.utcnow() - timedelta(hours=window_hours))
    return query.order_by(ScraperAlert.created_at.desc()).first()


def create_alert_if_not_exists(source_id: Optional[int], alert_type: str, severity: str, message: str,
                               window_hours: Optional[int] = ALERT_DEDUPE_WINDOW_HOURS) -> Optional[ScraperAlert]:
    """
    Create an alert unless an unacknowledged one of the same type exists.

    Args:
        window_hours: Only look back this far; None means any open alert

    Returns:
        The new alert, or None if deduplicated
    """
    # Pending alerts in this session are not visible to the query yet
    db.session.flush()
    if find_open_alert(source_id, alert_type, window_hours):
        logger.debug(f"Suppressed duplicate {alert_type} alert for source {source_id}")
        return None
    return create_alert(source_id, alert_type, severity, message)


def acknowledge_alert(alert_id: int, acknowledged_by: str) -> ScraperAlert:
    alert = db.session.get(ScraperAlert, alert_id)
    if alert is None:
        raise NotFoundError(f"Alert {alert_id} not found")
    if alert.is_acknowledged:
        raise ConflictError("Alert already acknowledged", code="ALREADY_ACKNOWLEDGED")

    alert.acknowledge(acknowledged_by)
    db.session.commit()
    logger.info(f"Alert {alert_id} acknowledged by {acknowledged_by}")
    return alert


def list_alerts(unacknowledged_only: bool = True, source_id: Optional[int] = None,
                limit: int = 100) -> List[ScraperAlert]:
    query = ScraperAlert.query
    if unacknowledged_only:
        query = query.filter(ScraperAlert.acknowledged_at.is_(None))
    if source_id is not None:
        query = query.filter(ScraperAlert.source_id == source_id)
    return query.order_by(ScraperAlert.created_at.desc()).limit(limit).all()


# =============================================================================
# HEALTH COUNTERS
# =============================================================================

def _successful_runs(source: ScrapeSource) -> int:
    return int(round((source.success_rate or 0.0) * (source.total_runs or 0)))


def _backoff_hours(source: ScrapeSource) -> int:
    """Exponential backoff on the base frequency, capped at a week."""
    base = source.scrape_frequency_hours or 24
    return min(base * (2 ** source.consecutive_failures), MAX_BACKOFF_HOURS)


def record_success(source: ScrapeSource, sessions_found: int, now: datetime = None) -> List[ScraperAlert]:
    """
    Update health after a completed job.

    Returns:
        Alerts raised by this update
    """
    now = now or datetime.utcnow()
    alerts = []

    successful = _successful_runs(source) + 1
    source.total_runs = (source.total_runs or 0) + 1
    source.success_rate = successful / source.total_runs
    source.consecutive_failures = 0
    source.last_error = None
    source.last_success_at = now
    source.next_scheduled_scrape = now + timedelta(hours=source.scrape_frequency_hours or 24)

    if sessions_found > 0:
        source.consecutive_zero_results = 0
        source.needs_regeneration = False
        return alerts

    source.consecutive_zero_results = (source.consecutive_zero_results or 0) + 1
    alert = create_alert_if_not_exists(
        source.id, "zero_results", "warning",
        f"{source.name} returned 0 sessions ({source.consecutive_zero_results} run(s) in a row)",
    )
    if alert:
        alerts.append(alert)

    if source.consecutive_zero_results >= ZERO_RESULTS_REGENERATION_THRESHOLD and not source.needs_regeneration:
        source.needs_regeneration = True
        alert = create_alert_if_not_exists(
            source.id, "scraper_needs_regeneration", "error",
            f"{source.name} returned no sessions {source.consecutive_zero_results} runs in a row; "
            f"scraper likely needs regeneration",
            window_hours=None,
        )
        if alert:
            alerts.append(alert)
        logger.warning(f"Source {source.id} flagged for regeneration after repeated zero results")

    return alerts


def record_failure(source: ScrapeSource, error: str, status_code: Optional[int] = None,
                   now: datetime = None) -> List[ScraperAlert]:
    """
    Update health after a failed job.

    A 429 counts as a failure like any other, but schedules a fixed
    rate-limit backoff instead of the exponential one.

    Returns:
        Alerts raised by this update
    """
    now = now or datetime.utcnow()
    alerts = []

    successful = _successful_runs(source)
    source.total_runs = (source.total_runs or 0) + 1
    source.success_rate = successful / source.total_runs
    source.consecutive_failures = (source.consecutive_failures or 0) + 1
    source.last_error = str(error)[:2000]
    source.last_failure_at = now
    failures = source.consecutive_failures

    if status_code == 429:
        source.next_scheduled_scrape = now + timedelta(hours=RATE_LIMIT_BACKOFF_HOURS)
        alert = create_alert_if_not_exists(
            source.id, "rate_limited", "info",
            f"{source.name} is rate limiting us (HTTP 429); backing off {RATE_LIMIT_BACKOFF_HOURS}h",
        )
        if alert:
            alerts.append(alert)
    else:
        source.next_scheduled_scrape = now + timedelta(hours=_backoff_hours(source))

    if failures == DEGRADED_FAILURE_THRESHOLD:
        alerts.append(create_alert(
            source.id, "scraper_degraded", "warning",
            f"{source.name} has failed {failures} times in a row. Last error: {source.last_error}",
        ))

    if failures >= REGENERATION_FAILURE_THRESHOLD:
        source.needs_regeneration = True
        alert = create_alert_if_not_exists(
            source.id, "scraper_needs_regeneration", "error",
            f"{source.name} has failed {failures} times in a row; scraper needs regeneration",
            window_hours=None,
        )
        if alert:
            alerts.append(alert)

    if failures >= DISABLE_FAILURE_THRESHOLD and source.is_active:
        source.is_active = False
        source.closed_by = "system"
        source.closure_reason = f"Auto-disabled after {failures} consecutive failures"
        alerts.append(create_alert(
            source.id, "scraper_disabled", "critical",
            f"{source.name} was disabled after {failures} consecutive failures",
        ))
        logger.warning(f"Source {source.id} auto-disabled after {failures} failures")

    logger.info(f"Source {source.id} failure #{failures}: {source.last_error}")
    return alerts
