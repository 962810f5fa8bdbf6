"""
Source Registry Service - create, configure and (de)activate scrape sources.

Invariant: a source is only ever active while it has an extraction method
(a registered routine name or a valid declarative config).
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from constants import CONSECUTIVE_404_DISABLE_THRESHOLD
from models import Session
from models.database import db
from scrapers.base import get_routine
from scrapers.extraction import ExtractionConfigError, parse_declarative_config
from scrapers.models import ScrapeSource, ScraperVersion
from services.errors import NotFoundError, ValidationError
from services.source_health import create_alert
from services.validation import calculate_source_quality, should_auto_activate, is_valid_url

logger = logging.getLogger(__name__)

URL_HISTORY_LIMIT = 20


def get_source(source_id: int) -> ScrapeSource:
    source = db.session.get(ScrapeSource, source_id)
    if source is None:
        raise NotFoundError(f"Scrape source {source_id} not found")
    return source


def validate_extraction_method(scraper_module: Optional[str], scraper_config: Optional[Dict[str, Any]]):
    """Reject unknown routine names and malformed configs; returns the storable config."""
    if scraper_module:
        try:
            get_routine(scraper_module)
        except KeyError as e:
            raise ValidationError(str(e), field="scraper_module")
    if scraper_config is not None:
        try:
            return parse_declarative_config(scraper_config).to_json()
        except ExtractionConfigError as e:
            raise ValidationError(str(e), field="scraper_config")
    return None


def create_source(name: str, url: str, city_id: int, organization_id: Optional[int] = None,
                  scraper_module: Optional[str] = None, scraper_config: Optional[Dict[str, Any]] = None,
                  scrape_frequency_hours: int = 24, additional_urls=None,
                  activate: bool = False, commit: bool = True) -> ScrapeSource:
    """
    Register a new source.

    Health counters start at zero and the first scrape is due immediately.
    The source stays inactive unless activate=True and it has an
    extraction method.
    """
    if not name or not name.strip():
        raise ValidationError("Source name is required", field="name")
    if not is_valid_url(url):
        raise ValidationError("Source URL must be http(s)", field="url")
    if scrape_frequency_hours is None or scrape_frequency_hours < 1:
        raise ValidationError("scrape_frequency_hours must be at least 1", field="scrape_frequency_hours")

    config = validate_extraction_method(scraper_module, scraper_config)
    source = ScrapeSource(
        name=name.strip(),
        url=url,
        city_id=city_id,
        organization_id=organization_id,
        additional_urls=list(additional_urls or []),
        scraper_module=scraper_module,
        scraper_config=config,
        scraper_version=1 if (scraper_module or config) else 0,
        scrape_frequency_hours=scrape_frequency_hours,
        next_scheduled_scrape=datetime.utcnow(),
        consecutive_failures=0,
        total_runs=0,
        success_rate=0.0,
        consecutive_zero_results=0,
        url_history=[],
        is_active=False,
    )
    if activate:
        if not source.has_extraction_method:
            raise ValidationError(
                "Cannot activate a source without a scraper module or config",
                code="NO_EXTRACTION_METHOD",
            )
        source.is_active = True

    db.session.add(source)
    if commit:
        db.session.commit()
    logger.info(f"Created scrape source {source.id} {source.name} active={source.is_active}")
    return source


def activate_source(source: ScrapeSource) -> ScrapeSource:
    if not source.has_extraction_method:
        raise ValidationError(
            "Cannot activate a source without a scraper module or config",
            code="NO_EXTRACTION_METHOD",
        )
    source.is_active = True
    source.closed_by = None
    source.closure_reason = None
    source.consecutive_failures = 0
    source.next_scheduled_scrape = datetime.utcnow()
    db.session.commit()
    logger.info(f"Activated source {source.id}")
    return source


def deactivate_source(source: ScrapeSource, reason: str, closed_by: str) -> ScrapeSource:
    source.is_active = False
    source.closure_reason = reason
    source.closed_by = closed_by
    db.session.commit()
    logger.info(f"Deactivated source {source.id} by {closed_by}: {reason}")
    return source


def update_scraper_config(source: ScrapeSource, scraper_module: Optional[str] = None,
                          scraper_config: Optional[Dict[str, Any]] = None,
                          change_reason: str = None, created_by: str = None,
                          commit: bool = True) -> ScraperVersion:
    """
    Deploy a new extraction method to a source and record the version.

    Clears needs_regeneration and the zero-result streak.
    """
    if not scraper_module and scraper_config is None:
        raise ValidationError("Provide a scraper module or a scraper config", code="NO_EXTRACTION_METHOD")
    config = validate_extraction_method(scraper_module, scraper_config)

    source.scraper_module = scraper_module
    source.scraper_config = config
    source.scraper_version = (source.scraper_version or 0) + 1
    source.needs_regeneration = False
    source.consecutive_zero_results = 0

    version = ScraperVersion(
        source_id=source.id,
        version=source.scraper_version,
        scraper_module=scraper_module,
        scraper_config=config,
        change_reason=change_reason,
        created_by=created_by,
    )
    db.session.add(version)
    if commit:
        db.session.commit()
    logger.info(f"Source {source.id} scraper updated to v{source.scraper_version}: {change_reason}")
    return version


def flag_for_rescan(source: ScrapeSource, reason: str) -> ScrapeSource:
    source.needs_rescan = True
    source.rescan_reason = reason
    source.next_scheduled_scrape = datetime.utcnow()
    db.session.commit()
    return source


def clear_rescan_flag(source: ScrapeSource) -> ScrapeSource:
    source.needs_rescan = False
    source.rescan_reason = None
    db.session.commit()
    return source


def add_additional_url(source: ScrapeSource, url: str) -> ScrapeSource:
    if not is_valid_url(url):
        raise ValidationError("URL must be http(s)", field="url")
    urls = list(source.additional_urls or [])
    if url == source.url or url in urls:
        return source
    urls.append(url)
    # JSON columns need a new object to register the change
    source.additional_urls = urls
    db.session.commit()
    return source


def remove_additional_url(source: ScrapeSource, url: str) -> ScrapeSource:
    source.additional_urls = [u for u in (source.additional_urls or []) if u != url]
    db.session.commit()
    return source


def record_url_check(source: ScrapeSource, url: str, status: str, now: datetime = None) -> bool:
    """
    Append a URL check ('valid', '404' or 'error') to the source's history.

    Consecutive 404s on the primary URL auto-disable the source.
    Does not commit.

    Returns:
        True if the source was disabled by this check
    """
    now = now or datetime.utcnow()
    history = list(source.url_history or [])
    history.append({"url": url, "status": status, "checked_at": now.isoformat()})
    source.url_history = history[-URL_HISTORY_LIMIT:]

    if url != source.url or status != "404":
        return False

    streak = 0
    for entry in reversed(source.url_history):
        if entry.get("url") != source.url:
            continue
        if entry.get("status") != "404":
            break
        streak += 1

    if streak >= CONSECUTIVE_404_DISABLE_THRESHOLD and source.is_active:
        source.is_active = False
        source.closed_by = "system"
        source.closure_reason = f"URL returned 404 {streak} times in a row"
        create_alert(
            source.id, "scraper_disabled", "critical",
            f"{source.name} disabled: {source.url} returned 404 {streak} times in a row",
        )
        logger.warning(f"Source {source.id} disabled after {streak} consecutive 404s")
        return True
    return False


def suggest_url_update(source: ScrapeSource, suggested_url: str):
    """Record a replacement URL found by URL resolution. Does not commit."""
    source.suggested_url = suggested_url
    source.needs_rescan = True
    source.rescan_reason = f"URL fallback found: {suggested_url}"


def update_source_counts(source: ScrapeSource, auto_activate_threshold: int = 80,
                         commit: bool = True) -> ScrapeSource:
    """
    Recompute denormalized session counts and data quality from sessions.

    Auto-activates an inactive source that clears the quality bar, has an
    extraction method, and was not closed deliberately.
    """
    rows = db.session.query(Session.status, Session.completeness_score).filter(
        Session.source_id == source.id
    ).all()
    scores = [r.completeness_score for r in rows if r.completeness_score is not None]

    source.session_count = len(rows)
    source.active_session_count = sum(1 for r in rows if r.status == "active")
    if scores:
        source.data_quality_score, source.quality_tier = calculate_source_quality(scores)

    if (not source.is_active and source.has_extraction_method and not source.closed_by
            and should_auto_activate(scores, auto_activate_threshold)):
        source.is_active = True
        logger.info(f"Auto-activated source {source.id} (quality {source.data_quality_score})")

    if commit:
        db.session.commit()
    return source


def list_sources(city_id: Optional[int] = None, active: Optional[bool] = None,
                 needs_attention: bool = False) -> List[ScrapeSource]:
    query = ScrapeSource.query
    if city_id is not None:
        query = query.filter(ScrapeSource.city_id == city_id)
    if active is not None:
        query = query.filter(ScrapeSource.is_active.is_(active))
    if needs_attention:
        query = query.filter(db.or_(
            ScrapeSource.needs_regeneration.is_(True),
            ScrapeSource.consecutive_failures > 0,
            ScrapeSource.needs_rescan.is_(True),
        ))
    return query.order_by(ScrapeSource.name.asc()).all()
