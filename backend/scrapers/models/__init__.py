"""Scraper/Ingestion SQLAlchemy Models."""

from .scrape_source import ScrapeSource
from .scrape_job import ScrapeJob, ScrapeRawData
from .pending_session import PendingSession
from .scrape_change import ScrapeChange
from .scraper_alert import ScraperAlert
from .dev_request import ScraperDevRequest, ScraperVersion
from .discovered_source import DiscoveredSource

__all__ = [
    "ScrapeSource",
    "ScrapeJob",
    "ScrapeRawData",
    "PendingSession",
    "ScrapeChange",
    "ScraperAlert",
    "ScraperDevRequest",
    "ScraperVersion",
    "DiscoveredSource",
]
