"""
Base Scraper - Abstract template for named extraction routines.

A named routine is a Python class registered under a stable name and
referenced by ScrapeSource.scraper_module. Routines only parse: fetching,
rate limiting, persistence and health tracking are handled by the job
runner, so every routine returns the same record shape.

Record contract (all keys optional except name):
    name, description, category,
    start_date, end_date (YYYY-MM-DD) or date_raw,
    drop_off_hour/minute, pick_up_hour/minute or time_raw,
    price_cents or price_raw,
    min_age/max_age/min_grade/max_grade or age_grade_raw,
    location, registration_url, capacity, enrolled_count, spots_left,
    source_session_id, image_urls
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Type

from constants import SESSION_FIELDS


@dataclass
class ExtractionResult:
    """Result of running an extraction method over one or more pages."""
    sessions: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    pages_fetched: int = 0

    def extend(self, other: "ExtractionResult"):
        self.sessions.extend(other.sessions)
        self.errors.extend(other.errors)
        self.pages_fetched += other.pages_fetched

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessions": self.sessions,
            "errors": self.errors,
            "pages_fetched": self.pages_fetched,
        }


class BaseScraper(ABC):
    """
    Abstract base class for named routines.

    Subclasses must implement:
    - parse_page(): Parse HTML and return raw session records

    Subclasses should set:
    - ROUTINE_NAME: Unique name stored on ScrapeSource.scraper_module
    """

    ROUTINE_NAME: str = "base"

    def __init__(self, options: Dict[str, Any] = None):
        self.options = options or {}

    @abstractmethod
    def parse_page(self, url: str, html: str) -> List[Dict[str, Any]]:
        """
        Parse a page and return raw session records.

        Args:
            url: URL that was fetched
            html: Raw HTML content

        Returns:
            List of record dicts following the record contract
        """

    def clean(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Drop keys outside the record contract and empty values."""
        return {
            k: v for k, v in record.items()
            if k in SESSION_FIELDS and v not in (None, "", [])
        }


_ROUTINES: Dict[str, Type[BaseScraper]] = {}


def register_routine(cls: Type[BaseScraper]) -> Type[BaseScraper]:
    """Class decorator registering a routine under its ROUTINE_NAME."""
    name = cls.ROUTINE_NAME
    if not name or name == BaseScraper.ROUTINE_NAME:
        raise ValueError(f"{cls.__name__} must define ROUTINE_NAME")
    if name in _ROUTINES and _ROUTINES[name] is not cls:
        raise ValueError(f"Routine {name!r} is already registered")
    _ROUTINES[name] = cls
    return cls


def get_routine(name: str) -> Type[BaseScraper]:
    try:
        return _ROUTINES[name]
    except KeyError:
        raise KeyError(f"Unknown scraper routine: {name}") from None


def list_routines() -> List[str]:
    return sorted(_ROUTINES)
