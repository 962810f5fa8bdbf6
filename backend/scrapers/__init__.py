"""
Scraping Package

Extraction infrastructure for camp provider websites:
- Named routines (registered BaseScraper subclasses)
- Declarative selector configs
- Rate-limited page fetching
"""

from .base import BaseScraper, ExtractionResult, register_routine, get_routine, list_routines
from . import routines  # noqa: F401  (registers built-in routines)
from .extraction import NamedRoutine, ExtractionConfigError, resolve_extraction_method, extract

__all__ = [
    "BaseScraper",
    "ExtractionResult",
    "register_routine",
    "get_routine",
    "list_routines",
    "NamedRoutine",
    "ExtractionConfigError",
    "resolve_extraction_method",
    "extract",
]
