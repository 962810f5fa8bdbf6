"""
Extraction Method - tagged union over the two ways a source can be scraped.

    ExtractionMethod = NamedRoutine | DeclarativeConfig

resolve_extraction_method() turns a ScrapeSource row into one of the two
variants; extract() dispatches any variant through the same interface and
always returns an ExtractionResult with records in the shared shape.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from schemas.scraper_config import DeclarativeConfig
from scrapers.base import ExtractionResult, get_routine
from scrapers.declarative import extract_with_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NamedRoutine:
    """A registered BaseScraper subclass referenced by name."""
    name: str
    options: Dict[str, Any] = field(default_factory=dict, hash=False)

    @property
    def kind(self) -> str:
        return "routine"


ExtractionMethod = Union[NamedRoutine, DeclarativeConfig]


class ExtractionConfigError(ValueError):
    """Source has no usable extraction method."""


def parse_declarative_config(data: Dict[str, Any]) -> DeclarativeConfig:
    try:
        return DeclarativeConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ExtractionConfigError(f"Invalid scraper config: {e.errors()[0]['msg']}") from e


def resolve_extraction_method(source) -> ExtractionMethod:
    """
    Build the extraction method stored on a source.

    A named routine wins when both are present. Raises ExtractionConfigError
    when neither is set or the stored config does not validate.
    """
    if source.scraper_module:
        get_routine(source.scraper_module)
        return NamedRoutine(name=source.scraper_module)
    if source.scraper_config:
        return parse_declarative_config(source.scraper_config)
    raise ExtractionConfigError(f"Source {source.id} has no extraction method")


def describe_method(method: ExtractionMethod) -> str:
    if isinstance(method, NamedRoutine):
        return f"routine:{method.name}"
    return f"config:{method.container}"


def extract(method: ExtractionMethod, url: str, html: str) -> ExtractionResult:
    """
    Run one extraction method over one page.

    Parse errors are captured on the result instead of raised, so a broken
    page never aborts the remaining URLs of a job.
    """
    result = ExtractionResult(pages_fetched=1)
    try:
        if isinstance(method, NamedRoutine):
            scraper = get_routine(method.name)(method.options)
            records = [scraper.clean(r) for r in scraper.parse_page(url, html)]
        elif isinstance(method, DeclarativeConfig):
            records = extract_with_config(method, url, html)
        else:
            raise ExtractionConfigError(f"Unsupported extraction method: {type(method).__name__}")
    except ExtractionConfigError:
        raise
    except Exception as e:
        logger.warning("Extraction failed for %s via %s: %s", url, describe_method(method), e)
        result.errors.append(f"{url}: {e}")
        return result

    for record in records:
        record.setdefault("registration_url", url)
    result.sessions.extend(records)
    return result


def run_extraction(method: ExtractionMethod, pages: Dict[str, str],
                   result: Optional[ExtractionResult] = None) -> ExtractionResult:
    """Extract from several already-fetched pages (url -> html)."""
    result = result or ExtractionResult()
    for url, html in pages.items():
        result.extend(extract(method, url, html))
    return result
