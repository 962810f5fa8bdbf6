"""
Declarative extraction - applies a DeclarativeConfig to a page with BeautifulSoup.
"""
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from schemas.scraper_config import DeclarativeConfig, FieldSelector

logger = logging.getLogger(__name__)

URL_FIELDS = {"registration_url"}
INT_FIELDS = {
    "price_cents", "capacity", "enrolled_count", "spots_left",
    "min_age", "max_age", "min_grade", "max_grade",
    "drop_off_hour", "drop_off_minute", "pick_up_hour", "pick_up_minute",
}


def _clean_text(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def _read_field(element, field: FieldSelector) -> Optional[str]:
    node = element.select_one(field.selector)
    if node is None:
        return None

    if field.attr:
        value = node.get(field.attr)
        if isinstance(value, list):
            value = " ".join(value)
    else:
        value = node.get_text(" ")
    value = _clean_text(value)

    if value and field.pattern:
        match = re.search(field.pattern, value)
        if not match:
            return None
        value = match.group(1) if match.groups() else match.group(0)

    return value or None


def _coerce(field_name: str, value: str, base_url: str) -> Any:
    if field_name in URL_FIELDS:
        return urljoin(base_url, value)
    if field_name in INT_FIELDS:
        digits = re.sub(r"[^\d-]", "", value)
        try:
            return int(digits)
        except ValueError:
            return None
    return value


def extract_with_config(config: DeclarativeConfig, url: str, html: str) -> List[Dict[str, Any]]:
    """
    Extract raw session records from a page.

    Args:
        config: Validated declarative config
        url: Page URL (used to absolutize links)
        html: Page HTML

    Returns:
        One record per container element that yields a name
    """
    soup = BeautifulSoup(html, "html.parser")
    records = []

    containers = soup.select(config.container)
    logger.debug("Declarative config matched %d containers on %s", len(containers), url)

    for element in containers:
        record: Dict[str, Any] = dict(config.constants)
        for field_name, field in config.selectors.items():
            raw = _read_field(element, field)
            if raw is None:
                continue
            value = _coerce(field_name, raw, url)
            if value is not None:
                record[field_name] = value

        if record.get("name"):
            records.append(record)

    return records
