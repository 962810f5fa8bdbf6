"""
JSON-LD Events routine - reads schema.org Event markup.

Many registration platforms (and WordPress event plugins) embed
<script type="application/ld+json"> blocks describing each session as an
Event. This routine works on any such site without per-source config.
"""
import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from scrapers.base import BaseScraper, register_routine

logger = logging.getLogger(__name__)

EVENT_TYPES = {"Event", "EducationEvent", "ChildrensEvent", "CourseInstance", "SportsEvent"}


def _iter_nodes(data: Any) -> Iterator[Dict[str, Any]]:
    if isinstance(data, list):
        for item in data:
            yield from _iter_nodes(item)
    elif isinstance(data, dict):
        if "@graph" in data:
            yield from _iter_nodes(data["@graph"])
        yield data


def _is_event(node: Dict[str, Any]) -> bool:
    types = node.get("@type")
    if isinstance(types, str):
        types = [types]
    return bool(set(types or []) & EVENT_TYPES)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return date_parser.isoparse(value)
    except (ValueError, TypeError):
        return None


def _has_time(value: Optional[str]) -> bool:
    return bool(value) and "T" in value


def _first(value: Any) -> Any:
    return value[0] if isinstance(value, list) and value else value


@register_routine
class JsonLdEventsScraper(BaseScraper):
    """Extract sessions from schema.org Event JSON-LD blocks."""

    ROUTINE_NAME = "jsonld_events"

    def parse_page(self, url: str, html: str) -> List[Dict[str, Any]]:
        soup = BeautifulSoup(html, "html.parser")
        records = []

        for script in soup.find_all("script", type="application/ld+json"):
            try:
                data = json.loads(script.string or script.get_text() or "")
            except json.JSONDecodeError as e:
                logger.debug(f"Skipping malformed JSON-LD on {url}: {e}")
                continue

            for node in _iter_nodes(data):
                if _is_event(node):
                    record = self._event_to_record(node)
                    if record.get("name"):
                        records.append(record)

        return records

    def _event_to_record(self, event: Dict[str, Any]) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "name": event.get("name"),
            "description": event.get("description"),
            "registration_url": event.get("url"),
            "source_session_id": event.get("identifier") or event.get("@id"),
            "age_grade_raw": event.get("typicalAgeRange"),
        }

        raw_start = event.get("startDate")
        raw_end = event.get("endDate") or raw_start
        start = _parse_datetime(raw_start)
        end = _parse_datetime(raw_end)
        if start:
            record["start_date"] = start.date().isoformat()
            if _has_time(raw_start):
                record["drop_off_hour"] = start.hour
                record["drop_off_minute"] = start.minute
        if end:
            record["end_date"] = end.date().isoformat()
            if _has_time(raw_end) and raw_end != raw_start:
                record["pick_up_hour"] = end.hour
                record["pick_up_minute"] = end.minute

        offer = _first(event.get("offers"))
        if isinstance(offer, dict) and offer.get("price") not in (None, ""):
            record["price_raw"] = f"${offer['price']}"
            if str(offer.get("availability") or "").endswith("SoldOut"):
                record["spots_left"] = 0

        location = _first(event.get("location"))
        if isinstance(location, dict):
            record["location"] = location.get("name") or self._address_text(location.get("address"))
        elif isinstance(location, str):
            record["location"] = location

        capacity = event.get("maximumAttendeeCapacity")
        if isinstance(capacity, int):
            record["capacity"] = capacity
        remaining = event.get("remainingAttendeeCapacity")
        if isinstance(remaining, int):
            record["spots_left"] = remaining

        organizer = _first(event.get("organizer"))
        if isinstance(organizer, dict):
            record["organization_name"] = organizer.get("name")

        return self.clean(record)

    @staticmethod
    def _address_text(address: Any) -> Optional[str]:
        if isinstance(address, str):
            return address
        if isinstance(address, dict):
            parts = [address.get("streetAddress"), address.get("addressLocality")]
            return ", ".join(p for p in parts if p) or None
        return None
