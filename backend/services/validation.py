"""
Session Validation - Completeness scoring for scraped records.

Every raw record produced by an extraction routine passes through
validate_session() before import:

- completeness_score = round((7 - missing) / 7 * 100) over REQUIRED_FIELDS
- placeholder values ("TBD", "N/A", "<UNKNOWN>", ...) count as missing
- errors flag values that are present but unusable (bad dates, generic
  locations, non-http registration URLs, ...)

A record is complete only when nothing is missing and there are no errors.
determine_session_status() turns the score into the initial session status
and calculate_source_quality() rolls scores up into a per-source tier.

Records use snake_case keys (see constants.SESSION_FIELDS). Raw text
fields (date_raw, time_raw, price_raw, age_grade_raw) are parsed into the
structured fields by normalize_record() when the routine did not fill them.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

from dateutil import parser as date_parser

from constants import QUALITY_TIER_HIGH_MIN, QUALITY_TIER_MEDIUM_MIN

logger = logging.getLogger(__name__)


REQUIRED_FIELDS = (
    "start_date",
    "end_date",
    "drop_off_time",
    "pick_up_time",
    "location",
    "age_requirements",
    "price",
)

PLACEHOLDERS = ("<UNKNOWN>", "UNKNOWN", "TBD", "N/A", "NULL", "UNDEFINED")

GENERIC_LOCATIONS = {"main location", "tbd", "unknown", "n/a", "online", "various"}

MAX_SESSION_DAYS = 21

# Below this score a record is held for review instead of imported
PENDING_REVIEW_THRESHOLD = 50

_DATE_FORMAT_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ADDRESS_RE = re.compile(r"\d+\s+[A-Za-z]")
_FREE_RE = re.compile(r"\bfree\b", re.IGNORECASE)
_INT_RE = re.compile(r"^\s*-?\d+\s*$")

# Whole-number fields; numeric strings from loosely typed sources are coerced
INTEGER_FIELDS = (
    "price_cents", "min_age", "max_age", "min_grade", "max_grade",
    "drop_off_hour", "drop_off_minute", "pick_up_hour", "pick_up_minute",
    "capacity", "enrolled_count", "spots_left",
)


@dataclass
class ValidationIssue:
    """A present-but-unusable value on a scraped record."""
    field: str
    error: str
    attempted_value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "error": self.error,
            "attempted_value": self.attempted_value,
        }


@dataclass
class ValidationResult:
    is_complete: bool
    completeness_score: int
    missing_fields: List[str] = field(default_factory=list)
    errors: List[ValidationIssue] = field(default_factory=list)
    normalized: Dict[str, Any] = field(default_factory=dict)

    @property
    def error_dicts(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.errors]


def is_placeholder(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    upper = value.upper()
    return any(p in upper for p in PLACEHOLDERS)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and (not value.strip() or is_placeholder(value)):
        return True
    return False


def is_valid_date_format(value: str) -> bool:
    if not isinstance(value, str) or not _DATE_FORMAT_RE.match(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def is_valid_url(value: str) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value)
    except (TypeError, ValueError):
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _is_valid_hour(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 23


def _is_valid_minute(value: Any) -> bool:
    return value is None or (isinstance(value, int) and 0 <= value <= 59)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _coerce_int(value: Any) -> Any:
    """Numeric strings and integral floats become ints; anything else is returned unchanged."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _INT_RE.match(value):
        return int(value)
    return value


def validate_session(record: Dict[str, Any]) -> ValidationResult:
    """
    Validate a scraped record and calculate completeness.

    Args:
        record: Raw record dict from an extraction routine

    Returns:
        ValidationResult with score, missing fields, errors and the
        normalized record
    """
    data = normalize_record(record)
    missing: List[str] = []
    errors: List[ValidationIssue] = []

    if _is_blank(data.get("name")):
        errors.append(ValidationIssue("name", "Session has no camp name"))
    elif not isinstance(data["name"], str):
        errors.append(ValidationIssue("name", "Session name must be text", str(data["name"])))

    # Dates
    start, end = data.get("start_date"), data.get("end_date")
    if _is_blank(start):
        missing.append("start_date")
        if data.get("date_raw"):
            errors.append(ValidationIssue(
                "start_date", "Could not parse start date from raw text", data["date_raw"]))
    elif not is_valid_date_format(start):
        errors.append(ValidationIssue(
            "start_date", "Invalid date format (expected YYYY-MM-DD)", str(start)))

    if _is_blank(end):
        missing.append("end_date")
    elif not is_valid_date_format(end):
        errors.append(ValidationIssue(
            "end_date", "Invalid date format (expected YYYY-MM-DD)", str(end)))

    if is_valid_date_format(start or "") and is_valid_date_format(end or ""):
        days = (_to_date(end) - _to_date(start)).days
        if days < 0:
            errors.append(ValidationIssue(
                "date_range", "End date is before start date", f"{start} to {end}"))
        elif days > MAX_SESSION_DAYS:
            errors.append(ValidationIssue(
                "date_range",
                f"Session spans {days} days - likely a program overview, "
                f"not an individual camp session (max {MAX_SESSION_DAYS} days)",
                f"{start} to {end}",
            ))

    # Registration URL is optional but must be http(s) when present
    reg_url = data.get("registration_url")
    if reg_url and not is_valid_url(reg_url):
        errors.append(ValidationIssue(
            "registration_url", "Registration URL is not a valid HTTP/HTTPS URL", str(reg_url)))

    # Times
    if data.get("drop_off_hour") is None:
        missing.append("drop_off_time")
        if data.get("time_raw"):
            errors.append(ValidationIssue(
                "drop_off_time", "Could not parse drop-off time from raw text", data["time_raw"]))
    elif not _is_valid_hour(data["drop_off_hour"]) or not _is_valid_minute(data.get("drop_off_minute")):
        errors.append(ValidationIssue(
            "drop_off_time", "Invalid time (expected hour 0-23, minute 0-59)", str(data["drop_off_hour"])))

    if data.get("pick_up_hour") is None:
        missing.append("pick_up_time")
    elif not _is_valid_hour(data["pick_up_hour"]) or not _is_valid_minute(data.get("pick_up_minute")):
        errors.append(ValidationIssue(
            "pick_up_time", "Invalid time (expected hour 0-23, minute 0-59)", str(data["pick_up_hour"])))

    # Location
    location = data.get("location")
    if _is_blank(location):
        missing.append("location")
    elif not isinstance(location, str):
        errors.append(ValidationIssue("location", "Location must be text", str(location)))
    else:
        location = location.strip()
        if location.lower() in GENERIC_LOCATIONS or (
            not _ADDRESS_RE.search(location) and len(location) < 20
        ):
            errors.append(ValidationIssue(
                "location",
                "Location appears incomplete or generic - should include street address",
                location,
            ))
        comma_count = location.count(",")
        if comma_count >= 3 and len(location) > 100:
            errors.append(ValidationIssue(
                "location",
                f"Location appears to be a list of {comma_count + 1} venues - should be a single location",
                location[:100] + "...",
            ))

    # Age requirements: any age bound or grade bound satisfies it
    if all(data.get(k) is None for k in ("min_age", "max_age", "min_grade", "max_grade")):
        missing.append("age_requirements")
        if data.get("age_grade_raw"):
            errors.append(ValidationIssue(
                "age_requirements", "Could not parse age/grade from raw text", data["age_grade_raw"]))

    # Price: 0 is valid (free camps)
    price = data.get("price_cents")
    if price is None:
        missing.append("price")
        if data.get("price_raw"):
            errors.append(ValidationIssue(
                "price", "Could not parse price from raw text", data["price_raw"]))
    elif not _is_int(price):
        errors.append(ValidationIssue("price", "Price must be a whole number of cents", str(price)))
    elif price < 0:
        errors.append(ValidationIssue("price", "Price cannot be negative", str(price)))

    for key in ("min_age", "max_age", "min_grade", "max_grade", "capacity", "enrolled_count", "spots_left"):
        value = data.get(key)
        if value is not None and not _is_int(value):
            errors.append(ValidationIssue(key, "Expected a whole number", str(value)))

    score = completeness_score(missing)
    result = ValidationResult(
        is_complete=not missing and not errors,
        completeness_score=score,
        missing_fields=missing,
        errors=errors,
        normalized=data,
    )
    logger.debug(
        "Validated %r: score=%s missing=%s errors=%d",
        data.get("name"), score, missing, len(errors),
    )
    return result


def round_half_up(value: float) -> int:
    """Nearest integer, with .5 going up."""
    return int(math.floor(value + 0.5))


def completeness_score(missing_fields: Iterable[str]) -> int:
    """Share of REQUIRED_FIELDS present, as an integer percentage."""
    missing = len(set(missing_fields) & set(REQUIRED_FIELDS))
    total = len(REQUIRED_FIELDS)
    return round_half_up((total - missing) / total * 100)


def normalize_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fill structured fields from raw text where the routine left them empty.

    Never overwrites a structured value the routine supplied.
    Numeric strings in INTEGER_FIELDS become ints so a loosely typed
    source reads the same as a typed one.
    """
    data = dict(record or {})

    for key in INTEGER_FIELDS:
        if key in data:
            data[key] = _coerce_int(data[key])
    for key in ("date_raw", "time_raw", "price_raw", "age_grade_raw"):
        if data.get(key) is not None and not isinstance(data[key], str):
            data[key] = str(data[key])

    if isinstance(data.get("name"), str):
        data["name"] = " ".join(data["name"].split())

    for key in ("start_date", "end_date"):
        value = data.get(key)
        if isinstance(value, (date, datetime)):
            data[key] = value.strftime("%Y-%m-%d")

    if (not data.get("start_date") or not data.get("end_date")) and data.get("date_raw"):
        parsed = parse_date_range(data["date_raw"])
        if parsed:
            data["start_date"] = data.get("start_date") or parsed[0]
            data["end_date"] = data.get("end_date") or parsed[1]

    if data.get("drop_off_hour") is None and data.get("time_raw"):
        parsed_times = parse_time_range(data["time_raw"])
        if parsed_times:
            data["drop_off_hour"], data["drop_off_minute"] = parsed_times[0]
            if data.get("pick_up_hour") is None:
                data["pick_up_hour"], data["pick_up_minute"] = parsed_times[1]
    if data.get("drop_off_hour") is not None:
        data["drop_off_minute"] = data.get("drop_off_minute") or 0
    if data.get("pick_up_hour") is not None:
        data["pick_up_minute"] = data.get("pick_up_minute") or 0

    if data.get("price_cents") is None and data.get("price_raw"):
        data["price_cents"] = parse_price(data["price_raw"])

    if all(data.get(k) is None for k in ("min_age", "max_age", "min_grade", "max_grade")) \
            and data.get("age_grade_raw"):
        parsed_ages = parse_age_range(data["age_grade_raw"])
        if parsed_ages:
            data.update(parsed_ages)

    return data


def _to_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


# =============================================================================
# SOURCE QUALITY
# =============================================================================

def calculate_source_quality(scores: Iterable[Optional[int]]) -> Tuple[int, str]:
    """
    Average completeness of a source's sessions and its quality tier.

    Returns:
        (score, tier) where tier is 'high' (>= 80), 'medium' (>= 50) or
        'low'. An empty list is (0, 'low').
    """
    values = [s or 0 for s in scores]
    if not values:
        return 0, "low"

    average = sum(values) / len(values)
    if average >= QUALITY_TIER_HIGH_MIN:
        tier = "high"
    elif average >= QUALITY_TIER_MEDIUM_MIN:
        tier = "medium"
    else:
        tier = "low"
    return round_half_up(average), tier


def should_auto_activate(scores: Iterable[Optional[int]], threshold: int = 80) -> bool:
    """True when a source's average completeness clears the activation bar."""
    values = list(scores)
    if not values:
        return False
    score, _ = calculate_source_quality(values)
    return score >= threshold


def determine_session_status(
    completeness_score: int,
    price_cents: Optional[int] = None,
    price_raw: Optional[str] = None,
) -> str:
    """
    Initial status for an imported record.

    - below PENDING_REVIEW_THRESHOLD -> 'pending_review' (not imported)
    - $0 without "free" in the raw price text -> 'draft' (likely parse failure)
    - fully complete -> 'active'
    - otherwise -> 'draft'
    """
    if completeness_score < PENDING_REVIEW_THRESHOLD:
        return "pending_review"

    if price_cents == 0 and not (price_raw and _FREE_RE.search(price_raw)):
        return "draft"

    if completeness_score == 100:
        return "active"
    return "draft"


# =============================================================================
# RAW TEXT PARSERS
# =============================================================================

_MONTHS = {
    name: idx + 1
    for idx, names in enumerate([
        ("january", "jan"), ("february", "feb"), ("march", "mar"), ("april", "apr"),
        ("may",), ("june", "jun"), ("july", "jul"), ("august", "aug"),
        ("september", "sep", "sept"), ("october", "oct"), ("november", "nov"),
        ("december", "dec"),
    ])
    for name in names
}

_MONTH_RANGE_RE = re.compile(r"([a-z]+)\.?\s+(\d{1,2})\s*[-–]\s*(\d{1,2}),?\s*(\d{4})", re.IGNORECASE)
_CROSS_MONTH_RE = re.compile(
    r"([a-z]+)\.?\s+(\d{1,2})\s*[-–]\s*([a-z]+)\.?\s+(\d{1,2}),?\s*(\d{4})", re.IGNORECASE)
_NUMERIC_RANGE_RE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})\s*[-–]\s*(\d{1,2})/(\d{1,2})/(\d{4})")
_TIME_RANGE_RE = re.compile(
    r"(\d{1,2})(?::(\d{2}))?\s*(am|pm|a\.m\.|p\.m\.)?\s*[-–]\s*(\d{1,2})(?::(\d{2}))?\s*(am|pm|a\.m\.|p\.m\.)?",
    re.IGNORECASE,
)
_PRICE_RE = re.compile(r"\$?([\d,]+)(?:\.(\d{2}))?")
_GRADE_RE = re.compile(
    r"(?:grades?\s*)?(\d+|k|pre-?k)\s*(?:st|nd|rd|th)?\s*[-–]\s*(\d+|k)\s*(?:st|nd|rd|th)?(?:\s*grade)?",
    re.IGNORECASE,
)
_AGE_RE = re.compile(r"(?:ages?\s*)?(\d+)\s*(?:[-–]|to)\s*(\d+)(?:\s*(?:years?|y\.?o\.?))?", re.IGNORECASE)
_AGE_PLUS_RE = re.compile(r"(?:ages?\s*)?(\d+)\s*(?:\+|and\s*up|and\s*older)", re.IGNORECASE)

DEFAULT_MAX_AGE_FOR_OPEN_RANGE = 18


def parse_date_range(text: str) -> Optional[Tuple[str, str]]:
    """
    Parse a date range into (start, end) ISO strings.

    Supports "June 10-14, 2025", "Jun 30 - Jul 3, 2025" and
    "6/10/2025 - 6/14/2025". Falls back to a single date parsed with
    dateutil (start == end) for single-day sessions.
    """
    if not text:
        return None
    normalized = text.strip()

    for match in _CROSS_MONTH_RE.finditer(normalized):
        m1, m2 = _MONTHS.get(match.group(1).lower()), _MONTHS.get(match.group(3).lower())
        if m1 and m2:
            year = int(match.group(5))
            return (
                _iso(year, m1, int(match.group(2))),
                _iso(year, m2, int(match.group(4))),
            )

    for match in _MONTH_RANGE_RE.finditer(normalized):
        month = _MONTHS.get(match.group(1).lower())
        if month:
            year = int(match.group(4))
            return _iso(year, month, int(match.group(2))), _iso(year, month, int(match.group(3)))

    match = _NUMERIC_RANGE_RE.search(normalized)
    if match:
        return (
            _iso(int(match.group(3)), int(match.group(1)), int(match.group(2))),
            _iso(int(match.group(6)), int(match.group(4)), int(match.group(5))),
        )

    if is_valid_date_format(normalized):
        return normalized, normalized

    # Single explicit date with a year, e.g. "Saturday, July 12, 2025"
    if re.search(r"\b\d{4}\b", normalized) and not re.search(r"[–]|\s-\s|\bto\b", normalized):
        try:
            single = date_parser.parse(normalized, fuzzy=True).date().isoformat()
        except (ValueError, OverflowError):
            return None
        return single, single

    return None


def _iso(year: int, month: int, day: int) -> str:
    return f"{year:04d}-{month:02d}-{day:02d}"


def parse_time_range(text: str) -> Optional[Tuple[Tuple[int, int], Tuple[int, int]]]:
    """
    Parse "9:00 AM - 3:00 PM" / "9am-3pm" / "9-3" into 24h
    ((drop_off_hour, minute), (pick_up_hour, minute)).

    Without am/pm, a pick-up hour below 6 is taken as afternoon.
    """
    if not text:
        return None
    match = _TIME_RANGE_RE.search(text)
    if not match:
        return None

    drop_hour = int(match.group(1))
    drop_min = int(match.group(2)) if match.group(2) else 0
    drop_period = (match.group(3) or "").lower().replace(".", "")
    pick_hour = int(match.group(4))
    pick_min = int(match.group(5)) if match.group(5) else 0
    pick_period = (match.group(6) or "").lower().replace(".", "")

    drop_hour = _to_24h(drop_hour, drop_period)
    pick_hour = _to_24h(pick_hour, pick_period)
    if not pick_period and pick_hour < 6:
        pick_hour += 12

    return (drop_hour, drop_min), (pick_hour, pick_min)


def _to_24h(hour: int, period: str) -> int:
    if period == "pm" and hour != 12:
        return hour + 12
    if period == "am" and hour == 12:
        return 0
    return hour


def parse_price(text: str) -> Optional[int]:
    """Parse a price into integer cents. "Free" and "$0" are 0."""
    if not text:
        return None
    if _FREE_RE.search(text) or text.strip() == "$0":
        return 0
    match = _PRICE_RE.search(text)
    if not match:
        return None
    digits = match.group(1).replace(",", "")
    if not digits:
        return None
    cents = int(match.group(2)) if match.group(2) else 0
    return int(digits) * 100 + cents


def parse_age_range(text: str) -> Optional[Dict[str, int]]:
    """
    Parse an age or grade range.

    Grades ("Grades K-5", "1st-5th grade") give min/max_grade with K=0 and
    Pre-K=-1; ages ("Ages 5-12", "5 to 12 years") give min/max_age; an
    open range ("5+", "5 and up") caps max_age at 18.
    """
    if not text:
        return None
    normalized = text.lower().strip()

    looks_like_grade = bool(
        re.search(r"grade|\bk\b|pre-?k|\d\s*(?:st|nd|rd|th)\b", normalized)
    )
    if looks_like_grade:
        match = _GRADE_RE.search(normalized)
        if match:
            return {
                "min_grade": _parse_grade(match.group(1)),
                "max_grade": _parse_grade(match.group(2)),
            }

    match = _AGE_RE.search(normalized)
    if match:
        return {"min_age": int(match.group(1)), "max_age": int(match.group(2))}

    match = _AGE_PLUS_RE.search(normalized)
    if match:
        return {"min_age": int(match.group(1)), "max_age": DEFAULT_MAX_AGE_FOR_OPEN_RANGE}

    return None


def _parse_grade(token: str) -> int:
    token = token.lower()
    if token == "k":
        return 0
    if token in ("pre-k", "prek"):
        return -1
    return int(token)
