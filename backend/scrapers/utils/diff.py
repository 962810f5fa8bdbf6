"""
Diff Detection Module - Compares a re-scraped session against the stored one.

Outputs per session:
- unchanged: No tracked field differs
- changed: Tracked fields differ (with field-level detail)
- new: No matching session yet
- missing: Session exists for the source but was not in this scrape

Field changes are folded into the change-type taxonomy persisted as
ScrapeChange rows:
- session_added / session_removed  (new / missing)
- price_changed                    (price_cents)
- dates_changed                    (start_date, end_date)
- status_changed                   (status)
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class DiffStatus(Enum):
    """Status of a session in the diff."""
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    NEW = "new"
    MISSING = "missing"


# Tracked field -> change type emitted when it differs
TRACKED_FIELDS = {
    "price_cents": "price_changed",
    "start_date": "dates_changed",
    "end_date": "dates_changed",
    "status": "status_changed",
}


@dataclass
class FieldChange:
    """Details of a single field change."""
    field_name: str
    old_value: Any
    new_value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field_name,
            "old": _serialize(self.old_value),
            "new": _serialize(self.new_value),
        }


@dataclass
class SessionChange:
    """One change-type event, ready to persist as a ScrapeChange."""
    change_type: str
    previous_value: Optional[str] = None
    new_value: Optional[str] = None


@dataclass
class SessionDiff:
    """Diff result for a single session."""
    session_key: str
    status: DiffStatus
    changes: List[FieldChange] = field(default_factory=list)
    existing_id: Optional[int] = None
    old_dates: Optional[str] = None
    new_dates: Optional[str] = None

    @property
    def changed_fields(self) -> List[str]:
        return [c.field_name for c in self.changes]

    def change_events(self) -> List[SessionChange]:
        """Fold field changes into change-type events (one per type)."""
        if self.status == DiffStatus.NEW:
            return [SessionChange("session_added")]
        if self.status == DiffStatus.MISSING:
            return [SessionChange("session_removed")]

        events: List[SessionChange] = []
        by_field = {c.field_name: c for c in self.changes}

        if "price_cents" in by_field:
            c = by_field["price_cents"]
            events.append(SessionChange("price_changed", _text(c.old_value), _text(c.new_value)))

        if "start_date" in by_field or "end_date" in by_field:
            events.append(SessionChange("dates_changed", self.old_dates, self.new_dates))

        if "status" in by_field:
            c = by_field["status"]
            events.append(SessionChange("status_changed", _text(c.old_value), _text(c.new_value)))

        return events

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_key": self.session_key,
            "status": self.status.value,
            "changes": [c.to_dict() for c in self.changes],
            "existing_id": self.existing_id,
        }


@dataclass
class DiffReport:
    """Complete diff report for one source import."""
    source_id: int
    job_id: Optional[int] = None
    computed_at: datetime = field(default_factory=datetime.utcnow)
    diffs: List[SessionDiff] = field(default_factory=list)

    unchanged_count: int = 0
    changed_count: int = 0
    new_count: int = 0
    missing_count: int = 0

    def add_diff(self, diff: SessionDiff):
        """Add a diff to the report and update counts."""
        self.diffs.append(diff)
        if diff.status == DiffStatus.UNCHANGED:
            self.unchanged_count += 1
        elif diff.status == DiffStatus.CHANGED:
            self.changed_count += 1
        elif diff.status == DiffStatus.NEW:
            self.new_count += 1
        elif diff.status == DiffStatus.MISSING:
            self.missing_count += 1

    @property
    def total_count(self) -> int:
        return len(self.diffs)

    @property
    def event_count(self) -> int:
        return sum(len(d.change_events()) for d in self.diffs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "job_id": self.job_id,
            "computed_at": self.computed_at.isoformat(),
            "summary": {
                "total": self.total_count,
                "unchanged": self.unchanged_count,
                "changed": self.changed_count,
                "new": self.new_count,
                "missing": self.missing_count,
            },
            "diffs": [d.to_dict() for d in self.diffs if d.status != DiffStatus.UNCHANGED],
        }


def compute_session_diff(
    session_key: str,
    incoming: Dict[str, Any],
    existing: Optional[Dict[str, Any]],
    existing_id: Optional[int] = None,
) -> SessionDiff:
    """
    Compare tracked fields of an incoming record against the stored session.

    Args:
        session_key: Natural key used for matching (for reporting)
        incoming: Values the import is about to write
        existing: Current stored values, or None if no match was found
        existing_id: Primary key of the matched session

    Returns:
        SessionDiff (NEW when existing is None)
    """
    if existing is None:
        return SessionDiff(session_key=session_key, status=DiffStatus.NEW)

    changes = []
    for field_name in TRACKED_FIELDS:
        if field_name not in incoming:
            continue
        old_value = _comparable(existing.get(field_name))
        new_value = _comparable(incoming.get(field_name))
        if new_value is None:
            # Missing incoming values never clear stored data
            continue
        if old_value != new_value:
            changes.append(FieldChange(field_name, old_value, new_value))

    return SessionDiff(
        session_key=session_key,
        status=DiffStatus.CHANGED if changes else DiffStatus.UNCHANGED,
        changes=changes,
        existing_id=existing_id,
        old_dates=_date_range(existing),
        new_dates=_date_range({**existing, **{k: v for k, v in incoming.items() if v is not None}}),
    )


def missing_session_diff(session_key: str, existing_id: int) -> SessionDiff:
    return SessionDiff(session_key=session_key, status=DiffStatus.MISSING, existing_id=existing_id)


def _comparable(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return value


def _serialize(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _text(value: Any) -> Optional[str]:
    return None if value is None else str(_serialize(value))


def _date_range(values: Dict[str, Any]) -> str:
    return f"{_text(values.get('start_date'))} to {_text(values.get('end_date'))}"
