"""
Import Service - reconcile scraped records with stored sessions.

For every raw record of a job:
1. validate + score it (services.validation)
2. route it to PendingSession when it is below the review threshold or
   has validation errors
3. otherwise match it to an existing session of the same source and
   create or update the Session, recording ScrapeChange rows

Matching (first hit wins):
    source_session_key  stable id supplied by the routine
    natural key         start date + end date + normalized camp name
    fuzzy               same start date, name similarity > 0.8

Sessions the source produced before but that are absent from this run get
a session_removed change; the session row itself is left alone so an
admin can decide whether it was cancelled or the scraper missed it.

Change rows are written with notified=False and consumed later by
services.notifications.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from constants import (
    DEFAULT_CAPACITY,
    DEFAULT_CURRENCY,
    DEFAULT_DROP_OFF,
    DEFAULT_PICK_UP,
    HIGH_CHANGE_VOLUME_MIN_CHANGES,
    HIGH_CHANGE_VOLUME_RATIO,
    NAME_SIMILARITY_THRESHOLD,
    ZERO_PRICE_RATIO_THRESHOLD,
)
from models import Camp, Location, Organization, Session
from models.database import db
from scrapers.models import PendingSession, ScrapeChange, ScrapeJob, ScrapeSource
from scrapers.utils.diff import DiffReport, compute_session_diff, missing_session_diff
from scrapers.utils.similarity import natural_key, normalize_name, similarity
from services.counters import set_session_counts
from services.errors import ConflictError, ValidationError
from services.source_health import create_alert_if_not_exists
from services.sources import update_source_counts
from services.validation import determine_session_status, validate_session

logger = logging.getLogger(__name__)

# Statuses whose disappearance from the source is worth reporting
REMOVABLE_STATUSES = ('draft', 'active', 'sold_out')


@dataclass
class ImportResult:
    found: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    pending: int = 0
    removed: int = 0
    changes: int = 0
    session_ids: List[int] = field(default_factory=list)
    pending_ids: List[int] = field(default_factory=list)
    alerts: List[str] = field(default_factory=list)

    def job_stats(self) -> Dict[str, int]:
        return {
            "found": self.found,
            "created": self.created,
            "updated": self.updated,
            "pending": self.pending,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": self.found,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "pending": self.pending,
            "removed": self.removed,
            "changes": self.changes,
            "alerts": self.alerts,
        }


def _to_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None


class SessionImporter:
    """
    Imports one batch of raw records for a source.

    Usage:
        importer = SessionImporter(source, job)
        result = importer.run(raw_sessions)
        db.session.commit()
    """

    def __init__(self, source: ScrapeSource, job: Optional[ScrapeJob] = None, now: datetime = None):
        self.source = source
        self.job = job
        self.now = now or datetime.utcnow()
        self.result = ImportResult()
        self.report = DiffReport(source_id=source.id, job_id=job.id if job else None)

        self._location_cache: Dict[str, Location] = {}
        self._camp_cache: Dict[Tuple[int, str], Camp] = {}
        self._by_key: Dict[str, Session] = {}
        self._by_natural: Dict[str, Session] = {}
        self._by_start: Dict[date, List[Session]] = defaultdict(list)
        self._existing_ids: set = set()
        self._seen_ids: set = set()
        self._imported: List[Session] = []

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    def _index(self, session: Session):
        if session.source_session_key:
            self._by_key[session.source_session_key] = session
        self._by_natural[natural_key(
            session.start_date.isoformat(), session.end_date.isoformat(), session.camp_name
        )] = session
        self._by_start[session.start_date].append(session)

    def load_existing(self):
        for session in Session.query.filter(Session.source_id == self.source.id).all():
            self._existing_ids.add(session.id)
            self._index(session)

    def match(self, data: Dict[str, Any]) -> Optional[Session]:
        """Find the stored session a normalized record refers to."""
        key = data.get("source_session_id")
        if key and str(key) in self._by_key:
            return self._by_key[str(key)]

        start, end, name = data.get("start_date"), data.get("end_date"), data.get("name")
        if not start or not name:
            return None
        if end:
            exact = self._by_natural.get(natural_key(start, end, name))
            if exact is not None:
                return exact

        start_date = _to_date(start)
        best, best_score = None, NAME_SIMILARITY_THRESHOLD
        for candidate in self._by_start.get(start_date, []):
            score = similarity(name, candidate.camp_name)
            if score > best_score:
                best, best_score = candidate, score
        return best

    # ------------------------------------------------------------------
    # Related rows
    # ------------------------------------------------------------------

    def _organization(self, data: Dict[str, Any]) -> Organization:
        if self.source.organization_id:
            return self.source.organization or db.session.get(Organization, self.source.organization_id)

        name = (data.get("organization_name") or self.source.name).strip()
        org = Organization.query.filter(
            db.func.lower(Organization.name) == name.lower(),
            Organization.city_id == self.source.city_id,
        ).first()
        if org is None:
            org = Organization(name=name, website=self.source.url, city_id=self.source.city_id)
            db.session.add(org)
            db.session.flush()
            logger.info(f"Created organization {org.id} {name} for orphan source {self.source.id}")
        # Orphan sources adopt the organization of their first imported session
        self.source.organization_id = org.id
        self.source.organization = org
        return org

    def _camp(self, org: Organization, data: Dict[str, Any]) -> Camp:
        name = data["name"]
        cache_key = (org.id, normalize_name(name))
        if cache_key in self._camp_cache:
            return self._camp_cache[cache_key]

        camp = Camp.query.filter(
            Camp.organization_id == org.id,
            db.func.lower(Camp.name) == name.lower(),
        ).first()
        if camp is None:
            camp = Camp(
                name=name,
                organization_id=org.id,
                description=data.get("description"),
                categories=[data["category"]] if data.get("category") else [],
                website_url=self.source.url,
            )
            db.session.add(camp)
            db.session.flush()
        self._camp_cache[cache_key] = camp
        return camp

    def _location(self, org: Organization, data: Dict[str, Any]) -> Optional[Location]:
        name = (data.get("location") or "").strip()
        if not name:
            return None
        if name in self._location_cache:
            return self._location_cache[name]

        location = Location.query.filter_by(organization_id=org.id, name=name).first()
        if location is None:
            location = Location(
                name=name,
                address=name if any(ch.isdigit() for ch in name) else None,
                city_id=self.source.city_id,
                organization_id=org.id,
            )
            db.session.add(location)
            db.session.flush()
        self._location_cache[name] = location
        return location

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _to_pending(self, raw: Dict[str, Any], validation) -> PendingSession:
        pending = PendingSession(
            source_id=self.source.id,
            job_id=self.job.id if self.job else None,
            city_id=self.source.city_id,
            raw_data=raw,
            partial_data=validation.normalized,
            validation_errors=validation.error_dicts,
            missing_fields=validation.missing_fields,
            completeness_score=validation.completeness_score,
            status="pending_review",
        )
        db.session.add(pending)
        return pending

    @staticmethod
    def _scraped_values(data: Dict[str, Any]) -> Dict[str, Any]:
        """Session column values carried by a record (None = not supplied)."""
        return {
            "start_date": _to_date(data.get("start_date")),
            "end_date": _to_date(data.get("end_date")),
            "drop_off_hour": data.get("drop_off_hour"),
            "drop_off_minute": data.get("drop_off_minute"),
            "pick_up_hour": data.get("pick_up_hour"),
            "pick_up_minute": data.get("pick_up_minute"),
            "price_cents": data.get("price_cents"),
            "min_age": data.get("min_age"),
            "max_age": data.get("max_age"),
            "min_grade": data.get("min_grade"),
            "max_grade": data.get("max_grade"),
            "registration_url": data.get("registration_url"),
        }

    @staticmethod
    def _counts(data: Dict[str, Any], current_capacity: Optional[int]) -> Tuple[Optional[int], Optional[int]]:
        """(capacity, enrolled) implied by the record's availability fields."""
        capacity = data.get("capacity")
        enrolled = data.get("enrolled_count")
        spots_left = data.get("spots_left")
        if spots_left is not None and enrolled is None:
            base = capacity if capacity is not None else current_capacity
            if base is not None:
                enrolled = max(0, base - spots_left)
        return capacity, enrolled

    def _create(self, data: Dict[str, Any], validation, status: str, data_source: str = "scraped") -> Session:
        org = self._organization(data)
        camp = self._camp(org, data)
        location = self._location(org, data)
        values = self._scraped_values(data)

        session = Session(
            camp_id=camp.id,
            location_id=location.id if location else None,
            organization_id=org.id,
            city_id=self.source.city_id,
            source_id=self.source.id,
            source_session_key=str(data["source_session_id"]) if data.get("source_session_id") else None,
            camp_name=data["name"],
            organization_name=org.name,
            start_date=values["start_date"],
            end_date=values["end_date"],
            drop_off_hour=values["drop_off_hour"] if values["drop_off_hour"] is not None else DEFAULT_DROP_OFF[0],
            drop_off_minute=values["drop_off_minute"] or DEFAULT_DROP_OFF[1],
            pick_up_hour=values["pick_up_hour"] if values["pick_up_hour"] is not None else DEFAULT_PICK_UP[0],
            pick_up_minute=values["pick_up_minute"] or DEFAULT_PICK_UP[1],
            price_cents=values["price_cents"] if values["price_cents"] is not None else 0,
            currency=DEFAULT_CURRENCY,
            capacity=DEFAULT_CAPACITY,
            enrolled_count=0,
            waitlist_count=0,
            min_age=values["min_age"],
            max_age=values["max_age"],
            min_grade=values["min_grade"],
            max_grade=values["max_grade"],
            status=status,
            registration_url=values["registration_url"],
            completeness_score=validation.completeness_score,
            missing_fields=validation.missing_fields,
            data_source=data_source,
            last_scraped_at=self.now,
        )
        capacity, enrolled = self._counts(data, DEFAULT_CAPACITY)
        set_session_counts(session, enrolled_count=enrolled, capacity=capacity)
        db.session.add(session)
        db.session.flush()

        self._index(session)
        self._seen_ids.add(session.id)
        self._record_events(session, compute_session_diff(str(session.id), {}, None))
        self.result.created += 1
        return session

    def _update(self, session: Session, data: Dict[str, Any], validation, status: str) -> Session:
        before = {
            "price_cents": session.price_cents,
            "start_date": session.start_date,
            "end_date": session.end_date,
            "status": session.status,
        }

        for column, value in self._scraped_values(data).items():
            if value is not None:
                setattr(session, column, value)
        if data.get("location"):
            location = self._location(self._organization(data), data)
            session.location_id = location.id
        if data.get("source_session_id") and not session.source_session_key:
            session.source_session_key = str(data["source_session_id"])

        # A draft that now scrapes complete opens for registration
        if session.status == "draft" and status == "active":
            session.status = "active"

        capacity, enrolled = self._counts(data, session.capacity)
        set_session_counts(session, enrolled_count=enrolled, capacity=capacity)

        session.completeness_score = validation.completeness_score
        session.missing_fields = validation.missing_fields
        session.last_scraped_at = self.now
        self._seen_ids.add(session.id)

        after = {k: getattr(session, k) for k in before}
        diff = compute_session_diff(str(session.id), after, before, existing_id=session.id)
        if diff.changes:
            self.result.updated += 1
        else:
            self.result.unchanged += 1
        self._record_events(session, diff)
        return session

    def _record_events(self, session: Session, diff):
        self.report.add_diff(diff)
        for event in diff.change_events():
            db.session.add(ScrapeChange(
                source_id=self.source.id,
                job_id=self.job.id if self.job else None,
                session_id=session.id,
                change_type=event.change_type,
                previous_value=event.previous_value,
                new_value=event.new_value,
                detected_at=self.now,
                notified=False,
            ))
            self.result.changes += 1

    def import_record(self, raw: Dict[str, Any], data_source: str = "scraped") -> Optional[Session]:
        """Validate, route and upsert one raw record. Returns the session, or None if pending."""
        self.result.found += 1
        validation = validate_session(raw)
        data = validation.normalized
        status = determine_session_status(
            validation.completeness_score, data.get("price_cents"), data.get("price_raw")
        )

        existing = self.match(data)
        if status == "pending_review" or validation.errors:
            if existing is not None:
                # Still listed by the source, just not importable this time
                self._seen_ids.add(existing.id)
            pending = self._to_pending(raw, validation)
            db.session.flush()
            self.result.pending += 1
            self.result.pending_ids.append(pending.id)
            return None

        if existing is not None:
            session = self._update(existing, data, validation, status)
        else:
            session = self._create(data, validation, status, data_source)
        self._imported.append(session)
        self.result.session_ids.append(session.id)
        return session

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _detect_removed(self):
        unseen = self._existing_ids - self._seen_ids
        if not unseen:
            return

        # Sessions that already ended drop off provider sites naturally
        missing = Session.query.filter(
            Session.id.in_(unseen),
            Session.status.in_(REMOVABLE_STATUSES),
            Session.end_date >= self.now.date(),
        ).all()

        for session in missing:
            already = ScrapeChange.query.filter(
                ScrapeChange.session_id == session.id,
                ScrapeChange.change_type == "session_removed",
                ScrapeChange.detected_at >= (session.last_scraped_at or session.created_at or self.now),
            ).first()
            if already is not None:
                continue
            self._record_events(session, missing_session_diff(str(session.id), session.id))
            self.result.removed += 1

    def _check_alerts(self):
        imported = self._imported
        if imported:
            zero = sum(1 for s in imported if s.price_cents == 0)
            if zero / len(imported) > ZERO_PRICE_RATIO_THRESHOLD:
                alert = create_alert_if_not_exists(
                    self.source.id, "zero_price", "warning",
                    f"{zero} of {len(imported)} sessions from {self.source.name} have a $0 price",
                )
                if alert:
                    self.result.alerts.append("zero_price")

        baseline = max(len(self._existing_ids), 1)
        changed = self.report.changed_count + self.report.missing_count
        if (self.result.changes >= HIGH_CHANGE_VOLUME_MIN_CHANGES
                and changed / baseline > HIGH_CHANGE_VOLUME_RATIO):
            alert = create_alert_if_not_exists(
                self.source.id, "high_change_volume", "warning",
                f"{self.source.name}: {changed} of {baseline} sessions changed in one scrape "
                f"({self.result.changes} changes)",
            )
            if alert:
                self.result.alerts.append("high_change_volume")

    def run(self, raw_sessions: List[Dict[str, Any]]) -> ImportResult:
        self.load_existing()
        for raw in raw_sessions:
            self.import_record(raw)

        # An empty scrape is a scraper problem, not every session vanishing
        if self.result.found > 0:
            self._detect_removed()

        self._check_alerts()
        update_source_counts(self.source, commit=False)
        logger.info(f"Import for source {self.source.id}: {self.result.to_dict()}")
        return self.result


def import_scraped_sessions(source: ScrapeSource, job: Optional[ScrapeJob], raw_sessions: List[Dict[str, Any]],
                            commit: bool = True) -> ImportResult:
    """Import one job's records for a source."""
    result = SessionImporter(source, job).run(raw_sessions)
    if commit:
        db.session.commit()
    return result


def list_pending_sessions(status: str = "pending_review", source_id: Optional[int] = None,
                          limit: int = 100) -> List[PendingSession]:
    query = PendingSession.query.filter(PendingSession.status == status)
    if source_id is not None:
        query = query.filter(PendingSession.source_id == source_id)
    return query.order_by(PendingSession.created_at.desc()).limit(limit).all()


def review_pending_session(pending: PendingSession, status: str, reviewed_by: str,
                           fixed_data: Optional[Dict[str, Any]] = None) -> PendingSession:
    """
    Resolve a pending record.

    - discarded: final, nothing imported
    - manually_fixed: fixed_data is merged over the partial data,
      re-validated, and imported as a session when it now passes
    """
    if pending.status != "pending_review":
        raise ConflictError(f"Pending session is already {pending.status}", code="ALREADY_REVIEWED")
    if status not in ("manually_fixed", "discarded"):
        raise ValidationError("Review status must be manually_fixed or discarded", field="status")

    if status == "discarded":
        pending.status = "discarded"
        pending.reviewed_by = reviewed_by
        pending.reviewed_at = datetime.utcnow()
        db.session.commit()
        return pending

    merged = {**(pending.partial_data or {}), **(fixed_data or {})}
    validation = validate_session(merged)
    if validation.errors:
        details = "; ".join(f"{e.field}: {e.error}" for e in validation.errors)
        raise ValidationError(f"Fixed data still fails validation: {details}", code="STILL_INVALID")
    if determine_session_status(validation.completeness_score) == "pending_review":
        raise ValidationError("Fixed data is still below the import threshold", code="STILL_INVALID")

    pending.reviewed_by = reviewed_by
    pending.reviewed_at = datetime.utcnow()

    source = db.session.get(ScrapeSource, pending.source_id)
    importer = SessionImporter(source)
    importer.load_existing()
    session = importer.import_record(merged, data_source="enhanced")

    pending.status = "imported"
    pending.partial_data = validation.normalized
    pending.imported_session_id = session.id if session else None
    update_source_counts(source, commit=False)
    db.session.commit()
    logger.info(f"Pending session {pending.id} imported as session {pending.imported_session_id}")
    return pending
