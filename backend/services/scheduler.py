"""
Scheduler Service - durable delayed execution.

    schedule_task("run_scrape_job", {"job_id": 12}, delay_seconds=0)
    run_due_tasks()          # cron: every minute

Tasks are rows in scheduled_tasks, so nothing is lost on restart. A task
handler is a plain function taking the payload as keyword arguments. It
re-checks its own preconditions when it runs because the world may have
changed since the task was queued.

Failed tasks are retried with exponential backoff until TASK_MAX_ATTEMPTS.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from flask import current_app

from constants import TASK_MAX_ATTEMPTS
from models import ScheduledTask
from models.database import db
from scrapers.models import ScrapeSource
from services.scrape_jobs import create_scrape_job, open_job_for_source

logger = logging.getLogger(__name__)

RETRY_BASE_SECONDS = 60

_HANDLERS: Dict[str, Callable[..., Any]] = {}


def register_task(name: str):
    """Decorator registering a task handler under a name."""
    def decorator(func):
        _HANDLERS[name] = func
        return func
    return decorator


def _load_builtin_handlers():
    # Imported lazily: these services import the scheduler's dependencies
    from services.planner_aggregates import recompute_all
    from services.scrape_runner import run_scrape_job
    from services.automation import auto_queue_scraper_development, run_data_quality_checks

    _HANDLERS.setdefault("run_scrape_job", lambda job_id: _job_summary(run_scrape_job(job_id)))
    _HANDLERS.setdefault("send_availability_digest", _send_digest)
    _HANDLERS.setdefault("recompute_planner", lambda year=None: recompute_all(year))
    _HANDLERS.setdefault("queue_scraper_development", lambda max_to_queue=10: auto_queue_scraper_development(max_to_queue))
    _HANDLERS.setdefault("data_quality_checks", lambda **_: run_data_quality_checks())


def _send_digest(lookback_hours: int = None, threshold: int = None) -> dict:
    """Digest window and low-spots threshold default to the app config."""
    from services.notifications import send_availability_digest

    config = current_app.config
    return send_availability_digest(
        lookback_hours=lookback_hours or config['NOTIFICATION_LOOKBACK_HOURS'],
        threshold=threshold or config['LOW_AVAILABILITY_THRESHOLD'],
    )


def _job_summary(job) -> Optional[dict]:
    return job.to_dict() if job is not None else None


def get_handler(name: str) -> Callable[..., Any]:
    if name not in _HANDLERS:
        _load_builtin_handlers()
    try:
        return _HANDLERS[name]
    except KeyError:
        raise KeyError(f"No handler registered for task '{name}'") from None


def schedule_task(task_name: str, payload: Dict[str, Any] = None, delay_seconds: int = 0,
                  dedupe_key: str = None, now: datetime = None, commit: bool = True) -> ScheduledTask:
    """
    Persist a task to run after delay_seconds.

    With a dedupe_key, an identical pending task is returned instead of
    queuing a second one.
    """
    now = now or datetime.utcnow()
    if dedupe_key:
        existing = ScheduledTask.query.filter(
            ScheduledTask.dedupe_key == dedupe_key,
            ScheduledTask.status == "pending",
        ).first()
        if existing is not None:
            return existing

    task = ScheduledTask(
        task_name=task_name,
        payload=dict(payload or {}),
        dedupe_key=dedupe_key,
        run_at=now + timedelta(seconds=max(0, delay_seconds)),
        status="pending",
        attempts=0,
    )
    db.session.add(task)
    if commit:
        db.session.commit()
    return task


def _retry_delay(attempts: int) -> timedelta:
    return timedelta(seconds=RETRY_BASE_SECONDS * (2 ** (attempts - 1)))


def _run_one(task: ScheduledTask, now: datetime) -> str:
    task.status = "running"
    task.attempts = (task.attempts or 0) + 1
    task.started_at = now
    db.session.commit()

    try:
        handler = get_handler(task.task_name)
        handler(**(task.payload or {}))
    except Exception as e:
        db.session.rollback()
        logger.exception(f"Task {task.id} ({task.task_name}) failed on attempt {task.attempts}")
        task.last_error = str(e)[:2000]
        if task.attempts < TASK_MAX_ATTEMPTS:
            task.status = "pending"
            task.run_at = now + _retry_delay(task.attempts)
            outcome = "retried"
        else:
            task.status = "failed"
            task.completed_at = now
            outcome = "failed"
        db.session.commit()
        return outcome

    task.status = "completed"
    task.completed_at = datetime.utcnow()
    task.last_error = None
    db.session.commit()
    return "completed"


def run_due_tasks(now: datetime = None, limit: int = 50) -> Dict[str, int]:
    """Run pending tasks whose run_at has passed, oldest first."""
    now = now or datetime.utcnow()
    due: List[ScheduledTask] = ScheduledTask.query.filter(
        ScheduledTask.status == "pending",
        ScheduledTask.run_at <= now,
    ).order_by(ScheduledTask.run_at.asc(), ScheduledTask.id.asc()).limit(limit).all()

    summary = {"ran": 0, "completed": 0, "retried": 0, "failed": 0}
    for task in due:
        outcome = _run_one(task, now)
        summary["ran"] += 1
        summary[outcome] += 1

    if due:
        logger.info(f"Scheduler ran {summary['ran']} task(s): {summary}")
    return summary


def schedule_due_scrapes(now: datetime = None) -> Dict[str, Any]:
    """
    Queue a job plus a run_scrape_job task for every active source that is
    due and has no open job.
    """
    now = now or datetime.utcnow()
    sources = ScrapeSource.query.filter(
        ScrapeSource.is_active.is_(True),
        db.or_(ScrapeSource.next_scheduled_scrape.is_(None), ScrapeSource.next_scheduled_scrape <= now),
    ).order_by(ScrapeSource.next_scheduled_scrape.asc()).all()

    queued = []
    for source in sources:
        if not source.has_extraction_method or open_job_for_source(source.id) is not None:
            continue
        job = create_scrape_job(source.id, triggered_by="scheduler", commit=False)
        db.session.flush()
        schedule_task("run_scrape_job", {"job_id": job.id}, dedupe_key=f"scrape_job:{job.id}",
                      now=now, commit=False)
        queued.append(job.id)

    db.session.commit()
    if queued:
        logger.info(f"Queued {len(queued)} scheduled scrape(s)")
    return {"queued": len(queued), "job_ids": queued}


def list_tasks(status: Optional[str] = None, limit: int = 100) -> List[ScheduledTask]:
    query = ScheduledTask.query
    if status:
        query = query.filter(ScheduledTask.status == status)
    return query.order_by(ScheduledTask.run_at.desc()).limit(limit).all()
