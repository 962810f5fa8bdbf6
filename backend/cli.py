#!/usr/bin/env python3
"""
CLI for the camp session pipeline (cron entry points)

Commands:
    run-due-tasks       - Dispatch due scheduled tasks (scrape jobs, ...)
    schedule-scrapes    - Queue scrape jobs for sources that are due
    send-digest         - Send availability digest emails
    recompute-planner   - Rebuild weekly planner aggregates
    data-quality        - Daily zero-price / missing-scraper checks
    queue-dev-requests  - File dev requests for sources needing a scraper
    cleanup             - Fail stuck jobs, prune old data, close past sessions
    run-job             - Run one scrape job in the foreground

Cron cadence:
    */15 * * * *  python cli.py schedule-scrapes && python cli.py run-due-tasks
    0 * * * *     python cli.py send-digest
    */30 * * * *  python cli.py recompute-planner
    0 6 * * *     python cli.py data-quality && python cli.py cleanup
"""

import json
import sys

import click


def get_app():
    """Create the Flask app for database access."""
    from app import create_app
    return create_app()


def _print_summary(title, result):
    click.echo("=" * 60)
    click.secho(title, fg="cyan", bold=True)
    click.echo("=" * 60)
    for key, value in result.items():
        if isinstance(value, (list, dict)):
            value = json.dumps(value, default=str)
        click.echo(f"  {key}: {value}")


@click.group()
@click.version_option(version="1.0.0", prog_name="camp-pipeline")
def cli():
    """Camp session pipeline CLI - scheduled scrapes, digests and maintenance."""
    pass


@cli.command("run-due-tasks")
@click.option("--limit", type=int, default=50, help="Max tasks to run")
def run_due_tasks(limit):
    """Dispatch scheduled tasks whose run_at has passed."""
    app = get_app()
    with app.app_context():
        from services.scheduler import run_due_tasks as run_tasks

        result = run_tasks(limit=limit)
        _print_summary("SCHEDULED TASKS", result)
        if result.get("failed"):
            click.secho(f"  {result['failed']} task(s) failed permanently", fg="red")


@cli.command("schedule-scrapes")
def schedule_scrapes():
    """Queue a scrape job for every active source that is due."""
    app = get_app()
    with app.app_context():
        from services.scheduler import schedule_due_scrapes

        result = schedule_due_scrapes()
        _print_summary("SCRAPE SCHEDULER", result)


@cli.command("run-job")
@click.argument("job_id", type=int)
def run_job(job_id):
    """Run one scrape job now (bypasses the task queue)."""
    app = get_app()
    with app.app_context():
        from services.scrape_runner import run_scrape_job

        job = run_scrape_job(job_id)
        if job is None:
            click.secho(f"Job {job_id} is not pending; nothing to do", fg="yellow")
            return
        _print_summary(f"SCRAPE JOB {job_id}", job.to_dict())
        if job.status == "failed":
            sys.exit(1)


@cli.command("send-digest")
@click.option("--lookback-hours", type=int, default=None, help="Registration-opened lookback window")
@click.option("--threshold", type=int, default=None, help="Low-availability spots threshold")
def send_digest(lookback_hours, threshold):
    """Send availability digests to families watching changed sessions."""
    app = get_app()
    with app.app_context():
        from services.notifications import send_availability_digest

        result = send_availability_digest(
            lookback_hours=lookback_hours or app.config['NOTIFICATION_LOOKBACK_HOURS'],
            threshold=threshold or app.config['LOW_AVAILABILITY_THRESHOLD'],
        )
        _print_summary("AVAILABILITY DIGEST", result)
        for error in result.get("errors", []):
            click.secho(f"  {error}", fg="red")
        if not result.get("success"):
            sys.exit(1)


@cli.command("recompute-planner")
@click.option("--year", type=int, default=None, help="Summer year (default: current season)")
def recompute_planner(year):
    """Rebuild weekly availability aggregates for active cities."""
    app = get_app()
    with app.app_context():
        from services.planner_aggregates import recompute_all

        _print_summary("PLANNER AGGREGATES", recompute_all(year=year))


@cli.command("data-quality")
def data_quality():
    """Daily data quality checks (zero prices, sources without a scraper)."""
    app = get_app()
    with app.app_context():
        from services.automation import run_data_quality_checks

        _print_summary("DATA QUALITY", run_data_quality_checks())


@cli.command("queue-dev-requests")
@click.option("--max", "max_to_queue", type=int, default=10, help="Max requests to file")
def queue_dev_requests(max_to_queue):
    """File scraper development requests for sources that need one."""
    app = get_app()
    with app.app_context():
        from services.automation import auto_queue_scraper_development

        _print_summary("AUTO-QUEUE", auto_queue_scraper_development(max_to_queue=max_to_queue))


@cli.command("cleanup")
@click.option("--stuck-hours", type=int, default=2, help="Fail jobs stuck longer than this")
@click.option("--retention-days", type=int, default=30, help="Keep raw scrape data this long")
@click.option("--stale-days", type=int, default=7, help="Fail dev requests untouched this long")
def cleanup(stuck_hours, retention_days, stale_days):
    """Fail stuck jobs, prune old scrape data, close stale requests and past sessions."""
    app = get_app()
    with app.app_context():
        from services.automation import cleanup_stale_dev_requests
        from services.scrape_jobs import cleanup_old_scrape_data, cleanup_stuck_jobs
        from services.sessions import complete_past_sessions

        result = {
            "stuck_jobs_failed": cleanup_stuck_jobs(max_age_hours=stuck_hours),
            "old_data_deleted": cleanup_old_scrape_data(retention_days=retention_days),
            "stale_requests_failed": cleanup_stale_dev_requests(max_age_days=stale_days),
            "sessions_completed": complete_past_sessions(),
        }
        _print_summary("CLEANUP", result)


if __name__ == "__main__":
    cli()
