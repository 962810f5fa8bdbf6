"""
Admin Scraping Routes - source registry, jobs, alerts, review queues,
development requests and discovery.

All endpoints require an admin principal. The acting admin's email is
recorded in the audit columns (reviewed_by, acknowledged_by, ...).
"""
from flask import Blueprint, jsonify, request

from schemas.requests import (
    DevRequestParams,
    DevRequestSubmitParams,
    DevRequestTestParams,
    DiscoveryReviewParams,
    DiscoverySearchParams,
    FeedbackParams,
    PendingReviewParams,
    ReasonParams,
    SourceConfigParams,
    SourceCreateParams,
    SourceDeactivateParams,
    SourceUrlParams,
    parse_payload,
)
from scrapers.models import PendingSession
from models.database import db
from services import automation, dev_requests, discovery, scheduler, scrape_jobs, sources
from services.errors import NotFoundError
from services.import_service import list_pending_sessions, review_pending_session
from services.source_health import acknowledge_alert, list_alerts
from utils.principal import current_principal, require_admin

admin_scraping_bp = Blueprint('admin_scraping', __name__)


@admin_scraping_bp.before_request
@require_admin
def _admin_only():
    return None


def _arg_int(name):
    return request.args.get(name, type=int)


def _arg_bool(name):
    value = request.args.get(name)
    if value is None:
        return None
    return value.lower() in ('1', 'true', 'yes')


# =============================================================================
# Sources
# =============================================================================

@admin_scraping_bp.route("/sources", methods=["GET"])
def list_sources():
    items = sources.list_sources(
        city_id=_arg_int('city_id'),
        active=_arg_bool('active'),
        needs_attention=bool(_arg_bool('needs_attention')),
    )
    return jsonify({"sources": [s.to_dict() for s in items], "count": len(items)})


@admin_scraping_bp.route("/sources", methods=["POST"])
def create_source():
    params = parse_payload(SourceCreateParams)
    source = sources.create_source(
        name=params.name,
        url=params.url,
        city_id=params.city_id,
        organization_id=params.organization_id,
        scraper_module=params.scraper_module,
        scraper_config=params.scraper_config,
        scrape_frequency_hours=params.scrape_frequency_hours,
        additional_urls=params.additional_urls,
        activate=params.activate,
    )
    return jsonify({"source": source.to_dict()}), 201


@admin_scraping_bp.route("/sources/<int:source_id>", methods=["GET"])
def get_source(source_id):
    source = sources.get_source(source_id)
    return jsonify({
        "source": source.to_dict(),
        "health": source.health_dict(),
        "recent_jobs": [j.to_dict() for j in scrape_jobs.list_jobs(source_id=source_id, limit=10)],
    })


@admin_scraping_bp.route("/sources/<int:source_id>/activate", methods=["POST"])
def activate_source(source_id):
    source = sources.activate_source(sources.get_source(source_id))
    return jsonify({"source": source.to_dict()})


@admin_scraping_bp.route("/sources/<int:source_id>/deactivate", methods=["POST"])
def deactivate_source(source_id):
    params = parse_payload(SourceDeactivateParams)
    source = sources.deactivate_source(sources.get_source(source_id), params.reason, current_principal().actor)
    return jsonify({"source": source.to_dict()})


@admin_scraping_bp.route("/sources/<int:source_id>/config", methods=["POST"])
def update_config(source_id):
    params = parse_payload(SourceConfigParams)
    source = sources.get_source(source_id)
    version = sources.update_scraper_config(
        source,
        scraper_module=params.scraper_module,
        scraper_config=params.scraper_config,
        change_reason=params.change_reason,
        created_by=current_principal().actor,
    )
    return jsonify({"source": source.to_dict(), "version": version.to_dict()})


@admin_scraping_bp.route("/sources/<int:source_id>/rescan", methods=["POST"])
def flag_rescan(source_id):
    params = parse_payload(ReasonParams)
    source = sources.flag_for_rescan(sources.get_source(source_id), params.reason)
    return jsonify({"source": source.to_dict()})


@admin_scraping_bp.route("/sources/<int:source_id>/urls", methods=["POST"])
def add_url(source_id):
    params = parse_payload(SourceUrlParams)
    source = sources.add_additional_url(sources.get_source(source_id), params.url)
    return jsonify({"source": source.to_dict()})


@admin_scraping_bp.route("/sources/<int:source_id>/urls", methods=["DELETE"])
def remove_url(source_id):
    params = parse_payload(SourceUrlParams)
    source = sources.remove_additional_url(sources.get_source(source_id), params.url)
    return jsonify({"source": source.to_dict()})


@admin_scraping_bp.route("/sources/<int:source_id>/resolve-url", methods=["POST"])
def resolve_url(source_id):
    result = discovery.resolve_source_url(sources.get_source(source_id))
    return jsonify(result)


# =============================================================================
# Jobs
# =============================================================================

@admin_scraping_bp.route("/jobs", methods=["GET"])
def list_jobs():
    jobs = scrape_jobs.list_jobs(
        source_id=_arg_int('source_id'),
        status=request.args.get('status'),
        limit=_arg_int('limit') or 50,
    )
    return jsonify({"jobs": [j.to_dict() for j in jobs]})


@admin_scraping_bp.route("/sources/<int:source_id>/jobs", methods=["POST"])
def create_job(source_id):
    job = scrape_jobs.create_scrape_job(source_id, triggered_by=current_principal().actor, commit=False)
    db.session.flush()
    scheduler.schedule_task("run_scrape_job", {"job_id": job.id}, dedupe_key=f"scrape_job:{job.id}", commit=False)
    db.session.commit()
    return jsonify({"job": job.to_dict()}), 201


@admin_scraping_bp.route("/jobs/<int:job_id>", methods=["GET"])
def get_job(job_id):
    return jsonify({"job": scrape_jobs.get_job(job_id).to_dict()})


# =============================================================================
# Alerts
# =============================================================================

@admin_scraping_bp.route("/alerts", methods=["GET"])
def get_alerts():
    include_acknowledged = bool(_arg_bool('include_acknowledged'))
    alerts = list_alerts(unacknowledged_only=not include_acknowledged, source_id=_arg_int('source_id'))
    return jsonify({"alerts": [a.to_dict() for a in alerts]})


@admin_scraping_bp.route("/alerts/<int:alert_id>/acknowledge", methods=["POST"])
def ack_alert(alert_id):
    alert = acknowledge_alert(alert_id, current_principal().actor)
    return jsonify({"alert": alert.to_dict()})


# =============================================================================
# Pending sessions
# =============================================================================

@admin_scraping_bp.route("/pending", methods=["GET"])
def get_pending():
    pending = list_pending_sessions(
        status=request.args.get('status', 'pending_review'),
        source_id=_arg_int('source_id'),
    )
    return jsonify({"pending": [p.to_dict() for p in pending]})


@admin_scraping_bp.route("/pending/<int:pending_id>/review", methods=["POST"])
def review_pending(pending_id):
    params = parse_payload(PendingReviewParams)
    pending = db.session.get(PendingSession, pending_id)
    if pending is None:
        raise NotFoundError(f"Pending session {pending_id} not found")
    fixed_data = params.fixed_data.to_record() if params.fixed_data else None
    pending = review_pending_session(pending, params.status, current_principal().actor, fixed_data=fixed_data)
    return jsonify({"pending": pending.to_dict()})


# =============================================================================
# Development requests
# =============================================================================

@admin_scraping_bp.route("/dev-requests", methods=["GET"])
def get_dev_requests():
    items = dev_requests.list_requests(status=request.args.get('status'))
    return jsonify({"requests": [r.to_dict() for r in items]})


@admin_scraping_bp.route("/dev-requests", methods=["POST"])
def create_dev_request():
    params = parse_payload(DevRequestParams)
    item = dev_requests.request_scraper_development(
        source_name=params.source_name,
        source_url=params.source_url,
        city_id=params.city_id,
        source_id=params.source_id,
        notes=params.notes,
        requested_by=current_principal().actor,
    )
    return jsonify({"request": item.to_dict()}), 201


@admin_scraping_bp.route("/dev-requests/<int:request_id>/claim", methods=["POST"])
def claim_dev_request(request_id):
    item = dev_requests.claim_request(dev_requests.get_request(request_id), current_principal().actor)
    return jsonify({"request": item.to_dict()})


@admin_scraping_bp.route("/dev-requests/<int:request_id>/submit", methods=["POST"])
def submit_dev_request(request_id):
    params = parse_payload(DevRequestSubmitParams)
    item = dev_requests.submit_for_testing(
        dev_requests.get_request(request_id),
        scraper_module=params.scraper_module,
        scraper_config=params.scraper_config,
    )
    return jsonify({"request": item.to_dict()})


@admin_scraping_bp.route("/dev-requests/<int:request_id>/test", methods=["POST"])
def test_dev_request(request_id):
    params = parse_payload(DevRequestTestParams)
    item = dev_requests.run_request_test(request_id, auto_approve=params.auto_approve)
    return jsonify({"request": item.to_dict()})


@admin_scraping_bp.route("/dev-requests/<int:request_id>/feedback", methods=["POST"])
def feedback_dev_request(request_id):
    params = parse_payload(FeedbackParams)
    item = dev_requests.submit_feedback(
        dev_requests.get_request(request_id), params.feedback, current_principal().actor,
    )
    return jsonify({"request": item.to_dict()})


@admin_scraping_bp.route("/dev-requests/<int:request_id>/approve", methods=["POST"])
def approve_dev_request(request_id):
    item = dev_requests.approve_request(dev_requests.get_request(request_id), current_principal().actor)
    return jsonify({"request": item.to_dict()})


@admin_scraping_bp.route("/dev-requests/<int:request_id>/fail", methods=["POST"])
def fail_dev_request(request_id):
    params = parse_payload(ReasonParams)
    item = dev_requests.fail_request(dev_requests.get_request(request_id), params.reason)
    return jsonify({"request": item.to_dict()})


# =============================================================================
# Automation
# =============================================================================

@admin_scraping_bp.route("/automation/metrics", methods=["GET"])
def automation_metrics():
    return jsonify(automation.get_automation_metrics())


@admin_scraping_bp.route("/automation/queue", methods=["POST"])
def automation_queue():
    return jsonify(automation.auto_queue_scraper_development())


@admin_scraping_bp.route("/tasks", methods=["GET"])
def get_tasks():
    tasks = scheduler.list_tasks(status=request.args.get('status'))
    return jsonify({"tasks": [t.to_dict() for t in tasks]})


# =============================================================================
# Discovery
# =============================================================================

@admin_scraping_bp.route("/discovered", methods=["GET"])
def get_discovered():
    items = discovery.list_discovered_sources(status=request.args.get('status'), city_id=_arg_int('city_id'))
    return jsonify({"discovered": [d.to_dict() for d in items]})


@admin_scraping_bp.route("/discovered/search-results", methods=["POST"])
def submit_search_results():
    params = parse_payload(DiscoverySearchParams)
    return jsonify(discovery.process_search_results(params.city_id, params.query, params.results)), 201


@admin_scraping_bp.route("/discovered/<int:discovered_id>/review", methods=["POST"])
def review_discovered(discovered_id):
    params = parse_payload(DiscoveryReviewParams)
    discovered = discovery.review_discovered_source(
        discovery.get_discovered_source(discovered_id), params.status, current_principal().actor,
    )
    payload = {"discovered": discovered.to_dict()}
    if params.promote and params.status == "approved":
        source = discovery.promote_discovered_source(discovered, requested_by=current_principal().actor)
        payload["source"] = source.to_dict()
        payload["discovered"] = discovered.to_dict()
    return jsonify(payload)
