"""
Registration Routes - a family saves, registers, waitlists and cancels.

The premium check happens here, before the registration write, and its
answer is handed to the service as a plain bool.
"""
from flask import Blueprint, current_app, jsonify, request

from models import Family
from models.database import db
from schemas.requests import RegistrationParams, parse_payload
from services import registrations as registration_service
from services.billing import check_premium
from utils.principal import current_principal, require_family

registrations_bp = Blueprint('registrations', __name__)


@registrations_bp.route("", methods=["GET"])
@require_family
def list_registrations():
    registrations = registration_service.list_family_registrations(
        current_principal(), status=request.args.get('status'),
    )
    return jsonify({"registrations": [r.to_dict() for r in registrations]})


@registrations_bp.route("/interested", methods=["POST"])
@require_family
def mark_interested():
    params = parse_payload(RegistrationParams)
    principal = current_principal()
    family = db.session.get(Family, principal.family_id)
    is_premium = check_premium(family, api_key=current_app.config.get('STRIPE_SECRET_KEY'))

    registration = registration_service.mark_interested(
        principal, params.child_id, params.session_id, is_premium,
        free_limit=current_app.config['FREE_SAVED_CAMPS_LIMIT'],
    )
    return jsonify({"registration": registration.to_dict()}), 201


@registrations_bp.route("/register", methods=["POST"])
@require_family
def register():
    params = parse_payload(RegistrationParams)
    registration = registration_service.register(
        current_principal(), params.child_id, params.session_id, notes=params.notes,
    )
    return jsonify({"registration": registration.to_dict()}), 201


@registrations_bp.route("/waitlist", methods=["POST"])
@require_family
def join_waitlist():
    params = parse_payload(RegistrationParams)
    registration = registration_service.join_waitlist(current_principal(), params.child_id, params.session_id)
    return jsonify({"registration": registration.to_dict()}), 201


@registrations_bp.route("/<int:registration_id>/cancel", methods=["POST"])
@require_family
def cancel(registration_id):
    registration = registration_service.cancel_registration(current_principal(), registration_id)
    return jsonify({"registration": registration.to_dict()})
