"""
Session Routes - browse camp sessions; admin status and capacity changes.
"""
from flask import Blueprint, jsonify

from schemas.requests import (
    SessionCapacityParams,
    SessionListParams,
    SessionStatusParams,
    parse_payload,
    parse_query,
)
from services import sessions as session_service
from utils.principal import require_admin

sessions_bp = Blueprint('sessions', __name__)


@sessions_bp.route("", methods=["GET"])
def list_sessions():
    params = parse_query(SessionListParams)
    sessions = session_service.list_sessions(
        city_id=params.city_id,
        status=params.status,
        starts_after=params.starts_after,
        source_id=params.source_id,
        limit=params.limit,
        offset=params.offset,
    )
    return jsonify({
        "sessions": [s.to_dict() for s in sessions],
        "count": len(sessions),
        "limit": params.limit,
        "offset": params.offset,
    })


@sessions_bp.route("/<int:session_id>", methods=["GET"])
def get_session(session_id):
    return jsonify({"session": session_service.get_session(session_id).to_dict()})


@sessions_bp.route("/<int:session_id>/status", methods=["POST"])
@require_admin
def update_status(session_id):
    params = parse_payload(SessionStatusParams)
    session = session_service.get_session(session_id)
    session_service.update_session_status(session, params.status)
    return jsonify({"session": session.to_dict()})


@sessions_bp.route("/<int:session_id>/capacity", methods=["POST"])
@require_admin
def update_capacity(session_id):
    params = parse_payload(SessionCapacityParams)
    session = session_service.get_session(session_id)
    session_service.update_capacity(session, capacity=params.capacity, enrolled_count=params.enrolled_count)
    return jsonify({"session": session.to_dict()})
