"""
Authentication Routes - JWT-based family authentication

Includes:
- Email/password registration and login
- Current family profile and children
"""
from flask import Blueprint, jsonify

from models import Child, Family
from models.database import db
from schemas.requests import ChildParams, LoginParams, RegisterParams, parse_payload
from services.errors import AuthenticationError, ConflictError
from utils.principal import current_principal, generate_token, require_family

auth_bp = Blueprint('auth', __name__)


@auth_bp.route("/register", methods=["POST"])
def register():
    """Register a new family account"""
    params = parse_payload(RegisterParams)

    if Family.query.filter_by(email=params.email).first():
        raise ConflictError("A family with this email already exists", code="EMAIL_TAKEN")

    family = Family(
        email=params.email,
        display_name=params.display_name,
        city_id=params.city_id,
        tier='free',
    )
    family.set_password(params.password)
    db.session.add(family)
    db.session.commit()

    return jsonify({
        "message": "Family registered successfully",
        "family": family.to_dict(),
        "token": generate_token(family.id, family.email),
    }), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    """Login and return a JWT"""
    params = parse_payload(LoginParams)

    family = Family.query.filter_by(email=params.email).first()
    if not family or not family.check_password(params.password):
        raise AuthenticationError("Invalid email or password", code="INVALID_CREDENTIALS")

    return jsonify({
        "message": "Login successful",
        "family": family.to_dict(),
        "token": generate_token(family.id, family.email),
    })


@auth_bp.route("/me", methods=["GET"])
@require_family
def me():
    family = db.session.get(Family, current_principal().family_id)
    if family is None:
        raise AuthenticationError("Family account no longer exists")
    return jsonify({
        "family": family.to_dict(),
        "children": [child.to_dict() for child in family.children],
        "is_admin": current_principal().is_admin,
    })


@auth_bp.route("/children", methods=["POST"])
@require_family
def add_child():
    params = parse_payload(ChildParams)
    child = Child(
        family_id=current_principal().family_id,
        first_name=params.first_name,
        birthdate=params.birthdate,
        current_grade=params.current_grade,
    )
    db.session.add(child)
    db.session.commit()
    return jsonify({"child": child.to_dict()}), 201
