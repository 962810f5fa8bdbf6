"""
Request Principal - who is acting on this request.

The principal is resolved once per request from the JWT bearer token and
the ADMIN_EMAILS allowlist, stored on g.principal, and passed explicitly
into services that need ownership or admin checks. Services never read
the allowlist or the request themselves.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import wraps
from typing import Optional

import jwt
from flask import current_app, g, request

from services.errors import AuthenticationError, AuthorizationError


@dataclass(frozen=True)
class Principal:
    family_id: Optional[int]
    email: Optional[str]
    is_admin: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.family_id is not None

    def owns(self, family_id: int) -> bool:
        return self.family_id is not None and self.family_id == family_id

    @property
    def actor(self) -> str:
        """Label stored in audit columns (reviewed_by, acknowledged_by, ...)."""
        return self.email or "anonymous"


ANONYMOUS = Principal(family_id=None, email=None, is_admin=False)


def generate_token(family_id: int, email: str) -> str:
    """Generate a JWT for a family account."""
    config = current_app.config
    now = datetime.utcnow()
    payload = {
        'family_id': family_id,
        'email': email,
        'exp': now + timedelta(hours=config['JWT_EXPIRATION_HOURS']),
        'iat': now,
    }
    return jwt.encode(payload, config['JWT_SECRET'], algorithm=config['JWT_ALGORITHM'])


def verify_token(token: str) -> Optional[dict]:
    """Decode a JWT; None when expired or invalid."""
    config = current_app.config
    try:
        return jwt.decode(token, config['JWT_SECRET'], algorithms=[config['JWT_ALGORITHM']])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def principal_from_claims(claims: Optional[dict], admin_emails) -> Principal:
    if not claims or not claims.get('family_id'):
        return ANONYMOUS
    email = (claims.get('email') or '').strip().lower() or None
    return Principal(
        family_id=claims['family_id'],
        email=email,
        is_admin=bool(email and email in admin_emails),
    )


def resolve_principal() -> Principal:
    """Resolve the bearer token on the current request into g.principal."""
    auth_header = request.headers.get('Authorization', '')
    claims = None
    if auth_header.startswith('Bearer '):
        claims = verify_token(auth_header.split(' ', 1)[1])
    g.principal = principal_from_claims(claims, current_app.config.get('ADMIN_EMAILS', set()))
    return g.principal


def load_principal() -> None:
    """before_request hook. Must return None or Flask treats it as the response."""
    resolve_principal()


def current_principal() -> Principal:
    return getattr(g, 'principal', None) or ANONYMOUS


def require_family(f):
    """Decorator: request must carry a valid family token (401 otherwise)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_principal().is_authenticated:
            raise AuthenticationError("Authentication required")
        return f(*args, **kwargs)
    return decorated_function


def require_admin(f):
    """Decorator: principal must be on the admin allowlist (403 otherwise)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        principal = current_principal()
        if not principal.is_authenticated:
            raise AuthenticationError("Authentication required")
        if not principal.is_admin:
            raise AuthorizationError("Admin access required")
        return f(*args, **kwargs)
    return decorated_function
