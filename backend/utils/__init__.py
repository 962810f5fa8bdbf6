"""
Utility modules for the backend.
"""
from .principal import (
    Principal,
    ANONYMOUS,
    current_principal,
    generate_token,
    load_principal,
    require_admin,
    require_family,
    resolve_principal,
    verify_token,
)

__all__ = [
    'Principal',
    'ANONYMOUS',
    'current_principal',
    'generate_token',
    'load_principal',
    'require_admin',
    'require_family',
    'resolve_principal',
    'verify_token',
]
