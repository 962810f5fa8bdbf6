"""Scraper utility functions."""

from .hashing import compute_json_hash, compute_page_hash
from .similarity import natural_key, normalize_name, similarity
from .diff import (
    DiffStatus,
    FieldChange,
    SessionChange,
    SessionDiff,
    DiffReport,
    compute_session_diff,
    missing_session_diff,
)

__all__ = [
    "compute_json_hash",
    "compute_page_hash",
    "natural_key",
    "normalize_name",
    "similarity",
    "DiffStatus",
    "FieldChange",
    "SessionChange",
    "SessionDiff",
    "DiffReport",
    "compute_session_diff",
    "missing_session_diff",
]
