"""
Consistent JSON Hashing for Raw Scrape Payloads

Deterministic hashes let the pipeline tell whether a source returned the
same payload as last run (raw data dedup) and give pages a stable
fingerprint in job logs.
"""
import hashlib
import json
from datetime import date, datetime
from typing import Any


def normalize_for_hash(data: Any) -> Any:
    """
    Normalize a payload so logically equal records hash equally.

    - dict keys sorted, None values dropped
    - dates rendered as ISO strings
    - floats rounded, string whitespace collapsed
    """
    if isinstance(data, dict):
        return {
            k: normalize_for_hash(v)
            for k, v in sorted(data.items())
            if v is not None
        }
    if isinstance(data, (list, tuple)):
        return [normalize_for_hash(item) for item in data]
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    if isinstance(data, float):
        return round(data, 6)
    if isinstance(data, str):
        return " ".join(data.split())
    return data


def compute_json_hash(data: Any) -> str:
    """SHA256 hex digest of the normalized payload."""
    normalized = normalize_for_hash(data)
    payload = json.dumps(normalized, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def compute_page_hash(html: str) -> str:
    """SHA256 hex digest of a page with whitespace collapsed."""
    normalized = " ".join((html or "").split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()
