"""
Pydantic models for request payloads.

Routes parse the JSON body with parse_payload(Model) and hand the
validated values to services. A rejected payload surfaces as a
VALIDATION_ERROR envelope (see api.middleware.error_envelope).
"""

from datetime import date
from typing import Any, Dict, List, Literal, Optional

from flask import request
from pydantic import ConfigDict, Field, field_validator

from .base import BaseParamsModel


def parse_payload(model):
    """Validate the JSON body (missing or non-object bodies count as {})."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    return model.model_validate(data)


def parse_query(model):
    return model.model_validate(request.args.to_dict())


# =============================================================================
# Auth
# =============================================================================

class RegisterParams(BaseParamsModel):
    """POST /auth/register"""
    email: str = Field(..., description="Family account email address")
    password: str = Field(..., min_length=8, description="Password (min 8 characters)")
    display_name: Optional[str] = Field(None, alias="displayName")
    city_id: Optional[int] = Field(None, alias="cityId")

    @field_validator('email')
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if '@' not in value or '.' not in value.split('@')[-1]:
            raise ValueError("Invalid email format")
        return value


class LoginParams(BaseParamsModel):
    """POST /auth/login"""
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def _lower(cls, value: str) -> str:
        return value.strip().lower()


class ChildParams(BaseParamsModel):
    """POST /auth/children"""
    first_name: str = Field(..., min_length=1, alias="firstName")
    birthdate: Optional[date] = None
    current_grade: Optional[int] = Field(None, alias="currentGrade", ge=-1, le=12)


# =============================================================================
# Sessions
# =============================================================================

class SessionListParams(BaseParamsModel):
    """GET /sessions"""
    city_id: Optional[int] = Field(None, alias="cityId")
    status: Optional[str] = None
    starts_after: Optional[date] = Field(None, alias="startsAfter")
    source_id: Optional[int] = Field(None, alias="sourceId")
    limit: int = Field(100, ge=1, le=500)
    offset: int = Field(0, ge=0)


class SessionStatusParams(BaseParamsModel):
    """POST /sessions/<id>/status"""
    status: Literal['draft', 'active', 'sold_out', 'cancelled', 'completed']


class SessionCapacityParams(BaseParamsModel):
    """POST /sessions/<id>/capacity"""
    capacity: Optional[int] = None
    enrolled_count: Optional[int] = Field(None, alias="enrolledCount")


# =============================================================================
# Registrations
# =============================================================================

class RegistrationParams(BaseParamsModel):
    """POST /registrations/{interested,register,waitlist}"""
    child_id: int = Field(..., alias="childId")
    session_id: int = Field(..., alias="sessionId")
    notes: Optional[str] = None


# =============================================================================
# Admin - scraping
# =============================================================================

class SourceCreateParams(BaseParamsModel):
    """POST /admin/scraping/sources"""
    name: str = Field(..., min_length=1)
    url: str
    city_id: int = Field(..., alias="cityId")
    organization_id: Optional[int] = Field(None, alias="organizationId")
    scraper_module: Optional[str] = Field(None, alias="scraperModule")
    scraper_config: Optional[Dict[str, Any]] = Field(None, alias="scraperConfig")
    scrape_frequency_hours: int = Field(24, alias="scrapeFrequencyHours", ge=1)
    additional_urls: List[str] = Field(default_factory=list, alias="additionalUrls")
    activate: bool = False


class SourceConfigParams(BaseParamsModel):
    """POST /admin/scraping/sources/<id>/config"""
    scraper_module: Optional[str] = Field(None, alias="scraperModule")
    scraper_config: Optional[Dict[str, Any]] = Field(None, alias="scraperConfig")
    change_reason: Optional[str] = Field(None, alias="changeReason")


class SourceDeactivateParams(BaseParamsModel):
    reason: str = Field(..., min_length=1)


class SourceUrlParams(BaseParamsModel):
    url: str


class FixedSessionData(BaseParamsModel):
    """Corrected session fields, keyed like scraped records. Unknown keys are rejected."""
    model_config = ConfigDict(extra='forbid')

    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    organization_name: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    date_raw: Optional[str] = None
    drop_off_hour: Optional[int] = Field(None, ge=0, le=23)
    drop_off_minute: Optional[int] = Field(None, ge=0, le=59)
    pick_up_hour: Optional[int] = Field(None, ge=0, le=23)
    pick_up_minute: Optional[int] = Field(None, ge=0, le=59)
    time_raw: Optional[str] = None
    price_cents: Optional[int] = Field(None, ge=0)
    price_raw: Optional[str] = None
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    min_grade: Optional[int] = None
    max_grade: Optional[int] = None
    age_grade_raw: Optional[str] = None
    location: Optional[str] = None
    registration_url: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=0)
    enrolled_count: Optional[int] = Field(None, ge=0)
    spots_left: Optional[int] = Field(None, ge=0)
    is_available: Optional[bool] = None
    source_session_id: Optional[str] = None
    image_urls: Optional[List[str]] = None

    def to_record(self) -> Dict[str, Any]:
        """Only the fields the admin sent, with dates as YYYY-MM-DD."""
        return self.model_dump(mode="json", exclude_unset=True)


class PendingReviewParams(BaseParamsModel):
    """POST /admin/scraping/pending/<id>/review"""
    status: Literal['manually_fixed', 'discarded']
    fixed_data: Optional[FixedSessionData] = Field(None, alias="fixedData")


class DevRequestParams(BaseParamsModel):
    """POST /admin/scraping/dev-requests"""
    source_name: str = Field(..., min_length=1, alias="sourceName")
    source_url: str = Field(..., alias="sourceUrl")
    city_id: int = Field(..., alias="cityId")
    source_id: Optional[int] = Field(None, alias="sourceId")
    notes: Optional[str] = None


class DevRequestSubmitParams(BaseParamsModel):
    """POST /admin/scraping/dev-requests/<id>/submit"""
    scraper_module: Optional[str] = Field(None, alias="scraperModule")
    scraper_config: Optional[Dict[str, Any]] = Field(None, alias="scraperConfig")


class DevRequestTestParams(BaseParamsModel):
    auto_approve: bool = Field(False, alias="autoApprove")


class FeedbackParams(BaseParamsModel):
    feedback: str = Field(..., min_length=1)


class ReasonParams(BaseParamsModel):
    reason: str = Field(..., min_length=1)


class DiscoveryReviewParams(BaseParamsModel):
    """POST /admin/scraping/discovered/<id>/review"""
    status: Literal['approved', 'rejected', 'duplicate']
    promote: bool = False


class DiscoverySearchParams(BaseParamsModel):
    """POST /admin/scraping/discovered/search-results"""
    city_id: int = Field(..., alias="cityId")
    query: str = Field(..., min_length=1)
    results: List[Dict[str, Any]] = Field(default_factory=list)
