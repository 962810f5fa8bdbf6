"""
Declarative scraper config, stored as JSON on ScrapeSource.scraper_config.

Example:
    {
        "container": "div.camp-session",
        "fields": {
            "name": "h3.title",
            "date_raw": ".dates",
            "price_raw": {"selector": ".price"},
            "registration_url": {"selector": "a.register", "attr": "href"}
        },
        "constants": {"location": "Main Campus"}
    }

Each matched container element yields one raw session record. A string
field value is shorthand for {"selector": value}.
"""

import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from schemas.base import BaseParamsModel
from constants import SESSION_FIELDS


class FieldSelector(BaseModel):
    """CSS selector for one record field, relative to the container."""
    model_config = ConfigDict(frozen=True, extra='forbid')

    selector: str = Field(..., min_length=1)
    attr: Optional[str] = Field(None, description="Attribute to read instead of element text")
    pattern: Optional[str] = Field(None, description="Regex; first group (or whole match) is kept")

    @field_validator('pattern')
    @classmethod
    def pattern_compiles(cls, v):
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"invalid pattern: {e}")
        return v


class DeclarativeConfig(BaseParamsModel):
    """Selector-based extraction config for one source."""

    container: str = Field(..., min_length=1, description="CSS selector matching one element per session")
    selectors: Dict[str, FieldSelector] = Field(..., alias='fields')
    constants: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('selectors', mode='before')
    @classmethod
    def expand_shorthand(cls, v):
        if isinstance(v, dict):
            return {
                key: {'selector': entry} if isinstance(entry, str) else entry
                for key, entry in v.items()
            }
        return v

    @field_validator('selectors', 'constants')
    @classmethod
    def known_fields_only(cls, v):
        unknown = sorted(set(v) - SESSION_FIELDS)
        if unknown:
            raise ValueError(f"unknown session fields: {', '.join(unknown)}")
        return v

    @model_validator(mode='after')
    def name_is_extracted(self):
        if 'name' not in self.selectors and 'name' not in self.constants:
            raise ValueError("config must extract a 'name' field")
        return self

    def to_json(self) -> Dict[str, Any]:
        """Storage form (uses the `fields` key)."""
        return self.model_dump(by_alias=True, exclude_none=True)
