"""
Base Pydantic model for request payload schemas.

Key features:
- frozen=True: Immutable after validation (prevents downstream mutation)
- populate_by_name=True: Accept both alias and field name
- extra='ignore': Ignore undeclared fields (safe)
"""

from pydantic import BaseModel, ConfigDict


class BaseParamsModel(BaseModel):
    """
    Base model for all request schemas.

    - Frozen after creation (immutable)
    - Whitespace stripped from strings
    - Both alias and field name accepted
    - Unknown fields ignored
    """
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        populate_by_name=True,
        extra='ignore',
    )
