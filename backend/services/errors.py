"""
Domain exceptions raised by services and rendered by the error envelope.

Each exception carries a stable error code and the HTTP status the API
layer maps it to. Scrape/network failures are NOT raised through these;
they are recorded on the job and the source health instead.
"""


class PipelineError(Exception):
    """Base class for expected, caller-visible failures."""

    code = "BAD_REQUEST"
    status_code = 400

    def __init__(self, message: str, code: str = None, field: str = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.field = field

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.field:
            payload["field"] = self.field
        return payload


class ValidationError(PipelineError):
    """Malformed input to an operation."""

    code = "VALIDATION_ERROR"
    status_code = 400


class AuthenticationError(PipelineError):
    """No valid bearer token on the request."""

    code = "AUTH_REQUIRED"
    status_code = 401


class AuthorizationError(PipelineError):
    """Acting principal does not own or may not touch the entity."""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(PipelineError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(PipelineError):
    """Operation conflicts with current state (duplicate, already done)."""

    code = "CONFLICT"
    status_code = 409


class InvalidTransitionError(ConflictError):
    """Requested status change is not an edge of the state machine."""

    code = "INVALID_TRANSITION"

    def __init__(self, entity: str, current: str, requested: str):
        super().__init__(f"Cannot transition {entity} from {current} to {requested}")
        self.current = current
        self.requested = requested


class CapacityError(ConflictError):
    """Session cannot take another registration."""

    code = "SESSION_FULL"


class PremiumRequiredError(AuthorizationError):
    code = "PREMIUM_REQUIRED"
