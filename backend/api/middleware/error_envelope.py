"""
Error envelope middleware - Standardize all error responses.

Provides consistent error response format:
{
    "error": {
        "code": "NOT_FOUND",
        "message": "The requested resource was not found",
        "requestId": "uuid"
    }
}

Domain errors (services.errors.PipelineError) carry their own code and
HTTP status; request payloads rejected by pydantic become
VALIDATION_ERROR / 400.
"""

import logging
from flask import Flask, jsonify, g
from pydantic import ValidationError as PydanticValidationError
from werkzeug.exceptions import HTTPException

from services.errors import PipelineError


logger = logging.getLogger('api.middleware.error')


def make_error_response(code: str, message: str, status_code: int, field: str = None, details=None):
    """
    Create a standardized error response.

    Returns:
        Tuple of (response, status_code)
    """
    request_id = getattr(g, 'request_id', None)

    error = {
        "error": {
            "code": code,
            "message": message,
            "requestId": request_id,
        }
    }
    if field:
        error["error"]["field"] = field
    if details:
        error["error"]["details"] = details

    response = jsonify(error)
    if request_id:
        response.headers['X-Request-ID'] = request_id
    return response, status_code


def setup_error_handlers(app: Flask) -> None:
    """
    Set up standardized error handlers on Flask app.

    Handles:
    - Domain errors raised by services
    - Request payload validation errors
    - HTTP exceptions (400, 404, 405, ...)
    - Unhandled Python exceptions
    """

    @app.errorhandler(PipelineError)
    def handle_pipeline_error(error):
        if error.status_code >= 500:
            logger.error(f"{error.code}: {error.message}")
        return make_error_response(error.code, error.message, error.status_code, field=error.field)

    @app.errorhandler(PydanticValidationError)
    def handle_payload_error(error):
        first = error.errors()[0] if error.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        return make_error_response(
            "VALIDATION_ERROR",
            first.get("msg", "Invalid request payload"),
            400,
            field=field,
        )

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        """Handle Flask/Werkzeug HTTP exceptions."""
        # "Not Found" -> "NOT_FOUND"
        code = error.name.upper().replace(' ', '_')
        return make_error_response(code, error.description, error.code)

    @app.errorhandler(Exception)
    def handle_generic_error(error):
        """Handle unhandled Python exceptions."""
        request_id = getattr(g, 'request_id', None)

        logger.exception(
            f"Unhandled error: {error}",
            extra={
                "event": "unhandled_error",
                "request_id": request_id,
                "error_type": type(error).__name__,
            }
        )
        return make_error_response("INTERNAL_ERROR", "An unexpected error occurred", 500)
