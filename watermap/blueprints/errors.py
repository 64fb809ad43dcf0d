"""
App-wide error handlers.

Services raise the exceptions in ``watermap.core.exceptions``; this module
maps them to HTTP responses once, so blueprints stay free of try/except.

    ValidationError        → 400  (MissingFieldError → ERR_VALIDATION_REQUIRED)
    AuthorizationError     → 403
    NotFoundError          → 404
    InvalidTransitionError → 409  (ConcurrentUpdateError → ERR_CONFLICT_CONCURRENT)
    PersistenceError       → 500  (opaque; already logged by the service)
"""

import logging

from flask import request

from watermap.core.exceptions import (
    AuthorizationError,
    ConcurrentUpdateError,
    InvalidTransitionError,
    MissingFieldError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from watermap.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    """Install JSON error handlers for domain exceptions and HTTP errors."""

    @app.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        code = E.VALIDATION_REQUIRED if isinstance(error, MissingFieldError) else E.VALIDATION_INVALID
        details = dict(error.details)
        if error.errors:
            details["errors"] = error.errors
        return api_error(code, str(error), details=details)

    @app.errorhandler(AuthorizationError)
    def _handle_forbidden(error: AuthorizationError):
        logger.warning("Forbidden: %s path=%s", error, request.path)
        return api_error(E.FORBIDDEN, str(error))

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @app.errorhandler(InvalidTransitionError)
    def _handle_transition(error: InvalidTransitionError):
        code = E.CONFLICT_CONCURRENT if isinstance(error, ConcurrentUpdateError) else E.CONFLICT_STATE
        return api_error(code, str(error), details={"current_status": error.current_status})

    @app.errorhandler(PersistenceError)
    def _handle_persistence(error: PersistenceError):
        return api_error(E.DATABASE, "Database error, the operation was rolled back")

    # ── HTTP errors ──────────────────────────────────────────────────────

    @app.errorhandler(404)
    def _not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(413)
    def _too_large(e):
        return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)

    @app.errorhandler(415)
    def _unsupported_media(e):
        return api_error(E.VALIDATION_INVALID, e.description or "Unsupported media type", status=415)

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.VALIDATION_INVALID, "Too many requests", status=429,
                         details={"retry_after": e.description})

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error on %s: %s", request.path, e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
