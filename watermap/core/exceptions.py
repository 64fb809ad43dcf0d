"""
Catalog-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from watermap.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="WaterObject", resource_id=42)
    raise ValidationError("Invalid geometry", errors=["..."])

HTTP mapping (see watermap.blueprints.errors):
    ValidationError        → 400
    AuthorizationError     → 403
    NotFoundError          → 404
    InvalidTransitionError → 409
    PersistenceError       → 500
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "WaterObject", "User").
        resource_id: The key that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails validation.

    Carries the complete list of problems found in one pass, so a caller can
    fix a submission in a single round trip.

    Args:
        message: Summary of what failed.
        errors: Every individual problem, in the order found.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, errors: list[str] | None = None,
                 details: dict | None = None) -> None:
        self.errors = list(errors or [])
        self.details = details or {}
        super().__init__(message)


class MissingFieldError(ValidationError):
    """One or more required fields are absent."""


class InvalidGeometryError(ValidationError):
    """Submitted GeoJSON failed structural, type or region checks."""


class MissingReasonError(ValidationError):
    """A rejection was attempted without a reason."""

    def __init__(self) -> None:
        super().__init__("Rejection reason is required", errors=["reason is required"])


class AuthorizationError(Exception):
    """Raised when the actor's role or ownership does not permit the action."""

    def __init__(self, actor_id: int | None, action: str, reason: str | None = None) -> None:
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        msg = f"User {actor_id} is not allowed to '{action}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class InvalidTransitionError(Exception):
    """Raised when the current status does not allow the requested action."""

    def __init__(self, object_id: int | None, action: str, current: str | None,
                 reason: str | None = None) -> None:
        self.object_id = object_id
        self.action = action
        self.current_status = current
        self.reason = reason
        msg = f"Cannot '{action}' water object {object_id} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class CannotDeletePublishedError(InvalidTransitionError):
    """Published versions are never deleted."""

    def __init__(self, object_id: int) -> None:
        super().__init__(object_id, "delete", "published", "Cannot delete published objects")


class ConcurrentUpdateError(InvalidTransitionError):
    """The row changed underneath the caller, or a publish race was lost."""

    def __init__(self, object_id: int | None, action: str, reason: str | None = None) -> None:
        super().__init__(object_id, action, None,
                         reason or "Object was modified concurrently; reload and retry")


class PersistenceError(Exception):
    """Underlying store failure.  Opaque to API callers; the unit was rolled back."""

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(f"Persistence failure during '{action}'")
