"""
Engine-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.  No service returns an
HTTP response or imports Flask request state.

Usage:
    from fms.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id=42)
    raise ValidationError("remarks are required", details={"remarks": "required"})
"""


class NotFoundError(Exception):
    """Raised when a project, task, objection or template does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Project", "Task").
        resource_id: The key that was looked up.
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
    """Raised when well-formed input violates a business rule.

    Examples: a step without a resolvable assignee, missing remarks,
    a requested date before the task anchor, an unknown offset unit.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class IllegalStateError(Exception):
    """Raised when the target entity is in a state that forbids the operation.

    Completing an on-hold or terminated task, responding to an objection that
    is no longer pending, supplying a date to a task that is not awaiting one.

    Maps to HTTP 409.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConcurrencyConflict(Exception):
    """Raised when a project changed between load and write.

    The caller must reload and retry.  Maps to HTTP 409.

    Args:
        resource: Entity name, normally "Project".
        resource_id: Primary key of the contested row.
        expected: Version the caller based its change on.
        actual: Version currently persisted (None if unknown).
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | None = None,
        expected: int | None = None,
        actual: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected = expected
        self.actual = actual
        msg = f"{resource} id={resource_id} was modified concurrently"
        if expected is not None:
            msg += f" (expected version {expected}, found {actual})"
        super().__init__(msg)


class AuthorizationError(Exception):
    """Raised when the acting user may not perform the operation.

    Maps to HTTP 403.
    """
