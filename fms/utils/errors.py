"""Standardised API error responses.

Usage
-----
    from fms.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Project not found")
    return api_error(E.VALIDATION_REQUIRED, "template_id is required")
    return api_error(E.CONFLICT_VERSION, "Project changed", details={"expected": 3})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Malformed input – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business-rule violation – HTTP 422
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_VERSION = "ERR_CONFLICT_VERSION"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_VERSION: 409,
    E.FORBIDDEN: 403,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation naming the failing task / objection / field.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


# ── Service exception → response mapping ─────────────────────────────
def register_error_handlers(bp) -> None:
    """Attach handlers for the fms.core.exceptions types to a blueprint.

    Every blueprint calls this once so a service exception always yields
    the same status code and body shape, whichever route raised it.
    """
    import logging

    from fms.core.exceptions import (
        AuthorizationError,
        ConcurrencyConflict,
        ConflictError,
        IllegalStateError,
        NotFoundError,
        ValidationError,
    )

    from fms.models import db

    log = logging.getLogger(bp.import_name)

    @bp.after_request
    def _discard_uncommitted(response):
        # A rejected operation must leave nothing pending in the session.
        if response.status_code >= 400:
            db.session.rollback()
        return response

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(e):
        return api_error(E.NOT_FOUND, str(e))

    @bp.errorhandler(ValidationError)
    def _handle_validation(e):
        return api_error(E.VALIDATION_CONSTRAINT, str(e), details=e.details)

    @bp.errorhandler(IllegalStateError)
    def _handle_illegal_state(e):
        return api_error(E.CONFLICT_STATE, str(e), details=e.details)

    @bp.errorhandler(ConcurrencyConflict)
    def _handle_concurrency(e):
        log.info("Concurrency conflict: %s", e)
        return api_error(
            E.CONFLICT_VERSION, str(e),
            details={"expected_version": e.expected, "current_version": e.actual},
        )

    @bp.errorhandler(ConflictError)
    def _handle_conflict(e):
        return api_error(E.CONFLICT_DUPLICATE, str(e), details={"field": e.field})

    @bp.errorhandler(AuthorizationError)
    def _handle_forbidden(e):
        return api_error(E.FORBIDDEN, str(e) or "Not authorized")
