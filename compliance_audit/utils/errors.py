"""JSON error bodies for the review workflow API.

Every error response has the shape ``{"error", "code", "details"?}`` where
``code`` is one of the ``E`` constants below.

    return api_error(E.VALIDATION_REQUIRED, "raw_result is required")
    return api_error(E.REVIEW_COMPLETED, str(exc), details={"review_queue_id": 7})
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes emitted by the audit trail and review queue endpoints."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"   # missing body field
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"     # bad decision / filter
    NOT_FOUND = "ERR_NOT_FOUND"                       # record or queue item
    CONFLICT_STATE = "ERR_CONFLICT_STATE"             # illegal queue transition
    REVIEW_COMPLETED = "ERR_REVIEW_COMPLETED"         # item already closed
    DATABASE = "ERR_DATABASE"                         # rolled-back commit


_STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.REVIEW_COMPLETED: 409,
    E.DATABASE: 503,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for *code*; *status* overrides the default."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)
