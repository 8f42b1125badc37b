"""
Accessibility Compliance Audit
Blueprint registry.

Blueprints are thin: they parse the request, call one service function and
serialise the result.  Services own validation, transactions and logging.
"""

import logging

from flask import request

from compliance_audit.core.exceptions import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    ReviewAlreadyCompletedError,
    ValidationError,
)
from compliance_audit.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    """Map service exceptions onto JSON error responses for *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(ReviewAlreadyCompletedError)
    def _handle_completed(error: ReviewAlreadyCompletedError):
        return api_error(E.REVIEW_COMPLETED, str(error), details={"review_queue_id": error.item_id})

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_STATE, str(error), details={error.field: error.value})

    @bp.errorhandler(PersistenceError)
    def _handle_persistence(error: PersistenceError):
        return api_error(E.DATABASE, "Database unavailable, retry later")

    return bp


def json_body() -> dict:
    """Request JSON as a dict; anything else counts as an empty body."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
