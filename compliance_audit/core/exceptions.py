"""
Engine-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from compliance_audit.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="TestRecord", resource_id=42)
    raise ValidationError("decision is required", details={"decision": "..."})

Failure classes:
    NotFoundError     — primary entity missing; terminal for the caller.
    PersistenceError  — commit/flush failed; rolled back, caller may retry.
    ExtractionError   — malformed scanner output; never leaves the evidence
                        extractor, which degrades to generic evidence.
"""


class NotFoundError(Exception):
    """Raised when a requested TestRecord or ReviewQueueItem does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "TestRecord").
        resource_id: The PK that was looked up.
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
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation conflicts with the current state of a resource.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field whose current value blocks the operation.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} has {field}={value!r}"
        super().__init__(msg)


class ReviewAlreadyCompletedError(ConflictError):
    """Raised when a completed review queue item is touched again."""

    def __init__(self, item_id: int) -> None:
        self.item_id = item_id
        super().__init__("ReviewQueueItem", "review_status", "completed")
        self.args = (f"ReviewQueueItem id={item_id} is already completed",)


class PersistenceError(Exception):
    """Raised when the transaction could not be committed.

    The session has already been rolled back when this is raised; nothing
    from the failed operation is persisted.  Maps to HTTP 503.
    """

    def __init__(self, message: str, original: Exception | None = None) -> None:
        self.original = original
        super().__init__(message)


class ExtractionError(Exception):
    """Raised inside an evidence extractor when scanner output can't be parsed."""

    def __init__(self, tool_name: str | None, reason: str) -> None:
        self.tool_name = tool_name
        self.reason = reason
        super().__init__(f"Cannot extract evidence from {tool_name or 'unknown tool'}: {reason}")
