"""
Review Queue Service — dashboard reads and non-closing transitions.

Transitions handled here (none touch the test record or the audit log):
    assign   pending | assigned | needs_clarification → assigned
    start    assigned                                → in_review
    clarify  assigned | in_review                    → needs_clarification

Closing an item is a review decision and belongs to
``audit_trail_service.process_manual_review``.

SLA escalation:
    escalate_overdue_reviews() raises every open, overdue item to
    ``critical``.  ``due_date`` stays as computed at creation.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError

from compliance_audit.core.exceptions import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    ReviewAlreadyCompletedError,
    ValidationError,
)
from compliance_audit.models import db
from compliance_audit.models.review_queue import (
    OPEN_REVIEW_STATUSES,
    REVIEW_PRIORITIES,
    REVIEW_STATUSES,
    REVIEW_TRANSITIONS,
    ReviewQueueItem,
)

logger = logging.getLogger(__name__)

_PRIORITY_ORDER = case(
    {p: i for i, p in enumerate(REVIEW_PRIORITIES)},
    value=ReviewQueueItem.priority,
    else_=len(REVIEW_PRIORITIES),
)

QUEUE_FILTERS = ("review_status", "priority", "wcag_criterion", "assigned_reviewer")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _commit(action: str, item_id: int | None = None) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("%s failed, transaction rolled back: %s", action, exc,
                     extra={"review_queue_id": item_id})
        raise PersistenceError(f"{action} failed", original=exc) from exc


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════

def get_review_queue_item(item_id: int) -> ReviewQueueItem:
    item = db.session.get(ReviewQueueItem, item_id)
    if item is None:
        raise NotFoundError(resource="ReviewQueueItem", resource_id=item_id)
    return item


def lock_open_review_item(item_id: int) -> ReviewQueueItem:
    """Load an open item under a row lock held until the caller commits.

    Concurrent closers queue behind the lock and then see ``completed``.
    On failure the transaction is rolled back so the lock is released.
    """
    stmt = (
        select(ReviewQueueItem)
        .where(ReviewQueueItem.id == item_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    item = db.session.execute(stmt).scalars().first()
    if item is None:
        db.session.rollback()
        raise NotFoundError(resource="ReviewQueueItem", resource_id=item_id)
    if item.review_status == "completed":
        db.session.rollback()
        raise ReviewAlreadyCompletedError(item_id)
    return item


def list_review_queue(filters: dict | None = None, *, now: datetime | None = None) -> list[dict]:
    """Open review items, most urgent first.

    Ordered critical → high → medium → low, then by due date.  Passing an
    explicit ``review_status`` (``completed`` included) replaces the
    open-status default.
    """
    filters = {k: v for k, v in (filters or {}).items() if k in QUEUE_FILTERS and v}
    now = now or _utcnow()

    status = filters.get("review_status")
    if status is not None and status not in REVIEW_STATUSES:
        raise ValidationError(
            f"Unknown review_status '{status}'",
            details={"review_status": f"must be one of: {', '.join(sorted(REVIEW_STATUSES))}"},
        )
    priority = filters.get("priority")
    if priority is not None and priority not in REVIEW_PRIORITIES:
        raise ValidationError(
            f"Unknown priority '{priority}'",
            details={"priority": f"must be one of: {', '.join(REVIEW_PRIORITIES)}"},
        )

    stmt = select(ReviewQueueItem)
    if status:
        stmt = stmt.where(ReviewQueueItem.review_status == status)
    else:
        stmt = stmt.where(ReviewQueueItem.review_status.in_(OPEN_REVIEW_STATUSES))
    if priority:
        stmt = stmt.where(ReviewQueueItem.priority == priority)
    if filters.get("wcag_criterion"):
        stmt = stmt.where(ReviewQueueItem.wcag_criterion == filters["wcag_criterion"])
    if filters.get("assigned_reviewer"):
        stmt = stmt.where(ReviewQueueItem.assigned_reviewer == filters["assigned_reviewer"])

    stmt = stmt.order_by(_PRIORITY_ORDER, ReviewQueueItem.due_date.asc(), ReviewQueueItem.id.asc())
    return [item.to_dict(now) for item in db.session.execute(stmt).scalars().all()]


def get_review_queue_stats(*, now: datetime | None = None) -> dict:
    """Counts for the review dashboard."""
    now = now or _utcnow()

    by_status = {s: 0 for s in sorted(REVIEW_STATUSES)}
    rows = db.session.execute(
        select(ReviewQueueItem.review_status, func.count(ReviewQueueItem.id))
        .group_by(ReviewQueueItem.review_status)
    ).all()
    for status, count in rows:
        by_status[status] = count

    open_items = db.session.execute(
        select(ReviewQueueItem).where(ReviewQueueItem.review_status.in_(OPEN_REVIEW_STATUSES))
    ).scalars().all()

    avg_minutes = db.session.execute(
        select(func.avg(ReviewQueueItem.time_to_completion))
        .where(ReviewQueueItem.review_status == "completed")
    ).scalar()

    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "open": len(open_items),
        "overdue": sum(1 for item in open_items if item.is_overdue(now)),
        "critical_open": sum(1 for item in open_items if item.priority == "critical"),
        "high_open": sum(1 for item in open_items if item.priority == "high"),
        "avg_time_to_completion_minutes": (
            round(float(avg_minutes), 2) if avg_minutes is not None else None
        ),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════

def _transition(item_id: int, action: str) -> ReviewQueueItem:
    item = lock_open_review_item(item_id)
    rule = REVIEW_TRANSITIONS[action]
    current = item.review_status
    if current not in rule["from"]:
        db.session.rollback()
        raise ConflictError("ReviewQueueItem", "review_status", current)
    item.review_status = rule["to"]
    return item


def assign_reviewer(item_id: int, reviewer_id: str) -> ReviewQueueItem:
    """Assign (or reassign) a reviewer."""
    if not reviewer_id:
        raise ValidationError("reviewer_id is required", details={"reviewer_id": "required"})
    item = _transition(item_id, "assign")
    item.assigned_reviewer = str(reviewer_id)
    _commit("Assign reviewer", item.id)
    logger.info("Review item assigned to %s", reviewer_id, extra={"review_queue_id": item.id})
    return item


def start_review(item_id: int, reviewer_id: str | None = None) -> ReviewQueueItem:
    """Mark an assigned item as being worked on by its reviewer."""
    item = _transition(item_id, "start")
    assigned = item.assigned_reviewer
    if reviewer_id and assigned and str(reviewer_id) != assigned:
        db.session.rollback()
        raise ConflictError("ReviewQueueItem", "assigned_reviewer", assigned)
    _commit("Start review", item.id)
    logger.info("Review started", extra={"review_queue_id": item.id})
    return item


def request_clarification(item_id: int, reviewer_id: str | None, notes: str) -> ReviewQueueItem:
    """Park an item until the open questions in *notes* are answered."""
    if not (notes or "").strip():
        raise ValidationError("notes are required", details={"notes": "required"})
    item = _transition(item_id, "clarify")
    item.reviewer_notes = notes.strip()
    if reviewer_id:
        item.assigned_reviewer = str(reviewer_id)
    _commit("Request clarification", item.id)
    logger.info("Clarification requested", extra={"review_queue_id": item.id})
    return item


# ═════════════════════════════════════════════════════════════════════════════
# SLA escalation
# ═════════════════════════════════════════════════════════════════════════════

def escalate_overdue_reviews(now: datetime | None = None) -> list[int]:
    """Raise open items past their due date to ``critical``.

    Returns the ids of the items escalated by this call; items already at
    ``critical`` are left alone.
    """
    now = now or _utcnow()
    candidates = db.session.execute(
        select(ReviewQueueItem)
        .where(
            ReviewQueueItem.review_status.in_(OPEN_REVIEW_STATUSES),
            ReviewQueueItem.priority != "critical",
        )
        .order_by(ReviewQueueItem.due_date.asc(), ReviewQueueItem.id.asc())
    ).scalars().all()

    escalated = []
    for item in candidates:
        if not item.is_overdue(now):
            continue
        item.priority = "critical"
        item.escalated_at = now
        escalated.append(item.id)

    if escalated:
        _commit("Escalate overdue reviews")
        logger.warning("Escalated %d overdue review item(s) to critical", len(escalated))
    return escalated
