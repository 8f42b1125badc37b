"""
Accessibility Compliance Audit
Review queue domain model.

Models:
    - ReviewQueueItem: a human-review task for one automated result that the
      classifier flagged.

Lifecycle:
    pending → assigned → in_review → completed
                 ↘            ↘
              needs_clarification → assigned → …

``completed`` is terminal: once closed, an item is never modified again.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from compliance_audit.models import db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Normalise a datetime to UTC-aware.

    SQLite hands back naive datetimes even for ``timezone=True`` columns.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────

REVIEW_PRIORITIES = ("critical", "high", "medium", "low")

# Review SLA per priority; due_date = created_at + SLA.
REVIEW_SLA_HOURS = {
    "critical": 4,
    "high": 12,
    "medium": 24,
    "low": 48,
}

REVIEW_STATUSES = frozenset({
    "pending", "assigned", "in_review", "needs_clarification", "completed",
})

OPEN_REVIEW_STATUSES = ("pending", "assigned", "in_review", "needs_clarification")

REVIEW_CATEGORIES = frozenset({
    "financial_data", "legal_compliance", "accessibility_critical", "standard",
})

REVIEW_DECISIONS = frozenset({"accept", "reject", "modify"})

# pending/assigned/in_review/needs_clarification moves that don't close the item
REVIEW_TRANSITIONS = {
    "assign": {"from": {"pending", "assigned", "needs_clarification"}, "to": "assigned"},
    "start": {"from": {"assigned"}, "to": "in_review"},
    "clarify": {"from": {"assigned", "in_review"}, "to": "needs_clarification"},
}


def compute_due_date(priority: str, created_at: datetime) -> datetime:
    """Return ``created_at`` plus the SLA window for *priority*.

    Unknown priorities fall back to the ``low`` window.
    """
    hours = REVIEW_SLA_HOURS.get(priority, REVIEW_SLA_HOURS["low"])
    return created_at + timedelta(hours=hours)


class ReviewQueueItem(db.Model):
    """
    One pending/active/completed human-review task.

    ``automated_evidence`` is a verbatim snapshot of the Evidence that
    triggered the review.  ``due_date`` is data for dashboards and alerting;
    nothing in the engine blocks on it.
    """

    __tablename__ = "automated_result_review_queue"
    __table_args__ = (
        db.Index("idx_review_queue_status_priority", "review_status", "priority"),
        db.Index("idx_review_queue_record_result", "test_record_id", "automated_result_id"),
        db.Index("idx_review_queue_reviewer", "assigned_reviewer"),
        db.Index("idx_review_queue_due", "due_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    test_record_id = db.Column(
        db.Integer,
        db.ForeignKey("test_records.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    automated_result_id = db.Column(db.String(64), nullable=True)

    # What the tool said
    tool_name = db.Column(db.String(50), nullable=True)
    tool_result = db.Column(db.String(10), nullable=False, comment="pass | fail")
    wcag_criterion = db.Column(db.String(20), nullable=True, index=True)
    automated_evidence = db.Column(db.JSON, nullable=False, default=dict)

    # Triage
    priority = db.Column(
        db.String(10), nullable=False, default="medium",
        comment="critical | high | medium | low",
    )
    review_category = db.Column(db.String(30), nullable=False, default="standard")
    complexity_score = db.Column(db.Float, nullable=True)
    false_positive_risk = db.Column(db.Float, nullable=True)
    tool_confidence = db.Column(db.Float, nullable=True)

    # Review progress
    review_status = db.Column(
        db.String(25), nullable=False, default="pending",
        comment="pending | assigned | in_review | needs_clarification | completed",
    )
    assigned_reviewer = db.Column(db.String(64), nullable=True)
    review_decision = db.Column(db.String(10), nullable=True, comment="accept | reject | modify")
    reviewer_notes = db.Column(db.Text, nullable=True)
    review_evidence = db.Column(db.JSON, nullable=True)

    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    escalated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    review_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    time_to_completion = db.Column(db.Float, nullable=True, comment="minutes")

    test_record = db.relationship("TestRecord")

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def is_open(self) -> bool:
        return self.review_status in OPEN_REVIEW_STATUSES

    def is_overdue(self, now: datetime | None = None) -> bool:
        if not self.is_open or self.due_date is None:
            return False
        return as_utc(self.due_date) < as_utc(now or _utcnow())

    def to_dict(self, now: datetime | None = None) -> dict:
        return {
            "id": self.id,
            "test_record_id": self.test_record_id,
            "automated_result_id": self.automated_result_id,
            "tool_name": self.tool_name,
            "tool_result": self.tool_result,
            "wcag_criterion": self.wcag_criterion,
            "automated_evidence": self.automated_evidence or {},
            "priority": self.priority,
            "review_category": self.review_category,
            "complexity_score": self.complexity_score,
            "false_positive_risk": self.false_positive_risk,
            "tool_confidence": self.tool_confidence,
            "review_status": self.review_status,
            "assigned_reviewer": self.assigned_reviewer,
            "review_decision": self.review_decision,
            "reviewer_notes": self.reviewer_notes,
            "review_evidence": self.review_evidence,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "escalated_at": self.escalated_at.isoformat() if self.escalated_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "review_completed_at": (
                self.review_completed_at.isoformat() if self.review_completed_at else None
            ),
            "time_to_completion": self.time_to_completion,
            "is_overdue": self.is_overdue(now),
        }

    def __repr__(self):
        return (
            f"<ReviewQueueItem {self.id}: record {self.test_record_id} "
            f"{self.priority} [{self.review_status}]>"
        )
