"""
Accessibility Compliance Audit
Audit domain model.

Models:
    - AuditLogEntry: immutable, append-only history of test record status
      transitions.

Audit context (who changed it, which tool, why) is passed explicitly to
``write_audit_entry``; nothing is read from connection-level settings or
request globals.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import event

from compliance_audit.models import db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

CHANGED_BY_TYPES = frozenset({"automated_tool", "manual_tester"})

CHANGE_REASONS = frozenset({"initial_automated_result", "manual_review"})


class ImmutableAuditLogError(RuntimeError):
    """Raised when code tries to UPDATE or DELETE an audit log row."""


class AuditLogEntry(db.Model):
    """
    One status transition of a TestRecord.

    Entries for a record are totally ordered by ``(created_at, id)``; each
    entry's ``status_from`` equals the previous entry's ``status_to``.
    Rows are never updated or deleted — corrections are new entries.
    """

    __tablename__ = "test_record_audit_log"
    __table_args__ = (
        db.Index("idx_audit_record_ts", "test_record_id", "created_at"),
        db.Index("idx_audit_changed_by", "changed_by_type"),
        db.Index("idx_audit_automated_result", "automated_result_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    test_record_id = db.Column(
        db.Integer,
        db.ForeignKey("test_records.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Transition
    status_from = db.Column(db.String(20), nullable=True)
    status_to = db.Column(db.String(20), nullable=False)

    # Who / what
    changed_by_type = db.Column(
        db.String(20), nullable=False,
        comment="automated_tool | manual_tester",
    )
    changed_by_user = db.Column(db.String(64), nullable=True)
    tool_name = db.Column(db.String(50), nullable=True)

    # Why
    change_reason = db.Column(
        db.String(40), nullable=False,
        comment="initial_automated_result | manual_review",
    )
    change_description = db.Column(db.Text, nullable=True)
    reviewer_notes = db.Column(db.Text, nullable=True)

    # Evidence snapshot + raw payloads
    evidence = db.Column(db.JSON, nullable=False, default=dict)
    raw_tool_output = db.Column(db.JSON, nullable=True)
    screenshots = db.Column(db.JSON, nullable=False, default=list)
    supporting_files = db.Column(db.JSON, nullable=False, default=list)

    automated_result_id = db.Column(db.String(64), nullable=True)
    tool_confidence_score = db.Column(db.Float, nullable=True)
    tool_execution_time_ms = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    test_record = db.relationship("TestRecord", back_populates="audit_entries")

    # ── Helpers ──────────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "test_record_id": self.test_record_id,
            "status_from": self.status_from,
            "status_to": self.status_to,
            "changed_by_type": self.changed_by_type,
            "changed_by_user": self.changed_by_user,
            "tool_name": self.tool_name,
            "change_reason": self.change_reason,
            "change_description": self.change_description,
            "reviewer_notes": self.reviewer_notes,
            "evidence": self.evidence or {},
            "raw_tool_output": self.raw_tool_output,
            "screenshots": self.screenshots or [],
            "supporting_files": self.supporting_files or [],
            "automated_result_id": self.automated_result_id,
            "tool_confidence_score": self.tool_confidence_score,
            "tool_execution_time_ms": self.tool_execution_time_ms,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return (
            f"<AuditLogEntry {self.id}: record {self.test_record_id} "
            f"{self.status_from} → {self.status_to}>"
        )


@event.listens_for(AuditLogEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise ImmutableAuditLogError(f"AuditLogEntry {target.id} is append-only")


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise ImmutableAuditLogError(f"AuditLogEntry {target.id} cannot be deleted")


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit_entry(
    *,
    test_record_id: int,
    status_from: str | None,
    status_to: str,
    changed_by_type: str,
    change_reason: str,
    changed_by_user: str | None = None,
    tool_name: str | None = None,
    change_description: str | None = None,
    reviewer_notes: str | None = None,
    evidence: dict | None = None,
    raw_tool_output=None,
    screenshots: list | None = None,
    supporting_files: list | None = None,
    automated_result_id: str | None = None,
    tool_confidence_score: float | None = None,
    tool_execution_time_ms: int | None = None,
    created_at: datetime | None = None,
) -> AuditLogEntry:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLogEntry instance.
    """
    if changed_by_type not in CHANGED_BY_TYPES:
        raise ValueError(f"Unknown changed_by_type: {changed_by_type}")
    if change_reason not in CHANGE_REASONS:
        raise ValueError(f"Unknown change_reason: {change_reason}")

    entry = AuditLogEntry(
        test_record_id=test_record_id,
        status_from=status_from,
        status_to=status_to,
        changed_by_type=changed_by_type,
        changed_by_user=changed_by_user,
        tool_name=tool_name,
        change_reason=change_reason,
        change_description=change_description,
        reviewer_notes=reviewer_notes,
        evidence=evidence or {},
        raw_tool_output=raw_tool_output,
        screenshots=list(screenshots or []),
        supporting_files=list(supporting_files or []),
        automated_result_id=str(automated_result_id) if automated_result_id is not None else None,
        tool_confidence_score=tool_confidence_score,
        tool_execution_time_ms=tool_execution_time_ms,
        created_at=created_at or _utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry
