"""
Audit Trail Service — the workflow coordinator.

Entry points:
    - process_automated_result: raw scanner result → Evidence → classification
      → test record update + audit entry + optional review queue item.
    - process_manual_review: reviewer decision → test record update + audit
      entry + queue item closure.

Each entry point is one transaction: the record status and the audit entry
describing the change are always committed together, or not at all.

Usage:
    from compliance_audit.services import audit_trail_service as ats
    result = ats.process_automated_result(record_id, raw_result, "1.4.3")
    ats.process_manual_review(result["review_queue_id"],
                              {"decision": "accept", "reviewer_id": "u-17"})
"""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from compliance_audit.core.exceptions import (
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from compliance_audit.models import db
from compliance_audit.models.audit import AuditLogEntry, write_audit_entry
from compliance_audit.models.review_queue import (
    REVIEW_DECISIONS,
    ReviewQueueItem,
    as_utc,
    compute_due_date,
)
from compliance_audit.models.test_record import (
    CONFIDENCE_LEVELS,
    RESOLVED_STATUSES,
    TestRecord,
)
from compliance_audit.services.classifier import classify, tool_confidence_score
from compliance_audit.services.evidence_extractor import extract_evidence
from compliance_audit.services.review_queue_service import lock_open_review_item

logger = logging.getLogger(__name__)

OVERRIDE_STATUSES = frozenset({"passed", "failed", "needs_review"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _json_safe(value: Any) -> Any:
    """Round-trip through JSON so arbitrary scanner payloads fit a JSON column.

    NaN and infinities become ``None``; PostgreSQL JSON rejects them.
    """
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str), parse_constant=lambda _: None)


def _persist_failure(action: str, exc: SQLAlchemyError, **extra) -> PersistenceError:
    db.session.rollback()
    logger.error("%s failed, transaction rolled back: %s", action, exc, extra=extra)
    return PersistenceError(f"{action} failed", original=exc)


# ═════════════════════════════════════════════════════════════════════════════
# Test records
# ═════════════════════════════════════════════════════════════════════════════

def create_test_record(data: dict) -> TestRecord:
    """Create a record in ``pending``.  Status is never taken from input."""
    criterion = (data.get("wcag_criterion") or "").strip() or None
    page_url = (data.get("page_url") or "").strip() or None
    if criterion and len(criterion) > 20:
        raise ValidationError("wcag_criterion is too long", details={"wcag_criterion": criterion})

    record = TestRecord(
        wcag_criterion=criterion,
        page_url=page_url,
        status="pending",
        notes=[],
    )
    db.session.add(record)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        raise _persist_failure("Create test record", exc) from exc

    logger.info("Test record created", extra={"test_record_id": record.id, "wcag_criterion": criterion})
    return record


def get_test_record(test_record_id: int) -> TestRecord:
    record = db.session.get(TestRecord, test_record_id)
    if record is None:
        raise NotFoundError(resource="TestRecord", resource_id=test_record_id)
    return record


# ═════════════════════════════════════════════════════════════════════════════
# Automated results
# ═════════════════════════════════════════════════════════════════════════════

def _find_open_item(test_record_id: int, automated_result_id: str | None) -> ReviewQueueItem | None:
    if automated_result_id is None:
        return None
    stmt = (
        select(ReviewQueueItem)
        .where(
            ReviewQueueItem.test_record_id == test_record_id,
            ReviewQueueItem.automated_result_id == automated_result_id,
            ReviewQueueItem.review_status != "completed",
        )
        .order_by(ReviewQueueItem.id)
    )
    return db.session.execute(stmt).scalars().first()


def process_automated_result(
    test_record_id: int,
    raw_result: Any,
    criterion: str,
    *,
    now: datetime | None = None,
) -> dict:
    """Ingest one automated scanner result.

    Every call appends an audit entry; re-submitting a result whose review
    item is still open reuses that item instead of queueing it twice.

    Returns:
        {audit_log_id, review_queue_id (or None), final_status,
         needs_review, evidence}

    Raises:
        NotFoundError: the test record does not exist.
        PersistenceError: the transaction could not be committed.
    """
    now = now or _utcnow()
    record = get_test_record(test_record_id)

    source = raw_result if isinstance(raw_result, dict) else {}
    evidence = _json_safe(extract_evidence(raw_result, criterion, now=now))
    classification = classify(evidence, criterion)

    tool_name = source.get("tool_name") if isinstance(source.get("tool_name"), str) else None
    result_id = source.get("id")
    automated_result_id = str(result_id) if result_id is not None else None
    confidence = evidence.get("confidence_level")
    confidence_score = tool_confidence_score(confidence)
    indicators = evidence.get("review_indicators") or {}
    execution_time = (evidence.get("test_execution") or {}).get("execution_time")
    if execution_time is None:
        execution_time = source.get("execution_time")
    if (
        isinstance(execution_time, bool)
        or not isinstance(execution_time, (int, float))
        or not math.isfinite(execution_time)
    ):
        execution_time = None

    status_from = record.status
    final_status = classification.final_status
    review_item = None
    try:
        record.status = final_status
        record.method_used = "automated"
        record.tool_used = tool_name[:50] if tool_name else None
        record.confidence_level = confidence
        if not record.wcag_criterion:
            record.wcag_criterion = criterion
        record.updated_at = now
        record.completed_at = now if final_status in RESOLVED_STATUSES else None

        entry = write_audit_entry(
            test_record_id=record.id,
            status_from=status_from,
            status_to=final_status,
            changed_by_type="automated_tool",
            change_reason="initial_automated_result",
            tool_name=tool_name,
            change_description=(
                f"Automated {tool_name or 'scan'} result for WCAG {criterion}: "
                f"{evidence.get('tool_result')} ({confidence} confidence)"
            ),
            evidence=evidence,
            raw_tool_output=_json_safe(source.get("raw_results") if source else raw_result),
            screenshots=source.get("screenshots") if isinstance(source.get("screenshots"), list) else None,
            automated_result_id=automated_result_id,
            tool_confidence_score=confidence_score,
            tool_execution_time_ms=int(execution_time) if execution_time is not None else None,
            created_at=now,
        )

        if classification.needs_review:
            review_item = _find_open_item(record.id, automated_result_id)
            if review_item is not None:
                logger.info(
                    "Open review item reused for repeated automated result",
                    extra={"test_record_id": record.id, "review_queue_id": review_item.id},
                )
            else:
                review_item = ReviewQueueItem(
                    test_record_id=record.id,
                    automated_result_id=automated_result_id,
                    tool_name=tool_name,
                    tool_result=evidence.get("tool_result"),
                    wcag_criterion=criterion,
                    automated_evidence=evidence,
                    priority=classification.priority,
                    review_category=classification.review_category,
                    complexity_score=indicators.get("complexity_score"),
                    false_positive_risk=indicators.get("false_positive_risk"),
                    tool_confidence=confidence_score,
                    review_status="pending",
                    created_at=now,
                    due_date=compute_due_date(classification.priority, now),
                )
                db.session.add(review_item)
                db.session.flush()

        db.session.commit()
    except SQLAlchemyError as exc:
        raise _persist_failure(
            "Process automated result", exc,
            test_record_id=test_record_id, tool_name=tool_name,
        ) from exc
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Automated result processed: %s → %s", status_from, final_status,
        extra={
            "test_record_id": record.id,
            "audit_log_id": entry.id,
            "review_queue_id": review_item.id if review_item else None,
            "tool_name": tool_name,
            "wcag_criterion": criterion,
        },
    )
    return {
        "audit_log_id": entry.id,
        "review_queue_id": review_item.id if review_item else None,
        "final_status": final_status,
        "needs_review": classification.needs_review,
        "evidence": evidence,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Manual review
# ═════════════════════════════════════════════════════════════════════════════

def resolve_final_status(tool_result: str, decision: str, override_status: str | None = None) -> str:
    """Map a reviewer decision onto a test record status.

    accept → the tool's verdict, reject → the opposite verdict,
    modify → ``override_status`` or back to ``needs_review``.
    """
    automated = "passed" if tool_result == "pass" else "failed"
    if decision == "accept":
        return automated
    if decision == "reject":
        return "failed" if automated == "passed" else "passed"
    return override_status or "needs_review"


def _validate_decision(decision: Any) -> dict:
    if not isinstance(decision, dict):
        raise ValidationError("decision must be an object")
    errors = {}
    if decision.get("decision") not in REVIEW_DECISIONS:
        errors["decision"] = f"must be one of: {', '.join(sorted(REVIEW_DECISIONS))}"
    reviewer_id = decision.get("reviewer_id")
    if reviewer_id is None or not str(reviewer_id).strip():
        errors["reviewer_id"] = "required"
    confidence = decision.get("confidence_level")
    if confidence is not None and confidence not in CONFIDENCE_LEVELS:
        errors["confidence_level"] = f"must be one of: {', '.join(sorted(CONFIDENCE_LEVELS))}"
    override = decision.get("override_status")
    if override is not None and override not in OVERRIDE_STATUSES:
        errors["override_status"] = f"must be one of: {', '.join(sorted(OVERRIDE_STATUSES))}"
    if override is not None and decision.get("decision") != "modify":
        errors["override_status"] = "only allowed with the modify decision"
    additional = decision.get("additional_evidence")
    if additional is not None and not isinstance(additional, dict):
        errors["additional_evidence"] = "must be an object"
    files = decision.get("evidence_files")
    if files is not None and not isinstance(files, list):
        errors["evidence_files"] = "must be a list"
    if errors:
        raise ValidationError("Invalid review decision", details=errors)
    return decision


def process_manual_review(
    queue_item_id: int,
    decision: dict,
    *,
    now: datetime | None = None,
) -> dict:
    """Apply a reviewer's decision and close the review item.

    Returns:
        {audit_log_id, final_status, review_decision}

    Raises:
        NotFoundError: the review item does not exist.
        ReviewAlreadyCompletedError: the item was already closed; nothing is written.
        ValidationError: the decision payload is invalid.
        PersistenceError: the transaction could not be committed.
    """
    now = now or _utcnow()
    item = lock_open_review_item(queue_item_id)
    try:
        _validate_decision(decision)
    except ValidationError:
        db.session.rollback()
        raise

    record = get_test_record(item.test_record_id)
    verdict = decision["decision"]
    reviewer_id = decision.get("reviewer_id")
    reviewer_id = str(reviewer_id) if reviewer_id is not None else None
    notes = (decision.get("notes") or "").strip() or None
    additional_evidence = decision.get("additional_evidence")

    status_from = record.status
    final_status = resolve_final_status(item.tool_result, verdict, decision.get("override_status"))
    try:
        record.status = final_status
        record.method_used = "both"
        if reviewer_id:
            record.assigned_reviewer = reviewer_id
        if decision.get("confidence_level"):
            record.confidence_level = decision["confidence_level"]
        record.append_note(notes or f"Review decision: {verdict}", author=reviewer_id, at=now)
        record.reviewed_at = now
        record.updated_at = now
        record.completed_at = now if final_status in RESOLVED_STATUSES else None

        entry = write_audit_entry(
            test_record_id=record.id,
            status_from=status_from,
            status_to=final_status,
            changed_by_type="manual_tester",
            changed_by_user=reviewer_id,
            change_reason="manual_review",
            change_description=(
                f"Manual review {verdict}: automated {item.tool_result} → {final_status}"
            ),
            reviewer_notes=notes,
            evidence=_json_safe(additional_evidence) or {},
            supporting_files=_json_safe(decision.get("evidence_files")),
            automated_result_id=item.automated_result_id,
            created_at=now,
        )

        item.review_status = "completed"
        item.review_decision = verdict
        item.reviewer_notes = notes
        item.review_evidence = _json_safe(additional_evidence)
        if reviewer_id:
            item.assigned_reviewer = reviewer_id
        item.review_completed_at = now
        item.time_to_completion = round(
            (as_utc(now) - as_utc(item.created_at)).total_seconds() / 60, 2
        )

        db.session.commit()
    except SQLAlchemyError as exc:
        raise _persist_failure(
            "Process manual review", exc,
            review_queue_id=queue_item_id, test_record_id=item.test_record_id,
        ) from exc
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Manual review %s: %s → %s", verdict, status_from, final_status,
        extra={
            "test_record_id": record.id,
            "review_queue_id": item.id,
            "audit_log_id": entry.id,
            "wcag_criterion": item.wcag_criterion,
        },
    )
    return {
        "audit_log_id": entry.id,
        "final_status": final_status,
        "review_decision": verdict,
    }


# ═════════════════════════════════════════════════════════════════════════════
# History
# ═════════════════════════════════════════════════════════════════════════════

def get_audit_trail(test_record_id: int) -> list[AuditLogEntry]:
    """All audit entries for a record, oldest first."""
    get_test_record(test_record_id)
    stmt = (
        select(AuditLogEntry)
        .where(AuditLogEntry.test_record_id == test_record_id)
        .order_by(AuditLogEntry.created_at.asc(), AuditLogEntry.id.asc())
    )
    return list(db.session.execute(stmt).scalars().all())


def verify_history_chain(test_record_id: int) -> list[dict]:
    """Return every break in the record's transition chain.

    An empty list means each entry starts where the previous one ended and
    the newest entry matches the record's current status.
    """
    record = get_test_record(test_record_id)
    entries = get_audit_trail(test_record_id)
    breaks = []
    for previous, current in zip(entries, entries[1:]):
        if current.status_from != previous.status_to:
            breaks.append({
                "audit_log_id": current.id,
                "expected_status_from": previous.status_to,
                "actual_status_from": current.status_from,
            })
    if entries and entries[-1].status_to != record.status:
        breaks.append({
            "audit_log_id": entries[-1].id,
            "expected_status_from": None,
            "actual_status_from": None,
            "record_status": record.status,
            "head_status_to": entries[-1].status_to,
        })
    return breaks
