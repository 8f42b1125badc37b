"""
Tests: workflow coordinator — automated ingestion and manual review.

Covers:
    - Scenario A: unknown tool, clean result → generic evidence, medium-priority review
    - Scenario B: always-review financial criterion with a clean high-confidence pass
    - Scenario C: reject on a tool pass → failed, manual_tester audit entry
    - Scenario D: modify without override → back to needs_review
    - SLA due dates per priority
    - History chain monotonicity across mixed automated / manual transitions
    - All-or-nothing transactions (NotFound, persistence failure)
    - Double-close guard and open-item reuse for repeated results

All test data created via ORM helpers.
The `session` autouse fixture rolls back after every test.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

import compliance_audit.services.audit_trail_service as svc
from compliance_audit.core.exceptions import (
    NotFoundError,
    PersistenceError,
    ReviewAlreadyCompletedError,
    ValidationError,
)
from compliance_audit.models import db as _db
from compliance_audit.models.audit import AuditLogEntry
from compliance_audit.models.review_queue import ReviewQueueItem, as_utc
from compliance_audit.models.test_record import TestRecord

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ── ORM helpers ───────────────────────────────────────────────────────────────


def _make_record(criterion: str = "1.4.3", status: str = "pending") -> TestRecord:
    rec = TestRecord(wcag_criterion=criterion, status=status)
    _db.session.add(rec)
    _db.session.commit()
    return rec


def _count(model, **filters) -> int:
    stmt = select(func.count()).select_from(model)
    for key, value in filters.items():
        stmt = stmt.where(getattr(model, key) == value)
    return _db.session.execute(stmt).scalar()


def _axe_high_confidence_pass(criterion_tag: str, result_id: str = "ar-9") -> dict:
    passes = [{"id": "rule-target", "tags": ["wcag2a", criterion_tag],
               "nodes": [{"target": ["form > input"], "html": "<input>"}]}]
    passes += [{"id": f"rule-{i}", "tags": ["best-practice"], "nodes": []} for i in range(11)]
    return {
        "id": result_id,
        "tool_name": "axe-core",
        "violations_count": 0,
        "raw_results": {"result": {"violations": 0, "passes": passes}, "duration": 950},
    }


def _axe_contrast_fail(result_id: str = "ar-1") -> dict:
    return {
        "id": result_id,
        "tool_name": "axe-core",
        "violations_count": 1,
        "raw_results": {"result": {
            "violations": 1,
            "detailedViolations": [{
                "id": "color-contrast",
                "impact": "serious",
                "help": "Elements must have sufficient color contrast",
                "tags": ["wcag143"],
                "nodes": [{"target": ["p.note"], "html": "<p class='note'>x</p>"}],
            }],
        }},
    }


def _queue_for(record_id: int) -> list[ReviewQueueItem]:
    return list(_db.session.execute(
        select(ReviewQueueItem)
        .where(ReviewQueueItem.test_record_id == record_id)
        .order_by(ReviewQueueItem.id)
    ).scalars())


# ═════════════════════════════════════════════════════════════════════════════
# 1. AUTOMATED RESULTS
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_scenario_a_unknown_tool_clean_result():
    rec = _make_record("1.1.1")
    out = svc.process_automated_result(
        rec.id, {"tool_name": "toolX", "violations_count": 0}, "1.1.1", now=NOW,
    )

    assert out["final_status"] == "needs_review"
    assert out["needs_review"] is True
    assert out["evidence"]["evidence_type"] == "automated_pass"
    assert out["evidence"]["review_indicators"]["review_reason"] == "generic evidence extraction"

    item = _db.session.get(ReviewQueueItem, out["review_queue_id"])
    assert item.priority == "medium"
    assert item.tool_result == "pass"
    assert item.review_status == "pending"
    assert item.review_category == "accessibility_critical"
    assert as_utc(item.due_date) - as_utc(item.created_at) == timedelta(hours=24)
    assert as_utc(item.due_date) == NOW + timedelta(hours=24)

    rec = _db.session.get(TestRecord, rec.id)
    assert rec.status == "needs_review"
    assert rec.method_used == "automated"
    assert rec.tool_used == "toolX"
    assert rec.completed_at is None

    entry = _db.session.get(AuditLogEntry, out["audit_log_id"])
    assert entry.status_from == "pending"
    assert entry.status_to == "needs_review"
    assert entry.changed_by_type == "automated_tool"
    assert entry.change_reason == "initial_automated_result"
    assert entry.tool_confidence_score == 0.7
    assert entry.evidence == out["evidence"]


@pytest.mark.unit
def test_scenario_b_financial_criterion_always_reviewed():
    rec = _make_record("3.3.4")
    out = svc.process_automated_result(rec.id, _axe_high_confidence_pass("wcag334"), "3.3.4", now=NOW)

    assert out["evidence"]["confidence_level"] == "high"
    assert out["final_status"] == "needs_review"

    item = _db.session.get(ReviewQueueItem, out["review_queue_id"])
    assert item.priority == "high"
    assert item.review_category == "financial_data"
    assert item.tool_confidence == 0.9
    assert as_utc(item.due_date) - as_utc(item.created_at) == timedelta(hours=12)

    entry = _db.session.get(AuditLogEntry, out["audit_log_id"])
    assert entry.tool_execution_time_ms == 950
    assert entry.automated_result_id == "ar-9"


@pytest.mark.unit
def test_trusted_fail_resolves_without_review():
    rec = _make_record("1.4.3")
    out = svc.process_automated_result(rec.id, _axe_contrast_fail(), "1.4.3", now=NOW)

    assert out["final_status"] == "failed"
    assert out["needs_review"] is False
    assert out["review_queue_id"] is None
    assert _queue_for(rec.id) == []

    rec = _db.session.get(TestRecord, rec.id)
    assert rec.status == "failed"
    assert rec.confidence_level == "high"
    assert as_utc(rec.completed_at) == NOW


@pytest.mark.unit
def test_raw_tool_output_is_stored_on_audit_entry():
    rec = _make_record("1.4.3")
    raw = _axe_contrast_fail()
    out = svc.process_automated_result(rec.id, raw, "1.4.3", now=NOW)
    entry = _db.session.get(AuditLogEntry, out["audit_log_id"])
    assert entry.raw_tool_output == raw["raw_results"]
    assert entry.tool_name == "axe-core"


@pytest.mark.unit
def test_missing_record_raises_not_found_and_writes_nothing():
    with pytest.raises(NotFoundError):
        svc.process_automated_result(9999, {"tool_name": "toolX", "violations_count": 0}, "1.1.1")
    assert _count(AuditLogEntry) == 0
    assert _count(ReviewQueueItem) == 0


@pytest.mark.unit
def test_persistence_failure_rolls_back_everything(monkeypatch):
    rec = _make_record("1.1.1")
    real_write = svc.write_audit_entry

    def _failing_write(**kwargs):
        real_write(**kwargs)
        raise SQLAlchemyError("simulated write failure")

    monkeypatch.setattr(svc, "write_audit_entry", _failing_write)

    with pytest.raises(PersistenceError):
        svc.process_automated_result(rec.id, {"tool_name": "toolX", "violations_count": 0}, "1.1.1")

    assert _db.session.get(TestRecord, rec.id).status == "pending"
    assert _count(AuditLogEntry) == 0
    assert _count(ReviewQueueItem) == 0


@pytest.mark.unit
def test_unexpected_error_rolls_back_status_change(monkeypatch):
    rec = _make_record("1.1.1")

    def _broken_write(**kwargs):
        raise RuntimeError("audit writer unavailable")

    monkeypatch.setattr(svc, "write_audit_entry", _broken_write)

    with pytest.raises(RuntimeError):
        svc.process_automated_result(rec.id, {"tool_name": "toolX", "violations_count": 0}, "1.1.1")

    # a later commit on the same session must not carry the half-applied change
    _db.session.commit()
    assert _db.session.get(TestRecord, rec.id).status == "pending"
    assert _count(AuditLogEntry) == 0


@pytest.mark.unit
def test_non_finite_execution_time_is_dropped():
    rec = _make_record("1.4.3")
    raw = json.loads(
        '{"tool_name": "toolX", "violations_count": 0, "execution_time": Infinity,'
        ' "raw_results": {"score": NaN}}'
    )
    out = svc.process_automated_result(rec.id, raw, "1.4.3", now=NOW)

    entry = _db.session.get(AuditLogEntry, out["audit_log_id"])
    assert entry.tool_execution_time_ms is None
    assert entry.raw_tool_output == {"score": None}
    assert _db.session.get(TestRecord, rec.id).status == entry.status_to
    assert svc.verify_history_chain(rec.id) == []


@pytest.mark.unit
def test_infinite_violation_count_from_known_tool_still_audited():
    rec = _make_record("1.4.3")
    raw = json.loads('{"tool_name": "axe", "raw_results": {"violations": Infinity}}')
    out = svc.process_automated_result(rec.id, raw, "1.4.3", now=NOW)

    assert out["needs_review"] is True
    assert out["evidence"]["review_indicators"]["review_reason"] == "generic evidence extraction"
    assert _count(AuditLogEntry, test_record_id=rec.id) == 1


@pytest.mark.unit
def test_reprocessing_same_result_reuses_open_item():
    rec = _make_record("1.1.1")
    raw = {"id": "scan-77", "tool_name": "toolX", "violations_count": 0}

    first = svc.process_automated_result(rec.id, raw, "1.1.1", now=NOW)
    second = svc.process_automated_result(rec.id, raw, "1.1.1", now=NOW + timedelta(minutes=5))

    assert first["audit_log_id"] != second["audit_log_id"]
    assert first["review_queue_id"] == second["review_queue_id"]
    assert len(_queue_for(rec.id)) == 1
    assert _count(AuditLogEntry, test_record_id=rec.id) == 2


@pytest.mark.unit
def test_results_without_id_always_get_new_item():
    rec = _make_record("1.1.1")
    raw = {"tool_name": "toolX", "violations_count": 0}
    first = svc.process_automated_result(rec.id, raw, "1.1.1", now=NOW)
    second = svc.process_automated_result(rec.id, raw, "1.1.1", now=NOW + timedelta(minutes=1))
    assert first["review_queue_id"] != second["review_queue_id"]
    assert len(_queue_for(rec.id)) == 2


@pytest.mark.unit
def test_reprocessing_after_completion_creates_new_item():
    rec = _make_record("1.1.1")
    raw = {"id": "scan-5", "tool_name": "toolX", "violations_count": 0}
    first = svc.process_automated_result(rec.id, raw, "1.1.1", now=NOW)
    svc.process_manual_review(first["review_queue_id"], {"decision": "accept", "reviewer_id": "rev-1"})

    again = svc.process_automated_result(rec.id, raw, "1.1.1")
    assert again["review_queue_id"] != first["review_queue_id"]


# ═════════════════════════════════════════════════════════════════════════════
# 2. MANUAL REVIEW
# ═════════════════════════════════════════════════════════════════════════════


def _queued(criterion: str = "1.1.1", violations: int = 0) -> tuple[TestRecord, int]:
    rec = _make_record(criterion)
    out = svc.process_automated_result(
        rec.id, {"tool_name": "toolX", "violations_count": violations}, criterion, now=NOW,
    )
    return rec, out["review_queue_id"]


@pytest.mark.unit
def test_scenario_c_reject_flips_tool_pass_to_failed():
    rec, item_id = _queued()
    later = NOW + timedelta(minutes=90)

    out = svc.process_manual_review(
        item_id,
        {"decision": "reject", "reviewer_id": "rev-1", "notes": "Alt text is decorative filler"},
        now=later,
    )

    assert out["final_status"] == "failed"
    assert out["review_decision"] == "reject"

    rec = _db.session.get(TestRecord, rec.id)
    assert rec.status == "failed"
    assert rec.assigned_reviewer == "rev-1"
    assert rec.method_used == "both"
    assert as_utc(rec.reviewed_at) == later
    assert rec.notes[-1]["text"] == "Alt text is decorative filler"
    assert rec.notes[-1]["author"] == "rev-1"

    entry = _db.session.get(AuditLogEntry, out["audit_log_id"])
    assert entry.status_from == "needs_review"
    assert entry.status_to == "failed"
    assert entry.changed_by_type == "manual_tester"
    assert entry.changed_by_user == "rev-1"
    assert entry.change_reason == "manual_review"
    assert entry.evidence == {}

    item = _db.session.get(ReviewQueueItem, item_id)
    assert item.review_status == "completed"
    assert item.review_decision == "reject"
    assert item.time_to_completion == pytest.approx(90.0)


@pytest.mark.unit
def test_scenario_d_modify_without_override_reenters_review():
    rec, item_id = _queued()
    out = svc.process_manual_review(item_id, {"decision": "modify", "reviewer_id": "rev-2"})

    assert out["final_status"] == "needs_review"
    assert _db.session.get(TestRecord, rec.id).status == "needs_review"
    assert _db.session.get(ReviewQueueItem, item_id).review_status == "completed"


@pytest.mark.unit
def test_modify_with_override_status():
    rec, item_id = _queued()
    out = svc.process_manual_review(
        item_id, {"decision": "modify", "reviewer_id": "rev-2", "override_status": "passed"},
    )
    assert out["final_status"] == "passed"
    assert _db.session.get(TestRecord, rec.id).completed_at is not None


@pytest.mark.unit
def test_accept_keeps_tool_fail():
    _, item_id = _queued(violations=4)
    out = svc.process_manual_review(item_id, {"decision": "accept", "reviewer_id": "rev-3"})
    assert out["final_status"] == "failed"


@pytest.mark.unit
def test_review_confidence_and_evidence_recorded():
    rec, item_id = _queued()
    out = svc.process_manual_review(item_id, {
        "decision": "accept",
        "reviewer_id": "rev-4",
        "confidence_level": "high",
        "additional_evidence": {"screen_reader": "NVDA 2024.1", "announced": True},
        "evidence_files": ["s3://evidence/123/nvda.mp4"],
    })
    assert _db.session.get(TestRecord, rec.id).confidence_level == "high"
    entry = _db.session.get(AuditLogEntry, out["audit_log_id"])
    assert entry.evidence == {"screen_reader": "NVDA 2024.1", "announced": True}
    assert entry.supporting_files == ["s3://evidence/123/nvda.mp4"]
    item = _db.session.get(ReviewQueueItem, item_id)
    assert item.review_evidence == {"screen_reader": "NVDA 2024.1", "announced": True}


@pytest.mark.unit
def test_confidence_level_unchanged_when_not_given():
    rec, item_id = _queued()
    before = _db.session.get(TestRecord, rec.id).confidence_level
    svc.process_manual_review(item_id, {"decision": "accept", "reviewer_id": "rev-4"})
    assert _db.session.get(TestRecord, rec.id).confidence_level == before


@pytest.mark.unit
def test_notes_are_appended_not_overwritten():
    rec, item_id = _queued()
    svc.process_manual_review(item_id, {"decision": "modify", "reviewer_id": "a", "notes": "first pass"})
    second = svc.process_automated_result(
        rec.id, {"tool_name": "toolX", "violations_count": 0}, "1.1.1",
    )
    svc.process_manual_review(
        second["review_queue_id"], {"decision": "accept", "reviewer_id": "b", "notes": "confirmed"},
    )
    notes = _db.session.get(TestRecord, rec.id).notes
    assert [n["text"] for n in notes] == ["first pass", "confirmed"]
    assert [n["author"] for n in notes] == ["a", "b"]


@pytest.mark.unit
def test_double_close_is_rejected_and_writes_nothing():
    rec, item_id = _queued()
    svc.process_manual_review(item_id, {"decision": "accept", "reviewer_id": "rev-1"})
    entries_before = _count(AuditLogEntry, test_record_id=rec.id)

    with pytest.raises(ReviewAlreadyCompletedError):
        svc.process_manual_review(item_id, {"decision": "reject", "reviewer_id": "rev-2"})

    assert _count(AuditLogEntry, test_record_id=rec.id) == entries_before
    assert _db.session.get(TestRecord, rec.id).status == "passed"
    assert _db.session.get(ReviewQueueItem, item_id).review_decision == "accept"


@pytest.mark.unit
def test_missing_queue_item_raises_not_found():
    with pytest.raises(NotFoundError):
        svc.process_manual_review(424242, {"decision": "accept"})


@pytest.mark.unit
def test_close_guard_rereads_item_instead_of_trusting_session_copy():
    rec, item_id = _queued()
    item = _db.session.get(ReviewQueueItem, item_id)

    # another writer closes the item; this session's copy is now stale
    _db.session.execute(
        update(ReviewQueueItem)
        .where(ReviewQueueItem.id == item_id)
        .values(review_status="completed", review_decision="reject")
        .execution_options(synchronize_session=False)
    )
    assert item.review_status == "pending"

    with pytest.raises(ReviewAlreadyCompletedError):
        svc.process_manual_review(item_id, {"decision": "accept", "reviewer_id": "rev-2"})
    assert _count(AuditLogEntry, test_record_id=rec.id) == 1


@pytest.mark.unit
def test_unexpected_error_during_review_rolls_back(monkeypatch):
    rec, item_id = _queued()

    def _broken_write(**kwargs):
        raise RuntimeError("audit writer unavailable")

    monkeypatch.setattr(svc, "write_audit_entry", _broken_write)

    with pytest.raises(RuntimeError):
        svc.process_manual_review(item_id, {"decision": "reject", "reviewer_id": "rev-1"})

    _db.session.commit()
    rec = _db.session.get(TestRecord, rec.id)
    assert rec.status == "needs_review"
    assert rec.notes == []
    assert _db.session.get(ReviewQueueItem, item_id).review_status == "pending"
    assert _count(AuditLogEntry, test_record_id=rec.id) == 1


@pytest.mark.unit
@pytest.mark.parametrize("decision,field", [
    ({"decision": "approve", "reviewer_id": "r"}, "decision"),
    ({"reviewer_id": "r"}, "decision"),
    ({"decision": "accept"}, "reviewer_id"),
    ({"decision": "accept", "reviewer_id": "  "}, "reviewer_id"),
    ({"decision": "accept", "reviewer_id": "r", "confidence_level": "certain"}, "confidence_level"),
    ({"decision": "modify", "reviewer_id": "r", "override_status": "pending"}, "override_status"),
    ({"decision": "accept", "reviewer_id": "r", "override_status": "passed"}, "override_status"),
    ({"decision": "accept", "reviewer_id": "r", "evidence_files": "not-a-list"}, "evidence_files"),
])
def test_invalid_decisions_are_rejected(decision, field):
    rec, item_id = _queued()
    with pytest.raises(ValidationError) as exc_info:
        svc.process_manual_review(item_id, decision)
    assert field in exc_info.value.details
    assert _db.session.get(ReviewQueueItem, item_id).review_status == "pending"
    assert _count(AuditLogEntry, test_record_id=rec.id) == 1


@pytest.mark.parametrize("tool_result,decision,override,expected", [
    ("pass", "accept", None, "passed"),
    ("fail", "accept", None, "failed"),
    ("pass", "reject", None, "failed"),
    ("fail", "reject", None, "passed"),
    ("pass", "modify", None, "needs_review"),
    ("fail", "modify", "passed", "passed"),
])
def test_resolve_final_status(tool_result, decision, override, expected):
    assert svc.resolve_final_status(tool_result, decision, override) == expected


# ═════════════════════════════════════════════════════════════════════════════
# 3. HISTORY
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_history_chain_is_monotonic_across_mixed_transitions():
    rec = _make_record("1.4.3")
    svc.process_automated_result(rec.id, _axe_contrast_fail("r1"), "1.4.3", now=NOW)
    queued = svc.process_automated_result(
        rec.id, {"id": "r2", "tool_name": "toolX", "violations_count": 0}, "1.4.3",
        now=NOW + timedelta(minutes=10),
    )
    svc.process_manual_review(
        queued["review_queue_id"], {"decision": "reject", "reviewer_id": "rev-1"},
        now=NOW + timedelta(minutes=20),
    )
    svc.process_automated_result(
        rec.id, _axe_contrast_fail("r3"), "1.4.3", now=NOW + timedelta(minutes=30),
    )

    trail = svc.get_audit_trail(rec.id)
    assert [(e.status_from, e.status_to) for e in trail] == [
        ("pending", "failed"),
        ("failed", "needs_review"),
        ("needs_review", "failed"),
        ("failed", "failed"),
    ]
    assert svc.verify_history_chain(rec.id) == []
    assert trail[-1].status_to == _db.session.get(TestRecord, rec.id).status


@pytest.mark.unit
def test_audit_trail_orders_same_timestamp_by_id():
    rec = _make_record("1.1.1")
    raw = {"tool_name": "toolX", "violations_count": 0}
    a = svc.process_automated_result(rec.id, raw, "1.1.1", now=NOW)
    b = svc.process_automated_result(rec.id, raw, "1.1.1", now=NOW)
    assert [e.id for e in svc.get_audit_trail(rec.id)] == [a["audit_log_id"], b["audit_log_id"]]


@pytest.mark.unit
def test_verify_history_chain_reports_out_of_band_status_change():
    rec = _make_record("1.4.3")
    svc.process_automated_result(rec.id, _axe_contrast_fail(), "1.4.3", now=NOW)

    rec = _db.session.get(TestRecord, rec.id)
    rec.status = "passed"
    _db.session.commit()

    breaks = svc.verify_history_chain(rec.id)
    assert len(breaks) == 1
    assert breaks[0]["record_status"] == "passed"
    assert breaks[0]["head_status_to"] == "failed"


@pytest.mark.unit
def test_audit_trail_for_missing_record():
    with pytest.raises(NotFoundError):
        svc.get_audit_trail(31337)


# ═════════════════════════════════════════════════════════════════════════════
# 4. TEST RECORDS
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_create_test_record_always_starts_pending():
    rec = svc.create_test_record({"wcag_criterion": " 2.4.7 ", "status": "passed"})
    assert rec.status == "pending"
    assert rec.wcag_criterion == "2.4.7"
    assert rec.notes == []


@pytest.mark.unit
def test_criterion_backfilled_from_first_result():
    rec = svc.create_test_record({})
    svc.process_automated_result(rec.id, {"tool_name": "toolX", "violations_count": 0}, "1.3.1")
    assert _db.session.get(TestRecord, rec.id).wcag_criterion == "1.3.1"
