"""
Tests: review classification policy.

Covers:
    - preliminary status from tool_result and contradicting signals
    - review necessity: tool indicator + always-review policy (upward only)
    - priority: never critical / low from the automated path
    - review category lookup and tool confidence scores
"""

from __future__ import annotations

import pytest

from compliance_audit.services.classifier import (
    ALWAYS_REVIEW_CRITERIA,
    CONTRADICTION_REVIEW_REASON,
    HIGH_PRIORITY_CRITERIA,
    POLICY_REVIEW_REASON,
    Classification,
    classify,
    determine_priority,
    determine_review_category,
    tool_confidence_score,
)


def _evidence(tool_result="pass", confidence="high", requires_review=False,
              reason=None, reported=None, evidence_type=None) -> dict:
    return {
        "evidence_type": evidence_type or f"automated_{tool_result}",
        "tool_result": tool_result,
        "confidence_level": confidence,
        "review_indicators": {
            "requires_human_review": requires_review,
            "review_reason": reason,
            "complexity_score": 0.4,
            "false_positive_risk": 0.2,
        },
        "metadata": {"reported_violations": reported},
    }


# ── Preliminary status ───────────────────────────────────────────────────────


def test_clean_high_confidence_pass_needs_no_review():
    c = classify(_evidence("pass"), "1.4.3")
    assert c == Classification(
        preliminary_status="passed",
        needs_review=False,
        priority="medium",
        review_category="standard",
        final_status="passed",
        review_reason=None,
    )


def test_high_confidence_fail_is_final_failed():
    c = classify(_evidence("fail"), "1.4.3")
    assert c.preliminary_status == "failed"
    assert c.final_status == "failed"
    assert c.needs_review is False


def test_pass_with_reported_violations_is_contradicted():
    c = classify(_evidence("pass", reported=2), "1.4.3")
    assert c.preliminary_status == "pending"
    assert c.needs_review is True
    assert c.final_status == "needs_review"
    assert c.review_reason == CONTRADICTION_REVIEW_REASON


def test_evidence_type_disagreeing_with_tool_result_is_pending():
    c = classify(_evidence("pass", evidence_type="automated_fail"), "1.4.3")
    assert c.preliminary_status == "pending"


def test_unknown_tool_result_is_pending():
    ev = _evidence("pass")
    ev["tool_result"] = "inconclusive"
    assert classify(ev, "1.4.3").preliminary_status == "pending"


# ── Review necessity ─────────────────────────────────────────────────────────


@pytest.mark.parametrize("criterion", sorted(ALWAYS_REVIEW_CRITERIA))
@pytest.mark.parametrize("tool_result", ["pass", "fail"])
def test_always_review_criteria_force_review(criterion, tool_result):
    c = classify(_evidence(tool_result, confidence="high", requires_review=False), criterion)
    assert c.needs_review is True
    assert c.final_status == "needs_review"
    assert c.review_reason == POLICY_REVIEW_REASON


def test_policy_never_clears_tool_review_flag():
    c = classify(_evidence("pass", requires_review=True, reason="Accessibility score below 95%"), "1.4.3")
    assert c.needs_review is True
    assert c.review_reason == "Accessibility score below 95%"


def test_tool_reason_kept_on_always_review_criterion():
    c = classify(_evidence("pass", requires_review=True, reason="generic evidence extraction"), "2.4.4")
    assert c.review_reason == "generic evidence extraction"


def test_financial_criterion_clean_pass():
    c = classify(_evidence("pass", confidence="high"), "3.3.4")
    assert c.preliminary_status == "passed"
    assert c.final_status == "needs_review"
    assert c.priority == "high"
    assert c.review_category == "financial_data"


# ── Priority & category ──────────────────────────────────────────────────────


@pytest.mark.parametrize("criterion", sorted(HIGH_PRIORITY_CRITERIA))
def test_high_priority_criteria(criterion):
    assert determine_priority(criterion, "high") == "high"


def test_low_confidence_raises_priority():
    assert determine_priority("1.4.3", "low") == "high"
    assert determine_priority("1.4.3", "medium") == "medium"
    assert determine_priority("1.1.1", "medium") == "medium"


@pytest.mark.parametrize("criterion", ["1.1.1", "1.4.3", "2.4.4", "3.3.4", "9.9.9"])
@pytest.mark.parametrize("confidence", ["high", "medium", "low", None])
def test_automated_priority_is_only_high_or_medium(criterion, confidence):
    assert determine_priority(criterion, confidence) in ("high", "medium")


@pytest.mark.parametrize("criterion,category", [
    ("3.3.4", "financial_data"),
    ("3.2.1", "legal_compliance"),
    ("3.2.2", "legal_compliance"),
    ("1.1.1", "accessibility_critical"),
    ("2.1.1", "accessibility_critical"),
    ("4.1.1", "accessibility_critical"),
    ("1.4.3", "standard"),
    ("", "standard"),
])
def test_review_category_lookup(criterion, category):
    assert determine_review_category(criterion) == category


def test_tool_confidence_scores():
    assert tool_confidence_score("high") == 0.9
    assert tool_confidence_score("medium") == 0.7
    assert tool_confidence_score("low") == 0.5
    assert tool_confidence_score(None) == 0.5
