"""
Review Classifier — turns Evidence into a status and a review decision.

The extractor reports what the *tool* thinks; this module applies domain
policy on top of it:
    - criteria that always need a human, whatever the tool confidence
    - criteria whose reviews are always high priority
    - the review category taxonomy

Policy can only raise ``needs_review``, never clear it.

Usage:
    from compliance_audit.services.classifier import classify
    c = classify(evidence, "3.3.4")
    # -> Classification(preliminary_status="passed", needs_review=True,
    #                   priority="high", review_category="financial_data", ...)
"""

from __future__ import annotations

from typing import NamedTuple

# ═════════════════════════════════════════════════════════════════════════════
# Policy tables
# ═════════════════════════════════════════════════════════════════════════════

# Legal / financial-data criteria plus criteria prone to false positives.
ALWAYS_REVIEW_CRITERIA = frozenset({"3.3.4", "2.4.4", "3.2.1", "3.2.2"})

# Financial / legal criteria: reviews start at high priority.
HIGH_PRIORITY_CRITERIA = frozenset({"3.3.4", "3.2.1", "3.2.2"})

REVIEW_CATEGORY_BY_CRITERION = {
    "3.3.4": "financial_data",
    "3.2.1": "legal_compliance",
    "3.2.2": "legal_compliance",
    "1.1.1": "accessibility_critical",
    "2.1.1": "accessibility_critical",
    "4.1.1": "accessibility_critical",
}

TOOL_CONFIDENCE_SCORES = {"high": 0.9, "medium": 0.7, "low": 0.5}

POLICY_REVIEW_REASON = "criterion always requires human review"
CONTRADICTION_REVIEW_REASON = "automated signals contradict each other"


class Classification(NamedTuple):
    preliminary_status: str
    needs_review: bool
    priority: str
    review_category: str
    final_status: str
    review_reason: str | None


def tool_confidence_score(confidence_level: str | None) -> float:
    """Numeric score stored on audit entries and queue items."""
    return TOOL_CONFIDENCE_SCORES.get(confidence_level or "", TOOL_CONFIDENCE_SCORES["low"])


def determine_review_category(criterion: str) -> str:
    return REVIEW_CATEGORY_BY_CRITERION.get(criterion, "standard")


def determine_priority(criterion: str, confidence_level: str | None) -> str:
    """``high`` for policy-listed criteria or low confidence, else ``medium``.

    ``critical`` only comes from SLA escalation and ``low`` is never
    produced here.
    """
    if criterion in HIGH_PRIORITY_CRITERIA or confidence_level == "low":
        return "high"
    return "medium"


def _is_contradicted(evidence: dict) -> bool:
    tool_result = evidence.get("tool_result")
    expected_type = {"pass": "automated_pass", "fail": "automated_fail"}.get(tool_result)
    if expected_type and evidence.get("evidence_type") != expected_type:
        return True
    reported = (evidence.get("metadata") or {}).get("reported_violations")
    return tool_result == "pass" and isinstance(reported, (int, float)) and reported > 0


def determine_preliminary_status(evidence: dict) -> str:
    """``passed`` / ``failed`` from the tool result; ``pending`` otherwise."""
    tool_result = evidence.get("tool_result")
    if tool_result not in ("pass", "fail") or _is_contradicted(evidence):
        return "pending"
    return "passed" if tool_result == "pass" else "failed"


def classify(evidence: dict, criterion: str) -> Classification:
    indicators = evidence.get("review_indicators") or {}
    preliminary = determine_preliminary_status(evidence)

    needs_review = bool(indicators.get("requires_human_review"))
    reason = indicators.get("review_reason") if needs_review else None

    if criterion in ALWAYS_REVIEW_CRITERIA and not needs_review:
        needs_review, reason = True, POLICY_REVIEW_REASON
    if preliminary == "pending" and not needs_review:
        needs_review, reason = True, CONTRADICTION_REVIEW_REASON

    return Classification(
        preliminary_status=preliminary,
        needs_review=needs_review,
        priority=determine_priority(criterion, evidence.get("confidence_level")),
        review_category=determine_review_category(criterion),
        final_status="needs_review" if needs_review else preliminary,
        review_reason=reason,
    )
