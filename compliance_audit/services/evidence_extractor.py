"""
Evidence Extractor — normalises raw scanner output into Evidence.

Architecture:
  One extractor strategy per scanner family, registered by tool name:
    - AxeExtractor         — axe-core DOM analysis (reliable on failures)
    - LighthouseExtractor  — score-based Chromium audit (passes need confirming)
    - Pa11yExtractor       — HTML_CodeSniffer issues (errors / warnings)
    - WaveExtractor        — WebAIM WAVE categories (error / contrast / alert)
    - PlaywrightExtractor  — Playwright runs; axe-core payloads go to AxeExtractor
  Unknown tools, and any payload a strategy cannot parse, fall back to
  ``create_generic_evidence`` which always flags the result for human review.

Evidence is a plain JSON-ready dict:
    evidence_type, tool_result, confidence_level, evidence_strength,
    wcag_criterion, test_execution{tool, method, scope, execution_time, timestamp},
    pass_evidence | fail_evidence,
    review_indicators{requires_human_review, review_reason,
                      complexity_score, false_positive_risk},
    metadata{...}, quality_indicators{...}

``requires_human_review`` here reflects *tool behaviour* only.  Criterion
policy (criteria that always need a reviewer) lives in ``classifier``.

Usage:
    from compliance_audit.services.evidence_extractor import extract_evidence
    evidence = extract_evidence(raw_result, "1.4.3")
"""

from __future__ import annotations

import logging
import math
import re
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from typing import Any

from compliance_audit.core.exceptions import ExtractionError

logger = logging.getLogger(__name__)

# Cap for every HTML excerpt stored in evidence.
HTML_MAX_LENGTH = 200

GENERIC_REVIEW_REASON = "generic evidence extraction"

# Criteria whose automated verdicts are hard to interpret in isolation.
COMPLEX_CRITERIA = frozenset({"3.3.4", "2.4.4", "3.2.1"})

AAA_CRITERIA = frozenset({"2.4.9", "2.4.10", "3.2.5", "3.3.6"})

TOOL_ALIASES = {
    "axe": "axe",
    "axe-core": "axe",
    "axecore": "axe",
    "lighthouse": "lighthouse",
    "pa11y": "pa11y",
    "wave": "wave",
    "webaim-wave": "wave",
    "playwright": "playwright",
}

# Lighthouse accessibility audits relevant to each criterion.
LIGHTHOUSE_AUDITS_BY_CRITERION = {
    "1.1.1": ("image-alt", "input-image-alt", "object-alt", "svg-img-alt", "area-alt"),
    "1.3.1": ("list", "listitem", "definition-list", "dlitem", "th-has-data-cells",
              "td-headers-attr", "label", "heading-order"),
    "1.4.3": ("color-contrast",),
    "2.1.1": ("accesskeys", "tabindex", "scrollable-region-focusable"),
    "2.4.1": ("bypass",),
    "2.4.2": ("document-title",),
    "2.4.4": ("link-name",),
    "3.1.1": ("html-has-lang", "html-lang-valid"),
    "3.3.2": ("label", "form-field-multiple-labels"),
    "4.1.1": ("duplicate-id-active", "duplicate-id-aria"),
    "4.1.2": ("button-name", "link-name", "aria-allowed-attr", "aria-required-attr",
              "aria-valid-attr", "aria-valid-attr-value", "frame-title", "label"),
}

# WAVE item ids relevant to each criterion.
WAVE_ITEMS_BY_CRITERION = {
    "1.1.1": ("alt_missing", "alt_link_missing", "alt_spacer_missing",
              "alt_input_missing", "alt_area_missing", "alt_map_missing",
              "alt_suspicious", "alt_redundant"),
    "1.3.1": ("label_missing", "label_multiple", "heading_empty", "th_empty",
              "heading_skipped", "table_layout", "fieldset_missing"),
    "1.4.3": ("contrast",),
    "2.4.1": ("skip_link_missing",),
    "2.4.2": ("title_invalid",),
    "2.4.4": ("link_empty", "alt_link_missing", "link_suspicious", "link_redundant"),
    "3.1.1": ("language_missing",),
    "3.3.2": ("label_missing", "label_empty", "label_orphaned"),
    "4.1.2": ("button_empty", "label_missing", "label_empty", "aria_reference_broken"),
}

_AREA_BY_TAG = {
    "nav": "navigation",
    "header": "header",
    "footer": "footer",
    "main": "main_content",
    "form": "forms",
    "input": "forms",
    "select": "forms",
    "textarea": "forms",
    "label": "forms",
    "button": "controls",
    "a": "links",
    "img": "images",
    "svg": "images",
    "picture": "images",
    "table": "tables",
    "th": "tables",
    "td": "tables",
    "video": "media",
    "audio": "media",
    "iframe": "embedded_content",
}

_SEVERITY_BY_IMPACT = {
    "critical": "critical",
    "serious": "high",
    "moderate": "medium",
    "minor": "low",
}


# ═════════════════════════════════════════════════════════════════════════════
# Shared helpers
# ═════════════════════════════════════════════════════════════════════════════

def truncate_html(html: Any, max_length: int = HTML_MAX_LENGTH) -> str:
    """Return *html* cut to ``max_length`` characters plus an ellipsis."""
    if not html:
        return ""
    text = str(html)
    return text[:max_length] + "..." if len(text) > max_length else text


def normalize_tool_name(tool_name: Any) -> str | None:
    if not isinstance(tool_name, str) or not tool_name.strip():
        return None
    key = tool_name.strip().lower()
    return TOOL_ALIASES.get(key, key)


def criterion_token(criterion: str) -> str:
    """``"1.4.3"`` → ``"143"`` (axe tag suffix)."""
    return str(criterion or "").replace(".", "")


def matches_criterion_tag(tags: Any, criterion: str) -> bool:
    """True when any axe-style tag/criteria entry refers to *criterion*.

    Accepts ``wcag143`` tags as well as dotted ``1.4.3`` entries.
    """
    if not tags or not criterion:
        return False
    token = criterion_token(criterion)
    for tag in tags:
        tag = str(tag)
        if tag == criterion or tag.endswith(f"wcag{token}") or tag == token:
            return True
    return False


def count_of(value: Any) -> int | None:
    """Violation/pass counts arrive either as numbers or as detail lists."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, list):
        return len(value)
    return None


def selector_of(node: dict) -> str:
    target = node.get("target", node.get("selector", ""))
    if isinstance(target, list):
        return " ".join(str(t) for t in target)
    return str(target or "")


def affected_area(selector: str) -> str:
    """Coarse page region for a CSS selector, from its first tag name."""
    match = re.match(r"\s*([a-zA-Z][a-zA-Z0-9-]*)", selector or "")
    if not match:
        return "content"
    return _AREA_BY_TAG.get(match.group(1).lower(), "content")


def assess_severity(impact: Any) -> str:
    return _SEVERITY_BY_IMPACT.get(str(impact or "").lower(), "unknown")


def remediation_priority(impacts: list[str]) -> str:
    if "critical" in impacts:
        return "immediate"
    if "serious" in impacts:
        return "high"
    if "moderate" in impacts:
        return "medium"
    return "low"


def remediation_guidance(help_text: str | None, failure_summary: str | None,
                         help_url: str | None) -> str:
    parts = []
    if help_text:
        parts.append(help_text.rstrip("."))
    if failure_summary:
        first = str(failure_summary).strip().splitlines()
        fixes = [line.strip() for line in first[1:] if line.strip()] or first[:1]
        if fixes:
            parts.append(fixes[0].rstrip("."))
    if help_url:
        parts.append(f"See {help_url}")
    return ". ".join(parts) if parts else "Review the element against the WCAG criterion"


def complexity_score(criterion: str) -> float:
    return 0.8 if criterion in COMPLEX_CRITERIA else 0.4


def compliance_level(criterion: str) -> str:
    return "AAA" if criterion in AAA_CRITERIA else "AA"


def _is_finite_number(value: Any) -> bool:
    """Real numbers only: bools, NaN and infinities are rejected."""
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _as_ms(value: Any) -> int | None:
    if not _is_finite_number(value):
        return None
    return int(value)


def _payload(raw_result: dict) -> tuple[dict, dict]:
    """Return ``(raw_results, result)``; wrappers nest detail under ``result``."""
    raw_results = raw_result.get("raw_results")
    if not isinstance(raw_results, dict):
        raise ExtractionError(raw_result.get("tool_name"), "raw_results is not an object")
    result = raw_results.get("result")
    if not isinstance(result, dict):
        result = raw_results
    return raw_results, result


# ═════════════════════════════════════════════════════════════════════════════
# Strategy registry
# ═════════════════════════════════════════════════════════════════════════════

_extractor_registry: dict[str, "BaseEvidenceExtractor"] = {}


def register_extractor(name: str):
    """Class decorator registering a strategy under a normalised tool name."""
    def decorator(cls):
        _extractor_registry[name] = cls()
        return cls
    return decorator


def get_extractor(tool_name: Any) -> "BaseEvidenceExtractor | None":
    return _extractor_registry.get(normalize_tool_name(tool_name) or "")


def registered_tools() -> list[str]:
    return sorted(_extractor_registry)


class BaseEvidenceExtractor(ABC):
    """Strategy interface: decide pass/fail, then build the matching shape.

    Pass evidence lists rules satisfied and elements verified; fail evidence
    lists violations, their severity and per-element remediation.
    """

    tool_label = ""
    method = "automated_scan"
    scope = "full_page"

    def extract(self, raw_result: dict, criterion: str) -> dict:
        raw_results, result = _payload(raw_result)
        if self.is_pass(result):
            evidence = self.extract_pass(raw_results, result, criterion)
        else:
            evidence = self.extract_fail(raw_results, result, criterion)
        evidence["wcag_criterion"] = criterion
        return evidence

    @abstractmethod
    def is_pass(self, result: dict) -> bool:
        """True when the scanner reported no failures."""

    @abstractmethod
    def extract_pass(self, raw_results: dict, result: dict, criterion: str) -> dict:
        """Build ``automated_pass`` evidence."""

    @abstractmethod
    def extract_fail(self, raw_results: dict, result: dict, criterion: str) -> dict:
        """Build ``automated_fail`` evidence."""

    def test_execution(self, raw_results: dict, result: dict) -> dict:
        return {
            "tool": self.tool_label,
            "method": self.method,
            "scope": self.scope,
            "execution_time": _as_ms(
                raw_results.get("duration")
                or result.get("executionTime")
                or result.get("execution_time_ms")
            ),
            "timestamp": (
                raw_results.get("endTime")
                or result.get("tested_at")
                or raw_results.get("tested_at")
            ),
        }


# ═════════════════════════════════════════════════════════════════════════════
# axe-core
# ═════════════════════════════════════════════════════════════════════════════

@register_extractor("axe")
class AxeExtractor(BaseEvidenceExtractor):
    """axe-core: static DOM analysis.

    Failures are reliable (high confidence, low false-positive risk); passes
    are only as confident as the number of checks that actually ran.
    """

    tool_label = "axe-core"
    method = "static_dom_analysis"

    def _violation_count(self, result: dict) -> int:
        count = count_of(result.get("violations"))
        if count is None:
            raise ExtractionError("axe", "violations missing")
        return count

    def _detailed_violations(self, result: dict) -> list[dict]:
        detailed = result.get("detailedViolations")
        if detailed is None and isinstance(result.get("violations"), list):
            detailed = result["violations"]
        return [v for v in (detailed or []) if isinstance(v, dict)]

    def is_pass(self, result: dict) -> bool:
        return self._violation_count(result) == 0

    def _pass_confidence(self, pass_count: int) -> str:
        if pass_count > 10:
            return "high"
        if pass_count > 5:
            return "medium"
        return "low"

    def extract_pass(self, raw_results: dict, result: dict, criterion: str) -> dict:
        passes = result.get("passes")
        pass_count = count_of(passes) or 0

        details = []
        if isinstance(passes, list):
            for rule in passes:
                if not isinstance(rule, dict) or not matches_criterion_tag(rule.get("tags"), criterion):
                    continue
                help_text = rule.get("help")
                details.append({
                    "rule_id": rule.get("id"),
                    "rule_description": rule.get("description") or help_text,
                    "help_text": help_text,
                    "help_url": rule.get("helpUrl"),
                    "elements_tested": [
                        {
                            "selector": selector_of(node),
                            "html": truncate_html(node.get("html")),
                            "verification": f"Passed: {help_text or 'Accessibility rule satisfied'}",
                        }
                        for node in rule.get("nodes") or []
                        if isinstance(node, dict)
                    ],
                    "wcag_criteria": [t for t in rule.get("tags") or [] if str(t).startswith("wcag")],
                })

        detailed = bool(details)
        if not detailed:
            details = [{
                "rule_id": f"wcag-{criterion}",
                "rule_description": f"WCAG {criterion} automated validation",
                "help_text": f"axe-core found no violations for WCAG {criterion}",
                "verification": f"{pass_count} accessibility checks passed",
            }]

        confidence = self._pass_confidence(pass_count)
        needs_review = confidence == "low"
        return {
            "evidence_type": "automated_pass",
            "tool_result": "pass",
            "confidence_level": confidence,
            "evidence_strength": "high" if detailed else "medium",
            "test_execution": self.test_execution(raw_results, result),
            "pass_evidence": {
                "rules_satisfied": [d["rule_description"] for d in details],
                "detailed_findings": details,
                "elements_verified": [el for d in details for el in d.get("elements_tested", [])],
                "total_checks_passed": pass_count,
                "wcag_compliance_indicators": {
                    "criterion_tested": criterion,
                    "compliance_level": compliance_level(criterion),
                    "automated_coverage": "comprehensive" if detailed else "basic",
                },
            },
            "review_indicators": {
                "requires_human_review": needs_review,
                "review_reason": (
                    "Few axe-core checks ran for this criterion" if needs_review else None
                ),
                "complexity_score": complexity_score(criterion),
                "false_positive_risk": 0.2,
            },
        }

    def extract_fail(self, raw_results: dict, result: dict, criterion: str) -> dict:
        detailed = self._detailed_violations(result)
        relevant = [
            v for v in detailed
            if matches_criterion_tag(v.get("wcagCriteria") or v.get("tags"), criterion)
        ]
        matched = bool(relevant)

        violations = []
        for violation in relevant:
            violations.append({
                "rule_id": violation.get("id"),
                "description": violation.get("description"),
                "impact": violation.get("impact"),
                "help_text": violation.get("help"),
                "help_url": violation.get("helpUrl"),
                "affected_elements": [
                    {
                        "selector": selector_of(node),
                        "html": truncate_html(node.get("html")),
                        "failure_summary": node.get("failureSummary"),
                        "remediation_guidance": remediation_guidance(
                            violation.get("help"), node.get("failureSummary"),
                            violation.get("helpUrl"),
                        ),
                    }
                    for node in violation.get("nodes") or []
                    if isinstance(node, dict)
                ],
                "wcag_criteria": list(violation.get("wcagCriteria") or []),
                "severity_assessment": assess_severity(violation.get("impact")),
            })

        impacts = [str(v.get("impact") or "unknown").lower() for v in relevant]
        return {
            "evidence_type": "automated_fail",
            "tool_result": "fail",
            "confidence_level": "high" if matched else "medium",
            "evidence_strength": "high" if matched else "medium",
            "test_execution": self.test_execution(raw_results, result),
            "fail_evidence": {
                "violations_found": violations,
                "total_violations": len(relevant),
                "page_violation_count": self._violation_count(result),
                "impact_summary": dict(Counter(impacts)),
                "affected_areas": sorted({
                    affected_area(el["selector"])
                    for v in violations for el in v["affected_elements"]
                }),
                "remediation_priority": remediation_priority(impacts),
            },
            "review_indicators": {
                "requires_human_review": not matched,
                "review_reason": (
                    None if matched
                    else f"axe-core violations are not mapped to WCAG {criterion}"
                ),
                "complexity_score": complexity_score(criterion),
                "false_positive_risk": 0.1,
            },
        }


# ═════════════════════════════════════════════════════════════════════════════
# Lighthouse
# ═════════════════════════════════════════════════════════════════════════════

@register_extractor("lighthouse")
class LighthouseExtractor(BaseEvidenceExtractor):
    """Lighthouse: score-based audit.

    A pass is only as trustworthy as the accessibility score is high, and
    every pass goes to a reviewer for confirmation.
    """

    tool_label = "lighthouse"
    method = "chromium_audit"
    scope = "full_page_plus_performance"

    PASS_THRESHOLD = 90
    CONFIRMED_THRESHOLD = 95

    def _score(self, result: dict) -> float:
        score = result.get("accessibilityScore")
        if score is None:
            score = result.get("accessibility_score", result.get("score"))
        if not _is_finite_number(score):
            raise ExtractionError("lighthouse", "accessibility score missing")
        # Lighthouse reports category scores as 0..1
        return float(score) * 100 if score <= 1 else float(score)

    def _audits(self, result: dict) -> list[dict]:
        audits = result.get("detailedViolations")
        if audits is None and isinstance(result.get("violations"), list):
            audits = result["violations"]
        return [a for a in (audits or []) if isinstance(a, dict)]

    def is_pass(self, result: dict) -> bool:
        violations = count_of(result.get("violations")) or 0
        return violations == 0 and self._score(result) >= self.PASS_THRESHOLD

    def _confidence(self, score: float) -> str:
        if score >= self.CONFIRMED_THRESHOLD:
            return "high"
        if score >= 85:
            return "medium"
        return "low"

    def extract_pass(self, raw_results: dict, result: dict, criterion: str) -> dict:
        score = self._score(result)
        below = score < self.CONFIRMED_THRESHOLD
        return {
            "evidence_type": "automated_pass",
            "tool_result": "pass",
            "confidence_level": self._confidence(score),
            "evidence_strength": "medium" if below else "high",
            "test_execution": self.test_execution(raw_results, result),
            "pass_evidence": {
                "accessibility_score": score,
                "performance_context": result.get("performanceScore"),
                "audit_results": "accessibility_audit_passed",
                "lighthouse_categories": ["accessibility"],
                "rules_satisfied": list(LIGHTHOUSE_AUDITS_BY_CRITERION.get(criterion, ())),
                "wcag_compliance_indicators": {
                    "criterion_tested": criterion,
                    "compliance_level": compliance_level(criterion),
                    "automated_coverage": (
                        "targeted" if criterion in LIGHTHOUSE_AUDITS_BY_CRITERION else "basic"
                    ),
                },
            },
            "review_indicators": {
                "requires_human_review": True,
                "review_reason": (
                    "Accessibility score below 95%" if below
                    else "Lighthouse automated pass needs manual confirmation"
                ),
                "complexity_score": 0.3,
                "false_positive_risk": 0.3,
            },
        }

    def extract_fail(self, raw_results: dict, result: dict, criterion: str) -> dict:
        score = self._score(result)
        relevant_ids = set(LIGHTHOUSE_AUDITS_BY_CRITERION.get(criterion, ()))
        relevant = [a for a in self._audits(result) if a.get("id") in relevant_ids]
        matched = bool(relevant)

        violations = []
        for audit in relevant:
            items = ((audit.get("details") or {}).get("items")) or []
            elements = []
            for item in items:
                node = item.get("node") if isinstance(item, dict) else None
                if not isinstance(node, dict):
                    continue
                elements.append({
                    "selector": node.get("selector") or "",
                    "html": truncate_html(node.get("snippet")),
                    "failure_summary": node.get("explanation"),
                    "remediation_guidance": remediation_guidance(
                        audit.get("title"), node.get("explanation"), None,
                    ),
                })
            audit_score = audit.get("score")
            impact = "serious" if audit_score in (0, 0.0) else "moderate"
            violations.append({
                "rule_id": audit.get("id"),
                "description": audit.get("description"),
                "impact": impact,
                "help_text": audit.get("title"),
                "audit_score": audit_score,
                "affected_elements": elements,
                "severity_assessment": assess_severity(impact),
            })

        impacts = [v["impact"] for v in violations]
        return {
            "evidence_type": "automated_fail",
            "tool_result": "fail",
            "confidence_level": "high" if matched else "medium",
            "evidence_strength": "high" if matched else "low",
            "test_execution": self.test_execution(raw_results, result),
            "fail_evidence": {
                "accessibility_score": score,
                "violations_found": violations,
                "total_violations": len(relevant),
                "impact_summary": dict(Counter(impacts)),
                "affected_areas": sorted({
                    affected_area(el["selector"])
                    for v in violations for el in v["affected_elements"]
                }),
                "remediation_priority": remediation_priority(impacts),
            },
            "review_indicators": {
                "requires_human_review": not matched,
                "review_reason": (
                    None if matched
                    else f"Lighthouse score {score:.0f} without a failing audit for WCAG {criterion}"
                ),
                "complexity_score": 0.3,
                "false_positive_risk": 0.2,
            },
        }


# ═════════════════════════════════════════════════════════════════════════════
# Pa11y
# ═════════════════════════════════════════════════════════════════════════════

@register_extractor("pa11y")
class Pa11yExtractor(BaseEvidenceExtractor):
    """Pa11y (HTML_CodeSniffer runner).

    Issue codes embed the criterion as ``Guideline1_4.1_4_3``.  Warnings on
    a clean run make the pass low-confidence.
    """

    tool_label = "pa11y"
    method = "html_codesniffer"

    def _issues(self, result: dict) -> list[dict]:
        issues = result.get("issues")
        if issues is None:
            issues = result.get("detailedViolations")
        if issues is None and isinstance(result.get("violations"), list):
            issues = result["violations"]
        return [i for i in (issues or []) if isinstance(i, dict)]

    def _errors(self, result: dict) -> list[dict]:
        return [i for i in self._issues(result) if (i.get("type") or "error") == "error"]

    @staticmethod
    def _code_matches(code: Any, criterion: str) -> bool:
        token = str(criterion or "").replace(".", "_")
        if not token:
            return False
        return re.search(rf"(?<![\d_]){re.escape(token)}(?!\d)", str(code or "")) is not None

    def is_pass(self, result: dict) -> bool:
        if isinstance(result.get("issues"), list) or isinstance(result.get("violations"), list):
            return not self._errors(result)
        count = count_of(result.get("violations"))
        if count is None:
            raise ExtractionError("pa11y", "neither issues nor violations present")
        return count == 0

    def extract_pass(self, raw_results: dict, result: dict, criterion: str) -> dict:
        warnings = [
            i for i in self._issues(result)
            if i.get("type") == "warning" and self._code_matches(i.get("code"), criterion)
        ]
        needs_review = bool(warnings)
        return {
            "evidence_type": "automated_pass",
            "tool_result": "pass",
            "confidence_level": "low" if needs_review else "medium",
            "evidence_strength": "medium",
            "test_execution": self.test_execution(raw_results, result),
            "pass_evidence": {
                "rules_satisfied": [f"HTML_CodeSniffer checks for WCAG {criterion}"],
                "warnings_for_criterion": [
                    {
                        "code": w.get("code"),
                        "message": w.get("message"),
                        "selector": w.get("selector") or "",
                        "html": truncate_html(w.get("context")),
                    }
                    for w in warnings
                ],
                "total_warnings": count_of(result.get("warnings")) or len(warnings),
                "wcag_compliance_indicators": {
                    "criterion_tested": criterion,
                    "compliance_level": compliance_level(criterion),
                    "automated_coverage": "basic",
                },
            },
            "review_indicators": {
                "requires_human_review": needs_review,
                "review_reason": (
                    "Pa11y warnings need manual verification" if needs_review else None
                ),
                "complexity_score": complexity_score(criterion),
                "false_positive_risk": 0.2,
            },
        }

    def extract_fail(self, raw_results: dict, result: dict, criterion: str) -> dict:
        relevant = [e for e in self._errors(result) if self._code_matches(e.get("code"), criterion)]
        matched = bool(relevant)
        violations = [
            {
                "rule_id": issue.get("code"),
                "description": issue.get("message"),
                "impact": "serious",
                "affected_elements": [{
                    "selector": issue.get("selector") or "",
                    "html": truncate_html(issue.get("context")),
                    "failure_summary": issue.get("message"),
                    "remediation_guidance": remediation_guidance(issue.get("message"), None, None),
                }],
                "severity_assessment": assess_severity("serious"),
            }
            for issue in relevant
        ]
        impacts = [v["impact"] for v in violations]
        return {
            "evidence_type": "automated_fail",
            "tool_result": "fail",
            "confidence_level": "high" if matched else "medium",
            "evidence_strength": "high" if matched else "medium",
            "test_execution": self.test_execution(raw_results, result),
            "fail_evidence": {
                "violations_found": violations,
                "total_violations": len(relevant),
                "impact_summary": dict(Counter(impacts)),
                "affected_areas": sorted({
                    affected_area(el["selector"])
                    for v in violations for el in v["affected_elements"]
                }),
                "remediation_priority": remediation_priority(impacts),
            },
            "review_indicators": {
                "requires_human_review": not matched,
                "review_reason": (
                    None if matched else f"Pa11y errors are not mapped to WCAG {criterion}"
                ),
                "complexity_score": complexity_score(criterion),
                "false_positive_risk": 0.2,
            },
        }


# ═════════════════════════════════════════════════════════════════════════════
# WAVE
# ═════════════════════════════════════════════════════════════════════════════

@register_extractor("wave")
class WaveExtractor(BaseEvidenceExtractor):
    """WebAIM WAVE: ``categories`` of error / contrast / alert items.

    Errors and contrast failures count as failures; alerts are advisory and
    push a clean run to review.
    """

    tool_label = "wave"
    method = "rendered_page_analysis"

    FAILING_CATEGORIES = ("error", "contrast")

    def _categories(self, result: dict) -> dict:
        categories = result.get("categories")
        if not isinstance(categories, dict):
            raise ExtractionError("wave", "categories missing")
        return categories

    def _items(self, result: dict, category: str) -> list[dict]:
        items = (self._categories(result).get(category) or {}).get("items") or {}
        if isinstance(items, dict):
            return [dict(item, id=item.get("id", key)) for key, item in items.items()
                    if isinstance(item, dict)]
        return [i for i in items if isinstance(i, dict)]

    def _relevant(self, items: list[dict], criterion: str) -> list[dict]:
        ids = set(WAVE_ITEMS_BY_CRITERION.get(criterion, ()))
        return [i for i in items if i.get("id") in ids]

    def is_pass(self, result: dict) -> bool:
        categories = self._categories(result)
        failing = 0
        for name in self.FAILING_CATEGORIES:
            failing += count_of((categories.get(name) or {}).get("count")) or 0
        return failing == 0

    def extract_pass(self, raw_results: dict, result: dict, criterion: str) -> dict:
        alerts = self._relevant(self._items(result, "alert"), criterion)
        needs_review = bool(alerts)
        return {
            "evidence_type": "automated_pass",
            "tool_result": "pass",
            "confidence_level": "low" if needs_review else "medium",
            "evidence_strength": "medium",
            "test_execution": self.test_execution(raw_results, result),
            "pass_evidence": {
                "rules_satisfied": [f"WAVE reported no errors for WCAG {criterion}"],
                "alerts_for_criterion": [
                    {
                        "rule_id": a.get("id"),
                        "description": a.get("description"),
                        "count": a.get("count"),
                        "selectors": [str(s) for s in (a.get("selectors") or [])][:20],
                    }
                    for a in alerts
                ],
                "wcag_compliance_indicators": {
                    "criterion_tested": criterion,
                    "compliance_level": compliance_level(criterion),
                    "automated_coverage": (
                        "targeted" if criterion in WAVE_ITEMS_BY_CRITERION else "basic"
                    ),
                },
            },
            "review_indicators": {
                "requires_human_review": needs_review,
                "review_reason": "WAVE alerts need manual verification" if needs_review else None,
                "complexity_score": complexity_score(criterion),
                "false_positive_risk": 0.25,
            },
        }

    def extract_fail(self, raw_results: dict, result: dict, criterion: str) -> dict:
        relevant = []
        for category in self.FAILING_CATEGORIES:
            for item in self._relevant(self._items(result, category), criterion):
                relevant.append((category, item))
        matched = bool(relevant)

        violations = []
        for category, item in relevant:
            impact = "serious" if category == "error" else "moderate"
            violations.append({
                "rule_id": item.get("id"),
                "description": item.get("description"),
                "impact": impact,
                "category": category,
                "count": item.get("count"),
                "affected_elements": [
                    {
                        "selector": str(selector),
                        "html": "",
                        "failure_summary": item.get("description"),
                        "remediation_guidance": remediation_guidance(item.get("description"), None, None),
                    }
                    for selector in (item.get("selectors") or [])
                ],
                "severity_assessment": assess_severity(impact),
            })

        impacts = [v["impact"] for v in violations]
        return {
            "evidence_type": "automated_fail",
            "tool_result": "fail",
            "confidence_level": "high" if matched else "medium",
            "evidence_strength": "high" if matched else "medium",
            "test_execution": self.test_execution(raw_results, result),
            "fail_evidence": {
                "violations_found": violations,
                "total_violations": len(violations),
                "impact_summary": dict(Counter(impacts)),
                "affected_areas": sorted({
                    affected_area(el["selector"])
                    for v in violations for el in v["affected_elements"]
                }),
                "remediation_priority": remediation_priority(impacts),
            },
            "review_indicators": {
                "requires_human_review": not matched,
                "review_reason": (
                    None if matched else f"WAVE errors are not mapped to WCAG {criterion}"
                ),
                "complexity_score": complexity_score(criterion),
                "false_positive_risk": 0.15,
            },
        }


# ═════════════════════════════════════════════════════════════════════════════
# Playwright
# ═════════════════════════════════════════════════════════════════════════════

@register_extractor("playwright")
class PlaywrightExtractor(BaseEvidenceExtractor):
    """Playwright runs that embed axe-core output are read by AxeExtractor.

    Anything else (custom ARIA checks) has no structured shape and is sent
    to the generic path.
    """

    tool_label = "playwright"
    method = "browser_automation"

    def extract(self, raw_result: dict, criterion: str) -> dict:
        raw_results, result = _payload(raw_result)
        if "axe-core" in (raw_results.get("tool"), result.get("tool")):
            evidence = _extractor_registry["axe"].extract(raw_result, criterion)
            evidence["test_execution"]["method"] = "playwright_axe"
            return evidence
        raise ExtractionError("playwright", "no axe-core payload")

    def is_pass(self, result: dict) -> bool:
        raise ExtractionError("playwright", "no axe-core payload")

    def extract_pass(self, raw_results: dict, result: dict, criterion: str) -> dict:
        raise ExtractionError("playwright", "no axe-core payload")

    def extract_fail(self, raw_results: dict, result: dict, criterion: str) -> dict:
        raise ExtractionError("playwright", "no axe-core payload")


# ═════════════════════════════════════════════════════════════════════════════
# Generic fallback + enrichment
# ═════════════════════════════════════════════════════════════════════════════

def create_generic_evidence(raw_result: Any, criterion: str) -> dict:
    """Evidence built from nothing but ``violations_count``.

    ``violations_count == 0`` ⇒ pass, anything else (including a missing
    count) ⇒ fail.  Always flagged for human review.
    """
    source = raw_result if isinstance(raw_result, dict) else {}
    tool_name = source.get("tool_name") if isinstance(source.get("tool_name"), str) else None
    count = source.get("violations_count")
    numeric = _is_finite_number(count)
    is_pass = numeric and count == 0
    label = tool_name or "unknown tool"

    if is_pass:
        summary = f"{label} found no violations for WCAG {criterion}"
    elif numeric:
        summary = f"{label} found {count} violations for WCAG {criterion}"
    else:
        summary = f"{label} reported no violation count for WCAG {criterion}"

    return {
        "evidence_type": "automated_pass" if is_pass else "automated_fail",
        "tool_result": "pass" if is_pass else "fail",
        "confidence_level": "medium" if numeric else "low",
        "evidence_strength": "medium" if numeric else "low",
        "wcag_criterion": criterion,
        "test_execution": {
            "tool": tool_name,
            "method": "automated_scan",
            "scope": None,
            "execution_time": None,
            "timestamp": source.get("executed_at"),
        },
        ("pass_evidence" if is_pass else "fail_evidence"): {
            "summary": summary,
            "raw_tool_output": source.get("raw_results"),
        },
        "review_indicators": {
            "requires_human_review": True,
            "review_reason": GENERIC_REVIEW_REASON,
            "complexity_score": 0.5,
            "false_positive_risk": 0.4,
        },
    }


def _completeness(evidence: dict) -> str:
    score = 0.0
    if evidence.get("test_execution"):
        score += 0.3
    if evidence.get("pass_evidence") or evidence.get("fail_evidence"):
        score += 0.4
    if evidence.get("review_indicators"):
        score += 0.3
    if score >= 0.8:
        return "complete"
    return "partial" if score >= 0.5 else "minimal"


def _extraction_confidence(evidence: dict) -> str:
    if (evidence.get("pass_evidence") or {}).get("detailed_findings"):
        return "high"
    if (evidence.get("fail_evidence") or {}).get("violations_found"):
        return "high"
    return "medium"


def enhance_evidence(evidence: dict, raw_result: Any, now: datetime | None = None) -> dict:
    """Attach extraction metadata and quality indicators."""
    source = raw_result if isinstance(raw_result, dict) else {}
    reported = source.get("violations_count")
    if not _is_finite_number(reported):
        reported = None
    result_id = source.get("id")

    evidence["metadata"] = {
        "extraction_timestamp": (now or datetime.now(timezone.utc)).isoformat(),
        "automated_result_id": str(result_id) if result_id is not None else None,
        "tool_version": source.get("tool_version"),
        "page_context": {
            "url": source.get("page_url"),
            "title": source.get("page_title"),
        },
        "reported_violations": reported,
    }
    has_required = all(evidence.get(k) for k in ("evidence_type", "tool_result", "confidence_level"))
    evidence["quality_indicators"] = {
        "evidence_completeness": _completeness(evidence),
        "data_integrity": "high" if has_required else "medium",
        "extraction_confidence": _extraction_confidence(evidence),
    }
    return evidence


def extract_evidence(raw_result: Any, criterion: str, *, now: datetime | None = None) -> dict:
    """Normalise *raw_result* for *criterion*.  Never raises.

    Unknown tools and unparseable payloads degrade to generic evidence so an
    automated result always yields something auditable.
    """
    criterion = str(criterion or "")
    tool_name = raw_result.get("tool_name") if isinstance(raw_result, dict) else None
    extractor = get_extractor(tool_name)

    if extractor is None:
        logger.warning(
            "No evidence extractor for tool %s — using generic evidence", tool_name,
            extra={"tool_name": tool_name, "wcag_criterion": criterion},
        )
        evidence = create_generic_evidence(raw_result, criterion)
    else:
        try:
            evidence = extractor.extract(raw_result, criterion)
        except (ExtractionError, LookupError, TypeError, ValueError,
                ArithmeticError, AttributeError) as exc:
            logger.warning(
                "Evidence extraction failed for %s (WCAG %s): %s — using generic evidence",
                tool_name, criterion, exc,
                extra={"tool_name": tool_name, "wcag_criterion": criterion},
            )
            evidence = create_generic_evidence(raw_result, criterion)

    return enhance_evidence(evidence, raw_result, now)
