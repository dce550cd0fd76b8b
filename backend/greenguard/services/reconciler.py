"""
reconciler.py

Purpose:
  Merges the rule-based verdict and the AI verdict into the final severity.

Precedence (strict total order):
  VERIFIED (0) < WARNING (2) < ANOMALY (3)

  - The higher-ranked verdict wins, with its confidence and reasoning unchanged.
  - On a tie the AI verdict's confidence and reasoning are kept.
  - The losing verdict is returned as `discarded` so its reasoning reaches the trace.

Label mapping:
  Classifier labels are normalized through SEVERITY_LABELS before ranking.
  Reviewer states (PENDING, REJECTED) are not classifier outputs and are refused.
"""
from __future__ import annotations

from typing import Dict, Union

from greenguard.models.domain import ClassifierVerdict, ReconciledVerdict, Severity

SEVERITY_RANK: Dict[Severity, int] = {
    Severity.VERIFIED: 0,
    Severity.WARNING: 2,
    Severity.ANOMALY: 3,
}

SEVERITY_LABELS: Dict[str, Severity] = {
    "NORMAL": Severity.VERIFIED,
    "VERIFIED": Severity.VERIFIED,
    "WARNING": Severity.WARNING,
    "ANOMALY": Severity.ANOMALY,
}


def normalize_severity(label: Union[str, Severity]) -> Severity:
    if isinstance(label, Severity):
        return label
    key = str(label or "").strip().upper()
    if key not in SEVERITY_LABELS:
        raise ValueError(f"{label!r} is not a classifier severity")
    return SEVERITY_LABELS[key]


def severity_rank(label: Union[str, Severity]) -> int:
    return SEVERITY_RANK[normalize_severity(label)]


def reconcile(rule_verdict: ClassifierVerdict, ai_verdict: ClassifierVerdict) -> ReconciledVerdict:
    rule_rank = severity_rank(rule_verdict.severity)
    ai_rank = severity_rank(ai_verdict.severity)

    if rule_rank > ai_rank:
        chosen, discarded = rule_verdict, ai_verdict
    else:
        chosen, discarded = ai_verdict, rule_verdict

    return ReconciledVerdict(
        severity=normalize_severity(chosen.severity),
        confidence=chosen.confidence,
        reasoning=chosen.reasoning,
        chosen=chosen.source,
        discarded=discarded,
    )
