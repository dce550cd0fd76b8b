import itertools

import pytest

from greenguard.models.domain import ClassifierVerdict, Severity, VerdictSource
from greenguard.services.reconciler import normalize_severity, reconcile, severity_rank


def _verdict(severity, confidence, source, reasoning=None):
    return ClassifierVerdict(
        severity=severity,
        confidence=confidence,
        reasoning=reasoning or f"{source.value} says {severity.value}",
        source=source,
    )


def test_rule_wins_when_strictly_higher():
    rule = _verdict(Severity.ANOMALY, 85, VerdictSource.RULES)
    ai = _verdict(Severity.VERIFIED, 95, VerdictSource.AI)

    final = reconcile(rule, ai)

    assert final.severity == Severity.ANOMALY
    assert final.confidence == 85
    assert final.reasoning == rule.reasoning
    assert final.chosen == VerdictSource.RULES
    assert final.discarded == ai


def test_ai_escalation_kept():
    rule = _verdict(Severity.VERIFIED, 80, VerdictSource.RULES)
    ai = _verdict(Severity.WARNING, 65, VerdictSource.AI)

    final = reconcile(rule, ai)

    assert final.severity == Severity.WARNING
    assert final.confidence == 65
    assert final.chosen == VerdictSource.AI


def test_tie_keeps_ai_confidence_and_reasoning():
    rule = _verdict(Severity.WARNING, 70, VerdictSource.RULES)
    ai = _verdict(Severity.WARNING, 55, VerdictSource.AI_FALLBACK, reasoning="fallback view")

    final = reconcile(rule, ai)

    assert final.confidence == 55
    assert final.reasoning == "fallback view"
    assert final.discarded.source == VerdictSource.RULES


@pytest.mark.parametrize("rule_sev,ai_sev", list(itertools.product(Severity, repeat=2)))
def test_never_below_either_input(rule_sev, ai_sev):
    final = reconcile(
        _verdict(rule_sev, 50, VerdictSource.RULES),
        _verdict(ai_sev, 50, VerdictSource.AI),
    )
    assert severity_rank(final.severity) == max(severity_rank(rule_sev), severity_rank(ai_sev))


def test_normal_maps_to_verified():
    assert normalize_severity("NORMAL") == Severity.VERIFIED
    assert normalize_severity(" anomaly ") == Severity.ANOMALY
    assert severity_rank("NORMAL") < severity_rank("WARNING") < severity_rank("ANOMALY")


@pytest.mark.parametrize("label", ["PENDING", "REJECTED", "", "CRITICAL"])
def test_non_classifier_labels_rejected(label):
    with pytest.raises(ValueError):
        normalize_severity(label)
