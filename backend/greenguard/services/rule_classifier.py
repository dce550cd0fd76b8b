"""
rule_classifier.py

Purpose:
  Deterministic pre-check of a reading against the facility's contractual
  ceiling (from the electricity bill). Acts as the severity floor of the
  pipeline: the AI stage may escalate this verdict but never lower it.

Decision Hierarchy (variance over the ceiling):
  1. **ANOMALY**: variance > 20 %
  2. **WARNING**: 10 % < variance <= 20 %
  3. **VERIFIED**: otherwise

Invariant Guarantees:
  - Pure: same reading + rules always produce the same verdict.
  - A non-positive ceiling raises `InvalidFacilityRules` (no verdict is guessed).
"""
from __future__ import annotations

from greenguard.errors import InvalidFacilityRules
from greenguard.models.domain import (
    ClassifierVerdict,
    FacilityRules,
    Severity,
    TelemetryRecord,
    VerdictSource,
)

ANOMALY_THRESHOLD_PCT = 20.0
WARNING_THRESHOLD_PCT = 10.0

ANOMALY_CONFIDENCE = 85
WARNING_CONFIDENCE = 70
VERIFIED_CONFIDENCE = 80


def variance_pct(reading: TelemetryRecord, rules: FacilityRules) -> float:
    """Signed percentage of the reading above (+) or below (-) the ceiling."""
    max_load = float(rules.max_load_kwh)
    if max_load <= 0.0:
        raise InvalidFacilityRules(
            f"max_load_kwh must be > 0 for facility {rules.facility_id} (got {max_load})"
        )
    return (float(reading.energy_kwh) - max_load) * 100.0 / max_load


def classify(reading: TelemetryRecord, rules: FacilityRules) -> ClassifierVerdict:
    variance = variance_pct(reading, rules)
    direction = "over" if variance > 0 else "under"
    compared = (
        f"{variance:.1f}% {direction} the {rules.max_load_kwh:g} kWh limit "
        f"(warning > {WARNING_THRESHOLD_PCT:g}%, anomaly > {ANOMALY_THRESHOLD_PCT:g}%)"
    )

    if variance > ANOMALY_THRESHOLD_PCT:
        return ClassifierVerdict(
            severity=Severity.ANOMALY,
            confidence=ANOMALY_CONFIDENCE,
            reasoning=f"Reading of {reading.energy_kwh:g} kWh is {compared}.",
            source=VerdictSource.RULES,
        )

    if variance > WARNING_THRESHOLD_PCT:
        return ClassifierVerdict(
            severity=Severity.WARNING,
            confidence=WARNING_CONFIDENCE,
            reasoning=f"Reading of {reading.energy_kwh:g} kWh is {compared}.",
            source=VerdictSource.RULES,
        )

    return ClassifierVerdict(
        severity=Severity.VERIFIED,
        confidence=VERIFIED_CONFIDENCE,
        reasoning=f"Reading of {reading.energy_kwh:g} kWh is {compared}; within acceptable range.",
        source=VerdictSource.RULES,
    )
