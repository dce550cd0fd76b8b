"""
notifier.py

Review notifications for persisted audits, plus the helpers the review queue
uses to decide what needs a human.
"""
from __future__ import annotations

import logging

from greenguard.models.domain import AuditVerdict, Severity

logger = logging.getLogger(__name__)

REVIEW_SEVERITIES = (Severity.WARNING, Severity.ANOMALY)


def needs_review(verdict: AuditVerdict) -> bool:
    return verdict.severity in REVIEW_SEVERITIES


def requires_action(verdict: AuditVerdict) -> bool:
    """ANOMALY always; WARNING only when the pipeline is fairly sure (> 70 %)."""
    if verdict.severity == Severity.ANOMALY:
        return True
    return verdict.severity == Severity.WARNING and verdict.confidence > 70


def summarize(verdict: AuditVerdict) -> str:
    return f"{verdict.severity.value} ({verdict.confidence}% confidence): {verdict.reasoning}"


class LogNotifier:
    """Announces audits that need human review on the application log."""

    async def notify(self, verdict: AuditVerdict) -> None:
        urgency = "immediate action" if requires_action(verdict) else "review"
        logger.warning("Audit %s requires %s: %s", verdict.id, urgency, summarize(verdict))
