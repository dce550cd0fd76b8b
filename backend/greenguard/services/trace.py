"""
trace.py

Append-only stage log for one pipeline run. Entries keep execution order and
are persisted with the verdict; nothing reads them back for control flow.
"""
from __future__ import annotations

from typing import Any, Dict, List

from greenguard.models.domain import TraceEntry, TraceLevel, utc_now

# Stage names as they appear in the reviewer's trace
STAGE_ORCHESTRATOR = "Orchestrator"
STAGE_INGESTION = "Ingestion"
STAGE_CONTEXT = "ContextEnricher"
STAGE_RULES = "RuleClassifier"
STAGE_ANALYZER = "ContextAnalyzer"
STAGE_AI = "AIClassifier"
STAGE_RECONCILER = "Reconciler"
STAGE_NOTIFIER = "Notifier"


class TraceLog:
    def __init__(self) -> None:
        self._entries: List[TraceEntry] = []

    def emit(self, stage: str, message: str, level: TraceLevel = TraceLevel.INFO) -> TraceEntry:
        entry = TraceEntry(ts=utc_now().isoformat(), stage=stage, message=message, level=level)
        self._entries.append(entry)
        return entry

    def info(self, stage: str, message: str) -> TraceEntry:
        return self.emit(stage, message, TraceLevel.INFO)

    def success(self, stage: str, message: str) -> TraceEntry:
        return self.emit(stage, message, TraceLevel.SUCCESS)

    def warning(self, stage: str, message: str) -> TraceEntry:
        return self.emit(stage, message, TraceLevel.WARNING)

    def error(self, stage: str, message: str) -> TraceEntry:
        return self.emit(stage, message, TraceLevel.ERROR)

    @property
    def entries(self) -> List[TraceEntry]:
        return list(self._entries)

    def dump(self) -> List[Dict[str, Any]]:
        return [e.model_dump(mode="json") for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
