"""
AI Classifier Adapter

Purpose:
  Uses Gemini to classify an energy reading as VERIFIED / WARNING / ANOMALY with a
  short justification, taking weather, grid carbon intensity and the facility's
  history into account.

Features:
  - Gemini SDK integration (google-genai, async client)
  - Strict JSON verdict contract, tolerant of a surrounding ``` fence
  - Heuristic fallback when no API key is configured, the call times out or
    the response cannot be parsed (no retries; the fallback is deterministic)
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from typing import Any, Dict, Optional

from google import genai
from google.genai import types

from greenguard.config import Settings
from greenguard.errors import AIResponseError
from greenguard.models.domain import (
    ClassifierVerdict,
    ContextAnalysis,
    ContextSnapshot,
    FacilityRules,
    Provenance,
    Severity,
    TelemetryRecord,
    VerdictSource,
)
from greenguard.services.reconciler import normalize_severity
from greenguard.services.rule_classifier import variance_pct
from greenguard.services.trace import STAGE_AI, TraceLog

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-1.5-flash"
MAX_REASONING_CHARS = 500

_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)

SYSTEM_INSTRUCTIONS = """
You are an expert Carbon Auditor reviewing industrial energy consumption.

You will receive one facility reading together with:
1) The contractual maximum load from the electricity bill
2) Environmental context (temperature, weather, humidity, grid carbon intensity)
3) The facility's recent historical average and any contextual flags

Task:
Decide whether the reading is justified by conditions or indicates wasteful,
faulty or fraudulent usage.
- High consumption may be justified by very high (>30°C) or very low (<10°C)
  temperatures, or by high humidity (>80%).
- Consumption is suspicious when it exceeds the contractual limit without
  environmental justification, or is unusually high in mild conditions.
- Unnecessary consumption during high carbon intensity periods deserves extra scrutiny.

Verdicts:
- VERIFIED: justified and within normal parameters
- WARNING: elevated but partly justified; monitor closely
- ANOMALY: unjustified or fraudulent; requires investigation

Output:
Respond with ONLY a JSON object, no markdown:
{"severity": "VERIFIED" | "WARNING" | "ANOMALY", "confidence": <integer 0-100>, "reasoning": "<1-2 sentences>"}
"""


# ============================================================
# PROMPT
# ============================================================

def build_prompt(
    reading: TelemetryRecord,
    context: ContextSnapshot,
    rules: FacilityRules,
    analysis: Optional[ContextAnalysis] = None,
    historical_average: Optional[float] = None,
) -> str:
    load_pct = float(reading.energy_kwh) / float(rules.max_load_kwh) * 100.0
    live = context.provenance.weather == Provenance.API
    lines = [
        "Classify the following energy reading.",
        "",
        "Reading:",
        f"- Facility: {rules.name or rules.facility_id}",
        f"- Timestamp: {reading.timestamp.isoformat()}",
        f"- Energy: {reading.energy_kwh:g} kWh",
        f"- Voltage: {reading.voltage:g} V | Current: {reading.current_amps:g} A | Power: {reading.power_watts:g} W",
        "",
        f"Environmental context ({'real-time' if live else 'estimated'}):",
        f"- Weather: {context.weather_condition}",
        f"- Temperature: {context.temperature_c}°C",
        f"- Humidity: {context.humidity_pct:.0f}%",
        f"- Grid carbon intensity: {context.grid_carbon_intensity:.0f} gCO2/kWh "
        f"(facility baseline {rules.baseline_carbon_intensity:g} gCO2/kWh)",
        "",
        "Facility rules:",
        f"- Maximum allowed load: {rules.max_load_kwh:g} kWh",
        f"- Current load vs max: {load_pct:.1f}%",
    ]
    if historical_average is not None:
        lines.append(f"- Historical average: {historical_average:.2f} kWh")
    if analysis is not None:
        lines += [
            "",
            "Contextual analysis:",
            f"- Flags: {', '.join(analysis.flags) if analysis.flags else 'none'}",
            f"- Note: {analysis.reasoning}",
        ]
    lines += ["", "Respond with the JSON object only."]
    return "\n".join(lines)


# ============================================================
# RESPONSE PARSING
# ============================================================

def _extract_json(text: str) -> Dict[str, Any]:
    stripped = (text or "").strip()
    if not stripped:
        raise AIResponseError("empty response")
    match = _FENCE_RE.search(stripped)
    candidate = match.group(1) if match else stripped
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise AIResponseError(f"response is not valid JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise AIResponseError("response JSON is not an object")
    return parsed


def parse_verdict(text: str) -> ClassifierVerdict:
    """Strict parse of `{severity, confidence, reasoning}`; raises AIResponseError."""
    data = _extract_json(text)

    missing = [k for k in ("severity", "confidence", "reasoning") if k not in data]
    if missing:
        raise AIResponseError(f"missing field(s): {', '.join(missing)}")

    raw_severity = data["severity"]
    if not isinstance(raw_severity, str):
        raise AIResponseError("severity must be a string")
    try:
        severity = normalize_severity(raw_severity)
    except ValueError as exc:
        raise AIResponseError(f"unknown severity {raw_severity!r}") from exc

    confidence = data["confidence"]
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise AIResponseError("confidence must be a number")
    if not math.isfinite(float(confidence)):
        raise AIResponseError("confidence must be finite")

    reasoning = data["reasoning"]
    if not isinstance(reasoning, str) or not reasoning.strip():
        raise AIResponseError("reasoning must be a non-empty string")

    return ClassifierVerdict(
        severity=severity,
        confidence=int(round(max(0.0, min(100.0, float(confidence))))),
        reasoning=reasoning.strip()[:MAX_REASONING_CHARS],
        source=VerdictSource.AI,
    )


# ============================================================
# HEURISTIC FALLBACK
# ============================================================

def heuristic_verdict(
    reading: TelemetryRecord,
    context: ContextSnapshot,
    rules: FacilityRules,
    analysis: Optional[ContextAnalysis] = None,
) -> ClassifierVerdict:
    """Deterministic stand-in for the AI verdict using load % and temperature."""
    variance = variance_pct(reading, rules)
    load_pct = variance + 100.0
    energy = float(reading.energy_kwh)
    ceiling = float(rules.max_load_kwh)
    temp = float(context.temperature_c)

    if energy > ceiling * 1.2:
        severity, confidence = Severity.ANOMALY, 85
        reasoning = (
            f"Consumption ({energy:g} kWh) exceeds maximum load by {variance:.1f}% "
            "without clear justification."
        )
    elif energy > ceiling:
        if 5.0 <= temp <= 32.0:
            severity, confidence = Severity.ANOMALY, 75
            reasoning = f"Consumption exceeds maximum load under mild weather conditions ({temp}°C)."
        else:
            severity, confidence = Severity.WARNING, 60
            reasoning = (
                f"Consumption slightly exceeds the limit but may be justified by "
                f"extreme temperature ({temp}°C)."
            )
    elif load_pct >= 90.0:
        severity, confidence = Severity.WARNING, 70
        reasoning = f"High load utilization ({load_pct:.1f}%) warrants monitoring."
    else:
        severity, confidence = Severity.VERIFIED, 80
        reasoning = f"Consumption within acceptable range ({load_pct:.1f}% of max load)."

    if analysis is not None:
        reasoning = f"{reasoning} {analysis.reasoning}"

    return ClassifierVerdict(
        severity=severity,
        confidence=confidence,
        reasoning=reasoning,
        source=VerdictSource.AI_FALLBACK,
    )


# ============================================================
# ADAPTER
# ============================================================

class AIClassifierAdapter:
    """
    Wraps an injected `genai.Client`. With no client (no key, AI disabled,
    offline mode) every call takes the heuristic path.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        model_id: str = DEFAULT_MODEL,
        timeout_s: float = 12.0,
    ):
        self.client = client
        self.model_id = model_id
        self.timeout_s = float(timeout_s)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AIClassifierAdapter":
        client = None
        if settings.ai_enabled and not settings.offline_mode and settings.gemini_api_key:
            client = genai.Client(api_key=settings.gemini_api_key)
        return cls(client=client, model_id=settings.gemini_model_id, timeout_s=settings.ai_timeout_s)

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def _generate(self, prompt: str) -> str:
        resp = await asyncio.wait_for(
            self.client.aio.models.generate_content(
                model=self.model_id,
                contents=[SYSTEM_INSTRUCTIONS, prompt],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    temperature=0.1,
                ),
            ),
            timeout=self.timeout_s,
        )
        return (resp.text or "").strip()

    async def classify(
        self,
        reading: TelemetryRecord,
        context: ContextSnapshot,
        rules: FacilityRules,
        analysis: Optional[ContextAnalysis] = None,
        historical_average: Optional[float] = None,
        trace: Optional[TraceLog] = None,
    ) -> ClassifierVerdict:
        if not self.configured:
            if trace is not None:
                trace.warning(STAGE_AI, "AI provider not configured; using heuristic fallback path.")
            return heuristic_verdict(reading, context, rules, analysis)

        prompt = build_prompt(reading, context, rules, analysis, historical_average)
        if trace is not None:
            trace.info(STAGE_AI, f"Invoking {self.model_id} (primary path)...")

        try:
            text = await self._generate(prompt)
            verdict = parse_verdict(text)
        except asyncio.TimeoutError:
            reason = f"AI call timed out after {self.timeout_s:.1f}s"
        except AIResponseError as exc:
            reason = f"unparsable AI response: {exc}"
        except Exception as exc:
            reason = f"AI call failed: {exc}"
        else:
            if trace is not None:
                trace.success(STAGE_AI, f"Primary path verdict: {verdict.severity.value} ({verdict.confidence}% confidence)")
            return verdict

        logger.warning("AI classification fell back to heuristic: %s", reason)
        if trace is not None:
            trace.warning(STAGE_AI, f"{reason}; using heuristic fallback path.")
        return heuristic_verdict(reading, context, rules, analysis)
