"""
context_analyzer.py

Purpose:
  Checks whether a reading is plausible given the weather and grid conditions.
  Output is explanatory only: it goes to the trace and into the AI prompt, never
  into the severity decision.

Rules (evaluated in order, flags always accumulate):
  1. HIGH_ENERGY_COOL_WEATHER  >= 80 % of ceiling while < 22 °C         -> suspicious
  2. HIGH_CARBON_IMPACT        grid > 800 g/kWh and >= 90 % of ceiling   -> informational
  3. CRITICAL_OVERAGE          > 120 % of ceiling                       -> suspicious, overrides reasoning
  4. EXTREME_HEAT_HIGH_LOAD    > 35 °C and >= 85 % of ceiling            -> exculpatory
  5. HIGH_LOAD_RAINY_DAY       rainy and >= 90 % of ceiling              -> suspicious unless explained by 4
"""
from __future__ import annotations

from typing import List

from greenguard.models.domain import ContextAnalysis, ContextSnapshot, FacilityRules, TelemetryRecord
from greenguard.services.rule_classifier import variance_pct

FLAG_HIGH_ENERGY_COOL_WEATHER = "HIGH_ENERGY_COOL_WEATHER"
FLAG_HIGH_CARBON_IMPACT = "HIGH_CARBON_IMPACT"
FLAG_CRITICAL_OVERAGE = "CRITICAL_OVERAGE"
FLAG_EXTREME_HEAT_HIGH_LOAD = "EXTREME_HEAT_HIGH_LOAD"
FLAG_HIGH_LOAD_RAINY_DAY = "HIGH_LOAD_RAINY_DAY"

COOL_WEATHER_C = 22.0
EXTREME_HEAT_C = 35.0
HIGH_CARBON_G_PER_KWH = 800.0

DEFAULT_REASONING = "Energy usage aligns with environmental context."


def _is_rainy(condition: str) -> bool:
    return "rain" in (condition or "").lower()


def analyze(reading: TelemetryRecord, context: ContextSnapshot, rules: FacilityRules) -> ContextAnalysis:
    # Validates the ceiling the same way the rule classifier does
    variance_pct(reading, rules)

    energy = float(reading.energy_kwh)
    ceiling = float(rules.max_load_kwh)
    temp = float(context.temperature_c)

    flags: List[str] = []
    suspicious = False
    reasoning = DEFAULT_REASONING
    heat_explained = False

    if energy >= ceiling * 0.8 and temp < COOL_WEATHER_C:
        flags.append(FLAG_HIGH_ENERGY_COOL_WEATHER)
        suspicious = True
        reasoning = (
            f"High energy usage ({energy:g} kWh) detected during cool weather ({temp}°C). "
            "Unexpected AC load or equipment malfunction?"
        )

    if context.grid_carbon_intensity > HIGH_CARBON_G_PER_KWH and energy >= ceiling * 0.9:
        flags.append(FLAG_HIGH_CARBON_IMPACT)
        if not suspicious:
            reasoning = (
                f"Energy usage during high carbon intensity period "
                f"({context.grid_carbon_intensity:.0f} g/kWh). Consider load shifting."
            )

    if energy > ceiling * 1.2:
        flags.append(FLAG_CRITICAL_OVERAGE)
        suspicious = True
        reasoning = f"Critical: energy usage {(energy / ceiling - 1) * 100:.0f}% above contractual limit."

    if temp > EXTREME_HEAT_C and energy >= ceiling * 0.85:
        flags.append(FLAG_EXTREME_HEAT_HIGH_LOAD)
        heat_explained = True
        if not suspicious:
            reasoning = f"High energy usage expected due to extreme heat ({temp}°C)."

    if _is_rainy(context.weather_condition) and energy >= ceiling * 0.9:
        flags.append(FLAG_HIGH_LOAD_RAINY_DAY)
        if not suspicious and not heat_explained:
            suspicious = True
            reasoning = (
                f"Unexpectedly high energy usage ({energy:g} kWh) during rainy conditions. "
                "Verify operations are normal."
            )

    return ContextAnalysis(suspicious=suspicious, reasoning=reasoning, flags=flags)
