"""
mock_data.py

Synthetic IoT telemetry for development, demos and tests.

Patterns:
  - NORMAL:       base load with random variation
  - SPIKE:        a 150% reading in the middle of the sequence
  - GRADUAL_RISE: +10% per reading

Readings are spaced five minutes apart and end at `end` (default: now).
Seed the generator to get a reproducible sequence.
"""
from __future__ import annotations

import random
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from greenguard.models.domain import TelemetryRecord, utc_now

NOMINAL_VOLTAGE = 230.0
READING_INTERVAL = timedelta(minutes=5)
BASE_LOAD_KWH = 300.0

# Scenario loads as a fraction of the bill ceiling: normal, warning, anomaly.
SCENARIO_LOAD_FACTORS = (0.80, 0.95, 1.25)


class Pattern(str, Enum):
    NORMAL = "NORMAL"
    SPIKE = "SPIKE"
    GRADUAL_RISE = "GRADUAL_RISE"


class MockTelemetryGenerator:
    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)

    def _new_id(self) -> str:
        return str(uuid.UUID(int=self._rng.getrandbits(128), version=4))

    def generate_reading(
        self,
        facility_id: str,
        base_load_kwh: float,
        variation: float = 0.2,
        timestamp: Optional[datetime] = None,
    ) -> TelemetryRecord:
        """One reading within +/- `variation` of `base_load_kwh` (hourly energy)."""
        rng = self._rng
        energy_kwh = round(max(0.0, base_load_kwh * (1.0 + rng.uniform(-variation, variation))), 2)
        power_watts = energy_kwh * 1000.0
        voltage = NOMINAL_VOLTAGE + rng.uniform(-11.5, 11.5)
        current_amps = power_watts / voltage

        readings = {
            "energy_kwh": energy_kwh,
            "voltage": round(voltage, 2),
            "current_amps": round(current_amps, 2),
            "power_watts": round(power_watts, 2),
        }
        raw_payload = {
            "sensor_id": f"SENSOR_{facility_id[:8]}",
            "firmware_version": "2.4.1",
            "signal_strength": rng.randint(70, 99),
            "power_factor": round(rng.uniform(0.85, 0.95), 3),
            "frequency_hz": round(50.0 + rng.uniform(-0.2, 0.2), 3),
            "readings": readings,
        }
        return TelemetryRecord(
            id=self._new_id(),
            facility_id=facility_id,
            timestamp=timestamp or utc_now(),
            raw_payload=raw_payload,
            **readings,
        )

    def generate_sequence(
        self,
        facility_id: str,
        count: int,
        pattern: Pattern = Pattern.NORMAL,
        base_load_kwh: float = BASE_LOAD_KWH,
        end: Optional[datetime] = None,
    ) -> List[TelemetryRecord]:
        end = end or utc_now()
        pattern = Pattern(pattern)
        out: List[TelemetryRecord] = []

        for i in range(count):
            load = base_load_kwh
            if pattern == Pattern.SPIKE and i == count // 2:
                load = base_load_kwh * 1.5
            elif pattern == Pattern.GRADUAL_RISE:
                load = base_load_kwh * (1.0 + i * 0.1)

            ts = end - READING_INTERVAL * (count - i - 1)
            out.append(self.generate_reading(facility_id, load, variation=0.15, timestamp=ts))
        return out

    def generate_anomaly_scenario(
        self,
        facility_id: str,
        max_load_kwh: float,
        end: Optional[datetime] = None,
    ) -> List[TelemetryRecord]:
        """Three readings at 80%, 95% and 125% of the bill ceiling, oldest first."""
        end = end or utc_now()
        n = len(SCENARIO_LOAD_FACTORS)
        return [
            self.generate_reading(
                facility_id,
                max_load_kwh * factor,
                variation=0.05,
                timestamp=end - READING_INTERVAL * (n - i - 1),
            )
            for i, factor in enumerate(SCENARIO_LOAD_FACTORS)
        ]
