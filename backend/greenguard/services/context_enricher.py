"""
context_enricher.py

Purpose:
  Builds the environmental ContextSnapshot (weather + grid carbon intensity) for a
  facility location at the reading's timestamp. Live providers are queried
  concurrently; any source that fails is replaced by a synthetic value.

Math/Sim (synthetic fallback):
  - **Weather**: climate band from |latitude| (tropical < 23.5°, temperate < 66.5°,
    polar otherwise). Temperature, humidity and condition are drawn from band
    ranges with an RNG seeded by (location, timestamp), so the same inputs always
    produce the same snapshot.
  - **Grid intensity**: 300–700 gCO2/kWh interpolated by longitude (proxy for
    renewable mix), x1.2 inside the morning and evening peak windows, judged on the
    local solar hour (UTC shifted by longitude / 15).

Units:
  - **Temperature**: °C
  - **Carbon Intensity**: grams CO2 per kWh (g/kWh)

Invariant:
  `enrich()` never raises for provider problems and never returns an empty field.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from greenguard.models.domain import ContextSnapshot, Location, Provenance, SourceProvenance, as_utc
from greenguard.services.providers import GridIntensityProvider, WeatherObservation, WeatherProvider
from greenguard.services.trace import STAGE_CONTEXT, TraceLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClimateBand:
    name: str
    max_abs_lat: float
    temp_min_c: float
    temp_span_c: float
    humidity_min: int
    humidity_span: int
    conditions: Tuple[str, ...]
    weights: Tuple[float, ...]


CLIMATE_BANDS: Tuple[ClimateBand, ...] = (
    ClimateBand("tropical", 23.5, 28.0, 4.0, 70, 20,
                ("Clear", "Partly Cloudy", "Rainy"), (0.45, 0.40, 0.15)),
    ClimateBand("temperate", 66.5, 15.0, 15.0, 50, 30,
                ("Clear", "Partly Cloudy", "Cloudy", "Rainy"), (0.35, 0.30, 0.25, 0.10)),
    ClimateBand("polar", 90.0, -5.0, 15.0, 60, 20,
                ("Cloudy", "Snow"), (0.5, 0.5)),
)


@dataclass
class SyntheticGridConfig:
    min_g_per_kwh: float = 300.0
    span_g_per_kwh: float = 400.0
    peak_multiplier: float = 1.2

    # Peak windows (local solar hour of the reading, inclusive start, exclusive end)
    morning_peak: Tuple[int, int] = (6, 10)
    evening_peak: Tuple[int, int] = (18, 22)


def climate_band(latitude: float) -> ClimateBand:
    abs_lat = abs(float(latitude))
    for band in CLIMATE_BANDS:
        if abs_lat < band.max_abs_lat:
            return band
    return CLIMATE_BANDS[-1]


def _seed_for(location: Location, timestamp: datetime, salt: str) -> int:
    key = f"{salt}|{location.latitude:.4f}|{location.longitude:.4f}|{timestamp.isoformat()}"
    return int.from_bytes(hashlib.sha256(key.encode("utf-8")).digest()[:8], "big")


def synthetic_weather(location: Location, timestamp: datetime) -> WeatherObservation:
    band = climate_band(location.latitude)
    rng = random.Random(_seed_for(location, timestamp, "weather"))

    temperature = band.temp_min_c + rng.random() * band.temp_span_c
    condition = rng.choices(band.conditions, weights=band.weights, k=1)[0]
    humidity = band.humidity_min + rng.randrange(band.humidity_span)

    return WeatherObservation(
        temperature_c=round(temperature, 1),
        condition=condition,
        humidity_pct=float(humidity),
    )


def local_solar_hour(timestamp: datetime, longitude: float = 0.0) -> int:
    """Hour of day at `longitude`, one hour per 15 degrees east of Greenwich."""
    return (as_utc(timestamp) + timedelta(hours=float(longitude) / 15.0)).hour


def is_peak_hour(
    timestamp: datetime,
    longitude: float = 0.0,
    cfg: Optional[SyntheticGridConfig] = None,
) -> bool:
    cfg = cfg or SyntheticGridConfig()
    h = local_solar_hour(timestamp, longitude)
    return any(start <= h < end for start, end in (cfg.morning_peak, cfg.evening_peak))


def synthetic_grid_intensity(
    location: Location,
    timestamp: datetime,
    cfg: Optional[SyntheticGridConfig] = None,
) -> float:
    cfg = cfg or SyntheticGridConfig()
    region_factor = (float(location.longitude) + 180.0) / 360.0  # 0..1
    base = cfg.min_g_per_kwh + region_factor * cfg.span_g_per_kwh
    multiplier = cfg.peak_multiplier if is_peak_hour(timestamp, location.longitude, cfg) else 1.0
    return float(round(base * multiplier))


class ContextEnricher:
    """
    Fetches weather and grid intensity independently, each with its own timeout.
    Providers are optional: a missing provider behaves like an unconfigured one.
    """

    def __init__(
        self,
        weather: Optional[WeatherProvider] = None,
        grid: Optional[GridIntensityProvider] = None,
        weather_timeout_s: float = 4.0,
        grid_timeout_s: float = 4.0,
        grid_cfg: Optional[SyntheticGridConfig] = None,
    ):
        self.weather = weather
        self.grid = grid
        self.weather_timeout_s = float(weather_timeout_s)
        self.grid_timeout_s = float(grid_timeout_s)
        self.grid_cfg = grid_cfg or SyntheticGridConfig()

    async def _lookup_weather(
        self, location: Location, timestamp: datetime
    ) -> Tuple[WeatherObservation, Provenance, Optional[str]]:
        if self.weather is None or not self.weather.configured:
            return synthetic_weather(location, timestamp), Provenance.SYNTHETIC, "weather provider not configured"
        try:
            obs = await asyncio.wait_for(
                self.weather.get_weather(location.latitude, location.longitude),
                timeout=self.weather_timeout_s,
            )
            return obs, Provenance.API, None
        except asyncio.TimeoutError:
            note = f"weather lookup timed out after {self.weather_timeout_s:.1f}s"
        except Exception as exc:
            note = f"weather lookup failed: {exc}"
        logger.warning("Falling back to synthetic weather for %s: %s", location.name or location, note)
        return synthetic_weather(location, timestamp), Provenance.SYNTHETIC, note

    async def _lookup_grid(
        self, location: Location, timestamp: datetime
    ) -> Tuple[float, Provenance, Optional[str]]:
        if self.grid is None or not self.grid.configured:
            value = synthetic_grid_intensity(location, timestamp, self.grid_cfg)
            return value, Provenance.SYNTHETIC, "grid provider not configured"
        try:
            value = await asyncio.wait_for(
                self.grid.get_grid_intensity(location.latitude, location.longitude, timestamp),
                timeout=self.grid_timeout_s,
            )
            return float(value), Provenance.API, None
        except asyncio.TimeoutError:
            note = f"grid lookup timed out after {self.grid_timeout_s:.1f}s"
        except Exception as exc:
            note = f"grid lookup failed: {exc}"
        logger.warning("Falling back to synthetic grid intensity for %s: %s", location.name or location, note)
        return synthetic_grid_intensity(location, timestamp, self.grid_cfg), Provenance.SYNTHETIC, note

    async def enrich(
        self,
        location: Location,
        timestamp: datetime,
        trace: Optional[TraceLog] = None,
    ) -> ContextSnapshot:
        (weather, weather_src, weather_note), (grid, grid_src, grid_note) = await asyncio.gather(
            self._lookup_weather(location, timestamp),
            self._lookup_grid(location, timestamp),
        )

        snapshot = ContextSnapshot(
            temperature_c=float(weather.temperature_c),
            weather_condition=weather.condition,
            humidity_pct=float(weather.humidity_pct),
            grid_carbon_intensity=float(grid),
            provenance=SourceProvenance(weather=weather_src, grid=grid_src),
        )

        if trace is not None:
            for note in (weather_note, grid_note):
                if note:
                    trace.warning(STAGE_CONTEXT, f"Synthetic fallback used: {note}")
            trace.info(
                STAGE_CONTEXT,
                f"Weather: {snapshot.temperature_c}°C, {snapshot.weather_condition} | "
                f"Humidity: {snapshot.humidity_pct:.0f}% (source: {weather_src.value})",
            )
            trace.info(
                STAGE_CONTEXT,
                f"Grid carbon intensity: {snapshot.grid_carbon_intensity:.0f} g CO2/kWh (source: {grid_src.value})",
            )
        return snapshot


def describe_sources(snapshot: ContextSnapshot) -> str:
    """Human-readable data source summary, e.g. 'OpenWeatherMap API + Synthetic Grid'."""
    sources: List[str] = [
        WeatherProvider.name if snapshot.provenance.weather == Provenance.API else "Synthetic Weather",
        GridIntensityProvider.name if snapshot.provenance.grid == Provenance.API else "Synthetic Grid",
    ]
    return " + ".join(sources)


def is_live(snapshot: ContextSnapshot) -> bool:
    return snapshot.provenance.weather == Provenance.API and snapshot.provenance.grid == Provenance.API
