"""
providers.py

Purpose:
  Live environmental data sources used by the ContextEnricher.

Sources:
  - OpenWeatherMap current weather (temperature, condition, humidity).
  - ElectricityMaps grid carbon intensity (gCO2eq/kWh).

Contract:
  Every failure (missing credential, transport error, non-2xx, malformed body)
  is raised as `ProviderError`. Timeouts are enforced by the caller so that
  each source gets its own budget; cancellation propagates into the request.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx

from greenguard.errors import ProviderError

logger = logging.getLogger(__name__)

OPENWEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"
ELECTRICITYMAPS_URL = "https://api.electricitymaps.com/v3/carbon-intensity"

# Live readings older than this are requested from the /past endpoint
_LATEST_WINDOW = timedelta(hours=1)

_CONDITION_MAP = {
    "rain": "Rainy",
    "drizzle": "Rainy",
    "thunderstorm": "Rainy",
    "clouds": "Cloudy",
    "clear": "Clear",
    "snow": "Snow",
}


@dataclass(frozen=True)
class WeatherObservation:
    temperature_c: float
    condition: str
    humidity_pct: float


def normalize_condition(raw: str) -> str:
    key = (raw or "").strip().lower()
    if not key:
        return "Unknown"
    return _CONDITION_MAP.get(key, raw.strip().title())


async def _get_json(
    client: Optional[httpx.AsyncClient],
    url: str,
    params: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
    source: str = "provider",
) -> Dict[str, Any]:
    try:
        if client is not None:
            response = await client.get(url, params=params, headers=headers)
        else:
            async with httpx.AsyncClient() as own_client:
                response = await own_client.get(url, params=params, headers=headers)
    except httpx.HTTPError as exc:
        raise ProviderError(f"{source} request failed: {exc}") from exc

    if response.status_code // 100 != 2:
        raise ProviderError(f"{source} returned HTTP {response.status_code}")

    try:
        data = response.json()
    except ValueError as exc:
        raise ProviderError(f"{source} returned a non-JSON body") from exc
    if not isinstance(data, dict):
        raise ProviderError(f"{source} returned an unexpected payload")
    return data


class WeatherProvider:
    """OpenWeatherMap current conditions, metric units."""

    name = "OpenWeatherMap API"

    def __init__(
        self,
        api_key: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = OPENWEATHER_URL,
    ):
        self.api_key = api_key
        self.client = client
        self.base_url = base_url

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def get_weather(self, lat: float, lon: float) -> WeatherObservation:
        if not self.configured:
            raise ProviderError("OPENWEATHER_API_KEY not configured")

        data = await _get_json(
            self.client,
            self.base_url,
            params={"lat": lat, "lon": lon, "appid": self.api_key, "units": "metric"},
            source="OpenWeatherMap",
        )
        try:
            main = data["main"]
            conditions = data.get("weather") or [{}]
            return WeatherObservation(
                temperature_c=round(float(main["temp"]), 1),
                condition=normalize_condition(str(conditions[0].get("main", ""))),
                humidity_pct=float(main["humidity"]),
            )
        except (KeyError, TypeError, ValueError, IndexError) as exc:
            raise ProviderError(f"OpenWeatherMap payload missing fields: {exc}") from exc


class GridIntensityProvider:
    """ElectricityMaps carbon intensity for a coordinate."""

    name = "ElectricityMaps API"

    def __init__(
        self,
        api_key: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = ELECTRICITYMAPS_URL,
    ):
        self.api_key = api_key
        self.client = client
        self.base_url = base_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def get_grid_intensity(self, lat: float, lon: float, when: Optional[datetime] = None) -> float:
        if not self.configured:
            raise ProviderError("ELECTRICITYMAPS_API_KEY not configured")

        params: Dict[str, Any] = {"lat": lat, "lon": lon}
        endpoint = "latest"
        if when is not None:
            when_utc = when if when.tzinfo else when.replace(tzinfo=timezone.utc)
            if datetime.now(timezone.utc) - when_utc > _LATEST_WINDOW:
                endpoint = "past"
                params["datetime"] = when_utc.isoformat()

        data = await _get_json(
            self.client,
            f"{self.base_url}/{endpoint}",
            params=params,
            headers={"auth-token": str(self.api_key)},
            source="ElectricityMaps",
        )
        try:
            intensity = float(data["carbonIntensity"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"ElectricityMaps payload missing carbonIntensity: {exc}") from exc
        if intensity < 0:
            raise ProviderError(f"ElectricityMaps returned negative intensity {intensity}")
        return float(round(intensity))
