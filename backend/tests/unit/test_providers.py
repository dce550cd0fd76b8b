from datetime import datetime, timedelta, timezone

import httpx
import pytest

from greenguard.errors import ProviderError
from greenguard.services.providers import (
    GridIntensityProvider,
    WeatherProvider,
    normalize_condition,
)


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.parametrize("raw,expected", [
    ("Rain", "Rainy"),
    ("Drizzle", "Rainy"),
    ("Thunderstorm", "Rainy"),
    ("Clouds", "Cloudy"),
    ("Clear", "Clear"),
    ("haze", "Haze"),
    ("", "Unknown"),
])
def test_normalize_condition(raw, expected):
    assert normalize_condition(raw) == expected


@pytest.mark.asyncio
async def test_weather_parses_openweather_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json={
            "main": {"temp": 31.46, "humidity": 78},
            "weather": [{"main": "Clouds", "description": "broken clouds"}],
        })

    provider = WeatherProvider("wx-key", client=_client(handler))
    obs = await provider.get_weather(19.07, 72.88)

    assert obs.temperature_c == 31.5
    assert obs.condition == "Cloudy"
    assert obs.humidity_pct == 78.0
    assert seen["units"] == "metric"
    assert seen["appid"] == "wx-key"


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(401, json={"message": "Invalid API key"}),
    httpx.Response(200, json={"weather": []}),
    httpx.Response(200, content=b"<html>oops</html>"),
])
async def test_weather_failures_raise_provider_error(response):
    provider = WeatherProvider("wx-key", client=_client(lambda request: response))
    with pytest.raises(ProviderError):
        await provider.get_weather(0.0, 0.0)


@pytest.mark.asyncio
async def test_unconfigured_providers_raise():
    with pytest.raises(ProviderError):
        await WeatherProvider(None).get_weather(0.0, 0.0)
    with pytest.raises(ProviderError):
        await GridIntensityProvider("").get_grid_intensity(0.0, 0.0)


@pytest.mark.asyncio
async def test_grid_latest_vs_past_endpoint():
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={"zone": "IN-WE", "carbonIntensity": 689.6})

    provider = GridIntensityProvider("grid-key", client=_client(handler))
    recent = await provider.get_grid_intensity(19.0, 72.8, datetime.now(timezone.utc))
    old = await provider.get_grid_intensity(19.0, 72.8, datetime.now(timezone.utc) - timedelta(days=2))

    assert recent == old == 690.0
    assert paths[0].endswith("/latest")
    assert paths[1].endswith("/past")


@pytest.mark.asyncio
async def test_grid_transport_error_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    provider = GridIntensityProvider("grid-key", client=_client(handler))
    with pytest.raises(ProviderError):
        await provider.get_grid_intensity(0.0, 0.0)
