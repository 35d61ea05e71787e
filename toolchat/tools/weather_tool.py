"""OpenWeatherMap weather tool."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from toolchat.credentials import CredentialStore
from toolchat.tools.base import Tool, failure

OPENWEATHER_BASE_URL = "https://api.openweathermap.org"
# Forecast entries are three hours apart; every eighth one is a new day.
_FORECAST_STEP = 8


class WeatherTool(Tool):
    """Current conditions and a short forecast for a location."""

    id = "weather"
    name = "get_weather"
    display_name = "Weather"
    description = "Get the current weather and a short forecast for a city or location."
    credential_name = "weather"
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "location": {
                "type": "string",
                "description": 'City and optionally country or state, e.g. "London, UK".',
            },
            "unit": {
                "type": "string",
                "description": "Temperature unit to use.",
                "enum": ["celsius", "fahrenheit"],
            },
        },
        "required": ["location"],
    }

    def __init__(self, credentials: CredentialStore) -> None:
        self._credentials = credentials

    async def run(self, **kwargs: Any) -> dict[str, Any]:
        location = str(kwargs["location"]).strip()
        unit = kwargs.get("unit") or "celsius"
        units = "imperial" if unit == "fahrenheit" else "metric"
        api_key = self._credentials.get("weather")

        async with httpx.AsyncClient(base_url=OPENWEATHER_BASE_URL, timeout=15.0) as client:
            geo = await client.get("/geo/1.0/direct", params={"q": location, "limit": 1, "appid": api_key})
            if geo.status_code != 200:
                return failure(f"Geocoding failed (HTTP {geo.status_code}).")
            places = geo.json()
            if not places:
                return failure(f"Location not found: {location}")
            place = places[0]
            coords = {"lat": place["lat"], "lon": place["lon"], "units": units, "appid": api_key}

            current = await client.get("/data/2.5/weather", params=coords)
            data = current.json()
            if current.status_code != 200:
                return failure(data.get("message") or "Failed to fetch weather data")

            forecast = await client.get("/data/2.5/forecast", params={**coords, "cnt": 40})
            forecast_data = forecast.json() if forecast.status_code == 200 else {}

        label = ", ".join(p for p in (place.get("name"), place.get("state"), place.get("country")) if p)
        return {
            "success": True,
            "location": label,
            "current": {
                "temp": data["main"]["temp"],
                "unit": "°F" if unit == "fahrenheit" else "°C",
                "condition": data["weather"][0]["main"],
                "description": data["weather"][0]["description"],
                "humidity": data["main"]["humidity"],
                "wind_speed": f"{data['wind']['speed']} {'mph' if unit == 'fahrenheit' else 'm/s'}",
                "feels_like": data["main"]["feels_like"],
            },
            "forecast": [
                {
                    "date": datetime.fromtimestamp(entry["dt"], timezone.utc).date().isoformat(),
                    "temp": entry["main"]["temp"],
                    "condition": entry["weather"][0]["main"],
                }
                for entry in forecast_data.get("list", [])[::_FORECAST_STEP]
            ],
        }
