"""
OpenWeather One Call 3.0 client.

Endpoint::

    GET https://api.openweathermap.org/data/3.0/onecall
        ?lat=..&lon=..&exclude=minutely,alerts&units=metric&appid=KEY

Only the ``hourly`` block is used. Per hour:

    precipitation              rain.1h, else snow.1h, else 0
    precipitation_probability  round(pop * 100)
    snowfall                   snow.1h (None when absent)

Parsed forecasts are cached as JSON under
``weather:forecast:{lat:.2f}:{lon:.2f}:{days}``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, ClassVar, Optional, Protocol

import httpx

from demand_forecaster.errors import ProviderError
from demand_forecaster.models.weather import WeatherConditions

if TYPE_CHECKING:
    from demand_forecaster.registry.cache import ExternalCache

logger = logging.getLogger(__name__)


class WeatherProvider(Protocol):
    """Anything that can return hourly forecasts for a location."""

    def get_forecast(self, lat: float, lon: float, days: int) -> list[WeatherConditions]: ...


def forecast_cache_key(lat: float, lon: float, days: int) -> str:
    return f"weather:forecast:{lat:.2f}:{lon:.2f}:{days}"


def parse_hourly_forecast(hourly: list[dict[str, Any]], days: int) -> list[WeatherConditions]:
    """Convert the One Call ``hourly`` array into ``WeatherConditions``.

    At most ``days * 24`` entries are returned.
    """
    out: list[WeatherConditions] = []
    for hour in hourly[: days * 24]:
        rain = (hour.get("rain") or {}).get("1h")
        snow = (hour.get("snow") or {}).get("1h")
        weather = (hour.get("weather") or [{}])[0]
        out.append(
            WeatherConditions(
                observed_at=datetime.fromtimestamp(hour["dt"], tz=timezone.utc),
                temperature=hour["temp"],
                feels_like=hour.get("feels_like", hour["temp"]),
                humidity=hour.get("humidity", 0),
                wind_speed=hour.get("wind_speed", 0),
                cloud_cover=hour.get("clouds", 0),
                precipitation=rain or snow or 0.0,
                precipitation_probability=round((hour.get("pop") or 0) * 100),
                snowfall=snow,
                description=weather.get("description", "Unknown"),
                icon=weather.get("icon", "01d"),
            )
        )
    return out


class OpenWeatherClient:
    """Hourly forecasts from OpenWeather.

    Args:
        api_key: OpenWeather API key (``OPENWEATHER_API_KEY``).
        timeout_seconds: httpx timeout for each request.
        cache: Optional ``ExternalCache`` for parsed forecasts.
        cache_ttl_seconds: Forecast cache lifetime.
        http_client: Injected ``httpx.Client`` (tests use ``MockTransport``).
    """

    BASE_URL: ClassVar[str] = "https://api.openweathermap.org/data/3.0"

    def __init__(
        self,
        api_key: str,
        timeout_seconds: float = 10.0,
        cache: "Optional[ExternalCache]" = None,
        cache_ttl_seconds: int = 3600,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self._http = http_client or httpx.Client(timeout=timeout_seconds)

    def get_forecast(self, lat: float, lon: float, days: int = 7) -> list[WeatherConditions]:
        """Return up to ``days * 24`` hourly forecasts.

        Raises:
            ProviderError: On transport errors, timeouts, non-2xx responses
                or an unparseable body.
        """
        key = forecast_cache_key(lat, lon, days)
        if self.cache is not None:
            cached = self.cache.get_json(key)
            if cached is not None:
                logger.debug("Forecast cache hit for (%.2f, %.2f)", lat, lon)
                return [WeatherConditions.model_validate(item) for item in cached]

        try:
            resp = self._http.get(
                f"{self.BASE_URL}/onecall",
                params={
                    "lat": lat,
                    "lon": lon,
                    "exclude": "minutely,alerts",
                    "units": "metric",
                    "appid": self.api_key,
                },
            )
            resp.raise_for_status()
            hourly = parse_hourly_forecast(resp.json().get("hourly", []), days)
        except httpx.HTTPError as exc:
            raise ProviderError(f"OpenWeather request failed: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"OpenWeather response could not be parsed: {exc}") from exc

        if self.cache is not None:
            self.cache.set_json(
                key,
                [w.model_dump(mode="json") for w in hourly],
                self.cache_ttl_seconds,
            )
        logger.info("Fetched %d hourly forecasts for (%.2f, %.2f)", len(hourly), lat, lon)
        return hourly

    def close(self) -> None:
        self._http.close()
