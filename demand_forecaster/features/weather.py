"""
Per-hour weather features.

``weather_features_by_hour()`` asks a ``WeatherProvider`` for a forecast,
keeps the hours that fall on the target date, buckets each into a
``WeatherCondition`` and fills every missing hour with neutral defaults. A
provider failure is logged and treated as "all hours missing" so feature
extraction never fails on weather.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timezone
from typing import TYPE_CHECKING

from demand_forecaster.models.weather import WeatherCondition, WeatherConditions

if TYPE_CHECKING:
    from demand_forecaster.ingestion.weather_client import WeatherProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HourWeather:
    """Weather fields stored on a snapshot for one hour."""

    temperature: float
    feels_like: float
    humidity: float
    precipitation: float
    wind_speed: float
    cloud_cover: float
    weather_condition: WeatherCondition


DEFAULT_HOUR_WEATHER = HourWeather(
    temperature=18.0,
    feels_like=17.0,
    humidity=60.0,
    precipitation=0.0,
    wind_speed=5.0,
    cloud_cover=40.0,
    weather_condition=WeatherCondition.CLOUDY,
)


def categorize_weather(conditions: WeatherConditions) -> WeatherCondition:
    """Bucket one hour of weather; the first matching rule wins."""
    if conditions.temperature < -10 or conditions.temperature > 40:
        return WeatherCondition.EXTREME
    if (conditions.snowfall or 0) > 0 or conditions.precipitation > 20:
        return WeatherCondition.SNOW
    if conditions.precipitation > 5 or conditions.precipitation_probability > 70:
        return WeatherCondition.RAIN
    if conditions.cloud_cover > 70:
        return WeatherCondition.CLOUDY
    return WeatherCondition.CLEAR


def weather_features_by_hour(
    provider: "WeatherProvider | None",
    lat: float,
    lon: float,
    target_date: date,
) -> dict[int, HourWeather]:
    """Return a weather block for each of the 24 hours of ``target_date``.

    Args:
        provider: Forecast source; ``None`` means defaults for every hour.
        lat: Restaurant latitude.
        lon: Restaurant longitude.
        target_date: Date whose hours are wanted (UTC).

    Returns:
        Dict keyed 0–23; hours the provider did not cover hold
        ``DEFAULT_HOUR_WEATHER``.
    """
    result: dict[int, HourWeather] = {}

    if provider is not None:
        try:
            forecast = provider.get_forecast(lat, lon, 1)
        except Exception as exc:
            logger.warning("Weather fetch failed for (%.4f, %.4f): %s", lat, lon, exc)
            forecast = []

        for hour_data in forecast:
            observed = hour_data.observed_at
            if observed.tzinfo is not None:
                observed = observed.astimezone(timezone.utc)
            if observed.date() != target_date:
                continue
            result[observed.hour] = HourWeather(
                temperature=hour_data.temperature,
                feels_like=hour_data.feels_like,
                humidity=hour_data.humidity,
                precipitation=hour_data.precipitation,
                wind_speed=hour_data.wind_speed,
                cloud_cover=hour_data.cloud_cover,
                weather_condition=categorize_weather(hour_data),
            )

    for h in range(24):
        result.setdefault(h, DEFAULT_HOUR_WEATHER)
    return result
