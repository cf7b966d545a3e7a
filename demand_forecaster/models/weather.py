"""
Weather provider data contract.

``WeatherConditions`` is one hourly observation/forecast in metric units as
returned by a ``WeatherProvider``. ``WeatherCondition`` is the coarse bucket
used as a one-hot feature group.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class WeatherCondition(StrEnum):
    """Coarse weather bucket; order matches the ``weather_*`` feature block."""

    CLEAR = "clear"
    CLOUDY = "cloudy"
    RAIN = "rain"
    SNOW = "snow"
    EXTREME = "extreme"


class WeatherConditions(BaseModel):
    """One hour of weather.

    Attributes:
        observed_at: Start of the hour (UTC).
        temperature: °C.
        feels_like: Apparent temperature, °C.
        humidity: Relative humidity, percent.
        wind_speed: m/s.
        cloud_cover: Percent.
        precipitation: mm in the hour (rain or snow water equivalent).
        precipitation_probability: Percent.
        snowfall: mm of snow in the hour, if reported.
        description: Provider's human-readable summary.
        icon: Provider icon code.
    """

    model_config = ConfigDict(frozen=True)

    observed_at: datetime
    temperature: float
    feels_like: float
    humidity: float
    wind_speed: float
    cloud_cover: float
    precipitation: float = 0.0
    precipitation_probability: float = 0.0
    snowfall: Optional[float] = None
    description: str = ""
    icon: str = ""
