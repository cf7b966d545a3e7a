"""
Ingestion layer: external weather and event providers.

Submodules:
  weather_client    — ``WeatherProvider`` protocol + OpenWeather One Call 3.0 client
  event_client      — PredictHQ / Ticketmaster HTTP clients and response parsing
  event_aggregator  — ``EventProvider`` protocol + cache → DB → API event lookup

Credential placement (.env, gitignored):
  OPENWEATHER_API_KEY   — OpenWeather One Call API key
  PREDICTHQ_API_KEY     — PredictHQ bearer token
  TICKETMASTER_API_KEY  — Ticketmaster Discovery API key

Every HTTP call goes through ``httpx`` with ``ProviderConfig.timeout_seconds``.
Provider failures raise ``ProviderError``; feature extraction catches it and
falls back to neutral defaults.
"""
