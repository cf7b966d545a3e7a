"""Feature engineering package for the demand forecaster.

Modules
-------
registry        — FeatureSpec dataclass + FEATURE_REGISTRY (canonical 62-feature order)
temporal        — Hour/day one-hots, rule-based holiday calendar, cyclical month/week
weather         — Weather bucketing and per-hour weather fields with neutral defaults
events          — Haversine distance, event impact score, per-hour event aggregation
lag_rolling     — Same-hour lags, 7/28-day rolling means and trend from demand actuals
engineering     — FeatureVector, build/normalize, scaling params, FeatureEngineer service
dataset_export  — Labeled training matrix to Parquet for offline analysis
"""
