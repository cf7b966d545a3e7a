"""
In-sample training metrics shared by all three model families.

Every metric is computed against the combined target
``actual = (dine_in + delivery) / 2``:

  mae   mean(|err|)
  rmse  sqrt(mean(err²))
  mape  100 * mean(|err| / actual) over rows with actual > 0 only; 0 if none
  r2    1 - SS_res / SS_tot, or 0 when SS_tot <= 0
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from demand_forecaster.models.ml_model import TrainingMetrics


def combined_target(y_dine_in: Sequence[float], y_delivery: Sequence[float]) -> list[float]:
    """Element-wise mean of the two channels."""
    return [(d + v) / 2 for d, v in zip(y_dine_in, y_delivery)]


def compute_metrics(predictions: Sequence[float], actuals: Sequence[float]) -> TrainingMetrics:
    """Score predictions against the combined target.

    Raises:
        ValueError: If the sequences are empty or differ in length.
    """
    n = len(actuals)
    if n == 0 or len(predictions) != n:
        raise ValueError(
            f"Need equal-length, non-empty inputs (got {len(predictions)} vs {n})."
        )

    abs_sum = 0.0
    sq_sum = 0.0
    pct_sum = 0.0
    pct_count = 0
    for pred, actual in zip(predictions, actuals):
        err = pred - actual
        abs_sum += abs(err)
        sq_sum += err * err
        if actual > 0:
            pct_sum += abs(err) / actual
            pct_count += 1

    mean_y = sum(actuals) / n
    ss_tot = sum((a - mean_y) ** 2 for a in actuals)

    return TrainingMetrics(
        mae=abs_sum / n,
        rmse=math.sqrt(sq_sum / n),
        mape=(pct_sum / pct_count) * 100 if pct_count else 0.0,
        r2_score=1 - sq_sum / ss_tot if ss_tot > 0 else 0.0,
    )
