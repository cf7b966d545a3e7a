"""
Exception hierarchy for the demand forecaster.

Only caller errors and integrity failures are raised. Routine outcomes
(insufficient training data, retraining not needed) are reported through
``TrainingResult`` / ``JobResult`` instead.
"""

from __future__ import annotations


class DemandForecasterError(Exception):
    """Base class for all package-specific errors."""


class RestaurantNotFoundError(DemandForecasterError):
    """No restaurant row exists for the requested id."""

    def __init__(self, restaurant_id: str) -> None:
        super().__init__(f"Restaurant not found: {restaurant_id}")
        self.restaurant_id = restaurant_id


class ModelNotFoundError(DemandForecasterError):
    """No ACTIVE model (or no model at the requested version) exists."""


class RollbackError(DemandForecasterError):
    """The rollback target exists but cannot be reactivated."""


class ProviderError(DemandForecasterError):
    """A weather or event provider call failed or timed out."""
