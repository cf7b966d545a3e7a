"""
Linear regression by batch gradient descent with L2 regularization.

Two weight vectors (dine-in, delivery) are fitted side by side on the same
design matrix for a fixed number of iterations, with no early stopping:

    w  -= lr * (Xᵀ(Xw + b - y) / n + λ·w)
    b  -= lr * Σ(Xw + b - y) / n              (intercept is not regularized)

The persisted ``LinearWeights`` is the arithmetic mean of the two fitted
vectors, so the served model returns one number used for both channels.
"""

from __future__ import annotations

import logging
import operator
from collections.abc import Sequence

from demand_forecaster.models.ml_model import LinearWeights

logger = logging.getLogger(__name__)

_mul = operator.mul


def _dot(a: Sequence[float], b: Sequence[float]) -> float:
    return sum(map(_mul, a, b))


def fit_gradient_descent(
    X: Sequence[Sequence[float]],
    y: Sequence[float],
    learning_rate: float,
    max_iterations: int,
    regularization: float,
) -> tuple[float, list[float]]:
    """Fit one target. Returns ``(intercept, coefficients)``.

    Exposed separately so tests can check a single-target fit; ``train_linear``
    runs two of these in lockstep.
    """
    intercepts, coefs = _fit_many(X, [y], learning_rate, max_iterations, regularization)
    return intercepts[0], coefs[0]


def _fit_many(
    X: Sequence[Sequence[float]],
    targets: list[Sequence[float]],
    learning_rate: float,
    max_iterations: int,
    regularization: float,
) -> tuple[list[float], list[list[float]]]:
    n = len(X)
    if n == 0:
        raise ValueError("Cannot fit a linear model on zero rows.")
    p = len(X[0])
    rows = [tuple(r) for r in X]
    columns = list(zip(*rows))

    intercepts = [0.0 for _ in targets]
    coefs = [[0.0] * p for _ in targets]
    lr = learning_rate
    lam = regularization

    for _ in range(max_iterations):
        for t, y in enumerate(targets):
            w = coefs[t]
            b = intercepts[t]
            errors = [_dot(row, w) + b - yi for row, yi in zip(rows, y)]
            grad_b = sum(errors) / n
            new_w = [
                wj - lr * (_dot(errors, col) / n + lam * wj)
                for wj, col in zip(w, columns)
            ]
            coefs[t] = new_w
            intercepts[t] = b - lr * grad_b

    return intercepts, coefs


def train_linear(
    X: Sequence[Sequence[float]],
    y_dine_in: Sequence[float],
    y_delivery: Sequence[float],
    feature_names: Sequence[str],
    learning_rate: float,
    max_iterations: int,
    regularization: float,
) -> LinearWeights:
    """Fit both channels and merge them into one ``LinearWeights``.

    Args:
        X: Normalized design matrix, one row per sample.
        y_dine_in: Dine-in targets.
        y_delivery: Delivery targets.
        feature_names: Column names (canonical order) used as coefficient keys.
        learning_rate: Gradient step.
        max_iterations: Fixed number of full-batch steps.
        regularization: L2 strength λ on coefficients.

    Returns:
        Mean of the two fitted intercepts / coefficient vectors.
    """
    if len(feature_names) != len(X[0]):
        raise ValueError(
            f"feature_names has {len(feature_names)} entries but rows have {len(X[0])} columns."
        )
    (b_dine, b_deliv), (w_dine, w_deliv) = _fit_many(
        X, [y_dine_in, y_delivery], learning_rate, max_iterations, regularization
    )
    logger.debug("Linear fit done: %d rows, %d iterations", len(X), max_iterations)
    return LinearWeights(
        intercept=(b_dine + b_deliv) / 2,
        coefficients={
            name: (a + b) / 2 for name, a, b in zip(feature_names, w_dine, w_deliv)
        },
    )


def predict_linear(
    weights: LinearWeights,
    features: Sequence[float],
    feature_names: Sequence[str],
) -> float:
    """``intercept + Σ coef[name] * x``; unknown names contribute 0."""
    coefs = weights.coefficients
    return weights.intercept + _dot(features, [coefs.get(n, 0.0) for n in feature_names])


def linear_contributions(
    weights: LinearWeights,
    features: Sequence[float],
    feature_names: Sequence[str],
) -> dict[str, float]:
    """Per-feature ``coef * x`` plus the ``intercept`` term."""
    out = {"intercept": weights.intercept}
    for name, x in zip(feature_names, features):
        out[name] = weights.coefficients.get(name, 0.0) * x
    return out
