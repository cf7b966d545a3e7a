"""
Gradient boosting over regression trees (squared loss).

    target     = (dine_in + delivery) / 2
    F_0        = mean(target)
    for t in 1..num_trees:
        r      = target - F_{t-1}                 (all rows)
        S      = Bernoulli(subsample_ratio) draw per row; empty → {row 0}
        tree_t = build_tree(X[S], r[S])
        F_t    = F_{t-1} + learning_rate · tree_t(X)   (all rows)

Prediction is ``initial_prediction + learning_rate · Σ tree(x)``.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from typing import Optional

from demand_forecaster.ml.tree import build_tree, predict_tree
from demand_forecaster.models.ml_model import GradientBoostWeights, RegressionTree

logger = logging.getLogger(__name__)


def bernoulli_subsample(n: int, ratio: float, rng: random.Random) -> list[int]:
    """Indices kept by independent per-row draws; never empty (falls back to [0])."""
    kept = [i for i in range(n) if rng.random() < ratio]
    return kept or [0]


def train_gradient_boost(
    X: Sequence[Sequence[float]],
    y_dine_in: Sequence[float],
    y_delivery: Sequence[float],
    num_trees: int,
    max_depth: int,
    min_samples_leaf: int,
    subsample_ratio: float,
    learning_rate: float = 0.1,
    random_seed: Optional[int] = None,
) -> GradientBoostWeights:
    """Fit a boosted tree ensemble on the combined target.

    Args:
        X: Normalized design matrix.
        y_dine_in: Dine-in targets.
        y_delivery: Delivery targets.
        num_trees: Number of boosting rounds.
        max_depth: Per-tree depth limit.
        min_samples_leaf: Per-tree minimum rows per split side.
        subsample_ratio: Probability each row joins a round's sample.
        learning_rate: Shrinkage applied to each tree's output.
        random_seed: Seed for the subsampling RNG (``None`` = nondeterministic).

    Returns:
        ``GradientBoostWeights`` with ``num_trees`` trees.
    """
    n = len(X)
    if n == 0:
        raise ValueError("Cannot fit gradient boosting on zero rows.")

    target = [(d + v) / 2 for d, v in zip(y_dine_in, y_delivery)]
    initial = sum(target) / n
    running = [initial] * n
    rng = random.Random(random_seed)
    trees: list[RegressionTree] = []

    for t in range(num_trees):
        residuals = [a - p for a, p in zip(target, running)]
        sample = bernoulli_subsample(n, subsample_ratio, rng)
        tree = build_tree(
            [X[i] for i in sample],
            [residuals[i] for i in sample],
            max_depth,
            min_samples_leaf,
        )
        trees.append(tree)
        running = [p + learning_rate * predict_tree(tree, row) for p, row in zip(running, X)]
        logger.debug("Boosting round %d/%d: %d sampled rows, %d nodes", t + 1, num_trees, len(sample), len(tree.nodes))

    return GradientBoostWeights(
        trees=trees,
        learning_rate=learning_rate,
        initial_prediction=initial,
    )


def predict_gradient_boost(weights: GradientBoostWeights, features: Sequence[float]) -> float:
    """``initial_prediction + learning_rate · Σ tree(features)``."""
    total = sum(predict_tree(tree, features) for tree in weights.trees)
    return weights.initial_prediction + weights.learning_rate * total
