"""
Tests for regression trees and gradient boosting.

What we test
------------
1. build_tree finds the obvious split, makes pure nodes leaves and respects
   max_depth / min_samples_leaf.
2. predict_tree walks to the right leaf; split_feature_counts counts only
   internal nodes.
3. bernoulli_subsample never returns an empty sample.
4. train_gradient_boost: tree count, seeded determinism, training error
   falls as trees are added.
"""

from __future__ import annotations

import random

import pytest

from demand_forecaster.ml.gradient_boost import (
    bernoulli_subsample,
    predict_gradient_boost,
    train_gradient_boost,
)
from demand_forecaster.ml.tree import build_tree, predict_tree, split_feature_counts

X_STEP = [[float(i)] for i in range(1, 11)]
Y_STEP = [0.0] * 5 + [10.0] * 5


# ── Trees ─────────────────────────────────────────────────────────────────────

def test_step_function_split():
    tree = build_tree(X_STEP, Y_STEP, max_depth=3, min_samples_leaf=1)
    root = tree.nodes[0]
    assert root.feature_index == 0
    assert root.threshold == 5.0
    assert root.left_value == 0.0
    assert root.right_value == 10.0
    assert len(tree.nodes) == 3
    assert tree.nodes[root.left_child].is_leaf
    assert tree.nodes[root.right_child].is_leaf


@pytest.mark.parametrize("x, expected", [(3.0, 0.0), (5.0, 0.0), (8.0, 10.0)])
def test_predict_tree(x, expected):
    tree = build_tree(X_STEP, Y_STEP, max_depth=3, min_samples_leaf=1)
    assert predict_tree(tree, [x]) == expected


def test_pure_node_is_single_leaf():
    tree = build_tree(X_STEP, [7.0] * 10, max_depth=4, min_samples_leaf=1)
    assert len(tree.nodes) == 1
    assert tree.nodes[0].is_leaf
    assert tree.nodes[0].left_value == tree.nodes[0].right_value == 7.0


def test_max_depth_zero_is_mean_leaf():
    tree = build_tree(X_STEP, Y_STEP, max_depth=0, min_samples_leaf=1)
    assert len(tree.nodes) == 1
    assert predict_tree(tree, [1.0]) == 5.0


def test_min_samples_leaf_blocks_small_splits():
    tree = build_tree(X_STEP, Y_STEP, max_depth=3, min_samples_leaf=10)
    assert len(tree.nodes) == 1


def test_picks_informative_feature():
    rng = random.Random(0)
    X = [[rng.random(), float(i % 2)] for i in range(40)]
    y = [row[1] * 5.0 for row in X]
    tree = build_tree(X, y, max_depth=2, min_samples_leaf=2)
    assert tree.nodes[0].feature_index == 1
    assert split_feature_counts(tree, 2) == [0, 1]


def test_constant_features_give_leaf():
    tree = build_tree([[1.0, 2.0]] * 6, [1.0, 2.0, 3.0, 4.0, 5.0, 6.0], max_depth=3, min_samples_leaf=1)
    assert len(tree.nodes) == 1
    assert tree.nodes[0].left_value == pytest.approx(3.5)


def test_empty_input_raises():
    with pytest.raises(ValueError):
        build_tree([], [], max_depth=3, min_samples_leaf=1)


# ── Boosting ──────────────────────────────────────────────────────────────────

def test_subsample_never_empty():
    rng = random.Random(1)
    assert bernoulli_subsample(10, 1e-12, rng) == [0]
    assert bernoulli_subsample(10, 1.0, rng) == list(range(10))


def test_boost_tree_count_and_initial_prediction():
    weights = train_gradient_boost(
        X_STEP, Y_STEP, Y_STEP, num_trees=7, max_depth=2, min_samples_leaf=1,
        subsample_ratio=1.0, learning_rate=0.1, random_seed=3,
    )
    assert len(weights.trees) == 7
    assert weights.initial_prediction == pytest.approx(5.0)
    assert weights.learning_rate == 0.1


def test_boost_is_deterministic_with_seed():
    kwargs = dict(
        num_trees=10, max_depth=2, min_samples_leaf=1, subsample_ratio=0.7,
        learning_rate=0.1, random_seed=42,
    )
    a = train_gradient_boost(X_STEP, Y_STEP, Y_STEP, **kwargs)
    b = train_gradient_boost(X_STEP, Y_STEP, Y_STEP, **kwargs)
    assert a == b


def test_more_trees_reduce_training_error():
    def sse(weights):
        return sum((predict_gradient_boost(weights, x) - y) ** 2 for x, y in zip(X_STEP, Y_STEP))

    few = train_gradient_boost(
        X_STEP, Y_STEP, Y_STEP, num_trees=2, max_depth=2, min_samples_leaf=1,
        subsample_ratio=1.0, random_seed=0,
    )
    many = train_gradient_boost(
        X_STEP, Y_STEP, Y_STEP, num_trees=30, max_depth=2, min_samples_leaf=1,
        subsample_ratio=1.0, random_seed=0,
    )
    assert sse(many) < sse(few)
    assert predict_gradient_boost(many, [9.0]) > predict_gradient_boost(many, [2.0])


def test_boost_uses_combined_target():
    weights = train_gradient_boost(
        X_STEP, [10.0] * 10, [0.0] * 10, num_trees=1, max_depth=1, min_samples_leaf=1,
        subsample_ratio=1.0,
    )
    assert weights.initial_prediction == 5.0
    assert predict_gradient_boost(weights, [1.0]) == pytest.approx(5.0)
