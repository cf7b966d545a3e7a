"""
Regression tree grown by greedy variance reduction, stored as a flat array.

Growing
-------
At each node with ``n`` rows:

1.  Become a leaf (value = mean target) when ``depth >= max_depth``,
    ``n <= min_samples_leaf`` or the node's targets are constant.
2.  Otherwise, for each feature in index order, sort the node's rows by that
    feature and sweep the unique values in ascending order as thresholds
    (``x <= t`` goes left). Running sums of ``y`` and ``y²`` give both sides'
    population variance in O(1) per threshold.
3.  Skip thresholds leaving fewer than ``min_samples_leaf`` rows on a side.
4.  ``gain = var(all) - n_l/n · var(left) - n_r/n · var(right)``; the first
    strictly-greater gain wins, so ties keep the earliest feature/threshold.
5.  No positive gain → leaf. Otherwise record the split with the two child
    means in ``left_value`` / ``right_value`` and recurse.

Layout
------
Nodes are appended in pre-order, so ``nodes[0]`` is the root and every child
index is greater than its parent's. Leaves have both children ``-1`` and
carry their prediction in ``left_value`` (mirrored into ``right_value``).
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from demand_forecaster.models.ml_model import RegressionTree, TreeNode

# Gains at or below this are treated as zero (float cancellation in running sums).
_GAIN_EPSILON = 1e-12


def build_tree(
    X: Sequence[Sequence[float]],
    y: Sequence[float],
    max_depth: int,
    min_samples_leaf: int,
) -> RegressionTree:
    """Grow one regression tree on ``(X, y)``.

    Args:
        X: Rows of feature values (all rows the same length).
        y: Targets, one per row.
        max_depth: Depth at which nodes are forced to be leaves (root = 0).
        min_samples_leaf: Minimum rows on each side of a split; nodes with
            this many rows or fewer become leaves.

    Returns:
        A ``RegressionTree`` with at least one node.

    Raises:
        ValueError: If ``X`` is empty or ``len(X) != len(y)``.
    """
    if not X or len(X) != len(y):
        raise ValueError(f"Need equal-length, non-empty X and y (got {len(X)} vs {len(y)}).")

    columns = list(zip(*X))
    targets = list(y)
    nodes: list[dict[str, Any]] = []
    _grow(list(range(len(targets))), columns, targets, 0, max_depth, min_samples_leaf, nodes)
    return RegressionTree(nodes=[TreeNode(**n) for n in nodes])


def predict_tree(tree: RegressionTree, features: Sequence[float]) -> float:
    """Walk from the root to a leaf and return its value."""
    nodes = tree.nodes
    node = nodes[0]
    while True:
        if node.is_leaf:
            return node.left_value
        if features[node.feature_index] <= node.threshold:
            if node.left_child == -1:
                return node.left_value
            node = nodes[node.left_child]
        else:
            if node.right_child == -1:
                return node.right_value
            node = nodes[node.right_child]


def split_feature_counts(tree: RegressionTree, num_features: int) -> list[int]:
    """How many internal (split) nodes use each feature index."""
    counts = [0] * num_features
    for node in tree.nodes:
        if not node.is_leaf and 0 <= node.feature_index < num_features:
            counts[node.feature_index] += 1
    return counts


# ── Internal helpers ───────────────────────────────────────────────────────────


def _leaf(value: float) -> dict[str, Any]:
    return {
        "feature_index": 0,
        "threshold": 0.0,
        "left_value": value,
        "right_value": value,
        "left_child": -1,
        "right_child": -1,
    }


def _grow(
    idx: list[int],
    columns: list[tuple[float, ...]],
    y: list[float],
    depth: int,
    max_depth: int,
    min_samples: int,
    nodes: list[dict[str, Any]],
) -> int:
    """Append the subtree for rows ``idx`` to ``nodes``; return its root index."""
    n = len(idx)
    ys = [y[i] for i in idx]
    total = sum(ys)
    total_sq = sum(v * v for v in ys)
    mean = total / n
    total_var = max(0.0, total_sq / n - mean * mean)

    position = len(nodes)
    if depth >= max_depth or n <= min_samples or total_var <= 0.0:
        nodes.append(_leaf(mean))
        return position

    split = _best_split(idx, columns, y, total, total_sq, total_var, min_samples)
    if split is None:
        nodes.append(_leaf(mean))
        return position

    feature, threshold, left_idx, right_idx = split
    left_mean = sum(y[i] for i in left_idx) / len(left_idx)
    right_mean = sum(y[i] for i in right_idx) / len(right_idx)

    node = {
        "feature_index": feature,
        "threshold": threshold,
        "left_value": left_mean,
        "right_value": right_mean,
        "left_child": -1,
        "right_child": -1,
    }
    nodes.append(node)
    node["left_child"] = _grow(left_idx, columns, y, depth + 1, max_depth, min_samples, nodes)
    node["right_child"] = _grow(right_idx, columns, y, depth + 1, max_depth, min_samples, nodes)
    return position


def _best_split(
    idx: list[int],
    columns: list[tuple[float, ...]],
    y: list[float],
    total: float,
    total_sq: float,
    total_var: float,
    min_samples: int,
) -> tuple[int, float, list[int], list[int]] | None:
    n = len(idx)
    min_side = max(1, min_samples)
    best_gain = float("-inf")
    best: tuple[int, float] | None = None

    for f, col in enumerate(columns):
        order = sorted(idx, key=col.__getitem__)
        if col[order[0]] == col[order[-1]]:
            continue

        left_sum = 0.0
        left_sq = 0.0
        for k in range(n - 1):
            i = order[k]
            yi = y[i]
            left_sum += yi
            left_sq += yi * yi
            value = col[i]
            if value == col[order[k + 1]]:
                continue

            n_left = k + 1
            n_right = n - n_left
            if n_left < min_side or n_right < min_side:
                continue

            left_mean = left_sum / n_left
            right_sum = total - left_sum
            right_mean = right_sum / n_right
            left_var = max(0.0, left_sq / n_left - left_mean * left_mean)
            right_var = max(0.0, (total_sq - left_sq) / n_right - right_mean * right_mean)

            gain = total_var - (n_left / n) * left_var - (n_right / n) * right_var
            if gain > best_gain:
                best_gain = gain
                best = (f, value)

    if best is None or best_gain <= _GAIN_EPSILON:
        return None

    feature, threshold = best
    col = columns[feature]
    left_idx = [i for i in idx if col[i] <= threshold]
    right_idx = [i for i in idx if col[i] > threshold]
    return feature, threshold, left_idx, right_idx
