"""Euclidean distances and the closed-form temporal updates.

These are the free-function forms of the cluster operations; ``Cluster`` and
``DependentCluster`` delegate to them so drivers that keep cluster state in
plain arrays can use the same formulas.
"""

from __future__ import annotations

import math

import numpy as np

from lowvar_clustering.src.utils.errors import (
    ClusterPreconditionError,
    DimensionMismatchError,
)


def _check_same_shape(a: np.ndarray, b: np.ndarray) -> None:
    if a.shape != b.shape:
        msg = f"Dimension mismatch between vectors: {a.shape} vs {b.shape}"
        raise DimensionMismatchError(msg)


def dist(a: np.ndarray, b: np.ndarray) -> float:
    """Squared Euclidean distance."""
    a = np.asarray(a)
    b = np.asarray(b)
    _check_same_shape(a, b)
    diff = a - b
    return float(np.dot(diff, diff))


def dissimilarity(a: np.ndarray, b: np.ndarray) -> float:
    return dist(a, b)


def closer(a: float, b: float) -> bool:
    return a < b


def dist_to_uninstantiated(
    x: np.ndarray,
    prev_centroid: np.ndarray,
    age: int,
    weight: float,
    tau: float,
    q: float,
) -> float:
    """Penalized distance to a cluster that holds no points this round.

    The squared distance is shrunk by ``tau * age + 1 + 1 / weight`` and the
    age penalty ``q * age`` is added. A cluster without any accumulated weight
    has never held points and cannot be reactivated, so its distance is inf;
    plain IEEE evaluation of the formula would give ``q * age`` instead.
    """
    if weight <= 0:
        return math.inf
    return dist(x, prev_centroid) / (tau * age + 1.0 + 1.0 / weight) + q * age


def cluster_is_dead(age: int, lam: float, q: float) -> bool:
    return age * q > lam


def decayed_weight(weight: float, age: int, tau: float) -> float:
    """Weight of an unseen cluster after ``age`` rounds: 1 / (1/w + age*tau)."""
    if weight <= 0:
        msg = f"weight must be positive to decay, got {weight}"
        raise ClusterPreconditionError(msg)
    return 1.0 / (1.0 / weight + age * tau)


def reinstantiated_old_cluster(
    x_sum: np.ndarray,
    count: int,
    prev_centroid: np.ndarray,
    age: int,
    weight: float,
    tau: float,
) -> np.ndarray:
    """Blend a decayed prior centroid with freshly observed statistics."""
    x_sum = np.asarray(x_sum)
    prev_centroid = np.asarray(prev_centroid)
    _check_same_shape(x_sum, prev_centroid)
    gamma = decayed_weight(weight, age, tau)
    return (prev_centroid * gamma + x_sum) / (gamma + count)


def update_weight(count: int, age: int, weight: float, tau: float) -> float:
    if weight == 0:
        return float(count)
    return decayed_weight(weight, age, tau) + count
