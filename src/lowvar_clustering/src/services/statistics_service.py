"""Per-cluster sufficient statistics and centroids from a label assignment.

Point sets are ``(D, N)`` matrices with one point per column and labels are
length-``N`` integer vectors. Each cluster index is an independent reduction
over the shared read-only inputs, so ``compute_centers`` fans clusters out
over a thread pool without any locking: every task writes only its own output
columns.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from time import perf_counter

import numpy as np
from loguru import logger

from lowvar_clustering.src.config import config
from lowvar_clustering.src.services.seeding import SeedPolicy, default_seed_policy
from lowvar_clustering.src.utils.errors import (
    ClusterPreconditionError,
    NonFiniteCentroidError,
)


def as_point_matrix(points: np.ndarray) -> np.ndarray:
    """Validate a ``(D, N)`` point matrix; integer input is promoted to float64."""
    data = np.asarray(points)
    if data.ndim != 2:
        msg = f"points must be a 2D (D, N) array, got {data.ndim}D"
        raise ClusterPreconditionError(msg)
    if not np.issubdtype(data.dtype, np.floating):
        data = data.astype(np.float64)
    return data


def as_labels(labels: np.ndarray, n_points: int) -> np.ndarray:
    label_array = np.asarray(labels)
    if label_array.ndim != 1:
        msg = f"labels must be a 1D array, got {label_array.ndim}D"
        raise ClusterPreconditionError(msg)
    if int(label_array.size) != n_points:
        msg = (
            "points and labels must have matching lengths, "
            f"got {n_points} and {label_array.size}"
        )
        raise ClusterPreconditionError(msg)
    if label_array.size and not np.issubdtype(label_array.dtype, np.integer):
        msg = f"labels must be integers, got dtype {label_array.dtype}"
        raise ClusterPreconditionError(msg)
    return label_array


def ensure_finite(centroid: np.ndarray, k: int | None = None) -> np.ndarray:
    if not np.isfinite(centroid).all():
        target = "centroid" if k is None else f"Centroid for cluster {k}"
        msg = f"{target} contains NaN/inf"
        raise NonFiniteCentroidError(msg)
    return centroid


def _sum(data: np.ndarray, label_array: np.ndarray, k: int) -> tuple[np.ndarray, int]:
    mask = label_array == k
    count = int(np.count_nonzero(mask))
    return data[:, mask].sum(axis=1), count


def _center(
    data: np.ndarray,
    label_array: np.ndarray,
    k: int,
    fallback: SeedPolicy,
) -> tuple[np.ndarray, int]:
    x_sum, count = _sum(data, label_array, k)
    if count == 0:
        return fallback.seed(data, k), 0
    return ensure_finite(x_sum / count, k), count


def compute_sum(
    points: np.ndarray, labels: np.ndarray, k: int,
) -> tuple[np.ndarray, int]:
    """Sum the columns of ``points`` labeled ``k``.

    Returns:
        Tuple of (sum, count); no matches yield a zero vector and 0.
    """
    data = as_point_matrix(points)
    return _sum(data, as_labels(labels, data.shape[1]), k)


def compute_center(
    points: np.ndarray,
    labels: np.ndarray,
    k: int,
    fallback: SeedPolicy | None = None,
) -> tuple[np.ndarray, int]:
    """Mean of the columns labeled ``k`` and their count.

    When nothing is labeled ``k`` the fallback policy supplies the center and
    the count is 0. The default is the configured ``statistics.fallback``
    policy (column ``k % N`` for ``column``).
    """
    data = as_point_matrix(points)
    label_array = as_labels(labels, data.shape[1])
    return _center(data, label_array, k, fallback or default_seed_policy())


def _partition_indices(
    n_clusters: int, partitions: Iterable[Sequence[int]] | None,
) -> list[list[int]]:
    if partitions is None:
        return [[k] for k in range(n_clusters)]
    groups = [[int(k) for k in group] for group in partitions]
    flat = sorted(k for group in groups for k in group)
    if flat != list(range(n_clusters)):
        msg = (
            f"partitions must cover cluster indices 0..{n_clusters - 1} "
            "exactly once"
        )
        raise ClusterPreconditionError(msg)
    return [group for group in groups if group]


def compute_centers(
    points: np.ndarray,
    labels: np.ndarray,
    n_clusters: int,
    *,
    max_workers: int | None = None,
    partitions: Iterable[Sequence[int]] | None = None,
    fallback: SeedPolicy | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Compute the centroid matrix and counts for clusters ``0..n_clusters-1``.

    Args:
        points: ``(D, N)`` point matrix.
        labels: Length-``N`` labels with values in ``[0, n_clusters)``.
        n_clusters: Number of clusters ``K``.
        max_workers: Thread pool size; defaults to the configured value.
        partitions: Groups of cluster indices, one task per group. Defaults to
            one cluster per task. The result does not depend on the grouping.
        fallback: Seed policy for clusters without points; defaults to the
            configured policy. Only a deterministic policy keeps the result
            independent of scheduling.

    Returns:
        Tuple of (centroids of shape ``(D, K)``, counts of shape ``(K,)``).
    """
    if n_clusters < 0:
        msg = f"n_clusters must be non-negative, got {n_clusters}"
        raise ClusterPreconditionError(msg)
    data = as_point_matrix(points)
    label_array = as_labels(labels, data.shape[1])
    if label_array.size and (
        int(label_array.min()) < 0 or int(label_array.max()) >= n_clusters
    ):
        msg = f"labels must lie in [0, {n_clusters}), got [{label_array.min()}, {label_array.max()}]"
        raise ClusterPreconditionError(msg)
    groups = _partition_indices(n_clusters, partitions)
    workers = max_workers if max_workers is not None else config.statistics.max_workers
    if workers <= 0:
        msg = f"max_workers must be greater than 0, got {workers}"
        raise ValueError(msg)
    policy = fallback or default_seed_policy()

    centroids = np.empty((data.shape[0], n_clusters), dtype=data.dtype)
    counts = np.zeros(n_clusters, dtype=np.int64)

    def reduce_group(group: list[int]) -> None:
        for k in group:
            centroids[:, k], counts[k] = _center(data, label_array, k, policy)

    start = perf_counter()
    if workers == 1 or len(groups) <= 1:
        for group in groups:
            reduce_group(group)
    else:
        with ThreadPoolExecutor(max_workers=min(workers, len(groups))) as executor:
            # result() re-raises any precondition error from a worker
            for future in [executor.submit(reduce_group, group) for group in groups]:
                future.result()
    latency_ms = (perf_counter() - start) * 1000

    empty = np.flatnonzero(counts == 0).tolist()
    if empty:
        logger.bind(
            event="empty_clusters",
            clusters=empty,
            fallback=policy.name,
        ).warning("clusters without points seeded from fallback")
    logger.bind(
        event="centers_computed",
        n_clusters=n_clusters,
        n_points=int(data.shape[1]),
        dimension=int(data.shape[0]),
        tasks=len(groups),
        workers=workers,
        latency_ms=latency_ms,
    ).debug("cluster centers recomputed")
    return centroids, counts
