"""Boundary to incremental per-cluster statistics maintained outside the core.

Cluster objects only ever read from a provider. ``IncrementalStatistics`` is
a reference provider that keeps running sums/counts for a fixed point set and
can merge the partial accumulators produced by parallel workers.
"""

from __future__ import annotations

import abc

import numpy as np

from lowvar_clustering.src.services.statistics_service import as_labels, as_point_matrix
from lowvar_clustering.src.utils.errors import ClusterPreconditionError


class StatisticsProvider(abc.ABC):
    """Read-only source of per-cluster sums and counts."""

    @abc.abstractmethod
    def sum(self, k: int) -> np.ndarray:
        """Return the running sum of the points assigned to cluster ``k``."""

    @abc.abstractmethod
    def count(self, k: int) -> int:
        """Return the number of points assigned to cluster ``k``."""

    @abc.abstractmethod
    def point_matrix(self) -> np.ndarray:
        """Return the ``(D, N)`` matrix of points the statistics cover."""

    @abc.abstractmethod
    def total_count(self) -> int:
        """Return the number of points ``N``."""


class IncrementalStatistics(StatisticsProvider):
    """Running per-cluster sums/counts over a fixed point set."""

    def __init__(self, points: np.ndarray, n_clusters: int) -> None:
        if n_clusters < 0:
            msg = f"n_clusters must be non-negative, got {n_clusters}"
            raise ClusterPreconditionError(msg)
        self._points = as_point_matrix(points).copy()
        self._points.setflags(write=False)
        dimension, n_points = self._points.shape
        self._sums = np.zeros((dimension, n_clusters), dtype=self._points.dtype)
        self._counts = np.zeros(n_clusters, dtype=np.int64)
        self._labels = np.full(n_points, -1, dtype=np.int64)

    @classmethod
    def from_assignment(
        cls, points: np.ndarray, labels: np.ndarray, n_clusters: int,
    ) -> "IncrementalStatistics":
        stats = cls(points, n_clusters)
        label_array = as_labels(labels, stats.total_count())
        for index, label in enumerate(label_array.tolist()):
            stats.reassign(index, int(label))
        return stats

    @property
    def num_clusters(self) -> int:
        return int(self._counts.size)

    def labels(self) -> np.ndarray:
        return self._labels.copy()

    def sum(self, k: int) -> np.ndarray:
        self._check_cluster(k)
        return self._sums[:, k].copy()

    def count(self, k: int) -> int:
        self._check_cluster(k)
        return int(self._counts[k])

    def point_matrix(self) -> np.ndarray:
        return self._points

    def total_count(self) -> int:
        return int(self._points.shape[1])

    def reassign(self, index: int, label: int) -> None:
        """Move point ``index`` to cluster ``label``; -1 unassigns it."""
        if not 0 <= index < self.total_count():
            msg = f"point index {index} out of range for {self.total_count()} points"
            raise ClusterPreconditionError(msg)
        if label != -1:
            self._check_cluster(label)
        previous = int(self._labels[index])
        if previous == label:
            return
        point = self._points[:, index]
        if previous != -1:
            self._sums[:, previous] -= point
            self._counts[previous] -= 1
        if label != -1:
            self._sums[:, label] += point
            self._counts[label] += 1
        self._labels[index] = label

    def merge(self, other: "IncrementalStatistics") -> None:
        """Fold in a worker's partial accumulator over disjoint points."""
        if other.point_matrix().shape != self._points.shape:
            msg = (
                "Cannot merge statistics over different point sets: "
                f"{other.point_matrix().shape} vs {self._points.shape}"
            )
            raise ClusterPreconditionError(msg)
        if other.num_clusters != self.num_clusters:
            msg = f"Cannot merge {other.num_clusters} clusters into {self.num_clusters}"
            raise ClusterPreconditionError(msg)
        other_labels = other.labels()
        overlap = (other_labels != -1) & (self._labels != -1)
        if overlap.any():
            msg = f"Merged accumulators overlap on {int(overlap.sum())} points"
            raise ClusterPreconditionError(msg)
        self._sums += other._sums
        self._counts += other._counts
        assigned = other_labels != -1
        self._labels[assigned] = other_labels[assigned]

    def _check_cluster(self, k: int) -> None:
        if not 0 <= k < self.num_clusters:
            msg = f"cluster index {k} out of range for {self.num_clusters} clusters"
            raise ClusterPreconditionError(msg)
