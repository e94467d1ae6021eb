"""Euclidean cluster held as sufficient statistics.

Updating statistics and recomputing the centroid are separate steps: sums and
counts may be refreshed (possibly from a parallel accumulator) and the
centroid is only recomputed by an explicit ``update_center`` call.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from lowvar_clustering.src.models.data_models import ClusterSnapshot
from lowvar_clustering.src.services.seeding import (
    SeedPolicy,
    default_reseed_policy,
    default_seed_policy,
)
from lowvar_clustering.src.services.statistics_service import (
    as_labels,
    as_point_matrix,
    ensure_finite,
)
from lowvar_clustering.src.utils import distances
from lowvar_clustering.src.utils.errors import (
    ClusterPreconditionError,
    DimensionMismatchError,
)

if TYPE_CHECKING:
    from lowvar_clustering.src.adapters.statistics_provider import StatisticsProvider


def _as_vector(value: np.ndarray, name: str) -> np.ndarray:
    vector = np.array(value, copy=True)
    if vector.ndim != 1:
        msg = f"{name} must be a 1D vector, got {vector.ndim}D"
        raise DimensionMismatchError(msg)
    if not np.issubdtype(vector.dtype, np.floating):
        vector = vector.astype(np.float64)
    return vector


def _check_count(count: int) -> int:
    if count < 0:
        msg = f"count must be non-negative, got {count}"
        raise ClusterPreconditionError(msg)
    return int(count)


class Cluster:
    """Centroid, running sum and point count of one cluster.

    Example:
        cluster = Cluster.from_point(np.array([0.0, 1.0]))
        cluster.compute_statistics(points, labels, k=0)
        cluster.update_center()
        d = cluster.distance(np.array([1.0, 1.0]))
    """

    def __init__(self, dim: int = 0, dtype: np.dtype | type = np.float64) -> None:
        if dim < 0:
            msg = f"dim must be non-negative, got {dim}"
            raise ClusterPreconditionError(msg)
        self._centroid = np.zeros(dim, dtype=dtype)
        self._x_sum = np.zeros(dim, dtype=dtype)
        self._count = 0

    @classmethod
    def from_point(cls, point: np.ndarray) -> "Cluster":
        """Seed a cluster from a single point (count 1)."""
        vector = _as_vector(point, "point")
        cluster = cls(vector.size, dtype=vector.dtype)
        cluster._centroid = vector.copy()
        cluster._x_sum = vector
        cluster._count = 1
        return cluster

    @classmethod
    def from_statistics(cls, x_sum: np.ndarray, count: int) -> "Cluster":
        """Build from pre-aggregated statistics; centroid is sum/count when count > 0."""
        vector = _as_vector(x_sum, "x_sum")
        cluster = cls(vector.size, dtype=vector.dtype)
        cluster._x_sum = vector
        cluster._count = _check_count(count)
        cluster._centroid = vector / cluster._count if cluster._count else vector.copy()
        return cluster

    @property
    def dim(self) -> int:
        return int(self._centroid.size)

    @property
    def centroid(self) -> np.ndarray:
        return self._centroid.copy()

    @property
    def x_sum(self) -> np.ndarray:
        return self._x_sum.copy()

    @property
    def count(self) -> int:
        return self._count

    def set_statistics(self, x_sum: np.ndarray, count: int) -> None:
        """Overwrite sum/count; the centroid is left for ``update_center``."""
        vector = _as_vector(x_sum, "x_sum")
        self._check_dimension(vector, "x_sum")
        self._x_sum = vector
        self._count = _check_count(count)

    def reset_count(self) -> None:
        self._count = 0

    def set_centroid(self, centroid: np.ndarray) -> None:
        vector = _as_vector(centroid, "centroid")
        self._check_dimension(vector, "centroid")
        self._centroid = ensure_finite(vector)

    def is_instantiated(self) -> bool:
        return self._count > 0

    def distance(self, point: np.ndarray) -> float:
        return distances.dist(self._centroid, self._as_point(point))

    def dissimilarity(self, point: np.ndarray) -> float:
        return self.distance(point)

    def compute_statistics(
        self,
        points: np.ndarray,
        labels: np.ndarray,
        k: int,
        fallback: SeedPolicy | None = None,
    ) -> None:
        """Recompute sum/count from scratch for the points labeled ``k``.

        Without matches the sum is seeded from the fallback point (the
        configured ``statistics.fallback`` policy by default) and the count is 0.
        """
        data = self._as_points(points)
        mask = as_labels(labels, data.shape[1]) == k
        self._count = int(np.count_nonzero(mask))
        if self._count:
            self._x_sum = data[:, mask].sum(axis=1)
        else:
            self._x_sum = (fallback or default_seed_policy()).seed(data, k)

    def update_center(self) -> None:
        """Set centroid to sum/count; an empty cluster keeps its centroid."""
        if self._count > 0:
            self._centroid = ensure_finite(self._x_sum / self._count)

    def compute_center(
        self,
        points: np.ndarray,
        labels: np.ndarray,
        k: int,
        fallback: SeedPolicy | None = None,
    ) -> None:
        self.compute_statistics(points, labels, k, fallback)
        self.update_center()

    def update_statistics_from_provider(self, provider: StatisticsProvider, k: int) -> None:
        self.set_statistics(provider.sum(k), provider.count(k))

    def update_center_from_provider(self, provider: StatisticsProvider, k: int) -> None:
        self.update_statistics_from_provider(provider, k)
        self.update_center()

    def reset_center_randomly(
        self, provider: StatisticsProvider, policy: SeedPolicy | None = None,
    ) -> None:
        """Move the centroid onto an existing point chosen by ``policy``."""
        data = self._as_points(provider.point_matrix())
        if provider.total_count() != data.shape[1]:
            msg = (
                f"provider reports {provider.total_count()} points but its "
                f"matrix holds {data.shape[1]}"
            )
            raise ClusterPreconditionError(msg)
        self._centroid = (policy or default_reseed_policy()).seed(data, 0)

    def check_invariants(self) -> None:
        """Raise when the centroid is non-finite or statistics are inconsistent."""
        ensure_finite(self._centroid)
        if self._x_sum.shape != self._centroid.shape:
            msg = f"sum shape {self._x_sum.shape} does not match centroid {self._centroid.shape}"
            raise DimensionMismatchError(msg)
        _check_count(self._count)

    def copy(self) -> "Cluster":
        clone = type(self).__new__(type(self))
        clone._centroid = self._centroid.copy()
        clone._x_sum = self._x_sum.copy()
        clone._count = self._count
        return clone

    def snapshot(self) -> ClusterSnapshot:
        return ClusterSnapshot(
            centroid=self._centroid.tolist(),
            x_sum=self._x_sum.tolist(),
            count=self._count,
            status="instantiated" if self._count else "new",
        )

    def _as_point(self, point: np.ndarray) -> np.ndarray:
        vector = np.asarray(point)
        self._check_dimension(vector, "point")
        return vector

    def _as_points(self, points: np.ndarray) -> np.ndarray:
        data = as_point_matrix(points)
        if data.shape[0] != self.dim:
            msg = f"points have dimension {data.shape[0]}, cluster has {self.dim}"
            raise DimensionMismatchError(msg)
        return data

    def _check_dimension(self, vector: np.ndarray, name: str) -> None:
        if vector.shape != self._centroid.shape:
            msg = f"{name} has shape {vector.shape}, cluster centroid has {self._centroid.shape}"
            raise DimensionMismatchError(msg)

    def __repr__(self) -> str:
        return f"Cluster(dim={self.dim}, count={self._count}, centroid={self._centroid.tolist()})"
