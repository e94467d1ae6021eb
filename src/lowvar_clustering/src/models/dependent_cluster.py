"""Cluster with temporal state: aging, death and reinstantiation across rounds.

A ``DependentCluster`` is a ``Cluster`` core plus a ``TemporalState`` and the
``DecayParams`` it was born with. Each round has to be driven in this order::

    cluster.next_time_step()            # open the round
    ...                                 # external assignment
    cluster.compute_center(x, z, k)     # cluster received points
    cluster.reinstantiate()             #   only if it was aging (age > 0)
    cluster.update_weight()             #   closes the round
    # or
    cluster.inc_age()                   # no points: closes the round

Clusters are born inside an open round. Out-of-order calls raise
``LifecycleOrderError``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
from loguru import logger

from lowvar_clustering.src.models.cluster import Cluster
from lowvar_clustering.src.models.data_models import (
    ClusterSnapshot,
    ClusterStatus,
    DecayParams,
)
from lowvar_clustering.src.services.seeding import SeedPolicy
from lowvar_clustering.src.services.statistics_service import ensure_finite
from lowvar_clustering.src.utils import distances
from lowvar_clustering.src.utils.errors import LifecycleOrderError

if TYPE_CHECKING:
    from lowvar_clustering.src.adapters.statistics_provider import StatisticsProvider


class GlobalIdAllocator:
    """Thread-safe source of strictly increasing, never reused cluster ids."""

    def __init__(self, start: int = 0) -> None:
        if start < 0:
            msg = f"start must be non-negative, got {start}"
            raise ValueError(msg)
        self._next = start
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            allocated = self._next
            self._next += 1
        return allocated

    @property
    def peek(self) -> int:
        return self._next


default_allocator = GlobalIdAllocator()


@dataclass(slots=True)
class TemporalState:
    """Per-cluster state carried between rounds."""

    age: int = 0
    weight: float = 0.0
    prev_centroid: np.ndarray = field(default_factory=lambda: np.zeros(0))
    round_open: bool = True

    def copy(self) -> "TemporalState":
        return TemporalState(
            age=self.age,
            weight=self.weight,
            prev_centroid=self.prev_centroid.copy(),
            round_open=self.round_open,
        )


class DependentCluster:
    """Euclidean cluster that survives, ages, dies or is reinstantiated over rounds."""

    def __init__(
        self,
        dim: int = 0,
        params: DecayParams | None = None,
        *,
        global_id: int | None = None,
        allocator: GlobalIdAllocator | None = None,
    ) -> None:
        self._attach(Cluster(dim), params, global_id, allocator)

    @classmethod
    def from_point(
        cls,
        point: np.ndarray,
        params: DecayParams | None = None,
        *,
        allocator: GlobalIdAllocator | None = None,
    ) -> "DependentCluster":
        """New cluster seeded from one point, age 0 and no weight yet."""
        cluster = cls.__new__(cls)
        cluster._attach(Cluster.from_point(point), params, None, allocator)
        return cluster

    @classmethod
    def spawn_like(
        cls,
        point: np.ndarray,
        sibling: "DependentCluster",
        *,
        allocator: GlobalIdAllocator | None = None,
    ) -> "DependentCluster":
        """New cluster seeded from ``point`` that inherits ``sibling``'s parameters."""
        return cls.from_point(point, sibling.params, allocator=allocator)

    def _attach(
        self,
        core: Cluster,
        params: DecayParams | None,
        global_id: int | None,
        allocator: GlobalIdAllocator | None,
    ) -> None:
        self.core = core
        self.params = params if params is not None else DecayParams.from_config()
        self.state = TemporalState(prev_centroid=core.centroid)
        if global_id is None:
            global_id = (allocator or default_allocator).next_id()
        self.global_id: int | None = global_id

    def copy(self) -> "DependentCluster":
        """Copy all statistics and temporal state; the copy has no ``global_id``.

        Callers assign a fresh id with ``assign_global_id`` when the copy
        stands for a new logical cluster.
        """
        clone = type(self).__new__(type(self))
        clone.core = self.core.copy()
        clone.params = self.params
        clone.state = self.state.copy()
        clone.global_id = None
        return clone

    def assign_global_id(self, global_id: int) -> None:
        if self.global_id is not None:
            msg = f"Cluster already has global_id {self.global_id}"
            raise ValueError(msg)
        self.global_id = global_id

    # statistics, delegated to the core

    @property
    def dim(self) -> int:
        return self.core.dim

    @property
    def centroid(self) -> np.ndarray:
        return self.core.centroid

    @property
    def x_sum(self) -> np.ndarray:
        return self.core.x_sum

    @property
    def count(self) -> int:
        return self.core.count

    def is_instantiated(self) -> bool:
        return self.core.is_instantiated()

    def compute_statistics(
        self,
        points: np.ndarray,
        labels: np.ndarray,
        k: int,
        fallback: SeedPolicy | None = None,
    ) -> None:
        self._require_open("compute_statistics")
        self.core.compute_statistics(points, labels, k, fallback)

    def update_center(self) -> None:
        self._require_open("update_center")
        self.core.update_center()

    def compute_center(
        self,
        points: np.ndarray,
        labels: np.ndarray,
        k: int,
        fallback: SeedPolicy | None = None,
    ) -> None:
        self._require_open("compute_center")
        self.core.compute_center(points, labels, k, fallback)

    def update_statistics_from_provider(self, provider: StatisticsProvider, k: int) -> None:
        self._require_open("update_statistics_from_provider")
        self.core.update_statistics_from_provider(provider, k)

    def update_center_from_provider(self, provider: StatisticsProvider, k: int) -> None:
        self._require_open("update_center_from_provider")
        self.core.update_center_from_provider(provider, k)

    def reset_center_randomly(
        self, provider: StatisticsProvider, policy: SeedPolicy | None = None,
    ) -> None:
        self.core.reset_center_randomly(provider, policy)

    # temporal state

    @property
    def age(self) -> int:
        return self.state.age

    @property
    def weight(self) -> float:
        return self.state.weight

    @property
    def prev_centroid(self) -> np.ndarray:
        return self.state.prev_centroid.copy()

    @property
    def round_open(self) -> bool:
        return self.state.round_open

    @property
    def tau(self) -> float:
        return self.params.tau

    @property
    def lam(self) -> float:
        return self.params.lam

    @property
    def q(self) -> float:
        return self.params.q

    def is_new(self) -> bool:
        return self.state.age == 0

    def is_dead(self) -> bool:
        return distances.cluster_is_dead(self.state.age, self.params.lam, self.params.q)

    def max_dist(self) -> float:
        """Threshold above which a driver spawns a new cluster instead."""
        return self.params.lam

    def distance(self, point: np.ndarray) -> float:
        if self.core.is_instantiated():
            return self.core.distance(point)
        return distances.dist_to_uninstantiated(
            np.asarray(point),
            self.core.centroid,
            self.state.age,
            self.state.weight,
            self.params.tau,
            self.params.q,
        )

    def dissimilarity(self, point: np.ndarray) -> float:
        return self.distance(point)

    def next_time_step(self) -> None:
        """Open a new round: forget assigned points and snapshot the centroid."""
        if self.state.round_open:
            msg = (
                f"next_time_step on cluster {self.global_id} before the previous "
                "round was closed by update_weight or inc_age"
            )
            raise LifecycleOrderError(msg)
        self.core.reset_count()
        self.state.prev_centroid = self.core.centroid
        self.state.round_open = True

    def inc_age(self) -> None:
        """Close a round in which the cluster received no points."""
        self._require_open("inc_age")
        if self.core.is_instantiated():
            msg = (
                f"inc_age on cluster {self.global_id} which holds "
                f"{self.core.count} points this round"
            )
            raise LifecycleOrderError(msg)
        self.state.age += 1
        self.state.round_open = False

    def update_weight(self) -> None:
        """Fold this round's points into the weight, reset age and close the round."""
        self._require_open("update_weight")
        if not self.core.is_instantiated():
            msg = (
                f"update_weight on cluster {self.global_id} without points; "
                "aging clusters close their round with inc_age"
            )
            raise LifecycleOrderError(msg)
        self.state.weight = distances.update_weight(
            self.core.count, self.state.age, self.state.weight, self.params.tau,
        )
        self.state.age = 0
        self.state.round_open = False

    def reinstantiate(self) -> None:
        """Blend the decayed previous centroid with this round's statistics."""
        self._require_open("reinstantiate")
        if not self.core.is_instantiated():
            msg = f"reinstantiate on cluster {self.global_id} without new points"
            raise LifecycleOrderError(msg)
        if self.state.weight <= 0:
            msg = f"reinstantiate on cluster {self.global_id} which never held points"
            raise LifecycleOrderError(msg)
        self.core.set_centroid(
            distances.reinstantiated_old_cluster(
                self.core.x_sum,
                self.core.count,
                self.state.prev_centroid,
                self.state.age,
                self.state.weight,
                self.params.tau,
            ),
        )

    def reinstantiate_with_point(self, point: np.ndarray) -> None:
        self._require_open("reinstantiate_with_point")
        self.core.set_statistics(point, 1)
        self.reinstantiate()

    @property
    def status(self) -> ClusterStatus:
        """Lifecycle label: ``new`` iff age is 0, otherwise by whether it holds points."""
        if self.is_dead():
            return "dead"
        if self.is_new():
            return "new"
        return "instantiated" if self.core.is_instantiated() else "aging"

    def check_invariants(self) -> None:
        self.core.check_invariants()
        ensure_finite(self.state.prev_centroid, self.global_id)

    def snapshot(self) -> ClusterSnapshot:
        core = self.core.snapshot()
        return core.model_copy(
            update={
                "global_id": self.global_id,
                "age": self.state.age,
                "weight": self.state.weight,
                "status": self.status,
            },
        )

    def describe(self) -> None:
        logger.bind(
            event="cluster_state",
            global_id=self.global_id,
            count=self.core.count,
            age=self.state.age,
            weight=self.state.weight,
            dead=self.is_dead(),
            centroid=self.core.centroid.tolist(),
        ).debug("cluster state")

    def _require_open(self, operation: str) -> None:
        if not self.state.round_open:
            msg = (
                f"{operation} on cluster {self.global_id} after its round was "
                "closed; call next_time_step first"
            )
            raise LifecycleOrderError(msg)

    def __repr__(self) -> str:
        return (
            f"DependentCluster(global_id={self.global_id}, count={self.count}, "
            f"age={self.age}, weight={self.weight:.3f}, centroid={self.centroid.tolist()})"
        )
