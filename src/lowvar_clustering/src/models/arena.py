"""Index-stable collection of active clusters keyed by ``global_id``.

Slots hold clusters or tombstones (``None``) so slot indices, which drivers
use as labels within a round, stay valid while clusters are evicted. Calling
``compact`` between rounds packs the live clusters and reports the slot
remapping. The arena carries out a driver's spawn/evict decisions and never
makes them itself.
"""

from __future__ import annotations

from collections.abc import Iterator

import numpy as np
from loguru import logger

from lowvar_clustering.src.models.data_models import ClusterSummary
from lowvar_clustering.src.models.dependent_cluster import DependentCluster


class ClusterArena:
    """Dense slot list with tombstones plus a ``global_id -> slot`` index."""

    def __init__(self, clusters: list[DependentCluster] | None = None) -> None:
        self._slots: list[DependentCluster | None] = []
        self._index: dict[int, int] = {}
        for cluster in clusters or []:
            self.add(cluster)

    def add(self, cluster: DependentCluster) -> int:
        """Append ``cluster`` and return its slot."""
        if cluster.global_id is None:
            msg = "Cluster needs a global_id before joining the arena"
            raise ValueError(msg)
        if cluster.global_id in self._index:
            msg = f"Cluster with global_id {cluster.global_id} is already active"
            raise ValueError(msg)
        slot = len(self._slots)
        self._slots.append(cluster)
        self._index[cluster.global_id] = slot
        return slot

    def get(self, global_id: int) -> DependentCluster:
        return self._slots[self.slot_of(global_id)]

    def slot_of(self, global_id: int) -> int:
        try:
            return self._index[global_id]
        except KeyError:
            msg = f"No active cluster with global_id {global_id}"
            raise KeyError(msg) from None

    def at(self, slot: int) -> DependentCluster | None:
        return self._slots[slot]

    def remove(self, global_id: int) -> DependentCluster:
        """Tombstone the cluster's slot and return the cluster."""
        slot = self.slot_of(global_id)
        del self._index[global_id]
        cluster = self._slots[slot]
        self._slots[slot] = None
        return cluster

    def evict_dead(self) -> list[int]:
        """Tombstone every dead cluster; returns the evicted global ids."""
        evicted = [cluster.global_id for cluster in self.active() if cluster.is_dead()]
        for global_id in evicted:
            self.remove(global_id)
        if evicted:
            logger.bind(event="clusters_evicted", global_ids=evicted).info(
                "dead clusters evicted",
            )
        return evicted

    def compact(self) -> dict[int, int]:
        """Drop tombstones; returns the mapping from old slot to new slot."""
        remap: dict[int, int] = {}
        packed: list[DependentCluster | None] = []
        for old_slot, cluster in enumerate(self._slots):
            if cluster is None:
                continue
            remap[old_slot] = len(packed)
            packed.append(cluster)
        self._slots = packed
        self._index = {cluster.global_id: slot for slot, cluster in enumerate(packed)}
        return remap

    def active(self) -> list[DependentCluster]:
        return [cluster for cluster in self._slots if cluster is not None]

    @property
    def num_slots(self) -> int:
        return len(self._slots)

    def centroids(self) -> np.ndarray:
        """``(D, num_slots)`` matrix; column ``j`` is slot ``j``, NaN for tombstones."""
        live = self.active()
        dimension = live[0].dim if live else 0
        matrix = np.full((dimension, len(self._slots)), np.nan)
        for slot, cluster in enumerate(self._slots):
            if cluster is not None:
                matrix[:, slot] = cluster.centroid
        return matrix

    def summary(self) -> ClusterSummary:
        return ClusterSummary.from_snapshots([cluster.snapshot() for cluster in self.active()])

    def __contains__(self, global_id: object) -> bool:
        return global_id in self._index

    def __len__(self) -> int:
        return len(self._index)

    def __iter__(self) -> Iterator[DependentCluster]:
        return iter(self.active())
