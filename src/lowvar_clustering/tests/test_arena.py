import numpy as np
import pytest
from loguru import logger

from lowvar_clustering.src.models.arena import ClusterArena
from lowvar_clustering.src.models.data_models import DecayParams
from lowvar_clustering.src.models.dependent_cluster import (
    DependentCluster,
    GlobalIdAllocator,
)


def _cluster(point, allocator, lam=1.0, q=1.0):
    cluster = DependentCluster.from_point(np.asarray(point, dtype=float), DecayParams(lam=lam, q=q), allocator=allocator)
    cluster.update_weight()
    return cluster


def test_add_and_lookup_by_global_id():
    allocator = GlobalIdAllocator()
    arena = ClusterArena()
    first = _cluster([0.0, 0.0], allocator)
    second = _cluster([1.0, 1.0], allocator)
    assert arena.add(first) == 0
    assert arena.add(second) == 1
    assert arena.get(second.global_id) is second
    assert arena.slot_of(first.global_id) == 0
    assert len(arena) == 2
    assert first.global_id in arena


def test_add_rejects_duplicates_and_missing_ids():
    allocator = GlobalIdAllocator()
    cluster = _cluster([0.0], allocator)
    arena = ClusterArena([cluster])
    with pytest.raises(ValueError):
        arena.add(cluster)
    with pytest.raises(ValueError):
        arena.add(cluster.copy())


def test_remove_keeps_other_slots_stable():
    allocator = GlobalIdAllocator()
    clusters = [_cluster([float(i)], allocator) for i in range(3)]
    arena = ClusterArena(clusters)

    removed = arena.remove(clusters[1].global_id)

    assert removed is clusters[1]
    assert arena.at(1) is None
    assert arena.slot_of(clusters[2].global_id) == 2
    assert arena.num_slots == 3
    with pytest.raises(KeyError):
        arena.get(clusters[1].global_id)


def test_evict_dead_and_compact():
    # Arrange
    allocator = GlobalIdAllocator()
    survivor = _cluster([0.0], allocator, lam=10.0, q=1.0)
    doomed = _cluster([5.0], allocator, lam=1.0, q=1.0)
    fresh = _cluster([9.0], allocator, lam=1.0, q=1.0)
    arena = ClusterArena([survivor, doomed, fresh])
    for cluster in (survivor, doomed):
        for _ in range(2):
            cluster.next_time_step()
            cluster.inc_age()
    records = []
    sink_id = logger.add(lambda message: records.append(message.record), level="INFO")

    # Act
    try:
        evicted = arena.evict_dead()
    finally:
        logger.remove(sink_id)
    remap = arena.compact()

    # Assert
    assert evicted == [doomed.global_id]
    assert remap == {0: 0, 2: 1}
    assert arena.slot_of(fresh.global_id) == 1
    assert fresh.global_id == 2
    assert [cluster.global_id for cluster in arena] == [survivor.global_id, fresh.global_id]
    assert records[0]["extra"]["global_ids"] == [doomed.global_id]


def test_centroids_and_summary():
    allocator = GlobalIdAllocator()
    arena = ClusterArena([_cluster([0.0, 1.0], allocator), _cluster([2.0, 3.0], allocator)])
    assert arena.centroids().tolist() == [[0.0, 2.0], [1.0, 3.0]]
    summary = arena.summary()
    assert summary.total_clusters == 2
    assert summary.total_points == 2
    assert summary.instantiated_clusters == 2


def test_empty_arena_centroids():
    assert ClusterArena().centroids().shape == (0, 0)


def test_summary_does_not_count_empty_cluster_as_instantiated():
    allocator = GlobalIdAllocator()
    arena = ClusterArena([DependentCluster(2, allocator=allocator), _cluster([1.0, 1.0], allocator)])
    summary = arena.summary()
    assert summary.instantiated_clusters == 1
    assert summary.new_clusters == 2
    assert summary.total_points == 1


def test_centroid_columns_follow_slots_after_removal():
    # Arrange
    allocator = GlobalIdAllocator()
    clusters = [_cluster([float(i), 10.0 * i], allocator) for i in range(3)]
    arena = ClusterArena(clusters)

    # Act
    arena.remove(clusters[1].global_id)
    before_compact = arena.centroids()
    arena.compact()
    after_compact = arena.centroids()

    # Assert
    assert before_compact.shape == (2, 3)
    assert before_compact[:, 0].tolist() == [0.0, 0.0]
    assert np.isnan(before_compact[:, 1]).all()
    assert before_compact[:, 2].tolist() == [2.0, 20.0]
    assert after_compact.tolist() == [[0.0, 2.0], [0.0, 20.0]]
