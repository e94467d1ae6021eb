import math

import numpy as np
import pytest
from loguru import logger

from lowvar_clustering.src.adapters.statistics_provider import IncrementalStatistics
from lowvar_clustering.src.models.data_models import DecayParams
from lowvar_clustering.src.models.dependent_cluster import (
    DependentCluster,
    GlobalIdAllocator,
)
from lowvar_clustering.src.utils.errors import LifecycleOrderError


def _close_round_with_points(cluster: DependentCluster, points: np.ndarray) -> None:
    labels = np.zeros(points.shape[1], dtype=int)
    cluster.compute_center(points, labels, 0)
    cluster.update_weight()


def _age_rounds(cluster: DependentCluster, rounds: int) -> None:
    for _ in range(rounds):
        cluster.next_time_step()
        cluster.inc_age()


def test_from_point_is_new_and_open():
    cluster = DependentCluster.from_point(np.array([1.0, 2.0]), DecayParams(tau=0.5, lam=2.0, q=0.5))
    assert cluster.is_new()
    assert cluster.age == 0
    assert cluster.weight == 0.0
    assert cluster.count == 1
    assert cluster.round_open
    assert cluster.prev_centroid.tolist() == [1.0, 2.0]
    assert cluster.status == "new"


def test_default_params_come_from_config():
    cluster = DependentCluster(2)
    assert cluster.params == DecayParams.from_config()
    assert cluster.count == 0


def test_global_ids_increase_and_are_never_reused():
    allocator = GlobalIdAllocator(start=10)
    first = DependentCluster.from_point(np.zeros(2), allocator=allocator)
    second = DependentCluster(2, allocator=allocator)
    third = DependentCluster.spawn_like(np.ones(2), first, allocator=allocator)
    assert [first.global_id, second.global_id, third.global_id] == [10, 11, 12]
    assert allocator.peek == 13


def test_spawn_like_copies_parameters():
    params = DecayParams(tau=0.2, lam=5.0, q=0.7)
    parent = DependentCluster.from_point(np.zeros(2), params)
    child = DependentCluster.spawn_like(np.array([3.0, 3.0]), parent)
    assert child.params == params
    assert child.centroid.tolist() == [3.0, 3.0]
    assert child.age == 0
    assert child.global_id != parent.global_id


def test_copy_keeps_state_but_not_global_id():
    # Arrange
    cluster = DependentCluster.from_point(np.array([1.0, 1.0]), DecayParams(tau=0.1))
    cluster.update_weight()
    _age_rounds(cluster, 2)

    # Act
    clone = cluster.copy()

    # Assert
    assert clone.global_id is None
    assert clone.age == 2
    assert clone.weight == cluster.weight
    assert clone.centroid.tolist() == cluster.centroid.tolist()
    clone.assign_global_id(999)
    assert clone.global_id == 999
    with pytest.raises(ValueError):
        cluster.assign_global_id(1000)


def test_is_new_iff_age_zero():
    cluster = DependentCluster.from_point(np.zeros(1), DecayParams(q=0.1, lam=10.0))
    cluster.update_weight()
    for expected_age in range(1, 4):
        cluster.next_time_step()
        cluster.inc_age()
        assert cluster.age == expected_age
        assert cluster.is_new() == (cluster.age == 0)


@pytest.mark.parametrize(
    ("q", "lam"),
    [(0.5, 1.0), (1.0, 1.0), (0.3, 2.0), (2.0, 0.5)],
)
def test_is_dead_iff_age_times_q_exceeds_lambda(q, lam):
    cluster = DependentCluster.from_point(np.zeros(2), DecayParams(q=q, lam=lam))
    cluster.update_weight()
    for _ in range(8):
        assert cluster.is_dead() == (cluster.age * q > lam)
        cluster.next_time_step()
        cluster.inc_age()
    assert cluster.is_dead()
    assert cluster.status == "dead"


def test_max_dist_is_lambda():
    cluster = DependentCluster(2, DecayParams(lam=3.5))
    assert cluster.max_dist() == 3.5


def test_weight_recurrence_over_two_rounds():
    # Arrange
    tau = 0.25
    cluster = DependentCluster(1, DecayParams(tau=tau, lam=100.0))
    first_round = np.array([[1.0, 2.0, 3.0]])
    second_round = np.array([[4.0, 5.0]])

    # Act
    _close_round_with_points(cluster, first_round)
    weight_after_first = cluster.weight
    _age_rounds(cluster, 3)
    cluster.next_time_step()
    _close_round_with_points(cluster, second_round)

    # Assert
    assert weight_after_first == 3.0
    assert cluster.weight == pytest.approx(1.0 / (1.0 / 3.0 + 3 * tau) + 2)
    assert cluster.age == 0


def test_reinstantiate_blends_previous_centroid():
    # Arrange
    cluster = DependentCluster.from_point(np.array([0.0, 0.0]), DecayParams(tau=0.1, lam=100.0))
    _close_round_with_points(cluster, np.array([[1.0, 3.0], [2.0, 2.0]]))
    assert cluster.weight == 2.0
    assert cluster.centroid.tolist() == [2.0, 2.0]
    _age_rounds(cluster, 3)
    cluster.next_time_step()
    x = np.array([6.0, -2.0])

    # Act
    cluster.reinstantiate_with_point(x)

    # Assert
    gamma = 1.0 / (1.0 / 2.0 + 3 * 0.1)
    expected = (np.array([2.0, 2.0]) * gamma + x) / (gamma + 1)
    assert gamma == pytest.approx(1.25)
    assert cluster.centroid.tolist() == pytest.approx(expected.tolist())
    assert cluster.centroid.tolist() == pytest.approx([(2.5 + 6.0) / 2.25, (2.5 - 2.0) / 2.25])
    assert cluster.age == 3
    cluster.update_weight()
    assert cluster.age == 0
    assert cluster.weight == pytest.approx(1.25 + 1)


def test_distance_instantiated_vs_uninstantiated():
    # Arrange
    params = DecayParams(tau=0.5, lam=10.0, q=0.2)
    cluster = DependentCluster.from_point(np.array([0.0, 0.0]), params)
    cluster.update_weight()
    x = np.array([3.0, 4.0])

    # Act
    instantiated = cluster.distance(x)
    _age_rounds(cluster, 2)
    cluster.next_time_step()
    uninstantiated = cluster.distance(x)

    # Assert
    assert instantiated == pytest.approx(25.0)
    assert uninstantiated == pytest.approx(25.0 / (0.5 * 2 + 1.0 + 1.0) + 0.2 * 2)
    assert uninstantiated < instantiated


def test_distance_grows_with_age():
    cluster = DependentCluster.from_point(np.zeros(2), DecayParams(tau=0.1, lam=100.0, q=0.2))
    cluster.update_weight()
    x = np.array([1.0, 1.0])
    previous = None
    for _ in range(5):
        cluster.next_time_step()
        current = cluster.distance(x)
        if previous is not None:
            assert current > previous
        previous = current
        cluster.inc_age()


def test_empty_cluster_without_history_is_unreachable():
    cluster = DependentCluster(2)
    assert math.isinf(cluster.distance(np.zeros(2)))


def test_next_time_step_resets_count_and_snapshots_centroid():
    cluster = DependentCluster.from_point(np.array([1.0, 0.0]))
    _close_round_with_points(cluster, np.array([[2.0, 4.0], [0.0, 0.0]]))
    cluster.next_time_step()
    assert cluster.count == 0
    assert cluster.prev_centroid.tolist() == [3.0, 0.0]
    assert cluster.is_new()
    assert cluster.status == "new"


def test_next_time_step_twice_raises():
    cluster = DependentCluster.from_point(np.zeros(2))
    cluster.update_weight()
    cluster.next_time_step()
    with pytest.raises(LifecycleOrderError):
        cluster.next_time_step()


def test_operations_after_close_raise():
    cluster = DependentCluster.from_point(np.zeros(2))
    cluster.update_weight()
    with pytest.raises(LifecycleOrderError):
        cluster.update_center()
    with pytest.raises(LifecycleOrderError):
        cluster.inc_age()
    with pytest.raises(LifecycleOrderError):
        cluster.update_weight()


def test_inc_age_with_points_raises():
    cluster = DependentCluster.from_point(np.zeros(2))
    with pytest.raises(LifecycleOrderError):
        cluster.inc_age()


def test_update_weight_without_points_raises():
    cluster = DependentCluster(2)
    with pytest.raises(LifecycleOrderError):
        cluster.update_weight()


def test_reinstantiate_without_history_raises():
    cluster = DependentCluster.from_point(np.zeros(2))
    with pytest.raises(LifecycleOrderError):
        cluster.reinstantiate()


def test_provider_driven_round():
    # Arrange
    points = np.array([[0.0, 2.0, 10.0, 12.0]])
    provider = IncrementalStatistics.from_assignment(points, np.array([0, 0, 1, 1]), 2)
    cluster = DependentCluster(1, DecayParams(lam=5.0))

    # Act
    cluster.update_center_from_provider(provider, 1)
    cluster.update_weight()

    # Assert
    assert cluster.centroid.tolist() == [11.0]
    assert cluster.weight == 2.0


def test_snapshot_carries_temporal_state():
    cluster = DependentCluster.from_point(np.array([1.0, 1.0]), DecayParams(lam=10.0))
    cluster.update_weight()
    _age_rounds(cluster, 1)
    snapshot = cluster.snapshot()
    assert snapshot.global_id == cluster.global_id
    assert snapshot.age == 1
    assert snapshot.weight == 1.0
    assert snapshot.status == "aging"


def test_describe_logs_state():
    records = []
    sink_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    cluster = DependentCluster.from_point(np.array([1.0, 2.0]))
    try:
        cluster.describe()
    finally:
        logger.remove(sink_id)
    extra = records[-1]["extra"]
    assert extra["event"] == "cluster_state"
    assert extra["global_id"] == cluster.global_id
    assert extra["centroid"] == [1.0, 2.0]


def test_status_agrees_with_lifecycle_predicates():
    # Arrange
    cluster = DependentCluster.from_point(np.array([0.0, 0.0]), DecayParams(tau=0.1, lam=10.0))
    statuses = [cluster.status]

    # Act
    cluster.update_weight()
    cluster.next_time_step()
    statuses.append(cluster.status)
    cluster.inc_age()
    cluster.next_time_step()
    statuses.append(cluster.status)
    cluster.reinstantiate_with_point(np.array([1.0, 1.0]))
    statuses.append(cluster.status)
    cluster.update_weight()
    statuses.append(cluster.status)

    # Assert
    assert statuses == ["new", "new", "aging", "instantiated", "new"]


def test_empty_cluster_is_new_without_points():
    cluster = DependentCluster(2)
    snapshot = cluster.snapshot()
    assert cluster.is_new()
    assert snapshot.status == "new"
    assert snapshot.count == 0
