"""Policies choosing which existing point seeds an empty or degenerate cluster."""

from __future__ import annotations

import abc
from functools import lru_cache

import numpy as np

from lowvar_clustering.src.config import config
from lowvar_clustering.src.utils.errors import ClusterPreconditionError


class SeedPolicy(abc.ABC):
    """Common contract for seeding strategies."""

    name: str = "base"

    @abc.abstractmethod
    def choose_index(self, n_points: int, k: int) -> int:
        """Return the column index of the point that seeds cluster ``k``."""

    def seed(self, points: np.ndarray, k: int) -> np.ndarray:
        n_points = int(points.shape[1])
        if n_points == 0:
            msg = f"Cannot seed cluster {k} from an empty point set"
            raise ClusterPreconditionError(msg)
        return points[:, self.choose_index(n_points, k)].copy()


class ColumnSeed(SeedPolicy):
    """Deterministic fallback: cluster ``k`` is seeded from column ``k``.

    When there are fewer points than clusters the index wraps to ``k % N``.
    """

    name = "column"

    def choose_index(self, n_points: int, k: int) -> int:
        if n_points <= 0 or k < 0:
            msg = f"Cannot seed cluster {k} from {n_points} points"
            raise ClusterPreconditionError(msg)
        return k % n_points


class RandomSeed(SeedPolicy):
    """Uniformly random existing point from a numpy Generator."""

    name = "random"

    def __init__(self, rng: np.random.Generator | int | None = None) -> None:
        self._rng = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)

    def choose_index(self, n_points: int, k: int) -> int:
        if n_points <= 0:
            msg = f"Cannot draw a seed point for cluster {k} from {n_points} points"
            raise ClusterPreconditionError(msg)
        return int(self._rng.integers(0, n_points))


def build_seed_policy(name: str | None = None, seed: int | None = None) -> SeedPolicy:
    """Build the seeding policy named in configuration."""
    if name is None:
        name = config.statistics.fallback
        seed = config.statistics.seed if seed is None else seed
    if name == ColumnSeed.name:
        return ColumnSeed()
    if name == RandomSeed.name:
        return RandomSeed(seed)
    msg = f"Invalid seed policy: {name}, must be 'column' or 'random'"
    raise ValueError(msg)


@lru_cache(maxsize=1)
def default_seed_policy() -> SeedPolicy:
    """Configured fallback for empty clusters, shared so random draws advance."""
    return build_seed_policy()


@lru_cache(maxsize=1)
def default_reseed_policy() -> RandomSeed:
    """Random reseeding drawn from ``statistics.seed``."""
    return RandomSeed(config.statistics.seed)
