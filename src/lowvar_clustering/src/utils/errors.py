"""Exceptions raised when callers break the cluster-state contracts.

Empty clusters are a normal, recoverable situation and never raise; every
exception here signals a programming error in the calling driver.
"""


class ClusterPreconditionError(ValueError):
    """Input violates a precondition of a statistics or cluster operation."""


class DimensionMismatchError(ClusterPreconditionError):
    """A point or statistic does not match the cluster dimensionality."""


class NonFiniteCentroidError(ClusterPreconditionError):
    """A centroid became NaN/inf, usually from malformed input."""


class LifecycleOrderError(RuntimeError):
    """Temporal operations were invoked out of their per-round order."""
