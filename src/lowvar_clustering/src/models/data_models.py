from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from lowvar_clustering.src.config import config

ClusterStatus = Literal["new", "instantiated", "aging", "dead"]


class DecayParams(BaseModel):
    """Temporal parameters shared by a cluster and the children it spawns.

    Attributes:
        tau: Growth of location uncertainty per round without points.
        lam: Death threshold; also the spawn threshold returned by ``max_dist``.
        q: Penalty per round of age.
    """

    model_config = ConfigDict(frozen=True)

    tau: float = Field(default=1.0, ge=0.0)
    lam: float = Field(default=1.0, gt=0.0)
    q: float = Field(default=1.0, gt=0.0)

    @classmethod
    def from_config(cls) -> "DecayParams":
        return cls(
            tau=config.temporal.tau,
            lam=config.temporal.lam,
            q=config.temporal.q,
        )


class ClusterSnapshot(BaseModel):
    """Read-only export of one cluster's state for drivers and logs."""

    global_id: Optional[int] = None
    centroid: List[float]
    x_sum: List[float]
    count: int = Field(..., ge=0)
    age: int = Field(default=0, ge=0)
    weight: float = Field(default=0.0, ge=0.0)
    status: ClusterStatus = "instantiated"

    @field_validator("x_sum")
    def _matching_dimension(
        cls, value: List[float], info: ValidationInfo
    ) -> List[float]:
        centroid = (info.data or {}).get("centroid")
        if centroid is not None and len(centroid) != len(value):
            raise ValueError("Centroid and sum must share a dimension")
        return value


class ClusterSummary(BaseModel):
    """Aggregated statistics for a set of clusters."""

    total_clusters: int = Field(..., ge=0)
    new_clusters: int = Field(..., ge=0)
    instantiated_clusters: int = Field(..., ge=0)
    aging_clusters: int = Field(..., ge=0)
    dead_clusters: int = Field(..., ge=0)
    total_points: int = Field(..., ge=0)

    @classmethod
    def from_snapshots(cls, snapshots: List[ClusterSnapshot]) -> "ClusterSummary":
        statuses = [snapshot.status for snapshot in snapshots]
        return cls(
            total_clusters=len(snapshots),
            new_clusters=statuses.count("new"),
            instantiated_clusters=sum(1 for snapshot in snapshots if snapshot.count > 0),
            aging_clusters=statuses.count("aging"),
            dead_clusters=statuses.count("dead"),
            total_points=sum(snapshot.count for snapshot in snapshots),
        )
