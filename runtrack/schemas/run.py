from pydantic import BaseModel, ConfigDict, Field

from runtrack.schemas.run_state import PathPoint


class Run(BaseModel):
    """A finished run as kept in history. Never modified once written."""

    model_config = ConfigDict(frozen=True)

    id: str
    distance: float = Field(ge=0.0)
    duration: str
    pace: str
    date: str
    path: list[PathPoint] = Field(default_factory=list)
    # ms timestamp of the active record this run was finalized from
    started_at: int | None = None


class RunSnapshotOut(BaseModel):
    phase: str
    started_at: int
    distance_mi: float
    elapsed_sec: int
    duration: str
    pace: str
    is_running: bool
    path_points: int
    updated_at: int | None


class RecoveryOut(BaseModel):
    resumable: bool
    snapshot: RunSnapshotOut | None = None


class LocationSampleIn(BaseModel):
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)
    accuracy_m: float | None = Field(default=None, ge=0.0)
    timestamp_ms: int = Field(ge=0)


class LocationPermissionIn(BaseModel):
    status: str = Field(min_length=1, max_length=32)


class StaticMapOut(BaseModel):
    run_id: str
    url: str
    point_count: int
