from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ACTIVE_RUN_SCHEMA_VERSION = 1
MAX_PATH_POINTS = 5000


class PathPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)


class ActiveRunState(BaseModel):
    """Durable record of the run in progress.

    Serialized with camelCase keys, which is the shape the mobile client has always
    written under the `activeRunState` key.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    schema_version: int = ACTIVE_RUN_SCHEMA_VERSION
    started_at: int = Field(ge=0)
    total_distance_mi: float = Field(default=0.0, ge=0.0)
    elapsed_sec: int = Field(default=0, ge=0)
    is_running: bool = True
    last_lat: float | None = Field(default=None, ge=-90.0, le=90.0)
    last_lng: float | None = Field(default=None, ge=-180.0, le=180.0)
    path: list[PathPoint] = Field(default_factory=list)
    updated_at: int | None = None

    @field_validator("path")
    @classmethod
    def _keep_most_recent(cls, v: list[PathPoint]) -> list[PathPoint]:
        if len(v) > MAX_PATH_POINTS:
            return v[-MAX_PATH_POINTS:]
        return v

    @property
    def is_resumable(self) -> bool:
        return self.is_running or self.elapsed_sec > 0

    @property
    def last_point(self) -> PathPoint | None:
        if self.last_lat is None or self.last_lng is None:
            return None
        return PathPoint(lat=self.last_lat, lng=self.last_lng)


def append_path_point(
    path: list[PathPoint],
    point: PathPoint,
    max_points: int = MAX_PATH_POINTS,
) -> list[PathPoint]:
    """Return a new path with `point` appended, dropping the oldest beyond `max_points`."""
    next_path = [*path, point]
    if len(next_path) > max_points:
        next_path = next_path[-max_points:]
    return next_path
