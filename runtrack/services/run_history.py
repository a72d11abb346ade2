from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from runtrack.integrations.kv_store import KeyValueStore, StorageError
from runtrack.schemas.run import Run
from runtrack.schemas.run_state import PathPoint

logger = logging.getLogger(__name__)

DEFAULT_RUN_HISTORY_KEY = "runs"

# Stand-in for entries that never recorded when they ran.
UNKNOWN_DATE = datetime.fromtimestamp(0, tz=timezone.utc).isoformat()


def _coerce_float(value, default: float = 0.0) -> float:
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return default


def _normalize_path(value) -> list[PathPoint]:
    if not isinstance(value, list):
        return []
    points = []
    for item in value:
        if not isinstance(item, dict):
            continue
        lat, lng = item.get("lat"), item.get("lng")
        if isinstance(lat, bool) or isinstance(lng, bool):
            continue
        if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
            continue
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            continue
        points.append(PathPoint(lat=lat, lng=lng))
    return points


def normalize_run(entry: dict, fallback_id: str) -> Run:
    """Build a Run from a stored entry, filling whatever older clients left out.

    Defaults must not depend on when the entry is read: an id handed out by a list
    call has to resolve on the next lookup.
    """
    started_at = entry.get("started_at")
    return Run(
        id=str(entry.get("id") or fallback_id),
        distance=_coerce_float(entry.get("distance")),
        duration=str(entry.get("duration") or "0:00"),
        pace=str(entry.get("pace") or "0:00"),
        date=str(entry.get("date") or UNKNOWN_DATE),
        path=_normalize_path(entry.get("path")),
        started_at=started_at if isinstance(started_at, int) and not isinstance(started_at, bool) else None,
    )


def decode_runs(raw: str) -> list[Run]:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Stored run history is not valid JSON; starting empty")
        return []
    if not isinstance(data, list):
        logger.warning("Stored run history is not a list; starting empty")
        return []
    # Entries are only ever prepended, so a position counted from the oldest end is
    # stable for the life of the list.
    return [
        normalize_run(entry, fallback_id=f"legacy-{len(data) - 1 - index}")
        for index, entry in enumerate(data)
        if isinstance(entry, dict)
    ]


class RunHistoryStore:
    """Newest-first list of finished runs. Append only."""

    def __init__(self, kv: KeyValueStore, key: str = DEFAULT_RUN_HISTORY_KEY):
        self._kv = kv
        self.key = key

    async def _load(self) -> list[Run]:
        raw = await self._kv.get(self.key)
        if raw is None:
            return []
        return decode_runs(raw)

    async def get_all(self) -> list[Run]:
        try:
            return await self._load()
        except StorageError:
            logger.exception("Failed to read run history")
            return []

    async def get(self, run_id: str) -> Run | None:
        for run in await self.get_all():
            if run.id == run_id:
                return run
        return None

    async def last(self) -> Run | None:
        runs = await self.get_all()
        return runs[0] if runs else None

    async def append(self, run: Run) -> list[Run]:
        """Prepend `run` and persist the whole list.

        Unlike reads, failures propagate as StorageError so the caller can keep the
        run's in-progress record instead of losing it.
        """
        runs = [run, *await self._load()]
        payload = json.dumps([r.model_dump(mode="json") for r in runs], separators=(",", ":"))
        await self._kv.set(self.key, payload)
        logger.info(
            "Run saved to history",
            extra={"run_id": run.id, "distance_mi": round(run.distance, 3), "runs": len(runs)},
        )
        return runs
