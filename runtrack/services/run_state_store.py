from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from runtrack.integrations.kv_store import KeyValueStore, StorageError
from runtrack.schemas.run_state import ACTIVE_RUN_SCHEMA_VERSION, ActiveRunState

logger = logging.getLogger(__name__)

DEFAULT_ACTIVE_RUN_KEY = "activeRunState"


def _migrate_v0(data: dict) -> dict:
    # v0 is the unversioned client record: path was optional and a pause toggle
    # could drop it entirely.
    migrated = dict(data)
    migrated.setdefault("totalDistanceMi", 0.0)
    migrated.setdefault("elapsedSec", 0)
    migrated.setdefault("isRunning", True)
    if not isinstance(migrated.get("path"), list):
        migrated["path"] = []
    migrated["schemaVersion"] = 1
    return migrated


_MIGRATIONS = {0: _migrate_v0}


def decode_active_run(raw: str) -> ActiveRunState | None:
    """Parse a stored record, upgrading older versions; None when it cannot be trusted."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Stored active run is not valid JSON; ignoring it")
        return None
    if not isinstance(data, dict):
        logger.warning("Stored active run is not an object; ignoring it")
        return None

    version = data.get("schemaVersion", 0)
    if (
        not isinstance(version, int)
        or isinstance(version, bool)
        or (version != ACTIVE_RUN_SCHEMA_VERSION and version not in _MIGRATIONS)
    ):
        logger.warning("Unsupported active run schema version", extra={"schema_version": version})
        return None

    while version < ACTIVE_RUN_SCHEMA_VERSION:
        data = _MIGRATIONS[version](data)
        version = data["schemaVersion"]

    try:
        return ActiveRunState.model_validate(data)
    except ValidationError as exc:
        logger.warning(
            "Stored active run failed validation; ignoring it",
            extra={"errors": exc.error_count()},
        )
        return None


def encode_active_run(state: ActiveRunState) -> str:
    return state.model_dump_json(by_alias=True, exclude_none=True)


class RunStateStore:
    """Get/set/clear of the single active run record.

    Storage failures are logged and swallowed: callers keep their in-memory state and
    the next write retries naturally.
    """

    def __init__(self, kv: KeyValueStore, key: str = DEFAULT_ACTIVE_RUN_KEY):
        self._kv = kv
        self.key = key

    async def get(self) -> ActiveRunState | None:
        try:
            raw = await self._kv.get(self.key)
        except StorageError:
            logger.exception("Failed to read active run state")
            return None
        if raw is None:
            return None
        return decode_active_run(raw)

    async def set(self, state: ActiveRunState) -> bool:
        try:
            await self._kv.set(self.key, encode_active_run(state))
        except StorageError:
            logger.exception("Failed to write active run state")
            return False
        return True

    async def clear(self) -> bool:
        try:
            await self._kv.remove(self.key)
        except StorageError:
            logger.exception("Failed to clear active run state")
            return False
        return True

    async def find_resumable(self) -> ActiveRunState | None:
        state = await self.get()
        if state is not None and state.is_resumable:
            return state
        return None
