from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from runtrack.models.kv_entry import KeyValueEntry

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when the backing store cannot complete a read or write."""


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store; contents are lost when the process exits."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class SqlKeyValueStore:
    """Durable store on the `kv_entries` table.

    SQLAlchemy sessions are synchronous, so every call is pushed to the threadpool to
    keep the event loop free while the database works.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def _get_sync(self, key: str) -> str | None:
        with self._session_factory() as db:
            row = db.get(KeyValueEntry, key)
            return row.value if row is not None else None

    def _set_sync(self, key: str, value: str) -> None:
        with self._session_factory() as db:
            row = db.get(KeyValueEntry, key)
            if row is None:
                row = KeyValueEntry(key=key)
                db.add(row)

            row.value = value
            row.updated_at = datetime.now(timezone.utc)
            db.commit()

    def _remove_sync(self, key: str) -> None:
        with self._session_factory() as db:
            db.query(KeyValueEntry).filter(KeyValueEntry.key == key).delete()
            db.commit()

    async def get(self, key: str) -> str | None:
        try:
            return await run_in_threadpool(self._get_sync, key)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to read key {key!r}") from exc

    async def set(self, key: str, value: str) -> None:
        try:
            await run_in_threadpool(self._set_sync, key, value)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to write key {key!r}") from exc
        logger.debug("Stored key", extra={"key": key, "bytes": len(value)})

    async def remove(self, key: str) -> None:
        try:
            await run_in_threadpool(self._remove_sync, key)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to remove key {key!r}") from exc
