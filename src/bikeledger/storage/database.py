from __future__ import annotations

import asyncio
from contextlib import contextmanager
import logging
from pathlib import Path
import sqlite3
from typing import Callable, Iterator, Optional

from bikeledger.config.models import StorageSettings
from bikeledger.storage.errors import WriteFailedError


logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS bikes (
      bike_id TEXT PRIMARY KEY,
      type INTEGER NOT NULL,
      name TEXT NOT NULL,
      color TEXT NOT NULL,
      wheel_size INTEGER NOT NULL,
      service_due REAL NOT NULL,
      is_default INTEGER NOT NULL DEFAULT 0,
      latest_service TEXT
    )
    """,
    # At most one default bike, enforced by the engine as well as by the services.
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_bikes_single_default ON bikes(is_default) WHERE is_default = 1",
    """
    CREATE TABLE IF NOT EXISTS rides (
      ride_id TEXT PRIMARY KEY,
      name TEXT NOT NULL,
      distance REAL NOT NULL,
      duration INTEGER NOT NULL CHECK (duration >= 0),
      date TEXT NOT NULL,
      bike_id TEXT NOT NULL REFERENCES bikes(bike_id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_rides_bike_date ON rides(bike_id, date)",
)


class Database:
    """
    Embedded sqlite store shared by the bike and ride services.

    - One connection; all access happens on the event loop thread.
    - `lock` is the single writer: services hold it across mutate, commit, re-fetch and broadcast.
    - Change listeners fire after a commit that touched at least one row.
    """

    def __init__(self, settings: StorageSettings) -> None:
        self._path: Optional[Path] = settings.db_path
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        target = ":memory:" if self._path is None else str(self._path)
        # Route handlers and the TestClient portal may run on another thread than the one
        # that built the app; access is still serialized through `lock`.
        self._conn = sqlite3.connect(target, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._listeners: list[ChangeListener] = []
        self._schema_ready = False
        self.lock = asyncio.Lock()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def ensure_schema(self) -> None:
        if self._schema_ready:
            return
        cur = self._conn.cursor()
        for statement in _SCHEMA:
            cur.execute(statement)
        self._conn.commit()
        self._schema_ready = True
        logger.debug("Schema ready (%s)", self._path or ":memory:")

    def add_change_listener(self, listener: ChangeListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Run the block as one atomic unit.

        Commits on success and then signals listeners if any row changed. Any exception
        rolls back; `sqlite3.Error` is re-raised as `WriteFailedError`.
        """

        before = self._conn.total_changes
        cur = self._conn.cursor()
        try:
            yield cur
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            logger.warning("Transaction rolled back: %s", e)
            raise WriteFailedError(str(e)) from e
        except BaseException:
            self._conn.rollback()
            raise
        finally:
            cur.close()

        if self._conn.total_changes != before:
            self.notify_changed()

    def notify_changed(self) -> None:
        for listener in list(self._listeners):
            listener()

    def close(self) -> None:
        self._listeners.clear()
        self._conn.close()
