from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
import logging
import sqlite3
from typing import Callable, Optional, TypeVar
from uuid import UUID, uuid4

from bikeledger.schemas.core import Bike, BikeType, WheelSize
from bikeledger.storage.broadcaster import SnapshotBroadcaster, Subscription
from bikeledger.storage.database import Database
from bikeledger.storage.errors import MappingFailedError, NotFoundError
from bikeledger.storage.rides import RideRecord, ride_from_record, select_ride_records


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BikeRecord:
    bike_id: str
    type: int
    name: str
    color: str
    wheel_size: int
    service_due: float
    is_default: bool
    latest_service: Optional[str]
    rides: tuple[RideRecord, ...] = field(default=())


_BIKE_COLUMNS = "bike_id, type, name, color, wheel_size, service_due, is_default, latest_service"


def _bike_record(row: sqlite3.Row, rides: tuple[RideRecord, ...]) -> BikeRecord:
    return BikeRecord(
        bike_id=str(row["bike_id"]),
        type=int(row["type"]),
        name=row["name"],
        color=row["color"],
        wheel_size=int(row["wheel_size"]),
        service_due=float(row["service_due"]),
        is_default=bool(row["is_default"]),
        latest_service=row["latest_service"],
        rides=rides,
    )


def select_bike_records(conn: sqlite3.Connection) -> list[BikeRecord]:
    """Canonical bike query: default bike first, then insertion order; rides newest first."""

    rows = conn.execute(f"SELECT {_BIKE_COLUMNS} FROM bikes ORDER BY is_default DESC, rowid ASC").fetchall()
    rides_by_bike: dict[str, list[RideRecord]] = {}
    for ride in select_ride_records(conn):
        rides_by_bike.setdefault(ride.bike_id, []).append(ride)
    return [_bike_record(row, tuple(rides_by_bike.get(str(row["bike_id"]), []))) for row in rows]


def select_bike_record(conn: sqlite3.Connection, bike_id: str) -> Optional[BikeRecord]:
    row = conn.execute(f"SELECT {_BIKE_COLUMNS} FROM bikes WHERE bike_id = ?", (bike_id,)).fetchone()
    if row is None:
        return None
    return _bike_record(row, tuple(select_ride_records(conn, bike_id=bike_id)))


def bike_from_record(record: BikeRecord) -> Bike:
    """Validating parse of a stored bike and its rides; raises `MappingFailedError`."""

    try:
        bike_id = UUID(record.bike_id)
    except ValueError as e:
        raise MappingFailedError("bike", record.bike_id, f"malformed id ({e})") from e
    try:
        bike_type = BikeType(record.type)
    except ValueError as e:
        raise MappingFailedError("bike", record.bike_id, f"unknown bike type {record.type}") from e
    try:
        wheel_size = WheelSize(record.wheel_size)
    except ValueError as e:
        raise MappingFailedError("bike", record.bike_id, f"unknown wheel size {record.wheel_size}") from e
    latest_service = None
    if record.latest_service:
        try:
            latest_service = date.fromisoformat(record.latest_service)
        except ValueError as e:
            raise MappingFailedError(
                "bike", record.bike_id, f"malformed latest service date {record.latest_service!r}"
            ) from e
    rides = []
    for ride_record in record.rides:
        try:
            rides.append(ride_from_record(ride_record))
        except MappingFailedError as e:
            # One bad ride must not hide its bike.
            logger.warning("Leaving ride out of bike %s: %s", record.bike_id, e)
    try:
        return Bike(
            id=bike_id,
            type=bike_type,
            name=record.name,
            color=record.color,
            wheel_size=wheel_size,
            service_due=record.service_due,
            is_default=record.is_default,
            latest_service=latest_service,
            rides=rides,
        )
    except ValueError as e:
        raise MappingFailedError("bike", record.bike_id, str(e)) from e


def _iso_day(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def _clear_other_defaults(cur: sqlite3.Cursor, keep_bike_id: str) -> None:
    # Targeted write: only the current default row (if any) changes.
    cur.execute("UPDATE bikes SET is_default = 0 WHERE is_default = 1 AND bike_id != ?", (keep_bike_id,))


def _require_bike(cur: sqlite3.Cursor, bike_id: str) -> None:
    if cur.execute("SELECT 1 FROM bikes WHERE bike_id = ?", (bike_id,)).fetchone() is None:
        raise NotFoundError("bike", bike_id)


class BikeStore:
    """
    Bike persistence plus the live bike snapshot broadcaster.

    Values crossing this class are in kilometers. Every mutation holds the database lock
    across commit, re-fetch and broadcast, so no subscriber sees a half-applied write.
    """

    def __init__(self, database: Database) -> None:
        self._db = database
        self._broadcaster: SnapshotBroadcaster[list[BikeRecord]] = SnapshotBroadcaster(
            self._fetch_all, name="bikes"
        )
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    @property
    def subscriber_count(self) -> int:
        return self._broadcaster.subscriber_count

    def start(self) -> None:
        if self._started:
            return
        self._db.ensure_schema()
        self._db.add_change_listener(self._broadcaster.refresh)
        self._started = True

    def stop(self) -> None:
        self._db.remove_change_listener(self._broadcaster.refresh)
        self._broadcaster.close()
        self._started = False

    def _fetch_all(self) -> list[BikeRecord]:
        return select_bike_records(self._db.connection)

    def observe(self, transform: Callable[[list[BikeRecord]], T]) -> Subscription[T]:
        return self._broadcaster.subscribe(transform)

    async def add_bike(self, bike: Bike) -> UUID:
        bike_id = bike.id or uuid4()
        async with self._db.lock:
            with self._db.transaction() as cur:
                if bike.is_default:
                    _clear_other_defaults(cur, str(bike_id))
                cur.execute(
                    f"INSERT INTO bikes ({_BIKE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        str(bike_id),
                        int(bike.type),
                        bike.name,
                        bike.color,
                        int(bike.wheel_size),
                        float(bike.service_due),
                        int(bike.is_default),
                        _iso_day(bike.latest_service),
                    ),
                )
        logger.debug("Added bike %s (%s)", bike_id, bike.name)
        return bike_id

    async def update_bike(self, bike: Bike) -> None:
        if bike.id is None:
            raise NotFoundError("bike", None)
        bike_id = str(bike.id)
        async with self._db.lock:
            with self._db.transaction() as cur:
                _require_bike(cur, bike_id)
                if bike.is_default:
                    _clear_other_defaults(cur, bike_id)
                cur.execute(
                    """
                    UPDATE bikes
                    SET type = ?, name = ?, color = ?, wheel_size = ?, service_due = ?,
                        is_default = ?, latest_service = ?
                    WHERE bike_id = ?
                    """,
                    (
                        int(bike.type),
                        bike.name,
                        bike.color,
                        int(bike.wheel_size),
                        float(bike.service_due),
                        int(bike.is_default),
                        _iso_day(bike.latest_service),
                        bike_id,
                    ),
                )
        logger.debug("Updated bike %s", bike_id)

    async def set_default(self, bike_id: UUID) -> None:
        async with self._db.lock:
            with self._db.transaction() as cur:
                _require_bike(cur, str(bike_id))
                _clear_other_defaults(cur, str(bike_id))
                cur.execute("UPDATE bikes SET is_default = 1 WHERE bike_id = ?", (str(bike_id),))
        logger.debug("Bike %s is now the default", bike_id)

    async def set_latest_service(self, bike_id: UUID, when: date) -> None:
        async with self._db.lock:
            with self._db.transaction() as cur:
                _require_bike(cur, str(bike_id))
                cur.execute(
                    "UPDATE bikes SET latest_service = ? WHERE bike_id = ?",
                    (_iso_day(when), str(bike_id)),
                )
        logger.debug("Bike %s serviced on %s", bike_id, when)

    async def delete_bike(self, bike_id: UUID) -> None:
        async with self._db.lock:
            with self._db.transaction() as cur:
                # Rides go with the bike through ON DELETE CASCADE in the same transaction.
                cur.execute("DELETE FROM bikes WHERE bike_id = ?", (str(bike_id),))
                if cur.rowcount == 0:
                    raise NotFoundError("bike", bike_id)
        logger.debug("Deleted bike %s and its rides", bike_id)

    async def fetch_bike(self, bike_id: UUID) -> BikeRecord:
        async with self._db.lock:
            record = select_bike_record(self._db.connection, str(bike_id))
        if record is None:
            raise NotFoundError("bike", bike_id)
        return record

    async def fetch_all_bikes(self) -> list[BikeRecord]:
        async with self._db.lock:
            return select_bike_records(self._db.connection)
