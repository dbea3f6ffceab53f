from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
import sqlite3
from typing import Callable, Optional, TypeVar
from uuid import UUID, uuid4

from bikeledger.schemas.core import BikeType, Ride
from bikeledger.storage.broadcaster import SnapshotBroadcaster, Subscription
from bikeledger.storage.database import Database
from bikeledger.storage.errors import MappingFailedError, NotFoundError, ParentNotFoundError


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RideRecord:
    """Raw stored ride fields plus the denormalized parent bike columns."""

    ride_id: str
    name: str
    distance: float
    duration: int
    date: str
    bike_id: str
    bike_name: Optional[str]
    bike_type: Optional[int]


_RIDE_COLUMNS = """
    r.ride_id, r.name, r.distance, r.duration, r.date, r.bike_id,
    b.name AS bike_name, b.type AS bike_type
"""

# julianday() copes with mixed offsets; the raw string breaks ties and unparsable values.
_RIDE_ORDER = "ORDER BY julianday(r.date) DESC, r.date DESC, r.rowid ASC"


def _ride_record(row: sqlite3.Row) -> RideRecord:
    return RideRecord(
        ride_id=str(row["ride_id"]),
        name=row["name"],
        distance=float(row["distance"]),
        duration=int(row["duration"]),
        date=str(row["date"]),
        bike_id=str(row["bike_id"]),
        bike_name=row["bike_name"],
        bike_type=None if row["bike_type"] is None else int(row["bike_type"]),
    )


def select_ride_records(conn: sqlite3.Connection, *, bike_id: Optional[str] = None) -> list[RideRecord]:
    sql = f"SELECT {_RIDE_COLUMNS} FROM rides r LEFT JOIN bikes b ON b.bike_id = r.bike_id"
    params: tuple[object, ...] = ()
    if bike_id is not None:
        sql += " WHERE r.bike_id = ?"
        params = (bike_id,)
    rows = conn.execute(f"{sql} {_RIDE_ORDER}", params).fetchall()
    return [_ride_record(row) for row in rows]


def select_ride_record(conn: sqlite3.Connection, ride_id: str) -> Optional[RideRecord]:
    row = conn.execute(
        f"SELECT {_RIDE_COLUMNS} FROM rides r LEFT JOIN bikes b ON b.bike_id = r.bike_id WHERE r.ride_id = ?",
        (ride_id,),
    ).fetchone()
    return None if row is None else _ride_record(row)


def ride_from_record(record: RideRecord) -> Ride:
    """Validating parse of a stored ride; raises `MappingFailedError` instead of returning None."""

    try:
        ride_id = UUID(record.ride_id)
        bike_id = UUID(record.bike_id)
    except ValueError as e:
        raise MappingFailedError("ride", record.ride_id, f"malformed id ({e})") from e
    if record.bike_name is None or record.bike_type is None:
        raise MappingFailedError("ride", record.ride_id, "parent bike is missing")
    try:
        bike_type = BikeType(record.bike_type)
    except ValueError as e:
        raise MappingFailedError("ride", record.ride_id, f"unknown bike type {record.bike_type}") from e
    try:
        when = datetime.fromisoformat(record.date)
    except ValueError as e:
        raise MappingFailedError("ride", record.ride_id, f"malformed date {record.date!r}") from e
    try:
        return Ride(
            id=ride_id,
            name=record.name,
            distance=record.distance,
            duration=record.duration,
            date=when,
            bike_id=bike_id,
            bike_name=record.bike_name,
            bike_type=bike_type,
        )
    except ValueError as e:
        raise MappingFailedError("ride", record.ride_id, str(e)) from e


def _bike_exists(cur: sqlite3.Cursor, bike_id: str) -> bool:
    return cur.execute("SELECT 1 FROM bikes WHERE bike_id = ?", (bike_id,)).fetchone() is not None


class RideStore:
    """
    Ride persistence plus the live ride snapshot broadcaster.

    Distances handed in and out are kilometers; unit conversion belongs to the repository.
    """

    def __init__(self, database: Database) -> None:
        self._db = database
        self._broadcaster: SnapshotBroadcaster[list[RideRecord]] = SnapshotBroadcaster(
            self._fetch_all, name="rides"
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

    def _fetch_all(self) -> list[RideRecord]:
        return select_ride_records(self._db.connection)

    def observe(self, transform: Callable[[list[RideRecord]], T]) -> Subscription[T]:
        return self._broadcaster.subscribe(transform)

    async def add_ride(self, ride: Ride) -> UUID:
        ride_id = ride.id or uuid4()
        async with self._db.lock:
            with self._db.transaction() as cur:
                if not _bike_exists(cur, str(ride.bike_id)):
                    raise ParentNotFoundError(ride.bike_id)
                cur.execute(
                    "INSERT INTO rides (ride_id, name, distance, duration, date, bike_id) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        str(ride_id),
                        ride.name,
                        float(ride.distance),
                        int(ride.duration),
                        ride.date.isoformat(),
                        str(ride.bike_id),
                    ),
                )
        logger.debug("Added ride %s to bike %s", ride_id, ride.bike_id)
        return ride_id

    async def update_ride(self, ride: Ride) -> None:
        if ride.id is None:
            raise NotFoundError("ride", None)
        async with self._db.lock:
            with self._db.transaction() as cur:
                if cur.execute("SELECT 1 FROM rides WHERE ride_id = ?", (str(ride.id),)).fetchone() is None:
                    raise NotFoundError("ride", ride.id)
                if not _bike_exists(cur, str(ride.bike_id)):
                    raise ParentNotFoundError(ride.bike_id)
                cur.execute(
                    "UPDATE rides SET name = ?, distance = ?, duration = ?, date = ?, bike_id = ? WHERE ride_id = ?",
                    (
                        ride.name,
                        float(ride.distance),
                        int(ride.duration),
                        ride.date.isoformat(),
                        str(ride.bike_id),
                        str(ride.id),
                    ),
                )
        logger.debug("Updated ride %s", ride.id)

    async def delete_ride(self, ride_id: UUID) -> None:
        async with self._db.lock:
            with self._db.transaction() as cur:
                cur.execute("DELETE FROM rides WHERE ride_id = ?", (str(ride_id),))
                if cur.rowcount == 0:
                    raise NotFoundError("ride", ride_id)
        logger.debug("Deleted ride %s", ride_id)

    async def fetch_ride(self, ride_id: UUID) -> RideRecord:
        async with self._db.lock:
            record = select_ride_record(self._db.connection, str(ride_id))
        if record is None:
            raise NotFoundError("ride", ride_id)
        return record

    async def fetch_rides(self, *, bike_id: Optional[UUID] = None) -> list[RideRecord]:
        async with self._db.lock:
            return select_ride_records(self._db.connection, bike_id=None if bike_id is None else str(bike_id))
