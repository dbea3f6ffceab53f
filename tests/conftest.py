from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from bikeledger.config.preferences import PreferencesStore
    from bikeledger.repository.bikes import BikesRepository
    from bikeledger.repository.rides import RidesRepository
    from bikeledger.storage.bikes import BikeStore
    from bikeledger.storage.database import Database
    from bikeledger.storage.rides import RideStore


def pytest_configure() -> None:
    """
    Keep a `src/` layout while allowing `pytest` to run without requiring an editable install.
    """

    project_root = Path(__file__).resolve().parents[1]
    src_path = project_root / "src"
    sys.path.insert(0, str(src_path))


@dataclass
class Garage:
    database: Database
    preferences: PreferencesStore
    bike_store: BikeStore
    ride_store: RideStore
    bikes: BikesRepository
    rides: RidesRepository


@pytest.fixture
def make_garage():
    """
    Build an in-memory store with both repositories sharing one preferences object.

    Call it inside the coroutine under test so asyncio primitives bind to that loop.
    """

    from bikeledger.config.models import PreferencesSettings, StorageSettings
    from bikeledger.config.preferences import PreferencesStore
    from bikeledger.repository.bikes import BikesRepository
    from bikeledger.repository.rides import RidesRepository
    from bikeledger.storage.bikes import BikeStore
    from bikeledger.storage.database import Database
    from bikeledger.storage.rides import RideStore

    opened: list[Database] = []

    def factory(unit: str = "KM") -> Garage:
        database = Database(StorageSettings())
        opened.append(database)
        preferences = PreferencesStore(PreferencesSettings(distance_unit=unit))  # type: ignore[arg-type]
        bike_store = BikeStore(database)
        ride_store = RideStore(database)
        return Garage(
            database=database,
            preferences=preferences,
            bike_store=bike_store,
            ride_store=ride_store,
            bikes=BikesRepository(bike_store, preferences),
            rides=RidesRepository(ride_store, preferences),
        )

    yield factory
    for database in opened:
        database.close()
