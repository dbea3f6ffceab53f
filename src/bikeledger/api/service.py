from __future__ import annotations

import logging

from bikeledger.config.models import AppConfig
from bikeledger.config.preferences import PreferencesStore
from bikeledger.demo.seed import seed_demo_garage
from bikeledger.repository.bikes import BikesRepository
from bikeledger.repository.rides import RidesRepository
from bikeledger.storage.bikes import BikeStore
from bikeledger.storage.database import Database
from bikeledger.storage.rides import RideStore


logger = logging.getLogger(__name__)


class GarageService:
    """
    Wires one store, its two services and the repositories for the HTTP layer.

    Routes only ever talk to `bikes`, `rides` and `preferences`.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._database = Database(config.storage)
        self._preferences = PreferencesStore(config.preferences)
        self._bike_store = BikeStore(self._database)
        self._ride_store = RideStore(self._database)
        self._bikes = BikesRepository(self._bike_store, self._preferences)
        self._rides = RidesRepository(self._ride_store, self._preferences)
        self._ready = False

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def bikes(self) -> BikesRepository:
        return self._bikes

    @property
    def rides(self) -> RidesRepository:
        return self._rides

    @property
    def preferences(self) -> PreferencesStore:
        return self._preferences

    async def setup(self) -> None:
        if self._ready:
            return
        await self._bikes.setup()
        await self._rides.setup()
        if self._config.app.demo_mode:
            await seed_demo_garage(self._bike_store, self._ride_store)
        self._ready = True
        logger.info("Garage ready (store=%s)", self._database.path or ":memory:")

    def close(self) -> None:
        self._bike_store.stop()
        self._ride_store.stop()
        self._database.close()
        self._ready = False
