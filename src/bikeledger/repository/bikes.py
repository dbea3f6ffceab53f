from __future__ import annotations

from dataclasses import replace
from datetime import date
import logging
from uuid import UUID

from bikeledger.config.preferences import PreferencesStore
from bikeledger.repository.rides import ride_to_display
from bikeledger.schemas.core import Bike, DistanceUnit
from bikeledger.storage.bikes import BikeRecord, BikeStore, bike_from_record
from bikeledger.storage.broadcaster import Subscription
from bikeledger.storage.errors import MappingFailedError
from bikeledger.utils.units import to_display, to_storage


logger = logging.getLogger(__name__)


def bike_to_display(bike: Bike, unit: DistanceUnit) -> Bike:
    return replace(
        bike,
        service_due=to_display(bike.service_due, unit),
        rides=tuple(ride_to_display(ride, unit) for ride in bike.rides),
    )


def bike_to_storage(bike: Bike, unit: DistanceUnit) -> Bike:
    # Rides are never written through a bike, so only the threshold is converted.
    return replace(bike, service_due=to_storage(bike.service_due, unit), rides=())


class BikesRepository:
    """
    The bikes facade used by UI clients.

    Every operation is a coroutine except `observe_all()`, which hands back a live
    `Subscription` yielding the full bike list (default bike first) after each change.
    """

    def __init__(self, store: BikeStore, preferences: PreferencesStore) -> None:
        self._store = store
        self._preferences = preferences

    async def setup(self) -> None:
        self._store.start()

    @property
    def observer_count(self) -> int:
        return self._store.subscriber_count

    def observe_all(self) -> Subscription[list[Bike]]:
        if not self._store.started:
            raise RuntimeError("BikesRepository.setup() must be awaited before observe_all()")
        return self._store.observe(self._to_domain_list)

    async def fetch_all(self) -> list[Bike]:
        return self._to_domain_list(await self._store.fetch_all_bikes())

    async def get_one(self, bike_id: UUID) -> Bike:
        record = await self._store.fetch_bike(bike_id)
        return bike_to_display(bike_from_record(record), self._preferences.distance_unit)

    async def add(self, bike: Bike) -> UUID:
        return await self._store.add_bike(bike_to_storage(bike, self._preferences.distance_unit))

    async def update(self, bike: Bike) -> None:
        await self._store.update_bike(bike_to_storage(bike, self._preferences.distance_unit))

    async def delete(self, bike_id: UUID) -> None:
        await self._store.delete_bike(bike_id)

    async def set_default(self, bike_id: UUID) -> None:
        await self._store.set_default(bike_id)

    async def set_latest_service(self, bike_id: UUID, when: date) -> None:
        await self._store.set_latest_service(bike_id, when)

    def _to_domain_list(self, records: list[BikeRecord]) -> list[Bike]:
        unit = self._preferences.distance_unit
        out: list[Bike] = []
        for record in records:
            try:
                bike = bike_from_record(record)
            except MappingFailedError as e:
                logger.warning("Leaving bike out of snapshot: %s", e)
                continue
            out.append(bike_to_display(bike, unit))
        return out
