from __future__ import annotations

import logging
from uuid import UUID

from bikeledger.config.preferences import PreferencesStore
from bikeledger.schemas.core import DistanceUnit, Ride
from bikeledger.storage.broadcaster import Subscription
from bikeledger.storage.errors import MappingFailedError
from bikeledger.storage.rides import RideRecord, RideStore, ride_from_record
from bikeledger.utils.units import to_display, to_storage


logger = logging.getLogger(__name__)


def ride_to_display(ride: Ride, unit: DistanceUnit) -> Ride:
    return ride.with_distance(to_display(ride.distance, unit))


def ride_to_storage(ride: Ride, unit: DistanceUnit) -> Ride:
    return ride.with_distance(to_storage(ride.distance, unit))


class RidesRepository:
    """
    The rides facade used by UI clients.

    Distances going in are read as the user's current display unit and stored as
    kilometers; distances coming out are converted back with the unit current at that moment.
    """

    def __init__(self, store: RideStore, preferences: PreferencesStore) -> None:
        self._store = store
        self._preferences = preferences

    async def setup(self) -> None:
        self._store.start()

    @property
    def observer_count(self) -> int:
        return self._store.subscriber_count

    def observe_all(self) -> Subscription[list[Ride]]:
        if not self._store.started:
            raise RuntimeError("RidesRepository.setup() must be awaited before observe_all()")
        return self._store.observe(self._to_domain_list)

    async def fetch_all(self) -> list[Ride]:
        return self._to_domain_list(await self._store.fetch_rides())

    async def fetch_for_bike(self, bike_id: UUID) -> list[Ride]:
        return self._to_domain_list(await self._store.fetch_rides(bike_id=bike_id))

    async def get_one(self, ride_id: UUID) -> Ride:
        record = await self._store.fetch_ride(ride_id)
        return ride_to_display(ride_from_record(record), self._preferences.distance_unit)

    async def add(self, ride: Ride) -> UUID:
        return await self._store.add_ride(ride_to_storage(ride, self._preferences.distance_unit))

    async def update(self, ride: Ride) -> None:
        await self._store.update_ride(ride_to_storage(ride, self._preferences.distance_unit))

    async def delete(self, ride_id: UUID) -> None:
        await self._store.delete_ride(ride_id)

    def _to_domain_list(self, records: list[RideRecord]) -> list[Ride]:
        unit = self._preferences.distance_unit
        out: list[Ride] = []
        for record in records:
            try:
                ride = ride_from_record(record)
            except MappingFailedError as e:
                logger.warning("Leaving ride out of snapshot: %s", e)
                continue
            out.append(ride_to_display(ride, unit))
        return out
