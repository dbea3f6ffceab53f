from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Optional
from uuid import UUID

from bikeledger.schemas.core import Bike, BikeType, Ride, WheelSize
from bikeledger.storage.bikes import BikeStore
from bikeledger.storage.rides import RideStore


logger = logging.getLogger(__name__)


# (name, distance_km, duration_min)
_MTB_RIDES = [("Faget Tour", 45.0, 180), ("Avrig Tour", 65.0, 240), ("City Ride", 10.0, 20)]
_ROAD_RIDES = [("City ride", 45.0, 180)]
_HYBRID_RIDES = [(f"City ride {i}", 300.0, 180) for i in range(1, 5)]


def _demo_bikes() -> list[tuple[Bike, list[tuple[str, float, int]]]]:
    return [
        (
            Bike(
                type=BikeType.MTB,
                name="MTB",
                color="bikeOrange",
                wheel_size=WheelSize.SMALL,
                service_due=100,
                is_default=True,
            ),
            _MTB_RIDES,
        ),
        (
            Bike(type=BikeType.ROAD, name="ROAD", color="bikeWhite", wheel_size=WheelSize.SMALL, service_due=100),
            _ROAD_RIDES,
        ),
        (
            Bike(type=BikeType.ELECTRIC, name="ELECTRIC", color="bikeRed", wheel_size=WheelSize.BIG, service_due=100),
            [],
        ),
        (
            Bike(type=BikeType.HYBRID, name="Hybrid", color="bikeRed", wheel_size=WheelSize.BIG, service_due=100),
            _HYBRID_RIDES,
        ),
    ]


async def seed_demo_garage(bikes: BikeStore, rides: RideStore, *, now: Optional[datetime] = None) -> list[UUID]:
    """
    Insert the sample garage (one bike per type, a handful of rides) into an empty store.

    Values are kilometers and go straight to the stores. Returns the new bike ids, or an
    empty list when the store already holds bikes.
    """

    if await bikes.fetch_all_bikes():
        logger.info("Store already has bikes; skipping demo seed")
        return []

    now = now or datetime.now().replace(microsecond=0)
    bike_ids: list[UUID] = []
    for bike, ride_specs in _demo_bikes():
        bike_id = await bikes.add_bike(bike)
        bike_ids.append(bike_id)
        for offset, (name, distance, duration) in enumerate(ride_specs):
            await rides.add_ride(
                Ride(
                    name=name,
                    distance=distance,
                    duration=duration,
                    date=now - timedelta(days=3 * offset),
                    bike_id=bike_id,
                )
            )
    logger.info("Seeded demo garage with %s bikes", len(bike_ids))
    return bike_ids
