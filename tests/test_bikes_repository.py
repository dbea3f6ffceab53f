from __future__ import annotations

import asyncio
from datetime import date, datetime
from uuid import uuid4

import pytest

from bikeledger.schemas.core import Bike, BikeType, DistanceUnit, Ride, WheelSize
from bikeledger.storage.errors import MappingFailedError, NotFoundError, WriteFailedError


def _bike(name: str, *, service_due: float = 100.0, is_default: bool = False, bike_id=None) -> Bike:
    return Bike(
        id=bike_id,
        type=BikeType.MTB,
        name=name,
        color="bikeOrange",
        wheel_size=WheelSize.SMALL,
        service_due=service_due,
        is_default=is_default,
    )


def _ride(bike_id, distance: float, *, when: datetime = datetime(2024, 3, 1, 9, 0)) -> Ride:
    return Ride(name="Tour", distance=distance, duration=60, date=when, bike_id=bike_id)


def test_add_assigns_id_and_get_one_round_trips(make_garage) -> None:
    async def scenario() -> None:
        g = make_garage()
        await g.bikes.setup()
        bike_id = await g.bikes.add(_bike("MTB"))
        bike = await g.bikes.get_one(bike_id)
        assert bike.id == bike_id
        assert bike.name == "MTB"
        assert bike.type is BikeType.MTB
        assert bike.wheel_size is WheelSize.SMALL
        assert bike.rides == ()

    asyncio.run(scenario())


def test_setting_default_clears_previous_default(make_garage) -> None:
    async def scenario() -> None:
        g = make_garage()
        await g.bikes.setup()
        a = await g.bikes.add(_bike("A"))
        b = await g.bikes.add(_bike("B"))

        await g.bikes.set_default(a)
        await g.bikes.set_default(b)

        bikes = await g.bikes.fetch_all()
        defaults = [x for x in bikes if x.is_default]
        assert [x.id for x in defaults] == [b]
        assert (await g.bikes.get_one(a)).is_default is False
        # Default bike comes first.
        assert bikes[0].id == b

    asyncio.run(scenario())


def test_adding_and_updating_default_bikes_keeps_single_default(make_garage) -> None:
    async def scenario() -> None:
        g = make_garage()
        await g.bikes.setup()
        a = await g.bikes.add(_bike("A", is_default=True))
        b = await g.bikes.add(_bike("B", is_default=True))
        assert [x.id for x in await g.bikes.fetch_all() if x.is_default] == [b]

        await g.bikes.update(_bike("A renamed", is_default=True, bike_id=a))
        bikes = await g.bikes.fetch_all()
        assert [x.id for x in bikes if x.is_default] == [a]
        assert bikes[0].name == "A renamed"

        # Updating a non-default bike leaves the current default alone.
        await g.bikes.update(_bike("B renamed", bike_id=b))
        assert [x.id for x in await g.bikes.fetch_all() if x.is_default] == [a]

    asyncio.run(scenario())


def test_concurrent_set_default_calls_leave_exactly_one_default(make_garage) -> None:
    async def scenario() -> None:
        g = make_garage()
        await g.bikes.setup()
        ids = [await g.bikes.add(_bike(f"Bike {i}")) for i in range(5)]
        await asyncio.gather(*(g.bikes.set_default(i) for i in ids))
        assert sum(1 for x in await g.bikes.fetch_all() if x.is_default) == 1

    asyncio.run(scenario())


def test_missing_ids_raise_not_found(make_garage) -> None:
    async def scenario() -> None:
        g = make_garage()
        await g.bikes.setup()
        missing = uuid4()
        with pytest.raises(NotFoundError):
            await g.bikes.get_one(missing)
        with pytest.raises(NotFoundError):
            await g.bikes.update(_bike("ghost", bike_id=missing))
        with pytest.raises(NotFoundError):
            await g.bikes.delete(missing)
        with pytest.raises(NotFoundError):
            await g.bikes.set_default(missing)
        with pytest.raises(NotFoundError):
            await g.bikes.set_latest_service(missing, date(2024, 1, 1))

    asyncio.run(scenario())


def test_set_latest_service_only_touches_service_date(make_garage) -> None:
    async def scenario() -> None:
        g = make_garage()
        await g.bikes.setup()
        bike_id = await g.bikes.add(_bike("MTB", is_default=True))
        await g.bikes.set_latest_service(bike_id, date(2024, 5, 17))
        bike = await g.bikes.get_one(bike_id)
        assert bike.latest_service == date(2024, 5, 17)
        assert bike.is_default is True
        assert bike.service_due == 100.0

    asyncio.run(scenario())


def test_delete_bike_cascades_to_rides(make_garage) -> None:
    async def scenario() -> None:
        g = make_garage()
        await g.bikes.setup()
        await g.rides.setup()
        bike_id = await g.bikes.add(_bike("MTB"))
        other_id = await g.bikes.add(_bike("Road"))
        ride_ids = [await g.rides.add(_ride(bike_id, d)) for d in (10.0, 20.0)]
        kept = await g.rides.add(_ride(other_id, 5.0))

        await g.bikes.delete(bike_id)

        for ride_id in ride_ids:
            with pytest.raises(NotFoundError):
                await g.rides.get_one(ride_id)
        assert [r.id for r in await g.rides.fetch_all()] == [kept]

    asyncio.run(scenario())


def test_failed_cascade_leaves_bike_and_rides(make_garage) -> None:
    async def scenario() -> None:
        g = make_garage()
        await g.bikes.setup()
        await g.rides.setup()
        bike_id = await g.bikes.add(_bike("MTB"))
        await g.rides.add(_ride(bike_id, 10.0))
        g.database.connection.execute(
            "CREATE TRIGGER block_ride_delete BEFORE DELETE ON rides BEGIN SELECT RAISE(ABORT, 'locked'); END"
        )
        g.database.connection.commit()

        with pytest.raises(WriteFailedError):
            await g.bikes.delete(bike_id)

        bike = await g.bikes.get_one(bike_id)
        assert len(bike.rides) == 1

    asyncio.run(scenario())


def test_duplicate_add_fails_and_store_is_unchanged(make_garage) -> None:
    async def scenario() -> None:
        g = make_garage()
        await g.bikes.setup()
        bike_id = await g.bikes.add(_bike("Original"))
        subscription = g.bikes.observe_all()
        assert [b.name for b in await subscription.__anext__()] == ["Original"]

        with pytest.raises(WriteFailedError):
            await g.bikes.add(_bike("Clone", bike_id=bike_id))

        assert [b.name for b in await g.bikes.fetch_all()] == ["Original"]
        # No change signal for a rolled-back transaction.
        assert await subscription.wait(timeout=0.05) is None
        await subscription.aclose()

    asyncio.run(scenario())


def test_unknown_enum_raw_value_is_a_mapping_failure(make_garage, caplog) -> None:
    async def scenario() -> None:
        g = make_garage()
        await g.bikes.setup()
        good = await g.bikes.add(_bike("Good"))
        bad = await g.bikes.add(_bike("Bad"))
        g.database.connection.execute("UPDATE bikes SET type = 99 WHERE bike_id = ?", (str(bad),))
        g.database.connection.commit()

        with pytest.raises(MappingFailedError):
            await g.bikes.get_one(bad)
        # Snapshots keep the mappable records and log the rest.
        assert [b.id for b in await g.bikes.fetch_all()] == [good]

    with caplog.at_level("WARNING"):
        asyncio.run(scenario())
    assert any("Leaving bike out of snapshot" in r.getMessage() for r in caplog.records)


def test_unmappable_ride_is_dropped_but_bike_is_kept(make_garage, caplog) -> None:
    async def scenario() -> None:
        g = make_garage()
        await g.bikes.setup()
        await g.rides.setup()
        bike_id = await g.bikes.add(_bike("Trail"))
        kept = await g.rides.add(_ride(bike_id, 20.0))
        broken = await g.rides.add(_ride(bike_id, 30.0, when=datetime(2024, 3, 2, 9, 0)))
        g.database.connection.execute("UPDATE rides SET date = 'garbage' WHERE ride_id = ?", (str(broken),))
        g.database.connection.commit()

        bikes = await g.bikes.fetch_all()
        assert [b.id for b in bikes] == [bike_id]
        assert [r.id for r in bikes[0].rides] == [kept]
        assert bikes[0].rides_total_distance == pytest.approx(20.0)
        assert [r.id for r in (await g.bikes.get_one(bike_id)).rides] == [kept]
        assert [r.id for r in await g.rides.fetch_all()] == [kept]

    with caplog.at_level("WARNING"):
        asyncio.run(scenario())
    assert any("Leaving ride out of bike" in r.getMessage() for r in caplog.records)


def test_distances_are_stored_in_km_and_shown_in_display_unit(make_garage) -> None:
    async def scenario() -> None:
        g = make_garage(unit="MI")
        await g.bikes.setup()
        await g.rides.setup()
        bike_id = await g.bikes.add(_bike("MTB", service_due=100.0))
        await g.rides.add(_ride(bike_id, 10.0))

        record = await g.bike_store.fetch_bike(bike_id)
        assert record.service_due == pytest.approx(160.9344)
        assert record.rides[0].distance == pytest.approx(16.09344)

        bike = await g.bikes.get_one(bike_id)
        assert bike.service_due == pytest.approx(100.0)
        assert bike.rides_total_distance == pytest.approx(10.0)

        g.preferences.distance_unit = DistanceUnit.KM
        bike = await g.bikes.get_one(bike_id)
        assert bike.service_due == pytest.approx(160.9344)

    asyncio.run(scenario())


def test_observed_bike_shows_overdue_after_rides(make_garage) -> None:
    async def scenario() -> None:
        g = make_garage()
        await g.bikes.setup()
        await g.rides.setup()
        subscription = g.bikes.observe_all()
        assert await subscription.__anext__() == []

        bike_id = await g.bikes.add(_bike("MTB", service_due=100.0))
        await g.rides.add(_ride(bike_id, 45.0))
        await g.rides.add(_ride(bike_id, 65.0))

        # One-slot queue: only the newest snapshot is pending.
        bikes = await asyncio.wait_for(subscription.__anext__(), timeout=1)
        assert len(bikes) == 1
        assert bikes[0].rides_total_distance == pytest.approx(110.0)
        assert bikes[0].formatted_service_due == "Overdue"
        await subscription.aclose()

    asyncio.run(scenario())
