from __future__ import annotations

# `asyncio` is only needed to recognise client disconnects during SSE streaming.
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Callable, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import StreamingResponse

from bikeledger.api.schemas import (
    AppConfigOut,
    BikeIn,
    BikeOut,
    BikesViewOut,
    ChartEntryOut,
    ChartOut,
    CreatedOut,
    PreferencesIn,
    PreferencesOut,
    ReminderOut,
    RideIn,
    RideOut,
    RidesSectionOut,
    RidesSectionsOut,
    ServiceIn,
)
from bikeledger.api.service import GarageService
from bikeledger.projection.reminders import service_reminders
from bikeledger.projection.view_state import (
    LoadedBikes,
    LoadedRides,
    RidesChartState,
    project_bikes,
    project_chart,
    project_rides,
    rides_frame,
)
from bikeledger.schemas.core import Bike, Ride
from bikeledger.storage.broadcaster import Subscription
from bikeledger.utils.units import to_display


logger = logging.getLogger(__name__)

router = APIRouter()


def get_service(request: Request) -> GarageService:
    return request.app.state.garage_service


def _bike_from_payload(payload: BikeIn, *, bike_id: Optional[UUID] = None) -> Bike:
    try:
        return Bike(
            id=bike_id,
            type=payload.type,
            name=payload.name,
            color=payload.color,
            wheel_size=payload.wheel_size,
            service_due=payload.service_due,
            is_default=payload.is_default,
            latest_service=payload.latest_service,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


def _ride_from_payload(payload: RideIn, *, ride_id: Optional[UUID] = None) -> Ride:
    try:
        return Ride(
            id=ride_id,
            name=payload.name,
            distance=payload.distance,
            duration=payload.duration,
            date=payload.date,
            bike_id=payload.bike_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


def format_sse(event: str, data: Any) -> str:
    payload = json.dumps(data, ensure_ascii=False)
    return f"event: {event}\ndata: {payload}\n\n"


async def _snapshot_events(
    request: Request,
    subscription: Subscription,
    encode: Callable[[Any], Any],
    *,
    keepalive_s: float,
) -> AsyncIterator[str]:
    # Tell the browser to retry the connection on transient failures.
    yield "retry: 3000\n\n"
    try:
        while True:
            if await request.is_disconnected():
                return
            snapshot = await subscription.wait(timeout=keepalive_s)
            if snapshot is None:
                # Keep-alive comment for proxies.
                yield ": ping\n\n"
                continue
            yield format_sse("snapshot", encode(snapshot))
    except asyncio.CancelledError:
        logger.debug("SSE client went away")
        raise
    finally:
        subscription.close()


def _stream(request: Request, subscription: Subscription, encode: Callable[[Any], Any], keepalive_s: float) -> StreamingResponse:
    return StreamingResponse(
        _snapshot_events(request, subscription, encode, keepalive_s=keepalive_s),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


def _encode_bikes(bikes: list[Bike]) -> list[dict[str, Any]]:
    return [BikeOut.from_domain(b).model_dump(mode="json") for b in bikes]


def _encode_rides(rides: list[Ride]) -> list[dict[str, Any]]:
    return [RideOut.from_domain(r).model_dump(mode="json") for r in rides]


@router.get("/config", response_model=AppConfigOut)
def config(service: GarageService = Depends(get_service)) -> AppConfigOut:
    cfg = service.config
    return AppConfigOut(
        app_name=cfg.app.name,
        demo_mode=cfg.app.demo_mode,
        chart_threshold_km=cfg.chart.threshold_km,
        sse_keepalive_s=cfg.api.sse_keepalive_s,
    )


@router.get("/preferences", response_model=PreferencesOut)
def get_preferences(service: GarageService = Depends(get_service)) -> PreferencesOut:
    return PreferencesOut.model_validate(service.preferences.to_dict())


@router.put("/preferences", response_model=PreferencesOut)
def put_preferences(payload: PreferencesIn, service: GarageService = Depends(get_service)) -> PreferencesOut:
    prefs = service.preferences
    if payload.distance_unit is not None:
        prefs.distance_unit = payload.distance_unit
    if payload.is_service_reminder_on is not None:
        prefs.is_service_reminder_on = payload.is_service_reminder_on
    if payload.service_reminder_distance is not None:
        prefs.service_reminder_distance = payload.service_reminder_distance
    return PreferencesOut.model_validate(prefs.to_dict())


# Bikes


@router.get("/bikes", response_model=list[BikeOut])
async def list_bikes(service: GarageService = Depends(get_service)) -> list[BikeOut]:
    return [BikeOut.from_domain(b) for b in await service.bikes.fetch_all()]


@router.get("/bikes/view", response_model=BikesViewOut)
async def bikes_view(service: GarageService = Depends(get_service)) -> BikesViewOut:
    state = project_bikes(await service.bikes.fetch_all())
    if not isinstance(state, LoadedBikes):
        return BikesViewOut(empty=True)
    return BikesViewOut(empty=False, bikes=[BikeOut.from_domain(b) for b in state.bikes])


@router.post("/bikes", response_model=CreatedOut, status_code=201)
async def create_bike(payload: BikeIn, service: GarageService = Depends(get_service)) -> CreatedOut:
    bike_id = await service.bikes.add(_bike_from_payload(payload))
    return CreatedOut(id=bike_id)


@router.get("/bikes/{bike_id}", response_model=BikeOut)
async def get_bike(bike_id: UUID, service: GarageService = Depends(get_service)) -> BikeOut:
    return BikeOut.from_domain(await service.bikes.get_one(bike_id))


@router.put("/bikes/{bike_id}", status_code=204)
async def update_bike(bike_id: UUID, payload: BikeIn, service: GarageService = Depends(get_service)) -> Response:
    await service.bikes.update(_bike_from_payload(payload, bike_id=bike_id))
    return Response(status_code=204)


@router.delete("/bikes/{bike_id}", status_code=204)
async def delete_bike(bike_id: UUID, service: GarageService = Depends(get_service)) -> Response:
    await service.bikes.delete(bike_id)
    return Response(status_code=204)


@router.post("/bikes/{bike_id}/default", status_code=204)
async def make_default(bike_id: UUID, service: GarageService = Depends(get_service)) -> Response:
    await service.bikes.set_default(bike_id)
    return Response(status_code=204)


@router.post("/bikes/{bike_id}/service", status_code=204)
async def record_service(bike_id: UUID, payload: ServiceIn, service: GarageService = Depends(get_service)) -> Response:
    await service.bikes.set_latest_service(bike_id, payload.serviced_on)
    return Response(status_code=204)


# Rides


@router.get("/rides", response_model=list[RideOut])
async def list_rides(bike_id: Optional[UUID] = None, service: GarageService = Depends(get_service)) -> list[RideOut]:
    if bike_id is None:
        rides = await service.rides.fetch_all()
    else:
        rides = await service.rides.fetch_for_bike(bike_id)
    return [RideOut.from_domain(r) for r in rides]


@router.get("/rides/sections", response_model=RidesSectionsOut)
async def ride_sections(service: GarageService = Depends(get_service)) -> RidesSectionsOut:
    state = project_rides(await service.rides.fetch_all())
    if not isinstance(state, LoadedRides):
        return RidesSectionsOut(empty=True)
    return RidesSectionsOut(
        empty=False,
        sections=[
            RidesSectionOut(
                period=s.period,
                label=s.label,
                total_distance=s.total_distance,
                rides=[RideOut.from_domain(r) for r in s.rides],
            )
            for s in state.sections
        ],
    )


@router.get("/rides/chart", response_model=ChartOut)
async def ride_chart(service: GarageService = Depends(get_service)) -> ChartOut:
    unit = service.preferences.distance_unit
    threshold_km = service.config.chart.threshold_km
    state = project_chart(await service.rides.fetch_all(), unit, threshold_km=threshold_km)
    if not isinstance(state, RidesChartState):
        return ChartOut(empty=True, unit=unit, threshold=to_display(threshold_km, unit))
    return ChartOut(
        empty=False,
        unit=state.unit,
        threshold=state.threshold,
        entries=[
            ChartEntryOut(bike_type=e.bike_type, total_distance=e.total_distance, percentage=e.percentage)
            for e in state.entries
        ],
    )


@router.get("/rides/export.csv")
async def export_rides(service: GarageService = Depends(get_service)) -> Response:
    df = rides_frame(await service.rides.fetch_all())
    headers = {"Content-Disposition": 'attachment; filename="rides.csv"'}
    return Response(content=df.to_csv(index=False), media_type="text/csv", headers=headers)


@router.post("/rides", response_model=CreatedOut, status_code=201)
async def create_ride(payload: RideIn, service: GarageService = Depends(get_service)) -> CreatedOut:
    ride_id = await service.rides.add(_ride_from_payload(payload))
    return CreatedOut(id=ride_id)


@router.get("/rides/{ride_id}", response_model=RideOut)
async def get_ride(ride_id: UUID, service: GarageService = Depends(get_service)) -> RideOut:
    return RideOut.from_domain(await service.rides.get_one(ride_id))


@router.put("/rides/{ride_id}", status_code=204)
async def update_ride(ride_id: UUID, payload: RideIn, service: GarageService = Depends(get_service)) -> Response:
    await service.rides.update(_ride_from_payload(payload, ride_id=ride_id))
    return Response(status_code=204)


@router.delete("/rides/{ride_id}", status_code=204)
async def delete_ride(ride_id: UUID, service: GarageService = Depends(get_service)) -> Response:
    await service.rides.delete(ride_id)
    return Response(status_code=204)


# Reminders and live streams


@router.get("/reminders", response_model=list[ReminderOut])
async def reminders(service: GarageService = Depends(get_service)) -> list[ReminderOut]:
    out = service_reminders(await service.bikes.fetch_all(), service.preferences)
    return [
        ReminderOut(
            bike_id=r.bike_id,
            bike_name=r.bike_name,
            color=r.color,
            remaining_distance=r.remaining_distance,
            unit=r.unit,
            overdue=r.overdue,
        )
        for r in out
    ]


@router.get("/events/bikes")
async def bike_events(request: Request, service: GarageService = Depends(get_service)) -> StreamingResponse:
    """Server-Sent Events: the full bike list after every store change."""

    subscription = service.bikes.observe_all()
    return _stream(request, subscription, _encode_bikes, service.config.api.sse_keepalive_s)


@router.get("/events/rides")
async def ride_events(request: Request, service: GarageService = Depends(get_service)) -> StreamingResponse:
    """Server-Sent Events: the full ride list (newest first) after every store change."""

    subscription = service.rides.observe_all()
    return _stream(request, subscription, _encode_rides, service.config.api.sse_keepalive_s)
