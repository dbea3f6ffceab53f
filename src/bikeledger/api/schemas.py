from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from bikeledger.schemas.core import Bike, BikeType, DistanceUnit, Ride, WheelSize


class AppConfigOut(BaseModel):
    app_name: str
    demo_mode: bool
    chart_threshold_km: float
    sse_keepalive_s: float


class PreferencesOut(BaseModel):
    distance_unit: DistanceUnit
    is_service_reminder_on: bool
    service_reminder_distance: int


class PreferencesIn(BaseModel):
    distance_unit: Optional[DistanceUnit] = None
    is_service_reminder_on: Optional[bool] = None
    service_reminder_distance: Optional[int] = Field(default=None, ge=0)


class CreatedOut(BaseModel):
    id: UUID


class RideIn(BaseModel):
    name: str = Field(min_length=1)
    distance: float = Field(ge=0)
    duration: int = Field(ge=0, description="Minutes")
    date: datetime
    bike_id: UUID


class RideOut(BaseModel):
    id: Optional[UUID] = None
    name: str
    distance: float
    duration: int
    date: datetime
    bike_id: UUID
    bike_name: str
    bike_type: BikeType

    @classmethod
    def from_domain(cls, ride: Ride) -> "RideOut":
        return cls(
            id=ride.id,
            name=ride.name,
            distance=ride.distance,
            duration=ride.duration,
            date=ride.date,
            bike_id=ride.bike_id,
            bike_name=ride.bike_name,
            bike_type=ride.bike_type,
        )


class BikeIn(BaseModel):
    type: BikeType
    name: str = Field(min_length=1)
    color: str
    wheel_size: WheelSize
    service_due: float = Field(gt=0)
    is_default: bool = False
    latest_service: Optional[date] = None


class BikeOut(BaseModel):
    id: Optional[UUID] = None
    type: BikeType
    name: str
    color: str
    wheel_size: WheelSize
    service_due: float
    is_default: bool
    latest_service: Optional[date] = None
    rides_total_distance: float
    service_due_percentage: float
    service_due_progress: float
    formatted_service_due: str
    rides: list[RideOut] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, bike: Bike) -> "BikeOut":
        return cls(
            id=bike.id,
            type=bike.type,
            name=bike.name,
            color=bike.color,
            wheel_size=bike.wheel_size,
            service_due=bike.service_due,
            is_default=bike.is_default,
            latest_service=bike.latest_service,
            rides_total_distance=bike.rides_total_distance,
            service_due_percentage=bike.service_due_percentage,
            service_due_progress=bike.service_due_progress,
            formatted_service_due=bike.formatted_service_due,
            rides=[RideOut.from_domain(r) for r in bike.rides],
        )


class ServiceIn(BaseModel):
    serviced_on: date


class BikesViewOut(BaseModel):
    empty: bool
    bikes: list[BikeOut] = Field(default_factory=list)


class RidesSectionOut(BaseModel):
    period: date
    label: str
    total_distance: float
    rides: list[RideOut] = Field(default_factory=list)


class RidesSectionsOut(BaseModel):
    empty: bool
    sections: list[RidesSectionOut] = Field(default_factory=list)


class ChartEntryOut(BaseModel):
    bike_type: BikeType
    total_distance: float
    percentage: float


class ChartOut(BaseModel):
    empty: bool
    unit: DistanceUnit
    threshold: float
    entries: list[ChartEntryOut] = Field(default_factory=list)


class ReminderOut(BaseModel):
    bike_id: UUID
    bike_name: str
    color: str
    remaining_distance: float
    unit: DistanceUnit
    overdue: bool
