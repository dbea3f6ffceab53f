from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Optional
from uuid import UUID


class BikeType(IntEnum):
    MTB = 1
    ROAD = 2
    ELECTRIC = 3
    HYBRID = 4


class WheelSize(IntEnum):
    BIG = 1
    SMALL = 2


class DistanceUnit(str, Enum):
    KM = "KM"
    MI = "MI"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Ride:
    name: str
    distance: float
    duration: int
    date: datetime
    bike_id: UUID
    bike_name: str = ""
    bike_type: BikeType = BikeType.MTB
    id: Optional[UUID] = None

    def __post_init__(self) -> None:
        if self.distance < 0:
            raise ValueError(f"Ride distance must be >= 0, got {self.distance}")
        if int(self.duration) != self.duration or self.duration < 0:
            raise ValueError(f"Ride duration must be a non-negative integer, got {self.duration}")

    def with_distance(self, distance: float) -> "Ride":
        return replace(self, distance=distance)


@dataclass(frozen=True)
class Bike:
    """
    Immutable snapshot of a tracked bike.

    `rides` is populated by the store (never written back); the derived values
    below are computed from it in whatever unit the snapshot was produced in.
    """

    type: BikeType
    name: str
    color: str
    wheel_size: WheelSize
    service_due: float
    is_default: bool = False
    latest_service: Optional[date] = None
    rides: tuple[Ride, ...] = field(default=())
    id: Optional[UUID] = None

    def __post_init__(self) -> None:
        if self.service_due <= 0:
            raise ValueError(f"Bike service_due must be > 0, got {self.service_due}")
        # Accept any iterable of rides but keep the snapshot immutable.
        object.__setattr__(self, "rides", tuple(self.rides))

    @property
    def rides_total_distance(self) -> float:
        return sum(ride.distance for ride in self.rides)

    @property
    def remaining_service_distance(self) -> float:
        return self.service_due - self.rides_total_distance

    @property
    def service_due_percentage(self) -> float:
        return self.rides_total_distance / self.service_due

    @property
    def service_due_progress(self) -> float:
        """`service_due_percentage` clamped to [0, 1] for progress bars."""
        return min(max(self.service_due_percentage, 0.0), 1.0)

    @property
    def formatted_service_due(self) -> str:
        remaining = self.remaining_service_distance
        if remaining > 0:
            return f"{remaining:.0f}"
        return "Overdue"

    @property
    def formatted_rides_total_distance(self) -> str:
        return f"{self.rides_total_distance:.1f}"

    def __str__(self) -> str:
        return self.name
