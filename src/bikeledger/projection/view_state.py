from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence, Union

import pandas as pd

from bikeledger.schemas.core import Bike, BikeType, DistanceUnit, Ride
from bikeledger.utils.units import to_display


DEFAULT_CHART_THRESHOLD_KM = 20000.0


@dataclass(frozen=True)
class EmptyState:
    """Sentinel for "nothing to show"; the projector never fails, it falls back to this."""


EMPTY = EmptyState()


@dataclass(frozen=True)
class LoadedBikes:
    bikes: tuple[Bike, ...]


@dataclass(frozen=True)
class RidesSection:
    # First day of the section's month.
    period: date
    rides: tuple[Ride, ...]

    @property
    def label(self) -> str:
        return self.period.strftime("%B %Y")

    @property
    def total_distance(self) -> float:
        return sum(ride.distance for ride in self.rides)


@dataclass(frozen=True)
class LoadedRides:
    sections: tuple[RidesSection, ...]


@dataclass(frozen=True)
class BikeTypeDistance:
    bike_type: BikeType
    total_distance: float
    percentage: float


@dataclass(frozen=True)
class RidesChartState:
    unit: DistanceUnit
    threshold: float
    entries: tuple[BikeTypeDistance, ...]


BikesViewState = Union[EmptyState, LoadedBikes]
RidesViewState = Union[EmptyState, LoadedRides]
ChartViewState = Union[EmptyState, RidesChartState]


def project_bikes(bikes: Optional[Sequence[Bike]]) -> BikesViewState:
    if not bikes:
        return EMPTY
    # Already default-first from the store.
    return LoadedBikes(bikes=tuple(bikes))


def project_rides(rides: Optional[Sequence[Ride]]) -> RidesViewState:
    """
    Group rides into month sections, most recent month first.

    Rides keep their incoming (date descending) order inside a section.
    """

    if not rides:
        return EMPTY
    grouped: dict[tuple[int, int], list[Ride]] = {}
    for ride in rides:
        grouped.setdefault((ride.date.year, ride.date.month), []).append(ride)
    sections = [
        RidesSection(period=date(year, month, 1), rides=tuple(items))
        for (year, month), items in grouped.items()
    ]
    sections.sort(key=lambda s: s.period, reverse=True)
    return LoadedRides(sections=tuple(sections))


def project_chart(
    rides: Optional[Sequence[Ride]],
    unit: DistanceUnit,
    *,
    threshold_km: float = DEFAULT_CHART_THRESHOLD_KM,
) -> ChartViewState:
    """
    Summed distance per bike type against a fixed threshold expressed in `unit`.

    `rides` must already be in `unit` (as the repository delivers them).
    """

    if not rides:
        return EMPTY
    threshold = to_display(threshold_km, unit)
    df = rides_frame(rides)
    totals = df.groupby("bike_type", sort=True)["distance"].sum()
    entries = tuple(
        BikeTypeDistance(
            bike_type=BikeType(int(bike_type)),
            total_distance=float(total),
            percentage=max(float(total) / threshold, 0.0),
        )
        for bike_type, total in totals.items()
    )
    return RidesChartState(unit=unit, threshold=threshold, entries=entries)


def rides_frame(rides: Sequence[Ride]) -> pd.DataFrame:
    """Tabular view of rides (used by the chart aggregation and CSV export)."""

    columns = ["ride_id", "name", "date", "distance", "duration", "bike_id", "bike_name", "bike_type"]
    if not rides:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(
        [
            {
                "ride_id": None if ride.id is None else str(ride.id),
                "name": ride.name,
                "date": ride.date.isoformat(),
                "distance": float(ride.distance),
                "duration": int(ride.duration),
                "bike_id": str(ride.bike_id),
                "bike_name": ride.bike_name,
                "bike_type": int(ride.bike_type),
            }
            for ride in rides
        ],
        columns=columns,
    )
