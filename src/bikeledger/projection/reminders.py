from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

from bikeledger.config.preferences import PreferencesStore
from bikeledger.schemas.core import Bike, DistanceUnit


@dataclass(frozen=True)
class ServiceReminder:
    """Opaque payload for the local notification scheduler."""

    bike_id: UUID
    bike_name: str
    color: str
    remaining_distance: float
    unit: DistanceUnit

    @property
    def overdue(self) -> bool:
        return self.remaining_distance <= 0


def service_reminders(bikes: Sequence[Bike], preferences: PreferencesStore) -> list[ServiceReminder]:
    """
    Bikes whose remaining distance to service is within the user's reminder distance.

    `bikes` are expected in the current display unit, the same unit the reminder
    distance is entered in.
    """

    if not preferences.is_service_reminder_on:
        return []
    limit = preferences.service_reminder_distance
    unit = preferences.distance_unit
    out: list[ServiceReminder] = []
    for bike in bikes:
        if bike.id is None:
            continue
        remaining = bike.remaining_service_distance
        if remaining <= limit:
            out.append(
                ServiceReminder(
                    bike_id=bike.id,
                    bike_name=bike.name,
                    color=bike.color,
                    remaining_distance=remaining,
                    unit=unit,
                )
            )
    return out
