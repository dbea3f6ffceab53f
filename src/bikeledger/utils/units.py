from __future__ import annotations

from bikeledger.schemas.core import DistanceUnit


# International mile.
KILOMETERS_PER_MILE = 1.609344

# Everything on disk is kilometers.
CANONICAL_UNIT = DistanceUnit.KM


def convert(value: float, *, from_unit: DistanceUnit, to_unit: DistanceUnit) -> float:
    if from_unit == to_unit:
        return float(value)
    if from_unit == DistanceUnit.KM and to_unit == DistanceUnit.MI:
        return float(value) / KILOMETERS_PER_MILE
    if from_unit == DistanceUnit.MI and to_unit == DistanceUnit.KM:
        return float(value) * KILOMETERS_PER_MILE
    raise ValueError(f"Unsupported conversion: {from_unit} -> {to_unit}")


def to_display(value_km: float, unit: DistanceUnit) -> float:
    return convert(value_km, from_unit=CANONICAL_UNIT, to_unit=unit)


def to_storage(value: float, unit: DistanceUnit) -> float:
    return convert(value, from_unit=unit, to_unit=CANONICAL_UNIT)
