from __future__ import annotations

import json
import logging
from pathlib import Path
import tempfile
from typing import Any, Optional

from bikeledger.config.models import PreferencesSettings
from bikeledger.schemas.core import DistanceUnit


logger = logging.getLogger(__name__)


class PreferencesStore:
    """
    User preferences read synchronously at the moment they are needed.

    Values live in a small JSON document (`path`) or only in memory when no path is
    configured. Writes replace the file atomically. Nothing subscribes to changes:
    a new distance unit applies to the next conversion, not to snapshots already delivered.
    """

    _UNIT_KEY = "distance_unit"
    _REMINDER_ON_KEY = "is_service_reminder_on"
    _REMINDER_DISTANCE_KEY = "service_reminder_distance"

    def __init__(self, settings: PreferencesSettings) -> None:
        self._path = settings.path
        self._defaults: dict[str, Any] = {
            self._UNIT_KEY: settings.distance_unit,
            self._REMINDER_ON_KEY: settings.service_reminder_on,
            self._REMINDER_DISTANCE_KEY: settings.service_reminder_distance,
        }
        self._values: dict[str, Any] = self._read()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def _read(self) -> dict[str, Any]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            obj = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable preferences file %s", self._path)
            return {}
        return dict(obj) if isinstance(obj, dict) else {}

    def _write(self) -> None:
        if self._path is None:
            return
        serialized = json.dumps(self._values, ensure_ascii=False, indent=2)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=self._path.parent) as tmp:
            tmp.write(serialized)
            tmp_path = Path(tmp.name)
        tmp_path.replace(self._path)

    def _get(self, key: str) -> Any:
        return self._values.get(key, self._defaults[key])

    def _set(self, key: str, value: Any) -> None:
        self._values[key] = value
        self._write()

    @property
    def distance_unit(self) -> DistanceUnit:
        raw = self._get(self._UNIT_KEY)
        try:
            return DistanceUnit(str(raw).upper())
        except ValueError:
            # Same fallback as an unknown raw value in user defaults.
            return DistanceUnit(self._defaults[self._UNIT_KEY])

    @distance_unit.setter
    def distance_unit(self, unit: DistanceUnit) -> None:
        self._set(self._UNIT_KEY, DistanceUnit(unit).value)

    @property
    def is_service_reminder_on(self) -> bool:
        return bool(self._get(self._REMINDER_ON_KEY))

    @is_service_reminder_on.setter
    def is_service_reminder_on(self, value: bool) -> None:
        self._set(self._REMINDER_ON_KEY, bool(value))

    @property
    def service_reminder_distance(self) -> int:
        return int(self._get(self._REMINDER_DISTANCE_KEY))

    @service_reminder_distance.setter
    def service_reminder_distance(self, value: int) -> None:
        if int(value) < 0:
            raise ValueError(f"service_reminder_distance must be >= 0, got {value}")
        self._set(self._REMINDER_DISTANCE_KEY, int(value))

    def to_dict(self) -> dict[str, object]:
        return {
            "distance_unit": self.distance_unit.value,
            "is_service_reminder_on": self.is_service_reminder_on,
            "service_reminder_distance": self.service_reminder_distance,
        }
