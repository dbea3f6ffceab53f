from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional


DistanceUnitName = Literal["KM", "MI"]


@dataclass(frozen=True)
class AppSettings:
    name: str = "BikeLedger"
    demo_mode: bool = False


@dataclass(frozen=True)
class StorageSettings:
    # `None` keeps the store in memory (tests, previews).
    db_path: Optional[Path] = None


@dataclass(frozen=True)
class PreferencesSettings:
    path: Optional[Path] = None
    distance_unit: DistanceUnitName = "KM"
    service_reminder_on: bool = True
    service_reminder_distance: int = 100


@dataclass(frozen=True)
class ChartSettings:
    threshold_km: float = 20000.0


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s - %(message)s"
    file: Optional[Path] = None


@dataclass(frozen=True)
class ApiSettings:
    host: str = "127.0.0.1"
    port: int = 8000
    sse_keepalive_s: float = 15.0


@dataclass(frozen=True)
class AppConfig:
    app: AppSettings
    storage: StorageSettings
    preferences: PreferencesSettings
    chart: ChartSettings
    logging: LoggingSettings
    api: ApiSettings
