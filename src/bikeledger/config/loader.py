from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from bikeledger.config.models import (
    ApiSettings,
    AppConfig,
    AppSettings,
    ChartSettings,
    LoggingSettings,
    PreferencesSettings,
    StorageSettings,
)


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def load_dotenv_if_available(path: str = ".env") -> None:
    try:
        from dotenv import load_dotenv  # type: ignore
    except ModuleNotFoundError:
        return
    load_dotenv(path)


def _as_path(value: str, *, base_dir: Path) -> Path:
    candidate = Path(value)
    return candidate if candidate.is_absolute() else (base_dir / candidate)


def _optional_path(value: Any, *, base_dir: Path) -> Optional[Path]:
    if not value:
        return None
    return _as_path(str(value), base_dir=base_dir)


def _env_bool(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    # Unrecognised values leave the file setting in place.
    return None


def load_config(path: Optional[str | Path] = None, *, base_dir: Optional[Path] = None) -> AppConfig:
    """
    Load typed application config from JSON.

    - Path resolution is relative to `base_dir` (defaults to current working directory).
    - `.env` is loaded when python-dotenv is installed (dev convenience).
    - `BIKELEDGER_*` environment variables override selected file values.
    """

    load_dotenv_if_available()

    config_path = Path(
        path
        or os.getenv("BIKELEDGER_CONFIG_PATH", "config/default.json")
    ).resolve()
    base_dir = (base_dir or Path.cwd()).resolve()

    raw = json.loads(config_path.read_text(encoding="utf-8"))

    app_raw: Mapping[str, Any] = raw.get("app", {})
    demo_mode = bool(app_raw.get("demo_mode", False))
    env_demo = _env_bool("BIKELEDGER_DEMO_MODE")
    if env_demo is not None:
        demo_mode = env_demo
    app = AppSettings(
        name=str(app_raw.get("name", "BikeLedger")),
        demo_mode=demo_mode,
    )

    storage_raw: Mapping[str, Any] = raw.get("storage", {})
    db_value = os.getenv("BIKELEDGER_DB_PATH") or storage_raw.get("db_path")
    storage = StorageSettings(db_path=_optional_path(db_value, base_dir=base_dir))

    prefs_raw: Mapping[str, Any] = raw.get("preferences", {})
    preferences = PreferencesSettings(
        path=_optional_path(prefs_raw.get("path"), base_dir=base_dir),
        distance_unit=str(prefs_raw.get("distance_unit", "KM")).upper(),  # type: ignore[arg-type]
        service_reminder_on=bool(prefs_raw.get("service_reminder_on", True)),
        service_reminder_distance=int(prefs_raw.get("service_reminder_distance", 100)),
    )
    if preferences.distance_unit not in ("KM", "MI"):
        raise ValueError(f"Unsupported preferences.distance_unit: {preferences.distance_unit}")
    if preferences.service_reminder_distance < 0:
        raise ValueError("preferences.service_reminder_distance must be >= 0")

    chart_raw: Mapping[str, Any] = raw.get("chart", {})
    chart = ChartSettings(threshold_km=float(chart_raw.get("threshold_km", 20000)))
    if chart.threshold_km <= 0:
        raise ValueError("chart.threshold_km must be > 0")

    logging_raw: Mapping[str, Any] = raw.get("logging", {})
    logging_settings = LoggingSettings(
        level=str(os.getenv("BIKELEDGER_LOG_LEVEL") or logging_raw.get("level", "INFO")),
        format=str(logging_raw.get("format", "%(asctime)s %(levelname)s %(name)s - %(message)s")),
        file=_optional_path(logging_raw.get("file"), base_dir=base_dir),
    )

    api_raw: Mapping[str, Any] = raw.get("api", {})
    api = ApiSettings(
        host=str(api_raw.get("host", "127.0.0.1")),
        port=int(api_raw.get("port", 8000)),
        sse_keepalive_s=float(api_raw.get("sse_keepalive_s", 15.0)),
    )

    return AppConfig(
        app=app,
        storage=storage,
        preferences=preferences,
        chart=chart,
        logging=logging_settings,
        api=api,
    )
