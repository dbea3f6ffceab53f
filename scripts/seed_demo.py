from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_PATH))

import argparse
import asyncio
import logging

from bikeledger.config.loader import load_config
from bikeledger.config.models import StorageSettings
from bikeledger.demo.seed import seed_demo_garage
from bikeledger.storage.bikes import BikeStore
from bikeledger.storage.database import Database
from bikeledger.storage.rides import RideStore
from bikeledger.utils.logging import configure_logging


logger = logging.getLogger(__name__)


async def _seed(db_path: Path, *, replace: bool) -> int:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    if replace and db_path.exists():
        db_path.unlink()
    database = Database(StorageSettings(db_path=db_path))
    try:
        bikes = BikeStore(database)
        rides = RideStore(database)
        bikes.start()
        rides.start()
        return len(await seed_demo_garage(bikes, rides))
    finally:
        database.close()


def main() -> None:
    p = argparse.ArgumentParser(description="Fill a bike store with the sample garage.")
    p.add_argument("--config", default=None, help="Config JSON (defaults to config/default.json)")
    p.add_argument("--db-path", default=None, help="Override storage.db_path")
    p.add_argument("--replace", action="store_true", help="Delete the existing store first")
    args = p.parse_args()

    config = load_config(args.config)
    configure_logging(config.logging)

    db_path = Path(args.db_path) if args.db_path else config.storage.db_path
    if db_path is None:
        raise SystemExit("No storage.db_path configured; pass --db-path")

    count = asyncio.run(_seed(db_path, replace=args.replace))
    logger.info("Seeded %s bikes into %s", count, db_path)


if __name__ == "__main__":
    main()
