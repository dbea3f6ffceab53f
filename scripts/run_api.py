# Use postponed evaluation of annotations so type hints don't require importing types at runtime.
from __future__ import annotations

# Allow running scripts without requiring an editable install (`pip install -e .`).
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_PATH))

import os

# `uvicorn` serves the FastAPI app as an ASGI server during local development.
import uvicorn

from bikeledger.api.app import create_app
from bikeledger.config.loader import load_config


def main() -> None:
    # `config/default.json` (or BIKELEDGER_CONFIG_PATH) decides storage paths, demo mode and logging.
    config = load_config()
    app = create_app(config)

    # Environment wins over config so the same file works behind a process manager.
    host = os.getenv("BIKELEDGER_HOST", config.api.host)
    port = int(os.getenv("BIKELEDGER_PORT", str(config.api.port)))
    timeout_graceful_shutdown = int(os.getenv("BIKELEDGER_TIMEOUT_GRACEFUL_SHUTDOWN", "5"))

    uvicorn.run(
        app,
        host=host,
        port=port,
        timeout_graceful_shutdown=timeout_graceful_shutdown,
    )


if __name__ == "__main__":
    main()
