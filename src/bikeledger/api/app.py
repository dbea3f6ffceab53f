# Use postponed evaluation of annotations so type hints stay as strings at runtime.
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

# `FastAPI` exposes the repositories to UI clients as HTTP endpoints and SSE streams.
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bikeledger.api.routes import router
from bikeledger.api.service import GarageService
from bikeledger.config.models import AppConfig
from bikeledger.storage.errors import MappingFailedError, NotFoundError, ParentNotFoundError, WriteFailedError
from bikeledger.utils.logging import configure_logging


# Store failures map onto HTTP status codes; anything else propagates as a 500.
_ERROR_STATUS = {
    NotFoundError: 404,
    ParentNotFoundError: 422,
    WriteFailedError: 409,
    MappingFailedError: 500,
}


def create_app(config: AppConfig) -> FastAPI:
    # Configure logging before anything else logs.
    configure_logging(config.logging)

    service = GarageService(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Listeners must be registered before the first live stream is opened.
        await service.setup()
        try:
            yield
        finally:
            service.close()

    app = FastAPI(title=config.app.name, lifespan=lifespan)

    # Keep the service on `app.state` so route handlers reach it through a dependency.
    app.state.garage_service = service

    for exc_type, status_code in _ERROR_STATUS.items():
        app.add_exception_handler(exc_type, _error_handler(status_code))

    app.include_router(router)
    return app


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})

    return handler
