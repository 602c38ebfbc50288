"""Beatflo media job service - FastAPI application."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from beatflo.config import Settings, settings as default_settings
from beatflo.api.v1 import deps
from beatflo.api.v1.router import v1_router, compat_router
from beatflo.jobs import sweeper
from beatflo.services import Services, build_services

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """No-op when the root logger already has handlers (uvicorn, pytest)."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    services_factory: Optional[Callable[[Settings], Services]] = None,
) -> FastAPI:
    """Build the application. Tests pass their own settings and factory."""
    settings = settings or default_settings
    services_factory = services_factory or build_services

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        configure_logging(settings)
        logger.info("Starting Beatflo job service on port %s", settings.port)
        logger.info("Downloads directory: %s", settings.downloads_dir)

        services = services_factory(settings)
        await services.dispatcher.start()
        deps.set_services(services)
        app.state.services = services

        sweep_interval = settings.waveform_sweep_interval_minutes * 60
        sweep_task = asyncio.create_task(sweeper.run_periodically(services, sweep_interval))
        logger.info("Job dispatcher started")

        yield

        logger.info("Shutting down Beatflo job service")
        sweep_task.cancel()
        await asyncio.gather(sweep_task, return_exceptions=True)
        await services.dispatcher.stop()
        await services.store.shutdown()
        deps.set_services(None)

    app = FastAPI(
        title="Beatflo Media Service",
        description="Download, bulk archive, crossfade mixset and waveform jobs",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_origin_regex=settings.cors_origin_regex or None,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        # Malformed request bodies are client errors; never create a job
        errors = [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")}
            for e in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid request", "errors": errors},
        )

    app.include_router(v1_router)  # All /api/v1/* endpoints
    app.include_router(compat_router)  # /api/* paths used by the web client
    return app


def run() -> None:
    """Console entry point."""
    import uvicorn

    configure_logging(default_settings)
    uvicorn.run("beatflo.main:app", host="0.0.0.0", port=default_settings.port)


app = create_app()
