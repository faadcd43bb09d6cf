"""
FastAPI application entry point.

Lifespan:
  startup  → build ProctorService (SQL attempt store, RabbitMQ event fan-out)
             → start the timeout sweeper
  shutdown → stop the sweeper
"""
from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from proctor.config import get_settings
from proctor.core.errors import ProctorError
from proctor.sessions.service import ProctorService
from proctor.sessions.sweeper import TimeoutSweeper

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


def _build_default_service(app: FastAPI) -> ProctorService:
    from proctor.db.database import check_db_connection
    from proctor.db.repository import SqlAttemptRepository

    service = ProctorService(SqlAttemptRepository(settings), settings=settings)
    app.state.dependency_checks = {"database": check_db_connection}

    if settings.publish_events:
        from proctor.events.bus import ALL_EVENTS
        from proctor.events.publisher import RabbitEventPublisher
        service.bus.subscribe(ALL_EVENTS, RabbitEventPublisher())
        logger.info("Forwarding proctor events to exchange %s", settings.events_exchange)

    return service


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ── Startup ────────────────────────────────────────────────────────────
    logger.info("Proctor Service starting up …")

    if getattr(app.state, "proctor_service", None) is None:
        app.state.proctor_service = _build_default_service(app)

    sweeper = TimeoutSweeper(app.state.proctor_service, settings.sweep_interval_seconds)
    sweeper.start()
    app.state.sweeper = sweeper

    yield

    # ── Shutdown ───────────────────────────────────────────────────────────
    logger.info("Proctor Service shutting down …")
    await app.state.sweeper.stop()


async def proctor_error_handler(request: Request, exc: ProctorError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


def create_app(service: ProctorService | None = None) -> FastAPI:
    app = FastAPI(
        title       = "Proctor Service",
        description = "Exam proctoring sessions, violation escalation and cheating heuristics",
        version     = "1.0.0",
        lifespan    = lifespan,
    )
    app.state.proctor_service = service
    app.state.dependency_checks = {}

    app.add_exception_handler(ProctorError, proctor_error_handler)

    from proctor.api.routes import router
    app.include_router(router)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "proctor.main:app",
        host   = "0.0.0.0",
        port   = settings.port,
        reload = False,
        workers= 1,       # sessions live in process memory
    )
