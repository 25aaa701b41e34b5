"""
Main FastAPI application file for nutdash.
"""
from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from nutdash.api import ups
from nutdash.config import settings
from nutdash.database.engine import ensure_schema, init_db
from nutdash.database.store import RecordStore
from nutdash.nut.events import StatusTracker
from nutdash.nut.manager import NUTConnectionManager
from nutdash.nut.poller import MultiServerPoller
from nutdash.utils.logging import setup_logging

logger = logging.getLogger("nutdash.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles application startup and shutdown events.
    """
    # On startup
    setup_logging()
    logger.info("Initializing nutdash services...")

    manager = NUTConnectionManager()
    app.state.manager = manager
    app.state.poller = MultiServerPoller(manager)
    app.state.tracker = StatusTracker()

    if settings.DB_PATH:
        init_db(settings.DB_PATH)
        ensure_schema()
        app.state.store = RecordStore()
    else:
        app.state.store = None
        logger.info("No database configured; using %d server(s) from NUTDASH_SERVERS", len(settings.SERVERS))

    logger.info(
        "App settings: connect_timeout=%s command_timeout=%s retry_attempts=%s",
        settings.CONNECT_TIMEOUT,
        settings.COMMAND_TIMEOUT,
        settings.FETCH_RETRY_ATTEMPTS,
    )
    yield
    # On shutdown
    logger.info("Shutting down nutdash services...")
    await manager.close_all()


app = FastAPI(
    title="nutdash API",
    description="nutdash - UPS dashboard backed by Network UPS Tools (NUT) servers",
    version="0.1.0",
    lifespan=lifespan,
)

if settings.ALLOWED_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Request logging middleware (complements Uvicorn access logs)
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.monotonic()
    try:
        response = await call_next(request)
    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.exception("%s %s -> 500 in %dms (error: %s)", request.method, request.url.path, duration_ms, e)
        raise
    duration_ms = int((time.monotonic() - start) * 1000)
    logger.info("%s %s -> %s in %dms", request.method, request.url.path, response.status_code, duration_ms)
    return response


app.include_router(ups.router, prefix="/api", tags=["UPS Monitoring"])


@app.get("/health")
async def health_check():
    """Liveness check."""
    return {"status": "ok"}
