"""ssgkb FastAPI application entrypoint."""

import sys
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from ssgkb.api.routes import crossrefs, datastreams, guides, jobs, manifests, tables
from ssgkb.config import settings
from ssgkb.db.session import init_db
from ssgkb.db.store import SSGStore
from ssgkb.errors import InvalidFormatError, JobStateError, NotFoundError, SSGError
from ssgkb.worker.fetcher import SourceFetcher
from ssgkb.worker.handlers import build_bus
from ssgkb.worker.importer import SSGImporter


def configure_logging() -> None:
    """Configure loguru for production or development."""
    logger.remove()

    if settings.debug:
        # Development: human-readable format
        logger.add(
            sys.stdout,
            level="DEBUG",
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>",
            colorize=True,
        )
    else:
        # Production: JSON lines, run_id/request_id travel in "extra"
        logger.add(
            sys.stdout,
            level=settings.log_level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}",
            serialize=True,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the schema and wire store, bus and importer on startup."""
    configure_logging()
    logger.info("ssgkb API starting up")
    await init_db()

    store = SSGStore()
    bus = build_bus(store, SourceFetcher())
    app.state.store = store
    app.state.bus = bus
    app.state.importer = SSGImporter(bus)
    yield

    run = await app.state.importer.get_status()
    if run is not None and not run.state.is_terminal:
        logger.info("Stopping import run {} on shutdown", run.run_id)
        await app.state.importer.stop()
        await app.state.importer.wait()
    logger.info("ssgkb API shutting down")


app = FastAPI(
    title="ssgkb",
    version="0.1.0",
    description="Cross-linked knowledge base of SCAP Security Guide content",
    lifespan=lifespan,
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add request ID to each request for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
    request.state.request_id = request_id

    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def _error_status(exc: SSGError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, JobStateError):
        return 409
    if isinstance(exc, InvalidFormatError):
        return 422
    return 500


@app.exception_handler(SSGError)
async def ssg_error_handler(request: Request, exc: SSGError) -> JSONResponse:
    """Map domain errors onto status codes with the structured error body."""
    request_id = getattr(request.state, "request_id", "unknown")
    status_code = _error_status(exc)
    if status_code >= 500:
        logger.error("Request failed: {} (request_id={})", exc.message, request_id)
    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "detail": exc.message,
            "request_id": request_id,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with structured error response."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error("Unhandled exception: {} (request_id={})", exc, request_id)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
            "request_id": request_id,
        },
    )


# Register route modules
app.include_router(guides.router, prefix="/api/v1")
app.include_router(guides.rules_router, prefix="/api/v1")
app.include_router(tables.router, prefix="/api/v1")
app.include_router(manifests.router, prefix="/api/v1")
app.include_router(manifests.profiles_router, prefix="/api/v1")
app.include_router(datastreams.router, prefix="/api/v1")
app.include_router(datastreams.benchmarks_router, prefix="/api/v1")
app.include_router(crossrefs.router, prefix="/api/v1")
app.include_router(jobs.router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check endpoint with dependency status.

    Status is "ok" if all checks pass, "degraded" otherwise.
    """
    checks = {
        "db": await check_db_connection(),
        "redis": await check_redis_connection(),
    }

    all_ok = all(c["ok"] for c in checks.values())
    return {
        "status": "ok" if all_ok else "degraded",
        "checks": checks,
    }


async def check_db_connection() -> dict[str, Any]:
    """Check database connectivity."""
    try:
        from sqlalchemy import text

        from ssgkb.db.session import async_session

        async with async_session() as session:
            await session.execute(text("SELECT 1"))
            return {"ok": True, "message": "Connected"}
    except Exception as e:
        logger.warning("Database health check failed: {}", e)
        return {"ok": False, "message": str(e)}


async def check_redis_connection() -> dict[str, Any]:
    """Check Redis (task queue broker) connectivity (if configured)."""
    if not settings.redis_url:
        return {"ok": True, "message": "Not configured (optional)"}

    try:
        import redis.asyncio as redis

        client = redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.aclose()
        return {"ok": True, "message": "Connected"}
    except Exception as e:
        logger.warning("Redis health check failed: {}", e)
        return {"ok": False, "message": str(e)}
