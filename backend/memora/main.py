"""
Memora Backend — FastAPI Application Factory
==============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() registers middleware, exception handlers and routers;
       the lifespan sets up logging and storage and disposes the engine.
Who:   uvicorn (uvicorn memora.main:app) and the test suite (create_app()).

Application Architecture:
    ┌──────────────────────────────────────────────────────────────┐
    │                         FastAPI App                          │
    │  Middleware:  CORS → GZip → RequestID → AccessLog            │
    │               → RateLimit(/api/public)                      │
    │  Routers:     /health  /api/users  /api/subscriptions        │
    │               /api/webhooks  /api/proofing/.../requests      │
    │               /api/public  /api/{kind}                       │
    │  Handlers:    MemoraError → envelope(status from exception)  │
    │               422 → VALIDATION_ERROR   Exception → 500       │
    └──────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging → config check (logged, not fatal) → storage dirs
              → maintenance loop (auto-delete, stale archives, cache sweep)
              every maintenance_interval_seconds
    Shutdown: cancel the maintenance loop, dispose the database engine
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from memora import __version__
from memora.config import settings
from memora.database import async_session_factory, dispose_engine
from memora.exceptions import (
    CircuitBreakerOpenError,
    DatabaseError,
    ErrorCode,
    MemoraError,
    RateLimitExceededError,
)
from memora.middleware.logging import RequestLoggingMiddleware
from memora.middleware.rate_limit import RateLimitMiddleware
from memora.middleware.request_id import RequestIDMiddleware, request_id_var
from memora.routes import (
    downloads,
    health,
    phases,
    proofing_requests,
    public,
    subscriptions,
    users,
    webhooks,
)
from memora.services.archive_service import archive_service
from memora.services.cache_service import cache
from memora.services.retention_service import retention_service

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """Root logger to stdout at settings.log_level; chatty libraries to WARNING."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx", "passlib", "stripe"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Background Maintenance
# ══════════════════════════════════════════════════════════════════════════

async def run_maintenance() -> None:
    """One pass of auto-delete, stale archive cleanup and cache sweeping."""
    try:
        async with async_session_factory() as session:
            removed_media = await retention_service.purge_expired_phases(session)
            await session.commit()
        if removed_media:
            logger.info("Auto-deleted %d unselected media item(s)", removed_media)
    except Exception as e:
        logger.error("Auto-delete sweep failed: %s", str(e), exc_info=True)

    await archive_service.purge_stale_archives()

    removed = cache.sweep()
    if removed:
        logger.info("Dropped %d expired cache entries", removed)


async def maintenance_loop(interval: float) -> None:
    while True:
        await run_maintenance()
        await asyncio.sleep(interval)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("Memora Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Webhooks will be rejected until this is fixed; the rest of the API works
        logger.error("Configuration error: %s", str(e))

    storage = Path(settings.storage_root)
    (storage / "archives").mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory: %s", storage.resolve())

    maintenance = asyncio.create_task(maintenance_loop(settings.maintenance_interval_seconds))

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Memora Backend shutting down...")
    maintenance.cancel()
    with suppress(asyncio.CancelledError):
        await maintenance
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _envelope(
    status_code: int,
    error: str,
    code: str,
    message: str,
    details: dict = None,
    headers: dict = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "code": code,
            "message": message,
            "details": details or {},
            "request_id": request_id_var.get(""),
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Handler hierarchy (most specific wins):
        RateLimitExceededError  → 429 + Retry-After
        CircuitBreakerOpenError → 503 + Retry-After
        DatabaseError           → 500, generic message, context logged only
        MemoraError             → exc.status_code, exc.category, exc.code
        RequestValidationError  → 422 VALIDATION_ERROR
        Exception               → 500 INTERNAL_ERROR, stack trace logged only

    5xx responses never carry exception context in `details`.
    """

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return _envelope(
            exc.status_code,
            exc.category,
            exc.code.value,
            exc.message,
            exc.context,
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return _envelope(
            exc.status_code,
            exc.category,
            exc.code.value,
            exc.message,
            {"recovery_time": exc.recovery_time},
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context
        )
        return _envelope(
            exc.status_code,
            exc.category,
            exc.code.value,
            "An internal error occurred. Please try again later.",
        )

    @app.exception_handler(MemoraError)
    async def handle_memora_error(request: Request, exc: MemoraError):
        rid = request_id_var.get("")
        if exc.status_code >= 500:
            logger.error("[%s] %s: %s | Context: %s", rid, exc.code.value, exc.message, exc.context)
            details = {}
            if exc.status_code in (502, 503) and "provider" in exc.context:
                details = {"provider": exc.context["provider"]}
            return _envelope(exc.status_code, exc.category, exc.code.value, exc.message, details)

        logger.info("[%s] %s: %s", rid, exc.code.value, exc.message)
        return _envelope(exc.status_code, exc.category, exc.code.value, exc.message, exc.context)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in exc.errors()
        ]
        return _envelope(
            422,
            "validation_error",
            ErrorCode.VALIDATION_ERROR.value,
            "Request validation failed",
            {"errors": errors},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return _envelope(
            500,
            "internal_server_error",
            ErrorCode.INTERNAL_ERROR.value,
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Memora API",
        description=(
            "Client delivery workflow for photographers: selection, proofing and raw-file "
            "phases shared with guests, plus subscription billing reconciled from payment "
            "provider webhooks."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware executes in reverse order of addition: CORS runs first, so
    # 429s carry CORS headers, a request id and an access log line
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(users.router)
    app.include_router(subscriptions.router)
    app.include_router(webhooks.router)
    app.include_router(proofing_requests.router)
    app.include_router(downloads.router)
    app.include_router(public.router)
    # Last: /api/{kind} would otherwise shadow the fixed /api/... prefixes
    app.include_router(phases.router)

    return app


app = create_app()
