"""
FastAPI Application: Entry Point

Document ingestion and search API.

Architecture:
  - All routes are versioned under /api/v1/
  - Authentication is a Bearer JWT; `sub` is the owner id
  - Services come from a ServiceContainer built in the lifespan and
    attached to app.state (tests inject their own)
  - Extraction never runs on the request path: uploads return 202 and the
    dispatcher (in-process asyncio tasks or Celery) does the work
  - Structured JSON error responses on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. Request ID injection: X-Request-ID header on every response
  2. Request logging: one line per request with latency
  3. CORS
  4. Gzip: compress responses > 1 KB
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from docdump.api.v1.documents import router as documents_router
from docdump.api.v1.stats import router as stats_router
from docdump.container import ServiceContainer, build_container
from docdump.core.config import Settings, get_settings
from docdump.core.errors import (
    DocumentNotFoundError,
    DocumentPipelineError,
    FileTooLargeError,
    PersistenceError,
    TransientIOError,
    ValidationError,
)
from docdump.schemas.documents import ErrorDetail, ErrorResponse
from docdump.workers.dispatch import BackgroundDispatcher

logger = logging.getLogger(__name__)

# Most specific class first
_ERROR_STATUS: tuple[tuple[type[DocumentPipelineError], int], ...] = (
    (FileTooLargeError,     status.HTTP_413_REQUEST_ENTITY_TOO_LARGE),
    (ValidationError,       status.HTTP_400_BAD_REQUEST),
    (DocumentNotFoundError, status.HTTP_404_NOT_FOUND),
    (TransientIOError,      status.HTTP_502_BAD_GATEWAY),
    (PersistenceError,      status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _status_for(exc: DocumentPipelineError) -> int:
    for cls, code in _ERROR_STATUS:
        if isinstance(exc, cls):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# ---------------------------------------------------------------------------
# Application lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

async def _periodic_sweep(container: ServiceContainer, interval_seconds: int) -> None:
    """Supervisor sweeps for the in-process backend, which has no Celery beat."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            swept = await container.supervisor.sweep()
        except PersistenceError as exc:
            logger.error("Periodic sweep failed | error=%s", exc)
            continue
        if any(swept.values()):
            logger.info("Periodic sweep | %s", " ".join(f"{k}={v}" for k, v in swept.items()))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: build the container if none was injected, check the database,
    optionally create tables. For the in-process backend, recover every
    document a previous process left pending or processing, then sweep
    periodically.
    Shutdown: stop the sweeper, drain in-flight extraction, dispose the
    connection pool.
    """
    settings: Settings = app.state.settings
    container: ServiceContainer | None = getattr(app.state, "container", None)
    if container is None:
        container = build_container(settings)
        app.state.container = container

    logger.info(
        "Starting docdump | env=%s storage=%s dispatch=%s",
        settings.app_env, settings.storage_backend, settings.dispatch_backend,
    )

    db_health = await container.database.check_health()
    if db_health["status"] != "ok":
        logger.critical("Database health check failed at startup: %s", db_health)
        raise RuntimeError(f"DB unavailable: {db_health}")

    if settings.db_auto_create:
        await container.database.create_all()

    sweeper: asyncio.Task | None = None
    if isinstance(container.dispatcher, BackgroundDispatcher):
        recovered = await container.supervisor.recover_interrupted()
        logger.info("Startup recovery | %s", " ".join(f"{k}={v}" for k, v in recovered.items()))
        if settings.supervisor_interval_seconds > 0:
            sweeper = asyncio.create_task(
                _periodic_sweep(container, settings.supervisor_interval_seconds),
                name="supervisor-sweep",
            )

    yield

    logger.info("Shutting down docdump")
    if sweeper is not None:
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
    await container.close()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    container: ServiceContainer | None = None,
) -> FastAPI:
    settings = settings or (container.settings if container else get_settings())

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    app = FastAPI(
        title="docdump",
        description="Scanned document ingestion, text extraction and full-text search API.",
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if container is not None:
        app.state.container = container

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order: last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if not settings.is_production else [],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "HTTP %s %s %d %.1fms | request_id=%s",
            request.method, request.url.path, response.status_code, duration_ms, request_id,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers: uniform structured error responses
    # ----------------------------------------------------------------

    def _request_id(request: Request) -> str | None:
        return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")

    @app.exception_handler(DocumentPipelineError)
    async def pipeline_exception_handler(request: Request, exc: DocumentPipelineError):
        code = _status_for(exc)
        if code >= 500:
            logger.error("Request failed | path=%s code=%s detail=%s", request.url.path, exc.code, exc.detail)
        body = ErrorResponse(
            error_code=exc.code,
            message=exc.detail,
            details=[
                ErrorDetail(
                    field="files" if getattr(exc, "file_name", None) else None,
                    message=exc.detail,
                    code=exc.code,
                )
            ],
            request_id=_request_id(request),
        )
        return JSONResponse(status_code=code, content=body.model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert FastAPI validation errors to the ErrorResponse envelope."""
        details = [
            ErrorDetail(
                field=" → ".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        body = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed.",
            details=details,
            request_id=_request_id(request),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=body.model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions; never expose stack traces."""
        request_id = _request_id(request) or str(uuid.uuid4())
        logger.exception("Unhandled exception | path=%s request_id=%s", request.url.path, request_id)
        body = ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(documents_router, prefix="/api/v1")
    app.include_router(stats_router,     prefix="/api/v1")

    # ----------------------------------------------------------------
    # Health & readiness endpoints (no auth; used by the load balancer)
    # ----------------------------------------------------------------

    @app.get("/health", tags=["Operations"], summary="Liveness probe")
    async def health() -> dict:
        return {"status": "ok", "service": "docdump-api"}

    @app.get("/ready", tags=["Operations"], summary="Readiness probe")
    async def readiness(request: Request) -> JSONResponse:
        db_status = await request.app.state.container.database.check_health()
        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "database": db_status},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "database": db_status},
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "docdump.main:app",
        host="0.0.0.0",
        port=8000,
        reload=_settings.app_env == "development",
        log_level="debug" if _settings.debug else "info",
    )
