"""
main.py
-------
FastAPI application factory and entry point.

Application lifecycle:
  1. App is created by create_application(); the tenant router, the
     conversion pipeline and the realtime gateway are built and stored
     on app.state.
  2. lifespan context manager runs on startup / shutdown.
  3. The realtime router (WS /ws) is registered.
  4. Global exception handlers normalise unexpected HTTP errors.

Run with:
    uvicorn main:app --reload              # development
    uvicorn main:app                       # production (single process:
                                           # class databases are cached
                                           # per process)
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gradesync.api.routes import realtime
from gradesync.core.config import APP_VERSION, Settings, settings as default_settings
from gradesync.core.logging import configure_logging, get_logger
from gradesync.db.router import TenantDatabaseRouter
from gradesync.services.conversion_service import ConversionPipeline, ConvertApiClient

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Startup / shutdown lifecycle hook.

    Startup:
      - Configure structured logging

    Shutdown:
      - Dispose every cached class database engine
      - Close the conversion HTTP client
    """
    settings: Settings = app.state.settings
    configure_logging(settings)
    logger.info(
        "Starting up",
        app=settings.APP_NAME,
        env=settings.APP_ENV,
        debug=settings.DEBUG,
        app_version=APP_VERSION,
        database_configured=bool(settings.DATABASE_URL),
    )
    yield
    logger.info("Shutting down, disposing class databases")
    await app.state.databases.dispose()
    await app.state.conversion_client.aclose()


def create_application(
    settings: Optional[Settings] = None,
    conversion_client: Optional[ConvertApiClient] = None,
) -> FastAPI:
    settings = settings or default_settings

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Realtime grade sheet synchronisation with one isolated "
            "database per class and on-demand PDF rendering."
        ),
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.databases = TenantDatabaseRouter(
        settings.DATABASE_URL,
        prefix=settings.TENANT_DB_PREFIX,
        echo=settings.DEBUG,
    )
    app.state.conversion_client = conversion_client or ConvertApiClient(
        settings.CONVERTAPI_SECRET,
        base_url=settings.CONVERTAPI_BASE_URL,
        timeout=settings.CONVERSION_TIMEOUT_SECONDS,
    )
    app.state.gateway = realtime.RealtimeGateway(
        app.state.databases,
        ConversionPipeline(app.state.conversion_client, Path(settings.SCRATCH_DIR)),
        max_message_bytes=settings.MAX_MESSAGE_BYTES,
    )

    # ── CORS ─────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(realtime.router)

    # ── Global Exception Handlers ─────────────────────────────────────────────

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    # ── Health Check ──────────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], summary="Service health check")
    async def health() -> dict:
        return {
            "status": "ok",
            "app": settings.APP_NAME,
            "env": settings.APP_ENV,
            "appVersion": APP_VERSION,
        }

    return app


app = create_application()
