"""
================================================================================
FILE: permit_session/api/main.py
================================================================================

PURPOSE:
    FastAPI application factory. Builds the ServiceContainer at startup,
    registers the intake/health/statistics routes, the request-id middleware
    and the exception handlers, and tears everything down at shutdown.

WORKFLOW:
    1. Load .env, then Settings
    2. configure_logging(settings)
    3. Initialize ServiceContainer (store, messaging, extraction, engine)
    4. Start the periodic maintenance sweep
    5. Register routes from permit_session/api/routes.py
    6. Shutdown hook → container.shutdown()

STARTUP SEQUENCE:
    1. Load Settings - provider names from .env
    2. ServiceContainer reads settings.store_backend, messaging_provider,
       extraction_provider and imports the matching provider files
    3. Engine assembled
    4. Ready to serve requests

KEY FACTS:
    - Startup happens ONCE; settings changes require a restart
    - Error at startup = server fails to start
    - Routes are unaware of which providers are active
    - create_app(settings=..., container=...) lets tests inject a pre-built
      container (the startup hook then only initializes it)

TESTING ENVIRONMENT:
    - app = create_app(settings=test_settings, container=container)
    - with TestClient(app) as client: ...  (runs startup/shutdown)
"""

from __future__ import annotations

import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from permit_session import __version__
from permit_session.api import routes
from permit_session.config.constants import API_DESCRIPTION, API_TITLE
from permit_session.config.settings import Settings
from permit_session.container.service_container import ServiceContainer
from permit_session.core.exceptions import RecoverableException, SessionEngineException
from permit_session.utils.helpers import generate_request_id

logger = logging.getLogger(__name__)

TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_LOG_FORMAT = (
    '{"time": "%(asctime)s", "logger": "%(name)s", '
    '"level": "%(levelname)s", "message": "%(message)s"}'
)


def configure_logging(settings: Settings) -> None:
    """Root logger level and format from LOG_LEVEL / LOG_FORMAT."""
    fmt = JSON_LOG_FORMAT if settings.log_format == "json" else TEXT_LOG_FORMAT
    logging.basicConfig(level=settings.log_level, format=fmt, force=True)


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Pre-built settings (default: loaded from .env at startup)
        container: Pre-built, uninitialized container (tests)

    Returns:
        FastAPI: Configured application instance ready for startup.
    """
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=__version__,
    )
    app.state.settings = settings
    app.state.container = container

    # =========================================================================
    # STARTUP HOOK
    # =========================================================================
    @app.on_event("startup")
    async def startup_event():
        try:
            logger.info("=" * 80)
            logger.info("APPLICATION STARTUP")
            logger.info("=" * 80)

            if app.state.settings is None:
                load_dotenv()
                app.state.settings = Settings()
            active_settings: Settings = app.state.settings
            configure_logging(active_settings)
            logger.info(
                "Settings loaded: "
                f"environment={active_settings.environment} | "
                f"store={active_settings.store_backend} | "
                f"messaging={active_settings.messaging_provider} | "
                f"extraction={active_settings.extraction_provider}"
            )

            if app.state.container is None:
                app.state.container = ServiceContainer(active_settings)
            await app.state.container.initialize()
            logger.info("✓ ServiceContainer initialized")

            app.state.container.get_engine().start_maintenance()

            logger.info("=" * 80)
            logger.info("APPLICATION STARTUP COMPLETE")
            logger.info("=" * 80)

        except Exception as e:
            logger.error(f"STARTUP FAILED: {str(e)}", exc_info=True)
            raise RuntimeError(f"Failed to initialize engine: {str(e)}") from e

    # =========================================================================
    # SHUTDOWN HOOK
    # =========================================================================
    @app.on_event("shutdown")
    async def shutdown_event():
        try:
            logger.info("APPLICATION SHUTDOWN")
            if app.state.container is not None:
                await app.state.container.shutdown()
            logger.info("APPLICATION SHUTDOWN COMPLETE")
        except Exception as e:
            logger.error(f"SHUTDOWN ERROR: {str(e)}", exc_info=True)

    # =========================================================================
    # EXCEPTION HANDLERS
    # =========================================================================
    @app.exception_handler(SessionEngineException)
    async def engine_exception_handler(request: Request, exc: SessionEngineException):
        """Engine errors that escaped the Recovery Policy."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            f"Engine error [request_id={request_id}]: {exc.message}",
            extra={"error_code": exc.error_code},
        )
        status_code = 503 if isinstance(exc, RecoverableException) else 500
        return JSONResponse(
            status_code=status_code,
            content={
                "error": "Session Engine Error",
                "error_code": exc.error_code,
                "message": exc.message,
                "request_id": request_id,
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            f"Unexpected error [request_id={request_id}]: {str(exc)}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "message": "An unexpected error occurred",
                "request_id": request_id,
            },
        )

    # =========================================================================
    # MIDDLEWARE
    # =========================================================================
    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next):
        """Add unique request ID for correlation tracking."""
        request.state.request_id = request.headers.get("X-Request-ID") or generate_request_id()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        return response

    app.include_router(routes.router)

    return app


def main() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    load_dotenv()
    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.server_host, port=settings.server_port)
