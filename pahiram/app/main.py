"""
FastAPI Application Factory
===========================

Entry point of the Pahiram authentication service: users log in with their
APCIS credentials and receive a Pahiram session token for the rest of the
borrowing API.

Architecture:
    Clients → Pahiram auth (this service) → APCIS identity API
                      ↓
                local database (users, courses, tokens)

Routers:
    - POST   /login       : APCIS login federation
    - DELETE /logout      : Revoke the current session token
    - DELETE /logout-all  : Revoke every session token of the user
    - GET    /health      : Health check endpoint

Running the Service:
    Development:
        uvicorn app.main:app --reload --app-dir pahiram --port 8000

    Production:
        uvicorn app.main:app --app-dir pahiram --host 0.0.0.0 --port 8000 --workers 4
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.auth import auth_router
from app.auth.apcis_client import ApcisClient
from app.config import Settings, get_settings, validate_configuration
from app.db.session import create_engine, create_session_factory, init_db


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)],
    )


# Application state singletons
class AppState:
    """
    Global application state container.

    Holds shared resources: the database engine and session factory,
    and the one HTTP client used for every APCIS call.
    """

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.logger: Optional[logging.Logger] = None
        self.engine: Any = None
        self.session_factory: Any = None
        self.http_client: Optional[httpx.AsyncClient] = None
        self.apcis_client: Optional[ApcisClient] = None


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging and validate configuration
        - Create the database engine, tables and seed roles
        - Create the shared APCIS HTTP client

    Shutdown tasks:
        - Close the HTTP client
        - Dispose the database engine
    """
    app_state: AppState = app.state.app_state
    settings = app_state.settings

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("app.main")
    app_state.logger = logger

    status = validate_configuration(settings)
    for warning in status["warnings"]:
        logger.warning(f"Configuration warning: {warning}")
    for error in status["errors"]:
        logger.error(f"Configuration error: {error}")

    if app_state.session_factory is None:
        app_state.engine = create_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
        app_state.session_factory = create_session_factory(app_state.engine)
        await init_db(app_state.engine, app_state.session_factory)
        logger.info("Database ready")

    if app_state.apcis_client is None:
        app_state.http_client = httpx.AsyncClient()
        app_state.apcis_client = ApcisClient(
            app_state.http_client,
            login_url=settings.APCIS_LOGIN_URL,
            timeout=settings.APCIS_TIMEOUT_SECONDS,
        )

    logger.info(
        "Pahiram auth service started",
        extra={
            "service": settings.APP_NAME,
            "version": __version__,
            "environment": settings.APP_ENV,
            "apcis_login_url": settings.APCIS_LOGIN_URL,
        },
    )

    yield

    logger.info("Shutting down Pahiram auth service")

    if app_state.http_client is not None:
        await app_state.http_client.aclose()
        app_state.http_client = None

    if app_state.engine is not None:
        await app_state.engine.dispose()

    logger.info("Pahiram auth service shutdown complete")


# Create FastAPI application
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - CORS middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Settings to use instead of the environment (tests)

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Pahiram Auth Service",
        description="APCIS login federation and session tokens for the Pahiram borrowing system",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.APP_ENV == "development" else None,
        redoc_url=None,
    )

    app_state = AppState()
    app_state.settings = settings
    app.state.app_state = app_state
    app.dependency_overrides[get_settings] = lambda: settings

    origins = settings.allowed_origins_list
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(auth_router)

    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        """Return service status and basic metadata."""
        return {
            "status": "ok",
            "service": settings.APP_NAME,
            "version": __version__,
        }

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns the standard error envelope; exception
        details never reach the client.
        """
        logger = logging.getLogger("app.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )

        return JSONResponse(
            status_code=500,
            content={
                "status": False,
                "error": "Unexpected error",
                "method": request.method,
            },
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "app.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        reload=settings.APP_ENV == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
