"""
FastAPI Application Factory
===========================

Entry point for the Entra ID login gateway.

Architecture:
    Browser → Gateway (this service) → Microsoft Entra ID
    Gateway → Frontend completion page (session JWT hand-off)

Routers:
    - /auth/entra/* : Entra login flow (enabled, login, callback, complete)
    - /health       : Health check endpoint

Environment Variables:
    - ENTRA_ENABLED: Must be 'true' to enable Entra login
    - ENTRA_CLIENT_ID / ENTRA_CLIENT_SECRET / ENTRA_TENANT_ID: Provider registration
    - ENTRA_REDIRECT_URI: Optional explicit callback URL
    - ENTRA_AUTO_PROVISION: 'true' to create local accounts on first login
    - FRONTEND_URL: Trusted frontend base URL for completion redirects
    - SESSION_JWT_SECRET: Required. Secret for session JWTs and login-attempt cookies
    - ALLOWED_ORIGINS: Comma-separated CORS origins
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn entra_login.main:create_app --factory --reload --host 0.0.0.0 --port 8080

    Production:
        uvicorn entra_login.main:create_app --factory --host 0.0.0.0 --port 8080 --workers 4
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .auth import auth_router
from .auth.discovery import DiscoveryCache
from .config import Settings, get_settings, is_enabled
from .models import HealthResponse
from .users import InMemoryUserStore, UserStore

SERVICE_NAME = "entra-login"


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


class AppState:
    """
    Application state container.

    Holds the resources shared by all requests: the provider HTTP client,
    the discovery cache and the user store.
    """
    def __init__(
        self,
        settings: Settings,
        user_store: Optional[UserStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.user_store = user_store if user_store is not None else InMemoryUserStore()
        self.http_client = http_client
        self.discovery_cache = DiscoveryCache(settings.DISCOVERY_CACHE_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging
        - Create the shared httpx client for provider calls

    Shutdown tasks:
        - Close the httpx client
        - Clear the discovery cache
    """
    app_state: AppState = app.state.app_state
    settings = app_state.settings

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger(__name__)

    owns_client = app_state.http_client is None
    if owns_client:
        app_state.http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)

    logger.info(
        "Entra login gateway started",
        extra={
            "service": SERVICE_NAME,
            "version": __version__,
            "environment": settings.ENVIRONMENT,
            "entra_enabled": is_enabled(settings),
        }
    )

    yield

    logger.info("Shutting down Entra login gateway")

    if owns_client:
        await app_state.http_client.aclose()
        app_state.http_client = None

    app_state.discovery_cache.invalidate()
    logger.info("Entra login gateway shutdown complete")


def create_app(app_state: Optional[AppState] = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - CORS middleware
        - Route handlers
        - Exception handlers

    Args:
        app_state: Shared state to attach; built from settings when omitted

    Returns:
        FastAPI: Configured application instance
    """
    settings = app_state.settings if app_state is not None else get_settings()

    app = FastAPI(
        title="Entra Login Gateway",
        description="Microsoft Entra ID federated login for the client application",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.app_state = app_state if app_state is not None else AppState(settings)

    origins = settings.allowed_origins_list
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(auth_router)

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check() -> HealthResponse:
        """
        Health check endpoint.

        Returns:
            Service health information
        """
        return HealthResponse(status="ok", service=SERVICE_NAME, version=__version__)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger = logging.getLogger(__name__)
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            }
        )

    return app


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "entra_login.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8080,
        reload=not settings.is_production,
        log_level=settings.LOG_LEVEL.lower()
    )
