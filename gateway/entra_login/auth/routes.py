"""
Authentication routes for Microsoft Entra ID login.

This module implements the OIDC authorization code flow endpoints:

- GET /auth/entra/enabled   : whether Entra login is available
- GET /auth/entra/login     : start a login attempt, returns the authorization URL
- GET /auth/entra/callback  : provider redirect target, completes the login
- GET /auth/entra/complete  : completion page that stores the session client-side

The callback never raises to the framework: every outcome is a redirect to
the configured frontend, carrying either the session or an error category.
"""

import logging

import httpx
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from ..config import Settings, is_enabled, resolve_provider_config
from ..models import EnabledResponse, LoginResponse
from ..users import UserStore
from .authorization import build_authorization_url
from .completion import parse_completion_params, render_failure_page, render_success_page
from .discovery import CachingDiscoverer, Discoverer, HttpDiscoverer, discover_provider
from .errors import (
    ConfigInvalid,
    EntraAuthError,
    ProviderDisabled,
    ProviderError,
    ProviderUnreachable,
    SessionExpired,
    VerificationError,
    public_error_category,
)
from .reconciler import IdentityReconciler
from .redirects import build_failure_redirect, build_success_redirect
from .tokens import bind_login_attempt, clear_login_attempt, issue_login_attempt, read_login_attempt
from .verifier import CallbackVerifier

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth/entra",
    tags=["authentication"],
)


# =============================================================================
# Dependencies
# =============================================================================

def get_app_settings(request: Request) -> Settings:
    """
    Dependency to get the settings the application was created with.
    """
    return request.app.state.app_state.settings


def get_user_store(request: Request) -> UserStore:
    """
    Dependency to get the user store collaborator from app state.
    """
    return request.app.state.app_state.user_store


def provider_client(request: Request) -> httpx.AsyncClient:
    """
    Shared provider HTTP client from app state.

    Raises:
        ProviderUnreachable: The client has not been started
    """
    client = getattr(request.app.state.app_state, "http_client", None)
    if client is None:
        raise ProviderUnreachable("HTTP client not initialized")
    return client


def provider_discoverer(request: Request, settings: Settings, client: httpx.AsyncClient) -> Discoverer:
    """
    Discovery capability, backed by the process-wide discovery cache.
    """
    discoverer = HttpDiscoverer(client, timeout=settings.HTTP_TIMEOUT_SECONDS)
    cache = getattr(request.app.state.app_state, "discovery_cache", None)
    if cache is None:
        return discoverer
    return CachingDiscoverer(discoverer, cache)


def _callback_redirect_uri(request: Request, settings: Settings) -> str:
    if settings.ENTRA_REDIRECT_URI:
        return settings.ENTRA_REDIRECT_URI
    return str(request.url_for("entra_callback"))


# =============================================================================
# Enabled Endpoint
# =============================================================================

@auth_router.get("/enabled", response_model=EnabledResponse)
async def entra_enabled(request: Request) -> EnabledResponse:
    """
    Check if Entra authentication is enabled.

    Never fails: any internal error is reported as disabled.
    """
    try:
        enabled = is_enabled(get_app_settings(request))
    except Exception as e:
        logger.error(f"Error checking if Entra is enabled: {e}")
        enabled = False

    return EnabledResponse(enabled=enabled)


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login", response_model=LoginResponse)
async def entra_login(
    request: Request,
    settings: Settings = Depends(get_app_settings),
):
    """
    Initiate an Entra login.

    This endpoint:
    1. Resolves the provider configuration (400 if disabled)
    2. Generates state and nonce for the attempt
    3. Builds the authorization URL (discovering endpoints if needed)
    4. Binds state, nonce and redirect URI to short-lived signed cookies

    Returns:
        200 {"success": true, "authUrl": ...} with the binding cookies set
    """
    config = resolve_provider_config(settings)
    if config is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=LoginResponse(success=False, error="Entra authentication is not enabled").model_dump(),
        )

    redirect_uri = _callback_redirect_uri(request, settings)
    attempt = issue_login_attempt(redirect_uri, settings.LOGIN_ATTEMPT_TTL_SECONDS)

    try:
        discoverer = provider_discoverer(request, settings, provider_client(request))
        config = await discover_provider(config, discoverer)
        auth_url = build_authorization_url(config, attempt.redirect_uri, attempt.state, attempt.nonce)
    except EntraAuthError as e:
        logger.error(f"Entra login error: {e.detail}", extra={"error_type": type(e).__name__})
        if isinstance(e, ConfigInvalid):
            status_code = status.HTTP_400_BAD_REQUEST
        elif isinstance(e, (ProviderUnreachable, ProviderError)):
            status_code = status.HTTP_502_BAD_GATEWAY
        else:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return JSONResponse(
            status_code=status_code,
            content=LoginResponse(success=False, error=e.category).model_dump(),
        )

    response = JSONResponse(
        status_code=status.HTTP_200_OK,
        content=LoginResponse(success=True, authUrl=auth_url).model_dump(exclude_none=True),
    )
    bind_login_attempt(response, attempt, settings)
    return response


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback", name="entra_callback")
async def entra_callback(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    store: UserStore = Depends(get_user_store),
):
    """
    Handle the provider redirect after the user authenticates.

    This endpoint:
    1. Reads the state/nonce/redirect URI bindings and clears them
    2. Verifies the callback (state, code exchange, ID token, nonce, subject)
    3. Reconciles the identity with a local user
    4. Redirects to the frontend completion page with the session or an error
    """
    frontend_url = settings.frontend_base_url

    try:
        bound = read_login_attempt(request, settings)
        config = resolve_provider_config(settings)
        if config is None:
            raise ProviderDisabled()
        if not bound.complete:
            raise SessionExpired("Missing or expired login attempt bindings")

        client = provider_client(request)
        config = await discover_provider(config, provider_discoverer(request, settings, client))
        verifier = CallbackVerifier(config, client, timeout=settings.HTTP_TIMEOUT_SECONDS)
        verified = await verifier.verify(
            str(request.url),
            bound.redirect_uri,
            bound.state,
            bound.nonce,
        )

        reconciler = IdentityReconciler(store, settings)
        result = await reconciler.reconcile(verified.user_info, verified.claims)

        target = build_success_redirect(frontend_url, result.session_token, result.user)

    except Exception as e:
        _log_callback_failure(e)
        category = public_error_category(e, settings.ENTRA_DISCLOSE_ACCOUNT_STATUS)
        target = build_failure_redirect(frontend_url, category)

    response = RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)
    response.headers["Cache-Control"] = "no-store"
    clear_login_attempt(response, settings)
    return response


def _log_callback_failure(exc: Exception) -> None:
    if isinstance(exc, VerificationError):
        logger.warning(
            f"Entra callback failed verification: {exc.detail}",
            extra={"error_type": type(exc).__name__},
        )
    elif isinstance(exc, (ProviderError, ProviderUnreachable)):
        logger.error(
            f"Entra provider error: {exc.detail}",
            extra={"error_type": type(exc).__name__},
        )
    elif isinstance(exc, EntraAuthError):
        logger.info(
            f"Entra callback rejected: {exc.detail}",
            extra={"error_type": type(exc).__name__},
        )
    else:
        logger.error(f"Unexpected error in Entra callback: {exc}", exc_info=True)


# =============================================================================
# Completion Page
# =============================================================================

@auth_router.get("/complete", response_class=HTMLResponse)
async def entra_complete(request: Request, settings: Settings = Depends(get_app_settings)):
    """
    Render the completion page for the callback redirect.

    With token and user the page stores the session and goes home; with an
    error, or with nothing to consume, it renders the failure state.
    """
    result = parse_completion_params(request.query_params)
    if result.ok:
        return render_success_page(result, settings.HOME_PATH)
    return render_failure_page(result, settings.HOME_PATH)
