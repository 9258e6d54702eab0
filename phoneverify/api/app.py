"""FastAPI application factory and lifespan management."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, cast

import httpx
from fastapi import FastAPI

from phoneverify.api.routes.health import router as health_router
from phoneverify.api.routes.phone_verification import (
    router as phone_verification_router,
)
from phoneverify.api.views import (
    AlternateChannelSender,
    PhoneAuthProvider,
    ViewRegistry,
)
from phoneverify.backend import BackendClient
from phoneverify.config.logging import init_logging
from phoneverify.config.settings import AppSettings, load_settings
from phoneverify.provider import IdentityToolkitClient
from phoneverify.storage import (
    AppSessionStore,
    StorageRuntime,
    create_storage_runtime,
    dispose_storage_runtime,
    ensure_schema,
    resolve_session_key,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from phoneverify.verification.exchange import SessionExchangeBackend

logger = logging.getLogger(__name__)

_RUNTIME_STATE_ATTRS: tuple[str, ...] = (
    "storage_runtime",
    "http_client",
    "session_store",
    "view_registry",
)


class StartupDependencyError(RuntimeError):
    """Raised when required startup state is missing or malformed."""

    @classmethod
    def missing_settings(cls) -> StartupDependencyError:
        """Build error for absent settings on app state."""
        message = "Missing startup settings: app.state.settings."
        return cls(message)

    @classmethod
    def invalid_override(cls, name: str) -> StartupDependencyError:
        """Build error for app-state overrides lacking required methods."""
        message = f"Invalid app.state.{name}: missing required client methods."
        return cls(message)


def _resolve_settings(app: FastAPI) -> AppSettings:
    """Resolve settings captured by the app factory."""
    settings_obj = getattr(cast("object", app.state), "settings", None)
    if not isinstance(settings_obj, AppSettings):
        raise StartupDependencyError.missing_settings()
    return settings_obj


def _resolve_identity_provider(
    app: FastAPI,
    *,
    settings: AppSettings,
    http_client: httpx.AsyncClient,
) -> PhoneAuthProvider:
    """Use an app-state provider override or build the REST client."""
    override = cast("object | None", getattr(app.state, "identity_provider", None))
    if override is None:
        return IdentityToolkitClient(
            api_key=settings.provider_api_key,
            base_url=settings.provider_base_url,
            http_client=http_client,
        )
    for method_name in ("dispatch_code", "confirm_code", "get_assertion_token"):
        if not callable(getattr(override, method_name, None)):
            raise StartupDependencyError.invalid_override("identity_provider")
    return cast("PhoneAuthProvider", override)


def _resolve_backend(
    app: FastAPI,
    *,
    settings: AppSettings,
    http_client: httpx.AsyncClient,
) -> SessionExchangeBackend:
    """Use an app-state backend override or build the HTTP client."""
    override = cast("object | None", getattr(app.state, "backend_client", None))
    if override is None:
        return BackendClient(
            base_url=settings.backend_base_url,
            http_client=http_client,
        )
    if not callable(getattr(override, "exchange_session", None)):
        raise StartupDependencyError.invalid_override("backend_client")
    return cast("SessionExchangeBackend", override)


def _resolve_alternate_channel(
    backend: SessionExchangeBackend,
) -> AlternateChannelSender | None:
    """Reuse the backend for email codes when it exposes the resend endpoint."""
    if callable(getattr(backend, "resend_otp", None)):
        return cast("AlternateChannelSender", backend)
    logger.info("Backend has no resend endpoint; email codes are not requested")
    return None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown events."""
    settings = _resolve_settings(app)
    storage_runtime: StorageRuntime | None = None
    http_client: httpx.AsyncClient | None = None
    view_registry: ViewRegistry | None = None

    logger.info(
        "Starting phone verification service (db=%s, provider_configured=%s)",
        settings.db_path,
        bool(settings.provider_api_key),
    )
    try:
        storage_runtime = create_storage_runtime(settings)
        await ensure_schema(storage_runtime)
        http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        session_store = AppSessionStore(
            read_session_factory=storage_runtime.read_session_factory,
            write_session_factory=storage_runtime.write_session_factory,
            session_key=resolve_session_key(settings.session_secret_file),
        )
        backend = _resolve_backend(app, settings=settings, http_client=http_client)
        view_registry = ViewRegistry(
            provider=_resolve_identity_provider(
                app,
                settings=settings,
                http_client=http_client,
            ),
            backend=backend,
            store=session_store,
            alternate_channel=_resolve_alternate_channel(backend),
            default_country_code=settings.default_country_code,
            cooldown_seconds=settings.resend_cooldown_seconds,
            idle_ttl_seconds=settings.view_idle_ttl_seconds,
        )
        app.state.storage_runtime = storage_runtime
        app.state.http_client = http_client
        app.state.session_store = session_store
        app.state.view_registry = view_registry
        yield
    finally:
        if view_registry is not None:
            view_registry.close_all()
        if http_client is not None:
            await http_client.aclose()
        if storage_runtime is not None:
            await dispose_storage_runtime(storage_runtime)
        _clear_runtime_state(app)
        logger.info("Shutting down phone verification service")


def create_app() -> FastAPI:
    """Create and configure a new FastAPI application instance."""
    settings = load_settings()
    init_logging(settings.log_level)

    app = FastAPI(
        title="Phone Verification",
        description="Phone number OTP verification and session exchange",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.include_router(health_router)
    app.include_router(phone_verification_router)
    return app


def _clear_runtime_state(app: FastAPI) -> None:
    """Remove runtime objects from app state after lifespan shutdown."""
    state = cast("object", app.state)
    for name in _RUNTIME_STATE_ATTRS:
        if hasattr(state, name):
            delattr(state, name)
