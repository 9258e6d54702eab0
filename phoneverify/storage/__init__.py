"""Storage module for the phone verification service."""

from .db import (
    StorageRuntime,
    build_sqlite_url,
    create_session_factory,
    create_storage_runtime,
    dispose_storage_runtime,
    ensure_schema,
)
from .session_store import (
    AppSessionStore,
    SessionStoreError,
    derive_session_key,
    open_token,
    resolve_session_key,
    seal_token,
)

__all__ = [
    "AppSessionStore",
    "SessionStoreError",
    "StorageRuntime",
    "build_sqlite_url",
    "create_session_factory",
    "create_storage_runtime",
    "derive_session_key",
    "dispose_storage_runtime",
    "ensure_schema",
    "open_token",
    "resolve_session_key",
    "seal_token",
]
