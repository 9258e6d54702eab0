"""Exchange a provider assertion for a persisted application session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from .errors import ClassifiedError, ErrorClass, classify_exception

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

    from .phone import PhoneNumber

logger = logging.getLogger(__name__)

_EXCHANGE_FAILED_MESSAGE = (
    "Your phone is verified, but signing you in failed. Tap verify to try again."
)


@dataclass(frozen=True, slots=True)
class ExchangeResponse:
    """Decoded backend exchange reply."""

    success: bool
    token: str | None = None
    user: Mapping[str, object] | None = None
    message: str | None = None


@dataclass(frozen=True, slots=True)
class StoredSession:
    """Application session written to durable storage."""

    token: str
    user: Mapping[str, object]
    phone_number: str
    created_at: datetime | None = None


class SessionExchangeBackend(Protocol):
    """Backend surface for trading a provider assertion for a session."""

    async def exchange_session(
        self,
        *,
        assertion_token: str,
        phone_number: str,
        pending_signup_data: Mapping[str, object] | None = None,
    ) -> ExchangeResponse:
        """Call the backend exchange endpoint."""
        ...


class SessionStore(Protocol):
    """Durable storage for the application session."""

    async def save_session(
        self,
        *,
        token: str,
        user: Mapping[str, object],
        phone_number: str,
    ) -> StoredSession:
        """Persist and return the application session."""
        ...


class SessionExchangeController:
    """Only writer of persistent session state in the verification flow."""

    _backend: SessionExchangeBackend
    _store: SessionStore

    def __init__(
        self,
        *,
        backend: SessionExchangeBackend,
        store: SessionStore,
    ) -> None:
        """Bind the backend client and the session store."""
        self._backend = backend
        self._store = store

    async def exchange(
        self,
        assertion_token: str,
        phone_number: PhoneNumber,
        pending_signup_data: Mapping[str, object] | None = None,
    ) -> StoredSession:
        """Exchange the assertion and persist the session, or raise classified."""
        try:
            response = await self._backend.exchange_session(
                assertion_token=assertion_token,
                phone_number=phone_number.canonical,
                pending_signup_data=pending_signup_data,
            )
        except Exception as exc:
            error = _as_exchange_error(classify_exception(exc))
            logger.warning("Session exchange request failed", extra=error.diagnostic())
            raise error from exc

        if not response.success or not response.token or response.user is None:
            error = ClassifiedError(
                ErrorClass.UNKNOWN,
                raw_code="exchange_rejected",
                raw_message=response.message or "",
                user_message=_EXCHANGE_FAILED_MESSAGE,
            )
            logger.warning("Session exchange rejected", extra=error.diagnostic())
            raise error

        try:
            stored = await self._store.save_session(
                token=response.token,
                user=response.user,
                phone_number=phone_number.canonical,
            )
        except Exception as exc:
            error = _as_exchange_error(classify_exception(exc))
            logger.exception("Failed to persist application session")
            raise error from exc
        logger.info("Application session stored", extra={"phone": phone_number.masked})
        return stored


def _as_exchange_error(error: ClassifiedError) -> ClassifiedError:
    """Reword generic failures so the user knows only sign-in needs a retry."""
    if error.error_class is ErrorClass.RATE_LIMITED:
        return error
    return ClassifiedError(
        error.error_class,
        raw_code=error.raw_code,
        raw_message=error.raw_message,
        user_message=_EXCHANGE_FAILED_MESSAGE,
    )
