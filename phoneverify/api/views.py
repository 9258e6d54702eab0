"""Registry of mounted verification views, one state machine per view."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, Protocol

import httpx

from phoneverify.backend import ResendMethod
from phoneverify.config.logging import attempt_logging_context
from phoneverify.provider import PresolvedChallengeProvider
from phoneverify.verification import (
    ChallengeLifecycleManager,
    OTPDispatchController,
    OTPEntryStateMachine,
    PageDocument,
    SessionExchangeController,
)
from phoneverify.verification.timers import (
    DEFAULT_COOLDOWN_SECONDS,
    NavigationScheduler,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator, Mapping

    from phoneverify.backend import ResendResult
    from phoneverify.verification import ErrorClass, StoredSession
    from phoneverify.verification.exchange import SessionExchangeBackend, SessionStore

    Sleep = Callable[[float], Awaitable[None]]
    Monotonic = Callable[[], float]

logger = logging.getLogger(__name__)

ALTERNATE_CHANNEL_ROUTE: Final = "email_verification"
DEFAULT_VIEW_IDLE_TTL_SECONDS: Final = 900.0
# Long enough for the shell to read the final state after completion or redirect.
FINISHED_VIEW_TTL_SECONDS: Final = 60.0


class PhoneAuthProvider(Protocol):
    """Identity provider surface used by a mounted view."""

    async def dispatch_code(self, phone_number: str, challenge_token: str) -> str:
        """Send a code and return the provider session handle."""
        ...

    async def confirm_code(self, session_handle: str, code: str) -> object:
        """Confirm a code for a dispatch session."""
        ...

    async def get_assertion_token(self, assertion: object) -> str:
        """Return the token proving a confirmed assertion."""
        ...


class AlternateChannelSender(Protocol):
    """Backend surface that sends a code through the email channel."""

    async def resend_otp(
        self,
        identifier: str,
        method: ResendMethod = ResendMethod.EMAIL,
    ) -> ResendResult:
        """Ask the backend to send a code to the identifier."""
        ...


class ViewNotFoundError(LookupError):
    """Raised when a view id does not belong to a mounted view."""

    @classmethod
    def for_view_id(cls, view_id: str) -> ViewNotFoundError:
        """Build deterministic error naming the unknown view."""
        return cls(f"Verification view not found for view_id='{view_id}'.")


@dataclass(slots=True)
class MountedView:
    """One mounted verification screen and its collaborators."""

    view_id: str
    machine: OTPEntryStateMachine
    challenge_provider: PresolvedChallengeProvider
    document: PageDocument
    last_seen_at: float = 0.0
    finished_at: float | None = None
    verified_session: StoredSession | None = None
    fallback_error_class: ErrorClass | None = None
    navigate_to: str | None = None
    alternate_code_requested: bool = False

    @contextlib.contextmanager
    def logging_context(self) -> Iterator[None]:
        """Tag log lines emitted while handling this view with its attempt id."""
        with attempt_logging_context(self.machine.attempt.attempt_id, self.view_id):
            yield


class ViewRegistry:
    """Create, look up, expire and tear down verification views.

    A view lives until it is unmounted, until it has been idle for the idle
    TTL, or until a short grace period after it completed or redirected.
    Expired views are pruned whenever the registry is used.
    """

    _provider: PhoneAuthProvider
    _backend: SessionExchangeBackend
    _store: SessionStore
    _alternate_channel: AlternateChannelSender | None
    _default_country_code: str | None
    _cooldown_seconds: int
    _idle_ttl_seconds: float
    _finished_ttl_seconds: float
    _sleep: Sleep
    _monotonic: Monotonic
    _views: dict[str, MountedView]
    _pending_requests: set[asyncio.Task[None]]

    def __init__(  # noqa: PLR0913
        self,
        *,
        provider: PhoneAuthProvider,
        backend: SessionExchangeBackend,
        store: SessionStore,
        alternate_channel: AlternateChannelSender | None = None,
        default_country_code: str | None = None,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        idle_ttl_seconds: float = DEFAULT_VIEW_IDLE_TTL_SECONDS,
        finished_ttl_seconds: float = FINISHED_VIEW_TTL_SECONDS,
        sleep: Sleep = asyncio.sleep,
        monotonic: Monotonic = time.monotonic,
    ) -> None:
        """Bind the shared clients every mounted view uses."""
        self._provider = provider
        self._backend = backend
        self._store = store
        self._alternate_channel = alternate_channel
        self._default_country_code = default_country_code
        self._cooldown_seconds = cooldown_seconds
        self._idle_ttl_seconds = idle_ttl_seconds
        self._finished_ttl_seconds = finished_ttl_seconds
        self._sleep = sleep
        self._monotonic = monotonic
        self._views = {}
        self._pending_requests = set()

    def __len__(self) -> int:
        """Return the number of mounted views."""
        return len(self._views)

    def mount(
        self,
        *,
        pending_signup_data: Mapping[str, object] | None = None,
    ) -> MountedView:
        """Build a fresh view with its own challenge manager and timers."""
        _ = self.prune_expired()
        view_id = secrets.token_urlsafe(16)
        document = PageDocument()
        challenge_provider = PresolvedChallengeProvider()
        challenge = ChallengeLifecycleManager(
            provider=challenge_provider,
            document=document,
        )
        dispatcher = OTPDispatchController(
            provider=self._provider,
            challenge=challenge,
            default_country_code=self._default_country_code,
            cooldown_seconds=self._cooldown_seconds,
            sleep=self._sleep,
        )
        exchange = SessionExchangeController(backend=self._backend, store=self._store)
        holder: list[MountedView] = []
        signup_email = _signup_email(pending_signup_data)

        def _on_verified(session: StoredSession) -> None:
            mounted_view = holder[0]
            mounted_view.verified_session = session
            mounted_view.finished_at = self._monotonic()
            logger.info("Phone verified and session stored")

        def _on_fallback(error_class: ErrorClass) -> None:
            mounted_view = holder[0]
            mounted_view.fallback_error_class = error_class
            mounted_view.navigate_to = ALTERNATE_CHANNEL_ROUTE
            mounted_view.finished_at = self._monotonic()
            if signup_email is not None and self._alternate_channel is not None:
                mounted_view.alternate_code_requested = True
                self._request_alternate_code(mounted_view, signup_email)

        machine = OTPEntryStateMachine(
            dispatcher=dispatcher,
            provider=self._provider,
            exchange=exchange,
            navigation=NavigationScheduler(sleep=self._sleep),
            on_verified=_on_verified,
            on_fallback=_on_fallback,
            pending_signup_data=pending_signup_data,
        )
        mounted = MountedView(
            view_id=view_id,
            machine=machine,
            challenge_provider=challenge_provider,
            document=document,
            last_seen_at=self._monotonic(),
        )
        holder.append(mounted)
        self._views[view_id] = mounted
        return mounted

    def get(self, view_id: str) -> MountedView:
        """Return a mounted view or raise ViewNotFoundError."""
        _ = self.prune_expired()
        mounted = self._views.get(view_id)
        if mounted is None:
            raise ViewNotFoundError.for_view_id(view_id)
        mounted.last_seen_at = self._monotonic()
        return mounted

    def unmount(self, view_id: str) -> None:
        """Tear down and forget a mounted view."""
        mounted = self._views.pop(view_id, None)
        if mounted is None:
            raise ViewNotFoundError.for_view_id(view_id)
        mounted.machine.close()

    def prune_expired(self) -> int:
        """Tear down idle and finished views; return how many were removed."""
        now = self._monotonic()
        expired = [
            view_id
            for view_id, mounted in self._views.items()
            if self._is_expired(mounted, now)
        ]
        for view_id in expired:
            mounted = self._views.pop(view_id)
            mounted.machine.close()
        if expired:
            logger.info(
                "Expired verification views pruned",
                extra={"count": len(expired)},
            )
        return len(expired)

    def close_all(self) -> None:
        """Tear down every mounted view on shutdown."""
        views, self._views = self._views, {}
        for mounted in views.values():
            mounted.machine.close()
        for task in self._pending_requests:
            _ = task.cancel()

    def _is_expired(self, mounted: MountedView, now: float) -> bool:
        if mounted.finished_at is not None:
            return now - mounted.finished_at >= self._finished_ttl_seconds
        return now - mounted.last_seen_at >= self._idle_ttl_seconds

    def _request_alternate_code(self, mounted: MountedView, email: str) -> None:
        task = asyncio.get_running_loop().create_task(
            self._send_alternate_code(mounted, email),
        )
        self._pending_requests.add(task)
        task.add_done_callback(self._pending_requests.discard)

    async def _send_alternate_code(self, mounted: MountedView, email: str) -> None:
        channel = self._alternate_channel
        if channel is None:
            return
        with mounted.logging_context():
            try:
                result = await channel.resend_otp(email, ResendMethod.EMAIL)
            except httpx.HTTPError:
                logger.warning("Email code request failed", exc_info=True)
                return
            logger.info(
                "Email code requested for redirected view",
                extra={"success": result.success},
            )


def _signup_email(pending_signup_data: Mapping[str, object] | None) -> str | None:
    if not pending_signup_data:
        return None
    email = pending_signup_data.get("email")
    if isinstance(email, str) and email.strip():
        return email.strip()
    return None
