"""Code dispatch through the identity provider, with resend cooldown."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Final, Protocol

from .attempt import AttemptStatus, FailedStage
from .errors import ClassifiedError, ErrorClass, classify_exception, message_for
from .phone import validate_phone_number
from .timers import DEFAULT_COOLDOWN_SECONDS, CooldownTimer

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .attempt import VerificationAttempt
    from .challenge import ChallengeLifecycleManager, ChallengeWidget
    from .phone import PhoneNumber

    Sleep = Callable[[float], Awaitable[None]]
    TimeProvider = Callable[[], datetime]

logger = logging.getLogger(__name__)

CHALLENGE_GRACE_PERIOD_SECONDS: Final = 0.15
_ALREADY_RENDERED_RETRIES: Final = 1
_DISPATCH_LOCKED_STATUSES: Final = frozenset(
    {
        AttemptStatus.SENDING,
        AttemptStatus.VERIFYING,
        AttemptStatus.VERIFIED,
        AttemptStatus.EXCHANGING,
        AttemptStatus.COMPLETE,
    },
)


class CodeDispatchProvider(Protocol):
    """Provider surface for sending a verification code."""

    async def dispatch_code(self, phone_number: str, challenge_token: str) -> str:
        """Send a code and return the provider session handle."""
        ...


@dataclass(frozen=True, slots=True)
class DispatchResult:
    """Outcome of one send or resend request."""

    sent: bool
    session_handle: str | None = None
    phone_number: PhoneNumber | None = None
    error: ClassifiedError | None = None
    skipped_reason: str | None = None

    @property
    def skipped(self) -> bool:
        """Return True when the request was ignored without any side effect."""
        return self.skipped_reason is not None


def _utc_now() -> datetime:
    return datetime.now(UTC)


class OTPDispatchController:
    """Send codes for normalized numbers and own the resend cooldown."""

    _provider: CodeDispatchProvider
    _challenge: ChallengeLifecycleManager
    _default_country_code: str | None
    _sleep: Sleep
    _time_provider: TimeProvider
    _cooldown: CooldownTimer
    _on_cooldown_change: Callable[[int], None] | None
    _bound_attempt: VerificationAttempt | None

    def __init__(  # noqa: PLR0913
        self,
        *,
        provider: CodeDispatchProvider,
        challenge: ChallengeLifecycleManager,
        default_country_code: str | None = None,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        sleep: Sleep = asyncio.sleep,
        time_provider: TimeProvider = _utc_now,
        on_cooldown_change: Callable[[int], None] | None = None,
    ) -> None:
        """Wire provider, challenge manager and timing primitives."""
        self._provider = provider
        self._challenge = challenge
        self._default_country_code = default_country_code
        self._sleep = sleep
        self._time_provider = time_provider
        self._on_cooldown_change = on_cooldown_change
        self._cooldown = CooldownTimer(
            duration_seconds=cooldown_seconds,
            sleep=sleep,
            on_tick=self._handle_tick,
            on_elapsed=self._handle_elapsed,
        )
        self._bound_attempt = None

    @property
    def cooldown(self) -> CooldownTimer:
        """Return the resend cooldown timer."""
        return self._cooldown

    @property
    def cooldown_seconds_remaining(self) -> int:
        """Return whole seconds until resend is allowed again."""
        return self._cooldown.remaining

    @property
    def can_resend(self) -> bool:
        """Return True when no cooldown is running."""
        return not self._cooldown.active

    async def send(
        self,
        attempt: VerificationAttempt,
        raw_phone: str,
    ) -> DispatchResult:
        """Validate, obtain a ready challenge and ask the provider for a code."""
        if attempt.status in _DISPATCH_LOCKED_STATUSES:
            logger.info(
                "Rejecting send for attempt in progress",
                extra={"status": attempt.status.value},
            )
            return DispatchResult(sent=False, skipped_reason=attempt.status.value)

        validation = validate_phone_number(raw_phone, self._default_country_code)
        if not validation.valid or validation.normalized is None:
            error = validation.error or ClassifiedError(ErrorClass.INVALID_PHONE_FORMAT)
            attempt.record_error(error)
            return DispatchResult(sent=False, error=error)

        phone_number = validation.normalized
        attempt.begin_sending(phone_number)
        self._bound_attempt = attempt
        logger.info(
            "Dispatching verification code",
            extra={"phone": phone_number.masked},
        )
        try:
            widget = await self._ready_widget()
            challenge_token = await widget.challenge_token()
            session_handle = await self._provider.dispatch_code(
                phone_number.canonical,
                challenge_token,
            )
        except Exception as exc:
            error = classify_exception(exc)
            self._challenge.clear()
            attempt.fail(FailedStage.SENDING, error)
            if error.policy.cooldown_seconds:
                self._start_cooldown(attempt, error.policy.cooldown_seconds)
            logger.warning("Code dispatch failed", extra=error.diagnostic())
            return DispatchResult(sent=False, phone_number=phone_number, error=error)

        # The widget is single-use once a dispatch went through.
        self._challenge.clear()
        attempt.code_dispatched(session_handle)
        self._start_cooldown(attempt, self._cooldown.duration_seconds)
        return DispatchResult(
            sent=True,
            session_handle=session_handle,
            phone_number=phone_number,
        )

    async def resend(
        self,
        attempt: VerificationAttempt,
        raw_phone: str | None = None,
    ) -> DispatchResult:
        """Send again once the cooldown has elapsed; ignored while it runs."""
        if self._cooldown.active:
            return DispatchResult(sent=False, skipped_reason="cooldown")
        if attempt.status in _DISPATCH_LOCKED_STATUSES:
            return DispatchResult(sent=False, skipped_reason=attempt.status.value)
        phone = raw_phone
        if phone is None and attempt.phone_number is not None:
            phone = attempt.phone_number.canonical
        if phone is None:
            error = ClassifiedError.local(
                ErrorClass.INVALID_PHONE_FORMAT,
                message_for(ErrorClass.INVALID_PHONE_FORMAT),
            )
            attempt.record_error(error)
            return DispatchResult(sent=False, error=error)
        attempt.digits.clear()
        return await self.send(attempt, phone)

    def release_challenge(self) -> None:
        """Destroy the challenge widget and keep the cooldown running."""
        self._challenge.clear()

    def close(self) -> None:
        """Stop the cooldown and release the challenge widget."""
        self._cooldown.cancel()
        self._challenge.clear()
        self._bound_attempt = None

    async def _ready_widget(self) -> ChallengeWidget:
        widget = self._challenge.current
        if widget is not None and widget.is_ready:
            return widget
        retries = _ALREADY_RENDERED_RETRIES
        while True:
            try:
                widget = await self._challenge.initialize()
            except ClassifiedError as exc:
                if exc.error_class is not ErrorClass.ALREADY_RENDERED or retries <= 0:
                    raise
                retries -= 1
                continue
            break
        # The widget must be mounted before the provider call.
        await self._sleep(CHALLENGE_GRACE_PERIOD_SECONDS)
        return widget

    def _start_cooldown(self, attempt: VerificationAttempt, seconds: int) -> None:
        attempt.cooldown_expires_at = self._time_provider() + timedelta(seconds=seconds)
        self._cooldown.start(seconds)
        if self._on_cooldown_change is not None:
            self._on_cooldown_change(self._cooldown.remaining)

    def _handle_tick(self, remaining: int) -> None:
        if self._on_cooldown_change is not None:
            self._on_cooldown_change(remaining)

    def _handle_elapsed(self) -> None:
        if self._bound_attempt is not None:
            self._bound_attempt.cooldown_expires_at = None
        logger.debug("Resend cooldown elapsed")
