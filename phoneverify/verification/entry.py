"""UI-facing state machine for phone code entry and verification.

One :class:`OTPEntryStateMachine` backs one mounted verification view. It owns
the current :class:`VerificationAttempt`, drives the dispatch controller for
sends and resends, confirms the typed code with the provider, and hands the
provider assertion to the session exchange. Provider verification and session
exchange fail independently: a failed exchange keeps the confirmed assertion so
only the exchange is retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, Protocol

from .attempt import AttemptStatus, FailedStage, VerificationAttempt
from .errors import (
    ClassifiedError,
    ErrorClass,
    classify_exception,
    message_for,
    remediation_for,
)
from .timers import NavigationScheduler

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from .dispatch import DispatchResult, OTPDispatchController
    from .exchange import SessionExchangeController, StoredSession

logger = logging.getLogger(__name__)

_INCOMPLETE_CODE_MESSAGE: Final = "Please enter the complete 6-digit code."
_MISSING_SESSION_MESSAGE: Final = (
    "No verification code is pending. Please request a new code."
)
_ENTRY_LOCKED_STATUSES: Final = frozenset(
    {
        AttemptStatus.SENDING,
        AttemptStatus.VERIFYING,
        AttemptStatus.VERIFIED,
        AttemptStatus.EXCHANGING,
        AttemptStatus.COMPLETE,
    },
)


class CodeConfirmProvider(Protocol):
    """Provider surface for confirming a code and reading its assertion."""

    async def confirm_code(self, session_handle: str, code: str) -> object:
        """Confirm a code for a dispatch session and return the assertion."""
        ...

    async def get_assertion_token(self, assertion: object) -> str:
        """Return the opaque token that proves the confirmed assertion."""
        ...


@dataclass(frozen=True, slots=True)
class VerificationView:
    """Snapshot of view state exposed to the surrounding UI shell."""

    attempt_id: str
    status: str
    phone_display: str | None
    digits: tuple[str, ...]
    focused_index: int
    error_message: str
    error_class: str | None
    remediation: tuple[str, ...]
    cooldown_seconds_remaining: int
    can_submit: bool
    can_resend: bool
    redirect_pending: bool
    redirect_delay_ms: int | None


class OTPEntryStateMachine:
    """Drive send, code entry, confirmation and session exchange for one view."""

    _dispatcher: OTPDispatchController
    _provider: CodeConfirmProvider
    _exchange: SessionExchangeController
    _navigation: NavigationScheduler
    _on_verified: Callable[[StoredSession], None] | None
    _on_fallback: Callable[[ErrorClass], None] | None
    _pending_signup_data: Mapping[str, object] | None
    _attempt: VerificationAttempt
    _session: StoredSession | None
    _verified_notified: bool
    _closed: bool

    def __init__(  # noqa: PLR0913
        self,
        *,
        dispatcher: OTPDispatchController,
        provider: CodeConfirmProvider,
        exchange: SessionExchangeController,
        navigation: NavigationScheduler | None = None,
        on_verified: Callable[[StoredSession], None] | None = None,
        on_fallback: Callable[[ErrorClass], None] | None = None,
        pending_signup_data: Mapping[str, object] | None = None,
    ) -> None:
        """Wire collaborators and create a fresh idle attempt."""
        self._dispatcher = dispatcher
        self._provider = provider
        self._exchange = exchange
        self._navigation = navigation or NavigationScheduler()
        self._on_verified = on_verified
        self._on_fallback = on_fallback
        self._pending_signup_data = pending_signup_data
        self._attempt = VerificationAttempt()
        self._session = None
        self._verified_notified = False
        self._closed = False

    @property
    def attempt(self) -> VerificationAttempt:
        """Return the current verification attempt."""
        return self._attempt

    @property
    def session(self) -> StoredSession | None:
        """Return the stored session after a completed exchange."""
        return self._session

    @property
    def navigation(self) -> NavigationScheduler:
        """Return the fallback navigation scheduler."""
        return self._navigation

    @property
    def closed(self) -> bool:
        """Return True after teardown."""
        return self._closed

    async def start(self, raw_phone: str) -> VerificationView:
        """Send the first code for the phone number entered on mount."""
        if self._closed:
            return self.view()
        if not self._dispatcher.can_resend:
            logger.info("Ignoring send request during resend cooldown")
            return self.view()
        result = await self._dispatcher.send(self._attempt, raw_phone)
        self._after_dispatch(result)
        return self.view()

    async def resend(self, raw_phone: str | None = None) -> VerificationView:
        """Request a new code; silently ignored during the cooldown."""
        if (
            self._closed
            or self._navigation.pending
            or self._attempt.status in _ENTRY_LOCKED_STATUSES
        ):
            return self.view()
        result = await self._dispatcher.resend(self._attempt, raw_phone)
        if result.skipped:
            return self.view()
        self._after_dispatch(result)
        return self.view()

    def enter_digit(self, index: int, value: str) -> VerificationView:
        """Type one character into a slot; non-digits are discarded."""
        if self._attempt.status not in _ENTRY_LOCKED_STATUSES:
            _ = self._attempt.digits.enter(index, value)
        return self.view()

    def backspace(self, index: int) -> VerificationView:
        """Handle backspace on a slot."""
        if self._attempt.status not in _ENTRY_LOCKED_STATUSES:
            self._attempt.digits.backspace(index)
        return self.view()

    def paste(self, text: str) -> VerificationView:
        """Fill the slots from pasted text."""
        if self._attempt.status not in _ENTRY_LOCKED_STATUSES:
            _ = self._attempt.digits.paste(text)
        return self.view()

    async def submit(self) -> VerificationView:
        """Confirm the typed code, then exchange the assertion for a session."""
        attempt = self._attempt
        if self._closed:
            return self.view()
        if (
            attempt.status is AttemptStatus.FAILED
            and attempt.failed_stage is FailedStage.EXCHANGING
        ):
            return await self.retry_exchange()
        if attempt.status in _ENTRY_LOCKED_STATUSES:
            return self.view()

        local_error = self._local_submit_error()
        if local_error is not None:
            attempt.record_error(local_error)
            return self.view()

        session_handle = attempt.session_handle
        if session_handle is None:
            return self.view()
        code = attempt.digits.joined()
        attempt.record_error(None)
        attempt.transition(AttemptStatus.VERIFYING)
        try:
            assertion = await self._provider.confirm_code(session_handle, code)
            if self._is_superseded(attempt, session_handle):
                return self.view()
            attempt.transition(AttemptStatus.VERIFIED)
            assertion_token = await self._provider.get_assertion_token(assertion)
        except Exception as exc:
            if not self._is_superseded(attempt, session_handle):
                self._handle_confirm_failure(classify_exception(exc))
            return self.view()

        if self._is_superseded(attempt, session_handle):
            return self.view()
        attempt.assertion_token = assertion_token
        await self._run_exchange(attempt)
        return self.view()

    async def retry_exchange(self) -> VerificationView:
        """Retry only the session exchange after a failed exchange."""
        attempt = self._attempt
        if (
            self._closed
            or attempt.status is not AttemptStatus.FAILED
            or attempt.failed_stage is not FailedStage.EXCHANGING
            or attempt.assertion_token is None
        ):
            return self.view()
        attempt.record_error(None)
        await self._run_exchange(attempt)
        return self.view()

    def reset(self) -> VerificationView:
        """Discard the attempt and challenge; the resend cooldown keeps running."""
        self._navigation.cancel()
        self._dispatcher.release_challenge()
        self._attempt = VerificationAttempt()
        self._verified_notified = False
        self._session = None
        return self.view()

    def close(self) -> None:
        """Tear down timers and the challenge widget when the view unmounts."""
        if self._closed:
            return
        self._closed = True
        self._navigation.cancel()
        self._dispatcher.close()

    def view(self) -> VerificationView:
        """Return a snapshot of the view state."""
        attempt = self._attempt
        error = attempt.last_error
        phone = attempt.phone_number
        return VerificationView(
            attempt_id=attempt.attempt_id,
            status=attempt.status_label,
            phone_display=phone.masked if phone is not None else None,
            digits=attempt.digits.values,
            focused_index=attempt.digits.focused_index,
            error_message=error.user_message if error is not None else "",
            error_class=error.error_class.value if error is not None else None,
            remediation=(
                remediation_for(error.error_class) if error is not None else ()
            ),
            cooldown_seconds_remaining=self._dispatcher.cooldown_seconds_remaining,
            can_submit=self._can_submit(),
            can_resend=self._can_resend(),
            redirect_pending=self._navigation.pending,
            redirect_delay_ms=self._navigation.pending_delay_ms,
        )

    def _local_submit_error(self) -> ClassifiedError | None:
        attempt = self._attempt
        if not attempt.digits.is_complete:
            return ClassifiedError.local(
                ErrorClass.INVALID_CODE,
                _INCOMPLETE_CODE_MESSAGE,
            )
        if attempt.session_handle is None:
            return ClassifiedError.local(
                ErrorClass.INVALID_CODE,
                _MISSING_SESSION_MESSAGE,
            )
        if attempt.requires_resend:
            return ClassifiedError.local(
                ErrorClass.CODE_EXPIRED,
                message_for(ErrorClass.CODE_EXPIRED),
            )
        return None

    def _after_dispatch(self, result: DispatchResult) -> None:
        if result.error is not None:
            self._schedule_fallback(result.error)

    def _handle_confirm_failure(self, error: ClassifiedError) -> None:
        attempt = self._attempt
        attempt.digits.clear()
        if error.policy.terminal:
            attempt.fail(FailedStage.VERIFYING, error)
            self._schedule_fallback(error)
            return
        attempt.transition(AttemptStatus.AWAITING_CODE)
        attempt.record_error(error)
        if error.policy.requires_resend:
            attempt.requires_resend = True
        logger.info("Code confirmation failed", extra=error.diagnostic())

    async def _run_exchange(self, attempt: VerificationAttempt) -> None:
        assertion_token = attempt.assertion_token
        phone_number = attempt.phone_number
        if assertion_token is None or phone_number is None:
            return
        attempt.transition(AttemptStatus.EXCHANGING)
        try:
            session = await self._exchange.exchange(
                assertion_token,
                phone_number,
                self._pending_signup_data,
            )
        except ClassifiedError as exc:
            if not self._is_stale(attempt):
                attempt.fail(FailedStage.EXCHANGING, exc)
            return
        if self._is_stale(attempt):
            return

        attempt.transition(AttemptStatus.COMPLETE)
        attempt.session_handle = None
        attempt.digits.clear()
        self._session = session
        self._dispatcher.close()
        self._notify_verified(session)

    def _notify_verified(self, session: StoredSession) -> None:
        if self._verified_notified:
            return
        self._verified_notified = True
        if self._on_verified is not None:
            self._on_verified(session)

    def _schedule_fallback(self, error: ClassifiedError) -> None:
        delay_ms = error.policy.redirect_delay_ms
        if delay_ms is None:
            return
        error_class = error.error_class

        def _navigate() -> None:
            self._dispatcher.close()
            if self._on_fallback is not None:
                self._on_fallback(error_class)

        if self._navigation.schedule(delay_ms, _navigate):
            logger.warning(
                "Verification channel unavailable; redirect scheduled",
                extra={"error_class": error_class.value, "delay_ms": delay_ms},
            )

    def _can_submit(self) -> bool:
        attempt = self._attempt
        if (
            attempt.status is AttemptStatus.FAILED
            and attempt.failed_stage is FailedStage.EXCHANGING
        ):
            return not self._closed
        return (
            not self._closed
            and attempt.status is AttemptStatus.AWAITING_CODE
            and attempt.session_handle is not None
            and attempt.digits.is_complete
            and not attempt.requires_resend
        )

    def _can_resend(self) -> bool:
        attempt = self._attempt
        return (
            not self._closed
            and not self._navigation.pending
            and self._dispatcher.can_resend
            and attempt.phone_number is not None
            and attempt.status not in _ENTRY_LOCKED_STATUSES
        )

    def _is_stale(self, attempt: VerificationAttempt) -> bool:
        """Return True when a reset or teardown replaced the attempt mid-call."""
        return self._closed or self._attempt is not attempt

    def _is_superseded(
        self,
        attempt: VerificationAttempt,
        session_handle: str,
    ) -> bool:
        """Return True when the confirmed code belongs to a replaced dispatch."""
        return self._is_stale(attempt) or attempt.session_handle != session_handle
