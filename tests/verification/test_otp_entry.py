"""Tests for the code entry state machine across the full verification flow."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx

from phoneverify.verification import (
    AttemptStatus,
    ErrorClass,
    ExchangeResponse,
    ProviderError,
)
from tests.mocks.fakes import DEFAULT_APP_TOKEN, DEFAULT_ASSERTION_TOKEN

if TYPE_CHECKING:
    from phoneverify.verification import OTPEntryStateMachine
    from tests.mocks.fakes import (
        FakeExchangeBackend,
        FakePhoneAuthProvider,
        InMemorySessionStore,
        ManualClock,
    )

PHONE = "+14155552671"


async def test_happy_path_completes_and_notifies_once(  # noqa: PLR0913
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
    exchange_backend: FakeExchangeBackend,
    session_store: InMemorySessionStore,
    verified_sessions: list[object],
) -> None:
    """Ensure send, six digits and submit end in a stored session."""
    view = await machine.start(PHONE)
    if view.status != AttemptStatus.AWAITING_CODE.value:
        raise AssertionError
    if view.phone_display != "+14****2671" or view.can_resend:
        raise AssertionError

    for index, digit in enumerate("123456"):
        view = machine.enter_digit(index, digit)
    if not view.can_submit:
        raise AssertionError

    view = await machine.submit()

    if view.status != AttemptStatus.COMPLETE.value:
        raise AssertionError
    if phone_provider.confirmed != [("session-handle-1", "123456")]:
        raise AssertionError
    request = exchange_backend.requests[0]
    if request["assertion_token"] != DEFAULT_ASSERTION_TOKEN:
        raise AssertionError
    if request["phone_number"] != PHONE:
        raise AssertionError
    if [stored.token for stored in session_store.saved] != [DEFAULT_APP_TOKEN]:
        raise AssertionError
    if len(verified_sessions) != 1 or machine.session is None:
        raise AssertionError
    if machine.attempt.session_handle is not None or any(view.digits):
        raise AssertionError
    if view.cooldown_seconds_remaining != 0 or view.can_resend:
        raise AssertionError

    _ = await machine.submit()
    if len(verified_sessions) != 1 or len(exchange_backend.requests) != 1:
        raise AssertionError


async def test_incomplete_code_is_rejected_locally(
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
) -> None:
    """Ensure a partial code never reaches the provider."""
    _ = await machine.start(PHONE)
    _ = machine.paste("123")

    view = await machine.submit()

    if view.error_message != "Please enter the complete 6-digit code.":
        raise AssertionError
    if view.status != AttemptStatus.AWAITING_CODE.value or view.can_submit:
        raise AssertionError
    if phone_provider.call_counts.get("confirm_code"):
        raise AssertionError
    machine.close()


async def test_invalid_code_clears_digits_and_allows_retry(
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
    verified_sessions: list[object],
) -> None:
    """Ensure a wrong code returns to entry with an inline error."""
    phone_provider.confirm_responses.append(
        ProviderError("INVALID_CODE", "INVALID_CODE"),
    )
    _ = await machine.start(PHONE)
    _ = machine.paste("000000")

    view = await machine.submit()

    if view.status != AttemptStatus.AWAITING_CODE.value:
        raise AssertionError
    if view.error_class != ErrorClass.INVALID_CODE.value or not view.error_message:
        raise AssertionError
    if any(view.digits) or view.focused_index != 0:
        raise AssertionError

    _ = machine.paste("123456")
    view = await machine.submit()
    if view.status != AttemptStatus.COMPLETE.value or view.error_message:
        raise AssertionError
    if len(verified_sessions) != 1:
        raise AssertionError


async def test_expired_code_requires_resend_before_submit(
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
    clock: ManualClock,
) -> None:
    """Ensure an expired code blocks submit until a new code is sent."""
    phone_provider.confirm_responses.append(
        ProviderError("auth/code-expired", "code expired"),
    )
    _ = await machine.start(PHONE)
    _ = machine.paste("111111")
    view = await machine.submit()
    if view.error_class != ErrorClass.CODE_EXPIRED.value:
        raise AssertionError
    if not machine.attempt.requires_resend:
        raise AssertionError

    _ = machine.paste("222222")
    view = await machine.submit()
    if view.can_submit or phone_provider.call_counts["confirm_code"] != 1:
        raise AssertionError

    phone_provider.dispatch_responses.append("session-handle-2")
    await clock.advance(30)
    view = await machine.resend()
    if view.status != AttemptStatus.AWAITING_CODE.value or view.error_message:
        raise AssertionError

    _ = machine.paste("333333")
    view = await machine.submit()
    if view.status != AttemptStatus.COMPLETE.value:
        raise AssertionError
    if phone_provider.confirmed[-1] != ("session-handle-2", "333333"):
        raise AssertionError


async def test_exchange_failure_retries_only_the_exchange(  # noqa: PLR0913
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
    exchange_backend: FakeExchangeBackend,
    session_store: InMemorySessionStore,
    verified_sessions: list[object],
) -> None:
    """Ensure a verified code is not confirmed again when sign-in fails."""
    request = httpx.Request("POST", "https://backend.test/auth/firebase-token-verify")
    exchange_backend.responses.append(httpx.ConnectError("down", request=request))
    _ = await machine.start(PHONE)
    _ = machine.paste("123456")

    view = await machine.submit()

    if view.status != "failed(exchanging)":
        raise AssertionError
    if view.error_class != ErrorClass.NETWORK_ERROR.value or not view.can_submit:
        raise AssertionError
    if "verified" not in view.error_message or session_store.saved:
        raise AssertionError
    if machine.attempt.session_handle is None:
        raise AssertionError

    view = await machine.submit()

    if view.status != AttemptStatus.COMPLETE.value:
        raise AssertionError
    if phone_provider.call_counts["confirm_code"] != 1:
        raise AssertionError
    if len(exchange_backend.requests) != 2 or len(verified_sessions) != 1:
        raise AssertionError


async def test_rejected_exchange_surfaces_retryable_error(
    machine: OTPEntryStateMachine,
    exchange_backend: FakeExchangeBackend,
) -> None:
    """Ensure an unsuccessful backend reply fails only the exchange stage."""
    exchange_backend.responses.append(
        ExchangeResponse(success=False, message="Invalid Firebase token"),
    )
    _ = await machine.start(PHONE)
    _ = machine.paste("123456")

    view = await machine.submit()

    if view.status != "failed(exchanging)" or view.error_class != ErrorClass.UNKNOWN:
        raise AssertionError
    view = await machine.retry_exchange()
    if view.status != AttemptStatus.COMPLETE.value:
        raise AssertionError


async def test_terminal_confirm_failure_redirects_after_delay(
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
    fallbacks: list[object],
    clock: ManualClock,
) -> None:
    """Ensure a misconfigured credential redirects to the alternate channel."""
    phone_provider.confirm_responses.append(
        ProviderError("INVALID_APP_CREDENTIAL", "INVALID_APP_CREDENTIAL"),
    )
    _ = await machine.start(PHONE)
    _ = machine.paste("123456")

    view = await machine.submit()

    if view.status != "failed(verifying)":
        raise AssertionError
    if not view.redirect_pending or view.redirect_delay_ms != 10000:
        raise AssertionError
    if not view.remediation:
        raise AssertionError

    await clock.advance(9)
    if fallbacks:
        raise AssertionError
    await clock.advance(1)
    await machine.navigation.wait()
    if fallbacks != [ErrorClass.INVALID_CREDENTIAL]:
        raise AssertionError


async def test_unconfigured_provider_redirects_and_blocks_resend(
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
    fallbacks: list[object],
    clock: ManualClock,
) -> None:
    """Ensure a send that cannot succeed schedules one redirect."""
    phone_provider.dispatch_responses.append(
        ProviderError("CONFIGURATION_NOT_FOUND", "CONFIGURATION_NOT_FOUND"),
    )

    view = await machine.start(PHONE)

    if view.status != "failed(sending)" or view.redirect_delay_ms != 2000:
        raise AssertionError
    if view.can_resend:
        raise AssertionError
    _ = await machine.resend()
    if len(phone_provider.dispatched) != 1:
        raise AssertionError

    await clock.advance(2)
    await machine.navigation.wait()
    if fallbacks != [ErrorClass.NOT_CONFIGURED]:
        raise AssertionError


async def test_rate_limited_send_shows_long_cooldown(
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
) -> None:
    """Ensure rate limiting disables resend without redirecting."""
    phone_provider.dispatch_responses.append(
        ProviderError("auth/too-many-requests", "too many requests"),
    )

    view = await machine.start(PHONE)

    if view.error_class != ErrorClass.RATE_LIMITED.value:
        raise AssertionError
    if view.cooldown_seconds_remaining != 300 or view.can_resend:
        raise AssertionError
    if view.redirect_pending:
        raise AssertionError
    machine.close()


async def test_entry_is_locked_after_completion(
    machine: OTPEntryStateMachine,
) -> None:
    """Ensure typing has no effect once the session is stored."""
    _ = await machine.start(PHONE)
    _ = machine.paste("123456")
    _ = await machine.submit()

    view = machine.enter_digit(0, "9")
    view = machine.paste("999999")

    if any(view.digits):
        raise AssertionError


async def test_reset_keeps_cooldown_and_ignores_early_start(
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
) -> None:
    """Ensure reset starts a fresh attempt without bypassing the cooldown."""
    first = await machine.start(PHONE)

    view = machine.reset()

    if view.attempt_id == first.attempt_id:
        raise AssertionError
    if view.status != AttemptStatus.IDLE.value or view.phone_display is not None:
        raise AssertionError
    if view.cooldown_seconds_remaining != 30:
        raise AssertionError
    _ = await machine.start(PHONE)
    if len(phone_provider.dispatched) != 1:
        raise AssertionError
    machine.close()


async def test_reset_during_confirmation_discards_late_result(
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
    exchange_backend: FakeExchangeBackend,
    verified_sessions: list[object],
) -> None:
    """Ensure a confirmation finishing after reset cannot touch the new attempt."""
    gate = asyncio.Event()

    async def _slow_confirm(session_handle: str, code: str) -> object:
        phone_provider.confirmed.append((session_handle, code))
        _ = await gate.wait()
        return {"assertion": code}

    phone_provider.confirm_code = _slow_confirm  # type: ignore[method-assign]
    _ = await machine.start(PHONE)
    _ = machine.paste("123456")

    submit_task = asyncio.create_task(machine.submit())
    for _ in range(5):
        await asyncio.sleep(0)
    if machine.attempt.status is not AttemptStatus.VERIFYING:
        raise AssertionError
    fresh = machine.reset()
    gate.set()
    _ = await submit_task

    if machine.attempt.attempt_id != fresh.attempt_id:
        raise AssertionError
    if machine.attempt.status is not AttemptStatus.IDLE:
        raise AssertionError
    if exchange_backend.requests or verified_sessions:
        raise AssertionError
    machine.close()


async def test_close_is_idempotent_and_freezes_the_view(
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
) -> None:
    """Ensure teardown stops timers and later actions do nothing."""
    _ = await machine.start(PHONE)
    _ = machine.paste("123456")

    machine.close()
    machine.close()
    view = await machine.submit()

    if not machine.closed:
        raise AssertionError
    if view.cooldown_seconds_remaining != 0:
        raise AssertionError
    if view.can_submit or view.can_resend:
        raise AssertionError
    if phone_provider.call_counts.get("confirm_code"):
        raise AssertionError


async def test_resend_while_verifying_is_ignored(
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
    exchange_backend: FakeExchangeBackend,
    clock: ManualClock,
) -> None:
    """Ensure a pending confirmation cannot be replaced by a new dispatch."""
    gate = asyncio.Event()
    original_confirm = phone_provider.confirm_code

    async def _slow_confirm(session_handle: str, code: str) -> object:
        _ = await gate.wait()
        return await original_confirm(session_handle, code)

    phone_provider.confirm_code = _slow_confirm  # type: ignore[method-assign]
    _ = await machine.start(PHONE)
    _ = machine.paste("123456")
    await clock.advance(31)

    submit_task = asyncio.create_task(machine.submit())
    for _ in range(5):
        await asyncio.sleep(0)
    view = await machine.resend()

    if view.status != AttemptStatus.VERIFYING.value or view.can_resend:
        raise AssertionError
    if len(phone_provider.dispatched) != 1:
        raise AssertionError
    gate.set()
    view = await submit_task
    if view.status != AttemptStatus.COMPLETE.value:
        raise AssertionError
    if len(exchange_backend.requests) != 1:
        raise AssertionError
    machine.close()


async def test_resend_after_completion_is_ignored(
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
    clock: ManualClock,
) -> None:
    """Ensure a completed attempt never sends another code."""
    _ = await machine.start(PHONE)
    _ = machine.paste("123456")
    _ = await machine.submit()
    await clock.advance(31)

    view = await machine.resend()

    if view.status != AttemptStatus.COMPLETE.value:
        raise AssertionError
    if len(phone_provider.dispatched) != 1:
        raise AssertionError
    machine.close()


async def test_confirmation_for_replaced_session_handle_is_discarded(
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
    exchange_backend: FakeExchangeBackend,
    verified_sessions: list[object],
) -> None:
    """Ensure a late success for an older dispatch leaves the new one alone."""
    gate = asyncio.Event()

    async def _slow_confirm(session_handle: str, code: str) -> object:
        _ = await gate.wait()
        return {"assertion": code, "session": session_handle}

    phone_provider.confirm_code = _slow_confirm  # type: ignore[method-assign]
    _ = await machine.start(PHONE)
    _ = machine.paste("123456")

    submit_task = asyncio.create_task(machine.submit())
    for _ in range(5):
        await asyncio.sleep(0)
    attempt = machine.attempt
    phone_number = attempt.phone_number
    if phone_number is None:
        raise AssertionError
    attempt.begin_sending(phone_number)
    attempt.code_dispatched("session-handle-2")
    gate.set()
    view = await submit_task

    if view.status != AttemptStatus.AWAITING_CODE.value:
        raise AssertionError
    if attempt.session_handle != "session-handle-2":
        raise AssertionError
    if exchange_backend.requests or verified_sessions:
        raise AssertionError
    machine.close()


async def test_failure_for_replaced_session_handle_is_discarded(
    machine: OTPEntryStateMachine,
    phone_provider: FakePhoneAuthProvider,
) -> None:
    """Ensure a late rejection for an older dispatch reports no error."""
    gate = asyncio.Event()

    async def _slow_reject(session_handle: str, code: str) -> object:
        _ = await gate.wait()
        raise ProviderError("INVALID_CODE", f"{session_handle}:{code}")

    phone_provider.confirm_code = _slow_reject  # type: ignore[method-assign]
    _ = await machine.start(PHONE)
    _ = machine.paste("123456")

    submit_task = asyncio.create_task(machine.submit())
    for _ in range(5):
        await asyncio.sleep(0)
    attempt = machine.attempt
    phone_number = attempt.phone_number
    if phone_number is None:
        raise AssertionError
    attempt.begin_sending(phone_number)
    attempt.code_dispatched("session-handle-2")
    gate.set()
    view = await submit_task

    if view.status != AttemptStatus.AWAITING_CODE.value:
        raise AssertionError
    if view.error_class is not None or attempt.last_error is not None:
        raise AssertionError
    if attempt.session_handle != "session-handle-2":
        raise AssertionError
    machine.close()
