"""Shared pytest fixtures for verification, storage and API tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from phoneverify.verification import (
    ChallengeLifecycleManager,
    OTPDispatchController,
    OTPEntryStateMachine,
    PageDocument,
    SessionExchangeController,
)
from phoneverify.verification.timers import NavigationScheduler
from tests.mocks.fakes import (
    FakeChallengeProvider,
    FakeExchangeBackend,
    FakePhoneAuthProvider,
    InMemorySessionStore,
    ManualClock,
)

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def clock() -> ManualClock:
    """Provide a manually advanced sleep primitive."""
    return ManualClock()


@pytest.fixture
def document() -> PageDocument:
    """Provide an empty page document."""
    return PageDocument()


@pytest.fixture
def challenge_provider() -> FakeChallengeProvider:
    """Provide a scripted challenge provider."""
    return FakeChallengeProvider()


@pytest.fixture
def phone_provider() -> FakePhoneAuthProvider:
    """Provide a scripted identity provider."""
    return FakePhoneAuthProvider()


@pytest.fixture
def exchange_backend() -> FakeExchangeBackend:
    """Provide a scripted exchange backend."""
    return FakeExchangeBackend()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    """Provide an in-memory session store."""
    return InMemorySessionStore()


@pytest.fixture
def challenge_manager(
    challenge_provider: FakeChallengeProvider,
    document: PageDocument,
) -> ChallengeLifecycleManager:
    """Provide a challenge manager bound to the fake provider."""
    return ChallengeLifecycleManager(provider=challenge_provider, document=document)


@pytest.fixture
def dispatcher(
    phone_provider: FakePhoneAuthProvider,
    challenge_manager: ChallengeLifecycleManager,
    clock: ManualClock,
) -> OTPDispatchController:
    """Provide a dispatch controller driven by the manual clock."""
    return OTPDispatchController(
        provider=phone_provider,
        challenge=challenge_manager,
        sleep=clock.sleep,
    )


@pytest.fixture
def verified_sessions() -> list[object]:
    """Collect sessions passed to the verified callback."""
    return []


@pytest.fixture
def fallbacks() -> list[object]:
    """Collect error classes passed to the fallback callback."""
    return []


@pytest.fixture
def machine(  # noqa: PLR0913
    dispatcher: OTPDispatchController,
    phone_provider: FakePhoneAuthProvider,
    exchange_backend: FakeExchangeBackend,
    session_store: InMemorySessionStore,
    clock: ManualClock,
    verified_sessions: list[object],
    fallbacks: list[object],
) -> OTPEntryStateMachine:
    """Provide an entry state machine wired to fakes."""
    return OTPEntryStateMachine(
        dispatcher=dispatcher,
        provider=phone_provider,
        exchange=SessionExchangeController(
            backend=exchange_backend,
            store=session_store,
        ),
        navigation=NavigationScheduler(sleep=clock.sleep),
        on_verified=verified_sessions.append,
        on_fallback=fallbacks.append,
    )


@pytest.fixture
def app_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point app settings at a per-test database and session secret."""
    db_path = tmp_path / "phoneverify-api.sqlite3"
    secret_file = tmp_path / "session.secret"
    _ = secret_file.write_text("api-test-session-secret\n", encoding="utf-8")
    monkeypatch.setenv("PV_DB_PATH", db_path.as_posix())
    monkeypatch.setenv("PV_SESSION_SECRET_FILE", secret_file.as_posix())
    monkeypatch.setenv("PV_PROVIDER_API_KEY", "test-api-key")
    monkeypatch.delenv("PV_DEFAULT_COUNTRY_CODE", raising=False)
    return db_path
