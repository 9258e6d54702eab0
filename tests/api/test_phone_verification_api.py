"""Tests for the phone verification view and session endpoints."""

from __future__ import annotations

from http import HTTPStatus
from typing import TYPE_CHECKING, cast

import pytest
from fastapi.testclient import TestClient

from phoneverify.api.app import create_app
from phoneverify.verification import ProviderError
from tests.mocks.fakes import FakeExchangeBackend, FakePhoneAuthProvider

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from fastapi import FastAPI

VIEWS_URL = "/verification/phone/views"
SESSION_URL = "/verification/phone/session"
PHONE = "+14155552671"


@pytest.fixture
def phone_provider_override() -> FakePhoneAuthProvider:
    """Provide the identity provider double installed on app state."""
    return FakePhoneAuthProvider()


@pytest.fixture
def app(
    app_env: Path,
    phone_provider_override: FakePhoneAuthProvider,
) -> FastAPI:
    """Create an app whose outbound clients are replaced by fakes."""
    _ = app_env
    application = create_app()
    application.state.identity_provider = phone_provider_override
    application.state.backend_client = FakeExchangeBackend()
    return application


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    """Run the app lifespan around each test."""
    with TestClient(app) as test_client:
        yield test_client


def _mount(client: TestClient, phone_number: str = PHONE) -> dict[str, object]:
    response = client.post(
        VIEWS_URL,
        json={"phone_number": phone_number, "challenge_token": "solved-token"},
    )
    if response.status_code != HTTPStatus.CREATED:
        raise AssertionError
    return cast("dict[str, object]", response.json())


def test_mount_sends_code_and_starts_cooldown(
    client: TestClient,
    phone_provider_override: FakePhoneAuthProvider,
) -> None:
    """Ensure mounting a view dispatches once with the supplied token."""
    view = _mount(client)

    if view["status"] != "awaiting_code":
        raise AssertionError
    if view["phone_display"] != "+14****2671":
        raise AssertionError
    cooldown = cast("int", view["cooldown_seconds_remaining"])
    if not 0 <= cooldown <= 30 or view["can_resend"] is not False:
        raise AssertionError
    if phone_provider_override.dispatched != [(PHONE, "solved-token")]:
        raise AssertionError


def test_full_flow_stores_session_without_exposing_token(client: TestClient) -> None:
    """Ensure paste and submit end in a verified view and a stored session."""
    view = _mount(client)
    view_url = f"{VIEWS_URL}/{view['view_id']}"

    pasted = client.post(f"{view_url}/paste", json={"text": "123 456"})
    if cast("dict[str, object]", pasted.json())["can_submit"] is not True:
        raise AssertionError
    submitted = client.post(f"{view_url}/submit")
    data = cast("dict[str, object]", submitted.json())
    if data["status"] != "complete" or data["verified"] is not True:
        raise AssertionError

    session = client.get(SESSION_URL)
    if session.status_code != HTTPStatus.OK:
        raise AssertionError
    summary = cast("dict[str, object]", session.json())
    if summary["phone_number"] != "+14****2671":
        raise AssertionError
    if summary["user"] != {"id": 7, "phone": PHONE}:
        raise AssertionError
    if "token" in summary or summary["created_at"] is None:
        raise AssertionError


def test_digit_and_backspace_endpoints_edit_slots(client: TestClient) -> None:
    """Ensure single-slot editing follows focus rules."""
    view_url = f"{VIEWS_URL}/{_mount(client)['view_id']}"

    typed = cast(
        "dict[str, object]",
        client.post(f"{view_url}/digits", json={"index": 0, "value": "7"}).json(),
    )
    if typed["digits"] != ["7", "", "", "", "", ""] or typed["focused_index"] != 1:
        raise AssertionError

    erased = cast(
        "dict[str, object]",
        client.post(f"{view_url}/backspace", json={"index": 0}).json(),
    )
    if erased["digits"] != ["", "", "", "", "", ""]:
        raise AssertionError


def test_digit_index_out_of_range_is_rejected(client: TestClient) -> None:
    """Ensure slot indexes are validated at the boundary."""
    view_url = f"{VIEWS_URL}/{_mount(client)['view_id']}"

    response = client.post(f"{view_url}/digits", json={"index": 6, "value": "1"})

    if response.status_code != HTTPStatus.UNPROCESSABLE_ENTITY:
        raise AssertionError


def test_incomplete_submit_reports_inline_error(client: TestClient) -> None:
    """Ensure submit with missing digits stays on the entry screen."""
    view_url = f"{VIEWS_URL}/{_mount(client)['view_id']}"
    _ = client.post(f"{view_url}/paste", json={"text": "12"})

    data = cast("dict[str, object]", client.post(f"{view_url}/submit").json())

    if data["error_message"] != "Please enter the complete 6-digit code.":
        raise AssertionError
    if data["status"] != "awaiting_code":
        raise AssertionError


def test_invalid_phone_is_reported_without_dispatch(
    client: TestClient,
    phone_provider_override: FakePhoneAuthProvider,
) -> None:
    """Ensure a malformed number never reaches the provider."""
    view = _mount(client, "call me maybe")

    if view["status"] != "idle" or view["error_class"] != "invalid_phone_format":
        raise AssertionError
    if phone_provider_override.dispatched:
        raise AssertionError


def test_resend_during_cooldown_is_ignored(
    client: TestClient,
    phone_provider_override: FakePhoneAuthProvider,
) -> None:
    """Ensure resend before the cooldown elapses sends nothing."""
    view_url = f"{VIEWS_URL}/{_mount(client)['view_id']}"

    response = client.post(f"{view_url}/resend", json={"challenge_token": "again"})

    if response.status_code != HTTPStatus.OK:
        raise AssertionError
    if len(phone_provider_override.dispatched) != 1:
        raise AssertionError


def test_unconfigured_provider_schedules_redirect(
    client: TestClient,
    phone_provider_override: FakePhoneAuthProvider,
) -> None:
    """Ensure a not-configured provider tells the shell a redirect is coming."""
    phone_provider_override.dispatch_responses.append(
        ProviderError("CONFIGURATION_NOT_FOUND", "CONFIGURATION_NOT_FOUND"),
    )

    view = _mount(client)

    if view["status"] != "failed(sending)":
        raise AssertionError
    if view["redirect_pending"] is not True or view["redirect_delay_ms"] != 2000:
        raise AssertionError
    if not view["error_message"]:
        raise AssertionError


def test_reset_returns_view_to_idle(client: TestClient) -> None:
    """Ensure reset discards the attempt but keeps the view mounted."""
    view = _mount(client)

    reset = client.post(f"{VIEWS_URL}/{view['view_id']}/reset")
    data = cast("dict[str, object]", reset.json())

    if data["status"] != "idle" or data["attempt_id"] == view["attempt_id"]:
        raise AssertionError
    if data["navigate_to"] is not None:
        raise AssertionError


def test_unmount_then_lookup_returns_not_found(client: TestClient) -> None:
    """Ensure unmounted views are gone and unknown ids are 404."""
    view_id = cast("str", _mount(client)["view_id"])

    deleted = client.delete(f"{VIEWS_URL}/{view_id}")
    missing = client.get(f"{VIEWS_URL}/{view_id}")
    missing_delete = client.delete(f"{VIEWS_URL}/{view_id}")

    if deleted.status_code != HTTPStatus.NO_CONTENT:
        raise AssertionError
    if missing.status_code != HTTPStatus.NOT_FOUND:
        raise AssertionError
    detail = cast("dict[str, object]", missing.json())["detail"]
    if detail != f"Verification view not found for view_id='{view_id}'.":
        raise AssertionError
    if missing_delete.status_code != HTTPStatus.NOT_FOUND:
        raise AssertionError


def test_session_endpoints_without_session(client: TestClient) -> None:
    """Ensure reading or clearing a missing session is 404."""
    if client.get(SESSION_URL).status_code != HTTPStatus.NOT_FOUND:
        raise AssertionError
    if client.delete(SESSION_URL).status_code != HTTPStatus.NOT_FOUND:
        raise AssertionError


def test_clear_session_signs_out(client: TestClient) -> None:
    """Ensure deleting the session removes it."""
    view_url = f"{VIEWS_URL}/{_mount(client)['view_id']}"
    _ = client.post(f"{view_url}/paste", json={"text": "123456"})
    _ = client.post(f"{view_url}/submit")

    deleted = client.delete(SESSION_URL)

    if deleted.status_code != HTTPStatus.NO_CONTENT:
        raise AssertionError
    if client.get(SESSION_URL).status_code != HTTPStatus.NOT_FOUND:
        raise AssertionError
