"""Tests for the /health endpoint."""

from __future__ import annotations

from http import HTTPStatus
from typing import TYPE_CHECKING, cast

from fastapi.testclient import TestClient

from phoneverify.api.app import create_app
from tests.mocks.fakes import FakeExchangeBackend, FakePhoneAuthProvider

if TYPE_CHECKING:
    from pathlib import Path

    import pytest


def test_get_health_returns_ok(app_env: Path) -> None:
    """Ensure GET /health returns 200 and deterministic schema."""
    _ = app_env
    app = create_app()
    with TestClient(app) as client:
        response = client.get("/health")

    if response.status_code != HTTPStatus.OK:
        raise AssertionError
    data = cast("dict[str, object]", response.json())
    if data["status"] != "ok":
        raise AssertionError
    if "timestamp" not in data:
        raise AssertionError
    if data["provider_configured"] is not True or data["mounted_views"] != 0:
        raise AssertionError


def test_health_counts_mounted_views(app_env: Path) -> None:
    """Ensure mounted verification views are reported."""
    _ = app_env
    app = create_app()
    app.state.identity_provider = FakePhoneAuthProvider()
    app.state.backend_client = FakeExchangeBackend()
    with TestClient(app) as client:
        _ = client.post(
            "/verification/phone/views",
            json={"phone_number": "+14155552671", "challenge_token": "solved"},
        )
        response = client.get("/health")

    data = cast("dict[str, object]", response.json())
    if data["mounted_views"] != 1:
        raise AssertionError


def test_health_reports_missing_provider_key(
    app_env: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Ensure an unconfigured provider is visible to operators."""
    _ = app_env
    monkeypatch.delenv("PV_PROVIDER_API_KEY")
    app = create_app()
    with TestClient(app) as client:
        response = client.get("/health")

    data = cast("dict[str, object]", response.json())
    if data["provider_configured"] is not False:
        raise AssertionError


def test_health_openapi_schema_is_explicit_and_stable(app_env: Path) -> None:
    """Ensure /health response schema is explicit in OpenAPI components."""
    _ = app_env
    app = create_app()
    with TestClient(app) as client:
        response = client.get("/openapi.json")
    if response.status_code != HTTPStatus.OK:
        raise AssertionError
    openapi = cast("dict[str, object]", response.json())

    paths = cast("dict[str, object]", openapi["paths"])
    health_path = cast("dict[str, object]", paths["/health"])
    get_operation = cast("dict[str, object]", health_path["get"])
    responses = cast("dict[str, object]", get_operation["responses"])
    ok_response = cast("dict[str, object]", responses["200"])
    content = cast("dict[str, object]", ok_response["content"])
    app_json = cast("dict[str, object]", content["application/json"])
    schema = cast("dict[str, object]", app_json["schema"])

    if schema.get("$ref") != "#/components/schemas/HealthResponse":
        raise AssertionError
