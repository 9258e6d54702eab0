"""Tests for static environment settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from phoneverify.config import SettingsValidationError, load_settings


def test_load_settings_uses_defaults_when_env_absent() -> None:
    """Ensure static settings resolve to default values when env vars are missing."""
    settings = load_settings({})

    if settings.db_path != Path("/data/phoneverify.db"):
        raise AssertionError
    if settings.log_level != "INFO":
        raise AssertionError
    if settings.provider_api_key is not None:
        raise AssertionError
    if settings.provider_base_url != "https://identitytoolkit.googleapis.com/v1":
        raise AssertionError
    if settings.backend_base_url != "http://127.0.0.1:5000/api":
        raise AssertionError
    if settings.default_country_code != "+1":
        raise AssertionError
    if settings.resend_cooldown_seconds != 30:  # noqa: PLR2004
        raise AssertionError
    if settings.session_secret_file is not None:
        raise AssertionError
    if settings.http_timeout_seconds != 10.0:  # noqa: PLR2004
        raise AssertionError
    if settings.view_idle_ttl_seconds != 900:  # noqa: PLR2004
        raise AssertionError


def test_load_settings_reads_overrides(tmp_path: Path) -> None:
    """Ensure explicit env values override defaults after normalization."""
    secret_file = tmp_path / "session.secret"
    settings = load_settings(
        {
            "PV_DB_PATH": (tmp_path / "pv.sqlite3").as_posix(),
            "PV_LOG_LEVEL": "debug",
            "PV_PROVIDER_API_KEY": "  key-123  ",
            "PV_BACKEND_BASE_URL": "https://api.example.test/api/",
            "PV_DEFAULT_COUNTRY_CODE": "44",
            "PV_RESEND_COOLDOWN_SECONDS": "45",
            "PV_SESSION_SECRET_FILE": secret_file.as_posix(),
            "PV_HTTP_TIMEOUT_SECONDS": "2.5",
            "PV_VIEW_IDLE_TTL_SECONDS": "120",
        },
    )

    if settings.db_path != tmp_path / "pv.sqlite3":
        raise AssertionError
    if settings.log_level != "DEBUG":
        raise AssertionError
    if settings.provider_api_key != "key-123":
        raise AssertionError
    if settings.backend_base_url != "https://api.example.test/api":
        raise AssertionError
    if settings.default_country_code != "+44":
        raise AssertionError
    if settings.resend_cooldown_seconds != 45:  # noqa: PLR2004
        raise AssertionError
    if settings.session_secret_file != secret_file:
        raise AssertionError
    if settings.http_timeout_seconds != 2.5:  # noqa: PLR2004
        raise AssertionError
    if settings.view_idle_ttl_seconds != 120:  # noqa: PLR2004
        raise AssertionError


def test_blank_provider_key_means_not_configured() -> None:
    """Ensure a whitespace-only API key is treated as absent."""
    settings = load_settings({"PV_PROVIDER_API_KEY": "   "})

    if settings.provider_api_key is not None:
        raise AssertionError


@pytest.mark.parametrize(
    ("env", "message"),
    [
        (
            {"PV_LOG_LEVEL": "verbose"},
            (
                "Invalid PV_LOG_LEVEL: 'verbose'. "
                "Allowed values: CRITICAL, DEBUG, ERROR, INFO, WARNING."
            ),
        ),
        (
            {"PV_RESEND_COOLDOWN_SECONDS": "0"},
            "Invalid PV_RESEND_COOLDOWN_SECONDS: '0'. Expected a positive number.",
        ),
        (
            {"PV_HTTP_TIMEOUT_SECONDS": "soon"},
            "Invalid PV_HTTP_TIMEOUT_SECONDS: 'soon'. Expected a positive number.",
        ),
        (
            {"PV_DEFAULT_COUNTRY_CODE": "+0"},
            "Invalid PV_DEFAULT_COUNTRY_CODE: '+0'. Expected a calling code like +1.",
        ),
        (
            {"PV_DEFAULT_COUNTRY_CODE": "+\u0664\u0664"},
            (
                "Invalid PV_DEFAULT_COUNTRY_CODE: '+\u0664\u0664'. "
                "Expected a calling code like +1."
            ),
        ),
        (
            {"PV_DB_PATH": "  "},
            "Invalid PV_DB_PATH: value cannot be empty.",
        ),
    ],
)
def test_load_settings_rejects_invalid_values(
    env: dict[str, str],
    message: str,
) -> None:
    """Ensure invalid values fail with deterministic validation text."""
    with pytest.raises(SettingsValidationError, match=message.replace("+", r"\+")):
        _ = load_settings(env)
