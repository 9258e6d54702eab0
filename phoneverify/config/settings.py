"""Typed service settings loaded from static environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

LogLevel = str

ENV_DB_PATH = "PV_DB_PATH"
ENV_LOG_LEVEL = "PV_LOG_LEVEL"
ENV_PROVIDER_API_KEY = "PV_PROVIDER_API_KEY"
ENV_PROVIDER_BASE_URL = "PV_PROVIDER_BASE_URL"
ENV_BACKEND_BASE_URL = "PV_BACKEND_BASE_URL"
ENV_DEFAULT_COUNTRY_CODE = "PV_DEFAULT_COUNTRY_CODE"
ENV_RESEND_COOLDOWN_SECONDS = "PV_RESEND_COOLDOWN_SECONDS"
ENV_SESSION_SECRET_FILE = "PV_SESSION_SECRET_FILE"  # noqa: S105
ENV_HTTP_TIMEOUT_SECONDS = "PV_HTTP_TIMEOUT_SECONDS"
ENV_VIEW_IDLE_TTL_SECONDS = "PV_VIEW_IDLE_TTL_SECONDS"

DEFAULT_DB_PATH = Path("/data/phoneverify.db")
DEFAULT_LOG_LEVEL: LogLevel = "INFO"
DEFAULT_PROVIDER_BASE_URL = "https://identitytoolkit.googleapis.com/v1"
DEFAULT_BACKEND_BASE_URL = "http://127.0.0.1:5000/api"
DEFAULT_COUNTRY_CODE = "+1"
DEFAULT_RESEND_COOLDOWN_SECONDS = 30
DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0
DEFAULT_VIEW_IDLE_TTL_SECONDS = 900
_MAX_COUNTRY_CODE_DIGITS = 3

VALID_LOG_LEVELS: frozenset[LogLevel] = frozenset(
    {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"},
)


class SettingsValidationError(ValueError):
    """Raised when static settings env vars contain invalid values."""

    @classmethod
    def for_empty_value(cls, env_var: str) -> SettingsValidationError:
        """Build error for empty non-optional env var values."""
        message = f"Invalid {env_var}: value cannot be empty."
        return cls(message)

    @classmethod
    def for_invalid_choice(
        cls,
        env_var: str,
        value: str,
        allowed_values: str,
    ) -> SettingsValidationError:
        """Build error for enum-like env vars with fixed allowlists."""
        message = f"Invalid {env_var}: {value!r}. Allowed values: {allowed_values}."
        return cls(message)

    @classmethod
    def for_invalid_number(cls, env_var: str, value: str) -> SettingsValidationError:
        """Build error for numeric env vars that do not parse as positive values."""
        message = f"Invalid {env_var}: {value!r}. Expected a positive number."
        return cls(message)

    @classmethod
    def for_invalid_country_code(
        cls,
        env_var: str,
        value: str,
    ) -> SettingsValidationError:
        """Build error for country calling codes outside `+1`..`+999`."""
        message = f"Invalid {env_var}: {value!r}. Expected a calling code like +1."
        return cls(message)


@dataclass(frozen=True, slots=True)
class AppSettings:
    """Resolved static configuration values for process startup."""

    db_path: Path
    log_level: LogLevel
    provider_api_key: str | None
    provider_base_url: str
    backend_base_url: str
    default_country_code: str
    resend_cooldown_seconds: int
    session_secret_file: Path | None
    http_timeout_seconds: float
    view_idle_ttl_seconds: int


def load_settings(environ: Mapping[str, str] | None = None) -> AppSettings:
    """Load and validate static settings from process environment."""
    env = os.environ if environ is None else environ

    return AppSettings(
        db_path=_read_db_path(env),
        log_level=_read_log_level(env),
        provider_api_key=_read_optional_str(env, ENV_PROVIDER_API_KEY),
        provider_base_url=_read_url(
            env,
            ENV_PROVIDER_BASE_URL,
            DEFAULT_PROVIDER_BASE_URL,
        ),
        backend_base_url=_read_url(env, ENV_BACKEND_BASE_URL, DEFAULT_BACKEND_BASE_URL),
        default_country_code=_read_country_code(env),
        resend_cooldown_seconds=_read_positive_int(
            env,
            ENV_RESEND_COOLDOWN_SECONDS,
            DEFAULT_RESEND_COOLDOWN_SECONDS,
        ),
        session_secret_file=_read_optional_path(env, ENV_SESSION_SECRET_FILE),
        http_timeout_seconds=_read_positive_float(
            env,
            ENV_HTTP_TIMEOUT_SECONDS,
            DEFAULT_HTTP_TIMEOUT_SECONDS,
        ),
        view_idle_ttl_seconds=_read_positive_int(
            env,
            ENV_VIEW_IDLE_TTL_SECONDS,
            DEFAULT_VIEW_IDLE_TTL_SECONDS,
        ),
    )


def _read_db_path(environ: Mapping[str, str]) -> Path:
    raw = environ.get(ENV_DB_PATH)
    if raw is None:
        return DEFAULT_DB_PATH
    value = raw.strip()
    if not value:
        raise SettingsValidationError.for_empty_value(ENV_DB_PATH)
    return Path(value).expanduser()


def _read_log_level(environ: Mapping[str, str]) -> LogLevel:
    raw = environ.get(ENV_LOG_LEVEL)
    if raw is None:
        return DEFAULT_LOG_LEVEL
    value = raw.strip().upper()
    if value in VALID_LOG_LEVELS:
        return value
    allowed = ", ".join(sorted(VALID_LOG_LEVELS))
    raise SettingsValidationError.for_invalid_choice(ENV_LOG_LEVEL, raw, allowed)


def _read_optional_str(environ: Mapping[str, str], env_var: str) -> str | None:
    raw = environ.get(env_var)
    if raw is None:
        return None
    value = raw.strip()
    return value or None


def _read_url(environ: Mapping[str, str], env_var: str, default: str) -> str:
    raw = environ.get(env_var)
    if raw is None:
        return default
    value = raw.strip()
    if not value:
        raise SettingsValidationError.for_empty_value(env_var)
    return value.rstrip("/")


def _read_country_code(environ: Mapping[str, str]) -> str:
    raw = environ.get(ENV_DEFAULT_COUNTRY_CODE)
    if raw is None:
        return DEFAULT_COUNTRY_CODE
    value = raw.strip()
    digits = value.removeprefix("+")
    if (
        not digits.isascii()
        or not digits.isdigit()
        or len(digits) > _MAX_COUNTRY_CODE_DIGITS
        or digits.startswith("0")
    ):
        raise SettingsValidationError.for_invalid_country_code(
            ENV_DEFAULT_COUNTRY_CODE,
            raw,
        )
    return f"+{digits}"


def _read_positive_int(
    environ: Mapping[str, str],
    env_var: str,
    default: int,
) -> int:
    raw = environ.get(env_var)
    if raw is None:
        return default
    value = raw.strip()
    if not value.isdigit() or int(value) <= 0:
        raise SettingsValidationError.for_invalid_number(env_var, raw)
    return int(value)


def _read_positive_float(
    environ: Mapping[str, str],
    env_var: str,
    default: float,
) -> float:
    raw = environ.get(env_var)
    if raw is None:
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise SettingsValidationError.for_invalid_number(env_var, raw) from exc
    if value <= 0:
        raise SettingsValidationError.for_invalid_number(env_var, raw)
    return value


def _read_optional_path(environ: Mapping[str, str], env_var: str) -> Path | None:
    raw = environ.get(env_var)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    return Path(value).expanduser()
