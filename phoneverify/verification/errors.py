"""Closed error taxonomy for provider, network and local verification failures.

Every failure raised anywhere in the verification flow is funneled through
:func:`classify_exception` before it reaches view state. Only this module looks
at raw provider codes; everything else reasons about :class:`ErrorClass`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

import httpx


class ErrorClass(StrEnum):
    """Behavior-driving classification of every verification failure."""

    NOT_CONFIGURED = "not_configured"
    ALREADY_RENDERED = "already_rendered"
    RATE_LIMITED = "rate_limited"
    INVALID_CREDENTIAL = "invalid_credential"
    BILLING_REQUIRED = "billing_required"
    INVALID_PHONE_FORMAT = "invalid_phone_format"
    NETWORK_ERROR = "network_error"
    INVALID_CODE = "invalid_code"
    CODE_EXPIRED = "code_expired"
    SESSION_EXPIRED = "session_expired"
    UNKNOWN = "unknown"


class FallbackAction(StrEnum):
    """What the view does after surfacing a classified error."""

    SILENT_RETRY = "silent_retry"
    SURFACE = "surface"
    INLINE_FIELD_ERROR = "inline_field_error"
    CLEAR_CODE = "clear_code"
    REQUIRE_RESEND = "require_resend"
    REDIRECT = "redirect"


@dataclass(frozen=True, slots=True)
class ErrorPolicy:
    """Recommended handling for one error class."""

    retryable: bool
    fallback_action: FallbackAction
    cooldown_seconds: int = 0
    redirect_delay_ms: int | None = None
    requires_resend: bool = False
    clears_code: bool = False
    silent: bool = False

    @property
    def terminal(self) -> bool:
        """Return True when this channel cannot succeed and the view must leave."""
        return self.redirect_delay_ms is not None


RATE_LIMIT_BACKOFF_SECONDS: Final = 300

_POLICIES: Final[dict[ErrorClass, ErrorPolicy]] = {
    ErrorClass.NOT_CONFIGURED: ErrorPolicy(
        retryable=False,
        fallback_action=FallbackAction.REDIRECT,
        redirect_delay_ms=2000,
    ),
    ErrorClass.ALREADY_RENDERED: ErrorPolicy(
        retryable=True,
        fallback_action=FallbackAction.SILENT_RETRY,
        silent=True,
    ),
    ErrorClass.RATE_LIMITED: ErrorPolicy(
        retryable=True,
        fallback_action=FallbackAction.SURFACE,
        cooldown_seconds=RATE_LIMIT_BACKOFF_SECONDS,
    ),
    ErrorClass.INVALID_CREDENTIAL: ErrorPolicy(
        retryable=False,
        fallback_action=FallbackAction.REDIRECT,
        redirect_delay_ms=10000,
    ),
    ErrorClass.BILLING_REQUIRED: ErrorPolicy(
        retryable=False,
        fallback_action=FallbackAction.REDIRECT,
        redirect_delay_ms=3000,
    ),
    ErrorClass.INVALID_PHONE_FORMAT: ErrorPolicy(
        retryable=True,
        fallback_action=FallbackAction.INLINE_FIELD_ERROR,
    ),
    ErrorClass.NETWORK_ERROR: ErrorPolicy(
        retryable=True,
        fallback_action=FallbackAction.SURFACE,
    ),
    ErrorClass.INVALID_CODE: ErrorPolicy(
        retryable=True,
        fallback_action=FallbackAction.CLEAR_CODE,
        clears_code=True,
    ),
    ErrorClass.CODE_EXPIRED: ErrorPolicy(
        retryable=True,
        fallback_action=FallbackAction.REQUIRE_RESEND,
        requires_resend=True,
        clears_code=True,
    ),
    ErrorClass.SESSION_EXPIRED: ErrorPolicy(
        retryable=True,
        fallback_action=FallbackAction.REQUIRE_RESEND,
        requires_resend=True,
        clears_code=True,
    ),
    ErrorClass.UNKNOWN: ErrorPolicy(
        retryable=True,
        fallback_action=FallbackAction.SURFACE,
    ),
}

_MESSAGES: Final[dict[ErrorClass, str]] = {
    ErrorClass.NOT_CONFIGURED: (
        "SMS verification is not available right now. "
        "Redirecting you to email verification."
    ),
    ErrorClass.ALREADY_RENDERED: "",
    ErrorClass.RATE_LIMITED: (
        "Too many attempts. Please wait a few minutes before trying again."
    ),
    ErrorClass.INVALID_CREDENTIAL: (
        "SMS verification is misconfigured for this app. "
        "Redirecting you to email verification."
    ),
    ErrorClass.BILLING_REQUIRED: (
        "SMS verification is temporarily unavailable. "
        "Redirecting you to email verification."
    ),
    ErrorClass.INVALID_PHONE_FORMAT: (
        "Invalid phone number format. "
        "Please include the country code (e.g. +1234567890)."
    ),
    ErrorClass.NETWORK_ERROR: (
        "Network error. Please check your connection and try again."
    ),
    ErrorClass.INVALID_CODE: (
        "Invalid verification code. Please check the code and try again."
    ),
    ErrorClass.CODE_EXPIRED: (
        "Verification code has expired. Please request a new code."
    ),
    ErrorClass.SESSION_EXPIRED: (
        "Verification session expired. Please request a new code."
    ),
    ErrorClass.UNKNOWN: "Something went wrong. Please try again.",
}

_REMEDIATION: Final[dict[ErrorClass, tuple[str, ...]]] = {
    ErrorClass.INVALID_CREDENTIAL: (
        "Enable the Phone sign-in method for the identity provider project.",
        "Enable the identity toolkit API for the project that owns the API key.",
        "Remove API key restrictions that block identity toolkit requests.",
        "Add the serving domain to the provider's authorized domains.",
        "Confirm the configured API key matches the provider project.",
        "Allow a few minutes for configuration changes to propagate, then retry.",
    ),
    ErrorClass.NOT_CONFIGURED: (
        "Set PV_PROVIDER_API_KEY and enable phone sign-in for the provider project.",
    ),
    ErrorClass.BILLING_REQUIRED: (
        "Enable billing on the provider project to send SMS codes.",
    ),
}

# Keys are normalized: lowercase, "auth/" prefix dropped, "_" replaced with "-".
_CODE_TABLE: Final[dict[str, ErrorClass]] = {
    "configuration-not-found": ErrorClass.NOT_CONFIGURED,
    "sms-verification-not-configured": ErrorClass.NOT_CONFIGURED,
    "operation-not-allowed": ErrorClass.NOT_CONFIGURED,
    "already-rendered": ErrorClass.ALREADY_RENDERED,
    "too-many-requests": ErrorClass.RATE_LIMITED,
    "too-many-attempts-try-later": ErrorClass.RATE_LIMITED,
    "quota-exceeded": ErrorClass.RATE_LIMITED,
    "invalid-app-credential": ErrorClass.INVALID_CREDENTIAL,
    "app-not-authorized": ErrorClass.INVALID_CREDENTIAL,
    "invalid-api-key": ErrorClass.INVALID_CREDENTIAL,
    "api-key-not-valid": ErrorClass.INVALID_CREDENTIAL,
    "argument-error": ErrorClass.INVALID_CREDENTIAL,
    "billing-not-enabled": ErrorClass.BILLING_REQUIRED,
    "invalid-phone-number": ErrorClass.INVALID_PHONE_FORMAT,
    "missing-phone-number": ErrorClass.INVALID_PHONE_FORMAT,
    "network-request-failed": ErrorClass.NETWORK_ERROR,
    "timeout": ErrorClass.NETWORK_ERROR,
    "invalid-verification-code": ErrorClass.INVALID_CODE,
    "invalid-code": ErrorClass.INVALID_CODE,
    "missing-verification-code": ErrorClass.INVALID_CODE,
    "missing-code": ErrorClass.INVALID_CODE,
    "code-expired": ErrorClass.CODE_EXPIRED,
    "session-expired": ErrorClass.SESSION_EXPIRED,
    "invalid-session-info": ErrorClass.SESSION_EXPIRED,
    "missing-session-info": ErrorClass.SESSION_EXPIRED,
    "missing-verification-id": ErrorClass.SESSION_EXPIRED,
}

_MESSAGE_MARKERS: Final[tuple[tuple[str, ErrorClass], ...]] = (
    ("configuration_not_found", ErrorClass.NOT_CONFIGURED),
    ("sms_verification_not_configured", ErrorClass.NOT_CONFIGURED),
    ("has already been rendered", ErrorClass.ALREADY_RENDERED),
    ("billing_not_enabled", ErrorClass.BILLING_REQUIRED),
    ("too_many_attempts", ErrorClass.RATE_LIMITED),
)

_CODE_SEPARATOR = re.compile(r"\s*:\s*")
_HTTP_TOO_MANY_REQUESTS = 429


class ProviderError(Exception):
    """Raw failure reported by the identity provider or challenge widget."""

    code: str | None
    message: str

    def __init__(self, code: str | None, message: str = "") -> None:
        """Store the raw provider code and message for classification."""
        super().__init__(message or code or "provider error")
        self.code = code
        self.message = message


class ClassifiedError(Exception):
    """Failure mapped into the closed taxonomy, ready for view state."""

    error_class: ErrorClass
    raw_code: str | None
    raw_message: str
    _user_message: str | None

    def __init__(
        self,
        error_class: ErrorClass,
        *,
        raw_code: str | None = None,
        raw_message: str = "",
        user_message: str | None = None,
    ) -> None:
        """Build a classified error with diagnostic raw details."""
        super().__init__(user_message or message_for(error_class) or error_class.value)
        self.error_class = error_class
        self.raw_code = raw_code
        self.raw_message = raw_message
        self._user_message = user_message

    @classmethod
    def local(cls, error_class: ErrorClass, user_message: str) -> ClassifiedError:
        """Build error for checks that fail before any network call."""
        return cls(error_class, raw_code="local", user_message=user_message)

    @property
    def user_message(self) -> str:
        """Return the actionable text safe to show to the end user."""
        if self.policy.silent:
            return ""
        if self._user_message is not None:
            return self._user_message
        return message_for(self.error_class)

    @property
    def policy(self) -> ErrorPolicy:
        """Return the handling policy for this error's class."""
        return policy_for(self.error_class)

    def diagnostic(self) -> dict[str, object]:
        """Return raw details for logs and optional diagnostic display."""
        return {
            "error_class": self.error_class.value,
            "raw_code": self.raw_code,
            "raw_message": self.raw_message,
        }


def normalize_error_code(raw_code: str | None) -> str:
    """Reduce SDK-style and REST-style provider codes to one lookup key."""
    if not raw_code:
        return ""
    head = _CODE_SEPARATOR.split(raw_code.strip(), maxsplit=1)[0]
    key = head.lower().removeprefix("auth/")
    return key.replace("_", "-")


def classify(raw_code: str | None, raw_message: str | None = None) -> ErrorClass:
    """Map a raw provider code/message pair to exactly one error class."""
    error_class = _CODE_TABLE.get(normalize_error_code(raw_code))
    if error_class is not None:
        return error_class
    message = (raw_message or "").strip()
    error_class = _CODE_TABLE.get(normalize_error_code(message))
    if error_class is not None:
        return error_class
    lowered = message.lower()
    for marker, marker_class in _MESSAGE_MARKERS:
        if marker in lowered:
            return marker_class
    return ErrorClass.UNKNOWN


def classify_exception(error: BaseException) -> ClassifiedError:
    """Classify any exception raised at an async verification boundary."""
    if isinstance(error, ClassifiedError):
        return error
    if isinstance(error, ProviderError):
        return ClassifiedError(
            classify(error.code, error.message),
            raw_code=error.code,
            raw_message=error.message,
        )
    if isinstance(error, httpx.TransportError):
        return ClassifiedError(
            ErrorClass.NETWORK_ERROR,
            raw_code=type(error).__name__,
            raw_message=str(error),
        )
    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        error_class = (
            ErrorClass.RATE_LIMITED
            if status_code == _HTTP_TOO_MANY_REQUESTS
            else ErrorClass.UNKNOWN
        )
        return ClassifiedError(
            error_class,
            raw_code=str(status_code),
            raw_message=str(error),
        )
    return ClassifiedError(
        ErrorClass.UNKNOWN,
        raw_code=type(error).__name__,
        raw_message=str(error),
    )


def policy_for(error_class: ErrorClass) -> ErrorPolicy:
    """Return the handling policy for an error class."""
    return _POLICIES[error_class]


def message_for(error_class: ErrorClass) -> str:
    """Return the default user-facing message for an error class."""
    return _MESSAGES[error_class]


def remediation_for(error_class: ErrorClass) -> tuple[str, ...]:
    """Return operator remediation steps, empty for user-fixable classes."""
    return _REMEDIATION.get(error_class, ())
