"""Identity Toolkit REST client for phone code dispatch and confirmation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, cast

from phoneverify.verification.errors import ProviderError

if TYPE_CHECKING:
    from collections.abc import Mapping

    import httpx

logger = logging.getLogger(__name__)

SEND_VERIFICATION_CODE_PATH: Final = "accounts:sendVerificationCode"
SIGN_IN_WITH_PHONE_NUMBER_PATH: Final = "accounts:signInWithPhoneNumber"
_NOT_CONFIGURED_CODE: Final = "CONFIGURATION_NOT_FOUND"


@dataclass(frozen=True, slots=True)
class ProviderAssertion:
    """Identity assertion returned after a confirmed phone code."""

    id_token: str
    refresh_token: str | None
    local_id: str | None
    phone_number: str | None
    is_new_user: bool


class ProviderResponseError(ProviderError):
    """Raised when a provider reply is missing a required field."""

    @classmethod
    def missing_field(cls, field_name: str) -> ProviderResponseError:
        """Build deterministic error naming the absent response field."""
        return cls(None, f"Provider response missing '{field_name}'.")


class IdentityToolkitClient:
    """Send and confirm phone codes against an Identity Toolkit style API."""

    _api_key: str | None
    _base_url: str
    _http_client: httpx.AsyncClient

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        http_client: httpx.AsyncClient,
    ) -> None:
        """Bind API credentials and the shared HTTP client."""
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._http_client = http_client

    @property
    def configured(self) -> bool:
        """Return True when an API key is available."""
        return bool(self._api_key)

    async def dispatch_code(self, phone_number: str, challenge_token: str) -> str:
        """Ask the provider to text a code and return the session handle."""
        payload = await self._post(
            SEND_VERIFICATION_CODE_PATH,
            {"phoneNumber": phone_number, "recaptchaToken": challenge_token},
        )
        return _require_str(payload, "sessionInfo")

    async def confirm_code(self, session_handle: str, code: str) -> ProviderAssertion:
        """Confirm the typed code for a dispatch session."""
        payload = await self._post(
            SIGN_IN_WITH_PHONE_NUMBER_PATH,
            {"sessionInfo": session_handle, "code": code},
        )
        return ProviderAssertion(
            id_token=_require_str(payload, "idToken"),
            refresh_token=_optional_str(payload, "refreshToken"),
            local_id=_optional_str(payload, "localId"),
            phone_number=_optional_str(payload, "phoneNumber"),
            is_new_user=payload.get("isNewUser") is True,
        )

    async def get_assertion_token(self, assertion: object) -> str:
        """Return the id token that proves a confirmed assertion."""
        if not isinstance(assertion, ProviderAssertion):
            raise ProviderResponseError.missing_field("idToken")
        return assertion.id_token

    async def _post(
        self,
        path: str,
        body: Mapping[str, object],
    ) -> dict[str, object]:
        if not self._api_key:
            raise ProviderError(
                _NOT_CONFIGURED_CODE,
                "Identity provider API key is not configured.",
            )
        response = await self._http_client.post(
            f"{self._base_url}/{path}",
            params={"key": self._api_key},
            json=dict(body),
        )
        payload = _decode_json(response)
        if response.is_success:
            if payload is None:
                _ = response.raise_for_status()
                raise ProviderResponseError.missing_field("body")
            return payload

        provider_error = _provider_error(payload)
        if provider_error is not None:
            logger.info(
                "Identity provider rejected request",
                extra={"path": path, "status_code": response.status_code},
            )
            raise provider_error
        _ = response.raise_for_status()
        raise ProviderError(None, f"HTTP {response.status_code}")


def _decode_json(response: httpx.Response) -> dict[str, object] | None:
    try:
        decoded = cast("object", response.json())
    except ValueError:
        return None
    if not isinstance(decoded, dict):
        return None
    return cast("dict[str, object]", decoded)


def _provider_error(payload: dict[str, object] | None) -> ProviderError | None:
    """Convert `{"error": {"message": "CODE : detail"}}` into a ProviderError."""
    if payload is None:
        return None
    error_obj = payload.get("error")
    if not isinstance(error_obj, dict):
        return None
    message_obj = cast("dict[str, object]", error_obj).get("message")
    if not isinstance(message_obj, str) or not message_obj.strip():
        return None
    code = message_obj.split(":", maxsplit=1)[0].strip()
    return ProviderError(code, message_obj)


def _require_str(payload: Mapping[str, object], field_name: str) -> str:
    value = payload.get(field_name)
    if not isinstance(value, str) or not value:
        raise ProviderResponseError.missing_field(field_name)
    return value


def _optional_str(payload: Mapping[str, object], field_name: str) -> str | None:
    value = payload.get(field_name)
    return value if isinstance(value, str) and value else None
