"""HTTP client for the application backend auth endpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Final, cast

from phoneverify.verification.exchange import ExchangeResponse

if TYPE_CHECKING:
    from collections.abc import Mapping

    import httpx

logger = logging.getLogger(__name__)

EXCHANGE_PATH: Final = "/auth/firebase-token-verify"
RESEND_OTP_PATH: Final = "/auth/resend-otp"
_HTTP_TOO_MANY_REQUESTS: Final = 429


class ResendMethod(StrEnum):
    """Channel used by the generic OTP resend endpoint."""

    EMAIL = "email"
    SMS = "sms"


@dataclass(frozen=True, slots=True)
class ResendResult:
    """Decoded reply of the generic OTP resend endpoint."""

    success: bool
    message: str | None = None


class BackendClient:
    """Call the session exchange and OTP resend endpoints."""

    _base_url: str
    _http_client: httpx.AsyncClient

    def __init__(self, *, base_url: str, http_client: httpx.AsyncClient) -> None:
        """Bind the backend base URL and the shared HTTP client."""
        self._base_url = base_url.rstrip("/")
        self._http_client = http_client

    async def exchange_session(
        self,
        *,
        assertion_token: str,
        phone_number: str,
        pending_signup_data: Mapping[str, object] | None = None,
    ) -> ExchangeResponse:
        """Trade a provider assertion token for an application session."""
        body: dict[str, object] = {
            "idToken": assertion_token,
            "phoneNumber": phone_number,
        }
        if pending_signup_data:
            body["signupData"] = dict(pending_signup_data)
        payload = await self._post_json(EXCHANGE_PATH, body)

        data_obj = payload.get("data")
        data = cast("dict[str, object]", data_obj) if isinstance(data_obj, dict) else {}
        token_obj = data.get("token")
        user_obj = data.get("user")
        return ExchangeResponse(
            success=payload.get("success") is True,
            token=token_obj if isinstance(token_obj, str) else None,
            user=(
                cast("dict[str, object]", user_obj)
                if isinstance(user_obj, dict)
                else None
            ),
            message=_message_of(payload),
        )

    async def resend_otp(
        self,
        identifier: str,
        method: ResendMethod = ResendMethod.EMAIL,
    ) -> ResendResult:
        """Ask the backend to resend a code through its own channel."""
        payload = await self._post_json(
            RESEND_OTP_PATH,
            {"identifier": identifier, "method": method.value},
        )
        return ResendResult(
            success=payload.get("success") is True,
            message=_message_of(payload),
        )

    async def _post_json(
        self,
        path: str,
        body: Mapping[str, object],
    ) -> dict[str, object]:
        response = await self._http_client.post(
            f"{self._base_url}{path}",
            json=dict(body),
        )
        if response.status_code == _HTTP_TOO_MANY_REQUESTS:
            _ = response.raise_for_status()
        try:
            decoded = cast("object", response.json())
        except ValueError:
            decoded = None
        if isinstance(decoded, dict):
            if not response.is_success:
                logger.info(
                    "Backend request rejected",
                    extra={"path": path, "status_code": response.status_code},
                )
            return cast("dict[str, object]", decoded)
        _ = response.raise_for_status()
        return {"success": False, "message": "Backend returned a non-JSON reply."}


def _message_of(payload: Mapping[str, object]) -> str | None:
    message = payload.get("message")
    return message if isinstance(message, str) else None
