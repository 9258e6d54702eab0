"""Challenge provider backed by tokens the browser already solved."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

from phoneverify.verification.challenge import CHALLENGE_NODE_PREFIX
from phoneverify.verification.errors import ProviderError

if TYPE_CHECKING:
    from collections.abc import Callable

    from phoneverify.verification.challenge import ChallengeMode
    from phoneverify.verification.document import PageContainer

logger = logging.getLogger(__name__)

_ALREADY_RENDERED_MESSAGE = "reCAPTCHA has already been rendered in this element"
_MISSING_TOKEN_MESSAGE = "No solved challenge token is available for this dispatch."


class PresolvedChallengeHandle:
    """Single-use widget handle that hands out one supplied challenge token."""

    _provider: PresolvedChallengeProvider
    _container: PageContainer
    _mode: ChallengeMode
    _on_expired: Callable[[], None]
    _widget_id: str | None
    _disposed: bool

    def __init__(
        self,
        *,
        provider: PresolvedChallengeProvider,
        container: PageContainer,
        mode: ChallengeMode,
        on_expired: Callable[[], None],
    ) -> None:
        """Bind the handle to its container and owning provider."""
        self._provider = provider
        self._container = container
        self._mode = mode
        self._on_expired = on_expired
        self._widget_id = None
        self._disposed = False

    async def render(self) -> str:
        """Mount a challenge node; a container holds at most one."""
        if self._widget_id is not None or any(
            node_id.startswith(CHALLENGE_NODE_PREFIX)
            for node_id in self._container.child_ids
        ):
            raise ProviderError("already-rendered", _ALREADY_RENDERED_MESSAGE)
        widget_id = f"{CHALLENGE_NODE_PREFIX}-{secrets.token_hex(4)}"
        self._container.append_child(
            widget_id,
            f'<div id="{widget_id}" data-mode="{self._mode.value}"></div>',
        )
        self._widget_id = widget_id
        return widget_id

    async def get_token(self) -> str:
        """Consume the solved token supplied by the client."""
        token = self._provider.take_token()
        if token is None:
            raise ProviderError("captcha-check-failed", _MISSING_TOKEN_MESSAGE)
        return token

    def expire(self) -> None:
        """Report expiry of the solved challenge to the manager."""
        if not self._disposed:
            self._on_expired()

    def clear(self) -> None:
        """Remove the rendered node and detach from the provider."""
        self._disposed = True
        self._provider.forget(self)
        if self._widget_id is not None:
            _ = self._container.remove_children(self._widget_id)
            self._widget_id = None


class PresolvedChallengeProvider:
    """Create handles whose token is the one most recently supplied."""

    _token: str | None
    _handles: list[PresolvedChallengeHandle]

    def __init__(self, token: str | None = None) -> None:
        """Start with an optional solved challenge token."""
        self._token = token
        self._handles = []

    @property
    def live_handle_count(self) -> int:
        """Return how many handles have not been cleared yet."""
        return len(self._handles)

    @property
    def has_token(self) -> bool:
        """Return True when a solved token is waiting to be used."""
        return self._token is not None

    def supply(self, token: str) -> None:
        """Store a freshly solved challenge token for the next dispatch."""
        self._token = token

    def take_token(self) -> str | None:
        """Return and forget the stored token; tokens are single-use."""
        token = self._token
        self._token = None
        return token

    def create(
        self,
        *,
        container: PageContainer,
        mode: ChallengeMode,
        on_expired: Callable[[], None],
        on_error: Callable[[BaseException | None], None],
    ) -> PresolvedChallengeHandle:
        """Construct a handle bound to container."""
        _ = on_error
        handle = PresolvedChallengeHandle(
            provider=self,
            container=container,
            mode=mode,
            on_expired=on_expired,
        )
        self._handles.append(handle)
        logger.debug("Challenge handle created", extra={"widget_mode": mode.value})
        return handle

    def forget(self, handle: PresolvedChallengeHandle) -> None:
        """Stop tracking a handle once its widget is cleared."""
        if handle in self._handles:
            self._handles.remove(handle)

    def expire_all(self) -> None:
        """Expire every outstanding handle and drop the stored token."""
        self._token = None
        handles, self._handles = self._handles, []
        for handle in handles:
            handle.expire()
