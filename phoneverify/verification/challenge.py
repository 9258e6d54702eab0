"""Lifecycle management for the single-use anti-abuse challenge widget.

The widget is an externally owned, document-bound handle. It is acquired with
:meth:`ChallengeLifecycleManager.initialize` and released with
:meth:`ChallengeLifecycleManager.clear`; release is idempotent and safe on every
error path. Each manager owns at most one live widget, so every verification
view builds its own manager instead of sharing a module-level verifier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Final, Protocol

from .errors import ErrorClass, classify_exception

if TYPE_CHECKING:
    from collections.abc import Callable

    from .document import PageContainer, PageDocument

logger = logging.getLogger(__name__)

DEFAULT_CONTAINER_ID: Final = "challenge-container"
CHALLENGE_NODE_PREFIX: Final = "challenge"


class ChallengeMode(StrEnum):
    """Render mode for the challenge; invisible first, visible as fallback."""

    INVISIBLE = "invisible"
    VISIBLE = "visible"


class ChallengeState(StrEnum):
    """Lifecycle of one challenge widget."""

    UNINITIALIZED = "uninitialized"
    RENDERING = "rendering"
    READY = "ready"
    EXPIRED = "expired"
    ERROR = "error"


class ChallengeHandle(Protocol):
    """Provider-owned widget instance bound to one page container."""

    async def render(self) -> str:
        """Render into the container and return the provider widget id."""
        ...

    async def get_token(self) -> str:
        """Return the solved challenge token used to authorize a dispatch."""
        ...

    def clear(self) -> None:
        """Dispose the widget and remove anything it rendered."""
        ...


class ChallengeProvider(Protocol):
    """Factory for provider challenge handles."""

    def create(
        self,
        *,
        container: PageContainer,
        mode: ChallengeMode,
        on_expired: Callable[[], None],
        on_error: Callable[[BaseException | None], None],
    ) -> ChallengeHandle:
        """Construct a challenge handle; may raise a provider error."""
        ...


class ChallengeNotReadyError(RuntimeError):
    """Raised when a token is requested from a widget that is not ready."""

    @classmethod
    def for_state(cls, state: ChallengeState) -> ChallengeNotReadyError:
        """Build deterministic error naming the widget's current state."""
        return cls(f"Challenge widget is not ready (state='{state}').")


@dataclass(slots=True)
class ChallengeWidget:
    """Manager-side record of one challenge widget."""

    container_id: str
    mode: ChallengeMode
    state: ChallengeState
    generation: int
    handle: ChallengeHandle | None = None
    widget_id: str | None = None

    @property
    def is_ready(self) -> bool:
        """Return True when the widget can authorize a dispatch."""
        return self.state is ChallengeState.READY and self.handle is not None

    async def challenge_token(self) -> str:
        """Return the solved challenge token from the provider handle."""
        if not self.is_ready or self.handle is None:
            raise ChallengeNotReadyError.for_state(self.state)
        return await self.handle.get_token()


class ChallengeLifecycleManager:
    """Create, render and idempotently tear down one challenge widget."""

    _provider: ChallengeProvider
    _document: PageDocument
    _container_id: str
    _widget: ChallengeWidget | None
    _generation: int

    def __init__(
        self,
        *,
        provider: ChallengeProvider,
        document: PageDocument,
        container_id: str = DEFAULT_CONTAINER_ID,
    ) -> None:
        """Bind the manager to a provider and the page it renders into."""
        self._provider = provider
        self._document = document
        self._container_id = container_id
        self._widget = None
        self._generation = 0

    @property
    def container_id(self) -> str:
        """Return the container id used when none is passed to initialize."""
        return self._container_id

    @property
    def current(self) -> ChallengeWidget | None:
        """Return the live widget, if any."""
        return self._widget

    @property
    def is_ready(self) -> bool:
        """Return True when a ready widget is available."""
        return self._widget is not None and self._widget.is_ready

    async def initialize(self, container_id: str | None = None) -> ChallengeWidget:
        """Clear any previous widget, then render a fresh one."""
        if container_id is not None:
            self._container_id = container_id
        self.clear()
        container = self._ensure_container()

        self._generation += 1
        widget = ChallengeWidget(
            container_id=self._container_id,
            mode=ChallengeMode.INVISIBLE,
            state=ChallengeState.RENDERING,
            generation=self._generation,
        )
        self._widget = widget
        try:
            await self._render_with_fallback(widget=widget, container=container)
        except Exception as exc:
            classified = classify_exception(exc)
            widget.state = ChallengeState.ERROR
            self.clear()
            if classified.error_class is ErrorClass.ALREADY_RENDERED:
                logger.info("Challenge already rendered; cleared for retry")
            else:
                logger.warning(
                    "Challenge initialization failed",
                    extra=classified.diagnostic(),
                )
            if classified is exc:
                raise
            raise classified from exc

        widget.state = ChallengeState.READY
        logger.debug(
            "Challenge widget ready",
            extra={"widget_mode": widget.mode.value, "widget_id": widget.widget_id},
        )
        return widget

    def clear(self) -> None:
        """Dispose the current widget and empty its container; always safe."""
        widget = self._widget
        self._widget = None
        if widget is not None:
            _dispose_handle(widget)
        container = self._document.get_element(self._container_id)
        if container is not None:
            _ = container.remove_children(CHALLENGE_NODE_PREFIX)
            container.empty()

    def _ensure_container(self) -> PageContainer:
        container = self._document.get_element(self._container_id)
        if container is None:
            container = self._document.create_offscreen_container(self._container_id)
        return container

    async def _render_with_fallback(
        self,
        *,
        widget: ChallengeWidget,
        container: PageContainer,
    ) -> None:
        try:
            await self._render_mode(
                widget=widget,
                container=container,
                mode=ChallengeMode.INVISIBLE,
            )
        except Exception as exc:
            classified = classify_exception(exc)
            if (
                classified.policy.terminal
                or classified.error_class is ErrorClass.ALREADY_RENDERED
            ):
                raise
            logger.warning(
                "Invisible challenge failed; falling back to visible mode",
                extra=classified.diagnostic(),
            )
            _dispose_handle(widget)
            container.empty()
            container.visible = True
            await self._render_mode(
                widget=widget,
                container=container,
                mode=ChallengeMode.VISIBLE,
            )

    async def _render_mode(
        self,
        *,
        widget: ChallengeWidget,
        container: PageContainer,
        mode: ChallengeMode,
    ) -> None:
        widget.mode = mode
        widget.handle = self._provider.create(
            container=container,
            mode=mode,
            on_expired=self._expiry_callback(widget.generation),
            on_error=self._error_callback(widget.generation),
        )
        widget.widget_id = await widget.handle.render()

    def _expiry_callback(self, generation: int) -> Callable[[], None]:
        def _on_expired() -> None:
            widget = self._live_widget(generation)
            if widget is None:
                return
            widget.state = ChallengeState.EXPIRED
            logger.info("Challenge expired; reinitialize before the next dispatch")
            self.clear()

        return _on_expired

    def _error_callback(
        self,
        generation: int,
    ) -> Callable[[BaseException | None], None]:
        def _on_error(error: BaseException | None) -> None:
            widget = self._live_widget(generation)
            if widget is None:
                return
            widget.state = ChallengeState.ERROR
            extra = (
                classify_exception(error).diagnostic()
                if error is not None
                else {"error_class": ErrorClass.UNKNOWN.value}
            )
            logger.info("Challenge verification error; widget cleared", extra=extra)
            self.clear()

        return _on_error

    def _live_widget(self, generation: int) -> ChallengeWidget | None:
        """Return the widget only if the callback belongs to it."""
        widget = self._widget
        if widget is None or widget.generation != generation:
            return None
        return widget


def _dispose_handle(widget: ChallengeWidget) -> None:
    handle = widget.handle
    widget.handle = None
    if handle is None:
        return
    try:
        handle.clear()
    except Exception:  # noqa: BLE001
        logger.debug("Ignoring challenge handle disposal failure", exc_info=True)

