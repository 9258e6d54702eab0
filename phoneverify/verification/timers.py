"""Cancellable timers for resend cooldown and fallback navigation."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    Sleep = Callable[[float], Awaitable[None]]

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS: Final = 30
_TICK_SECONDS: Final = 1.0
_MILLISECONDS_PER_SECOND: Final = 1000


class CooldownTimer:
    """Count down once per second and fire `on_elapsed` exactly once."""

    _duration_seconds: int
    _sleep: Sleep
    _on_tick: Callable[[int], None] | None
    _on_elapsed: Callable[[], None] | None
    _remaining: int
    _task: asyncio.Task[None] | None

    def __init__(
        self,
        *,
        duration_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        sleep: Sleep = asyncio.sleep,
        on_tick: Callable[[int], None] | None = None,
        on_elapsed: Callable[[], None] | None = None,
    ) -> None:
        """Configure duration, sleep primitive and tick/elapse hooks."""
        self._duration_seconds = duration_seconds
        self._sleep = sleep
        self._on_tick = on_tick
        self._on_elapsed = on_elapsed
        self._remaining = 0
        self._task = None

    @property
    def duration_seconds(self) -> int:
        """Return the full cooldown length."""
        return self._duration_seconds

    @property
    def remaining(self) -> int:
        """Return whole seconds left before resend is re-enabled."""
        return self._remaining

    @property
    def active(self) -> bool:
        """Return True while the countdown is running."""
        return self._remaining > 0

    def start(self, duration_seconds: int | None = None) -> None:
        """Restart the countdown, cancelling any countdown in flight."""
        self.cancel()
        self._remaining = (
            self._duration_seconds if duration_seconds is None else duration_seconds
        )
        if self._remaining <= 0:
            self._remaining = 0
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        """Stop the countdown without firing `on_elapsed`."""
        task = self._task
        self._task = None
        self._remaining = 0
        if task is not None and not task.done():
            _ = task.cancel()

    async def wait(self) -> None:
        """Wait until the running countdown finishes or is cancelled."""
        task = self._task
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while self._remaining > 0:
            await self._sleep(_TICK_SECONDS)
            self._remaining -= 1
            if self._on_tick is not None:
                self._on_tick(self._remaining)
        self._task = None
        if self._on_elapsed is not None:
            self._on_elapsed()


class NavigationScheduler:
    """Hold at most one pending navigation away from the verification view."""

    _sleep: Sleep
    _task: asyncio.Task[None] | None
    _pending_delay_ms: int | None

    def __init__(self, *, sleep: Sleep = asyncio.sleep) -> None:
        """Configure the sleep primitive used for the redirect delay."""
        self._sleep = sleep
        self._task = None
        self._pending_delay_ms = None

    @property
    def pending(self) -> bool:
        """Return True when a navigation is scheduled and has not fired."""
        return self._task is not None and not self._task.done()

    @property
    def pending_delay_ms(self) -> int | None:
        """Return the delay of the pending navigation, if any."""
        return self._pending_delay_ms if self.pending else None

    def schedule(self, delay_ms: int, action: Callable[[], None]) -> bool:
        """Schedule one navigation; refuse while another one is pending."""
        if self.pending:
            logger.warning(
                "Navigation already pending; ignoring second redirect request",
                extra={"delay_ms": delay_ms},
            )
            return False
        self._pending_delay_ms = delay_ms
        self._task = asyncio.get_running_loop().create_task(
            self._fire_after(delay_ms, action),
        )
        return True

    def cancel(self) -> None:
        """Cancel the pending navigation, if any."""
        task = self._task
        self._task = None
        self._pending_delay_ms = None
        if task is not None and not task.done():
            _ = task.cancel()

    async def wait(self) -> None:
        """Wait for the pending navigation to fire or be cancelled."""
        task = self._task
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _fire_after(self, delay_ms: int, action: Callable[[], None]) -> None:
        await self._sleep(delay_ms / _MILLISECONDS_PER_SECOND)
        logger.info("Navigating to alternate verification channel")
        action()
