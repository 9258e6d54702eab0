"""Tests for the challenge provider fed by client-solved tokens."""

from __future__ import annotations

import pytest

from phoneverify.provider import PresolvedChallengeProvider
from phoneverify.verification import (
    DEFAULT_CONTAINER_ID,
    ChallengeLifecycleManager,
    ChallengeMode,
    ChallengeState,
    ClassifiedError,
    ErrorClass,
    PageDocument,
    ProviderError,
    classify_exception,
)


async def test_supplied_token_is_single_use() -> None:
    """Ensure each solved token authorizes exactly one dispatch."""
    provider = PresolvedChallengeProvider()
    manager = ChallengeLifecycleManager(provider=provider, document=PageDocument())
    provider.supply("solved-1")

    widget = await manager.initialize()

    if await widget.challenge_token() != "solved-1":
        raise AssertionError
    if provider.has_token:
        raise AssertionError
    with pytest.raises(ProviderError) as exc_info:
        _ = await widget.challenge_token()
    if classify_exception(exc_info.value).error_class is not ErrorClass.UNKNOWN:
        raise AssertionError


async def test_initialize_replaces_leftover_challenge_node() -> None:
    """Ensure leftovers from an earlier render never block a fresh widget."""
    provider = PresolvedChallengeProvider(token="solved")
    document = PageDocument()
    container = document.add_container(DEFAULT_CONTAINER_ID, visible=False)
    container.append_child("challenge-leftover")
    manager = ChallengeLifecycleManager(provider=provider, document=document)

    widget = await manager.initialize()

    if not widget.is_ready or len(container.child_ids) != 1:
        raise AssertionError
    if container.child_ids[0] == "challenge-leftover":
        raise AssertionError


async def test_duplicate_render_is_classified_as_already_rendered() -> None:
    """Ensure rendering one handle twice raises the provider's message."""
    provider = PresolvedChallengeProvider()
    document = PageDocument()
    container = document.add_container(DEFAULT_CONTAINER_ID)
    handle = provider.create(
        container=container,
        mode=ChallengeMode.INVISIBLE,
        on_expired=lambda: None,
        on_error=lambda _: None,
    )
    _ = await handle.render()

    with pytest.raises(ProviderError) as exc_info:
        _ = await handle.render()

    classified = classify_exception(exc_info.value)
    if classified.error_class is not ErrorClass.ALREADY_RENDERED:
        raise AssertionError
    if not isinstance(classified, ClassifiedError):
        raise AssertionError


async def test_expire_all_releases_the_widget() -> None:
    """Ensure expiring solved challenges clears the manager's widget."""
    provider = PresolvedChallengeProvider(token="solved")
    document = PageDocument()
    manager = ChallengeLifecycleManager(provider=provider, document=document)
    widget = await manager.initialize()

    provider.expire_all()

    if widget.state is not ChallengeState.EXPIRED:
        raise AssertionError
    if manager.current is not None or provider.has_token:
        raise AssertionError
    container = document.get_element(DEFAULT_CONTAINER_ID)
    if container is None or not container.is_empty:
        raise AssertionError


async def test_cleared_handles_are_not_retained() -> None:
    """Ensure repeated initialize on a long-lived view keeps one tracked handle."""
    provider = PresolvedChallengeProvider()
    manager = ChallengeLifecycleManager(provider=provider, document=PageDocument())

    for _ in range(5):
        _ = await manager.initialize()
        if provider.live_handle_count != 1:
            raise AssertionError

    manager.clear()

    if provider.live_handle_count != 0:
        raise AssertionError
