"""Phone verification view endpoints for the surrounding UI shell."""

from __future__ import annotations

import logging
from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING, Any, cast

from fastapi import APIRouter, HTTPException, Request, Response, status
from pydantic import BaseModel, Field

from phoneverify.api.views import MountedView, ViewNotFoundError, ViewRegistry
from phoneverify.storage import AppSessionStore, SessionStoreError
from phoneverify.verification import CODE_LENGTH, mask_phone_number

if TYPE_CHECKING:
    from phoneverify.verification import VerificationView

router = APIRouter(prefix="/verification/phone", tags=["verification"])

logger = logging.getLogger(__name__)

_SESSION_NOT_FOUND_DETAIL = "No application session is stored."
_SESSION_UNREADABLE_DETAIL = "Stored application session cannot be read."


class MountViewRequest(BaseModel):
    """Payload for mounting a verification view and sending the first code."""

    phone_number: str = Field(min_length=1)
    challenge_token: str = Field(min_length=1)
    pending_signup_data: dict[str, Any] | None = None


class DigitRequest(BaseModel):
    """Payload for typing into one code slot."""

    index: int = Field(ge=0, lt=CODE_LENGTH)
    value: str


class BackspaceRequest(BaseModel):
    """Payload for backspace on one code slot."""

    index: int = Field(ge=0, lt=CODE_LENGTH)


class PasteRequest(BaseModel):
    """Payload for pasting a code into the slots."""

    text: str


class ResendRequest(BaseModel):
    """Payload for resending a code with a freshly solved challenge."""

    challenge_token: str | None = Field(default=None, min_length=1)


class VerificationViewResponse(BaseModel):
    """Snapshot of one mounted verification view."""

    view_id: str
    attempt_id: str
    status: str
    phone_display: str | None
    digits: list[str]
    focused_index: int
    error_message: str
    error_class: str | None
    remediation: list[str]
    cooldown_seconds_remaining: int
    can_submit: bool
    can_resend: bool
    redirect_pending: bool
    redirect_delay_ms: int | None
    verified: bool
    navigate_to: str | None
    fallback_error_class: str | None
    alternate_code_requested: bool


class SessionSummaryResponse(BaseModel):
    """Summary of the persisted application session; never includes the token."""

    phone_number: str
    user: dict[str, Any]
    created_at: datetime | None


@router.post(
    "/views",
    response_model=VerificationViewResponse,
    status_code=status.HTTP_201_CREATED,
)
async def mount_view(
    payload: MountViewRequest,
    request: Request,
) -> VerificationViewResponse:
    """Mount a verification view and dispatch the first code."""
    registry = _resolve_view_registry(request)
    mounted = registry.mount(pending_signup_data=payload.pending_signup_data)
    mounted.challenge_provider.supply(payload.challenge_token)
    with mounted.logging_context():
        logger.info("Verification view mounted")
        view = await mounted.machine.start(payload.phone_number)
    return _view_response(mounted, view)


@router.get("/views/{view_id}", response_model=VerificationViewResponse)
async def get_view(view_id: str, request: Request) -> VerificationViewResponse:
    """Return the current state of a mounted view."""
    mounted = _resolve_view(request, view_id)
    return _view_response(mounted, mounted.machine.view())


@router.post("/views/{view_id}/digits", response_model=VerificationViewResponse)
async def enter_digit(
    view_id: str,
    payload: DigitRequest,
    request: Request,
) -> VerificationViewResponse:
    """Type a character into one code slot."""
    mounted = _resolve_view(request, view_id)
    view = mounted.machine.enter_digit(payload.index, payload.value)
    return _view_response(mounted, view)


@router.post("/views/{view_id}/backspace", response_model=VerificationViewResponse)
async def backspace(
    view_id: str,
    payload: BackspaceRequest,
    request: Request,
) -> VerificationViewResponse:
    """Handle backspace on one code slot."""
    mounted = _resolve_view(request, view_id)
    view = mounted.machine.backspace(payload.index)
    return _view_response(mounted, view)


@router.post("/views/{view_id}/paste", response_model=VerificationViewResponse)
async def paste(
    view_id: str,
    payload: PasteRequest,
    request: Request,
) -> VerificationViewResponse:
    """Fill the code slots from pasted text."""
    mounted = _resolve_view(request, view_id)
    view = mounted.machine.paste(payload.text)
    return _view_response(mounted, view)


@router.post("/views/{view_id}/submit", response_model=VerificationViewResponse)
async def submit(view_id: str, request: Request) -> VerificationViewResponse:
    """Verify the typed code, or retry only the session exchange."""
    mounted = _resolve_view(request, view_id)
    with mounted.logging_context():
        view = await mounted.machine.submit()
    return _view_response(mounted, view)


@router.post("/views/{view_id}/resend", response_model=VerificationViewResponse)
async def resend(
    view_id: str,
    payload: ResendRequest,
    request: Request,
) -> VerificationViewResponse:
    """Request a new code once the cooldown has elapsed."""
    mounted = _resolve_view(request, view_id)
    if payload.challenge_token is not None:
        mounted.challenge_provider.supply(payload.challenge_token)
    with mounted.logging_context():
        view = await mounted.machine.resend()
    return _view_response(mounted, view)


@router.post("/views/{view_id}/reset", response_model=VerificationViewResponse)
async def reset(view_id: str, request: Request) -> VerificationViewResponse:
    """Discard the current attempt and start over from idle."""
    mounted = _resolve_view(request, view_id)
    view = mounted.machine.reset()
    mounted.fallback_error_class = None
    mounted.navigate_to = None
    mounted.alternate_code_requested = False
    mounted.finished_at = None
    return _view_response(mounted, view)


@router.delete("/views/{view_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unmount_view(view_id: str, request: Request) -> Response:
    """Tear down a view: stop timers and release the challenge."""
    registry = _resolve_view_registry(request)
    try:
        registry.unmount(view_id)
    except ViewNotFoundError as exc:
        raise _view_not_found_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/session", response_model=SessionSummaryResponse)
async def get_session(request: Request) -> SessionSummaryResponse:
    """Return the persisted application session summary."""
    store = _resolve_session_store(request)
    try:
        stored = await store.load_session()
    except SessionStoreError as exc:
        logger.warning("Stored application session could not be decrypted")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=_SESSION_UNREADABLE_DETAIL,
        ) from exc
    if stored is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_SESSION_NOT_FOUND_DETAIL,
        )
    return SessionSummaryResponse(
        phone_number=mask_phone_number(stored.phone_number),
        user=dict(stored.user),
        created_at=stored.created_at,
    )


@router.delete("/session", status_code=status.HTTP_204_NO_CONTENT)
async def clear_session(request: Request) -> Response:
    """Delete the persisted application session (sign out)."""
    store = _resolve_session_store(request)
    if not await store.clear_session():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=_SESSION_NOT_FOUND_DETAIL,
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _view_response(
    mounted: MountedView,
    view: VerificationView,
) -> VerificationViewResponse:
    """Combine machine view state with view-level navigation state."""
    return VerificationViewResponse(
        view_id=mounted.view_id,
        attempt_id=view.attempt_id,
        status=view.status,
        phone_display=view.phone_display,
        digits=list(view.digits),
        focused_index=view.focused_index,
        error_message=view.error_message,
        error_class=view.error_class,
        remediation=list(view.remediation),
        cooldown_seconds_remaining=view.cooldown_seconds_remaining,
        can_submit=view.can_submit,
        can_resend=view.can_resend,
        redirect_pending=view.redirect_pending,
        redirect_delay_ms=view.redirect_delay_ms,
        verified=mounted.verified_session is not None,
        navigate_to=mounted.navigate_to,
        fallback_error_class=(
            mounted.fallback_error_class.value
            if mounted.fallback_error_class is not None
            else None
        ),
        alternate_code_requested=mounted.alternate_code_requested,
    )


def _view_not_found_error(exc: ViewNotFoundError) -> HTTPException:
    """Build deterministic error for unknown view ids."""
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _resolve_view(request: Request, view_id: str) -> MountedView:
    """Resolve a mounted view or fail with 404."""
    registry = _resolve_view_registry(request)
    try:
        return registry.get(view_id)
    except ViewNotFoundError as exc:
        raise _view_not_found_error(exc) from exc


def _resolve_view_registry(request: Request) -> ViewRegistry:
    """Resolve the view registry from app state."""
    state_obj = _resolve_app_state(request)
    registry_obj = getattr(state_obj, "view_registry", None)
    if not isinstance(registry_obj, ViewRegistry):
        message = "Missing view registry: app.state.view_registry."
        raise TypeError(message)
    return registry_obj


def _resolve_session_store(request: Request) -> AppSessionStore:
    """Resolve the application session store from app state."""
    state_obj = _resolve_app_state(request)
    store_obj = getattr(state_obj, "session_store", None)
    if not isinstance(store_obj, AppSessionStore):
        message = "Missing session store: app.state.session_store."
        raise TypeError(message)
    return store_obj


def _resolve_app_state(request: Request) -> object:
    """Resolve request app state with explicit object typing for static analysis."""
    request_obj = cast("object", request)
    app_obj = cast("object", getattr(request_obj, "app", None))
    return cast("object", getattr(app_obj, "state", None))
