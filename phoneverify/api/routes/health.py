"""Health check endpoint for application monitoring."""

from __future__ import annotations

from collections.abc import Sized
from datetime import UTC, datetime
from typing import Literal, cast

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter()


class HealthResponse(BaseModel):
    """Stable response model for the health endpoint."""

    status: Literal["ok"]
    timestamp: datetime
    provider_configured: bool
    mounted_views: int


@router.get("/health", tags=["monitoring"], response_model=HealthResponse)
async def get_health(request: Request) -> HealthResponse:
    """Return service health, provider configuration and mounted view count."""
    state_obj = cast("object", getattr(cast("object", request.app), "state", None))
    settings_obj = getattr(state_obj, "settings", None)
    registry_obj = cast("object", getattr(state_obj, "view_registry", None))
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(tz=UTC),
        provider_configured=bool(getattr(settings_obj, "provider_api_key", None)),
        mounted_views=len(registry_obj) if isinstance(registry_obj, Sized) else 0,
    )
