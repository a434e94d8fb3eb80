from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from storefront_api.core.settings import settings


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(request: Request) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded"] = "ready"

    sweeper = getattr(request.app.state, "payment_sweeper", None)
    if settings.payment_sweeper_enabled and sweeper is not None:
        running = bool(getattr(sweeper, "is_running", False))
        detail = None if running else "Pending payment sweeper not running"
        if not running:
            status = "degraded"
        components["payment_sweeper"] = ComponentStatus(status="ready" if running else "starting", detail=detail)
    else:
        components["payment_sweeper"] = ComponentStatus(
            status="disabled",
            detail="Pending payment sweeper disabled via settings",
        )

    return ReadinessPayload(status=status, components=components)
