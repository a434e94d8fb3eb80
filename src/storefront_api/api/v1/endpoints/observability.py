"""Observability endpoints for settlement and payment confirmation counters."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from storefront_api.api.dependencies.session import require_admin
from storefront_api.observability.payments import get_settlement_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/payments",
    dependencies=[Depends(require_admin)],
    summary="Settlement and confirmation outcome counters",
)
async def get_payment_snapshot() -> dict[str, object]:
    return get_settlement_store().snapshot().as_dict()
