"""Vouchers issued to the signed-in shopper."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.api.dependencies.session import require_member_session
from storefront_api.db.session import get_session
from storefront_api.models.user import User
from storefront_api.models.voucher import Voucher
from storefront_api.services.vouchers.ledger import VoucherLedger


router = APIRouter(prefix="/vouchers", tags=["vouchers"])


class VoucherResponse(BaseModel):
    id: UUID
    code: str
    kind: str
    description: Optional[str]
    discountMode: str
    discountValue: float
    maxDiscount: Optional[float]
    minSpend: float
    startsAt: Optional[datetime]
    expiresAt: Optional[datetime]
    totalUsageLimit: Optional[int]
    perUserLimit: Optional[int]
    stackable: bool
    autoApply: bool
    isActive: bool
    scope: str
    productIds: list[UUID] = []
    used: Optional[bool] = None


def serialize_voucher(
    voucher: Voucher,
    *,
    product_ids: Iterable[UUID] | None = None,
    used: bool | None = None,
) -> VoucherResponse:
    return VoucherResponse(
        id=voucher.id,
        code=voucher.code,
        kind=voucher.kind.value,
        description=voucher.description,
        discountMode=voucher.discount_mode.value,
        discountValue=float(voucher.discount_value),
        maxDiscount=float(voucher.max_discount) if voucher.max_discount is not None else None,
        minSpend=float(voucher.min_spend or 0),
        startsAt=voucher.starts_at,
        expiresAt=voucher.expires_at,
        totalUsageLimit=voucher.total_usage_limit,
        perUserLimit=voucher.per_user_limit,
        stackable=bool(voucher.stackable),
        autoApply=bool(voucher.auto_apply),
        isActive=bool(voucher.is_active),
        scope=voucher.scope.value,
        productIds=sorted(product_ids or [], key=str),
        used=used,
    )


@router.get("", response_model=list[VoucherResponse])
async def list_my_vouchers(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> list[VoucherResponse]:
    issued = await VoucherLedger(db).list_user_vouchers(user.id)
    return [serialize_voucher(item.voucher, used=item.used) for item in issued]
