"""Loyalty points balance and voucher redemptions."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.api.dependencies.session import require_member_session
from storefront_api.api.errors import HANDLED_ERRORS, to_http_exception
from storefront_api.api.v1.endpoints.vouchers import VoucherResponse, serialize_voucher
from storefront_api.core.settings import settings
from storefront_api.db.session import get_session
from storefront_api.models.user import User
from storefront_api.services.loyalty import LoyaltyService


router = APIRouter(prefix="/loyalty", tags=["loyalty"])


class LoyaltyResponse(BaseModel):
    pointsBalance: int
    pointValue: float


class RedemptionCreateRequest(BaseModel):
    template_id: UUID = Field(..., alias="templateId", description="Fixed-amount voucher template to redeem")

    class Config:
        populate_by_name = True


class RedemptionResponse(BaseModel):
    voucher: VoucherResponse
    pointsSpent: int
    pointsBalance: int


@router.get("", response_model=LoyaltyResponse)
async def get_loyalty(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> LoyaltyResponse:
    balance = await LoyaltyService(db).get_balance(user.id)
    return LoyaltyResponse(pointsBalance=balance, pointValue=float(settings.loyalty_point_value))


@router.post("/redemptions", response_model=RedemptionResponse, status_code=status.HTTP_201_CREATED)
async def redeem_points(
    payload: RedemptionCreateRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    service = LoyaltyService(db)
    try:
        voucher, cost = await service.redeem_voucher(user.id, payload.template_id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return RedemptionResponse(
        voucher=serialize_voucher(voucher),
        pointsSpent=cost,
        pointsBalance=await service.get_balance(user.id),
    )
