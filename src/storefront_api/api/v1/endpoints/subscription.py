"""Subscription status, wallet purchase and member coupon claims."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.api.dependencies.session import require_member_session
from storefront_api.api.errors import HANDLED_ERRORS, to_http_exception
from storefront_api.api.v1.endpoints.vouchers import VoucherResponse, serialize_voucher
from storefront_api.core.settings import settings
from storefront_api.db.session import get_session
from storefront_api.models.subscription import Subscription
from storefront_api.models.user import User
from storefront_api.services.subscriptions import SubscriptionService


router = APIRouter(prefix="/subscription", tags=["subscription"])


class SubscriptionResponse(BaseModel):
    isActive: bool
    firstDeliveryUsed: bool
    startedAt: Optional[datetime]
    price: float
    freeDeliveryThreshold: float


class CouponClaimRequest(BaseModel):
    template_id: UUID = Field(..., alias="templateId")

    class Config:
        populate_by_name = True


def _serialize(subscription: Subscription | None) -> SubscriptionResponse:
    return SubscriptionResponse(
        isActive=bool(subscription and subscription.is_active),
        firstDeliveryUsed=bool(subscription and subscription.first_delivery_used),
        startedAt=subscription.started_at if subscription else None,
        price=float(settings.subscription_price),
        freeDeliveryThreshold=float(settings.subscription_free_delivery_threshold),
    )


@router.get("", response_model=SubscriptionResponse)
async def get_subscription(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> SubscriptionResponse:
    return _serialize(await SubscriptionService(db).get(user.id))


@router.post("/wallet", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def subscribe_with_wallet(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> SubscriptionResponse:
    service = SubscriptionService(db)
    try:
        await service.activate_with_wallet(user.id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return _serialize(await service.get(user.id))


@router.post("/coupons", response_model=VoucherResponse, status_code=status.HTTP_201_CREATED)
async def claim_coupon(
    payload: CouponClaimRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> VoucherResponse:
    try:
        voucher = await SubscriptionService(db).claim_coupon(user.id, payload.template_id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return serialize_voucher(voucher)
