"""Checkout endpoints: quotes, wallet settlement and external gateway rails."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Any, AsyncIterator, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.api.dependencies.payments import get_reconciler
from storefront_api.api.dependencies.session import require_member_session
from storefront_api.api.errors import HANDLED_ERRORS, to_http_exception
from storefront_api.db.session import get_session
from storefront_api.models.payment import PaymentProviderEnum
from storefront_api.models.user import User
from storefront_api.services.checkout.settlement import CheckoutQuote, SettlementService
from storefront_api.services.payments.reconciler import (
    ConfirmationOutcome,
    ConfirmationReconciler,
    PaymentChallenge,
)


router = APIRouter(prefix="/checkout", tags=["checkout"])


class CheckoutRequest(BaseModel):
    codes: list[str] = Field(default_factory=list, description="Voucher codes entered by the shopper")


class AppliedVoucherResponse(BaseModel):
    code: str
    amount: float
    autoApplied: bool
    description: Optional[str] = None


class QuoteResponse(BaseModel):
    subtotal: float
    discountAmount: float
    itemsTotal: float
    deliveryFee: float
    baseDeliveryFee: float
    freeDeliveryReason: Optional[str]
    finalTotal: float
    subscriptionActive: bool
    appliedVouchers: list[AppliedVoucherResponse]
    errors: list[str]


class SettlementResponse(BaseModel):
    receiptId: UUID
    finalTotal: float
    rail: str


class PaymentChallengeResponse(BaseModel):
    provider: str
    reference: str
    amount: float
    purpose: str
    expiresAt: datetime
    qrCode: Optional[str] = None


class ConfirmationResponse(BaseModel):
    success: bool
    status: str
    reference: str
    purpose: str
    receiptId: Optional[UUID] = None
    replayed: bool = False
    error: Optional[str] = None


def serialize_quote(quote: CheckoutQuote) -> QuoteResponse:
    discount = quote.discount
    totals = quote.totals
    return QuoteResponse(
        subtotal=float(discount.subtotal),
        discountAmount=float(discount.total_discount),
        itemsTotal=float(totals.items_total),
        deliveryFee=float(totals.delivery_fee),
        baseDeliveryFee=float(totals.base_delivery_fee),
        freeDeliveryReason=totals.free_delivery_reason,
        finalTotal=float(totals.final_total),
        subscriptionActive=totals.subscription_active,
        appliedVouchers=[
            AppliedVoucherResponse(
                code=applied.code,
                amount=float(applied.amount),
                autoApplied=applied.auto_applied,
                description=applied.description,
            )
            for applied in discount.all_applied
        ],
        errors=list(quote.errors),
    )


def serialize_challenge(challenge: PaymentChallenge) -> PaymentChallengeResponse:
    return PaymentChallengeResponse(
        provider=challenge.provider.value,
        reference=challenge.reference,
        amount=float(challenge.amount),
        purpose=challenge.purpose.value,
        expiresAt=challenge.expires_at,
        qrCode=challenge.qr_code,
    )


def serialize_outcome(outcome: ConfirmationOutcome) -> ConfirmationResponse:
    return ConfirmationResponse(
        success=outcome.confirmed,
        status=outcome.status.value,
        reference=outcome.reference,
        purpose=outcome.purpose.value,
        receiptId=outcome.receipt_id,
        replayed=outcome.replayed,
        error=outcome.failure_reason,
    )


def _format_sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


def payment_event_stream(
    reconciler: ConfirmationReconciler,
    reference: str,
    user_id: UUID,
) -> StreamingResponse:
    """Relay reconciler polling events to the client as Server-Sent Events."""

    async def event_generator() -> AsyncIterator[str]:
        try:
            async for event in reconciler.watch(reference, user_id):
                yield _format_sse(event)
        except HANDLED_ERRORS as exc:
            logger.warning("Payment event stream aborted", reference=reference, error=str(exc))
            yield _format_sse({"fail": True, "reference": reference, "error": str(exc)})
        except asyncio.CancelledError:  # pragma: no cover - client disconnected
            return

    headers = {
        "Cache-Control": "no-cache",
        "Content-Type": "text/event-stream",
    }
    return StreamingResponse(event_generator(), headers=headers, media_type="text/event-stream")


@router.post("/quote", response_model=QuoteResponse)
async def quote_checkout(
    payload: CheckoutRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> QuoteResponse:
    try:
        quote = await SettlementService(db).prepare(user.id, payload.codes)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return serialize_quote(quote)


@router.post("/balance", response_model=SettlementResponse, status_code=status.HTTP_201_CREATED)
async def checkout_with_balance(
    payload: CheckoutRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> SettlementResponse:
    try:
        result = await SettlementService(db).checkout_with_balance(user.id, payload.codes)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return SettlementResponse(receiptId=result.receipt_id, finalTotal=float(result.final_total), rail=result.rail.value)


@router.post("/paypal/orders", response_model=PaymentChallengeResponse, status_code=status.HTTP_201_CREATED)
async def create_paypal_order(
    payload: CheckoutRequest,
    user: User = Depends(require_member_session),
    reconciler: ConfirmationReconciler = Depends(get_reconciler),
) -> PaymentChallengeResponse:
    try:
        challenge = await reconciler.create_paypal_checkout(user.id, payload.codes)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return serialize_challenge(challenge)


@router.post("/paypal/orders/{order_id}/capture", response_model=ConfirmationResponse)
async def capture_paypal_order(
    order_id: str,
    user: User = Depends(require_member_session),
    reconciler: ConfirmationReconciler = Depends(get_reconciler),
) -> ConfirmationResponse:
    try:
        outcome = await reconciler.capture_paypal(order_id, user.id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return serialize_outcome(outcome)


@router.post("/nets/orders", response_model=PaymentChallengeResponse, status_code=status.HTTP_201_CREATED)
async def create_nets_order(
    payload: CheckoutRequest,
    user: User = Depends(require_member_session),
    reconciler: ConfirmationReconciler = Depends(get_reconciler),
) -> PaymentChallengeResponse:
    try:
        challenge = await reconciler.initiate_checkout(user.id, payload.codes, provider=PaymentProviderEnum.NETS)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return serialize_challenge(challenge)


@router.get("/nets/{reference}/events")
async def stream_nets_checkout(
    reference: str,
    user: User = Depends(require_member_session),
    reconciler: ConfirmationReconciler = Depends(get_reconciler),
) -> StreamingResponse:
    return payment_event_stream(reconciler, reference, user.id)
