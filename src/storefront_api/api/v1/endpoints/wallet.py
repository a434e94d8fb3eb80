"""Wallet balance, ledger history and gateway top-ups."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.api.dependencies.payments import get_reconciler
from storefront_api.api.dependencies.session import require_member_session
from storefront_api.api.errors import HANDLED_ERRORS, to_http_exception
from storefront_api.api.v1.endpoints.checkout import (
    ConfirmationResponse,
    PaymentChallengeResponse,
    payment_event_stream,
    serialize_challenge,
    serialize_outcome,
)
from storefront_api.db.session import get_session
from storefront_api.models.payment import PaymentProviderEnum
from storefront_api.models.user import User
from storefront_api.services.payments.reconciler import ConfirmationReconciler
from storefront_api.services.wallet import BalanceLedger


router = APIRouter(prefix="/wallet", tags=["wallet"])


class TopUpRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Top-up amount in dollars")


class WalletEntryResponse(BaseModel):
    id: UUID
    type: str
    amount: float
    balanceAfter: float
    referenceType: Optional[str]
    referenceId: Optional[str]
    note: Optional[str]
    createdAt: Optional[datetime]


class WalletResponse(BaseModel):
    balance: float
    entries: list[WalletEntryResponse]


@router.get("", response_model=WalletResponse)
async def get_wallet(
    limit: int = Query(25, ge=1, le=200),
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> WalletResponse:
    ledger = BalanceLedger(db)
    balance = await ledger.get_balance(user.id)
    entries = await ledger.list_entries(user.id, limit=limit)
    return WalletResponse(
        balance=float(balance),
        entries=[
            WalletEntryResponse(
                id=entry.id,
                type=entry.entry_type.value,
                amount=float(entry.amount),
                balanceAfter=float(entry.balance_after),
                referenceType=entry.reference_type,
                referenceId=entry.reference_id,
                note=entry.note,
                createdAt=entry.created_at,
            )
            for entry in entries
        ],
    )


@router.post("/paypal/orders", response_model=PaymentChallengeResponse, status_code=status.HTTP_201_CREATED)
async def create_paypal_topup(
    payload: TopUpRequest,
    user: User = Depends(require_member_session),
    reconciler: ConfirmationReconciler = Depends(get_reconciler),
) -> PaymentChallengeResponse:
    try:
        challenge = await reconciler.create_paypal_topup(user.id, payload.amount)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return serialize_challenge(challenge)


@router.post("/paypal/orders/{order_id}/capture", response_model=ConfirmationResponse)
async def capture_paypal_topup(
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
async def create_nets_topup(
    payload: TopUpRequest,
    user: User = Depends(require_member_session),
    reconciler: ConfirmationReconciler = Depends(get_reconciler),
) -> PaymentChallengeResponse:
    try:
        challenge = await reconciler.initiate_topup(user.id, payload.amount, provider=PaymentProviderEnum.NETS)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return serialize_challenge(challenge)


@router.get("/nets/{reference}/events")
async def stream_nets_topup(
    reference: str,
    user: User = Depends(require_member_session),
    reconciler: ConfirmationReconciler = Depends(get_reconciler),
) -> StreamingResponse:
    return payment_event_stream(reconciler, reference, user.id)
