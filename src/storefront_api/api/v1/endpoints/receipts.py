"""Receipt lookup and refund requests for shoppers."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.api.dependencies.session import require_member_session
from storefront_api.api.errors import HANDLED_ERRORS, to_http_exception
from storefront_api.db.session import get_session
from storefront_api.models.receipt import Receipt
from storefront_api.models.refund import RefundRequest
from storefront_api.models.user import User
from storefront_api.services.receipts import ReceiptService
from storefront_api.services.refunds import RefundService


router = APIRouter(prefix="/receipts", tags=["receipts"])


class ReceiptItemResponse(BaseModel):
    productId: Optional[UUID]
    title: str
    quantity: int
    unitPrice: float
    lineTotal: float


class ReceiptDiscountResponse(BaseModel):
    code: str
    amount: float
    autoApplied: bool


class ReceiptResponse(BaseModel):
    id: UUID
    userId: UUID
    status: str
    subtotal: float
    discountAmount: float
    deliveryFee: float
    finalTotal: float
    paymentRail: str
    paymentLabel: str
    externalReference: Optional[str]
    items: list[ReceiptItemResponse]
    discounts: list[ReceiptDiscountResponse]
    createdAt: Optional[datetime]
    deliveredAt: Optional[datetime]
    completedAt: Optional[datetime]
    refundedAmount: Optional[float]
    refundedAt: Optional[datetime]


class RefundRequestCreate(BaseModel):
    reason: Optional[str] = Field(None, max_length=500, description="Why the shopper wants a refund")


class RefundRequestResponse(BaseModel):
    id: UUID
    receiptId: UUID
    userId: UUID
    amount: float
    reason: Optional[str]
    status: str
    decisionNote: Optional[str]
    decidedAt: Optional[datetime]


def serialize_receipt(receipt: Receipt) -> ReceiptResponse:
    return ReceiptResponse(
        id=receipt.id,
        userId=receipt.user_id,
        status=receipt.status.value,
        subtotal=float(receipt.subtotal),
        discountAmount=float(receipt.discount_amount),
        deliveryFee=float(receipt.delivery_fee),
        finalTotal=float(receipt.final_total),
        paymentRail=receipt.payment_rail.value,
        paymentLabel=receipt.payment_label,
        externalReference=receipt.external_reference,
        items=[
            ReceiptItemResponse(
                productId=item.product_id,
                title=item.product_title,
                quantity=item.quantity,
                unitPrice=float(item.unit_price),
                lineTotal=float(item.unit_price * item.quantity),
            )
            for item in receipt.items
        ],
        discounts=[
            ReceiptDiscountResponse(
                code=discount.code,
                amount=float(discount.discount_amount),
                autoApplied=bool(discount.auto_applied),
            )
            for discount in receipt.discounts
        ],
        createdAt=receipt.created_at,
        deliveredAt=receipt.delivered_at,
        completedAt=receipt.completed_at,
        refundedAmount=float(receipt.refunded_amount) if receipt.refunded_amount is not None else None,
        refundedAt=receipt.refunded_at,
    )


def serialize_refund_request(refund_request: RefundRequest) -> RefundRequestResponse:
    return RefundRequestResponse(
        id=refund_request.id,
        receiptId=refund_request.receipt_id,
        userId=refund_request.user_id,
        amount=float(refund_request.amount),
        reason=refund_request.reason,
        status=refund_request.status.value,
        decisionNote=refund_request.decision_note,
        decidedAt=refund_request.decided_at,
    )


async def _load_visible_receipt(db: AsyncSession, receipt_id: UUID, user: User) -> Receipt:
    receipt = await ReceiptService(db).get(receipt_id)
    if receipt is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receipt not found")
    if receipt.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return receipt


@router.get("", response_model=list[ReceiptResponse])
async def list_receipts(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> list[ReceiptResponse]:
    receipts = await ReceiptService(db).list_for_user(user.id)
    return [serialize_receipt(receipt) for receipt in receipts]


@router.get("/{receipt_id}", response_model=ReceiptResponse)
async def get_receipt(
    receipt_id: UUID,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> ReceiptResponse:
    return serialize_receipt(await _load_visible_receipt(db, receipt_id, user))


@router.post(
    "/{receipt_id}/refund-requests",
    response_model=RefundRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_refund(
    receipt_id: UUID,
    payload: RefundRequestCreate,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> RefundRequestResponse:
    receipt = await _load_visible_receipt(db, receipt_id, user)
    if receipt.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    try:
        refund_request = await RefundService(db).request(receipt_id, user.id, payload.reason)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return serialize_refund_request(refund_request)
