"""Administrator endpoints: receipt lifecycle, refunds and voucher templates."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.api.dependencies.session import require_admin
from storefront_api.api.errors import HANDLED_ERRORS, to_http_exception
from storefront_api.api.v1.endpoints.receipts import (
    ReceiptResponse,
    RefundRequestResponse,
    serialize_receipt,
    serialize_refund_request,
)
from storefront_api.api.v1.endpoints.vouchers import VoucherResponse, serialize_voucher
from storefront_api.db.session import get_session
from storefront_api.models.user import User
from storefront_api.services.receipts import ReceiptService
from storefront_api.services.refunds import RefundService
from storefront_api.services.vouchers.ledger import VoucherLedger


router = APIRouter(prefix="/admin", tags=["admin"])


class VoucherTemplateRequest(BaseModel):
    description: Optional[str] = None
    discount_mode: Literal["fixed", "percentage"] = Field("fixed", alias="discountMode")
    discount_value: Decimal = Field(..., gt=0, alias="discountValue")
    max_discount: Optional[Decimal] = Field(None, ge=0, alias="maxDiscount")
    min_spend: Decimal = Field(Decimal("0"), ge=0, alias="minSpend")
    starts_at: Optional[datetime] = Field(None, alias="startsAt")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    total_usage_limit: Optional[int] = Field(None, ge=1, alias="totalUsageLimit")
    per_user_limit: Optional[int] = Field(None, ge=1, alias="perUserLimit")
    stackable: bool = False
    auto_apply: bool = Field(False, alias="autoApply")
    is_active: bool = Field(True, alias="isActive")
    product_ids: list[UUID] = Field(default_factory=list, alias="productIds")

    class Config:
        populate_by_name = True


class VoucherTemplateUpdate(BaseModel):
    description: Optional[str] = None
    discount_mode: Optional[Literal["fixed", "percentage"]] = Field(None, alias="discountMode")
    discount_value: Optional[Decimal] = Field(None, gt=0, alias="discountValue")
    max_discount: Optional[Decimal] = Field(None, ge=0, alias="maxDiscount")
    min_spend: Optional[Decimal] = Field(None, ge=0, alias="minSpend")
    starts_at: Optional[datetime] = Field(None, alias="startsAt")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    total_usage_limit: Optional[int] = Field(None, ge=1, alias="totalUsageLimit")
    per_user_limit: Optional[int] = Field(None, ge=1, alias="perUserLimit")
    stackable: Optional[bool] = None
    auto_apply: Optional[bool] = Field(None, alias="autoApply")
    product_ids: Optional[list[UUID]] = Field(None, alias="productIds")

    class Config:
        populate_by_name = True


class VoucherToggleRequest(BaseModel):
    active: bool


class RefundDecisionRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=500)


@router.post("/receipts/{receipt_id}/deliver", response_model=ReceiptResponse)
async def deliver_receipt(
    receipt_id: UUID,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> ReceiptResponse:
    receipts = ReceiptService(db)
    try:
        await receipts.mark_delivered(receipt_id)
        await db.commit()
    except HANDLED_ERRORS as exc:
        await db.rollback()
        raise to_http_exception(exc) from exc
    return serialize_receipt(await receipts.require(receipt_id))


@router.post("/receipts/{receipt_id}/complete", response_model=ReceiptResponse)
async def complete_receipt(
    receipt_id: UUID,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> ReceiptResponse:
    receipts = ReceiptService(db)
    try:
        await receipts.mark_completed(receipt_id)
        await db.commit()
    except HANDLED_ERRORS as exc:
        await db.rollback()
        raise to_http_exception(exc) from exc
    return serialize_receipt(await receipts.require(receipt_id))


@router.post("/receipts/{receipt_id}/refund", response_model=ReceiptResponse)
async def refund_receipt(
    receipt_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> ReceiptResponse:
    try:
        await RefundService(db).refund_to_wallet(receipt_id, admin.id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return serialize_receipt(await ReceiptService(db).require(receipt_id))


@router.get("/refund-requests", response_model=list[RefundRequestResponse])
async def list_refund_requests(
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> list[RefundRequestResponse]:
    return [serialize_refund_request(item) for item in await RefundService(db).list_pending()]


@router.post("/refund-requests/{request_id}/approve", response_model=RefundRequestResponse)
async def approve_refund_request(
    request_id: UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> RefundRequestResponse:
    try:
        refund_request = await RefundService(db).approve(request_id, admin.id)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return serialize_refund_request(refund_request)


@router.post("/refund-requests/{request_id}/reject", response_model=RefundRequestResponse)
async def reject_refund_request(
    request_id: UUID,
    payload: RefundDecisionRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> RefundRequestResponse:
    try:
        refund_request = await RefundService(db).reject(request_id, admin.id, payload.note)
    except HANDLED_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return serialize_refund_request(refund_request)


@router.get("/vouchers", response_model=list[VoucherResponse])
async def list_voucher_templates(
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> list[VoucherResponse]:
    ledger = VoucherLedger(db)
    templates = await ledger.list_templates()
    scopes = await ledger.product_scopes([template.id for template in templates])
    return [serialize_voucher(template, product_ids=scopes.get(template.id)) for template in templates]


@router.post("/vouchers", response_model=VoucherResponse, status_code=status.HTTP_201_CREATED)
async def create_voucher_template(
    payload: VoucherTemplateRequest,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> VoucherResponse:
    ledger = VoucherLedger(db)
    terms = payload.model_dump(exclude={"product_ids"})
    try:
        template = await ledger.create_template(terms)
        if payload.product_ids:
            await ledger.set_product_scope(template, payload.product_ids)
        await db.commit()
    except HANDLED_ERRORS as exc:
        await db.rollback()
        raise to_http_exception(exc) from exc
    return serialize_voucher(template, product_ids=set(payload.product_ids))


@router.patch("/vouchers/{template_id}", response_model=VoucherResponse)
async def update_voucher_template(
    template_id: UUID,
    payload: VoucherTemplateUpdate,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> VoucherResponse:
    ledger = VoucherLedger(db)
    terms = payload.model_dump(exclude={"product_ids"}, exclude_unset=True)
    try:
        template = await ledger.update_template(template_id, terms)
        if payload.product_ids is not None:
            await ledger.set_product_scope(template, payload.product_ids)
        await db.commit()
    except HANDLED_ERRORS as exc:
        await db.rollback()
        raise to_http_exception(exc) from exc
    scopes = await ledger.product_scopes([template.id])
    return serialize_voucher(template, product_ids=scopes.get(template.id))


@router.post("/vouchers/{template_id}/toggle", response_model=VoucherResponse)
async def toggle_voucher_template(
    template_id: UUID,
    payload: VoucherToggleRequest,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> VoucherResponse:
    ledger = VoucherLedger(db)
    try:
        template = await ledger.set_template_active(template_id, payload.active)
        await db.commit()
    except HANDLED_ERRORS as exc:
        await db.rollback()
        raise to_http_exception(exc) from exc
    return serialize_voucher(template)
