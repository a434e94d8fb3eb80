"""Refund requests and wallet refunds for completed receipts."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.core.money import ZERO, round_money
from storefront_api.models.receipt import Receipt, ReceiptStatusEnum
from storefront_api.models.refund import RefundRequest, RefundRequestStatusEnum
from storefront_api.models.wallet import WalletEntryType
from storefront_api.services.locks import get_lock_registry, user_key
from storefront_api.services.receipts import ReceiptService
from storefront_api.services.wallet.ledger import BalanceLedger, LedgerMeta


class RefundError(RuntimeError):
    """Raised when a refund request or decision is not allowed."""


class RefundService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._receipts = ReceiptService(session)

    async def get(self, request_id: UUID) -> RefundRequest | None:
        return await self._session.get(RefundRequest, request_id)

    async def get_for_receipt(self, receipt_id: UUID) -> RefundRequest | None:
        stmt = select(RefundRequest).where(RefundRequest.receipt_id == receipt_id)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def list_pending(self) -> list[RefundRequest]:
        stmt = (
            select(RefundRequest)
            .where(RefundRequest.status == RefundRequestStatusEnum.PENDING)
            .order_by(RefundRequest.created_at)
        )
        return list((await self._session.execute(stmt)).scalars())

    async def request(self, receipt_id: UUID, user_id: UUID, reason: str | None = None) -> RefundRequest:
        receipt = await self._receipts.require(receipt_id)
        if receipt.user_id != user_id:
            raise RefundError("Access denied")
        if receipt.is_refunded:
            raise RefundError("Receipt already refunded")
        if ReceiptStatusEnum(receipt.status) != ReceiptStatusEnum.COMPLETED:
            raise RefundError("Refunds are available only after order completion.")
        if await self.get_for_receipt(receipt_id) is not None:
            raise RefundError("Refund request already submitted.")

        refund_request = RefundRequest(
            receipt_id=receipt_id,
            user_id=user_id,
            amount=round_money(receipt.final_total),
            reason=reason or "Refund requested",
        )
        self._session.add(refund_request)
        await self._session.commit()
        logger.info("Refund requested", receipt_id=str(receipt_id), user_id=str(user_id))
        return refund_request

    async def approve(self, request_id: UUID, admin_id: UUID) -> RefundRequest:
        """Credit the wallet, mark the receipt refunded and close the request together."""

        refund_request = await self.get(request_id)
        if refund_request is None or refund_request.status != RefundRequestStatusEnum.PENDING:
            raise RefundError("Refund request not available.")

        async with get_lock_registry().hold(user_key(refund_request.user_id)):
            try:
                receipt = await self._receipts.require(refund_request.receipt_id)
                await self._refund(receipt, admin_id, refund_request.amount, note="Admin approved refund")
                refund_request.status = RefundRequestStatusEnum.APPROVED
                refund_request.decided_by = admin_id
                refund_request.decided_at = datetime.now(timezone.utc)
                await self._session.commit()
            except Exception:
                await self._session.rollback()
                raise
        return refund_request

    async def reject(self, request_id: UUID, admin_id: UUID, note: str | None = None) -> RefundRequest:
        refund_request = await self.get(request_id)
        if refund_request is None or refund_request.status != RefundRequestStatusEnum.PENDING:
            raise RefundError("Refund request not available.")
        refund_request.status = RefundRequestStatusEnum.REJECTED
        refund_request.decided_by = admin_id
        refund_request.decision_note = note or "Refund rejected"
        refund_request.decided_at = datetime.now(timezone.utc)
        await self._session.commit()
        return refund_request

    async def refund_to_wallet(self, receipt_id: UUID, admin_id: UUID) -> Receipt:
        """Admin-initiated refund of the full receipt total without a request."""

        receipt = await self._receipts.require(receipt_id)
        async with get_lock_registry().hold(user_key(receipt.user_id)):
            try:
                receipt = await self._refund(receipt, admin_id, receipt.final_total, note="Admin refund")
                await self._session.commit()
            except Exception:
                await self._session.rollback()
                raise
        return receipt

    async def _refund(self, receipt: Receipt, admin_id: UUID, amount: Decimal, *, note: str) -> Receipt:
        if receipt.is_refunded:
            raise RefundError("Receipt already refunded.")
        value = round_money(amount or receipt.final_total)
        # A fully discounted receipt is closed as refunded without a ledger entry.
        if value > ZERO:
            await BalanceLedger(self._session).credit(
                receipt.user_id,
                value,
                LedgerMeta(
                    entry_type=WalletEntryType.REFUND,
                    reference_type="receipt_refund",
                    reference_id=str(receipt.id),
                    note=note,
                ),
            )
        refunded = await self._receipts.mark_refunded(receipt.id, actor_id=admin_id, amount=value)
        logger.info("Receipt refunded to wallet", receipt_id=str(receipt.id), amount=value, admin_id=str(admin_id))
        return refunded


__all__ = ["RefundError", "RefundService"]
