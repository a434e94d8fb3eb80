"""Receipt lookup and fulfilment lifecycle."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.core.money import round_money
from storefront_api.models.receipt import Receipt, ReceiptStatusEnum


class ReceiptStateError(RuntimeError):
    """Base exception for receipt lifecycle failures."""


class ReceiptNotFoundError(ReceiptStateError):
    pass


class InvalidReceiptTransitionError(ReceiptStateError):
    def __init__(self, current: ReceiptStatusEnum, requested: ReceiptStatusEnum) -> None:
        super().__init__(f"Cannot transition receipt from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


class ReceiptAlreadyRefundedError(ReceiptStateError):
    pass


class ReceiptService:
    _ALLOWED_TRANSITIONS: dict[ReceiptStatusEnum, set[ReceiptStatusEnum]] = {
        ReceiptStatusEnum.PROCESSING: {ReceiptStatusEnum.DELIVERED},
        ReceiptStatusEnum.DELIVERED: {ReceiptStatusEnum.COMPLETED},
        ReceiptStatusEnum.COMPLETED: set(),
    }

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, receipt_id: UUID) -> Receipt | None:
        stmt = select(Receipt).where(Receipt.id == receipt_id).execution_options(populate_existing=True)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def require(self, receipt_id: UUID) -> Receipt:
        receipt = await self.get(receipt_id)
        if receipt is None:
            raise ReceiptNotFoundError(f"Receipt {receipt_id} not found")
        return receipt

    async def list_for_user(self, user_id: UUID, *, limit: int = 50) -> list[Receipt]:
        stmt = select(Receipt).where(Receipt.user_id == user_id).order_by(Receipt.created_at.desc()).limit(limit)
        return list((await self._session.execute(stmt)).scalars())

    async def mark_delivered(self, receipt_id: UUID) -> Receipt:
        return await self._transition(receipt_id, ReceiptStatusEnum.DELIVERED)

    async def mark_completed(self, receipt_id: UUID) -> Receipt:
        return await self._transition(receipt_id, ReceiptStatusEnum.COMPLETED)

    async def mark_refunded(self, receipt_id: UUID, *, actor_id: UUID | None, amount: Decimal) -> Receipt:
        """Record the refund once; a second attempt raises ``ReceiptAlreadyRefundedError``."""

        now = datetime.now(timezone.utc)
        stmt = (
            update(Receipt)
            .where(Receipt.id == receipt_id, Receipt.refunded_at.is_(None))
            .values(refunded_amount=round_money(amount), refunded_at=now, refunded_by=actor_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            await self.require(receipt_id)
            raise ReceiptAlreadyRefundedError(f"Receipt {receipt_id} has already been refunded")
        return await self.require(receipt_id)

    async def _transition(self, receipt_id: UUID, target: ReceiptStatusEnum) -> Receipt:
        receipt = await self.require(receipt_id)
        current = ReceiptStatusEnum(receipt.status)
        if target not in self._ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidReceiptTransitionError(current, target)

        receipt.status = target
        now = datetime.now(timezone.utc)
        if target == ReceiptStatusEnum.DELIVERED:
            receipt.delivered_at = now
        elif target == ReceiptStatusEnum.COMPLETED:
            receipt.completed_at = now
        await self._session.flush()
        logger.info("Receipt status updated", receipt_id=str(receipt_id), from_status=current.value, to_status=target.value)
        return receipt


__all__ = [
    "InvalidReceiptTransitionError",
    "ReceiptAlreadyRefundedError",
    "ReceiptNotFoundError",
    "ReceiptService",
    "ReceiptStateError",
]
