"""Loyalty points earned on subscriber purchases and spent on vouchers."""

from __future__ import annotations

import math
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.core.settings import settings
from storefront_api.models.loyalty import LoyaltyAccount
from storefront_api.models.voucher import DiscountMode, Voucher
from storefront_api.services.errors import CheckoutValidationError, InsufficientPointsError
from storefront_api.services.locks import get_lock_registry, user_key
from storefront_api.services.vouchers.ledger import VoucherLedger


def points_cost(amount: Decimal, point_value: Decimal | None = None) -> int:
    """Points needed to buy a voucher worth ``amount`` dollars (minimum one)."""

    value = point_value if point_value and point_value > 0 else Decimal("0.01")
    dollars = max(Decimal(amount or 0), Decimal(0))
    return max(1, math.ceil(dollars / value))


def points_for_purchase(items_total: Decimal) -> int:
    return math.floor(Decimal(items_total) * settings.loyalty_points_per_dollar)


class LoyaltyService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_balance(self, user_id: UUID) -> int:
        account = await self._get_account(user_id)
        return int(account.points_balance) if account else 0

    async def credit(self, user_id: UUID, points: int | Decimal) -> int:
        """Add whole points; fractional input is floored and zero is ignored."""

        whole = math.floor(points)
        if whole <= 0:
            return await self.get_balance(user_id)
        account = await self._ensure_account(user_id)
        account.points_balance = int(account.points_balance or 0) + whole
        account.lifetime_earned = int(account.lifetime_earned or 0) + whole
        await self._session.flush()
        logger.info("Loyalty points credited", user_id=str(user_id), points=whole, balance=account.points_balance)
        return account.points_balance

    async def debit(self, user_id: UUID, points: int) -> int:
        if points <= 0:
            raise CheckoutValidationError("Points must be positive")
        account = await self._ensure_account(user_id)
        balance = int(account.points_balance or 0)
        if balance < points:
            raise InsufficientPointsError(balance, points)
        account.points_balance = balance - points
        await self._session.flush()
        return account.points_balance

    async def redeem_voucher(self, user_id: UUID, template_id: UUID) -> tuple[Voucher, int]:
        """Spend points on a fixed-amount template and issue a ``VCH-`` instance."""

        async with get_lock_registry().hold(user_key(user_id)):
            try:
                ledger = VoucherLedger(self._session)
                template = await ledger.get(template_id)
                if template is None or not template.is_template or not template.is_active:
                    raise CheckoutValidationError("Voucher is not available.")
                if template.discount_mode != DiscountMode.FIXED:
                    raise CheckoutValidationError("Only fixed-amount vouchers can be redeemed.")
                cost = points_cost(template.discount_value, settings.loyalty_point_value)
                await self.debit(user_id, cost)
                code = await ledger.unique_code("VCH", nbytes=3)
                voucher = await ledger.issue_from_template(template, user_id=user_id, code=code)
                await self._session.commit()
            except Exception:
                await self._session.rollback()
                raise
        logger.info("Loyalty voucher redeemed", user_id=str(user_id), template_id=str(template_id), points=cost)
        return voucher, cost

    async def _get_account(self, user_id: UUID) -> LoyaltyAccount | None:
        stmt = (
            select(LoyaltyAccount)
            .where(LoyaltyAccount.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def _ensure_account(self, user_id: UUID) -> LoyaltyAccount:
        account = await self._get_account(user_id)
        if account is None:
            account = LoyaltyAccount(user_id=user_id, points_balance=0, lifetime_earned=0)
            self._session.add(account)
            await self._session.flush()
        return account


__all__ = ["LoyaltyService", "points_cost", "points_for_purchase"]
