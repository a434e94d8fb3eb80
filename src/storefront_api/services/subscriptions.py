"""Subscription lookup and member benefits."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.core.settings import settings
from storefront_api.models.subscription import Subscription
from storefront_api.models.voucher import Voucher
from storefront_api.models.wallet import WalletEntryType
from storefront_api.services.errors import CheckoutValidationError
from storefront_api.services.locks import get_lock_registry, user_key
from storefront_api.services.vouchers.ledger import VoucherLedger
from storefront_api.services.wallet.ledger import BalanceLedger, LedgerMeta


class SubscriptionService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: UUID) -> Subscription | None:
        stmt = select(Subscription).where(Subscription.user_id == user_id)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def is_active(self, user_id: UUID) -> bool:
        subscription = await self.get(user_id)
        return bool(subscription and subscription.is_active)

    async def mark_first_delivery_used(self, user_id: UUID) -> bool:
        """Consume the new-subscriber delivery waiver. Returns False if already used."""

        stmt = (
            update(Subscription)
            .where(Subscription.user_id == user_id, Subscription.first_delivery_used.is_(False))
            .values(first_delivery_used=True)
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        return bool(result.rowcount)

    async def activate(self, user_id: UUID) -> Subscription:
        subscription = await self.get(user_id)
        if subscription is None:
            subscription = Subscription(user_id=user_id)
            self._session.add(subscription)
        subscription.is_active = True
        subscription.started_at = datetime.now(timezone.utc)
        await self._session.flush()
        return subscription

    async def activate_with_wallet(self, user_id: UUID) -> Subscription:
        """Charge the subscription price to the wallet and activate membership."""

        async with get_lock_registry().hold(user_key(user_id)):
            try:
                if await self.is_active(user_id):
                    raise CheckoutValidationError("Subscription is already active")
                await BalanceLedger(self._session).debit(
                    user_id,
                    settings.subscription_price,
                    LedgerMeta(
                        entry_type=WalletEntryType.SUBSCRIPTION,
                        reference_type="subscription",
                        note="Subscription purchase",
                    ),
                )
                subscription = await self.activate(user_id)
                await self._session.commit()
            except Exception:
                await self._session.rollback()
                raise
        logger.info("Subscription activated", user_id=str(user_id), price=settings.subscription_price)
        return subscription

    async def claim_coupon(self, user_id: UUID, template_id: UUID) -> Voucher:
        """Issue a ``CPN-`` instance of ``template_id``; one claim per template."""

        async with get_lock_registry().hold(user_key(user_id)):
            try:
                if not await self.is_active(user_id):
                    raise CheckoutValidationError("Subscription required to claim coupons.")
                ledger = VoucherLedger(self._session)
                template = await ledger.get(template_id)
                if template is None or not template.is_template or not template.is_active:
                    raise CheckoutValidationError("Coupon is not available.")
                if await ledger.has_claimed(template.id, user_id):
                    raise CheckoutValidationError("You already claimed this coupon.")
                code = await ledger.unique_code("CPN", nbytes=3)
                voucher = await ledger.issue_from_template(template, user_id=user_id, code=code)
                await self._session.commit()
            except Exception:
                await self._session.rollback()
                raise
        return voucher


__all__ = ["SubscriptionService"]
