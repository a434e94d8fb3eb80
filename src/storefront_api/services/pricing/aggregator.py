"""Payable total: discounted items plus delivery with subscriber waivers."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.core.money import ZERO, format_money, round_money
from storefront_api.core.settings import settings
from storefront_api.services.subscriptions import SubscriptionService
from storefront_api.services.vouchers.evaluator import DiscountSummary

NEW_SUBSCRIBER_REASON = "New subscriber free delivery"


@dataclass(slots=True)
class CheckoutTotals:
    items_total: Decimal
    delivery_fee: Decimal
    final_total: Decimal
    base_delivery_fee: Decimal
    free_delivery_threshold: Decimal
    free_delivery_reason: str | None = None
    subscription_active: bool = False
    # Set when this order uses the new-subscriber waiver; consumed at materialization.
    consumes_first_delivery: bool = False


class PricingAggregator:
    def __init__(
        self,
        session: AsyncSession,
        *,
        base_delivery_fee: Decimal | None = None,
        free_delivery_threshold: Decimal | None = None,
    ) -> None:
        self._subscriptions = SubscriptionService(session)
        self._base_fee = round_money(settings.delivery_fee if base_delivery_fee is None else base_delivery_fee)
        self._threshold = round_money(
            settings.subscription_free_delivery_threshold if free_delivery_threshold is None else free_delivery_threshold
        )

    async def compute_totals(self, user_id: UUID, discount: DiscountSummary) -> CheckoutTotals:
        items_total = round_money(discount.final_total)
        subscription = await self._subscriptions.get(user_id)
        active = bool(subscription and subscription.is_active)

        delivery_fee = self._base_fee
        reason: str | None = None
        consumes_first_delivery = False
        if active and not subscription.first_delivery_used:
            delivery_fee = ZERO
            reason = NEW_SUBSCRIBER_REASON
            consumes_first_delivery = True
        elif active and items_total >= self._threshold:
            delivery_fee = ZERO
            reason = f"Free delivery for orders {format_money(self._threshold)}+ after discounts"

        return CheckoutTotals(
            items_total=items_total,
            delivery_fee=delivery_fee,
            final_total=round_money(items_total + delivery_fee),
            base_delivery_fee=self._base_fee,
            free_delivery_threshold=self._threshold,
            free_delivery_reason=reason,
            subscription_active=active,
            consumes_first_delivery=consumes_first_delivery,
        )


__all__ = ["CheckoutTotals", "NEW_SUBSCRIBER_REASON", "PricingAggregator"]
