from decimal import Decimal

import pytest

from storefront_api.core.money import format_money, round_money, sum_money
from storefront_api.services.pricing.aggregator import NEW_SUBSCRIBER_REASON, PricingAggregator
from storefront_api.services.vouchers.evaluator import DiscountSummary


def _summary(items_total: str) -> DiscountSummary:
    value = Decimal(items_total)
    return DiscountSummary(subtotal=value, final_total=value)


async def _totals(session_factory, user_id, items_total: str):
    async with session_factory() as session:
        aggregator = PricingAggregator(
            session,
            base_delivery_fee=Decimal("8.00"),
            free_delivery_threshold=Decimal("150.00"),
        )
        return await aggregator.compute_totals(user_id, _summary(items_total))


def test_money_helpers_round_half_up() -> None:
    assert round_money("10.005") == Decimal("10.01")
    assert round_money(None) == Decimal("0.00")
    assert sum_money([Decimal("0.10"), Decimal("0.20")]) == Decimal("0.30")
    assert format_money(Decimal("7.5")) == "$7.50"


@pytest.mark.asyncio
async def test_non_subscriber_pays_base_fee(session_factory, make_user) -> None:
    user = await make_user()

    totals = await _totals(session_factory, user.id, "200.00")

    assert totals.delivery_fee == Decimal("8.00")
    assert totals.final_total == Decimal("208.00")
    assert totals.free_delivery_reason is None
    assert totals.subscription_active is False


@pytest.mark.asyncio
async def test_new_subscriber_first_order_ships_free(session_factory, make_user, subscribe) -> None:
    user = await make_user()
    await subscribe(user.id)

    totals = await _totals(session_factory, user.id, "50.00")

    assert totals.delivery_fee == Decimal("0.00")
    assert totals.final_total == Decimal("50.00")
    assert totals.free_delivery_reason == NEW_SUBSCRIBER_REASON
    assert totals.consumes_first_delivery is True


@pytest.mark.asyncio
async def test_returning_subscriber_threshold(session_factory, make_user, subscribe) -> None:
    user = await make_user()
    await subscribe(user.id, first_delivery_used=True)

    below = await _totals(session_factory, user.id, "50.00")
    assert below.delivery_fee == Decimal("8.00")
    assert below.final_total == Decimal("58.00")
    assert below.consumes_first_delivery is False

    at_threshold = await _totals(session_factory, user.id, "150.00")
    assert at_threshold.delivery_fee == Decimal("0.00")
    assert at_threshold.final_total == Decimal("150.00")
    assert at_threshold.free_delivery_reason == "Free delivery for orders $150.00+ after discounts"
