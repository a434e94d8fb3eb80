from decimal import Decimal

import pytest

from storefront_api.models.loyalty import LoyaltyAccount
from storefront_api.models.voucher import DiscountMode, VoucherKind
from storefront_api.services.errors import CheckoutValidationError, InsufficientFundsError, InsufficientPointsError
from storefront_api.services.loyalty import LoyaltyService, points_cost
from storefront_api.services.subscriptions import SubscriptionService
from storefront_api.services.vouchers.ledger import VoucherLedger
from storefront_api.services.wallet.ledger import BalanceLedger


async def _grant_points(session_factory, user_id, points: int) -> None:
    async with session_factory() as session:
        session.add(LoyaltyAccount(user_id=user_id, points_balance=points, lifetime_earned=points))
        await session.commit()


def test_points_cost_rounds_up_with_minimum_of_one() -> None:
    assert points_cost(Decimal("5.00"), Decimal("0.01")) == 500
    assert points_cost(Decimal("0.015"), Decimal("0.01")) == 2
    assert points_cost(Decimal("0"), Decimal("0.01")) == 1


@pytest.mark.asyncio
async def test_subscription_purchase_debits_wallet(session_factory, make_user, fund_wallet) -> None:
    user = await make_user()
    await fund_wallet(user.id, "50.00")

    async with session_factory() as session:
        subscription = await SubscriptionService(session).activate_with_wallet(user.id)
        assert subscription.is_active is True
        assert subscription.first_delivery_used is False
        assert await BalanceLedger(session).get_balance(user.id) == Decimal("10.00")

        with pytest.raises(CheckoutValidationError, match="already active"):
            await SubscriptionService(session).activate_with_wallet(user.id)
        assert await BalanceLedger(session).get_balance(user.id) == Decimal("10.00")


@pytest.mark.asyncio
async def test_subscription_purchase_needs_funds(session_factory, make_user, fund_wallet) -> None:
    user = await make_user()
    await fund_wallet(user.id, "5.00")

    async with session_factory() as session:
        with pytest.raises(InsufficientFundsError):
            await SubscriptionService(session).activate_with_wallet(user.id)
        assert await SubscriptionService(session).is_active(user.id) is False


@pytest.mark.asyncio
async def test_coupon_claim_issues_single_use_instance(session_factory, make_user, make_voucher, subscribe) -> None:
    user = await make_user()
    template = await make_voucher("TPL-CPN", kind=VoucherKind.TEMPLATE, discount_value=Decimal("7.50"))

    async with session_factory() as session:
        with pytest.raises(CheckoutValidationError, match="Subscription required"):
            await SubscriptionService(session).claim_coupon(user.id, template.id)

    await subscribe(user.id)
    async with session_factory() as session:
        coupon = await SubscriptionService(session).claim_coupon(user.id, template.id)
        assert coupon.code.startswith("CPN-")
        assert coupon.kind == VoucherKind.INSTANCE
        assert coupon.template_id == template.id
        assert coupon.user_id == user.id
        assert coupon.total_usage_limit == 1
        assert coupon.per_user_limit == 1
        assert coupon.discount_value == Decimal("7.50")

        with pytest.raises(CheckoutValidationError, match="already claimed"):
            await SubscriptionService(session).claim_coupon(user.id, template.id)


@pytest.mark.asyncio
async def test_points_redemption_issues_voucher(session_factory, make_user, make_voucher) -> None:
    user = await make_user()
    template = await make_voucher("TPL-PTS", kind=VoucherKind.TEMPLATE, discount_value=Decimal("5.00"))
    await _grant_points(session_factory, user.id, 600)

    async with session_factory() as session:
        voucher, cost = await LoyaltyService(session).redeem_voucher(user.id, template.id)
        assert cost == 500
        assert voucher.code.startswith("VCH-")
        assert await LoyaltyService(session).get_balance(user.id) == 100

        with pytest.raises(InsufficientPointsError):
            await LoyaltyService(session).redeem_voucher(user.id, template.id)
        assert await LoyaltyService(session).get_balance(user.id) == 100

        issued = await VoucherLedger(session).list_user_vouchers(user.id)
        assert [item.voucher.code for item in issued] == [voucher.code]
        assert issued[0].used is False


@pytest.mark.asyncio
async def test_percentage_template_cannot_be_bought_with_points(session_factory, make_user, make_voucher) -> None:
    user = await make_user()
    template = await make_voucher(
        "TPL-PCT", kind=VoucherKind.TEMPLATE, discount_mode=DiscountMode.PERCENTAGE, discount_value=Decimal("10")
    )
    await _grant_points(session_factory, user.id, 5000)

    async with session_factory() as session:
        with pytest.raises(CheckoutValidationError, match="fixed-amount"):
            await LoyaltyService(session).redeem_voucher(user.id, template.id)
        assert await LoyaltyService(session).get_balance(user.id) == 5000


@pytest.mark.asyncio
async def test_deactivating_template_retires_instances(session_factory, make_user, make_voucher, subscribe) -> None:
    user = await make_user()
    await subscribe(user.id)
    template = await make_voucher("TPL-OFF", kind=VoucherKind.TEMPLATE)

    async with session_factory() as session:
        coupon = await SubscriptionService(session).claim_coupon(user.id, template.id)

    async with session_factory() as session:
        ledger = VoucherLedger(session)
        await ledger.set_template_active(template.id, False)
        await session.commit()
        refreshed = await ledger.get_by_code(coupon.code)
        assert refreshed.is_active is False
