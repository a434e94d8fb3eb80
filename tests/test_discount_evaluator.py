from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront_api.models.receipt import PaymentRailEnum, Receipt
from storefront_api.models.voucher import DiscountMode, VoucherKind
from storefront_api.services.cart import CartService
from storefront_api.services.vouchers.evaluator import STACKING_ERROR, DiscountEvaluator, normalize_codes
from storefront_api.services.vouchers.ledger import VoucherLedger


async def _evaluate(session_factory, user_id, codes, **kwargs):
    async with session_factory() as session:
        lines = await CartService(session).get_lines(user_id)
        return await DiscountEvaluator(session).evaluate(user_id, lines, codes, **kwargs)


async def _record_use(session_factory, voucher, user_id):
    async with session_factory() as session:
        receipt = Receipt(
            user_id=user_id,
            subtotal=Decimal("10.00"),
            final_total=Decimal("10.00"),
            payment_rail=PaymentRailEnum.BALANCE,
            payment_label="Wallet",
        )
        session.add(receipt)
        await session.flush()
        await VoucherLedger(session).record_redemption(
            voucher.id, user_id=user_id, receipt_id=receipt.id, amount=Decimal("1.00")
        )
        await session.commit()


@pytest.fixture
def cart_of_100(make_user, make_product, add_to_cart):
    async def _build():
        user = await make_user()
        product = await make_product("100.00")
        await add_to_cart(user.id, product.id)
        return user, product

    return _build


def test_normalize_codes_dedupes_case_insensitively() -> None:
    assert normalize_codes([" save20", "SAVE20", "", "tenoff ", None]) == ["SAVE20", "TENOFF"]


@pytest.mark.asyncio
async def test_fixed_and_capped_percentage_stack(session_factory, cart_of_100, make_voucher) -> None:
    user, _ = await cart_of_100()
    await make_voucher("SAVE20", discount_value=Decimal("20"), stackable=True, user_id=user.id)
    await make_voucher(
        "TENOFF",
        discount_mode=DiscountMode.PERCENTAGE,
        discount_value=Decimal("10"),
        max_discount=Decimal("15"),
        stackable=True,
        user_id=user.id,
    )

    summary = await _evaluate(session_factory, user.id, ["save20", " tenoff "])

    assert summary.errors == []
    assert summary.subtotal == Decimal("100.00")
    assert [item.code for item in summary.applied] == ["SAVE20", "TENOFF"]
    assert summary.total_discount == Decimal("30.00")
    assert summary.final_total == Decimal("70.00")


@pytest.mark.asyncio
async def test_percentage_cap_limits_discount(session_factory, make_user, make_product, add_to_cart, make_voucher) -> None:
    user = await make_user()
    product = await make_product("200.00")
    await add_to_cart(user.id, product.id)
    await make_voucher(
        "HALF",
        discount_mode=DiscountMode.PERCENTAGE,
        discount_value=Decimal("50"),
        max_discount=Decimal("15"),
        user_id=user.id,
    )

    summary = await _evaluate(session_factory, user.id, ["HALF"])

    assert summary.total_discount == Decimal("15.00")
    assert summary.final_total == Decimal("185.00")


@pytest.mark.asyncio
async def test_non_stackable_combination_rejected(session_factory, cart_of_100, make_voucher) -> None:
    user, _ = await cart_of_100()
    await make_voucher("SOLO", discount_value=Decimal("20"), stackable=False, user_id=user.id)
    await make_voucher("FRIEND", discount_value=Decimal("5"), stackable=True, user_id=user.id)

    summary = await _evaluate(session_factory, user.id, ["SOLO", "FRIEND"])

    assert summary.errors == [STACKING_ERROR]
    assert summary.applied == []
    assert summary.total_discount == Decimal("0.00")
    assert summary.final_total == Decimal("100.00")


@pytest.mark.asyncio
async def test_unknown_code_reported(session_factory, cart_of_100) -> None:
    user, _ = await cart_of_100()

    summary = await _evaluate(session_factory, user.id, ["nope"])

    assert summary.errors == ["Code NOPE not found."]
    assert summary.final_total == Decimal("100.00")


@pytest.mark.asyncio
async def test_duplicate_code_applied_once(session_factory, cart_of_100, make_voucher) -> None:
    user, _ = await cart_of_100()
    await make_voucher("SAVE20", discount_value=Decimal("20"), user_id=user.id)

    summary = await _evaluate(session_factory, user.id, ["SAVE20", "save20"])

    assert summary.normalized_codes == ["SAVE20"]
    assert len(summary.applied) == 1
    assert summary.total_discount == Decimal("20.00")


@pytest.mark.asyncio
async def test_eligibility_reasons(session_factory, cart_of_100, make_user, make_voucher) -> None:
    user, _ = await cart_of_100()
    other = await make_user()
    now = datetime.now(timezone.utc)
    await make_voucher("TPL", kind=VoucherKind.TEMPLATE)
    await make_voucher("OFF", is_active=False, user_id=user.id)
    await make_voucher("THEIRS", user_id=other.id)
    await make_voucher("PUBLIC")
    await make_voucher("OLD", user_id=user.id, expires_at=now - timedelta(days=1))
    await make_voucher("BIG", user_id=user.id, min_spend=Decimal("150"))

    summary = await _evaluate(session_factory, user.id, ["TPL"])
    assert summary.errors == ["TPL: Voucher template cannot be redeemed directly."]

    summary = await _evaluate(session_factory, user.id, ["OFF"])
    assert summary.errors == ["OFF: Voucher is inactive."]

    summary = await _evaluate(session_factory, user.id, ["THEIRS"])
    assert summary.errors == ["THEIRS: Voucher is not assigned to your account."]

    summary = await _evaluate(session_factory, user.id, ["PUBLIC"])
    assert summary.errors == ["PUBLIC: Voucher is not available for your account."]

    summary = await _evaluate(session_factory, user.id, ["PUBLIC"], allow_public=True)
    assert summary.errors == []
    assert summary.total_discount == Decimal("10.00")

    summary = await _evaluate(session_factory, user.id, ["OLD"])
    assert summary.errors == ["OLD: Voucher is expired or not active yet."]

    summary = await _evaluate(session_factory, user.id, ["BIG"])
    assert summary.errors == ["BIG: Minimum spend $150.00 not met."]


@pytest.mark.asyncio
async def test_usage_limits_block_reuse(session_factory, cart_of_100, make_user, make_voucher) -> None:
    user, _ = await cart_of_100()
    other = await make_user()
    once = await make_voucher("ONCE", user_id=user.id, per_user_limit=1)
    capped = await make_voucher("CAPPED", total_usage_limit=1)

    await _record_use(session_factory, once, user.id)
    await _record_use(session_factory, capped, other.id)

    summary = await _evaluate(session_factory, user.id, ["ONCE"])
    assert summary.errors == ["ONCE: You have reached the usage limit for this voucher."]

    summary = await _evaluate(session_factory, user.id, ["CAPPED"], allow_public=True)
    assert summary.errors == ["CAPPED: Voucher usage limit reached."]


@pytest.mark.asyncio
async def test_auto_apply_picks_best_then_soonest_expiry(session_factory, cart_of_100, make_voucher) -> None:
    user, _ = await cart_of_100()
    now = datetime.now(timezone.utc)
    await make_voucher("AUTO-NOEXP", user_id=user.id, auto_apply=True, discount_value=Decimal("10"))
    await make_voucher(
        "AUTO-LATER", user_id=user.id, auto_apply=True, discount_value=Decimal("10"), expires_at=now + timedelta(days=10)
    )
    await make_voucher(
        "AUTO-SOON", user_id=user.id, auto_apply=True, discount_value=Decimal("10"), expires_at=now + timedelta(days=2)
    )
    await make_voucher("AUTO-SMALL", user_id=user.id, auto_apply=True, discount_value=Decimal("5"))

    summary = await _evaluate(session_factory, user.id, [])

    assert summary.auto_applied is not None
    assert summary.auto_applied.code == "AUTO-SOON"
    assert summary.auto_applied.auto_applied is True
    assert summary.total_discount == Decimal("10.00")

    await make_voucher("AUTO-BEST", user_id=user.id, auto_apply=True, discount_value=Decimal("25"))
    summary = await _evaluate(session_factory, user.id, [])
    assert summary.auto_applied.code == "AUTO-BEST"


@pytest.mark.asyncio
async def test_auto_apply_skips_requested_code_and_respects_stacking(
    session_factory, cart_of_100, make_voucher
) -> None:
    user, _ = await cart_of_100()
    await make_voucher("AUTO", user_id=user.id, auto_apply=True, discount_value=Decimal("15"), stackable=True)
    await make_voucher("SOLO", user_id=user.id, discount_value=Decimal("5"), stackable=False)

    summary = await _evaluate(session_factory, user.id, ["AUTO"])
    assert [item.code for item in summary.applied] == ["AUTO"]
    assert summary.auto_applied is None

    summary = await _evaluate(session_factory, user.id, ["SOLO"])
    assert [item.code for item in summary.applied] == ["SOLO"]
    assert summary.auto_applied is None
    assert summary.total_discount == Decimal("5.00")


@pytest.mark.asyncio
async def test_total_discount_capped_at_subtotal(session_factory, cart_of_100, make_voucher) -> None:
    user, _ = await cart_of_100()
    await make_voucher("BIG80", user_id=user.id, discount_value=Decimal("80"), stackable=True)
    await make_voucher("BIG50", user_id=user.id, discount_value=Decimal("50"), stackable=True)

    summary = await _evaluate(session_factory, user.id, ["BIG80", "BIG50"])

    assert summary.total_discount == Decimal("100.00")
    assert summary.final_total == Decimal("0.00")
    attributed = [(item.code, amount) for item, amount in summary.attributed_amounts()]
    assert attributed == [("BIG80", Decimal("80")), ("BIG50", Decimal("20.00"))]


@pytest.mark.asyncio
async def test_item_scoped_voucher_discounts_matching_lines(
    session_factory, make_user, make_product, add_to_cart, make_voucher
) -> None:
    user = await make_user()
    beans = await make_product("40.00", title="Beans")
    grinder = await make_product("60.00", title="Grinder")
    await add_to_cart(user.id, beans.id)
    await add_to_cart(user.id, grinder.id)
    voucher = await make_voucher(
        "BEANS25", user_id=user.id, discount_mode=DiscountMode.PERCENTAGE, discount_value=Decimal("25")
    )
    async with session_factory() as session:
        ledger = VoucherLedger(session)
        await ledger.set_product_scope(await ledger.get(voucher.id), [beans.id])
        await session.commit()

    summary = await _evaluate(session_factory, user.id, ["BEANS25"])

    assert summary.errors == []
    assert summary.total_discount == Decimal("10.00")
    assert summary.final_total == Decimal("90.00")
