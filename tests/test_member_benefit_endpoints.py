from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from storefront_api.models.voucher import VoucherKind


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_subscription_coupon_and_points_routes(app_with_db, make_user, make_voucher, fund_wallet) -> None:
    app, _ = app_with_db
    user = await make_user()
    headers = {"X-Session-User": str(user.id)}
    await fund_wallet(user.id, "50.00")
    template = await make_voucher("TPL-MEMBER", kind=VoucherKind.TEMPLATE, discount_value=Decimal("6.00"))

    async with _client(app) as client:
        before = await client.get("/api/v1/subscription", headers=headers)
        locked_out = await client.post(
            "/api/v1/subscription/coupons", json={"templateId": str(template.id)}, headers=headers
        )
        subscribed = await client.post("/api/v1/subscription/wallet", headers=headers)
        repeat = await client.post("/api/v1/subscription/wallet", headers=headers)
        claimed = await client.post(
            "/api/v1/subscription/coupons", json={"templateId": str(template.id)}, headers=headers
        )
        mine = await client.get("/api/v1/vouchers", headers=headers)
        loyalty = await client.get("/api/v1/loyalty", headers=headers)
        redemption = await client.post(
            "/api/v1/loyalty/redemptions", json={"templateId": str(template.id)}, headers=headers
        )
        wallet = await client.get("/api/v1/wallet", headers=headers)

    assert before.json()["isActive"] is False
    assert before.json()["price"] == 40.0
    assert locked_out.status_code == 400
    assert subscribed.status_code == 201
    assert subscribed.json()["isActive"] is True
    assert subscribed.json()["startedAt"] is not None
    assert repeat.status_code == 400
    assert claimed.status_code == 201
    assert claimed.json()["code"].startswith("CPN-")
    assert claimed.json()["discountValue"] == 6.0
    assert [(item["code"], item["used"]) for item in mine.json()] == [(claimed.json()["code"], False)]
    assert loyalty.json() == {"pointsBalance": 0, "pointValue": 0.01}
    assert redemption.status_code == 409
    assert wallet.json()["balance"] == 10.0
