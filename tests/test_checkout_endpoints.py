import json
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from storefront_api.api.dependencies.payments import get_reconciler
from storefront_api.services.payments.providers.nets import NetsStatus, QrChallenge
from storefront_api.services.payments.reconciler import ConfirmationReconciler


class StubNetsGateway:
    provider = "nets"

    async def create_challenge(self, amount: Decimal) -> QrChallenge:
        return QrChallenge(reference="NETS-API-1", qr_code="qr-payload", txn_id="txn-api-1")

    async def query_status(self, reference: str, *, timeout_flag: bool = False) -> NetsStatus:
        raw = {"result": {"data": {"response_code": "00", "txn_status": 1}}}
        return NetsStatus(response_code="00", txn_status=1, raw=raw)


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _headers(user) -> dict[str, str]:
    return {"X-Session-User": str(user.id)}


def _sse_events(body: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


@pytest.mark.asyncio
async def test_member_endpoints_require_session_header(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        missing = await client.get("/api/v1/cart")
        invalid = await client.get("/api/v1/cart", headers={"X-Session-User": "not-a-uuid"})

    assert missing.status_code == 401
    assert invalid.status_code == 400


@pytest.mark.asyncio
async def test_cart_quote_and_balance_checkout(app_with_db, make_user, make_product, make_voucher, fund_wallet) -> None:
    app, _ = app_with_db
    user = await make_user()
    product = await make_product("45.00", stock=3)
    await make_voucher("WELCOME5", user_id=user.id, discount_value=Decimal("5"))
    await fund_wallet(user.id, "100.00")

    async with _client(app) as client:
        added = await client.post(
            "/api/v1/cart/items", json={"productId": str(product.id), "quantity": 2}, headers=_headers(user)
        )
        assert added.status_code == 201
        assert added.json()["subtotal"] == 90.0

        quote = await client.post("/api/v1/checkout/quote", json={"codes": ["welcome5"]}, headers=_headers(user))
        assert quote.status_code == 200
        quoted = quote.json()
        assert quoted["discountAmount"] == 5.0
        assert quoted["deliveryFee"] == 8.0
        assert quoted["finalTotal"] == 93.0
        assert quoted["errors"] == []

        settled = await client.post("/api/v1/checkout/balance", json={"codes": ["welcome5"]}, headers=_headers(user))
        assert settled.status_code == 201
        receipt_id = settled.json()["receiptId"]

        receipt = await client.get(f"/api/v1/receipts/{receipt_id}", headers=_headers(user))
        wallet = await client.get("/api/v1/wallet", headers=_headers(user))
        cart = await client.get("/api/v1/cart", headers=_headers(user))

    assert receipt.status_code == 200
    body = receipt.json()
    assert body["status"] == "processing"
    assert body["finalTotal"] == 93.0
    assert body["discounts"] == [{"code": "WELCOME5", "amount": 5.0, "autoApplied": False}]
    assert wallet.json()["balance"] == 7.0
    assert sorted(entry["type"] for entry in wallet.json()["entries"]) == ["purchase", "topup"]
    assert cart.json()["items"] == []


@pytest.mark.asyncio
async def test_checkout_errors_map_to_status_codes(app_with_db, make_user, make_product, add_to_cart, fund_wallet) -> None:
    app, _ = app_with_db
    user = await make_user()
    product = await make_product("45.00")
    await add_to_cart(user.id, product.id)
    await fund_wallet(user.id, "10.00")

    async with _client(app) as client:
        bad_code = await client.post("/api/v1/checkout/balance", json={"codes": ["NOPE"]}, headers=_headers(user))
        broke = await client.post("/api/v1/checkout/balance", json={"codes": []}, headers=_headers(user))

    assert bad_code.status_code == 400
    assert bad_code.json()["detail"]["errors"] == ["Code NOPE not found."]
    assert broke.status_code == 409
    assert "Insufficient wallet balance" in broke.json()["detail"]


@pytest.mark.asyncio
async def test_nets_checkout_streams_until_confirmed(app_with_db, make_user, make_product, add_to_cart) -> None:
    app, session_factory = app_with_db
    user = await make_user()
    product = await make_product("20.00")
    await add_to_cart(user.id, product.id)
    app.dependency_overrides[get_reconciler] = lambda: ConfirmationReconciler(
        session_factory, nets=StubNetsGateway(), poll_interval_seconds=0
    )

    async with _client(app) as client:
        created = await client.post("/api/v1/checkout/nets/orders", json={"codes": []}, headers=_headers(user))
        assert created.status_code == 201
        challenge = created.json()
        assert challenge["reference"] == "NETS-API-1"
        assert challenge["qrCode"] == "qr-payload"
        assert challenge["amount"] == 28.0

        stream = await client.get("/api/v1/checkout/nets/NETS-API-1/events", headers=_headers(user))
        receipts = await client.get("/api/v1/receipts", headers=_headers(user))

    assert stream.status_code == 200
    assert stream.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(stream.text)
    assert events[0]["attempt"] == 1
    assert events[-1]["success"] is True
    assert [item["id"] for item in receipts.json()] == [events[-1]["receiptId"]]


@pytest.mark.asyncio
async def test_external_rail_without_gateway_is_unavailable(app_with_db, make_user, make_product, add_to_cart) -> None:
    app, _ = app_with_db
    user = await make_user()
    product = await make_product("20.00")
    await add_to_cart(user.id, product.id)

    async with _client(app) as client:
        response = await client.post("/api/v1/checkout/paypal/orders", json={"codes": []}, headers=_headers(user))

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_topup_amount_must_be_positive(app_with_db, make_user) -> None:
    app, _ = app_with_db
    user = await make_user()

    async with _client(app) as client:
        response = await client.post("/api/v1/wallet/nets/orders", json={"amount": 0}, headers=_headers(user))

    assert response.status_code == 422
