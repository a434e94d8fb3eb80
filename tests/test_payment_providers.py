import json
from decimal import Decimal

import httpx
import pytest

from storefront_api.services.errors import GatewayError
from storefront_api.services.payments.providers.nets import NetsQrGateway
from storefront_api.services.payments.providers.paypal import PaypalGateway

REQUEST_URL = "https://nets.test/qr/request"
QUERY_URL = "https://nets.test/qr/query"


def _nets(handler) -> NetsQrGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NetsQrGateway(
        api_key="key-1",
        project_id="project-1",
        request_url=REQUEST_URL,
        query_url=QUERY_URL,
        txn_prefix="test|m|",
        http_client=client,
    )


def _paypal(handler) -> PaypalGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PaypalGateway(
        client_id="client",
        client_secret="secret",
        api_base="https://paypal.test/",
        http_client=client,
    )


def _nets_payload(**data) -> dict:
    return {"result": {"data": data}}


@pytest.mark.asyncio
async def test_nets_challenge_sends_credentials_and_amount() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=_nets_payload(response_code="00", txn_status=1, qr_code="base64-qr", txn_retrieval_ref="REF-1"),
        )

    challenge = await _nets(handler).create_challenge(Decimal("42.5"))

    assert challenge.reference == "REF-1"
    assert challenge.qr_code == "base64-qr"
    assert challenge.txn_id.startswith("test|m|")
    request = seen[0]
    assert str(request.url) == REQUEST_URL
    assert request.headers["api-key"] == "key-1"
    assert request.headers["project-id"] == "project-1"
    body = json.loads(request.content)
    assert body["amt_in_dollars"] == 42.5
    assert body["notify_mobile"] == 0


@pytest.mark.asyncio
async def test_nets_challenge_rejects_non_success_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_nets_payload(response_code="05", txn_status=2, error_message="Declined"))

    with pytest.raises(GatewayError, match="Declined"):
        await _nets(handler).create_challenge(Decimal("10"))


@pytest.mark.asyncio
async def test_nets_query_status_forwards_timeout_flag() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=_nets_payload(response_code="00", txn_status="2"))

    status = await _nets(handler).query_status("REF-1", timeout_flag=True)

    assert bodies == [{"txn_retrieval_ref": "REF-1", "frontend_timeout_status": 1}]
    assert status.response_code == "00"
    assert status.txn_status == 2
    assert status.is_failure is True
    assert status.is_success is False


@pytest.mark.asyncio
async def test_nets_http_failure_maps_to_gateway_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "unavailable"})

    with pytest.raises(GatewayError) as excinfo:
        await _nets(handler).query_status("REF-1")
    assert excinfo.value.status_code == 503
    assert excinfo.value.provider == "nets"


@pytest.mark.asyncio
async def test_paypal_order_and_capture_use_bearer_token() -> None:
    calls: list[tuple[str, str, str | None]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path, request.headers.get("Authorization")))
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "token-123"})
        if request.url.path == "/v2/checkout/orders":
            body = json.loads(request.content)
            assert body["intent"] == "CAPTURE"
            assert body["purchase_units"][0]["amount"] == {"currency_code": "SGD", "value": "19.90"}
            return httpx.Response(201, json={"id": "ORDER-1", "status": "CREATED"})
        if request.url.path == "/v2/checkout/orders/ORDER-1/capture":
            return httpx.Response(201, json={"id": "ORDER-1", "status": "COMPLETED"})
        return httpx.Response(404)

    gateway = _paypal(handler)
    order = await gateway.create_order(Decimal("19.9"))
    capture = await gateway.capture_order(order.order_id)

    assert order.order_id == "ORDER-1"
    assert capture.is_completed is True
    assert [path for _, path, _ in calls] == [
        "/v1/oauth2/token",
        "/v2/checkout/orders",
        "/v1/oauth2/token",
        "/v2/checkout/orders/ORDER-1/capture",
    ]
    assert calls[1][2] == "Bearer token-123"
    assert calls[0][2].startswith("Basic ")


@pytest.mark.asyncio
async def test_paypal_capture_failure_maps_to_gateway_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "token-123"})
        return httpx.Response(422, json={"name": "UNPROCESSABLE_ENTITY"})

    with pytest.raises(GatewayError) as excinfo:
        await _paypal(handler).capture_order("ORDER-9")
    assert excinfo.value.status_code == 422
