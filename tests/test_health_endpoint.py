import pytest
from httpx import ASGITransport, AsyncClient

from storefront_api.app import create_app


@pytest.mark.asyncio
async def test_health_endpoints() -> None:
    app = create_app()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        root = await client.get("/healthz")
        versioned = await client.get("/api/v1/healthz")
        ready = await client.get("/api/v1/readyz")

    assert root.status_code == 200
    assert root.json()["status"] == "ok"
    assert versioned.json() == {"status": "ok"}
    assert ready.status_code == 200
    body = ready.json()
    assert body["status"] == "ready"
    assert body["components"]["payment_sweeper"]["status"] == "disabled"
