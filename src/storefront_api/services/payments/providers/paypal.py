"""PayPal Orders v2 client used by the synchronous capture rail."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping

import httpx
from loguru import logger

from storefront_api.core.money import round_money
from storefront_api.core.settings import Settings
from storefront_api.services.errors import GatewayError

CAPTURE_COMPLETED = "COMPLETED"


@dataclass(slots=True)
class PaypalOrder:
    order_id: str
    status: str
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PaypalCapture:
    order_id: str
    status: str
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.status == CAPTURE_COMPLETED


class PaypalGateway:
    provider = "paypal"

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        api_base: str,
        currency: str = "SGD",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._api_base = api_base.rstrip("/")
        self._currency = currency
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, config: Settings, *, http_client: httpx.AsyncClient | None = None) -> "PaypalGateway":
        return cls(
            client_id=config.paypal_client_id,
            client_secret=config.paypal_client_secret,
            api_base=config.paypal_api_base,
            currency=config.paypal_currency,
            http_client=http_client,
            timeout_seconds=config.paypal_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    async def create_order(self, amount: Decimal) -> PaypalOrder:
        """Create a CAPTURE-intent order for ``amount`` and return its id."""

        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {"amount": {"currency_code": self._currency, "value": f"{round_money(amount):.2f}"}},
            ],
        }
        payload = await self._call("POST", "/v2/checkout/orders", json=body)
        order_id = payload.get("id")
        if not order_id:
            raise GatewayError(self.provider, "Order response missing id")
        logger.info("PayPal order created", order_id=order_id, amount=round_money(amount))
        return PaypalOrder(order_id=str(order_id), status=str(payload.get("status") or ""), raw=payload)

    async def capture_order(self, order_id: str) -> PaypalCapture:
        payload = await self._call("POST", f"/v2/checkout/orders/{order_id}/capture")
        status = str(payload.get("status") or "")
        logger.info("PayPal order captured", order_id=order_id, status=status)
        return PaypalCapture(order_id=order_id, status=status, raw=payload)

    async def _call(self, method: str, path: str, *, json: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
        client = self._http_client or httpx.AsyncClient(timeout=self._timeout_seconds)
        owns_client = self._http_client is None
        try:
            token = await self._access_token(client)
            response = await client.request(
                method,
                f"{self._api_base}{path}",
                json=dict(json) if json is not None else None,
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise GatewayError(
                self.provider,
                f"HTTP {exc.response.status_code} for {path}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(self.provider, f"Request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise GatewayError(self.provider, "Response was not valid JSON") from exc
        finally:
            if owns_client:
                await client.aclose()
        return payload if isinstance(payload, Mapping) else {}

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            f"{self._api_base}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self._client_id, self._client_secret),
        )
        response.raise_for_status()
        token = response.json().get("access_token")
        if not token:
            raise GatewayError(self.provider, "OAuth response missing access_token")
        return str(token)


__all__ = ["PaypalCapture", "PaypalGateway", "PaypalOrder"]
