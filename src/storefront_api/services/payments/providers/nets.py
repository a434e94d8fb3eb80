"""NETS QR client: QR challenge creation and transaction status queries."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping
from uuid import uuid4

import httpx
from loguru import logger

from storefront_api.core.money import round_money
from storefront_api.core.settings import Settings
from storefront_api.services.errors import GatewayError

SUCCESS_RESPONSE_CODE = "00"
TXN_STATUS_SUCCESS = 1
TXN_STATUS_FAILED = 2


@dataclass(slots=True)
class QrChallenge:
    reference: str
    qr_code: str
    txn_id: str
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class NetsStatus:
    response_code: str | None
    txn_status: int | None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.response_code == SUCCESS_RESPONSE_CODE and self.txn_status == TXN_STATUS_SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.txn_status == TXN_STATUS_FAILED


def _result_data(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    result = payload.get("result") if isinstance(payload, Mapping) else None
    data = result.get("data") if isinstance(result, Mapping) else None
    return data if isinstance(data, Mapping) else {}


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class NetsQrGateway:
    """Asynchronous rail: the shopper scans a QR code and we poll for the outcome."""

    provider = "nets"

    def __init__(
        self,
        *,
        api_key: str,
        project_id: str,
        request_url: str,
        query_url: str,
        txn_prefix: str = "sandbox_nets|m|",
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._api_key = api_key
        self._project_id = project_id
        self._request_url = request_url
        self._query_url = query_url
        self._txn_prefix = txn_prefix
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, config: Settings, *, http_client: httpx.AsyncClient | None = None) -> "NetsQrGateway":
        return cls(
            api_key=config.nets_api_key,
            project_id=config.nets_project_id,
            request_url=config.nets_request_url,
            query_url=config.nets_query_url,
            txn_prefix=config.nets_txn_prefix,
            http_client=http_client,
            timeout_seconds=config.nets_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key and self._project_id)

    async def create_challenge(self, amount: Decimal) -> QrChallenge:
        txn_id = f"{self._txn_prefix}{uuid4()}"
        body = {
            "txn_id": txn_id,
            "amt_in_dollars": float(round_money(amount)),
            "notify_mobile": 0,
        }
        payload = await self._post(self._request_url, body)
        data = _result_data(payload)
        response_code = str(data.get("response_code") or "")
        qr_code = data.get("qr_code")
        reference = data.get("txn_retrieval_ref")
        if response_code != SUCCESS_RESPONSE_CODE or _as_int(data.get("txn_status")) != TXN_STATUS_SUCCESS or not qr_code:
            message = data.get("error_message") or "QR code could not be generated"
            raise GatewayError(self.provider, str(message))
        if not reference:
            raise GatewayError(self.provider, "Response missing txn_retrieval_ref")
        logger.info("NETS QR challenge created", reference=reference, amount=round_money(amount))
        return QrChallenge(reference=str(reference), qr_code=str(qr_code), txn_id=txn_id, raw=payload)

    async def query_status(self, reference: str, *, timeout_flag: bool = False) -> NetsStatus:
        body = {
            "txn_retrieval_ref": reference,
            "frontend_timeout_status": 1 if timeout_flag else 0,
        }
        payload = await self._post(self._query_url, body)
        data = _result_data(payload)
        response_code = data.get("response_code")
        return NetsStatus(
            response_code=str(response_code) if response_code is not None else None,
            txn_status=_as_int(data.get("txn_status")),
            raw=payload,
        )

    async def _post(self, url: str, body: Mapping[str, Any]) -> Mapping[str, Any]:
        headers = {
            "api-key": self._api_key,
            "project-id": self._project_id,
            "Content-Type": "application/json",
        }
        client = self._http_client or httpx.AsyncClient(timeout=self._timeout_seconds)
        owns_client = self._http_client is None
        try:
            response = await client.post(url, json=dict(body), headers=headers)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise GatewayError(
                self.provider,
                f"HTTP {exc.response.status_code} from {url}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(self.provider, f"Request to {url} failed: {exc}") from exc
        except ValueError as exc:
            raise GatewayError(self.provider, "Response was not valid JSON") from exc
        finally:
            if owns_client:
                await client.aclose()
        return payload if isinstance(payload, Mapping) else {}


__all__ = ["NetsQrGateway", "NetsStatus", "QrChallenge"]
