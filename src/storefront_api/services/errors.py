"""Typed failures raised by the settlement core.

Validation errors mean the request was rejected before anything was written.
Resource errors mean a stock, balance or usage precondition failed and the
surrounding unit of work was rolled back. Gateway errors cover unreachable or
non-success payment providers.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID


class SettlementError(RuntimeError):
    """Base class for settlement failures."""


class CheckoutValidationError(SettlementError):
    """Bad or missing input: empty cart, unusable voucher, malformed amount."""

    def __init__(self, message: str, *, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class InvalidAmountError(CheckoutValidationError):
    def __init__(self, amount: Decimal) -> None:
        super().__init__(f"Amount must be greater than zero (received {amount})")
        self.amount = amount


class ResourceError(SettlementError):
    """A resource precondition failed inside a unit of work."""


class InsufficientStockError(ResourceError):
    def __init__(self, product_id: UUID, requested: int) -> None:
        super().__init__(f"Insufficient stock for product {product_id} (requested {requested})")
        self.product_id = product_id
        self.requested = requested


class InsufficientFundsError(ResourceError):
    def __init__(self, balance: Decimal, requested: Decimal) -> None:
        super().__init__(f"Insufficient wallet balance: {balance} available, {requested} requested")
        self.balance = balance
        self.requested = requested


class VoucherLimitExceededError(ResourceError):
    def __init__(self, code: str, reason: str) -> None:
        super().__init__(f"{code}: {reason}")
        self.code = code
        self.reason = reason


class InsufficientPointsError(ResourceError):
    def __init__(self, balance: int, requested: int) -> None:
        super().__init__(f"Not enough loyalty points: {balance} available, {requested} required")
        self.balance = balance
        self.requested = requested


class GatewayError(SettlementError):
    """Payment provider unreachable or returned a non-success response."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


__all__ = [
    "CheckoutValidationError",
    "GatewayError",
    "InsufficientFundsError",
    "InsufficientPointsError",
    "InsufficientStockError",
    "InvalidAmountError",
    "ResourceError",
    "SettlementError",
    "VoucherLimitExceededError",
]
