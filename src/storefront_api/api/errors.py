"""Translate settlement exceptions into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from storefront_api.services.errors import CheckoutValidationError, GatewayError, ResourceError
from storefront_api.services.payments.reconciler import GatewayNotConfiguredError, PaymentNotFoundError
from storefront_api.services.receipts import ReceiptNotFoundError, ReceiptStateError
from storefront_api.services.refunds import RefundError


def to_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, CheckoutValidationError):
        detail: str | dict[str, object] = str(exc)
        if exc.errors:
            detail = {"message": str(exc), "errors": exc.errors}
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
    if isinstance(exc, ResourceError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, GatewayError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, GatewayNotConfiguredError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    if isinstance(exc, (ReceiptNotFoundError, PaymentNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (ReceiptStateError, RefundError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


HANDLED_ERRORS = (
    CheckoutValidationError,
    ResourceError,
    GatewayError,
    GatewayNotConfiguredError,
    PaymentNotFoundError,
    ReceiptStateError,
    RefundError,
)
