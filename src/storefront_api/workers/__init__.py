"""Background workers supporting async processing."""

from .payment_sweeper import PendingPaymentSweeper

__all__ = ["PendingPaymentSweeper"]
