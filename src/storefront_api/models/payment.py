"""Durable idempotency records for gateway-confirmed payments."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from storefront_api.db.base import Base


class PaymentProviderEnum(str, Enum):
    PAYPAL = "paypal"
    NETS = "nets"


class PaymentPurposeEnum(str, Enum):
    CHECKOUT = "checkout"
    WALLET_TOPUP = "wallet_topup"


class ExternalPaymentStatusEnum(str, Enum):
    INITIATED = "initiated"
    POLLING = "polling"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


PENDING_PAYMENT_STATUSES = (ExternalPaymentStatusEnum.INITIATED, ExternalPaymentStatusEnum.POLLING)
TERMINAL_PAYMENT_STATUSES = (
    ExternalPaymentStatusEnum.CONFIRMED,
    ExternalPaymentStatusEnum.FAILED,
    ExternalPaymentStatusEnum.TIMED_OUT,
)


class ExternalPayment(Base):
    """One gateway transaction reference and its confirmation outcome."""

    __tablename__ = "external_payments"
    __table_args__ = (UniqueConstraint("provider", "reference", name="uq_external_payments_provider_reference"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    provider = Column(SqlEnum(PaymentProviderEnum, name="payment_provider_enum"), nullable=False)
    reference = Column(String(128), nullable=False)
    purpose = Column(SqlEnum(PaymentPurposeEnum, name="payment_purpose_enum"), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    voucher_codes = Column(JSON, nullable=False, default=list)
    status = Column(
        SqlEnum(ExternalPaymentStatusEnum, name="external_payment_status_enum"),
        nullable=False,
        default=ExternalPaymentStatusEnum.INITIATED,
        index=True,
    )
    timeout_flag = Column(Boolean, nullable=False, default=False, server_default="false")
    poll_attempts = Column(Integer, nullable=False, default=0, server_default="0")
    receipt_id = Column(UUID(as_uuid=True), ForeignKey("receipts.id", ondelete="SET NULL"), nullable=True)
    failure_reason = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES
