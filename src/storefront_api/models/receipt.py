"""Receipt header, items and attributed discounts produced by materialization."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from storefront_api.db.base import Base


class ReceiptStatusEnum(str, Enum):
    PROCESSING = "processing"
    DELIVERED = "delivered"
    COMPLETED = "completed"


class PaymentRailEnum(str, Enum):
    """How a purchase was settled."""

    BALANCE = "balance"
    EXTERNAL_SYNC = "external_sync"
    EXTERNAL_ASYNC = "external_async"


class Receipt(Base):
    __tablename__ = "receipts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subtotal = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    delivery_fee = Column(Numeric(12, 2), nullable=False, default=0)
    final_total = Column(Numeric(12, 2), nullable=False)
    payment_rail = Column(SqlEnum(PaymentRailEnum, name="payment_rail_enum"), nullable=False)
    payment_label = Column(String(64), nullable=False)
    external_reference = Column(String(128), nullable=True)
    status = Column(
        SqlEnum(ReceiptStatusEnum, name="receipt_status_enum"),
        nullable=False,
        default=ReceiptStatusEnum.PROCESSING,
    )
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    refunded_amount = Column(Numeric(12, 2), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    refunded_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    items = relationship(
        "ReceiptItem",
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="ReceiptItem.position",
        lazy="selectin",
    )
    discounts = relationship(
        "ReceiptDiscount",
        back_populates="receipt",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_refunded(self) -> bool:
        return self.refunded_at is not None


class ReceiptItem(Base):
    __tablename__ = "receipt_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    receipt_id = Column(UUID(as_uuid=True), ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    product_title = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    receipt = relationship("Receipt", back_populates="items")


class ReceiptDiscount(Base):
    """Discount attributed to one voucher on a receipt."""

    __tablename__ = "receipt_discounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    receipt_id = Column(UUID(as_uuid=True), ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False, index=True)
    voucher_id = Column(UUID(as_uuid=True), ForeignKey("vouchers.id", ondelete="SET NULL"), nullable=True)
    code = Column(String(64), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    auto_applied = Column(Boolean, nullable=False, default=False, server_default="false")

    receipt = relationship("Receipt", back_populates="discounts")
