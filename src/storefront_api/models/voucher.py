"""Voucher ledger models: templates, issued instances and redemptions."""

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
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from storefront_api.db.base import Base


class VoucherKind(str, Enum):
    """Templates are admin definitions; instances are the redeemable codes."""

    TEMPLATE = "template"
    INSTANCE = "instance"


class DiscountMode(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class VoucherScope(str, Enum):
    GENERAL = "general"
    ITEM = "item"


class Voucher(Base):
    __tablename__ = "vouchers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    code = Column(String(64), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    kind = Column(
        SqlEnum(VoucherKind, name="voucher_kind_enum"),
        nullable=False,
        default=VoucherKind.INSTANCE,
    )
    discount_mode = Column(
        SqlEnum(DiscountMode, name="voucher_discount_mode_enum"),
        nullable=False,
        default=DiscountMode.FIXED,
    )
    discount_value = Column(Numeric(12, 2), nullable=False)
    max_discount = Column(Numeric(12, 2), nullable=True)
    min_spend = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    starts_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    total_usage_limit = Column(Integer, nullable=True)
    per_user_limit = Column(Integer, nullable=True)
    stackable = Column(Boolean, nullable=False, default=False, server_default="false")
    auto_apply = Column(Boolean, nullable=False, default=False, server_default="false")
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    scope = Column(
        SqlEnum(VoucherScope, name="voucher_scope_enum"),
        nullable=False,
        default=VoucherScope.GENERAL,
    )
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    template_id = Column(UUID(as_uuid=True), ForeignKey("vouchers.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def is_template(self) -> bool:
        return self.kind == VoucherKind.TEMPLATE


class VoucherProduct(Base):
    """Optional product scoping for item-level vouchers."""

    __tablename__ = "voucher_products"
    __table_args__ = (UniqueConstraint("voucher_id", "product_id", name="uq_voucher_products_pair"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    voucher_id = Column(UUID(as_uuid=True), ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)


class VoucherRedemption(Base):
    """Immutable record of a voucher consumed by a receipt."""

    __tablename__ = "voucher_redemptions"
    __table_args__ = (UniqueConstraint("voucher_id", "receipt_id", name="uq_voucher_redemptions_voucher_receipt"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    voucher_id = Column(UUID(as_uuid=True), ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    receipt_id = Column(UUID(as_uuid=True), ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    redeemed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
