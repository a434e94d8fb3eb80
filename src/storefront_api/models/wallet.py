"""Stored-value wallet balance and its append-only ledger."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from storefront_api.db.base import Base


class WalletEntryType(str, Enum):
    TOPUP = "topup"
    PURCHASE = "purchase"
    REFUND = "refund"
    SUBSCRIPTION = "subscription"


class WalletAccount(Base):
    __tablename__ = "wallet_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_wallet_accounts_user_id"),
        CheckConstraint("balance >= 0", name="ck_wallet_accounts_balance_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    balance = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    entries = relationship(
        "WalletLedgerEntry",
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="WalletLedgerEntry.created_at",
    )


class WalletLedgerEntry(Base):
    """Signed balance movement: credits positive, debits negative."""

    __tablename__ = "wallet_ledger_entries"
    __table_args__ = (
        # One movement of a given kind per external event.
        UniqueConstraint(
            "account_id",
            "entry_type",
            "reference_type",
            "reference_id",
            name="uq_wallet_ledger_entries_reference",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("wallet_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    entry_type = Column(SqlEnum(WalletEntryType, name="wallet_entry_type_enum"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)
    reference_type = Column(String(64), nullable=True)
    reference_id = Column(String(128), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    account = relationship("WalletAccount", back_populates="entries")
