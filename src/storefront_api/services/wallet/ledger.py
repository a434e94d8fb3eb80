"""Wallet balance ledger with row-locked read-modify-write."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.core.money import ZERO, round_money
from storefront_api.models.wallet import WalletAccount, WalletEntryType, WalletLedgerEntry
from storefront_api.services.errors import InsufficientFundsError, InvalidAmountError, ResourceError


@dataclass(slots=True, frozen=True)
class LedgerMeta:
    """Audit classification persisted alongside every balance movement."""

    entry_type: WalletEntryType
    reference_type: str | None = None
    reference_id: str | None = None
    note: str | None = None


class ConcurrentAccountCreationError(ResourceError):
    """Another writer created the wallet account first; retry the operation."""


class BalanceLedger:
    """Credits and debits a user's wallet inside the caller's transaction.

    Each movement locks the account row, updates the balance and appends a
    signed ledger entry carrying ``balance_after``. Nothing is committed here.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_balance(self, user_id: UUID) -> Decimal:
        stmt = select(WalletAccount.balance).where(WalletAccount.user_id == user_id)
        balance = (await self._session.execute(stmt)).scalar_one_or_none()
        return round_money(balance or ZERO)

    async def list_entries(self, user_id: UUID, *, limit: int = 25) -> list[WalletLedgerEntry]:
        stmt = (
            select(WalletLedgerEntry)
            .join(WalletAccount, WalletAccount.id == WalletLedgerEntry.account_id)
            .where(WalletAccount.user_id == user_id)
            .order_by(WalletLedgerEntry.created_at.desc(), WalletLedgerEntry.id)
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars())

    async def ledger_total(self, user_id: UUID) -> Decimal:
        stmt = (
            select(func.coalesce(func.sum(WalletLedgerEntry.amount), 0))
            .join(WalletAccount, WalletAccount.id == WalletLedgerEntry.account_id)
            .where(WalletAccount.user_id == user_id)
        )
        return round_money((await self._session.execute(stmt)).scalar_one())

    async def credit(self, user_id: UUID, amount: Decimal, meta: LedgerMeta) -> Decimal:
        value = self._validate_amount(amount)
        account = await self._lock_account(user_id)
        return await self._apply(account, value, meta)

    async def debit(self, user_id: UUID, amount: Decimal, meta: LedgerMeta) -> Decimal:
        value = self._validate_amount(amount)
        account = await self._lock_account(user_id)
        balance = round_money(account.balance)
        if balance < value:
            logger.info(
                "Wallet debit rejected",
                user_id=str(user_id),
                balance=balance,
                requested=value,
                entry_type=meta.entry_type.value,
            )
            raise InsufficientFundsError(balance, value)
        return await self._apply(account, -value, meta)

    async def _apply(self, account: WalletAccount, delta: Decimal, meta: LedgerMeta) -> Decimal:
        new_balance = round_money(round_money(account.balance) + delta)
        account.balance = new_balance
        self._session.add(
            WalletLedgerEntry(
                account_id=account.id,
                entry_type=meta.entry_type,
                amount=delta,
                balance_after=new_balance,
                reference_type=meta.reference_type,
                reference_id=meta.reference_id,
                note=meta.note,
            )
        )
        await self._session.flush()
        logger.info(
            "Wallet balance updated",
            user_id=str(account.user_id),
            entry_type=meta.entry_type.value,
            amount=delta,
            balance=new_balance,
            reference_type=meta.reference_type,
            reference_id=meta.reference_id,
        )
        return new_balance

    async def _lock_account(self, user_id: UUID) -> WalletAccount:
        stmt = (
            select(WalletAccount)
            .where(WalletAccount.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        account = (await self._session.execute(stmt)).scalar_one_or_none()
        if account is not None:
            return account

        account = WalletAccount(user_id=user_id, balance=ZERO)
        self._session.add(account)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            logger.warning("Detected race when creating wallet account", user_id=str(user_id))
            raise ConcurrentAccountCreationError(f"Wallet account for {user_id} was created concurrently") from exc
        return account

    @staticmethod
    def _validate_amount(amount: Decimal) -> Decimal:
        value = round_money(amount)
        if value <= 0:
            raise InvalidAmountError(value)
        return value


__all__ = ["BalanceLedger", "ConcurrentAccountCreationError", "LedgerMeta"]
