"""Discount evaluation for a cart against the voucher ledger.

Evaluation is read-only. It resolves the requested codes, checks each
voucher's eligibility, enforces the stacking rule and selects at most one
auto-apply voucher. Redemption rows are only written during materialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.core.money import ZERO, format_money, round_money, sum_money
from storefront_api.models.voucher import DiscountMode, Voucher, VoucherScope
from storefront_api.services.cart import CartLineView
from storefront_api.services.vouchers.ledger import VoucherLedger, normalize_code

STACKING_ERROR = "This voucher cannot be stacked with another."

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


@dataclass(slots=True, frozen=True)
class AppliedVoucher:
    voucher_id: UUID
    code: str
    amount: Decimal
    stackable: bool
    auto_applied: bool = False
    description: str | None = None
    expires_at: datetime | None = None


@dataclass(slots=True)
class DiscountSummary:
    subtotal: Decimal
    applied: list[AppliedVoucher] = field(default_factory=list)
    auto_applied: AppliedVoucher | None = None
    total_discount: Decimal = ZERO
    final_total: Decimal = ZERO
    errors: list[str] = field(default_factory=list)
    normalized_codes: list[str] = field(default_factory=list)

    @property
    def all_applied(self) -> list[AppliedVoucher]:
        if self.auto_applied is None:
            return list(self.applied)
        return [*self.applied, self.auto_applied]

    def attributed_amounts(self) -> list[tuple[AppliedVoucher, Decimal]]:
        """Per-voucher amounts that sum exactly to ``total_discount``.

        When the subtotal cap trims the total, later vouchers absorb the cut.
        """

        remaining = self.total_discount
        attributed: list[tuple[AppliedVoucher, Decimal]] = []
        for voucher in self.all_applied:
            amount = min(voucher.amount, remaining)
            remaining = round_money(remaining - amount)
            attributed.append((voucher, amount))
        return attributed


@dataclass(slots=True, frozen=True)
class Eligibility:
    eligible: bool
    amount: Decimal = ZERO
    reason: str | None = None


def normalize_codes(codes: Iterable[str] | None) -> list[str]:
    """Upper-case, strip and de-duplicate codes preserving first-seen order."""

    normalized: list[str] = []
    for code in codes or ():
        value = normalize_code(code)
        if value and value not in normalized:
            normalized.append(value)
    return normalized


def compute_subtotal(lines: Sequence[CartLineView]) -> Decimal:
    return sum_money(line.unit_price * line.quantity for line in lines)


def compute_discount_amount(voucher: Voucher, eligible_subtotal: Decimal) -> Decimal:
    if eligible_subtotal <= 0:
        return ZERO
    value = Decimal(voucher.discount_value or 0)
    if voucher.discount_mode == DiscountMode.FIXED:
        amount = min(value, eligible_subtotal)
    else:
        amount = eligible_subtotal * (max(value, ZERO) / Decimal(100))
        if voucher.max_discount is not None:
            amount = min(amount, Decimal(voucher.max_discount))
    return round_money(max(amount, ZERO))


def violates_stacking(stackable_flags: Sequence[bool]) -> bool:
    return len(stackable_flags) > 1 and not all(stackable_flags)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _expiry_sort_key(voucher: Voucher) -> datetime:
    return _as_utc(voucher.expires_at) or _FAR_FUTURE


class DiscountEvaluator:
    def __init__(self, session: AsyncSession) -> None:
        self._ledger = VoucherLedger(session)

    async def evaluate(
        self,
        user_id: UUID,
        lines: Sequence[CartLineView],
        requested_codes: Iterable[str] | None = None,
        *,
        allow_public: bool = False,
        now: datetime | None = None,
    ) -> DiscountSummary:
        now = _as_utc(now) or datetime.now(timezone.utc)
        subtotal = compute_subtotal(lines)
        codes = normalize_codes(requested_codes)
        summary = DiscountSummary(subtotal=subtotal, normalized_codes=codes)

        found = await self._ledger.get_many_by_code(codes)
        requested: list[Voucher] = []
        for code in codes:
            voucher = found.get(code)
            if voucher is None:
                summary.errors.append(f"Code {code} not found.")
            else:
                requested.append(voucher)

        auto_candidates = await self._ledger.list_auto_apply_active()
        scopes = await self._ledger.product_scopes([voucher.id for voucher in [*requested, *auto_candidates]])

        if violates_stacking([bool(voucher.stackable) for voucher in requested]):
            summary.errors.append(STACKING_ERROR)
        else:
            for voucher in requested:
                result = await self.check_eligibility(
                    voucher, user_id, lines, subtotal, scopes.get(voucher.id), allow_public=allow_public, now=now
                )
                if not result.eligible:
                    summary.errors.append(f"{voucher.code}: {result.reason}")
                    continue
                summary.applied.append(self._applied(voucher, result.amount, auto=False))

        applied_ids = {item.voucher_id for item in summary.applied}
        ranked: list[tuple[Voucher, Decimal]] = []
        for voucher in auto_candidates:
            if voucher.id in applied_ids or voucher.code in codes:
                continue
            result = await self.check_eligibility(
                voucher, user_id, lines, subtotal, scopes.get(voucher.id), allow_public=allow_public, now=now
            )
            if result.eligible:
                ranked.append((voucher, result.amount))

        if ranked:
            ranked.sort(key=lambda pair: (-pair[1], _expiry_sort_key(pair[0])))
            best, amount = ranked[0]
            flags = [item.stackable for item in summary.applied] + [bool(best.stackable)]
            if not violates_stacking(flags):
                summary.auto_applied = self._applied(best, amount, auto=True)

        total = sum_money(item.amount for item in summary.all_applied)
        summary.total_discount = min(total, subtotal)
        summary.final_total = round_money(subtotal - summary.total_discount)
        return summary

    async def check_eligibility(
        self,
        voucher: Voucher,
        user_id: UUID,
        lines: Sequence[CartLineView],
        subtotal: Decimal,
        scoped_products: set[UUID] | None = None,
        *,
        allow_public: bool = False,
        now: datetime,
    ) -> Eligibility:
        """Run the ordered eligibility checks; the first failure wins."""

        if not voucher.is_active:
            return Eligibility(False, reason="Voucher is inactive.")
        if voucher.is_template:
            return Eligibility(False, reason="Voucher template cannot be redeemed directly.")
        if voucher.user_id is not None and voucher.user_id != user_id:
            return Eligibility(False, reason="Voucher is not assigned to your account.")
        if voucher.user_id is None and not allow_public:
            return Eligibility(False, reason="Voucher is not available for your account.")

        starts_at = _as_utc(voucher.starts_at)
        expires_at = _as_utc(voucher.expires_at)
        if (starts_at and starts_at > now) or (expires_at and expires_at < now):
            return Eligibility(False, reason="Voucher is expired or not active yet.")

        usage = await self._ledger.usage_counts(voucher.id, user_id)
        if voucher.total_usage_limit is not None and usage.total >= voucher.total_usage_limit:
            return Eligibility(False, reason="Voucher usage limit reached.")
        if voucher.per_user_limit is not None and usage.user >= voucher.per_user_limit:
            return Eligibility(False, reason="You have reached the usage limit for this voucher.")

        eligible_subtotal = subtotal
        if voucher.scope == VoucherScope.ITEM and scoped_products:
            eligible_subtotal = sum_money(
                line.unit_price * line.quantity for line in lines if line.product_id in scoped_products
            )
        if eligible_subtotal <= 0:
            return Eligibility(False, reason="No eligible items for this voucher.")

        min_spend = round_money(voucher.min_spend or 0)
        if eligible_subtotal < min_spend:
            return Eligibility(False, reason=f"Minimum spend {format_money(min_spend)} not met.")

        amount = compute_discount_amount(voucher, eligible_subtotal)
        if amount <= 0:
            return Eligibility(False, reason="Voucher not applicable.")
        return Eligibility(True, amount=amount)

    @staticmethod
    def _applied(voucher: Voucher, amount: Decimal, *, auto: bool) -> AppliedVoucher:
        return AppliedVoucher(
            voucher_id=voucher.id,
            code=voucher.code,
            amount=amount,
            stackable=bool(voucher.stackable),
            auto_applied=auto,
            description=voucher.description,
            expires_at=voucher.expires_at,
        )


__all__ = [
    "AppliedVoucher",
    "DiscountEvaluator",
    "DiscountSummary",
    "Eligibility",
    "STACKING_ERROR",
    "compute_discount_amount",
    "compute_subtotal",
    "normalize_codes",
    "violates_stacking",
]
