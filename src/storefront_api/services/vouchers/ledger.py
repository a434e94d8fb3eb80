"""Voucher ledger: persistence and administration of vouchers and redemptions."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.core.money import round_money
from storefront_api.models.voucher import (
    DiscountMode,
    Voucher,
    VoucherKind,
    VoucherProduct,
    VoucherRedemption,
    VoucherScope,
)
from storefront_api.services.errors import CheckoutValidationError, VoucherLimitExceededError

_TEMPLATE_FIELDS = (
    "description",
    "discount_mode",
    "discount_value",
    "max_discount",
    "min_spend",
    "starts_at",
    "expires_at",
    "total_usage_limit",
    "per_user_limit",
    "stackable",
    "auto_apply",
    "is_active",
)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def generate_code(prefix: str, *, nbytes: int = 4) -> str:
    return f"{prefix}-{secrets.token_hex(nbytes).upper()}"


@dataclass(slots=True)
class UsageCounts:
    total: int
    user: int


@dataclass(slots=True)
class IssuedVoucher:
    """Instance owned by a user along with whether it has been consumed."""

    voucher: Voucher
    used: bool


class VoucherLedger:
    """Reads and writes the voucher tables. Writes flush; callers commit."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, voucher_id: UUID) -> Voucher | None:
        return await self._session.get(Voucher, voucher_id)

    async def get_by_code(self, code: str) -> Voucher | None:
        normalized = normalize_code(code)
        if not normalized:
            return None
        stmt = select(Voucher).where(Voucher.code == normalized)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def get_many_by_code(self, codes: list[str]) -> dict[str, Voucher]:
        if not codes:
            return {}
        stmt = select(Voucher).where(Voucher.code.in_(codes))
        return {voucher.code: voucher for voucher in (await self._session.execute(stmt)).scalars()}

    async def list_auto_apply_active(self) -> list[Voucher]:
        stmt = (
            select(Voucher)
            .where(
                Voucher.auto_apply.is_(True),
                Voucher.is_active.is_(True),
                Voucher.kind == VoucherKind.INSTANCE,
            )
            .order_by(Voucher.created_at, Voucher.id)
        )
        return list((await self._session.execute(stmt)).scalars())

    async def usage_counts(self, voucher_id: UUID, user_id: UUID) -> UsageCounts:
        """Live redemption counts for a voucher, overall and for ``user_id``."""

        total_stmt = select(func.count(VoucherRedemption.id)).where(VoucherRedemption.voucher_id == voucher_id)
        user_stmt = total_stmt.where(VoucherRedemption.user_id == user_id)
        total = (await self._session.execute(total_stmt)).scalar_one()
        user = (await self._session.execute(user_stmt)).scalar_one()
        return UsageCounts(total=int(total or 0), user=int(user or 0))

    async def assert_within_limits(self, voucher: Voucher, user_id: UUID) -> None:
        """Authoritative limit recount, run inside the materialization unit of work."""

        usage = await self.usage_counts(voucher.id, user_id)
        if voucher.total_usage_limit is not None and usage.total >= voucher.total_usage_limit:
            raise VoucherLimitExceededError(voucher.code, "Voucher usage limit reached.")
        if voucher.per_user_limit is not None and usage.user >= voucher.per_user_limit:
            raise VoucherLimitExceededError(voucher.code, "You have reached the usage limit for this voucher.")

    async def record_redemption(
        self,
        voucher_id: UUID,
        *,
        user_id: UUID,
        receipt_id: UUID,
        amount: Decimal,
    ) -> VoucherRedemption:
        redemption = VoucherRedemption(
            voucher_id=voucher_id,
            user_id=user_id,
            receipt_id=receipt_id,
            discount_amount=round_money(amount),
        )
        self._session.add(redemption)
        await self._session.flush()
        return redemption

    # Administration -----------------------------------------------------

    async def create_template(self, payload: Mapping[str, Any]) -> Voucher:
        """Create an admin voucher template with a generated ``VCH-`` code."""

        values = self._clean_terms(payload)
        code = await self.unique_code("VCH")
        template = Voucher(code=code, kind=VoucherKind.TEMPLATE, scope=VoucherScope.GENERAL, user_id=None, **values)
        self._session.add(template)
        await self._session.flush()
        logger.info("Voucher template created", voucher_id=str(template.id), code=code)
        return template

    async def update_template(self, template_id: UUID, payload: Mapping[str, Any]) -> Voucher:
        template = await self._require_template(template_id)
        for key, value in self._clean_terms(payload, partial=True).items():
            setattr(template, key, value)
        await self._session.flush()
        return template

    async def set_template_active(self, template_id: UUID, active: bool) -> Voucher:
        """Toggle a template; deactivating it also retires every issued instance."""

        template = await self._require_template(template_id)
        template.is_active = active
        if not active:
            await self._session.execute(
                update(Voucher)
                .where(Voucher.template_id == template.id)
                .values(is_active=False)
                .execution_options(synchronize_session="fetch")
            )
        await self._session.flush()
        logger.info("Voucher template toggled", voucher_id=str(template.id), active=active)
        return template

    async def issue_from_template(self, template: Voucher, *, user_id: UUID, code: str) -> Voucher:
        """Issue a single-use instance inheriting the template's terms."""

        if not template.is_template:
            raise CheckoutValidationError("Only templates can issue vouchers")
        instance = Voucher(
            code=normalize_code(code),
            kind=VoucherKind.INSTANCE,
            scope=template.scope,
            user_id=user_id,
            template_id=template.id,
            description=template.description,
            discount_mode=template.discount_mode,
            discount_value=template.discount_value,
            max_discount=template.max_discount,
            min_spend=template.min_spend,
            starts_at=template.starts_at,
            expires_at=template.expires_at,
            total_usage_limit=1,
            per_user_limit=1,
            stackable=template.stackable,
            auto_apply=False,
            is_active=True,
        )
        self._session.add(instance)
        await self._session.flush()
        logger.info(
            "Voucher issued",
            voucher_id=str(instance.id),
            template_id=str(template.id),
            user_id=str(user_id),
        )
        return instance

    async def has_claimed(self, template_id: UUID, user_id: UUID) -> bool:
        stmt = select(func.count(Voucher.id)).where(Voucher.template_id == template_id, Voucher.user_id == user_id)
        return bool((await self._session.execute(stmt)).scalar_one())

    async def list_templates(self) -> list[Voucher]:
        stmt = select(Voucher).where(Voucher.kind == VoucherKind.TEMPLATE).order_by(Voucher.created_at.desc())
        return list((await self._session.execute(stmt)).scalars())

    async def list_user_vouchers(self, user_id: UUID) -> list[IssuedVoucher]:
        stmt = (
            select(Voucher)
            .where(Voucher.user_id == user_id, Voucher.kind == VoucherKind.INSTANCE)
            .order_by(Voucher.created_at.desc())
        )
        vouchers = list((await self._session.execute(stmt)).scalars())
        used_stmt = select(VoucherRedemption.voucher_id).where(VoucherRedemption.user_id == user_id)
        used_ids = set((await self._session.execute(used_stmt)).scalars())
        return [IssuedVoucher(voucher=voucher, used=voucher.id in used_ids) for voucher in vouchers]

    async def set_product_scope(self, voucher: Voucher, product_ids: list[UUID]) -> None:
        """Restrict ``voucher`` to ``product_ids``; an empty list makes it cart-wide."""

        await self._session.execute(delete(VoucherProduct).where(VoucherProduct.voucher_id == voucher.id))
        for product_id in dict.fromkeys(product_ids):
            self._session.add(VoucherProduct(voucher_id=voucher.id, product_id=product_id))
        voucher.scope = VoucherScope.ITEM if product_ids else VoucherScope.GENERAL
        await self._session.flush()

    async def product_scopes(self, voucher_ids: list[UUID]) -> dict[UUID, set[UUID]]:
        if not voucher_ids:
            return {}
        stmt = select(VoucherProduct.voucher_id, VoucherProduct.product_id).where(
            VoucherProduct.voucher_id.in_(voucher_ids)
        )
        scopes: dict[UUID, set[UUID]] = {}
        for voucher_id, product_id in (await self._session.execute(stmt)).all():
            scopes.setdefault(voucher_id, set()).add(product_id)
        return scopes

    async def _require_template(self, template_id: UUID) -> Voucher:
        template = await self.get(template_id)
        if template is None or not template.is_template:
            raise CheckoutValidationError("Voucher template not found")
        return template

    async def unique_code(self, prefix: str, *, nbytes: int = 4) -> str:
        for _ in range(5):
            code = generate_code(prefix, nbytes=nbytes)
            if await self.get_by_code(code) is None:
                return code
        return f"{prefix}-{int(datetime.now().timestamp() * 1000)}"

    @staticmethod
    def _clean_terms(payload: Mapping[str, Any], *, partial: bool = False) -> dict[str, Any]:
        values = {key: payload[key] for key in _TEMPLATE_FIELDS if key in payload}
        if not partial:
            values.setdefault("discount_mode", DiscountMode.FIXED)
            values.setdefault("min_spend", Decimal("0"))
        if "discount_mode" in values:
            values["discount_mode"] = DiscountMode(values["discount_mode"])
        for key in ("discount_value", "max_discount", "min_spend"):
            if values.get(key) is not None:
                values[key] = round_money(values[key])
        if not partial and values.get("discount_value") is None:
            raise CheckoutValidationError("Discount value is required")
        if values.get("discount_value") is not None and values["discount_value"] <= 0:
            raise CheckoutValidationError("Discount value must be greater than zero")
        if values.get("discount_mode") == DiscountMode.PERCENTAGE and values.get("discount_value", 0) > 100:
            raise CheckoutValidationError("Percentage discount cannot exceed 100")
        return values


__all__ = [
    "IssuedVoucher",
    "UsageCounts",
    "VoucherLedger",
    "generate_code",
    "normalize_code",
]
