"""Checkout settlement and order materialization.

A purchase is materialized in a single unit of work: the wallet debit (for
the balance rail), receipt header and items, voucher redemptions, order
lines with guarded stock decrements, cart clearing and subscriber benefits
either all commit together or none of them do.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.core.money import ZERO
from storefront_api.models.order import OrderLine
from storefront_api.models.receipt import PaymentRailEnum, Receipt, ReceiptDiscount, ReceiptItem, ReceiptStatusEnum
from storefront_api.models.wallet import WalletEntryType
from storefront_api.observability.payments import get_settlement_store
from storefront_api.observability.tracing import get_tracer
from storefront_api.services.cart import CartLineView, CartService
from storefront_api.services.catalog import CatalogService
from storefront_api.services.errors import CheckoutValidationError, VoucherLimitExceededError
from storefront_api.services.locks import KeyedLockRegistry, get_lock_registry, product_key, user_key, voucher_key
from storefront_api.services.loyalty import LoyaltyService, points_for_purchase
from storefront_api.services.pricing.aggregator import CheckoutTotals, PricingAggregator
from storefront_api.services.subscriptions import SubscriptionService
from storefront_api.services.vouchers.evaluator import DiscountEvaluator, DiscountSummary
from storefront_api.services.vouchers.ledger import VoucherLedger
from storefront_api.services.wallet.ledger import BalanceLedger, LedgerMeta

DEFAULT_PAYMENT_LABELS: dict[PaymentRailEnum, str] = {
    PaymentRailEnum.BALANCE: "Wallet",
    PaymentRailEnum.EXTERNAL_SYNC: "PayPal",
    PaymentRailEnum.EXTERNAL_ASYNC: "NETS QR",
}

_tracer = get_tracer(__name__)


@dataclass(slots=True)
class CheckoutQuote:
    """Discount and delivery pricing computed for a user's current cart."""

    user_id: UUID
    lines: list[CartLineView]
    discount: DiscountSummary
    totals: CheckoutTotals

    @property
    def final_total(self) -> Decimal:
        return self.totals.final_total

    @property
    def errors(self) -> list[str]:
        return self.discount.errors

    @property
    def voucher_codes(self) -> list[str]:
        return list(self.discount.normalized_codes)

    def resource_keys(self) -> list[str]:
        keys = [product_key(line.product_id) for line in self.lines]
        keys.extend(voucher_key(applied.voucher_id) for applied in self.discount.all_applied)
        return keys


@dataclass(slots=True)
class SettlementResult:
    receipt_id: UUID
    final_total: Decimal
    rail: PaymentRailEnum


class SettlementService:
    """Prices carts and turns a paid quote into a durable purchase."""

    def __init__(self, session: AsyncSession, *, locks: KeyedLockRegistry | None = None) -> None:
        self._session = session
        self._locks = locks or get_lock_registry()

    async def prepare(
        self,
        user_id: UUID,
        requested_codes: Iterable[str] | None = None,
        *,
        allow_public: bool = False,
    ) -> CheckoutQuote:
        lines = await CartService(self._session).get_lines(user_id)
        if not lines:
            raise CheckoutValidationError("Cart is empty")
        discount = await DiscountEvaluator(self._session).evaluate(
            user_id, lines, requested_codes, allow_public=allow_public
        )
        totals = await PricingAggregator(self._session).compute_totals(user_id, discount)
        return CheckoutQuote(user_id=user_id, lines=lines, discount=discount, totals=totals)

    async def checkout_with_balance(
        self,
        user_id: UUID,
        requested_codes: Iterable[str] | None = None,
        *,
        allow_public: bool = False,
    ) -> SettlementResult:
        """Price the cart and settle it against the wallet under the user's lock."""

        async with self._locks.hold(user_key(user_id)):
            quote = await self.prepare(user_id, requested_codes, allow_public=allow_public)
            return await self.settle(quote, PaymentRailEnum.BALANCE)

    async def settle(
        self,
        quote: CheckoutQuote,
        rail: PaymentRailEnum,
        *,
        payment_label: str | None = None,
        external_reference: str | None = None,
    ) -> SettlementResult:
        """Materialize ``quote`` and commit.

        The caller must already hold the ``user:`` lock for ``quote.user_id``.
        Product and voucher locks are taken here for the duration of the unit
        of work.
        """

        if quote.errors:
            raise CheckoutValidationError("Voucher codes could not be applied", errors=quote.errors)

        async with self._locks.hold(*quote.resource_keys()):
            try:
                receipt = await self.materialize(
                    quote,
                    rail,
                    payment_label=payment_label,
                    external_reference=external_reference,
                )
                await self._session.commit()
            except Exception as exc:
                await self._session.rollback()
                get_settlement_store().record_settlement_failure(rail.value, str(exc))
                logger.info(
                    "Settlement rolled back",
                    user_id=str(quote.user_id),
                    rail=rail.value,
                    error=str(exc),
                )
                raise

        get_settlement_store().record_settlement_success(rail.value, str(receipt.id))
        logger.info(
            "Settlement committed",
            receipt_id=str(receipt.id),
            user_id=str(quote.user_id),
            rail=rail.value,
            final_total=quote.final_total,
        )
        return SettlementResult(receipt_id=receipt.id, final_total=quote.final_total, rail=rail)

    async def materialize(
        self,
        quote: CheckoutQuote,
        rail: PaymentRailEnum,
        *,
        payment_label: str | None = None,
        external_reference: str | None = None,
    ) -> Receipt:
        """Write every row of the purchase without committing.

        Raises a ``ResourceError`` subclass when stock, balance or voucher
        limits no longer hold; the caller rolls back.
        """

        user_id = quote.user_id
        totals = quote.totals
        discount = quote.discount
        receipt_id = uuid4()
        label = payment_label or DEFAULT_PAYMENT_LABELS[rail]

        with _tracer.start_as_current_span("checkout.materialize") as span:
            span.set_attribute("checkout.rail", rail.value)
            span.set_attribute("checkout.receipt_id", str(receipt_id))

            if rail == PaymentRailEnum.BALANCE and totals.final_total > ZERO:
                await BalanceLedger(self._session).debit(
                    user_id,
                    totals.final_total,
                    LedgerMeta(
                        entry_type=WalletEntryType.PURCHASE,
                        reference_type="receipt",
                        reference_id=str(receipt_id),
                        note="Checkout purchase",
                    ),
                )

            receipt = Receipt(
                id=receipt_id,
                user_id=user_id,
                subtotal=discount.subtotal,
                discount_amount=discount.total_discount,
                delivery_fee=totals.delivery_fee,
                final_total=totals.final_total,
                payment_rail=rail,
                payment_label=label,
                external_reference=external_reference,
                status=ReceiptStatusEnum.PROCESSING,
            )
            self._session.add(receipt)
            for position, line in enumerate(quote.lines):
                self._session.add(
                    ReceiptItem(
                        receipt_id=receipt_id,
                        product_id=line.product_id,
                        product_title=line.title,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        position=position,
                    )
                )
            await self._session.flush()

            vouchers = VoucherLedger(self._session)
            for applied, amount in discount.attributed_amounts():
                voucher = await vouchers.get(applied.voucher_id)
                if voucher is None or not voucher.is_active:
                    raise VoucherLimitExceededError(applied.code, "Voucher is inactive.")
                await vouchers.assert_within_limits(voucher, user_id)
                await vouchers.record_redemption(voucher.id, user_id=user_id, receipt_id=receipt_id, amount=amount)
                self._session.add(
                    ReceiptDiscount(
                        receipt_id=receipt_id,
                        voucher_id=voucher.id,
                        code=applied.code,
                        discount_amount=amount,
                        auto_applied=applied.auto_applied,
                    )
                )

            catalog = CatalogService(self._session)
            for line in quote.lines:
                self._session.add(
                    OrderLine(
                        user_id=user_id,
                        product_id=line.product_id,
                        receipt_id=receipt_id,
                        quantity=line.quantity,
                        price=line.unit_price,
                        payment_label=label,
                    )
                )
                await catalog.decrement_stock(line.product_id, line.quantity)

            await CartService(self._session).clear(user_id)
            if totals.consumes_first_delivery:
                await SubscriptionService(self._session).mark_first_delivery_used(user_id)
            if totals.subscription_active:
                await LoyaltyService(self._session).credit(user_id, points_for_purchase(totals.items_total))

            await self._session.flush()
        return receipt


__all__ = [
    "CheckoutQuote",
    "DEFAULT_PAYMENT_LABELS",
    "SettlementResult",
    "SettlementService",
]
