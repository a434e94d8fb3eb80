"""Exactly-once resolution of externally confirmed payments.

Every gateway transaction is tracked in ``external_payments`` and moves
``initiated -> polling -> {confirmed | failed | timed_out}``. Terminal states
are never left. ``confirm`` claims a record with a compare-and-set update and
materializes the purchase (or credits the top-up) in the same transaction, so
duplicate confirmations from concurrent watchers, a retried capture or a
reconnecting client replay the stored outcome instead of acting twice.

Lock order: ``payment:<provider>:<reference>`` then ``user:<id>`` then the
product and voucher keys taken by settlement.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Iterable
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront_api.core.money import ZERO, round_money
from storefront_api.core.settings import Settings, get_settings
from storefront_api.models.payment import (
    PENDING_PAYMENT_STATUSES,
    ExternalPayment,
    ExternalPaymentStatusEnum,
    PaymentProviderEnum,
    PaymentPurposeEnum,
)
from storefront_api.models.receipt import PaymentRailEnum
from storefront_api.models.wallet import WalletAccount, WalletEntryType, WalletLedgerEntry
from storefront_api.observability.payments import get_settlement_store
from storefront_api.observability.tracing import get_tracer
from storefront_api.services.checkout.settlement import CheckoutQuote, SettlementService
from storefront_api.services.errors import CheckoutValidationError, GatewayError, InvalidAmountError, SettlementError
from storefront_api.services.locks import KeyedLockRegistry, get_lock_registry, payment_key, user_key
from storefront_api.services.payments.providers.nets import NetsQrGateway
from storefront_api.services.payments.providers.paypal import PaypalGateway
from storefront_api.services.wallet.ledger import BalanceLedger, LedgerMeta

_tracer = get_tracer(__name__)

_RAIL_BY_PROVIDER = {
    PaymentProviderEnum.PAYPAL: PaymentRailEnum.EXTERNAL_SYNC,
    PaymentProviderEnum.NETS: PaymentRailEnum.EXTERNAL_ASYNC,
}
_LABEL_BY_PROVIDER = {
    PaymentProviderEnum.PAYPAL: "PayPal",
    PaymentProviderEnum.NETS: "NETS QR",
}
EXPIRED_REASON = "Payment window expired"


class PaymentNotFoundError(SettlementError):
    def __init__(self, provider: PaymentProviderEnum, reference: str) -> None:
        super().__init__(f"No {provider.value} payment with reference {reference}")
        self.provider = provider
        self.reference = reference


class GatewayNotConfiguredError(SettlementError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class PaymentChallenge:
    provider: PaymentProviderEnum
    reference: str
    amount: Decimal
    purpose: PaymentPurposeEnum
    expires_at: datetime
    qr_code: str | None = None


@dataclass(slots=True)
class ConfirmationOutcome:
    provider: PaymentProviderEnum
    reference: str
    purpose: PaymentPurposeEnum
    status: ExternalPaymentStatusEnum
    receipt_id: UUID | None = None
    failure_reason: str | None = None
    replayed: bool = False
    credited_to_wallet: bool = False

    @property
    def confirmed(self) -> bool:
        return self.status == ExternalPaymentStatusEnum.CONFIRMED

    def as_event(self) -> dict[str, Any]:
        if self.confirmed:
            return {
                "success": True,
                "receiptId": str(self.receipt_id) if self.receipt_id else None,
                "reference": self.reference,
                "purpose": self.purpose.value,
                "replayed": self.replayed,
            }
        event: dict[str, Any] = {
            "fail": True,
            "status": self.status.value,
            "reference": self.reference,
            "purpose": self.purpose.value,
            "error": self.failure_reason,
        }
        if self.credited_to_wallet:
            event["creditedToWallet"] = True
        return event

    @classmethod
    def from_record(cls, record: ExternalPayment, *, replayed: bool = False) -> "ConfirmationOutcome":
        return cls(
            provider=PaymentProviderEnum(record.provider),
            reference=record.reference,
            purpose=PaymentPurposeEnum(record.purpose),
            status=ExternalPaymentStatusEnum(record.status),
            receipt_id=record.receipt_id,
            failure_reason=record.failure_reason,
            replayed=replayed,
        )


class ConfirmationReconciler:
    """Initiates gateway payments and resolves each reference exactly once.

    Operations open their own short-lived sessions from ``session_factory``
    because a watch can outlive the request that started it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        nets: NetsQrGateway | None = None,
        paypal: PaypalGateway | None = None,
        config: Settings | None = None,
        locks: KeyedLockRegistry | None = None,
        poll_interval_seconds: float | None = None,
        max_poll_attempts: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._nets = nets
        self._paypal = paypal
        self._config = config or get_settings()
        self._locks = locks or get_lock_registry()
        self._poll_interval = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else self._config.payment_poll_interval_seconds
        )
        self._max_attempts = max_poll_attempts or self._config.payment_poll_max_attempts

    @classmethod
    def from_settings(
        cls, session_factory: async_sessionmaker[AsyncSession], config: Settings | None = None
    ) -> "ConfirmationReconciler":
        """Build a reconciler with whichever gateways have credentials configured."""

        config = config or get_settings()
        nets = NetsQrGateway.from_settings(config)
        paypal = PaypalGateway.from_settings(config)
        return cls(
            session_factory,
            nets=nets if nets.is_configured else None,
            paypal=paypal if paypal.is_configured else None,
            config=config,
        )

    # ------------------------------------------------------------------
    # Initiation

    async def initiate_checkout(
        self,
        user_id: UUID,
        requested_codes: Iterable[str] | None = None,
        *,
        provider: PaymentProviderEnum = PaymentProviderEnum.NETS,
    ) -> PaymentChallenge:
        """Price the cart, open a gateway transaction and persist it as ``initiated``."""

        async with self._session_factory() as session:
            quote = await SettlementService(session, locks=self._locks).prepare(user_id, requested_codes)
            self._ensure_payable(quote)
            return await self._open(
                session,
                provider,
                user_id=user_id,
                amount=quote.final_total,
                purpose=PaymentPurposeEnum.CHECKOUT,
                voucher_codes=quote.voucher_codes,
            )

    async def initiate_topup(
        self,
        user_id: UUID,
        amount: Decimal,
        *,
        provider: PaymentProviderEnum = PaymentProviderEnum.NETS,
    ) -> PaymentChallenge:
        value = round_money(amount)
        if value <= ZERO:
            raise InvalidAmountError(amount)
        async with self._session_factory() as session:
            return await self._open(
                session,
                provider,
                user_id=user_id,
                amount=value,
                purpose=PaymentPurposeEnum.WALLET_TOPUP,
                voucher_codes=[],
            )

    async def create_paypal_checkout(
        self, user_id: UUID, requested_codes: Iterable[str] | None = None
    ) -> PaymentChallenge:
        return await self.initiate_checkout(user_id, requested_codes, provider=PaymentProviderEnum.PAYPAL)

    async def create_paypal_topup(self, user_id: UUID, amount: Decimal) -> PaymentChallenge:
        return await self.initiate_topup(user_id, amount, provider=PaymentProviderEnum.PAYPAL)

    @staticmethod
    def _ensure_payable(quote: CheckoutQuote) -> None:
        if quote.errors:
            raise CheckoutValidationError("Voucher codes could not be applied", errors=quote.errors)
        if quote.final_total <= ZERO:
            raise CheckoutValidationError("Nothing to pay for this cart; settle it with the wallet instead.")

    async def _open(
        self,
        session: AsyncSession,
        provider: PaymentProviderEnum,
        *,
        user_id: UUID,
        amount: Decimal,
        purpose: PaymentPurposeEnum,
        voucher_codes: list[str],
    ) -> PaymentChallenge:
        qr_code: str | None = None
        if provider == PaymentProviderEnum.NETS:
            challenge = await self._require_nets().create_challenge(amount)
            reference = challenge.reference
            qr_code = challenge.qr_code
        else:
            order = await self._require_paypal().create_order(amount)
            reference = order.order_id

        expires_at = _utcnow() + timedelta(seconds=self._config.pending_payment_ttl_seconds)
        session.add(
            ExternalPayment(
                provider=provider,
                reference=reference,
                purpose=purpose,
                user_id=user_id,
                amount=amount,
                voucher_codes=list(voucher_codes),
                status=ExternalPaymentStatusEnum.INITIATED,
                expires_at=expires_at,
            )
        )
        await session.commit()
        logger.info(
            "External payment initiated",
            provider=provider.value,
            reference=reference,
            purpose=purpose.value,
            user_id=str(user_id),
            amount=amount,
        )
        return PaymentChallenge(
            provider=provider,
            reference=reference,
            amount=amount,
            purpose=purpose,
            expires_at=expires_at,
            qr_code=qr_code,
        )

    # ------------------------------------------------------------------
    # Lookups

    async def get_payment(self, provider: PaymentProviderEnum, reference: str) -> ExternalPayment | None:
        async with self._session_factory() as session:
            return await self._load(session, provider, reference)

    @staticmethod
    async def _load(session: AsyncSession, provider: PaymentProviderEnum, reference: str) -> ExternalPayment | None:
        stmt = (
            select(ExternalPayment)
            .where(ExternalPayment.provider == provider, ExternalPayment.reference == reference)
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Confirmation

    async def confirm(self, provider: PaymentProviderEnum, reference: str) -> ConfirmationOutcome:
        """Resolve a gateway-confirmed payment once; later calls replay the outcome."""

        async with self._locks.hold(payment_key(provider.value, reference)):
            return await self._confirm_locked(provider, reference)

    async def capture_paypal(self, order_id: str, user_id: UUID) -> ConfirmationOutcome:
        """Capture an approved PayPal order and confirm it.

        A capture for an order that was already resolved never reaches the
        gateway; the stored outcome is returned instead.
        """

        provider = PaymentProviderEnum.PAYPAL
        async with self._locks.hold(payment_key(provider.value, order_id)):
            async with self._session_factory() as session:
                record = await self._load(session, provider, order_id)
                if record is None or record.user_id != user_id:
                    raise PaymentNotFoundError(provider, order_id)
                if record.is_terminal:
                    return self._replay(record)

            capture = await self._require_paypal().capture_order(order_id)
            if not capture.is_completed:
                return await self._resolve(
                    provider,
                    order_id,
                    ExternalPaymentStatusEnum.FAILED,
                    f"Capture status {capture.status or 'unknown'}",
                )
            return await self._confirm_locked(provider, order_id)

    async def expire(self, provider: PaymentProviderEnum, reference: str) -> ConfirmationOutcome:
        """Resolve a pending payment whose window has closed.

        NETS references get one last status query with the timeout flag set,
        and a completed transaction is confirmed rather than expired. A
        ``GatewayError`` from that query leaves the record pending.
        """

        async with self._locks.hold(payment_key(provider.value, reference)):
            record = await self.get_payment(provider, reference)
            if record is None:
                raise PaymentNotFoundError(provider, reference)
            if record.is_terminal:
                return self._replay(record)

            if provider == PaymentProviderEnum.NETS and self._nets is not None:
                status = await self._nets.query_status(reference, timeout_flag=True)
                if status.is_success:
                    return await self._confirm_locked(provider, reference)
                if status.is_failure or status.response_code != "00":
                    return await self._resolve(
                        provider, reference, ExternalPaymentStatusEnum.FAILED, "Transaction failed"
                    )
            return await self._resolve(provider, reference, ExternalPaymentStatusEnum.TIMED_OUT, EXPIRED_REASON)

    async def _confirm_locked(self, provider: PaymentProviderEnum, reference: str) -> ConfirmationOutcome:
        async with self._session_factory() as session:
            record = await self._load(session, provider, reference)
            if record is None:
                raise PaymentNotFoundError(provider, reference)
            if record.is_terminal:
                return self._replay(record)
            user_id = record.user_id
            purpose = PaymentPurposeEnum(record.purpose)

        async with self._locks.hold(user_key(user_id)):
            async with self._session_factory() as session:
                with _tracer.start_as_current_span("payments.confirm") as span:
                    span.set_attribute("payment.provider", provider.value)
                    span.set_attribute("payment.reference", reference)
                    span.set_attribute("payment.purpose", purpose.value)
                    return await self._claim_and_apply(session, provider, reference)

    async def _claim_and_apply(
        self, session: AsyncSession, provider: PaymentProviderEnum, reference: str
    ) -> ConfirmationOutcome:
        now = _utcnow()
        claim = (
            update(ExternalPayment)
            .where(
                ExternalPayment.provider == provider,
                ExternalPayment.reference == reference,
                ExternalPayment.status.in_(PENDING_PAYMENT_STATUSES),
            )
            .values(status=ExternalPaymentStatusEnum.CONFIRMED, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(claim)
        record = await self._load(session, provider, reference)
        if record is None:
            await session.rollback()
            raise PaymentNotFoundError(provider, reference)
        if result.rowcount != 1:
            outcome = self._replay(record)
            await session.rollback()
            return outcome

        purpose = PaymentPurposeEnum(record.purpose)
        user_id = record.user_id
        amount = round_money(record.amount)
        try:
            if purpose == PaymentPurposeEnum.CHECKOUT:
                receipt_id = await self._materialize_checkout(session, record)
                record.receipt_id = receipt_id
            else:
                await BalanceLedger(session).credit(
                    user_id,
                    amount,
                    LedgerMeta(
                        entry_type=WalletEntryType.TOPUP,
                        reference_type=f"wallet_topup_{provider.value}",
                        reference_id=reference,
                        note=f"Wallet top-up via {_LABEL_BY_PROVIDER[provider]}",
                    ),
                )
            await session.commit()
        except Exception as exc:
            await session.rollback()
            logger.warning(
                "Confirmed payment could not be applied",
                provider=provider.value,
                reference=reference,
                purpose=purpose.value,
                error=str(exc),
            )
            if purpose == PaymentPurposeEnum.CHECKOUT:
                get_settlement_store().record_settlement_failure(_RAIL_BY_PROVIDER[provider].value, str(exc))
            return await self._fail_after_capture(session, provider, reference, str(exc))

        outcome = ConfirmationOutcome.from_record(record)
        get_settlement_store().record_confirmation(provider.value, outcome.status.value)
        if outcome.receipt_id is not None:
            get_settlement_store().record_settlement_success(
                _RAIL_BY_PROVIDER[provider].value, str(outcome.receipt_id)
            )
        logger.info(
            "External payment confirmed",
            provider=provider.value,
            reference=reference,
            purpose=purpose.value,
            user_id=str(user_id),
            receipt_id=str(outcome.receipt_id) if outcome.receipt_id else None,
            amount=amount,
        )
        return outcome

    async def _materialize_checkout(self, session: AsyncSession, record: ExternalPayment) -> UUID:
        provider = PaymentProviderEnum(record.provider)
        settlement = SettlementService(session, locks=self._locks)
        quote = await settlement.prepare(record.user_id, record.voucher_codes or [])
        if quote.errors:
            raise CheckoutValidationError("Voucher codes could not be applied", errors=quote.errors)
        if quote.final_total != round_money(record.amount):
            raise CheckoutValidationError(
                f"Cart total {quote.final_total} no longer matches the paid amount {round_money(record.amount)}"
            )
        async with self._locks.hold(*quote.resource_keys()):
            receipt = await settlement.materialize(
                quote,
                _RAIL_BY_PROVIDER[provider],
                payment_label=_LABEL_BY_PROVIDER[provider],
                external_reference=record.reference,
            )
        return receipt.id

    async def _fail_after_capture(
        self, session: AsyncSession, provider: PaymentProviderEnum, reference: str, reason: str
    ) -> ConfirmationOutcome:
        """Resolve as failed and return captured checkout funds to the wallet.

        Top-ups are only marked failed: crediting them is the operation that
        just failed.
        """

        record = await self._load(session, provider, reference)
        if record is None:
            raise PaymentNotFoundError(provider, reference)
        refund = PaymentPurposeEnum(record.purpose) == PaymentPurposeEnum.CHECKOUT
        try:
            if refund:
                await BalanceLedger(session).credit(
                    record.user_id,
                    round_money(record.amount),
                    LedgerMeta(
                        entry_type=WalletEntryType.REFUND,
                        reference_type="payment_reversal",
                        reference_id=reference,
                        note=f"{_LABEL_BY_PROVIDER[provider]} payment returned to wallet",
                    ),
                )
            record = await self._mark_resolved(session, provider, reference, ExternalPaymentStatusEnum.FAILED, reason)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        get_settlement_store().record_confirmation(provider.value, ExternalPaymentStatusEnum.FAILED.value)
        logger.info(
            "External payment resolved as failed",
            provider=provider.value,
            reference=reference,
            reason=reason,
            refunded_to_wallet=refund,
        )
        outcome = ConfirmationOutcome.from_record(record)
        outcome.credited_to_wallet = refund
        return outcome

    async def settle_late_capture(self, provider: PaymentProviderEnum, reference: str) -> ConfirmationOutcome:
        """Credit the wallet for a success reported after the reference closed unpaid.

        Checkout funds come back as a ``payment_reversal`` refund and top-ups
        are credited as usual. The ledger entry is looked up first so a
        reference is credited at most once.
        """

        async with self._locks.hold(payment_key(provider.value, reference)):
            async with self._session_factory() as session:
                record = await self._load(session, provider, reference)
                if record is None:
                    raise PaymentNotFoundError(provider, reference)
                if not record.is_terminal or record.status == ExternalPaymentStatusEnum.CONFIRMED:
                    return self._replay(record)

                if PaymentPurposeEnum(record.purpose) == PaymentPurposeEnum.CHECKOUT:
                    meta = LedgerMeta(
                        entry_type=WalletEntryType.REFUND,
                        reference_type="payment_reversal",
                        reference_id=reference,
                        note=f"{_LABEL_BY_PROVIDER[provider]} payment returned to wallet",
                    )
                else:
                    meta = LedgerMeta(
                        entry_type=WalletEntryType.TOPUP,
                        reference_type=f"wallet_topup_{provider.value}",
                        reference_id=reference,
                        note=f"Wallet top-up via {_LABEL_BY_PROVIDER[provider]}",
                    )

                async with self._locks.hold(user_key(record.user_id)):
                    try:
                        credited = not await self._has_ledger_entry(session, record.user_id, meta)
                        if credited:
                            await BalanceLedger(session).credit(record.user_id, round_money(record.amount), meta)
                        await session.commit()
                    except Exception:
                        await session.rollback()
                        raise

        outcome = ConfirmationOutcome.from_record(record, replayed=not credited)
        outcome.credited_to_wallet = True
        if credited:
            get_settlement_store().record_confirmation(provider.value, "late_capture")
            logger.warning(
                "Late gateway success credited to wallet",
                provider=provider.value,
                reference=reference,
                status=outcome.status.value,
                reference_type=meta.reference_type,
                amount=round_money(record.amount),
            )
        return outcome

    @staticmethod
    async def _has_ledger_entry(session: AsyncSession, user_id: UUID, meta: LedgerMeta) -> bool:
        stmt = (
            select(WalletLedgerEntry.id)
            .join(WalletAccount, WalletAccount.id == WalletLedgerEntry.account_id)
            .where(
                WalletAccount.user_id == user_id,
                WalletLedgerEntry.entry_type == meta.entry_type,
                WalletLedgerEntry.reference_type == meta.reference_type,
                WalletLedgerEntry.reference_id == meta.reference_id,
            )
            .limit(1)
        )
        return (await session.execute(stmt)).scalar_one_or_none() is not None

    async def _resolve(
        self,
        provider: PaymentProviderEnum,
        reference: str,
        status: ExternalPaymentStatusEnum,
        reason: str,
    ) -> ConfirmationOutcome:
        async with self._session_factory() as session:
            try:
                record = await self._mark_resolved(session, provider, reference, status, reason)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        outcome = ConfirmationOutcome.from_record(record)
        get_settlement_store().record_confirmation(provider.value, outcome.status.value)
        logger.info(
            "External payment resolved",
            provider=provider.value,
            reference=reference,
            status=outcome.status.value,
            reason=outcome.failure_reason,
        )
        return outcome

    async def _mark_resolved(
        self,
        session: AsyncSession,
        provider: PaymentProviderEnum,
        reference: str,
        status: ExternalPaymentStatusEnum,
        reason: str,
    ) -> ExternalPayment:
        stmt = (
            update(ExternalPayment)
            .where(
                ExternalPayment.provider == provider,
                ExternalPayment.reference == reference,
                ExternalPayment.status.in_(PENDING_PAYMENT_STATUSES),
            )
            .values(status=status, failure_reason=reason, resolved_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        await session.execute(stmt)
        record = await self._load(session, provider, reference)
        if record is None:
            raise PaymentNotFoundError(provider, reference)
        return record

    def _replay(self, record: ExternalPayment) -> ConfirmationOutcome:
        outcome = ConfirmationOutcome.from_record(record, replayed=True)
        get_settlement_store().record_confirmation(outcome.provider.value, "replayed")
        logger.info(
            "External payment replayed",
            provider=outcome.provider.value,
            reference=outcome.reference,
            status=outcome.status.value,
        )
        return outcome

    # ------------------------------------------------------------------
    # Polling

    async def watch(
        self,
        reference: str,
        user_id: UUID,
        *,
        provider: PaymentProviderEnum = PaymentProviderEnum.NETS,
    ) -> AsyncIterator[dict[str, Any]]:
        """Poll the gateway for one observer until the reference resolves.

        Yields the relayed gateway payload per attempt and ends with a single
        ``success`` or ``fail`` event. Closing the generator stops this
        observer only; the payment record is left as it is.
        """

        record = await self.get_payment(provider, reference)
        if record is None or record.user_id != user_id:
            yield {"fail": True, "reference": reference, "error": "Payment not found"}
            return
        if record.is_terminal:
            yield self._replay(record).as_event()
            return

        gateway = self._require_nets()
        while True:
            record = await self.get_payment(provider, reference)
            if record is None:
                yield {"fail": True, "reference": reference, "error": "Payment not found"}
                return
            if record.is_terminal:
                yield self._replay(record).as_event()
                return

            timeout_flag = bool(record.timeout_flag) or record.poll_attempts >= self._max_attempts
            attempt = await self._record_poll(provider, reference, timeout_flag=timeout_flag)

            try:
                status = await gateway.query_status(reference, timeout_flag=timeout_flag)
            except GatewayError as exc:
                logger.warning("Payment status query failed", provider=provider.value, reference=reference, error=str(exc))
                yield {"error": str(exc), "reference": reference, "attempt": attempt}
                if timeout_flag:
                    outcome = await self._resolve(
                        provider, reference, ExternalPaymentStatusEnum.TIMED_OUT, "Payment status unavailable at timeout"
                    )
                    yield outcome.as_event()
                    return
                await asyncio.sleep(self._poll_interval)
                continue

            event = dict(status.raw)
            event["attempt"] = attempt
            yield event

            if status.is_success:
                outcome = await self.confirm(provider, reference)
                if outcome.replayed and not outcome.confirmed:
                    outcome = await self.settle_late_capture(provider, reference)
                yield outcome.as_event()
                return
            if timeout_flag:
                if status.is_failure or status.response_code != "00":
                    outcome = await self._resolve(
                        provider, reference, ExternalPaymentStatusEnum.FAILED, "Transaction failed"
                    )
                else:
                    outcome = await self._resolve(
                        provider, reference, ExternalPaymentStatusEnum.TIMED_OUT, "Timeout"
                    )
                yield outcome.as_event()
                return
            await asyncio.sleep(self._poll_interval)

    async def _record_poll(self, provider: PaymentProviderEnum, reference: str, *, timeout_flag: bool) -> int:
        async with self._session_factory() as session:
            stmt = (
                update(ExternalPayment)
                .where(
                    ExternalPayment.provider == provider,
                    ExternalPayment.reference == reference,
                    ExternalPayment.status.in_(PENDING_PAYMENT_STATUSES),
                )
                .values(
                    status=ExternalPaymentStatusEnum.POLLING,
                    poll_attempts=ExternalPayment.poll_attempts + 1,
                    timeout_flag=timeout_flag,
                )
                .execution_options(synchronize_session=False)
            )
            await session.execute(stmt)
            await session.commit()
            record = await self._load(session, provider, reference)
            return record.poll_attempts if record is not None else 0

    # ------------------------------------------------------------------

    def _require_nets(self) -> NetsQrGateway:
        if self._nets is None:
            raise GatewayNotConfiguredError("NETS QR gateway is not configured")
        return self._nets

    def _require_paypal(self) -> PaypalGateway:
        if self._paypal is None:
            raise GatewayNotConfiguredError("PayPal gateway is not configured")
        return self._paypal


__all__ = [
    "ConfirmationOutcome",
    "ConfirmationReconciler",
    "GatewayNotConfiguredError",
    "PaymentChallenge",
    "PaymentNotFoundError",
]
