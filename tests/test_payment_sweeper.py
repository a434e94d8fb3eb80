import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from storefront_api.models.payment import (
    ExternalPayment,
    ExternalPaymentStatusEnum,
    PaymentProviderEnum,
    PaymentPurposeEnum,
)
from storefront_api.models.receipt import Receipt
from storefront_api.models.wallet import WalletEntryType, WalletLedgerEntry
from storefront_api.observability.payments import get_settlement_store
from storefront_api.services.errors import GatewayError
from storefront_api.services.payments.providers.nets import NetsStatus, QrChallenge
from storefront_api.services.payments.reconciler import ConfirmationReconciler
from storefront_api.services.wallet.ledger import BalanceLedger
from storefront_api.workers.payment_sweeper import PendingPaymentSweeper

RETENTION = 7 * 24 * 3600


def _status(response_code: str, txn_status: int) -> NetsStatus:
    raw = {"result": {"data": {"response_code": response_code, "txn_status": txn_status}}}
    return NetsStatus(response_code=response_code, txn_status=txn_status, raw=raw)


PENDING = _status("00", 0)
SUCCESS = _status("00", 1)
FAILED = _status("00", 2)


class FinalQueryGateway:
    """NETS stand-in answering every query with one status (or error)."""

    provider = "nets"

    def __init__(self, status) -> None:
        self._status = status
        self.queries: list[tuple[str, bool]] = []

    async def create_challenge(self, amount: Decimal) -> QrChallenge:
        return QrChallenge(reference="NETS-SWEEP", qr_code="qr-payload", txn_id="txn-sweep")

    async def query_status(self, reference: str, *, timeout_flag: bool = False) -> NetsStatus:
        self.queries.append((reference, timeout_flag))
        if isinstance(self._status, Exception):
            raise self._status
        return self._status


class SweepDuringPollGateway(FinalQueryGateway):
    """Runs ``on_poll`` inside the first ordinary poll, then reports ``poll_status``.

    Queries made with the timeout flag set (the sweeper's) get ``final_status``.
    """

    def __init__(self, *, final_status: NetsStatus, poll_status: NetsStatus) -> None:
        super().__init__(poll_status)
        self._final_status = final_status
        self.on_poll = None

    async def query_status(self, reference: str, *, timeout_flag: bool = False) -> NetsStatus:
        self.queries.append((reference, timeout_flag))
        if timeout_flag:
            return self._final_status
        if self.on_poll is not None:
            hook, self.on_poll = self.on_poll, None
            await hook()
        return self._status


def _reconciler(session_factory, gateway) -> ConfirmationReconciler:
    return ConfirmationReconciler(session_factory, nets=gateway, poll_interval_seconds=0, max_poll_attempts=5)


def _sweeper(session_factory, gateway) -> PendingPaymentSweeper:
    return PendingPaymentSweeper(
        session_factory,
        reconciler=_reconciler(session_factory, gateway),
        interval_seconds=60,
        retention_seconds=RETENTION,
    )


def _summary(**counts: int) -> dict[str, int]:
    summary = {"confirmed": 0, "failed": 0, "timed_out": 0, "deferred": 0, "purged": 0}
    summary.update(counts)
    return summary


async def _payment(session_factory, user_id, reference: str, **values) -> None:
    async with session_factory() as session:
        session.add(
            ExternalPayment(
                provider=PaymentProviderEnum.NETS,
                reference=reference,
                purpose=PaymentPurposeEnum.CHECKOUT,
                user_id=user_id,
                amount=Decimal("12.00"),
                voucher_codes=[],
                **values,
            )
        )
        await session.commit()


async def _record(session_factory, reference: str) -> ExternalPayment:
    async with session_factory() as session:
        stmt = select(ExternalPayment).where(ExternalPayment.reference == reference)
        return (await session.execute(stmt)).scalar_one()


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _balance(session_factory, user_id) -> Decimal:
    async with session_factory() as session:
        return await BalanceLedger(session).get_balance(user_id)


@pytest.fixture
def checkout_started(session_factory, make_user, make_product, add_to_cart):
    """Open a 48.00 NETS checkout and return the user and its reference."""

    async def _start(reconciler: ConfirmationReconciler):
        user = await make_user()
        product = await make_product("40.00", stock=5)
        await add_to_cart(user.id, product.id)
        challenge = await reconciler.initiate_checkout(user.id)
        return user, challenge.reference

    return _start


def _after_window() -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=1)


@pytest.mark.asyncio
async def test_run_once_expires_pending_and_purges_old(session_factory, make_user) -> None:
    user = await make_user()
    now = datetime.now(timezone.utc)
    await _payment(
        session_factory,
        user.id,
        "STALE",
        status=ExternalPaymentStatusEnum.POLLING,
        expires_at=now - timedelta(minutes=1),
    )
    await _payment(
        session_factory,
        user.id,
        "FRESH",
        status=ExternalPaymentStatusEnum.INITIATED,
        expires_at=now + timedelta(minutes=10),
    )
    await _payment(
        session_factory,
        user.id,
        "ANCIENT",
        status=ExternalPaymentStatusEnum.CONFIRMED,
        resolved_at=now - timedelta(days=30),
    )
    await _payment(
        session_factory,
        user.id,
        "RECENT",
        status=ExternalPaymentStatusEnum.FAILED,
        resolved_at=now - timedelta(hours=1),
    )
    gateway = FinalQueryGateway(PENDING)

    summary = await _sweeper(session_factory, gateway).run_once(now=now)

    assert summary == _summary(timed_out=1, purged=1)
    assert gateway.queries == [("STALE", True)]
    async with session_factory() as session:
        rows = {row.reference: row for row in (await session.execute(select(ExternalPayment))).scalars()}
    assert set(rows) == {"STALE", "FRESH", "RECENT"}
    assert rows["STALE"].status == ExternalPaymentStatusEnum.TIMED_OUT
    assert rows["STALE"].failure_reason == "Payment window expired"
    assert rows["STALE"].resolved_at is not None
    assert rows["FRESH"].status == ExternalPaymentStatusEnum.INITIATED
    assert get_settlement_store().snapshot().confirmations["sweeper"] == {"timed_out": 1}


@pytest.mark.asyncio
async def test_final_query_success_confirms_instead_of_expiring(session_factory, checkout_started) -> None:
    gateway = FinalQueryGateway(SUCCESS)
    user, reference = await checkout_started(_reconciler(session_factory, gateway))

    summary = await _sweeper(session_factory, gateway).run_once(now=_after_window())

    assert summary == _summary(confirmed=1)
    record = await _record(session_factory, reference)
    assert record.status == ExternalPaymentStatusEnum.CONFIRMED
    assert record.receipt_id is not None
    assert await _count(session_factory, Receipt) == 1
    assert get_settlement_store().snapshot().confirmations["sweeper"] == {"confirmed": 1}


@pytest.mark.asyncio
async def test_final_query_failure_marks_failed(session_factory, checkout_started) -> None:
    gateway = FinalQueryGateway(FAILED)
    _, reference = await checkout_started(_reconciler(session_factory, gateway))

    summary = await _sweeper(session_factory, gateway).run_once(now=_after_window())

    assert summary == _summary(failed=1)
    record = await _record(session_factory, reference)
    assert record.status == ExternalPaymentStatusEnum.FAILED
    assert record.failure_reason == "Transaction failed"
    assert await _count(session_factory, Receipt) == 0


@pytest.mark.asyncio
async def test_unreachable_gateway_leaves_payment_pending(session_factory, checkout_started) -> None:
    gateway = FinalQueryGateway(GatewayError("nets", "HTTP 503"))
    _, reference = await checkout_started(_reconciler(session_factory, gateway))

    summary = await _sweeper(session_factory, gateway).run_once(now=_after_window())

    assert summary == _summary(deferred=1)
    record = await _record(session_factory, reference)
    assert record.status == ExternalPaymentStatusEnum.INITIATED
    assert record.resolved_at is None


@pytest.mark.asyncio
async def test_sweep_during_poll_then_success_confirms_once(session_factory, checkout_started) -> None:
    gateway = SweepDuringPollGateway(final_status=SUCCESS, poll_status=SUCCESS)
    reconciler = _reconciler(session_factory, gateway)
    user, reference = await checkout_started(reconciler)
    sweeper = _sweeper(session_factory, gateway)
    sweeps: list[dict[str, int]] = []

    async def sweep() -> None:
        sweeps.append(await sweeper.run_once(now=_after_window()))

    gateway.on_poll = sweep
    events = [event async for event in reconciler.watch(reference, user.id)]

    assert sweeps == [_summary(confirmed=1)]
    assert events[-1]["success"] is True
    assert events[-1]["replayed"] is True
    assert await _count(session_factory, Receipt) == 1
    assert await _balance(session_factory, user.id) == Decimal("0.00")


@pytest.mark.asyncio
async def test_success_after_sweep_timed_out_credits_wallet_once(session_factory, checkout_started) -> None:
    gateway = SweepDuringPollGateway(final_status=PENDING, poll_status=SUCCESS)
    reconciler = _reconciler(session_factory, gateway)
    user, reference = await checkout_started(reconciler)
    sweeper = _sweeper(session_factory, gateway)
    sweeps: list[dict[str, int]] = []

    async def sweep() -> None:
        sweeps.append(await sweeper.run_once(now=_after_window()))

    gateway.on_poll = sweep
    events = [event async for event in reconciler.watch(reference, user.id)]

    assert sweeps == [_summary(timed_out=1)]
    assert events[-1] == {
        "fail": True,
        "status": "timed_out",
        "reference": reference,
        "purpose": "checkout",
        "error": "Payment window expired",
        "creditedToWallet": True,
    }
    assert await _count(session_factory, Receipt) == 0
    assert await _balance(session_factory, user.id) == Decimal("48.00")
    async with session_factory() as session:
        entries = (await session.execute(select(WalletLedgerEntry))).scalars().all()
    assert [(entry.entry_type, entry.reference_type, entry.reference_id) for entry in entries] == [
        (WalletEntryType.REFUND, "payment_reversal", reference)
    ]

    again = await reconciler.settle_late_capture(PaymentProviderEnum.NETS, reference)

    assert again.replayed is True
    assert again.credited_to_wallet is True
    assert await _balance(session_factory, user.id) == Decimal("48.00")
    assert get_settlement_store().snapshot().confirmations["nets"]["late_capture"] == 1


@pytest.mark.asyncio
async def test_sweeper_start_stop(session_factory) -> None:
    sweeper = _sweeper(session_factory, FinalQueryGateway(PENDING))
    sweeper.interval_seconds = 3600

    sweeper.start()
    assert sweeper.is_running is True
    await asyncio.sleep(0)
    await sweeper.stop()

    assert sweeper.is_running is False
