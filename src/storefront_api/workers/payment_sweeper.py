"""Worker that expires abandoned gateway payments and purges old records."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.core.settings import settings
from storefront_api.models.payment import (
    PENDING_PAYMENT_STATUSES,
    TERMINAL_PAYMENT_STATUSES,
    ExternalPayment,
    PaymentProviderEnum,
)
from storefront_api.observability.payments import get_settlement_store
from storefront_api.services.errors import GatewayError
from storefront_api.services.payments.reconciler import ConfirmationReconciler, PaymentNotFoundError

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


class PendingPaymentSweeper:
    """Periodically resolves pending payments whose window has closed.

    Each expired reference goes through ``ConfirmationReconciler.expire`` so it
    is resolved under the payment lock after one last gateway query.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        reconciler: ConfirmationReconciler | None = None,
        interval_seconds: int | None = None,
        retention_seconds: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._reconciler = reconciler or ConfirmationReconciler.from_settings(session_factory)
        self.interval_seconds = interval_seconds or settings.payment_sweeper_interval_seconds
        self._retention_seconds = retention_seconds or settings.payment_record_retention_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Pending payment sweeper started",
            interval_seconds=self.interval_seconds,
            retention_seconds=self._retention_seconds,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Pending payment sweeper stopped")

    async def run_once(self, *, now: datetime | None = None) -> Dict[str, int]:
        """Resolve expired pending payments, then delete records past retention."""

        current = now or datetime.now(timezone.utc)
        summary: Dict[str, int] = {"confirmed": 0, "failed": 0, "timed_out": 0, "deferred": 0, "purged": 0}
        store = get_settlement_store()

        for provider, reference in await self._expired_references(current):
            try:
                outcome = await self._reconciler.expire(provider, reference)
            except GatewayError as exc:
                summary["deferred"] += 1
                logger.warning(
                    "Final status query failed; payment left pending",
                    provider=provider.value,
                    reference=reference,
                    error=str(exc),
                )
                continue
            except PaymentNotFoundError:
                continue
            if outcome.replayed:
                continue
            summary[outcome.status.value] += 1
            store.record_confirmation("sweeper", outcome.status.value)

        summary["purged"] = await self._purge(current)
        logger.info("Pending payment sweep completed", **summary)
        return summary

    async def _expired_references(self, current: datetime) -> list[tuple[PaymentProviderEnum, str]]:
        session = await self._ensure_session()
        async with session as managed_session:
            rows = await managed_session.execute(
                select(ExternalPayment.provider, ExternalPayment.reference)
                .where(
                    ExternalPayment.status.in_(PENDING_PAYMENT_STATUSES),
                    ExternalPayment.expires_at.is_not(None),
                    ExternalPayment.expires_at < current,
                )
                .order_by(ExternalPayment.expires_at)
            )
            return [(PaymentProviderEnum(row.provider), row.reference) for row in rows]

    async def _purge(self, current: datetime) -> int:
        session = await self._ensure_session()
        async with session as managed_session:
            try:
                purged = await managed_session.execute(
                    delete(ExternalPayment)
                    .where(
                        ExternalPayment.status.in_(TERMINAL_PAYMENT_STATUSES),
                        ExternalPayment.resolved_at.is_not(None),
                        ExternalPayment.resolved_at < current - timedelta(seconds=self._retention_seconds),
                    )
                    .execution_options(synchronize_session=False)
                )
                await managed_session.commit()
            except Exception as exc:
                await managed_session.rollback()
                logger.exception("Pending payment purge failed", error=str(exc))
                raise
        return purged.rowcount or 0

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover
                logger.exception("Pending payment sweeper iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session
