"""Gateway and reconciler providers, overridable per application."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront_api.core.settings import settings
from storefront_api.db.session import get_session_factory
from storefront_api.services.payments.providers import NetsQrGateway, PaypalGateway
from storefront_api.services.payments.reconciler import ConfirmationReconciler


def get_nets_gateway() -> NetsQrGateway:
    return NetsQrGateway.from_settings(settings)


def get_paypal_gateway() -> PaypalGateway:
    return PaypalGateway.from_settings(settings)


def get_reconciler(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    nets: NetsQrGateway = Depends(get_nets_gateway),
    paypal: PaypalGateway = Depends(get_paypal_gateway),
) -> ConfirmationReconciler:
    return ConfirmationReconciler(
        session_factory,
        nets=nets if nets.is_configured else None,
        paypal=paypal if paypal.is_configured else None,
        config=settings,
    )
