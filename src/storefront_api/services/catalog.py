"""Catalog lookups and conditional stock movements."""

from __future__ import annotations

from uuid import UUID

from loguru import logger
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.models.product import Product
from storefront_api.services.errors import CheckoutValidationError, InsufficientStockError


class CatalogService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_product(self, product_id: UUID) -> Product | None:
        return await self._session.get(Product, product_id)

    async def decrement_stock(self, product_id: UUID, quantity: int) -> None:
        """Take ``quantity`` units in a single guarded UPDATE.

        The ``stock_quantity >= quantity`` predicate is evaluated by the
        database, so concurrent buyers cannot both pass the check.
        """

        if quantity <= 0:
            raise CheckoutValidationError("Quantity must be positive")

        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity >= quantity)
            .values(stock_quantity=Product.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            logger.info("Stock decrement rejected", product_id=str(product_id), requested=quantity)
            raise InsufficientStockError(product_id, quantity)


__all__ = ["CatalogService"]
