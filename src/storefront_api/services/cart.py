"""Cart store backing checkout."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.core.money import round_money
from storefront_api.models.cart import CartLine
from storefront_api.models.product import Product
from storefront_api.services.catalog import CatalogService
from storefront_api.services.errors import CheckoutValidationError


@dataclass(slots=True, frozen=True)
class CartLineView:
    """Cart line with the unit price snapshotted from the catalog at read time."""

    product_id: UUID
    title: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return round_money(self.unit_price * self.quantity)


class CartService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_lines(self, user_id: UUID) -> list[CartLineView]:
        stmt = (
            select(CartLine, Product)
            .join(Product, Product.id == CartLine.product_id)
            .where(CartLine.user_id == user_id)
            .order_by(CartLine.created_at, CartLine.id)
        )
        result = await self._session.execute(stmt)
        return [
            CartLineView(
                product_id=product.id,
                title=product.title,
                quantity=line.quantity,
                unit_price=round_money(product.price),
            )
            for line, product in result.all()
        ]

    async def add_item(self, user_id: UUID, product_id: UUID, quantity: int = 1) -> CartLine:
        """Add a product or increment the existing line."""

        if quantity <= 0:
            raise CheckoutValidationError("Quantity must be positive")
        product = await CatalogService(self._session).get_product(product_id)
        if product is None:
            raise CheckoutValidationError("Product not found")

        stmt = select(CartLine).where(CartLine.user_id == user_id, CartLine.product_id == product_id)
        line = (await self._session.execute(stmt)).scalar_one_or_none()
        if line is None:
            line = CartLine(user_id=user_id, product_id=product_id, quantity=quantity)
            self._session.add(line)
        else:
            line.quantity = line.quantity + quantity
        await self._session.flush()
        return line

    async def remove_item(self, user_id: UUID, product_id: UUID) -> bool:
        stmt = delete(CartLine).where(CartLine.user_id == user_id, CartLine.product_id == product_id)
        result = await self._session.execute(stmt)
        return bool(result.rowcount)

    async def clear(self, user_id: UUID) -> int:
        result = await self._session.execute(delete(CartLine).where(CartLine.user_id == user_id))
        return result.rowcount or 0


__all__ = ["CartLineView", "CartService"]
