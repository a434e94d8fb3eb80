"""Cart endpoints for the signed-in shopper."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.api.dependencies.session import require_member_session
from storefront_api.api.errors import HANDLED_ERRORS, to_http_exception
from storefront_api.core.money import sum_money
from storefront_api.db.session import get_session
from storefront_api.models.user import User
from storefront_api.services.cart import CartLineView, CartService


router = APIRouter(prefix="/cart", tags=["cart"])


class CartItemRequest(BaseModel):
    product_id: UUID = Field(..., alias="productId")
    quantity: int = Field(1, ge=1, description="Units to add to the existing line")

    class Config:
        populate_by_name = True


class CartLineResponse(BaseModel):
    productId: UUID
    title: str
    quantity: int
    unitPrice: float
    lineTotal: float


class CartResponse(BaseModel):
    items: list[CartLineResponse]
    subtotal: float


def serialize_cart(lines: list[CartLineView]) -> CartResponse:
    return CartResponse(
        items=[
            CartLineResponse(
                productId=line.product_id,
                title=line.title,
                quantity=line.quantity,
                unitPrice=float(line.unit_price),
                lineTotal=float(line.line_total),
            )
            for line in lines
        ],
        subtotal=float(sum_money(line.line_total for line in lines)),
    )


@router.get("", response_model=CartResponse)
async def get_cart(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> CartResponse:
    return serialize_cart(await CartService(db).get_lines(user.id))


@router.post("/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_cart_item(
    payload: CartItemRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> CartResponse:
    service = CartService(db)
    try:
        await service.add_item(user.id, payload.product_id, payload.quantity)
        await db.commit()
    except HANDLED_ERRORS as exc:
        await db.rollback()
        raise to_http_exception(exc) from exc
    return serialize_cart(await service.get_lines(user.id))


@router.delete("/items/{product_id}", response_model=CartResponse)
async def remove_cart_item(
    product_id: UUID,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> CartResponse:
    service = CartService(db)
    removed = await service.remove_item(user.id, product_id)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not in cart")
    await db.commit()
    return serialize_cart(await service.get_lines(user.id))
