"""Shopping cart HTTP endpoints, one cart per user."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..dependencies import get_cart_service, get_user_service
from ..errors import ShopError
from ..schemas import CartItemAdd, CartItemUpdate, CartResponse, ValidatedCartResponse
from ..services import CartService, UserService
from .errors import as_http_error

router = APIRouter(prefix="/users/{user_id}/cart", tags=["carts"])


def _serialize_cart(cart) -> dict[str, object]:
    items = [
        {
            "productId": item.product_id,
            "productName": item.product.name,
            "price": item.product.price,
            "quantity": item.quantity,
            "subtotal": item.product.price * item.quantity,
        }
        for item in cart.items
    ]
    return {
        "id": cart.id,
        "userId": cart.user_id,
        "items": items,
        "totalItems": sum(item["quantity"] for item in items),
        "totalAmount": sum(item["subtotal"] for item in items),
        "updatedAt": cart.updated_at,
    }


@router.get("", response_model=CartResponse)
async def get_cart(
    user_id: int,
    users: UserService = Depends(get_user_service),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        await users.require_user(user_id)
        cart = await service.get_cart(user_id)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return CartResponse.model_validate(_serialize_cart(cart))


@router.post("/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_item(
    user_id: int,
    payload: CartItemAdd,
    users: UserService = Depends(get_user_service),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        await users.require_user(user_id)
        cart = await service.add_item(user_id, product_id=payload.product_id, quantity=payload.quantity)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return CartResponse.model_validate(_serialize_cart(cart))


@router.patch("/items/{product_id}", response_model=CartResponse)
async def update_item(
    user_id: int,
    product_id: int,
    payload: CartItemUpdate,
    users: UserService = Depends(get_user_service),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        await users.require_user(user_id)
        cart = await service.update_item(user_id, product_id=product_id, quantity=payload.quantity)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return CartResponse.model_validate(_serialize_cart(cart))


@router.delete("/items/{product_id}", response_model=CartResponse)
async def remove_item(
    user_id: int,
    product_id: int,
    users: UserService = Depends(get_user_service),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        await users.require_user(user_id)
        cart = await service.remove_item(user_id, product_id=product_id)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return CartResponse.model_validate(_serialize_cart(cart))


@router.delete("", response_model=CartResponse)
async def clear_cart(
    user_id: int,
    users: UserService = Depends(get_user_service),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        await users.require_user(user_id)
        cart = await service.clear(user_id)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return CartResponse.model_validate(_serialize_cart(cart))


@router.get("/validate", response_model=ValidatedCartResponse)
async def validate_cart(
    user_id: int,
    users: UserService = Depends(get_user_service),
    service: CartService = Depends(get_cart_service),
) -> ValidatedCartResponse:
    try:
        await users.require_user(user_id)
        cart = await service.get_cart(user_id)
        validated = await service.validate(cart)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return ValidatedCartResponse.model_validate(
        {
            "items": [
                {
                    "productId": line.product_id,
                    "productName": line.product_name,
                    "quantity": line.quantity,
                    "price": line.price,
                    "subtotal": line.subtotal,
                    "availableStock": line.available_stock,
                }
                for line in validated.items
            ],
            "totalAmount": validated.total_amount,
        }
    )
