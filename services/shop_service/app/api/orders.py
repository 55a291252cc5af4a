"""HTTP routes for checkout, orders and payments."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ..dependencies import get_order_service
from ..errors import ShopError
from ..models import ORDER_PAYMENT_SUCCESS
from ..schemas import (
    CheckoutRequest,
    OrderEventResponse,
    OrderListResponse,
    OrderResponse,
    PaymentRequest,
    PaymentResponse,
)
from ..services import OrderService
from .errors import as_http_error

router = APIRouter(prefix="/orders", tags=["orders"])
payments_router = APIRouter(prefix="/payments", tags=["payments"])


def _serialize_order(order) -> dict[str, object]:
    return {
        "id": order.id,
        "userId": order.user_id,
        "status": order.status,
        "totalAmount": order.total_amount,
        "paymentMethod": order.payment_method,
        "failureReason": order.failure_reason,
        "items": [
            {
                "productId": item.product_id,
                "productName": item.product_name,
                "quantity": item.quantity,
                "unitPrice": item.unit_price,
                "subtotal": item.unit_price * item.quantity,
            }
            for item in order.items
        ],
        "createdAt": order.created_at,
        "updatedAt": order.updated_at,
    }


def _serialize_events(order) -> list[dict[str, object]]:
    return [
        {
            "type": event.type,
            "payload": event.payload,
            "createdAt": event.created_at,
        }
        for event in order.events
    ]


@router.post("/checkout", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    payload: CheckoutRequest,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    try:
        order = await service.checkout(payload.user_id)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return OrderResponse.model_validate(_serialize_order(order))


@router.get("", response_model=OrderListResponse)
async def list_orders(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user_id: int | None = Query(default=None, alias="userId"),
    status_filter: str | None = Query(default=None, alias="status"),
    service: OrderService = Depends(get_order_service),
) -> OrderListResponse:
    orders, total = await service.orders.list_orders(
        user_id=user_id,
        status=status_filter.upper() if status_filter else None,
        limit=limit,
        offset=offset,
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(_serialize_order(order)) for order in orders],
        total=total,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: int, service: OrderService = Depends(get_order_service)) -> OrderResponse:
    try:
        order = await service.require_order(order_id)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return OrderResponse.model_validate(_serialize_order(order))


@router.get("/{order_id}/events", response_model=list[OrderEventResponse])
async def list_order_events(
    order_id: int,
    service: OrderService = Depends(get_order_service),
) -> list[OrderEventResponse]:
    try:
        order = await service.require_order(order_id)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return [OrderEventResponse.model_validate(event) for event in _serialize_events(order)]


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(order_id: int, service: OrderService = Depends(get_order_service)) -> OrderResponse:
    try:
        order = await service.cancel(order_id)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return OrderResponse.model_validate(_serialize_order(order))


@payments_router.post("", response_model=PaymentResponse)
async def process_payment(
    payload: PaymentRequest,
    service: OrderService = Depends(get_order_service),
) -> PaymentResponse:
    # A declined payment is a recorded outcome, not an error: the order's
    # PAYMENT_FAILED transition has to commit with this request.
    try:
        order = await service.process_payment(payload.order_id, payload.method)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    succeeded = order.status == ORDER_PAYMENT_SUCCESS
    return PaymentResponse.model_validate(
        {
            "success": succeeded,
            "orderId": order.id,
            "method": payload.method,
            "status": order.status,
            "error": None if succeeded else order.failure_reason,
        }
    )
