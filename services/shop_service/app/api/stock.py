"""Stock ledger HTTP endpoints.

Each write here is a single ledger call that commits on its own; the request
session is only used to look up the product.
"""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, HTTPException, status

from ..dependencies import get_ledger, get_product_service
from ..errors import ShopError
from ..ledger import StockLedger, normalize_positive
from ..schemas import (
    StockEventCreate,
    StockEventRecordedResponse,
    StockEventResponse,
    StockHistoryResponse,
    StockLevelResponse,
    StockOperationResponse,
    StockQuantityRequest,
)
from ..services import ProductService
from .errors import as_http_error

router = APIRouter(prefix="/products/{product_id}", tags=["stock"])


def _serialize_event(event) -> dict[str, object]:
    return {
        "id": event.id,
        "productId": event.product_id,
        "type": event.type,
        "quantity": event.quantity,
        "reason": event.reason,
        "createdAt": event.created_at,
    }


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _positive_quantity(payload: StockQuantityRequest) -> int:
    requested = payload.requested()
    if not _is_number(requested) or normalize_positive(requested) == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="quantity must be a positive number")
    return normalize_positive(requested)


@router.get("/stock", response_model=StockLevelResponse)
async def get_stock(
    product_id: int,
    service: ProductService = Depends(get_product_service),
    ledger: StockLedger = Depends(get_ledger),
) -> StockLevelResponse:
    try:
        product = await service.require_product(product_id)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    history = await ledger.history(product_id)
    return StockLevelResponse.model_validate(
        {
            "productId": product.id,
            "productName": product.name,
            "currentStock": history.current_stock,
            "totalEvents": history.total_events,
            "lastUpdated": history.last_updated or product.created_at,
        }
    )


@router.get("/stock-events", response_model=StockHistoryResponse)
async def list_stock_events(
    product_id: int,
    service: ProductService = Depends(get_product_service),
    ledger: StockLedger = Depends(get_ledger),
) -> StockHistoryResponse:
    try:
        await service.require_product(product_id)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    history = await ledger.history(product_id)
    return StockHistoryResponse.model_validate(
        {
            "productId": product_id,
            "currentStock": history.current_stock,
            "totalEvents": history.total_events,
            "lastUpdated": history.last_updated,
            "eventsByType": history.events_by_type,
            "events": [_serialize_event(event) for event in history.events],
        }
    )


@router.post(
    "/stock-events",
    response_model=StockEventRecordedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_stock_event(
    product_id: int,
    payload: StockEventCreate,
    ledger: StockLedger = Depends(get_ledger),
) -> StockEventRecordedResponse:
    if not payload.type or not isinstance(payload.type, str) or payload.quantity is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="type and quantity are required")
    if not _is_number(payload.quantity) or payload.quantity == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="quantity must be a non-zero number")
    try:
        event, current_stock = await ledger.append_external(
            product_id,
            payload.type,
            payload.quantity,
            payload.reason,
        )
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return StockEventRecordedResponse.model_validate(
        {
            "success": True,
            "event": StockEventResponse.model_validate(_serialize_event(event)),
            "currentStock": current_stock,
        }
    )


@router.post("/reserve", response_model=StockOperationResponse)
async def reserve_stock(
    product_id: int,
    payload: StockQuantityRequest,
    ledger: StockLedger = Depends(get_ledger),
) -> StockOperationResponse:
    quantity = _positive_quantity(payload)
    try:
        reserved = await ledger.reserve(product_id, quantity)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    if not reserved:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Insufficient stock")
    return StockOperationResponse.model_validate(
        {
            "success": True,
            "productId": product_id,
            "quantity": quantity,
            "currentStock": await ledger.current_stock(product_id),
        }
    )


@router.post("/restock", response_model=StockOperationResponse)
async def restock(
    product_id: int,
    payload: StockQuantityRequest,
    ledger: StockLedger = Depends(get_ledger),
) -> StockOperationResponse:
    quantity = _positive_quantity(payload)
    try:
        await ledger.restock(product_id, quantity, payload.reason)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return StockOperationResponse.model_validate(
        {
            "success": True,
            "productId": product_id,
            "quantity": quantity,
            "currentStock": await ledger.current_stock(product_id),
        }
    )


@router.post("/cancel-reservation", response_model=StockOperationResponse)
async def cancel_reservation(
    product_id: int,
    payload: StockQuantityRequest,
    ledger: StockLedger = Depends(get_ledger),
) -> StockOperationResponse:
    quantity = _positive_quantity(payload)
    try:
        await ledger.cancel_reservation(product_id, quantity)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return StockOperationResponse.model_validate(
        {
            "success": True,
            "productId": product_id,
            "quantity": quantity,
            "currentStock": await ledger.current_stock(product_id),
        }
    )
