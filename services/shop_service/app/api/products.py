"""Product catalogue HTTP endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from ..dependencies import get_product_service
from ..errors import ShopError
from ..schemas import ProductCreate, ProductListResponse, ProductResponse, ProductUpdate
from ..services import ProductService
from .errors import as_http_error

router = APIRouter(prefix="/products", tags=["products"])


def _serialize_product(product, stock: int) -> dict[str, object]:
    return {
        "id": product.id,
        "sellerId": product.seller_id,
        "name": product.name,
        "description": product.description,
        "price": product.price,
        "stock": stock,
        "createdAt": product.created_at,
        "updatedAt": product.updated_at,
    }


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: ProductCreate,
    service: ProductService = Depends(get_product_service),
) -> ProductResponse:
    try:
        product, stock = await service.create_product(payload)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    return ProductResponse.model_validate(_serialize_product(product, stock))


@router.get("", response_model=ProductListResponse)
async def list_products(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    seller_id: int | None = Query(default=None, alias="sellerId"),
    service: ProductService = Depends(get_product_service),
) -> ProductListResponse:
    products, total = await service.products.list_products(seller_id=seller_id, limit=limit, offset=offset)
    levels = await service.stock_levels(products)
    items = [ProductResponse.model_validate(_serialize_product(product, levels[product.id])) for product in products]
    return ProductListResponse(items=items, total=total)


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(product_id: int, service: ProductService = Depends(get_product_service)) -> ProductResponse:
    try:
        product = await service.require_product(product_id)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    levels = await service.stock_levels([product])
    return ProductResponse.model_validate(_serialize_product(product, levels[product.id]))


@router.patch("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: int,
    payload: ProductUpdate,
    service: ProductService = Depends(get_product_service),
) -> ProductResponse:
    try:
        product = await service.update_product(product_id, payload)
    except ShopError as exc:
        raise as_http_error(exc) from exc
    levels = await service.stock_levels([product])
    return ProductResponse.model_validate(_serialize_product(product, levels[product.id]))


@router.delete("/{product_id}")
async def delete_product(product_id: int, service: ProductService = Depends(get_product_service)) -> Response:
    product = await service.products.get_product(product_id)
    if product is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    await service.products.delete_product(product)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
