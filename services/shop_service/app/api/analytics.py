"""Sales analytics over paid orders."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from services.common import ServiceSettings

from ..analytics import aggregate_sales
from ..dependencies import get_order_repository, get_settings
from ..repository import OrderRepository
from ..schemas import SalesStatisticsResponse

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/sales", response_model=SalesStatisticsResponse)
async def sales_statistics(
    seller_id: int | None = Query(default=None, alias="sellerId"),
    since: datetime | None = None,
    until: datetime | None = None,
    top: int | None = Query(default=None, ge=1, le=100),
    repository: OrderRepository = Depends(get_order_repository),
    settings: ServiceSettings = Depends(get_settings),
) -> SalesStatisticsResponse:
    orders = await repository.paid_orders(seller_id=seller_id, since=since, until=until)
    stats = aggregate_sales(orders, seller_id=seller_id)
    return SalesStatisticsResponse.model_validate(
        {
            "totalRevenue": stats.total_revenue,
            "totalOrders": stats.total_orders,
            "averageOrderValue": stats.average_order_value,
            "topProducts": [
                {
                    "productId": entry.product_id,
                    "productName": entry.product_name,
                    "totalQuantitySold": entry.total_quantity_sold,
                    "totalRevenue": entry.total_revenue,
                }
                for entry in stats.top_products(top or settings.analytics_top_products)
            ],
            "salesByHour": dict(stats.sales_by_hour),
            "salesByDay": dict(stats.sales_by_day),
        }
    )
