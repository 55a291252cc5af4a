"""Sales statistics over paid orders.

``SalesStatistics`` values form a monoid under ``merge`` with ``EMPTY`` as the
identity, so totals can be built per order and folded in any grouping.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from functools import reduce

from .models import Order


@dataclass(frozen=True)
class ProductSales:
    product_id: int
    product_name: str
    total_quantity_sold: int
    total_revenue: int


@dataclass(frozen=True)
class SalesStatistics:
    total_revenue: int = 0
    total_orders: int = 0
    quantity_by_product: Counter = field(default_factory=Counter)
    revenue_by_product: Counter = field(default_factory=Counter)
    product_names: dict[int, str] = field(default_factory=dict)
    sales_by_hour: Counter = field(default_factory=Counter)
    sales_by_day: Counter = field(default_factory=Counter)

    @property
    def average_order_value(self) -> int:
        if self.total_orders == 0:
            return 0
        return self.total_revenue // self.total_orders

    def merge(self, other: SalesStatistics) -> SalesStatistics:
        return SalesStatistics(
            total_revenue=self.total_revenue + other.total_revenue,
            total_orders=self.total_orders + other.total_orders,
            quantity_by_product=self.quantity_by_product + other.quantity_by_product,
            revenue_by_product=self.revenue_by_product + other.revenue_by_product,
            product_names={**self.product_names, **other.product_names},
            sales_by_hour=self.sales_by_hour + other.sales_by_hour,
            sales_by_day=self.sales_by_day + other.sales_by_day,
        )

    def top_products(self, limit: int) -> list[ProductSales]:
        ranked = sorted(
            self.quantity_by_product,
            key=lambda product_id: (
                -self.quantity_by_product[product_id],
                -self.revenue_by_product[product_id],
                product_id,
            ),
        )
        return [
            ProductSales(
                product_id=product_id,
                product_name=self.product_names.get(product_id, ""),
                total_quantity_sold=self.quantity_by_product[product_id],
                total_revenue=self.revenue_by_product[product_id],
            )
            for product_id in ranked[:limit]
        ]


EMPTY = SalesStatistics()


def order_statistics(order: Order, *, seller_id: int | None = None) -> SalesStatistics:
    """Statistics for one order, restricted to ``seller_id``'s lines when given."""

    items = [item for item in order.items if seller_id is None or item.seller_id == seller_id]
    if not items:
        return EMPTY
    revenue = sum(item.unit_price * item.quantity for item in items)
    quantities: Counter = Counter()
    revenues: Counter = Counter()
    for item in items:
        quantities[item.product_id] += item.quantity
        revenues[item.product_id] += item.unit_price * item.quantity
    return SalesStatistics(
        total_revenue=revenue,
        total_orders=1,
        quantity_by_product=quantities,
        revenue_by_product=revenues,
        product_names={item.product_id: item.product_name for item in items},
        sales_by_hour=Counter({order.created_at.hour: revenue}),
        sales_by_day=Counter({order.created_at.date().isoformat(): revenue}),
    )


def aggregate_sales(orders: Iterable[Order], *, seller_id: int | None = None) -> SalesStatistics:
    return reduce(
        SalesStatistics.merge,
        (order_statistics(order, seller_id=seller_id) for order in orders),
        EMPTY,
    )
