from datetime import datetime, timezone
from types import SimpleNamespace

from services.shop_service.app.analytics import EMPTY, aggregate_sales, order_statistics


def _order(created_at: datetime, *lines: tuple[int, str, int, int, int]) -> SimpleNamespace:
    return SimpleNamespace(
        created_at=created_at,
        items=[
            SimpleNamespace(
                product_id=product_id,
                product_name=name,
                seller_id=seller_id,
                quantity=quantity,
                unit_price=unit_price,
            )
            for product_id, name, seller_id, quantity, unit_price in lines
        ],
    )


ORDERS = [
    _order(datetime(2024, 5, 1, 9, 15, tzinfo=timezone.utc), (1, "Mouse", 10, 2, 2500), (2, "Cable", 10, 1, 1200)),
    _order(datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc), (3, "Shirt", 20, 3, 1999)),
    _order(datetime(2024, 5, 2, 9, 45, tzinfo=timezone.utc), (1, "Mouse", 10, 1, 2500), (3, "Shirt", 20, 1, 1999)),
]


def test_aggregate_sales_totals_and_breakdowns() -> None:
    stats = aggregate_sales(ORDERS)

    assert stats.total_orders == 3
    assert stats.total_revenue == 6200 + 5997 + 4499
    assert stats.average_order_value == (6200 + 5997 + 4499) // 3
    assert stats.sales_by_hour == {9: 6200 + 4499, 14: 5997}
    assert stats.sales_by_day == {"2024-05-01": 6200 + 5997, "2024-05-02": 4499}


def test_top_products_rank_by_quantity_then_revenue() -> None:
    top = aggregate_sales(ORDERS).top_products(2)

    assert [entry.product_id for entry in top] == [3, 1]
    assert top[0].total_quantity_sold == 4
    assert top[0].total_revenue == 4 * 1999
    assert top[1].product_name == "Mouse"
    assert top[1].total_quantity_sold == 3
    assert top[1].total_revenue == 7500


def test_seller_filter_only_counts_that_sellers_lines() -> None:
    stats = aggregate_sales(ORDERS, seller_id=20)

    assert stats.total_orders == 2
    assert stats.total_revenue == 4 * 1999
    assert [entry.product_id for entry in stats.top_products(5)] == [3]


def test_empty_input_yields_zero_statistics() -> None:
    stats = aggregate_sales([])

    assert stats == EMPTY
    assert stats.average_order_value == 0
    assert stats.top_products(5) == []


def test_merge_is_associative_with_empty_identity() -> None:
    a, b, c = (order_statistics(order) for order in ORDERS)

    left = a.merge(b).merge(c)
    right = a.merge(b.merge(c))

    assert left == right
    assert a.merge(EMPTY) == a
    assert EMPTY.merge(a) == a
