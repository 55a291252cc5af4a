import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest
from prometheus_client import REGISTRY

from services.common import create_schema, dispose_engines, get_session_factory, lifespan_session
from services.shop_service.app.errors import InsufficientStock, InvalidStockEvent, ProductNotFound
from services.shop_service.app.ledger import StockLedger, floor_quantity, fold_stock, normalize_positive
from services.shop_service.app.locks import LocalKeyedLock
from services.shop_service.app.models import ROLE_SELLER, Base
from services.shop_service.app.repository import ProductRepository, UserRepository


class _MetricTracker:
    def __init__(self, name: str, labels: dict[str, str] | None = None) -> None:
        self.name = name
        self.labels = labels or {}
        baseline = REGISTRY.get_sample_value(name, self.labels)
        self._baseline = baseline if baseline is not None else 0.0

    def delta(self) -> float:
        current = REGISTRY.get_sample_value(self.name, self.labels)
        value = current if current is not None else 0.0
        return value - self._baseline


@asynccontextmanager
async def _ledger(tmp_path, *, sign_policy: str = "strict") -> AsyncIterator[SimpleNamespace]:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"
    await create_schema(database_url, Base)
    session_factory = get_session_factory(database_url)
    locks = LocalKeyedLock()
    ledger = StockLedger(session_factory, locks=locks, sign_policy=sign_policy)

    async def make_product(initial_stock: int) -> int:
        async with lifespan_session(session_factory) as session:
            users = UserRepository(session)
            seller = await users.find_by_email("seller@example.com")
            if seller is None:
                seller = await users.create_user(email="seller@example.com", name="Seller", role=ROLE_SELLER)
            product = await ProductRepository(session).create_product(
                seller_id=seller.id,
                name=f"Widget {initial_stock}",
                description=None,
                price=100,
                initial_stock=initial_stock,
            )
            return product.id

    try:
        yield SimpleNamespace(ledger=ledger, locks=locks, make_product=make_product)
    finally:
        await dispose_engines()


def test_fold_stock_sums_signed_quantities() -> None:
    events = [SimpleNamespace(quantity=q) for q in (50, -20, 5, -10)]
    assert fold_stock(events) == 25
    assert fold_stock([]) == 0


@pytest.mark.parametrize(
    ("value", "expected"),
    [(2.7, 2), (3, 3), (-0.5, 0), (-5, 0), (0, 0), ("4", 0), (None, 0), (True, 0), (float("nan"), 0)],
)
def test_normalize_positive(value, expected) -> None:
    assert normalize_positive(value) == expected


def test_floor_quantity_keeps_sign_and_rejects_non_numbers() -> None:
    assert floor_quantity(-2.5) == -3
    assert floor_quantity(7.9) == 7
    assert floor_quantity(float("inf")) is None
    assert floor_quantity("3") is None
    assert floor_quantity(False) is None
    assert floor_quantity(2**63 - 1) == 2**63 - 1
    assert floor_quantity(-(2**63) + 1) == -(2**63) + 1
    assert floor_quantity(2**63) is None
    assert floor_quantity(1e20) is None


@pytest.mark.asyncio
async def test_reserve_then_reject_leaves_stock_untouched(tmp_path) -> None:
    async with _ledger(tmp_path) as env:
        product_id = await env.make_product(50)

        assert await env.ledger.reserve(product_id, 20) is True
        assert await env.ledger.current_stock(product_id) == 30

        rejected = _MetricTracker("shop_stock_reservations_total", {"outcome": "rejected"})
        assert await env.ledger.reserve(product_id, 40) is False
        assert rejected.delta() == 1
        assert await env.ledger.current_stock(product_id) == 30

        history = await env.ledger.history(product_id)
        assert history.total_events == 2
        assert [event.type for event in history.events] == ["INITIAL", "RESERVATION"]
        assert history.events[-1].quantity == -20
        assert history.events[-1].reason == "Reservation for 20 units"


@pytest.mark.asyncio
async def test_reserve_everything_then_cancel_restores_stock(tmp_path) -> None:
    async with _ledger(tmp_path) as env:
        product_id = await env.make_product(10)

        assert await env.ledger.reserve(product_id, 10) is True
        assert await env.ledger.current_stock(product_id) == 0
        assert await env.ledger.reserve(product_id, 1) is False

        assert await env.ledger.cancel_reservation(product_id, 10) is True
        assert await env.ledger.current_stock(product_id) == 10

        history = await env.ledger.history(product_id)
        assert history.events_by_type == {"INITIAL": 1, "RESERVATION": 1, "CANCELLATION": 1}
        assert history.events[-1].reason == "Cancellation for 10 units"


@pytest.mark.asyncio
async def test_concurrent_reservations_never_oversell(tmp_path) -> None:
    async with _ledger(tmp_path) as env:
        product_id = await env.make_product(40)

        results = await asyncio.gather(
            env.ledger.reserve(product_id, 30),
            env.ledger.reserve(product_id, 30),
        )

        assert sorted(results) == [False, True]
        assert await env.ledger.current_stock(product_id) == 10
        assert len(env.locks) == 0


@pytest.mark.asyncio
async def test_many_concurrent_reservations_keep_stock_non_negative(tmp_path) -> None:
    async with _ledger(tmp_path) as env:
        product_id = await env.make_product(25)

        results = await asyncio.gather(*(env.ledger.reserve(product_id, 3) for _ in range(12)))

        assert results.count(True) == 8
        assert await env.ledger.current_stock(product_id) == 1


@pytest.mark.asyncio
async def test_invalid_quantities_are_rejected_without_writes(tmp_path) -> None:
    async with _ledger(tmp_path) as env:
        product_id = await env.make_product(5)
        invalid = _MetricTracker("shop_stock_reservations_total", {"outcome": "invalid"})

        assert await env.ledger.reserve(product_id, -5) is False
        assert await env.ledger.reserve(product_id, 0) is False
        assert await env.ledger.reserve(product_id, 0.4) is False
        assert await env.ledger.restock(product_id, 0) is False
        assert await env.ledger.cancel_reservation(product_id, -1) is False

        assert invalid.delta() == 3
        history = await env.ledger.history(product_id)
        assert history.total_events == 1
        assert history.current_stock == 5


@pytest.mark.asyncio
async def test_restock_floors_fractional_quantities(tmp_path) -> None:
    async with _ledger(tmp_path) as env:
        product_id = await env.make_product(0)
        restocks = _MetricTracker("shop_stock_events_total", {"type": "restock"})

        assert await env.ledger.restock(product_id, 2.7) is True

        history = await env.ledger.history(product_id)
        assert history.events[-1].quantity == 2
        assert history.events[-1].reason == "Manual restock"
        assert history.current_stock == 2
        assert restocks.delta() == 1


@pytest.mark.asyncio
async def test_reads_are_idempotent(tmp_path) -> None:
    async with _ledger(tmp_path) as env:
        product_id = await env.make_product(12)
        await env.ledger.reserve(product_id, 5)

        first = await env.ledger.current_stock(product_id)
        second = await env.ledger.current_stock(product_id)
        assert first == second == 7
        assert (await env.ledger.history(product_id)).total_events == 2


@pytest.mark.asyncio
async def test_unknown_product_raises_not_found(tmp_path) -> None:
    async with _ledger(tmp_path) as env:
        with pytest.raises(ProductNotFound):
            await env.ledger.reserve(999, 1)
        with pytest.raises(ProductNotFound):
            await env.ledger.restock(999, 1)
        with pytest.raises(ProductNotFound):
            await env.ledger.append_external(999, "RESTOCK", 3)
        assert await env.ledger.current_stock(999) == 0


@pytest.mark.asyncio
async def test_append_external_strict_policy_checks_type_and_sign(tmp_path) -> None:
    async with _ledger(tmp_path) as env:
        product_id = await env.make_product(10)

        event, stock = await env.ledger.append_external(product_id, "RESERVATION", -4, "manual hold")
        assert event.quantity == -4
        assert event.reason == "manual hold"
        assert stock == 6

        with pytest.raises(InvalidStockEvent):
            await env.ledger.append_external(product_id, "RESERVATION", 4)
        with pytest.raises(InvalidStockEvent):
            await env.ledger.append_external(product_id, "RESTOCK", -4)
        with pytest.raises(InvalidStockEvent):
            await env.ledger.append_external(product_id, "INITIAL", 4)
        with pytest.raises(InvalidStockEvent):
            await env.ledger.append_external(product_id, "RESTOCK", 0.9)
        with pytest.raises(InsufficientStock):
            await env.ledger.append_external(product_id, "RESERVATION", -7)

        assert await env.ledger.current_stock(product_id) == 6


@pytest.mark.asyncio
async def test_append_external_permissive_policy_keeps_sign_but_not_below_zero(tmp_path) -> None:
    async with _ledger(tmp_path, sign_policy="permissive") as env:
        product_id = await env.make_product(3)

        _, stock = await env.ledger.append_external(product_id, "RESTOCK", -2, "count correction")
        assert stock == 1

        with pytest.raises(InsufficientStock):
            await env.ledger.append_external(product_id, "CANCELLATION", -5)

        _, stock = await env.ledger.append_external(product_id, "RESERVATION", 4)
        assert stock == 5
        assert await env.ledger.current_stock(product_id) == 5


@pytest.mark.asyncio
async def test_record_event_refuses_to_drive_stock_negative(tmp_path) -> None:
    async with _ledger(tmp_path) as env:
        product_id = await env.make_product(4)

        event = await env.ledger.record_event(product_id, "RESERVATION", -3, "manual hold")
        assert event.quantity == -3

        with pytest.raises(InsufficientStock):
            await env.ledger.record_event(product_id, "RESERVATION", -2)

        with pytest.raises(InvalidStockEvent):
            await env.ledger.record_event(product_id, "RESTOCK", 2**63 - 1)

        history = await env.ledger.history(product_id)
        assert history.current_stock == 1
        assert history.total_events == 2
        assert len(env.locks) == 0
