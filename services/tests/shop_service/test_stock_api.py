import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from services.common import ServiceSettings, dispose_engines
from services.shop_service.app.main import create_app


def _run(coro):
    return asyncio.run(coro)


def _prepare_app(tmp_path, **overrides) -> FastAPI:
    settings = ServiceSettings(
        app_name="Shop Service Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}",
        **overrides,
    )
    return create_app(settings)


async def _create_product(client: AsyncClient, stock: int) -> int:
    seller = await client.post(
        "/users",
        json={"email": f"seller{stock}@example.com", "name": "Seller", "role": "SELLER"},
    )
    product = await client.post(
        "/products",
        json={"sellerId": seller.json()["id"], "name": "Widget", "price": 1000, "stock": stock},
    )
    assert product.status_code == 201
    return product.json()["id"]


def test_reserve_restock_and_cancel(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                product_id = await _create_product(client, 50)

                reserve = await client.post(f"/products/{product_id}/reserve", json={"quantity": 20})
                assert reserve.status_code == 200
                assert reserve.json() == {
                    "success": True,
                    "productId": product_id,
                    "quantity": 20,
                    "currentStock": 30,
                }

                too_many = await client.post(f"/products/{product_id}/reserve", json={"quantity": 40})
                assert too_many.status_code == 409
                assert too_many.json()["detail"] == "Insufficient stock"

                by_qty = await client.post(f"/products/{product_id}/reserve", json={"qty": 5.9})
                assert by_qty.status_code == 200
                assert by_qty.json()["quantity"] == 5
                assert by_qty.json()["currentStock"] == 25

                restock = await client.post(f"/products/{product_id}/restock", json={"quantity": 2.7})
                assert restock.status_code == 200
                assert restock.json()["currentStock"] == 27

                cancel = await client.post(f"/products/{product_id}/cancel-reservation", json={"quantity": 20})
                assert cancel.status_code == 200
                assert cancel.json()["currentStock"] == 47

                level = (await client.get(f"/products/{product_id}/stock")).json()
                assert level["currentStock"] == 47
                assert level["totalEvents"] == 5

                history = (await client.get(f"/products/{product_id}/stock-events")).json()
                assert [event["type"] for event in history["events"]] == [
                    "INITIAL",
                    "RESERVATION",
                    "RESERVATION",
                    "RESTOCK",
                    "CANCELLATION",
                ]
                assert [event["quantity"] for event in history["events"]] == [50, -20, -5, 2, 20]
                assert history["eventsByType"]["RESERVATION"] == 2

    _run(body())
    _run(dispose_engines())


def test_reserve_rejects_bad_quantities(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                product_id = await _create_product(client, 10)

                for payload in ({"quantity": -5}, {"quantity": 0}, {"quantity": "3"}, {"quantity": True}, {}):
                    response = await client.post(f"/products/{product_id}/reserve", json=payload)
                    assert response.status_code == 400, payload
                    assert response.json()["detail"] == "quantity must be a positive number"

                bad_restock = await client.post(f"/products/{product_id}/restock", json={"quantity": 0.5})
                assert bad_restock.status_code == 400

                missing = await client.post("/products/999/reserve", json={"quantity": 1})
                assert missing.status_code == 404
                assert missing.json()["detail"] == "Product not found"

                assert (await client.get("/products/999/stock")).status_code == 404
                assert (await client.get("/products/999/stock-events")).status_code == 404

                level = (await client.get(f"/products/{product_id}/stock")).json()
                assert level["currentStock"] == 10
                assert level["totalEvents"] == 1

    _run(body())
    _run(dispose_engines())


def test_record_stock_events(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                product_id = await _create_product(client, 10)
                url = f"/products/{product_id}/stock-events"

                created = await client.post(url, json={"type": "RESERVATION", "quantity": -3, "reason": "hold"})
                assert created.status_code == 201
                recorded = created.json()
                assert recorded["success"] is True
                assert recorded["currentStock"] == 7
                assert recorded["event"]["type"] == "RESERVATION"
                assert recorded["event"]["quantity"] == -3
                assert recorded["event"]["reason"] == "hold"

                restock = await client.post(url, json={"type": "RESTOCK", "quantity": 4.8})
                assert restock.status_code == 201
                assert restock.json()["currentStock"] == 11

                assert (await client.post(url, json={"quantity": 5})).status_code == 400
                assert (await client.post(url, json={"type": 5, "quantity": 5})).status_code == 400
                assert (await client.post(url, json={"type": "RESTOCK", "quantity": 0})).status_code == 400
                assert (await client.post(url, json={"type": "RESTOCK", "quantity": "5"})).status_code == 400
                assert (await client.post(url, json={"type": "INITIAL", "quantity": 5})).status_code == 400
                assert (await client.post(url, json={"type": "restock", "quantity": 5})).status_code == 400
                assert (await client.post(url, json={"type": "RESERVATION", "quantity": 5})).status_code == 400
                assert (await client.post(url, json={"type": "CANCELLATION", "quantity": -1})).status_code == 400

                oversell = await client.post(url, json={"type": "RESERVATION", "quantity": -12})
                assert oversell.status_code == 409

                missing = await client.post("/products/999/stock-events", json={"type": "RESTOCK", "quantity": 1})
                assert missing.status_code == 404

                history = (await client.get(url)).json()
                assert history["currentStock"] == 11
                assert history["totalEvents"] == 3

    _run(body())
    _run(dispose_engines())


def test_permissive_sign_policy_accepts_any_sign(tmp_path) -> None:
    app = _prepare_app(tmp_path, stock_event_sign_policy="permissive")

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                product_id = await _create_product(client, 5)
                url = f"/products/{product_id}/stock-events"

                correction = await client.post(url, json={"type": "RESTOCK", "quantity": -2})
                assert correction.status_code == 201
                assert correction.json()["currentStock"] == 3

                below_zero = await client.post(url, json={"type": "CANCELLATION", "quantity": -4})
                assert below_zero.status_code == 409

    _run(body())
    _run(dispose_engines())


def test_concurrent_reserve_requests_sell_once(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                product_id = await _create_product(client, 40)

                responses = await asyncio.gather(
                    client.post(f"/products/{product_id}/reserve", json={"quantity": 30}),
                    client.post(f"/products/{product_id}/reserve", json={"quantity": 30}),
                )

                assert sorted(response.status_code for response in responses) == [200, 409]
                level = (await client.get(f"/products/{product_id}/stock")).json()
                assert level["currentStock"] == 10

    _run(body())
    _run(dispose_engines())


def test_quantities_beyond_integer_range_are_rejected(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                product_id = await _create_product(client, 5)
                url = f"/products/{product_id}/stock-events"

                huge_restock = await client.post(f"/products/{product_id}/restock", json={"quantity": 1e20})
                assert huge_restock.status_code == 400

                huge_event = await client.post(url, json={"type": "RESTOCK", "quantity": 1e20})
                assert huge_event.status_code == 400

                past_range = await client.post(url, json={"type": "RESTOCK", "quantity": 2**63 - 1})
                assert past_range.status_code == 400

                seller = await client.post(
                    "/users", json={"email": "bulk@example.com", "name": "Bulk", "role": "SELLER"}
                )
                huge_product = await client.post(
                    "/products",
                    json={"sellerId": seller.json()["id"], "name": "Grain", "price": 1, "stock": 1e20},
                )
                assert huge_product.status_code == 400

                history = (await client.get(url)).json()
                assert history["currentStock"] == 5
                assert history["totalEvents"] == 1

    _run(body())
    _run(dispose_engines())


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
