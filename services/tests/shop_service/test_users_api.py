import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from services.common import ServiceSettings, dispose_engines
from services.shop_service.app.main import create_app


def _run(coro):
    return asyncio.run(coro)


def _prepare_app(tmp_path) -> FastAPI:
    settings = ServiceSettings(
        app_name="Shop Service Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}",
    )
    return create_app(settings)


def test_create_get_and_list_users(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                create_resp = await client.post(
                    "/users",
                    json={"email": " Ada@Example.com ", "name": "Ada", "role": "seller"},
                )
                assert create_resp.status_code == 201
                created = create_resp.json()
                assert created["email"] == "ada@example.com"
                assert created["role"] == "SELLER"
                assert "createdAt" in created

                await client.post("/users", json={"email": "bob@example.com", "name": "Bob"})

                get_resp = await client.get(f"/users/{created['id']}")
                assert get_resp.status_code == 200
                assert get_resp.json()["name"] == "Ada"

                list_resp = await client.get("/users", params={"role": "buyer"})
                assert list_resp.status_code == 200
                listing = list_resp.json()
                assert listing["total"] == 1
                assert listing["items"][0]["email"] == "bob@example.com"

                missing = await client.get("/users/999")
                assert missing.status_code == 404
                assert missing.json()["detail"] == "User not found"

    _run(body())
    _run(dispose_engines())


def test_user_validation_and_duplicates(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                first = await client.post("/users", json={"email": "dup@example.com", "name": "One"})
                assert first.status_code == 201

                duplicate = await client.post("/users", json={"email": "DUP@example.com", "name": "Two"})
                assert duplicate.status_code == 409

                bad_role = await client.post(
                    "/users",
                    json={"email": "x@example.com", "name": "X", "role": "ADMIN"},
                )
                assert bad_role.status_code == 422

                bad_email = await client.post("/users", json={"email": "nobody", "name": "X"})
                assert bad_email.status_code == 422

    _run(body())
    _run(dispose_engines())


def test_balance_deposit_and_withdraw(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                user = (await client.post("/users", json={"email": "cash@example.com", "name": "Cash"})).json()
                user_id = user["id"]

                empty = await client.get(f"/users/{user_id}/balance")
                assert empty.status_code == 200
                assert empty.json() == {"userId": user_id, "currentBalance": 0, "events": []}

                deposit = await client.post(f"/users/{user_id}/balance/deposit", json={"amount": 5000})
                assert deposit.status_code == 200
                assert deposit.json()["currentBalance"] == 5000

                withdraw = await client.post(f"/users/{user_id}/balance/withdraw", json={"amount": 1500})
                assert withdraw.status_code == 200
                balance = withdraw.json()
                assert balance["currentBalance"] == 3500
                assert [event["type"] for event in balance["events"]] == ["DEPOSIT", "WITHDRAWAL"]
                assert [event["amount"] for event in balance["events"]] == [5000, -1500]

                overdraw = await client.post(f"/users/{user_id}/balance/withdraw", json={"amount": 4000})
                assert overdraw.status_code == 409

                zero = await client.post(f"/users/{user_id}/balance/deposit", json={"amount": 0})
                assert zero.status_code == 422

                unknown = await client.post("/users/999/balance/deposit", json={"amount": 10})
                assert unknown.status_code == 404

                after = await client.get(f"/users/{user_id}/balance")
                assert after.json()["currentBalance"] == 3500

    _run(body())
    _run(dispose_engines())


def test_concurrent_withdrawals_never_overdraw(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                user = (await client.post("/users", json={"email": "race@example.com", "name": "Race"})).json()
                url = f"/users/{user['id']}/balance"
                await client.post(f"{url}/deposit", json={"amount": 5000})

                responses = await asyncio.gather(
                    client.post(f"{url}/withdraw", json={"amount": 3000}),
                    client.post(f"{url}/withdraw", json={"amount": 3000}),
                )

                assert sorted(response.status_code for response in responses) == [200, 409]
                balance = (await client.get(url)).json()
                assert balance["currentBalance"] == 2000
                assert [event["type"] for event in balance["events"]] == ["DEPOSIT", "WITHDRAWAL"]

    _run(body())
    _run(dispose_engines())


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
