"""Dependency helpers for the shop service."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import ServiceSettings, lifespan_session

from .ledger import StockLedger
from .repository import (
    CartRepository,
    OrderRepository,
    ProductRepository,
    StockEventRepository,
    UserRepository,
)
from .services import CartService, OrderService, ProductService, UserService


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield an AsyncSession for the current request."""

    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_ledger(request: Request) -> StockLedger:
    return request.app.state.ledger


def get_settings(request: Request) -> ServiceSettings:
    return request.app.state.settings


def get_user_service(
    session: AsyncSession = Depends(get_session),
    ledger: StockLedger = Depends(get_ledger),
) -> UserService:
    return UserService(UserRepository(session), locks=ledger.locks)


def get_product_service(session: AsyncSession = Depends(get_session)) -> ProductService:
    return ProductService(ProductRepository(session), UserRepository(session), StockEventRepository(session))


def get_cart_service(session: AsyncSession = Depends(get_session)) -> CartService:
    return CartService(CartRepository(session), ProductRepository(session), StockEventRepository(session))


def get_order_service(
    session: AsyncSession = Depends(get_session),
    ledger: StockLedger = Depends(get_ledger),
) -> OrderService:
    return OrderService(OrderRepository(session), CartRepository(session), UserRepository(session), ledger)


def get_order_repository(session: AsyncSession = Depends(get_session)) -> OrderRepository:
    return OrderRepository(session)
