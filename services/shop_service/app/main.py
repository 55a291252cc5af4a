from contextlib import asynccontextmanager

from fastapi import FastAPI

from services.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    close_redis_connections,
    configure_logging,
    create_schema,
    dispose_engines,
    get_session_factory,
    get_settings,
    resolve_database_url,
    resolve_redis,
)

from .api.analytics import router as analytics_router
from .api.carts import router as carts_router
from .api.health import router as health_router
from .api.orders import payments_router
from .api.orders import router as orders_router
from .api.products import router as products_router
from .api.stock import router as stock_router
from .api.users import router as users_router
from .ledger import StockLedger
from .locks import KeyedLock, LocalKeyedLock, RedisKeyedLock
from .models import Base

SERVICE_NAME = "Shop Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./shop_service.db"


def create_app(settings: ServiceSettings | None = None) -> FastAPI:
    """Create the Shop Service FastAPI application."""

    resolved_settings = settings or get_settings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)

    redis_client = resolve_redis(resolved_settings)
    locks: KeyedLock
    if redis_client is not None:
        locks = RedisKeyedLock(redis_client, timeout=resolved_settings.stock_lock_timeout_seconds)
    else:
        locks = LocalKeyedLock()
    ledger = StockLedger(
        session_factory,
        locks=locks,
        sign_policy=resolved_settings.stock_event_sign_policy,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.session_factory = session_factory
        app.state.ledger = ledger
        try:
            if resolved_settings.create_schema_on_startup:
                await create_schema(database_url, Base)
            yield
        finally:
            app.state.session_factory = None  # type: ignore[assignment]
            app.state.ledger = None
            await dispose_engines()
            if redis_client is not None:
                await close_redis_connections()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(users_router)
    app.include_router(carts_router)
    app.include_router(products_router)
    app.include_router(stock_router)
    app.include_router(orders_router)
    app.include_router(payments_router)
    app.include_router(analytics_router)
    return app


app = create_app()
