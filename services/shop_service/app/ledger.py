"""Event-sourced stock ledger.

Current stock is never stored; it is the sum of the signed ``quantity`` of
every ``StockEvent`` for a product, folded in ``(created_at, id)`` order.
Events are write-once: this module only ever inserts rows.

Every mutating call runs in its own short transaction so an append is visible
to other sessions as soon as the call returns. Appends hold a per-product
lock (and a ``FOR UPDATE`` row lock where the database supports it) across
the read-check-append-commit sequence, so two concurrent reservations on the
same product can never both observe the same stock.
"""

from __future__ import annotations

import logging
import math
import time
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import lifespan_session

from .errors import InsufficientStock, InvalidStockEvent, ProductNotFound
from .locks import KeyedLock, LocalKeyedLock
from .metrics import (
    SHOP_STOCK_EVENTS_TOTAL,
    SHOP_STOCK_RESERVATION_SECONDS,
    SHOP_STOCK_RESERVATIONS_TOTAL,
)
from .models import (
    MAX_QUANTITY,
    STOCK_CANCELLATION,
    STOCK_INITIAL,
    STOCK_RESERVATION,
    STOCK_RESTOCK,
    STOCK_EVENT_TYPES,
    StockEvent,
)
from .repository import StockEventRepository

logger = logging.getLogger(__name__)

EXTERNAL_EVENT_TYPES = frozenset({STOCK_RESERVATION, STOCK_CANCELLATION, STOCK_RESTOCK})
SignPolicy = Literal["strict", "permissive"]

# Sign each external event type must carry under the strict policy.
_EXPECTED_SIGN = {STOCK_RESERVATION: -1, STOCK_CANCELLATION: 1, STOCK_RESTOCK: 1}


def fold_stock(events: Iterable[StockEvent]) -> int:
    """Sum the signed quantities of ``events``; 0 for an empty ledger."""

    return sum(event.quantity for event in events)


def floor_quantity(value: object) -> int | None:
    """Floor a numeric quantity to whole units.

    Returns None when ``value`` is not a finite number or does not fit a
    64-bit integer column.
    """

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    floored = math.floor(value)
    if abs(floored) > MAX_QUANTITY:
        return None
    return floored


def normalize_positive(value: object) -> int:
    """``max(0, floor(value))``; anything non-numeric normalizes to 0."""

    floored = floor_quantity(value)
    if floored is None:
        return 0
    return max(0, floored)


@dataclass
class StockHistory:
    product_id: int
    events: list[StockEvent]
    current_stock: int
    total_events: int
    last_updated: datetime | None
    events_by_type: dict[str, int] = field(default_factory=dict)


def summarize_history(product_id: int, events: list[StockEvent]) -> StockHistory:
    return StockHistory(
        product_id=product_id,
        events=events,
        current_stock=fold_stock(events),
        total_events=len(events),
        last_updated=events[-1].created_at if events else None,
        events_by_type=dict(Counter(event.type for event in events)),
    )


class StockLedger:
    """Owns every read and append against the stock event log."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        locks: KeyedLock | None = None,
        sign_policy: SignPolicy = "strict",
    ) -> None:
        self.session_factory = session_factory
        self.locks = locks if locks is not None else LocalKeyedLock()
        self.sign_policy = sign_policy

    async def current_stock(self, product_id: int) -> int:
        async with lifespan_session(self.session_factory) as session:
            return await StockEventRepository(session).current_stock(product_id)

    async def history(self, product_id: int) -> StockHistory:
        async with lifespan_session(self.session_factory) as session:
            events = await StockEventRepository(session).list_events(product_id)
        return summarize_history(product_id, events)

    async def record_event(
        self,
        product_id: int,
        event_type: str,
        quantity: object,
        reason: str | None = None,
    ) -> StockEvent:
        """Append one event with a floored, non-zero quantity.

        The sign is taken as given, but the append runs under the product lock
        and is refused when it would take stock below zero or past the column
        range.
        """

        qty = self._validated_quantity(event_type, quantity)
        event, _ = await self._append_checked(product_id, event_type, qty, reason)
        return event

    async def reserve(self, product_id: int, quantity: object) -> bool:
        """Set aside ``quantity`` units; False when invalid or not enough stock.

        Raises ``ProductNotFound`` for an unknown product with a valid quantity.
        """

        qty = normalize_positive(quantity)
        if qty == 0:
            SHOP_STOCK_RESERVATIONS_TOTAL.labels(outcome="invalid").inc()
            return False

        started = time.perf_counter()
        try:
            async with self.locks.hold(self._lock_key(product_id)):
                async with lifespan_session(self.session_factory) as session:
                    repository = StockEventRepository(session)
                    if not await repository.lock_product(product_id):
                        raise ProductNotFound(product_id)
                    available = await repository.current_stock(product_id)
                    if available < qty:
                        logger.info(
                            "Rejected reservation of %s units for product %s (available %s)",
                            qty,
                            product_id,
                            available,
                        )
                        SHOP_STOCK_RESERVATIONS_TOTAL.labels(outcome="rejected").inc()
                        return False
                    await self._append(
                        repository,
                        product_id,
                        STOCK_RESERVATION,
                        -qty,
                        f"Reservation for {qty} units",
                    )
        finally:
            SHOP_STOCK_RESERVATION_SECONDS.observe(time.perf_counter() - started)
        SHOP_STOCK_RESERVATIONS_TOTAL.labels(outcome="accepted").inc()
        return True

    async def restock(self, product_id: int, quantity: object, reason: str | None = None) -> bool:
        qty = normalize_positive(quantity)
        if qty == 0:
            return False
        await self.record_event(product_id, STOCK_RESTOCK, qty, reason or "Manual restock")
        return True

    async def cancel_reservation(self, product_id: int, quantity: object) -> bool:
        qty = normalize_positive(quantity)
        if qty == 0:
            return False
        await self.record_event(product_id, STOCK_CANCELLATION, qty, f"Cancellation for {qty} units")
        return True

    async def append_external(
        self,
        product_id: int,
        event_type: str,
        quantity: object,
        reason: str | None = None,
    ) -> tuple[StockEvent, int]:
        """Append a caller-described event and return it with the new stock.

        ``INITIAL`` is reserved for product creation. Under the strict sign
        policy the sign must match the type; in every policy a negative delta
        is checked against current stock under the product lock.
        """

        if event_type not in EXTERNAL_EVENT_TYPES:
            allowed = ", ".join(sorted(EXTERNAL_EVENT_TYPES))
            raise InvalidStockEvent(f"type must be one of: {allowed}")
        qty = self._validated_quantity(event_type, quantity)
        if self.sign_policy == "strict" and math.copysign(1, qty) != _EXPECTED_SIGN[event_type]:
            expected = "negative" if _EXPECTED_SIGN[event_type] < 0 else "positive"
            raise InvalidStockEvent(f"{event_type} quantity must be {expected}")
        return await self._append_checked(product_id, event_type, qty, reason)

    async def _append_checked(
        self,
        product_id: int,
        event_type: str,
        qty: int,
        reason: str | None,
    ) -> tuple[StockEvent, int]:
        async with self.locks.hold(self._lock_key(product_id)):
            async with lifespan_session(self.session_factory) as session:
                repository = StockEventRepository(session)
                if not await repository.lock_product(product_id):
                    raise ProductNotFound(product_id)
                available = await repository.current_stock(product_id)
                if qty < 0 and available + qty < 0:
                    raise InsufficientStock(product_id, -qty, available)
                if available + qty > MAX_QUANTITY:
                    raise InvalidStockEvent(f"stock for product {product_id} would exceed {MAX_QUANTITY} units")
                event = await self._append(repository, product_id, event_type, qty, reason)
        return event, available + qty

    def _validated_quantity(self, event_type: str, quantity: object) -> int:
        if event_type not in STOCK_EVENT_TYPES:
            raise InvalidStockEvent(f"unknown stock event type {event_type!r}")
        qty = floor_quantity(quantity)
        if qty is None:
            raise InvalidStockEvent(f"quantity must be a finite number no larger than {MAX_QUANTITY}")
        if qty == 0:
            raise InvalidStockEvent("quantity must be non-zero after flooring to whole units")
        if event_type == STOCK_INITIAL and qty < 0:
            raise InvalidStockEvent("initial stock cannot be negative")
        return qty

    async def _append(
        self,
        repository: StockEventRepository,
        product_id: int,
        event_type: str,
        quantity: int,
        reason: str | None,
    ) -> StockEvent:
        event = await repository.append(
            product_id=product_id,
            event_type=event_type,
            quantity=quantity,
            reason=reason,
        )
        SHOP_STOCK_EVENTS_TOTAL.labels(type=event_type.lower()).inc()
        logger.debug("Appended %s %+d to product %s (event %s)", event_type, quantity, product_id, event.id)
        return event

    @staticmethod
    def _lock_key(product_id: int) -> str:
        return f"product:{product_id}"
