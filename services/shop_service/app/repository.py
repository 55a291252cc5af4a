"""Data access helpers for the shop service."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import Select, and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import (
    ORDER_PAYMENT_SUCCESS,
    STOCK_INITIAL,
    BalanceEvent,
    Cart,
    CartItem,
    Order,
    OrderEvent,
    OrderItem,
    Product,
    StockEvent,
    User,
)


class StockEventRepository:
    """Append and read access to the stock ledger table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def lock_product(self, product_id: int) -> bool:
        """Take a row lock on the product; False when it does not exist.

        ``FOR UPDATE`` is rendered on PostgreSQL/MySQL and silently dropped on
        SQLite, whose single writer already serializes appends.
        """

        result = await self.session.execute(
            select(Product.id).where(Product.id == product_id).with_for_update()
        )
        return result.scalar_one_or_none() is not None

    async def list_events(self, product_id: int) -> list[StockEvent]:
        result = await self.session.execute(
            select(StockEvent)
            .where(StockEvent.product_id == product_id)
            .order_by(StockEvent.created_at.asc(), StockEvent.id.asc())
        )
        return list(result.scalars())

    async def current_stock(self, product_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(StockEvent.quantity), 0)).where(StockEvent.product_id == product_id)
        )
        return int(result.scalar_one())

    async def stock_levels(self, product_ids: Iterable[int]) -> dict[int, int]:
        ids = list(set(product_ids))
        if not ids:
            return {}
        result = await self.session.execute(
            select(StockEvent.product_id, func.sum(StockEvent.quantity))
            .where(StockEvent.product_id.in_(ids))
            .group_by(StockEvent.product_id)
        )
        levels = {product_id: 0 for product_id in ids}
        levels.update({product_id: int(total or 0) for product_id, total in result.all()})
        return levels

    async def append(
        self,
        *,
        product_id: int,
        event_type: str,
        quantity: int,
        reason: str | None,
    ) -> StockEvent:
        event = StockEvent(product_id=product_id, type=event_type, quantity=quantity, reason=reason)
        self.session.add(event)
        await self.session.flush()
        await self.session.refresh(event)
        return event


class ProductRepository:
    """Persistence helpers for products."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_product(
        self,
        *,
        seller_id: int,
        name: str,
        description: str | None,
        price: int,
        initial_stock: int,
    ) -> Product:
        product = Product(seller_id=seller_id, name=name, description=description, price=price)
        self.session.add(product)
        await self.session.flush()
        self.session.add(
            StockEvent(
                product_id=product.id,
                type=STOCK_INITIAL,
                quantity=initial_stock,
                reason="Initial stock",
            )
        )
        await self.session.flush()
        await self.session.refresh(product, attribute_names=["created_at", "updated_at", "seller"])
        return product

    async def get_product(self, product_id: int) -> Product | None:
        result = await self.session.execute(
            select(Product).options(selectinload(Product.seller)).where(Product.id == product_id)
        )
        return result.scalar_one_or_none()

    async def get_products(self, product_ids: Iterable[int]) -> dict[int, Product]:
        ids = list(set(product_ids))
        if not ids:
            return {}
        result = await self.session.execute(select(Product).where(Product.id.in_(ids)))
        return {product.id: product for product in result.scalars()}

    async def list_products(
        self,
        *,
        seller_id: int | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Product], int]:
        base: Select[tuple[Product]] = select(Product).order_by(Product.created_at.desc(), Product.id.desc())
        count: Select[tuple[int]] = select(func.count(Product.id))
        if seller_id is not None:
            base = base.where(Product.seller_id == seller_id)
            count = count.where(Product.seller_id == seller_id)

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.scalars()), total

    async def update_product(self, product: Product, **changes: object) -> Product:
        for field, value in changes.items():
            setattr(product, field, value)
        await self.session.flush()
        await self.session.refresh(product, attribute_names=["updated_at"])
        return product

    async def delete_product(self, product: Product) -> None:
        await self.session.delete(product)
        await self.session.flush()


class UserRepository:
    """Persistence helpers for users and their balance ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_user(self, *, email: str, name: str, role: str) -> User:
        user = User(email=email, name=name, role=role)
        self.session.add(user)
        await self.session.flush()
        await self.session.refresh(user, attribute_names=["created_at"])
        return user

    async def get_user(self, user_id: int) -> User | None:
        return await self.session.get(User, user_id)

    async def find_by_email(self, email: str) -> User | None:
        result = await self.session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def list_users(self, *, role: str | None, limit: int, offset: int) -> tuple[list[User], int]:
        base: Select[tuple[User]] = select(User).order_by(User.id.asc())
        count: Select[tuple[int]] = select(func.count(User.id))
        if role is not None:
            base = base.where(User.role == role)
            count = count.where(User.role == role)
        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.scalars()), total

    async def current_balance(self, user_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(BalanceEvent.amount), 0)).where(BalanceEvent.user_id == user_id)
        )
        return int(result.scalar_one())

    async def list_balance_events(self, user_id: int) -> list[BalanceEvent]:
        result = await self.session.execute(
            select(BalanceEvent)
            .where(BalanceEvent.user_id == user_id)
            .order_by(BalanceEvent.created_at.asc(), BalanceEvent.id.asc())
        )
        return list(result.scalars())

    async def add_balance_event(
        self,
        *,
        user_id: int,
        event_type: str,
        amount: int,
        order_id: int | None = None,
    ) -> BalanceEvent:
        entry = BalanceEvent(user_id=user_id, type=event_type, amount=amount, order_id=order_id)
        self.session.add(entry)
        await self.session.flush()
        await self.session.refresh(entry)
        return entry


class CartRepository:
    """Persistence helpers for shopping carts."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _cart_query(self, user_id: int) -> Select[tuple[Cart]]:
        return (
            select(Cart)
            .options(selectinload(Cart.items).selectinload(CartItem.product))
            .where(Cart.user_id == user_id)
        )

    async def get_cart(self, *, user_id: int, refresh: bool = False) -> Cart | None:
        query = self._cart_query(user_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_or_create_cart(self, *, user_id: int) -> Cart:
        cart = await self.get_cart(user_id=user_id)
        if cart is None:
            cart = Cart(user_id=user_id)
            self.session.add(cart)
            await self.session.flush()
            await self.session.refresh(cart, attribute_names=["created_at", "updated_at", "items"])
        return cart

    async def _reload(self, cart: Cart) -> Cart:
        user_id = cart.user_id
        await self.session.flush()
        result = await self.session.execute(
            self._cart_query(user_id).execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def set_item_quantity(self, cart: Cart, *, product_id: int, quantity: int) -> Cart:
        existing = next((item for item in cart.items if item.product_id == product_id), None)
        if existing is None:
            cart.items.append(CartItem(product_id=product_id, quantity=quantity))
        else:
            existing.quantity = quantity
        return await self._reload(cart)

    async def remove_item(self, cart: Cart, *, product_id: int) -> Cart:
        item = next((entry for entry in cart.items if entry.product_id == product_id), None)
        if item is None:
            raise KeyError(product_id)
        cart.items.remove(item)
        return await self._reload(cart)

    async def clear_cart(self, cart: Cart) -> Cart:
        cart.items.clear()
        return await self._reload(cart)


class OrderRepository:
    """Persistence helpers for orders and their status history."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_order(
        self,
        *,
        user_id: int,
        status: str,
        items: list[dict[str, object]],
    ) -> Order:
        order = Order(user_id=user_id, status=status)
        self.session.add(order)
        total = 0
        for entry in items:
            item = OrderItem(**entry)
            total += item.unit_price * item.quantity
            order.items.append(item)
        order.total_amount = total
        order.events.append(OrderEvent(type="created", payload=status))
        await self.session.flush()
        return await self._reload(order.id)

    async def _reload(self, order_id: int) -> Order:
        result = await self.session.execute(
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.events))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def lock_order(self, order_id: int) -> Order | None:
        """Re-read the order under a row lock, discarding any cached state."""

        result = await self.session.execute(
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.events))
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_order(self, order_id: int) -> Order | None:
        result = await self.session.execute(
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.events))
            .where(Order.id == order_id)
        )
        return result.scalar_one_or_none()

    async def list_orders(
        self,
        *,
        user_id: int | None,
        status: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Order], int]:
        base: Select[tuple[Order]] = select(Order)
        count: Select[tuple[int]] = select(func.count(Order.id))

        filters = []
        if user_id is not None:
            filters.append(Order.user_id == user_id)
        if status is not None:
            filters.append(Order.status == status)
        if filters:
            base = base.where(and_(*filters))
            count = count.where(and_(*filters))

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(
            base.order_by(Order.created_at.desc(), Order.id.desc())
            .options(selectinload(Order.items))
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().unique()), total

    async def transition(
        self,
        order: Order,
        *,
        status: str,
        payment_method: str | None = None,
        failure_reason: str | None = None,
    ) -> Order:
        order.status = status
        if payment_method is not None:
            order.payment_method = payment_method
        if failure_reason is not None:
            order.failure_reason = failure_reason
        order.events.append(OrderEvent(type="status_changed", payload=status))
        await self.session.flush()
        return await self._reload(order.id)

    async def paid_orders(
        self,
        *,
        seller_id: int | None,
        since: datetime | None,
        until: datetime | None,
    ) -> list[Order]:
        stmt = select(Order).options(selectinload(Order.items)).where(Order.status == ORDER_PAYMENT_SUCCESS)
        if seller_id is not None:
            stmt = stmt.where(Order.items.any(OrderItem.seller_id == seller_id))
        if since is not None:
            stmt = stmt.where(Order.created_at >= since)
        if until is not None:
            stmt = stmt.where(Order.created_at < until)
        result = await self.session.execute(stmt.order_by(Order.created_at.asc(), Order.id.asc()))
        return list(result.scalars().unique())

