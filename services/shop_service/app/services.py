"""Storefront services orchestrating repositories and the stock ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import (
    DuplicateUser,
    InsufficientBalance,
    InsufficientStock,
    InvalidOrderState,
    OrderNotFound,
    ProductNotFound,
    UserNotFound,
    ValidationFailed,
)
from .ledger import StockLedger, floor_quantity
from .locks import KeyedLock, LocalKeyedLock
from .metrics import SHOP_ORDERS_TOTAL, SHOP_PAYMENTS_TOTAL, normalise_label
from .models import (
    BALANCE_DEPOSIT,
    BALANCE_PAYMENT,
    BALANCE_WITHDRAWAL,
    ORDER_CANCELLED,
    ORDER_PAYMENT_FAILED,
    ORDER_PAYMENT_PAGE,
    ORDER_PAYMENT_SUCCESS,
    ORDER_PENDING,
    PAYMENT_BALANCE,
    ROLE_SELLER,
    BalanceEvent,
    Cart,
    Order,
    Product,
    User,
)
from .repository import (
    CartRepository,
    OrderRepository,
    ProductRepository,
    StockEventRepository,
    UserRepository,
)
from .schemas import ProductCreate, ProductUpdate, UserCreate

logger = logging.getLogger(__name__)

_CANCELLABLE_STATUSES = frozenset({ORDER_PENDING, ORDER_PAYMENT_PAGE})
_PAYABLE_STATUSES = frozenset({ORDER_PAYMENT_PAGE})


@dataclass
class BalanceInfo:
    user_id: int
    current_balance: int
    events: list[BalanceEvent]


@dataclass
class ValidatedCartItem:
    product_id: int
    product_name: str
    quantity: int
    price: int
    subtotal: int
    available_stock: int


@dataclass
class ValidatedCart:
    items: list[ValidatedCartItem]
    total_amount: int


def user_lock_key(user_id: int) -> str:
    return f"user:{user_id}"


def order_lock_key(order_id: int) -> str:
    return f"order:{order_id}"


def cart_lock_key(user_id: int) -> str:
    return f"cart:{user_id}"


class UserService:
    def __init__(self, users: UserRepository, locks: KeyedLock | None = None) -> None:
        self.users = users
        self.locks = locks if locks is not None else LocalKeyedLock()

    async def create_user(self, payload: UserCreate) -> User:
        if await self.users.find_by_email(payload.email) is not None:
            raise DuplicateUser(f"User with email {payload.email} already exists")
        return await self.users.create_user(email=payload.email, name=payload.name, role=payload.role)

    async def require_user(self, user_id: int) -> User:
        user = await self.users.get_user(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    async def balance(self, user_id: int) -> BalanceInfo:
        await self.require_user(user_id)
        events = await self.users.list_balance_events(user_id)
        return BalanceInfo(
            user_id=user_id,
            current_balance=sum(event.amount for event in events),
            events=events,
        )

    async def deposit(self, user_id: int, amount: int) -> BalanceInfo:
        await self.require_user(user_id)
        await self.users.add_balance_event(user_id=user_id, event_type=BALANCE_DEPOSIT, amount=amount)
        return await self.balance(user_id)

    async def withdraw(self, user_id: int, amount: int) -> BalanceInfo:
        await self.require_user(user_id)
        # Balance reads and debits for one user are serialized and committed
        # before the lock is released.
        async with self.locks.hold(user_lock_key(user_id)):
            available = await self.users.current_balance(user_id)
            if available < amount:
                raise InsufficientBalance(user_id, amount, available)
            await self.users.add_balance_event(user_id=user_id, event_type=BALANCE_WITHDRAWAL, amount=-amount)
            await self.users.session.commit()
        return await self.balance(user_id)


class ProductService:
    """Product CRUD; stock changes go through the ledger, never through updates."""

    def __init__(self, products: ProductRepository, users: UserRepository, stock: StockEventRepository) -> None:
        self.products = products
        self.users = users
        self.stock = stock

    async def create_product(self, payload: ProductCreate) -> tuple[Product, int]:
        seller = await self.users.get_user(payload.seller_id)
        if seller is None:
            raise UserNotFound(payload.seller_id)
        if seller.role != ROLE_SELLER:
            raise ValidationFailed([{"field": "sellerId", "message": "user is not a seller"}])

        price = floor_quantity(payload.price)
        stock = floor_quantity(payload.stock)
        errors = []
        if price is None or price < 0:
            errors.append({"field": "price", "message": "price must be a non-negative number"})
        if stock is None or stock < 0:
            errors.append({"field": "stock", "message": "stock must be a non-negative number"})
        if errors:
            raise ValidationFailed(errors)

        product = await self.products.create_product(
            seller_id=seller.id,
            name=payload.name,
            description=payload.description,
            price=price,
            initial_stock=stock,
        )
        logger.info("Created product %s for seller %s with initial stock %s", product.id, seller.id, stock)
        return product, stock

    async def require_product(self, product_id: int) -> Product:
        product = await self.products.get_product(product_id)
        if product is None:
            raise ProductNotFound(product_id)
        return product

    async def stock_levels(self, products: list[Product]) -> dict[int, int]:
        return await self.stock.stock_levels(product.id for product in products)

    async def update_product(self, product_id: int, payload: ProductUpdate) -> Product:
        product = await self.require_product(product_id)
        changes: dict[str, object] = {}
        if payload.name is not None:
            changes["name"] = payload.name
        if payload.description is not None:
            changes["description"] = payload.description
        if payload.price is not None:
            price = floor_quantity(payload.price)
            if price is None or price < 0:
                raise ValidationFailed([{"field": "price", "message": "price must be a non-negative number"}])
            changes["price"] = price
        if not changes:
            return product
        return await self.products.update_product(product, **changes)


class CartService:
    def __init__(self, carts: CartRepository, products: ProductRepository, stock: StockEventRepository) -> None:
        self.carts = carts
        self.products = products
        self.stock = stock

    async def get_cart(self, user_id: int) -> Cart:
        return await self.carts.get_or_create_cart(user_id=user_id)

    async def add_item(self, user_id: int, *, product_id: int, quantity: int) -> Cart:
        cart = await self.carts.get_or_create_cart(user_id=user_id)
        existing = next((item.quantity for item in cart.items if item.product_id == product_id), 0)
        return await self._set_quantity(cart, product_id=product_id, quantity=existing + quantity)

    async def update_item(self, user_id: int, *, product_id: int, quantity: int) -> Cart:
        cart = await self.carts.get_or_create_cart(user_id=user_id)
        if not any(item.product_id == product_id for item in cart.items):
            raise ProductNotFound(product_id)
        return await self._set_quantity(cart, product_id=product_id, quantity=quantity)

    async def remove_item(self, user_id: int, *, product_id: int) -> Cart:
        cart = await self.carts.get_or_create_cart(user_id=user_id)
        try:
            return await self.carts.remove_item(cart, product_id=product_id)
        except KeyError as exc:
            raise ProductNotFound(product_id) from exc

    async def clear(self, user_id: int) -> Cart:
        cart = await self.carts.get_or_create_cart(user_id=user_id)
        return await self.carts.clear_cart(cart)

    async def _set_quantity(self, cart: Cart, *, product_id: int, quantity: int) -> Cart:
        product = await self.products.get_product(product_id)
        if product is None:
            raise ProductNotFound(product_id)
        available = await self.stock.current_stock(product_id)
        if quantity > available:
            raise InsufficientStock(product_id, quantity, available)
        return await self.carts.set_item_quantity(cart, product_id=product_id, quantity=quantity)

    async def validate(self, cart: Cart) -> ValidatedCart:
        """Price every line against live stock, collecting all problems at once."""

        levels = await self.stock.stock_levels(item.product_id for item in cart.items)
        errors: list[dict[str, str]] = []
        lines: list[ValidatedCartItem] = []
        if not cart.items:
            errors.append({"field": "items", "message": "cart is empty"})
        for item in cart.items:
            available = levels.get(item.product_id, 0)
            if item.quantity > available:
                errors.append(
                    {
                        "field": f"items.{item.product_id}.quantity",
                        "message": f"only {available} units of {item.product.name} available",
                    }
                )
            lines.append(
                ValidatedCartItem(
                    product_id=item.product_id,
                    product_name=item.product.name,
                    quantity=item.quantity,
                    price=item.product.price,
                    subtotal=item.product.price * item.quantity,
                    available_stock=available,
                )
            )
        if errors:
            raise ValidationFailed(errors)
        return ValidatedCart(items=lines, total_amount=sum(line.subtotal for line in lines))


class OrderService:
    """Checkout, payment and cancellation.

    Ledger calls commit in their own transactions, so every ledger append in
    here happens before this request's session writes anything. Each state
    change runs under a per-order (or per-cart) lock and commits before the
    lock is released, so the next holder always sees the new status.
    """

    def __init__(
        self,
        orders: OrderRepository,
        carts: CartRepository,
        users: UserRepository,
        ledger: StockLedger,
    ) -> None:
        self.orders = orders
        self.carts = carts
        self.users = users
        self.ledger = ledger
        self.locks = ledger.locks

    async def require_order(self, order_id: int) -> Order:
        order = await self.orders.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def checkout(self, user_id: int) -> Order:
        if await self.users.get_user(user_id) is None:
            raise UserNotFound(user_id)

        async with self.locks.hold(cart_lock_key(user_id)):
            cart = await self.carts.get_cart(user_id=user_id, refresh=True)
            if cart is None or not cart.items:
                raise ValidationFailed([{"field": "cart", "message": "cart is empty"}])

            lines = [
                {
                    "product_id": item.product_id,
                    "product_name": item.product.name,
                    "seller_id": item.product.seller_id,
                    "quantity": item.quantity,
                    "unit_price": item.product.price,
                }
                for item in cart.items
            ]
            reserved: list[tuple[int, int]] = []
            for line in lines:
                product_id, quantity = line["product_id"], line["quantity"]
                try:
                    accepted = await self.ledger.reserve(product_id, quantity)
                except ProductNotFound:
                    await self._release(reserved)
                    raise
                if not accepted:
                    await self._release(reserved)
                    available = await self.ledger.current_stock(product_id)
                    raise InsufficientStock(product_id, quantity, available)
                reserved.append((product_id, quantity))

            try:
                order = await self.orders.create_order(user_id=user_id, status=ORDER_PENDING, items=lines)
                order = await self.orders.transition(order, status=ORDER_PAYMENT_PAGE)
                await self.carts.clear_cart(cart)
                await self.orders.session.commit()
            except Exception:
                logger.exception("Checkout for user %s failed after reserving stock; releasing it", user_id)
                await self.orders.session.rollback()
                await self._release(reserved)
                raise

        SHOP_ORDERS_TOTAL.labels(status=normalise_label(ORDER_PAYMENT_PAGE)).inc()
        logger.info("Checked out order %s for user %s (total %s)", order.id, user_id, order.total_amount)
        return order

    async def process_payment(self, order_id: int, method: str) -> Order:
        async with self.locks.hold(order_lock_key(order_id)):
            order = await self._claim(order_id, _PAYABLE_STATUSES, "paid")
            if method != PAYMENT_BALANCE:
                return await self._settle(order, method)

            async with self.locks.hold(user_lock_key(order.user_id)):
                available = await self.users.current_balance(order.user_id)
                if available < order.total_amount:
                    logger.warning(
                        "Payment for order %s failed: balance %s below total %s",
                        order_id,
                        available,
                        order.total_amount,
                    )
                    await self._release((item.product_id, item.quantity) for item in order.items)
                    order = await self.orders.transition(
                        order,
                        status=ORDER_PAYMENT_FAILED,
                        payment_method=method,
                        failure_reason="Insufficient balance",
                    )
                    await self.orders.session.commit()
                    SHOP_PAYMENTS_TOTAL.labels(method=normalise_label(method), outcome="failed").inc()
                    SHOP_ORDERS_TOTAL.labels(status=normalise_label(ORDER_PAYMENT_FAILED)).inc()
                    return order
                await self.users.add_balance_event(
                    user_id=order.user_id,
                    event_type=BALANCE_PAYMENT,
                    amount=-order.total_amount,
                    order_id=order.id,
                )
                return await self._settle(order, method)

    async def cancel(self, order_id: int) -> Order:
        async with self.locks.hold(order_lock_key(order_id)):
            order = await self._claim(order_id, _CANCELLABLE_STATUSES, "cancelled")
            await self._release((item.product_id, item.quantity) for item in order.items)
            order = await self.orders.transition(order, status=ORDER_CANCELLED)
            await self.orders.session.commit()
        SHOP_ORDERS_TOTAL.labels(status=normalise_label(ORDER_CANCELLED)).inc()
        return order

    async def _claim(self, order_id: int, allowed: frozenset[str], action: str) -> Order:
        """Load the order fresh under its lock and check it may move on."""

        order = await self.orders.lock_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if order.status not in allowed:
            raise InvalidOrderState(f"Order {order_id} is {order.status} and cannot be {action}")
        return order

    async def _settle(self, order: Order, method: str) -> Order:
        order = await self.orders.transition(order, status=ORDER_PAYMENT_SUCCESS, payment_method=method)
        await self.orders.session.commit()
        SHOP_PAYMENTS_TOTAL.labels(method=normalise_label(method), outcome="succeeded").inc()
        SHOP_ORDERS_TOTAL.labels(status=normalise_label(ORDER_PAYMENT_SUCCESS)).inc()
        return order

    async def _release(self, reservations) -> None:
        for product_id, quantity in reservations:
            try:
                await self.ledger.cancel_reservation(product_id, quantity)
            except ProductNotFound:
                logger.warning("Product %s vanished before its reservation could be released", product_id)
