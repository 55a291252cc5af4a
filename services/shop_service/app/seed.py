"""Demo data for local development."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    BALANCE_DEPOSIT,
    BALANCE_PAYMENT,
    ORDER_PAYMENT_SUCCESS,
    PAYMENT_BALANCE,
    PAYMENT_BANK_TRANSFER,
    ROLE_BUYER,
    ROLE_SELLER,
    STOCK_RESERVATION,
    Product,
)
from .repository import CartRepository, OrderRepository, ProductRepository, StockEventRepository, UserRepository

logger = logging.getLogger(__name__)

SELLERS = (
    ("seller1@example.com", "Tech Store"),
    ("seller2@example.com", "Fashion Boutique"),
)

BUYERS = (
    ("buyer1@example.com", "John Doe", 50000),
    ("buyer2@example.com", "Jane Smith", 30000),
)

# (seller index, name, description, price, initial stock)
PRODUCTS = (
    (0, "Wireless Mouse", "Ergonomic wireless mouse with USB receiver", 2500, 50),
    (0, "Mechanical Keyboard", "RGB mechanical keyboard with blue switches", 8900, 30),
    (0, "USB-C Cable", "2m braided USB-C charging cable", 1200, 100),
    (0, "Laptop Stand", "Aluminum adjustable laptop stand", 4500, 25),
    (1, "Cotton T-Shirt", "Premium cotton t-shirt, available in multiple colors", 1999, 80),
    (1, "Denim Jeans", "Classic fit denim jeans", 5999, 40),
    (1, "Sneakers", "Comfortable everyday sneakers", 7999, 35),
)


@dataclass
class SeedSummary:
    seller_ids: list[int] = field(default_factory=list)
    buyer_ids: list[int] = field(default_factory=list)
    product_ids: list[int] = field(default_factory=list)
    order_ids: list[int] = field(default_factory=list)


async def seed_demo_data(session: AsyncSession) -> SeedSummary:
    """Populate an empty database; the caller owns the transaction."""

    users = UserRepository(session)
    products = ProductRepository(session)
    stock = StockEventRepository(session)
    carts = CartRepository(session)
    orders = OrderRepository(session)
    summary = SeedSummary()

    for email, name in SELLERS:
        seller = await users.create_user(email=email, name=name, role=ROLE_SELLER)
        summary.seller_ids.append(seller.id)

    for email, name, deposit in BUYERS:
        buyer = await users.create_user(email=email, name=name, role=ROLE_BUYER)
        await users.add_balance_event(user_id=buyer.id, event_type=BALANCE_DEPOSIT, amount=deposit)
        summary.buyer_ids.append(buyer.id)

    catalogue: list[Product] = []
    for seller_index, name, description, price, initial_stock in PRODUCTS:
        product = await products.create_product(
            seller_id=summary.seller_ids[seller_index],
            name=name,
            description=description,
            price=price,
            initial_stock=initial_stock,
        )
        catalogue.append(product)
    summary.product_ids = [product.id for product in catalogue]

    mouse, keyboard, cable, stand, shirt, _jeans, sneakers = catalogue
    buyer1, buyer2 = summary.buyer_ids

    cart = await carts.get_or_create_cart(user_id=buyer1)
    cart = await carts.set_item_quantity(cart, product_id=mouse.id, quantity=2)
    await carts.set_item_quantity(cart, product_id=keyboard.id, quantity=1)
    cart = await carts.get_or_create_cart(user_id=buyer2)
    await carts.set_item_quantity(cart, product_id=shirt.id, quantity=3)

    sample_orders = (
        (buyer1, PAYMENT_BANK_TRANSFER, ((cable, 5), (stand, 2))),
        (buyer2, PAYMENT_BALANCE, ((shirt, 3), (sneakers, 1))),
    )
    for user_id, method, lines in sample_orders:
        for product, quantity in lines:
            await stock.append(
                product_id=product.id,
                event_type=STOCK_RESERVATION,
                quantity=-quantity,
                reason=f"Reservation for {quantity} units",
            )
        order = await orders.create_order(
            user_id=user_id,
            status=ORDER_PAYMENT_SUCCESS,
            items=[
                {
                    "product_id": product.id,
                    "product_name": product.name,
                    "seller_id": product.seller_id,
                    "quantity": quantity,
                    "unit_price": product.price,
                }
                for product, quantity in lines
            ],
        )
        order.payment_method = method
        if method == PAYMENT_BALANCE:
            await users.add_balance_event(
                user_id=user_id,
                event_type=BALANCE_PAYMENT,
                amount=-order.total_amount,
                order_id=order.id,
            )
        summary.order_ids.append(order.id)
    await session.flush()

    logger.info(
        "Seeded %s users, %s products and %s orders",
        len(summary.seller_ids) + len(summary.buyer_ids),
        len(summary.product_ids),
        len(summary.order_ids),
    )
    return summary
