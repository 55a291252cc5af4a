"""Domain exceptions raised by the shop service layers."""

from __future__ import annotations


class ShopError(Exception):
    """Base class for expected, caller-visible shop failures."""


class NotFoundError(ShopError):
    entity = "Resource"

    def __init__(self, entity_id: int) -> None:
        super().__init__(f"{self.entity} not found")
        self.entity_id = entity_id


class ProductNotFound(NotFoundError):
    entity = "Product"


class UserNotFound(NotFoundError):
    entity = "User"


class OrderNotFound(NotFoundError):
    entity = "Order"


class InvalidStockEvent(ShopError):
    """The requested stock event is malformed and was not written."""


class ValidationFailed(ShopError):
    """Collects every field error instead of stopping at the first one."""

    def __init__(self, errors: list[dict[str, str]]) -> None:
        super().__init__("; ".join(f"{err['field']}: {err['message']}" for err in errors))
        self.errors = errors


class ConflictError(ShopError):
    pass


class InsufficientStock(ConflictError):
    def __init__(self, product_id: int, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InsufficientBalance(ConflictError):
    def __init__(self, user_id: int, requested: int, available: int) -> None:
        super().__init__(f"Insufficient balance: requested {requested}, available {available}")
        self.user_id = user_id
        self.requested = requested
        self.available = available


class InvalidOrderState(ConflictError):
    pass


class DuplicateUser(ConflictError):
    pass
