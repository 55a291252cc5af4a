"""Pydantic schemas for the shop service."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, NonNegativeFloat, PositiveInt, field_validator

from .models import PAYMENT_METHODS, ROLE_BUYER, USER_ROLES


def _strip_required(value: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        msg = "value must be non-empty"
        raise ValueError(msg)
    return cleaned


class UserCreate(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    name: str = Field(min_length=1, max_length=255)
    role: str = Field(default=ROLE_BUYER)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        cleaned = _strip_required(value).lower()
        if "@" not in cleaned:
            msg = "email must contain '@'"
            raise ValueError(msg)
        return cleaned

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator("role")
    @classmethod
    def _check_role(cls, value: str) -> str:
        role = value.strip().upper()
        if role not in USER_ROLES:
            msg = f"role must be one of: {', '.join(sorted(USER_ROLES))}"
            raise ValueError(msg)
        return role


class UserResponse(BaseModel):
    id: PositiveInt
    email: str
    name: str
    role: str
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class UserListResponse(BaseModel):
    items: list[UserResponse]
    total: int


class BalanceAmount(BaseModel):
    amount: PositiveInt


class BalanceEventResponse(BaseModel):
    id: PositiveInt
    type: str
    amount: int
    order_id: int | None = Field(default=None, alias="orderId")
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class BalanceResponse(BaseModel):
    user_id: PositiveInt = Field(alias="userId")
    current_balance: int = Field(alias="currentBalance")
    events: list[BalanceEventResponse]

    model_config = ConfigDict(populate_by_name=True)


class ProductCreate(BaseModel):
    seller_id: PositiveInt = Field(alias="sellerId")
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None)
    price: NonNegativeFloat
    stock: NonNegativeFloat = Field(default=0)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return _strip_required(value)


class ProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    price: NonNegativeFloat | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _strip_required(value)


class ProductResponse(BaseModel):
    id: PositiveInt
    seller_id: PositiveInt = Field(alias="sellerId")
    name: str
    description: str | None
    price: int
    stock: int
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class ProductListResponse(BaseModel):
    items: list[ProductResponse]
    total: int


class StockQuantityRequest(BaseModel):
    """Loosely typed on purpose: the route answers 400 for anything non-numeric."""

    quantity: Any = None
    qty: Any = None
    reason: str | None = Field(default=None, max_length=255)

    def requested(self) -> Any:
        return self.quantity if self.quantity is not None else self.qty


class StockEventCreate(BaseModel):
    type: Any = None
    quantity: Any = None
    reason: str | None = Field(default=None, max_length=255)


class StockEventResponse(BaseModel):
    id: PositiveInt
    product_id: PositiveInt = Field(alias="productId")
    type: str
    quantity: int
    reason: str | None
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class StockLevelResponse(BaseModel):
    product_id: PositiveInt = Field(alias="productId")
    product_name: str = Field(alias="productName")
    current_stock: int = Field(alias="currentStock")
    total_events: int = Field(alias="totalEvents")
    last_updated: datetime = Field(alias="lastUpdated")

    model_config = ConfigDict(populate_by_name=True)


class StockHistoryResponse(BaseModel):
    product_id: PositiveInt = Field(alias="productId")
    current_stock: int = Field(alias="currentStock")
    total_events: int = Field(alias="totalEvents")
    last_updated: datetime | None = Field(alias="lastUpdated")
    events_by_type: dict[str, int] = Field(alias="eventsByType")
    events: list[StockEventResponse]

    model_config = ConfigDict(populate_by_name=True)


class StockEventRecordedResponse(BaseModel):
    success: bool
    event: StockEventResponse
    current_stock: int = Field(alias="currentStock")

    model_config = ConfigDict(populate_by_name=True)


class StockOperationResponse(BaseModel):
    success: bool
    product_id: PositiveInt = Field(alias="productId")
    quantity: int
    current_stock: int = Field(alias="currentStock")

    model_config = ConfigDict(populate_by_name=True)


class CartItemAdd(BaseModel):
    product_id: PositiveInt = Field(alias="productId")
    quantity: PositiveInt

    model_config = ConfigDict(populate_by_name=True)


class CartItemUpdate(BaseModel):
    quantity: PositiveInt


class CartItemResponse(BaseModel):
    product_id: PositiveInt = Field(alias="productId")
    product_name: str = Field(alias="productName")
    price: int
    quantity: int
    subtotal: int

    model_config = ConfigDict(populate_by_name=True)


class CartResponse(BaseModel):
    id: PositiveInt
    user_id: PositiveInt = Field(alias="userId")
    items: list[CartItemResponse]
    total_items: int = Field(alias="totalItems")
    total_amount: int = Field(alias="totalAmount")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class ValidatedCartItemResponse(BaseModel):
    product_id: PositiveInt = Field(alias="productId")
    product_name: str = Field(alias="productName")
    quantity: int
    price: int
    subtotal: int
    available_stock: int = Field(alias="availableStock")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class ValidatedCartResponse(BaseModel):
    items: list[ValidatedCartItemResponse]
    total_amount: int = Field(alias="totalAmount")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class CheckoutRequest(BaseModel):
    user_id: PositiveInt = Field(alias="userId")

    model_config = ConfigDict(populate_by_name=True)


class PaymentRequest(BaseModel):
    order_id: PositiveInt = Field(alias="orderId")
    method: str

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("method")
    @classmethod
    def _check_method(cls, value: str) -> str:
        method = value.strip().upper()
        if method not in PAYMENT_METHODS:
            msg = f"method must be one of: {', '.join(sorted(PAYMENT_METHODS))}"
            raise ValueError(msg)
        return method


class OrderItemResponse(BaseModel):
    product_id: int = Field(alias="productId")
    product_name: str = Field(alias="productName")
    quantity: int
    unit_price: int = Field(alias="unitPrice")
    subtotal: int

    model_config = ConfigDict(populate_by_name=True)


class OrderResponse(BaseModel):
    id: PositiveInt
    user_id: PositiveInt = Field(alias="userId")
    status: str
    total_amount: int = Field(alias="totalAmount")
    payment_method: str | None = Field(alias="paymentMethod")
    failure_reason: str | None = Field(alias="failureReason")
    items: list[OrderItemResponse]
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int


class OrderEventResponse(BaseModel):
    type: str
    payload: str
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class PaymentResponse(BaseModel):
    success: bool
    order_id: PositiveInt = Field(alias="orderId")
    method: str
    status: str
    error: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class ProductSalesResponse(BaseModel):
    product_id: int = Field(alias="productId")
    product_name: str = Field(alias="productName")
    total_quantity_sold: int = Field(alias="totalQuantitySold")
    total_revenue: int = Field(alias="totalRevenue")

    model_config = ConfigDict(populate_by_name=True)


class SalesStatisticsResponse(BaseModel):
    total_revenue: int = Field(alias="totalRevenue")
    total_orders: int = Field(alias="totalOrders")
    average_order_value: int = Field(alias="averageOrderValue")
    top_products: list[ProductSalesResponse] = Field(alias="topProducts")
    sales_by_hour: dict[int, int] = Field(alias="salesByHour")
    sales_by_day: dict[str, int] = Field(alias="salesByDay")

    model_config = ConfigDict(populate_by_name=True)
