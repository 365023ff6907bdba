"""Pydantic models for orders, catalogue records and gateway payloads."""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"


class OrderItem(CamelModel):
    """A single line of an order.

    Attributes:
        product_id (str): Product the line refers to (reference, not ownership).
        size (str): Size label; stock is tracked per product and size.
        quantity (int): Units ordered, must be positive.
        price (float): Unit price, must not be negative.
        product_name (str | None): Denormalised display name.
        image (str | None): Denormalised image URL.
    """

    product_id: str = Field(..., min_length=1)
    size: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    price: float = Field(..., ge=0, allow_inf_nan=False)
    product_name: str | None = None
    image: str | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "properties": {
                "productId": {"example": "P1"},
                "size": {"example": "M"},
                "quantity": {"example": 2},
                "price": {"example": 1000},
            }
        }
    )


class NotificationError(CamelModel):
    """An entry in an order's notification error log."""

    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class Order(CamelModel):
    """A persisted order.

    Attributes:
        order_id (str): Business identifier, ``ORD_<millis>_<4 digits>``.
        user_id (str): Owning user.
        items (list[OrderItem]): Ordered line items.
        total_amount (float): Amount charged through the gateway.
        status (OrderStatus): Pending until settled, then Paid or Failed.
        payment_id (str | None): Gateway transaction id, set only when Paid.
        created_at (datetime): Creation time (UTC).
        updated_at (datetime): Last state change (UTC).
        notification_errors (list[NotificationError]): Append-only delivery failure log.
    """

    order_id: str
    user_id: str
    items: list[OrderItem] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0, allow_inf_nan=False)
    status: OrderStatus = OrderStatus.PENDING
    payment_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    notification_errors: list[NotificationError] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status != OrderStatus.PENDING

    @property
    def product_ids(self) -> list[str]:
        """Distinct product ids referenced by the line items, in order of appearance."""
        return list(dict.fromkeys(item.product_id for item in self.items))


class SizeVariant(CamelModel):
    """Stock for one size; only validated on creation, later changes go through the store."""

    size: str
    price: float = Field(..., ge=0, allow_inf_nan=False)
    stock: int = Field(..., ge=0)


class Product(CamelModel):
    """A catalogue product with independent stock per size."""

    product_id: str
    name: str
    category: str = ""
    description: str = ""
    images: list[str] = Field(default_factory=list)
    sizes: list[SizeVariant] = Field(default_factory=list)

    def stock_for(self, size: str) -> int | None:
        for variant in self.sizes:
            if variant.size == size:
                return variant.stock
        return None


class User(CamelModel):
    """A customer account, read-only from the order service's point of view."""

    user_id: str
    first_name: str
    last_name: str = ""
    email: EmailStr | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    is_admin: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class CreateOrderRequest(CamelModel):
    """Body of ``POST /api/orders``."""

    items: list[OrderItem] = Field(default_factory=list)
    total_amount: float = Field(..., ge=0, allow_inf_nan=False)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "items": [{"productId": "P1", "size": "M", "quantity": 2, "price": 1000}],
                "totalAmount": 2000,
            }
        }
    )


class PaymentRequest(BaseModel):
    """Fields posted by the storefront to the hosted checkout page.

    Keys are the gateway's own snake_case names and are sent verbatim.
    """

    merchant_id: str
    return_url: str
    cancel_url: str
    notify_url: str
    order_id: str
    items: str
    amount: str
    currency: str
    first_name: str
    last_name: str
    email: str
    phone: str
    address: str
    city: str
    country: str
    hash: str = ""


class CheckoutResponse(CamelModel):
    success: bool = True
    payment_data: PaymentRequest
    order_id: str


class PaymentNotification(BaseModel):
    """Payment notification posted (or redirected) by the gateway.

    Attributes:
        merchant_id: Merchant the payment was made to.
        order_id: Business order identifier echoed back by the gateway.
        payment_id: Gateway transaction id.
        payhere_amount: Gross amount, as formatted by the gateway.
        payhere_currency: Currency of the payment.
        status_code: "2" on success; anything else is a failed payment.
        md5sig: Uppercase hex signature over the fields above.
        method: Payment method metadata, not signed.
        status_message: Human-readable gateway status, not signed.
    """

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    merchant_id: str = ""
    order_id: str = Field(..., min_length=1)
    payment_id: str = ""
    payhere_amount: str = ""
    payhere_currency: str = ""
    status_code: str = Field(..., min_length=1)
    md5sig: str = Field(..., min_length=1)
    method: str | None = None
    status_message: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status_code.strip() == "2"


class SettlementResult(BaseModel):
    """Outcome of handling one gateway notification."""

    order_id: str
    outcome: Literal["paid", "failed", "already_processed"]
    notify: bool = False
    stock_errors: list[str] = Field(default_factory=list)


class CustomerSummary(CamelModel):
    name: str
    email: str | None = None
    phone: str | None = None


class OrderDetails(Order):
    """An order with product names and customer display fields filled in."""

    customer: CustomerSummary | None = None
