"""
Order administration and checkout schemas.

Request bodies and responses use camelCase keys on the wire; Python code
uses snake_case field names (``populate_by_name``).
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from storefront.services.orders.enums import OrderStatus, OrderType, PaymentMethod

OrderAction = Literal["confirm_payment", "mark_shipped", "mark_delivered", "reject_payment"]

SHIPPING_ADDRESS_LANGUAGES = ("en", "zh-TW")


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ProductSummary(CamelModel):
    """Product fields shown next to an order line."""

    id: UUID
    name: str
    display_name: Optional[str] = None
    price: Decimal


class OrderItemResponse(CamelModel):
    product_id: UUID
    quantity: int
    unit_price: Decimal
    product: Optional[ProductSummary] = None


class OrderResponse(CamelModel):
    """Order as returned by the administration API."""

    id: UUID
    order_number: str
    user_id: UUID
    name: str
    email: str
    phone: str
    shipping_address: dict[str, Any]
    items: list[OrderItemResponse]
    delivery_method: int
    delivery_cost: Decimal
    subtotal: Decimal
    total: Decimal
    payment_method: PaymentMethod
    order_type: OrderType
    period_invoice_number: Optional[str] = None
    status: OrderStatus
    rejection_reason: Optional[str] = None
    vehicle_id: Optional[UUID] = None
    scheduled_delivery_date: Optional[datetime] = None
    payment_reference: Optional[str] = None
    payment_proof_url: Optional[str] = None
    payment_date: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Any, language: str = "en") -> "OrderResponse":
        """Build the response, localizing product names to ``language``."""
        response = cls.model_validate(order)
        products = {item.product_id: getattr(item, "product", None) for item in order.items}
        for item in response.items:
            product = products.get(item.product_id)
            if product is None:
                item.product = None
                continue
            item.product = ProductSummary(
                id=product.id,
                name=product.name,
                display_name=product.localized_name(language),
                price=product.price,
            )
        return response


class OrderListResponse(CamelModel):
    orders: list[OrderResponse]
    has_more: bool
    total_orders: int


class OrderAdminUpdateRequest(CamelModel):
    """
    Body of the order administration PUT.

    ``order_id`` is optional here so a missing id is reported as a 400 with a
    machine-readable code instead of a generic validation error.
    """

    order_id: Optional[str] = None
    confirm_payment: bool = False
    mark_as_shipped: bool = False
    mark_as_delivered: bool = False
    reject_payment: bool = False
    rejection_reason: Optional[str] = Field(default=None, max_length=1000)

    def action(self) -> Optional[OrderAction]:
        """The requested action, checked in a fixed precedence order."""
        if self.confirm_payment:
            return "confirm_payment"
        if self.mark_as_shipped:
            return "mark_shipped"
        if self.mark_as_delivered:
            return "mark_delivered"
        if self.reject_payment:
            return "reject_payment"
        return None


class OrderAdminUpdateResponse(CamelModel):
    success: bool = True
    message: str
    order: OrderResponse


class OrderDeleteResponse(CamelModel):
    success: bool = True
    message: str
    deleted_order_id: str


class ErrorResponse(BaseModel):
    error: str
    code: Optional[str] = None


class CheckoutItem(CamelModel):
    product_id: UUID
    quantity: int = Field(..., ge=1)


class CheckoutRequest(CamelModel):
    """
    Order placed by the signed-in customer.

    Unit prices come from the product catalog, not from the request.
    Offline payments may carry proof of payment.
    """

    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: str = Field(..., min_length=1, max_length=50)
    shipping_address: dict[str, Any]
    items: list[CheckoutItem] = Field(..., min_length=1)
    delivery_method: int = Field(default=0, ge=0)
    delivery_cost: Decimal = Field(default=Decimal("0.00"), ge=0)
    payment_method: PaymentMethod
    payment_proof_url: Optional[str] = Field(default=None, max_length=1000)
    payment_reference: Optional[str] = Field(default=None, max_length=255)
    payment_date: Optional[datetime] = None

    @field_validator("shipping_address")
    @classmethod
    def require_both_languages(cls, value: dict[str, Any]) -> dict[str, Any]:
        missing = [lang for lang in SHIPPING_ADDRESS_LANGUAGES if not value.get(lang)]
        if missing:
            raise ValueError(f"Shipping address missing: {', '.join(missing)}")
        return value


class CheckoutResponse(CamelModel):
    success: bool = True
    order_id: UUID
    order_number: str
    invoice_number: str
