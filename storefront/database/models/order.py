"""
Order and order line item models.

An order is a customer purchase billed either on its own (one-time) or
through the customer's open period invoice. Line items snapshot the unit
price at checkout and reference products by id.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database.base import BaseModel
from storefront.services.orders.enums import OrderStatus, OrderType, PaymentMethod


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Order(BaseModel):
    """
    Customer order.

    Attributes:
        order_number: Human-readable number (ORD-YYYYMM-NNNN / PORD-YYYYMM-NNNN)
        user_id: Owning user as issued by the identity provider
        name, email, phone: Contact snapshot taken at checkout
        shipping_address: {"en": str, "zh-TW": str, "coordinates": {"lat", "lng"}}
        items: Line items
        delivery_method: Index of the chosen delivery option
        delivery_cost, subtotal, total: Pricing snapshot
        payment_method: online, offline or periodInvoice
        order_type: onetime-order or period-order
        period_invoice_number: Period invoice the order accrues to
        status: Lifecycle status, see OrderStatus
        rejection_reason: Reason recorded when payment is rejected
        vehicle_id: Assigned logistics vehicle
        scheduled_delivery_date: Planned delivery date set on assignment
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        index=True,
        comment="Human-readable order number",
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
        comment="User who placed the order",
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(50), nullable=False)

    shipping_address: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
        comment="Bilingual shipping address with optional coordinates",
    )

    delivery_method: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Index of the chosen delivery option",
    )

    delivery_cost: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Subtotal plus delivery cost",
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, name="order_payment_method", values_callable=_enum_values),
        nullable=False,
    )

    order_type: Mapped[OrderType] = mapped_column(
        SQLEnum(OrderType, name="order_type", values_callable=_enum_values),
        nullable=False,
        default=OrderType.ONE_TIME,
        index=True,
    )

    period_invoice_number: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        index=True,
        comment="Period invoice this order accrues to",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", values_callable=_enum_values),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
    )

    rejection_reason: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    vehicle_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("logistics_vehicles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Assigned logistics vehicle",
    )

    scheduled_delivery_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Payment evidence
    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_proof_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    payment_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Lifecycle timestamps
    shipped_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )

    vehicle: Mapped[Optional["LogisticsVehicle"]] = relationship(
        "LogisticsVehicle",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
        CheckConstraint("delivery_cost >= 0", name="ck_orders_delivery_cost_non_negative"),
        CheckConstraint(
            "order_type <> 'period-order' OR period_invoice_number IS NOT NULL",
            name="ck_orders_period_invoice_number",
        ),
        Index("ix_orders_type_status_created", "order_type", "status", "created_at"),
    )

    @property
    def is_period_order(self) -> bool:
        return self.order_type == OrderType.PERIOD

    @property
    def has_vehicle(self) -> bool:
        return self.vehicle_id is not None

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, order_number={self.order_number}, "
            f"status={self.status}, total={self.total})>"
        )


class OrderItem(BaseModel):
    """Order line item with the unit price captured at checkout."""

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Unit price snapshot",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    product: Mapped["Product"] = relationship("Product", lazy="selectin")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_unit_price_non_negative"),
    )
