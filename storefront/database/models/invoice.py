"""
Invoice model.

An invoice bills one order (one-time) or accumulates every order of a
billing period (period). Referenced order ids and the denormalized line
items are JSONB lists; always assign a new list when changing them so the
ORM sees the update.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import CheckConstraint, DateTime, Integer, Numeric, String, text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel
from storefront.services.invoices.enums import (
    InvoicePaymentMethod,
    InvoiceStatus,
    InvoiceType,
)


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Invoice(BaseModel):
    """
    Billing record grouping one or many orders.

    Attributes:
        invoice_number: INV-YYYYMM-NNNN or PER-YYYYMM-{W|M}-PP-NNN
        order_ids: Referenced order ids as strings
        items: [{"product_id", "quantity", "price"}]
        amount: Sum of the referenced orders' totals
        version: Optimistic concurrency counter
    """

    __tablename__ = "invoices"

    invoice_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        index=True,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(50), nullable=False, default="")

    invoice_type: Mapped[InvoiceType] = mapped_column(
        SQLEnum(InvoiceType, name="invoice_type", values_callable=_enum_values),
        nullable=False,
        index=True,
    )

    order_ids: Mapped[Optional[list[str]]] = mapped_column(
        JSONB(none_as_null=True),
        nullable=True,
        default=list,
        server_default=text("'[]'::jsonb"),
        comment="Referenced order ids",
    )

    items: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
        comment="Denormalized line items",
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    status: Mapped[InvoiceStatus] = mapped_column(
        SQLEnum(InvoiceStatus, name="invoice_status", values_callable=_enum_values),
        nullable=False,
        default=InvoiceStatus.PENDING,
        index=True,
    )

    billing_address: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )

    shipping_address: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )

    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payment_method: Mapped[Optional[InvoicePaymentMethod]] = mapped_column(
        SQLEnum(
            InvoicePaymentMethod,
            name="invoice_payment_method",
            values_callable=_enum_values,
        ),
        nullable=True,
    )
    payment_proof_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_invoices_amount_non_negative"),
        CheckConstraint("period_end >= period_start", name="ck_invoices_period_order"),
    )

    @property
    def is_period(self) -> bool:
        return self.invoice_type == InvoiceType.PERIOD

    @property
    def order_id_list(self) -> list[str]:
        """Referenced order ids, treating a missing list as empty."""
        return list(self.order_ids or [])

    def references(self, order_id: uuid.UUID | str) -> bool:
        return str(order_id) in self.order_id_list

    def __repr__(self) -> str:
        return (
            f"<Invoice(invoice_number={self.invoice_number}, "
            f"type={self.invoice_type}, status={self.status}, amount={self.amount})>"
        )
