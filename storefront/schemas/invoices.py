"""Invoice schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from storefront.services.invoices.enums import (
    InvoicePaymentMethod,
    InvoiceStatus,
    InvoiceType,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class InvoiceItem(CamelModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price: Decimal = Field(..., ge=0)


class InvoiceResponse(CamelModel):
    """Invoice as returned by the API and the live stream."""

    id: UUID
    invoice_number: str
    user_id: UUID
    name: str
    email: str
    phone: str
    invoice_type: InvoiceType
    order_ids: list[str] = Field(default_factory=list)
    items: list[InvoiceItem] = Field(default_factory=list)
    amount: Decimal
    status: InvoiceStatus
    billing_address: dict[str, Any] = Field(default_factory=dict)
    shipping_address: dict[str, Any] = Field(default_factory=dict)
    period_start: datetime
    period_end: datetime
    payment_method: Optional[InvoicePaymentMethod] = None
    payment_proof_url: Optional[str] = None
    payment_reference: Optional[str] = None
    payment_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_invoice(cls, invoice: Any) -> "InvoiceResponse":
        data = {
            field: getattr(invoice, field, None)
            for field in cls.model_fields
        }
        data["order_ids"] = list(invoice.order_ids or [])
        data["items"] = list(invoice.items or [])
        data["billing_address"] = invoice.billing_address or {}
        data["shipping_address"] = invoice.shipping_address or {}
        return cls.model_validate(data)


def invoice_payload(invoices: list[Any]) -> dict[str, Any]:
    """Stream payload ``{"invoices": [...]}`` in wire format."""
    return {
        "invoices": [
            InvoiceResponse.from_invoice(invoice).model_dump(mode="json", by_alias=True)
            for invoice in invoices
        ]
    }


class InvoiceListResponse(CamelModel):
    invoices: list[InvoiceResponse]
    has_more: bool
    total_invoices: int


class InvoiceStatusUpdateRequest(CamelModel):
    status: InvoiceStatus


class PaymentProofRequest(CamelModel):
    """Payment evidence submitted by the invoice owner."""

    payment_proof_url: str = Field(..., min_length=1, max_length=1000)
    payment_reference: str = Field(..., min_length=1, max_length=255)
    payment_method: InvoicePaymentMethod
    payment_date: Optional[datetime] = None


class CleanupRequest(CamelModel):
    dry_run: bool = True


class CleanupResultResponse(CamelModel):
    dry_run: bool
    deleted: int
    updated: int
    deleted_invoices: list[str]
    updated_invoices: list[str]


class CountResponse(CamelModel):
    success: bool = True
    count: int
    message: str
