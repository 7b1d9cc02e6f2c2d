"""
Invoice service.

Creates invoices for newly placed orders, serves the admin listing and
handles status changes and payment-proof submission. Reconciliation after
order deletion lives in ReconciliationService.
"""

import calendar
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.core.security import SessionUser
from storefront.database.models.invoice import Invoice
from storefront.schemas.invoices import InvoiceResponse, PaymentProofRequest
from storefront.services.invoices.aggregation import (
    collect_items,
    compute_amount,
    rebuild_from_orders,
)
from storefront.services.invoices.enums import (
    InvoicePaymentMethod,
    InvoiceStatus,
    InvoiceType,
)
from storefront.services.invoices.numbering import NumberingService
from storefront.services.invoices.repository import InvoiceRepository
from storefront.services.invoices.stream import InvoiceStreamRegistry, publish_invoices
from storefront.services.orders.enums import PaymentMethod
from storefront.services.orders.repository import OrderRepository

logger = get_logger(__name__)

PAYMENT_METHOD_MAP = {
    PaymentMethod.ONLINE: InvoicePaymentMethod.CREDIT_CARD,
    PaymentMethod.OFFLINE: InvoicePaymentMethod.OFFLINE_PAYMENT,
}


class InvoiceServiceError(Exception):
    """Base exception for invoice service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class InvoiceNotFoundError(InvoiceServiceError):
    """Raised when an invoice does not exist."""

    pass


class InvoiceAccessError(InvoiceServiceError):
    """Raised when a user acts on an invoice they do not own."""

    pass


def month_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """First and last instant of the month containing ``moment``."""
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    start = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    end = moment.replace(
        day=last_day, hour=23, minute=59, second=59, microsecond=999999
    )
    return start, end


class InvoiceService:
    """Invoice creation, listing and status management."""

    def __init__(
        self,
        session: AsyncSession,
        registry: Optional[InvoiceStreamRegistry] = None,
        invoices: Optional[InvoiceRepository] = None,
        orders: Optional[OrderRepository] = None,
        numbering: Optional[NumberingService] = None,
    ):
        self.session = session
        self.registry = registry
        self.invoices = invoices or InvoiceRepository(session)
        self.orders = orders or OrderRepository(session)
        self.numbering = numbering or NumberingService(session)

    async def current_period_invoice_number(
        self,
        user_id: Any,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Number of the period invoice a new period order accrues to.

        Reuses the user's pending period invoice covering ``now``; otherwise
        allocates the number of the monthly invoice ``register_order`` will
        create.
        """
        now = now or datetime.now(timezone.utc)
        invoice = await self.invoices.find_current_period_invoice(user_id, now)
        if invoice is not None:
            return invoice.invoice_number
        return await self.numbering.period_invoice_number(now=now)

    async def register_order(self, order: Any, now: Optional[datetime] = None) -> Invoice:
        """
        Attach a newly placed order to an invoice.

        One-time orders get their own invoice. Period orders are added to the
        customer's open period invoice, which is created for the current
        month when it does not exist yet. The caller commits.
        """
        now = now or datetime.now(timezone.utc)

        if not order.is_period_order:
            invoice = Invoice(
                invoice_number=await self.numbering.one_time_invoice_number(now),
                user_id=order.user_id,
                name=order.name,
                email=order.email,
                phone=order.phone,
                invoice_type=InvoiceType.ONE_TIME,
                order_ids=[str(order.id)],
                items=collect_items([order]),
                amount=compute_amount([order]),
                status=InvoiceStatus.PENDING,
                billing_address=dict(order.shipping_address or {}),
                shipping_address=dict(order.shipping_address or {}),
                period_start=now,
                period_end=now,
                payment_method=PAYMENT_METHOD_MAP.get(order.payment_method),
            )
            await self.invoices.add(invoice)
            logger.info(
                "One-time invoice created",
                invoice_number=invoice.invoice_number,
                order_id=str(order.id),
            )
            return invoice

        invoice = None
        if order.period_invoice_number:
            invoice = await self.invoices.find_open_period_invoice(
                order.user_id, order.period_invoice_number
            )

        if invoice is not None:
            order_ids = invoice.order_id_list
            if str(order.id) not in order_ids:
                order_ids.append(str(order.id))
            orders = await self.orders.get_many(order_ids)
            if all(str(o.id) != str(order.id) for o in orders):
                orders.append(order)
            aggregate = rebuild_from_orders(orders)
            invoice.order_ids = aggregate.order_ids
            invoice.amount = aggregate.amount
            invoice.items = aggregate.items
            await self.invoices.save(invoice)
            logger.info(
                "Order added to period invoice",
                invoice_number=invoice.invoice_number,
                order_id=str(order.id),
                order_count=len(aggregate.order_ids),
            )
            return invoice

        period_start, period_end = month_bounds(now)
        invoice_number = (
            order.period_invoice_number or await self.numbering.period_invoice_number(now=now)
        )
        invoice = Invoice(
            invoice_number=invoice_number,
            user_id=order.user_id,
            name=order.name,
            email=order.email,
            phone=order.phone,
            invoice_type=InvoiceType.PERIOD,
            order_ids=[str(order.id)],
            items=collect_items([order]),
            amount=compute_amount([order]),
            status=InvoiceStatus.PENDING,
            billing_address=dict(order.shipping_address or {}),
            shipping_address=dict(order.shipping_address or {}),
            period_start=period_start,
            period_end=period_end,
        )
        await self.invoices.add(invoice)
        logger.info(
            "Period invoice created",
            invoice_number=invoice.invoice_number,
            order_id=str(order.id),
        )
        return invoice

    async def list_invoices(
        self,
        status: Optional[InvoiceStatus] = None,
        invoice_type: Optional[InvoiceType] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        page = max(page, 1)
        invoices, total = await self.invoices.list_invoices(
            status=status,
            invoice_type=invoice_type,
            skip=(page - 1) * limit,
            limit=limit,
        )
        return {
            "invoices": [InvoiceResponse.from_invoice(i) for i in invoices],
            "has_more": page * limit < total,
            "total_invoices": total,
        }

    async def _get(self, invoice_number: str) -> Invoice:
        invoice = await self.invoices.get_by_number(invoice_number)
        if invoice is None:
            raise InvoiceNotFoundError(
                "Invoice not found",
                invoice_number=invoice_number,
            )
        return invoice

    async def _commit_and_publish(self) -> None:
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await publish_invoices(self.registry, self.invoices)

    async def update_status(
        self,
        invoice_number: str,
        status: InvoiceStatus,
        now: Optional[datetime] = None,
    ) -> Invoice:
        """
        Set an invoice status; marking it paid stamps the payment date.

        Raises:
            InvoiceNotFoundError: If the invoice does not exist
        """
        invoice = await self._get(invoice_number)
        previous = invoice.status
        invoice.status = status
        if status == InvoiceStatus.PAID and invoice.payment_date is None:
            invoice.payment_date = now or datetime.now(timezone.utc)
        await self.invoices.save(invoice)
        await self._commit_and_publish()

        logger.info(
            "Invoice status updated",
            invoice_number=invoice_number,
            old_status=previous.value,
            new_status=status.value,
        )
        return invoice

    async def submit_payment_proof(
        self,
        invoice_number: str,
        user: SessionUser,
        proof: PaymentProofRequest,
    ) -> Invoice:
        """
        Record payment evidence on an invoice owned by ``user``.

        Raises:
            InvoiceNotFoundError: If the invoice does not exist
            InvoiceAccessError: If the user neither owns it nor is an admin
            InvoiceServiceError: If the invoice is cancelled
        """
        invoice = await self._get(invoice_number)
        if invoice.user_id != user.id and not user.admin:
            logger.warning(
                "Payment proof rejected for non-owner",
                invoice_number=invoice_number,
                user_id=str(user.id),
            )
            raise InvoiceAccessError(
                "Not allowed to update this invoice",
                invoice_number=invoice_number,
                user_id=str(user.id),
            )
        if invoice.status == InvoiceStatus.CANCELLED:
            raise InvoiceServiceError(
                "Cannot submit payment proof for a cancelled invoice",
                invoice_number=invoice_number,
            )

        invoice.payment_proof_url = proof.payment_proof_url
        invoice.payment_reference = proof.payment_reference
        invoice.payment_method = proof.payment_method
        invoice.payment_date = proof.payment_date or datetime.now(timezone.utc)
        await self.invoices.save(invoice)
        await self._commit_and_publish()

        logger.info(
            "Payment proof submitted",
            invoice_number=invoice_number,
            user_id=str(user.id),
            payment_method=proof.payment_method.value,
        )
        return invoice
