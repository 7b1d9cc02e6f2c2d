"""
Order placement.

Creates a customer's order from catalog prices and bills it in the same
transaction: one-time orders get their own invoice, period orders accrue
to the customer's open period invoice. Subscribers of the invoice stream
are notified after commit.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.core.security import SessionUser
from storefront.database.models.invoice import Invoice
from storefront.database.models.order import Order, OrderItem
from storefront.schemas.orders import CheckoutItem, CheckoutRequest
from storefront.services.catalog.repository import ProductRepository
from storefront.services.invoices.numbering import NumberingService
from storefront.services.invoices.repository import InvoiceRepository
from storefront.services.invoices.service import InvoiceService
from storefront.services.invoices.stream import InvoiceStreamRegistry, publish_invoices
from storefront.services.orders.effects import best_effort, fatal, run_effects
from storefront.services.orders.enums import OrderStatus, OrderType, PaymentMethod
from storefront.services.orders.repository import OrderRepository

logger = get_logger(__name__)


class CheckoutError(Exception):
    """Base exception for checkout errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class UnknownProductError(CheckoutError):
    """Raised when the cart names a product that does not exist."""

    pass


@dataclass(frozen=True)
class PlacedOrder:
    order: Order
    invoice: Invoice


class CheckoutService:
    """Places orders and registers them on invoices."""

    def __init__(
        self,
        session: AsyncSession,
        registry: Optional[InvoiceStreamRegistry] = None,
        products: Optional[ProductRepository] = None,
        orders: Optional[OrderRepository] = None,
        invoices: Optional[InvoiceRepository] = None,
        numbering: Optional[NumberingService] = None,
    ):
        self.session = session
        self.registry = registry
        self.products = products or ProductRepository(session)
        self.orders = orders or OrderRepository(session)
        self.invoices = invoices or InvoiceRepository(session)
        self.numbering = numbering or NumberingService(session)
        self.invoice_service = InvoiceService(
            session,
            registry=registry,
            invoices=self.invoices,
            orders=self.orders,
            numbering=self.numbering,
        )

    async def _order_items(self, order_id: uuid.UUID, items: list[CheckoutItem]) -> list[OrderItem]:
        lines = []
        for item in items:
            product = await self.products.get_by_id(item.product_id)
            if product is None:
                raise UnknownProductError(
                    "Product not found",
                    product_id=str(item.product_id),
                )
            lines.append(
                OrderItem(
                    id=uuid.uuid4(),
                    order_id=order_id,
                    product_id=product.id,
                    product=product,
                    quantity=item.quantity,
                    unit_price=product.price,
                )
            )
        return lines

    async def place_order(
        self,
        user: SessionUser,
        request: CheckoutRequest,
        now: Optional[datetime] = None,
    ) -> PlacedOrder:
        """
        Create the order and its invoice entry in one transaction.

        Raises:
            UnknownProductError: If a cart product does not exist; nothing
                is written
            Exception: Whatever failed while writing, after rollback
        """
        now = now or datetime.now(timezone.utc)
        order_id = uuid.uuid4()
        items = await self._order_items(order_id, request.items)
        subtotal = sum((i.unit_price * i.quantity for i in items), Decimal("0.00"))
        period = request.payment_method == PaymentMethod.PERIOD_INVOICE
        offline = request.payment_method == PaymentMethod.OFFLINE

        order = Order(
            id=order_id,
            user_id=user.id,
            name=request.name,
            email=request.email or user.email,
            phone=request.phone,
            shipping_address=dict(request.shipping_address),
            items=items,
            delivery_method=request.delivery_method,
            delivery_cost=request.delivery_cost,
            subtotal=subtotal,
            total=subtotal + request.delivery_cost,
            payment_method=request.payment_method,
            order_type=OrderType.PERIOD if period else OrderType.ONE_TIME,
            status=OrderStatus.PENDING_PAYMENT_VERIFICATION if offline else OrderStatus.PENDING,
        )
        if offline:
            order.payment_proof_url = request.payment_proof_url
            order.payment_reference = request.payment_reference
            order.payment_date = request.payment_date

        placed: dict[str, Invoice] = {}

        async def create_order() -> None:
            order.order_number = await self.numbering.order_number(period=period, now=now)
            if period:
                order.period_invoice_number = (
                    await self.invoice_service.current_period_invoice_number(user.id, now)
                )
            await self.orders.add(order)

        async def bill_order() -> None:
            placed["invoice"] = await self.invoice_service.register_order(order, now=now)

        async def broadcast() -> None:
            await publish_invoices(self.registry, self.invoices)

        await run_effects(
            self.session,
            [
                fatal("order", create_order),
                fatal("invoice", bill_order),
                best_effort("broadcast", broadcast),
            ],
            order_id=str(order_id),
            action="checkout",
        )

        invoice = placed["invoice"]
        logger.info(
            "Order placed",
            order_id=str(order.id),
            order_number=order.order_number,
            order_type=order.order_type.value,
            invoice_number=invoice.invoice_number,
            total=str(order.total),
        )
        return PlacedOrder(order=order, invoice=invoice)
