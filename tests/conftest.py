"""
Pytest configuration and shared test fixtures.

Tests run without a database: services receive an AsyncMock session and
in-memory repositories holding transient model instances.
"""

import json
import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_ENABLE_BACKGROUND_TASKS", "false")
os.environ.setdefault("APP_EMAIL_BACKEND", "console")
os.environ.setdefault("APP_DB_RETRY_DELAY", "0")

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional
from unittest.mock import AsyncMock

import pytest

from storefront.core.security import SessionUser
from storefront.database.models import Invoice, Order, OrderItem, Product
from storefront.services.invoices.enums import InvoiceStatus, InvoiceType
from storefront.services.invoices.stream import InvoiceStreamRegistry
from storefront.services.orders.enums import OrderStatus, OrderType, PaymentMethod

NOW = datetime(2026, 3, 15, 10, 30, tzinfo=timezone.utc)


# ============================================================================
# Model factories
# ============================================================================


def make_product(name: str = "Oolong Tea", price: str = "10.00", stock: int = 20) -> Product:
    return Product(
        id=uuid.uuid4(),
        name=name,
        display_names={"en": name, "zh-TW": f"{name} (zh)"},
        price=Decimal(price),
        stock=stock,
    )


def make_order(
    total: str = "100.00",
    status: OrderStatus = OrderStatus.PENDING_PAYMENT_VERIFICATION,
    order_type: OrderType = OrderType.ONE_TIME,
    products: Optional[list[tuple[Product, int]]] = None,
    user_id: Optional[uuid.UUID] = None,
    vehicle_id: Optional[uuid.UUID] = None,
    period_invoice_number: Optional[str] = None,
    order_number: str = "ORD-202603-0001",
) -> Order:
    """Transient order; line items default to one unit of a fresh product."""
    order_id = uuid.uuid4()
    if products is None:
        products = [(make_product(price=total), 1)]

    items = [
        OrderItem(
            id=uuid.uuid4(),
            order_id=order_id,
            product_id=product.id,
            product=product,
            quantity=quantity,
            unit_price=product.price,
        )
        for product, quantity in products
    ]
    return Order(
        id=order_id,
        order_number=order_number,
        user_id=user_id or uuid.uuid4(),
        name="Mei Lin",
        email="mei@example.com",
        phone="0912345678",
        shipping_address={"en": "1 Main Rd, Taipei", "zh-TW": "台北市主路1號"},
        items=items,
        delivery_method=0,
        delivery_cost=Decimal("0.00"),
        subtotal=Decimal(total),
        total=Decimal(total),
        payment_method=(
            PaymentMethod.PERIOD_INVOICE if order_type == OrderType.PERIOD else PaymentMethod.OFFLINE
        ),
        order_type=order_type,
        period_invoice_number=period_invoice_number,
        status=status,
        vehicle_id=vehicle_id,
        created_at=NOW,
        updated_at=NOW,
    )


def make_invoice(
    orders: Iterable[Order] = (),
    invoice_type: InvoiceType = InvoiceType.PERIOD,
    invoice_number: str = "PER-202603-M-01-001",
    status: InvoiceStatus = InvoiceStatus.PENDING,
    amount: Optional[str] = None,
    order_ids: Optional[list[str]] = None,
    user_id: Optional[uuid.UUID] = None,
) -> Invoice:
    """Transient invoice built from ``orders`` unless fields are given."""
    orders = list(orders)
    if order_ids is None:
        order_ids = [str(o.id) for o in orders]
    if amount is None:
        amount = str(sum((o.total for o in orders), Decimal("0.00")))

    return Invoice(
        id=uuid.uuid4(),
        invoice_number=invoice_number,
        user_id=user_id or (orders[0].user_id if orders else uuid.uuid4()),
        name="Mei Lin",
        email="mei@example.com",
        phone="0912345678",
        invoice_type=invoice_type,
        order_ids=order_ids,
        items=[
            {
                "product_id": str(item.product_id),
                "quantity": item.quantity,
                "price": str(item.unit_price),
            }
            for o in orders
            for item in o.items
        ],
        amount=Decimal(amount),
        status=status,
        billing_address={},
        shipping_address={},
        period_start=NOW,
        period_end=NOW,
        version=1,
        created_at=NOW,
        updated_at=NOW,
    )


# ============================================================================
# In-memory repositories
# ============================================================================


class FakeOrderRepository:
    def __init__(self, orders: Iterable[Order] = ()):
        self.orders = {str(o.id): o for o in orders}
        self.deleted: list[str] = []
        self.locked: list[str] = []

    async def list_orders(self, status=None, order_type=None, skip=0, limit=5):
        matching = [
            o
            for o in self.orders.values()
            if (status is None or o.status == status)
            and (order_type is None or o.order_type == order_type)
        ]
        return matching[skip : skip + limit], len(matching)

    async def get_by_id(self, order_id, for_update=False):
        if for_update:
            self.locked.append(str(order_id))
        return self.orders.get(str(order_id))

    async def get_many(self, order_ids):
        return [self.orders[str(i)] for i in order_ids if str(i) in self.orders]

    async def add(self, order):
        self.orders[str(order.id)] = order
        return order

    async def delete(self, order):
        self.orders.pop(str(order.id), None)
        self.deleted.append(str(order.id))


class FakeInvoiceRepository:
    def __init__(self, invoices: Iterable[Invoice] = ()):
        self.invoices = list(invoices)
        self.saved: list[str] = []
        self.deleted: list[str] = []

    async def get_by_number(self, invoice_number):
        return next((i for i in self.invoices if i.invoice_number == invoice_number), None)

    async def find_by_order_id(self, order_id):
        return [i for i in self.invoices if i.references(order_id)]

    async def find_empty_period_invoices(self):
        return [i for i in self.invoices if i.is_period and not i.order_ids]

    async def find_open_period_invoice(self, user_id, invoice_number):
        return next(
            (
                i
                for i in self.invoices
                if i.user_id == user_id
                and i.invoice_number == invoice_number
                and i.is_period
                and i.status == InvoiceStatus.PENDING
            ),
            None,
        )

    async def find_current_period_invoice(self, user_id, at):
        return next(
            (
                i
                for i in self.invoices
                if i.user_id == user_id
                and i.is_period
                and i.status == InvoiceStatus.PENDING
                and i.period_start <= at <= i.period_end
            ),
            None,
        )

    async def list_all(self):
        return list(self.invoices)

    async def list_invoices(self, status=None, invoice_type=None, skip=0, limit=20):
        matching = [
            i
            for i in self.invoices
            if (status is None or i.status == status)
            and (invoice_type is None or i.invoice_type == invoice_type)
        ]
        return matching[skip : skip + limit], len(matching)

    async def add(self, invoice):
        if invoice.id is None:
            invoice.id = uuid.uuid4()
        self.invoices.append(invoice)
        return invoice

    async def save(self, invoice):
        self.saved.append(invoice.invoice_number)
        return invoice

    async def delete(self, invoice):
        self.invoices.remove(invoice)
        self.deleted.append(invoice.invoice_number)


class RecordingWriter:
    """Stream writer that keeps every frame it receives."""

    def __init__(self, fail: bool = False):
        self.frames: list[str] = []
        self.fail = fail

    async def write(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("client went away")
        self.frames.append(data)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def mock_session() -> AsyncMock:
    """Async session mock with awaitable commit/rollback."""
    session = AsyncMock()
    session.add = lambda obj: None
    return session


@pytest.fixture
def registry() -> InvoiceStreamRegistry:
    return InvoiceStreamRegistry()


@pytest.fixture
def admin_user() -> SessionUser:
    return SessionUser(id=uuid.uuid4(), email="admin@example.com", admin=True)


@pytest.fixture
def customer_user() -> SessionUser:
    return SessionUser(id=uuid.uuid4(), email="customer@example.com", admin=False)


def parse_frames(frames: list[str]) -> list[dict[str, Any]]:
    return [json.loads(frame[len("data: ") :].strip()) for frame in frames]
