"""
Pure invoice aggregation.

Invoice amount, items and status are always derived from the orders an
invoice currently references. Nothing here touches the database; callers
pass in already loaded orders (or any object exposing ``id``, ``total``,
``status`` and ``items`` with ``product_id``, ``quantity`` and
``unit_price``).
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from storefront.services.invoices.enums import InvoiceStatus
from storefront.services.orders.enums import OrderStatus

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class InvoiceAggregate:
    """Recomputed aggregate state of an invoice."""

    order_ids: list[str]
    amount: Decimal
    items: list[dict[str, Any]]


def money(value: Any) -> Decimal:
    """Quantize a numeric value to cents."""
    return Decimal(str(value)).quantize(Decimal("0.01"))


def compute_amount(orders: Iterable[Any]) -> Decimal:
    """Sum of order totals."""
    return money(sum((money(order.total) for order in orders), ZERO))


def item_entry(item: Any) -> dict[str, Any]:
    """Invoice item snapshot of an order line item."""
    return {
        "product_id": str(item.product_id),
        "quantity": int(item.quantity),
        "price": str(money(item.unit_price)),
    }


def collect_items(orders: Iterable[Any]) -> list[dict[str, Any]]:
    """Concatenate the line items of every order, in order."""
    return [item_entry(item) for order in orders for item in order.items]


def product_ids(orders: Iterable[Any]) -> set[str]:
    return {str(item.product_id) for order in orders for item in order.items}


def rebuild_from_orders(orders: Sequence[Any]) -> InvoiceAggregate:
    """Full rebuild of order ids, amount and items from the given orders."""
    return InvoiceAggregate(
        order_ids=[str(order.id) for order in orders],
        amount=compute_amount(orders),
        items=collect_items(orders),
    )


def remove_order_contribution(
    amount: Any,
    items: Sequence[dict[str, Any]],
    removed_order: Any,
    remaining_orders: Sequence[Any],
) -> tuple[Decimal, list[dict[str, Any]]]:
    """
    Take a removed order's share out of an invoice.

    The order total is subtracted from ``amount`` (never below zero). Items
    whose product came only from the removed order are dropped; products
    also supplied by a remaining order are kept.

    Returns:
        (new amount, new items)
    """
    new_amount = max(money(amount) - money(removed_order.total), ZERO)

    removed_products = product_ids([removed_order])
    still_supplied = product_ids(remaining_orders)
    exclusive = removed_products - still_supplied

    new_items = [
        dict(item) for item in items if str(item.get("product_id")) not in exclusive
    ]
    return new_amount, new_items


def derive_invoice_status(
    current: InvoiceStatus,
    order_statuses: Sequence[OrderStatus],
) -> InvoiceStatus:
    """
    Invoice status implied by its orders.

    All delivered -> paid, all cancelled -> cancelled, otherwise unchanged.
    """
    if not order_statuses:
        return current
    if all(status == OrderStatus.DELIVERED for status in order_statuses):
        return InvoiceStatus.PAID
    if all(status == OrderStatus.CANCELLED for status in order_statuses):
        return InvoiceStatus.CANCELLED
    return current


def apply_derived_status(
    invoice: Any,
    orders: Sequence[Any],
    now: Optional[datetime] = None,
) -> bool:
    """
    Set the derived status on an invoice-like object.

    A newly paid invoice gets a payment date if it has none.

    Returns:
        True if the status changed
    """
    new_status = derive_invoice_status(invoice.status, [o.status for o in orders])
    if new_status == invoice.status:
        return False

    invoice.status = new_status
    if new_status == InvoiceStatus.PAID and invoice.payment_date is None:
        invoice.payment_date = now or datetime.now(timezone.utc)
    return True
