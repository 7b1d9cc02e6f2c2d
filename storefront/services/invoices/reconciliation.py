"""
Invoice reconciliation.

Keeps invoices consistent with the orders they reference: strips deleted
orders out of invoices, removes period invoices that no longer bill
anything, and repairs invoices pointing at orders that are gone.

Every public operation is one database transaction. Invoices carry a
version counter, so a concurrent update of the same invoice makes the
commit fail with StaleDataError; the whole operation is then rolled back
and replayed against fresh rows, up to ``reconciliation_max_attempts``
times. Live subscribers are notified only after a successful commit.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from storefront.core.config import get_settings
from storefront.core.logging import bound_operation, get_logger
from storefront.services.invoices.aggregation import (
    apply_derived_status,
    compute_amount,
    money,
    rebuild_from_orders,
    remove_order_contribution,
)
from storefront.services.invoices.repository import InvoiceRepository
from storefront.services.invoices.stream import InvoiceStreamRegistry, publish_invoices
from storefront.services.orders.repository import OrderRepository

logger = get_logger(__name__)
settings = get_settings()

T = TypeVar("T")


class ReconciliationError(Exception):
    """Raised when a reconciliation transaction is rolled back."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class InvoiceConflictError(ReconciliationError):
    """Raised when concurrent invoice updates outlast every retry."""

    pass


@dataclass
class ReconciliationReport:
    """Invoice numbers touched by a reconciliation run."""

    dry_run: bool = False
    deleted_invoices: list[str] = field(default_factory=list)
    updated_invoices: list[str] = field(default_factory=list)

    @property
    def deleted(self) -> int:
        return len(self.deleted_invoices)

    @property
    def updated(self) -> int:
        return len(self.updated_invoices)

    @property
    def changed(self) -> bool:
        return not self.dry_run and bool(self.deleted_invoices or self.updated_invoices)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "deleted": self.deleted,
            "updated": self.updated,
            "deleted_invoices": list(self.deleted_invoices),
            "updated_invoices": list(self.updated_invoices),
        }


class ReconciliationService:
    """
    Restores order/invoice invariants after order deletion and on demand.

    Args:
        session: Session whose transaction this service commits or rolls back
        registry: Live invoice subscribers notified after each commit
        invoices: Invoice repository (defaults to one bound to ``session``)
        orders: Order repository (defaults to one bound to ``session``)
        max_attempts: Attempts per operation on stale-version conflicts
    """

    def __init__(
        self,
        session: AsyncSession,
        registry: Optional[InvoiceStreamRegistry] = None,
        invoices: Optional[InvoiceRepository] = None,
        orders: Optional[OrderRepository] = None,
        max_attempts: Optional[int] = None,
    ):
        self.session = session
        self.registry = registry
        self.invoices = invoices or InvoiceRepository(session)
        self.orders = orders or OrderRepository(session)
        self.max_attempts = max_attempts or settings.reconciliation_max_attempts

    async def _run_in_transaction(
        self,
        operation: str,
        body: Callable[[], Awaitable[T]],
        **context: Any,
    ) -> T:
        """Run ``body`` and commit, replaying it on stale-version conflicts."""
        with bound_operation(operation, **context):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    result = await body()
                    await self.session.commit()
                    return result
                except StaleDataError as e:
                    await self.session.rollback()
                    if attempt == self.max_attempts:
                        logger.error("Invoice update conflict persisted", attempts=attempt)
                        raise InvoiceConflictError(
                            "Invoice was modified concurrently",
                            operation=operation,
                            attempts=attempt,
                            **context,
                        ) from e
                    logger.warning(
                        "Invoice update conflict, retrying",
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                    )
                except Exception as e:
                    await self.session.rollback()
                    logger.error(
                        "Reconciliation rolled back",
                        error=str(e),
                        error_type=type(e).__name__,
                        exc_info=True,
                    )
                    if isinstance(e, ReconciliationError):
                        raise
                    raise ReconciliationError(
                        f"Reconciliation failed: {operation}",
                        operation=operation,
                        error=str(e),
                        **context,
                    ) from e

        raise RuntimeError("unreachable")

    async def broadcast_invoices(self) -> None:
        """Send the current invoice list to live subscribers; never raises."""
        await publish_invoices(self.registry, self.invoices)

    async def remove_order_from_invoices(
        self, order_id: uuid.UUID | str
    ) -> ReconciliationReport:
        """
        Detach an order from every invoice that references it.

        The order's total and exclusively owned items are taken out of each
        invoice when the order can still be loaded. A period invoice left
        without orders is deleted; any other invoice is saved with its status
        re-derived from the remaining orders.

        Raises:
            ReconciliationError: If the transaction was rolled back
        """
        order_key = str(order_id)

        async def body() -> ReconciliationReport:
            report = ReconciliationReport()
            order = await self.orders.get_by_id(order_key)
            if order is None:
                logger.info(
                    "Order not found, detaching id only",
                    order_id=order_key,
                )

            invoices = await self.invoices.find_by_order_id(order_key)
            logger.info(
                "Detaching order from invoices",
                order_id=order_key,
                invoice_count=len(invoices),
            )

            for invoice in invoices:
                remaining_ids = [i for i in invoice.order_id_list if i != order_key]
                remaining_orders = await self.orders.get_many(remaining_ids)
                invoice.order_ids = remaining_ids

                if order is not None:
                    invoice.amount, invoice.items = remove_order_contribution(
                        invoice.amount,
                        invoice.items or [],
                        order,
                        remaining_orders,
                    )

                if invoice.is_period and not remaining_ids:
                    await self.invoices.delete(invoice)
                    report.deleted_invoices.append(invoice.invoice_number)
                    logger.info(
                        "Deleting empty period invoice",
                        invoice_number=invoice.invoice_number,
                    )
                else:
                    apply_derived_status(invoice, remaining_orders)
                    await self.invoices.save(invoice)
                    report.updated_invoices.append(invoice.invoice_number)
                    logger.info(
                        "Invoice updated",
                        invoice_number=invoice.invoice_number,
                        remaining_orders=len(remaining_ids),
                        amount=str(invoice.amount),
                    )

            return report

        report = await self._run_in_transaction(
            "remove_order_from_invoices", body, order_id=order_key
        )
        await self.broadcast_invoices()
        return report

    async def cleanup_empty_period_invoices(self) -> int:
        """
        Delete period invoices whose order list is missing, null or empty.

        Returns:
            Number of invoices deleted
        """

        async def body() -> int:
            invoices = await self.invoices.find_empty_period_invoices()
            for invoice in invoices:
                logger.info(
                    "Deleting empty period invoice",
                    invoice_number=invoice.invoice_number,
                )
                await self.invoices.delete(invoice)
            return len(invoices)

        deleted = await self._run_in_transaction("cleanup_empty_period_invoices", body)
        logger.info("Empty period invoice cleanup finished", deleted=deleted)
        await self.broadcast_invoices()
        return deleted

    async def force_cleanup_invalid_invoices(
        self, dry_run: bool = True
    ) -> ReconciliationReport:
        """
        Repair every invoice against the orders that still exist.

        Invoices with no surviving orders are deleted regardless of type.
        Invoices with some missing orders are rebuilt from the survivors.
        With ``dry_run`` the affected invoices are reported and nothing is
        written.
        """

        async def body() -> ReconciliationReport:
            report = ReconciliationReport(dry_run=dry_run)
            for invoice in await self.invoices.list_all():
                referenced = invoice.order_id_list
                existing = await self.orders.get_many(referenced)

                if not existing:
                    report.deleted_invoices.append(invoice.invoice_number)
                    if not dry_run:
                        await self.invoices.delete(invoice)
                    continue

                if {str(o.id) for o in existing} == set(referenced):
                    continue

                report.updated_invoices.append(invoice.invoice_number)
                if dry_run:
                    continue

                aggregate = rebuild_from_orders(existing)
                invoice.order_ids = aggregate.order_ids
                invoice.amount = aggregate.amount
                invoice.items = aggregate.items
                apply_derived_status(invoice, existing)
                await self.invoices.save(invoice)

            if dry_run:
                await self.session.rollback()
            return report

        report = await self._run_in_transaction(
            "force_cleanup_invalid_invoices", body, dry_run=dry_run
        )
        logger.info(
            "Invalid invoice cleanup finished",
            dry_run=dry_run,
            deleted=report.deleted,
            updated=report.updated,
        )
        if report.changed:
            await self.broadcast_invoices()
        return report

    async def sync_invoice_amounts(self) -> ReconciliationReport:
        """
        Recompute each invoice amount from its existing orders.

        Only invoices whose stored amount drifted are written.
        """

        async def body() -> ReconciliationReport:
            report = ReconciliationReport()
            for invoice in await self.invoices.list_all():
                existing = await self.orders.get_many(invoice.order_id_list)
                expected = compute_amount(existing)
                if money(invoice.amount) == expected:
                    continue

                logger.info(
                    "Invoice amount drifted",
                    invoice_number=invoice.invoice_number,
                    stored=str(invoice.amount),
                    expected=str(expected),
                )
                invoice.amount = expected
                await self.invoices.save(invoice)
                report.updated_invoices.append(invoice.invoice_number)
            return report

        report = await self._run_in_transaction("sync_invoice_amounts", body)
        if report.changed:
            await self.broadcast_invoices()
        return report
