"""
Order administration service.

Admin actions on orders: listing, payment confirmation, shipping, delivery,
payment rejection and deletion. Each state-changing action is expressed as
an ordered effect list (see ``effects``): status change, stock and invoice
updates are fatal and committed together; the customer email is sent after
commit on a best-effort basis. Deletion first detaches the order from its
invoices and refuses to delete if that fails.
"""

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.database.connection import TRANSIENT_DB_ERRORS, with_db_retry
from storefront.database.models.order import Order
from storefront.schemas.orders import OrderAction, OrderResponse
from storefront.services.catalog.repository import ProductRepository
from storefront.services.invoices.aggregation import apply_derived_status
from storefront.services.invoices.enums import InvoiceStatus, InvoiceType
from storefront.services.invoices.reconciliation import (
    ReconciliationError,
    ReconciliationService,
)
from storefront.services.invoices.repository import InvoiceRepository
from storefront.services.invoices.stream import InvoiceStreamRegistry
from storefront.services.orders.effects import Effect, best_effort, fatal, run_effects
from storefront.services.orders.enums import OrderStatus, OrderType
from storefront.services.orders.repository import OrderRepository
from storefront.services.orders.state_machine import OrderStateMachine

if TYPE_CHECKING:
    from storefront.services.notifications.service import OrderNotifier

logger = get_logger(__name__)
settings = get_settings()

DEFAULT_REJECTION_REASON = "Payment proof rejected"

ACTION_MESSAGES = {
    "confirm_payment": "Payment confirmed",
    "mark_shipped": "Order marked as shipped",
    "mark_delivered": "Order marked as delivered",
    "reject_payment": "Payment rejected",
}


class OrderAdminError(Exception):
    """Base exception for order administration errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNotFoundError(OrderAdminError):
    """Raised when the order does not exist."""

    pass


class InvalidOrderActionError(OrderAdminError):
    """Raised when a request names no action or an unknown one."""

    pass


class InvoiceCleanupError(OrderAdminError):
    """Raised when invoices could not be detached from an order being deleted."""

    pass


class OrderDeletionError(OrderAdminError):
    """Raised when deleting the order itself fails."""

    pass


class OrderAdminService:
    """
    Orchestrates admin order actions and their side effects.

    Attributes:
        orders: Order repository
        products: Product repository for stock decrements
        invoices: Invoice repository
        reconciliation: Invoice reconciliation used on deletion
        state_machine: Order lifecycle rules
        notifier: Customer email sender, optional
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: Optional["OrderNotifier"] = None,
        registry: Optional[InvoiceStreamRegistry] = None,
        orders: Optional[OrderRepository] = None,
        products: Optional[ProductRepository] = None,
        invoices: Optional[InvoiceRepository] = None,
        reconciliation: Optional[ReconciliationService] = None,
        state_machine: Optional[OrderStateMachine] = None,
    ):
        self.session = session
        self.notifier = notifier
        self.orders = orders or OrderRepository(session)
        self.products = products or ProductRepository(session)
        self.invoices = invoices or InvoiceRepository(session)
        self.reconciliation = reconciliation or ReconciliationService(
            session,
            registry=registry,
            invoices=self.invoices,
            orders=self.orders,
        )
        self.state_machine = state_machine or OrderStateMachine()

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        view_mode: str = "one-time",
        page: int = 1,
        limit: Optional[int] = None,
        language: str = "en",
    ) -> dict[str, Any]:
        """
        One page of orders for the admin view, newest first.

        Transient connection failures are retried with a fixed delay.

        Returns:
            {"orders": [...], "has_more": bool, "total_orders": int}
        """
        page = max(page, 1)
        limit = limit or settings.orders_page_size
        order_type = OrderType.from_view_mode(view_mode)

        async def fetch():
            try:
                return await self.orders.list_orders(
                    status=status,
                    order_type=order_type,
                    skip=(page - 1) * limit,
                    limit=limit,
                )
            except TRANSIENT_DB_ERRORS:
                await self.session.rollback()
                raise

        orders, total = await with_db_retry(fetch, operation_name="list_orders")

        return {
            "orders": [OrderResponse.from_order(o, language) for o in orders],
            "has_more": page * limit < total,
            "total_orders": total,
        }

    async def get_order(self, order_id: uuid.UUID | str, for_update: bool = False) -> Order:
        """
        Args:
            for_update: Lock the order row until the transaction ends

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        order = await self.orders.get_by_id(order_id, for_update=for_update)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        return order

    async def apply_action(
        self,
        order_id: uuid.UUID | str,
        action: Optional[OrderAction],
        rejection_reason: Optional[str] = None,
        language: str = "en",
    ) -> tuple[Order, str]:
        """
        Dispatch one admin action.

        Returns:
            (updated order, success message)

        Raises:
            InvalidOrderActionError: If no valid action was requested
            OrderNotFoundError: If the order does not exist
            StateTransitionError: If the order cannot make the transition
        """
        if action == "confirm_payment":
            order = await self.confirm_payment(order_id, language)
        elif action == "mark_shipped":
            order = await self.mark_shipped(order_id, language)
        elif action == "mark_delivered":
            order = await self.mark_delivered(order_id, language)
        elif action == "reject_payment":
            order = await self.reject_payment(order_id, rejection_reason, language)
        else:
            await self.get_order(order_id)
            raise InvalidOrderActionError("Invalid action", order_id=str(order_id))

        return order, ACTION_MESSAGES[action]

    def _transition(self, order: Order, target: OrderStatus) -> Effect:
        async def action() -> None:
            self.state_machine.apply_transition(order, target)

        return fatal("status", action)

    def _email(self, name: str, send) -> list[Effect]:
        if self.notifier is None:
            return []
        return [best_effort(name, send)]

    async def _execute(self, order: Order, action: str, effects: list[Effect]) -> Order:
        failed = await run_effects(
            self.session,
            effects,
            order_id=str(order.id),
            action=action,
        )
        logger.info(
            "Order action completed",
            order_id=str(order.id),
            order_number=order.order_number,
            action=action,
            status=order.status.value,
            failed_effects=failed,
        )
        return order

    async def confirm_payment(self, order_id: uuid.UUID | str, language: str = "en") -> Order:
        """
        Confirm payment: processing status, stock decrement, one-time invoice paid.

        Only orders still awaiting payment can be confirmed. The order row is
        locked before the status check, so of two concurrent confirmations
        the second waits, sees ``processing`` and is refused; stock is never
        decremented twice.
        """
        order = await self.get_order(order_id, for_update=True)
        self.state_machine.validate_transition(order, OrderStatus.PROCESSING)

        async def decrement_stock() -> None:
            for item in order.items:
                await self.products.decrement_stock(item.product_id, item.quantity)

        async def mark_invoice_paid() -> None:
            for invoice in await self.invoices.find_by_order_id(order.id):
                if invoice.invoice_type == InvoiceType.ONE_TIME:
                    self._mark_paid(invoice)
                    await self.invoices.save(invoice)

        effects = [
            self._transition(order, OrderStatus.PROCESSING),
            fatal("stock", decrement_stock),
            fatal("invoice", mark_invoice_paid),
            *self._email(
                "email",
                lambda: self.notifier.send_payment_confirmed(order, language),
            ),
        ]
        return await self._execute(order, "confirm_payment", effects)

    async def mark_shipped(self, order_id: uuid.UUID | str, language: str = "en") -> Order:
        """Ship an order; requires an assigned logistics vehicle."""
        order = await self.get_order(order_id, for_update=True)
        self.state_machine.validate_transition(order, OrderStatus.SHIPPED)

        effects = [
            self._transition(order, OrderStatus.SHIPPED),
            *self._email("email", lambda: self.notifier.send_shipped(order, language)),
        ]
        return await self._execute(order, "mark_shipped", effects)

    async def mark_delivered(self, order_id: uuid.UUID | str, language: str = "en") -> Order:
        """
        Deliver a shipped order.

        A one-time invoice becomes paid; a period invoice becomes paid once
        every order on it is delivered.
        """
        order = await self.get_order(order_id, for_update=True)
        self.state_machine.validate_transition(order, OrderStatus.DELIVERED)

        async def settle_invoices() -> None:
            await self._refresh_invoice_statuses(order)

        effects = [
            self._transition(order, OrderStatus.DELIVERED),
            fatal("invoice", settle_invoices),
            *self._email("email", lambda: self.notifier.send_delivered(order, language)),
        ]
        return await self._execute(order, "mark_delivered", effects)

    async def reject_payment(
        self,
        order_id: uuid.UUID | str,
        reason: Optional[str] = None,
        language: str = "en",
    ) -> Order:
        """
        Cancel an order whose payment proof was rejected.

        Invoices whose orders are now all cancelled become cancelled.
        """
        order = await self.get_order(order_id, for_update=True)
        self.state_machine.validate_transition(order, OrderStatus.CANCELLED)
        reason = reason or DEFAULT_REJECTION_REASON

        async def record_reason() -> None:
            order.rejection_reason = reason

        async def cancel_invoices() -> None:
            await self._refresh_invoice_statuses(order)

        effects = [
            self._transition(order, OrderStatus.CANCELLED),
            fatal("rejection_reason", record_reason),
            fatal("invoice", cancel_invoices),
            *self._email(
                "email",
                lambda: self.notifier.send_payment_rejected(order, reason, language),
            ),
        ]
        return await self._execute(order, "reject_payment", effects)

    async def delete_order(self, order_id: uuid.UUID | str) -> str:
        """
        Delete an order after detaching it from every invoice.

        Returns:
            The deleted order id

        Raises:
            OrderNotFoundError: If the order does not exist
            InvoiceCleanupError: If invoice reconciliation failed; the order
                is kept
            OrderDeletionError: If deleting the order itself failed
        """
        order = await self.get_order(order_id)
        order_key = str(order.id)

        try:
            report = await self.reconciliation.remove_order_from_invoices(order.id)
        except ReconciliationError as e:
            logger.error(
                "Invoice cleanup failed, order kept",
                order_id=order_key,
                error=str(e),
                context=e.context,
            )
            raise InvoiceCleanupError(
                "Failed to clean up invoice references",
                order_id=order_key,
                error=str(e),
            ) from e

        try:
            await self.orders.delete(order)
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.error(
                "Order deletion failed",
                order_id=order_key,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise OrderDeletionError(
                "Failed to delete order",
                order_id=order_key,
                error=str(e),
            ) from e

        logger.info(
            "Order deleted",
            order_id=order_key,
            order_number=order.order_number,
            status=order.status.value,
            total=str(order.total),
            invoices_updated=report.updated,
            invoices_deleted=report.deleted,
        )
        return order_key

    async def _refresh_invoice_statuses(self, order: Order) -> None:
        """Re-derive the status of every invoice referencing ``order``."""
        for invoice in await self.invoices.find_by_order_id(order.id):
            others = await self.orders.get_many(
                i for i in invoice.order_id_list if i != str(order.id)
            )
            if apply_derived_status(invoice, [order, *others]):
                logger.info(
                    "Invoice status derived from orders",
                    invoice_number=invoice.invoice_number,
                    order_id=str(order.id),
                    status=invoice.status.value,
                )
            await self.invoices.save(invoice)

    @staticmethod
    def _mark_paid(invoice: Any) -> None:
        invoice.status = InvoiceStatus.PAID
        if invoice.payment_date is None:
            invoice.payment_date = datetime.now(timezone.utc)
