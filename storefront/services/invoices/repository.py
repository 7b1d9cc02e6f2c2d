"""
Invoice data access repository.

Writes are staged on the session; the calling service owns the transaction
and commits or rolls back. Stale-version conflicts therefore surface at
commit time in the service, not here.
"""

import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, or_, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.invoice import Invoice
from storefront.services.invoices.enums import InvoiceStatus, InvoiceType

logger = get_logger(__name__)


class InvoiceRepositoryError(Exception):
    """Base exception for invoice repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class InvoiceRepository:
    """Repository for invoice data access operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _scalars(self, stmt, operation: str, **context: Any) -> list[Invoice]:
        try:
            result = await self.session.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(
                "Invoice query failed",
                operation=operation,
                error=str(e),
                **context,
            )
            raise InvoiceRepositoryError(
                "Invoice query failed",
                operation=operation,
                error=str(e),
                **context,
            ) from e

    async def get_by_number(self, invoice_number: str) -> Optional[Invoice]:
        invoices = await self._scalars(
            select(Invoice).where(Invoice.invoice_number == invoice_number),
            "get_by_number",
            invoice_number=invoice_number,
        )
        return invoices[0] if invoices else None

    async def find_by_order_id(self, order_id: uuid.UUID | str) -> list[Invoice]:
        """Invoices whose order id list contains ``order_id``."""
        return await self._scalars(
            select(Invoice).where(Invoice.order_ids.contains([str(order_id)])),
            "find_by_order_id",
            order_id=str(order_id),
        )

    async def find_empty_period_invoices(self) -> list[Invoice]:
        """Period invoices whose order id list is missing, null or empty."""
        empty = or_(
            Invoice.order_ids.is_(None),
            func.jsonb_typeof(Invoice.order_ids) == "null",
            Invoice.order_ids == text("'[]'::jsonb"),
        )
        return await self._scalars(
            select(Invoice).where(and_(Invoice.invoice_type == InvoiceType.PERIOD, empty)),
            "find_empty_period_invoices",
        )

    async def find_open_period_invoice(
        self,
        user_id: uuid.UUID,
        invoice_number: str,
    ) -> Optional[Invoice]:
        """The user's pending period invoice with the given number."""
        invoices = await self._scalars(
            select(Invoice).where(
                Invoice.user_id == user_id,
                Invoice.invoice_number == invoice_number,
                Invoice.invoice_type == InvoiceType.PERIOD,
                Invoice.status == InvoiceStatus.PENDING,
            ),
            "find_open_period_invoice",
            invoice_number=invoice_number,
        )
        return invoices[0] if invoices else None

    async def find_current_period_invoice(
        self,
        user_id: uuid.UUID,
        at: datetime,
    ) -> Optional[Invoice]:
        """The user's pending period invoice whose period covers ``at``."""
        invoices = await self._scalars(
            select(Invoice)
            .where(
                Invoice.user_id == user_id,
                Invoice.invoice_type == InvoiceType.PERIOD,
                Invoice.status == InvoiceStatus.PENDING,
                Invoice.period_start <= at,
                Invoice.period_end >= at,
            )
            .order_by(Invoice.period_end.desc())
            .limit(1),
            "find_current_period_invoice",
            user_id=str(user_id),
        )
        return invoices[0] if invoices else None

    async def list_all(self) -> list[Invoice]:
        """Every invoice, newest first."""
        return await self._scalars(
            select(Invoice).order_by(Invoice.created_at.desc()),
            "list_all",
        )

    async def list_invoices(
        self,
        status: Optional[InvoiceStatus] = None,
        invoice_type: Optional[InvoiceType] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[Invoice], int]:
        """
        Get a page of invoices, newest first.

        Returns:
            Tuple of (invoices, total_count)
        """
        conditions = []
        if status:
            conditions.append(Invoice.status == status)
        if invoice_type:
            conditions.append(Invoice.invoice_type == invoice_type)

        invoices = await self._scalars(
            select(Invoice)
            .where(and_(*conditions))
            .order_by(Invoice.created_at.desc())
            .offset(skip)
            .limit(limit),
            "list_invoices",
        )
        try:
            count_result = await self.session.execute(
                select(func.count()).select_from(Invoice).where(and_(*conditions))
            )
        except SQLAlchemyError as e:
            raise InvoiceRepositoryError("Invoice count failed", error=str(e)) from e

        return invoices, count_result.scalar_one()

    async def add(self, invoice: Invoice) -> Invoice:
        self.session.add(invoice)
        return invoice

    async def save(self, invoice: Invoice) -> Invoice:
        self.session.add(invoice)
        return invoice

    async def delete(self, invoice: Invoice) -> None:
        await self.session.delete(invoice)
