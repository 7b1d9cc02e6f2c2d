"""
Order data access repository.

Async queries for the order administration listing, single and bulk
lookups, and deletion. Connection-level failures propagate unchanged so
callers can retry them; other database errors are wrapped in
OrderRepositoryError with structured context.
"""

import uuid
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.logging import get_logger
from storefront.database.connection import TRANSIENT_DB_ERRORS
from storefront.database.models.order import Order, OrderItem
from storefront.services.orders.enums import OrderStatus, OrderType

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


def _as_uuid(value: uuid.UUID | str) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class OrderRepository:
    """Repository for order data access operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        order_type: Optional[OrderType] = None,
        skip: int = 0,
        limit: int = 5,
    ) -> tuple[Sequence[Order], int]:
        """
        Get a page of orders, newest first, with items and products loaded.

        Returns:
            Tuple of (orders, total_count)

        Raises:
            OrderRepositoryError: If the query fails for a non-transient reason
        """
        try:
            conditions = []
            if status:
                conditions.append(Order.status == status)
            if order_type:
                conditions.append(Order.order_type == order_type)

            stmt = (
                select(Order)
                .where(and_(*conditions))
                .options(selectinload(Order.items).selectinload(OrderItem.product))
                .order_by(Order.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            count_stmt = select(func.count()).select_from(Order).where(and_(*conditions))

            result = await self.session.execute(stmt)
            count_result = await self.session.execute(count_stmt)

            orders = result.scalars().all()
            total_count = count_result.scalar_one()

            logger.debug(
                "Orders fetched",
                status=status.value if status else None,
                order_type=order_type.value if order_type else None,
                count=len(orders),
                total=total_count,
            )
            return orders, total_count

        except TRANSIENT_DB_ERRORS:
            raise
        except SQLAlchemyError as e:
            logger.error("Failed to fetch orders", error=str(e))
            raise OrderRepositoryError("Failed to fetch orders", error=str(e)) from e

    async def get_by_id(
        self,
        order_id: uuid.UUID | str,
        for_update: bool = False,
    ) -> Optional[Order]:
        """
        Get an order with its items, or None when it does not exist.

        With ``for_update`` the order row is locked (``SELECT ... FOR UPDATE``)
        and its attributes are refreshed from the locked row, so a status
        check made afterwards holds until the transaction ends.
        """
        key = _as_uuid(order_id)
        if key is None:
            return None

        try:
            stmt = (
                select(Order)
                .where(Order.id == key)
                .options(selectinload(Order.items).selectinload(OrderItem.product))
            )
            if for_update:
                stmt = stmt.with_for_update(of=Order).execution_options(
                    populate_existing=True
                )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=str(order_id), error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order",
                order_id=str(order_id),
                error=str(e),
            ) from e

    async def get_many(self, order_ids: Iterable[uuid.UUID | str]) -> list[Order]:
        """
        Resolve order ids to the orders that still exist.

        Unknown or malformed ids are skipped. Results follow the input order.
        """
        keys = [key for key in (_as_uuid(v) for v in order_ids) if key is not None]
        if not keys:
            return []

        try:
            stmt = (
                select(Order)
                .where(Order.id.in_(keys))
                .options(selectinload(Order.items))
            )
            result = await self.session.execute(stmt)
            found = {order.id: order for order in result.scalars().all()}
        except SQLAlchemyError as e:
            logger.error("Failed to resolve orders", count=len(keys), error=str(e))
            raise OrderRepositoryError(
                "Failed to resolve orders",
                count=len(keys),
                error=str(e),
            ) from e

        return [found[key] for key in keys if key in found]

    async def add(self, order: Order) -> Order:
        self.session.add(order)
        await self.session.flush()
        return order

    async def delete(self, order: Order) -> None:
        await self.session.delete(order)
        await self.session.flush()
