"""Product stock access."""

import uuid
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.product import Product

logger = get_logger(__name__)


class ProductRepositoryError(Exception):
    """Raised when a product query or stock update fails."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class ProductRepository:
    """Product lookups and the floored stock decrement."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, product_id: uuid.UUID) -> Optional[Product]:
        result = await self.session.execute(select(Product).where(Product.id == product_id))
        return result.scalar_one_or_none()

    async def decrement_stock(self, product_id: uuid.UUID, quantity: int) -> Optional[int]:
        """
        Atomically subtract ``quantity`` from a product's stock, floored at 0.

        The update is a single statement so concurrent decrements never read a
        stale stock value.

        Returns:
            The new stock level, or None if the product does not exist

        Raises:
            ProductRepositoryError: If the update fails
        """
        try:
            stmt = (
                update(Product)
                .where(Product.id == product_id)
                .values(stock=func.greatest(Product.stock - quantity, 0))
                .returning(Product.stock)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            new_stock = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Stock decrement failed",
                product_id=str(product_id),
                quantity=quantity,
                error=str(e),
            )
            raise ProductRepositoryError(
                "Stock decrement failed",
                product_id=str(product_id),
                error=str(e),
            ) from e

        if new_stock is None:
            logger.warning("Stock decrement for unknown product", product_id=str(product_id))
        else:
            logger.info(
                "Product stock decremented",
                product_id=str(product_id),
                quantity=quantity,
                stock=new_stock,
            )
        return new_stock
