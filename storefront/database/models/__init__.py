"""
Database models package initialization.

Models are imported here so they register with the Base metadata for Alembic
and for relationship resolution.
"""

from storefront.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from storefront.database.models.invoice import Invoice
from storefront.database.models.logistics import LogisticsVehicle, VehicleStatus
from storefront.database.models.order import Order, OrderItem
from storefront.database.models.product import Product
from storefront.database.models.sequence import NumberSequence

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "Invoice",
    "LogisticsVehicle",
    "VehicleStatus",
    "Order",
    "OrderItem",
    "Product",
    "NumberSequence",
]
