"""Assignment of delivery vehicles to orders."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.logistics import LogisticsVehicle, VehicleStatus
from storefront.database.models.order import Order
from storefront.services.orders.repository import OrderRepository

logger = get_logger(__name__)


class LogisticsServiceError(Exception):
    """Base exception for logistics errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class VehicleNotFoundError(LogisticsServiceError):
    pass


class AssignmentOrderNotFoundError(LogisticsServiceError):
    pass


class AssignmentConflictError(LogisticsServiceError):
    """Raised when the vehicle is busy or the order already has a vehicle."""

    pass


class LogisticsService:
    def __init__(self, session: AsyncSession, orders: Optional[OrderRepository] = None):
        self.session = session
        self.orders = orders or OrderRepository(session)

    async def get_vehicle(self, vehicle_id: uuid.UUID) -> Optional[LogisticsVehicle]:
        return await self.session.get(LogisticsVehicle, vehicle_id, with_for_update=True)

    async def assign_vehicle(
        self,
        vehicle_id: uuid.UUID,
        order_id: uuid.UUID,
        scheduled_delivery_date: datetime,
    ) -> Order:
        """
        Assign an available vehicle to an order that has none.

        The order gets the vehicle and delivery date; the vehicle goes on
        delivery.

        Raises:
            VehicleNotFoundError: If the vehicle does not exist
            AssignmentOrderNotFoundError: If the order does not exist
            AssignmentConflictError: If the vehicle is not available, the
                order already has a vehicle, or the order is closed
        """
        vehicle = await self.get_vehicle(vehicle_id)
        if vehicle is None:
            raise VehicleNotFoundError("Vehicle not found", vehicle_id=str(vehicle_id))

        if not vehicle.is_available:
            raise AssignmentConflictError(
                "Vehicle is not available for assignment",
                vehicle_id=str(vehicle_id),
                vehicle_status=vehicle.status.value,
            )

        order = await self.orders.get_by_id(order_id)
        if order is None:
            raise AssignmentOrderNotFoundError("Order not found", order_id=str(order_id))

        if order.vehicle_id is not None:
            raise AssignmentConflictError(
                "Order is already assigned to a vehicle",
                order_id=str(order_id),
                vehicle_id=str(order.vehicle_id),
            )

        if order.status.is_terminal():
            raise AssignmentConflictError(
                f"Cannot assign a vehicle to a {order.status.value} order",
                order_id=str(order_id),
            )

        order.vehicle_id = vehicle.id
        order.scheduled_delivery_date = scheduled_delivery_date
        vehicle.status = VehicleStatus.ON_DELIVERY

        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Vehicle assigned to order",
            vehicle_id=str(vehicle.id),
            plate_number=vehicle.plate_number,
            order_id=str(order.id),
            scheduled_delivery_date=scheduled_delivery_date.isoformat(),
        )
        return order
