"""Logistics vehicle model used for delivery assignment."""

from enum import Enum
from typing import Optional

from sqlalchemy import Enum as SQLEnum
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel


class VehicleStatus(str, Enum):
    """Availability of a delivery vehicle."""

    AVAILABLE = "available"
    ON_DELIVERY = "on_delivery"
    MAINTENANCE = "maintenance"


class LogisticsVehicle(BaseModel):
    """Delivery vehicle that can be assigned to an order before shipping."""

    __tablename__ = "logistics_vehicles"

    plate_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        index=True,
        comment="Licence plate",
    )

    driver_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Assigned driver",
    )

    status: Mapped[VehicleStatus] = mapped_column(
        SQLEnum(
            VehicleStatus,
            name="vehicle_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=VehicleStatus.AVAILABLE,
        index=True,
        comment="Current availability",
    )

    @property
    def is_available(self) -> bool:
        return self.status == VehicleStatus.AVAILABLE
