"""Logistics assignment schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class VehicleAssignmentRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    vehicle_id: UUID
    order_id: UUID
    scheduled_delivery_date: datetime


class VehicleAssignmentResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    message: str
    order_id: UUID
    vehicle_id: UUID
    scheduled_delivery_date: datetime
