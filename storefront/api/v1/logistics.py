"""Logistics API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from storefront.api.deps import CurrentAdmin, get_logistics_service
from storefront.core.logging import get_logger
from storefront.schemas.logistics import VehicleAssignmentRequest, VehicleAssignmentResponse
from storefront.services.logistics.service import (
    AssignmentConflictError,
    AssignmentOrderNotFoundError,
    LogisticsService,
    VehicleNotFoundError,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/logistics", tags=["logistics"])


@router.post(
    "/assign",
    response_model=VehicleAssignmentResponse,
    summary="Assign a delivery vehicle to an order",
)
async def assign_vehicle(
    body: VehicleAssignmentRequest,
    admin: CurrentAdmin,
    service: Annotated[LogisticsService, Depends(get_logistics_service)],
) -> VehicleAssignmentResponse:
    try:
        order = await service.assign_vehicle(
            vehicle_id=body.vehicle_id,
            order_id=body.order_id,
            scheduled_delivery_date=body.scheduled_delivery_date,
        )
    except (VehicleNotFoundError, AssignmentOrderNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except AssignmentConflictError as e:
        logger.info("Vehicle assignment refused", reason=str(e), context=e.context)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    return VehicleAssignmentResponse(
        message="Vehicle assigned successfully",
        order_id=order.id,
        vehicle_id=body.vehicle_id,
        scheduled_delivery_date=body.scheduled_delivery_date,
    )
