"""
Order administration API endpoints.

Admin listing, status actions (confirm payment, ship, deliver, reject) and
deletion. Errors are returned as ``{"error": ..., "code": ...}`` with a
machine-readable code.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from storefront.api.deps import CurrentAdmin, get_order_admin_service
from storefront.core.logging import get_logger
from storefront.schemas.orders import (
    ErrorResponse,
    OrderAdminUpdateRequest,
    OrderAdminUpdateResponse,
    OrderDeleteResponse,
    OrderListResponse,
    OrderResponse,
)
from storefront.services.orders.enums import OrderStatus
from storefront.services.orders.service import (
    InvalidOrderActionError,
    InvoiceCleanupError,
    OrderAdminService,
    OrderNotFoundError,
)
from storefront.services.orders.state_machine import StateTransitionError

logger = get_logger(__name__)

router = APIRouter(prefix="/order-admin", tags=["order-admin"])

OrderAdmin = Annotated[OrderAdminService, Depends(get_order_admin_service)]

ERROR_RESPONSES = {
    code: {"model": ErrorResponse}
    for code in (
        status.HTTP_400_BAD_REQUEST,
        status.HTTP_401_UNAUTHORIZED,
        status.HTTP_404_NOT_FOUND,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
}


def error_response(status_code: int, error: str, code: Optional[str] = None, **extra) -> JSONResponse:
    content = {"error": error}
    if code:
        content["code"] = code
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def missing_order_id() -> JSONResponse:
    return error_response(
        status.HTTP_400_BAD_REQUEST, "Order ID is required", "MISSING_ORDER_ID"
    )


def order_not_found() -> JSONResponse:
    return error_response(status.HTTP_404_NOT_FOUND, "Order not found", "ORDER_NOT_FOUND")


@router.get(
    "",
    response_model=OrderListResponse,
    responses=ERROR_RESPONSES,
    summary="List orders",
    description="Paginated order listing filtered by status and view mode, newest first",
)
async def list_orders(
    admin: CurrentAdmin,
    service: OrderAdmin,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    order_status: Optional[str] = Query(None, alias="status"),
    language: str = Query("en"),
    view_mode: str = Query("one-time", alias="viewMode", pattern="^(one-time|period)$"),
):
    parsed_status = None
    if order_status:
        try:
            parsed_status = OrderStatus.from_string(order_status)
        except ValueError as e:
            return error_response(status.HTTP_400_BAD_REQUEST, str(e), "INVALID_STATUS")

    try:
        result = await service.list_orders(
            status=parsed_status,
            view_mode=view_mode,
            page=page,
            limit=limit,
            language=language,
        )
    except Exception as e:
        logger.error(
            "Failed to fetch orders",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch orders", "FETCH_ERROR"
        )

    return OrderListResponse(**result)


@router.put(
    "",
    response_model=OrderAdminUpdateResponse,
    responses=ERROR_RESPONSES,
    summary="Apply an admin action to an order",
)
async def update_order(
    body: OrderAdminUpdateRequest,
    admin: CurrentAdmin,
    service: OrderAdmin,
    language: str = Query("en"),
):
    if not body.order_id:
        return missing_order_id()

    action = body.action()
    try:
        order, message = await service.apply_action(
            body.order_id,
            action,
            rejection_reason=body.rejection_reason,
            language=language,
        )
    except OrderNotFoundError:
        return order_not_found()
    except StateTransitionError as e:
        logger.info(
            "Order action refused",
            order_id=body.order_id,
            action=action,
            current_status=e.current_state.value,
            reason=str(e),
        )
        return error_response(status.HTTP_400_BAD_REQUEST, str(e), "INVALID_TRANSITION")
    except InvalidOrderActionError as e:
        return error_response(status.HTTP_400_BAD_REQUEST, str(e), "INVALID_ACTION")
    except Exception as e:
        logger.error(
            "Failed to update order",
            order_id=body.order_id,
            action=action,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to update order", "UPDATE_ERROR"
        )

    logger.info(
        "Order updated by admin",
        order_id=body.order_id,
        action=action,
        admin_id=str(admin.id),
    )
    return OrderAdminUpdateResponse(
        message=message,
        order=OrderResponse.from_order(order, language),
    )


@router.delete(
    "",
    response_model=OrderDeleteResponse,
    responses=ERROR_RESPONSES,
    summary="Delete an order",
    description="Detach the order from its invoices, then delete it",
)
async def delete_order(
    admin: CurrentAdmin,
    service: OrderAdmin,
    order_id: Optional[str] = Query(None, alias="orderId"),
):
    if not order_id:
        return missing_order_id()

    try:
        deleted_id = await service.delete_order(order_id)
    except OrderNotFoundError:
        return order_not_found()
    except InvoiceCleanupError as e:
        logger.error(
            "Order deletion aborted by invoice cleanup failure",
            order_id=order_id,
            admin_id=str(admin.id),
            context=e.context,
        )
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to clean up invoice references",
            "INVOICE_CLEANUP_ERROR",
            details=e.context.get("error"),
        )
    except Exception as e:
        logger.error(
            "Order deletion failed",
            order_id=order_id,
            admin_id=str(admin.id),
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to delete order", "DELETE_ERROR"
        )

    logger.info("Order deleted by admin", order_id=deleted_id, admin_id=str(admin.id))
    return OrderDeleteResponse(
        message="Order and related invoice references deleted successfully",
        deleted_order_id=deleted_id,
    )
