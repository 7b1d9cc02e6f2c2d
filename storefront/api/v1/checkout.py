"""Checkout API endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from storefront.api.deps import CurrentUser, get_checkout_service
from storefront.core.logging import get_logger
from storefront.schemas.orders import CheckoutRequest, CheckoutResponse
from storefront.services.orders.checkout import CheckoutService, UnknownProductError

logger = get_logger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post(
    "",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
    description="Create the order and add it to a one-time or period invoice",
)
async def checkout(
    body: CheckoutRequest,
    user: CurrentUser,
    service: Annotated[CheckoutService, Depends(get_checkout_service)],
) -> CheckoutResponse:
    try:
        placed = await service.place_order(user, body)
    except UnknownProductError as e:
        logger.info("Checkout refused", reason=str(e), context=e.context)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return CheckoutResponse(
        order_id=placed.order.id,
        order_number=placed.order.order_number,
        invoice_number=placed.invoice.invoice_number,
    )
