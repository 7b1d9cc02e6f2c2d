"""
Invoice administration API endpoints.

Admin listing and live stream, status changes, owner payment-proof
submission, and the reconciliation sweeps.
"""

import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse

from storefront.api.deps import (
    CurrentAdmin,
    CurrentUser,
    get_invoice_registry,
    get_invoice_service,
    get_reconciliation_service,
)
from storefront.core.logging import get_logger
from storefront.schemas.invoices import (
    CleanupRequest,
    CleanupResultResponse,
    CountResponse,
    InvoiceListResponse,
    InvoiceResponse,
    InvoiceStatusUpdateRequest,
    PaymentProofRequest,
    invoice_payload,
)
from storefront.services.invoices.enums import InvoiceStatus, InvoiceType
from storefront.services.invoices.reconciliation import (
    ReconciliationError,
    ReconciliationService,
)
from storefront.services.invoices.service import (
    InvoiceAccessError,
    InvoiceNotFoundError,
    InvoiceService,
    InvoiceServiceError,
)
from storefront.services.invoices.stream import (
    InvoiceStreamRegistry,
    QueueWriter,
    format_event,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/invoices", tags=["invoices"])

Invoices = Annotated[InvoiceService, Depends(get_invoice_service)]
Reconciliation = Annotated[ReconciliationService, Depends(get_reconciliation_service)]

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("/admin", response_model=InvoiceListResponse, summary="List invoices")
async def list_invoices(
    admin: CurrentAdmin,
    service: Invoices,
    invoice_status: Optional[InvoiceStatus] = Query(None, alias="status"),
    invoice_type: Optional[InvoiceType] = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> InvoiceListResponse:
    result = await service.list_invoices(
        status=invoice_status,
        invoice_type=invoice_type,
        page=page,
        limit=limit,
    )
    return InvoiceListResponse(**result)


@router.get("/stream", summary="Live invoice updates (server-sent events)")
async def stream_invoices(
    request: Request,
    admin: CurrentAdmin,
    service: Invoices,
    registry: Annotated[Optional[InvoiceStreamRegistry], Depends(get_invoice_registry)],
) -> StreamingResponse:
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Invoice stream is not available",
        )

    client_id = str(uuid.uuid4())
    writer = QueueWriter()
    initial = await service.invoices.list_all()
    registry.add_client(client_id, writer)
    logger.info("Invoice stream opened", client_id=client_id, admin_id=str(admin.id))

    async def events():
        try:
            yield format_event(invoice_payload(initial))
            async for frame in writer.iter_events():
                if await request.is_disconnected():
                    break
                yield frame
        finally:
            registry.remove_client(client_id)

    return StreamingResponse(events(), media_type="text/event-stream", headers=STREAM_HEADERS)


@router.put(
    "/status/{invoice_number}",
    response_model=InvoiceResponse,
    summary="Set invoice status",
)
async def update_invoice_status(
    invoice_number: str,
    body: InvoiceStatusUpdateRequest,
    admin: CurrentAdmin,
    service: Invoices,
) -> InvoiceResponse:
    try:
        invoice = await service.update_status(invoice_number, body.status)
    except InvoiceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    logger.info(
        "Invoice status set by admin",
        invoice_number=invoice_number,
        status=body.status.value,
        admin_id=str(admin.id),
    )
    return InvoiceResponse.from_invoice(invoice)


@router.post(
    "/{invoice_number}/payment-proof",
    response_model=InvoiceResponse,
    summary="Submit payment proof",
)
async def submit_payment_proof(
    invoice_number: str,
    body: PaymentProofRequest,
    user: CurrentUser,
    service: Invoices,
) -> InvoiceResponse:
    try:
        invoice = await service.submit_payment_proof(invoice_number, user, body)
    except InvoiceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvoiceAccessError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from e
    except InvoiceServiceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    return InvoiceResponse.from_invoice(invoice)


@router.post(
    "/cleanup",
    response_model=CleanupResultResponse,
    summary="Repair invoices that reference deleted orders",
    description="Dry run by default; send dryRun=false to apply changes",
)
async def cleanup_invalid_invoices(
    admin: CurrentAdmin,
    reconciliation: Reconciliation,
    body: Optional[CleanupRequest] = None,
) -> CleanupResultResponse:
    dry_run = body.dry_run if body is not None else True
    try:
        report = await reconciliation.force_cleanup_invalid_invoices(dry_run=dry_run)
    except ReconciliationError as e:
        logger.error("Invoice cleanup failed", error=str(e), context=e.context)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Invoice cleanup failed",
        ) from e

    logger.info(
        "Invoice cleanup requested",
        admin_id=str(admin.id),
        dry_run=dry_run,
        deleted=report.deleted,
        updated=report.updated,
    )
    return CleanupResultResponse(**report.to_dict())


@router.post(
    "/cleanup/empty-period",
    response_model=CountResponse,
    summary="Delete period invoices without orders",
)
async def cleanup_empty_period_invoices(
    admin: CurrentAdmin,
    reconciliation: Reconciliation,
) -> CountResponse:
    try:
        deleted = await reconciliation.cleanup_empty_period_invoices()
    except ReconciliationError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Empty period invoice cleanup failed",
        ) from e

    return CountResponse(count=deleted, message=f"Deleted {deleted} empty period invoices")


@router.post(
    "/sync-amounts",
    response_model=CountResponse,
    summary="Recompute invoice amounts from their orders",
)
async def sync_invoice_amounts(
    admin: CurrentAdmin,
    reconciliation: Reconciliation,
) -> CountResponse:
    try:
        report = await reconciliation.sync_invoice_amounts()
    except ReconciliationError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Invoice amount sync failed",
        ) from e

    return CountResponse(
        count=report.updated,
        message=f"Fixed {report.updated} invoice amounts",
    )
