"""
FastAPI dependencies for authentication and service wiring.

The caller identity comes from a bearer token issued by the identity
provider. Services are built per request on the request's database session;
application-wide collaborators (invoice stream registry, order notifier)
live on ``app.state`` and are created in the lifespan.
"""

from typing import Annotated, Any, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger, set_user_id
from storefront.core.security import SessionUser, TokenError, session_user_from_token
from storefront.database.connection import get_db
from storefront.services.invoices.reconciliation import ReconciliationService
from storefront.services.invoices.service import InvoiceService
from storefront.services.invoices.stream import InvoiceStreamRegistry
from storefront.services.logistics.service import LogisticsService
from storefront.services.notifications.service import OrderNotifier
from storefront.services.orders.checkout import CheckoutService
from storefront.services.orders.service import OrderAdminService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


class UnauthorizedError(Exception):
    """Raised when the caller is not authenticated or lacks admin rights."""

    def __init__(
        self,
        message: str = "Unauthorized",
        requester: Optional[SessionUser] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.code = "UNAUTHORIZED"
        self.requester = requester
        self.context = context


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> SessionUser:
    """
    Resolve the caller from the bearer token.

    Raises:
        UnauthorizedError: If no valid token was supplied
    """
    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise UnauthorizedError("Authentication required")

    try:
        user = session_user_from_token(credentials.credentials)
    except TokenError as e:
        logger.warning("Authentication failed", code=e.code, error=str(e))
        raise UnauthorizedError("Invalid credentials", token_error=e.code) from e

    set_user_id(str(user.id))
    return user


async def require_admin(
    user: Annotated[SessionUser, Depends(get_current_user)],
) -> SessionUser:
    """
    Raises:
        UnauthorizedError: If the caller is not an admin
    """
    if not user.admin:
        raise UnauthorizedError("Admin access required", requester=user)
    return user


def get_invoice_registry(request: Request) -> Optional[InvoiceStreamRegistry]:
    return getattr(request.app.state, "invoice_stream", None)


def get_order_notifier(request: Request) -> Optional[OrderNotifier]:
    return getattr(request.app.state, "order_notifier", None)


CurrentUser = Annotated[SessionUser, Depends(get_current_user)]
CurrentAdmin = Annotated[SessionUser, Depends(require_admin)]
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
InvoiceRegistry = Annotated[Optional[InvoiceStreamRegistry], Depends(get_invoice_registry)]


def get_reconciliation_service(
    db: DatabaseSession,
    registry: InvoiceRegistry,
) -> ReconciliationService:
    return ReconciliationService(db, registry=registry)


def get_order_admin_service(
    db: DatabaseSession,
    registry: InvoiceRegistry,
    notifier: Annotated[Optional[OrderNotifier], Depends(get_order_notifier)],
) -> OrderAdminService:
    return OrderAdminService(db, notifier=notifier, registry=registry)


def get_invoice_service(
    db: DatabaseSession,
    registry: InvoiceRegistry,
) -> InvoiceService:
    return InvoiceService(db, registry=registry)


def get_checkout_service(
    db: DatabaseSession,
    registry: InvoiceRegistry,
) -> CheckoutService:
    return CheckoutService(db, registry=registry)


def get_logistics_service(db: DatabaseSession) -> LogisticsService:
    return LogisticsService(db)
