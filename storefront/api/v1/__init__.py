"""Version 1 API routers."""

from fastapi import APIRouter

from storefront.api.v1.checkout import router as checkout_router
from storefront.api.v1.invoices import router as invoices_router
from storefront.api.v1.logistics import router as logistics_router
from storefront.api.v1.order_admin import router as order_admin_router

api_router = APIRouter()
api_router.include_router(order_admin_router)
api_router.include_router(checkout_router)
api_router.include_router(invoices_router)
api_router.include_router(logistics_router)
