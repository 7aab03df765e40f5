"""
API Routes
"""
from fastapi import APIRouter

from agrimove.api.routes.admin_debug import router as admin_debug_router
from agrimove.api.routes.orders import router as orders_router
from agrimove.api.webhooks.ussd import router as ussd_router
from agrimove.api.webhooks.whatsapp import router as whatsapp_router

router = APIRouter()

router.include_router(ussd_router, prefix="/ussd", tags=["Webhooks"])
router.include_router(whatsapp_router, prefix="/whatsapp", tags=["Webhooks"])
router.include_router(orders_router, prefix="/orders", tags=["Orders"])
router.include_router(admin_debug_router, prefix="/admin/debug", tags=["Admin Debug"])
