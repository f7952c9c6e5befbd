"""
API Routes
"""
from fastapi import APIRouter

from notifier.api.routes.admin_messaging import router as admin_messaging_router

router = APIRouter()

router.include_router(
    admin_messaging_router,
    prefix="/admin/messaging",
    tags=["Admin Messaging"],
)
