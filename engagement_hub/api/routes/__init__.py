"""
API Routes
"""
from fastapi import APIRouter

from engagement_hub.api.routes.webhook_events import router as webhook_events_router
from engagement_hub.api.webhooks.instagram import router as instagram_router

router = APIRouter()

router.include_router(instagram_router, prefix="/webhooks/instagram", tags=["webhooks"])
# Facebook Pages deliver the same entry/changes shape
router.include_router(
    instagram_router,
    prefix="/webhooks/facebook",
    tags=["webhooks"],
    include_in_schema=False,
)
router.include_router(
    webhook_events_router,
    prefix="/admin/webhook-events",
    tags=["admin"],
)
