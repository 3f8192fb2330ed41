"""API v1 routes."""

from fastapi import APIRouter

from app.api.v1 import admin, auth, cron, health, subscription, users, webhooks

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(users.router, prefix="/users", tags=["users"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])
router.include_router(subscription.router, prefix="/subscription", tags=["subscription"])
router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
router.include_router(cron.router, prefix="/cron", tags=["cron"])
