from fastapi import APIRouter

from billing_reconciler.api.routes import admin, health, webhooks

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(webhooks.router, tags=["webhooks"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
