"""
Central API route registration. All HTTP controllers are mounted here with /api prefix.
"""
import logging
from fastapi import FastAPI

from app.http.controllers import (
    analytics,
    duplications,
    manifests,
    orders,
    sync,
    webhooks,
)

logger = logging.getLogger(__name__)


def register_routes(app: FastAPI, settings) -> None:
    """Register all API routers. Call from main.py after creating the FastAPI app."""
    app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])
    app.include_router(sync.router, prefix="/api/sync", tags=["sync"])
    app.include_router(duplications.router, prefix="/api/duplications", tags=["duplications"])
    app.include_router(analytics.router, prefix="/api/analytics", tags=["analytics"])
    app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
    app.include_router(manifests.router, prefix="/api/manifests", tags=["manifests"])
    logger.info("Registered API routes (webhook signature policy: %s)", settings.WEBHOOK_SIGNATURE_POLICY)
