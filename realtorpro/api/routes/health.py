from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from realtorpro.config import settings
from realtorpro.core.database import check_database_health, get_database

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/ready")
async def readiness_check(
    request: Request, db: AsyncSession | None = Depends(get_database)
):
    """Readiness check: database connectivity plus webhook queue state."""
    db_status = await check_database_health()
    queue = getattr(request.app.state, "webhook_queue", None)

    if not db_status:
        raise HTTPException(status_code=503, detail="Database is not available")

    return {
        "status": "ready",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if settings.database_url else "not configured",
        "webhook_queue": {
            "running": bool(queue and queue.running),
            "pending": queue.pending if queue else 0,
            "dead_letters": len(queue.dead_letters) if queue else 0,
        },
        "payment_gateway": "configured" if settings.gateway_configured else "not configured",
    }
