"""Liveness and readiness probes."""

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db, utcnow
from app.models.package_size import PackageSize

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Process is up. Never touches the database."""
    return {
        "status": "ok",
        "service": "PickPack",
        "environment": settings.environment,
        "timestamp": utcnow().isoformat(),
    }


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Ready to plan boxes: database reachable and a container catalog exists.

    An empty catalog is reported but does not fail readiness; the packing
    endpoints answer it with EMPTY_CONTAINER_CATALOG on their own.
    """
    checks = {"database": "unknown", "active_containers": None,
              "scheduler": "enabled" if settings.scheduler_enabled else "disabled"}
    ready = True

    try:
        checks["active_containers"] = await db.scalar(
            select(func.count()).select_from(PackageSize).where(PackageSize.is_active.is_(True))
        )
        checks["database"] = "ok"
    except SQLAlchemyError as exc:
        logger.warning("Readiness probe failed: %s", exc)
        checks["database"] = f"error: {str(exc)[:100]}"
        ready = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "not_ready",
            "checks": checks,
            "timestamp": utcnow().isoformat(),
        },
    )
