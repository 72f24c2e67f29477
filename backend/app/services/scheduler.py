"""Background task scheduler — generates picker tasks for the current shift.

Runs inside the FastAPI lifespan as a plain asyncio loop that wakes
every few minutes and walks the active work centers. Generation is
idempotent, so running it often only creates tasks for orders that
arrived since the last pass.

Configuration (.env):
    SCHEDULER_ENABLED=true
    TASK_GENERATION_INTERVAL_MINUTES=15

Running several workers is safe: the insert-only upsert keeps one task
per order per shift no matter how many loops fire at once.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from sqlalchemy import select

from app.config import settings
from app.database import async_session
from app.models.work_center import WorkCenter

logger = logging.getLogger("pickpack.scheduler")


async def _generate_for_work_center(work_center_id: str, now: datetime) -> dict | None:
    """Generate tasks for one work center's current shift, in its own session."""
    from app.services.picker_tasks import generate_tasks_for_shift
    from app.services.shifts import resolve_current_shift

    try:
        async with async_session() as db:
            try:
                scope = await resolve_current_shift(db, work_center_id, now)
                if scope is None:
                    return None
                outcome = await generate_tasks_for_shift(
                    db, work_center_id, scope.shift_name, scope.shift_date,
                    settings.system_actor_id,
                )
                await db.commit()
                return {
                    "shift_name": scope.shift_name,
                    "created": outcome.created_count,
                    "failed": len(outcome.failed_orders),
                }
            except Exception:
                await db.rollback()
                raise
    except Exception:
        logger.exception("Task generation failed for work center %s", work_center_id)
        return None


async def run_task_generation(now: datetime | None = None) -> None:
    """Iterate over all active work centers and generate for each current shift."""
    now = now or datetime.now(timezone.utc)
    logger.info("Starting scheduled task generation")

    async with async_session() as db:
        result = await db.execute(
            select(WorkCenter.id).where(WorkCenter.is_active == True)  # noqa: E712
        )
        work_center_ids = [row[0] for row in result.all()]

    for work_center_id in work_center_ids:
        summary = await _generate_for_work_center(work_center_id, now)
        if summary:
            logger.info(
                "Work center %s (%s): %d tasks created, %d orders failed",
                work_center_id,
                summary["shift_name"],
                summary["created"],
                summary["failed"],
            )

    logger.info("Scheduled task generation complete for %d work centers", len(work_center_ids))


async def _scheduler_loop() -> None:
    interval = max(1, settings.task_generation_interval_minutes) * 60

    while True:
        try:
            await run_task_generation()
        except Exception:
            logger.exception("Unhandled error in scheduled task generation")

        await asyncio.sleep(interval)


async def _ensure_tables():
    """Create any missing tables. Runs once at startup."""
    from app.database import Base, engine
    import app.models  # noqa: F401  registers every table on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Ensured tables exist")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: start the scheduler on startup, cancel on shutdown."""
    await _ensure_tables()
    if not settings.scheduler_enabled:
        logger.info("Task generation scheduler disabled")
        yield
        return

    task = asyncio.create_task(_scheduler_loop())
    logger.info("Task generation scheduler started")
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Task generation scheduler stopped")
