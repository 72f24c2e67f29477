"""Claiming picker tasks.

A claim is a single conditional UPDATE:

    UPDATE picker_tasks
       SET status='claimed', assigned_picker_id=:picker, ...
     WHERE id = (SELECT id FROM picker_tasks
                  WHERE <scope> AND status='ready' AND assigned_picker_id IS NULL
                  ORDER BY priority DESC, created_at ASC, id ASC
                  LIMIT 1 FOR UPDATE SKIP LOCKED)
       AND status='ready' AND assigned_picker_id IS NULL
    RETURNING id

The outer WHERE re-checks the claim condition, so when N pickers race
for one task exactly one UPDATE matches a row; the others match none
and get None (or the next task on PostgreSQL, where SKIP LOCKED moves
them past rows already being claimed). Claims by different pickers
never block on each other and never retry. The audit entry is appended
in the same transaction as the status change.

The picker-facing "claim first" path adds one more condition to the same
UPDATE: the picker holds no claimed or in-progress task in the shift.
On PostgreSQL it also takes a transaction-level advisory lock per
(picker, shift), so two requests from one picker cannot both pass that
check on separate snapshots.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, text, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.config import settings
from app.database import utcnow
from app.models.picker_task import ACTIVE_STATUSES, PickerTask
from app.services.picker_tasks import in_scope, claim_order
from app.services.shifts import ShiftScope, resolve_current_shift
from app.utils.audit import actor_ref, append_audit

logger = logging.getLogger(__name__)


@dataclass
class ClaimResult:
    task: PickerTask | None
    scope: ShiftScope | None
    already_assigned: bool = False


def _claimable():
    return (PickerTask.status == "ready", PickerTask.assigned_picker_id.is_(None))


def _holds_no_active_task(scope: ShiftScope, picker_id: str):
    held = aliased(PickerTask)
    return ~(
        select(held.id)
        .where(
            held.work_center_id == scope.work_center_id,
            held.shift_name == scope.shift_name,
            held.shift_date == scope.shift_date,
            held.assigned_picker_id == picker_id,
            held.status.in_(ACTIVE_STATUSES),
        )
        .exists()
    )


def _next_ready(scope: ShiftScope):
    return (
        select(PickerTask.id)
        .where(in_scope(scope), *_claimable())
        .order_by(*claim_order())
        .limit(1)
    )


async def _lock_picker_shift(db: AsyncSession, scope: ShiftScope, picker_id: str) -> None:
    # SQLite serializes writers on its own
    if db.get_bind().dialect.name != "postgresql":
        return
    key = f"picker_claim:{scope.work_center_id}:{scope.shift_name}:{scope.shift_date}:{picker_id}"
    await db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:k))"), {"k": key})


async def _apply_claim(
    db: AsyncSession, target, picker_id: str, note: str, *guards
) -> PickerTask | None:
    now = utcnow()
    result = await db.execute(
        update(PickerTask)
        .where(PickerTask.id == target, *_claimable(), *guards)
        .values(
            status="claimed",
            assigned_picker_id=picker_id,
            started_at=now,
            updated_at=now,
        )
        .returning(PickerTask.id)
        .execution_options(synchronize_session=False)
    )
    task_id = result.scalar_one_or_none()
    if task_id is None:
        return None

    task = await db.get(PickerTask, task_id, populate_existing=True)
    append_audit(task, "claim", await actor_ref(db, picker_id), note=note, at=now)
    await db.flush()
    logger.info("Picker %s claimed task %s", picker_id, task_id)
    return task


async def claim_next_ready_in_scope(
    db: AsyncSession, scope: ShiftScope, picker_id: str, *, single_active: bool = False
) -> PickerTask | None:
    """Claim the next ready task in ``scope``.

    With ``single_active`` the claim only lands while the picker holds no
    claimed or in-progress task in the same shift.
    """
    next_ready = (
        _next_ready(scope)
        .with_for_update(skip_locked=True)
        .correlate(None)
        .scalar_subquery()
    )
    guards = (_holds_no_active_task(scope, picker_id),) if single_active else ()
    return await _apply_claim(db, next_ready, picker_id, "Claimed next ready task", *guards)


async def claim_next_ready_task(
    db: AsyncSession,
    work_center_id: str,
    picker_id: str,
    *,
    now: datetime | None = None,
) -> PickerTask | None:
    """Claim the highest-priority, oldest ready task of the current shift.

    Returns None when no shift is active or nothing is claimable.
    """
    scope = await resolve_current_shift(db, work_center_id, now)
    if scope is None:
        return None
    return await claim_next_ready_in_scope(db, scope, picker_id)


async def claim_task(db: AsyncSession, task_id: str, picker_id: str) -> PickerTask | None:
    """Claim one specific task; None if it is no longer ready and unassigned."""
    return await _apply_claim(db, task_id, picker_id, "Claimed by id")


async def peek_next_ready(db: AsyncSession, scope: ShiftScope) -> PickerTask | None:
    """The task a claim would take right now, without taking it."""
    result = await db.execute(
        select(PickerTask).where(PickerTask.id == _next_ready(scope).scalar_subquery())
    )
    return result.scalar_one_or_none()


async def find_active_task_for_picker(
    db: AsyncSession, scope: ShiftScope, picker_id: str
) -> PickerTask | None:
    result = await db.execute(
        select(PickerTask)
        .where(
            in_scope(scope),
            PickerTask.assigned_picker_id == picker_id,
            PickerTask.status.in_(ACTIVE_STATUSES),
        )
        .order_by(PickerTask.updated_at.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def claim_first_ready_for_current_shift(
    db: AsyncSession,
    work_center_id: str,
    picker_id: str,
    *,
    now: datetime | None = None,
) -> ClaimResult:
    """Picker-facing claim: hand back an active task before claiming a new one."""
    scope = await resolve_current_shift(db, work_center_id, now)
    if scope is None:
        return ClaimResult(task=None, scope=None)

    if not settings.claim_returns_active_task:
        task = await claim_next_ready_in_scope(db, scope, picker_id)
        return ClaimResult(task=task, scope=scope)

    await _lock_picker_shift(db, scope, picker_id)
    active = await find_active_task_for_picker(db, scope, picker_id)
    if active is not None:
        return ClaimResult(task=active, scope=scope, already_assigned=True)

    task = await claim_next_ready_in_scope(db, scope, picker_id, single_active=True)
    if task is not None:
        return ClaimResult(task=task, scope=scope)

    # A concurrent request from the same picker may have claimed first
    active = await find_active_task_for_picker(db, scope, picker_id)
    return ClaimResult(task=active, scope=scope, already_assigned=active is not None)
