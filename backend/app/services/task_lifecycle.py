"""Picker task state machine.

Edges:
    open        → ready | problem | cancelled
    ready       → claimed | problem | cancelled
    claimed     → in_progress | problem | cancelled
    in_progress → done | problem | cancelled
    problem     → ready | cancelled
    done, cancelled are terminal

Every operation checks its edge before mutating, keeps the assignment
rule (a picker is assigned exactly while claimed, in progress or done),
and appends one audit entry. Claiming lives in app.services.task_claims
because it is the only edge that must be atomic across pickers.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import utcnow
from app.middleware.exceptions import (
    BusinessLogicError,
    PermissionDeniedError,
    ResourceNotFoundError,
    TaskTransitionError,
)
from app.models.picker_task import (
    ACTIVE_STATUSES,
    ASSIGNED_STATUSES,
    TERMINAL_STATUSES,
    PickerTask,
)
from app.models.user import User, UserRole
from app.utils.audit import actor_ref, append_audit

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "open": frozenset({"ready", "problem", "cancelled"}),
    "ready": frozenset({"claimed", "problem", "cancelled"}),
    "claimed": frozenset({"in_progress", "problem", "cancelled"}),
    "in_progress": frozenset({"done", "problem", "cancelled"}),
    "problem": frozenset({"ready", "cancelled"}),
    "done": frozenset(),
    "cancelled": frozenset(),
}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def assert_transition(task: PickerTask, to_status: str) -> None:
    if not can_transition(task.status, to_status):
        raise TaskTransitionError(task.id, task.status, to_status)


# ── Helpers ──────────────────────────────────────────────────

async def get_task(db: AsyncSession, task_id: str, *, for_update: bool = False) -> PickerTask:
    stmt = select(PickerTask).where(PickerTask.id == task_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt.execution_options(populate_existing=True))
    task = result.scalar_one_or_none()
    if task is None:
        raise ResourceNotFoundError("Picker task", task_id)
    return task


def _require_assignee(task: PickerTask, picker_id: str) -> None:
    if task.assigned_picker_id != picker_id:
        raise PermissionDeniedError(f"Picker task {task.id} is not assigned to you")


def _reset_progress(task: PickerTask) -> None:
    task.current_box_index = 0
    task.current_step_index = 0
    task.placed_kg = 0.0
    task.placed_units = 0
    task.started_at = None
    task.finished_at = None


async def _require_picker_for(db: AsyncSession, task: PickerTask, picker_id: str) -> User:
    picker = await db.get(User, picker_id)
    if picker is None:
        raise ResourceNotFoundError("User", picker_id)
    if (
        not picker.is_active
        or picker.role != UserRole.PICKER
        or picker.work_center_id != task.work_center_id
    ):
        raise BusinessLogicError(
            f"User {picker_id} is not an active picker of work center {task.work_center_id}",
            error_code="INVALID_ASSIGNEE",
        )
    return picker


async def _move(
    db: AsyncSession,
    task: PickerTask,
    to_status: str,
    actor_id: str | None,
    action: str,
    *,
    note: str = "",
    meta: dict | None = None,
) -> PickerTask:
    from_status = task.status
    assert_transition(task, to_status)
    task.status = to_status
    if to_status not in ASSIGNED_STATUSES:
        task.assigned_picker_id = None
    append_audit(
        task, action, await actor_ref(db, actor_id), note=note,
        meta={"from": from_status, "to": to_status, **(meta or {})},
    )
    await db.flush()
    logger.info("Picker task %s: %s → %s (%s)", task.id, from_status, to_status, action)
    return task


# ── Transitions ──────────────────────────────────────────────

async def move_to_ready(db: AsyncSession, task_id: str, actor_id: str) -> PickerTask:
    """Queue a task. A task leaving ``problem`` starts over from box one."""
    task = await get_task(db, task_id, for_update=True)
    if task.status == "problem":
        _reset_progress(task)
    return await _move(db, task, "ready", actor_id, "ready")


async def start_picking(db: AsyncSession, task_id: str, picker_id: str) -> PickerTask:
    task = await get_task(db, task_id, for_update=True)
    _require_assignee(task, picker_id)
    task.started_at = task.started_at or utcnow()
    return await _move(db, task, "in_progress", picker_id, "start")


async def update_progress(
    db: AsyncSession,
    task_id: str,
    picker_id: str,
    *,
    current_box_index: int | None = None,
    current_step_index: int | None = None,
    placed_kg: float | None = None,
    placed_units: int | None = None,
    finished: bool = False,
) -> PickerTask:
    """Record picking progress; the first update starts a claimed task."""
    task = await get_task(db, task_id, for_update=True)
    _require_assignee(task, picker_id)
    if task.status not in ACTIVE_STATUSES:
        raise TaskTransitionError(task.id, task.status, "in_progress")

    if current_box_index is not None:
        if not 0 <= current_box_index < max(task.box_count, 1):
            raise BusinessLogicError(
                f"Box index {current_box_index} out of range for {task.box_count} boxes",
                error_code="INVALID_PROGRESS",
            )
        task.current_box_index = current_box_index
    if current_step_index is not None:
        task.current_step_index = max(0, current_step_index)
    if placed_kg is not None:
        task.placed_kg = max(0.0, placed_kg)
    if placed_units is not None:
        task.placed_units = max(0, placed_units)

    if task.status == "claimed":
        task.started_at = task.started_at or utcnow()
        await _move(db, task, "in_progress", picker_id, "start", note="Started by progress update")

    if finished:
        task.finished_at = utcnow()
        return await _move(db, task, "done", picker_id, "finish")

    append_audit(task, "progress", await actor_ref(db, picker_id), meta={
        "current_box_index": task.current_box_index,
        "current_step_index": task.current_step_index,
        "placed_kg": task.placed_kg,
        "placed_units": task.placed_units,
    })
    await db.flush()
    return task


async def finish_task(db: AsyncSession, task_id: str, picker_id: str) -> PickerTask:
    task = await get_task(db, task_id, for_update=True)
    _require_assignee(task, picker_id)
    task.finished_at = utcnow()
    return await _move(db, task, "done", picker_id, "finish")


async def flag_problem(
    db: AsyncSession, task_id: str, actor_id: str, note: str = ""
) -> PickerTask:
    task = await get_task(db, task_id, for_update=True)
    previous_picker = task.assigned_picker_id
    return await _move(
        db, task, "problem", actor_id, "problem", note=note,
        meta={"previous_picker_id": previous_picker},
    )


async def return_problem_to_ready(
    db: AsyncSession, task_id: str, actor_id: str, note: str = ""
) -> PickerTask:
    task = await get_task(db, task_id, for_update=True)
    if task.status != "problem":
        raise TaskTransitionError(task.id, task.status, "ready")
    _reset_progress(task)
    return await _move(db, task, "ready", actor_id, "resolve", note=note)


async def cancel_task(
    db: AsyncSession, task_id: str, actor_id: str, note: str = ""
) -> PickerTask:
    task = await get_task(db, task_id, for_update=True)
    return await _move(db, task, "cancelled", actor_id, "cancel", note=note)


async def set_priority(
    db: AsyncSession, task_id: str, priority: int, actor_id: str
) -> PickerTask:
    task = await get_task(db, task_id, for_update=True)
    if task.status in TERMINAL_STATUSES:
        raise TaskTransitionError(task.id, task.status, task.status)
    previous = task.priority
    task.priority = priority
    append_audit(
        task, "priority", await actor_ref(db, actor_id),
        meta={"from": previous, "to": priority},
    )
    await db.flush()
    return task


async def reassign(
    db: AsyncSession, task_id: str, new_picker_id: str, actor_id: str, note: str = ""
) -> PickerTask:
    task = await get_task(db, task_id, for_update=True)
    if task.status not in ACTIVE_STATUSES:
        raise BusinessLogicError(
            f"Only claimed or in-progress tasks can be reassigned (status={task.status})",
            error_code="NOT_REASSIGNABLE",
        )
    await _require_picker_for(db, task, new_picker_id)
    previous = task.assigned_picker_id
    task.assigned_picker_id = new_picker_id
    append_audit(
        task, "reassign", await actor_ref(db, actor_id), note=note,
        meta={"from_picker_id": previous, "to_picker_id": new_picker_id},
    )
    await db.flush()
    return task


async def bulk_cancel_by_order(
    db: AsyncSession,
    order_id: str,
    actor_id: str,
    note: str = "",
    *,
    work_center_id: str | None = None,
) -> int:
    """Cancel every non-terminal task of an order; returns how many changed."""
    stmt = select(PickerTask).where(
        PickerTask.order_id == order_id,
        PickerTask.status.not_in(TERMINAL_STATUSES),
    )
    if work_center_id:
        stmt = stmt.where(PickerTask.work_center_id == work_center_id)
    result = await db.execute(stmt.with_for_update())
    tasks = result.scalars().all()
    for task in tasks:
        await _move(db, task, "cancelled", actor_id, "cancel", note=note or "Order cancelled")
    return len(tasks)
