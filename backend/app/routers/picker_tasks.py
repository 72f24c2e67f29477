"""Picker task router.

All endpoints act within the caller's work center.

Endpoints:
    POST  /api/picker-tasks/generate                Generate tasks for a shift (idempotent)
    GET   /api/picker-tasks/shift                   List a shift's tasks (optionally ensure first)
    GET   /api/picker-tasks/shift/summary           Queue counts + top ready tasks
    GET   /api/picker-tasks/next                    Peek at the task claim-first would take
    POST  /api/picker-tasks/claim-first             Claim the next ready task of the current shift
    POST  /api/picker-tasks/by-order/{order_id}/cancel  Cancel every open task of an order
    GET   /api/picker-tasks/{task_id}               Single task detail with plan
    POST  /api/picker-tasks/{task_id}/claim         Claim a specific ready task
    POST  /api/picker-tasks/{task_id}/ready         open or problem → ready
    POST  /api/picker-tasks/{task_id}/start         claimed → in_progress
    POST  /api/picker-tasks/{task_id}/progress      Record progress (may finish)
    POST  /api/picker-tasks/{task_id}/finish        in_progress → done
    POST  /api/picker-tasks/{task_id}/problem       Flag a problem
    POST  /api/picker-tasks/{task_id}/resolve       problem → ready
    POST  /api/picker-tasks/{task_id}/cancel        Cancel a task
    PATCH /api/picker-tasks/{task_id}/priority      Change queue priority
    POST  /api/picker-tasks/{task_id}/reassign      Hand an active task to another picker
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import get_current_user, get_current_work_center, require_role
from app.database import get_db
from app.models.picker_task import PickerTask
from app.models.user import User, UserRole
from app.schemas.picker_task import (
    BulkCancelResult,
    ClaimResultOut,
    GenerateTasksRequest,
    GenerateTasksResult,
    NoteRequest,
    PickerTaskOut,
    PickerTaskSummary,
    PriorityUpdate,
    ProgressUpdate,
    ReassignRequest,
    ShiftSummaryOut,
    TaskListOut,
)
from app.services import task_lifecycle
from app.services.picker_tasks import (
    generate_tasks_for_shift,
    list_tasks_for_shift,
    summarize_shift_queue,
)
from app.services.shifts import parse_shift_date, resolve_current_shift, validate_shift_name
from app.services.task_claims import (
    claim_first_ready_for_current_shift,
    claim_task,
    peek_next_ready,
)

router = APIRouter()

_supervisors = require_role(UserRole.ADMINISTRATOR, UserRole.SUPERVISOR)


# ── Helpers ──────────────────────────────────────────────────

async def _task_in_work_center(
    db: AsyncSession, task_id: str, work_center_id: str
) -> PickerTask:
    """Load a task, hiding tasks of other work centers behind a 404."""
    task = await db.get(PickerTask, task_id)
    if task is None or task.work_center_id != work_center_id:
        raise HTTPException(status_code=404, detail="Picker task not found")
    return task


def _detail(task: PickerTask) -> PickerTaskOut:
    return PickerTaskOut.model_validate(task)


# ── Generation & queue views ─────────────────────────────────

@router.post("/generate", response_model=GenerateTasksResult)
async def generate_tasks(
    body: GenerateTasksRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(_supervisors),
    work_center_id: str = Depends(get_current_work_center),
):
    outcome = await generate_tasks_for_shift(
        db, work_center_id, body.shift_name, body.shift_date, user.id,
        priority=body.priority, auto_set_ready=body.auto_set_ready,
    )
    return GenerateTasksResult.model_validate(outcome)


@router.get("/shift", response_model=TaskListOut)
async def list_shift_tasks(
    shift_name: str = Query(...),
    shift_date: str = Query(..., description="yyyy-mm-dd"),
    status: str | None = Query(None),
    assigned_only: bool = Query(False),
    unassigned_only: bool = Query(False),
    mine: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    ensure: bool = Query(False, description="Generate missing tasks before listing"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    work_center_id: str = Depends(get_current_work_center),
):
    generated = None
    if ensure:
        if user.role == UserRole.PICKER:
            raise HTTPException(
                status_code=http_status.HTTP_403_FORBIDDEN,
                detail="Only supervisors can generate tasks",
            )
        generated = await generate_tasks_for_shift(
            db, work_center_id, shift_name, shift_date, user.id
        )

    listing = await list_tasks_for_shift(
        db, work_center_id, shift_name, shift_date,
        status=status,
        assigned_only=assigned_only,
        unassigned_only=unassigned_only,
        picker_id=user.id if mine else None,
        page=page,
        limit=limit,
    )
    return TaskListOut(
        items=[PickerTaskSummary.model_validate(t) for t in listing.items],
        total=listing.total,
        page=listing.page,
        limit=listing.limit,
        shift_name=validate_shift_name(shift_name),
        shift_date=parse_shift_date(shift_date),
        counts_by_status=listing.counts_by_status,
        counts_by_assignment=listing.counts_by_assignment,
        generated=GenerateTasksResult.model_validate(generated) if generated else None,
    )


@router.get("/shift/summary", response_model=ShiftSummaryOut)
async def shift_summary(
    shift_name: str = Query(...),
    shift_date: str = Query(..., description="yyyy-mm-dd"),
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(_supervisors),
    work_center_id: str = Depends(get_current_work_center),
):
    summary = await summarize_shift_queue(db, work_center_id, shift_name, shift_date)
    summary["top_ready"] = [PickerTaskSummary.model_validate(t) for t in summary["top_ready"]]
    return ShiftSummaryOut(**summary)


# ── Claiming ─────────────────────────────────────────────────

@router.get("/next", response_model=PickerTaskSummary)
async def next_ready_task(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
    work_center_id: str = Depends(get_current_work_center),
):
    scope = await resolve_current_shift(db, work_center_id)
    if scope is None:
        raise HTTPException(status_code=404, detail="No active shift right now")
    task = await peek_next_ready(db, scope)
    if task is None:
        raise HTTPException(
            status_code=404, detail="No READY tasks available for the current shift"
        )
    return PickerTaskSummary.model_validate(task)


@router.post("/claim-first", response_model=ClaimResultOut)
async def claim_first(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    work_center_id: str = Depends(get_current_work_center),
):
    result = await claim_first_ready_for_current_shift(db, work_center_id, user.id)
    if result.scope is None:
        raise HTTPException(status_code=404, detail="No active shift right now")
    if result.task is None:
        raise HTTPException(
            status_code=404, detail="No READY tasks available for the current shift"
        )
    return ClaimResultOut(
        shift_name=result.scope.shift_name,
        shift_date=result.scope.shift_date,
        already_assigned=result.already_assigned,
        task=_detail(result.task),
    )


@router.post("/by-order/{order_id}/cancel", response_model=BulkCancelResult)
async def cancel_order_tasks(
    order_id: str,
    body: NoteRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(_supervisors),
    work_center_id: str = Depends(get_current_work_center),
):
    cancelled = await task_lifecycle.bulk_cancel_by_order(
        db, order_id, user.id, body.note, work_center_id=work_center_id
    )
    return BulkCancelResult(order_id=order_id, cancelled=cancelled)


# ── Single task ──────────────────────────────────────────────

@router.get("/{task_id}", response_model=PickerTaskOut)
async def get_task(
    task_id: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
    work_center_id: str = Depends(get_current_work_center),
):
    return _detail(await _task_in_work_center(db, task_id, work_center_id))


@router.post("/{task_id}/claim", response_model=PickerTaskOut)
async def claim_specific(
    task_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    work_center_id: str = Depends(get_current_work_center),
):
    await _task_in_work_center(db, task_id, work_center_id)
    task = await claim_task(db, task_id, user.id)
    if task is None:
        raise HTTPException(status_code=409, detail="Task is no longer available")
    return _detail(task)


@router.post("/{task_id}/ready", response_model=PickerTaskOut)
async def move_to_ready(
    task_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(_supervisors),
    work_center_id: str = Depends(get_current_work_center),
):
    await _task_in_work_center(db, task_id, work_center_id)
    return _detail(await task_lifecycle.move_to_ready(db, task_id, user.id))


@router.post("/{task_id}/start", response_model=PickerTaskOut)
async def start_picking(
    task_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    work_center_id: str = Depends(get_current_work_center),
):
    await _task_in_work_center(db, task_id, work_center_id)
    return _detail(await task_lifecycle.start_picking(db, task_id, user.id))


@router.post("/{task_id}/progress", response_model=PickerTaskOut)
async def update_progress(
    task_id: str,
    body: ProgressUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    work_center_id: str = Depends(get_current_work_center),
):
    await _task_in_work_center(db, task_id, work_center_id)
    task = await task_lifecycle.update_progress(
        db, task_id, user.id, **body.model_dump()
    )
    return _detail(task)


@router.post("/{task_id}/finish", response_model=PickerTaskOut)
async def finish_task(
    task_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    work_center_id: str = Depends(get_current_work_center),
):
    await _task_in_work_center(db, task_id, work_center_id)
    return _detail(await task_lifecycle.finish_task(db, task_id, user.id))


@router.post("/{task_id}/problem", response_model=PickerTaskOut)
async def flag_problem(
    task_id: str,
    body: NoteRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    work_center_id: str = Depends(get_current_work_center),
):
    task = await _task_in_work_center(db, task_id, work_center_id)
    if user.role == UserRole.PICKER and task.assigned_picker_id != user.id:
        raise HTTPException(status_code=403, detail="Picker task is not assigned to you")
    return _detail(await task_lifecycle.flag_problem(db, task_id, user.id, body.note))


@router.post("/{task_id}/resolve", response_model=PickerTaskOut)
async def resolve_problem(
    task_id: str,
    body: NoteRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(_supervisors),
    work_center_id: str = Depends(get_current_work_center),
):
    await _task_in_work_center(db, task_id, work_center_id)
    return _detail(await task_lifecycle.return_problem_to_ready(db, task_id, user.id, body.note))


@router.post("/{task_id}/cancel", response_model=PickerTaskOut)
async def cancel_task(
    task_id: str,
    body: NoteRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(_supervisors),
    work_center_id: str = Depends(get_current_work_center),
):
    await _task_in_work_center(db, task_id, work_center_id)
    return _detail(await task_lifecycle.cancel_task(db, task_id, user.id, body.note))


@router.patch("/{task_id}/priority", response_model=PickerTaskOut)
async def set_priority(
    task_id: str,
    body: PriorityUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(_supervisors),
    work_center_id: str = Depends(get_current_work_center),
):
    await _task_in_work_center(db, task_id, work_center_id)
    return _detail(await task_lifecycle.set_priority(db, task_id, body.priority, user.id))


@router.post("/{task_id}/reassign", response_model=PickerTaskOut)
async def reassign_task(
    task_id: str,
    body: ReassignRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(_supervisors),
    work_center_id: str = Depends(get_current_work_center),
):
    await _task_in_work_center(db, task_id, work_center_id)
    task = await task_lifecycle.reassign(db, task_id, body.picker_id, user.id, body.note)
    return _detail(task)
