"""Picker task generation and shift queue queries.

generate_tasks_for_shift is the only writer that creates tasks. It is
idempotent and safe to run concurrently: every task is written with an
insert-only upsert keyed on (work center, shift, date, order), so a
task that already exists is never touched and two racing generators
create each task exactly once between them.

Flow:
    1. validate scope (shift name, date, work center) before any task access
    2. load the scope's orders; none → zero result
    3. skip orders that already have a task
    4. preload items, overrides and container types in one batch
    5. per order: compute plan → skip if empty → INSERT ... ON CONFLICT DO NOTHING
    6. optionally promote every open task in scope to ready

A failure while planning one order is logged and recorded in the
result; the rest of the batch continues.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import dialect_insert, utcnow
from app.middleware.exceptions import EmptyContainerCatalogError
from app.models.order import Order
from app.models.picker_task import PickerTask, rollup_plan_totals
from app.services.catalog import load_packing_inputs, order_lines
from app.services.packing import compute_packing_plan
from app.services.shifts import ShiftScope, get_work_center, parse_shift_date, validate_shift_name
from app.utils.audit import actor_ref, append_audit, audit_entry

logger = logging.getLogger(__name__)

# Queue display order; unknown statuses sort last
STATUS_ORDER = ("ready", "claimed", "in_progress", "open", "problem", "cancelled", "done")

TOP_READY_LIMIT = 10


@dataclass
class GenerationResult:
    shift_name: str
    shift_date: date
    orders_processed: int = 0
    created_count: int = 0
    already_existed: int = 0
    skipped_empty: int = 0
    promoted_to_ready: int = 0
    failed_orders: list[dict] = field(default_factory=list)


@dataclass
class TaskListing:
    items: list[PickerTask]
    total: int
    page: int
    limit: int
    counts_by_status: dict[str, int]
    counts_by_assignment: dict[str, int]


# ── Helpers ──────────────────────────────────────────────────

def in_scope(scope: ShiftScope):
    return and_(
        PickerTask.work_center_id == scope.work_center_id,
        PickerTask.shift_name == scope.shift_name,
        PickerTask.shift_date == scope.shift_date,
    )


def _status_rank():
    return case(
        {status: i for i, status in enumerate(STATUS_ORDER)},
        value=PickerTask.status,
        else_=len(STATUS_ORDER),
    )


def claim_order():
    """Ordering used by the claimer: priority desc, then FIFO, then id."""
    return (PickerTask.priority.desc(), PickerTask.created_at.asc(), PickerTask.id.asc())


async def validate_scope(
    db: AsyncSession, work_center_id: str, shift_name: str, shift_date: str | date
) -> ShiftScope:
    name = validate_shift_name(shift_name)
    parsed = parse_shift_date(shift_date)
    await get_work_center(db, work_center_id)
    return ShiftScope(work_center_id, name, parsed)


async def _insert_task_if_absent(db: AsyncSession, values: dict) -> str | None:
    """INSERT ... ON CONFLICT DO NOTHING; returns the new id or None if it existed."""
    insert = dialect_insert(db)
    stmt = (
        insert(PickerTask)
        .values(**values)
        .on_conflict_do_nothing(
            index_elements=["work_center_id", "shift_name", "shift_date", "order_id"]
        )
        .returning(PickerTask.id)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def promote_open_tasks(
    db: AsyncSession, scope: ShiftScope, actor: dict
) -> int:
    """Move every open task in scope to ready, auditing exactly the rows changed."""
    now = utcnow()
    result = await db.execute(
        update(PickerTask)
        .where(in_scope(scope), PickerTask.status == "open")
        .values(status="ready", updated_at=now)
        .returning(PickerTask.id)
        .execution_options(synchronize_session=False)
    )
    promoted_ids = list(result.scalars().all())
    if not promoted_ids:
        return 0

    tasks = await db.execute(
        select(PickerTask)
        .where(PickerTask.id.in_(promoted_ids))
        .execution_options(populate_existing=True)
    )
    for task in tasks.scalars().all():
        append_audit(task, "auto_ready", actor, note="Auto-set to ready after generation", at=now)
    await db.flush()
    return len(promoted_ids)


# ── Generation ───────────────────────────────────────────────

async def generate_tasks_for_shift(
    db: AsyncSession,
    work_center_id: str,
    shift_name: str,
    shift_date: str | date,
    actor_id: str | None,
    *,
    priority: int | None = None,
    auto_set_ready: bool | None = None,
) -> GenerationResult:
    scope = await validate_scope(db, work_center_id, shift_name, shift_date)
    outcome = GenerationResult(shift_name=scope.shift_name, shift_date=scope.shift_date)

    orders = (await db.execute(
        select(Order)
        .where(
            Order.work_center_id == scope.work_center_id,
            Order.shift_name == scope.shift_name,
            Order.shift_date == scope.shift_date,
        )
        .order_by(Order.created_at, Order.id)
    )).scalars().all()
    outcome.orders_processed = len(orders)
    if not orders:
        return outcome

    existing = set((await db.execute(
        select(PickerTask.order_id).where(in_scope(scope))
    )).scalars().all())
    outcome.already_existed = len(existing)
    pending = [order for order in orders if order.id not in existing]

    actor = await actor_ref(db, actor_id)
    if priority is None:
        priority = settings.default_task_priority

    if pending:
        item_ids = set().union(*(order.item_ids for order in pending))
        inputs = await load_packing_inputs(db, item_ids)
        if not inputs.containers:
            raise EmptyContainerCatalogError()

        for order in pending:
            try:
                plan = compute_packing_plan(
                    order_lines(order),
                    inputs.items_by_id,
                    inputs.containers,
                    inputs.overrides_by_id,
                )
            except Exception as exc:
                logger.exception("Packing plan failed for order %s", order.id)
                outcome.failed_orders.append({"order_id": order.id, "error": str(exc)})
                continue

            if plan.is_empty:
                logger.info(
                    "Order %s produced no boxes (%d warnings); no task created",
                    order.id, len(plan.summary.warnings),
                )
                outcome.skipped_empty += 1
                continue

            plan_doc = plan.to_dict()
            total_kg, total_liters, total_units = rollup_plan_totals(plan_doc)
            now = utcnow()
            new_id = await _insert_task_if_absent(db, {
                "id": str(uuid.uuid4()),
                "work_center_id": scope.work_center_id,
                "shift_name": scope.shift_name,
                "shift_date": scope.shift_date,
                "order_id": order.id,
                "plan": plan_doc,
                "total_est_kg": total_kg,
                "total_liters": total_liters,
                "total_est_units": total_units,
                "status": "open",
                "priority": priority,
                "assigned_picker_id": None,
                "history_audit_trail": [
                    audit_entry("create", actor, note="Generated from order", at=now,
                                meta={"boxes": len(plan_doc["boxes"])}),
                ],
                "created_by": actor_id,
                "created_at": now,
                "updated_at": now,
            })
            if new_id is None:
                outcome.already_existed += 1
            else:
                outcome.created_count += 1

    if auto_set_ready is None:
        auto_set_ready = settings.auto_set_ready_on_generate
    if auto_set_ready:
        outcome.promoted_to_ready = await promote_open_tasks(db, scope, actor)

    logger.info(
        "Generated tasks for %s/%s/%s: created=%d existing=%d empty=%d failed=%d",
        scope.work_center_id, scope.shift_name, scope.shift_date,
        outcome.created_count, outcome.already_existed,
        outcome.skipped_empty, len(outcome.failed_orders),
    )
    return outcome


# ── Queries ──────────────────────────────────────────────────

async def list_tasks_for_shift(
    db: AsyncSession,
    work_center_id: str,
    shift_name: str,
    shift_date: str | date,
    *,
    status: str | None = None,
    assigned_only: bool = False,
    unassigned_only: bool = False,
    picker_id: str | None = None,
    page: int = 1,
    limit: int | None = None,
) -> TaskListing:
    scope = await validate_scope(db, work_center_id, shift_name, shift_date)
    page = max(1, page)
    limit = min(max(1, limit or settings.task_list_default_limit), settings.task_list_max_limit)

    filters = [in_scope(scope)]
    if status:
        filters.append(PickerTask.status == status)
    if assigned_only:
        filters.append(PickerTask.assigned_picker_id.is_not(None))
    if unassigned_only:
        filters.append(PickerTask.assigned_picker_id.is_(None))
    if picker_id:
        filters.append(PickerTask.assigned_picker_id == picker_id)

    total = (await db.execute(
        select(func.count()).select_from(PickerTask).where(*filters)
    )).scalar_one()

    items = (await db.execute(
        select(PickerTask)
        .where(*filters)
        .order_by(_status_rank(), *claim_order())
        .offset((page - 1) * limit)
        .limit(limit)
    )).scalars().all()

    by_status = {
        row[0]: row[1]
        for row in (await db.execute(
            select(PickerTask.status, func.count())
            .where(in_scope(scope))
            .group_by(PickerTask.status)
        )).all()
    }

    assigned = PickerTask.assigned_picker_id.is_not(None)
    by_assignment = {"assigned": 0, "unassigned": 0}
    for is_assigned, count in (await db.execute(
        select(assigned, func.count()).where(in_scope(scope)).group_by(assigned)
    )).all():
        by_assignment["assigned" if is_assigned else "unassigned"] += count

    return TaskListing(
        items=list(items),
        total=total,
        page=page,
        limit=limit,
        counts_by_status=by_status,
        counts_by_assignment=by_assignment,
    )


async def ensure_and_list_tasks_for_shift(
    db: AsyncSession,
    work_center_id: str,
    shift_name: str,
    shift_date: str | date,
    actor_id: str | None,
    **list_options,
) -> tuple[GenerationResult, TaskListing]:
    generated = await generate_tasks_for_shift(
        db, work_center_id, shift_name, shift_date, actor_id
    )
    listing = await list_tasks_for_shift(
        db, work_center_id, shift_name, shift_date, **list_options
    )
    return generated, listing


async def summarize_shift_queue(
    db: AsyncSession,
    work_center_id: str,
    shift_name: str,
    shift_date: str | date,
) -> dict:
    scope = await validate_scope(db, work_center_id, shift_name, shift_date)

    rows = (await db.execute(
        select(
            PickerTask.status,
            func.count(),
            func.coalesce(func.sum(PickerTask.total_est_kg), 0.0),
            func.coalesce(func.sum(PickerTask.total_liters), 0.0),
        )
        .where(in_scope(scope))
        .group_by(PickerTask.status)
    )).all()

    top_ready = (await db.execute(
        select(PickerTask)
        .where(in_scope(scope), PickerTask.status == "ready")
        .order_by(*claim_order())
        .limit(TOP_READY_LIMIT)
    )).scalars().all()

    return {
        "shift_name": scope.shift_name,
        "shift_date": scope.shift_date,
        "counts_by_status": {row[0]: row[1] for row in rows},
        "total": sum(row[1] for row in rows),
        "total_est_kg": round(sum(float(row[2]) for row in rows), 3),
        "total_liters": round(sum(float(row[3]) for row in rows), 3),
        "top_ready": list(top_ready),
    }
