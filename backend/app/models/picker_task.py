"""PickerTask — one packing plan for one order in one shift.

A task is created once per (work center, shift, date, order) and then
claimed and executed by exactly one picker.

Lifecycle:  open → ready → claimed → in_progress → done
            (problem / cancelled reachable along the way; see
             app.services.task_lifecycle for the full edge list)

The plan is an immutable snapshot of the packing engine's output. The
rollup totals are derived from plan["boxes"] before every write.
"""

import uuid
from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint, Date, DateTime, Float, ForeignKey, Index,
    Integer, JSON, String, Text, UniqueConstraint, event,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow

PICKER_TASK_STATUSES = (
    "open", "ready", "claimed", "in_progress", "done", "problem", "cancelled",
)
ASSIGNED_STATUSES = ("claimed", "in_progress", "done")
ACTIVE_STATUSES = ("claimed", "in_progress")
TERMINAL_STATUSES = ("done", "cancelled")

_assigned_list = ", ".join(f"'{s}'" for s in ASSIGNED_STATUSES)


def rollup_plan_totals(plan: dict | None) -> tuple[float, float, int]:
    """Sum (kg, liters, units) over every piece in every box of a plan."""
    total_kg = 0.0
    total_liters = 0.0
    total_units = 0
    for box in (plan or {}).get("boxes") or []:
        for piece in box.get("contents") or []:
            total_kg += float(piece.get("est_weight_kg") or 0)
            total_liters += float(piece.get("liters") or 0)
            if piece.get("mode") == "unit":
                total_units += int(piece.get("units") or 0)
    return round(total_kg, 3), round(total_liters, 3), total_units


class PickerTask(Base):
    __tablename__ = "picker_tasks"
    __table_args__ = (
        UniqueConstraint(
            "work_center_id", "shift_name", "shift_date", "order_id",
            name="uq_picker_task_per_shift_order",
        ),
        CheckConstraint(
            f"(status IN ({_assigned_list})) = (assigned_picker_id IS NOT NULL)",
            name="ck_picker_task_assignment",
        ),
        Index(
            "ix_picker_tasks_queue",
            "work_center_id", "shift_date", "shift_name", "status", "priority", "created_at",
        ),
        Index(
            "ix_picker_tasks_active_for_picker",
            "work_center_id", "shift_date", "shift_name", "assigned_picker_id", "status",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Scope ────────────────────────────────────────────────
    work_center_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("work_centers.id"), nullable=False
    )
    shift_name: Mapped[str] = mapped_column(String(20), nullable=False)
    shift_date: Mapped[date] = mapped_column(Date, nullable=False)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id"), nullable=False, index=True
    )

    # ── Plan snapshot + rollups ──────────────────────────────
    plan: Mapped[dict] = mapped_column(JSON, nullable=False)
    total_est_kg: Mapped[float] = mapped_column(Float, default=0.0)
    total_liters: Mapped[float] = mapped_column(Float, default=0.0)
    total_est_units: Mapped[int] = mapped_column(Integer, default=0)

    # ── Queue state ──────────────────────────────────────────
    # open | ready | claimed | in_progress | done | problem | cancelled
    status: Mapped[str] = mapped_column(String(20), default="open", nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    assigned_picker_id: Mapped[str | None] = mapped_column(String(36))

    # ── Progress ─────────────────────────────────────────────
    current_box_index: Mapped[int] = mapped_column(Integer, default=0)
    current_step_index: Mapped[int] = mapped_column(Integer, default=0)
    placed_kg: Mapped[float] = mapped_column(Float, default=0.0)
    placed_units: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime | None] = mapped_column(DateTime)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime)

    # ── Metadata ─────────────────────────────────────────────
    # [{action, note, by: {id, name, role}, at, meta}, ...] append-only
    history_audit_trail: Mapped[list] = mapped_column(JSON, default=list)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    @property
    def progress(self) -> dict:
        return {
            "current_box_index": self.current_box_index or 0,
            "current_step_index": self.current_step_index or 0,
            "placed_kg": self.placed_kg or 0.0,
            "placed_units": self.placed_units or 0,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }

    @property
    def box_count(self) -> int:
        return len((self.plan or {}).get("boxes") or [])

    def refresh_totals(self) -> None:
        self.total_est_kg, self.total_liters, self.total_est_units = rollup_plan_totals(
            self.plan
        )


@event.listens_for(PickerTask, "before_insert")
@event.listens_for(PickerTask, "before_update")
def _refresh_picker_task_totals(mapper, connection, target: PickerTask) -> None:
    target.refresh_totals()
