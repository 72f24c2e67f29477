"""Pydantic schemas for picker task endpoints."""

from datetime import date, datetime

from pydantic import BaseModel, Field

from app.schemas.common import PaginatedResponse


# ── Generation ───────────────────────────────────────────────

class GenerateTasksRequest(BaseModel):
    """Payload for POST /api/picker-tasks/generate."""
    shift_name: str
    shift_date: str = Field(..., description="yyyy-mm-dd")
    priority: int | None = None
    auto_set_ready: bool | None = None  # None = use server default


class FailedOrder(BaseModel):
    order_id: str
    error: str


class GenerateTasksResult(BaseModel):
    shift_name: str
    shift_date: date
    orders_processed: int
    created_count: int
    already_existed: int
    skipped_empty: int
    promoted_to_ready: int
    failed_orders: list[FailedOrder] = []

    model_config = {"from_attributes": True}


# ── Task views ───────────────────────────────────────────────

class TaskProgress(BaseModel):
    current_box_index: int = 0
    current_step_index: int = 0
    placed_kg: float = 0.0
    placed_units: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None


class PickerTaskSummary(BaseModel):
    id: str
    work_center_id: str
    shift_name: str
    shift_date: date
    order_id: str
    status: str
    priority: int
    assigned_picker_id: str | None = None
    total_est_kg: float
    total_liters: float
    total_est_units: int
    box_count: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PickerTaskOut(PickerTaskSummary):
    plan: dict
    progress: TaskProgress
    history_audit_trail: list[dict] = []
    notes: str | None = None
    created_by: str | None = None


class TaskListOut(PaginatedResponse[PickerTaskSummary]):
    shift_name: str
    shift_date: date
    counts_by_status: dict[str, int]
    counts_by_assignment: dict[str, int]
    generated: GenerateTasksResult | None = None


class ShiftSummaryOut(BaseModel):
    shift_name: str
    shift_date: date
    counts_by_status: dict[str, int]
    total: int
    total_est_kg: float
    total_liters: float
    top_ready: list[PickerTaskSummary]


class ClaimResultOut(BaseModel):
    shift_name: str
    shift_date: date
    already_assigned: bool
    task: PickerTaskOut


# ── Transitions ──────────────────────────────────────────────

class ProgressUpdate(BaseModel):
    """Payload for POST /api/picker-tasks/{task_id}/progress."""
    current_box_index: int | None = Field(None, ge=0)
    current_step_index: int | None = Field(None, ge=0)
    placed_kg: float | None = Field(None, ge=0)
    placed_units: int | None = Field(None, ge=0)
    finished: bool = False


class NoteRequest(BaseModel):
    note: str = ""


class PriorityUpdate(BaseModel):
    priority: int


class ReassignRequest(BaseModel):
    picker_id: str
    note: str = ""


class BulkCancelResult(BaseModel):
    order_id: str
    cancelled: int
