"""Pydantic schemas for packing plan previews and capacity estimates."""

from pydantic import BaseModel, Field


class OrderLineIn(BaseModel):
    item_id: str
    quantity_kg: float | None = Field(None, ge=0)
    units: float | None = Field(None, ge=0)


class PackingPreviewRequest(BaseModel):
    """Payload for POST /api/packing/preview."""
    lines: list[OrderLineIn] = Field(..., min_length=1)


class PieceOut(BaseModel):
    item_id: str
    item_name: str
    piece_type: str
    mode: str
    qty_kg: float | None = None
    units: int | None = None
    liters: float
    est_weight_kg: float
    fragility: str


class BoxOut(BaseModel):
    box_no: int
    box_type: str
    vented: bool
    est_fill_liters: float
    est_weight_kg: float
    fill_pct: float
    contents: list[PieceOut]


class ItemTotalsOut(BaseModel):
    bags: int
    bundles: int
    total_kg: float
    total_units: int


class PlanSummaryOut(BaseModel):
    total_boxes: int
    by_item: dict[str, ItemTotalsOut]
    warnings: list[str]
    total_kg: float
    total_liters: float


class PackingPlanOut(BaseModel):
    boxes: list[BoxOut]
    summary: PlanSummaryOut


class ContainerCapacityOut(BaseModel):
    container_key: str
    usable_liters: float
    density_kg_per_l: float
    max_kg_by_volume: float
    max_kg_by_weight: float
    limiting_kg: float
    limiting_factor: str
    approx_max_units: int | None = None

    model_config = {"from_attributes": True}


class ContainerEstimateOut(BaseModel):
    item_id: str
    quantity_kg: float
    container: ContainerCapacityOut
    containers_needed: int

    model_config = {"from_attributes": True}
