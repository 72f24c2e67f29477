"""Packing preview router.

Runs the packing engine without creating tasks, for supervisors
checking how an order will be boxed.

Endpoints:
    POST  /api/packing/preview     Packing plan for ad-hoc order lines
    GET   /api/packing/capacity    Container estimate for one item + quantity
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import get_current_user
from app.database import get_db
from app.middleware.exceptions import EmptyContainerCatalogError
from app.models.user import User
from app.schemas.packing import ContainerEstimateOut, PackingPlanOut, PackingPreviewRequest
from app.services.catalog import load_packing_inputs
from app.services.container_capacity import estimate_containers_for_quantity
from app.services.packing import OrderLine, compute_packing_plan

router = APIRouter()


@router.post("/preview", response_model=PackingPlanOut)
async def preview_plan(
    body: PackingPreviewRequest,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    lines = [
        OrderLine(item_id=line.item_id, quantity_kg=line.quantity_kg, units=line.units)
        for line in body.lines
    ]
    inputs = await load_packing_inputs(db, {line.item_id for line in lines})
    plan = compute_packing_plan(
        lines, inputs.items_by_id, inputs.containers, inputs.overrides_by_id
    )
    return plan.to_dict()


@router.get("/capacity", response_model=ContainerEstimateOut)
async def capacity_estimate(
    item_id: str = Query(...),
    quantity_kg: float = Query(..., gt=0),
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
):
    inputs = await load_packing_inputs(db, {item_id})
    item = inputs.items_by_id.get(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    if not inputs.containers:
        raise EmptyContainerCatalogError()

    estimate = estimate_containers_for_quantity(
        item, quantity_kg, inputs.containers, inputs.overrides_by_id.get(item_id)
    )
    if estimate is None:
        raise HTTPException(status_code=422, detail="No container can hold this item")
    return ContainerEstimateOut.model_validate(estimate)
