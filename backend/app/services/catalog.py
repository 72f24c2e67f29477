"""Batched catalog lookups feeding the packing engine.

Each loader issues a single query regardless of how many ids are
asked for; the generator calls load_packing_inputs once per run.
The row → engine conversions live here so the models stay free of
packing types.
"""

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.item import Item, ItemPacking
from app.models.order import Order
from app.models.package_size import PackageSize
from app.services.packing import (
    CatalogItem,
    ContainerSpec,
    Fragility,
    OrderLine,
    PackingOverride,
    calc_usable_liters,
)


@dataclass
class PackingInputs:
    items_by_id: dict[str, CatalogItem] = field(default_factory=dict)
    containers: list[ContainerSpec] = field(default_factory=list)
    overrides_by_id: dict[str, PackingOverride] = field(default_factory=dict)


# ── Row conversions ──────────────────────────────────────────

def catalog_item_from(item: Item) -> CatalogItem:
    return CatalogItem(
        id=item.id,
        name=item.name,
        category=item.category,
        type=item.type,
        variety=item.variety,
        avg_weight_per_unit_gr=item.avg_weight_per_unit_gr,
    )


def override_from(row: ItemPacking) -> PackingOverride:
    return PackingOverride(
        fragility=Fragility(row.fragility) if row.fragility else None,
        allow_mixing=row.allow_mixing,
        requires_vented_box=row.requires_vented_box,
        min_box_type=row.min_box_type,
        max_weight_per_box_kg=row.max_weight_per_box_kg,
        max_kg_per_bag=row.max_kg_per_bag,
        density_kg_per_l=row.density_kg_per_l,
        unit_vol_liters=row.unit_vol_liters,
    )


def usable_liters_of(size: PackageSize) -> float:
    """Stored usable volume, or inner volume minus headroom when unset."""
    if size.usable_liters is not None:
        return size.usable_liters
    return calc_usable_liters(
        size.inner_length_cm,
        size.inner_width_cm,
        size.inner_height_cm,
        size.headroom_pct or 0.0,
    )


def container_spec_from(size: PackageSize) -> ContainerSpec:
    return ContainerSpec(
        key=size.key,
        name=size.name,
        usable_liters=usable_liters_of(size),
        max_weight_kg=size.max_weight_kg,
        vented=bool(size.vented),
        max_skus_per_box=size.max_skus_per_box,
        mixing_allowed=True if size.mixing_allowed is None else size.mixing_allowed,
    )


def order_lines(order: Order) -> list[OrderLine]:
    return [
        OrderLine(
            item_id=str(line.get("item_id")),
            quantity_kg=line.get("quantity_kg"),
            units=line.get("units"),
        )
        for line in (order.items or [])
        if line.get("item_id")
    ]


# ── Loaders ──────────────────────────────────────────────────

async def load_items(db: AsyncSession, item_ids: set[str]) -> dict[str, CatalogItem]:
    if not item_ids:
        return {}
    result = await db.execute(select(Item).where(Item.id.in_(item_ids)))
    return {item.id: catalog_item_from(item) for item in result.scalars().all()}


async def load_container_specs(db: AsyncSession) -> list[ContainerSpec]:
    result = await db.execute(
        select(PackageSize)
        .where(PackageSize.is_active == True)  # noqa: E712
        .order_by(PackageSize.key)
    )
    return [container_spec_from(size) for size in result.scalars().all()]


async def load_packing_overrides(
    db: AsyncSession, item_ids: set[str]
) -> dict[str, PackingOverride]:
    if not item_ids:
        return {}
    result = await db.execute(
        select(ItemPacking).where(ItemPacking.item_id.in_(item_ids))
    )
    return {row.item_id: override_from(row) for row in result.scalars().all()}


async def load_packing_inputs(db: AsyncSession, item_ids: set[str]) -> PackingInputs:
    return PackingInputs(
        items_by_id=await load_items(db, item_ids),
        containers=await load_container_specs(db),
        overrides_by_id=await load_packing_overrides(db, item_ids),
    )
