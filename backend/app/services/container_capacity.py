"""Container capacity estimates for a single item.

Answers "how much of this item fits in one container, and how many
containers does a quantity need?" for planning screens and farmer
order sizing. Shares classification and overrides with the packing
engine so both agree on density.
"""

import math
from dataclasses import dataclass

from app.services.packing import (
    UNIT_VOLUME_FALLBACK,
    CatalogItem,
    ContainerSpec,
    PackingOverride,
    classify_item,
    resolve_profile,
)


@dataclass(frozen=True)
class ContainerCapacity:
    container_key: str
    usable_liters: float
    density_kg_per_l: float
    max_kg_by_volume: float
    max_kg_by_weight: float
    limiting_kg: float
    limiting_factor: str  # weight | volume
    approx_max_units: int | None


@dataclass(frozen=True)
class ContainerEstimate:
    item_id: str
    quantity_kg: float
    container: ContainerCapacity
    containers_needed: int


def estimate_container_capacity_for_item(
    item: CatalogItem,
    container: ContainerSpec,
    override: PackingOverride | None = None,
) -> ContainerCapacity:
    bucket = classify_item(item)
    profile = resolve_profile(bucket, override)

    by_volume = container.usable_liters * profile.density_kg_per_l
    by_weight = container.max_weight_kg
    limiting = min(by_volume, by_weight)

    unit_volume = profile.unit_vol_liters or UNIT_VOLUME_FALLBACK.get(bucket)
    approx_units = None
    if item.avg_weight_per_unit_gr and item.avg_weight_per_unit_gr > 0:
        approx_units = math.floor(limiting / (item.avg_weight_per_unit_gr / 1000))
    elif unit_volume:
        approx_units = math.floor(container.usable_liters / unit_volume)

    return ContainerCapacity(
        container_key=container.key,
        usable_liters=round(container.usable_liters, 3),
        density_kg_per_l=profile.density_kg_per_l,
        max_kg_by_volume=round(by_volume, 3),
        max_kg_by_weight=round(by_weight, 3),
        limiting_kg=round(limiting, 3),
        limiting_factor="weight" if by_weight <= by_volume else "volume",
        approx_max_units=approx_units,
    )


def estimate_containers_for_quantity(
    item: CatalogItem,
    quantity_kg: float,
    containers: list[ContainerSpec],
    override: PackingOverride | None = None,
) -> ContainerEstimate | None:
    """Pick the smallest container that holds everything, else the largest.

    Returns None for a non-positive quantity or an empty catalog.
    """
    if quantity_kg <= 0 or not containers:
        return None

    capacities = sorted(
        (estimate_container_capacity_for_item(item, c, override) for c in containers),
        key=lambda cap: (cap.limiting_kg, cap.usable_liters, cap.container_key),
    )
    usable = [cap for cap in capacities if cap.limiting_kg > 0]
    if not usable:
        return None

    best = next((cap for cap in usable if cap.limiting_kg >= quantity_kg), usable[-1])
    return ContainerEstimate(
        item_id=item.id,
        quantity_kg=quantity_kg,
        container=best,
        containers_needed=math.ceil(quantity_kg / best.limiting_kg),
    )
