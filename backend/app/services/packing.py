"""Packing engine — turns an order's lines into a box-by-box packing plan.

Pure and deterministic: no database access, no clock, no randomness.
The same lines, catalog, containers and overrides always produce the
same plan. Inputs are never mutated.

Pipeline:
    1. classify each item into a produce bucket → default PackingProfile
    2. overlay per-item overrides (each present field replaces the default)
    3. cut each line into pieces (bags by weight/units, or bundles)
    4. auto-split pieces too big for the largest compatible container
    5. order pieces sturdy → very fragile, larger first
    6. first-fit into open boxes, opening the smallest feasible container
       when nothing open can take the piece
    7. summarise boxes, per-item totals, and warnings

Data problems (unknown item, no container with vents, ...) never raise;
they become plan warnings. The only error is an empty container catalog.

Constants:
    - BAG_OVERHEAD_LITERS:     air + film added to every bag's volume
    - DEFAULT_UNIT_WEIGHT_KG:  unit weight when the catalog has none
    - MAX_SPLIT_DEPTH:         halving rounds before a piece is left as-is
"""

from __future__ import annotations

import enum
import math
import re
from dataclasses import dataclass, field, replace

from app.middleware.exceptions import EmptyContainerCatalogError

BAG_OVERHEAD_LITERS = 0.2
DEFAULT_UNIT_WEIGHT_KG = 0.2
MAX_SPLIT_DEPTH = 6
EPSILON = 1e-9


class Fragility(str, enum.Enum):
    VERY_FRAGILE = "very_fragile"
    FRAGILE = "fragile"
    NORMAL = "normal"
    STURDY = "sturdy"


# Bottom of the box first
PLACEMENT_RANK = {
    Fragility.STURDY: 0,
    Fragility.NORMAL: 1,
    Fragility.FRAGILE: 2,
    Fragility.VERY_FRAGILE: 3,
}

MAX_KG_PER_BAG = {
    Fragility.VERY_FRAGILE: 0.7,
    Fragility.FRAGILE: 1.5,
    Fragility.NORMAL: 2.5,
    Fragility.STURDY: 3.0,
}


class ProduceBucket(str, enum.Enum):
    LEAFY = "leafy"
    HERBS = "herbs"
    BERRIES = "berries"
    TOMATOES = "tomatoes"
    CUCUMBERS = "cucumbers"
    PEPPERS = "peppers"
    APPLES = "apples"
    CITRUS = "citrus"
    ROOTS = "roots"
    BUNDLED = "bundled"
    GENERIC = "generic"


# ── Inputs ───────────────────────────────────────────────────

@dataclass(frozen=True)
class CatalogItem:
    id: str
    name: str
    category: str | None = None
    type: str | None = None
    variety: str | None = None
    avg_weight_per_unit_gr: float | None = None


@dataclass(frozen=True)
class OrderLine:
    item_id: str
    quantity_kg: float | None = None
    units: float | None = None

    @property
    def mode(self) -> str | None:
        if self.quantity_kg is not None and self.quantity_kg > 0:
            return "kg"
        if self.units is not None and self.units > 0:
            return "unit"
        return None


@dataclass(frozen=True)
class ContainerSpec:
    key: str
    name: str
    usable_liters: float
    max_weight_kg: float
    vented: bool = False
    max_skus_per_box: int | None = None
    mixing_allowed: bool = True


@dataclass(frozen=True)
class PackingProfile:
    density_kg_per_l: float
    fragility: Fragility
    requires_vented_box: bool = False
    allow_mixing: bool = True
    min_box_type: str | None = None
    max_weight_per_box_kg: float | None = None
    max_kg_per_bag: float | None = None
    unit_vol_liters: float | None = None


@dataclass(frozen=True)
class PackingOverride:
    fragility: Fragility | None = None
    allow_mixing: bool | None = None
    requires_vented_box: bool | None = None
    min_box_type: str | None = None
    max_weight_per_box_kg: float | None = None
    max_kg_per_bag: float | None = None
    density_kg_per_l: float | None = None
    unit_vol_liters: float | None = None

    def present_fields(self) -> dict:
        return {
            name: value
            for name, value in self.__dict__.items()
            if value is not None
        }


def calc_usable_liters(
    length_cm: float, width_cm: float, height_cm: float, headroom_pct: float = 0.0
) -> float:
    """Inner volume in liters minus the headroom fraction kept free."""
    headroom = min(max(headroom_pct, 0.0), 0.9)
    return round(length_cm * width_cm * height_cm * (1 - headroom) / 1000, 3)


# ── Classification ───────────────────────────────────────────

BUCKET_PROFILES: dict[ProduceBucket, PackingProfile] = {
    ProduceBucket.LEAFY: PackingProfile(0.15, Fragility.FRAGILE, requires_vented_box=True),
    ProduceBucket.HERBS: PackingProfile(0.15, Fragility.FRAGILE, requires_vented_box=True),
    ProduceBucket.BERRIES: PackingProfile(
        0.35, Fragility.VERY_FRAGILE, requires_vented_box=True, allow_mixing=False
    ),
    ProduceBucket.TOMATOES: PackingProfile(0.6, Fragility.FRAGILE),
    ProduceBucket.CUCUMBERS: PackingProfile(0.6, Fragility.NORMAL),
    ProduceBucket.PEPPERS: PackingProfile(0.6, Fragility.NORMAL),
    ProduceBucket.APPLES: PackingProfile(0.65, Fragility.NORMAL),
    ProduceBucket.CITRUS: PackingProfile(0.7, Fragility.STURDY),
    ProduceBucket.ROOTS: PackingProfile(0.8, Fragility.STURDY),
    ProduceBucket.BUNDLED: PackingProfile(0.5, Fragility.FRAGILE),
    ProduceBucket.GENERIC: PackingProfile(0.5, Fragility.NORMAL),
}

# Liters per unit, used by the capacity estimator when counting units
UNIT_VOLUME_FALLBACK: dict[ProduceBucket, float] = {
    ProduceBucket.BERRIES: 0.06,
    ProduceBucket.APPLES: 0.12,
    ProduceBucket.CITRUS: 0.12,
    ProduceBucket.TOMATOES: 0.1,
    ProduceBucket.CUCUMBERS: 0.1,
    ProduceBucket.PEPPERS: 0.1,
}

LEAFY_TYPES = ("lettuce", "spinach", "kale", "chard", "arugula")
BERRY_TYPES = ("strawberry", "blueberry", "raspberry")
CITRUS_TYPES = ("orange", "mandarin", "lemon", "grapefruit")
ROOT_WORDS = ("carrot", "potato", "beet", "root", "onion")
BUNDLED_TYPES = ("egg", "bread", "milk")


def _contains_any(text: str, words: tuple[str, ...]) -> bool:
    return any(word in text for word in words)


def _has_word(text: str, words: tuple[str, ...]) -> bool:
    # Whole words only: "egg" must not match "eggplant"
    tokens = set(re.findall(r"[a-z]+", text))
    return any(word in tokens or f"{word}s" in tokens for word in words)


def classify_item(item: CatalogItem) -> ProduceBucket:
    """Map an item to its produce bucket by keywords in type/variety/category."""
    item_type = (item.type or "").lower()
    variety = (item.variety or "").lower()
    category = (item.category or "").lower()

    if "leaf" in category or _contains_any(item_type, LEAFY_TYPES):
        return ProduceBucket.LEAFY
    if "herb" in item_type or "herb" in category:
        return ProduceBucket.HERBS
    if _contains_any(item_type, BERRY_TYPES) or "berry" in variety:
        return ProduceBucket.BERRIES
    if "tomato" in item_type:
        return ProduceBucket.TOMATOES
    if "cucumber" in item_type:
        return ProduceBucket.CUCUMBERS
    if "pepper" in item_type:
        return ProduceBucket.PEPPERS
    if "apple" in item_type:
        return ProduceBucket.APPLES
    if _contains_any(item_type, CITRUS_TYPES) or "citrus" in category:
        return ProduceBucket.CITRUS
    if _contains_any(item_type, ROOT_WORDS) or _contains_any(category, ROOT_WORDS):
        return ProduceBucket.ROOTS
    if _has_word(item_type, BUNDLED_TYPES):
        return ProduceBucket.BUNDLED
    return ProduceBucket.GENERIC


def resolve_profile(
    bucket: ProduceBucket, override: PackingOverride | None = None
) -> PackingProfile:
    profile = BUCKET_PROFILES[bucket]
    if override is None:
        return profile
    return replace(profile, **override.present_fields())


# ── Bundles ──────────────────────────────────────────────────

@dataclass(frozen=True)
class BundleSpec:
    units_per_bundle: int
    liters: float


# Keyed by a word in the item type; only unit-mode lines are bundled
BUNDLE_SPECS: dict[str, BundleSpec] = {
    "egg": BundleSpec(units_per_bundle=12, liters=1.8),
}


def _bundle_spec_for(item: CatalogItem) -> BundleSpec | None:
    item_type = (item.type or "").lower()
    for word, spec in BUNDLE_SPECS.items():
        if _has_word(item_type, (word,)):
            return spec
    return None


# ── Pieces ───────────────────────────────────────────────────

@dataclass(frozen=True)
class Piece:
    item_id: str
    item_name: str
    piece_type: str  # bag | bundle
    mode: str  # kg | unit
    qty_kg: float | None
    units: int | None
    liters: float
    est_weight_kg: float
    fragility: Fragility
    allow_mixing: bool
    requires_vented_box: bool
    min_box_type: str | None = None
    max_weight_per_box_kg: float | None = None
    seq: int = 0

    def snapshot(self) -> dict:
        return {
            "item_id": self.item_id,
            "item_name": self.item_name,
            "piece_type": self.piece_type,
            "mode": self.mode,
            "qty_kg": round(self.qty_kg, 3) if self.qty_kg is not None else None,
            "units": self.units,
            "liters": round(self.liters, 3),
            "est_weight_kg": round(self.est_weight_kg, 3),
            "fragility": self.fragility.value,
        }


def _bag_cap_kg(profile: PackingProfile) -> float:
    cap = profile.max_kg_per_bag or MAX_KG_PER_BAG[profile.fragility]
    if profile.max_weight_per_box_kg:
        cap = min(cap, profile.max_weight_per_box_kg)
    return cap


def _unit_weight_kg(item: CatalogItem) -> float:
    if item.avg_weight_per_unit_gr and item.avg_weight_per_unit_gr > 0:
        return item.avg_weight_per_unit_gr / 1000
    return DEFAULT_UNIT_WEIGHT_KG


def _piece(item: CatalogItem, profile: PackingProfile, **values) -> Piece:
    return Piece(
        item_id=item.id,
        item_name=item.name,
        fragility=profile.fragility,
        allow_mixing=profile.allow_mixing,
        requires_vented_box=profile.requires_vented_box,
        min_box_type=profile.min_box_type,
        max_weight_per_box_kg=profile.max_weight_per_box_kg,
        **values,
    )


def build_pieces(
    line: OrderLine, item: CatalogItem, profile: PackingProfile
) -> list[Piece]:
    """Cut one order line into bags (or bundles) sized by the profile."""
    mode = line.mode
    if mode is None:
        return []

    pieces: list[Piece] = []
    cap = _bag_cap_kg(profile)

    if mode == "kg":
        remaining = float(line.quantity_kg)
        while remaining > EPSILON:
            take = min(remaining, cap)
            pieces.append(_piece(
                item, profile,
                piece_type="bag", mode="kg", qty_kg=take, units=None,
                liters=take / profile.density_kg_per_l + BAG_OVERHEAD_LITERS,
                est_weight_kg=take,
            ))
            remaining -= take
        return pieces

    unit_kg = _unit_weight_kg(item)
    remaining_units = int(math.ceil(line.units))
    bundle = _bundle_spec_for(item)

    if bundle is not None:
        while remaining_units > 0:
            take = min(remaining_units, bundle.units_per_bundle)
            pieces.append(_piece(
                item, profile,
                piece_type="bundle", mode="unit", qty_kg=None, units=take,
                liters=bundle.liters, est_weight_kg=take * unit_kg,
            ))
            remaining_units -= take
        return pieces

    units_per_bag = max(1, math.floor(cap / unit_kg + EPSILON))
    while remaining_units > 0:
        take = min(remaining_units, units_per_bag)
        weight = take * unit_kg
        if profile.unit_vol_liters:
            liters = take * profile.unit_vol_liters
        else:
            liters = weight / profile.density_kg_per_l
        pieces.append(_piece(
            item, profile,
            piece_type="bag", mode="unit", qty_kg=None, units=take,
            liters=liters + BAG_OVERHEAD_LITERS, est_weight_kg=weight,
        ))
        remaining_units -= take
    return pieces


# ── Container catalog ────────────────────────────────────────

class ContainerCatalog:
    """Container types ordered by size: usable liters, then max weight, then key."""

    def __init__(self, containers: list[ContainerSpec]):
        if not containers:
            raise EmptyContainerCatalogError()
        self.containers = sorted(
            containers, key=lambda c: (c.usable_liters, c.max_weight_kg, c.key)
        )
        self._rank = {c.key: i for i, c in enumerate(self.containers)}

    def rank(self, key: str | None) -> int | None:
        if key is None:
            return None
        return self._rank.get(key)

    def knows(self, key: str) -> bool:
        return key in self._rank

    def compatible(self, piece: Piece) -> list[ContainerSpec]:
        min_rank = self.rank(piece.min_box_type) or 0
        return [
            c for c in self.containers
            if (c.vented or not piece.requires_vented_box)
            and self._rank[c.key] >= min_rank
        ]

    def largest_for(self, piece: Piece) -> ContainerSpec | None:
        candidates = self.compatible(piece)
        return candidates[-1] if candidates else None

    def smallest_feasible(self, piece: Piece) -> ContainerSpec | None:
        for container in self.compatible(piece):
            if _piece_fits_empty(piece, container):
                return container
        return None


def _piece_fits_empty(piece: Piece, container: ContainerSpec) -> bool:
    return (
        piece.est_weight_kg <= container.max_weight_kg + EPSILON
        and piece.liters <= container.usable_liters + EPSILON
    )


# ── Auto-split ───────────────────────────────────────────────

def _halve(piece: Piece) -> tuple[Piece, Piece] | None:
    if piece.mode == "kg":
        half_kg = piece.qty_kg / 2
        return (
            replace(piece, qty_kg=half_kg, est_weight_kg=piece.est_weight_kg / 2,
                    liters=piece.liters / 2),
            replace(piece, qty_kg=piece.qty_kg - half_kg,
                    est_weight_kg=piece.est_weight_kg / 2, liters=piece.liters / 2),
        )
    if not piece.units or piece.units < 2:
        return None
    first = piece.units // 2
    second = piece.units - first
    share = first / piece.units
    return (
        replace(piece, units=first, est_weight_kg=piece.est_weight_kg * share,
                liters=piece.liters * share),
        replace(piece, units=second, est_weight_kg=piece.est_weight_kg * (1 - share),
                liters=piece.liters * (1 - share)),
    )


def _split_until_fits(piece: Piece, container: ContainerSpec, depth: int) -> list[Piece]:
    if _piece_fits_empty(piece, container) or depth >= MAX_SPLIT_DEPTH:
        return [piece]
    halves = _halve(piece)
    if halves is None:
        return [piece]
    return [
        part
        for half in halves
        for part in _split_until_fits(half, container, depth + 1)
    ]


def auto_split(
    pieces: list[Piece], catalog: ContainerCatalog, warnings: list[str]
) -> list[Piece]:
    result: list[Piece] = []
    for piece in pieces:
        largest = catalog.largest_for(piece)
        if largest is None or _piece_fits_empty(piece, largest):
            result.append(piece)
            continue
        parts = _split_until_fits(piece, largest, depth=0)
        warnings.append(
            f"{piece.item_name}: piece of {piece.est_weight_kg:.3f} kg / "
            f"{piece.liters:.2f} L exceeds container {largest.key}; "
            f"auto-split into {len(parts)} pieces"
        )
        result.extend(parts)
    return result


# ── Boxes ────────────────────────────────────────────────────

@dataclass
class _OpenBox:
    box_no: int
    container: ContainerSpec
    rank: int
    pieces: list[Piece] = field(default_factory=list)
    liters: float = 0.0
    weight_kg: float = 0.0
    kg_by_item: dict[str, float] = field(default_factory=dict)
    exclusive_item: str | None = None

    def accepts(self, piece: Piece, piece_min_rank: int) -> bool:
        c = self.container
        if piece.requires_vented_box and not c.vented:
            return False
        if self.rank < piece_min_rank:
            return False
        if self.weight_kg + piece.est_weight_kg > c.max_weight_kg + EPSILON:
            return False
        if self.liters + piece.liters > c.usable_liters + EPSILON:
            return False

        items = self.kg_by_item.keys()
        new_item = piece.item_id not in self.kg_by_item
        if new_item and items:
            if not piece.allow_mixing or self.exclusive_item is not None:
                return False
            if not c.mixing_allowed:
                return False
            if c.max_skus_per_box and len(items) >= c.max_skus_per_box:
                return False

        if piece.max_weight_per_box_kg is not None:
            already = self.kg_by_item.get(piece.item_id, 0.0)
            if already + piece.est_weight_kg > piece.max_weight_per_box_kg + EPSILON:
                return False
        return True

    def add(self, piece: Piece) -> None:
        self.pieces.append(piece)
        self.liters += piece.liters
        self.weight_kg += piece.est_weight_kg
        self.kg_by_item[piece.item_id] = (
            self.kg_by_item.get(piece.item_id, 0.0) + piece.est_weight_kg
        )
        if not piece.allow_mixing:
            self.exclusive_item = piece.item_id


def placement_key(piece: Piece) -> tuple:
    return (PLACEMENT_RANK[piece.fragility], -piece.liters, piece.seq)


def place_pieces(
    pieces: list[Piece], catalog: ContainerCatalog, warnings: list[str]
) -> list[_OpenBox]:
    boxes: list[_OpenBox] = []
    over_cap: set[str] = set()
    for piece in sorted(pieces, key=placement_key):
        piece_min_rank = catalog.rank(piece.min_box_type) or 0
        target = next((b for b in boxes if b.accepts(piece, piece_min_rank)), None)
        if target is None:
            container = catalog.smallest_feasible(piece)
            if container is None:
                warnings.append(
                    f"{piece.item_name}: no container can hold a "
                    f"{piece.est_weight_kg:.3f} kg / {piece.liters:.2f} L {piece.piece_type}"
                    + (" requiring ventilation" if piece.requires_vented_box else "")
                    + "; piece dropped"
                )
                continue
            target = _OpenBox(
                box_no=len(boxes) + 1,
                container=container,
                rank=catalog.rank(container.key),
            )
            boxes.append(target)
            cap = piece.max_weight_per_box_kg
            if (
                cap is not None
                and piece.est_weight_kg > cap + EPSILON
                and piece.item_id not in over_cap
            ):
                over_cap.add(piece.item_id)
                warnings.append(
                    f"{piece.item_name}: one {piece.piece_type} weighs "
                    f"{piece.est_weight_kg:.3f} kg, above the {cap:g} kg per-box limit; "
                    f"packed one per box"
                )
        target.add(piece)
    return boxes


# ── Output ───────────────────────────────────────────────────

@dataclass(frozen=True)
class PlanBox:
    box_no: int
    box_type: str
    vented: bool
    est_fill_liters: float
    est_weight_kg: float
    fill_pct: float
    contents: tuple[dict, ...]

    def to_dict(self) -> dict:
        return {
            "box_no": self.box_no,
            "box_type": self.box_type,
            "vented": self.vented,
            "est_fill_liters": self.est_fill_liters,
            "est_weight_kg": self.est_weight_kg,
            "fill_pct": self.fill_pct,
            "contents": [dict(piece) for piece in self.contents],
        }


@dataclass(frozen=True)
class ItemTotals:
    bags: int = 0
    bundles: int = 0
    total_kg: float = 0.0
    total_units: int = 0


@dataclass(frozen=True)
class PlanSummary:
    total_boxes: int
    by_item: dict[str, ItemTotals]
    warnings: tuple[str, ...]
    total_kg: float
    total_liters: float


@dataclass(frozen=True)
class PackingPlan:
    boxes: tuple[PlanBox, ...]
    summary: PlanSummary

    @property
    def is_empty(self) -> bool:
        return not any(box.contents for box in self.boxes)

    def to_dict(self) -> dict:
        return {
            "boxes": [box.to_dict() for box in self.boxes],
            "summary": {
                "total_boxes": self.summary.total_boxes,
                "by_item": {
                    item_id: {
                        "bags": totals.bags,
                        "bundles": totals.bundles,
                        "total_kg": totals.total_kg,
                        "total_units": totals.total_units,
                    }
                    for item_id, totals in self.summary.by_item.items()
                },
                "warnings": list(self.summary.warnings),
                "total_kg": self.summary.total_kg,
                "total_liters": self.summary.total_liters,
            },
        }


def _summarize(boxes: list[_OpenBox], warnings: list[str]) -> PackingPlan:
    plan_boxes: list[PlanBox] = []
    by_item: dict[str, ItemTotals] = {}
    total_kg = 0.0
    total_liters = 0.0

    for box in boxes:
        usable = box.container.usable_liters
        plan_boxes.append(PlanBox(
            box_no=box.box_no,
            box_type=box.container.key,
            vented=box.container.vented,
            est_fill_liters=round(box.liters, 2),
            est_weight_kg=round(box.weight_kg, 3),
            fill_pct=round(box.liters / usable * 100, 1) if usable else 0.0,
            contents=tuple(piece.snapshot() for piece in box.pieces),
        ))
        total_kg += box.weight_kg
        total_liters += box.liters

        for piece in box.pieces:
            current = by_item.get(piece.item_id, ItemTotals())
            by_item[piece.item_id] = ItemTotals(
                bags=current.bags + (piece.piece_type == "bag"),
                bundles=current.bundles + (piece.piece_type == "bundle"),
                total_kg=round(current.total_kg + piece.est_weight_kg, 3),
                total_units=current.total_units + (piece.units or 0),
            )

    return PackingPlan(
        boxes=tuple(plan_boxes),
        summary=PlanSummary(
            total_boxes=len(plan_boxes),
            by_item=by_item,
            warnings=tuple(warnings),
            total_kg=round(total_kg, 3),
            total_liters=round(total_liters, 3),
        ),
    )


# ── Entry point ──────────────────────────────────────────────

def compute_packing_plan(
    lines: list[OrderLine],
    items_by_id: dict[str, CatalogItem],
    containers: list[ContainerSpec],
    overrides_by_id: dict[str, PackingOverride] | None = None,
) -> PackingPlan:
    """Compute the packing plan for one order.

    Raises EmptyContainerCatalogError when ``containers`` is empty;
    every other problem is reported in ``plan.summary.warnings``.
    """
    catalog = ContainerCatalog(containers)
    overrides_by_id = overrides_by_id or {}
    warnings: list[str] = []
    pieces: list[Piece] = []

    for line in lines:
        item = items_by_id.get(line.item_id)
        if item is None:
            warnings.append(f"Item {line.item_id} not found in catalog; line skipped")
            continue
        if line.mode is None:
            warnings.append(f"{item.name}: line has no quantity; skipped")
            continue

        profile = resolve_profile(classify_item(item), overrides_by_id.get(line.item_id))
        if profile.min_box_type and not catalog.knows(profile.min_box_type):
            warnings.append(
                f"{item.name}: unknown minimum box type {profile.min_box_type!r}; ignored"
            )
            profile = replace(profile, min_box_type=None)
        pieces.extend(build_pieces(line, item, profile))

    pieces = auto_split(pieces, catalog, warnings)
    pieces = [replace(piece, seq=i) for i, piece in enumerate(pieces)]
    boxes = place_pieces(pieces, catalog, warnings)
    return _summarize(boxes, warnings)
