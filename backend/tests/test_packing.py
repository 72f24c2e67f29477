"""Packing engine tests (pure, no database)."""

import copy
import random
from collections import defaultdict

import pytest

from app.middleware.exceptions import EmptyContainerCatalogError
from app.services.packing import (
    CatalogItem,
    ContainerSpec,
    OrderLine,
    PackingOverride,
    compute_packing_plan,
)

CARROT = CatalogItem(id="carrot-1", name="Carrot", category="vegetable", type="Carrot")
POTATO = CatalogItem(id="potato-1", name="Potato", category="vegetable", type="Potato")
LETTUCE = CatalogItem(id="lettuce-1", name="Lettuce", category="vegetable", type="Lettuce")
STRAWBERRY = CatalogItem(id="straw-1", name="Strawberries", category="fruit", type="Strawberry")
TOMATO = CatalogItem(id="tomato-1", name="Tomato", category="vegetable", type="Tomato")
EGGS = CatalogItem(id="eggs-1", name="Eggs", category="dairy", type="Eggs",
                   avg_weight_per_unit_gr=60)
APPLE = CatalogItem(id="apple-1", name="Apple", category="fruit", type="Apple",
                    avg_weight_per_unit_gr=150)
MELON = CatalogItem(id="melon-1", name="Melon", category="fruit", type="Melon")
HEAVY_MELON = CatalogItem(id="melon-xl", name="Giant Melon", category="fruit", type="Melon",
                          avg_weight_per_unit_gr=4000)

ITEMS = {
    i.id: i
    for i in (CARROT, POTATO, LETTUCE, STRAWBERRY, TOMATO, EGGS, APPLE, MELON, HEAVY_MELON)
}

SMALL = ContainerSpec(key="Small", name="Small", usable_liters=10, max_weight_kg=5, vented=True)
MEDIUM = ContainerSpec(key="Medium", name="Medium", usable_liters=20, max_weight_kg=10, vented=True)
LARGE = ContainerSpec(key="Large", name="Large", usable_liters=40, max_weight_kg=18, vented=False)
CATALOG = [SMALL, MEDIUM, LARGE]
SPECS = {c.key: c for c in CATALOG}


def _all_pieces(plan):
    return [piece for box in plan.boxes for piece in box.contents]


@pytest.mark.unit
class TestPieceConstruction:

    def test_very_fragile_five_kg_becomes_eight_bags(self):
        plan = compute_packing_plan(
            [OrderLine(item_id="straw-1", quantity_kg=5)], ITEMS, [MEDIUM]
        )
        pieces = _all_pieces(plan)

        assert len(pieces) == 8
        assert all(p["qty_kg"] <= 0.7 + 1e-9 for p in pieces)
        assert sum(p["qty_kg"] for p in pieces) == pytest.approx(5.0)
        assert plan.summary.by_item["straw-1"].bags == 8

    def test_carrot_nine_kg_fits_one_medium_box(self):
        plan = compute_packing_plan(
            [OrderLine(item_id="carrot-1", quantity_kg=9)], ITEMS, [MEDIUM]
        )

        assert len(plan.boxes) == 1
        box = plan.boxes[0]
        assert box.box_type == "Medium"
        assert [p["qty_kg"] for p in box.contents] == [3.0, 3.0, 3.0]
        assert box.est_weight_kg == pytest.approx(9.0)
        assert box.est_fill_liters == pytest.approx(11.85)

    def test_carrot_bags_spill_into_second_box_when_volume_runs_out(self):
        tight = ContainerSpec(key="Medium", name="Medium", usable_liters=8, max_weight_kg=10)
        plan = compute_packing_plan(
            [OrderLine(item_id="carrot-1", quantity_kg=9)], ITEMS, [tight]
        )

        assert [len(box.contents) for box in plan.boxes] == [2, 1]

    def test_unit_mode_uses_catalog_unit_weight(self):
        plan = compute_packing_plan(
            [OrderLine(item_id="apple-1", units=10)], ITEMS, CATALOG
        )
        pieces = _all_pieces(plan)

        assert len(pieces) == 1
        assert pieces[0]["mode"] == "unit"
        assert pieces[0]["units"] == 10
        assert pieces[0]["est_weight_kg"] == pytest.approx(1.5)

    def test_unit_mode_splits_by_bag_cap(self):
        # normal cap 2.5 kg / 0.15 kg per apple → 16 apples per bag
        plan = compute_packing_plan(
            [OrderLine(item_id="apple-1", units=40)], ITEMS, CATALOG
        )

        assert sorted(p["units"] for p in _all_pieces(plan)) == [8, 16, 16]
        assert plan.summary.by_item["apple-1"].total_units == 40

    def test_eggs_are_packed_as_dozen_bundles(self):
        plan = compute_packing_plan(
            [OrderLine(item_id="eggs-1", units=30)], ITEMS, CATALOG
        )
        pieces = _all_pieces(plan)

        assert {p["piece_type"] for p in pieces} == {"bundle"}
        assert sorted(p["units"] for p in pieces) == [6, 12, 12]
        assert plan.summary.by_item["eggs-1"].bundles == 3
        assert plan.summary.by_item["eggs-1"].bags == 0

    def test_line_without_quantity_is_skipped_with_warning(self):
        plan = compute_packing_plan(
            [OrderLine(item_id="carrot-1", quantity_kg=0, units=0)], ITEMS, CATALOG
        )

        assert plan.boxes == ()
        assert any("no quantity" in w for w in plan.summary.warnings)

    def test_missing_item_is_skipped_with_warning(self):
        plan = compute_packing_plan(
            [
                OrderLine(item_id="ghost-1", quantity_kg=2),
                OrderLine(item_id="carrot-1", quantity_kg=2),
            ],
            ITEMS,
            CATALOG,
        )

        assert {p["item_id"] for p in _all_pieces(plan)} == {"carrot-1"}
        assert any("ghost-1" in w for w in plan.summary.warnings)


@pytest.mark.unit
class TestPlacement:

    def test_vented_item_without_vented_container_is_dropped(self):
        plan = compute_packing_plan(
            [OrderLine(item_id="lettuce-1", quantity_kg=1)], ITEMS, [LARGE]
        )

        assert plan.is_empty
        assert plan.boxes == ()
        assert any("ventilation" in w for w in plan.summary.warnings)

    def test_vented_items_only_land_in_vented_boxes(self):
        plan = compute_packing_plan(
            [
                OrderLine(item_id="lettuce-1", quantity_kg=2),
                OrderLine(item_id="carrot-1", quantity_kg=20),
            ],
            ITEMS,
            CATALOG,
        )

        for box in plan.boxes:
            if any(p["item_id"] == "lettuce-1" for p in box.contents):
                assert box.vented

    def test_boxes_respect_weight_and_volume_limits(self):
        plan = compute_packing_plan(
            [
                OrderLine(item_id="carrot-1", quantity_kg=14),
                OrderLine(item_id="potato-1", quantity_kg=11),
                OrderLine(item_id="tomato-1", quantity_kg=4),
                OrderLine(item_id="straw-1", quantity_kg=2),
                OrderLine(item_id="apple-1", units=25),
                OrderLine(item_id="eggs-1", units=24),
            ],
            ITEMS,
            CATALOG,
        )

        assert plan.boxes
        for box in plan.boxes:
            spec = SPECS[box.box_type]
            assert box.est_weight_kg <= spec.max_weight_kg + 1e-6
            assert box.est_fill_liters <= spec.usable_liters + 1e-2
            assert sum(p["est_weight_kg"] for p in box.contents) == pytest.approx(
                box.est_weight_kg, abs=1e-3
            )

    def test_non_mixing_item_gets_boxes_of_its_own(self):
        plan = compute_packing_plan(
            [
                OrderLine(item_id="straw-1", quantity_kg=1),
                OrderLine(item_id="carrot-1", quantity_kg=1),
                OrderLine(item_id="apple-1", units=4),
            ],
            ITEMS,
            CATALOG,
        )

        for box in plan.boxes:
            item_ids = {p["item_id"] for p in box.contents}
            if "straw-1" in item_ids:
                assert item_ids == {"straw-1"}

    def test_sturdy_pieces_are_placed_before_fragile_ones(self):
        plan = compute_packing_plan(
            [
                OrderLine(item_id="tomato-1", quantity_kg=1),
                OrderLine(item_id="carrot-1", quantity_kg=2),
            ],
            ITEMS,
            [MEDIUM],
        )

        assert len(plan.boxes) == 1
        assert [p["fragility"] for p in plan.boxes[0].contents] == ["sturdy", "fragile"]

    def test_opens_smallest_feasible_container(self):
        plan = compute_packing_plan(
            [OrderLine(item_id="carrot-1", quantity_kg=1)], ITEMS, [LARGE, MEDIUM, SMALL]
        )

        assert [box.box_type for box in plan.boxes] == ["Small"]

    def test_min_box_type_override_forces_larger_container(self):
        plan = compute_packing_plan(
            [OrderLine(item_id="carrot-1", quantity_kg=1)],
            ITEMS,
            CATALOG,
            {"carrot-1": PackingOverride(min_box_type="Large")},
        )

        assert [box.box_type for box in plan.boxes] == ["Large"]

    def test_unknown_min_box_type_is_ignored_with_warning(self):
        plan = compute_packing_plan(
            [OrderLine(item_id="carrot-1", quantity_kg=1)],
            ITEMS,
            CATALOG,
            {"carrot-1": PackingOverride(min_box_type="Jumbo")},
        )

        assert [box.box_type for box in plan.boxes] == ["Small"]
        assert any("Jumbo" in w for w in plan.summary.warnings)

    def test_per_item_weight_cap_per_box(self):
        plan = compute_packing_plan(
            [OrderLine(item_id="carrot-1", quantity_kg=9)],
            ITEMS,
            [LARGE],
            {"carrot-1": PackingOverride(max_weight_per_box_kg=4)},
        )

        assert len(plan.boxes) == 3
        assert all(box.est_weight_kg <= 4 + 1e-9 for box in plan.boxes)

    def test_container_sku_limit(self):
        single_sku = ContainerSpec(
            key="Crate", name="Crate", usable_liters=40, max_weight_kg=18, max_skus_per_box=1
        )
        plan = compute_packing_plan(
            [
                OrderLine(item_id="carrot-1", quantity_kg=2),
                OrderLine(item_id="potato-1", quantity_kg=2),
            ],
            ITEMS,
            [single_sku],
        )

        assert len(plan.boxes) == 2
        assert all(len({p["item_id"] for p in box.contents}) == 1 for box in plan.boxes)

    def test_oversized_piece_is_auto_split(self):
        plan = compute_packing_plan(
            [OrderLine(item_id="melon-1", quantity_kg=15)],
            ITEMS,
            [SMALL],
            {"melon-1": PackingOverride(max_kg_per_bag=20)},
        )

        assert any("auto-split" in w for w in plan.summary.warnings)
        assert len(_all_pieces(plan)) == 4
        assert plan.summary.total_kg == pytest.approx(15.0)
        assert all(box.est_weight_kg <= SMALL.max_weight_kg for box in plan.boxes)

    def test_unit_heavier_than_per_box_cap_is_packed_one_per_box(self):
        plan = compute_packing_plan(
            [OrderLine(item_id="melon-xl", units=3)],
            ITEMS,
            [MEDIUM],
            {"melon-xl": PackingOverride(max_weight_per_box_kg=2)},
        )

        assert len(plan.boxes) == 3
        assert all(len(box.contents) == 1 for box in plan.boxes)
        assert all(box.est_weight_kg == pytest.approx(4.0) for box in plan.boxes)
        cap_warnings = [w for w in plan.summary.warnings if "per-box limit" in w]
        assert len(cap_warnings) == 1
        assert "Giant Melon" in cap_warnings[0]


@pytest.mark.unit
class TestPlanProperties:

    LINES = [
        OrderLine(item_id="carrot-1", quantity_kg=7.5),
        OrderLine(item_id="tomato-1", quantity_kg=2.2),
        OrderLine(item_id="straw-1", quantity_kg=1.4),
        OrderLine(item_id="eggs-1", units=12),
    ]

    def test_same_inputs_give_identical_plans(self):
        first = compute_packing_plan(self.LINES, ITEMS, CATALOG)
        second = compute_packing_plan(list(self.LINES), dict(ITEMS), list(CATALOG))

        assert first.to_dict() == second.to_dict()

    def test_inputs_are_not_mutated(self):
        lines = list(self.LINES)
        items = dict(ITEMS)
        containers = list(reversed(CATALOG))
        before = copy.deepcopy((lines, items, containers))

        compute_packing_plan(lines, items, containers)

        assert (lines, items, containers) == before

    def test_summary_totals_match_boxes(self):
        plan = compute_packing_plan(self.LINES, ITEMS, CATALOG)

        assert plan.summary.total_boxes == len(plan.boxes)
        assert plan.summary.total_kg == pytest.approx(
            sum(box.est_weight_kg for box in plan.boxes), abs=1e-3
        )
        box_numbers = [box.box_no for box in plan.boxes]
        assert box_numbers == list(range(1, len(plan.boxes) + 1))

    def test_empty_container_catalog_raises(self):
        with pytest.raises(EmptyContainerCatalogError):
            compute_packing_plan(self.LINES, ITEMS, [])


@pytest.mark.unit
class TestRandomOrders:
    """Placement rules hold for many generated orders (seeded, reproducible)."""

    KG_ITEMS = ["carrot-1", "potato-1", "lettuce-1", "straw-1", "tomato-1", "melon-1"]
    UNIT_ITEMS = ["eggs-1", "apple-1", "melon-xl"]
    VENTED_ITEMS = {"lettuce-1", "straw-1"}

    def _order(self, rng):
        chosen = rng.sample(self.KG_ITEMS + self.UNIT_ITEMS, rng.randint(1, 5))
        lines = [
            OrderLine(item_id=item_id, units=rng.randint(1, 40))
            if item_id in self.UNIT_ITEMS
            else OrderLine(item_id=item_id, quantity_kg=round(rng.uniform(0.2, 14), 1))
            for item_id in chosen
        ]
        overrides = {}
        for item_id in chosen:
            roll = rng.random()
            if roll < 0.3:
                overrides[item_id] = PackingOverride(
                    max_weight_per_box_kg=rng.choice([1.0, 2.0, 4.5])
                )
            elif roll < 0.4:
                overrides[item_id] = PackingOverride(allow_mixing=False)
        return lines, overrides

    def test_generated_orders_respect_every_box_rule(self):
        rng = random.Random(20250310)

        for _ in range(300):
            lines, overrides = self._order(rng)
            plan = compute_packing_plan(lines, ITEMS, CATALOG, overrides)
            exclusive = {"straw-1"} | {
                item_id for item_id, o in overrides.items() if o.allow_mixing is False
            }

            for box in plan.boxes:
                spec = SPECS[box.box_type]
                assert box.est_weight_kg <= spec.max_weight_kg + 1e-2
                assert box.est_fill_liters <= spec.usable_liters + 1e-2

                kg_by_item = defaultdict(float)
                pieces_by_item = defaultdict(int)
                for piece in box.contents:
                    kg_by_item[piece["item_id"]] += piece["est_weight_kg"]
                    pieces_by_item[piece["item_id"]] += 1

                if self.VENTED_ITEMS & kg_by_item.keys():
                    assert box.vented
                if exclusive & kg_by_item.keys():
                    assert len(kg_by_item) == 1

                for item_id, kg in kg_by_item.items():
                    cap = overrides.get(item_id, PackingOverride()).max_weight_per_box_kg
                    if cap is None or kg <= cap + 1e-2:
                        continue
                    assert pieces_by_item[item_id] == 1
                    assert any(
                        ITEMS[item_id].name in w and "per-box limit" in w
                        for w in plan.summary.warnings
                    )
