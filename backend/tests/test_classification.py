"""Produce classification, profile overrides and container volume."""

import pytest

from app.services.packing import (
    BUCKET_PROFILES,
    CatalogItem,
    Fragility,
    PackingOverride,
    ProduceBucket,
    calc_usable_liters,
    classify_item,
    resolve_profile,
)


def _item(item_type, category=None, variety=None):
    return CatalogItem(id="x", name=item_type, type=item_type, category=category,
                       variety=variety)


@pytest.mark.unit
class TestClassifyItem:

    @pytest.mark.parametrize("item_type, category, expected", [
        ("Romaine Lettuce", "vegetable", ProduceBucket.LEAFY),
        ("Baby Spinach", None, ProduceBucket.LEAFY),
        ("Mixed", "leafy greens", ProduceBucket.LEAFY),
        ("Herbs", None, ProduceBucket.HERBS),
        ("Basil", "herb", ProduceBucket.HERBS),
        ("Strawberry", "fruit", ProduceBucket.BERRIES),
        ("Cherry Tomato", None, ProduceBucket.TOMATOES),
        ("Cucumber", None, ProduceBucket.CUCUMBERS),
        ("Red Pepper", None, ProduceBucket.PEPPERS),
        ("Apple", "fruit", ProduceBucket.APPLES),
        ("Orange", "fruit", ProduceBucket.CITRUS),
        ("Pomelo", "citrus", ProduceBucket.CITRUS),
        ("Carrot", "vegetable", ProduceBucket.ROOTS),
        ("Sweet Potato", None, ProduceBucket.ROOTS),
        ("Eggs", "dairy", ProduceBucket.BUNDLED),
        ("Melon", "fruit", ProduceBucket.GENERIC),
    ])
    def test_bucket_by_keyword(self, item_type, category, expected):
        assert classify_item(_item(item_type, category)) == expected

    def test_berry_variety_counts_as_berries(self):
        assert classify_item(_item("Mixed", variety="Goji berry")) == ProduceBucket.BERRIES

    def test_eggplant_is_not_bundled(self):
        assert classify_item(_item("Eggplant")) == ProduceBucket.GENERIC

    def test_missing_fields_fall_back_to_generic(self):
        item = CatalogItem(id="x", name="Mystery")
        assert classify_item(item) == ProduceBucket.GENERIC


@pytest.mark.unit
class TestResolveProfile:

    def test_default_profiles(self):
        berries = resolve_profile(ProduceBucket.BERRIES)
        assert berries.fragility == Fragility.VERY_FRAGILE
        assert berries.requires_vented_box is True
        assert berries.allow_mixing is False

        roots = resolve_profile(ProduceBucket.ROOTS)
        assert roots.fragility == Fragility.STURDY
        assert roots.requires_vented_box is False

    def test_present_override_fields_replace_defaults(self):
        profile = resolve_profile(
            ProduceBucket.LEAFY,
            PackingOverride(fragility=Fragility.NORMAL, max_kg_per_bag=1.2),
        )

        assert profile.fragility == Fragility.NORMAL
        assert profile.max_kg_per_bag == 1.2
        # untouched fields keep the bucket default
        assert profile.requires_vented_box is True
        assert profile.density_kg_per_l == BUCKET_PROFILES[ProduceBucket.LEAFY].density_kg_per_l

    def test_false_override_still_applies(self):
        profile = resolve_profile(
            ProduceBucket.BERRIES, PackingOverride(requires_vented_box=False)
        )
        assert profile.requires_vented_box is False

    def test_bucket_defaults_are_not_modified(self):
        resolve_profile(ProduceBucket.ROOTS, PackingOverride(density_kg_per_l=2.0))
        assert BUCKET_PROFILES[ProduceBucket.ROOTS].density_kg_per_l == 0.8


@pytest.mark.unit
class TestUsableLiters:

    def test_inner_volume_minus_headroom(self):
        assert calc_usable_liters(40, 30, 20, 0.1) == pytest.approx(21.6)

    def test_no_headroom(self):
        assert calc_usable_liters(10, 10, 10) == pytest.approx(1.0)

    def test_headroom_is_clamped(self):
        assert calc_usable_liters(10, 10, 10, 2.0) == pytest.approx(0.1)
        assert calc_usable_liters(10, 10, 10, -1.0) == pytest.approx(1.0)
