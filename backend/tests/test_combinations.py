"""
Combination generator and combination key tests.

These functions are pure: no app context or database needed.
"""

import itertools
import math
from decimal import Decimal

import pytest

from storefront.services.combination_service import (
    CombinationEntry,
    EmptySelection,
    SelectedAttribute,
    SelectedValue,
    VariantDefaults,
    combination_key,
    default_sku,
    draft_variations,
    generate_combinations,
)


def _attr(attribute_id, name, *values):
    return SelectedAttribute(
        attribute_id=attribute_id,
        attribute_name=name,
        values=tuple(SelectedValue(attribute_id * 10 + i, v) for i, v in enumerate(values)),
    )


COLOR = _attr(1, "Color", "Red", "Blue")
SIZE = _attr(2, "Size", "S", "M")


class TestGenerateCombinations:
    """Cartesian product over selected values."""

    def test_color_by_size_in_nested_order(self):
        combos = generate_combinations([COLOR, SIZE])

        assert [tuple(e.value for e in c) for c in combos] == [
            ("Red", "S"),
            ("Red", "M"),
            ("Blue", "S"),
            ("Blue", "M"),
        ]

    def test_entries_follow_attribute_order(self):
        combos = generate_combinations([SIZE, COLOR])

        assert all([e.attribute_name for e in c] == ["Size", "Color"] for c in combos)
        assert [tuple(e.value for e in c) for c in combos][:2] == [("S", "Red"), ("S", "Blue")]

    @pytest.mark.parametrize("counts", [(1,), (3,), (2, 2), (1, 4), (2, 3, 2)])
    def test_output_size_is_product_of_value_counts(self, counts):
        selected = [
            _attr(i + 1, f"A{i}", *[f"v{j}" for j in range(n)])
            for i, n in enumerate(counts)
        ]

        combos = generate_combinations(selected)

        assert len(combos) == math.prod(counts)
        assert len({combination_key(c) for c in combos}) == len(combos)

    def test_single_attribute_gives_one_entry_per_value(self):
        combos = generate_combinations([COLOR])

        assert combos == [
            (CombinationEntry(1, "Color", 10, "Red"),),
            (CombinationEntry(1, "Color", 11, "Blue"),),
        ]

    def test_no_attributes_raises_empty_selection(self):
        with pytest.raises(EmptySelection) as exc:
            generate_combinations([])
        assert exc.value.field == "attributes"

    def test_attribute_without_values_raises_empty_selection(self):
        empty_size = SelectedAttribute(attribute_id=2, attribute_name="Size", values=())

        with pytest.raises(EmptySelection) as exc:
            generate_combinations([COLOR, empty_size])
        assert exc.value.field == "attributes.2"


class TestCombinationKey:
    """Canonical key: independent of input order and duplicates."""

    def test_every_permutation_gives_same_key(self):
        pairs = [(3, 31), (1, 10), (2, 20)]

        keys = {combination_key(p) for p in itertools.permutations(pairs)}

        assert keys == {((1, 10), (2, 20), (3, 31))}

    def test_duplicates_are_dropped(self):
        assert combination_key([(1, 10), (1, 10), (2, 20)]) == ((1, 10), (2, 20))

    def test_accepts_entries_mappings_and_tuples(self):
        entry = CombinationEntry(2, "Size", 20, "S")
        mapping = {"attribute_id": "1", "value_id": "10"}

        assert combination_key([entry, mapping]) == combination_key([(1, 10), (2, 20)])

    def test_empty_combination_has_empty_key(self):
        assert combination_key([]) == ()


class TestDrafts:
    """Draft variations for the generate-variations endpoint."""

    def test_default_sku_uses_first_three_letters(self):
        combo = generate_combinations([COLOR, SIZE])[0]

        assert default_sku("TSHIRT", combo) == "TSHIRT-RED-S"
        assert default_sku(None, combo) == "SKU-RED-S"

    def test_drafts_carry_defaults_and_temp_ids(self):
        combos = generate_combinations([COLOR, SIZE])
        defaults = VariantDefaults(price=Decimal("20"), sale_price=Decimal("15.5"), stock_quantity=3, base_sku="TEE")

        drafts, skipped = draft_variations(combos, defaults)

        assert skipped == 0
        assert [d["temp_id"] for d in drafts] == ["temp-0", "temp-1", "temp-2", "temp-3"]
        assert drafts[0]["price"] == "20.00"
        assert drafts[0]["sale_price"] == "15.50"
        assert drafts[0]["stock_quantity"] == 3
        assert drafts[3]["sku"] == "TEE-BLU-M"
        assert drafts[3]["combination"][0] == {
            "attribute_id": 1, "attribute_name": "Color", "value_id": 11, "value": "Blue",
        }

    def test_existing_combinations_are_skipped(self):
        combos = generate_combinations([COLOR, SIZE])
        existing = [combination_key([(2, 20), (1, 10)])]  # Red/S, reversed on purpose

        drafts, skipped = draft_variations(combos, VariantDefaults(), existing)

        assert skipped == 1
        assert len(drafts) == 3
        assert drafts[0]["sku"] == "SKU-RED-M"
