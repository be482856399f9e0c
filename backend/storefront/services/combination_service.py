# Overview: Cartesian-product variant generation and canonical combination keys.

"""
Combination Service - the single home of the variation math

Everything that needs to know what a "combination" is (the reconciler, the
generate-variations draft endpoint, attribute deletion checks) goes through
this module. It has no database or request access: inputs in, values out.

COMBINATION KEY:
A combination's identity is the sorted, de-duplicated tuple of
(attribute_id, value_id) pairs. Two variants are "the same" iff their keys are
equal, regardless of the order the pairs were supplied in.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping, NamedTuple, Optional

from ..validation import ValidationError


CombinationKey = tuple[tuple[int, int], ...]

DEFAULT_SKU_BASE = "SKU"
SKU_SUFFIX_CHARS = 3


class EmptySelection(ValidationError):
    """No attribute selected, or a selected attribute has no selected values."""


class CombinationEntry(NamedTuple):
    attribute_id: int
    attribute_name: str
    value_id: int
    value: str


Combination = tuple[CombinationEntry, ...]


@dataclass(frozen=True)
class SelectedValue:
    value_id: int
    value: str


@dataclass(frozen=True)
class SelectedAttribute:
    attribute_id: int
    attribute_name: str
    values: tuple[SelectedValue, ...] = field(default_factory=tuple)


def generate_combinations(selected: Iterable[SelectedAttribute]) -> list[Combination]:
    """
    Cartesian product of the selected values, one combination per variant.

    Entries follow the attribute order given; combinations come out in nested
    order with the last attribute varying fastest, e.g.
    Color={Red,Blue} x Size={S,M} -> (Red,S) (Red,M) (Blue,S) (Blue,M).

    Raises EmptySelection when nothing is selected or any selected attribute
    has no values.
    """
    selected = list(selected)
    if not selected:
        raise EmptySelection("Select at least one attribute to generate variations", field="attributes")

    axes = []
    for attr in selected:
        if not attr.values:
            raise EmptySelection(
                f"Select at least one value for attribute '{attr.attribute_name}'",
                field=f"attributes.{attr.attribute_id}",
            )
        axes.append([
            CombinationEntry(attr.attribute_id, attr.attribute_name, v.value_id, v.value)
            for v in attr.values
        ])

    return [tuple(combo) for combo in itertools.product(*axes)]


def _pair_of(item) -> tuple[int, int]:
    if isinstance(item, CombinationEntry):
        return int(item.attribute_id), int(item.value_id)
    if isinstance(item, Mapping):
        return int(item["attribute_id"]), int(item["value_id"])
    attribute_id, value_id = item
    return int(attribute_id), int(value_id)


def combination_key(pairs: Iterable) -> CombinationKey:
    """Canonical key: pairs sorted by (attribute_id, value_id), duplicates dropped."""
    return tuple(sorted({_pair_of(p) for p in pairs}))


def default_sku(base_sku: Optional[str], combination: Iterable[CombinationEntry]) -> str:
    """"TSHIRT-RED-SMA" style SKU: base plus the first letters of each value."""
    suffix = "-".join(entry.value[:SKU_SUFFIX_CHARS].upper() for entry in combination)
    return f"{base_sku or DEFAULT_SKU_BASE}-{suffix}"


@dataclass(frozen=True)
class VariantDefaults:
    """Field values copied onto freshly generated drafts."""
    price: Decimal = Decimal("0.00")
    sale_price: Optional[Decimal] = None
    stock_quantity: int = 0
    base_sku: Optional[str] = None


def draft_variations(
    combinations: Iterable[Combination],
    defaults: VariantDefaults,
    existing_keys: Iterable[CombinationKey] = (),
) -> tuple[list[dict], int]:
    """
    Build draft variation payloads for combinations not already present.

    Returns (drafts, skipped) where skipped counts combinations whose key was
    in existing_keys. Drafts carry a temp_id so clients can send them straight
    back as "create" entries.
    """
    seen = set(existing_keys)
    drafts: list[dict] = []
    skipped = 0
    for combo in combinations:
        key = combination_key(combo)
        if key in seen:
            skipped += 1
            continue
        seen.add(key)
        drafts.append({
            "temp_id": f"temp-{len(drafts)}",
            "combination": [entry._asdict() for entry in combo],
            "price": f"{defaults.price:.2f}",
            "sale_price": None if defaults.sale_price is None else f"{defaults.sale_price:.2f}",
            "stock_quantity": defaults.stock_quantity,
            "sku": default_sku(defaults.base_sku, combo),
            "image": None,
        })
    return drafts, skipped
