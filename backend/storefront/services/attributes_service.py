# Overview: Service-layer operations for variation attributes and their ordered values.

"""
Attributes Service - attribute catalog

FULL REPLACE:
update_attribute() receives the complete value list. Values carrying an id are
updated in place (the id survives, so variant combinations keep pointing at
them), values without an id are created, every other value is removed.

REFERENCED VALUES:
A value that is part of a stored variant combination cannot be removed by an
update (ValueInUse). Deleting a whole attribute is allowed and drops the
attribute's pairs from every variant, unless that would leave two variants of
one product with the same combination (DuplicateCombination).
"""
from __future__ import annotations

from collections import defaultdict
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Attribute, AttributeValue, ProductVariant, VariantAttributeValue
from ..slugs import resolve_slug
from ..validation import (
    DuplicateSlug,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    ValueInUse,
    coerce_int,
    validate_payload,
)
from .combination_service import combination_key
from .media_service import StorageFailure
from .variant_service import DuplicateCombination

ATTRIBUTE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "slug", "description"},
    required_on_create={"name"},
)


def _get_attribute(attribute_id: int) -> Attribute:
    attribute = db.session.get(Attribute, attribute_id)
    if attribute is None:
        raise NotFoundError(f"Attribute {attribute_id} not found")
    return attribute


def _commit(message: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageFailure(message) from exc


def _attribute_patch(name, slug, description, partial: bool) -> dict:
    payload = {"name": name, "description": description}
    if slug is not None and str(slug).strip():
        payload["slug"] = slug
    patch = validate_payload(model=Attribute, payload=payload, policy=ATTRIBUTE_POLICY, partial=partial)
    if not patch.get("name"):
        raise ValidationError("name is required", field="name")
    patch["slug"] = resolve_slug(patch.get("slug"), patch["name"])
    if not patch["slug"]:
        raise ValidationError("slug cannot be derived from name", field="slug")
    return patch


def _claim_slug(slug: str, attribute_id: int | None) -> None:
    q = db.session.query(Attribute.id).filter(Attribute.slug == slug)
    if attribute_id is not None:
        q = q.filter(Attribute.id != attribute_id)
    if q.first():
        raise DuplicateSlug("Slug already exists.", field="slug")


def _normalize_values(values) -> list[dict]:
    """
    [{"id"?, "value", "slug"?}, ...] -> cleaned entries with resolved slugs.

    Raises ValidationError on blank values and DuplicateSlug when two entries
    resolve to the same slug.
    """
    if not isinstance(values, (list, tuple)) or not values:
        raise ValidationError("At least one value is required", field="values")

    cleaned = []
    seen: dict[str, int] = {}
    for index, raw in enumerate(values):
        prefix = f"values.{index}"
        if isinstance(raw, str):
            raw = {"value": raw}
        if not isinstance(raw, dict):
            raise ValidationError(f"{prefix} must be an object", field=prefix)
        value = str(raw.get("value") or "").strip()
        if not value:
            raise ValidationError(f"{prefix}.value is required", field=f"{prefix}.value")
        if len(value) > 255:
            raise ValidationError(f"{prefix}.value exceeds max length 255", field=f"{prefix}.value")
        slug = resolve_slug(raw.get("slug"), value)
        if not slug:
            raise ValidationError(f"{prefix}.slug cannot be derived from value", field=f"{prefix}.slug")
        if slug in seen:
            raise DuplicateSlug(
                f"{prefix} has the same slug as values.{seen[slug]}",
                field=f"{prefix}.slug",
            )
        seen[slug] = index

        raw_id = raw.get("id")
        cleaned.append({
            "id": None if raw_id in (None, "") else coerce_int(f"{prefix}.id", raw_id),
            "value": value,
            "slug": slug,
            "position": index,
        })
    return cleaned


def create_attribute(*, name, slug=None, description=None, values: Sequence) -> dict:
    """
    Create an attribute with its ordered values.

    Raises:
        ValidationError: name missing, no values, blank value
        DuplicateSlug: attribute slug taken, or two values share a slug
    """
    patch = _attribute_patch(name, slug, description, partial=False)
    entries = _normalize_values(values)
    _claim_slug(patch["slug"], None)

    attribute = Attribute(**patch)
    for entry in entries:
        attribute.values.append(
            AttributeValue(value=entry["value"], slug=entry["slug"], position=entry["position"])
        )
    db.session.add(attribute)
    _commit("Could not save attribute")
    return attribute.to_dict()


def _variant_users(value_ids: set[int]) -> dict[int, list[int]]:
    """value_id -> sorted product ids of variants that use it."""
    if not value_ids:
        return {}
    rows = (
        db.session.query(VariantAttributeValue.attribute_value_id, ProductVariant.product_id)
        .join(ProductVariant, ProductVariant.id == VariantAttributeValue.product_variant_id)
        .filter(VariantAttributeValue.attribute_value_id.in_(value_ids))
        .all()
    )
    users: dict[int, set[int]] = defaultdict(set)
    for value_id, product_id in rows:
        users[value_id].add(product_id)
    return {value_id: sorted(products) for value_id, products in users.items()}


def update_attribute(*, attribute_id: int, name, slug=None, description=None, values: Sequence) -> dict:
    """
    Replace an attribute's fields and complete value list.

    Raises:
        NotFoundError: unknown attribute
        ValidationError: a value id from another attribute, blank input
        DuplicateSlug: slug collisions
        ValueInUse: a value to be removed is used by a variant
    """
    attribute = _get_attribute(attribute_id)
    patch = _attribute_patch(name, slug, description, partial=True)
    entries = _normalize_values(values)
    if patch["slug"] != attribute.slug:
        _claim_slug(patch["slug"], attribute.id)

    stored = {v.id: v for v in attribute.values}
    kept_ids = set()
    for index, entry in enumerate(entries):
        if entry["id"] is None:
            continue
        if entry["id"] not in stored:
            raise ValidationError(
                f"Value {entry['id']} does not belong to this attribute",
                field=f"values.{index}.id",
            )
        if entry["id"] in kept_ids:
            raise ValidationError(f"Value {entry['id']} is listed more than once", field=f"values.{index}.id")
        kept_ids.add(entry["id"])

    removed = [v for vid, v in stored.items() if vid not in kept_ids]
    in_use = _variant_users({v.id for v in removed})
    if in_use:
        blocked = [v for v in removed if v.id in in_use]
        product_ids = sorted({pid for pids in in_use.values() for pid in pids})
        raise ValueInUse(
            f"Value '{blocked[0].value}' is used by product variants",
            field="values",
            details={"value_ids": sorted(in_use), "product_ids": product_ids},
        )

    for key, val in patch.items():
        setattr(attribute, key, val)

    for value in removed:
        attribute.values.remove(value)
    # Removed slugs must be gone before a new/renamed value reuses them
    db.session.flush()

    for entry in entries:
        if entry["id"] is None:
            attribute.values.append(
                AttributeValue(value=entry["value"], slug=entry["slug"], position=entry["position"])
            )
        else:
            value = stored[entry["id"]]
            value.value = entry["value"]
            value.slug = entry["slug"]
            value.position = entry["position"]

    _commit("Could not save attribute")
    return attribute.to_dict()


def _collisions_without(attribute: Attribute) -> list[int]:
    """Product ids where dropping this attribute's pairs would merge two variants."""
    value_ids = {v.id for v in attribute.values}
    affected_products = set(p for pids in _variant_users(value_ids).values() for p in pids)
    if not affected_products:
        return []

    colliding = []
    variants = (
        db.session.query(ProductVariant)
        .filter(ProductVariant.product_id.in_(affected_products))
        .all()
    )
    by_product: dict[int, list[ProductVariant]] = defaultdict(list)
    for variant in variants:
        by_product[variant.product_id].append(variant)

    for product_id, product_variants in sorted(by_product.items()):
        seen = set()
        for variant in product_variants:
            key = combination_key((a, v) for (a, v) in variant.combination_pairs if v not in value_ids)
            if key in seen:
                colliding.append(product_id)
                break
            seen.add(key)
    return colliding


def delete_attribute(*, attribute_id: int) -> bool:
    """
    Delete an attribute, its values and every variant join row using them.

    Variants stay; their combinations lose this attribute's pair.

    Raises:
        NotFoundError: unknown attribute
        DuplicateCombination: two variants of a product would end up identical
    """
    attribute = _get_attribute(attribute_id)
    colliding = _collisions_without(attribute)
    if colliding:
        raise DuplicateCombination(
            f"Deleting '{attribute.name}' would leave products with duplicate variants",
            field="attribute_id",
            details={"product_ids": colliding},
        )

    db.session.delete(attribute)
    _commit("Could not delete attribute")
    return True


def get_attribute(attribute_id: int) -> dict:
    return _get_attribute(attribute_id).to_dict()


def list_attributes(include_values: bool = True) -> dict:
    attributes = db.session.query(Attribute).order_by(Attribute.name.asc(), Attribute.id.asc()).all()
    return {
        "items": [a.to_dict(include_values=include_values) for a in attributes],
        "count": len(attributes),
    }
