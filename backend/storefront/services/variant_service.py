# Overview: Service-layer operations for product variants; diffs requested variants against stored ones.

"""
Variant Service - reconciliation of a product's variant set

A product update carries the complete list of variants the client wants to
keep. Each entry either references a stored variant (ExistingVariant) or is a
new combination (NewVariant). Reconciliation turns that list into creates,
updates and deletes.

TWO PHASES:
1. plan_reconciliation() is pure: it indexes stored variants by combination
   key, classifies every requested entry and validates the complete target
   state (no two surviving variants may share a key) BEFORE anything is
   written.
2. reconcile_variants() validates requested data against the catalog, builds
   the plan, then applies it to the session. It never commits: the caller owns
   the transaction, so product fields, variants, join rows and image
   references succeed or fail together.

IMAGES:
New uploads are written through StagedBlobs so a rolled-back transaction can
remove them again. Replaced or orphaned images are only scheduled for deletion
and disappear after the caller commits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional, Sequence, Union

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import blobs, db
from ..models import AttributeValue, Product, ProductVariant, VariantAttributeValue
from ..storage import UNSET, ExistingPath, ImageRef, NewUpload, StagedBlobs, check_image_upload, image_ref_from_value
from ..validation import (
    ConflictError,
    DuplicateSku,
    ValidationError,
    coerce_decimal,
    coerce_int,
    enforce_rules_variant,
)
from .combination_service import CombinationKey, combination_key
from .media_service import VARIANT_IMAGE_FOLDER, StorageFailure, release_unreferenced


class DuplicateCombination(ConflictError):
    """Two surviving variants of one product would have the same attribute values."""


class ReconciliationFailed(StorageFailure):
    """Storage failure while applying a reconciliation; nothing was kept."""


class ReconcileMode(str, Enum):
    # Request is the complete target set: unreferenced variants are deleted
    RECONCILE = "reconcile"
    # Request only adds/updates: unreferenced variants are kept
    MERGE = "merge"
    # Product is new: every entry must be a create
    CREATE_ALL = "create_all"
    # Product left variable mode or is being deleted: drop every variant
    DELETE_ALL = "delete_all"


@dataclass(frozen=True)
class NewVariant:
    temp_key: str


@dataclass(frozen=True)
class ExistingVariant:
    id: int


VariantRef = Union[NewVariant, ExistingVariant]


@dataclass
class VariantSpec:
    """
    One requested variant.

    combination is a sequence of (attribute_id, value_id) pairs; None on an
    ExistingVariant means "keep the stored combination".
    """
    ref: VariantRef
    combination: Optional[tuple[tuple[int, int], ...]] = None
    price: Optional[Decimal] = None
    sale_price: Optional[Decimal] = None
    stock_quantity: int = 0
    sku: Optional[str] = None
    image: ImageRef = UNSET


@dataclass(frozen=True)
class PlannedCreate:
    index: int
    spec: VariantSpec
    key: CombinationKey


@dataclass(frozen=True)
class PlannedUpdate:
    index: int
    spec: VariantSpec
    variant_id: int
    key: CombinationKey
    key_changed: bool


@dataclass
class ReconciliationPlan:
    creates: list[PlannedCreate] = field(default_factory=list)
    updates: list[PlannedUpdate] = field(default_factory=list)
    deletes: list[int] = field(default_factory=list)
    # Stored variants nobody referenced that survive (MERGE only)
    kept: list[int] = field(default_factory=list)


@dataclass
class ReconciliationResult:
    created: list[int] = field(default_factory=list)
    updated: list[int] = field(default_factory=list)
    deleted: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"created": self.created, "updated": self.updated, "deleted": self.deleted}


# =============================================================================
# Request parsing
# =============================================================================

def _parse_ref(raw: dict, index: int) -> VariantRef:
    raw_id = raw.get("id")
    if isinstance(raw_id, int) and not isinstance(raw_id, bool):
        return ExistingVariant(raw_id)
    if isinstance(raw_id, str) and raw_id.strip().isdigit():
        return ExistingVariant(int(raw_id.strip()))
    temp = raw.get("temp_id") or raw_id or f"new-{index}"
    return NewVariant(str(temp))


def _parse_combination(raw, prefix: str) -> Optional[tuple[tuple[int, int], ...]]:
    if raw is None:
        return None
    if not isinstance(raw, (list, tuple)):
        raise ValidationError(f"{prefix}.combination must be a list", field=f"{prefix}.combination")
    pairs = []
    for pos, entry in enumerate(raw):
        entry_field = f"{prefix}.combination.{pos}"
        if not isinstance(entry, Mapping) or "value_id" not in entry or "attribute_id" not in entry:
            raise ValidationError(f"{entry_field} needs attribute_id and value_id", field=entry_field)
        pairs.append((
            coerce_int(f"{entry_field}.attribute_id", entry["attribute_id"]),
            coerce_int(f"{entry_field}.value_id", entry["value_id"]),
        ))
    return tuple(pairs)


def parse_variant_specs(raw_list, uploads: Mapping[str, NewUpload] | None = None) -> list[VariantSpec]:
    """
    Turn request JSON into VariantSpecs.

    uploads maps either the entry index ("0", "1", ...) or its temp_id to a
    NewUpload taken from the multipart body.
    """
    if raw_list is None:
        return []
    if not isinstance(raw_list, list):
        raise ValidationError("variations must be a list", field="variations")
    uploads = uploads or {}

    specs = []
    for index, raw in enumerate(raw_list):
        prefix = f"variations.{index}"
        if not isinstance(raw, Mapping):
            raise ValidationError(f"{prefix} must be an object", field=prefix)
        ref = _parse_ref(raw, index)

        def _decimal(key):
            value = raw.get(key)
            if value is None or value == "":
                return None
            return coerce_decimal(f"{prefix}.{key}", value)

        stock = raw.get("stock_quantity")
        sku = raw.get("sku")
        upload = uploads.get(str(index))
        if upload is None and isinstance(ref, NewVariant):
            upload = uploads.get(ref.temp_key)

        specs.append(VariantSpec(
            ref=ref,
            combination=_parse_combination(raw.get("combination"), prefix),
            price=_decimal("price"),
            sale_price=_decimal("sale_price"),
            stock_quantity=0 if stock in (None, "") else coerce_int(f"{prefix}.stock_quantity", stock),
            sku=str(sku).strip() if sku is not None else None,
            image=image_ref_from_value(raw.get("image"), upload),
        ))
    return specs


# =============================================================================
# Planning (pure)
# =============================================================================

def plan_reconciliation(
    existing: Mapping[int, CombinationKey],
    specs: Sequence[VariantSpec],
    mode: ReconcileMode = ReconcileMode.RECONCILE,
) -> ReconciliationPlan:
    """
    Classify requested variants against stored ones and validate the result.

    existing maps stored variant id -> combination key for ONE product.

    Raises:
        ValidationError: unknown/duplicate variant id, missing combination,
            existing id in CREATE_ALL mode
        DuplicateCombination: two surviving variants share a combination key
    """
    plan = ReconciliationPlan()
    if mode == ReconcileMode.DELETE_ALL:
        plan.deletes = sorted(existing)
        return plan

    referenced: set[int] = set()
    for index, spec in enumerate(specs):
        prefix = f"variations.{index}"
        if isinstance(spec.ref, ExistingVariant):
            variant_id = spec.ref.id
            if mode == ReconcileMode.CREATE_ALL:
                raise ValidationError(f"{prefix}.id cannot reference a stored variant here", field=f"{prefix}.id")
            if variant_id not in existing:
                raise ValidationError(
                    f"Variant {variant_id} does not belong to this product",
                    field=f"{prefix}.id",
                )
            if variant_id in referenced:
                raise ValidationError(f"Variant {variant_id} is listed more than once", field=f"{prefix}.id")
            referenced.add(variant_id)

            if spec.combination is None:
                key = existing[variant_id]
            else:
                key = combination_key(spec.combination)
            if not key:
                raise ValidationError(f"{prefix}.combination cannot be empty", field=f"{prefix}.combination")
            plan.updates.append(PlannedUpdate(index, spec, variant_id, key, key != existing[variant_id]))
        else:
            key = combination_key(spec.combination or ())
            if not key:
                raise ValidationError(f"{prefix}.combination is required", field=f"{prefix}.combination")
            plan.creates.append(PlannedCreate(index, spec, key))

    unreferenced = sorted(vid for vid in existing if vid not in referenced)
    if mode == ReconcileMode.MERGE:
        plan.kept = unreferenced
    else:
        plan.deletes = unreferenced

    # Uniqueness guard over the complete target state
    owners: dict[CombinationKey, str] = {existing[vid]: f"variant {vid}" for vid in plan.kept}
    planned = sorted(plan.updates + plan.creates, key=lambda item: item.index)
    for item in planned:
        label = f"variations.{item.index}"
        if item.key in owners:
            raise DuplicateCombination(
                f"{label} has the same attribute values as {owners[item.key]}",
                field=f"{label}.combination",
                details={"combination": [list(pair) for pair in item.key]},
            )
        owners[item.key] = label
    return plan


# =============================================================================
# Validation against the catalog
# =============================================================================

def _load_values(specs: Sequence[VariantSpec]) -> dict[int, AttributeValue]:
    value_ids = {vid for spec in specs for (_aid, vid) in (spec.combination or ())}
    if not value_ids:
        return {}
    rows = db.session.query(AttributeValue).filter(AttributeValue.id.in_(value_ids)).all()
    return {row.id: row for row in rows}


def _validate_combination(spec: VariantSpec, prefix: str, values: Mapping[int, AttributeValue]) -> None:
    if spec.combination is None:
        return
    field_name = f"{prefix}.combination"
    seen_attributes: set[int] = set()
    for attribute_id, value_id in combination_key(spec.combination):
        value = values.get(value_id)
        if value is None:
            raise ValidationError(f"Attribute value {value_id} does not exist", field=field_name)
        if value.attribute_id != attribute_id:
            raise ValidationError(
                f"Attribute value {value_id} does not belong to attribute {attribute_id}",
                field=field_name,
            )
        if attribute_id in seen_attributes:
            raise ValidationError(
                f"{field_name} has more than one value for attribute {attribute_id}",
                field=field_name,
            )
        seen_attributes.add(attribute_id)


def _validate_image(spec: VariantSpec, prefix: str, current_path: str | None) -> None:
    image = spec.image
    if isinstance(image, NewUpload):
        check_image_upload(image, f"{prefix}.image")
    elif isinstance(image, ExistingPath) and image.path != current_path:
        if not blobs.exists(image.path):
            raise ValidationError(f"{prefix}.image refers to a missing file", field=f"{prefix}.image")


def _validate_specs(
    specs: Sequence[VariantSpec],
    stored: Mapping[int, ProductVariant],
    values: Mapping[int, AttributeValue],
) -> None:
    for index, spec in enumerate(specs):
        prefix = f"variations.{index}"
        enforce_rules_variant(
            {
                "price": spec.price,
                "sale_price": spec.sale_price,
                "stock_quantity": spec.stock_quantity,
                "sku": spec.sku,
            },
            prefix,
        )
        _validate_combination(spec, prefix, values)
        current = stored.get(spec.ref.id) if isinstance(spec.ref, ExistingVariant) else None
        _validate_image(spec, prefix, current.image_path if current else None)


def _check_skus(product: Product, plan: ReconciliationPlan, stored: Mapping[int, ProductVariant]) -> None:
    """SKUs must be unique among surviving variants and against every other stored SKU."""
    wanted: dict[str, str] = {}
    for vid in plan.kept:
        wanted[stored[vid].sku] = f"variant {vid}"
    planned = sorted(plan.updates + plan.creates, key=lambda item: item.index)
    for item in planned:
        label = f"variations.{item.index}.sku"
        if item.spec.sku in wanted:
            raise DuplicateSku(f"SKU {item.spec.sku!r} is used twice in this product", field=label)
        wanted[item.spec.sku] = label

    if not wanted:
        return

    q = db.session.query(ProductVariant).filter(ProductVariant.sku.in_(list(wanted)))
    if product.id is not None:
        q = q.filter(ProductVariant.product_id != product.id)
    clash = q.first()
    if clash is None:
        q = db.session.query(Product).filter(Product.sku.in_(list(wanted)))
        if product.id is not None:
            q = q.filter(Product.id != product.id)
        clash = q.first()
    if clash is not None:
        raise DuplicateSku(f"SKU {clash.sku!r} already exists", field=wanted[clash.sku])


# =============================================================================
# Apply
# =============================================================================

def _set_image(variant: ProductVariant, image: ImageRef, staged: StagedBlobs) -> str | None:
    """Point the variant at its new image; returns the path it no longer uses."""
    previous = variant.image_path
    if isinstance(image, NewUpload):
        variant.image_path = staged.stage(image, VARIANT_IMAGE_FOLDER)
    elif isinstance(image, ExistingPath):
        variant.image_path = image.path
    else:
        return None
    return previous if previous != variant.image_path else None


def _sync_links(variant: ProductVariant, key: CombinationKey, values: Mapping[int, AttributeValue]) -> None:
    """Set-sync join rows: drop pairs no longer wanted, add new ones, leave the rest."""
    target = {value_id for (_aid, value_id) in key}
    current = {link.attribute_value_id: link for link in variant.attribute_links}
    for value_id, link in current.items():
        if value_id not in target:
            variant.attribute_links.remove(link)
    for value_id in sorted(target - current.keys()):
        variant.attribute_links.append(VariantAttributeValue(attribute_value=values[value_id]))


def _apply(
    product: Product,
    plan: ReconciliationPlan,
    stored: Mapping[int, ProductVariant],
    values: Mapping[int, AttributeValue],
    staged: StagedBlobs,
) -> ReconciliationResult:
    result = ReconciliationResult()
    released: list[str] = []

    for variant_id in plan.deletes:
        variant = stored[variant_id]
        released.append(variant.image_path)
        product.variants.remove(variant)
        db.session.delete(variant)
        result.deleted.append(variant_id)

    for upd in plan.updates:
        variant = stored[upd.variant_id]
        spec = upd.spec
        variant.price = spec.price
        variant.sale_price = spec.sale_price
        variant.stock_quantity = spec.stock_quantity
        variant.sku = spec.sku
        released.append(_set_image(variant, spec.image, staged))
        if upd.key_changed:
            _sync_links(variant, upd.key, values)
        result.updated.append(variant.id)

    created = []
    for cr in plan.creates:
        spec = cr.spec
        variant = ProductVariant(
            price=spec.price,
            sale_price=spec.sale_price,
            stock_quantity=spec.stock_quantity,
            sku=spec.sku,
        )
        _set_image(variant, spec.image, staged)
        for _attribute_id, value_id in cr.key:
            variant.attribute_links.append(VariantAttributeValue(attribute_value=values[value_id]))
        product.variants.append(variant)
        created.append(variant)

    db.session.flush()
    result.created = [v.id for v in created]

    release_unreferenced(released, staged)
    return result


def reconcile_variants(
    product: Product,
    specs: Sequence[VariantSpec],
    *,
    mode: ReconcileMode,
    staged: StagedBlobs,
) -> ReconciliationResult:
    """
    Bring product.variants in line with specs inside the current transaction.

    Validation and planning happen before any mutation, so ValidationError,
    DuplicateSku and DuplicateCombination leave the session untouched.
    Storage failures while applying raise ReconciliationFailed; the caller
    must roll back the session and the staged blobs.
    """
    stored = {v.id: v for v in product.variants if v.id is not None}
    existing_keys = {vid: combination_key(v.combination_pairs) for vid, v in stored.items()}

    if mode == ReconcileMode.DELETE_ALL:
        specs = []
        values: dict[int, AttributeValue] = {}
    else:
        values = _load_values(specs)
        _validate_specs(specs, stored, values)

    plan = plan_reconciliation(existing_keys, specs, mode)
    if mode != ReconcileMode.DELETE_ALL:
        _check_skus(product, plan, stored)

    try:
        result = _apply(product, plan, stored, values, staged)
    except (SQLAlchemyError, OSError) as exc:
        current_app.logger.exception("Variant reconciliation failed for product %s", product.id)
        raise ReconciliationFailed("Could not save product variants") from exc

    current_app.logger.info(
        "Reconciled variants for product %s (%s): created=%d updated=%d deleted=%d",
        product.id,
        mode.value,
        len(result.created),
        len(result.updated),
        len(result.deleted),
    )
    return result
