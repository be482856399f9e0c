# backend/storefront/services/products_service.py
"""
Products Service - simple and variable products

MODE RULES:
- Simple products carry price / sale_price / sku / stock_quantity themselves;
  price, sku and stock_quantity are required, sale_price must be below price.
- Variable products keep those top-level fields zeroed (price=0, sale_price and
  sku NULL, stock 0); their variants are reconciled by variant_service.
- Switching variable -> simple deletes every variant (and its image and join
  rows) in the same transaction that applies the simple fields.

Every write is one blob_transaction(): a failure anywhere rolls back the
product row, its variants and any image uploaded during the call.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from ..extensions import blobs, db
from ..models import Attribute, Category, Product, ProductVariant
from ..slugs import resolve_slug
from ..storage import UNSET, ExistingPath, ImageRef, NewUpload, StagedBlobs, check_image_upload
from ..time_utils import utcnow
from ..validation import (
    DuplicateSku,
    DuplicateSlug,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    coerce_bool,
    coerce_decimal,
    coerce_int,
    enforce_rules_product,
    enforce_sale_below_price,
    validate_payload,
)
from .combination_service import (
    SelectedAttribute,
    SelectedValue,
    VariantDefaults,
    combination_key,
    draft_variations,
    generate_combinations,
)
from .media_service import (
    GALLERY_IMAGE_FOLDER,
    PRODUCT_IMAGE_FOLDER,
    blob_transaction,
    release_unreferenced,
)
from .variant_service import (
    ReconcileMode,
    ReconciliationFailed,
    VariantSpec,
    reconcile_variants,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "category_id", "name", "slug", "description", "short_description",
        "price", "sale_price", "stock_quantity", "sku", "is_featured",
    },
    required_on_create={"name", "category_id"},
)

SIMPLE_REQUIRED_FIELDS = ("price", "sku", "stock_quantity")

VARIABLE_TOP_LEVEL = {
    "price": Decimal("0.00"),
    "sale_price": None,
    "sku": None,
    "stock_quantity": 0,
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_POLICY.writable_fields:
            continue
        setattr(p, k, v)


def _live_products():
    return db.session.query(Product).filter(Product.deleted_at.is_(None))


def _get_live_product(product_id: int) -> Product:
    p = _live_products().filter(Product.id == product_id).first()
    if p is None:
        raise NotFoundError(f"Product {product_id} not found")
    return p


def _require_category(category_id: int) -> None:
    if db.session.get(Category, category_id) is None:
        raise ValidationError("category_id does not exist", field="category_id")


def _claim_slug(slug: str, product_id: int | None) -> None:
    if not slug:
        raise ValidationError("slug cannot be blank", field="slug")
    q = db.session.query(Product.id).filter(Product.slug == slug)
    if product_id is not None:
        q = q.filter(Product.id != product_id)
    if q.first():
        raise DuplicateSlug("Slug already exists.", field="slug")


def _claim_sku(sku: str | None, product_id: int | None) -> None:
    """Product SKUs share one namespace with variant SKUs."""
    if not sku:
        return
    q = db.session.query(Product.id).filter(Product.sku == sku)
    vq = db.session.query(ProductVariant.id).filter(ProductVariant.sku == sku)
    if product_id is not None:
        q = q.filter(Product.id != product_id)
        # Own variants are about to be dropped when the product turns simple
        vq = vq.filter(ProductVariant.product_id != product_id)
    if q.first() or vq.first():
        raise DuplicateSku("SKU already exists.", field="sku")


def _drop_blank_slug(fields: dict | None) -> tuple[dict, bool]:
    """Blank slug means "derive from the name"; returns (fields, slug_was_sent)."""
    fields = dict(fields or {})
    sent = "slug" in fields
    if sent and not str(fields["slug"] or "").strip():
        fields.pop("slug")
    return fields, sent


def _check_image(image: ImageRef, field: str, current_path: str | None = None) -> None:
    if isinstance(image, NewUpload):
        check_image_upload(image, field)
    elif isinstance(image, ExistingPath) and image.path != current_path and not blobs.exists(image.path):
        raise ValidationError(f"{field} refers to a missing file", field=field)


def _set_featured_image(p: Product, image: ImageRef, staged: StagedBlobs) -> str | None:
    """Returns the path the product stopped using, if any."""
    previous = p.featured_image_path
    if isinstance(image, NewUpload):
        p.featured_image_path = staged.stage(image, PRODUCT_IMAGE_FOLDER)
    elif isinstance(image, ExistingPath):
        p.featured_image_path = image.path
    else:
        return None
    return previous if previous != p.featured_image_path else None


def _simple_fields_check(p: Product, patch: dict, needs_all: bool) -> None:
    missing = [
        f for f in SIMPLE_REQUIRED_FIELDS
        if (needs_all or f in patch) and patch.get(f) is None
    ]
    if missing:
        raise ValidationError(
            f"Missing required fields for a simple product: {', '.join(missing)}",
            field=missing[0],
        )
    price = patch["price"] if "price" in patch else p.price
    sale_price = patch["sale_price"] if "sale_price" in patch else p.sale_price
    enforce_sale_below_price(price, sale_price)


def create_product(
    *,
    fields: dict,
    is_variable,
    variations: Sequence[VariantSpec] | None = None,
    featured_image: ImageRef = UNSET,
    gallery_uploads: Iterable[NewUpload] = (),
) -> dict:
    """
    Create a product.

    Simple mode requires price, sku and stock_quantity. Variable mode ignores
    those top-level fields and creates one variant per entry of variations.

    Raises:
        ValidationError / DuplicateSlug / DuplicateSku: input problems (nothing written)
        DuplicateCombination: two requested variants share attribute values
        ReconciliationFailed: storage failure (nothing written, uploads removed)
    """
    is_variable = coerce_bool("is_variable", is_variable)
    fields, _ = _drop_blank_slug(fields)
    patch = validate_payload(model=Product, payload=fields, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    p = Product(is_variable=is_variable, gallery_image_paths=[])
    if is_variable:
        patch.update(VARIABLE_TOP_LEVEL)
    else:
        _simple_fields_check(p, patch, needs_all=True)

    _require_category(patch["category_id"])
    patch["slug"] = resolve_slug(patch.get("slug"), patch.get("name"))
    _claim_slug(patch["slug"], None)
    _claim_sku(patch.get("sku"), None)

    gallery_uploads = list(gallery_uploads)
    _check_image(featured_image, "featured_image")
    for i, upload in enumerate(gallery_uploads):
        check_image_upload(upload, f"gallery_images.{i}")

    with blob_transaction(ReconciliationFailed, "Could not save product") as staged:
        apply_product_patch(p, patch)
        db.session.add(p)
        _set_featured_image(p, featured_image, staged)
        p.gallery_image_paths = [staged.stage(u, GALLERY_IMAGE_FOLDER) for u in gallery_uploads]
        db.session.flush()

        if is_variable and variations:
            reconcile_variants(p, variations, mode=ReconcileMode.CREATE_ALL, staged=staged)

    return p.to_dict()


def update_product(
    *,
    product_id: int,
    fields: dict,
    is_variable=None,
    variations: Sequence[VariantSpec] | None = None,
    variations_mode: ReconcileMode = ReconcileMode.RECONCILE,
    featured_image: ImageRef = UNSET,
    remove_featured_image: bool = False,
    gallery_uploads: Iterable[NewUpload] = (),
    delete_gallery_images: Iterable[str] = (),
) -> dict:
    """
    Update a product and reconcile its variants.

    - variable -> variable with variations: reconcile (variations_mode)
    - variable -> variable without variations (None): variants untouched
    - variable -> simple: every variant deleted, simple fields required
    - simple -> variable: top-level fields zeroed, variations created

    Raises:
        NotFoundError: no live product with that id
        ValidationError / DuplicateSlug / DuplicateSku / DuplicateCombination
        ReconciliationFailed
    """
    p = _get_live_product(product_id)
    was_variable = p.is_variable
    now_variable = was_variable if is_variable is None else coerce_bool("is_variable", is_variable)

    fields, slug_sent = _drop_blank_slug(fields)
    patch = validate_payload(model=Product, payload=fields, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)
    if now_variable:
        patch.update(VARIABLE_TOP_LEVEL)
    else:
        _simple_fields_check(p, patch, needs_all=was_variable)

    if "category_id" in patch:
        _require_category(patch["category_id"])
    if slug_sent:
        patch["slug"] = resolve_slug(patch.get("slug"), patch.get("name", p.name))
        if patch["slug"] != p.slug:
            _claim_slug(patch["slug"], p.id)
    if patch.get("sku") and patch["sku"] != p.sku:
        _claim_sku(patch["sku"], p.id)

    gallery_uploads = list(gallery_uploads)
    _check_image(featured_image, "featured_image", p.featured_image_path)
    for i, upload in enumerate(gallery_uploads):
        check_image_upload(upload, f"gallery_images.{i}")

    with blob_transaction(ReconciliationFailed, "Could not save product") as staged:
        released: list[str | None] = []

        apply_product_patch(p, patch)
        p.is_variable = now_variable

        released.append(_set_featured_image(p, featured_image, staged))
        if remove_featured_image and not isinstance(featured_image, (NewUpload, ExistingPath)):
            released.append(p.featured_image_path)
            p.featured_image_path = None

        to_remove = set(delete_gallery_images or ())
        gallery = [path for path in (p.gallery_image_paths or []) if path not in to_remove]
        released.extend(path for path in (p.gallery_image_paths or []) if path in to_remove)
        gallery.extend(staged.stage(u, GALLERY_IMAGE_FOLDER) for u in gallery_uploads)
        p.gallery_image_paths = gallery

        if was_variable and not now_variable:
            reconcile_variants(p, [], mode=ReconcileMode.DELETE_ALL, staged=staged)
        elif now_variable and variations is not None:
            reconcile_variants(p, variations, mode=variations_mode, staged=staged)

        db.session.flush()
        release_unreferenced(released, staged)

    return p.to_dict()


def add_variations(*, product_id: int, variations: Sequence[VariantSpec]) -> dict:
    """Append variations to a variable product without touching the ones not listed."""
    p = _get_live_product(product_id)
    if not p.is_variable:
        raise ValidationError("Only variable products have variations", field="is_variable")
    with blob_transaction(ReconciliationFailed, "Could not save product") as staged:
        reconcile_variants(p, variations, mode=ReconcileMode.MERGE, staged=staged)
    return p.to_dict()


def delete_product(*, product_id: int) -> bool:
    """
    Soft-delete a product.

    Featured and gallery images are removed from the blob store, every variant
    is deleted (with its image and join rows), then deleted_at is set. The row
    itself stays so slug/SKU history is preserved and restore_product works.
    """
    p = _get_live_product(product_id)

    with blob_transaction(ReconciliationFailed, "Could not delete product") as staged:
        released = [p.featured_image_path, *(p.gallery_image_paths or [])]
        p.featured_image_path = None
        p.gallery_image_paths = []

        reconcile_variants(p, [], mode=ReconcileMode.DELETE_ALL, staged=staged)
        p.deleted_at = utcnow()

        db.session.flush()
        release_unreferenced(released, staged)

    return True


def restore_product(*, product_id: int) -> dict:
    p = db.session.query(Product).filter(Product.id == product_id, Product.deleted_at.isnot(None)).first()
    if p is None:
        raise NotFoundError(f"Deleted product {product_id} not found")
    p.deleted_at = None
    db.session.commit()
    return p.to_dict()


def get_product(product_id: int, include_deleted: bool = False) -> dict:
    if include_deleted:
        p = db.session.get(Product, product_id)
        if p is None:
            raise NotFoundError(f"Product {product_id} not found")
        return p.to_dict()
    return _get_live_product(product_id).to_dict()


def list_products(
    category_id: int | None = None,
    include_deleted: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional pagination.

    Soft-deleted products are excluded unless include_deleted is set.
    Variants are not inlined in listings.
    """
    base_query = db.session.query(Product) if include_deleted else _live_products()
    if category_id is not None:
        base_query = base_query.filter(Product.category_id == category_id)
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    # If no pagination requested, return all items
    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict(include_variants=False) for p in products],
            "count": len(products),
        }

    per_page = max(1, min(per_page or 20, 100))  # Default 20, clamped to 1..100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict(include_variants=False) for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def _parse_selections(selections) -> list[SelectedAttribute]:
    """
    [{"attribute_id": 1, "value_ids": [3, 4]}, ...] -> SelectedAttribute list.

    Attribute order follows the request; values follow the attribute's own
    display order.
    """
    if selections is None:
        selections = []
    if not isinstance(selections, list):
        raise ValidationError("attributes must be a list", field="attributes")

    selected = []
    seen = set()
    for index, raw in enumerate(selections):
        prefix = f"attributes.{index}"
        if not isinstance(raw, Mapping) or "attribute_id" not in raw:
            raise ValidationError(f"{prefix}.attribute_id is required", field=f"{prefix}.attribute_id")
        attribute_id = coerce_int(f"{prefix}.attribute_id", raw["attribute_id"])
        if attribute_id in seen:
            raise ValidationError(f"{prefix}.attribute_id is listed more than once", field=f"{prefix}.attribute_id")
        seen.add(attribute_id)
        attribute = db.session.get(Attribute, attribute_id)
        if attribute is None:
            raise ValidationError(f"Attribute {attribute_id} does not exist", field=f"{prefix}.attribute_id")

        raw_ids = raw.get("value_ids") or []
        if not isinstance(raw_ids, list):
            raise ValidationError(f"{prefix}.value_ids must be a list", field=f"{prefix}.value_ids")
        wanted = {coerce_int(f"{prefix}.value_ids", v) for v in raw_ids}
        known = {v.id for v in attribute.values}
        unknown = sorted(wanted - known)
        if unknown:
            raise ValidationError(
                f"Values {unknown} do not belong to attribute {attribute_id}",
                field=f"{prefix}.value_ids",
            )
        selected.append(SelectedAttribute(
            attribute_id=attribute.id,
            attribute_name=attribute.name,
            values=tuple(SelectedValue(v.id, v.value) for v in attribute.values if v.id in wanted),
        ))
    return selected


def generate_variations(*, selections, product_id: int | None = None, base: dict | None = None) -> dict:
    """
    Draft variations for the selected attribute values.

    Nothing is written. When product_id is given, combinations the product
    already has are skipped and defaults come from the product; base
    overrides price / sale_price / stock_quantity / sku.

    Raises:
        EmptySelection: no attribute or no value selected
        ValidationError: unknown attribute/value ids
    """
    selected = _parse_selections(selections)
    combinations = generate_combinations(selected)

    defaults = {"price": Decimal("0.00"), "sale_price": None, "stock_quantity": 0, "sku": None}
    existing_keys = []
    if product_id is not None:
        p = _get_live_product(product_id)
        if not p.is_variable:
            defaults.update(price=p.price, sale_price=p.sale_price, stock_quantity=p.stock_quantity, sku=p.sku)
        existing_keys = [combination_key(v.combination_pairs) for v in p.variants]

    base = base or {}
    if not isinstance(base, Mapping):
        raise ValidationError("base must be an object", field="base")
    if base.get("price") not in (None, ""):
        defaults["price"] = coerce_decimal("price", base["price"])
    if base.get("sale_price") not in (None, ""):
        defaults["sale_price"] = coerce_decimal("sale_price", base["sale_price"])
    if base.get("stock_quantity") not in (None, ""):
        defaults["stock_quantity"] = coerce_int("stock_quantity", base["stock_quantity"])
    if base.get("sku"):
        defaults["sku"] = str(base["sku"]).strip()

    drafts, skipped = draft_variations(
        combinations,
        VariantDefaults(
            price=defaults["price"],
            sale_price=defaults["sale_price"],
            stock_quantity=defaults["stock_quantity"],
            base_sku=defaults["sku"],
        ),
        existing_keys,
    )
    return {"variations": drafts, "generated": len(combinations), "skipped": skipped}
