# Overview: Flask API routes for products and their variations; parses input and returns JSON responses.

# backend/storefront/routes/products.py
"""
Product management routes.

Writes accept JSON or multipart (see request_data). Besides the product columns
the payload may carry:
- is_variable: bool
- variations: list of variation objects ({id | temp_id, combination, price,
  sale_price, stock_quantity, sku, image})
- variations_mode: "reconcile" (default; list is the complete set) or "merge"
- featured_image: existing path; remove_featured_image: bool
- delete_gallery_images: list of gallery paths to drop
"""
from flask import Blueprint, request
from ..decorators import catalog_errors
from ..request_data import arg_bool, read_payload, uploaded_file, uploaded_files, variation_uploads
from ..services import products_service
from ..services.variant_service import ReconcileMode, parse_variant_specs
from ..storage import image_ref_from_value
from ..validation import ValidationError, coerce_bool

products_bp = Blueprint("products", __name__, url_prefix="/api/products")

# Payload keys that steer the write instead of mapping to a Product column
CONTROL_KEYS = {
    "is_variable",
    "variations",
    "variations_mode",
    "featured_image",
    "remove_featured_image",
    "delete_gallery_images",
}

UPDATE_MODES = {
    ReconcileMode.RECONCILE.value: ReconcileMode.RECONCILE,
    ReconcileMode.MERGE.value: ReconcileMode.MERGE,
}


def _split_payload(payload: dict) -> tuple[dict, dict]:
    fields = {k: v for k, v in payload.items() if k not in CONTROL_KEYS}
    control = {k: v for k, v in payload.items() if k in CONTROL_KEYS}
    return fields, control


def _variations(control: dict):
    if "variations" not in control or control["variations"] is None:
        return None
    return parse_variant_specs(control["variations"], variation_uploads())


def _gallery_removals(control: dict) -> list[str]:
    raw = control.get("delete_gallery_images") or []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        raise ValidationError("delete_gallery_images must be a list", field="delete_gallery_images")
    return [str(p) for p in raw if p]


@products_bp.get("")
@catalog_errors
def list_products():
    """
    List products with optional pagination.

    Query params:
    - category_id: int (optional)
    - include_deleted: bool (optional) - include soft-deleted products
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    return products_service.list_products(
        category_id=request.args.get("category_id", type=int),
        include_deleted=arg_bool("include_deleted"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.post("")
@catalog_errors
def create_product_route():
    payload = read_payload()
    fields, control = _split_payload(payload)

    created = products_service.create_product(
        fields=fields,
        is_variable=control.get("is_variable", False),
        variations=_variations(control),
        featured_image=image_ref_from_value(control.get("featured_image"), uploaded_file("featured_image")),
        gallery_uploads=uploaded_files("gallery_images"),
    )
    return created, 201


@products_bp.get("/<int:product_id>")
@catalog_errors
def get_product_route(product_id: int):
    return products_service.get_product(product_id, include_deleted=arg_bool("include_deleted"))


@products_bp.put("/<int:product_id>")
@catalog_errors
def update_product_route(product_id: int):
    payload = read_payload()
    fields, control = _split_payload(payload)

    mode_name = str(control.get("variations_mode") or ReconcileMode.RECONCILE.value).lower()
    if mode_name not in UPDATE_MODES:
        raise ValidationError(
            f"variations_mode must be one of: {', '.join(sorted(UPDATE_MODES))}",
            field="variations_mode",
        )

    updated = products_service.update_product(
        product_id=product_id,
        fields=fields,
        is_variable=control.get("is_variable"),
        variations=_variations(control),
        variations_mode=UPDATE_MODES[mode_name],
        featured_image=image_ref_from_value(control.get("featured_image"), uploaded_file("featured_image")),
        remove_featured_image=coerce_bool("remove_featured_image", control.get("remove_featured_image", False)),
        gallery_uploads=uploaded_files("gallery_images"),
        delete_gallery_images=_gallery_removals(control),
    )
    return updated, 200


@products_bp.delete("/<int:product_id>")
@catalog_errors
def delete_product_route(product_id: int):
    """Soft-delete a product; images and variants are removed."""
    products_service.delete_product(product_id=product_id)
    return {"ok": True}, 200


@products_bp.post("/<int:product_id>/restore")
@catalog_errors
def restore_product_route(product_id: int):
    return products_service.restore_product(product_id=product_id), 200


@products_bp.post("/<int:product_id>/variations")
@catalog_errors
def add_variations_route(product_id: int):
    """Append variations; stored variations not listed are kept."""
    payload = read_payload()
    specs = parse_variant_specs(payload.get("variations"), variation_uploads())
    if not specs:
        raise ValidationError("variations must not be empty", field="variations")
    return products_service.add_variations(product_id=product_id, variations=specs), 200


@products_bp.post("/generate-variations")
@products_bp.post("/<int:product_id>/generate-variations")
@catalog_errors
def generate_variations_route(product_id: int | None = None):
    """
    Draft variations for the selected attribute values (nothing is saved).

    Body: {"attributes": [{"attribute_id": 1, "value_ids": [1, 2]}, ...],
           "base": {"price", "sale_price", "stock_quantity", "sku"}}
    """
    payload = read_payload()
    return products_service.generate_variations(
        selections=payload.get("attributes"),
        product_id=product_id,
        base=payload.get("base"),
    ), 200
