# Overview: Flask API routes for product categories; parses input and returns JSON responses.

from flask import Blueprint, request
from ..decorators import catalog_errors
from ..request_data import arg_bool, read_payload, uploaded_file
from ..services import categories_service
from ..storage import image_ref_from_value
from ..validation import coerce_bool

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")

CONTROL_KEYS = {"image", "remove_image"}


@categories_bp.get("")
@catalog_errors
def list_categories():
    """
    Query params:
    - parent_id: int (optional) - direct children of this category
    - roots_only: bool (optional) - only top-level categories
    """
    return categories_service.list_categories(
        parent_id=request.args.get("parent_id", type=int),
        roots_only=arg_bool("roots_only"),
    )


@categories_bp.post("")
@catalog_errors
def create_category_route():
    payload = read_payload()
    fields = {k: v for k, v in payload.items() if k not in CONTROL_KEYS}
    created = categories_service.create_category(
        fields=fields,
        image=image_ref_from_value(payload.get("image"), uploaded_file("image")),
    )
    return created, 201


@categories_bp.get("/<int:category_id>")
@catalog_errors
def get_category_route(category_id: int):
    return categories_service.get_category(category_id)


@categories_bp.put("/<int:category_id>")
@catalog_errors
def update_category_route(category_id: int):
    payload = read_payload()
    fields = {k: v for k, v in payload.items() if k not in CONTROL_KEYS}
    updated = categories_service.update_category(
        category_id=category_id,
        fields=fields,
        image=image_ref_from_value(payload.get("image"), uploaded_file("image")),
        remove_image=coerce_bool("remove_image", payload.get("remove_image", False)),
    )
    return updated, 200


@categories_bp.delete("/<int:category_id>")
@catalog_errors
def delete_category_route(category_id: int):
    categories_service.delete_category(category_id=category_id)
    return {"ok": True}, 200
