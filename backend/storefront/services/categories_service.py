# Overview: Service-layer operations for the category tree; validates parents and owns category images.

"""
Categories Service - product category tree

- Slugs are derived from the name unless given, and must be unique.
- parent_id must reference another existing category and may not create a cycle.
- Deleting a category that still holds live products is refused; its child
  categories are detached (parent_id = NULL), not deleted.
"""
from __future__ import annotations

from ..extensions import blobs, db
from ..models import Category, Product
from ..slugs import resolve_slug
from ..storage import UNSET, ExistingPath, ImageRef, NewUpload, check_image_upload
from ..validation import (
    ConflictError,
    DuplicateSlug,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    validate_payload,
)
from .media_service import CATEGORY_IMAGE_FOLDER, blob_transaction, release_unreferenced

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"parent_id", "name", "slug", "description", "sort_order"},
    required_on_create={"name"},
)


def _get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found")
    return category


def _claim_slug(slug: str, category_id: int | None) -> None:
    if not slug:
        raise ValidationError("slug cannot be derived from name", field="slug")
    q = db.session.query(Category.id).filter(Category.slug == slug)
    if category_id is not None:
        q = q.filter(Category.id != category_id)
    if q.first():
        raise DuplicateSlug("Slug already exists.", field="slug")


def _check_parent(parent_id: int | None, category_id: int | None) -> None:
    if parent_id is None:
        return
    if parent_id == category_id:
        raise ValidationError("A category cannot be its own parent", field="parent_id")
    parent = db.session.get(Category, parent_id)
    if parent is None:
        raise ValidationError("parent_id does not exist", field="parent_id")
    # Walk up from the new parent; meeting this category again means a cycle
    seen = set()
    while parent is not None and parent.id not in seen:
        if category_id is not None and parent.id == category_id:
            raise ValidationError("parent_id would create a cycle", field="parent_id")
        seen.add(parent.id)
        parent = parent.parent


def _check_image(image: ImageRef, current_path: str | None = None) -> None:
    if isinstance(image, NewUpload):
        check_image_upload(image, "image")
    elif isinstance(image, ExistingPath) and image.path != current_path and not blobs.exists(image.path):
        raise ValidationError("image refers to a missing file", field="image")


def create_category(*, fields: dict, image: ImageRef = UNSET) -> dict:
    fields = dict(fields or {})
    if not str(fields.get("slug") or "").strip():
        fields.pop("slug", None)
    patch = validate_payload(model=Category, payload=fields, policy=CATEGORY_POLICY, partial=False)
    patch["slug"] = resolve_slug(patch.get("slug"), patch["name"])
    _claim_slug(patch["slug"], None)
    _check_parent(patch.get("parent_id"), None)
    _check_image(image)

    with blob_transaction(message="Could not save category") as staged:
        category = Category(**patch)
        if isinstance(image, NewUpload):
            category.image_path = staged.stage(image, CATEGORY_IMAGE_FOLDER)
        elif isinstance(image, ExistingPath):
            category.image_path = image.path
        db.session.add(category)

    return category.to_dict()


def update_category(
    *,
    category_id: int,
    fields: dict,
    image: ImageRef = UNSET,
    remove_image: bool = False,
) -> dict:
    """
    Patch a category.

    A new image replaces the stored one; the old file is deleted only after
    the update commits.
    """
    category = _get_category(category_id)
    fields = dict(fields or {})
    slug_sent = "slug" in fields
    if slug_sent and not str(fields["slug"] or "").strip():
        fields.pop("slug")
    patch = validate_payload(model=Category, payload=fields, policy=CATEGORY_POLICY, partial=True)

    if slug_sent:
        patch["slug"] = resolve_slug(patch.get("slug"), patch.get("name", category.name))
        if patch["slug"] != category.slug:
            _claim_slug(patch["slug"], category.id)
    if "parent_id" in patch:
        _check_parent(patch["parent_id"], category.id)
    _check_image(image, category.image_path)

    with blob_transaction(message="Could not save category") as staged:
        previous = category.image_path
        for key, val in patch.items():
            setattr(category, key, val)
        if isinstance(image, NewUpload):
            category.image_path = staged.stage(image, CATEGORY_IMAGE_FOLDER)
        elif isinstance(image, ExistingPath):
            category.image_path = image.path
        elif remove_image:
            category.image_path = None

        db.session.flush()
        if previous != category.image_path:
            release_unreferenced([previous], staged)

    return category.to_dict()


def delete_category(*, category_id: int) -> bool:
    """
    Delete a category.

    Raises:
        NotFoundError: unknown category
        ConflictError: live products still reference it
    """
    category = _get_category(category_id)
    live = (
        db.session.query(Product.id)
        .filter(Product.category_id == category.id, Product.deleted_at.is_(None))
        .count()
    )
    if live:
        raise ConflictError(
            f"Category still has {live} product(s)",
            field="category_id",
            details={"product_count": live},
        )
    if db.session.query(Product.id).filter(Product.category_id == category.id).first():
        raise ConflictError(
            "Category is still referenced by deleted products",
            field="category_id",
        )

    with blob_transaction(message="Could not delete category") as staged:
        previous = category.image_path
        for child in list(category.children):
            child.parent = None
        db.session.delete(category)
        db.session.flush()
        release_unreferenced([previous], staged)

    return True


def get_category(category_id: int) -> dict:
    return _get_category(category_id).to_dict()


def list_categories(parent_id: int | None = None, roots_only: bool = False) -> dict:
    q = db.session.query(Category)
    if parent_id is not None:
        q = q.filter(Category.parent_id == parent_id)
    elif roots_only:
        q = q.filter(Category.parent_id.is_(None))
    categories = q.order_by(Category.sort_order.asc(), Category.name.asc(), Category.id.asc()).all()
    return {
        "items": [c.to_dict() for c in categories],
        "count": len(categories),
    }
