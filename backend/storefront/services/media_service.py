# Overview: Blob reference bookkeeping and the blob-aware transaction shared by the catalog services.

"""
Media Service - keeps blob files and database rows in step

TRANSACTION RULE:
Every catalog write runs inside blob_transaction(). Uploads are staged while
the session is open; commit keeps them and runs the deletions scheduled along
the way, rollback removes the uploads and forgets the deletions. A blob is
only scheduled for deletion once no row references it anymore.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable

from flask import current_app
from sqlalchemy import String, cast
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import blobs, db
from ..models import Category, Product, ProductVariant
from ..storage import StagedBlobs

PRODUCT_IMAGE_FOLDER = "products"
GALLERY_IMAGE_FOLDER = "products/gallery"
VARIANT_IMAGE_FOLDER = "products/variants"
CATEGORY_IMAGE_FOLDER = "categories"


class StorageFailure(Exception):
    """Database or blob store failed mid-write; the write was rolled back."""


@contextmanager
def blob_transaction(failure_cls: type[StorageFailure] = StorageFailure, message: str = "Could not save changes"):
    """
    One unit of work over db.session and the blob store.

    Yields a StagedBlobs. Validation errors raised inside the block propagate
    unchanged; database/blob errors become failure_cls. Either way the session
    and the staged uploads are rolled back.
    """
    staged = StagedBlobs(blobs)
    try:
        yield staged
        db.session.commit()
    except StorageFailure:
        db.session.rollback()
        staged.rollback()
        raise
    except (SQLAlchemyError, OSError) as exc:
        db.session.rollback()
        staged.rollback()
        current_app.logger.exception("Catalog write failed")
        raise failure_cls(message) from exc
    except Exception:
        db.session.rollback()
        staged.rollback()
        raise
    staged.commit()


def is_blob_referenced(path: str) -> bool:
    """True if any stored row (variant, product, gallery entry, category) still points at path."""
    if db.session.query(ProductVariant.id).filter(ProductVariant.image_path == path).first():
        return True
    if db.session.query(Product.id).filter(Product.featured_image_path == path).first():
        return True
    # Gallery is a JSON list; match the quoted element in its text form
    gallery_hit = (
        db.session.query(Product.id)
        .filter(cast(Product.gallery_image_paths, String).like(f'%"{path}"%'))
        .first()
    )
    if gallery_hit:
        return True
    return db.session.query(Category.id).filter(Category.image_path == path).first() is not None


def release_unreferenced(paths: Iterable[str | None], staged: StagedBlobs) -> list[str]:
    """
    Schedule deletion (after commit) of every path no row references anymore.

    Call after the session has been flushed so the checks see the new state.
    """
    released = []
    for path in dict.fromkeys(p for p in paths if p):
        if not is_blob_referenced(path):
            staged.delete_on_commit(path)
            released.append(path)
    return released


def referenced_paths() -> set[str]:
    """Every blob path stored anywhere in the catalog."""
    paths: set[str] = set()
    paths.update(p for (p,) in db.session.query(ProductVariant.image_path).filter(ProductVariant.image_path.isnot(None)))
    paths.update(p for (p,) in db.session.query(Product.featured_image_path).filter(Product.featured_image_path.isnot(None)))
    for (gallery,) in db.session.query(Product.gallery_image_paths):
        paths.update(gallery or [])
    paths.update(p for (p,) in db.session.query(Category.image_path).filter(Category.image_path.isnot(None)))
    return paths
