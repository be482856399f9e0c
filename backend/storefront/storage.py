# Overview: Blob store for uploaded catalog images plus the image reference types services consume.

"""
Blob storage for catalog media.

Rows never embed image bytes: they keep a relative path returned by the blob
store ("products/variants/3f2a....jpg") and the public URL is derived from it.

STAGING: image writes happen inside a database transaction that may still
fail. StagedBlobs records every path written during one service call and every
path that should disappear once the call succeeds, so that:
- on commit, replaced/removed images are deleted (best-effort)
- on rollback, images uploaded by the failed attempt are deleted (best-effort)
Cleanup failures are logged, never raised.
"""

from __future__ import annotations

import os
import posixpath
import uuid
from dataclasses import dataclass
from typing import Optional, Union

from flask import current_app
from werkzeug.utils import safe_join

from .validation import ValidationError


# =============================================================================
# Image references
# =============================================================================

@dataclass(frozen=True)
class Unset:
    """No image supplied: keep whatever the row already has."""


@dataclass(frozen=True)
class ExistingPath:
    """Reference to a blob that is already stored."""
    path: str


@dataclass(frozen=True)
class NewUpload:
    """Raw bytes from a multipart upload, not stored yet."""
    data: bytes
    filename: Optional[str] = None

    @property
    def extension(self) -> str:
        if not self.filename or "." not in self.filename:
            return ""
        return self.filename.rsplit(".", 1)[1].lower()


UNSET = Unset()

ImageRef = Union[Unset, ExistingPath, NewUpload]


def image_ref_from_value(value, upload: NewUpload | None = None) -> ImageRef:
    """
    Build an ImageRef from request data.

    An uploaded file always wins; a non-empty string is an existing path;
    anything else means "not supplied".
    """
    if upload is not None:
        return upload
    if isinstance(value, str) and value.strip():
        return ExistingPath(value.strip())
    return UNSET


def check_image_upload(upload: NewUpload, field: str) -> None:
    """Reject uploads with a disallowed extension or over the per-image size cap."""
    allowed = current_app.config.get("ALLOWED_IMAGE_EXTENSIONS") or set()
    if allowed and upload.extension not in allowed:
        raise ValidationError(
            f"{field} must be one of: {', '.join(sorted(allowed))}",
            field=field,
        )
    max_bytes = current_app.config.get("MAX_IMAGE_BYTES")
    if max_bytes and len(upload.data) > max_bytes:
        raise ValidationError(f"{field} exceeds {max_bytes} bytes", field=field)
    if not upload.data:
        raise ValidationError(f"{field} is empty", field=field)


# =============================================================================
# Blob store
# =============================================================================

class LocalBlobStore:
    """
    Filesystem blob store rooted at app.config["UPLOAD_FOLDER"].

    Bound to the app like the other extensions (init_app); every call resolves
    the folder from current_app so one instance serves any number of apps.
    """

    def init_app(self, app) -> None:
        app.config.setdefault("UPLOAD_FOLDER", os.path.join(app.instance_path, "uploads"))
        app.config.setdefault("UPLOAD_URL_PREFIX", "/uploads")
        os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)
        app.extensions["blob_store"] = self

    @property
    def root(self) -> str:
        return current_app.config["UPLOAD_FOLDER"]

    def full_path(self, path: str) -> str:
        full = safe_join(self.root, path)
        if full is None:
            raise ValueError(f"Unsafe blob path: {path!r}")
        return full

    def store(self, data: bytes, folder: str, filename: str | None = None) -> str:
        """Write bytes under folder with a random name; returns the relative path."""
        ext = ""
        if filename and "." in filename:
            ext = "." + filename.rsplit(".", 1)[1].lower()
        path = posixpath.join(folder.strip("/"), f"{uuid.uuid4().hex}{ext}")
        full = self.full_path(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "wb") as fh:
            fh.write(data)
        return path

    def delete(self, path: str) -> bool:
        full = self.full_path(path)
        if not os.path.exists(full):
            return False
        os.remove(full)
        return True

    def exists(self, path: str) -> bool:
        try:
            return os.path.isfile(self.full_path(path))
        except ValueError:
            return False

    def public_url(self, path: str | None) -> str | None:
        if not path:
            return None
        prefix = current_app.config.get("UPLOAD_URL_PREFIX", "/uploads").rstrip("/")
        return f"{prefix}/{path}"

    def iter_paths(self):
        """Yield every stored relative path (used by maintenance commands)."""
        root = self.root
        for dirpath, _dirnames, filenames in os.walk(root):
            for name in filenames:
                rel = os.path.relpath(os.path.join(dirpath, name), root)
                yield rel.replace(os.sep, "/")


class StagedBlobs:
    """Blob writes and deletions tied to the outcome of one database transaction."""

    def __init__(self, store: LocalBlobStore):
        self._store = store
        self.created: list[str] = []
        self.pending_deletes: list[str] = []

    def stage(self, upload: NewUpload, folder: str) -> str:
        path = self._store.store(upload.data, folder, upload.filename)
        self.created.append(path)
        return path

    def delete_on_commit(self, path: str | None) -> None:
        if path and path not in self.pending_deletes:
            self.pending_deletes.append(path)

    def commit(self) -> None:
        """Run the deletions scheduled by a successful transaction."""
        for path in self.pending_deletes:
            self._best_effort_delete(path)
        self.created = []
        self.pending_deletes = []

    def rollback(self) -> None:
        """Drop images uploaded by a failed transaction; keep everything else."""
        for path in self.created:
            self._best_effort_delete(path)
        self.created = []
        self.pending_deletes = []

    def _best_effort_delete(self, path: str) -> None:
        try:
            self._store.delete(path)
        except (OSError, ValueError):
            current_app.logger.warning("Failed to delete blob %s", path, exc_info=True)
