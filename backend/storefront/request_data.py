# Overview: Reads catalog write requests sent either as JSON or as multipart forms with files.

"""
Catalog writes come in two shapes:

- application/json: the body is the payload, images are existing paths
- multipart/form-data: the "payload" form field holds the JSON payload, files
  ride alongside as "featured_image", "gallery_images" (repeatable),
  "variation_image_<n>" (n = index or temp_id of the variation) and "image"
  (categories)
"""
from __future__ import annotations

import json

from flask import request

from .storage import NewUpload
from .validation import ValidationError

VARIATION_IMAGE_PREFIX = "variation_image_"


def read_payload() -> dict:
    if request.mimetype == "multipart/form-data":
        raw = request.form.get("payload")
        if raw is None:
            # Plain form fields without a JSON envelope
            return {key: request.form.get(key) for key in request.form.keys()}
        try:
            payload = json.loads(raw)
        except ValueError:
            raise ValidationError("payload must be valid JSON", field="payload")
    else:
        payload = request.get_json(silent=True)
        if payload is None:
            payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("payload must be a JSON object", field="payload")
    return payload


def _to_upload(storage) -> NewUpload | None:
    if storage is None or not storage.filename:
        return None
    return NewUpload(data=storage.read(), filename=storage.filename)


def uploaded_file(name: str) -> NewUpload | None:
    return _to_upload(request.files.get(name))


def uploaded_files(name: str) -> list[NewUpload]:
    uploads = (_to_upload(f) for f in request.files.getlist(name))
    return [u for u in uploads if u is not None]


def variation_uploads() -> dict[str, NewUpload]:
    """{"0": NewUpload, "temp-3": NewUpload, ...} keyed by what follows the prefix."""
    uploads = {}
    for key in request.files.keys():
        if not key.startswith(VARIATION_IMAGE_PREFIX):
            continue
        upload = uploaded_file(key)
        if upload is not None:
            uploads[key[len(VARIATION_IMAGE_PREFIX):]] = upload
    return uploads


def arg_bool(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in {"1", "true", "yes", "on"}
