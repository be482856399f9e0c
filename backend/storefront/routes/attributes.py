# Overview: Flask API routes for variation attributes and their values.

from flask import Blueprint, request
from ..decorators import catalog_errors
from ..request_data import read_payload
from ..services import attributes_service

attributes_bp = Blueprint("attributes", __name__, url_prefix="/api/attributes")


@attributes_bp.get("")
@catalog_errors
def list_attributes():
    include_values = request.args.get("include_values", "true").lower() != "false"
    return attributes_service.list_attributes(include_values=include_values)


@attributes_bp.post("")
@catalog_errors
def create_attribute_route():
    """
    Body: {"name", "slug"?, "description"?, "values": [{"value", "slug"?}, ...]}
    """
    payload = read_payload()
    created = attributes_service.create_attribute(
        name=payload.get("name"),
        slug=payload.get("slug"),
        description=payload.get("description"),
        values=payload.get("values"),
    )
    return created, 201


@attributes_bp.get("/<int:attribute_id>")
@catalog_errors
def get_attribute_route(attribute_id: int):
    return attributes_service.get_attribute(attribute_id)


@attributes_bp.put("/<int:attribute_id>")
@catalog_errors
def update_attribute_route(attribute_id: int):
    """
    Full replace: values listed with an id are kept and updated, values without
    an id are created, all other values of the attribute are removed.
    """
    payload = read_payload()
    updated = attributes_service.update_attribute(
        attribute_id=attribute_id,
        name=payload.get("name"),
        slug=payload.get("slug"),
        description=payload.get("description"),
        values=payload.get("values"),
    )
    return updated, 200


@attributes_bp.delete("/<int:attribute_id>")
@catalog_errors
def delete_attribute_route(attribute_id: int):
    attributes_service.delete_attribute(attribute_id=attribute_id)
    return {"ok": True}, 200
