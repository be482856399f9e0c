# Overview: Flask API routes for health/version checks and serving uploaded catalog media.

# backend/storefront/routes/system.py
"""
System health and version endpoints, plus the public URL space of the blob store.

Uploaded images are served from UPLOAD_URL_PREFIX (default /uploads), which is
what LocalBlobStore.public_url() builds links against.
"""

import os
import sys
import time
from flask import Blueprint, abort, current_app, send_from_directory
from ..extensions import blobs, db
from ..models import Attribute, Category, Product
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        category_count = db.session.query(Category).count()
        attribute_count = db.session.query(Attribute).count()
        product_count = db.session.query(Product).filter(Product.deleted_at.is_(None)).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "categories": category_count,
                "attributes": attribute_count,
                "products": product_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_blob_store_health() -> dict:
    """Upload folder must exist and be writable; otherwise image writes will fail."""
    root = blobs.root
    if not os.path.isdir(root):
        return {"status": "unhealthy", "error": "Upload folder missing"}
    if not os.access(root, os.W_OK):
        return {"status": "degraded", "error": "Upload folder is read-only"}
    return {"status": "healthy"}


@system_bp.get("/api/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: All systems healthy (or degraded but operational)
    - 503: One or more systems unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    blob_health = check_blob_store_health()

    all_checks = [database_health, blob_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "blob_store": blob_health,
        }
    }

    return response, http_status


@system_bp.get("/api/version")
def version():
    """Non-sensitive deployment info: API version, environment, Python version."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }


def uploaded_file(filename: str):
    """Registered by create_app() under the configured UPLOAD_URL_PREFIX."""
    if not blobs.exists(filename):
        abort(404)
    return send_from_directory(blobs.root, filename)
