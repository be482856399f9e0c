# Overview: Service-layer operations for maintenance; finds and removes blob files no row references.

from __future__ import annotations

from flask import current_app

from ..extensions import blobs
from .media_service import referenced_paths


def find_orphan_blobs() -> list[str]:
    """Stored files that no category, product, gallery or variant points at."""
    referenced = referenced_paths()
    return sorted(path for path in blobs.iter_paths() if path not in referenced)


def purge_orphan_blobs(*, dry_run: bool = False) -> list[str]:
    """
    Delete orphaned blob files.

    Orphans appear when a process dies between a commit and the deletion of the
    images it released. Returns the orphan paths (deleted unless dry_run).
    """
    orphans = find_orphan_blobs()
    if dry_run:
        return orphans

    for path in orphans:
        try:
            blobs.delete(path)
        except OSError:
            current_app.logger.warning("Failed to purge blob %s", path, exc_info=True)
    current_app.logger.info("Purged %d orphaned blob(s)", len(orphans))
    return orphans
