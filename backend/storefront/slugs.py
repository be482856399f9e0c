# Overview: URL-safe slug derivation for catalog display names.

from __future__ import annotations

import re
import unicodedata

MAX_SLUG_LENGTH = 255


def slugify(name: str | None, max_len: int = MAX_SLUG_LENGTH) -> str:
    """
    Derive a lowercase, hyphen-separated ASCII slug from a display name.

    Accented letters are folded to their base letter, anything else that is
    not [a-z0-9] becomes a separator. Returns "" when nothing survives; the
    caller decides whether that is an error.

    Uniqueness is NOT handled here: callers check the candidate against the
    database before committing.
    """
    norm = unicodedata.normalize("NFKD", (name or "").strip())
    chars = []
    for ch in norm:
        if unicodedata.category(ch) == "Mn":
            continue
        chars.append(ch if ord(ch) < 128 else "-")
    s = "".join(chars).lower()
    s = re.sub(r"[^a-z0-9]+", "-", s).strip("-")
    if len(s) > max_len:
        s = s[:max_len].rstrip("-")
    return s


def resolve_slug(explicit: str | None, name: str | None) -> str:
    """Use the client's slug when given (normalized), else derive one from the name."""
    if explicit is not None and str(explicit).strip():
        return slugify(str(explicit))
    return slugify(name)
