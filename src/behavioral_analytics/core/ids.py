"""Canonical ID factories.

ID Categories
-------------
1. Internal IDs: UUID v4 strings for rows created by real-time paths
   (alerts, real-time revenge events).
2. Derived IDs: UUID v5 strings computed from the source trades of a
   batch-created row, so that re-analysing identical trade data yields
   identical ids.
3. Content hashes: SHA256[:N] strings for cache keys and similarity
   lookups.

Timestamp Rule
--------------
All timestamps are ``datetime`` with ``tzinfo=timezone.utc``; never naive.
"""

from __future__ import annotations

import hashlib
import uuid

_NAMESPACE = uuid.UUID("6f1c2d1e-8b7a-5c3e-9d40-2b8e6a51f0c7")


def new_id() -> str:
    """Generate a new UUID v4 string."""
    return str(uuid.uuid4())


def derived_id(kind: str, *parts: str) -> str:
    """Deterministic UUID v5 built from a row kind and its source keys.

    Parameters
    ----------
    kind:
        Row family, e.g. ``"revenge_event"``.
    *parts:
        Identity of the source data (user id, trigger trade id, ...).
    """
    return str(uuid.uuid5(_NAMESPACE, ":".join((kind, *parts))))


def content_hash(*parts: str, length: int = 16) -> str:
    """SHA256-based hex digest of the joined *parts*."""
    raw = ":".join(parts)
    return hashlib.sha256(raw.encode()).hexdigest()[:length]
