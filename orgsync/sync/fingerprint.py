"""Content fingerprints over the synced fields of an entity."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Iterable

from ..models import Entity


def compute_hash(content: bytes | str | dict[str, Any]) -> str:
    """
    Compute the sha256 hex digest of content.

    Dicts are serialized as canonical JSON (sorted keys, compact separators)
    so equal values always hash the same.
    """
    if isinstance(content, dict):
        content = json.dumps(content, sort_keys=True, separators=(",", ":"))
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def synced_values(entity: Entity, fields: Iterable[str] | None = None) -> dict[str, Any]:
    values = entity.field_values()
    if fields is None:
        return values
    return {name: values[name] for name in fields if name in values}


def fingerprint(entity: Entity, fields: Iterable[str] | None = None) -> str:
    """Fingerprint of ``entity`` restricted to ``fields`` (all synced fields by default)."""
    return compute_hash(synced_values(entity, fields))


def field_fingerprints(entity: Entity, fields: Iterable[str] | None = None) -> dict[str, str]:
    """One digest per synced field, used to tell which fields changed since a base."""
    return {name: compute_hash({"v": value}) for name, value in synced_values(entity, fields).items()}
