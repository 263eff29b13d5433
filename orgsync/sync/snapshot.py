"""
Per-source snapshot store: the merge base for every synced entity.

One JSON file per source under ``<state_dir>/snapshots/``. A snapshot
exists only for entities that completed at least one sync with that
source.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from ..errors import PersistenceFailure
from ..models import Entity
from ..vault.loader import atomic_write_text
from .fingerprint import field_fingerprints, fingerprint

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class Snapshot:
    """Last mutually agreed state of one entity with one source."""

    entity_id: str
    fingerprint: str
    remote_revision: str
    remote_id: str
    fields: dict[str, str] = field(default_factory=dict)
    synced_at: datetime | None = None

    @classmethod
    def of(
        cls,
        entity: Entity,
        remote_id: str,
        remote_revision: str,
        fields: tuple[str, ...] | None = None,
        synced_at: datetime | None = None,
    ) -> "Snapshot":
        return cls(
            entity_id=entity.id,
            fingerprint=fingerprint(entity, fields),
            remote_revision=remote_revision,
            remote_id=remote_id,
            fields=field_fingerprints(entity, fields),
            synced_at=synced_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "fingerprint": self.fingerprint,
            "remote_revision": self.remote_revision,
            "remote_id": self.remote_id,
            "fields": dict(self.fields),
            "synced_at": self.synced_at.isoformat() if self.synced_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        synced_at = data.get("synced_at")
        return cls(
            entity_id=data["entity_id"],
            fingerprint=data["fingerprint"],
            remote_revision=str(data["remote_revision"]),
            remote_id=str(data["remote_id"]),
            fields=dict(data.get("fields") or {}),
            synced_at=datetime.fromisoformat(synced_at) if synced_at else None,
        )


class SnapshotStore:
    """Snapshots of one source plus its collection-level pull cursor."""

    def __init__(self, state_dir: Path, source: str):
        self.source = source
        self.path = state_dir / "snapshots" / f"{source}.json"
        self.cursor: str | None = None
        self._snapshots: dict[str, Snapshot] = {}
        self._loaded = False

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise PersistenceFailure(self.path, exc, action="read") from exc
        except json.JSONDecodeError as exc:
            raise PersistenceFailure(self.path, action="decode") from exc
        self.cursor = data.get("cursor")
        for raw in data.get("snapshots", []):
            snapshot = Snapshot.from_dict(raw)
            self._snapshots[snapshot.entity_id] = snapshot

    def __len__(self) -> int:
        self._ensure_loaded()
        return len(self._snapshots)

    def __iter__(self) -> Iterator[Snapshot]:
        self._ensure_loaded()
        return iter(list(self._snapshots.values()))

    def get(self, entity_id: str) -> Snapshot | None:
        self._ensure_loaded()
        return self._snapshots.get(entity_id)

    def by_remote_id(self, remote_id: str) -> Snapshot | None:
        self._ensure_loaded()
        for snapshot in self._snapshots.values():
            if snapshot.remote_id == remote_id:
                return snapshot
        return None

    def put(self, snapshot: Snapshot) -> None:
        self._ensure_loaded()
        self._snapshots[snapshot.entity_id] = snapshot

    def remove(self, entity_id: str) -> Snapshot | None:
        self._ensure_loaded()
        return self._snapshots.pop(entity_id, None)

    def copy(self) -> "SnapshotStore":
        """Detached working copy; nothing is persisted until ``adopt`` + ``save``."""
        self._ensure_loaded()
        clone = SnapshotStore.__new__(SnapshotStore)
        clone.source = self.source
        clone.path = self.path
        clone.cursor = self.cursor
        clone._snapshots = dict(self._snapshots)
        clone._loaded = True
        return clone

    def adopt(self, other: "SnapshotStore") -> None:
        """Replace this store's contents with a working copy's."""
        other._ensure_loaded()
        self._snapshots = dict(other._snapshots)
        self.cursor = other.cursor
        self._loaded = True

    def save(self) -> None:
        self._ensure_loaded()
        data = {
            "version": SNAPSHOT_VERSION,
            "source": self.source,
            "cursor": self.cursor,
            "snapshots": [s.to_dict() for s in sorted(self._snapshots.values(), key=lambda s: s.entity_id)],
        }
        atomic_write_text(self.path, json.dumps(data, indent=2, sort_keys=True) + "\n")
        logger.debug("Saved %d snapshots for %s", len(self._snapshots), self.source)
