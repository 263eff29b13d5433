"""
Three-way merge of one entity against one remote source.

``merge`` is a pure function of (local, remote, base): identical inputs
always give the same outcome. It never decides how a conflict should be
resolved; it only reports one with both candidate values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from ..models import Entity, entity_from_dict
from .adapter import RemoteItem
from .fingerprint import field_fingerprints, fingerprint
from .snapshot import Snapshot


class ConflictKind(str, Enum):
    BOTH_CHANGED = "both-changed"
    REMOTE_DELETED_LOCALLY_CHANGED = "remote-deleted-locally-changed"
    LOCALLY_DELETED_REMOTE_CHANGED = "locally-deleted-remote-changed"


@dataclass
class Conflict:
    """Two incompatible versions of one entity awaiting a user decision."""

    entity_id: str
    kind: ConflictKind
    local: dict[str, Any] | None
    remote: dict[str, Any] | None
    base_fingerprint: str | None
    source: str = ""
    remote_id: str | None = None
    remote_revision: str | None = None
    fields: list[str] = field(default_factory=list)
    detected_at: datetime | None = None

    @property
    def key(self) -> str:
        return f"{self.source}:{self.entity_id}"

    def local_entity(self) -> Entity | None:
        return entity_from_dict(self.local) if self.local is not None else None

    def remote_entity(self) -> Entity | None:
        return entity_from_dict(self.remote) if self.remote is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "kind": self.kind.value,
            "local": self.local,
            "remote": self.remote,
            "base_fingerprint": self.base_fingerprint,
            "source": self.source,
            "remote_id": self.remote_id,
            "remote_revision": self.remote_revision,
            "fields": list(self.fields),
            "detected_at": self.detected_at.isoformat() if self.detected_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Conflict":
        detected_at = data.get("detected_at")
        return cls(
            entity_id=data["entity_id"],
            kind=ConflictKind(data["kind"]),
            local=data.get("local"),
            remote=data.get("remote"),
            base_fingerprint=data.get("base_fingerprint"),
            source=data.get("source", ""),
            remote_id=data.get("remote_id"),
            remote_revision=data.get("remote_revision"),
            fields=list(data.get("fields") or []),
            detected_at=datetime.fromisoformat(detected_at) if detected_at else None,
        )


@dataclass(frozen=True)
class Unchanged:
    pass


@dataclass(frozen=True)
class TookLocal:
    """Push ``entity`` to the remote (``None`` means delete it remotely)."""

    entity: Entity | None
    merged: bool = False


@dataclass(frozen=True)
class TookRemote:
    """Replace the local entity with ``entity`` (``None`` means delete it locally)."""

    entity: Entity | None


@dataclass(frozen=True)
class ConflictOutcome:
    conflict: Conflict


MergeOutcome = Union[Unchanged, TookLocal, TookRemote, ConflictOutcome]


def overlay(local: Entity, remote: Entity, fields: tuple[str, ...] | None = None) -> Entity:
    """Local entity with the remote's values for ``fields``; local passthrough is kept."""
    merged = local.clone()
    values = remote.field_values()
    names = fields if fields is not None else local.SYNC_FIELDS
    merged.apply_fields({name: values[name] for name in names if name in values})
    return merged


def changed_fields(entity: Entity, base: Snapshot, fields: tuple[str, ...] | None = None) -> set[str]:
    """Fields whose digest differs from the base (all of them if the base has none)."""
    current = field_fingerprints(entity, fields)
    return {name for name, digest in current.items() if base.fields.get(name) != digest}


def merge(
    local: Entity | None,
    remote: RemoteItem | None,
    base: Snapshot | None,
    fields: tuple[str, ...] | None = None,
    source: str = "",
) -> MergeOutcome:
    """
    Decide what to do with one entity.

    Args:
        local: The local entity, or None if it does not exist (or was deleted).
        remote: The pulled item, or None when the pull reported nothing for it.
            ``remote.deleted`` marks a remote deletion.
        base: Snapshot from the last successful sync, or None (first sync).
        fields: Synced fields the adapter models (default: all).
        source: Source name recorded on conflicts.

    Returns:
        One of Unchanged, TookLocal, TookRemote, ConflictOutcome.
    """
    remote_entity = remote.entity if remote is not None and not remote.deleted else None

    if base is None:
        if remote_entity is None:
            return TookLocal(local) if local is not None else Unchanged()
        if local is None:
            return TookRemote(remote_entity.clone())
        if fingerprint(local, fields) == fingerprint(remote_entity, fields):
            return Unchanged()
        return TookRemote(overlay(local, remote_entity, fields))

    local_deleted = local is None
    local_changed = local_deleted or fingerprint(local, fields) != base.fingerprint
    remote_deleted = remote is not None and remote.deleted
    remote_changed = remote_deleted or (remote_entity is not None and remote.revision != base.remote_revision)
    if remote_entity is not None and remote_changed and not changed_fields(remote_entity, base, fields):
        # New revision token, same content.
        remote_changed = False

    if not local_changed and not remote_changed:
        return Unchanged()
    if local_changed and not remote_changed:
        return TookLocal(local)
    if remote_changed and not local_changed:
        if remote_deleted:
            return TookRemote(None)
        return TookRemote(overlay(local, remote_entity, fields))

    if local_deleted and remote_deleted:
        return TookRemote(None)
    if local_deleted or remote_deleted:
        kind = ConflictKind.LOCALLY_DELETED_REMOTE_CHANGED if local_deleted else ConflictKind.REMOTE_DELETED_LOCALLY_CHANGED
        return ConflictOutcome(
            Conflict(
                entity_id=base.entity_id,
                kind=kind,
                local=local.to_dict() if local is not None else None,
                remote=remote_entity.to_dict() if remote_entity is not None else None,
                base_fingerprint=base.fingerprint,
                source=source,
                remote_id=base.remote_id,
                remote_revision=remote.revision if remote is not None else None,
            )
        )

    local_fields = changed_fields(local, base, fields)
    remote_fields = changed_fields(remote_entity, base, fields)
    local_values = local.field_values()
    remote_values = remote_entity.field_values()
    overlapping = sorted(
        name for name in local_fields & remote_fields if local_values.get(name) != remote_values.get(name)
    )
    if overlapping:
        return ConflictOutcome(
            Conflict(
                entity_id=local.id,
                kind=ConflictKind.BOTH_CHANGED,
                local=local.to_dict(),
                remote=remote_entity.to_dict(),
                base_fingerprint=base.fingerprint,
                source=source,
                remote_id=base.remote_id,
                remote_revision=remote.revision,
                fields=overlapping,
            )
        )

    only_remote = tuple(sorted(remote_fields - local_fields))
    if not only_remote:
        # Both sides made the same edits.
        return Unchanged() if fingerprint(local, fields) == fingerprint(remote_entity, fields) else TookLocal(local)
    return TookLocal(overlay(local, remote_entity, only_remote), merged=True)
