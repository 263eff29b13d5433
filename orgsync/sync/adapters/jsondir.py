"""
Document-store adapter over a directory of JSON documents.

Layout under ``options.path``::

    revision            collection revision counter
    items/<id>.json     one document per item

Every write bumps the counter and stamps the document with the new value,
so ``pull(since)`` is a scan for documents with a larger revision.
Deletions leave a tombstone document so later pulls can report them.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Iterator

from ...errors import ConfigError
from ...models import Entity, entity_from_dict, new_id
from ...vault.loader import atomic_write_text, read_text
from ..adapter import PushResult, RemoteItem, SyncAdapter
from ..secrets import SecretsProvider

logger = logging.getLogger(__name__)

SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class JsonDirAdapter(SyncAdapter):
    kind = "jsondir"

    def __init__(
        self,
        name: str,
        options: dict[str, Any] | None = None,
        secrets: SecretsProvider | None = None,
        credential: str | None = None,
    ):
        super().__init__(name, options, secrets, credential)
        raw = self.options.get("path")
        if not raw:
            raise ConfigError(f"Source '{name}': jsondir adapter requires options.path")
        path = Path(str(raw)).expanduser()
        if not path.is_absolute():
            path = Path(str(self.options.get("base_dir", "."))) / path
        self.root = path
        self.items_dir = path / "items"
        self.revision_path = path / "revision"

    def _check_access(self) -> None:
        # A configured credential must resolve before the store is touched.
        self.secret()

    def _read_counter(self) -> int:
        text = read_text(self.revision_path).strip()
        return int(text) if text else 0

    def _bump_counter(self) -> int:
        revision = self._read_counter() + 1
        atomic_write_text(self.revision_path, f"{revision}\n")
        return revision

    def _document_path(self, remote_id: str) -> Path:
        return self.items_dir / f"{remote_id}.json"

    def _read_document(self, path: Path) -> dict[str, Any]:
        return json.loads(path.read_text(encoding="utf-8"))

    def _write_document(self, remote_id: str, revision: int, entity: Entity | None) -> None:
        document: dict[str, Any] = {"remote_id": remote_id, "revision": revision, "deleted": entity is None}
        if entity is not None:
            data = entity.to_dict()
            data.pop("passthrough", None)
            document["entity"] = data
        atomic_write_text(self._document_path(remote_id), json.dumps(document, indent=2, sort_keys=True) + "\n")

    def current_revision(self) -> str | None:
        self._check_access()
        revision = self._read_counter()
        return str(revision) if revision else None

    def pull(self, since_revision: str | None) -> Iterator[RemoteItem]:
        self._check_access()
        since = int(since_revision) if since_revision else 0
        if not self.items_dir.is_dir():
            return
        documents = [self._read_document(path) for path in sorted(self.items_dir.glob("*.json"))]
        documents.sort(key=lambda d: (int(d["revision"]), d["remote_id"]))
        for document in documents:
            revision = int(document["revision"])
            if revision <= since:
                continue
            deleted = bool(document.get("deleted"))
            entity = None if deleted else entity_from_dict(document["entity"])
            yield RemoteItem(remote_id=document["remote_id"], revision=str(revision), entity=entity, deleted=deleted)

    def push(self, entity: Entity, remote_id: str | None = None) -> PushResult:
        self._check_access()
        if remote_id is None:
            remote_id = entity.id if SAFE_ID_RE.match(entity.id) else new_id()
            if self._document_path(remote_id).exists():
                remote_id = new_id()
        revision = self._bump_counter()
        self._write_document(remote_id, revision, entity)
        logger.debug("%s: stored %s at revision %d", self.name, remote_id, revision)
        return PushResult(remote_id=remote_id, revision=str(revision))

    def delete(self, remote_id: str) -> bool:
        self._check_access()
        path = self._document_path(remote_id)
        if not path.exists() or self._read_document(path).get("deleted"):
            return False
        revision = self._bump_counter()
        self._write_document(remote_id, revision, None)
        logger.debug("%s: deleted %s at revision %d", self.name, remote_id, revision)
        return True

    def same_item(self, local: Entity, remote: Entity) -> bool:
        """Same kind, same title ignoring case, same scheduled day."""
        if local.KIND != remote.KIND:
            return False
        title = _label(local)
        if not title or title != _label(remote):
            return False
        return getattr(local, "scheduled", None) == getattr(remote, "scheduled", None)


def _label(entity: Entity) -> str:
    text = getattr(entity, "title", None) or getattr(entity, "name", "")
    return text.strip().casefold()
