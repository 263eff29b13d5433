"""
Sync engine: one cancellable run per source, committed as a single batch.

A run works on a copy of the collection taken at start and a working copy
of the source's snapshots. Adapter calls run in worker threads and never
hold the collection lock. Local changes, snapshot updates and new
conflicts are applied together in ``_commit``; a run that is cancelled or
fails before that point leaves local entities and snapshots untouched.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from ..config import SourceConfig
from ..errors import ConfigError, OrgSyncError, PersistenceFailure, SyncTransportFailure, UnknownConflict
from ..models import Entity, EntityCollection, new_id
from ..vault.loader import Vault
from .adapter import RemoteItem, SyncAdapter, get_adapter
from .ledger import ConflictLedger
from .merge import Conflict, ConflictOutcome, TookLocal, TookRemote, Unchanged, merge, overlay
from .secrets import CompositeSecretsProvider, SecretsProvider
from .snapshot import Snapshot, SnapshotStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncReport:
    """Counts for one finished run."""

    source: str
    pulled: int = 0
    pushed: int = 0
    deleted_remote: int = 0
    updated_local: int = 0
    deleted_local: int = 0
    unchanged: int = 0
    conflicts: int = 0
    skipped: int = 0
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "pulled": self.pulled,
            "pushed": self.pushed,
            "deleted_remote": self.deleted_remote,
            "updated_local": self.updated_local,
            "deleted_local": self.deleted_local,
            "unchanged": self.unchanged,
            "conflicts": self.conflicts,
            "skipped": self.skipped,
            "dry_run": self.dry_run,
        }


@dataclass
class _Batch:
    """Everything a run will apply at commit time."""

    upserts: dict[str, Entity] = field(default_factory=dict)
    removals: set[str] = field(default_factory=set)
    snapshots: dict[str, Snapshot | None] = field(default_factory=dict)
    conflicts: list[Conflict] = field(default_factory=list)


class SyncEngine:
    """Reconciles one collection with one remote source."""

    def __init__(
        self,
        vault: Vault,
        source: SourceConfig,
        adapter: SyncAdapter,
        snapshots: SnapshotStore,
        ledger: ConflictLedger,
        lock: asyncio.Lock | None = None,
        clock: Clock = utc_now,
    ):
        self.vault = vault
        self.source = source
        self.adapter = adapter
        self.snapshots = snapshots
        self.ledger = ledger
        self.lock = lock or asyncio.Lock()
        self.clock = clock

    @property
    def fields(self) -> tuple[str, ...] | None:
        return self.adapter.synced_fields

    async def call(self, operation: str, fn: Callable[[], T]) -> T:
        """Run a blocking adapter call in a worker thread."""
        try:
            return await asyncio.to_thread(fn)
        except OrgSyncError:
            raise
        except Exception as exc:
            logger.warning("Sync source %s: %s failed: %s", self.source.name, operation, exc)
            raise SyncTransportFailure(self.source.name, operation, exc) from exc

    async def run(self, dry_run: bool = False) -> SyncReport:
        """
        Pull, merge, push, then commit.

        Args:
            dry_run: Compute outcomes without calling push/delete or
                changing anything locally.

        Returns:
            Counts for the run.

        Raises:
            SyncTransportFailure: An adapter call failed; nothing was committed.
            PersistenceFailure: The collection file could not be saved; nothing
                was committed locally.
        """
        name = self.source.name
        report = SyncReport(source=name, dry_run=dry_run)
        live = self.vault.collection(self.source.collection)
        start = live.copy()
        start_revisions = live.revisions()
        working = self.snapshots.copy()
        logger.info("Sync %s: starting (%d local entities, cursor %s)", name, len(start), working.cursor)

        adapter = self.adapter
        cursor = working.cursor
        # Read before pulling so changes landing mid-pull are pulled again next run.
        next_cursor = await self.call("current_revision", adapter.current_revision)
        items = await self.call("pull", lambda: list(adapter.pull(cursor)))
        report.pulled = len(items)

        pulled = self._match(items, start, working)
        batch = _Batch()
        for entity_id in self._candidates(start, pulled, working):
            await self._reconcile(entity_id, start.get(entity_id), pulled.get(entity_id), working, batch, report)

        if dry_run:
            logger.info("Sync %s: dry run finished %s", name, report.to_dict())
            return report
        await self._commit(batch, start_revisions, working, next_cursor, report)
        logger.info("Sync %s: finished %s", name, report.to_dict())
        return report

    def _match(self, items: list[RemoteItem], start: EntityCollection, working: SnapshotStore) -> dict[str, RemoteItem]:
        """
        Map pulled items to local entity ids.

        Order: snapshot remote id, same entity id, adapter matching rule
        against unmatched local entities, otherwise a new entity.
        """
        pulled: dict[str, RemoteItem] = {}
        claimed = {snapshot.entity_id for snapshot in working}
        for item in items:
            snapshot = working.by_remote_id(item.remote_id)
            if snapshot is not None:
                entity_id = snapshot.entity_id
            elif item.entity is None:
                # Deletion of something never synced here.
                continue
            elif item.entity.id in start and item.entity.id not in claimed:
                entity_id = item.entity.id
            else:
                entity_id = self._find_same(item.entity, start, claimed)
                if entity_id is None:
                    entity_id = item.entity.id
                    if entity_id in start or entity_id in claimed or entity_id in pulled:
                        entity_id = new_id()
            claimed.add(entity_id)
            if item.entity is not None and item.entity.id != entity_id:
                entity = item.entity.clone()
                entity.id = entity_id
                item = RemoteItem(item.remote_id, item.revision, entity, item.deleted)
            pulled[entity_id] = item
        return pulled

    def _find_same(self, remote: Entity, start: EntityCollection, claimed: set[str]) -> str | None:
        for local in start:
            if local.id not in claimed and self.adapter.same_item(local, remote):
                return local.id
        return None

    def _candidates(self, start: EntityCollection, pulled: dict[str, RemoteItem], working: SnapshotStore) -> list[str]:
        ids = [entity.id for entity in start]
        seen = set(ids)
        ids += [entity_id for entity_id in pulled if entity_id not in seen]
        seen.update(pulled)
        ids += sorted(snapshot.entity_id for snapshot in working if snapshot.entity_id not in seen)
        return ids

    async def _reconcile(
        self,
        entity_id: str,
        local: Entity | None,
        remote: RemoteItem | None,
        working: SnapshotStore,
        batch: _Batch,
        report: SyncReport,
    ) -> None:
        base = working.get(entity_id)
        outcome = merge(local, remote, base, self.fields, self.source.name)
        adapter = self.adapter
        dry_run = report.dry_run

        held = f"{self.source.name}:{entity_id}" in self.ledger
        if held and not isinstance(outcome, (Unchanged, ConflictOutcome)):
            # Held until the open conflict is resolved.
            report.conflicts += 1
            return

        if isinstance(outcome, Unchanged):
            report.unchanged += 1
            if local is not None and remote is not None and remote.entity is not None:
                batch.snapshots[entity_id] = Snapshot.of(
                    local, remote.remote_id, remote.revision, self.fields, self.clock()
                )
            return

        if isinstance(outcome, ConflictOutcome):
            conflict = outcome.conflict
            conflict.detected_at = self.clock()
            if conflict.remote_id is None and remote is not None:
                conflict.remote_id = remote.remote_id
            batch.conflicts.append(conflict)
            report.conflicts += 1
            return

        if isinstance(outcome, TookRemote):
            if outcome.entity is None:
                if local is not None:
                    batch.removals.add(entity_id)
                    report.deleted_local += 1
                batch.snapshots[entity_id] = None
                return
            batch.upserts[entity_id] = outcome.entity
            batch.snapshots[entity_id] = Snapshot.of(
                outcome.entity, remote.remote_id, remote.revision, self.fields, self.clock()
            )
            report.updated_local += 1
            return

        if isinstance(outcome, TookLocal):
            if outcome.entity is None:
                remote_id = base.remote_id if base is not None else None
                if remote_id is not None and not dry_run:
                    await self.call("delete", lambda: adapter.delete(remote_id))
                batch.snapshots[entity_id] = None
                report.deleted_remote += 1
                return
            entity = outcome.entity
            remote_id = base.remote_id if base is not None else (remote.remote_id if remote is not None else None)
            if outcome.merged:
                batch.upserts[entity_id] = entity
                report.updated_local += 1
            report.pushed += 1
            if dry_run:
                return
            result = await self.call("push", lambda: adapter.push(entity, remote_id))
            batch.snapshots[entity_id] = Snapshot.of(entity, result.remote_id, result.revision, self.fields, self.clock())

    async def _commit(
        self,
        batch: _Batch,
        start_revisions: dict[str, int],
        working: SnapshotStore,
        next_cursor: str | None,
        report: SyncReport,
    ) -> None:
        kind = self.source.collection
        async with self.lock:
            # No awaits past this point: the batch lands whole or not at all.
            live = self.vault.collection(kind)
            current = live.revisions()
            for entity_id in sorted(set(batch.upserts) | batch.removals):
                if current.get(entity_id) != start_revisions.get(entity_id):
                    logger.info("Sync %s: %s changed during the run; left for the next run", self.source.name, entity_id)
                    batch.upserts.pop(entity_id, None)
                    batch.removals.discard(entity_id)
                    batch.snapshots.pop(entity_id, None)
                    report.skipped += 1
            before = list(live)
            for entity_id, entity in batch.upserts.items():
                live.replace(entity)
            for entity_id in batch.removals:
                live.remove(entity_id)
            for entity_id, snapshot in batch.snapshots.items():
                if snapshot is None:
                    working.remove(entity_id)
                else:
                    working.put(snapshot)
            if not report.skipped:
                # Skipped items must be pulled again.
                working.cursor = next_cursor

            if batch.upserts or batch.removals:
                try:
                    self.vault.save(kind)
                except PersistenceFailure:
                    live.restore(before)
                    raise
            self.snapshots.adopt(working)
            self.snapshots.save()
            if batch.conflicts:
                self.ledger.record_many(batch.conflicts)


class SyncCoordinator:
    """
    At most one run in flight per source.

    A request while a run is in flight waits for that run's result
    instead of starting another.
    """

    def __init__(self) -> None:
        self._in_flight: dict[str, asyncio.Task] = {}

    def in_flight(self, source: str) -> bool:
        return source in self._in_flight

    async def request(self, source: str, start: Callable[[], Awaitable[T]]) -> T:
        task = self._in_flight.get(source)
        if task is None:
            task = asyncio.ensure_future(start())
            self._in_flight[source] = task
            task.add_done_callback(lambda done, key=source: self._forget(key, done))
        else:
            logger.debug("Sync %s already running; waiting for it", source)
        return await asyncio.shield(task)

    def _forget(self, source: str, task: asyncio.Task) -> None:
        if self._in_flight.get(source) is task:
            del self._in_flight[source]

    def cancel(self, source: str) -> bool:
        """Cancel the in-flight run for ``source``; False if none is running."""
        task = self._in_flight.get(source)
        if task is None:
            return False
        return task.cancel()


class Resolution(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    DISCARD = "discard"


class SyncService:
    """Sources, their state and the conflict ledger for one vault."""

    def __init__(self, vault: Vault, secrets: SecretsProvider | None = None, clock: Clock = utc_now):
        self.vault = vault
        self.config = vault.config
        self.secrets = secrets or CompositeSecretsProvider()
        self.clock = clock
        self.coordinator = SyncCoordinator()
        self.lock = asyncio.Lock()
        self.ledger = ConflictLedger(self.config.resolved_state_dir)
        self._adapters: dict[str, SyncAdapter] = {}
        self._snapshots: dict[str, SnapshotStore] = {}

    def adapter(self, name: str) -> SyncAdapter:
        if name not in self._adapters:
            source = self.config.source(name)
            factory = get_adapter(source.adapter)
            if factory is None:
                raise ConfigError(f"Source '{name}': unknown adapter '{source.adapter}'")
            options = {"base_dir": str(self.config.org_dir), **source.options}
            self._adapters[name] = factory(name, options, self.secrets, source.credential)
        return self._adapters[name]

    def snapshots(self, name: str) -> SnapshotStore:
        if name not in self._snapshots:
            self._snapshots[name] = SnapshotStore(self.config.resolved_state_dir, name)
        return self._snapshots[name]

    def engine(self, name: str) -> SyncEngine:
        source = self.config.source(name)
        return SyncEngine(self.vault, source, self.adapter(name), self.snapshots(name), self.ledger, self.lock, self.clock)

    async def sync(self, name: str, dry_run: bool = False) -> SyncReport:
        engine = self.engine(name)
        return await self.coordinator.request(name, lambda: engine.run(dry_run))

    async def sync_all(self, names: list[str] | None = None, dry_run: bool = False) -> dict[str, SyncReport | OrgSyncError]:
        """
        Run several sources concurrently.

        A failing source is reported in the result and does not affect the others.
        """
        names = names if names is not None else [source.name for source in self.config.sources]
        results = await asyncio.gather(*(self.sync(name, dry_run) for name in names), return_exceptions=True)
        outcome: dict[str, SyncReport | OrgSyncError] = {}
        for name, result in zip(names, results):
            if isinstance(result, (SyncReport, OrgSyncError)):
                outcome[name] = result
            else:
                raise result
        return outcome

    async def resolve(self, key: str, choice: Resolution | str) -> Conflict:
        """
        Apply the user's decision for an open conflict.

        The adapter call happens first; the ledger entry is removed and the
        snapshot updated only once it succeeded.

        Raises:
            UnknownConflict: ``key`` is not open.
            SyncTransportFailure: The adapter call failed; the conflict stays open.
        """
        choice = Resolution(choice)
        conflict = self.ledger.get(key)
        if conflict is None:
            raise UnknownConflict(f"No open conflict {key!r}")
        name = conflict.source
        engine = self.engine(name)
        adapter = engine.adapter
        fields = engine.fields
        kind = engine.source.collection
        entity_id = conflict.entity_id
        remote_id = conflict.remote_id

        live_local = self.vault.collection(kind).get(entity_id)
        local = live_local.clone() if live_local is not None else None
        remote = conflict.remote_entity()

        replacement: Entity | None = None
        remove_local = False
        snapshot: Snapshot | None = None
        if choice is Resolution.LOCAL:
            if local is None:
                if remote_id is not None:
                    await engine.call("delete", lambda: adapter.delete(remote_id))
            else:
                result = await engine.call("push", lambda: adapter.push(local, remote_id))
                snapshot = Snapshot.of(local, result.remote_id, result.revision, fields, self.clock())
        elif choice is Resolution.REMOTE:
            if remote is None:
                remove_local = True
            else:
                replacement = overlay(local, remote, fields) if local is not None else remote.clone()
                replacement.id = entity_id
                snapshot = Snapshot.of(
                    replacement, remote_id or entity_id, conflict.remote_revision or "", fields, self.clock()
                )
        else:
            if remote_id is not None:
                await engine.call("delete", lambda: adapter.delete(remote_id))
            remove_local = True

        store = self.snapshots(name)
        async with self.lock:
            live = self.vault.collection(kind)
            before = list(live)
            changed = False
            if replacement is not None:
                live.replace(replacement)
                changed = True
            elif remove_local and live.remove(entity_id) is not None:
                changed = True
            if snapshot is None:
                store.remove(entity_id)
            else:
                store.put(snapshot)
            if changed:
                try:
                    self.vault.save(kind)
                except PersistenceFailure:
                    live.restore(before)
                    raise
            store.save()
            self.ledger.resolve(key, choice.value)
        return conflict
