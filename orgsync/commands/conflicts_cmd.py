"""Conflicts commands - inspect and resolve open sync conflicts."""

from __future__ import annotations

import asyncio
import json

from rich.console import Console
from rich.table import Table

from ..config import OrgSyncConfig
from ..errors import UnknownConflict
from ..sync.adapters import register_all
from ..sync.engine import Resolution, SyncService
from ..sync.ledger import ConflictLedger
from ..sync.merge import Conflict
from ..vault.loader import Vault


def _label(data: dict | None) -> str:
    if data is None:
        return "[dim](deleted)[/dim]"
    return str(data.get("title") or data.get("name") or "")


def find_conflict(ledger: ConflictLedger, ident: str) -> Conflict:
    """Look up by full key, or by an entity id (prefix) that matches one open conflict."""
    conflict = ledger.get(ident)
    if conflict is not None:
        return conflict
    matches = [c for c in ledger.open_conflicts() if c.entity_id == ident or c.entity_id.startswith(ident)]
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise UnknownConflict(f"{ident!r} matches {len(matches)} conflicts; use the full SOURCE:ID key")
    raise UnknownConflict(f"No open conflict {ident!r}")


def run_conflicts_list(config: OrgSyncConfig, output_json: bool = False) -> int:
    """
    Print the open conflicts.

    Returns:
        Number of open conflicts
    """
    conflicts = ConflictLedger(config.resolved_state_dir).open_conflicts()
    if output_json:
        print(json.dumps([c.to_dict() for c in conflicts], indent=2))
        return len(conflicts)

    console = Console()
    if not conflicts:
        console.print("[dim]No open conflicts.[/dim]")
        return 0
    table = Table(title="Open conflicts")
    table.add_column("Key", style="bold")
    table.add_column("Kind")
    table.add_column("Fields")
    table.add_column("Local")
    table.add_column("Remote")
    for conflict in conflicts:
        table.add_row(
            conflict.key,
            conflict.kind.value,
            ", ".join(conflict.fields),
            _label(conflict.local),
            _label(conflict.remote),
        )
    console.print(table)
    return len(conflicts)


def run_conflicts_resolve(config: OrgSyncConfig, ident: str, choice: str) -> int:
    """Resolve one conflict by keeping the local or remote version, or discarding both."""
    console = Console(stderr=True)
    register_all()
    service = SyncService(Vault(config))
    conflict = find_conflict(service.ledger, ident)
    asyncio.run(service.resolve(conflict.key, Resolution(choice)))
    console.print(f"Resolved {conflict.key} ({choice})", style="green", highlight=False)
    return 0
