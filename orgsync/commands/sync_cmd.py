"""Sync command - reconcile collections with their remote sources."""

from __future__ import annotations

import asyncio
import json

from rich.console import Console
from rich.table import Table

from ..config import OrgSyncConfig
from ..errors import OrgSyncError
from ..sync.adapters import register_all
from ..sync.engine import SyncReport, SyncService
from ..vault.loader import Vault


def run_sync(
    config: OrgSyncConfig,
    sources: list[str] | None = None,
    dry_run: bool = False,
    output_json: bool = False,
) -> int:
    """
    Run one sync per requested source (all configured sources by default).

    Sources run concurrently; a failing source does not stop the others.

    Returns:
        Exit code (1 if any source failed)
    """
    console = Console(stderr=True)
    if not config.sources:
        console.print("No sync sources configured. Add a [[sources]] table to orgsync.toml.", style="yellow")
        return 0

    register_all()
    service = SyncService(Vault(config))
    results = asyncio.run(service.sync_all(list(sources) if sources else None, dry_run=dry_run))
    failed = {name: r for name, r in results.items() if isinstance(r, OrgSyncError)}
    reports = [r for r in results.values() if isinstance(r, SyncReport)]

    if output_json:
        output = {
            "dry_run": dry_run,
            "reports": [r.to_dict() for r in reports],
            "failures": {name: str(exc) for name, exc in failed.items()},
        }
        print(json.dumps(output, indent=2))
        return 1 if failed else 0

    table = Table(title="Sync (dry run)" if dry_run else "Sync")
    table.add_column("Source", style="bold")
    for column in ("Pulled", "Pushed", "Updated", "Deleted", "Conflicts", "Skipped"):
        table.add_column(column, justify="right")
    for report in reports:
        table.add_row(
            report.source,
            str(report.pulled),
            str(report.pushed),
            str(report.updated_local),
            str(report.deleted_local + report.deleted_remote),
            f"[red]{report.conflicts}[/red]" if report.conflicts else "0",
            str(report.skipped),
        )
    Console().print(table)

    for name, exc in failed.items():
        console.print(f"✗ {name}: {exc}", style="bold red", highlight=False)
    if any(r.conflicts for r in reports):
        console.print("Open conflicts: run `orgsync conflicts list`.", style="yellow")
    return 1 if failed else 0
