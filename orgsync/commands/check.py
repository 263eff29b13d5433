"""Check command - report parse and conversion diagnostics per collection."""

from __future__ import annotations

import json

from rich.console import Console
from rich.table import Table

from ..config import COLLECTION_KINDS, OrgSyncConfig
from ..vault.convert import DomainConverter
from ..vault.loader import FileCheck, check_file


def collect_checks(config: OrgSyncConfig) -> list[FileCheck]:
    converter = DomainConverter(config.vocabulary, config.tasks)
    return [check_file(config.path_for(kind), kind, converter) for kind in COLLECTION_KINDS]


def run_check(config: OrgSyncConfig, output_json: bool = False, strict: bool = False) -> int:
    """Parse every collection file and print what was demoted or dropped.

    Args:
        config: Loaded configuration
        output_json: Output results as JSON instead of a table
        strict: Exit non-zero when any diagnostic was found

    Returns:
        Exit code (0 = success, 1 = diagnostics found in strict mode)
    """
    checks = collect_checks(config)
    total = sum(check.diagnostic_count for check in checks)

    if output_json:
        output = {"org_dir": str(config.org_dir), "diagnostics": total, "files": [c.to_dict() for c in checks]}
        print(json.dumps(output, indent=2, default=str))
        return 1 if strict and total else 0

    console = Console()
    table = Table(title=f"Collections in {config.org_dir}")
    table.add_column("Kind", style="bold")
    table.add_column("File")
    table.add_column("Diagnostics", justify="right")
    table.add_column("Missing IDs", justify="right")
    table.add_column("Canonical")
    for check in checks:
        if not check.exists:
            table.add_row(check.kind, check.path.name, "-", "-", "[dim]missing[/dim]")
            continue
        table.add_row(
            check.kind,
            check.path.name,
            str(check.diagnostic_count),
            str(len(check.minted)),
            "[green]yes[/green]" if check.canonical else "[yellow]no[/yellow]",
        )
    console.print(table)

    for check in checks:
        for diagnostic in check.parse_diagnostics:
            console.print(
                f"  {check.path.name}:{diagnostic.line} [{diagnostic.kind.value}] {diagnostic.message}",
                style="yellow",
                highlight=False,
            )
        for diagnostic in check.conversion_diagnostics:
            console.print(
                f"  {check.path.name}: {diagnostic.entity_id} {diagnostic.field}={diagnostic.raw!r} - {diagnostic.message}",
                style="yellow",
                highlight=False,
            )

    if total:
        console.print(f"\n{total} diagnostic(s)", style="bold yellow")
        return 1 if strict else 0
    console.print("\n✓ No diagnostics", style="dim green")
    return 0
