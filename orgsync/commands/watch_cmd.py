"""Watch command - re-check collection files as they are edited."""

from __future__ import annotations

from datetime import datetime

from rich.console import Console

from ..config import OrgSyncConfig
from ..vault.loader import FileCheck
from ..watcher import run_watch_loop


def format_check(check: FileCheck) -> str:
    if not check.exists:
        return f"{check.path.name}: [dim]removed[/dim]"
    parts = []
    if check.diagnostic_count:
        parts.append(f"[yellow]{check.diagnostic_count} diagnostic(s)[/yellow]")
    if check.minted:
        parts.append(f"{len(check.minted)} missing id(s)")
    if not check.canonical:
        parts.append("not canonical")
    return f"{check.path.name}: " + (", ".join(parts) if parts else "[green]ok[/green]")


def run_watch(config: OrgSyncConfig) -> None:
    """
    Watch the org directory and report each saved collection file.

    This is a blocking command that runs until interrupted (Ctrl+C).
    """
    console = Console(stderr=True)
    console.print(f"[bold]Watching[/bold] {config.org_dir}")
    console.print("[dim]Press Ctrl+C to stop watching[/dim]")
    console.print()

    check_count = 0

    def on_check(check: FileCheck) -> None:
        nonlocal check_count
        check_count += 1
        timestamp = datetime.now().strftime("%H:%M:%S")
        console.print(f"[dim]{timestamp}[/dim] {format_check(check)}", highlight=False)

    try:
        run_watch_loop(config, on_check=on_check)
    except KeyboardInterrupt:
        pass
    console.print()
    console.print(f"[bold]Stopped.[/bold] Checked {check_count} file(s).")
