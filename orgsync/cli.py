"""CLI entrypoint for orgsync."""

from __future__ import annotations

import logging
import sys
from datetime import date, datetime
from pathlib import Path

import click

from . import __version__
from .config import COLLECTION_KINDS, CONFIG_FILENAME, OrgSyncConfig, load_config
from .errors import OrgSyncError


def _auto_detect_org_dir(start: Path) -> Path | None:
    """Find the nearest directory holding an orgsync.toml, walking up from `start`."""
    cur = start.resolve()
    for p in (cur, *cur.parents):
        if (p / CONFIG_FILENAME).is_file():
            return p
    return None


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


class OrgSyncGroup(click.Group):
    """Turns library errors into clean one-line CLI failures."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except OrgSyncError as exc:
            raise click.ClickException(str(exc)) from exc


def _config(ctx: click.Context) -> OrgSyncConfig:
    if "config" not in ctx.obj:
        ctx.obj["config"] = load_config(ctx.obj["org_dir"], ctx.obj.get("config_path"))
    return ctx.obj["config"]


@click.group(cls=OrgSyncGroup)
@click.version_option(__version__, prog_name="orgsync")
@click.option(
    "--org-dir",
    "-d",
    type=click.Path(exists=False, file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    envvar="ORGSYNC_DIR",
    help="Directory with the collection files (defaults to the nearest directory with an orgsync.toml, else .)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (defaults to ORG_DIR/orgsync.toml)",
)
@click.option("--verbose", "-V", count=True, help="Log more (-V info, -VV debug)")
@click.pass_context
def cli(ctx: click.Context, org_dir: Path | None, config_path: Path | None, verbose: int) -> None:
    """orgsync - Plain-text task collections with multi-source sync.

    Check, format and inspect org collection files, and reconcile them
    with remote sources.
    """
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    if org_dir is None:
        org_dir = _auto_detect_org_dir(Path.cwd()) or Path.cwd()
    ctx.obj["org_dir"] = org_dir.resolve()
    ctx.obj["config_path"] = config_path


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.option("--strict", is_flag=True, help="Exit with error if any diagnostic is found")
@click.pass_context
def check(ctx: click.Context, output_json: bool, strict: bool) -> None:
    """Parse every collection file and report diagnostics.

    Malformed lines never block loading; they are kept as plain text and
    listed here.
    """
    from .commands.check import run_check

    config = _config(ctx)
    if not config.org_dir.is_dir():
        raise click.BadParameter(f"Directory '{config.org_dir}' does not exist.", param_hint="--org-dir / -d")
    sys.exit(run_check(config, output_json=output_json, strict=strict))


@cli.command()
@click.option("--check", "check_only", is_flag=True, help="Only report files that would change")
@click.pass_context
def fmt(ctx: click.Context, check_only: bool) -> None:
    """Rewrite collection files in canonical form, assigning missing IDs."""
    from .commands.fmt import run_fmt

    sys.exit(run_fmt(_config(ctx), check_only=check_only))


@cli.command()
@click.argument("kind", type=click.Choice(COLLECTION_KINDS))
@click.option(
    "--date",
    "on",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Reference day (defaults to today)",
)
@click.option("--today", "today_only", is_flag=True, help="Only tasks scheduled or due around the reference day")
@click.option("--json", "output_json", is_flag=True, help="Output entities as JSON")
@click.pass_context
def show(ctx: click.Context, kind: str, on: datetime | None, today_only: bool, output_json: bool) -> None:
    """List the entities of one collection.

    Examples:

        orgsync show next --today

        orgsync show habits --date 2026-02-20
    """
    from .commands.show import run_show

    reference = on.date() if on else date.today()
    sys.exit(run_show(_config(ctx), kind, reference, today_only=today_only, output_json=output_json))


@cli.command()
@click.argument("sources", nargs=-1)
@click.option("--dry-run", is_flag=True, help="Compute outcomes without changing anything")
@click.option("--json", "output_json", is_flag=True, help="Output reports as JSON")
@click.pass_context
def sync(ctx: click.Context, sources: tuple[str, ...], dry_run: bool, output_json: bool) -> None:
    """Reconcile collections with remote sources (all configured sources by default)."""
    from .commands.sync_cmd import run_sync

    sys.exit(run_sync(_config(ctx), list(sources), dry_run=dry_run, output_json=output_json))


@cli.group()
def conflicts() -> None:
    """Inspect and resolve sync conflicts."""
    pass


@conflicts.command("list")
@click.option("--json", "output_json", is_flag=True, help="Output conflicts as JSON")
@click.pass_context
def conflicts_list(ctx: click.Context, output_json: bool) -> None:
    """List open conflicts."""
    from .commands.conflicts_cmd import run_conflicts_list

    run_conflicts_list(_config(ctx), output_json=output_json)


@conflicts.command("resolve")
@click.argument("conflict_id")
@click.argument("choice", type=click.Choice(["local", "remote", "discard"]))
@click.pass_context
def conflicts_resolve(ctx: click.Context, conflict_id: str, choice: str) -> None:
    """Resolve a conflict by keeping one side or discarding both.

    CONFLICT_ID is SOURCE:ENTITY_ID, or an entity id prefix that matches
    a single open conflict.
    """
    from .commands.conflicts_cmd import run_conflicts_resolve

    sys.exit(run_conflicts_resolve(_config(ctx), conflict_id, choice))


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Re-check collection files whenever they are saved.

    Runs until interrupted (Ctrl+C).
    """
    from .commands.watch_cmd import run_watch

    run_watch(_config(ctx))


@cli.command()
@click.option("--no-config", is_flag=True, help="Do not write a starter orgsync.toml")
@click.pass_context
def init(ctx: click.Context, no_config: bool) -> None:
    """Create missing collection files in the org directory."""
    from .commands.init import run_init

    sys.exit(run_init(ctx.obj["org_dir"], write_config=not no_config))


def main() -> None:
    """Main entrypoint."""
    cli()


if __name__ == "__main__":
    main()
