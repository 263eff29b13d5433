"""Init command - create the collection files and a starter config."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console

from ..config import CONFIG_FILENAME, load_config
from ..vault.loader import Vault, atomic_write_text

STARTER_CONFIG = """\
# orgsync configuration

[todo]
open = ["TODO", "NEXT", "WAITING", "SOMEDAY"]
closed = ["DONE", "CANCELLED"]

[tasks]
cost_min = 0
cost_max = 100

[dayplan]
spoon_budget = 50

# [[sources]]
# name = "tablet"
# adapter = "jsondir"
# collection = "next"
# options = { path = "../tablet-sync" }
"""


def run_init(org_dir: Path, write_config: bool = True) -> int:
    """
    Create missing collection files (and ``orgsync.toml``) in ``org_dir``.

    Returns:
        Exit code
    """
    console = Console(stderr=True)
    org_dir.mkdir(parents=True, exist_ok=True)
    config_path = org_dir / CONFIG_FILENAME
    if write_config and not config_path.exists():
        atomic_write_text(config_path, STARTER_CONFIG)
        console.print(f"created {config_path.name}", highlight=False)

    vault = Vault(load_config(org_dir))
    created = vault.ensure_files()
    for path in created:
        console.print(f"created {path.name}", highlight=False)
    if not created:
        console.print("All collection files already exist.", style="dim")
    return 0
