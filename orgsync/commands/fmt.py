"""Fmt command - rewrite collection files in canonical form."""

from __future__ import annotations

from rich.console import Console

from ..config import COLLECTION_KINDS, OrgSyncConfig
from ..vault.convert import DomainConverter
from ..vault.loader import atomic_write_text, canonicalize, read_text


def run_fmt(config: OrgSyncConfig, check_only: bool = False) -> int:
    """
    Canonicalize every existing collection file, assigning missing IDs.

    Returns:
        Exit code (1 when ``check_only`` and some file would change)
    """
    console = Console(stderr=True)
    converter = DomainConverter(config.vocabulary, config.tasks)
    changed = []
    for kind in COLLECTION_KINDS:
        path = config.path_for(kind)
        if not path.exists():
            continue
        text = read_text(path)
        canonical_text, _, conversion = canonicalize(text, kind, converter)
        if canonical_text == text:
            continue
        changed.append(path)
        if check_only:
            console.print(f"would reformat {path.name}", highlight=False)
            continue
        atomic_write_text(path, canonical_text)
        detail = f" ({len(conversion.minted)} id(s) assigned)" if conversion.minted else ""
        console.print(f"reformatted {path.name}{detail}", highlight=False)

    if not changed:
        console.print("All collection files are canonical.", style="dim")
    return 1 if check_only and changed else 0
