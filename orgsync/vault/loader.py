"""Collection file loading, saving and bootstrap."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from ..config import COLLECTION_KINDS, OrgSyncConfig, load_config
from ..errors import PersistenceFailure
from ..models import DayPlan, EntityCollection
from ..org.document import Document
from ..org.parser import ParseDiagnostic, parse
from ..org.writer import write
from .convert import ConversionDiagnostic, ConversionResult, DomainConverter, read_dayplan, write_dayplan

logger = logging.getLogger(__name__)

FILE_TITLES = {
    "inbox": "Inbox",
    "next": "Next Actions",
    "waiting": "Waiting For",
    "someday": "Someday/Maybe",
    "projects": "Projects",
    "habits": "Habits",
    "media": "Media",
    "shopping": "Shopping",
    "archive": "Archive",
}


def read_text(path: Path) -> str:
    """Read a collection file; a missing file reads as empty."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""
    except OSError as exc:
        raise PersistenceFailure(path, exc, action="read") from exc
    except UnicodeDecodeError as exc:
        raise PersistenceFailure(path, exc, action="decode") from exc


def atomic_write_text(path: Path, text: str) -> None:
    """
    Write ``text`` to ``path`` via a temp file in the same directory.

    The target is either fully replaced or left untouched.
    """
    temp_path = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(temp_path, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except OSError as exc:
        temp_path.unlink(missing_ok=True)
        raise PersistenceFailure(path, exc, action="write") from exc
    logger.debug("Installed %s (%d bytes)", path, len(text))


@dataclass
class LoadedFile:
    kind: str
    path: Path
    text: str
    document: Document
    parse_diagnostics: list[ParseDiagnostic] = field(default_factory=list)
    conversion: ConversionResult = field(default_factory=ConversionResult)

    @property
    def diagnostic_count(self) -> int:
        return len(self.parse_diagnostics) + len(self.conversion.diagnostics)


class Vault:
    """
    The org directory: one collection per configured file.

    Entity collections are owned by the caller between ``load`` and ``save``;
    ``save`` renders them against the last parsed document so content the
    domain model does not own is carried through.
    """

    def __init__(self, config: OrgSyncConfig):
        self.config = config
        self.converter = DomainConverter(config.vocabulary, config.tasks)
        self.files: dict[str, LoadedFile] = {}
        self.collections: dict[str, EntityCollection] = {}

    @property
    def path(self) -> Path:
        return self.config.org_dir

    @property
    def entity_kinds(self) -> tuple[str, ...]:
        return tuple(kind for kind in COLLECTION_KINDS if kind != "dayplan")

    def load(self, kind: str, reference: date | None = None) -> EntityCollection:
        """Parse and convert one collection file, replacing any loaded state."""
        path = self.config.path_for(kind)
        text = read_text(path)
        document, diagnostics = parse(text, self.config.vocabulary)
        if diagnostics:
            logger.debug("%s: %d parse diagnostics", path.name, len(diagnostics))
        conversion = self.converter.to_domain(document, kind, reference)
        self.files[kind] = LoadedFile(kind, path, text, document, diagnostics, conversion)
        collection = EntityCollection(kind, conversion.entities)
        self.collections[kind] = collection
        return collection

    def collection(self, kind: str) -> EntityCollection:
        if kind not in self.collections:
            return self.load(kind)
        return self.collections[kind]

    def render(self, kind: str) -> str:
        """Text that ``save`` would write for ``kind``."""
        loaded = self.files.get(kind)
        previous = loaded.document if loaded and loaded.text else None
        document = self.converter.from_domain(self.collection(kind), previous, kind)
        if previous is None:
            document.preamble[0] = f"#+TITLE: {FILE_TITLES.get(kind, kind.capitalize())}"
        return write(document)

    def save(self, kind: str) -> bool:
        """
        Write a collection back to disk if its text changed.

        Returns:
            True if the file was rewritten.
        """
        text = self.render(kind)
        loaded = self.files.get(kind)
        if loaded is not None and loaded.text == text:
            return False
        path = self.config.path_for(kind)
        atomic_write_text(path, text)
        document, diagnostics = parse(text, self.config.vocabulary)
        conversion = ConversionResult(entities=list(self.collection(kind)))
        self.files[kind] = LoadedFile(kind, path, text, document, diagnostics, conversion)
        return True

    def save_all(self) -> list[str]:
        return [kind for kind in list(self.collections) if self.save(kind)]

    def ensure_files(self) -> list[Path]:
        """Create missing collection files with a title and state vocabulary line."""
        created = []
        vocabulary = self.config.vocabulary.header_value()
        for kind in self.entity_kinds:
            path = self.config.path_for(kind)
            if path.exists():
                continue
            title = FILE_TITLES.get(kind, kind.capitalize())
            atomic_write_text(path, f"#+TITLE: {title}\n#+TODO: {vocabulary}\n\n")
            created.append(path)
            logger.info("Created %s", path)
        return created

    def read_dayplan(self, reference: date | None = None) -> DayPlan | None:
        """The stored plan, or None if absent or stale for ``reference``."""
        path = self.config.path_for("dayplan")
        document, _ = parse(read_text(path))
        return read_dayplan(document, reference, self.config.spoon_budget)

    def save_dayplan(self, plan: DayPlan) -> None:
        atomic_write_text(self.config.path_for("dayplan"), write(write_dayplan(plan)))


def load_vault(org_dir: Path, config: OrgSyncConfig | None = None, reference: date | None = None) -> Vault:
    """Load every entity collection in ``org_dir``.

    Args:
        org_dir: Directory with the collection files.
        config: Preloaded configuration (read from ``org_dir`` if omitted).
        reference: Day for habit streaks.

    Returns:
        Vault with all collections loaded.
    """
    vault = Vault(config or load_config(org_dir))
    for kind in vault.entity_kinds:
        vault.load(kind, reference)
    return vault


def canonicalize(text: str, kind: str, converter: DomainConverter) -> tuple[str, list[ParseDiagnostic], ConversionResult]:
    """Canonical form of a collection file with missing IDs assigned."""
    document, diagnostics = parse(text, converter.vocabulary)
    if kind == "dayplan":
        return write(document), diagnostics, ConversionResult()
    conversion = converter.to_domain(document, kind)
    return write(document), diagnostics, conversion


@dataclass
class FileCheck:
    """Diagnostics for one collection file as it is on disk."""

    kind: str
    path: Path
    exists: bool
    parse_diagnostics: list[ParseDiagnostic] = field(default_factory=list)
    conversion_diagnostics: list[ConversionDiagnostic] = field(default_factory=list)
    minted: list[str] = field(default_factory=list)
    canonical: bool = True

    @property
    def diagnostic_count(self) -> int:
        return len(self.parse_diagnostics) + len(self.conversion_diagnostics)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "path": str(self.path),
            "exists": self.exists,
            "canonical": self.canonical,
            "missing_ids": len(self.minted),
            "parse_diagnostics": [d.to_dict() for d in self.parse_diagnostics],
            "conversion_diagnostics": [d.to_dict() for d in self.conversion_diagnostics],
        }


def check_file(path: Path, kind: str, converter: DomainConverter) -> FileCheck:
    """Parse and convert ``path`` without writing anything."""
    text = read_text(path)
    canonical_text, diagnostics, conversion = canonicalize(text, kind, converter)
    return FileCheck(
        kind=kind,
        path=path,
        exists=path.exists(),
        parse_diagnostics=diagnostics,
        conversion_diagnostics=conversion.diagnostics,
        minted=conversion.minted,
        canonical=canonical_text == text,
    )
