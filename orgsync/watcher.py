"""
File system watcher for collection files.

Re-parses a collection file once an editor has finished saving it and
reports its diagnostics and whether it is in canonical form:
- Watchdog-based file monitoring
- Debounced checks (editors often write a file several times per save)
- Only configured collection files are checked
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .config import OrgSyncConfig
from .vault.convert import DomainConverter
from .vault.loader import FileCheck, check_file

logger = logging.getLogger(__name__)


class CollectionEventHandler(FileSystemEventHandler):
    """
    Collects change events per collection file and checks each file
    after it has been quiet for ``DEBOUNCE_SECONDS``.
    """

    DEBOUNCE_SECONDS = 1.0

    def __init__(
        self,
        config: OrgSyncConfig,
        on_check: Callable[[FileCheck], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.config = config
        self.on_check = on_check
        self.clock = clock
        self.converter = DomainConverter(config.vocabulary, config.tasks)
        self.kinds = {str(config.path_for(kind).resolve()): kind for kind in config.files}
        # path -> time of the last event
        self.pending: dict[str, float] = {}

    def kind_of(self, path: str) -> str | None:
        p = Path(path)
        if p.name.startswith("."):
            return None
        return self.kinds.get(str(p.resolve()))

    def _touch(self, path: str) -> None:
        if self.kind_of(path) is not None:
            self.pending[str(Path(path).resolve())] = self.clock()

    def flush_pending(self) -> list[FileCheck]:
        """Check every file whose debounce window has passed."""
        now = self.clock()
        ready = [path for path, stamp in self.pending.items() if now - stamp >= self.DEBOUNCE_SECONDS]
        checks = []
        for path in sorted(ready):
            del self.pending[path]
            check = check_file(Path(path), self.kinds[path], self.converter)
            logger.debug("Checked %s: %d diagnostics", path, check.diagnostic_count)
            checks.append(check)
            if self.on_check:
                self.on_check(check)
        return checks

    def on_created(self, event: FileCreatedEvent) -> None:
        if not event.is_directory:
            self._touch(event.src_path)

    def on_modified(self, event: FileModifiedEvent) -> None:
        if not event.is_directory:
            self._touch(event.src_path)

    def on_deleted(self, event: FileDeletedEvent) -> None:
        if not event.is_directory:
            self._touch(event.src_path)

    def on_moved(self, event: FileMovedEvent) -> None:
        # Atomic saves arrive as a move of a temp file onto the target.
        if not event.is_directory:
            self._touch(event.src_path)
            self._touch(event.dest_path)


def watch_collections(
    config: OrgSyncConfig,
    on_check: Callable[[FileCheck], None] | None = None,
) -> tuple[Observer, CollectionEventHandler]:
    """
    Start watching the org directory.

    Returns:
        Tuple of (observer, handler) - caller should call observer.stop() to stop watching
    """
    handler = CollectionEventHandler(config, on_check=on_check)
    observer = Observer()
    observer.schedule(handler, str(config.org_dir), recursive=False)
    observer.start()
    return observer, handler


def run_watch_loop(
    config: OrgSyncConfig,
    on_check: Callable[[FileCheck], None] | None = None,
) -> None:
    """Block, checking changed files, until interrupted."""
    observer, handler = watch_collections(config, on_check)
    try:
        while True:
            time.sleep(0.5)
            handler.flush_pending()
    except KeyboardInterrupt:
        observer.stop()

    observer.join()
