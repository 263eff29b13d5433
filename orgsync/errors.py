"""
Error taxonomy for the persistence and sync engines.

Only failures that abort an operation are exceptions. Parse and
conversion anomalies are collected as diagnostics records (see
``orgsync.org.parser.ParseDiagnostic`` and
``orgsync.vault.convert.ConversionDiagnostic``) and never raised.
"""

from __future__ import annotations

from pathlib import Path


class OrgSyncError(Exception):
    """Base class for errors surfaced to callers."""


class ConfigError(OrgSyncError):
    """The configuration file exists but cannot be used."""


class PersistenceFailure(OrgSyncError):
    """The storage medium could not be read or written."""

    def __init__(self, path: Path, cause: BaseException | None = None, action: str = "access"):
        self.path = Path(path)
        self.cause = cause
        self.action = action
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to {action} {self.path}{detail}")


class SyncTransportFailure(OrgSyncError):
    """A protocol adapter call failed; the source's sync run is aborted."""

    def __init__(self, source: str, operation: str, cause: BaseException | None = None):
        self.source = source
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Sync source '{source}' failed during {operation}{detail}")


class InvalidTransition(OrgSyncError):
    """A task state change that the lifecycle does not allow."""


class UnknownConflict(OrgSyncError):
    """A resolution was requested for a conflict that is not open."""
