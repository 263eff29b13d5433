"""orgsync - plain-text task store with multi-source sync."""

__version__ = "0.1.0"
