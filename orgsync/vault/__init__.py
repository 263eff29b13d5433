"""Collection files as typed entities."""

from .convert import ConversionDiagnostic, ConversionResult, DomainConverter, read_dayplan, write_dayplan
from .loader import FileCheck, Vault, atomic_write_text, canonicalize, check_file, load_vault

__all__ = [
    "ConversionDiagnostic",
    "ConversionResult",
    "DomainConverter",
    "FileCheck",
    "Vault",
    "atomic_write_text",
    "canonicalize",
    "check_file",
    "load_vault",
    "read_dayplan",
    "write_dayplan",
]
