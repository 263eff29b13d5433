"""Outline text format: tokenizer, parser, heading tree and writer."""

from .document import Document, Heading, LogEntry, PropertyMap, TodoVocabulary
from .parser import DiagnosticKind, ParseDiagnostic, parse
from .timestamps import Repeater, Timestamp, TimestampKind
from .writer import write

__all__ = [
    "DiagnosticKind",
    "Document",
    "Heading",
    "LogEntry",
    "ParseDiagnostic",
    "PropertyMap",
    "Repeater",
    "Timestamp",
    "TimestampKind",
    "TodoVocabulary",
    "parse",
    "write",
]
