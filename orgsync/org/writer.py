"""
Canonical document writer.

Output layout per heading: headline, planning line, plain/range
timestamps, property drawer, logbook, body lines verbatim, then children.
Meta lines are indented by two spaces.
"""

from __future__ import annotations

from .document import Document, Heading, PropertyMap
from .timestamps import TimestampKind, format_timestamp

META_INDENT = "  "

CANONICAL_PROPERTY_ORDER = (
    "ID",
    "CREATED",
    "STYLE",
    "ESC",
    "PURPOSE",
    "OUTCOME",
    "WAITING_FOR",
    "DELEGATED",
    "FOLLOW_UP",
    "COMPLETED",
    "SYNC_UID",
)


def render_headline(heading: Heading) -> str:
    parts: list[str] = []
    if heading.keyword:
        parts.append(heading.keyword)
    if heading.priority:
        parts.append(f"[#{heading.priority}]")
    if heading.title:
        parts.append(heading.title)
    if heading.tags:
        parts.append(":" + ":".join(heading.tags) + ":")
    return "*" * heading.depth + " " + " ".join(parts)


def ordered_properties(properties: PropertyMap) -> list[tuple[str, str]]:
    """Known keys first in canonical order (upper-cased), then the rest as found."""
    known = [(key, properties[key]) for key in CANONICAL_PROPERTY_ORDER if key in properties]
    rest = [(key, value) for key, value in properties.items() if key.upper() not in CANONICAL_PROPERTY_ORDER]
    return known + rest


def render_heading(heading: Heading) -> list[str]:
    """Render one heading without its children."""
    lines = [render_headline(heading)]

    planning = [
        f"{kind.value.upper()}: {format_timestamp(stamp)}"
        for kind in (TimestampKind.SCHEDULED, TimestampKind.DEADLINE)
        for stamp in heading.timestamps
        if stamp.kind == kind
    ]
    if heading.closed:
        planning.append("CLOSED: " + heading.closed)
    if planning:
        lines.append(META_INDENT + " ".join(planning))

    for stamp in heading.timestamps:
        if stamp.kind in (TimestampKind.PLAIN, TimestampKind.RANGE):
            lines.append(META_INDENT + format_timestamp(stamp))

    if len(heading.properties) or heading.drawer_extra:
        lines.append(META_INDENT + ":PROPERTIES:")
        for key, value in ordered_properties(heading.properties):
            lines.append(f"{META_INDENT}:{key}: {value}" if value else f"{META_INDENT}:{key}:")
        lines.extend(heading.drawer_extra)
        lines.append(META_INDENT + ":END:")

    if heading.log or heading.log_extra:
        lines.append(META_INDENT + ":LOGBOOK:")
        lines.extend(META_INDENT + entry.text for entry in heading.log)
        lines.extend(heading.log_extra)
        lines.append(META_INDENT + ":END:")

    lines.extend(heading.body)
    return lines


def write(document: Document) -> str:
    """Serialize a document. Empty documents produce an empty string."""
    lines = list(document.preamble)
    for heading in document.walk():
        lines.extend(render_heading(heading))
    if not lines:
        return ""
    return "\n".join(lines) + "\n"
