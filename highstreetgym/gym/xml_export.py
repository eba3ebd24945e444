"""XML document emission shared by every weekly export.

The document layout is a public contract: an XML prolog on the first line, an
optional comment, an inline DTD naming every element, then a header followed
by ``<week>`` groups in chronological order.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
import unicodedata
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Sequence
from xml.sax.saxutils import escape

from flask import Response

from .records import Principal
from .weekly import WeekGroup, parse_date, parse_time, period_of

log = logging.getLogger(__name__)

XML_PROLOG = '<?xml version="1.0" encoding="UTF-8"?>'
XML_CONTENT_TYPE = "application/xml"

_QUOTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}
_FILENAME_UNSAFE = re.compile(r"[^A-Za-z0-9._'-]")


def escape_xml(value: Any) -> str:
    """Escape ``& < > " '`` for use in character data and attribute values."""

    if value is None:
        return ""
    return escape(str(value), _QUOTE_ENTITIES)


def format_local_datetime(
    date: str | None,
    time: str | None,
    offset: dt.timedelta = dt.timedelta(0),
) -> str:
    """Return ``YYYY-MM-DDTHH:MM:SS`` for a civil date and time, ``""`` if either is unusable."""

    day = parse_date(date)
    moment = parse_time(time)
    if day is None or moment is None:
        return ""
    combined = dt.datetime.combine(day, moment.replace(microsecond=0, tzinfo=None)) + offset
    return combined.strftime("%Y-%m-%dT%H:%M:%S")


class XMLWriter:
    """Line oriented builder producing consistently indented XML."""

    def __init__(self, indent: str = "    ") -> None:
        self.indent = indent
        self.depth = 0
        self.lines: list[str] = []

    def raw(self, text: str) -> None:
        self.lines.append(text)

    def leaf(self, name: str, text: Any) -> None:
        self.lines.append(f"{self.indent * self.depth}<{name}>{escape_xml(text)}</{name}>")

    @contextmanager
    def element(self, name: str, attributes: Sequence[tuple[str, Any]] = ()) -> Iterator[None]:
        rendered = "".join(f' {key}="{escape_xml(value)}"' for key, value in attributes)
        self.lines.append(f"{self.indent * self.depth}<{name}{rendered}>")
        self.depth += 1
        try:
            yield
        finally:
            self.depth -= 1
        self.lines.append(f"{self.indent * self.depth}</{name}>")

    def getvalue(self) -> str:
        return "\n".join(self.lines) + "\n"


ItemRenderer = Callable[[XMLWriter, Any], None]


@dataclass(frozen=True)
class WeeklyExportConfig:
    """Everything that distinguishes one weekly XML export from another."""

    root_element: str
    dtd: str
    title_prefix: str
    count_element: str
    principal_element: str
    item_element: str
    week_attribute_name: str
    empty_period_sentinel: str
    render_item: ItemRenderer
    item_date: Callable[[Any], str | None] = lambda item: item.session_date
    item_time: Callable[[Any], str | None] = lambda item: item.session_time
    comment: str | None = None


def generate_weekly_xml(
    config: WeeklyExportConfig,
    groups: Sequence[WeekGroup],
    principal: Principal,
    exported_at: str,
) -> str:
    """Serialize already grouped items into one complete XML document."""

    start, end = period_of(groups, config.empty_period_sentinel)
    total = sum(len(group.items) for group in groups)

    writer = XMLWriter()
    writer.raw(XML_PROLOG)
    if config.comment:
        writer.raw(f"<!-- {config.comment} -->")
    writer.raw(config.dtd.strip())
    with writer.element(config.root_element):
        with writer.element("header"):
            writer.leaf("title", f"{config.title_prefix} - {principal.full_name}")
            writer.leaf("exported_at", exported_at)
            writer.leaf(config.count_element, total)
            with writer.element("period"):
                writer.leaf("start", start)
                writer.leaf("end", end)
            with writer.element(config.principal_element):
                writer.leaf("name", principal.full_name)
                writer.leaf("email", principal.email)
                writer.leaf("id", principal.id)
        for group in groups:
            attributes = [
                ("start", group.range.start_iso),
                ("end", group.range.end_iso),
                (config.week_attribute_name, group.range.label),
            ]
            with writer.element("week", attributes):
                for item in group.items:
                    with writer.element(config.item_element):
                        config.render_item(writer, item)
    return writer.getvalue()


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------
def export_filename(prefix: str, principal: Principal, suffix: str = "") -> str:
    """Return ``<prefix>-<given>-<family><suffix>.xml`` safe for a download header."""

    stem = f"{prefix}-{principal.first_name}-{principal.last_name}{suffix}"
    stem = "".join(
        char for char in unicodedata.normalize("NFKD", stem) if not unicodedata.combining(char)
    )
    stem = re.sub(r"\s+", "-", stem.strip())
    return _FILENAME_UNSAFE.sub("", stem) + ".xml"


def write_backup(directory: str | Path | None, filename: str, content: str) -> Path | None:
    """Copy an export into the backup directory; failures are logged, never raised."""

    if not directory:
        return None
    try:
        backup_dir = Path(directory)
        backup_dir.mkdir(parents=True, exist_ok=True)
        path = backup_dir / filename
        path.write_text(content, encoding="utf-8")
    except OSError:
        log.exception("Failed to back up XML export %s to %s", filename, directory)
        return None
    log.info("XML backup saved to: %s", path)
    return path


@dataclass(frozen=True)
class XMLExport:
    filename: str
    content: str
    item_count: int = 0

    def as_response(self) -> Response:
        return Response(
            self.content,
            status=200,
            content_type=XML_CONTENT_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{self.filename}"'},
        )


__all__ = [
    "WeeklyExportConfig",
    "XMLExport",
    "XMLWriter",
    "escape_xml",
    "export_filename",
    "format_local_datetime",
    "generate_weekly_xml",
    "write_backup",
]
