"""Member booking history and trainer weekly schedule exports.

Both exports run the same request-scoped pipeline::

    fetch -> filter & sort -> group by week -> emit XML -> backup copy

and differ only in their ``WeeklyExportConfig``.
"""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path

from .clock import Clock
from .errors import EmitFailed
from .records import EnrichedBooking, EnrichedSession, Principal, RecordFetcher
from .weekly import FilterConfig, filter_and_sort, group_by_week
from .xml_export import (
    WeeklyExportConfig,
    XMLExport,
    XMLWriter,
    export_filename,
    format_local_datetime,
    generate_weekly_xml,
    write_backup,
)

log = logging.getLogger(__name__)

COPYRIGHT = "Copyright (c) High Street Gym. All rights reserved."
SESSION_LENGTH = dt.timedelta(hours=1)

BOOKING_HISTORY_DTD = """
<!DOCTYPE booking_history [
    <!ELEMENT booking_history (header, week*)>
    <!ELEMENT header (title, exported_at, total_bookings, period, member)>
    <!ELEMENT title (#PCDATA)>
    <!ELEMENT exported_at (#PCDATA)>
    <!ELEMENT total_bookings (#PCDATA)>
    <!ELEMENT period (start, end)>
    <!ELEMENT start (#PCDATA)>
    <!ELEMENT end (#PCDATA)>
    <!ELEMENT member (name, email, id)>
    <!ELEMENT name (#PCDATA)>
    <!ELEMENT email (#PCDATA)>
    <!ELEMENT id (#PCDATA)>
    <!ELEMENT week (booking*)>
    <!ATTLIST week start CDATA #IMPLIED>
    <!ATTLIST week end CDATA #IMPLIED>
    <!ATTLIST week period_label CDATA #IMPLIED>
    <!ELEMENT booking (booking_date, booking_time, datetime, activity, location, trainer, booking_id, session_id)>
    <!ELEMENT booking_date (#PCDATA)>
    <!ELEMENT booking_time (#PCDATA)>
    <!ELEMENT datetime (#PCDATA)>
    <!ELEMENT activity (name, description, id)>
    <!ELEMENT description (#PCDATA)>
    <!ELEMENT location (name, address, id)>
    <!ELEMENT address (#PCDATA)>
    <!ELEMENT trainer (name, email, id)>
    <!ELEMENT booking_id (#PCDATA)>
    <!ELEMENT session_id (#PCDATA)>
]>
"""

WEEKLY_SESSIONS_DTD = """
<!DOCTYPE weekly_sessions [
    <!ELEMENT weekly_sessions (header, week*)>
    <!ELEMENT header (title, exported_at, total_sessions, period, trainer)>
    <!ELEMENT title (#PCDATA)>
    <!ELEMENT exported_at (#PCDATA)>
    <!ELEMENT total_sessions (#PCDATA)>
    <!ELEMENT period (start, end)>
    <!ELEMENT start (#PCDATA)>
    <!ELEMENT end (#PCDATA)>
    <!ELEMENT trainer (name, email, id)>
    <!ELEMENT name (#PCDATA)>
    <!ELEMENT email (#PCDATA)>
    <!ELEMENT id (#PCDATA)>
    <!ELEMENT week (session*)>
    <!ATTLIST week start CDATA #IMPLIED>
    <!ATTLIST week end CDATA #IMPLIED>
    <!ATTLIST week label CDATA #IMPLIED>
    <!ELEMENT session (id, title, location, start, end, activity, location_details)>
    <!ELEMENT location (#PCDATA)>
    <!ELEMENT activity (name)>
    <!ELEMENT location_details (name)>
]>
"""


def render_booking(writer: XMLWriter, item: EnrichedBooking) -> None:
    session = item.session
    writer.leaf("booking_date", session.session_date or "N/A")
    writer.leaf("booking_time", session.session_time or "N/A")
    writer.leaf("datetime", format_local_datetime(session.session_date, session.session_time))
    with writer.element("activity"):
        writer.leaf("name", item.activity.name or "Unknown Activity")
        writer.leaf("description", item.activity.description)
        writer.leaf("id", item.activity.id)
    with writer.element("location"):
        writer.leaf("name", item.location.name or "Unknown Location")
        writer.leaf("address", item.location.address)
        writer.leaf("id", item.location.id)
    with writer.element("trainer"):
        writer.leaf("name", item.trainer.full_name)
        writer.leaf("email", item.trainer.email)
        writer.leaf("id", item.trainer.id)
    writer.leaf("booking_id", f"booking_{item.booking.id}")
    writer.leaf("session_id", f"session_{session.id}")


def render_session(writer: XMLWriter, item: EnrichedSession) -> None:
    session = item.session
    activity_name = item.activity.name or "Unknown Activity"
    location_name = item.location.name or "Unknown Location"
    writer.leaf("id", f"session_{session.id}")
    writer.leaf("title", activity_name)
    writer.leaf("location", location_name)
    writer.leaf("start", format_local_datetime(session.session_date, session.session_time))
    writer.leaf(
        "end",
        format_local_datetime(session.session_date, session.session_time, SESSION_LENGTH),
    )
    with writer.element("activity"):
        writer.leaf("name", activity_name)
    with writer.element("location_details"):
        writer.leaf("name", location_name)


BOOKING_HISTORY = WeeklyExportConfig(
    root_element="booking_history",
    dtd=BOOKING_HISTORY_DTD,
    title_prefix="Booking History",
    count_element="total_bookings",
    principal_element="member",
    item_element="booking",
    week_attribute_name="period_label",
    empty_period_sentinel="No bookings available",
    render_item=render_booking,
    comment=COPYRIGHT,
)

WEEKLY_SESSIONS = WeeklyExportConfig(
    root_element="weekly_sessions",
    dtd=WEEKLY_SESSIONS_DTD,
    title_prefix="Sessions",
    count_element="total_sessions",
    principal_element="trainer",
    item_element="session",
    week_attribute_name="label",
    empty_period_sentinel="No sessions available",
    render_item=render_session,
    comment=COPYRIGHT,
)


def run_weekly_export(
    config: WeeklyExportConfig,
    items: list,
    principal: Principal,
    filters: FilterConfig,
    *,
    clock: Clock,
    filename: str,
    backup_directory: str | Path | None,
) -> XMLExport:
    """Filter, group and serialize ``items`` and leave a backup copy on disk."""

    selected = filter_and_sort(items, filters, clock, config.item_date, config.item_time)
    groups = group_by_week(selected, config.item_date, config.item_time)
    try:
        content = generate_weekly_xml(config, groups, principal, clock.timestamp())
    except (AttributeError, TypeError, ValueError) as exc:
        log.exception("Failed to render %s export for user %s", config.root_element, principal.id)
        raise EmitFailed() from exc
    write_backup(backup_directory, filename, content)
    count = sum(len(group.items) for group in groups)
    log.info(
        "Exported %s for user %s: %d item(s) in %d week(s) as %s",
        config.root_element,
        principal.id,
        count,
        len(groups),
        filename,
    )
    return XMLExport(filename=filename, content=content, item_count=count)


def export_booking_history(
    fetcher: RecordFetcher,
    member: Principal,
    *,
    only_past: bool = False,
    clock: Clock,
    backup_directory: str | Path | None = None,
) -> XMLExport:
    """Export every live booking of ``member``, or only past ones with ``only_past``."""

    bookings = fetcher.fetch_enriched_bookings_for_member(member.id)
    return run_weekly_export(
        BOOKING_HISTORY,
        bookings,
        member,
        FilterConfig(only_past=only_past, include_past=True),
        clock=clock,
        filename=export_filename("booking-history", member),
        backup_directory=backup_directory,
    )


def sessions_filename_suffix(start_date: str | None, end_date: str | None) -> str:
    if start_date and end_date:
        return f"-{start_date}-to-{end_date}"
    if start_date:
        return f"-from-{start_date}"
    if end_date:
        return f"-until-{end_date}"
    return ""


def export_weekly_sessions(
    fetcher: RecordFetcher,
    trainer_id: int,
    *,
    start_date: str | None = None,
    end_date: str | None = None,
    clock: Clock,
    backup_directory: str | Path | None = None,
) -> XMLExport:
    """Export the upcoming sessions a trainer runs, optionally within a date range.

    Both bounds are inclusive ``YYYY-MM-DD`` strings.
    """

    trainer = fetcher.fetch_principal(trainer_id)
    sessions = fetcher.fetch_enriched_sessions_for_trainer(trainer.id, start_date, end_date)
    return run_weekly_export(
        WEEKLY_SESSIONS,
        sessions,
        trainer,
        FilterConfig(start_date=start_date, end_date=end_date),
        clock=clock,
        filename=export_filename("sessions", trainer, sessions_filename_suffix(start_date, end_date)),
        backup_directory=backup_directory,
    )


__all__ = [
    "BOOKING_HISTORY",
    "WEEKLY_SESSIONS",
    "export_booking_history",
    "export_weekly_sessions",
    "render_booking",
    "render_session",
    "run_weekly_export",
]
