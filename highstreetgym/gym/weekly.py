"""Filtering, chronological ordering and Monday-first weekly grouping.

Items flowing through this module are any objects exposing a civil date
(``YYYY-MM-DD``) and time of day (``HH:MM[:SS]``) through accessor callables,
so the same stages serve both booking history and trainer schedules.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence, TypeVar

from .clock import Clock

log = logging.getLogger(__name__)

T = TypeVar("T")
Accessor = Callable[[Any], "str | None"]


def _date_of(item: Any) -> str | None:
    return getattr(item, "session_date", None)


def _time_of(item: Any) -> str | None:
    return getattr(item, "session_time", None)


def parse_date(value: str | dt.date | None) -> dt.date | None:
    """Return the civil date for an ISO ``YYYY-MM-DD`` value, ``None`` when malformed."""

    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(str(value).strip())
    except ValueError:
        return None


def parse_time(value: str | dt.time | None) -> dt.time | None:
    if value is None:
        return None
    if isinstance(value, dt.time):
        return value
    try:
        return dt.time.fromisoformat(str(value).strip())
    except ValueError:
        return None


def normalize_date(value: str | dt.date | None) -> str | None:
    """Return ``YYYY-MM-DD`` for a date-like value or ``None`` when absent.

    Raises ``ValueError`` for values that are present but not a civil date.
    """

    if value is None or value == "":
        return None
    if isinstance(value, dt.date):
        return value.isoformat()
    return dt.date.fromisoformat(str(value).strip()).isoformat()


# ---------------------------------------------------------------------------
# Week ranges
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class WeekRange:
    monday: dt.date
    sunday: dt.date

    @property
    def start_iso(self) -> str:
        return self.monday.isoformat()

    @property
    def end_iso(self) -> str:
        return self.sunday.isoformat()

    @property
    def key(self) -> str:
        return f"{self.start_iso}_{self.end_iso}"

    @property
    def label(self) -> str:
        return f"{self.monday:%d/%m/%Y} - {self.sunday:%d/%m/%Y}"


def week_range(value: str | dt.date | None) -> WeekRange | None:
    """Return the Monday to Sunday week containing ``value``.

    A Sunday belongs to the week that ends on it.
    """

    day = parse_date(value)
    if day is None:
        return None
    monday = day - dt.timedelta(days=day.weekday())
    return WeekRange(monday=monday, sunday=monday + dt.timedelta(days=6))


@dataclass
class WeekGroup:
    range: WeekRange
    items: list = field(default_factory=list)


# ---------------------------------------------------------------------------
# Filter & sort
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class FilterConfig:
    """Which records survive before grouping.

    ``only_past`` keeps dates strictly before today; otherwise ``include_past``
    decides whether dates before today are dropped. The optional bounds are
    inclusive and must already be normalized ``YYYY-MM-DD`` strings.
    """

    only_past: bool = False
    include_past: bool = False
    start_date: str | None = None
    end_date: str | None = None


def chronological_key(item: Any, date_of: Accessor = _date_of, time_of: Accessor = _time_of) -> tuple:
    """Sort key placing malformed dates or times after every well-formed one."""

    day = parse_date(date_of(item))
    moment = parse_time(time_of(item))
    if day is None or moment is None:
        return (1, dt.date.min, dt.time.min)
    return (0, day, moment)


def filter_and_sort(
    items: Iterable[T],
    config: FilterConfig,
    clock: Clock,
    date_of: Accessor = _date_of,
    time_of: Accessor = _time_of,
) -> list[T]:
    today = clock.today()
    kept: list[T] = []
    for item in items:
        day = parse_date(date_of(item))
        if config.only_past:
            if day is None or day >= today:
                continue
        elif not config.include_past:
            if day is None or day < today:
                continue
        if config.start_date or config.end_date:
            if day is None:
                continue
            iso = day.isoformat()
            if config.start_date and iso < config.start_date:
                continue
            if config.end_date and iso > config.end_date:
                continue
        kept.append(item)
    # sorted() is stable, equal (date, time) keep the fetcher's order
    return sorted(kept, key=lambda item: chronological_key(item, date_of, time_of))


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------
def group_by_week(
    items: Sequence[T],
    date_of: Accessor = _date_of,
    time_of: Accessor = _time_of,
) -> list[WeekGroup]:
    """Partition ``items`` into non-empty Monday to Sunday groups.

    Groups come back ordered by their Monday and items inside a group are in
    ascending (date, time) order. Items without a usable date are dropped.
    """

    groups: dict[str, WeekGroup] = {}
    for item in items:
        week = week_range(date_of(item))
        if week is None:
            log.warning("Dropping record with malformed date %r from weekly export", date_of(item))
            continue
        groups.setdefault(week.key, WeekGroup(range=week)).items.append(item)

    ordered = sorted(groups.values(), key=lambda group: (group.range.start_iso, group.range.end_iso))
    for group in ordered:
        group.items.sort(key=lambda item: chronological_key(item, date_of, time_of))
    return ordered


def period_of(groups: Sequence[WeekGroup], sentinel: str) -> tuple[str, str]:
    """Return the inclusive (start, end) span covered by ``groups``."""

    if not groups:
        return sentinel, sentinel
    return groups[0].range.start_iso, groups[-1].range.end_iso


__all__ = [
    "FilterConfig",
    "WeekGroup",
    "WeekRange",
    "chronological_key",
    "filter_and_sort",
    "group_by_week",
    "normalize_date",
    "parse_date",
    "parse_time",
    "period_of",
    "week_range",
]
