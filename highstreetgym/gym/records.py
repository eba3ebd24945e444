"""Read-only value records and the joined-record fetcher used by the exports."""

from __future__ import annotations

import logging
import queue
import sqlite3
from dataclasses import dataclass
from typing import Any

from .database import ConnectionPool
from .errors import DataUnavailable, PrincipalNotFound

log = logging.getLogger(__name__)


def _column(row: dict, prefix: str, name: str) -> Any:
    return row.get(f"{prefix}{name}")


@dataclass(frozen=True)
class Principal:
    id: int
    email: str
    first_name: str
    last_name: str
    role: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_row(cls, row: dict, prefix: str = "") -> Principal | None:
        if _column(row, prefix, "id") is None:
            return None
        return cls(
            id=_column(row, prefix, "id"),
            email=_column(row, prefix, "email") or "",
            first_name=_column(row, prefix, "first_name") or "",
            last_name=_column(row, prefix, "last_name") or "",
            role=_column(row, prefix, "role") or "",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "role": self.role,
        }


@dataclass(frozen=True)
class Activity:
    id: int
    name: str
    description: str

    @classmethod
    def from_row(cls, row: dict, prefix: str = "") -> Activity | None:
        if _column(row, prefix, "id") is None:
            return None
        return cls(
            id=_column(row, prefix, "id"),
            name=_column(row, prefix, "name") or "",
            description=_column(row, prefix, "description") or "",
        )


@dataclass(frozen=True)
class Location:
    id: int
    name: str
    address: str

    @classmethod
    def from_row(cls, row: dict, prefix: str = "") -> Location | None:
        if _column(row, prefix, "id") is None:
            return None
        return cls(
            id=_column(row, prefix, "id"),
            name=_column(row, prefix, "name") or "",
            address=_column(row, prefix, "address") or "",
        )


@dataclass(frozen=True)
class Session:
    id: int
    session_date: str
    session_time: str
    activity_id: int
    location_id: int
    trainer_id: int

    @classmethod
    def from_row(cls, row: dict, prefix: str = "") -> Session | None:
        if _column(row, prefix, "id") is None:
            return None
        return cls(
            id=_column(row, prefix, "id"),
            session_date=_column(row, prefix, "session_date") or "",
            session_time=_column(row, prefix, "session_time") or "",
            activity_id=_column(row, prefix, "activity_id"),
            location_id=_column(row, prefix, "location_id"),
            trainer_id=_column(row, prefix, "trainer_id"),
        )


@dataclass(frozen=True)
class Booking:
    id: int
    member_id: int
    session_id: int

    @classmethod
    def from_row(cls, row: dict, prefix: str = "") -> Booking | None:
        if _column(row, prefix, "id") is None:
            return None
        return cls(
            id=_column(row, prefix, "id"),
            member_id=_column(row, prefix, "member_id"),
            session_id=_column(row, prefix, "session_id"),
        )


@dataclass(frozen=True)
class EnrichedBooking:
    """A booking joined with its session, activity, location, member and trainer."""

    booking: Booking
    session: Session
    activity: Activity
    location: Location
    member: Principal
    trainer: Principal

    @property
    def session_date(self) -> str:
        return self.session.session_date

    @property
    def session_time(self) -> str:
        return self.session.session_time

    @classmethod
    def from_row(cls, row: dict) -> EnrichedBooking | None:
        """Build from a row of ``BOOKING_COLUMNS``; ``None`` when a join came back empty."""

        parts = dict(
            booking=Booking.from_row(row, "booking_"),
            session=Session.from_row(row, "session_"),
            activity=Activity.from_row(row, "activity_"),
            location=Location.from_row(row, "location_"),
            member=Principal.from_row(row, "member_"),
            trainer=Principal.from_row(row, "trainer_"),
        )
        missing = [name for name, value in parts.items() if value is None]
        if missing:
            log.warning(
                "Skipping booking %s due to missing data: %s",
                row.get("booking_id"),
                ", ".join(missing),
            )
            return None
        return cls(**parts)


@dataclass(frozen=True)
class EnrichedSession:
    """A session joined with its activity, location and trainer."""

    session: Session
    activity: Activity
    location: Location
    trainer: Principal

    @property
    def session_date(self) -> str:
        return self.session.session_date

    @property
    def session_time(self) -> str:
        return self.session.session_time

    @classmethod
    def from_row(cls, row: dict) -> EnrichedSession | None:
        parts = dict(
            session=Session.from_row(row, "session_"),
            activity=Activity.from_row(row, "activity_"),
            location=Location.from_row(row, "location_"),
            trainer=Principal.from_row(row, "trainer_"),
        )
        missing = [name for name, value in parts.items() if value is None]
        if missing:
            log.warning(
                "Skipping session %s due to missing data: %s",
                row.get("session_id"),
                ", ".join(missing),
            )
            return None
        return cls(**parts)

    def to_dict(self) -> dict:
        return {
            "id": self.session.id,
            "activityId": self.activity.id,
            "activityName": self.activity.name,
            "trainerId": self.trainer.id,
            "trainerName": self.trainer.full_name,
            "locationId": self.location.id,
            "locationName": self.location.name,
            "sessionDate": self.session.session_date,
            "sessionTime": self.session.session_time,
        }


# Column aliases follow ``<record>_<column>`` so one flat row can carry the
# member and the trainer, which both live in ``users``.
SESSION_COLUMNS = """
    sessions.id AS session_id,
    sessions.session_date AS session_session_date,
    sessions.session_time AS session_session_time,
    sessions.activity_id AS session_activity_id,
    sessions.location_id AS session_location_id,
    sessions.trainer_id AS session_trainer_id,
    activities.id AS activity_id,
    activities.name AS activity_name,
    activities.description AS activity_description,
    locations.id AS location_id,
    locations.name AS location_name,
    locations.address AS location_address,
    trainers.id AS trainer_id,
    trainers.email AS trainer_email,
    trainers.first_name AS trainer_first_name,
    trainers.last_name AS trainer_last_name,
    trainers.role AS trainer_role
"""

SESSION_JOINS = """
    LEFT JOIN activities
        ON activities.id = sessions.activity_id AND activities.deleted = 0
    LEFT JOIN locations
        ON locations.id = sessions.location_id AND locations.deleted = 0
    LEFT JOIN users AS trainers
        ON trainers.id = sessions.trainer_id AND trainers.deleted = 0
"""

BOOKING_COLUMNS = (
    """
    bookings.id AS booking_id,
    bookings.member_id AS booking_member_id,
    bookings.session_id AS booking_session_id,
    members.id AS member_id,
    members.email AS member_email,
    members.first_name AS member_first_name,
    members.last_name AS member_last_name,
    members.role AS member_role,
    """
    + SESSION_COLUMNS
)

BOOKING_JOINS = (
    """
    LEFT JOIN users AS members
        ON members.id = bookings.member_id AND members.deleted = 0
    LEFT JOIN sessions
        ON sessions.id = bookings.session_id AND sessions.deleted = 0
    """
    + SESSION_JOINS
)


class RecordFetcher:
    """Reads enriched booking and session records for one principal.

    Only rows whose every joined row is live are returned; the order of the
    result is whatever the store produced.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self.pool = pool

    def _query(self, sql: str, params: tuple | list = ()) -> list[dict]:
        try:
            with self.pool.connection() as conn:
                return conn.execute(sql, params).fetchall()
        except (sqlite3.Error, queue.Empty) as exc:
            log.exception("Database error while fetching export records")
            raise DataUnavailable() from exc

    def fetch_principal(self, user_id: int) -> Principal:
        rows = self._query(
            "SELECT id, email, first_name, last_name, role FROM users WHERE id = ? AND deleted = 0",
            (user_id,),
        )
        if not rows:
            raise PrincipalNotFound()
        return Principal.from_row(rows[0])

    def fetch_enriched_bookings_for_member(self, member_id: int) -> list[EnrichedBooking]:
        rows = self._query(
            f"""
            SELECT {BOOKING_COLUMNS}
            FROM bookings
            {BOOKING_JOINS}
            WHERE bookings.member_id = ? AND bookings.deleted = 0
            """,
            (member_id,),
        )
        records = (EnrichedBooking.from_row(row) for row in rows)
        return [record for record in records if record is not None]

    def fetch_enriched_sessions_for_trainer(
        self,
        trainer_id: int,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[EnrichedSession]:
        params: list[Any] = [trainer_id]
        where = "WHERE sessions.trainer_id = ? AND sessions.deleted = 0"
        if start_date:
            where += " AND sessions.session_date >= ?"
            params.append(start_date)
        if end_date:
            where += " AND sessions.session_date <= ?"
            params.append(end_date)
        rows = self._query(
            f"SELECT {SESSION_COLUMNS} FROM sessions {SESSION_JOINS} {where}",
            params,
        )
        records = (EnrichedSession.from_row(row) for row in rows)
        return [record for record in records if record is not None]


__all__ = [
    "Activity",
    "Booking",
    "EnrichedBooking",
    "EnrichedSession",
    "Location",
    "Principal",
    "RecordFetcher",
    "Session",
]
