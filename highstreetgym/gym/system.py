"""Core orchestration logic for the High Street Gym platform."""

from __future__ import annotations

import hashlib
import logging
import secrets
import sqlite3
from typing import Any, Sequence

from .clock import Clock
from .database import ConnectionPool
from .errors import AuthorizationError, NotFound, ValidationError
from .records import (
    BOOKING_COLUMNS,
    BOOKING_JOINS,
    SESSION_COLUMNS,
    SESSION_JOINS,
    EnrichedBooking,
    EnrichedSession,
    Principal,
    RecordFetcher,
)
from .weekly import FilterConfig, filter_and_sort, normalize_date, parse_time

log = logging.getLogger(__name__)

ROLES = ("member", "trainer", "admin")


class GymSystem:
    """Users, catalog, bookings and blogs over a single SQLite store."""

    def __init__(self, db_path: str = ":memory:", *, timezone: str = "Australia/Brisbane") -> None:
        self.pool = ConnectionPool(db_path)
        self.clock = Clock(timezone)
        self.fetcher = RecordFetcher(self.pool)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _hash_password(self, password: str) -> str:
        salt = secrets.token_hex(16)
        digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), 390000)
        return f"pbkdf2_sha256${salt}${digest.hex()}"

    def _verify_password(self, stored: str, provided: str) -> bool:
        algorithm, salt, hex_digest = stored.split("$")
        candidate = hashlib.pbkdf2_hmac("sha256", provided.encode(), salt.encode(), 390000)
        return secrets.compare_digest(candidate.hex(), hex_digest)

    def _fetch_one(self, sql: str, params: Sequence[Any] = ()) -> dict | None:
        with self.pool.connection() as conn:
            return conn.execute(sql, params).fetchone()

    def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        with self.pool.connection() as conn:
            return conn.execute(sql, params).fetchall()

    def _write(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self.pool.connection() as conn:
            cur = conn.execute(sql, params)
            conn.commit()
            return cur.lastrowid

    @staticmethod
    def _require(value: str | None, label: str) -> str:
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{label} must be text")
        value = (value or "").strip()
        if not value:
            raise ValidationError(f"{label} is required")
        return value

    # ------------------------------------------------------------------
    # Authentication & users
    # ------------------------------------------------------------------
    def register_user(
        self,
        *,
        email: str,
        password: str,
        role: str = "member",
        first_name: str,
        last_name: str,
    ) -> dict:
        email = self._require(email, "Email").lower()
        if role not in ROLES:
            raise ValidationError(f"Role must be one of {', '.join(ROLES)}")
        if not isinstance(password, str) or len(password) < 8:
            raise ValidationError("Password must be at least 8 characters")
        try:
            user_id = self._write(
                """
                INSERT INTO users(email, password_hash, role, first_name, last_name)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    email,
                    self._hash_password(password),
                    role,
                    self._require(first_name, "First name"),
                    self._require(last_name, "Last name"),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ValidationError("Email is already registered") from exc
        return self.get_user(user_id)

    def get_user(self, user_id: int) -> dict:
        row = self._fetch_one("SELECT * FROM users WHERE id = ? AND deleted = 0", (user_id,))
        if not row:
            raise NotFound("User not found")
        return row

    def get_user_by_email(self, email: str) -> dict:
        if not isinstance(email, str):
            raise NotFound("User not found")
        row = self._fetch_one(
            "SELECT * FROM users WHERE email = ? AND deleted = 0", (email.lower(),)
        )
        if not row:
            raise NotFound("User not found")
        return row

    def list_users(self, *, role: str | None = None) -> list[dict]:
        """Return live users, optionally filtered by role."""

        params: list[Any] = []
        where = " WHERE deleted = 0"
        if role is not None:
            where += " AND role = ?"
            params.append(role)
        return self._fetch_all(
            "SELECT * FROM users" + where + " ORDER BY last_name, first_name",
            params,
        )

    def update_user(
        self,
        user_id: int,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        role: str | None = None,
        password: str | None = None,
    ) -> dict:
        user = self.get_user(user_id)
        if role is not None and role not in ROLES:
            raise ValidationError(f"Role must be one of {', '.join(ROLES)}")
        password_hash = user["password_hash"]
        if password:
            if len(password) < 8:
                raise ValidationError("Password must be at least 8 characters")
            password_hash = self._hash_password(password)
        self._write(
            """
            UPDATE users SET first_name = ?, last_name = ?, role = ?, password_hash = ?
            WHERE id = ?
            """,
            (
                (first_name or user["first_name"]).strip(),
                (last_name or user["last_name"]).strip(),
                role or user["role"],
                password_hash,
                user_id,
            ),
        )
        return self.get_user(user_id)

    def delete_user(self, user_id: int) -> None:
        self.get_user(user_id)
        self._write(
            "UPDATE users SET deleted = 1, authentication_key = NULL WHERE id = ?", (user_id,)
        )

    def verify_credentials(self, *, email: str, password: str) -> dict:
        try:
            user = self.get_user_by_email(email)
        except NotFound as exc:
            raise ValidationError("Invalid credentials") from exc
        if not isinstance(password, str) or not self._verify_password(user["password_hash"], password):
            raise ValidationError("Invalid credentials")
        return user

    def login(self, *, email: str, password: str) -> dict:
        user = self.verify_credentials(email=email, password=password)
        api_key = secrets.token_hex(16)
        self._write("UPDATE users SET authentication_key = ? WHERE id = ?", (api_key, user["id"]))
        log.info("User %s logged in", user["id"])
        return {"key": api_key, "user": Principal.from_row(user).to_dict()}

    def logout(self, api_key: str) -> None:
        user = self.authenticate(api_key)
        self._write("UPDATE users SET authentication_key = NULL WHERE id = ?", (user.id,))
        log.info("User %s logged out", user.id)

    def authenticate(self, api_key: str) -> Principal:
        row = self._fetch_one(
            "SELECT * FROM users WHERE authentication_key = ? AND deleted = 0", (api_key,)
        )
        if not row:
            raise NotFound("Failed to authenticate - key not found")
        return Principal.from_row(row)

    def principal(self, user_id: int) -> Principal:
        return Principal.from_row(self.get_user(user_id))

    # ------------------------------------------------------------------
    # Activities & locations
    # ------------------------------------------------------------------
    def create_activity(self, *, name: str, description: str | None = None) -> dict:
        activity_id = self._write(
            "INSERT INTO activities(name, description) VALUES (?, ?)",
            (self._require(name, "Activity name"), description or ""),
        )
        return self.get_activity(activity_id)

    def get_activity(self, activity_id: int) -> dict:
        row = self._fetch_one(
            "SELECT * FROM activities WHERE id = ? AND deleted = 0", (activity_id,)
        )
        if not row:
            raise NotFound("Activity not found")
        return row

    def list_activities(self) -> list[dict]:
        return self._fetch_all("SELECT * FROM activities WHERE deleted = 0 ORDER BY name")

    def update_activity(self, activity_id: int, *, name: str, description: str | None = None) -> dict:
        self.get_activity(activity_id)
        self._write(
            "UPDATE activities SET name = ?, description = ? WHERE id = ?",
            (self._require(name, "Activity name"), description or "", activity_id),
        )
        return self.get_activity(activity_id)

    def delete_activity(self, activity_id: int) -> None:
        self.get_activity(activity_id)
        self._write("UPDATE activities SET deleted = 1 WHERE id = ?", (activity_id,))

    def create_location(self, *, name: str, address: str | None = None) -> dict:
        location_id = self._write(
            "INSERT INTO locations(name, address) VALUES (?, ?)",
            (self._require(name, "Location name"), address or ""),
        )
        return self.get_location(location_id)

    def get_location(self, location_id: int) -> dict:
        row = self._fetch_one(
            "SELECT * FROM locations WHERE id = ? AND deleted = 0", (location_id,)
        )
        if not row:
            raise NotFound("Location not found")
        return row

    def list_locations(self) -> list[dict]:
        """Return all locations ordered by name."""

        return self._fetch_all("SELECT * FROM locations WHERE deleted = 0 ORDER BY name")

    def update_location(self, location_id: int, *, name: str, address: str | None = None) -> dict:
        self.get_location(location_id)
        self._write(
            "UPDATE locations SET name = ?, address = ? WHERE id = ?",
            (self._require(name, "Location name"), address or "", location_id),
        )
        return self.get_location(location_id)

    def delete_location(self, location_id: int) -> None:
        self.get_location(location_id)
        self._write("UPDATE locations SET deleted = 1 WHERE id = ?", (location_id,))

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def _normalize_slot(self, session_date: str, session_time: str) -> tuple[str, str]:
        try:
            day = normalize_date(session_date)
        except ValueError as exc:
            raise ValidationError("Session date must be YYYY-MM-DD") from exc
        moment = parse_time(session_time)
        if day is None or moment is None:
            raise ValidationError("Session date and time are required (YYYY-MM-DD, HH:MM)")
        return day, moment.strftime("%H:%M:%S")

    def create_session(
        self,
        *,
        activity_id: int,
        location_id: int,
        trainer_id: int,
        session_date: str,
        session_time: str,
    ) -> dict:
        self.get_activity(activity_id)
        self.get_location(location_id)
        trainer = self.get_user(trainer_id)
        if trainer["role"] not in ("trainer", "admin"):
            raise ValidationError("Sessions must be led by a trainer")
        day, moment = self._normalize_slot(session_date, session_time)
        session_id = self._write(
            """
            INSERT INTO sessions(activity_id, location_id, trainer_id, session_date, session_time)
            VALUES (?, ?, ?, ?, ?)
            """,
            (activity_id, location_id, trainer_id, day, moment),
        )
        return self.get_session(session_id)

    def get_session(self, session_id: int) -> dict:
        row = self._fetch_one("SELECT * FROM sessions WHERE id = ? AND deleted = 0", (session_id,))
        if not row:
            raise NotFound("Session not found")
        return row

    def get_session_details(self, session_id: int) -> EnrichedSession:
        row = self._fetch_one(
            f"SELECT {SESSION_COLUMNS} FROM sessions {SESSION_JOINS}"
            " WHERE sessions.id = ? AND sessions.deleted = 0",
            (session_id,),
        )
        details = EnrichedSession.from_row(row) if row else None
        if details is None:
            raise NotFound("Session not found")
        return details

    def list_sessions(self, *, include_past: bool = False) -> list[EnrichedSession]:
        """Return live sessions in chronological order, upcoming only by default."""

        rows = self._fetch_all(
            f"SELECT {SESSION_COLUMNS} FROM sessions {SESSION_JOINS} WHERE sessions.deleted = 0"
        )
        sessions = [s for s in (EnrichedSession.from_row(row) for row in rows) if s is not None]
        return filter_and_sort(sessions, FilterConfig(include_past=include_past), self.clock)

    def list_sessions_for_trainer(
        self, trainer_id: int, *, include_past: bool = False
    ) -> list[EnrichedSession]:
        sessions = self.fetcher.fetch_enriched_sessions_for_trainer(trainer_id)
        return filter_and_sort(sessions, FilterConfig(include_past=include_past), self.clock)

    def update_session(
        self,
        session_id: int,
        *,
        principal: Principal,
        activity_id: int | None = None,
        location_id: int | None = None,
        session_date: str | None = None,
        session_time: str | None = None,
    ) -> dict:
        session = self.get_session(session_id)
        self._require_session_owner(session, principal)
        day, moment = self._normalize_slot(
            session_date or session["session_date"], session_time or session["session_time"]
        )
        activity_id = activity_id or session["activity_id"]
        location_id = location_id or session["location_id"]
        self.get_activity(activity_id)
        self.get_location(location_id)
        self._write(
            """
            UPDATE sessions SET activity_id = ?, location_id = ?, session_date = ?, session_time = ?
            WHERE id = ?
            """,
            (activity_id, location_id, day, moment, session_id),
        )
        return self.get_session(session_id)

    def delete_session(self, session_id: int, *, principal: Principal) -> None:
        """Soft-delete a session together with every booking made for it."""

        session = self.get_session(session_id)
        self._require_session_owner(session, principal)
        with self.pool.connection() as conn:
            conn.execute("UPDATE sessions SET deleted = 1 WHERE id = ?", (session_id,))
            conn.execute("UPDATE bookings SET deleted = 1 WHERE session_id = ?", (session_id,))
            conn.commit()

    @staticmethod
    def _require_session_owner(session: dict, principal: Principal) -> None:
        if principal.role != "admin" and session["trainer_id"] != principal.id:
            raise AuthorizationError("Only the session's trainer can change it")

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------
    def create_booking(self, *, member_id: int, session_id: int) -> dict:
        self.get_user(member_id)
        session = self.get_session(session_id)
        if normalize_date(session["session_date"]) < self.clock.today().isoformat():
            raise ValidationError("Cannot book a session that has already happened")
        existing = self._fetch_one(
            "SELECT id FROM bookings WHERE member_id = ? AND session_id = ? AND deleted = 0",
            (member_id, session_id),
        )
        if existing:
            raise ValidationError("You have already booked this session")
        booking_id = self._write(
            "INSERT INTO bookings(member_id, session_id) VALUES (?, ?)", (member_id, session_id)
        )
        return self.get_booking(booking_id)

    def get_booking(self, booking_id: int) -> dict:
        row = self._fetch_one("SELECT * FROM bookings WHERE id = ? AND deleted = 0", (booking_id,))
        if not row:
            raise NotFound("Booking not found")
        return row

    def get_booking_details(self, booking_id: int) -> EnrichedBooking:
        """Return a live booking joined with its session, activity, location and people."""

        row = self._fetch_one(
            f"SELECT {BOOKING_COLUMNS} FROM bookings {BOOKING_JOINS}"
            " WHERE bookings.id = ? AND bookings.deleted = 0",
            (booking_id,),
        )
        details = EnrichedBooking.from_row(row) if row else None
        if details is None:
            raise NotFound("Booking not found")
        return details

    def list_bookings_for_member(self, member_id: int, *, include_past: bool = False) -> list:
        """Return a member's enriched bookings, upcoming only by default."""

        bookings = self.fetcher.fetch_enriched_bookings_for_member(member_id)
        return filter_and_sort(bookings, FilterConfig(include_past=include_past), self.clock)

    def cancel_booking(self, booking_id: int, *, principal: Principal) -> None:
        booking = self.get_booking(booking_id)
        if principal.role != "admin" and booking["member_id"] != principal.id:
            raise AuthorizationError("Bookings can only be cancelled by their member")
        self._write("UPDATE bookings SET deleted = 1 WHERE id = ?", (booking_id,))

    # ------------------------------------------------------------------
    # Blogs
    # ------------------------------------------------------------------
    def create_blog(self, *, author_id: int, title: str, content: str) -> dict:
        self.get_user(author_id)
        blog_id = self._write(
            "INSERT INTO blogs(title, content, author_id, created_at) VALUES (?, ?, ?, ?)",
            (
                self._require(title, "Title"),
                self._require(content, "Content"),
                author_id,
                self.clock.timestamp(),
            ),
        )
        return self.get_blog(blog_id)

    def get_blog(self, blog_id: int) -> dict:
        row = self._fetch_one(
            """
            SELECT blogs.*, users.first_name || ' ' || users.last_name AS author_name
            FROM blogs
            LEFT JOIN users ON users.id = blogs.author_id
            WHERE blogs.id = ? AND blogs.deleted = 0
            """,
            (blog_id,),
        )
        if not row:
            raise NotFound("Blog not found")
        return row

    def list_blogs(self) -> list[dict]:
        return self._fetch_all(
            """
            SELECT blogs.*, users.first_name || ' ' || users.last_name AS author_name
            FROM blogs
            LEFT JOIN users ON users.id = blogs.author_id
            WHERE blogs.deleted = 0
            ORDER BY blogs.created_at DESC, blogs.id DESC
            """
        )

    def update_blog(self, blog_id: int, *, principal: Principal, title: str, content: str) -> dict:
        blog = self.get_blog(blog_id)
        self._require_author(blog, principal)
        self._write(
            "UPDATE blogs SET title = ?, content = ? WHERE id = ?",
            (self._require(title, "Title"), self._require(content, "Content"), blog_id),
        )
        return self.get_blog(blog_id)

    def delete_blog(self, blog_id: int, *, principal: Principal) -> None:
        blog = self.get_blog(blog_id)
        self._require_author(blog, principal)
        self._write("UPDATE blogs SET deleted = 1 WHERE id = ?", (blog_id,))

    @staticmethod
    def _require_author(blog: dict, principal: Principal) -> None:
        if principal.role != "admin" and blog["author_id"] != principal.id:
            raise AuthorizationError("Only the author can change this blog post")

    def close(self) -> None:
        self.pool.close()


__all__ = ["GymSystem", "ROLES"]
