"""Database utilities for the High Street Gym platform."""

from __future__ import annotations

import json
import queue
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


SCHEMA_VERSION = 1


def dict_factory(cursor: sqlite3.Cursor, row: sqlite3.Row) -> dict:
    """Return rows as dictionaries rather than tuples."""

    return {description[0]: row[idx] for idx, description in enumerate(cursor.description)}


def get_connection(path: str | Path) -> sqlite3.Connection:
    """Return a SQLite connection with sensible defaults."""

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = dict_factory
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def initialize_database(conn: sqlite3.Connection) -> None:
    """Create the database schema if it does not yet exist."""

    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS metadata (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            role TEXT NOT NULL CHECK (role IN ('member', 'trainer', 'admin')),
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            authentication_key TEXT UNIQUE,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            deleted INTEGER DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS activities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT,
            deleted INTEGER DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS locations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            address TEXT,
            deleted INTEGER DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            activity_id INTEGER NOT NULL,
            location_id INTEGER NOT NULL,
            trainer_id INTEGER NOT NULL,
            session_date TEXT NOT NULL,
            session_time TEXT NOT NULL,
            deleted INTEGER DEFAULT 0,
            FOREIGN KEY(activity_id) REFERENCES activities(id),
            FOREIGN KEY(location_id) REFERENCES locations(id),
            FOREIGN KEY(trainer_id) REFERENCES users(id)
        );

        CREATE TABLE IF NOT EXISTS bookings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            member_id INTEGER NOT NULL,
            session_id INTEGER NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            deleted INTEGER DEFAULT 0,
            FOREIGN KEY(member_id) REFERENCES users(id),
            FOREIGN KEY(session_id) REFERENCES sessions(id)
        );

        CREATE TABLE IF NOT EXISTS blogs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            author_id INTEGER NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            deleted INTEGER DEFAULT 0,
            FOREIGN KEY(author_id) REFERENCES users(id)
        );

        CREATE INDEX IF NOT EXISTS idx_sessions_trainer_date
            ON sessions(trainer_id, session_date);
        CREATE INDEX IF NOT EXISTS idx_bookings_member
            ON bookings(member_id);
        """
    )

    set_metadata(conn, "schema_version", SCHEMA_VERSION)


def set_metadata(conn: sqlite3.Connection, key: str, value: int | str | dict | list) -> None:
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    conn.execute(
        "INSERT INTO metadata(key, value) VALUES (?, ?)\n         ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, str(value)),
    )
    conn.commit()


def get_metadata(conn: sqlite3.Connection, key: str, default: str | None = None) -> str | None:
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else default


class ConnectionPool:
    """A fixed set of SQLite connections handed out one caller at a time.

    An in-memory database only exists inside the connection that created it,
    so ``":memory:"`` always gets a pool of exactly one connection.
    """

    def __init__(self, path: str | Path = ":memory:", size: int = 4, timeout: float = 30.0) -> None:
        self.path = path
        self.timeout = timeout
        if str(path) == ":memory:":
            size = 1
        self._connections = [get_connection(path) for _ in range(max(size, 1))]
        self._idle: queue.LifoQueue[sqlite3.Connection] = queue.LifoQueue()
        for conn in self._connections:
            self._idle.put(conn)
        initialize_database(self._connections[0])

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._idle.get(timeout=self.timeout)
        try:
            yield conn
        finally:
            self._idle.put(conn)

    def close(self) -> None:
        for conn in self._connections:
            conn.close()
