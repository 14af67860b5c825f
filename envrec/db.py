from __future__ import annotations

import os
import sqlite3
import sys
from datetime import datetime
from typing import Any

from .settings import Settings, settings as _default_settings

_active: Settings = _default_settings

_COLORS = {
    "INFO": "\033[1;36m",
    "WARN": "\033[1;33m",
    "ERROR": "\033[1;31m",
}
_RESET = "\033[0m"


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def configure(s: Settings) -> None:
    """Switch the journal to another settings instance (CLI flags, tests)."""
    global _active
    _active = s
    if s.db_path:
        init_db()


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory, the journal file is placed inside it.
    """
    p = os.path.abspath(os.path.expanduser(_active.db_path or ""))

    if os.path.isdir(p):
        p = os.path.join(p, "envrec.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path())
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create the events table if it does not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              resource TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def _echo(level: str, message: str, resource: str | None) -> None:
    text = f"[{resource}] {message}" if resource else message
    stream = sys.stderr
    if _active.color and stream.isatty():
        text = f"{_COLORS.get(level, '')}{text}{_RESET}"
    print(text, file=stream)


def log_event(level: str, message: str, resource: str | None = None) -> None:
    level = level.upper()
    _echo(level, message, resource)
    if not _active.db_path:
        return
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, resource, message) VALUES (?, ?, ?, ?)",
            (utc_now(), level, resource, message),
        )


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    if not _active.db_path:
        return []
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
