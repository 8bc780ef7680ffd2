from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

from .settings import settings

logger = logging.getLogger("drd")

# Rows below this level only go to the Python logger; per-container skips
# happen on every pass and would flood the table.
_PERSIST_LEVEL = logging.INFO

_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  ts TEXT NOT NULL,
  level TEXT NOT NULL,
  container_name TEXT,
  container_id TEXT,
  message TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
"""

_initialized: set[str] = set()


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (a bind mount that did not exist
    when the container started turns into one), the DB file goes inside it.
    """
    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "drd.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    path = _resolve_db_path()
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    if path not in _initialized:
        conn.executescript(_SCHEMA)
        _initialized.add(path)
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(_SCHEMA)


def log_event(
    level: str,
    message: str,
    container_name: str | None = None,
    container_id: str | None = None,
) -> None:
    level = level.upper()
    levelno = logging.getLevelName(level)
    if not isinstance(levelno, int):
        levelno = logging.INFO

    if container_name or container_id:
        logger.log(levelno, "%s [name=%s id=%s]", message, container_name, container_id)
    else:
        logger.log(levelno, "%s", message)

    if levelno < _PERSIST_LEVEL:
        return
    # The event log is a side record; failing to write it must not stop discovery.
    try:
        with connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, container_name, container_id, message) VALUES (?, ?, ?, ?, ?)",
                (utc_now(), level, container_name, container_id, message),
            )
    except (sqlite3.Error, OSError):
        logger.exception("Unable to write event log entry")


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
