from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Iterable, List, Optional


SCHEMA = (
    """
    create table if not exists jobs (
      job_id text primary key,
      type text not null,
      status text not null,
      owner_id text not null,
      created_at text not null,
      updated_at text not null,
      progress real,
      payload_json text,
      result_json text,
      error_json text
    );
    """,
    """
    create index if not exists jobs_status_idx on jobs (status, created_at);
    """,
    """
    create table if not exists job_events (
      event_id integer primary key,
      job_id text not null,
      created_at text not null,
      message text not null
    );
    """,
    """
    create table if not exists images (
      image_id text primary key,
      user_id text not null,
      filename text not null,
      path text not null,
      original_name text,
      title text,
      description text,
      alt text,
      caption text,
      tags text,
      width integer,
      height integer,
      mime_type text,
      uploaded_at text not null
    );
    """,
    """
    create table if not exists videos (
      video_id text primary key,
      user_id text not null,
      filename text not null,
      path text not null,
      mime_type text,
      uploaded_at text not null
    );
    """,
    """
    create table if not exists variants (
      variant_id text primary key,
      source_id text,
      source_kind text not null,
      user_id text not null,
      job_id text,
      filename text not null,
      path text not null,
      width integer,
      height integer,
      duration_seconds real,
      byte_size integer not null,
      mime_type text not null,
      variant_type text not null,
      parameters_json text,
      created_at text not null
    );
    """,
)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """A single sqlite connection shared by worker threads behind one lock."""

    def __init__(self, path: str) -> None:
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._path = path
        self._lock = RLock()
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            if path != ":memory:":
                self._conn.execute("pragma journal_mode=wal")
            for statement in SCHEMA:
                self._conn.execute(statement)

    @property
    def path(self) -> str:
        return self._path

    def execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        """Run one statement and return the number of rows it changed."""
        with self._lock:
            cursor = self._conn.execute(sql, tuple(params))
            return cursor.rowcount

    def fetchone(self, sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchone()

    def fetchall(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchall()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
