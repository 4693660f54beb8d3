from __future__ import annotations

import os
import sqlite3
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from .errors import LeaseHeldError, LedgerError
from .runtime import DeploymentAttempt, utc_now
from .settings import settings


# Paths whose schema has already been created in this process.
_initialized: set[str] = set()


def _resolve_db_path() -> str | None:
    """Return a file path usable by sqlite, or None when the ledger is disabled.

    If the configured path is an existing directory the DB file is placed
    inside it; missing parent directories are created.
    """
    if not settings.db_path:
        return None

    p = os.path.abspath(settings.db_path)
    if os.path.isdir(p):
        p = os.path.join(p, "ztd.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def _ledger_unavailable(e: Exception) -> None:
    print(f"{utc_now()} WARN  event ledger unavailable: {e}", file=sys.stderr)


def connect() -> sqlite3.Connection | None:
    path = _resolve_db_path()
    if path is None:
        return None
    conn = sqlite3.connect(path, timeout=10)
    conn.row_factory = sqlite3.Row
    if path not in _initialized:
        try:
            _init(conn)
        except sqlite3.Error:
            conn.close()
            raise
        _initialized.add(path)
    return conn


def init_db() -> None:
    """Create tables if they do not exist. A broken ledger only produces a warning."""
    try:
        conn = connect()
    except (sqlite3.Error, OSError) as e:
        _ledger_unavailable(e)
        return
    if conn is not None:
        conn.close()


def _init(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS events (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          ts TEXT NOT NULL,
          level TEXT NOT NULL,
          service_name TEXT,
          attempt_id TEXT,
          message TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS deployments (
          id TEXT PRIMARY KEY,
          service TEXT NOT NULL,
          state TEXT NOT NULL, -- see runtime.DeployState
          old_ids TEXT NOT NULL,
          new_ids TEXT NOT NULL,
          scale_target INTEGER NOT NULL,
          message TEXT NOT NULL,
          started_at TEXT NOT NULL,
          updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS leases (
          key TEXT PRIMARY KEY,
          owner TEXT NOT NULL,
          acquired_at REAL NOT NULL,
          expires_at REAL NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
        CREATE INDEX IF NOT EXISTS idx_deployments_service ON deployments(service);
        """
    )


def _record(sql: str, params: tuple[Any, ...]) -> None:
    """Write one audit row. A broken ledger is reported on stderr and otherwise ignored."""
    try:
        conn = connect()
        if conn is None:
            return
        try:
            with conn:
                conn.execute(sql, params)
        finally:
            conn.close()
    except (sqlite3.Error, OSError) as e:
        _ledger_unavailable(e)


def log_event(level: str, message: str, service_name: str | None = None, attempt_id: str | None = None) -> None:
    ts = utc_now()
    level = level.upper()
    if settings.log_stderr:
        where = f" [{service_name}]" if service_name else ""
        print(f"{ts} {level:<5}{where} {message}", file=sys.stderr)

    _record(
        "INSERT INTO events (ts, level, service_name, attempt_id, message) VALUES (?, ?, ?, ?, ?)",
        (ts, level, service_name, attempt_id, message),
    )


def latest_events(limit: int = 100, service_name: str | None = None) -> list[dict[str, Any]]:
    conn = connect()
    if conn is None:
        return []
    with conn:
        if service_name:
            rows = conn.execute(
                "SELECT * FROM events WHERE service_name=? ORDER BY id DESC LIMIT ?", (service_name, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
    conn.close()
    return [dict(r) for r in rows]


@dataclass(frozen=True)
class DeploymentRow:
    id: str
    service: str
    state: str
    old_ids: str
    new_ids: str
    scale_target: int
    message: str
    started_at: str
    updated_at: str


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    out: list[Any] = []
    for r in rows:
        out.append(cls(**dict(r)))
    return out


def upsert_deployment(attempt: DeploymentAttempt) -> None:
    _record(
        """
        INSERT INTO deployments (id, service, state, old_ids, new_ids, scale_target, message, started_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
          state=excluded.state,
          new_ids=excluded.new_ids,
          message=excluded.message,
          updated_at=excluded.updated_at
        """,
        (
            attempt.id,
            attempt.service,
            attempt.state.value,
            ",".join(attempt.old_ids),
            ",".join(attempt.new_ids),
            attempt.scale_target,
            attempt.message,
            attempt.started_at,
            attempt.updated_at,
        ),
    )


def list_deployments(service: str | None = None) -> list[DeploymentRow]:
    conn = connect()
    if conn is None:
        return []
    with conn:
        if service:
            rows = conn.execute(
                "SELECT * FROM deployments WHERE service=? ORDER BY started_at DESC", (service,)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM deployments ORDER BY started_at DESC").fetchall()
    conn.close()
    return _rows_to_dataclass(rows, DeploymentRow)


def _lease_conn() -> sqlite3.Connection | None:
    try:
        return connect()
    except (sqlite3.Error, OSError) as e:
        raise LedgerError(f"Cannot open the lease store: {e}") from e


def acquire_lease(key: str, owner: str, ttl_s: float) -> None:
    """Take the lease for ``key`` or raise LeaseHeldError.

    Expired leases (a crashed invocation) are cleared in the same transaction.
    """
    conn = _lease_conn()
    if conn is None:
        return
    now = time.time()
    try:
        with conn:
            conn.execute("DELETE FROM leases WHERE key=? AND expires_at<=?", (key, now))
            conn.execute(
                "INSERT INTO leases (key, owner, acquired_at, expires_at) VALUES (?, ?, ?, ?)",
                (key, owner, now, now + ttl_s),
            )
    except sqlite3.IntegrityError:
        try:
            row = conn.execute("SELECT owner FROM leases WHERE key=?", (key,)).fetchone()
        except sqlite3.Error:
            row = None
        holder = row["owner"] if row else "unknown"
        raise LeaseHeldError(f"'{key}' is locked by another deployment ({holder})") from None
    except sqlite3.Error as e:
        raise LedgerError(f"Cannot take lease '{key}': {e}") from e
    finally:
        conn.close()


def release_lease(key: str, owner: str) -> None:
    conn = _lease_conn()
    if conn is None:
        return
    try:
        with conn:
            conn.execute("DELETE FROM leases WHERE key=? AND owner=?", (key, owner))
    except sqlite3.Error as e:
        raise LedgerError(f"Cannot release lease '{key}': {e}") from e
    finally:
        conn.close()


@contextmanager
def service_lease(service: str, ttl_s: float) -> Iterator[str]:
    owner = f"pid:{os.getpid()}@{utc_now()}"
    key = f"service:{service}"
    acquire_lease(key, owner, ttl_s)
    try:
        yield owner
    finally:
        try:
            release_lease(key, owner)
        except LedgerError as e:
            # An unreleased lease expires after its TTL.
            log_event("WARN", str(e), service_name=service)
