import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator


def _serialize(value: Any) -> Any:
    """Serialize dataclasses and containers into JSON."""

    if value is None:
        return None
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False)
    if is_dataclass(value):
        return json.dumps(asdict(value), ensure_ascii=False)
    return value


class ManagementDatabase:
    """Thin wrapper above sqlite that provides schema management.

    Statements issued inside :meth:`transaction` share one commit; outside of
    it every statement commits on its own.
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = str(path)
        self._lock = threading.RLock()
        self._depth = 0
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.execute("PRAGMA foreign_keys = ON;")
        self._initialise_schema()

    def close(self) -> None:
        """Close the underlying connection."""

        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group statements so they commit or roll back together."""

        with self._lock:
            self._depth += 1
            try:
                yield
            except Exception:
                self._depth -= 1
                if self._depth == 0:
                    self._conn.rollback()
                raise
            self._depth -= 1
            if self._depth == 0:
                self._conn.commit()

    @contextmanager
    def cursor(self) -> Iterator[sqlite3.Cursor]:
        """Yield a cursor and commit on success when no transaction is open."""

        with self._lock:
            cur = self._conn.cursor()
            try:
                yield cur
                if self._depth == 0:
                    self._conn.commit()
            except Exception:
                if self._depth == 0:
                    self._conn.rollback()
                raise
            finally:
                cur.close()

    def execute(self, query: str, parameters: Iterable[Any] | None = None) -> int:
        """Execute a statement and return the number of affected rows."""

        with self.cursor() as cur:
            cur.execute(query, tuple(parameters or ()))
            return cur.rowcount

    def query(self, query: str, parameters: Iterable[Any] | None = None) -> list[sqlite3.Row]:
        """Execute a select statement and return rows."""

        with self.cursor() as cur:
            cur.execute(query, tuple(parameters or ()))
            return cur.fetchall()

    def _initialise_schema(self) -> None:
        """Create tables if this is the first run."""

        with self.cursor() as cur:
            cur.executescript(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    status TEXT NOT NULL,
                    this_week INTEGER NOT NULL DEFAULT 0,
                    week_committed TEXT,
                    due_date TEXT,
                    priority TEXT,
                    area_id TEXT,
                    objective_id TEXT,
                    key_result_id TEXT,
                    parent_id TEXT,
                    description TEXT,
                    estimated_minutes INTEGER,
                    milestones TEXT,
                    committed_milestones TEXT,
                    processed_from TEXT,
                    created_at TEXT,
                    completed_at TEXT
                );

                CREATE TABLE IF NOT EXISTS objectives (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    period TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    area_id TEXT,
                    description TEXT,
                    created_at TEXT,
                    updated_at TEXT
                );

                CREATE TABLE IF NOT EXISTS key_results (
                    id TEXT PRIMARY KEY,
                    objective_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    metric_type TEXT,
                    start_value REAL NOT NULL DEFAULT 0,
                    target_value REAL NOT NULL DEFAULT 0,
                    current_value REAL NOT NULL DEFAULT 0,
                    unit TEXT,
                    status TEXT,
                    created_at TEXT,
                    updated_at TEXT
                );

                CREATE TABLE IF NOT EXISTS inbox_items (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    text TEXT NOT NULL,
                    area_id TEXT,
                    due_date TEXT,
                    priority TEXT,
                    objective_id TEXT,
                    key_result_id TEXT,
                    created_at TEXT
                );

                CREATE TABLE IF NOT EXISTS areas (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    aliases TEXT,
                    status TEXT NOT NULL DEFAULT 'active',
                    description TEXT
                );

                CREATE TABLE IF NOT EXISTS calendar_blocks (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL,
                    date TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    duration_minutes INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'scheduled',
                    notes TEXT
                );

                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                );

                CREATE TABLE IF NOT EXISTS pending_actions (
                    action_id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    preview TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    resolved_at TEXT
                );

                CREATE TABLE IF NOT EXISTS conversation_state (
                    session_id TEXT PRIMARY KEY,
                    state TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    action TEXT NOT NULL,
                    payload TEXT
                );
                """
            )

    def insert(self, query: str, parameters: Iterable[Any]) -> int:
        """Execute an insert and return the last row id."""

        with self.cursor() as cur:
            cur.execute(query, tuple(parameters))
            return int(cur.lastrowid or 0)

    def update(self, query: str, parameters: Iterable[Any]) -> int:
        """Execute an update statement and return the affected row count."""

        return self.execute(query, parameters)

    @staticmethod
    def json_dump(value: Any) -> str | None:
        """Serialise value into JSON if required."""

        return _serialize(value)
