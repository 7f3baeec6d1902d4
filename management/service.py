"""Persistence collaborator for the coach engine."""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping

from core.errors import CollaboratorFailure

from .constants import CAPACITY_RULES
from .database import ManagementDatabase
from .models import Area, CalendarBlock, InboxItem, KeyResult, Objective, Snapshot, Task

logger = logging.getLogger(__name__)

CAPACITY_PROFILE_KEY = "capacity_profile"


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _iso(value: Any) -> str | None:
    if value is None:
        return None
    return value.isoformat()


class ManagementService:
    """Stores tasks, objectives, inbox items and calendar blocks in sqlite."""

    def __init__(
        self,
        db_path: str | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        capacity_defaults: Mapping[str, Any] | None = None,
    ) -> None:
        self.db = ManagementDatabase(db_path or ":memory:")
        self._clock = clock or _now
        self._capacity_defaults = dict(capacity_defaults or {})

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------
    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Apply every write in the block atomically."""

        with self._guard("transaction"):
            with self.db.transaction():
                yield

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            logger.error(f"sqlite failure during {operation}: {exc}")
            raise CollaboratorFailure(f"Persistence unavailable during {operation}") from exc

    def _query(self, sql: str, parameters: tuple = ()) -> list[sqlite3.Row]:
        with self._guard("query"):
            return self.db.query(sql, parameters)

    def _write(self, sql: str, parameters: tuple = ()) -> int:
        with self._guard("write"):
            return self.db.update(sql, parameters)

    def read_snapshot(self) -> Snapshot:
        """Return every entity read under one lock so the view is consistent."""

        with self._guard("read_snapshot"):
            with self.db.transaction():
                return Snapshot(
                    tasks=tuple(self.list_tasks()),
                    objectives=tuple(self.list_objectives()),
                    key_results=tuple(self.list_key_results()),
                    inbox=tuple(self.list_inbox()),
                    areas=tuple(self.list_areas()),
                    blocks=tuple(self.list_blocks()),
                    profile=self.get_capacity_profile(),
                )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    def list_tasks(self) -> list[Task]:
        rows = self._query("SELECT * FROM tasks ORDER BY created_at, id")
        return [Task.from_row(row) for row in rows]

    def get_task(self, task_id: str) -> Task | None:
        rows = self._query("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return Task.from_row(rows[0]) if rows else None

    def save_task(self, task: Task) -> Task:
        if task.created_at is None:
            task.created_at = self._clock()
        self._write(
            """
            INSERT OR REPLACE INTO tasks (
                id, title, kind, status, this_week, week_committed, due_date, priority,
                area_id, objective_id, key_result_id, parent_id, description,
                estimated_minutes, milestones, committed_milestones, processed_from,
                created_at, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.id,
                task.title,
                task.kind.value,
                task.status.value,
                1 if task.this_week else 0,
                task.week_committed,
                _iso(task.due_date),
                task.priority,
                task.area_id,
                task.objective_id,
                task.key_result_id,
                task.parent_id,
                task.description,
                task.estimated_minutes,
                self.db.json_dump([m.to_dict() for m in task.milestones]),
                self.db.json_dump(list(task.committed_milestones)),
                self.db.json_dump(task.processed_from),
                _iso(task.created_at),
                _iso(task.completed_at),
            ),
        )
        return task

    def delete_task(self, task_id: str) -> bool:
        return self._write("DELETE FROM tasks WHERE id = ?", (task_id,)) > 0

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------
    def list_inbox(self) -> list[InboxItem]:
        rows = self._query("SELECT * FROM inbox_items ORDER BY created_at, id")
        return [InboxItem.from_row(row) for row in rows]

    def get_inbox_item(self, item_id: str) -> InboxItem | None:
        rows = self._query("SELECT * FROM inbox_items WHERE id = ?", (item_id,))
        return InboxItem.from_row(rows[0]) if rows else None

    def save_inbox_item(self, item: InboxItem) -> InboxItem:
        if item.created_at is None:
            item.created_at = self._clock()
        self._write(
            """
            INSERT OR REPLACE INTO inbox_items (
                id, type, text, area_id, due_date, priority, objective_id, key_result_id, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.id,
                item.type.value,
                item.text,
                item.area_id,
                _iso(item.due_date),
                item.priority,
                item.objective_id,
                item.key_result_id,
                _iso(item.created_at),
            ),
        )
        return item

    def delete_inbox_item(self, item_id: str) -> bool:
        return self._write("DELETE FROM inbox_items WHERE id = ?", (item_id,)) > 0

    # ------------------------------------------------------------------
    # Areas
    # ------------------------------------------------------------------
    def list_areas(self) -> list[Area]:
        rows = self._query("SELECT * FROM areas ORDER BY id")
        return [Area.from_row(row) for row in rows]

    def get_area(self, area_id: str) -> Area | None:
        rows = self._query("SELECT * FROM areas WHERE id = ?", (area_id,))
        return Area.from_row(rows[0]) if rows else None

    def save_area(self, area: Area) -> Area:
        self._write(
            "INSERT OR REPLACE INTO areas (id, name, aliases, status, description) VALUES (?, ?, ?, ?, ?)",
            (area.id, area.name, self.db.json_dump(list(area.aliases)), area.status, area.description),
        )
        return area

    # ------------------------------------------------------------------
    # Objectives and key results
    # ------------------------------------------------------------------
    def list_objectives(self) -> list[Objective]:
        rows = self._query("SELECT * FROM objectives ORDER BY created_at, id")
        return [Objective.from_row(row) for row in rows]

    def get_objective(self, objective_id: str) -> Objective | None:
        rows = self._query("SELECT * FROM objectives WHERE id = ?", (objective_id,))
        return Objective.from_row(rows[0]) if rows else None

    def save_objective(self, objective: Objective) -> Objective:
        now = self._clock()
        objective.created_at = objective.created_at or now
        objective.updated_at = now
        self._write(
            """
            INSERT OR REPLACE INTO objectives (
                id, title, period, status, area_id, description, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                objective.id,
                objective.title,
                objective.period,
                objective.status,
                objective.area_id,
                objective.description,
                _iso(objective.created_at),
                _iso(objective.updated_at),
            ),
        )
        return objective

    def delete_objective(self, objective_id: str) -> bool:
        """Delete an objective. Its key results stay behind as orphans."""

        return self._write("DELETE FROM objectives WHERE id = ?", (objective_id,)) > 0

    def list_key_results(self) -> list[KeyResult]:
        rows = self._query("SELECT * FROM key_results ORDER BY created_at, id")
        return [KeyResult.from_row(row) for row in rows]

    def get_key_result(self, key_result_id: str) -> KeyResult | None:
        rows = self._query("SELECT * FROM key_results WHERE id = ?", (key_result_id,))
        return KeyResult.from_row(rows[0]) if rows else None

    def save_key_result(self, kr: KeyResult, *, touch: bool = True) -> KeyResult:
        now = self._clock()
        kr.created_at = kr.created_at or now
        if touch or kr.updated_at is None:
            kr.updated_at = now
        self._write(
            """
            INSERT OR REPLACE INTO key_results (
                id, objective_id, title, metric_type, start_value, target_value,
                current_value, unit, status, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                kr.id,
                kr.objective_id,
                kr.title,
                kr.metric_type,
                kr.start_value,
                kr.target_value,
                kr.current_value,
                kr.unit,
                kr.status,
                _iso(kr.created_at),
                _iso(kr.updated_at),
            ),
        )
        return kr

    def delete_key_result(self, key_result_id: str) -> bool:
        return self._write("DELETE FROM key_results WHERE id = ?", (key_result_id,)) > 0

    # ------------------------------------------------------------------
    # Calendar blocks
    # ------------------------------------------------------------------
    def list_blocks(self, *, day: str | None = None) -> list[CalendarBlock]:
        if day is None:
            rows = self._query("SELECT * FROM calendar_blocks ORDER BY date, start_time")
        else:
            rows = self._query(
                "SELECT * FROM calendar_blocks WHERE date = ? ORDER BY start_time",
                (day,),
            )
        return [CalendarBlock.from_row(row) for row in rows]

    def get_block(self, block_id: str) -> CalendarBlock | None:
        rows = self._query("SELECT * FROM calendar_blocks WHERE id = ?", (block_id,))
        return CalendarBlock.from_row(rows[0]) if rows else None

    def save_block(self, block: CalendarBlock) -> CalendarBlock:
        self._write(
            """
            INSERT OR REPLACE INTO calendar_blocks (
                id, task_id, date, start_time, end_time, duration_minutes, status, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                block.id,
                block.task_id,
                block.date,
                block.start_time,
                block.end_time,
                block.duration_minutes,
                block.status,
                block.notes,
            ),
        )
        return block

    def delete_block(self, block_id: str) -> bool:
        return self._write("DELETE FROM calendar_blocks WHERE id = ?", (block_id,)) > 0

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def get_capacity_profile(self) -> dict[str, Any]:
        """Return the stored capacity profile merged over configured defaults."""

        profile = {key: rule.default for key, rule in CAPACITY_RULES.items()}
        profile.update(self._capacity_defaults)
        rows = self._query("SELECT value FROM settings WHERE key = ?", (CAPACITY_PROFILE_KEY,))
        if rows and rows[0]["value"]:
            stored = json.loads(rows[0]["value"])
            if isinstance(stored, dict):
                profile.update(stored)
        return profile

    def set_capacity_profile(self, profile: Mapping[str, Any]) -> dict[str, Any]:
        current = self.get_capacity_profile()
        current.update(
            {key: CAPACITY_RULES[key].apply(value) for key, value in profile.items() if key in CAPACITY_RULES}
        )
        self._write(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (CAPACITY_PROFILE_KEY, self.db.json_dump(current)),
        )
        logger.info(f"capacity profile updated: {current}")
        return current

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------
    def log_event(self, action: str, payload: Mapping[str, Any] | None = None) -> None:
        self._write(
            "INSERT INTO events (timestamp, action, payload) VALUES (?, ?, ?)",
            (self._clock().isoformat(), action, self.db.json_dump(dict(payload or {}))),
        )

    def list_events(self, action: str | None = None) -> list[dict[str, Any]]:
        if action is None:
            rows = self._query("SELECT * FROM events ORDER BY id")
        else:
            rows = self._query("SELECT * FROM events WHERE action = ? ORDER BY id", (action,))
        return [
            {
                "id": row["id"],
                "timestamp": row["timestamp"],
                "action": row["action"],
                "payload": json.loads(row["payload"]) if row["payload"] else {},
            }
            for row in rows
        ]


__all__ = ["ManagementService", "CAPACITY_PROFILE_KEY"]
