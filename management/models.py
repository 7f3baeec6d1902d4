"""Dataclasses used by the management module."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping

from core.errors import SlotValidationError

from .constants import (
    DEFAULT_PRIORITY,
    MILESTONE_DEFAULT_MINUTES,
    InboxType,
    TaskKind,
    TaskStatus,
)


@dataclass(slots=True)
class Milestone:
    id: str
    title: str
    time_estimate: int = MILESTONE_DEFAULT_MINUTES
    completed: bool = False
    description: str = ""
    completed_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Milestone":
        estimate = data.get("timeEstimate", data.get("time_estimate"))
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            time_estimate=int(estimate) if estimate else MILESTONE_DEFAULT_MINUTES,
            completed=bool(data.get("completed", False)),
            description=data.get("description") or "",
            completed_at=_parse_optional(data.get("completedAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "timeEstimate": self.time_estimate,
            "completed": self.completed,
            "description": self.description,
            "completedAt": _format_optional(self.completed_at),
        }


@dataclass(slots=True)
class Task:
    """Serializable representation of a task or project."""

    id: str
    title: str
    kind: TaskKind = TaskKind.SIMPLE
    status: TaskStatus = TaskStatus.ACTIVE
    this_week: bool = False
    week_committed: str | None = None
    due_date: date | None = None
    priority: str = DEFAULT_PRIORITY
    area_id: str | None = None
    objective_id: str | None = None
    key_result_id: str | None = None
    parent_id: str | None = None
    description: str = ""
    estimated_minutes: int | None = None
    milestones: list[Milestone] = field(default_factory=list)
    committed_milestones: list[str] = field(default_factory=list)
    processed_from: dict[str, Any] | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_project(self) -> bool:
        return self.kind == TaskKind.PROJECT

    @property
    def is_active(self) -> bool:
        return self.status == TaskStatus.ACTIVE

    def milestone(self, milestone_id: str) -> Milestone | None:
        for item in self.milestones:
            if item.id == milestone_id:
                return item
        return None

    def open_committed_milestones(self) -> list[Milestone]:
        """Committed milestones that are not completed, in commit order."""

        result = []
        for milestone_id in self.committed_milestones:
            item = self.milestone(milestone_id)
            if item is not None and not item.completed:
                result.append(item)
        return result

    def milestone_to_commit(self) -> Milestone | None:
        """First incomplete milestone, committed when the project has nothing open."""

        if self.open_committed_milestones():
            return None
        return next((m for m in self.milestones if not m.completed), None)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Task":
        area = data.get("areaId") or data.get("category")
        estimated = data.get("estimatedMinutes")
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            kind=TaskKind(data.get("type") or data.get("kind") or TaskKind.SIMPLE.value),
            status=TaskStatus(data.get("status") or TaskStatus.ACTIVE.value),
            this_week=bool(data.get("thisWeek", False)),
            week_committed=data.get("weekCommitted"),
            due_date=_parse_date(data.get("dueDate")),
            priority=data.get("priority") or DEFAULT_PRIORITY,
            area_id=area,
            objective_id=data.get("objectiveId"),
            key_result_id=data.get("keyResultId"),
            parent_id=data.get("parentId"),
            description=data.get("description") or "",
            estimated_minutes=int(estimated) if estimated else None,
            milestones=[Milestone.from_dict(m) for m in data.get("milestones") or []],
            committed_milestones=[str(m) for m in data.get("committedMilestones") or []],
            processed_from=data.get("processedFrom"),
            created_at=_parse_optional(data.get("createdAt")),
            completed_at=_parse_optional(data.get("completedAt")),
        )

    @classmethod
    def from_row(cls, row: Any) -> "Task":
        return cls(
            id=row["id"],
            title=row["title"],
            kind=TaskKind(row["kind"]),
            status=TaskStatus(row["status"]),
            this_week=bool(row["this_week"]),
            week_committed=row["week_committed"],
            due_date=_parse_date(row["due_date"]),
            priority=row["priority"] or DEFAULT_PRIORITY,
            area_id=row["area_id"],
            objective_id=row["objective_id"],
            key_result_id=row["key_result_id"],
            parent_id=row["parent_id"],
            description=row["description"] or "",
            estimated_minutes=row["estimated_minutes"],
            milestones=[Milestone.from_dict(m) for m in _parse_json(row["milestones"]) or []],
            committed_milestones=list(_parse_json(row["committed_milestones"]) or []),
            processed_from=_parse_json(row["processed_from"]),
            created_at=_parse_optional(row["created_at"]),
            completed_at=_parse_optional(row["completed_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.kind.value,
            "status": self.status.value,
            "thisWeek": self.this_week,
            "weekCommitted": self.week_committed,
            "dueDate": _format_date(self.due_date),
            "priority": self.priority,
            "areaId": self.area_id,
            "objectiveId": self.objective_id,
            "keyResultId": self.key_result_id,
            "parentId": self.parent_id,
            "description": self.description,
            "estimatedMinutes": self.estimated_minutes,
            "milestones": [m.to_dict() for m in self.milestones],
            "committedMilestones": list(self.committed_milestones),
            "processedFrom": self.processed_from,
            "createdAt": _format_optional(self.created_at),
            "completedAt": _format_optional(self.completed_at),
        }


@dataclass(slots=True)
class Objective:
    id: str
    title: str
    period: str
    status: str = "active"
    area_id: str | None = None
    description: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "Objective":
        return cls(
            id=row["id"],
            title=row["title"],
            period=row["period"],
            status=row["status"],
            area_id=row["area_id"],
            description=row["description"] or "",
            created_at=_parse_optional(row["created_at"]),
            updated_at=_parse_optional(row["updated_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "period": self.period,
            "status": self.status,
            "areaId": self.area_id,
            "description": self.description,
            "createdAt": _format_optional(self.created_at),
            "updatedAt": _format_optional(self.updated_at),
        }


@dataclass(slots=True)
class KeyResult:
    id: str
    objective_id: str
    title: str
    start_value: float = 0.0
    target_value: float = 0.0
    current_value: float = 0.0
    metric_type: str = "number"
    unit: str | None = None
    status: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "KeyResult":
        return cls(
            id=row["id"],
            objective_id=row["objective_id"],
            title=row["title"],
            start_value=float(row["start_value"]),
            target_value=float(row["target_value"]),
            current_value=float(row["current_value"]),
            metric_type=row["metric_type"] or "number",
            unit=row["unit"],
            status=row["status"],
            created_at=_parse_optional(row["created_at"]),
            updated_at=_parse_optional(row["updated_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "objectiveId": self.objective_id,
            "title": self.title,
            "startValue": self.start_value,
            "targetValue": self.target_value,
            "currentValue": self.current_value,
            "metricType": self.metric_type,
            "unit": self.unit,
            "status": self.status,
            "updatedAt": _format_optional(self.updated_at),
        }


@dataclass(slots=True)
class InboxItem:
    id: str
    text: str
    type: InboxType = InboxType.PERSONAL
    area_id: str | None = None
    due_date: date | None = None
    priority: str = DEFAULT_PRIORITY
    objective_id: str | None = None
    key_result_id: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "InboxItem":
        return cls(
            id=str(data["id"]),
            text=str(data.get("text") or ""),
            type=InboxType(data.get("type") or InboxType.PERSONAL.value),
            area_id=data.get("areaId") or data.get("category"),
            due_date=_parse_date(data.get("dueDate")),
            priority=data.get("priority") or DEFAULT_PRIORITY,
            objective_id=data.get("objectiveId"),
            key_result_id=data.get("keyResultId"),
            created_at=_parse_optional(data.get("createdAt")),
        )

    @classmethod
    def from_row(cls, row: Any) -> "InboxItem":
        return cls(
            id=row["id"],
            text=row["text"],
            type=InboxType(row["type"]),
            area_id=row["area_id"],
            due_date=_parse_date(row["due_date"]),
            priority=row["priority"] or DEFAULT_PRIORITY,
            objective_id=row["objective_id"],
            key_result_id=row["key_result_id"],
            created_at=_parse_optional(row["created_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "type": self.type.value,
            "areaId": self.area_id,
            "dueDate": _format_date(self.due_date),
            "priority": self.priority,
            "objectiveId": self.objective_id,
            "keyResultId": self.key_result_id,
            "createdAt": _format_optional(self.created_at),
        }


@dataclass(slots=True)
class Area:
    id: str
    name: str
    aliases: list[str] = field(default_factory=list)
    status: str = "active"
    description: str = ""

    @classmethod
    def from_row(cls, row: Any) -> "Area":
        return cls(
            id=row["id"],
            name=row["name"],
            aliases=list(_parse_json(row["aliases"]) or []),
            status=row["status"],
            description=row["description"] or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "aliases": list(self.aliases),
            "status": self.status,
            "description": self.description,
        }


@dataclass(slots=True)
class CalendarBlock:
    id: str
    task_id: str
    date: str
    start_time: str
    end_time: str
    duration_minutes: int
    status: str = "scheduled"
    notes: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CalendarBlock":
        return cls(
            id=str(data["id"]),
            task_id=str(data["taskId"]),
            date=str(data["date"]),
            start_time=str(data["startTime"]),
            end_time=str(data["endTime"]),
            duration_minutes=int(data.get("durationMinutes") or 0),
            status=data.get("status") or "scheduled",
            notes=data.get("notes"),
        )

    @classmethod
    def from_row(cls, row: Any) -> "CalendarBlock":
        return cls(
            id=row["id"],
            task_id=row["task_id"],
            date=row["date"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            duration_minutes=int(row["duration_minutes"]),
            status=row["status"],
            notes=row["notes"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "date": self.date,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "durationMinutes": self.duration_minutes,
            "status": self.status,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class Snapshot:
    """Self-consistent view of persisted state read in a single transaction."""

    tasks: tuple[Task, ...] = ()
    objectives: tuple[Objective, ...] = ()
    key_results: tuple[KeyResult, ...] = ()
    inbox: tuple[InboxItem, ...] = ()
    areas: tuple[Area, ...] = ()
    blocks: tuple[CalendarBlock, ...] = ()
    profile: Mapping[str, Any] = field(default_factory=dict)

    def task(self, task_id: str | None) -> Task | None:
        if not task_id:
            return None
        for item in self.tasks:
            if item.id == task_id:
                return item
        return None

    def objective(self, objective_id: str | None) -> Objective | None:
        for item in self.objectives:
            if item.id == objective_id:
                return item
        return None

    def key_result(self, key_result_id: str | None) -> KeyResult | None:
        for item in self.key_results:
            if item.id == key_result_id:
                return item
        return None

    def inbox_item(self, inbox_id: str | None, inbox_type: InboxType | None = None) -> InboxItem | None:
        for item in self.inbox:
            if item.id == inbox_id and (inbox_type is None or item.type == inbox_type):
                return item
        return None

    def block(self, block_id: str | None) -> CalendarBlock | None:
        for item in self.blocks:
            if item.id == block_id:
                return item
        return None

    def blocks_on(self, day: str) -> list[CalendarBlock]:
        return [b for b in self.blocks if b.date == day]

    def active_areas(self) -> list[Area]:
        return [a for a in self.areas if a.status == "active"]


def _parse_required(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _parse_optional(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return _parse_required(value)


def _parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise SlotValidationError(f"Fecha invalida: {value}") from exc


def _parse_json(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def _format_optional(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _format_date(value: date | None) -> str | None:
    return value.isoformat() if value else None


__all__ = [
    "Milestone",
    "Task",
    "Objective",
    "KeyResult",
    "InboxItem",
    "Area",
    "CalendarBlock",
    "Snapshot",
]
