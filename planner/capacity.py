"""Weekly capacity model: budgets, committed load and overload detection."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from management.constants import (
    CAPACITY_RULES,
    LARGE_MILESTONE_MINUTES,
    SIMPLE_TASK_MINUTES,
)
from management.models import Snapshot, Task


@dataclass(frozen=True)
class CapacityConfig:
    work_hours_per_day: float = 8
    buffer_percentage: float = 20
    break_minutes_per_day: float = 60
    work_days_per_week: int = 5
    simple_task_minutes: int = SIMPLE_TASK_MINUTES

    def to_dict(self) -> dict[str, Any]:
        return {
            "work_hours_per_day": self.work_hours_per_day,
            "buffer_percentage": self.buffer_percentage,
            "break_minutes_per_day": self.break_minutes_per_day,
            "work_days_per_week": self.work_days_per_week,
        }


@dataclass(frozen=True)
class Capacity:
    total: int
    available: int
    usable: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "available": self.available,
            "usable": self.usable,
            "totalFormatted": format_minutes(self.total),
            "availableFormatted": format_minutes(self.available),
            "usableFormatted": format_minutes(self.usable),
        }


@dataclass(frozen=True)
class Overload:
    is_overloaded: bool
    percentage: int
    excess: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "isOverloaded": self.is_overloaded,
            "percentage": self.percentage,
            "excess": self.excess,
            "excessFormatted": format_minutes(self.excess),
        }


@dataclass(frozen=True)
class RedistributionSuggestion:
    action: str
    task_id: str
    task_title: str
    minutes: int
    reason: str
    task_type: str | None = None
    milestone_id: str | None = None
    milestone_title: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "action": self.action,
            "taskId": self.task_id,
            "taskTitle": self.task_title,
            "minutes": self.minutes,
            "reason": self.reason,
        }
        if self.task_type:
            data["taskType"] = self.task_type
        if self.milestone_id:
            data["milestoneId"] = self.milestone_id
            data["milestoneTitle"] = self.milestone_title
        return data


@dataclass(frozen=True)
class CapacityReport:
    config: CapacityConfig
    daily: Capacity
    weekly: Capacity
    committed_minutes: int
    overload: Overload
    suggestions: tuple[RedistributionSuggestion, ...] = field(default_factory=tuple)

    @property
    def remaining(self) -> int:
        return self.weekly.usable - self.committed_minutes

    @property
    def color(self) -> str:
        return capacity_color(self.overload.percentage)

    def to_dict(self) -> dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "daily": self.daily.to_dict(),
            "capacity": self.weekly.to_dict(),
            "committed": {
                "minutes": self.committed_minutes,
                "formatted": format_minutes(self.committed_minutes),
            },
            "remaining": {
                "minutes": self.remaining,
                "formatted": format_minutes(max(0, self.remaining)),
            },
            "overload": self.overload.to_dict(),
            "suggestions": [s.to_dict() for s in self.suggestions],
            "color": self.color,
        }


def build_capacity_config(raw: Mapping[str, Any] | None, *, simple_task_minutes: int | None = None) -> CapacityConfig:
    """Clamp a user profile into a valid :class:`CapacityConfig`."""

    raw = raw or {}
    values = {}
    for key, rule in CAPACITY_RULES.items():
        value = raw.get(key)
        values[key] = rule.default if value is None else rule.apply(value)
    simple = simple_task_minutes
    if simple is None:
        simple = raw.get("simple_task_minutes") or SIMPLE_TASK_MINUTES
    return CapacityConfig(
        work_hours_per_day=values["work_hours_per_day"],
        buffer_percentage=values["buffer_percentage"],
        break_minutes_per_day=values["break_minutes_per_day"],
        work_days_per_week=int(values["work_days_per_week"]),
        simple_task_minutes=max(1, int(simple)),
    )


def daily_capacity(config: CapacityConfig) -> Capacity:
    total = int(config.work_hours_per_day * 60)
    available = max(0, total - int(config.break_minutes_per_day))
    usable = math.floor(available * (100 - config.buffer_percentage) / 100)
    return Capacity(total=total, available=available, usable=max(0, usable))


def weekly_capacity(config: CapacityConfig) -> Capacity:
    daily = daily_capacity(config)
    days = config.work_days_per_week
    return Capacity(
        total=daily.total * days,
        available=daily.available * days,
        usable=daily.usable * days,
    )


def task_load_minutes(task: Task, simple_task_minutes: int = SIMPLE_TASK_MINUTES) -> int:
    """Minutes a committed task adds to the week.

    Projects count their committed, incomplete milestones; simple tasks count
    a flat default unless they carry an explicit estimate.
    """

    if task.is_project:
        return sum(m.time_estimate for m in task.open_committed_milestones())
    return task.estimated_minutes or simple_task_minutes


def commit_load_minutes(task: Task, simple_task_minutes: int = SIMPLE_TASK_MINUTES) -> int:
    """Minutes ``task`` will add once committed to the current week."""

    if task.is_project:
        pending = task.milestone_to_commit()
        extra = pending.time_estimate if pending is not None else 0
        return task_load_minutes(task, simple_task_minutes) + extra
    return task_load_minutes(task, simple_task_minutes)


def weekly_load(tasks: Iterable[Task], simple_task_minutes: int = SIMPLE_TASK_MINUTES) -> int:
    total = 0
    for task in tasks:
        if not task.this_week or not task.is_active:
            continue
        total += task_load_minutes(task, simple_task_minutes)
    return total


def detect_overload(committed: int, capacity: int) -> Overload:
    percentage = round(committed / capacity * 100) if capacity > 0 else 0
    excess = committed - capacity
    return Overload(is_overloaded=excess > 0, percentage=percentage, excess=max(0, excess))


def suggest_redistribution(
    tasks: Iterable[Task],
    excess: int,
    simple_task_minutes: int = SIMPLE_TASK_MINUTES,
) -> list[RedistributionSuggestion]:
    tasks = list(tasks)
    suggestions: list[RedistributionSuggestion] = []

    deferrable = [
        t for t in tasks
        if t.this_week and t.is_active and (not t.priority or t.priority == "low")
    ]
    deferrable.sort(key=lambda t: 0 if not t.is_project else 1)

    remaining = excess
    for task in deferrable:
        if remaining <= 0:
            break
        if task.is_project:
            minutes = 0
            for milestone_id in task.committed_milestones:
                milestone = task.milestone(milestone_id)
                minutes += milestone.time_estimate if milestone else 0
        else:
            minutes = task.estimated_minutes or simple_task_minutes
        if minutes <= 0:
            continue
        suggestions.append(
            RedistributionSuggestion(
                action="defer",
                task_id=task.id,
                task_title=task.title,
                task_type=task.kind.value,
                minutes=minutes,
                reason="Low priority - can be moved to next week",
            )
        )
        remaining -= minutes

    if remaining > 0:
        for project in (t for t in tasks if t.is_project and t.this_week):
            milestones = sorted(
                project.open_committed_milestones(),
                key=lambda m: m.time_estimate,
                reverse=True,
            )
            for milestone in milestones:
                if remaining <= 0:
                    break
                if milestone.time_estimate > LARGE_MILESTONE_MINUTES:
                    suggestions.append(
                        RedistributionSuggestion(
                            action="uncommit_milestone",
                            task_id=project.id,
                            task_title=project.title,
                            milestone_id=milestone.id,
                            milestone_title=milestone.title,
                            minutes=milestone.time_estimate,
                            reason="Large milestone - consider uncommitting for next week",
                        )
                    )
                    remaining -= milestone.time_estimate

    return suggestions


def format_minutes(minutes: int) -> str:
    if minutes >= 60:
        return f"{minutes / 60:.1f}h"
    return f"{minutes}min"


def capacity_color(percentage: int) -> str:
    if percentage <= 80:
        return "green"
    if percentage <= 100:
        return "yellow"
    return "red"


def capacity_report(snapshot: Snapshot, *, simple_task_minutes: int | None = None) -> CapacityReport:
    config = build_capacity_config(snapshot.profile, simple_task_minutes=simple_task_minutes)
    weekly = weekly_capacity(config)
    committed = weekly_load(snapshot.tasks, config.simple_task_minutes)
    overload = detect_overload(committed, weekly.usable)
    suggestions: tuple[RedistributionSuggestion, ...] = ()
    if overload.is_overloaded:
        suggestions = tuple(suggest_redistribution(snapshot.tasks, overload.excess, config.simple_task_minutes))
    return CapacityReport(
        config=config,
        daily=daily_capacity(config),
        weekly=weekly,
        committed_minutes=committed,
        overload=overload,
        suggestions=suggestions,
    )


__all__ = [
    "Capacity",
    "CapacityConfig",
    "CapacityReport",
    "Overload",
    "RedistributionSuggestion",
    "build_capacity_config",
    "capacity_color",
    "capacity_report",
    "daily_capacity",
    "detect_overload",
    "format_minutes",
    "suggest_redistribution",
    "task_load_minutes",
    "weekly_capacity",
    "weekly_load",
]
