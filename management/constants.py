"""Shared constants and enumerations for the management module."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum


class TaskKind(str, Enum):
    """Supported categories of tasks."""

    SIMPLE = "simple"
    PROJECT = "project"


class TaskStatus(str, Enum):
    """Lifecycle of a task inside the management module."""

    ACTIVE = "active"
    DONE = "done"
    ARCHIVED = "archived"


class InboxType(str, Enum):
    """Inbox buckets."""

    WORK = "work"
    PERSONAL = "personal"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class KeyResultStatus(str, Enum):
    """Status ladder inferred from key result progress."""

    DONE = "done"
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    OFF_TRACK = "off_track"


class ActionStatus(str, Enum):
    """Lifecycle of a pending action awaiting confirmation."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    VETOED = "vetoed"


class ConversationPhase(str, Enum):
    """Per-session phase of the conversation state machine."""

    IDLE = "idle"
    COLLECTING_SLOTS = "collecting_slots"
    READY_FOR_CONFIRMATION = "ready_for_confirmation"


@dataclass(frozen=True)
class ClampRule:
    """Default and bounds applied to a user editable capacity field."""

    default: float
    minimum: float
    maximum: float

    def apply(self, value) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return self.default
        if number != number:  # NaN
            return self.default
        return max(self.minimum, min(self.maximum, number))


CAPACITY_RULES: dict[str, ClampRule] = {
    "work_hours_per_day": ClampRule(default=8, minimum=1, maximum=24),
    "buffer_percentage": ClampRule(default=20, minimum=0, maximum=50),
    "break_minutes_per_day": ClampRule(default=60, minimum=0, maximum=480),
    "work_days_per_week": ClampRule(default=5, minimum=1, maximum=7),
}

SIMPLE_TASK_MINUTES = 60
MILESTONE_DEFAULT_MINUTES = 45
RANKED_MILESTONE_DEFAULT_MINUTES = 60
PROJECT_FALLBACK_MINUTES = 120
LARGE_MILESTONE_MINUTES = 120
SMART_BLOCK_MINUTES = 60

ACTION_TTL = timedelta(minutes=5)
WORKDAY_START = "09:00"

DEFAULT_AREA = "trabajo"
DEFAULT_PRIORITY = "normal"
PERSONAL_AREA_HINTS = ("personal", "familia", "salud", "aprender")

RISK_WEIGHTS = {
    RiskLevel.HIGH: 100,
    RiskLevel.MEDIUM: 60,
    RiskLevel.LOW: 20,
}
