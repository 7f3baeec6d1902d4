"""Persistence and data model for the coach engine."""

from .constants import ActionStatus, ConversationPhase, InboxType, RiskLevel, TaskKind, TaskStatus
from .database import ManagementDatabase
from .models import Area, CalendarBlock, InboxItem, KeyResult, Milestone, Objective, Snapshot, Task
from .service import ManagementService

__all__ = [
    "ActionStatus",
    "Area",
    "CalendarBlock",
    "ConversationPhase",
    "InboxItem",
    "InboxType",
    "KeyResult",
    "ManagementDatabase",
    "ManagementService",
    "Milestone",
    "Objective",
    "RiskLevel",
    "Snapshot",
    "Task",
    "TaskKind",
    "TaskStatus",
]
