"""Metadata about the mutations the executor knows how to apply."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class IntentMetadata:
    name: str
    entity: str
    compound: bool = False
    commits_capacity: bool = False


INTENT_METADATA: Dict[str, IntentMetadata] = {
    "create_task": IntentMetadata("create_task", entity="task", commits_capacity=True),
    "create_project": IntentMetadata("create_project", entity="task", commits_capacity=True),
    "update_task": IntentMetadata("update_task", entity="task", commits_capacity=True),
    "update_project": IntentMetadata("update_project", entity="task", commits_capacity=True),
    "delete_task": IntentMetadata("delete_task", entity="task"),
    "delete_project": IntentMetadata("delete_project", entity="task"),
    "create_inbox_item": IntentMetadata("create_inbox_item", entity="inbox"),
    "update_inbox_item": IntentMetadata("update_inbox_item", entity="inbox"),
    "delete_inbox_item": IntentMetadata("delete_inbox_item", entity="inbox"),
    "process_inbox_item": IntentMetadata("process_inbox_item", entity="inbox", commits_capacity=True),
    "create_area": IntentMetadata("create_area", entity="area"),
    "update_area": IntentMetadata("update_area", entity="area"),
    "archive_area": IntentMetadata("archive_area", entity="area"),
    "create_objective": IntentMetadata("create_objective", entity="objective"),
    "update_objective": IntentMetadata("update_objective", entity="objective"),
    "delete_objective": IntentMetadata("delete_objective", entity="objective"),
    "create_key_result": IntentMetadata("create_key_result", entity="key_result"),
    "update_key_result": IntentMetadata("update_key_result", entity="key_result"),
    "update_key_result_progress": IntentMetadata("update_key_result_progress", entity="key_result"),
    "delete_key_result": IntentMetadata("delete_key_result", entity="key_result"),
    "create_calendar_block": IntentMetadata("create_calendar_block", entity="calendar"),
    "update_calendar_block": IntentMetadata("update_calendar_block", entity="calendar"),
    "delete_calendar_block": IntentMetadata("delete_calendar_block", entity="calendar"),
    "create_learning_structure": IntentMetadata("create_learning_structure", entity="objective", compound=True),
    "smart_process_inbox": IntentMetadata(
        "smart_process_inbox", entity="inbox", compound=True, commits_capacity=True
    ),
    "plan_and_schedule_week": IntentMetadata(
        "plan_and_schedule_week", entity="task", compound=True, commits_capacity=True
    ),
    "batch_reprioritize": IntentMetadata("batch_reprioritize", entity="task", compound=True),
    "breakdown_milestone": IntentMetadata(
        "breakdown_milestone", entity="task", compound=True, commits_capacity=True
    ),
}


def get_intent_metadata(name: str) -> IntentMetadata | None:
    return INTENT_METADATA.get(name)


__all__ = ["INTENT_METADATA", "IntentMetadata", "get_intent_metadata"]
