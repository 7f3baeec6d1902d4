"""Dataclasses that describe resolver output consumed by the engine.

Mutations form a closed set of frozen variant classes, one per supported
intent. Each variant carries its own argument shape; the preview builder
dispatches on the variant type rather than on a tool name string.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, Literal, Mapping, MutableMapping

from core.errors import IntentValidationError

IntentType = Literal["chat", "command", "collect"]

_CAMEL_RE = re.compile(r"_([a-z])")


def _camel(name: str) -> str:
    return _CAMEL_RE.sub(lambda m: m.group(1).upper(), name)


@dataclass(frozen=True)
class TaskRef:
    """Reference to a task by id and/or title."""

    task_id: str | None = None
    title: str | None = None

    @classmethod
    def from_args(cls, args: Mapping[str, Any], *, use_title: bool = True) -> "TaskRef":
        task_id = args.get("taskId") or args.get("projectId")
        title = args.get("taskTitle") or args.get("projectTitle")
        if not title and use_title:
            title = args.get("title")
        return cls(
            task_id=str(task_id) if task_id else None,
            title=str(title) if title else None,
        )

    @property
    def empty(self) -> bool:
        return not self.task_id and not self.title


_REF_KEYS = frozenset({"taskId", "projectId", "taskTitle", "projectTitle"})


@dataclass(frozen=True)
class MutationIntent:
    """Base class of every mutation variant."""

    name: ClassVar[str] = ""
    consumed: ClassVar[frozenset[str]] = frozenset()
    numeric: ClassVar[frozenset[str]] = frozenset()
    integer: ClassVar[frozenset[str]] = frozenset()
    boolean: ClassVar[frozenset[str]] = frozenset()
    sequence: ClassVar[frozenset[str]] = frozenset()
    title_is_ref: ClassVar[bool] = True

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "MutationIntent":
        if not isinstance(args, Mapping):
            raise IntentValidationError(f"Arguments for {cls.name} must be an object")
        values: Dict[str, Any] = {}
        for item in fields(cls):
            if item.name == "ref":
                values["ref"] = TaskRef.from_args(args, use_title=cls.title_is_ref)
                continue
            if item.name == "updates":
                skip = cls.consumed | _REF_KEYS
                values["updates"] = {k: v for k, v in args.items() if k not in skip}
                continue
            key = _camel(item.name)
            raw = args.get(key, args.get(item.name))
            if raw is None:
                continue
            values[item.name] = cls._coerce(item.name, raw)
        return cls(**values)

    @classmethod
    def _coerce(cls, name: str, raw: Any) -> Any:
        try:
            if name in cls.integer:
                return int(raw)
            if name in cls.numeric:
                return float(raw)
        except (TypeError, ValueError) as exc:
            raise IntentValidationError(f"{cls.name}.{_camel(name)} must be numeric") from exc
        if name in cls.boolean:
            if isinstance(raw, str):
                return raw.strip().lower() in {"true", "1", "si", "sí", "yes"}
            return bool(raw)
        if name in cls.sequence:
            if not isinstance(raw, (list, tuple)):
                raise IntentValidationError(f"{cls.name}.{_camel(name)} must be a list")
            return tuple(raw)
        if isinstance(raw, (dict, list)):
            raise IntentValidationError(f"{cls.name}.{_camel(name)} must be a scalar")
        return str(raw)

    def to_args(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            if isinstance(value, TaskRef):
                if value.task_id:
                    data["taskId"] = value.task_id
                if value.title:
                    data["taskTitle"] = value.title
                continue
            if isinstance(value, tuple):
                value = list(value)
            if item.name == "updates":
                data.update(value)
                continue
            data[_camel(item.name)] = value
        return data


# ------------------------------------------------------------------
# Tasks and projects
# ------------------------------------------------------------------
@dataclass(frozen=True)
class CreateTask(MutationIntent):
    name: ClassVar[str] = "create_task"
    integer: ClassVar[frozenset[str]] = frozenset({"estimated_minutes"})
    boolean: ClassVar[frozenset[str]] = frozenset({"this_week"})
    sequence: ClassVar[frozenset[str]] = frozenset({"milestones"})

    title: str | None = None
    type: str | None = None
    area_id: str | None = None
    category: str | None = None
    this_week: bool = False
    description: str | None = None
    due_date: str | None = None
    priority: str | None = None
    objective_id: str | None = None
    key_result_id: str | None = None
    parent_id: str | None = None
    estimated_minutes: int | None = None
    milestones: tuple = ()


@dataclass(frozen=True)
class CreateProject(CreateTask):
    name: ClassVar[str] = "create_project"


@dataclass(frozen=True)
class UpdateTask(MutationIntent):
    name: ClassVar[str] = "update_task"
    title_is_ref: ClassVar[bool] = False

    ref: TaskRef = field(default_factory=TaskRef)
    updates: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UpdateProject(UpdateTask):
    name: ClassVar[str] = "update_project"


@dataclass(frozen=True)
class DeleteTask(MutationIntent):
    name: ClassVar[str] = "delete_task"

    ref: TaskRef = field(default_factory=TaskRef)


@dataclass(frozen=True)
class DeleteProject(DeleteTask):
    name: ClassVar[str] = "delete_project"


# ------------------------------------------------------------------
# Inbox
# ------------------------------------------------------------------
@dataclass(frozen=True)
class CreateInboxItem(MutationIntent):
    name: ClassVar[str] = "create_inbox_item"

    text: str | None = None
    type: str | None = None
    area_id: str | None = None
    category: str | None = None
    due_date: str | None = None
    priority: str | None = None
    objective_id: str | None = None
    key_result_id: str | None = None


@dataclass(frozen=True)
class UpdateInboxItem(MutationIntent):
    name: ClassVar[str] = "update_inbox_item"
    consumed: ClassVar[frozenset[str]] = frozenset({"inboxId", "type"})

    inbox_id: str | None = None
    type: str | None = None
    updates: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeleteInboxItem(MutationIntent):
    name: ClassVar[str] = "delete_inbox_item"

    inbox_id: str | None = None
    type: str | None = None


@dataclass(frozen=True)
class ProcessInboxItem(MutationIntent):
    name: ClassVar[str] = "process_inbox_item"
    boolean: ClassVar[frozenset[str]] = frozenset({"this_week"})

    inbox_id: str | None = None
    type: str | None = None
    task_type: str | None = None
    category: str | None = None
    this_week: bool = False
    objective_id: str | None = None
    key_result_id: str | None = None


# ------------------------------------------------------------------
# Areas
# ------------------------------------------------------------------
@dataclass(frozen=True)
class CreateArea(MutationIntent):
    name: ClassVar[str] = "create_area"
    sequence: ClassVar[frozenset[str]] = frozenset({"aliases"})

    area_name: str | None = None
    description: str | None = None
    aliases: tuple = ()

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "CreateArea":
        intent = super().from_args(args)
        area_name = args.get("name") if isinstance(args, Mapping) else None
        if area_name is not None and intent.area_name is None:
            return cls(area_name=str(area_name), description=intent.description, aliases=intent.aliases)
        return intent

    def to_args(self) -> Dict[str, Any]:
        data = super().to_args()
        if "areaName" in data:
            data["name"] = data.pop("areaName")
        return data


@dataclass(frozen=True)
class UpdateArea(MutationIntent):
    name: ClassVar[str] = "update_area"
    consumed: ClassVar[frozenset[str]] = frozenset({"areaId"})

    area_id: str | None = None
    updates: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ArchiveArea(MutationIntent):
    name: ClassVar[str] = "archive_area"

    area_id: str | None = None


# ------------------------------------------------------------------
# Objectives and key results
# ------------------------------------------------------------------
@dataclass(frozen=True)
class CreateObjective(MutationIntent):
    name: ClassVar[str] = "create_objective"

    title: str | None = None
    period: str | None = None
    area_id: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class UpdateObjective(MutationIntent):
    name: ClassVar[str] = "update_objective"
    consumed: ClassVar[frozenset[str]] = frozenset({"objectiveId"})

    objective_id: str | None = None
    updates: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeleteObjective(MutationIntent):
    name: ClassVar[str] = "delete_objective"

    objective_id: str | None = None


@dataclass(frozen=True)
class CreateKeyResult(MutationIntent):
    name: ClassVar[str] = "create_key_result"
    numeric: ClassVar[frozenset[str]] = frozenset({"target_value", "start_value", "current_value"})

    objective_id: str | None = None
    title: str | None = None
    target_value: float | None = None
    start_value: float | None = None
    current_value: float | None = None
    metric_type: str | None = None
    unit: str | None = None


@dataclass(frozen=True)
class UpdateKeyResult(MutationIntent):
    name: ClassVar[str] = "update_key_result"
    consumed: ClassVar[frozenset[str]] = frozenset({"keyResultId"})

    key_result_id: str | None = None
    updates: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UpdateKeyResultProgress(MutationIntent):
    name: ClassVar[str] = "update_key_result_progress"
    numeric: ClassVar[frozenset[str]] = frozenset({"current_value"})

    key_result_id: str | None = None
    current_value: float | None = None


@dataclass(frozen=True)
class DeleteKeyResult(MutationIntent):
    name: ClassVar[str] = "delete_key_result"

    key_result_id: str | None = None


# ------------------------------------------------------------------
# Calendar
# ------------------------------------------------------------------
@dataclass(frozen=True)
class CreateCalendarBlock(MutationIntent):
    name: ClassVar[str] = "create_calendar_block"

    task_id: str | None = None
    date: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    status: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class UpdateCalendarBlock(MutationIntent):
    name: ClassVar[str] = "update_calendar_block"
    consumed: ClassVar[frozenset[str]] = frozenset({"blockId"})

    block_id: str | None = None
    updates: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeleteCalendarBlock(MutationIntent):
    name: ClassVar[str] = "delete_calendar_block"

    block_id: str | None = None


# ------------------------------------------------------------------
# Compound intents
# ------------------------------------------------------------------
@dataclass(frozen=True)
class CreateLearningStructure(MutationIntent):
    name: ClassVar[str] = "create_learning_structure"
    integer: ClassVar[frozenset[str]] = frozenset({"module_count"})
    numeric: ClassVar[frozenset[str]] = frozenset({"current_progress"})
    sequence: ClassVar[frozenset[str]] = frozenset({"module_names"})

    skill: str | None = None
    period: str | None = None
    template_id: str | None = None
    module_count: int | None = None
    module_names: tuple = ()
    current_progress: float | None = None
    area_id: str | None = None


@dataclass(frozen=True)
class SmartProcessInbox(MutationIntent):
    name: ClassVar[str] = "smart_process_inbox"

    inbox_id: str | None = None
    text: str | None = None
    type: str | None = None
    area_id: str | None = None
    objective_id: str | None = None
    key_result_id: str | None = None
    date: str | None = None
    start_time: str | None = None


@dataclass(frozen=True)
class PlanAndScheduleWeek(MutationIntent):
    name: ClassVar[str] = "plan_and_schedule_week"
    integer: ClassVar[frozenset[str]] = frozenset({"commit_count"})

    commit_count: int | None = None


@dataclass(frozen=True)
class BatchReprioritize(MutationIntent):
    name: ClassVar[str] = "batch_reprioritize"


@dataclass(frozen=True)
class BreakdownMilestone(MutationIntent):
    name: ClassVar[str] = "breakdown_milestone"
    integer: ClassVar[frozenset[str]] = frozenset({"subtask_count"})

    ref: TaskRef = field(default_factory=TaskRef)
    milestone_id: str | None = None
    milestone_title: str | None = None
    subtask_count: int | None = None


MUTATION_INTENTS: tuple[type[MutationIntent], ...] = (
    CreateTask,
    CreateProject,
    UpdateTask,
    UpdateProject,
    DeleteTask,
    DeleteProject,
    CreateInboxItem,
    UpdateInboxItem,
    DeleteInboxItem,
    ProcessInboxItem,
    CreateArea,
    UpdateArea,
    ArchiveArea,
    CreateObjective,
    UpdateObjective,
    DeleteObjective,
    CreateKeyResult,
    UpdateKeyResult,
    UpdateKeyResultProgress,
    DeleteKeyResult,
    CreateCalendarBlock,
    UpdateCalendarBlock,
    DeleteCalendarBlock,
    CreateLearningStructure,
    SmartProcessInbox,
    PlanAndScheduleWeek,
    BatchReprioritize,
    BreakdownMilestone,
)

INTENTS_BY_NAME: Dict[str, type[MutationIntent]] = {cls.name: cls for cls in MUTATION_INTENTS}


def parse_tool_call(name: Any, args: Any) -> MutationIntent:
    """Validate an untrusted tool call and build the matching variant."""

    if not isinstance(name, str) or name not in INTENTS_BY_NAME:
        raise IntentValidationError(f"Unknown intent: {name!r}")
    if args is None:
        args = {}
    return INTENTS_BY_NAME[name].from_args(args)


# ------------------------------------------------------------------
# Resolver output
# ------------------------------------------------------------------
@dataclass(frozen=True)
class ResolverMeta:
    """Auxiliary metadata produced by the resolver stage."""

    trace_id: str | None = None
    confidence: float | None = None
    rule: str | None = None
    source: str | None = None
    degraded: str | None = None
    explain: tuple[str, ...] = tuple()

    def merged_with(self, **updates: Any) -> "ResolverMeta":
        data: MutableMapping[str, Any] = {
            "trace_id": self.trace_id,
            "confidence": self.confidence,
            "rule": self.rule,
            "source": self.source,
            "degraded": self.degraded,
            "explain": self.explain,
        }
        data.update({k: v for k, v in updates.items() if v is not None})
        explain = data.get("explain")
        if isinstance(explain, list):
            data["explain"] = tuple(explain)
        return ResolverMeta(**data)  # type: ignore[arg-type]


@dataclass(frozen=True)
class Intent:
    """Resolver decision fed into the conversation engine.

    ``command`` carries a validated mutation, ``chat`` carries reply text
    and ``collect`` names an intent that still misses required slots.
    """

    kind: IntentType
    name: str | None = None
    args: Mapping[str, Any] = field(default_factory=dict)
    text: str | None = None
    mutation: MutationIntent | None = None
    missing: tuple[str, ...] = tuple()
    meta: ResolverMeta = field(default_factory=ResolverMeta)

    def is_command(self) -> bool:
        return self.kind == "command" and self.mutation is not None

    def asdict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "name": self.name,
            "args": dict(self.args),
            "text": self.text,
            "missing": list(self.missing),
            "meta": {
                "trace_id": self.meta.trace_id,
                "confidence": self.meta.confidence,
                "rule": self.meta.rule,
                "source": self.meta.source,
                "degraded": self.meta.degraded,
                "explain": list(self.meta.explain),
            },
        }


def command_intent(
    mutation: MutationIntent,
    *,
    confidence: float | None = None,
    rule: str | None = None,
    trace_id: str | None = None,
    source: str | None = None,
    explain: tuple[str, ...] | list[str] | None = None,
) -> Intent:
    meta = ResolverMeta(
        trace_id=trace_id,
        confidence=confidence,
        rule=rule,
        source=source,
        explain=tuple(explain or ()),
    )
    return Intent("command", name=mutation.name, args=mutation.to_args(), mutation=mutation, meta=meta)


def chat_intent(
    text: str,
    *,
    rule: str | None = None,
    trace_id: str | None = None,
    source: str | None = None,
    degraded: str | None = None,
    explain: tuple[str, ...] | list[str] | None = None,
) -> Intent:
    meta = ResolverMeta(
        trace_id=trace_id,
        rule=rule,
        source=source,
        degraded=degraded,
        explain=tuple(explain or ()),
    )
    return Intent("chat", text=text, meta=meta)


def collect_intent(
    name: str,
    *,
    args: Mapping[str, Any],
    missing: tuple[str, ...],
    rule: str | None = None,
) -> Intent:
    return Intent(
        "collect",
        name=name,
        args=dict(args),
        missing=tuple(missing),
        meta=ResolverMeta(rule=rule, source="quick"),
    )


__all__ = [
    "ArchiveArea",
    "BatchReprioritize",
    "BreakdownMilestone",
    "CreateArea",
    "CreateCalendarBlock",
    "CreateInboxItem",
    "CreateKeyResult",
    "CreateLearningStructure",
    "CreateObjective",
    "CreateProject",
    "CreateTask",
    "DeleteCalendarBlock",
    "DeleteInboxItem",
    "DeleteKeyResult",
    "DeleteObjective",
    "DeleteProject",
    "DeleteTask",
    "INTENTS_BY_NAME",
    "Intent",
    "MUTATION_INTENTS",
    "MutationIntent",
    "PlanAndScheduleWeek",
    "ProcessInboxItem",
    "ResolverMeta",
    "SmartProcessInbox",
    "TaskRef",
    "UpdateArea",
    "UpdateCalendarBlock",
    "UpdateInboxItem",
    "UpdateKeyResult",
    "UpdateKeyResultProgress",
    "UpdateObjective",
    "UpdateProject",
    "UpdateTask",
    "chat_intent",
    "collect_intent",
    "command_intent",
    "parse_tool_call",
]
