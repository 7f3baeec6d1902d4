"""Mutation previews: the exact diff an intent would apply, computed in memory.

Builders never write. Each one reads the snapshot it is given and returns an
:class:`ActionPreview` whose ``payload`` carries everything the executor
needs, so execution never re-derives ids, titles or estimates.
"""
from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, Mapping

from Levenshtein import ratio as lev_ratio

from core.errors import SlotValidationError
from interaction.resolver import intents as it
from interaction.resolver.utils.normalize import normalize_text, slugify
from interaction.resolver.utils.slots import normalize_date
from management.constants import (
    DEFAULT_AREA,
    DEFAULT_PRIORITY,
    MILESTONE_DEFAULT_MINUTES,
    PERSONAL_AREA_HINTS,
    SMART_BLOCK_MINUTES,
    WORKDAY_START,
    InboxType,
    TaskKind,
    TaskStatus,
)
from management.models import Milestone, Snapshot, Task

from .calendar import add_minutes, block_duration, validate_block
from .capacity import (
    build_capacity_config,
    commit_load_minutes,
    format_minutes,
    task_load_minutes,
    weekly_capacity,
    weekly_load,
)
from .decision import build_explainability, build_plan_context, generate_weekly_plan_pack, rank_next_best_actions
from .risk import RiskSignals, build_risk_signals

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 5
MAX_SUGGESTIONS = 3
SUGGESTION_THRESHOLD = 0.5

WEEK_TARGETS = {"week", "esta semana", "semana"}


@dataclass(frozen=True)
class ActionPreview:
    """Immutable description of a proposed mutation."""

    intent: str
    summary: str
    changes: tuple[Mapping[str, Any], ...] = ()
    impact: Mapping[str, Any] = field(default_factory=dict)
    reason: str = ""
    payload: Mapping[str, Any] = field(default_factory=dict)
    no_action: bool = False

    @property
    def requires_confirmation(self) -> bool:
        return not self.no_action

    @property
    def minutes_committed(self) -> int:
        return int(self.impact.get("minutesCommitted") or 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent,
            "changes": copy.deepcopy(list(self.changes)),
            "summary": self.summary,
            "impact": copy.deepcopy(dict(self.impact)),
            "reason": self.reason,
            "payload": copy.deepcopy(dict(self.payload)),
            "noAction": self.no_action,
            "requiresConfirmation": self.requires_confirmation,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ActionPreview":
        return cls(
            intent=str(data.get("intent") or ""),
            summary=str(data.get("summary") or ""),
            changes=tuple(data.get("changes") or ()),
            impact=dict(data.get("impact") or {}),
            reason=str(data.get("reason") or ""),
            payload=dict(data.get("payload") or {}),
            no_action=bool(data.get("noAction", False)),
        )


def no_action(intent: str, summary: str, reason: str | None = None) -> ActionPreview:
    return ActionPreview(intent=intent, summary=summary, reason=reason or summary, no_action=True)


# ------------------------------------------------------------------
# Lookup helpers
# ------------------------------------------------------------------
def find_tasks_by_title(tasks: Iterable[Task], title: str | None) -> list[Task]:
    """Exact normalised title matches first, then substring matches."""

    needle = normalize_text(title)
    if not needle:
        return []
    tasks = list(tasks)
    exact = [t for t in tasks if normalize_text(t.title) == needle]
    if exact:
        return exact
    return [t for t in tasks if needle in normalize_text(t.title)]


def closest_titles(tasks: Iterable[Task], title: str | None, limit: int = MAX_SUGGESTIONS) -> list[str]:
    needle = normalize_text(title)
    if not needle:
        return []
    scored = []
    for task in tasks:
        score = lev_ratio(needle, normalize_text(task.title))
        if score >= SUGGESTION_THRESHOLD:
            scored.append((score, task.title))
    scored.sort(key=lambda pair: (-pair[0], pair[1]))
    return [title for _, title in scored[:limit]]


def infer_inbox_type(explicit: str | None, label: str | None) -> InboxType:
    if explicit in (InboxType.WORK.value, InboxType.PERSONAL.value):
        return InboxType(explicit)
    label = (label or "").lower()
    if not label:
        return InboxType.PERSONAL
    if any(hint in label for hint in PERSONAL_AREA_HINTS):
        return InboxType.PERSONAL
    return InboxType.WORK


def inbox_type_from_id(inbox_id: str | None) -> InboxType | None:
    if not inbox_id:
        return None
    if "inbox-personal" in inbox_id:
        return InboxType.PERSONAL
    if "inbox-work" in inbox_id:
        return InboxType.WORK
    return None


def week_token(day: date) -> str:
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def _parse_due(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise SlotValidationError(f"Fecha invalida: {value}") from exc


def _normalize_due_update(updates: Dict[str, Any]) -> None:
    if "dueDate" in updates:
        due = _parse_due(updates["dueDate"])
        updates["dueDate"] = due.isoformat() if due else None


def _milestone_minutes(data: Mapping[str, Any]) -> int:
    raw = data.get("time_estimate") or data.get("timeEstimate") or MILESTONE_DEFAULT_MINUTES
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise SlotValidationError(f"timeEstimate debe ser numerico: {raw}") from exc


def _default_clock() -> datetime:
    return datetime.now(timezone.utc)


def _default_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class MutationPreviewBuilder:
    """Dispatches every mutation variant to the builder that prices it."""

    def __init__(
        self,
        settings: Mapping[str, Any] | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[str], str] | None = None,
    ) -> None:
        settings = settings or {}
        self._clock = clock or _default_clock
        self._make_id = id_factory or _default_id
        self._simple_minutes = int((settings.get("estimates") or {}).get("simple_task_minutes") or 60)
        self._workday_start = str((settings.get("calendar") or {}).get("workday_start") or WORKDAY_START)
        self._templates: Mapping[str, Any] = settings.get("learning_templates") or {}
        self._builders: Dict[type, Callable[[Any, Snapshot, RiskSignals | None], ActionPreview]] = {
            it.CreateTask: self._create_task,
            it.CreateProject: self._create_task,
            it.UpdateTask: self._update_task,
            it.UpdateProject: self._update_task,
            it.DeleteTask: self._delete_task,
            it.DeleteProject: self._delete_task,
            it.CreateInboxItem: self._create_inbox_item,
            it.UpdateInboxItem: self._update_inbox_item,
            it.DeleteInboxItem: self._delete_inbox_item,
            it.ProcessInboxItem: self._process_inbox_item,
            it.CreateArea: self._create_area,
            it.UpdateArea: self._update_area,
            it.ArchiveArea: self._archive_area,
            it.CreateObjective: self._create_objective,
            it.UpdateObjective: self._update_objective,
            it.DeleteObjective: self._delete_objective,
            it.CreateKeyResult: self._create_key_result,
            it.UpdateKeyResult: self._update_key_result,
            it.UpdateKeyResultProgress: self._update_key_result,
            it.DeleteKeyResult: self._delete_key_result,
            it.CreateCalendarBlock: self._create_calendar_block,
            it.UpdateCalendarBlock: self._update_calendar_block,
            it.DeleteCalendarBlock: self._delete_calendar_block,
            it.CreateLearningStructure: self._create_learning_structure,
            it.SmartProcessInbox: self._smart_process_inbox,
            it.PlanAndScheduleWeek: self._plan_and_schedule_week,
            it.BatchReprioritize: self._batch_reprioritize,
            it.BreakdownMilestone: self._breakdown_milestone,
        }
        missing = set(it.MUTATION_INTENTS) - set(self._builders)
        if missing:
            names = ", ".join(sorted(cls.name for cls in missing))
            raise RuntimeError(f"No preview builder registered for: {names}")

    def build(
        self,
        intent: it.MutationIntent,
        snapshot: Snapshot,
        *,
        risk_signals: RiskSignals | None = None,
    ) -> ActionPreview:
        builder = self._builders.get(type(intent))
        if builder is None:
            raise TypeError(f"Unsupported mutation intent: {type(intent).__name__}")
        preview = builder(intent, snapshot, risk_signals)
        logger.debug(f"preview built for {intent.name}: no_action={preview.no_action}")
        return preview

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------
    def _today(self) -> date:
        return self._clock().date()

    def _now_iso(self) -> str:
        return self._clock().replace(microsecond=0).isoformat()

    def _capacity_config(self, snapshot: Snapshot):
        return build_capacity_config(snapshot.profile, simple_task_minutes=self._simple_minutes)

    def _risk(self, snapshot: Snapshot, risk_signals: RiskSignals | None) -> RiskSignals:
        if risk_signals is not None:
            return risk_signals
        return build_risk_signals(snapshot.objectives, snapshot.key_results, self._clock())

    def _resolve_task(
        self,
        intent_name: str,
        snapshot: Snapshot,
        ref: it.TaskRef,
    ) -> tuple[Task | None, ActionPreview | None]:
        task = snapshot.task(ref.task_id)
        if task is not None:
            return task, None
        needle = ref.title or ref.task_id
        matches = find_tasks_by_title(snapshot.tasks, needle)
        if len(matches) == 1:
            return matches[0], None
        if len(matches) > 1:
            options = ", ".join(f"{t.title} ({t.id})" for t in matches[:MAX_CANDIDATES])
            return None, no_action(intent_name, f"Encontre varias coincidencias: {options}. Indica el id exacto.")
        summary = "No encontre la tarea/proyecto. Usa el id exacto o el nombre completo."
        suggestions = closest_titles(snapshot.tasks, needle)
        if suggestions:
            summary += " ¿Quisiste decir: " + ", ".join(f'"{s}"' for s in suggestions) + "?"
        return None, no_action(intent_name, summary)

    def _task_payload(
        self,
        *,
        title: str,
        kind: TaskKind,
        area_id: str | None,
        this_week: bool = False,
        description: str | None = None,
        due_date: str | None = None,
        priority: str | None = None,
        objective_id: str | None = None,
        key_result_id: str | None = None,
        parent_id: str | None = None,
        estimated_minutes: int | None = None,
        milestones: Iterable[Mapping[str, Any]] = (),
    ) -> Dict[str, Any]:
        is_project = kind == TaskKind.PROJECT
        task_id = (slugify(title) if is_project else "") or self._make_id("task")
        task = Task(
            id=task_id,
            title=title,
            kind=kind,
            status=TaskStatus.ACTIVE,
            this_week=bool(this_week),
            week_committed=week_token(self._today()) if this_week else None,
            due_date=_parse_due(due_date),
            priority=priority or DEFAULT_PRIORITY,
            area_id=area_id or DEFAULT_AREA,
            objective_id=objective_id,
            key_result_id=key_result_id,
            parent_id=parent_id,
            description=description or "",
            estimated_minutes=None if is_project else estimated_minutes,
            created_at=self._clock().replace(microsecond=0),
        )
        if is_project:
            task.milestones = [
                Milestone(
                    id=str(m.get("id") or f"milestone-{idx + 1}"),
                    title=str(m.get("title") or f"Milestone {idx + 1}"),
                    description=m.get("description") or "",
                    time_estimate=_milestone_minutes(m),
                )
                for idx, m in enumerate(milestones)
                if isinstance(m, Mapping)
            ]
        return task.to_dict()

    def _load_minutes(self, task_dict: Mapping[str, Any]) -> int:
        task = Task.from_dict(task_dict)
        if not task.this_week:
            return 0
        return task_load_minutes(task, self._simple_minutes)

    # ------------------------------------------------------------------
    # Tasks and projects
    # ------------------------------------------------------------------
    def _create_task(self, intent: it.CreateTask, snapshot: Snapshot, _risk) -> ActionPreview:
        if not intent.title:
            return no_action(intent.name, "Falta el titulo para crear la tarea/proyecto.")
        is_project = isinstance(intent, it.CreateProject) or intent.type == TaskKind.PROJECT.value
        kind = TaskKind.PROJECT if is_project else TaskKind.SIMPLE
        try:
            task = self._task_payload(
                title=intent.title,
                kind=kind,
                area_id=intent.area_id or intent.category,
                this_week=intent.this_week,
                description=intent.description,
                due_date=intent.due_date,
                priority=intent.priority,
                objective_id=intent.objective_id,
                key_result_id=intent.key_result_id,
                parent_id=intent.parent_id,
                estimated_minutes=intent.estimated_minutes,
                milestones=intent.milestones,
            )
        except SlotValidationError as exc:
            return no_action(intent.name, f"{exc.message}.")
        label = "proyecto" if is_project else "tarea"
        impact: Dict[str, Any] = {"tasksCreated": 1}
        minutes = self._load_minutes(task)
        if minutes:
            impact["minutesCommitted"] = minutes
        return ActionPreview(
            intent=intent.name,
            changes=({"taskId": task["id"], "title": task["title"], "type": task["type"]},),
            summary=f'Crear {label}: "{task["title"]}"',
            impact=impact,
            reason="Creacion solicitada por el usuario.",
            payload={"task": task},
        )

    def _update_task(self, intent: it.UpdateTask, snapshot: Snapshot, _risk) -> ActionPreview:
        task, failure = self._resolve_task(intent.name, snapshot, intent.ref)
        if failure is not None:
            return failure
        if isinstance(intent, it.UpdateProject) and not task.is_project:
            return no_action(intent.name, f"El id {task.id} no es un proyecto.")
        updates = dict(intent.updates)
        if not updates:
            return no_action(intent.name, "No hay cambios que aplicar.")
        try:
            _normalize_due_update(updates)
        except SlotValidationError as exc:
            return no_action(intent.name, f"{exc.message}.")

        impact: Dict[str, Any] = {"tasksUpdated": 1}
        target = str(updates.get("targetList") or "").lower()
        commits = updates.get("thisWeek") is True or target in WEEK_TARGETS
        if commits and not task.this_week and task.is_active:
            impact["minutesCommitted"] = task_load_minutes(task, self._simple_minutes)
        return ActionPreview(
            intent=intent.name,
            changes=({"taskId": task.id, "title": task.title, "updates": updates},),
            summary=f'Actualizar "{task.title}"',
            impact=impact,
            reason="Actualizacion solicitada por el usuario.",
            payload={"taskId": task.id, "updates": updates},
        )

    def _delete_task(self, intent: it.DeleteTask, snapshot: Snapshot, _risk) -> ActionPreview:
        task, failure = self._resolve_task(intent.name, snapshot, intent.ref)
        if failure is not None:
            return failure
        if isinstance(intent, it.DeleteProject) and not task.is_project:
            return no_action(intent.name, f"El id {task.id} no es un proyecto.")
        return ActionPreview(
            intent=intent.name,
            changes=({"taskId": task.id, "title": task.title, "action": "delete"},),
            summary=f'Eliminar "{task.title}"',
            impact={"tasksDeleted": 1},
            reason="Eliminacion solicitada por el usuario.",
            payload={"taskId": task.id},
        )

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------
    def _create_inbox_item(self, intent: it.CreateInboxItem, snapshot: Snapshot, _risk) -> ActionPreview:
        if not intent.text:
            return no_action(intent.name, "Falta text para crear item en inbox.")
        label = intent.area_id or intent.category
        inbox_type = infer_inbox_type(intent.type, label)
        area = label or (DEFAULT_AREA if inbox_type == InboxType.WORK else "personal")
        try:
            due = _parse_due(intent.due_date)
        except SlotValidationError as exc:
            return no_action(intent.name, f"{exc.message}.")
        item = {
            "id": f"inbox-{inbox_type.value}-{self._make_id('item')}",
            "text": intent.text,
            "type": inbox_type.value,
            "areaId": area,
            "dueDate": due.isoformat() if due else None,
            "priority": intent.priority or DEFAULT_PRIORITY,
            "objectiveId": intent.objective_id,
            "keyResultId": intent.key_result_id,
            "createdAt": self._now_iso(),
        }
        return ActionPreview(
            intent=intent.name,
            changes=({"inboxId": item["id"], "text": item["text"], "type": inbox_type.value, "areaId": area},),
            summary=f'Capturar en inbox ({inbox_type.value}): "{item["text"]}"',
            impact={"inboxCreated": 1},
            reason="Captura solicitada por el usuario.",
            payload={"type": inbox_type.value, "item": item},
        )

    def _find_inbox(self, intent_name: str, snapshot: Snapshot, inbox_id: str | None, raw_type: str | None, verb: str):
        inbox_type = InboxType(raw_type) if raw_type in ("work", "personal") else inbox_type_from_id(inbox_id)
        if not inbox_id or inbox_type is None:
            return None, None, no_action(intent_name, f"Falta inboxId (y/o type) para {verb} inbox.")
        item = snapshot.inbox_item(inbox_id, inbox_type)
        if item is None:
            return None, None, no_action(intent_name, f"No encontre el item {inbox_id} en inbox {inbox_type.value}.")
        return item, inbox_type, None

    def _update_inbox_item(self, intent: it.UpdateInboxItem, snapshot: Snapshot, _risk) -> ActionPreview:
        item, inbox_type, failure = self._find_inbox(
            intent.name, snapshot, intent.inbox_id, intent.type, "actualizar"
        )
        if failure is not None:
            return failure
        updates = dict(intent.updates)
        if updates.get("category") and not updates.get("areaId"):
            updates["areaId"] = updates["category"]
        if not updates:
            return no_action(intent.name, "No hay cambios que aplicar.")
        try:
            _normalize_due_update(updates)
        except SlotValidationError as exc:
            return no_action(intent.name, f"{exc.message}.")
        return ActionPreview(
            intent=intent.name,
            changes=({"inboxId": item.id, "text": item.text, "updates": updates},),
            summary=f'Actualizar inbox: "{item.text}"',
            impact={"inboxUpdated": 1},
            reason="Actualizacion solicitada por el usuario.",
            payload={"inboxId": item.id, "type": inbox_type.value, "updates": updates},
        )

    def _delete_inbox_item(self, intent: it.DeleteInboxItem, snapshot: Snapshot, _risk) -> ActionPreview:
        item, inbox_type, failure = self._find_inbox(
            intent.name, snapshot, intent.inbox_id, intent.type, "eliminar"
        )
        if failure is not None:
            return failure
        return ActionPreview(
            intent=intent.name,
            changes=({"inboxId": item.id, "text": item.text, "action": "delete"},),
            summary=f'Eliminar item de inbox: "{item.text}"',
            impact={"inboxDeleted": 1},
            reason="Eliminacion solicitada por el usuario.",
            payload={"inboxId": item.id, "type": inbox_type.value},
        )

    def _process_inbox_item(self, intent: it.ProcessInboxItem, snapshot: Snapshot, _risk) -> ActionPreview:
        item, inbox_type, failure = self._find_inbox(
            intent.name, snapshot, intent.inbox_id, intent.type, "procesar"
        )
        if failure is not None:
            return failure
        kind = TaskKind.PROJECT if intent.task_type == TaskKind.PROJECT.value else TaskKind.SIMPLE
        area = intent.category or item.area_id or (DEFAULT_AREA if inbox_type == InboxType.WORK else "familia")
        task = self._task_payload(
            title=item.text,
            kind=kind,
            area_id=area,
            this_week=intent.this_week,
            due_date=item.due_date.isoformat() if item.due_date else None,
            priority=item.priority,
            objective_id=intent.objective_id or item.objective_id,
            key_result_id=intent.key_result_id or item.key_result_id,
        )
        task["processedFrom"] = {"inboxId": item.id, "inboxType": inbox_type.value}
        impact: Dict[str, Any] = {"tasksCreated": 1, "inboxDeleted": 1}
        minutes = self._load_minutes(task)
        if minutes:
            impact["minutesCommitted"] = minutes
        return ActionPreview(
            intent=intent.name,
            changes=({"inboxId": item.id, "taskId": task["id"], "title": task["title"], "action": "process"},),
            summary=f'Procesar inbox → tarea: "{task["title"]}"',
            impact=impact,
            reason="Procesamiento solicitado por el usuario.",
            payload={"inboxId": item.id, "type": inbox_type.value, "task": task},
        )

    # ------------------------------------------------------------------
    # Areas
    # ------------------------------------------------------------------
    def _create_area(self, intent: it.CreateArea, snapshot: Snapshot, _risk) -> ActionPreview:
        if not intent.area_name:
            return no_action(intent.name, "Falta name para crear area.")
        area_id = slugify(intent.area_name)
        if not area_id:
            return no_action(intent.name, f'Nombre de area invalido: "{intent.area_name}".')
        data = {
            "name": intent.area_name,
            "description": intent.description or "",
            "aliases": list(intent.aliases),
        }
        return ActionPreview(
            intent=intent.name,
            changes=({"areaId": area_id, "name": intent.area_name},),
            summary=f'Crear area: "{intent.area_name}"',
            impact={"areasCreated": 1},
            reason="Creacion solicitada por el usuario.",
            payload={"areaId": area_id, "data": data},
        )

    def _existing_area(self, intent_name: str, snapshot: Snapshot, area_id: str | None, verb: str):
        if not area_id:
            return no_action(intent_name, f"Falta areaId para {verb}.")
        if not any(area.id == area_id for area in snapshot.areas):
            return no_action(intent_name, f"No encontre el area {area_id}.")
        return None

    def _update_area(self, intent: it.UpdateArea, snapshot: Snapshot, _risk) -> ActionPreview:
        failure = self._existing_area(intent.name, snapshot, intent.area_id, "actualizar")
        if failure is not None:
            return failure
        updates = dict(intent.updates)
        if not updates:
            return no_action(intent.name, "No hay cambios que aplicar.")
        return ActionPreview(
            intent=intent.name,
            changes=({"areaId": intent.area_id, "updates": updates},),
            summary=f"Actualizar area: {intent.area_id}",
            impact={"areasUpdated": 1},
            reason="Actualizacion solicitada por el usuario.",
            payload={"areaId": intent.area_id, "updates": updates},
        )

    def _archive_area(self, intent: it.ArchiveArea, snapshot: Snapshot, _risk) -> ActionPreview:
        failure = self._existing_area(intent.name, snapshot, intent.area_id, "archivar")
        if failure is not None:
            return failure
        return ActionPreview(
            intent=intent.name,
            changes=({"areaId": intent.area_id, "action": "archive"},),
            summary=f"Archivar area: {intent.area_id}",
            impact={"areasArchived": 1},
            reason="Archivado solicitado por el usuario.",
            payload={"areaId": intent.area_id},
        )

    # ------------------------------------------------------------------
    # Objectives and key results
    # ------------------------------------------------------------------
    def _create_objective(self, intent: it.CreateObjective, snapshot: Snapshot, _risk) -> ActionPreview:
        if not intent.title or not intent.period:
            return no_action(intent.name, "Falta title o period para crear objetivo.")
        objective_id = self._make_id("obj")
        data = {
            "title": intent.title.strip(),
            "period": intent.period,
            "areaId": intent.area_id,
            "description": intent.description or "",
        }
        return ActionPreview(
            intent=intent.name,
            changes=({"objectiveId": objective_id, "title": data["title"]},),
            summary=f'Crear objetivo: "{data["title"]}"',
            impact={"objectivesCreated": 1},
            reason="Creacion solicitada por el usuario.",
            payload={"objectiveId": objective_id, "data": data},
        )

    def _existing_objective(self, intent_name: str, snapshot: Snapshot, objective_id: str | None, verb: str):
        if not objective_id:
            return no_action(intent_name, f"Falta objectiveId para {verb}.")
        if snapshot.objective(objective_id) is None:
            return no_action(intent_name, f"No encontre el objetivo {objective_id}.")
        return None

    def _update_objective(self, intent: it.UpdateObjective, snapshot: Snapshot, _risk) -> ActionPreview:
        failure = self._existing_objective(intent.name, snapshot, intent.objective_id, "actualizar")
        if failure is not None:
            return failure
        updates = dict(intent.updates)
        if not updates:
            return no_action(intent.name, "No hay cambios que aplicar.")
        return ActionPreview(
            intent=intent.name,
            changes=({"objectiveId": intent.objective_id, "updates": updates},),
            summary=f"Actualizar objetivo: {intent.objective_id}",
            impact={"objectivesUpdated": 1},
            reason="Actualizacion solicitada por el usuario.",
            payload={"objectiveId": intent.objective_id, "updates": updates},
        )

    def _delete_objective(self, intent: it.DeleteObjective, snapshot: Snapshot, _risk) -> ActionPreview:
        failure = self._existing_objective(intent.name, snapshot, intent.objective_id, "eliminar")
        if failure is not None:
            return failure
        return ActionPreview(
            intent=intent.name,
            changes=({"objectiveId": intent.objective_id, "action": "delete"},),
            summary=f"Eliminar objetivo: {intent.objective_id}",
            impact={"objectivesDeleted": 1},
            reason="Eliminacion solicitada por el usuario.",
            payload={"objectiveId": intent.objective_id},
        )

    def _create_key_result(self, intent: it.CreateKeyResult, snapshot: Snapshot, _risk) -> ActionPreview:
        if not intent.objective_id or not intent.title or intent.target_value is None:
            return no_action(intent.name, "Falta objectiveId, title o targetValue para crear KR.")
        if snapshot.objective(intent.objective_id) is None:
            return no_action(intent.name, f"No encontre el objetivo {intent.objective_id}.")
        key_result_id = self._make_id("kr")
        start = intent.start_value if intent.start_value is not None else 0.0
        data = {
            "objectiveId": intent.objective_id,
            "title": intent.title.strip(),
            "targetValue": intent.target_value,
            "startValue": start,
            "currentValue": intent.current_value if intent.current_value is not None else start,
            "metricType": intent.metric_type or "number",
            "unit": intent.unit,
        }
        return ActionPreview(
            intent=intent.name,
            changes=({"keyResultId": key_result_id, "title": data["title"]},),
            summary=f'Crear KR: "{data["title"]}"',
            impact={"keyResultsCreated": 1},
            reason="Creacion solicitada por el usuario.",
            payload={"keyResultId": key_result_id, "data": data},
        )

    def _update_key_result(self, intent, snapshot: Snapshot, _risk) -> ActionPreview:
        if not intent.key_result_id:
            return no_action(intent.name, "Falta keyResultId para actualizar KR.")
        if snapshot.key_result(intent.key_result_id) is None:
            return no_action(intent.name, f"No encontre el KR {intent.key_result_id}.")
        is_progress = isinstance(intent, it.UpdateKeyResultProgress)
        if is_progress:
            if intent.current_value is None:
                return no_action(intent.name, "Falta currentValue para actualizar el progreso del KR.")
            updates: Dict[str, Any] = {"currentValue": intent.current_value}
        else:
            updates = dict(intent.updates)
        if not updates:
            return no_action(intent.name, "No hay cambios que aplicar.")
        return ActionPreview(
            intent=intent.name,
            changes=({"keyResultId": intent.key_result_id, "updates": updates},),
            summary=f"Actualizar KR: {intent.key_result_id}",
            impact={"keyResultsUpdated": 1},
            reason="Actualizacion solicitada por el usuario.",
            payload={"keyResultId": intent.key_result_id, "updates": updates, "isProgressUpdate": is_progress},
        )

    def _delete_key_result(self, intent: it.DeleteKeyResult, snapshot: Snapshot, _risk) -> ActionPreview:
        if not intent.key_result_id:
            return no_action(intent.name, "Falta keyResultId para eliminar KR.")
        if snapshot.key_result(intent.key_result_id) is None:
            return no_action(intent.name, f"No encontre el KR {intent.key_result_id}.")
        return ActionPreview(
            intent=intent.name,
            changes=({"keyResultId": intent.key_result_id, "action": "delete"},),
            summary=f"Eliminar KR: {intent.key_result_id}",
            impact={"keyResultsDeleted": 1},
            reason="Eliminacion solicitada por el usuario.",
            payload={"keyResultId": intent.key_result_id},
        )

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------
    def _block_error(
        self,
        snapshot: Snapshot,
        day: str,
        start_time: str,
        end_time: str,
        exclude_block_id: str | None = None,
    ) -> str | None:
        config = self._capacity_config(snapshot)
        return validate_block(
            start_time,
            end_time,
            snapshot.blocks_on(day),
            work_hours_per_day=config.work_hours_per_day,
            workday_start=self._workday_start,
            exclude_block_id=exclude_block_id,
        )

    def _create_calendar_block(self, intent: it.CreateCalendarBlock, snapshot: Snapshot, _risk) -> ActionPreview:
        if not intent.task_id or not intent.date or not intent.start_time or not intent.end_time:
            return no_action(intent.name, "Falta taskId, date, startTime o endTime para crear bloque.")
        day = normalize_date(intent.date, today=self._today())
        if not day.ok:
            return no_action(intent.name, day.error)
        error = self._block_error(snapshot, day.value, intent.start_time, intent.end_time)
        if error:
            return no_action(intent.name, error)
        payload = {
            "blockId": self._make_id("block"),
            "taskId": intent.task_id,
            "date": day.value,
            "startTime": intent.start_time,
            "endTime": intent.end_time,
            "durationMinutes": block_duration(intent.start_time, intent.end_time),
            "status": intent.status or "scheduled",
            "notes": intent.notes,
        }
        return ActionPreview(
            intent=intent.name,
            changes=(
                {
                    "taskId": intent.task_id,
                    "date": day.value,
                    "startTime": intent.start_time,
                    "endTime": intent.end_time,
                    "action": "create_block",
                },
            ),
            summary=f"Crear bloque {day.value} {intent.start_time}-{intent.end_time}",
            impact={"blocksCreated": 1},
            reason="Creacion solicitada por el usuario.",
            payload=payload,
        )

    def _update_calendar_block(self, intent: it.UpdateCalendarBlock, snapshot: Snapshot, _risk) -> ActionPreview:
        if not intent.block_id:
            return no_action(intent.name, "Falta blockId para actualizar bloque.")
        block = snapshot.block(intent.block_id)
        if block is None:
            return no_action(intent.name, f"No encontre el bloque {intent.block_id}.")
        updates = dict(intent.updates)
        if not updates:
            return no_action(intent.name, "No hay cambios que aplicar.")
        day = block.date
        if "date" in updates:
            normalized = normalize_date(updates["date"], today=self._today())
            if not normalized.ok:
                return no_action(intent.name, normalized.error)
            day = updates["date"] = normalized.value
        start_time = updates.get("startTime") or block.start_time
        end_time = updates.get("endTime") or block.end_time
        if any(key in updates for key in ("date", "startTime", "endTime")):
            error = self._block_error(snapshot, day, start_time, end_time, exclude_block_id=block.id)
            if error:
                return no_action(intent.name, error)
            updates["durationMinutes"] = block_duration(start_time, end_time)
        return ActionPreview(
            intent=intent.name,
            changes=({"blockId": block.id, "updates": updates},),
            summary=f"Actualizar bloque {block.id}",
            impact={"blocksUpdated": 1},
            reason="Actualizacion solicitada por el usuario.",
            payload={"blockId": block.id, "updates": updates},
        )

    def _delete_calendar_block(self, intent: it.DeleteCalendarBlock, snapshot: Snapshot, _risk) -> ActionPreview:
        if not intent.block_id:
            return no_action(intent.name, "Falta blockId para eliminar bloque.")
        if snapshot.block(intent.block_id) is None:
            return no_action(intent.name, f"No encontre el bloque {intent.block_id}.")
        return ActionPreview(
            intent=intent.name,
            changes=({"blockId": intent.block_id, "action": "delete"},),
            summary=f"Eliminar bloque {intent.block_id}",
            impact={"blocksDeleted": 1},
            reason="Eliminacion solicitada por el usuario.",
            payload={"blockId": intent.block_id},
        )

    # ------------------------------------------------------------------
    # Compound intents
    # ------------------------------------------------------------------
    def _create_learning_structure(
        self, intent: it.CreateLearningStructure, snapshot: Snapshot, _risk
    ) -> ActionPreview:
        if not intent.skill or not intent.period:
            return no_action(intent.name, "Falta skill o period para crear estructura de aprendizaje.")
        template_id = intent.template_id if intent.template_id in self._templates else "aprender:skill"
        template = self._templates.get(template_id) or {}
        area = intent.area_id or "aprender"
        skill = intent.skill

        milestones = [dict(m) for m in template.get("milestones") or []]
        module_tpl = template.get("module_milestone")
        if module_tpl and intent.module_count:
            names = list(intent.module_names)
            milestones = [
                {
                    "title": str(module_tpl.get("title", "Modulo {index}")).format(
                        index=i + 1,
                        name=names[i] if i < len(names) else f"Modulo {i + 1}",
                    ),
                    "time_estimate": module_tpl.get("time_estimate") or 120,
                }
                for i in range(intent.module_count)
            ]

        objective_id = self._make_id("obj")
        objective = {
            "title": f"Aprender {skill}",
            "period": intent.period,
            "status": "active",
            "areaId": area,
        }

        key_results = []
        for idx, kr_tpl in enumerate(template.get("key_results") or []):
            target = kr_tpl.get("target_value", 1)
            if target == "modules":
                target = intent.module_count or len(milestones) or 1
            key_results.append(
                {
                    "id": self._make_id("kr"),
                    "objectiveId": objective_id,
                    "title": str(kr_tpl.get("title", "{skill}")).format(skill=skill, target=target),
                    "metricType": kr_tpl.get("metric_type") or "number",
                    "startValue": float(kr_tpl.get("start_value") or 0),
                    "currentValue": float(intent.current_progress or 0) if idx == 0 else 0.0,
                    "targetValue": float(target),
                    "unit": kr_tpl.get("unit"),
                }
            )

        project_title = str(template.get("project_title") or "Aprender {skill}").format(skill=skill)
        task = self._task_payload(
            title=project_title,
            kind=TaskKind.PROJECT,
            area_id=area,
            objective_id=objective_id,
            key_result_id=key_results[0]["id"] if key_results else None,
            milestones=milestones,
        )
        total_minutes = sum(m["timeEstimate"] or 120 for m in task["milestones"])
        total_hours = f"{total_minutes / 60:.1f}"

        changes = [{"type": "objective", "objectiveId": objective_id, "title": objective["title"]}]
        changes.extend({"type": "key_result", "keyResultId": kr["id"], "title": kr["title"]} for kr in key_results)
        changes.append(
            {"type": "project", "taskId": task["id"], "title": task["title"], "milestoneCount": len(task["milestones"])}
        )
        return ActionPreview(
            intent=intent.name,
            changes=tuple(changes),
            summary=(
                f'Crear estructura de aprendizaje: "{skill}"\n'
                f"- 1 Objetivo ({intent.period})\n"
                f"- {len(key_results)} Key Results\n"
                f"- 1 Proyecto con {len(task['milestones'])} milestones ({total_hours}h estimadas)"
            ),
            impact={
                "objectivesCreated": 1,
                "keyResultsCreated": len(key_results),
                "tasksCreated": 1,
                "totalEstimatedHours": float(total_hours),
            },
            reason=f'Estructura de aprendizaje para "{skill}" creada desde template {template_id}.',
            payload={
                "objective": {"objectiveId": objective_id, "data": objective},
                "keyResults": key_results,
                "task": task,
            },
        )

    def _smart_process_inbox(self, intent: it.SmartProcessInbox, snapshot: Snapshot, _risk) -> ActionPreview:
        if not intent.inbox_id and not intent.text:
            return no_action(intent.name, "Falta inboxId o text para procesar inbox.")
        item = None
        if intent.inbox_id:
            raw_type = intent.type if intent.type in ("work", "personal") else None
            inbox_type = InboxType(raw_type) if raw_type else inbox_type_from_id(intent.inbox_id)
            item = snapshot.inbox_item(intent.inbox_id, inbox_type)
        if item is None and not intent.text:
            return no_action(intent.name, "No encontré el item en inbox.")

        text = item.text if item else intent.text
        area = intent.area_id or (item.area_id if item else None) or DEFAULT_AREA
        task = self._task_payload(
            title=text,
            kind=TaskKind.SIMPLE,
            area_id=area,
            this_week=True,
            objective_id=intent.objective_id or (item.objective_id if item else None),
            key_result_id=intent.key_result_id or (item.key_result_id if item else None),
        )
        changes = [
            {"type": "inbox_delete", "inboxId": item.id if item else "new", "text": text},
            {"type": "task_create", "taskId": task["id"], "title": task["title"]},
        ]

        block = None
        if intent.date and intent.start_time:
            day = normalize_date(intent.date, today=self._today())
            if not day.ok:
                return no_action(intent.name, day.error)
            try:
                end_time = add_minutes(intent.start_time, SMART_BLOCK_MINUTES)
            except ValueError:
                return no_action(intent.name, f"Hora invalida: {intent.start_time}.")
            error = self._block_error(snapshot, day.value, intent.start_time, end_time)
            if error:
                return no_action(intent.name, error)
            block = {
                "id": self._make_id("block"),
                "taskId": task["id"],
                "date": day.value,
                "startTime": intent.start_time,
                "endTime": end_time,
                "durationMinutes": SMART_BLOCK_MINUTES,
                "status": "scheduled",
            }
            changes.append(
                {"type": "calendar_block_create", "blockId": block["id"], "date": day.value, "startTime": intent.start_time}
            )

        link = intent.objective_id or intent.key_result_id or area
        summary = (
            f"Procesar inbox → tarea + {'agendada' if block else 'comprometida'}\n"
            f'- "{text}"\n'
            f"- Vinculada a: {link}"
        )
        if block:
            summary += f"\n- Agendada: {block['date']} {block['startTime']}"
        return ActionPreview(
            intent=intent.name,
            changes=tuple(changes),
            summary=summary,
            impact={
                "inboxProcessed": 1,
                "tasksCreated": 1,
                "blocksCreated": 1 if block else 0,
                "minutesCommitted": self._load_minutes(task),
            },
            reason="Procesar inbox item y vincular a objetivo en un solo paso.",
            payload={
                "inboxId": item.id if item else None,
                "inboxType": item.type.value if item else None,
                "task": task,
                "block": block,
            },
        )

    def _plan_and_schedule_week(
        self, intent: it.PlanAndScheduleWeek, snapshot: Snapshot, risk_signals: RiskSignals | None
    ) -> ActionPreview:
        config = self._capacity_config(snapshot)
        risk = self._risk(snapshot, risk_signals)
        today = self._today()
        context = build_plan_context(snapshot.tasks, config, risk, today)
        pack = generate_weekly_plan_pack(snapshot.tasks, config, risk, today)

        candidates = pack.planned
        target = intent.commit_count if intent.commit_count and intent.commit_count > 0 else min(5, len(candidates))
        to_commit = candidates[:target]
        if not to_commit:
            return no_action(
                intent.name,
                "No hay tareas candidatas que quepan en la capacidad de esta semana.",
            )

        usable = context.capacity.usable
        total_minutes = sum(commit_load_minutes(a.task, self._simple_minutes) for a in to_commit)
        total_after = context.load + total_minutes
        remaining_after = usable - total_after
        changes = tuple(
            {
                "type": "task_commit",
                "taskId": action.task_id,
                "title": action.task.title,
                "estimatedMinutes": action.estimated_minutes,
                "minutesCommitted": commit_load_minutes(action.task, self._simple_minutes),
                "explainability": build_explainability(action, context).to_dict(),
            }
            for action in to_commit
        )
        return ActionPreview(
            intent=intent.name,
            changes=changes,
            summary=(
                f"Plan semanal: {len(to_commit)} tarea(s) comprometidas\n"
                f"- Must-do: {len(pack.must_do)}\n"
                f"- Should-do: {len(pack.should_do)}\n"
                f"- Carga total: {format_minutes(total_after)} / {format_minutes(usable)}\n"
                f"- Capacidad restante: {format_minutes(remaining_after)}"
            ),
            impact={
                "tasksCommitted": len(to_commit),
                "totalMinutes": total_minutes,
                "minutesCommitted": total_minutes,
                "capacityUsedPct": round(total_after / usable * 100) if usable > 0 else 0,
            },
            reason="Plan generado por ranking de deadline, riesgo de KR y capacidad.",
            payload={"tasksToCommit": [a.task_id for a in to_commit], "planPack": pack.to_dict()},
        )

    def _batch_reprioritize(
        self, intent: it.BatchReprioritize, snapshot: Snapshot, risk_signals: RiskSignals | None
    ) -> ActionPreview:
        config = self._capacity_config(snapshot)
        capacity = weekly_capacity(config)
        load = weekly_load(snapshot.tasks, config.simple_task_minutes)
        excess = load - capacity.usable
        if excess <= 0:
            return no_action(
                intent.name,
                "No hay sobrecarga detectada. La carga semanal está dentro de la capacidad.",
            )

        risk = self._risk(snapshot, risk_signals)
        context = build_plan_context(snapshot.tasks, config, risk, self._today())
        context = replace(context, load=0)
        ranked = rank_next_best_actions(snapshot.tasks, context, include_committed=True)
        candidates = sorted(ranked, key=lambda a: (a.score, a.task_id))
        candidates = [a for a in candidates if a.breakdown.kr_risk < 60 and a.breakdown.deadline < 60]

        remaining = excess
        to_defer = []
        for candidate in candidates:
            if remaining <= 0:
                break
            to_defer.append(candidate)
            remaining -= candidate.estimated_minutes

        freed = sum(a.estimated_minutes for a in to_defer)
        changes = tuple(
            {
                "type": "task_defer",
                "taskId": a.task_id,
                "title": a.task.title,
                "estimatedMinutes": a.estimated_minutes,
                "reason": "Baja prioridad, sin riesgo estratégico",
            }
            for a in to_defer
        )
        if not to_defer:
            return no_action(
                intent.name,
                f"Sobrecarga de {format_minutes(excess)}, pero todas las tareas comprometidas tienen "
                "fecha limite o riesgo de KR. Revisa la semana manualmente.",
            )
        return ActionPreview(
            intent=intent.name,
            changes=changes,
            summary=(
                f'Redistribuir {len(to_defer)} tarea(s) a "Algún día"\n'
                f"- Sobrecarga: {format_minutes(excess)}\n"
                f"- Liberado: {format_minutes(freed)}"
            ),
            impact={
                "tasksDeferred": len(to_defer),
                "minutesFreed": freed,
                "capacityAfterPct": round((load - freed) / capacity.usable * 100) if capacity.usable > 0 else 0,
            },
            reason="Sobrecarga detectada. Diferir tareas de menor impacto estratégico.",
            payload={"tasksToDefer": [a.task_id for a in to_defer]},
        )

    def _breakdown_milestone(self, intent: it.BreakdownMilestone, snapshot: Snapshot, _risk) -> ActionPreview:
        if intent.ref.empty:
            return no_action(intent.name, "Falta projectId o projectTitle.")
        if not intent.milestone_id and not intent.milestone_title:
            return no_action(intent.name, "Falta milestoneId o milestoneTitle.")

        project, failure = self._resolve_task(intent.name, snapshot, intent.ref)
        if failure is not None:
            return failure
        if not project.is_project:
            return no_action(intent.name, f"El id {project.id} no es un proyecto.")

        if intent.milestone_id:
            milestone = project.milestone(intent.milestone_id)
        else:
            needle = normalize_text(intent.milestone_title)
            milestone = next((m for m in project.milestones if normalize_text(m.title) == needle), None)
        if milestone is None:
            return no_action(intent.name, "No encontré el milestone en el proyecto.")

        count = intent.subtask_count if intent.subtask_count and intent.subtask_count > 0 else 3
        subtasks = [
            self._task_payload(
                title=f"{milestone.title} - Paso {i + 1}",
                kind=TaskKind.SIMPLE,
                area_id=project.area_id,
                this_week=i == 0,
                objective_id=project.objective_id,
                key_result_id=project.key_result_id,
                parent_id=project.id,
            )
            for i in range(count)
        ]
        changes = tuple(
            {
                "type": "subtask_create",
                "taskId": task["id"],
                "title": task["title"],
                "parentId": project.id,
                "thisWeek": i == 0,
            }
            for i, task in enumerate(subtasks)
        )
        return ActionPreview(
            intent=intent.name,
            changes=changes,
            summary=(
                f'Descomponer milestone "{milestone.title}" en {count} sub-tareas\n'
                f"- Proyecto: {project.title}\n"
                "- Comprometida esta semana: 1 (primera sub-tarea)"
            ),
            impact={
                "subtasksCreated": count,
                "tasksCommitted": 1,
                "minutesCommitted": self._load_minutes(subtasks[0]),
            },
            reason="Milestone grande descompuesto para facilitar progreso incremental.",
            payload={"projectId": project.id, "milestoneId": milestone.id, "subtasks": subtasks},
        )


__all__ = [
    "ActionPreview",
    "MutationPreviewBuilder",
    "closest_titles",
    "find_tasks_by_title",
    "infer_inbox_type",
    "inbox_type_from_id",
    "no_action",
    "week_token",
]
