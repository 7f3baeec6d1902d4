"""Executor that applies confirmed previews to persisted state."""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Mapping

from core.errors import CollaboratorFailure, EngineError, EntityLookupError, SlotValidationError
from interaction.resolver.intents import MUTATION_INTENTS
from management.constants import KeyResultStatus, TaskStatus
from management.models import Area, CalendarBlock, InboxItem, KeyResult, Milestone, Objective, Task
from management.service import ManagementService
from planner.preview import ActionPreview, week_token
from planner.risk import compute_progress, infer_kr_status

from .registry import get_intent_metadata

logger = logging.getLogger(__name__)

TODAY_TARGETS = {"today", "hoy"}
WEEK_TARGETS = {"week", "esta semana", "semana"}
SOMEDAY_TARGETS = {"someday", "algun dia", "algún dia", "algún día", "algundia"}

_TASK_FIELDS = {
    "title": "title",
    "description": "description",
    "priority": "priority",
    "parentId": "parent_id",
    "objectiveId": "objective_id",
    "keyResultId": "key_result_id",
}

_KR_NUMERIC = {
    "targetValue": "target_value",
    "startValue": "start_value",
    "currentValue": "current_value",
}


@dataclass(frozen=True)
class ExecutionResult:
    ok: bool
    message: str
    intent: str
    result: Any = None
    ms: float = 0.0
    error: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "message": self.message,
            "intent": self.intent,
            "result": self.result,
            "ms": round(self.ms, 2),
            "error": self.error,
        }


def _parse_day(value: Any) -> date | None:
    if value in (None, ""):
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise SlotValidationError(f"Fecha invalida: {value}") from exc


def map_task_updates(task: Task, updates: Mapping[str, Any], now: datetime) -> Task:
    """Apply wire-level updates, including list moves, to ``task`` in place."""

    target = str(updates.get("targetList") or "").strip().lower()
    if target in TODAY_TARGETS:
        task.this_week = False
        task.week_committed = None
        task.due_date = now.date()
    elif target in WEEK_TARGETS:
        task.this_week = True
        task.week_committed = week_token(now.date())
    elif target in SOMEDAY_TARGETS:
        task.this_week = False
        task.week_committed = None
        task.due_date = None
    elif target:
        raise SlotValidationError(f"Lista desconocida: {target}")

    if "thisWeek" in updates:
        task.this_week = bool(updates["thisWeek"])
        task.week_committed = week_token(now.date()) if task.this_week else None

    if "status" in updates:
        try:
            task.status = TaskStatus(str(updates["status"]))
        except ValueError as exc:
            raise SlotValidationError(f"Estado invalido: {updates['status']}") from exc
        task.completed_at = now if task.status == TaskStatus.DONE else None

    for key, attr in _TASK_FIELDS.items():
        if key in updates:
            setattr(task, attr, updates[key])
    area = updates.get("areaId") or updates.get("category")
    if area:
        task.area_id = area
    if "dueDate" in updates:
        task.due_date = _parse_day(updates["dueDate"])
    if "estimatedMinutes" in updates:
        raw = updates["estimatedMinutes"]
        try:
            task.estimated_minutes = int(raw) if raw else None
        except (TypeError, ValueError) as exc:
            raise SlotValidationError(f"estimatedMinutes debe ser numerico: {raw}") from exc
    if "milestones" in updates and isinstance(updates["milestones"], list):
        task.milestones = [
            Milestone.from_dict({"id": f"milestone-{idx + 1}", **m})
            for idx, m in enumerate(updates["milestones"])
            if isinstance(m, Mapping)
        ]
    return task


class MutationExecutor:
    """Applies the payload of a confirmed preview inside one transaction."""

    def __init__(
        self,
        service: ManagementService,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._service = service
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._handlers: Dict[str, Callable[[Mapping[str, Any]], tuple[str, Any]]] = {
            "create_task": self._create_task,
            "create_project": self._create_task,
            "update_task": self._update_task,
            "update_project": self._update_task,
            "delete_task": self._delete_task,
            "delete_project": self._delete_task,
            "create_inbox_item": self._create_inbox_item,
            "update_inbox_item": self._update_inbox_item,
            "delete_inbox_item": self._delete_inbox_item,
            "process_inbox_item": self._process_inbox_item,
            "create_area": self._create_area,
            "update_area": self._update_area,
            "archive_area": self._archive_area,
            "create_objective": self._create_objective,
            "update_objective": self._update_objective,
            "delete_objective": self._delete_objective,
            "create_key_result": self._create_key_result,
            "update_key_result": self._update_key_result,
            "update_key_result_progress": self._update_key_result,
            "delete_key_result": self._delete_key_result,
            "create_calendar_block": self._create_calendar_block,
            "update_calendar_block": self._update_calendar_block,
            "delete_calendar_block": self._delete_calendar_block,
            "create_learning_structure": self._create_learning_structure,
            "smart_process_inbox": self._smart_process_inbox,
            "plan_and_schedule_week": self._plan_and_schedule_week,
            "batch_reprioritize": self._batch_reprioritize,
            "breakdown_milestone": self._breakdown_milestone,
        }
        missing = {cls.name for cls in MUTATION_INTENTS} - set(self._handlers)
        if missing:
            raise RuntimeError(f"No executor handler registered for: {', '.join(sorted(missing))}")

    def execute(self, preview: ActionPreview) -> ExecutionResult:
        meta = get_intent_metadata(preview.intent)
        handler = self._handlers.get(preview.intent)
        if meta is None or handler is None:
            return ExecutionResult(False, f"Intent no soportado: {preview.intent}", preview.intent, error="E_UNKNOWN_INTENT")
        if preview.no_action:
            return ExecutionResult(False, "No hay accion para ejecutar.", preview.intent, error="E_NO_ACTION")

        started = time.perf_counter()
        try:
            with self._service.transaction():
                message, result = handler(preview.payload)
        except CollaboratorFailure:
            logger.warning(f"persistence failed while executing {preview.intent}")
            raise
        except EngineError as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            logger.warning(f"execution of {preview.intent} failed: {exc.code} {exc.message}")
            return ExecutionResult(False, exc.message, preview.intent, ms=elapsed_ms, error=exc.code)
        except Exception:
            logger.exception(f"unexpected failure executing {preview.intent}")
            raise
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        logger.info(f"executed {preview.intent} ({meta.entity}) in {elapsed_ms:.1f}ms: {message}")
        return ExecutionResult(True, message, preview.intent, result=result, ms=elapsed_ms)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _now(self) -> datetime:
        return self._clock().replace(microsecond=0)

    def _insert_task(self, data: Mapping[str, Any]) -> Task:
        task = Task.from_dict(data)
        if self._service.get_task(task.id) is not None:
            task.id = f"{task.id}-{uuid.uuid4().hex[:4]}"
        return self._service.save_task(task)

    def _require_task(self, task_id: Any) -> Task:
        task = self._service.get_task(str(task_id)) if task_id else None
        if task is None:
            raise EntityLookupError("Tarea no encontrada")
        return task

    def _require_inbox(self, inbox_id: Any, inbox_type: Any = None) -> InboxItem:
        item = self._service.get_inbox_item(str(inbox_id)) if inbox_id else None
        if item is None or (inbox_type and item.type.value != inbox_type):
            raise EntityLookupError("Item no encontrado")
        return item

    def _require_area(self, area_id: Any) -> Area:
        area = self._service.get_area(str(area_id)) if area_id else None
        if area is None:
            raise EntityLookupError("Area no encontrada")
        return area

    def _require_objective(self, objective_id: Any) -> Objective:
        objective = self._service.get_objective(str(objective_id)) if objective_id else None
        if objective is None:
            raise EntityLookupError("Objetivo no encontrado")
        return objective

    def _require_key_result(self, key_result_id: Any) -> KeyResult:
        kr = self._service.get_key_result(str(key_result_id)) if key_result_id else None
        if kr is None:
            raise EntityLookupError("KR no encontrado")
        return kr

    def _require_block(self, block_id: Any) -> CalendarBlock:
        block = self._service.get_block(str(block_id)) if block_id else None
        if block is None:
            raise EntityLookupError("Bloque no encontrado")
        return block

    def _commit(self, task: Task) -> None:
        today = self._now().date()
        task.this_week = True
        task.week_committed = week_token(today)
        if task.is_project:
            pending = task.milestone_to_commit()
            if pending is not None:
                task.committed_milestones.append(pending.id)

    def _new_key_result(self, data: Mapping[str, Any], key_result_id: str) -> KeyResult:
        kr = KeyResult(
            id=key_result_id,
            objective_id=str(data["objectiveId"]),
            title=str(data.get("title") or ""),
            start_value=float(data.get("startValue") or 0),
            target_value=float(data.get("targetValue") or 0),
            current_value=float(data.get("currentValue") or data.get("startValue") or 0),
            metric_type=data.get("metricType") or "number",
            unit=data.get("unit"),
            status=KeyResultStatus.ON_TRACK.value,
        )
        return self._service.save_key_result(kr)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    def _create_task(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        task = self._insert_task(payload["task"])
        return f"Creado: {task.title}.", task.to_dict()

    def _update_task(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        task = self._require_task(payload.get("taskId"))
        map_task_updates(task, payload.get("updates") or {}, self._now())
        self._service.save_task(task)
        return f"Actualizado: {task.title}.", task.to_dict()

    def _delete_task(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        if not self._service.delete_task(str(payload.get("taskId"))):
            raise EntityLookupError("Tarea no encontrada")
        return "Tarea eliminada", {"taskId": payload.get("taskId")}

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------
    def _create_inbox_item(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        item = self._service.save_inbox_item(InboxItem.from_dict(payload["item"]))
        return "Item capturado en inbox", item.to_dict()

    def _update_inbox_item(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        item = self._require_inbox(payload.get("inboxId"), payload.get("type"))
        updates = payload.get("updates") or {}
        if "text" in updates:
            item.text = str(updates["text"])
        if updates.get("areaId"):
            item.area_id = updates["areaId"]
        if "dueDate" in updates:
            item.due_date = _parse_day(updates["dueDate"])
        if updates.get("priority"):
            item.priority = updates["priority"]
        if "objectiveId" in updates:
            item.objective_id = updates["objectiveId"]
        if "keyResultId" in updates:
            item.key_result_id = updates["keyResultId"]
        self._service.save_inbox_item(item)
        return "Item actualizado", item.to_dict()

    def _delete_inbox_item(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        item = self._require_inbox(payload.get("inboxId"), payload.get("type"))
        self._service.delete_inbox_item(item.id)
        return "Item eliminado", {"inboxId": item.id}

    def _process_inbox_item(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        item = self._require_inbox(payload.get("inboxId"), payload.get("type"))
        task = self._insert_task(payload["task"])
        self._service.delete_inbox_item(item.id)
        return f"Procesado: {task.title}", task.to_dict()

    # ------------------------------------------------------------------
    # Areas
    # ------------------------------------------------------------------
    def _create_area(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        area_id = str(payload["areaId"])
        if self._service.get_area(area_id) is not None:
            raise SlotValidationError("Area ya existe")
        data = payload.get("data") or {}
        area = Area(
            id=area_id,
            name=str(data.get("name") or area_id),
            aliases=[str(alias) for alias in data.get("aliases") or []],
            description=data.get("description") or "",
        )
        self._service.save_area(area)
        return f"Area creada: {area.name}", area.to_dict()

    def _update_area(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        area = self._require_area(payload.get("areaId"))
        updates = payload.get("updates") or {}
        if updates.get("name"):
            area.name = str(updates["name"])
        if "description" in updates:
            area.description = updates["description"] or ""
        if isinstance(updates.get("aliases"), list):
            area.aliases = [str(alias) for alias in updates["aliases"]]
        if updates.get("status"):
            area.status = str(updates["status"])
        self._service.save_area(area)
        return f"Area actualizada: {area.id}", area.to_dict()

    def _archive_area(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        area = self._require_area(payload.get("areaId"))
        area.status = "archived"
        self._service.save_area(area)
        return f"Area archivada: {area.id}", area.to_dict()

    # ------------------------------------------------------------------
    # Objectives and key results
    # ------------------------------------------------------------------
    def _create_objective(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        data = payload.get("data") or {}
        objective = Objective(
            id=str(payload["objectiveId"]),
            title=str(data.get("title") or ""),
            period=str(data.get("period") or ""),
            status=data.get("status") or "active",
            area_id=data.get("areaId"),
            description=data.get("description") or "",
        )
        self._service.save_objective(objective)
        return f"Objetivo creado: {objective.title}", objective.to_dict()

    def _update_objective(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        objective = self._require_objective(payload.get("objectiveId"))
        updates = payload.get("updates") or {}
        for key, attr in (("title", "title"), ("period", "period"), ("status", "status")):
            if updates.get(key):
                setattr(objective, attr, str(updates[key]))
        if "areaId" in updates:
            objective.area_id = updates["areaId"]
        if "description" in updates:
            objective.description = updates["description"] or ""
        self._service.save_objective(objective)
        return f"Objetivo actualizado: {objective.id}", objective.to_dict()

    def _delete_objective(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        objective = self._require_objective(payload.get("objectiveId"))
        self._service.delete_objective(objective.id)
        return f"Objetivo eliminado: {objective.id}", {"objectiveId": objective.id}

    def _create_key_result(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        data = payload.get("data") or {}
        if self._service.get_objective(str(data.get("objectiveId"))) is None:
            raise SlotValidationError("objectiveId invalido")
        kr = self._new_key_result(data, str(payload["keyResultId"]))
        return f"KR creado: {kr.title}", kr.to_dict()

    def _update_key_result(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        kr = self._require_key_result(payload.get("keyResultId"))
        updates = payload.get("updates") or {}
        for key, attr in _KR_NUMERIC.items():
            if updates.get(key) is not None:
                try:
                    setattr(kr, attr, float(updates[key]))
                except (TypeError, ValueError) as exc:
                    raise SlotValidationError(f"{key} debe ser numerico") from exc
        for key, attr in (("title", "title"), ("metricType", "metric_type"), ("unit", "unit"), ("status", "status")):
            if updates.get(key):
                setattr(kr, attr, str(updates[key]))
        if payload.get("isProgressUpdate") or "currentValue" in updates:
            progress = compute_progress(kr.start_value, kr.current_value, kr.target_value)
            kr.status = infer_kr_status(progress).value
        self._service.save_key_result(kr)
        return f"KR actualizado: {kr.id}", kr.to_dict()

    def _delete_key_result(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        kr = self._require_key_result(payload.get("keyResultId"))
        self._service.delete_key_result(kr.id)
        return f"KR eliminado: {kr.id}", {"keyResultId": kr.id}

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------
    def _create_calendar_block(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        block = CalendarBlock.from_dict({**payload, "id": payload["blockId"]})
        self._service.save_block(block)
        return "Bloque creado.", block.to_dict()

    def _update_calendar_block(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        block = self._require_block(payload.get("blockId"))
        updates = payload.get("updates") or {}
        for key, attr in (
            ("date", "date"),
            ("startTime", "start_time"),
            ("endTime", "end_time"),
            ("status", "status"),
            ("taskId", "task_id"),
        ):
            if updates.get(key):
                setattr(block, attr, str(updates[key]))
        if updates.get("durationMinutes"):
            block.duration_minutes = int(updates["durationMinutes"])
        if "notes" in updates:
            block.notes = updates["notes"]
        self._service.save_block(block)
        return "Bloque actualizado.", block.to_dict()

    def _delete_calendar_block(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        if not self._service.delete_block(str(payload.get("blockId"))):
            raise EntityLookupError("Bloque no encontrado")
        return "Bloque eliminado", {"blockId": payload.get("blockId")}

    # ------------------------------------------------------------------
    # Compound intents
    # ------------------------------------------------------------------
    def _create_learning_structure(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        objective_data = payload["objective"]
        self._create_objective(objective_data)
        key_results = [self._new_key_result(kr, str(kr["id"])) for kr in payload.get("keyResults") or []]
        task = self._insert_task(payload["task"])
        message = (
            f'Estructura de aprendizaje creada: "{objective_data["data"]["title"]}" con {len(key_results)} KRs '
            f'y proyecto "{task.title}" ({len(task.milestones)} milestones).'
        )
        return message, {
            "objectiveId": objective_data["objectiveId"],
            "keyResultIds": [kr.id for kr in key_results],
            "taskId": task.id,
        }

    def _smart_process_inbox(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        inbox_id = payload.get("inboxId")
        if inbox_id:
            item = self._require_inbox(inbox_id, payload.get("inboxType"))
            self._service.delete_inbox_item(item.id)
        task = self._insert_task(payload["task"])
        block_data = payload.get("block")
        block = None
        if block_data:
            block = CalendarBlock.from_dict({**block_data, "taskId": task.id})
            self._service.save_block(block)
        outcome = "agendada" if block else "comprometida a esta semana"
        return f'Inbox procesado: "{task.title}" y {outcome}.', {
            "taskId": task.id,
            "blockId": block.id if block else None,
        }

    def _plan_and_schedule_week(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        committed = []
        for task_id in payload.get("tasksToCommit") or []:
            task = self._service.get_task(str(task_id))
            if task is None or task.this_week or not task.is_active:
                continue
            self._commit(task)
            self._service.save_task(task)
            committed.append(task.id)
        return f"{len(committed)} tarea(s) comprometida(s) para esta semana.", {"committed": committed}

    def _batch_reprioritize(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        deferred = []
        for task_id in payload.get("tasksToDefer") or []:
            task = self._service.get_task(str(task_id))
            if task is None or not task.this_week:
                continue
            task.this_week = False
            task.week_committed = None
            task.committed_milestones = []
            self._service.save_task(task)
            deferred.append(task.id)
        return f'{len(deferred)} tarea(s) movida(s) a "Algún día".', {"deferred": deferred}

    def _breakdown_milestone(self, payload: Mapping[str, Any]) -> tuple[str, Any]:
        self._require_task(payload.get("projectId"))
        created = [self._insert_task(data) for data in payload.get("subtasks") or []]
        return f"Milestone descompuesto en {len(created)} sub-tareas.", {"taskIds": [t.id for t in created]}


__all__ = ["ExecutionResult", "MutationExecutor", "map_task_updates"]
