"""Capacity guardrails applied to previews before they are offered or executed."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from core.errors import CapacityVeto
from management.constants import SIMPLE_TASK_MINUTES, WORKDAY_START
from management.models import Snapshot

from .calendar import validate_block
from .capacity import build_capacity_config, detect_overload, format_minutes, weekly_capacity, weekly_load
from .preview import ActionPreview

logger = logging.getLogger(__name__)

PLAN_INTENTS = frozenset({"plan_and_schedule_week"})
BLOCK_INTENTS = frozenset({"create_calendar_block", "update_calendar_block", "smart_process_inbox"})


@dataclass(frozen=True)
class GuardrailVerdict:
    allowed: bool
    reason: str | None = None
    utilization_pct: int | None = None

    @classmethod
    def allow(cls, utilization_pct: int | None = None) -> "GuardrailVerdict":
        return cls(True, None, utilization_pct)

    @classmethod
    def veto(cls, reason: str, utilization_pct: int | None = None) -> "GuardrailVerdict":
        return cls(False, reason, utilization_pct)

    def raise_for_veto(self) -> None:
        if not self.allowed:
            raise CapacityVeto(self.reason or "Accion bloqueada por capacidad")


class GuardrailValidator:
    """Recomputes the week against fresh state and vetoes previews that commit too much.

    Calendar previews are checked for overlaps against the same snapshot.
    """

    def __init__(self, simple_task_minutes: int = SIMPLE_TASK_MINUTES, workday_start: str = WORKDAY_START) -> None:
        self._simple_minutes = simple_task_minutes
        self._workday_start = workday_start

    def validate(self, preview: ActionPreview, snapshot: Snapshot) -> GuardrailVerdict:
        if preview.no_action:
            return GuardrailVerdict.allow()
        if preview.intent in BLOCK_INTENTS:
            error = self._block_error(preview, snapshot)
            if error:
                logger.warning(f"guardrail veto (calendar) for {preview.intent}: {error}")
                return GuardrailVerdict.veto(error)
        minutes = preview.minutes_committed
        if minutes <= 0:
            return GuardrailVerdict.allow()

        config = build_capacity_config(snapshot.profile, simple_task_minutes=self._simple_minutes)
        usable = weekly_capacity(config).usable
        load = weekly_load(snapshot.tasks, config.simple_task_minutes)
        overload = detect_overload(load, usable)

        if overload.is_overloaded:
            load_line = (
                f"Carga comprometida: {format_minutes(load)} de {format_minutes(usable)} "
                f"utilizables ({overload.percentage}%)."
            )
            if preview.intent in PLAN_INTENTS:
                reason = (
                    f"No puedo planificar tu semana porque ya estas sobrecargado. {load_line} "
                    'Primero ejecuta "reprioriza" para liberar capacidad.'
                )
            else:
                reason = (
                    f"No puedo comprometer mas trabajo esta semana porque ya estas sobrecargado. {load_line} "
                    'Primero ejecuta "reprioriza" para liberar capacidad.'
                )
            logger.warning(f"guardrail veto (overloaded) for {preview.intent}: load={load} usable={usable}")
            return GuardrailVerdict.veto(reason, overload.percentage)

        if usable <= 0:
            logger.warning(f"guardrail veto (no capacity) for {preview.intent}")
            return GuardrailVerdict.veto(
                "Esta acción excedería tu capacidad (no hay capacidad utilizable). Reduce compromisos primero."
            )

        utilization = round((load + minutes) / usable * 100)
        if load + minutes > usable:
            logger.warning(f"guardrail veto (utilization {utilization}%) for {preview.intent}")
            return GuardrailVerdict.veto(
                f"Esta acción excedería tu capacidad ({utilization}% de uso). Reduce compromisos primero.",
                utilization,
            )
        return GuardrailVerdict.allow(utilization)

    def _block_error(self, preview: ActionPreview, snapshot: Snapshot) -> str | None:
        payload = preview.payload
        exclude = None
        if preview.intent == "update_calendar_block":
            block = snapshot.block(payload.get("blockId"))
            updates = payload.get("updates") or {}
            if block is None or not any(key in updates for key in ("date", "startTime", "endTime")):
                return None
            day = updates.get("date") or block.date
            start_time = updates.get("startTime") or block.start_time
            end_time = updates.get("endTime") or block.end_time
            exclude = block.id
        else:
            block = payload if preview.intent == "create_calendar_block" else payload.get("block")
            if not block:
                return None
            day, start_time, end_time = block["date"], block["startTime"], block["endTime"]
        config = build_capacity_config(snapshot.profile, simple_task_minutes=self._simple_minutes)
        return validate_block(
            start_time,
            end_time,
            snapshot.blocks_on(day),
            work_hours_per_day=config.work_hours_per_day,
            workday_start=self._workday_start,
            exclude_block_id=exclude,
        )


__all__ = ["BLOCK_INTENTS", "GuardrailValidator", "GuardrailVerdict", "PLAN_INTENTS"]
