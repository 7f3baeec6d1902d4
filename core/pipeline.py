"""Shared pipeline wiring Resolver → Preview → Guardrails → Confirmation → Executor."""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from core.conversation import (
    ConversationState,
    ConversationStateMachine,
    ConversationStore,
    SqliteConversationStore,
)
from core.errors import CollaboratorFailure, EngineError, IntentValidationError
from core.pending import PendingActionStore
from core.result import DegradedReason, Result
from executor.executor import ExecutionResult, MutationExecutor
from interaction.resolver.intents import CreateInboxItem, Intent, MutationIntent, parse_tool_call
from interaction.resolver.resolver import ResolverConfig, ResolverService
from interaction.resolver.rules_quick import infer_area_from_text
from management.constants import WORKDAY_START, ActionStatus, ConversationPhase, TaskKind, TaskStatus
from management.models import Snapshot
from management.service import ManagementService
from planner.guardrails import GuardrailValidator
from planner.preview import ActionPreview, MutationPreviewBuilder
from planner.risk import RiskSignalProvider, RiskSignals, SnapshotRiskProvider

logger = logging.getLogger(__name__)

IDENTITY_REPLY = (
    "Soy Coach Momentum, tu coach de productividad. Puedo ayudarte a planear tu semana, "
    "ajustar sobrecarga y mantener foco en tus objetivos."
)
NOT_FOUND_MESSAGE = "Accion no encontrada o ya procesada"
EXPIRED_MESSAGE = "Accion expirada. Solicita una nueva propuesta."
CANCELLED_MESSAGE = "Accion cancelada. No se realizaron cambios."
NOTHING_TO_CANCEL = "No hay ninguna accion pendiente que cancelar."
SLOTS_CANCELLED = "Listo, descarte lo que estabamos armando. No se realizaron cambios."
PERSISTENCE_DOWN = "No pude acceder a tus datos en este momento. Intenta de nuevo en unos minutos."
MAX_LISTED = 25

VAGUE_RESPONSE_PATTERNS = (
    re.compile(r"parece que hubo un problema", re.I),
    re.compile(r"no puedo acceder a la informaci[oó]n actual", re.I),
    re.compile(r"actualmente no puedo acceder", re.I),
    re.compile(r"no puedo acceder", re.I),
    re.compile(r"intenta nuevamente m[aá]s tarde", re.I),
    re.compile(r"verifica si hay un problema con el sistema", re.I),
    re.compile(r"^soy tu coach de productividad", re.I),
    re.compile(r"no tengo un nombre personal", re.I),
)


def is_vague_response(text: str | None) -> bool:
    if not text or not text.strip():
        return True
    trimmed = text.strip()
    if len(trimmed) < 24:
        return False
    return any(p.search(trimmed) for p in VAGUE_RESPONSE_PATTERNS)


def looks_like_inbox_offer(text: str | None) -> bool:
    lower = (text or "").lower()
    return "recordatorio" in lower and ("bandeja" in lower or "inbox" in lower)


def format_this_week_list(snapshot: Snapshot) -> str:
    tasks = [t for t in snapshot.tasks if t.this_week and t.status == TaskStatus.ACTIVE]
    if not tasks:
        return 'No tienes tareas activas en "Esta Semana".'
    lines = [f'Estas son tus tareas activas en "Esta Semana" ({len(tasks)}):']
    lines.extend(f"- {t.title}" for t in tasks[:MAX_LISTED])
    if len(tasks) > MAX_LISTED:
        lines.append(f"... y {len(tasks) - MAX_LISTED} mas.")
    return "\n".join(lines)


def format_areas_list(snapshot: Snapshot) -> str:
    areas = snapshot.active_areas()
    if not areas:
        return "No tienes areas activas configuradas en este momento."
    lines = [f"Tienes {len(areas)} area(s) activa(s):"]
    lines.extend(f"- {a.name}" for a in areas)
    return "\n".join(lines)


def build_data_backed_fallback(text: str, snapshot: Snapshot, *, degraded: str | None = None) -> str:
    """Deterministic answer built from current data when no better reply exists."""

    week_active = sum(1 for t in snapshot.tasks if t.this_week and t.status == TaskStatus.ACTIVE)
    week_done = sum(1 for t in snapshot.tasks if t.this_week and t.status == TaskStatus.DONE)
    projects = sum(1 for t in snapshot.tasks if t.kind == TaskKind.PROJECT and t.status == TaskStatus.ACTIVE)
    lines = []
    if degraded:
        lines.append(
            f"No pude usar el modo avanzado en este turno ({degraded}), "
            "pero puedo ayudarte con un plan basado en datos actuales."
        )
    lines.append(
        f"Estado actual: {week_active} tarea(s) activas esta semana, {week_done} completada(s), "
        f"{len(snapshot.inbox)} item(s) en inbox, {projects} proyecto(s) activo(s)."
    )
    lower = text.lower()
    if "trimestre" in lower or "quarter" in lower:
        lines.append(
            "Plan sugerido: 1) define 1-3 objetivos hasta la fecha limite, 2) compromete solo tareas "
            "de alto impacto esta semana, 3) bloquea tiempos de foco hoy."
        )
    elif "hoy" in lower or "dia" in lower:
        lines.append(
            "Siguiente paso recomendado: elige 1 tarea critica y 1 tarea de soporte para hoy, "
            "luego te propongo bloques."
        )
    elif "semana" in lower:
        lines.append("Siguiente paso recomendado: te propongo un plan semanal equilibrado por capacidad y objetivos.")
    else:
        lines.append("Puedo ayudarte con plan semanal, ajuste por sobrecarga o revision de objetivos.")
    return "\n".join(lines)


@dataclass(frozen=True)
class CoachReply:
    session_id: str
    response: str
    source: str
    action_id: str | None = None
    preview: Mapping[str, Any] | None = None
    requires_confirmation: bool = False
    expires_at: str | None = None
    degraded: str | None = None
    missing_slot: str | None = None
    tool: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "response": self.response,
            "tool": self.tool,
            "actionId": self.action_id,
            "preview": dict(self.preview) if self.preview is not None else None,
            "requiresConfirmation": self.requires_confirmation,
            "expiresAt": self.expires_at,
            "degraded": self.degraded,
            "missingSlot": self.missing_slot,
            "responseSource": self.source,
        }


@dataclass(frozen=True)
class ConfirmOutcome:
    """Result of ``confirm_action``.

    ``status`` is one of ``not_found``, ``expired``, ``cancelled``,
    ``vetoed`` or ``confirmed``; only ``confirmed`` may carry an execution.
    """

    status: str
    action_id: str
    message: str
    executed: bool = False
    result: Mapping[str, Any] | None = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "actionId": self.action_id,
            "executed": self.executed,
            "response": self.message,
            "result": dict(self.result) if self.result is not None else None,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CoachPipeline:
    def __init__(
        self,
        *,
        service: ManagementService,
        resolver: ResolverService,
        builder: MutationPreviewBuilder,
        guardrails: GuardrailValidator,
        executor: MutationExecutor,
        pending: PendingActionStore,
        machine: ConversationStateMachine,
        risk_provider: RiskSignalProvider,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._service = service
        self._resolver = resolver
        self._builder = builder
        self._guardrails = guardrails
        self._executor = executor
        self._pending = pending
        self._machine = machine
        self._risk_provider = risk_provider
        self._clock = clock or _utcnow

    @property
    def service(self) -> ManagementService:
        return self._service

    @property
    def risk_provider(self) -> RiskSignalProvider:
        return self._risk_provider

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    def handle_message(self, session_id: str | None, text: str) -> CoachReply:
        session_id = session_id or f"cs-{uuid.uuid4().hex[:12]}"
        text = (text or "").strip()
        try:
            state = self._machine.record_user(self._machine.load(session_id), text)
            reply = self._dispatch(state, text)
            self._machine.record_coach(self._machine.load(session_id), reply.response)
        except CollaboratorFailure as exc:
            logger.warning(f"collaborator failure for session {session_id}: {exc.message}")
            reply = self._degraded_reply(session_id, text, DegradedReason.PERSISTENCE_UNAVAILABLE.value)
        return reply

    def _dispatch(self, state: ConversationState, text: str) -> CoachReply:
        session_id = state.session_id
        intent = self._resolver.resolve(text)

        if state.phase == ConversationPhase.COLLECTING_SLOTS:
            if intent.kind == "chat" and intent.name == "cancel":
                self._machine.clear(session_id)
                self._service.log_event("slot_fill_cancelled", {"sessionId": session_id, "intent": state.intent})
                return CoachReply(session_id, SLOTS_CANCELLED, "pending_slot_cancelled")
            if intent.kind in ("command", "collect"):
                logger.info(f"session {session_id} left slot filling for {intent.name}")
                state = self._machine.save(state.cleared())
            else:
                return self._continue_slots(state, text)

        if intent.kind == "command" and intent.mutation is not None:
            return self._propose(session_id, intent.mutation, source=f"{intent.meta.source or 'quick'}_preview")
        if intent.kind == "collect":
            return self._begin_slots(state, intent)
        return self._chat(state, intent, text)

    def _chat(self, state: ConversationState, intent: Intent, text: str) -> CoachReply:
        session_id = state.session_id
        name = intent.name
        if name == "how_to":
            return CoachReply(session_id, intent.text or "", "howto_guide")
        if name == "identity":
            return CoachReply(session_id, IDENTITY_REPLY, "identity")
        if name == "this_week_list":
            return CoachReply(session_id, format_this_week_list(self._service.read_snapshot()), "this_week_list")
        if name == "areas_list":
            return CoachReply(session_id, format_areas_list(self._service.read_snapshot()), "areas_list")
        if name == "cancel":
            return self._cancel_pending(state)
        if name == "affirmative":
            reply = self._affirmative_followup(state)
            if reply is not None:
                return reply
        if name == "oracle":
            if not is_vague_response(intent.text):
                return CoachReply(session_id, intent.text or "", "oracle")
            self._service.log_event(
                "quality_fallback", {"sessionId": session_id, "reason": "vague_response_detected"}
            )
            snapshot = self._service.read_snapshot()
            return CoachReply(session_id, build_data_backed_fallback(text, snapshot), "quality_fallback")

        degraded = intent.meta.degraded
        shown = degraded if degraded and degraded != DegradedReason.ORACLE_DISABLED.value else None
        snapshot = self._service.read_snapshot()
        return CoachReply(
            session_id,
            build_data_backed_fallback(text, snapshot, degraded=shown),
            "data_fallback",
            degraded=degraded,
        )

    def _degraded_reply(self, session_id: str, text: str, reason: str) -> CoachReply:
        try:
            response = build_data_backed_fallback(text, self._service.read_snapshot(), degraded=reason)
        except CollaboratorFailure:
            response = PERSISTENCE_DOWN
        return CoachReply(session_id, response, "handler_fallback", degraded=reason)

    # ------------------------------------------------------------------
    # Slot filling
    # ------------------------------------------------------------------
    def today(self) -> date:
        return self._clock().date()

    def _begin_slots(self, state: ConversationState, intent: Intent) -> CoachReply:
        snapshot = self._service.read_snapshot()
        step = self._machine.begin(
            state,
            intent.name or "",
            intent.args,
            intent.missing,
            today=self.today(),
            areas=snapshot.active_areas(),
            slot_action_id=f"pa-{uuid.uuid4().hex[:12]}",
        )
        if step.complete:
            return self._propose_from_slots(state.session_id, intent.name or "", step.args or {})
        self._service.log_event(
            "slot_fill_started",
            {"sessionId": state.session_id, "intent": intent.name, "missing": list(step.state.missing)},
        )
        return CoachReply(
            state.session_id,
            step.question or "",
            "slot_fill_started",
            missing_slot=step.state.next_slot,
            tool=intent.name,
        )

    def _continue_slots(self, state: ConversationState, text: str) -> CoachReply:
        snapshot = self._service.read_snapshot()
        step = self._machine.answer(state, text, today=self.today(), areas=snapshot.active_areas())
        if not step.complete:
            return CoachReply(
                state.session_id,
                step.question or "",
                "pending_slot_resolution",
                missing_slot=step.state.next_slot,
                tool=state.intent,
            )
        self._service.log_event("pending_slots_ready", {"sessionId": state.session_id, "intent": state.intent})
        return self._propose_from_slots(state.session_id, state.intent or "", step.args or {})

    def _propose_from_slots(self, session_id: str, name: str, args: Mapping[str, Any]) -> CoachReply:
        try:
            mutation = parse_tool_call(name, dict(args))
        except IntentValidationError as exc:
            self._machine.clear(session_id)
            return CoachReply(session_id, exc.message, "pending_slots_invalid")
        return self._propose(session_id, mutation, source="pending_slots_complete")

    # ------------------------------------------------------------------
    # Previews
    # ------------------------------------------------------------------
    def fetch_risk_signals(self) -> Result[RiskSignals]:
        try:
            return Result.success(self._risk_provider.fetch_risk_signals())
        except CollaboratorFailure as exc:
            logger.warning(f"risk signals unavailable: {exc.message}")
            return Result.degraded(DegradedReason.RISK_SIGNALS_UNAVAILABLE, exc.message, fallback=RiskSignals())

    def _propose(self, session_id: str, mutation: MutationIntent, *, source: str) -> CoachReply:
        snapshot = self._service.read_snapshot()
        risk = self.fetch_risk_signals()
        degraded = risk.reason.value if risk.reason else None
        try:
            preview = self._builder.build(mutation, snapshot, risk_signals=risk.unwrap_or(RiskSignals()))
        except EngineError as exc:
            logger.info(f"preview for {mutation.name} rejected: {exc.code} {exc.message}")
            self._machine.clear(session_id)
            return CoachReply(session_id, exc.message, "preview_rejected", degraded=degraded, tool=mutation.name)

        if preview.no_action:
            self._machine.clear(session_id)
            self._service.log_event("preview_no_action", {"sessionId": session_id, "intent": mutation.name})
            return CoachReply(
                session_id,
                preview.summary,
                "preview_no_action",
                preview=preview.to_dict(),
                degraded=degraded,
                tool=mutation.name,
            )

        verdict = self._guardrails.validate(preview, snapshot)
        if not verdict.allowed:
            self._machine.clear(session_id)
            self._service.log_event(
                "rejected", {"sessionId": session_id, "intent": mutation.name, "reason": verdict.reason}
            )
            return CoachReply(session_id, verdict.reason or "", "guardrail_veto", degraded=degraded, tool=mutation.name)

        action = self._pending.create(session_id, preview)
        self._machine.mark_ready(self._machine.load(session_id), action.action_id)
        self._service.log_event(
            "generated",
            {"sessionId": session_id, "actionId": action.action_id, "intent": mutation.name, "source": source},
        )
        return CoachReply(
            session_id,
            preview.summary,
            source,
            action_id=action.action_id,
            preview=preview.to_dict(),
            requires_confirmation=True,
            expires_at=action.expires_at.isoformat(),
            degraded=degraded,
            tool=mutation.name,
        )

    def _affirmative_followup(self, state: ConversationState) -> Optional[CoachReply]:
        if not looks_like_inbox_offer(state.last_coach_message):
            return None
        goal = (state.previous_user_message() or "").strip()
        text = re.sub(r"^quiero\s+", "", goal, flags=re.I).strip() or goal
        if not text:
            return None
        area = infer_area_from_text(text)
        mutation = CreateInboxItem(text=text, type="personal", area_id=area, category=area)
        reply = self._propose(state.session_id, mutation, source="affirmative_continuation_preview")
        return reply if reply.requires_confirmation else None

    def _cancel_pending(self, state: ConversationState) -> CoachReply:
        if state.pending_action_id:
            outcome = self.confirm_action(state.pending_action_id, confirm=False)
            if outcome.status == "cancelled":
                return CoachReply(state.session_id, outcome.message, "pending_action_cancelled")
        self._machine.clear(state.session_id)
        return CoachReply(state.session_id, NOTHING_TO_CANCEL, "nothing_to_cancel")

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------
    def confirm_action(self, action_id: str, confirm: bool = True) -> ConfirmOutcome:
        action = self._pending.get(action_id)
        if action is None or action.status != ActionStatus.PENDING:
            return ConfirmOutcome("not_found", action_id, NOT_FOUND_MESSAGE)
        session_id = action.session_id

        if action.is_expired(self._pending.now()):
            if not self._pending.transition(action_id, ActionStatus.EXPIRED):
                return ConfirmOutcome("not_found", action_id, NOT_FOUND_MESSAGE)
            self._machine.clear(session_id)
            self._service.log_event("expired", {"actionId": action_id, "intent": action.preview.intent})
            return ConfirmOutcome("expired", action_id, EXPIRED_MESSAGE)

        if not confirm:
            if not self._pending.transition(action_id, ActionStatus.CANCELLED):
                return ConfirmOutcome("not_found", action_id, NOT_FOUND_MESSAGE)
            self._machine.clear(session_id)
            self._service.log_event("rejected", {"actionId": action_id, "intent": action.preview.intent})
            return ConfirmOutcome("cancelled", action_id, CANCELLED_MESSAGE)

        # claim the action before touching state so a second confirm cannot run it again
        if not self._pending.transition(action_id, ActionStatus.CONFIRMED):
            return ConfirmOutcome("not_found", action_id, NOT_FOUND_MESSAGE)
        self._machine.clear(session_id)

        try:
            verdict = self._guardrails.validate(action.preview, self._service.read_snapshot())
            if not verdict.allowed:
                self._pending.transition(action_id, ActionStatus.VETOED, from_status=ActionStatus.CONFIRMED)
                self._service.log_event(
                    "vetoed", {"actionId": action_id, "intent": action.preview.intent, "reason": verdict.reason}
                )
                return ConfirmOutcome("vetoed", action_id, verdict.reason or "")
            result = self._executor.execute(action.preview)
        except Exception:
            self._release(action_id)
            raise
        self._service.log_event("applied", {"actionId": action_id, **self._result_event(action.preview, result)})
        message = f"Listo! {result.message}" if result.ok else f"Error: {result.message}"
        return ConfirmOutcome("confirmed", action_id, message, executed=result.ok, result=result.to_dict())

    def _release(self, action_id: str) -> None:
        """Return a claimed action to pending after a failure so it can be retried."""

        logger.warning(f"confirmation of {action_id} failed; returning it to pending")
        try:
            self._pending.transition(action_id, ActionStatus.PENDING, from_status=ActionStatus.CONFIRMED)
        except CollaboratorFailure as exc:
            logger.error(f"could not release action {action_id}: {exc.message}")

    @staticmethod
    def _result_event(preview: ActionPreview, result: ExecutionResult) -> Dict[str, Any]:
        return {"intent": preview.intent, "ok": result.ok, "message": result.message, "error": result.error}


def build_local_pipeline(
    settings: Mapping[str, Any],
    *,
    service: ManagementService | None = None,
    store: ConversationStore | None = None,
    clock: Callable[[], datetime] | None = None,
    http_client_cls: type[httpx.Client] = httpx.Client,
) -> CoachPipeline:
    """Wire every collaborator from a settings mapping as loaded by ``load_settings``."""

    clock = clock or _utcnow
    if service is None:
        db_path = (settings.get("database") or {}).get("path") or ":memory:"
        service = ManagementService(db_path, clock=clock, capacity_defaults=settings.get("capacity") or {})
    simple_minutes = int((settings.get("estimates") or {}).get("simple_task_minutes") or 60)
    ttl = float((settings.get("conversation") or {}).get("action_ttl_minutes") or 5)
    workday_start = str((settings.get("calendar") or {}).get("workday_start") or WORKDAY_START)
    return CoachPipeline(
        service=service,
        resolver=ResolverService(config=ResolverConfig.from_settings(settings), http_client_cls=http_client_cls),
        builder=MutationPreviewBuilder(settings, clock=clock),
        guardrails=GuardrailValidator(simple_minutes, workday_start),
        executor=MutationExecutor(service, clock=clock),
        pending=PendingActionStore(service.db, ttl_minutes=ttl, clock=clock),
        machine=ConversationStateMachine(store or SqliteConversationStore(service.db, clock=clock)),
        risk_provider=SnapshotRiskProvider(service, clock),
        clock=clock,
    )


__all__ = [
    "CoachPipeline",
    "CoachReply",
    "ConfirmOutcome",
    "IDENTITY_REPLY",
    "build_data_backed_fallback",
    "build_local_pipeline",
    "format_areas_list",
    "format_this_week_list",
    "is_vague_response",
]
