"""Per-session conversation state and the slot-filling state machine."""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, Mapping, Protocol

from core.errors import CollaboratorFailure
from interaction.resolver.utils.slots import normalize_slot
from management.constants import ConversationPhase
from management.database import ManagementDatabase
from management.models import Area

logger = logging.getLogger(__name__)

MAX_TRANSCRIPT = 5

SLOT_QUESTIONS: Dict[str, str] = {
    "period": '¿Para que periodo es? (Ejemplo: "primer semestre 2026", "2026-Q2")',
    "area": '¿En que area lo ubico? (Ejemplo: "trabajo", "salud")',
    "date": '¿Para que fecha? (Ejemplo: "mañana", "2026-03-15")',
}

# slot name -> argument name once normalised
SLOT_ARGS: Dict[str, str] = {"period": "period", "area": "areaId", "date": "date"}

GOAL_LABELS: Dict[str, str] = {"create_objective": "objetivo"}


@dataclass(frozen=True)
class ConversationState:
    session_id: str
    phase: ConversationPhase = ConversationPhase.IDLE
    intent: str | None = None
    goal: str | None = None
    slot_action_id: str | None = None
    args: Mapping[str, Any] = field(default_factory=dict)
    missing: tuple[str, ...] = ()
    pending_action_id: str | None = None
    last_coach_message: str | None = None
    recent_user_messages: tuple[str, ...] = ()

    @property
    def next_slot(self) -> str | None:
        return self.missing[0] if self.missing else None

    def previous_user_message(self) -> str | None:
        """The user message before the current one, if any."""

        if len(self.recent_user_messages) < 2:
            return None
        return self.recent_user_messages[-2]

    def cleared(self) -> "ConversationState":
        """Drop the in-progress intent; the transcript survives."""

        return ConversationState(
            session_id=self.session_id,
            last_coach_message=self.last_coach_message,
            recent_user_messages=self.recent_user_messages,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "phase": self.phase.value,
            "intent": self.intent,
            "goal": self.goal,
            "slotActionId": self.slot_action_id,
            "args": dict(self.args),
            "missing": list(self.missing),
            "pendingActionId": self.pending_action_id,
            "lastCoachMessage": self.last_coach_message,
            "recentUserMessages": list(self.recent_user_messages),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConversationState":
        return cls(
            session_id=str(data["sessionId"]),
            phase=ConversationPhase(data.get("phase") or ConversationPhase.IDLE.value),
            intent=data.get("intent"),
            goal=data.get("goal"),
            slot_action_id=data.get("slotActionId"),
            args=dict(data.get("args") or {}),
            missing=tuple(data.get("missing") or ()),
            pending_action_id=data.get("pendingActionId"),
            last_coach_message=data.get("lastCoachMessage"),
            recent_user_messages=tuple(data.get("recentUserMessages") or ()),
        )


class ConversationStore(Protocol):
    def load(self, session_id: str) -> ConversationState:
        ...

    def save(self, state: ConversationState) -> None:
        ...


class InMemoryConversationStore:
    """Process-local store, mostly for tests and the CLI."""

    def __init__(self) -> None:
        self._states: Dict[str, ConversationState] = {}
        self._lock = threading.Lock()

    def load(self, session_id: str) -> ConversationState:
        with self._lock:
            return self._states.get(session_id) or ConversationState(session_id)

    def save(self, state: ConversationState) -> None:
        with self._lock:
            self._states[state.session_id] = state


class SqliteConversationStore:
    def __init__(self, db: ManagementDatabase, *, clock: Callable[[], datetime] | None = None) -> None:
        self._db = db
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def load(self, session_id: str) -> ConversationState:
        try:
            rows = self._db.query("SELECT state FROM conversation_state WHERE session_id = ?", (session_id,))
        except sqlite3.Error as exc:
            raise CollaboratorFailure("Persistence unavailable while loading conversation state") from exc
        if not rows:
            return ConversationState(session_id)
        return ConversationState.from_dict(json.loads(rows[0]["state"]))

    def save(self, state: ConversationState) -> None:
        try:
            self._db.execute(
                "INSERT OR REPLACE INTO conversation_state (session_id, state, updated_at) VALUES (?, ?, ?)",
                (
                    state.session_id,
                    json.dumps(state.to_dict(), ensure_ascii=False),
                    self._clock().isoformat(),
                ),
            )
        except sqlite3.Error as exc:
            raise CollaboratorFailure("Persistence unavailable while saving conversation state") from exc


@dataclass(frozen=True)
class SlotStep:
    """Outcome of feeding text to a collecting session.

    ``question`` is set while slots are still missing; ``args`` once every
    required slot has a normalised value.
    """

    state: ConversationState
    question: str | None = None
    args: Mapping[str, Any] | None = None

    @property
    def complete(self) -> bool:
        return self.args is not None


def slot_question(slot: str) -> str:
    return SLOT_QUESTIONS.get(slot, f"¿Cual es el valor de {slot}?")


class ConversationStateMachine:
    """Drives ``idle -> collecting_slots -> ready_for_confirmation -> idle``."""

    def __init__(self, store: ConversationStore) -> None:
        self._store = store

    def load(self, session_id: str) -> ConversationState:
        return self._store.load(session_id)

    def save(self, state: ConversationState) -> ConversationState:
        self._store.save(state)
        return state

    def record_user(self, state: ConversationState, text: str) -> ConversationState:
        recent = (state.recent_user_messages + (text,))[-MAX_TRANSCRIPT:]
        return self.save(replace(state, recent_user_messages=recent))

    def record_coach(self, state: ConversationState, text: str) -> ConversationState:
        return self.save(replace(state, last_coach_message=text))

    def clear(self, session_id: str) -> ConversationState:
        state = self._store.load(session_id)
        logger.info(f"conversation {session_id}: {state.phase.value} -> idle")
        return self.save(state.cleared())

    # ------------------------------------------------------------------
    # Slot filling
    # ------------------------------------------------------------------
    def begin(
        self,
        state: ConversationState,
        intent: str,
        args: Mapping[str, Any],
        missing: Iterable[str],
        *,
        today: date,
        areas: Iterable[Area] = (),
        slot_action_id: str | None = None,
    ) -> SlotStep:
        """Normalise what the first message already provided and ask for the rest."""

        areas = tuple(areas)
        resolved: Dict[str, Any] = {k: v for k, v in args.items() if k not in SLOT_ARGS}
        still_missing = list(missing)
        for slot, arg_name in SLOT_ARGS.items():
            raw = args.get(slot)
            if raw is None or slot in still_missing:
                continue
            normalized = normalize_slot(slot, raw, today=today, areas=areas)
            if normalized.ok:
                resolved[arg_name] = normalized.value
            else:
                logger.debug(f"slot {slot} from first message rejected: {normalized.error}")
                still_missing.append(slot)

        goal = str(args.get("title") or "").strip() or None
        if not still_missing:
            return SlotStep(state=self.save(state.cleared()), args=resolved)

        state = replace(
            state,
            phase=ConversationPhase.COLLECTING_SLOTS,
            intent=intent,
            goal=goal,
            slot_action_id=slot_action_id,
            args=resolved,
            missing=tuple(still_missing),
            pending_action_id=None,
        )
        logger.info(f"conversation {state.session_id}: idle -> collecting_slots ({intent}, missing {still_missing})")
        label = GOAL_LABELS.get(intent, "accion")
        question = f"Para completar este {label} solo falta: {slot_question(still_missing[0])}"
        return SlotStep(state=self.save(state), question=question)

    def answer(
        self,
        state: ConversationState,
        text: str,
        *,
        today: date,
        areas: Iterable[Area] = (),
    ) -> SlotStep:
        """Treat ``text`` as the answer to the outstanding slot."""

        slot = state.next_slot
        if state.phase != ConversationPhase.COLLECTING_SLOTS or slot is None:
            raise ValueError(f"session {state.session_id} is not collecting slots")

        normalized = normalize_slot(slot, text, today=today, areas=tuple(areas))
        if not normalized.ok:
            logger.debug(f"slot {slot} rejected for {state.session_id}: {normalized.error}")
            question = f"{normalized.error}. {self._continuation(state, slot)}"
            return SlotStep(state=state, question=question)

        args = dict(state.args)
        args[SLOT_ARGS.get(slot, slot)] = normalized.value
        missing = state.missing[1:]
        if missing:
            state = self.save(replace(state, args=args, missing=missing))
            return SlotStep(state=state, question=self._continuation(state, missing[0]))

        state = self.save(replace(state, phase=ConversationPhase.READY_FOR_CONFIRMATION, args=args, missing=()))
        logger.info(f"conversation {state.session_id}: collecting_slots -> ready_for_confirmation")
        return SlotStep(state=state, args=args)

    def mark_ready(self, state: ConversationState, action_id: str) -> ConversationState:
        return self.save(
            replace(state, phase=ConversationPhase.READY_FOR_CONFIRMATION, pending_action_id=action_id, missing=())
        )

    @staticmethod
    def _continuation(state: ConversationState, slot: str) -> str:
        label = GOAL_LABELS.get(state.intent or "", "accion")
        goal = f'el {label} "{state.goal}"' if state.goal else "esta accion"
        return f"Para completar {goal} solo falta: {slot_question(slot)}"


__all__ = [
    "ConversationState",
    "ConversationStateMachine",
    "ConversationStore",
    "InMemoryConversationStore",
    "SLOT_QUESTIONS",
    "SlotStep",
    "SqliteConversationStore",
    "slot_question",
]
