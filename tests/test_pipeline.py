import threading
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from core.config.loader import load_settings
from core.errors import CollaboratorFailure
from core.pipeline import (
    CANCELLED_MESSAGE,
    IDENTITY_REPLY,
    NOT_FOUND_MESSAGE,
    NOTHING_TO_CANCEL,
    PERSISTENCE_DOWN,
    SLOTS_CANCELLED,
    build_local_pipeline,
    is_vague_response,
)
from core.result import DegradedReason
from management.constants import ActionStatus
from management.models import Task

NOW = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)
CREATE_TASK = 'crea una tarea "Preparar informe" esta semana'


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def oracle_client(response_text=None, exc=None):
    calls = []

    class DummyResponse:
        def raise_for_status(self):
            return None

        def json(self):
            return {"response": response_text}

    class DummyClient:
        def __init__(self, timeout):
            self.timeout = timeout

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc_value, tb):
            return False

        def post(self, url, json):
            calls.append((url, json))
            if exc is not None:
                raise exc
            return DummyResponse()

    DummyClient.calls = calls
    return DummyClient


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def pipeline(clock):
    return build_local_pipeline(load_settings(environ={}), clock=clock)


def oracle_pipeline(clock, client_cls):
    settings = load_settings(environ={})
    settings = {**settings, "oracle": {**settings["oracle"], "enable": True}}
    return build_local_pipeline(settings, clock=clock, http_client_cls=client_cls)


# ------------------------------------------------------------------
# Preview and confirmation
# ------------------------------------------------------------------
def test_preview_then_confirm(pipeline):
    reply = pipeline.handle_message("s1", CREATE_TASK)
    assert reply.source == "quick_preview"
    assert reply.requires_confirmation
    assert reply.tool == "create_task"
    assert reply.expires_at == (NOW + timedelta(minutes=5)).isoformat()
    assert reply.response == 'Crear tarea: "Preparar informe"'
    assert pipeline.service.list_tasks() == []

    outcome = pipeline.confirm_action(reply.action_id)
    assert outcome.status == "confirmed"
    assert outcome.executed
    assert outcome.message == "Listo! Creado: Preparar informe."
    assert [t.title for t in pipeline.service.list_tasks()] == ["Preparar informe"]
    assert len(pipeline.service.list_events("generated")) == 1
    assert len(pipeline.service.list_events("applied")) == 1


def test_second_confirmation_is_rejected(pipeline):
    reply = pipeline.handle_message("s1", CREATE_TASK)
    assert pipeline.confirm_action(reply.action_id).executed
    again = pipeline.confirm_action(reply.action_id)
    assert again.status == "not_found"
    assert again.message == NOT_FOUND_MESSAGE
    assert not again.executed
    assert len(pipeline.service.list_tasks()) == 1


def test_unknown_action(pipeline):
    assert pipeline.confirm_action("act-nope").status == "not_found"


def test_expired_action(pipeline, clock):
    reply = pipeline.handle_message("s1", CREATE_TASK)
    clock.advance(minutes=6)
    outcome = pipeline.confirm_action(reply.action_id)
    assert outcome.status == "expired"
    assert not outcome.executed
    assert pipeline.service.list_tasks() == []
    assert len(pipeline.service.list_events("expired")) == 1
    assert pipeline.confirm_action(reply.action_id).status == "not_found"


def test_cancel_by_confirm_false(pipeline):
    reply = pipeline.handle_message("s1", CREATE_TASK)
    outcome = pipeline.confirm_action(reply.action_id, confirm=False)
    assert outcome.status == "cancelled"
    assert outcome.message == CANCELLED_MESSAGE
    assert pipeline.service.list_tasks() == []


def test_cancel_by_message(pipeline):
    reply = pipeline.handle_message("s1", CREATE_TASK)
    cancelled = pipeline.handle_message("s1", "cancelar")
    assert cancelled.source == "pending_action_cancelled"
    assert cancelled.response == CANCELLED_MESSAGE
    assert pipeline.confirm_action(reply.action_id).status == "not_found"

    nothing = pipeline.handle_message("s1", "cancelar")
    assert nothing.source == "nothing_to_cancel"
    assert nothing.response == NOTHING_TO_CANCEL


def test_no_action_preview_is_not_stored(pipeline):
    reply = pipeline.handle_message("s1", "planifica mi semana")
    assert reply.source == "preview_no_action"
    assert reply.action_id is None
    assert not reply.requires_confirmation
    assert reply.preview["noAction"] is True


# ------------------------------------------------------------------
# Slot filling
# ------------------------------------------------------------------
def test_objective_slot_flow(pipeline):
    started = pipeline.handle_message("s1", 'crea el objetivo "Correr 10k"')
    assert started.source == "slot_fill_started"
    assert started.missing_slot == "period"
    assert started.tool == "create_objective"

    retry = pipeline.handle_message("s1", "pronto")
    assert retry.source == "pending_slot_resolution"
    assert 'Para completar el objetivo "Correr 10k"' in retry.response

    ready = pipeline.handle_message("s1", "primer semestre 2026")
    assert ready.source == "pending_slots_complete"
    assert ready.requires_confirmation
    assert ready.preview["payload"]["data"]["period"] == "2026-H1"

    outcome = pipeline.confirm_action(ready.action_id)
    assert outcome.executed
    objectives = pipeline.service.list_objectives()
    assert [(o.title, o.period) for o in objectives] == [("Correr 10k", "2026-H1")]


def test_objective_with_period_skips_slots(pipeline):
    reply = pipeline.handle_message("s1", 'crea el objetivo "Correr 10k" para el primer semestre 2026')
    assert reply.source == "pending_slots_complete"
    assert reply.requires_confirmation


def test_slot_filling_can_be_cancelled(pipeline):
    pipeline.handle_message("s1", 'crea el objetivo "Correr 10k"')
    reply = pipeline.handle_message("s1", "cancelar")
    assert reply.source == "pending_slot_cancelled"
    assert reply.response == SLOTS_CANCELLED
    assert len(pipeline.service.list_events("slot_fill_cancelled")) == 1

    after = pipeline.handle_message("s1", "2026-Q2")
    assert after.source == "data_fallback"


def test_new_command_abandons_slot_filling(pipeline):
    pipeline.handle_message("s1", 'crea el objetivo "Correr 10k"')
    reply = pipeline.handle_message("s1", CREATE_TASK)
    assert reply.source == "quick_preview"
    assert pipeline.handle_message("s1", "2026-Q2").source == "data_fallback"


# ------------------------------------------------------------------
# Guardrails
# ------------------------------------------------------------------
def test_guardrail_veto_at_preview(pipeline):
    pipeline.service.set_capacity_profile(
        {"work_hours_per_day": 1, "buffer_percentage": 0, "break_minutes_per_day": 0, "work_days_per_week": 1}
    )
    pipeline.service.save_task(Task(id="a", title="A", this_week=True))
    reply = pipeline.handle_message("s1", 'crea una tarea "X" esta semana')
    assert reply.source == "guardrail_veto"
    assert reply.action_id is None
    assert reply.response == "Esta acción excedería tu capacidad (200% de uso). Reduce compromisos primero."
    assert len(pipeline.service.list_events("rejected")) == 1


def test_guardrail_veto_at_confirm(pipeline):
    reply = pipeline.handle_message("s1", CREATE_TASK)
    pipeline.service.save_task(Task(id="big", title="Grande", this_week=True, estimated_minutes=1650))

    outcome = pipeline.confirm_action(reply.action_id)
    assert outcome.status == "vetoed"
    assert not outcome.executed
    assert outcome.message.startswith("Esta acción excedería tu capacidad")
    assert [t.id for t in pipeline.service.list_tasks()] == ["big"]
    assert len(pipeline.service.list_events("vetoed")) == 1
    assert pipeline.confirm_action(reply.action_id).status == "not_found"


# ------------------------------------------------------------------
# Read-only replies and fallbacks
# ------------------------------------------------------------------
def test_conversational_replies(pipeline):
    pipeline.service.save_task(Task(id="a", title="Informe", this_week=True))
    assert pipeline.handle_message("s1", "¿cómo te llamas?").response == IDENTITY_REPLY
    week = pipeline.handle_message("s1", "que tareas tengo esta semana")
    assert week.source == "this_week_list"
    assert week.response == 'Estas son tus tareas activas en "Esta Semana" (1):\n- Informe'
    areas = pipeline.handle_message("s1", "cuantas areas tengo")
    assert areas.source == "areas_list"


def test_oracle_disabled_uses_data_fallback(pipeline):
    reply = pipeline.handle_message("s1", "hola")
    assert reply.source == "data_fallback"
    assert reply.degraded == DegradedReason.ORACLE_DISABLED.value
    assert reply.response.startswith("Estado actual:")
    assert reply.to_dict()["responseSource"] == "data_fallback"


def test_persistence_failure_degrades(pipeline):
    pipeline.service.db.close()
    reply = pipeline.handle_message("s1", CREATE_TASK)
    assert reply.source == "handler_fallback"
    assert reply.degraded == DegradedReason.PERSISTENCE_UNAVAILABLE.value
    assert reply.response == PERSISTENCE_DOWN
    with pytest.raises(CollaboratorFailure):
        pipeline.confirm_action("act-1")


def test_risk_signals_degrade_without_blocking(pipeline, monkeypatch):
    def boom():
        raise CollaboratorFailure("risk store offline")

    monkeypatch.setattr(pipeline.risk_provider, "fetch_risk_signals", boom)
    result = pipeline.fetch_risk_signals()
    assert result.reason == DegradedReason.RISK_SIGNALS_UNAVAILABLE
    assert result.value.risks == ()

    reply = pipeline.handle_message("s1", CREATE_TASK)
    assert reply.requires_confirmation
    assert reply.degraded == DegradedReason.RISK_SIGNALS_UNAVAILABLE.value


# ------------------------------------------------------------------
# Oracle
# ------------------------------------------------------------------
def test_oracle_command_is_previewed(clock):
    client = oracle_client('{"intent": "create_inbox_item", "args": {"text": "Comprar regalo", "type": "personal"}}')
    pipeline = oracle_pipeline(clock, client)
    reply = pipeline.handle_message("s1", "necesito acordarme de comprar un regalo")
    assert reply.source == "oracle_preview"
    assert reply.tool == "create_inbox_item"
    assert reply.preview["payload"]["item"]["text"] == "Comprar regalo"
    assert client.calls[0][0] == "http://127.0.0.1:11434/api/generate"


def test_oracle_prose_reply(clock):
    text = "Claro, te ayudo a ordenar tu semana paso a paso."
    pipeline = oracle_pipeline(clock, oracle_client(text))
    reply = pipeline.handle_message("s1", "ayudame a ordenarme")
    assert reply.source == "oracle"
    assert reply.response == text


def test_vague_oracle_reply_uses_quality_fallback(clock):
    pipeline = oracle_pipeline(clock, oracle_client("Parece que hubo un problema al consultar tus datos."))
    reply = pipeline.handle_message("s1", "que hago hoy")
    assert reply.source == "quality_fallback"
    assert reply.response.startswith("Estado actual:")
    assert len(pipeline.service.list_events("quality_fallback")) == 1


def test_invalid_tool_call_falls_back(clock):
    pipeline = oracle_pipeline(clock, oracle_client('{"intent": "launch_rockets", "args": {}}'))
    reply = pipeline.handle_message("s1", "lanza cohetes")
    assert reply.source == "data_fallback"
    assert reply.degraded == DegradedReason.ORACLE_INVALID_OUTPUT.value
    assert "No pude usar el modo avanzado en este turno (invalid_output)" in reply.response


def test_oracle_timeout_falls_back(clock):
    pipeline = oracle_pipeline(clock, oracle_client(exc=httpx.TimeoutException("slow")))
    reply = pipeline.handle_message("s1", "hola")
    assert reply.source == "data_fallback"
    assert reply.degraded == DegradedReason.ORACLE_TIMEOUT.value


def test_affirmative_accepts_inbox_offer(clock):
    offer = "Puedo guardarlo como recordatorio en tu bandeja de entrada. ¿Lo hago?"
    pipeline = oracle_pipeline(clock, oracle_client(offer))
    assert pipeline.handle_message("s1", "quiero llamar a mi hijo").source == "oracle"

    reply = pipeline.handle_message("s1", "sí")
    assert reply.source == "affirmative_continuation_preview"
    item = reply.preview["payload"]["item"]
    assert item["text"] == "llamar a mi hijo"
    assert item["areaId"] == "familia"
    assert pipeline.confirm_action(reply.action_id).executed


def test_is_vague_response():
    assert is_vague_response("")
    assert is_vague_response("No puedo acceder a la información actual de tus tareas.")
    assert not is_vague_response("Listo")
    assert not is_vague_response("Te propongo empezar por el informe del cliente.")


def test_action_status_after_confirm(pipeline):
    reply = pipeline.handle_message("s1", CREATE_TASK)
    pipeline.confirm_action(reply.action_id)
    rows = pipeline.service.db.query("SELECT status FROM pending_actions WHERE action_id = ?", (reply.action_id,))
    assert rows[0]["status"] == ActionStatus.CONFIRMED.value


# ------------------------------------------------------------------
# Concurrent confirmations
# ------------------------------------------------------------------
def _run_concurrently(*calls):
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def run(index, call):
        barrier.wait()
        results[index] = call()

    threads = [threading.Thread(target=run, args=(i, call)) for i, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results


def test_concurrent_confirmations_execute_once(pipeline):
    reply = pipeline.handle_message("s1", CREATE_TASK)
    outcomes = _run_concurrently(*[lambda: pipeline.confirm_action(reply.action_id)] * 6)

    assert sum(o.executed for o in outcomes) == 1
    assert sorted(o.status for o in outcomes) == ["confirmed"] + ["not_found"] * 5
    assert len(pipeline.service.list_tasks()) == 1
    assert len(pipeline.service.list_events("applied")) == 1


def test_conflicting_sessions_confirm_in_either_order(pipeline):
    pipeline.service.set_capacity_profile(
        {"work_hours_per_day": 1, "buffer_percentage": 0, "break_minutes_per_day": 0, "work_days_per_week": 1}
    )
    first = pipeline.handle_message("s1", 'crea una tarea "Informe A" esta semana')
    second = pipeline.handle_message("s2", 'crea una tarea "Informe B" esta semana')
    assert first.requires_confirmation and second.requires_confirmation

    outcomes = _run_concurrently(
        lambda: pipeline.confirm_action(first.action_id),
        lambda: pipeline.confirm_action(second.action_id),
    )
    # the guardrail re-check races with the other session's write; either order is valid
    assert {o.status for o in outcomes} <= {"confirmed", "vetoed"}
    executed = [o for o in outcomes if o.executed]
    assert executed
    assert len(pipeline.service.list_tasks()) == len(executed)
    for outcome in outcomes:
        assert pipeline.confirm_action(outcome.action_id).status == "not_found"


# ------------------------------------------------------------------
# Failures after the claim
# ------------------------------------------------------------------
def _action_status(pipeline, action_id):
    rows = pipeline.service.db.query("SELECT status FROM pending_actions WHERE action_id = ?", (action_id,))
    return rows[0]["status"]


def test_persistence_failure_after_claim_keeps_action_retryable(pipeline, monkeypatch):
    reply = pipeline.handle_message("s1", CREATE_TASK)

    def offline():
        raise CollaboratorFailure("database offline")

    with monkeypatch.context() as patch:
        patch.setattr(pipeline.service, "read_snapshot", offline)
        with pytest.raises(CollaboratorFailure):
            pipeline.confirm_action(reply.action_id)
    assert _action_status(pipeline, reply.action_id) == ActionStatus.PENDING.value
    assert pipeline.service.list_tasks() == []

    outcome = pipeline.confirm_action(reply.action_id)
    assert outcome.status == "confirmed"
    assert outcome.executed
    assert [t.title for t in pipeline.service.list_tasks()] == ["Preparar informe"]
    assert _action_status(pipeline, reply.action_id) == ActionStatus.CONFIRMED.value


def test_unexpected_executor_error_returns_action_to_pending(pipeline, monkeypatch):
    reply = pipeline.handle_message("s1", CREATE_TASK)

    def broken(task):
        raise RuntimeError("disk full")

    with monkeypatch.context() as patch:
        patch.setattr(pipeline.service, "save_task", broken)
        with pytest.raises(RuntimeError):
            pipeline.confirm_action(reply.action_id)
    assert _action_status(pipeline, reply.action_id) == ActionStatus.PENDING.value
    assert pipeline.confirm_action(reply.action_id).executed


def test_calendar_overlap_is_rechecked_at_confirm(clock):
    call = (
        '{"intent": "create_calendar_block", "args": '
        '{"taskId": "t1", "date": "2026-03-12", "startTime": "09:00", "endTime": "10:00"}}'
    )
    pipeline = oracle_pipeline(clock, oracle_client(call))
    pipeline.service.save_task(Task(id="t1", title="Informe"))
    first = pipeline.handle_message("s1", "necesito tiempo para el informe")
    second = pipeline.handle_message("s2", "necesito tiempo para el informe")
    assert first.requires_confirmation and second.requires_confirmation

    assert pipeline.confirm_action(first.action_id).status == "confirmed"
    outcome = pipeline.confirm_action(second.action_id)
    assert outcome.status == "vetoed"
    assert not outcome.executed
    assert outcome.message == "Solapamiento con bloque existente (09:00 - 10:00)"
    assert len(pipeline.service.list_blocks(day="2026-03-12")) == 1
