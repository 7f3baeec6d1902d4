import pytest

from core.errors import CapacityVeto
from management.models import CalendarBlock, Snapshot, Task
from planner.guardrails import GuardrailValidator
from planner.preview import ActionPreview, no_action


def _preview(minutes, intent="create_task"):
    return ActionPreview(intent=intent, summary="s", impact={"minutesCommitted": minutes})


def _committed(minutes):
    return Task(id=f"t{minutes}", title="Comprometida", this_week=True, estimated_minutes=minutes)


def test_no_action_and_free_previews_pass():
    validator = GuardrailValidator()
    overloaded = Snapshot(tasks=(_committed(2000),))
    assert validator.validate(no_action("create_task", "nada"), overloaded).allowed
    assert validator.validate(_preview(0), overloaded).allowed


def test_overloaded_week_blocks_new_commitments():
    verdict = GuardrailValidator().validate(_preview(30), Snapshot(tasks=(_committed(2000),)))
    assert not verdict.allowed
    assert verdict.reason.startswith("No puedo comprometer mas trabajo esta semana porque ya estas sobrecargado.")
    assert "(119%)" in verdict.reason
    assert verdict.utilization_pct == 119


def test_overloaded_week_blocks_planning():
    verdict = GuardrailValidator().validate(
        _preview(60, intent="plan_and_schedule_week"), Snapshot(tasks=(_committed(2000),))
    )
    assert verdict.reason.startswith("No puedo planificar tu semana porque ya estas sobrecargado.")
    with pytest.raises(CapacityVeto):
        verdict.raise_for_veto()


def test_preview_that_would_exceed_capacity():
    verdict = GuardrailValidator().validate(_preview(120), Snapshot(tasks=(_committed(1600),)))
    assert not verdict.allowed
    assert verdict.reason == "Esta acción excedería tu capacidad (102% de uso). Reduce compromisos primero."


def test_preview_within_capacity():
    verdict = GuardrailValidator().validate(_preview(60), Snapshot(tasks=(_committed(600),)))
    assert verdict.allowed
    assert verdict.utilization_pct == 39
    verdict.raise_for_veto()


def test_profile_changes_the_limit():
    profile = {"work_hours_per_day": 1, "buffer_percentage": 0, "break_minutes_per_day": 0, "work_days_per_week": 1}
    snapshot = Snapshot(tasks=(_committed(30),), profile=profile)
    assert GuardrailValidator().validate(_preview(30), snapshot).allowed
    assert not GuardrailValidator().validate(_preview(31), snapshot).allowed


def test_simple_task_default_counts_toward_load():
    snapshot = Snapshot(tasks=(Task(id="a", title="A", this_week=True),), profile={"work_days_per_week": 1})
    assert GuardrailValidator(simple_task_minutes=300).validate(_preview(36), snapshot).allowed
    assert not GuardrailValidator(simple_task_minutes=300).validate(_preview(37), snapshot).allowed


def test_calendar_previews_are_checked_against_fresh_blocks():
    taken = CalendarBlock(
        id="b1", task_id="t1", date="2026-03-12", start_time="09:00", end_time="10:00", duration_minutes=60
    )
    snapshot = Snapshot(blocks=(taken,))
    validator = GuardrailValidator()

    create = ActionPreview(
        intent="create_calendar_block",
        summary="s",
        payload={"blockId": "b2", "taskId": "t2", "date": "2026-03-12", "startTime": "09:30", "endTime": "10:30"},
    )
    verdict = validator.validate(create, snapshot)
    assert not verdict.allowed
    assert verdict.reason == "Solapamiento con bloque existente (09:00 - 10:00)"

    # a block may move over its own previous slot
    moved = ActionPreview(
        intent="update_calendar_block",
        summary="s",
        payload={"blockId": "b1", "updates": {"startTime": "09:30", "endTime": "10:30"}},
    )
    assert validator.validate(moved, snapshot).allowed

    smart = ActionPreview(
        intent="smart_process_inbox",
        summary="s",
        payload={"block": {"date": "2026-03-12", "startTime": "09:00", "endTime": "10:00"}},
    )
    assert not validator.validate(smart, snapshot).allowed
    assert validator.validate(ActionPreview(intent="smart_process_inbox", summary="s"), snapshot).allowed


def test_workday_start_bounds_calendar_previews():
    preview = ActionPreview(
        intent="create_calendar_block",
        summary="s",
        payload={"blockId": "b1", "taskId": "t1", "date": "2026-03-12", "startTime": "09:00", "endTime": "10:00"},
    )
    assert GuardrailValidator().validate(preview, Snapshot()).allowed
    verdict = GuardrailValidator(workday_start="10:00").validate(preview, Snapshot())
    assert verdict.reason.startswith("El bloque debe estar dentro del horario laboral")
