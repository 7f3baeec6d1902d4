import pytest

from management.models import CalendarBlock
from planner.calendar import add_minutes, block_duration, overlaps, parse_clock, validate_block


def _block(block_id, start, end):
    return CalendarBlock(
        id=block_id,
        task_id="t1",
        date="2026-03-12",
        start_time=start,
        end_time=end,
        duration_minutes=block_duration(start, end),
    )


def test_clock_helpers():
    assert parse_clock("09:30") == 570
    assert block_duration("09:00", "10:15") == 75
    assert add_minutes("16:30", 60) == "17:30"
    with pytest.raises(ValueError):
        parse_clock("25:00")
    with pytest.raises(ValueError):
        parse_clock("nueve")


def test_half_open_overlap():
    assert overlaps(600, 660, 630, 700)
    assert not overlaps(600, 660, 660, 720)


def test_block_must_end_after_start():
    error = validate_block("11:00", "10:00", [], work_hours_per_day=8)
    assert error == "La hora de fin debe ser posterior a la hora de inicio."


def test_block_outside_working_window():
    error = validate_block("08:00", "09:30", [], work_hours_per_day=8)
    assert error == "El bloque debe estar dentro del horario laboral (9:00 - 17:00)"
    assert validate_block("16:00", "17:00", [], work_hours_per_day=8) is None
    assert validate_block("16:00", "17:30", [], work_hours_per_day=8) is not None


def test_block_overlap_and_adjacent():
    existing = [_block("b1", "10:00", "11:00")]
    error = validate_block("10:30", "11:30", existing, work_hours_per_day=8)
    assert error == "Solapamiento con bloque existente (10:00 - 11:00)"
    assert validate_block("11:00", "12:00", existing, work_hours_per_day=8) is None


def test_moving_a_block_ignores_itself():
    existing = [_block("b1", "10:00", "11:00")]
    assert validate_block("10:30", "11:30", existing, work_hours_per_day=8, exclude_block_id="b1") is None


def test_invalid_clock_text():
    assert validate_block("diez", "11:00", [], work_hours_per_day=8) == "Hora invalida: diez - 11:00."
