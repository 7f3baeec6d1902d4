"""Time-block validation: ordering, working window and overlaps."""
from __future__ import annotations

from typing import Iterable

from management.constants import WORKDAY_START
from management.models import CalendarBlock


def parse_clock(value: str) -> int:
    """``"09:30"`` → minutes since midnight. Raises ``ValueError`` on bad input."""

    hours, _, minutes = str(value).strip().partition(":")
    h, m = int(hours), int(minutes or 0)
    if not (0 <= h <= 24 and 0 <= m < 60):
        raise ValueError(f"invalid clock value: {value!r}")
    return h * 60 + m


def format_clock(minutes: int, *, pad_hours: bool = True) -> str:
    h, m = divmod(int(minutes), 60)
    return f"{h:02d}:{m:02d}" if pad_hours else f"{h}:{m:02d}"


def block_duration(start_time: str, end_time: str) -> int:
    return parse_clock(end_time) - parse_clock(start_time)


def add_minutes(start_time: str, minutes: int) -> str:
    return format_clock(parse_clock(start_time) + minutes)


def working_window(work_hours_per_day: float, workday_start: str = WORKDAY_START) -> tuple[int, int]:
    start = parse_clock(workday_start)
    return start, start + int(work_hours_per_day * 60)


def overlaps(start: int, end: int, other_start: int, other_end: int) -> bool:
    """Half-open interval overlap."""

    return start < other_end and end > other_start


def validate_block(
    start_time: str,
    end_time: str,
    existing: Iterable[CalendarBlock],
    *,
    work_hours_per_day: float,
    workday_start: str = WORKDAY_START,
    exclude_block_id: str | None = None,
) -> str | None:
    """Return the reason a block cannot be placed, or ``None`` if it fits."""

    try:
        start = parse_clock(start_time)
        end = parse_clock(end_time)
    except ValueError:
        return f"Hora invalida: {start_time} - {end_time}."
    if end - start <= 0:
        return "La hora de fin debe ser posterior a la hora de inicio."

    window_start, window_end = working_window(work_hours_per_day, workday_start)
    if start < window_start or end > window_end:
        return (
            "El bloque debe estar dentro del horario laboral "
            f"({format_clock(window_start, pad_hours=False)} - {format_clock(window_end, pad_hours=False)})"
        )

    for block in existing:
        if exclude_block_id and block.id == exclude_block_id:
            continue
        if overlaps(start, end, parse_clock(block.start_time), parse_clock(block.end_time)):
            return f"Solapamiento con bloque existente ({block.start_time} - {block.end_time})"
    return None


__all__ = [
    "add_minutes",
    "block_duration",
    "format_clock",
    "overlaps",
    "parse_clock",
    "validate_block",
    "working_window",
]
