"""Normalisation of Spanish slot values: periods, dates and areas."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Iterable

from management.models import Area

from .normalize import normalize_text, strip_accents

logger = logging.getLogger(__name__)

_YEAR = r"(?:del?\s+)?(\d{4})"

_PERIOD_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(rf"primer semestre\s*{_YEAR}", re.I), "H1"),
    (re.compile(rf"segundo semestre\s*{_YEAR}", re.I), "H2"),
    (re.compile(rf"semestre 1\s*{_YEAR}", re.I), "H1"),
    (re.compile(rf"semestre 2\s*{_YEAR}", re.I), "H2"),
    (re.compile(r"(\d{4})-H1", re.I), "H1"),
    (re.compile(r"(\d{4})-H2", re.I), "H2"),
    (re.compile(rf"primer trimestre\s*{_YEAR}", re.I), "Q1"),
    (re.compile(rf"segundo trimestre\s*{_YEAR}", re.I), "Q2"),
    (re.compile(rf"tercer trimestre\s*{_YEAR}", re.I), "Q3"),
    (re.compile(rf"cuarto trimestre\s*{_YEAR}", re.I), "Q4"),
    (re.compile(rf"trimestre 1\s*{_YEAR}", re.I), "Q1"),
    (re.compile(rf"trimestre 2\s*{_YEAR}", re.I), "Q2"),
    (re.compile(rf"trimestre 3\s*{_YEAR}", re.I), "Q3"),
    (re.compile(rf"trimestre 4\s*{_YEAR}", re.I), "Q4"),
    (re.compile(r"(\d{4})-Q1", re.I), "Q1"),
    (re.compile(r"(\d{4})-Q2", re.I), "Q2"),
    (re.compile(r"(\d{4})-Q3", re.I), "Q3"),
    (re.compile(r"(\d{4})-Q4", re.I), "Q4"),
    (re.compile(r"^(\d{4})$"), ""),
)

_RELATIVE_DAYS = {
    "hoy": 0,
    "manana": 1,
    "pasado": 2,
    "pasado manana": 2,
}

# Python weekday numbering, Monday == 0
_WEEKDAYS = {
    "lunes": 0,
    "martes": 1,
    "miercoles": 2,
    "jueves": 3,
    "viernes": 4,
    "sabado": 5,
    "domingo": 6,
}

_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_SLASH_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


@dataclass(frozen=True)
class Normalized:
    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize_period(raw: Any) -> Normalized:
    """``"primer semestre 2026"`` → ``"2026-H1"``; ``"2026-Q2"`` stays as is."""

    if not raw or not str(raw).strip():
        return Normalized(error="Periodo requerido")
    trimmed = str(raw).strip()
    for pattern, suffix in _PERIOD_PATTERNS:
        match = pattern.search(trimmed)
        if match:
            year = match.group(1)
            value = f"{year}-{suffix}" if suffix else year
            logger.debug(f"period normalized: {trimmed!r} -> {value}")
            return Normalized(value=value)
    return Normalized(
        error=(
            f'No pude interpretar el periodo "{trimmed}". '
            'Ejemplos: "primer semestre 2026", "segundo trimestre 2026", "2026-Q1"'
        )
    )


def normalize_date(raw: Any, *, today: date) -> Normalized:
    if not raw or not str(raw).strip():
        return Normalized(error="Fecha requerida")
    trimmed = str(raw).strip().lower()
    key = strip_accents(trimmed)

    if key in _RELATIVE_DAYS:
        value = (today + timedelta(days=_RELATIVE_DAYS[key])).isoformat()
        logger.debug(f"date normalized (relative): {trimmed!r} -> {value}")
        return Normalized(value=value)

    if key in _WEEKDAYS:
        delta = _WEEKDAYS[key] - today.weekday()
        if delta <= 0:
            delta += 7
        value = (today + timedelta(days=delta)).isoformat()
        logger.debug(f"date normalized (weekday): {trimmed!r} -> {value}")
        return Normalized(value=value)

    candidate = None
    if _ISO_RE.match(trimmed):
        candidate = trimmed
    else:
        match = _SLASH_RE.match(trimmed)
        if match:
            day, month, year = match.groups()
            candidate = f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    if candidate is not None:
        try:
            date.fromisoformat(candidate)
        except ValueError:
            return Normalized(error=f'La fecha "{trimmed}" no existe')
        return Normalized(value=candidate)

    return Normalized(
        error=f'No pude interpretar la fecha "{trimmed}". Ejemplos: "hoy", "mañana", "lunes", "2026-02-15"'
    )


def normalize_area(raw: Any, areas: Iterable[Area]) -> Normalized:
    """Map a free-text label to an area id via exact id, name, alias or partial match."""

    if not raw or not str(raw).strip():
        return Normalized()
    trimmed = str(raw).strip().lower()
    needle = normalize_text(trimmed)
    areas = list(areas)

    for area in areas:
        if normalize_text(area.id) == needle:
            return Normalized(value=area.id)
    for area in areas:
        if normalize_text(area.name) == needle:
            return Normalized(value=area.id)
    for area in areas:
        if any(normalize_text(alias) == needle for alias in area.aliases):
            return Normalized(value=area.id)
    for area in areas:
        name = normalize_text(area.name)
        if name and (needle in name or name in needle):
            logger.debug(f"area normalized (partial): {trimmed!r} -> {area.id}")
            return Normalized(value=area.id)

    names = ", ".join(area.name for area in areas)
    return Normalized(error=f'No encontré el área "{trimmed}". Áreas disponibles: {names}')


def normalize_slot(name: str, raw: Any, *, today: date, areas: Iterable[Area] = ()) -> Normalized:
    if name == "period":
        return normalize_period(raw)
    if name in ("date", "dueDate"):
        return normalize_date(raw, today=today)
    if name in ("area", "areaId"):
        return normalize_area(raw, areas)
    return Normalized(value=raw)


__all__ = ["Normalized", "normalize_area", "normalize_date", "normalize_period", "normalize_slot"]
