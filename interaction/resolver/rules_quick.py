"""Lightweight intent resolver based on handwritten Spanish rules."""
from __future__ import annotations

import re
from typing import Any, Callable, Optional

from .intents import (
    BatchReprioritize,
    CreateInboxItem,
    Intent,
    PlanAndScheduleWeek,
    ResolverMeta,
    collect_intent,
    command_intent,
    parse_tool_call,
)
from .utils.normalize import replace_quotes, strip_accents


AFFIRMATIVE_WORDS = frozenset({"si", "ok", "dale", "hazlo", "de una", "claro", "yes"})
CANCEL_WORDS = frozenset({"cancelar", "cancela", "olvidalo", "no importa", "dejalo"})


def _clean_str(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    text = replace_quotes(value.strip())
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {'"', "'"}:
        text = text[1:-1].strip()
    return text


def _plain(text: str) -> str:
    return strip_accents(text.strip().lower())


def _build_command(name: str, rule: str, **args: Any) -> Intent:
    clean_args = {k: _clean_str(v) for k, v in args.items() if v is not None}
    return command_intent(parse_tool_call(name, clean_args), rule=rule, source="quick", confidence=0.99)


def _build_chat(name: str, text: str) -> Intent:
    return Intent("chat", name=name, text=text, meta=ResolverMeta(rule=name, source="quick"))


# ------------------------------------------------------------------
# Objective creation with slot filling
# ------------------------------------------------------------------
_HOWTO_RE = re.compile(r"\b(como|cómo)\b", re.IGNORECASE)
_CREATE_VERB_RE = re.compile(r"(crea|crear|nuevo|nueva|agrega|agregar|anade|añade)", re.IGNORECASE)
_OBJECTIVE_NOUN_RE = re.compile(r"(objetivo|meta)", re.IGNORECASE)
_OBJECTIVE_QUOTED_RE = re.compile(r'(?:crea|crear|nuevo|nueva)[^"]*(?:objetivo|meta)[^"]*"([^"]+)"', re.IGNORECASE)
_OBJECTIVE_PLAIN_RE = re.compile(
    r"(?:crea|crear|nuevo|nueva|agrega|agregar|anade|añade)[^a-zA-Z0-9]*(?:el|la|un|una)?\s*(?:objetivo|meta)\s*[:.\-]?\s*(.+)$",
    re.IGNORECASE,
)
_TITLE_TRAILERS = (
    re.compile(r"\s+(?:para|en)\s+(?:el\s+)?(?:primer|segundo|tercer|cuarto|\d+)?\s*(?:semestre|trimestre)\b.*$", re.I),
    re.compile(r"\s+(?:para\s+)?(?:\d{4}-Q[1-4]|\d{4}-H[1-2])\b.*$", re.I),
    re.compile(r"[\s.,;:-]+(?:periodo|area|área|descripcion|descripción)\b[\s\S]*$", re.I),
)
_PERIOD_RES = (
    re.compile(r"((?:primer|segundo|tercer|cuarto)\s+(?:semestre|trimestre)\s+(?:del?\s+)?\d{4})", re.I),
    re.compile(r"(\d{4}-(?:Q[1-4]|H[1-2]))", re.I),
    re.compile(r"(?:periodo|period)[:\s]+(.+?)(?:\.|,|;|$)", re.I),
)
_AREA_RE = re.compile(r"(?:area|área)\s+(.+?)(?:\.|,|;|$)", re.I)
_DESCRIPTION_RE = re.compile(r"(?:descripcion|descripción)\s*[:\-]\s*(.+)$", re.I)


def parse_create_objective(text: str) -> Optional[dict[str, Any]]:
    raw = text.strip()
    lower = raw.lower()
    if _HOWTO_RE.search(lower) and ("puedo" in lower or "hago" in lower):
        return None
    if not _CREATE_VERB_RE.search(lower) or not _OBJECTIVE_NOUN_RE.search(lower):
        return None

    match = _OBJECTIVE_QUOTED_RE.search(raw) or _OBJECTIVE_PLAIN_RE.search(raw)
    if not match:
        return None
    title = match.group(1)
    for trailer in _TITLE_TRAILERS:
        title = trailer.sub("", title)
    title = _clean_str(title.strip())
    if not title:
        return None

    period = None
    for pattern in _PERIOD_RES:
        found = pattern.search(raw)
        if found:
            period = found.group(1).strip()
            break
    area_match = _AREA_RE.search(raw)
    area = None
    if area_match:
        area = re.sub(r"^(?:de|y|e)\s+", "", area_match.group(1).strip(), flags=re.I) or None
    description = _DESCRIPTION_RE.search(raw)
    return {
        "title": title,
        "period": period,
        "area": area,
        "description": description.group(1).strip() if description else None,
    }


def _objective_rule(text: str) -> Optional[Intent]:
    parsed = parse_create_objective(text)
    if parsed is None:
        return None
    args = {k: v for k, v in parsed.items() if v is not None}
    missing = () if parsed["period"] else ("period",)
    return collect_intent("create_objective", args=args, missing=missing, rule="objective_slots")


# ------------------------------------------------------------------
# Rename and move
# ------------------------------------------------------------------
_RENAME_WORDS = ("cambia", "cambiar", "renombra", "renombrar")
_RENAME_QUOTED_RE = re.compile(r'(?:cambia|cambiar|renombra|renombrar)[^"]*"(.*?)"[^"]*(?:a|por)[^"]*"(.*?)"', re.I)
_RENAME_PLAIN_RE = re.compile(
    r"(?:cambia|cambiar|renombra|renombrar)[^a-zA-Z0-9]*(?:el nombre (?:del|de la) )?(?:(?:la|el)\s+)?(?:proyecto|tarea)?\s*(.+?)\s+(?:a|por)\s+(.+)$",
    re.I,
)


def _rename_rule(text: str) -> Optional[Intent]:
    lower = text.lower()
    if not any(word in lower for word in _RENAME_WORDS):
        return None
    match = _RENAME_QUOTED_RE.search(text) or _RENAME_PLAIN_RE.search(text)
    if not match or not match.group(1).strip() or not match.group(2).strip():
        return None
    if "proyecto" in lower:
        return _build_command("update_project", "rename", projectTitle=match.group(1), title=match.group(2))
    return _build_command("update_task", "rename", taskTitle=match.group(1), title=match.group(2))


_MOVE_WORDS = ("mueve", "mover", "muévela", "muevela")
_MOVE_TARGET_RE = re.compile(r"\b(?:a|para)\s+(hoy|esta semana|someday|algun dia|algún dia|algún día)\b")
_MOVE_SIMPLE_RE = re.compile(
    r"(?:tarea|proyecto)\s+(.+?)\s+(?:a|para)\s+(hoy|esta semana|someday|algun dia|algún dia|algún día)", re.I
)
_QUOTED_RE = re.compile(r'"(.*?)"')


def _move_target(lower: str) -> Optional[str]:
    match = _MOVE_TARGET_RE.search(lower)
    if match:
        token = match.group(1)
        if token == "hoy":
            return "today"
        if token == "esta semana":
            return "week"
        return "someday"
    target = None
    if "hoy" in lower:
        target = "today"
    if "semana" in lower:
        target = "week"
    if "someday" in lower or "algun dia" in strip_accents(lower):
        target = "someday"
    return target


def _move_rule(text: str) -> Optional[Intent]:
    raw = replace_quotes(text.strip())
    lower = raw.lower()
    archive = any(word in lower for word in ("archiva", "archivar", "archivado"))
    if not any(word in lower for word in _MOVE_WORDS) and not archive:
        return None
    target = _move_target(lower) if any(word in lower for word in _MOVE_WORDS) else None
    if not target and not archive:
        return None

    quoted = _QUOTED_RE.search(raw)
    if quoted and quoted.group(1).strip():
        title = quoted.group(1)
    else:
        simple = _MOVE_SIMPLE_RE.search(raw)
        if not simple:
            return None
        title = simple.group(1)

    status = "archived" if archive else None
    if "proyecto" in lower:
        return _build_command("update_project", "move", projectTitle=title, targetList=target, status=status)
    return _build_command("update_task", "move", taskTitle=title, targetList=target, status=status)


# ------------------------------------------------------------------
# Inbox capture and task creation
# ------------------------------------------------------------------
_AREA_HINTS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bnadar\b|\bgym\b|\bcorrer\b|\bsalud\b"), "salud"),
    (re.compile(r"\bcliente\b|\bagencia\b|\bads\b|\btrabajo\b"), "trabajo"),
    (re.compile(r"\bfamilia\b|\bpareja\b|\bhijo\b"), "familia"),
    (re.compile(r"\byoutube\b|\bpodcast\b|\bblog\b|\bcontenido\b"), "contenido"),
)


def infer_area_from_text(text: str) -> str:
    lower = (text or "").lower()
    for pattern, area in _AREA_HINTS:
        if pattern.search(lower):
            return area
    return "personal"


def _capture(match: re.Match[str]) -> Intent | None:
    text = _clean_str(match.group(1))
    if not text:
        return None
    area = infer_area_from_text(text)
    return command_intent(
        CreateInboxItem(text=text, category=area, area_id=area),
        rule="capture_inbox",
        source="quick",
        confidence=0.99,
    )


def _create_task(match: re.Match[str]) -> Intent | None:
    kind = match.group(1).lower()
    title = match.group(2)
    this_week = False
    trailer = re.search(r"\s+(?:para\s+)?esta semana\s*$", title, re.I)
    if trailer:
        this_week = True
        title = title[: trailer.start()]
    title = _clean_str(title)
    if not title:
        return None
    name = "create_project" if kind == "proyecto" else "create_task"
    return _build_command(name, "create_task", title=title, thisWeek=this_week or None)


_PATTERN_BUILDERS: tuple[tuple[re.Pattern[str], Callable[[re.Match[str]], Intent | None]], ...] = (
    (
        re.compile(r"^(?:planifica|planea|organiza|arma)r?\s+(?:mi\s+|la\s+)?semana\b", re.IGNORECASE),
        lambda m: command_intent(PlanAndScheduleWeek(), rule="plan_week", source="quick", confidence=0.99),
    ),
    (
        re.compile(r"^(?:plan semanal|haz(?:me)? (?:el|un) plan semanal)\b", re.IGNORECASE),
        lambda m: command_intent(PlanAndScheduleWeek(), rule="plan_week", source="quick", confidence=0.99),
    ),
    (
        re.compile(r"^(?:reprioriza|repriorizar|redistribuye|redistribuir)\b", re.IGNORECASE),
        lambda m: command_intent(BatchReprioritize(), rule="reprioritize", source="quick", confidence=0.99),
    ),
    (
        re.compile(
            r"^(?:anota|apunta|captura|recuerdame|recuérdame)(?:\s+en\s+(?:el\s+|la\s+)?(?:inbox|bandeja))?\s*[:\-]?\s*(.+)$",
            re.IGNORECASE,
        ),
        _capture,
    ),
    (
        re.compile(
            r"^(?:crea|crear|agrega|agregar|añade|anade|nueva|nuevo)\s+(?:una?\s+)?(tarea|proyecto)\s*[:\-]?\s*(.+)$",
            re.IGNORECASE,
        ),
        _create_task,
    ),
)


# ------------------------------------------------------------------
# Read-only and conversational rules
# ------------------------------------------------------------------
def is_this_week_query(text: str) -> bool:
    lower = _plain(text)
    mentions_week = "semana" in lower
    return mentions_week and any(word in lower for word in ("carpeta", "lista", "tareas"))


def is_how_to_question(text: str) -> bool:
    lower = text.lower()
    return ("como" in lower or "cómo" in lower) and any(
        word in lower for word in ("puedo", "hago", "funciona", "usar")
    )


def build_how_to_guide(text: str) -> str:
    lower = text.lower()
    if "objetivo" in lower or "okr" in lower or "key result" in lower:
        return (
            "Para objetivos: 1) crea un objetivo con periodo, 2) agrega key results, "
            "3) vincula tareas/proyectos al objetivo, 4) revisa el riesgo en el coach. "
            "Si quieres, te lo hago por chat paso a paso."
        )
    if "inbox" in lower or "bandeja" in lower:
        return (
            "Para Inbox: 1) captura ideas rápidas, 2) procesa cada item a tarea/proyecto, "
            "3) asigna area y prioridad, 4) compromete solo lo que cabe en semana."
        )
    if "calendario" in lower or "bloque" in lower:
        return (
            "Para calendario: 1) elige tarea activa, 2) agenda bloque por hora, "
            "3) evita solapamientos, 4) ajusta si cambia la carga del día."
        )
    return (
        "Puedo guiarte en todo: Inbox, Hoy, Esta Semana, Algun dia, Calendario, Proyectos, Areas y Objetivos. "
        "Dime la acción exacta y te doy pasos o la ejecuto por chat con confirmación."
    )


def is_identity_question(text: str) -> bool:
    lower = _plain(text)
    return any(phrase in lower for phrase in ("tu nombre", "tienes nombre", "como te llamas"))


def is_areas_question(text: str) -> bool:
    lower = _plain(text)
    mentions = re.search(r"\bareas?\b", lower) is not None
    asks = any(word in lower for word in ("cuantas", "cuantos", "cuales", "que areas", "lista"))
    return mentions and (asks or "areas de vida" in lower or "area de vida" in lower)


def is_affirmative(text: str) -> bool:
    return _plain(text) in AFFIRMATIVE_WORDS


def is_cancel(text: str) -> bool:
    return _plain(text).strip(".!") in CANCEL_WORDS


def resolve_quick(text: str) -> Optional[Intent]:
    """Try to resolve ``text`` using the deterministic rules, in priority order."""

    stripped = replace_quotes(text).strip()
    if not stripped:
        return None

    for rule in (_objective_rule, _rename_rule, _move_rule):
        intent = rule(stripped)
        if intent is not None:
            return intent

    for pattern, builder in _PATTERN_BUILDERS:
        match = pattern.match(stripped)
        if not match:
            continue
        intent = builder(match)
        if intent is not None:
            return intent

    if is_this_week_query(stripped):
        return _build_chat("this_week_list", stripped)
    if is_how_to_question(stripped):
        return _build_chat("how_to", build_how_to_guide(stripped))
    if is_identity_question(stripped):
        return _build_chat("identity", stripped)
    if is_areas_question(stripped):
        return _build_chat("areas_list", stripped)
    if is_affirmative(stripped):
        return _build_chat("affirmative", stripped)
    if is_cancel(stripped):
        return _build_chat("cancel", stripped)
    return None


__all__ = [
    "build_how_to_guide",
    "infer_area_from_text",
    "is_affirmative",
    "is_cancel",
    "parse_create_objective",
    "resolve_quick",
]
