"""Key result risk assessment and the risk-signal provider."""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Protocol

from management.constants import KeyResultStatus, RiskLevel
from management.models import KeyResult, Objective

logger = logging.getLogger(__name__)

_QUARTER_RE = re.compile(r"^(\d{4})-Q([1-4])$")
_HALF_RE = re.compile(r"^(\d{4})-H([12])$")
_YEAR_RE = re.compile(r"^(\d{4})$")

_DAY_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class RiskReason:
    code: str
    label: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "label": self.label}


@dataclass(frozen=True)
class RiskAssessment:
    level: RiskLevel
    score: int
    reasons: tuple[RiskReason, ...]
    expected_progress: float | None
    deviation: float | None
    days_without_update: int | None

    def has_reason(self, code: str) -> bool:
        return any(reason.code == code for reason in self.reasons)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "score": self.score,
            "reasons": [r.to_dict() for r in self.reasons],
            "expectedProgress": self.expected_progress,
            "deviation": self.deviation,
            "daysWithoutUpdate": self.days_without_update,
        }


@dataclass(frozen=True)
class RiskSignal:
    id: str
    title: str
    progress: float
    status: str
    objective_id: str
    objective_title: str
    objective_period: str
    risk: RiskAssessment
    current_value: float = 0.0
    target_value: float = 0.0
    objective_area_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "progress": self.progress,
            "status": self.status,
            "currentValue": self.current_value,
            "targetValue": self.target_value,
            "objectiveId": self.objective_id,
            "objectiveTitle": self.objective_title,
            "objectivePeriod": self.objective_period,
            "objectiveAreaId": self.objective_area_id,
            "risk": self.risk.to_dict(),
        }


@dataclass(frozen=True)
class RiskSignals:
    risks: tuple[RiskSignal, ...] = ()
    focus_week: tuple[RiskSignal, ...] = ()
    summary: dict[str, int] = field(default_factory=dict)
    generated_at: datetime | None = None

    def find(self, key_result_id: str | None) -> RiskSignal | None:
        if not key_result_id:
            return None
        for signal in self.risks:
            if signal.id == key_result_id:
                return signal
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "generatedAt": self.generated_at.isoformat() if self.generated_at else None,
            "summary": dict(self.summary),
            "risks": [r.to_dict() for r in self.risks],
            "focusWeek": [r.to_dict() for r in self.focus_week],
        }


class RiskSignalProvider(Protocol):
    def fetch_risk_signals(self) -> RiskSignals:
        ...


# ------------------------------------------------------------------
# Progress helpers
# ------------------------------------------------------------------
def compute_progress(start: float, current: float, target: float) -> float:
    span = target - start
    if span == 0:
        return 100.0 if current >= target else 0.0
    raw = (current - start) / span * 100
    return max(0.0, min(100.0, round(raw, 2)))


def infer_kr_status(progress: float) -> KeyResultStatus:
    if progress >= 100:
        return KeyResultStatus.DONE
    if progress >= 70:
        return KeyResultStatus.ON_TRACK
    if progress >= 40:
        return KeyResultStatus.AT_RISK
    return KeyResultStatus.OFF_TRACK


def parse_period_range(period: str | None) -> tuple[datetime, datetime] | None:
    """Return the UTC ``[start, end)`` range for ``YYYY-Qn``, ``YYYY-Hn`` or ``YYYY``."""

    if not period or not isinstance(period, str):
        return None
    match = _QUARTER_RE.match(period)
    if match:
        year, quarter = int(match.group(1)), int(match.group(2))
        return _month_range(year, (quarter - 1) * 3, 3)
    match = _HALF_RE.match(period)
    if match:
        year, half = int(match.group(1)), int(match.group(2))
        return _month_range(year, (half - 1) * 6, 6)
    match = _YEAR_RE.match(period)
    if match:
        year = int(match.group(1))
        return _month_range(year, 0, 12)
    return None


def _month_range(year: int, start_month: int, months: int) -> tuple[datetime, datetime]:
    start = datetime(year, start_month + 1, 1, tzinfo=timezone.utc)
    end_month = start_month + months
    end = datetime(year + end_month // 12, end_month % 12 + 1, 1, tzinfo=timezone.utc)
    return start, end


def compute_expected_progress(period: str | None, now: datetime) -> float | None:
    span = parse_period_range(period)
    if span is None:
        return None
    start, end = span
    now = _aware(now)
    if now <= start:
        return 0.0
    if now >= end:
        return 100.0
    elapsed = (now - start).total_seconds() / (end - start).total_seconds()
    return max(0.0, min(100.0, round(elapsed * 100, 2)))


def days_without_update(updated_at: datetime | None, now: datetime) -> int | None:
    if updated_at is None:
        return None
    delta = (_aware(now) - _aware(updated_at)).total_seconds()
    return max(0, math.floor(delta / _DAY_SECONDS))


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ------------------------------------------------------------------
# Assessment
# ------------------------------------------------------------------
def assess_kr_risk(kr: KeyResult, period: str | None, progress: float, now: datetime) -> RiskAssessment:
    expected = compute_expected_progress(period, now)
    deviation = None if expected is None else round(expected - progress, 2)
    days = days_without_update(kr.updated_at, now)
    no_progress = float(kr.current_value) == float(kr.start_value)

    reasons: list[RiskReason] = []
    score = 0

    if days is not None and days >= 7 and no_progress and progress < 100:
        reasons.append(RiskReason("no_progress_7d", "Sin avance en los ultimos 7 dias"))
        score += 2
    if days is not None and days >= 14 and progress < 100:
        reasons.append(RiskReason("stalled_14d", "KR estancado por mas de 14 dias"))
        score += 2
    if deviation is not None and deviation >= 20 and progress < 100:
        reasons.append(
            RiskReason("behind_expected_progress", f"Desvio de {round(deviation)}% contra el progreso esperado")
        )
        score += 2
    if expected is not None and expected >= 60 and progress < 30:
        reasons.append(RiskReason("severe_gap", "Brecha severa entre progreso actual y esperado"))
        score += 2

    if kr.status == KeyResultStatus.OFF_TRACK.value:
        reasons.append(RiskReason("status_off_track", "Estado marcado como off_track"))
        score += 1
    elif kr.status == KeyResultStatus.AT_RISK.value:
        reasons.append(RiskReason("status_at_risk", "Estado marcado como at_risk"))
        score += 1

    if score >= 4:
        level = RiskLevel.HIGH
    elif score >= 2:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW

    return RiskAssessment(
        level=level,
        score=score,
        reasons=tuple(reasons),
        expected_progress=expected,
        deviation=deviation,
        days_without_update=days,
    )


def _sort_key(signal: RiskSignal) -> tuple:
    deviation = signal.risk.deviation if signal.risk.deviation is not None else -999
    days = signal.risk.days_without_update if signal.risk.days_without_update is not None else -1
    return (-signal.risk.score, -deviation, -days)


def build_risk_signals(
    objectives: Iterable[Objective],
    key_results: Iterable[KeyResult],
    now: datetime,
) -> RiskSignals:
    """Assess every key result of an open objective and keep the risky ones."""

    by_id = {obj.id: obj for obj in objectives}
    assessed: list[RiskSignal] = []
    for kr in key_results:
        objective = by_id.get(kr.objective_id)
        if objective is None:
            logger.debug(f"skipping key result {kr.id}: objective {kr.objective_id} missing")
            continue
        if objective.status == "done":
            continue
        progress = compute_progress(kr.start_value, kr.current_value, kr.target_value)
        assessed.append(
            RiskSignal(
                id=kr.id,
                title=kr.title,
                progress=progress,
                status=kr.status or infer_kr_status(progress).value,
                current_value=kr.current_value,
                target_value=kr.target_value,
                objective_id=objective.id,
                objective_title=objective.title,
                objective_period=objective.period,
                objective_area_id=objective.area_id,
                risk=assess_kr_risk(kr, objective.period, progress, now),
            )
        )

    risks = sorted((s for s in assessed if s.risk.level != RiskLevel.LOW), key=_sort_key)
    summary = {
        "totalKrs": len(assessed),
        "riskCount": len(risks),
        "highRiskCount": sum(1 for r in risks if r.risk.level == RiskLevel.HIGH),
        "stalledCount": sum(1 for r in risks if r.risk.has_reason("stalled_14d")),
        "noProgressCount": sum(1 for r in risks if r.risk.has_reason("no_progress_7d")),
        "behindScheduleCount": sum(1 for r in risks if r.risk.has_reason("behind_expected_progress")),
    }
    return RiskSignals(
        risks=tuple(risks),
        focus_week=tuple(risks[:3]),
        summary=summary,
        generated_at=_aware(now),
    )


class SnapshotRiskProvider:
    """Risk signals computed from the persistence collaborator."""

    def __init__(self, service, clock: Callable[[], datetime] | None = None) -> None:
        self._service = service
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def fetch_risk_signals(self) -> RiskSignals:
        snapshot = self._service.read_snapshot()
        return build_risk_signals(snapshot.objectives, snapshot.key_results, self._clock())


__all__ = [
    "RiskAssessment",
    "RiskReason",
    "RiskSignal",
    "RiskSignalProvider",
    "RiskSignals",
    "SnapshotRiskProvider",
    "assess_kr_risk",
    "build_risk_signals",
    "compute_expected_progress",
    "compute_progress",
    "days_without_update",
    "infer_kr_status",
    "parse_period_range",
]
