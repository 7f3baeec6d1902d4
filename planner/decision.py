"""Next-best-action ranking, weekly plan packs and explainability payloads.

Every candidate gets four 0-100 sub-scores (deadline urgency, key result
risk, capacity fit and strategic linkage) combined with :data:`WEIGHTS`.
Candidates that do not fit in the remaining weekly capacity are dropped
before ranking. The plan pack then walks the ranking greedily; the result
is order dependent and not globally optimal.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable

from management.constants import (
    PROJECT_FALLBACK_MINUTES,
    RANKED_MILESTONE_DEFAULT_MINUTES,
    RISK_WEIGHTS,
    SIMPLE_TASK_MINUTES,
    TaskStatus,
)
from management.models import Task

from .capacity import Capacity, CapacityConfig, format_minutes, weekly_capacity, weekly_load
from .risk import RiskSignals

WEIGHTS = {
    "deadline": 0.35,
    "kr_risk": 0.30,
    "capacity": 0.20,
    "strategic": 0.15,
}

MUST_DO_SCORE = 70
SHOULD_DO_SCORE = 40
STRONG_SIGNAL = 60


@dataclass(frozen=True)
class ScoreBreakdown:
    deadline: int
    kr_risk: int
    strategic: int
    capacity: int

    def weighted(self) -> float:
        return (
            self.deadline * WEIGHTS["deadline"]
            + self.kr_risk * WEIGHTS["kr_risk"]
            + self.strategic * WEIGHTS["strategic"]
            + self.capacity * WEIGHTS["capacity"]
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "deadline": self.deadline,
            "krRisk": self.kr_risk,
            "strategic": self.strategic,
            "capacity": self.capacity,
        }


@dataclass(frozen=True)
class RankedAction:
    task: Task
    score: int
    breakdown: ScoreBreakdown
    estimated_minutes: int

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def fits_in_capacity(self) -> bool:
        return self.breakdown.capacity > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskId": self.task.id,
            "title": self.task.title,
            "type": self.task.kind.value,
            "score": self.score,
            "scoreBreakdown": self.breakdown.to_dict(),
            "estimatedMinutes": self.estimated_minutes,
            "fitsInCapacity": self.fits_in_capacity,
        }


@dataclass(frozen=True)
class PlanContext:
    capacity: Capacity
    load: int
    risk_signals: RiskSignals
    today: date
    simple_task_minutes: int = SIMPLE_TASK_MINUTES

    @property
    def remaining(self) -> int:
        return self.capacity.usable - self.load


@dataclass(frozen=True)
class CapacitySummary:
    total: int
    used: int
    remaining: int
    utilization_pct: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "used": self.used,
            "remaining": self.remaining,
            "utilizationPct": self.utilization_pct,
            "formatted": {
                "total": format_minutes(self.total),
                "used": format_minutes(self.used),
                "remaining": format_minutes(self.remaining),
            },
        }


@dataclass(frozen=True)
class PlanPack:
    must_do: tuple[RankedAction, ...] = ()
    should_do: tuple[RankedAction, ...] = ()
    not_this_week: tuple[RankedAction, ...] = ()
    summary: CapacitySummary = field(default_factory=lambda: CapacitySummary(0, 0, 0, 0))

    @property
    def planned(self) -> tuple[RankedAction, ...]:
        return self.must_do + self.should_do

    def to_dict(self) -> dict[str, Any]:
        return {
            "mustDo": [a.to_dict() for a in self.must_do],
            "shouldDo": [a.to_dict() for a in self.should_do],
            "notThisWeek": [a.to_dict() for a in self.not_this_week],
            "capacitySummary": self.summary.to_dict(),
        }


@dataclass(frozen=True)
class Explainability:
    reason: str
    impact: str
    tradeoff: str | None
    confidence: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "impact": self.impact,
            "tradeoff": self.tradeoff,
            "confidence": self.confidence,
        }


# ------------------------------------------------------------------
# Sub-scores
# ------------------------------------------------------------------
def days_until(due: date | None, today: date) -> int | None:
    if due is None:
        return None
    return (due - today).days


def score_deadline_urgency(task: Task, today: date) -> int:
    days = days_until(task.due_date, today)
    if days is None:
        return 0
    if days < 0:
        return 100
    if days == 0:
        return 90
    if days == 1:
        return 80
    if days <= 3:
        return 60
    if days <= 7:
        return 30
    return 10


def score_kr_risk(task: Task, risk_signals: RiskSignals | None) -> int:
    if not task.key_result_id or risk_signals is None:
        return 0
    signal = risk_signals.find(task.key_result_id)
    if signal is None:
        return 0
    return RISK_WEIGHTS.get(signal.risk.level, 0)


def score_strategic_link(task: Task) -> int:
    if task.key_result_id and task.objective_id:
        return 100
    if task.objective_id or task.key_result_id:
        return 70
    if task.area_id:
        return 30
    return 0


def score_capacity_fit(task_minutes: int, remaining: int) -> int:
    if remaining <= 0:
        return 0
    ratio = task_minutes / remaining
    if ratio > 1:
        return 0
    if ratio <= 0.25:
        return 100
    if ratio <= 0.5:
        return 80
    if ratio <= 0.75:
        return 50
    return 20


def estimate_task_minutes(task: Task, simple_task_minutes: int = SIMPLE_TASK_MINUTES) -> int:
    if task.is_project:
        total = 0
        for milestone_id in task.committed_milestones:
            milestone = task.milestone(milestone_id)
            if milestone is None:
                total += RANKED_MILESTONE_DEFAULT_MINUTES
            elif not milestone.completed:
                total += milestone.time_estimate or RANKED_MILESTONE_DEFAULT_MINUTES
        return total or PROJECT_FALLBACK_MINUTES
    return task.estimated_minutes or simple_task_minutes


# ------------------------------------------------------------------
# Ranking
# ------------------------------------------------------------------
def rank_next_best_actions(
    tasks: Iterable[Task],
    context: PlanContext,
    *,
    include_committed: bool = False,
) -> list[RankedAction]:
    """Score active tasks and drop those that do not fit the remaining week.

    By default only tasks not yet committed to this week are candidates;
    ``include_committed`` ranks the committed ones instead.
    """

    remaining = context.remaining
    ranked: list[RankedAction] = []
    for task in tasks:
        if task.status != TaskStatus.ACTIVE:
            continue
        if task.this_week != include_committed:
            continue
        minutes = estimate_task_minutes(task, context.simple_task_minutes)
        breakdown = ScoreBreakdown(
            deadline=score_deadline_urgency(task, context.today),
            kr_risk=score_kr_risk(task, context.risk_signals),
            strategic=score_strategic_link(task),
            capacity=score_capacity_fit(minutes, remaining),
        )
        action = RankedAction(
            task=task,
            score=round(breakdown.weighted()),
            breakdown=breakdown,
            estimated_minutes=minutes,
        )
        if action.fits_in_capacity:
            ranked.append(action)
    ranked.sort(key=lambda a: (-a.score, a.task_id))
    return ranked


def build_plan_context(
    tasks: Iterable[Task],
    config: CapacityConfig,
    risk_signals: RiskSignals,
    today: date,
) -> PlanContext:
    return PlanContext(
        capacity=weekly_capacity(config),
        load=weekly_load(tasks, config.simple_task_minutes),
        risk_signals=risk_signals,
        today=today,
        simple_task_minutes=config.simple_task_minutes,
    )


def generate_weekly_plan_pack(
    tasks: Iterable[Task],
    config: CapacityConfig,
    risk_signals: RiskSignals,
    today: date,
) -> PlanPack:
    tasks = list(tasks)
    context = build_plan_context(tasks, config, risk_signals, today)
    usable = context.capacity.usable

    must_do: list[RankedAction] = []
    should_do: list[RankedAction] = []
    not_this_week: list[RankedAction] = []
    used = context.load

    for action in rank_next_best_actions(tasks, context):
        would_exceed = used + action.estimated_minutes > usable
        is_must = action.score >= MUST_DO_SCORE and (
            action.breakdown.deadline >= STRONG_SIGNAL or action.breakdown.kr_risk >= STRONG_SIGNAL
        )
        if is_must and not would_exceed:
            must_do.append(action)
            used += action.estimated_minutes
        elif not would_exceed and action.score >= SHOULD_DO_SCORE:
            should_do.append(action)
            used += action.estimated_minutes
        else:
            not_this_week.append(action)

    summary = CapacitySummary(
        total=usable,
        used=used,
        remaining=usable - used,
        utilization_pct=round(used / usable * 100) if usable > 0 else 0,
    )
    return PlanPack(
        must_do=tuple(must_do),
        should_do=tuple(should_do),
        not_this_week=tuple(not_this_week),
        summary=summary,
    )


# ------------------------------------------------------------------
# Explainability
# ------------------------------------------------------------------
def build_explainability(action: RankedAction, context: PlanContext) -> Explainability:
    breakdown = action.breakdown
    task = action.task

    reasons: list[str] = []
    if breakdown.deadline >= STRONG_SIGNAL:
        days = days_until(task.due_date, context.today)
        if days is not None and days < 0:
            reasons.append("Tarea vencida")
        elif days is not None and days <= 1:
            reasons.append("Fecha límite inminente")
        else:
            reasons.append("Fecha límite cercana")
    if breakdown.kr_risk >= STRONG_SIGNAL:
        signal = context.risk_signals.find(task.key_result_id)
        reasons.append(f'Key Result en riesgo: "{signal.title if signal else "desconocido"}"')
    if breakdown.strategic >= 70:
        reasons.append("Alineado con objetivos estratégicos")
    if not reasons:
        reasons.append("Tarea disponible con capacidad suficiente")

    impact = f'Completar "{task.title}" ({format_minutes(action.estimated_minutes)})'
    if breakdown.kr_risk >= STRONG_SIGNAL:
        impact += ". Reduce riesgo en KR asociado"
    if breakdown.deadline >= STRONG_SIGNAL:
        impact += ". Evita retraso"

    tradeoff = None
    remaining_after = context.capacity.usable - (context.load + action.estimated_minutes)
    if remaining_after < 60:
        tradeoff = "Poca capacidad restante después de esta tarea"
    elif action.estimated_minutes > 120:
        tradeoff = "Tarea grande que consume considerable tiempo"

    confidence = 50
    if breakdown.deadline >= STRONG_SIGNAL:
        confidence += 20
    if breakdown.kr_risk >= STRONG_SIGNAL:
        confidence += 20
    if breakdown.capacity >= 80:
        confidence += 10

    return Explainability(
        reason=". ".join(reasons) + ".",
        impact=impact,
        tradeoff=tradeoff,
        confidence=min(100, confidence),
    )


__all__ = [
    "WEIGHTS",
    "CapacitySummary",
    "Explainability",
    "PlanContext",
    "PlanPack",
    "RankedAction",
    "ScoreBreakdown",
    "build_explainability",
    "build_plan_context",
    "estimate_task_minutes",
    "generate_weekly_plan_pack",
    "rank_next_best_actions",
    "score_capacity_fit",
    "score_deadline_urgency",
    "score_kr_risk",
    "score_strategic_link",
]
