from datetime import date, timedelta

from management.constants import RiskLevel, TaskKind, TaskStatus
from management.models import Milestone, Task
from planner.capacity import CapacityConfig
from planner.decision import (
    build_explainability,
    build_plan_context,
    estimate_task_minutes,
    generate_weekly_plan_pack,
    rank_next_best_actions,
    score_capacity_fit,
    score_deadline_urgency,
    score_kr_risk,
    score_strategic_link,
)
from planner.risk import RiskAssessment, RiskSignal, RiskSignals

TODAY = date(2026, 3, 11)


def _signals(level=RiskLevel.HIGH, kr_id="kr-1"):
    assessment = RiskAssessment(
        level=level, score=6, reasons=(), expected_progress=None, deviation=None, days_without_update=None
    )
    signal = RiskSignal(
        id=kr_id,
        title="Correr 10k",
        progress=0.0,
        status="off_track",
        objective_id="obj-1",
        objective_title="Salud",
        objective_period="2026-Q1",
        risk=assessment,
    )
    return RiskSignals(risks=(signal,), focus_week=(signal,))


def _due(days):
    return TODAY + timedelta(days=days)


def test_deadline_urgency_ladder():
    scores = [score_deadline_urgency(Task(id="t", title="t", due_date=_due(d)), TODAY) for d in (-1, 0, 1, 3, 7, 8)]
    assert scores == [100, 90, 80, 60, 30, 10]
    assert score_deadline_urgency(Task(id="t", title="t"), TODAY) == 0


def test_kr_risk_score_uses_signal_level():
    task = Task(id="t", title="t", key_result_id="kr-1")
    assert score_kr_risk(task, _signals(RiskLevel.HIGH)) == 100
    assert score_kr_risk(task, _signals(RiskLevel.MEDIUM)) == 60
    assert score_kr_risk(task, _signals(RiskLevel.MEDIUM, kr_id="other")) == 0
    assert score_kr_risk(Task(id="u", title="u"), _signals()) == 0


def test_strategic_link():
    assert score_strategic_link(Task(id="t", title="t", objective_id="o", key_result_id="k")) == 100
    assert score_strategic_link(Task(id="t", title="t", objective_id="o")) == 70
    assert score_strategic_link(Task(id="t", title="t", area_id="salud")) == 30
    assert score_strategic_link(Task(id="t", title="t")) == 0


def test_capacity_fit():
    assert score_capacity_fit(25, 100) == 100
    assert score_capacity_fit(50, 100) == 80
    assert score_capacity_fit(60, 100) == 50
    assert score_capacity_fit(100, 100) == 20
    assert score_capacity_fit(101, 100) == 0
    assert score_capacity_fit(10, 0) == 0


def test_estimate_project_skips_completed_milestones():
    project = Task(
        id="p",
        title="p",
        kind=TaskKind.PROJECT,
        milestones=[Milestone(id="a", title="a", time_estimate=40), Milestone(id="b", title="b", completed=True)],
        committed_milestones=["a", "b", "ghost"],
    )
    assert estimate_task_minutes(project) == 40 + 60
    assert estimate_task_minutes(Task(id="q", title="q", kind=TaskKind.PROJECT)) == 120


def test_ranking_excludes_committed_and_oversized():
    tasks = [
        Task(id="urgent", title="Urgente", due_date=_due(-1), objective_id="o", key_result_id="kr-1"),
        Task(id="plain", title="Normal"),
        Task(id="huge", title="Enorme", estimated_minutes=5000),
        Task(id="committed", title="Ya esta", this_week=True),
        Task(id="done", title="Hecha", status=TaskStatus.DONE),
    ]
    context = build_plan_context(tasks, CapacityConfig(), _signals(), TODAY)
    ranked = rank_next_best_actions(tasks, context)
    assert [a.task_id for a in ranked] == ["urgent", "plain"]
    assert ranked[0].score == 100

    committed = rank_next_best_actions(tasks, context, include_committed=True)
    assert [a.task_id for a in committed] == ["committed"]


def test_plan_pack_buckets():
    tasks = [
        Task(id="must", title="Entregar", due_date=_due(-1), objective_id="o", key_result_id="kr-1"),
        Task(id="should", title="Preparar", due_date=_due(1), area_id="trabajo"),
        Task(id="later", title="Ordenar"),
    ]
    pack = generate_weekly_plan_pack(tasks, CapacityConfig(), _signals(), TODAY)
    assert [a.task_id for a in pack.must_do] == ["must"]
    assert [a.task_id for a in pack.should_do] == ["should"]
    assert [a.task_id for a in pack.not_this_week] == ["later"]
    assert pack.summary.used == 120
    assert pack.summary.remaining == 1680 - 120
    assert pack.to_dict()["capacitySummary"]["formatted"]["used"] == "2.0h"


def test_plan_pack_respects_capacity():
    config = CapacityConfig(work_hours_per_day=2, buffer_percentage=0, break_minutes_per_day=0, work_days_per_week=1)
    tasks = [
        Task(id="a", title="A", due_date=_due(0), objective_id="o", key_result_id="kr-1", estimated_minutes=90),
        Task(id="b", title="B", due_date=_due(0), objective_id="o", key_result_id="kr-1", estimated_minutes=60),
    ]
    pack = generate_weekly_plan_pack(tasks, config, _signals(), TODAY)
    assert [a.task_id for a in pack.must_do] == ["b"]
    assert [a.task_id for a in pack.not_this_week] == ["a"]
    assert pack.summary.used <= 120


def test_explainability_for_overdue_task():
    task = Task(id="must", title="Entregar", due_date=_due(-1), objective_id="o", key_result_id="kr-1")
    context = build_plan_context([task], CapacityConfig(), _signals(), TODAY)
    action = rank_next_best_actions([task], context)[0]
    explain = build_explainability(action, context)
    assert explain.reason == (
        'Tarea vencida. Key Result en riesgo: "Correr 10k". Alineado con objetivos estratégicos.'
    )
    assert explain.impact == 'Completar "Entregar" (1.0h). Reduce riesgo en KR asociado. Evita retraso'
    assert explain.tradeoff is None
    assert explain.confidence == 100


def test_explainability_default_reason():
    task = Task(id="plain", title="Leer", estimated_minutes=30)
    context = build_plan_context([task], CapacityConfig(), RiskSignals(), TODAY)
    action = rank_next_best_actions([task], context)[0]
    explain = build_explainability(action, context)
    assert explain.reason == "Tarea disponible con capacidad suficiente."
    assert explain.confidence == 60
