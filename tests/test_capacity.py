from management.models import Milestone, Snapshot, Task
from management.constants import TaskKind, TaskStatus
from planner.capacity import (
    CapacityConfig,
    build_capacity_config,
    capacity_color,
    capacity_report,
    daily_capacity,
    detect_overload,
    format_minutes,
    suggest_redistribution,
    task_load_minutes,
    weekly_capacity,
    weekly_load,
)


def _project(task_id="p1", committed=("m1",), **kwargs):
    return Task(
        id=task_id,
        title=kwargs.pop("title", "Proyecto"),
        kind=TaskKind.PROJECT,
        milestones=[
            Milestone(id="m1", title="Diseño", time_estimate=90),
            Milestone(id="m2", title="Build", time_estimate=150),
            Milestone(id="m3", title="Hecho", time_estimate=30, completed=True),
        ],
        committed_milestones=list(committed),
        **kwargs,
    )


def test_default_capacity_numbers():
    config = CapacityConfig()
    daily = daily_capacity(config)
    assert (daily.total, daily.available, daily.usable) == (480, 420, 336)
    weekly = weekly_capacity(config)
    assert weekly.usable == 1680
    assert weekly.total == 2400


def test_available_never_negative():
    config = build_capacity_config({"work_hours_per_day": 1, "break_minutes_per_day": 480})
    daily = daily_capacity(config)
    assert daily.available == 0
    assert daily.usable == 0


def test_config_is_clamped():
    config = build_capacity_config(
        {"work_hours_per_day": 30, "buffer_percentage": 80, "break_minutes_per_day": -5, "work_days_per_week": "x"}
    )
    assert config.work_hours_per_day == 24
    assert config.buffer_percentage == 50
    assert config.break_minutes_per_day == 0
    assert config.work_days_per_week == 5


def test_simple_task_minutes_override():
    config = build_capacity_config({}, simple_task_minutes=30)
    task = Task(id="t1", title="Mail", this_week=True)
    assert weekly_load([task], config.simple_task_minutes) == 30


def test_project_load_counts_only_open_committed_milestones():
    project = _project(committed=("m1", "m3"))
    assert task_load_minutes(project) == 90


def test_simple_task_estimate_overrides_default():
    assert task_load_minutes(Task(id="t1", title="x", estimated_minutes=25)) == 25
    assert task_load_minutes(Task(id="t2", title="y")) == 60


def test_weekly_load_skips_uncommitted_and_inactive():
    tasks = [
        Task(id="a", title="a", this_week=True),
        Task(id="b", title="b", this_week=False),
        Task(id="c", title="c", this_week=True, status=TaskStatus.DONE),
        _project(this_week=True),
    ]
    assert weekly_load(tasks) == 60 + 90


def test_detect_overload():
    overload = detect_overload(2000, 1680)
    assert overload.is_overloaded
    assert overload.percentage == 119
    assert overload.excess == 320

    fine = detect_overload(100, 1680)
    assert not fine.is_overloaded
    assert fine.excess == 0

    assert detect_overload(50, 0).percentage == 0


def test_redistribution_prefers_low_priority_simple_tasks():
    tasks = [
        Task(id="keep", title="Importante", this_week=True, priority="high"),
        _project(task_id="p-low", this_week=True, priority="low"),
        Task(id="low", title="Opcional", this_week=True, priority="low"),
    ]
    suggestions = suggest_redistribution(tasks, excess=50)
    assert [s.task_id for s in suggestions] == ["low"]
    assert suggestions[0].action == "defer"
    assert suggestions[0].minutes == 60


def test_redistribution_uncommits_large_milestones():
    project = _project(committed=("m1", "m2"), this_week=True, priority="high")
    suggestions = suggest_redistribution([project], excess=100)
    assert len(suggestions) == 1
    assert suggestions[0].action == "uncommit_milestone"
    assert suggestions[0].milestone_id == "m2"


def test_format_and_color():
    assert format_minutes(90) == "1.5h"
    assert format_minutes(45) == "45min"
    assert capacity_color(80) == "green"
    assert capacity_color(100) == "yellow"
    assert capacity_color(101) == "red"


def test_capacity_report_payload():
    snapshot = Snapshot(
        tasks=(Task(id="t1", title="a", this_week=True, priority="low"),),
        profile={"work_hours_per_day": 1, "buffer_percentage": 0, "break_minutes_per_day": 30, "work_days_per_week": 1},
    )
    report = capacity_report(snapshot)
    data = report.to_dict()
    assert data["capacity"]["usable"] == 30
    assert data["committed"]["minutes"] == 60
    assert data["overload"]["isOverloaded"] is True
    assert data["suggestions"][0]["taskId"] == "t1"
    assert data["color"] == "red"
    assert data["remaining"]["formatted"] == "0min"
