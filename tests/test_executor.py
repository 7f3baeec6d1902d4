import itertools
from datetime import date, datetime, timezone

import pytest

from core.config.loader import load_settings
from core.errors import SlotValidationError
from executor.executor import MutationExecutor, map_task_updates
from interaction.resolver import intents as it
from management.constants import KeyResultStatus, TaskKind
from management.models import Area, KeyResult, Milestone, Objective, Task
from management.service import ManagementService
from planner.capacity import task_load_minutes
from planner.preview import ActionPreview, MutationPreviewBuilder, no_action

NOW = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def service():
    svc = ManagementService(clock=lambda: NOW)
    yield svc
    svc.db.close()


@pytest.fixture
def executor(service):
    return MutationExecutor(service, clock=lambda: NOW)


@pytest.fixture
def builder():
    counter = itertools.count(1)
    return MutationPreviewBuilder(
        load_settings(environ={}), clock=lambda: NOW, id_factory=lambda prefix: f"{prefix}-{next(counter)}"
    )


def _apply(builder, executor, service, intent):
    preview = builder.build(intent, service.read_snapshot())
    assert not preview.no_action, preview.summary
    return executor.execute(preview)


def test_create_task_persists(builder, executor, service):
    result = _apply(builder, executor, service, it.CreateTask(title="Preparar informe", this_week=True))
    assert result.ok
    assert result.message == "Creado: Preparar informe."
    stored = service.get_task("task-1")
    assert stored.this_week
    assert stored.week_committed == "2026-W11"


def test_update_and_delete_task(builder, executor, service):
    service.save_task(Task(id="t1", title="Informe"))
    result = _apply(
        builder, executor, service, it.UpdateTask(ref=it.TaskRef(task_id="t1"), updates={"title": "Informe final"})
    )
    assert result.message == "Actualizado: Informe final."
    assert service.get_task("t1").title == "Informe final"

    result = _apply(builder, executor, service, it.DeleteTask(ref=it.TaskRef(task_id="t1")))
    assert result.ok
    assert service.get_task("t1") is None


def test_missing_entity_at_execution_is_reported(executor):
    preview = ActionPreview(intent="update_task", summary="s", payload={"taskId": "ghost", "updates": {"title": "x"}})
    result = executor.execute(preview)
    assert not result.ok
    assert result.error == "E_LOOKUP"
    assert result.message == "Tarea no encontrada"


def test_no_action_and_unknown_intents(executor):
    assert executor.execute(no_action("create_task", "nada")).error == "E_NO_ACTION"
    assert executor.execute(ActionPreview(intent="launch", summary="s")).error == "E_UNKNOWN_INTENT"


def test_inbox_capture_and_processing(builder, executor, service):
    result = _apply(builder, executor, service, it.CreateInboxItem(text="Llamar al banco", type="work"))
    assert result.message == "Item capturado en inbox"
    inbox_id = result.result["id"]

    result = _apply(builder, executor, service, it.ProcessInboxItem(inbox_id=inbox_id, this_week=True))
    assert result.message == "Procesado: Llamar al banco"
    assert service.get_inbox_item(inbox_id) is None
    task = service.get_task(result.result["id"])
    assert task.processed_from == {"inboxId": inbox_id, "inboxType": "work"}


def test_invalid_inbox_due_date_is_a_validation_failure(executor, service):
    item = {"id": "inbox-work-1", "text": "Pagar", "type": "work", "dueDate": "2026-02-31"}
    result = executor.execute(
        ActionPreview(intent="create_inbox_item", summary="s", payload={"type": "work", "item": item})
    )
    assert not result.ok
    assert result.error == "E_VALIDATION"
    assert result.message == "Fecha invalida: 2026-02-31"
    assert service.list_inbox() == []


def test_area_lifecycle(builder, executor, service):
    result = _apply(builder, executor, service, it.CreateArea(area_name="Finanzas", aliases=("dinero",)))
    assert result.ok
    assert service.get_area("finanzas").aliases == ["dinero"]

    duplicate = executor.execute(builder.build(it.CreateArea(area_name="Finanzas"), service.read_snapshot()))
    assert not duplicate.ok
    assert duplicate.message == "Area ya existe"

    _apply(builder, executor, service, it.ArchiveArea(area_id="finanzas"))
    assert service.get_area("finanzas").status == "archived"


def test_key_result_progress_recomputes_status(builder, executor, service):
    service.save_objective(Objective(id="o1", title="Salud", period="2026-Q1"))
    service.save_key_result(
        KeyResult(id="kr-1", objective_id="o1", title="Km", target_value=10, status=KeyResultStatus.OFF_TRACK.value)
    )
    result = _apply(builder, executor, service, it.UpdateKeyResultProgress(key_result_id="kr-1", current_value=8))
    assert result.ok
    kr = service.get_key_result("kr-1")
    assert kr.current_value == 8
    assert kr.status == KeyResultStatus.ON_TRACK.value


def test_plan_commit_includes_first_open_milestone(executor, service):
    service.save_task(
        Task(
            id="web",
            title="Lanzar web",
            kind=TaskKind.PROJECT,
            milestones=[Milestone(id="m1", title="Diseño", completed=True), Milestone(id="m2", title="Maquetar")],
        )
    )
    service.save_task(Task(id="already", title="Ya", this_week=True))
    preview = ActionPreview(
        intent="plan_and_schedule_week", summary="s", payload={"tasksToCommit": ["web", "already", "ghost"]}
    )
    result = executor.execute(preview)
    assert result.message == "1 tarea(s) comprometida(s) para esta semana."
    project = service.get_task("web")
    assert project.this_week
    assert project.committed_milestones == ["m2"]


def test_reprioritize_defers_tasks(executor, service):
    service.save_task(Task(id="a", title="A", this_week=True, week_committed="2026-W11"))
    result = executor.execute(ActionPreview(intent="batch_reprioritize", summary="s", payload={"tasksToDefer": ["a"]}))
    assert result.message == '1 tarea(s) movida(s) a "Algún día".'
    assert not service.get_task("a").this_week


def test_learning_structure_is_atomic(builder, executor, service):
    preview = builder.build(it.CreateLearningStructure(skill="Python", period="2026-Q2"), service.read_snapshot())
    assert executor.execute(preview).ok
    assert len(service.list_objectives()) == 1
    assert len(service.list_key_results()) == 2
    assert len(service.get_task("aprender-python").milestones) == 6

    broken = preview.to_dict()
    broken["payload"]["objective"]["objectiveId"] = "obj-broken"
    broken["payload"]["keyResults"][0]["targetValue"] = "muchas"
    with pytest.raises(ValueError):
        executor.execute(ActionPreview.from_dict(broken))
    assert service.get_objective("obj-broken") is None
    assert len(service.list_objectives()) == 1


def test_breakdown_creates_subtasks(builder, executor, service):
    service.save_task(
        Task(id="web", title="Lanzar web", kind=TaskKind.PROJECT, milestones=[Milestone(id="m1", title="Diseño")])
    )
    intent = it.BreakdownMilestone(ref=it.TaskRef(task_id="web"), milestone_id="m1", subtask_count=3)
    result = _apply(builder, executor, service, intent)
    assert result.message == "Milestone descompuesto en 3 sub-tareas."
    children = [t for t in service.list_tasks() if t.parent_id == "web"]
    assert len(children) == 3
    assert sum(t.this_week for t in children) == 1


def test_map_task_updates_lists():
    task = Task(id="t", title="t", this_week=True, week_committed="2026-W11")
    map_task_updates(task, {"targetList": "hoy"}, NOW)
    assert not task.this_week
    assert task.due_date == date(2026, 3, 11)

    map_task_updates(task, {"targetList": "algún día"}, NOW)
    assert task.due_date is None

    with pytest.raises(SlotValidationError) as exc:
        map_task_updates(task, {"targetList": "x"}, NOW)
    assert exc.value.message == "Lista desconocida: x"


def test_area_update_requires_existing_area(executor, service):
    service.save_area(Area(id="salud", name="Salud"))
    ok = executor.execute(
        ActionPreview(intent="update_area", summary="s", payload={"areaId": "salud", "updates": {"name": "Bienestar"}})
    )
    assert ok.ok
    missing = executor.execute(ActionPreview(intent="archive_area", summary="s", payload={"areaId": "nope"}))
    assert missing.message == "Area no encontrada"


def test_planned_minutes_match_the_committed_load(builder, executor, service):
    service.save_task(
        Task(
            id="web",
            title="Lanzar web",
            kind=TaskKind.PROJECT,
            due_date=date(2026, 3, 11),
            milestones=[Milestone(id="m1", title="Diseño", time_estimate=45), Milestone(id="m2", title="Maquetar")],
        )
    )
    preview = builder.build(it.PlanAndScheduleWeek(commit_count=1), service.read_snapshot())
    assert executor.execute(preview).ok
    assert task_load_minutes(service.get_task("web")) == preview.minutes_committed == 45
