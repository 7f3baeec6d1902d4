import pytest

from core.errors import IntentValidationError
from interaction.resolver import intents as it


def test_parse_create_task_coerces_fields():
    intent = it.parse_tool_call(
        "create_task",
        {"title": "Informe", "areaId": "trabajo", "thisWeek": "true", "estimatedMinutes": "45"},
    )
    assert isinstance(intent, it.CreateTask)
    assert intent.area_id == "trabajo"
    assert intent.this_week is True
    assert intent.estimated_minutes == 45
    assert intent.to_args() == {
        "title": "Informe",
        "areaId": "trabajo",
        "thisWeek": True,
        "estimatedMinutes": 45,
        "milestones": [],
    }


def test_update_task_splits_reference_from_updates():
    intent = it.parse_tool_call("update_task", {"taskTitle": "Informe", "title": "Informe final", "priority": "high"})
    assert intent.ref == it.TaskRef(title="Informe")
    assert dict(intent.updates) == {"title": "Informe final", "priority": "high"}


def test_delete_task_uses_title_as_reference():
    intent = it.parse_tool_call("delete_task", {"title": "Informe"})
    assert intent.ref.title == "Informe"
    assert not intent.ref.empty
    assert it.parse_tool_call("delete_task", None).ref.empty


def test_create_area_accepts_name():
    intent = it.parse_tool_call("create_area", {"name": "Finanzas", "aliases": ["dinero"]})
    assert intent.area_name == "Finanzas"
    assert intent.aliases == ("dinero",)
    assert intent.to_args()["name"] == "Finanzas"


def test_key_result_numbers():
    intent = it.parse_tool_call("create_key_result", {"objectiveId": "o1", "title": "Km", "targetValue": "10"})
    assert intent.target_value == 10.0
    with pytest.raises(IntentValidationError):
        it.parse_tool_call("update_key_result_progress", {"keyResultId": "k", "currentValue": "mucho"})


@pytest.mark.parametrize(
    "name, args",
    [
        ("launch_rockets", {}),
        (None, {}),
        ("create_task", ["not", "a", "mapping"]),
        ("create_task", {"title": {"nested": True}}),
        ("create_learning_structure", {"skill": "python", "moduleNames": "uno,dos"}),
    ],
)
def test_invalid_tool_calls(name, args):
    with pytest.raises(IntentValidationError):
        it.parse_tool_call(name, args)


def test_closed_set_of_variants():
    assert len(it.MUTATION_INTENTS) == 28
    assert set(it.INTENTS_BY_NAME) == {cls.name for cls in it.MUTATION_INTENTS}


def test_meta_merge_ignores_none():
    meta = it.ResolverMeta(source="quick", confidence=0.9)
    merged = meta.merged_with(source=None, degraded="timeout", explain=["a"])
    assert merged.source == "quick"
    assert merged.degraded == "timeout"
    assert merged.explain == ("a",)


def test_intent_builders():
    command = it.command_intent(it.BatchReprioritize(), confidence=0.99, source="quick")
    assert command.is_command()
    assert command.asdict()["name"] == "batch_reprioritize"

    chat = it.chat_intent("hola", degraded="timeout")
    assert not chat.is_command()
    assert chat.asdict()["meta"]["degraded"] == "timeout"

    collect = it.collect_intent("create_objective", args={"title": "X"}, missing=("period",))
    assert collect.meta.source == "quick"
    assert collect.asdict()["missing"] == ["period"]
