import pytest

from core.config.loader import deep_merge, load_config, load_settings


def test_defaults_come_from_bundled_file():
    settings = load_settings(environ={})
    assert settings["database"]["path"] == ":memory:"
    assert settings["oracle"]["enable"] is False
    assert settings["oracle"]["model"] == "llama3.1"
    assert settings["conversation"]["action_ttl_minutes"] == 5
    assert "aprender:skill" in settings["learning_templates"]


def test_environment_overrides():
    settings = load_settings(
        environ={
            "COACH_DB_PATH": "/tmp/coach.db",
            "COACH_ORACLE_URL": "http://oracle:11434",
            "COACH_LOG_LEVEL": "debug",
        }
    )
    assert settings["database"]["path"] == "/tmp/coach.db"
    assert settings["oracle"]["base_url"] == "http://oracle:11434"
    assert settings["oracle"]["model"] == "llama3.1"
    assert settings["logging"]["level"] == "debug"


def test_yaml_file_is_merged_over_defaults(tmp_path):
    path = tmp_path / "coach.yaml"
    path.write_text("capacity:\n  work_hours_per_day: 6\n", encoding="utf-8")
    settings = load_settings(path, environ={})
    assert settings["capacity"]["work_hours_per_day"] == 6
    assert settings["capacity"]["buffer_percentage"] == 20


def test_missing_file_is_empty(tmp_path):
    assert load_config(tmp_path / "nope.yaml") == {}


def test_non_mapping_yaml_is_rejected(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_deep_merge_keeps_nested_keys():
    merged = deep_merge({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}, "c": 4})
    assert merged == {"a": {"x": 1, "y": 3}, "b": 1, "c": 4}
