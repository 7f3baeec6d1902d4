import builtins
import json
import sys

import pytest

from tools_cli import coach_cli


def _cfg(tmp_path, **ui):
    return {
        "controller": {"base_url": "http://dummy", "timeout_sec": 1},
        "ui": {"log_file": str(tmp_path / "cli.log"), **ui},
    }


def _preview_body():
    return {
        "sessionId": "cs-1",
        "response": 'Crear tarea: "Informe"',
        "actionId": "act-1",
        "requiresConfirmation": True,
        "responseSource": "quick_preview",
    }


def test_run_once_plain_reply(monkeypatch, tmp_path):
    monkeypatch.setattr(coach_cli, "do_message", lambda cfg, text, sid: (200, {"sessionId": "cs-1", "response": "Hola"}, 1.0))
    monkeypatch.setattr(coach_cli, "do_confirm", lambda *a: pytest.fail("confirm should not be called"))
    printed = []
    monkeypatch.setattr(coach_cli, "printer", lambda mode, resp: printed.append(resp) or 0)

    session = coach_cli.Session()
    assert coach_cli.run_once(_cfg(tmp_path), "hola", "pretty", session) == 0
    assert session.session_id == "cs-1"
    assert printed[0]["response"] == "Hola"

    lines = (tmp_path / "cli.log").read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[0])["event"] == "message_response"


def test_run_once_confirms_when_user_agrees(monkeypatch, tmp_path):
    monkeypatch.setattr(coach_cli, "do_message", lambda cfg, text, sid: (200, _preview_body(), 1.0))
    calls = []

    def fake_confirm(cfg, action_id, confirm):
        calls.append((action_id, confirm))
        return 200, {"status": "confirmed", "executed": True, "response": "Listo!"}, 1.0

    monkeypatch.setattr(coach_cli, "do_confirm", fake_confirm)
    monkeypatch.setattr(coach_cli, "printer", lambda mode, resp: 0)
    monkeypatch.setattr(builtins, "input", lambda prompt="": "s")

    assert coach_cli.run_once(_cfg(tmp_path), "crea una tarea", "pretty") == 0
    assert calls == [("act-1", True)]


def test_run_once_declined_is_not_an_error(monkeypatch, tmp_path):
    monkeypatch.setattr(coach_cli, "do_message", lambda cfg, text, sid: (200, _preview_body(), 1.0))
    calls = []

    def fake_confirm(cfg, action_id, confirm):
        calls.append(confirm)
        return 200, {"status": "cancelled", "executed": False, "response": "Accion cancelada."}, 1.0

    monkeypatch.setattr(coach_cli, "do_confirm", fake_confirm)
    monkeypatch.setattr(coach_cli, "printer", lambda mode, resp: 0)
    monkeypatch.setattr(builtins, "input", lambda prompt="": "")

    assert coach_cli.run_once(_cfg(tmp_path), "crea una tarea", "pretty") == 0
    assert calls == [False]


def test_run_once_auto_confirm_and_expired(monkeypatch, tmp_path):
    monkeypatch.setattr(coach_cli, "do_message", lambda cfg, text, sid: (200, _preview_body(), 1.0))
    monkeypatch.setattr(coach_cli, "do_confirm", lambda cfg, action_id, confirm: (410, {"detail": "expirada"}, 1.0))
    monkeypatch.setattr(builtins, "input", lambda prompt="": pytest.fail("should not prompt"))
    printed = []
    monkeypatch.setattr(coach_cli, "printer", lambda mode, resp: printed.append(resp) or 0)

    assert coach_cli.run_once(_cfg(tmp_path, auto_confirm=True), "crea una tarea", "json") == 1
    assert printed[-1] == {"response": "expirada"}


def test_run_once_controller_error(monkeypatch, tmp_path):
    monkeypatch.setattr(coach_cli, "do_message", lambda cfg, text, sid: (599, {"detail": "ConnectionError: x"}, 1.0))
    printed = []
    monkeypatch.setattr(coach_cli, "printer", lambda mode, resp: printed.append(resp) or 0)

    assert coach_cli.run_once(_cfg(tmp_path), "hola", "pretty") == 1
    assert printed[0]["response"] == "Error del coach: ConnectionError: x"


def test_printer_shows_degraded(capsys):
    coach_cli.printer("pretty", {"response": "Hola", "degraded": "oracle_timeout"})
    out = capsys.readouterr().out
    assert "Hola" in out
    assert "[degradado: oracle_timeout]" in out


def test_load_cfg_env_override(monkeypatch, tmp_path):
    path = tmp_path / "cli.yaml"
    path.write_text("controller:\n  timeout_sec: 5\n", encoding="utf-8")
    monkeypatch.setenv("COACH_CONTROLLER_URL", "http://coach:8010")
    cfg = coach_cli.load_cfg(str(path))
    assert cfg["controller"] == {"base_url": "http://coach:8010", "timeout_sec": 5}
    assert cfg["ui"]["mode"] == "pretty"


def test_main_execute_exits_with_run_once_code(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["coach", "-e", "hola", "--json", "-y"])
    monkeypatch.setattr(coach_cli, "load_cfg", lambda path=None: {"controller": {}, "ui": {}})
    seen = {}

    def fake_run_once(cfg, text, mode):
        seen.update(cfg=cfg, text=text, mode=mode)
        return 1

    monkeypatch.setattr(coach_cli, "run_once", fake_run_once)
    with pytest.raises(SystemExit) as exc:
        coach_cli.main()
    assert exc.value.code == 1
    assert seen["text"] == "hola"
    assert seen["mode"] == "json"
    assert seen["cfg"]["ui"]["auto_confirm"] is True
