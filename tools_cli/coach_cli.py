#!/usr/bin/env python3
import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import requests
import yaml

DEFAULT_CFG = {
    "controller": {"base_url": "http://127.0.0.1:8010", "timeout_sec": 30},
    "ui": {
        "mode": "pretty",  # pretty | json
        "log_file": "",
        "auto_confirm": False,
    },
}

ENV_OVERRIDES = {
    "controller.base_url": "COACH_CONTROLLER_URL",
    "ui.log_file": "COACH_CLI_LOG",
}

CONFIRM_PROMPT = "¿Confirmar? [s/N] "
YES_ANSWERS = ("s", "si", "sí", "y", "yes")

# ---------- config & io ----------


def load_cfg(custom_cfg_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration, applying defaults and environment overrides.

    Args:
        custom_cfg_path: optional path to YAML config file. If not provided,
            defaults to tools_cli/cli_config.yaml near this script.
    """
    here = Path(__file__).parent
    cfg_path = Path(custom_cfg_path) if custom_cfg_path else (here / "cli_config.yaml")
    data: Dict[str, Any] = {}
    if cfg_path.exists():
        try:
            data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError):
            logging.exception(f"Failed to load config from {cfg_path}")
            data = {}
    cfg = deep_merge(DEFAULT_CFG, data)
    for key, env in ENV_OVERRIDES.items():
        val = os.getenv(env)
        if val:
            set_deep(cfg, key, val)
    return cfg


def deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge mapping ``b`` into ``a`` and return the result."""
    out = dict(a)
    for k, v in (b or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def set_deep(d: Dict[str, Any], dotted: str, value: Any):
    node = d
    parts = dotted.split(".")
    for p in parts[:-1]:
        node = node.setdefault(p, {})
    node[parts[-1]] = value


def log_event(cfg: Dict[str, Any], event: str, payload: Dict[str, Any]):
    """Append an event record to the log file configured in ``cfg``."""
    lf = (cfg.get("ui") or {}).get("log_file")
    if not lf:
        return
    rec = {"ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime()), "event": event, **payload}
    path = Path(lf)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(rec, ensure_ascii=False) + "\n")
    except OSError:
        logging.exception(f"Failed to append line to {path}")


# ---------- http helpers ----------


def http_post_json(url: str, data: Dict[str, Any], timeout: int) -> Tuple[int, Dict[str, Any], float]:
    """Send a POST request with JSON body; returns status, decoded body and duration in ms."""
    t0 = time.perf_counter()
    try:
        r = requests.post(url, json=data, timeout=timeout)
        dur = (time.perf_counter() - t0) * 1000.0
        try:
            body = r.json()
        except ValueError:
            body = {"detail": r.text}
        return r.status_code, body, dur
    except requests.RequestException as e:
        dur = (time.perf_counter() - t0) * 1000.0
        return 599, {"detail": f"{type(e).__name__}: {e}"}, dur


def do_message(cfg: Dict[str, Any], text: str, session_id: Optional[str]):
    base = cfg["controller"]["base_url"].rstrip("/")
    timeout = int(cfg["controller"]["timeout_sec"])
    return http_post_json(f"{base}/coach/chat/message", {"message": text, "sessionId": session_id}, timeout)


def do_confirm(cfg: Dict[str, Any], action_id: str, confirm: bool):
    base = cfg["controller"]["base_url"].rstrip("/")
    timeout = int(cfg["controller"]["timeout_sec"])
    return http_post_json(f"{base}/coach/chat/confirm", {"actionId": action_id, "confirm": confirm}, timeout)


# ---------- printers ----------


def printer(mode: str, resp: Dict[str, Any]) -> int:
    if mode == "json":
        print(json.dumps(resp, ensure_ascii=False, indent=2))
        return 0
    text = resp.get("response") or resp.get("detail") or ""
    print(text)
    if resp.get("degraded") and mode == "pretty":
        print(f"  [degradado: {resp['degraded']}]")
    return 0


# ---------- core flows ----------


class Session:
    """Keeps the coach session id between turns."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id


def run_once(cfg: Dict[str, Any], text: str, mode: str, session: Optional[Session] = None) -> int:
    """Send one message and, when the coach proposes an action, ask before confirming."""
    session = session or Session()
    status, body, dur_ms = do_message(cfg, text, session.session_id)
    log_event(cfg, "message_response", {"status": status, "ms": round(dur_ms, 1), "body": body})
    if status >= 400:
        printer(mode, {"response": f"Error del coach: {body.get('detail', 'E_CONTROLLER')}"})
        return 1

    session.session_id = body.get("sessionId") or session.session_id
    printer(mode, body)

    action_id = body.get("actionId")
    if not (body.get("requiresConfirmation") and action_id):
        return 0

    if (cfg.get("ui") or {}).get("auto_confirm"):
        confirm = True
    else:
        confirm = input(CONFIRM_PROMPT).strip().lower() in YES_ANSWERS

    st2, out, dur2 = do_confirm(cfg, action_id, confirm)
    log_event(cfg, "confirm_response", {"status": st2, "ms": round(dur2, 1), "body": out})
    if st2 >= 400:
        printer(mode, {"response": out.get("detail") or "E_CONFIRM_FAILED"})
        return 1
    printer(mode, out)
    return 0 if out.get("executed") or not confirm else 1


def repl(cfg: Dict[str, Any], mode: str):
    print("Coach Momentum listo. Escribe /q para salir.")
    session = Session()
    while True:
        try:
            line = input("> ").strip()
            if not line:
                continue
            if line in ("/q", "/quit", "/exit", "/salir"):
                print("Hasta luego.")
                break
            if line == "/json":
                mode = "json"
                continue
            if line == "/pretty":
                mode = "pretty"
                continue
            run_once(cfg, line, mode, session)
        except (KeyboardInterrupt, EOFError):
            print()
            print("Hasta luego.")
            break


# ---------- main ----------


def main():
    p = argparse.ArgumentParser(prog="coach", description="Cliente de terminal para Coach Momentum")
    p.add_argument("-e", "--execute", dest="text", help="Envia un solo mensaje y termina")
    p.add_argument("--config", dest="config", help="Ruta al YAML de configuracion (tools_cli/cli_config.yaml)")
    p.add_argument("--json", action="store_true", help="Salida JSON")
    p.add_argument("-y", "--yes", action="store_true", help="Confirmar acciones sin preguntar")
    args = p.parse_args()

    cfg = load_cfg(args.config)
    mode = "json" if args.json else (cfg.get("ui") or {}).get("mode", "pretty")
    if args.yes:
        cfg.setdefault("ui", {})["auto_confirm"] = True

    if args.text is not None:
        sys.exit(run_once(cfg, args.text, mode))

    if not sys.stdin.isatty():
        sys.exit(run_once(cfg, sys.stdin.read(), mode))

    repl(cfg, mode)
    sys.exit(0)


if __name__ == "__main__":
    main()
