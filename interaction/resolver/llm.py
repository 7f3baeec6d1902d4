"""Optional tool-selection oracle backed by an Ollama-compatible endpoint."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional

import httpx

from core.result import DegradedReason, Result

from .intents import MUTATION_INTENTS

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """Eres el parser de un coach de productividad. Solo puedes proponer acciones de esta lista:
{catalogue}

Formato de respuesta: JSON puro, sin texto alrededor.
Si el usuario pide una accion:
{{"intent": "<nombre de la lista>", "args": {{ ... argumentos en camelCase ... }}}}
Si solo conversa o pregunta:
{{"text": "<respuesta breve en español>"}}

No inventes ids. Si no conoces el id usa el titulo (taskTitle, projectTitle).
Mensaje del usuario: "{text}"
"""

JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


@dataclass(frozen=True)
class OracleConfig:
    enable: bool = False
    base_url: str = "http://127.0.0.1:11434"
    model: str = "llama3.1"
    timeout: float = 8.0

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "OracleConfig":
        data = settings.get("oracle") or {}
        return cls(
            enable=bool(data.get("enable", False)),
            base_url=str(data.get("base_url") or cls.base_url),
            model=str(data.get("model") or cls.model),
            timeout=float(data.get("timeout_sec") or cls.timeout),
        )


@dataclass(frozen=True)
class OracleReply:
    """Untrusted oracle output: either reply text or an intent name with arguments."""

    text: str | None = None
    intent: str | None = None
    args: Mapping[str, Any] = field(default_factory=dict)


def build_catalogue(names: Iterable[str] | None = None) -> str:
    return ", ".join(names or (cls.name for cls in MUTATION_INTENTS))


def _extract_json(s: str) -> Dict[str, Any]:
    m = JSON_RE.search(s)
    if not m:
        raise ValueError("no JSON object in oracle output")
    data = json.loads(m.group(0))
    if not isinstance(data, dict):
        raise ValueError("oracle output is not an object")
    return data


class OracleClient:
    def __init__(
        self,
        config: OracleConfig,
        *,
        http_client_cls: type[httpx.Client] = httpx.Client,
    ) -> None:
        self._cfg = config
        self._http_client_cls = http_client_cls

    @property
    def enabled(self) -> bool:
        return self._cfg.enable

    def ask(self, text: str) -> Result[OracleReply]:
        if not self._cfg.enable:
            return Result.degraded(DegradedReason.ORACLE_DISABLED)

        payload = {
            "model": self._cfg.model,
            "prompt": PROMPT_TEMPLATE.format(catalogue=build_catalogue(), text=text),
            "stream": False,
        }
        try:
            with self._http_client_cls(timeout=self._cfg.timeout) as client:
                response = client.post(f"{self._cfg.base_url.rstrip('/')}/api/generate", json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as exc:
            logger.warning(f"oracle timeout: {exc}")
            return Result.degraded(DegradedReason.ORACLE_TIMEOUT, str(exc))
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            reason = DegradedReason.ORACLE_RATE_LIMITED if status == 429 else DegradedReason.ORACLE_UNAVAILABLE
            logger.warning(f"oracle http error {status}")
            return Result.degraded(reason, f"status {status}")
        except httpx.HTTPError as exc:
            logger.warning(f"oracle unavailable: {exc}")
            return Result.degraded(DegradedReason.ORACLE_UNAVAILABLE, str(exc))
        except ValueError as exc:
            logger.warning(f"oracle returned a non-JSON body: {exc}")
            return Result.degraded(DegradedReason.ORACLE_INVALID_OUTPUT, str(exc))

        return self._parse(body)

    @staticmethod
    def _parse(body: Any) -> Result[OracleReply]:
        raw = body.get("response") if isinstance(body, dict) else None
        if not isinstance(raw, str) or not raw.strip():
            return Result.degraded(DegradedReason.ORACLE_INVALID_OUTPUT, "empty response")
        try:
            data = _extract_json(raw)
        except ValueError:
            # plain prose is a valid conversational answer
            return Result.success(OracleReply(text=raw.strip()))

        intent = data.get("intent")
        if intent:
            args = data.get("args")
            if args is not None and not isinstance(args, dict):
                return Result.degraded(DegradedReason.ORACLE_INVALID_OUTPUT, "args must be an object")
            return Result.success(OracleReply(intent=str(intent), args=dict(args or {})))
        text: Optional[str] = data.get("text")
        if isinstance(text, str) and text.strip():
            return Result.success(OracleReply(text=text.strip()))
        return Result.degraded(DegradedReason.ORACLE_INVALID_OUTPUT, "neither intent nor text")


__all__ = ["OracleClient", "OracleConfig", "OracleReply", "PROMPT_TEMPLATE", "build_catalogue"]
