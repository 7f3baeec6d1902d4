"""Resolver service that unifies quick rules, the optional oracle and the chat fallback."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx

from core.errors import IntentValidationError
from core.result import DegradedReason

from .intents import Intent, ResolverMeta, chat_intent, command_intent, parse_tool_call
from .llm import OracleClient, OracleConfig
from .rules_quick import resolve_quick

logger = logging.getLogger(__name__)


@dataclass
class ResolverConfig:
    mode: str = "hybrid"  # quick | hybrid
    oracle: OracleConfig = OracleConfig()

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "ResolverConfig":
        resolver = settings.get("resolver") or {}
        return cls(
            mode=str(resolver.get("mode") or "hybrid"),
            oracle=OracleConfig.from_settings(settings),
        )


class ResolverService:
    def __init__(
        self,
        *,
        config: ResolverConfig,
        http_client_cls: type[httpx.Client] = httpx.Client,
    ) -> None:
        self._cfg = config
        self._oracle = OracleClient(config.oracle, http_client_cls=http_client_cls)

    @property
    def oracle_enabled(self) -> bool:
        return self._cfg.mode != "quick" and self._oracle.enabled

    def resolve(self, text: str) -> Intent:
        trace_id = str(uuid.uuid4())

        try:
            quick = resolve_quick(text)
        except IntentValidationError as exc:
            logger.info(f"quick rule produced invalid arguments: {exc.message}")
            quick = None
        if quick is not None:
            return Intent(
                quick.kind,
                name=quick.name,
                args=quick.args,
                text=quick.text,
                mutation=quick.mutation,
                missing=quick.missing,
                meta=quick.meta.merged_with(trace_id=trace_id),
            )

        if self._cfg.mode == "quick":
            return chat_intent(text, trace_id=trace_id, rule="fallback", degraded=DegradedReason.ORACLE_DISABLED.value)
        return self._resolve_oracle(text, trace_id=trace_id)

    # ------------------------------------------------------------------
    def _resolve_oracle(self, text: str, *, trace_id: str) -> Intent:
        result = self._oracle.ask(text)
        if not result.ok or result.value is None:
            reason = result.reason.value if result.reason else DegradedReason.ORACLE_UNAVAILABLE.value
            explain = [f"oracle:{reason}"] + ([result.detail] if result.detail else [])
            return chat_intent(text, trace_id=trace_id, rule="fallback", degraded=reason, explain=explain)

        reply = result.value
        if reply.intent:
            try:
                mutation = parse_tool_call(reply.intent, reply.args)
            except IntentValidationError as exc:
                logger.warning(f"oracle proposed an invalid tool call {reply.intent!r}: {exc.message}")
                return chat_intent(
                    text,
                    trace_id=trace_id,
                    rule="fallback",
                    degraded=DegradedReason.ORACLE_INVALID_OUTPUT.value,
                    explain=[f"invalid_tool_call:{exc.message}"],
                )
            return command_intent(mutation, confidence=0.75, rule="oracle", trace_id=trace_id, source="oracle")

        return Intent(
            "chat",
            name="oracle",
            text=reply.text,
            meta=ResolverMeta(trace_id=trace_id, rule="oracle", source="oracle"),
        )

    @staticmethod
    def fallback_intent(text: str, *, reason: Optional[str] = None) -> Intent:
        return chat_intent(text, rule="fallback", degraded=reason)


__all__ = ["ResolverConfig", "ResolverService"]
