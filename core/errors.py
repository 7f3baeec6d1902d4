"""Error taxonomy shared by the coach engine."""
from __future__ import annotations


class EngineError(Exception):
    """Base class for engine errors carrying a stable error code."""

    code = "E_ENGINE"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def __str__(self) -> str:
        return self.message


class EntityLookupError(EngineError):
    """Referenced entity is missing or ambiguous."""

    code = "E_LOOKUP"

    def __init__(self, message: str, *, candidates: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.candidates = candidates


class SlotValidationError(EngineError):
    code = "E_VALIDATION"


class IntentValidationError(SlotValidationError):
    """Oracle output that does not match any known intent shape."""

    code = "E_INTENT_INVALID"


class CapacityVeto(EngineError):
    code = "E_CAPACITY_VETO"


class ExpiredActionError(EngineError):
    code = "E_ACTION_EXPIRED"


class CollaboratorFailure(EngineError):
    """Persistence or risk-signal source unavailable."""

    code = "E_COLLABORATOR"


__all__ = [
    "EngineError",
    "EntityLookupError",
    "SlotValidationError",
    "IntentValidationError",
    "CapacityVeto",
    "ExpiredActionError",
    "CollaboratorFailure",
]
