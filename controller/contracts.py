from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


# Entrada de /coach/chat/message
class ChatMessageIn(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)
    sessionId: Optional[str] = None


class ChatMessageOut(BaseModel):
    sessionId: str
    response: str
    tool: Optional[str] = None
    actionId: Optional[str] = None
    preview: Optional[Dict[str, Any]] = None
    requiresConfirmation: bool = False
    expiresAt: Optional[str] = None
    degraded: Optional[str] = None
    missingSlot: Optional[str] = None
    responseSource: str


# Entrada de /coach/chat/confirm
class ConfirmIn(BaseModel):
    actionId: str = Field(..., min_length=1)
    confirm: bool = True


class ConfirmOut(BaseModel):
    status: Literal["confirmed", "cancelled", "vetoed"]
    actionId: str
    executed: bool
    response: str
    result: Optional[Dict[str, Any]] = None


# PATCH /capacity/config; todos los campos son opcionales y se acotan al guardar
class CapacityConfigIn(BaseModel):
    work_hours_per_day: Optional[float] = None
    buffer_percentage: Optional[float] = None
    break_minutes_per_day: Optional[float] = None
    work_days_per_week: Optional[float] = None

    def changes(self) -> Dict[str, Any]:
        return {k: v for k, v in self.model_dump().items() if v is not None}
