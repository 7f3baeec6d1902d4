"""Short-lived pending actions awaiting confirmation."""
from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from core.errors import CollaboratorFailure
from management.constants import ActionStatus
from management.database import ManagementDatabase
from planner.preview import ActionPreview

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 5


@dataclass(frozen=True)
class PendingAction:
    action_id: str
    session_id: str
    status: ActionStatus
    preview: ActionPreview
    created_at: datetime
    expires_at: datetime
    resolved_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "actionId": self.action_id,
            "sessionId": self.session_id,
            "status": self.status.value,
            "preview": self.preview.to_dict(),
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "resolvedAt": self.resolved_at.isoformat() if self.resolved_at else None,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_action_id() -> str:
    return f"act-{uuid.uuid4().hex[:12]}"


class PendingActionStore:
    """Pending actions persisted next to the data they mutate.

    Status only ever leaves ``pending`` through :meth:`transition`, an
    ``UPDATE ... WHERE status = 'pending'``; the caller whose update touches
    a row owns the action.
    """

    def __init__(
        self,
        db: ManagementDatabase,
        *,
        ttl_minutes: float = DEFAULT_TTL_MINUTES,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._db = db
        self._ttl = timedelta(minutes=ttl_minutes)
        self._clock = clock or _utcnow
        self._make_id = id_factory or new_action_id

    def now(self) -> datetime:
        return self._clock()

    def create(self, session_id: str, preview: ActionPreview) -> PendingAction:
        created = self._clock()
        action = PendingAction(
            action_id=self._make_id(),
            session_id=session_id,
            status=ActionStatus.PENDING,
            preview=preview,
            created_at=created,
            expires_at=created + self._ttl,
        )
        try:
            self._db.insert(
                "INSERT INTO pending_actions (action_id, session_id, status, preview, created_at, expires_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    action.action_id,
                    session_id,
                    action.status.value,
                    json.dumps(preview.to_dict(), ensure_ascii=False),
                    action.created_at.isoformat(),
                    action.expires_at.isoformat(),
                ),
            )
        except sqlite3.Error as exc:
            raise CollaboratorFailure("Persistence unavailable while storing pending action") from exc
        logger.info(f"pending action {action.action_id} created for {preview.intent} (session {session_id})")
        return action

    def get(self, action_id: str) -> PendingAction | None:
        try:
            rows = self._db.query("SELECT * FROM pending_actions WHERE action_id = ?", (action_id,))
        except sqlite3.Error as exc:
            raise CollaboratorFailure("Persistence unavailable while reading pending action") from exc
        if not rows:
            return None
        row = rows[0]
        return PendingAction(
            action_id=row["action_id"],
            session_id=row["session_id"],
            status=ActionStatus(row["status"]),
            preview=ActionPreview.from_dict(json.loads(row["preview"])),
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            resolved_at=datetime.fromisoformat(row["resolved_at"]) if row["resolved_at"] else None,
        )

    def transition(
        self,
        action_id: str,
        to_status: ActionStatus,
        *,
        from_status: ActionStatus = ActionStatus.PENDING,
    ) -> bool:
        """Compare-and-set the status; ``True`` only for the caller that won."""

        try:
            changed = self._db.update(
                "UPDATE pending_actions SET status = ?, resolved_at = ? WHERE action_id = ? AND status = ?",
                (to_status.value, self._clock().isoformat(), action_id, from_status.value),
            )
        except sqlite3.Error as exc:
            raise CollaboratorFailure("Persistence unavailable while resolving pending action") from exc
        if changed == 1:
            logger.info(f"pending action {action_id}: {from_status.value} -> {to_status.value}")
            return True
        logger.info(f"pending action {action_id} not in {from_status.value}; {to_status.value} ignored")
        return False

    def latest_for_session(self, session_id: str) -> PendingAction | None:
        try:
            rows = self._db.query(
                "SELECT action_id FROM pending_actions WHERE session_id = ? AND status = ? "
                "ORDER BY created_at DESC LIMIT 1",
                (session_id, ActionStatus.PENDING.value),
            )
        except sqlite3.Error as exc:
            raise CollaboratorFailure("Persistence unavailable while reading pending action") from exc
        if not rows:
            return None
        return self.get(rows[0]["action_id"])


__all__ = ["DEFAULT_TTL_MINUTES", "PendingAction", "PendingActionStore", "new_action_id"]
