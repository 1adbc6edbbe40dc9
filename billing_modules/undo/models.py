"""Undo Domain Models (``billing_modules.undo.models``)."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from billing_kernel.domain.snapshots import UndoSnapshot


@dataclass(frozen=True)
class UndoEntry:
    id: UUID
    entity_type: str
    entity_id: UUID
    action: str
    previous_state: UndoSnapshot
    performed_by: str
    created_at: datetime
    expires_at: datetime
    undone: bool = False

    def seconds_remaining(self, now: datetime) -> int:
        return max(int((self.expires_at - now).total_seconds()), 0)


@dataclass(frozen=True)
class UndoResult:
    undo_id: UUID
    entity_type: str
    entity_id: UUID
    action: str
    restored_status: str
