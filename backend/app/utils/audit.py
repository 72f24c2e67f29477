"""Helpers for the picker task audit trail.

Usage:
    actor = await actor_ref(db, user_id)
    append_audit(task, "claim", actor, note="claimed from queue")

Entries are appended to the task's history_audit_trail JSON list and
persisted with the enclosing transaction; no extra flush is performed.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import utcnow
from app.models.picker_task import PickerTask
from app.models.user import User


async def actor_ref(db: AsyncSession, user_id: str | None) -> dict:
    """Display reference for an actor; unknown ids are kept as-is."""
    if not user_id:
        return {"id": None, "name": None, "role": None}
    if user_id == settings.system_actor_id:
        return {"id": user_id, "name": "System", "role": "system"}
    user = await db.get(User, user_id)
    if user is None:
        return {"id": user_id, "name": None, "role": None}
    return {"id": user.id, "name": user.full_name, "role": user.role.value}


def audit_entry(
    action: str,
    actor: dict,
    *,
    note: str = "",
    meta: dict | None = None,
    at: datetime | None = None,
) -> dict:
    return {
        "action": action,
        "note": note,
        "by": actor,
        "at": (at or utcnow()).isoformat(),
        "meta": meta or {},
    }


def append_audit(
    task: PickerTask,
    action: str,
    actor: dict,
    *,
    note: str = "",
    meta: dict | None = None,
    at: datetime | None = None,
) -> dict:
    """Append one entry. The list is reassigned so the JSON change is tracked."""
    entry = audit_entry(action, actor, note=note, meta=meta, at=at)
    task.history_audit_trail = [*(task.history_audit_trail or []), entry]
    return entry
