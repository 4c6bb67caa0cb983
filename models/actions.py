"""
Audit trail and notification models emitted by the optimization cadences.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, TypeAdapter

from .enums import ActionType, NotificationType


class ActionRecord(BaseModel):
    """One applied decision. Append-only; only successful mutations are recorded."""

    type: ActionType
    listing_id: str | None = None  # None for window-level records
    before: dict[str, Any] = Field(default_factory=dict)
    after: dict[str, Any] = Field(default_factory=dict)
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


class Notification(BaseModel):
    """Payload handed to the notifier collaborator."""

    type: NotificationType
    subject: str
    message: str
    attachment: str | None = None


_ACTION_LIST = TypeAdapter(list[ActionRecord])


def actions_to_json(actions: list[ActionRecord]) -> str:
    """Serialize an action log for report attachments."""
    return _ACTION_LIST.dump_json(actions, indent=2).decode()
