"""Session state: an ordered transcript plus the agent's resumable id."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import time
import uuid

from vaultchat.shared.models.message import ChatMessage, MessageRole


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_id() -> str:
    return f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def default_session_name(now: datetime | None = None) -> str:
    return f"Chat {(now or datetime.now()).strftime('%Y-%m-%d')}"


@dataclass
class ContextReference:
    """A piece of vault or web context attached to a session."""
    type: str  # "file", "selection", "search" or "webpage"
    content: str
    path: str | None = None
    title: str | None = None
    url: str | None = None


@dataclass
class Session:
    """Holds one conversation.

    ``external_session_id`` is the agent CLI's own resumable id. It is
    distinct from ``id``, which names the on-disk record.
    """

    id: str = field(default_factory=generate_session_id)
    name: str = field(default_factory=default_session_name)
    external_session_id: str | None = None
    messages: list[ChatMessage] = field(default_factory=list)
    context: list[ContextReference] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    note_path: str | None = None

    def has_message(self, message_id: str) -> bool:
        return self.find_message(message_id) is not None

    def find_message(self, message_id: str) -> ChatMessage | None:
        for msg in self.messages:
            if msg.id == message_id:
                return msg
        return None

    def touch(self) -> None:
        self.updated_at = _utcnow()

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def first_user_message(self) -> ChatMessage | None:
        for msg in self.messages:
            if msg.role == MessageRole.USER:
                return msg
        return None
